# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import unittest
from unittest.mock import MagicMock

import requests

from verses import bible_api
from verses.bible_api import BibleApiClient, BibleApiError


def _response(status_code=200, content="16 For God so loved the world"):
    response = MagicMock(status_code=status_code)
    response.json.return_value = {"data": {"content": content}}
    return response


class ParseReferenceTest(unittest.TestCase):

    def test_parse_reference(self):
        self.assertEqual(bible_api.parse_reference("John 3:16"), "JHN.3.16")
        self.assertEqual(bible_api.parse_reference("1 John 4:8-10"), "1JN.4.8")
        self.assertEqual(bible_api.parse_reference("Song of Solomon 2:4"), "SNG.2.4")
        self.assertEqual(bible_api.parse_reference(" Psalm 23:1 "), "PSA.23.1")

    def test_rejects_unknown_book_and_bad_format(self):
        with self.assertRaises(ValueError):
            bible_api.parse_reference("Hezekiah 1:1")
        with self.assertRaises(ValueError):
            bible_api.parse_reference("John 3")

    def test_clean_verse_text(self):
        self.assertEqual(
            bible_api.clean_verse_text("<p>16 For God[1] so *loved*  the\nworld</p>"),
            "For God so loved the world",
        )


class BibleApiClientTest(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.sleeps = []
        self.client = BibleApiClient("key", session=self.session, sleep=self.sleeps.append)

    def test_fetch_verse(self):
        self.session.get.return_value = _response()
        verse = self.client.fetch_verse("John 3:16")

        self.assertEqual(verse.text, "For God so loved the world")
        self.assertEqual(verse.translation, "King James Version (KJV)")
        args, kwargs = self.session.get.call_args
        self.assertTrue(args[0].endswith("/bibles/de4e12af7f28f599-02/verses/JHN.3.16"))
        self.assertEqual(kwargs["headers"], {"api-key": "key"})
        self.assertEqual(kwargs["params"]["content-type"], "text")
        self.assertEqual(kwargs["timeout"], 10)

    def test_retries_server_errors_with_backoff(self):
        self.session.get.side_effect = [
            _response(503),
            requests.exceptions.ConnectionError("reset"),
            _response(),
        ]
        verse = self.client.fetch_verse("John 3:16")
        self.assertEqual(verse.text, "For God so loved the world")
        self.assertEqual(self.sleeps, [0.5, 1.0])

    def test_does_not_retry_client_errors(self):
        self.session.get.return_value = _response(404)
        with self.assertRaises(BibleApiError):
            self.client.fetch_verse("John 3:16")
        self.assertEqual(self.session.get.call_count, 1)

    def test_gives_up_after_three_attempts(self):
        self.session.get.return_value = _response(500)
        with self.assertRaises(BibleApiError):
            self.client.fetch_verse("John 3:16")
        self.assertEqual(self.session.get.call_count, 3)
        self.assertEqual(self.sleeps, [0.5, 1.0])

    def test_retries_rate_limit_then_logs(self):
        self.session.get.side_effect = [_response(429), _response()]
        with self.assertLogs("verses.bible_api", level="WARNING") as logs:
            self.client.fetch_verse("John 3:16")
        self.assertEqual(self.sleeps, [0.5])
        self.assertIn("attempt 1 failed", logs.output[0])

    def test_malformed_reference_is_not_retried(self):
        with self.assertRaises(ValueError):
            self.client.fetch_verse("John three")
        self.assertEqual(self.sleeps, [])
        self.session.get.assert_not_called()

    def test_unsupported_language(self):
        with self.assertRaises(ValueError):
            self.client.fetch_verse("John 3:16", "fr")

    def test_all_languages_tolerates_missing_translations(self):
        def fake_get(url, **kwargs):
            if bible_api.BIBLE_VERSIONS["hi"] in url:
                return _response(404)
            return _response()

        self.session.get.side_effect = fake_get
        verses = self.client.fetch_verse_all_languages("John 3:16")
        self.assertEqual(verses["en"].text, "For God so loved the world")
        self.assertEqual(verses["hi"].text, "")
        self.assertEqual(verses["ml"].text, "For God so loved the world")

    def test_all_languages_requires_english(self):
        def fake_get(url, **kwargs):
            if bible_api.BIBLE_VERSIONS["en"] in url:
                return _response(404)
            return _response()

        self.session.get.side_effect = fake_get
        with self.assertRaises(BibleApiError):
            self.client.fetch_verse_all_languages("John 3:16")


if __name__ == "__main__":
    unittest.main()
