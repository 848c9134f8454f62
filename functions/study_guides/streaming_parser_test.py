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

import json
import unittest

from shared.api import ParsedSection
from study_guides import streaming_parser
from study_guides.streaming_parser import (
    IncompleteStudyGuideError,
    StreamingJsonParser,
)

FULL_GUIDE = {
    "summary": 'Jesus says "I am the way" to Thomas.\nA key verse.',
    "interpretation": "Backslash \\ and tab\tare kept; unicode é too.",
    "context": "Spoken in the upper room, {before} the arrest.",
    "relatedVerses": ["John 1:1", "Acts 4:12 \"salvation\"", "Heb [10:20]"],
    "reflectionQuestions": ["What does \"way\" mean?", "Where am I going?"],
    "prayerPoints": ["Trust", "Follow"],
    "interpretationInsights": ["Exclusive claim"],
    "summaryInsights": [],
    "reflectionAnswers": ["He is the path"],
    "contextQuestion": "Why was Thomas troubled?",
    "summaryQuestion": "What is the main claim?",
    "relatedVersesQuestion": "Which verse echoes this?",
    "reflectionQuestion": "How will you follow?",
    "prayerQuestion": "What will you pray?",
}


def _feed(parser, text, size):
    sections = []
    for start in range(0, len(text), size):
        sections.extend(parser.add_chunk(text[start : start + size]))
    return sections


class StreamingJsonParserTest(unittest.TestCase):

    def test_chunked_extraction_matches_full_parse(self):
        """Every chunk size yields the same values as json.loads."""
        for text in (
            json.dumps(FULL_GUIDE),
            json.dumps(FULL_GUIDE, indent=2),
            json.dumps(FULL_GUIDE, ensure_ascii=False),
        ):
            expected = json.loads(text)
            for size in (1, 2, 3, 7, 64, len(text)):
                parser = StreamingJsonParser()
                sections = _feed(parser, text, size)
                self.assertEqual(parser.parsed_data, expected, f"chunk size {size}")
                self.assertEqual(
                    [s.type for s in sections],
                    [n for n in streaming_parser.SECTION_ORDER if n in expected],
                )

    def test_three_character_chunks_equal_whole_document(self):
        text = json.dumps(FULL_GUIDE)
        whole = StreamingJsonParser()
        whole.add_chunk(text)
        chunked = StreamingJsonParser()
        _feed(chunked, text, 3)
        self.assertEqual(chunked.parsed_data, whole.parsed_data)
        self.assertTrue(chunked.is_complete())
        self.assertEqual(chunked.sections_emitted, 14)
        self.assertEqual(chunked.total_sections, 14)

    def test_sections_are_never_emitted_twice(self):
        text = json.dumps(FULL_GUIDE)
        parser = StreamingJsonParser()
        sections = _feed(parser, text, 5)
        sections.extend(parser.add_chunk(" "))
        sections.extend(parser.add_chunk(text))
        types = [s.type for s in sections]
        self.assertEqual(len(types), len(set(types)))

    def test_string_not_emitted_until_terminated(self):
        parser = StreamingJsonParser()
        self.assertEqual(parser.add_chunk('{"summary": "Grace'), [])
        self.assertEqual(parser.add_chunk(' and truth"'), [])
        sections = parser.add_chunk(', "interpretation"')
        self.assertEqual(
            sections, [ParsedSection(type="summary", content="Grace and truth", index=0)]
        )

    def test_string_not_emitted_mid_escape(self):
        parser = StreamingJsonParser()
        self.assertEqual(parser.add_chunk('{"summary": "say \\'), [])
        self.assertEqual(parser.add_chunk('"'), [])
        self.assertEqual(parser.add_chunk('hi\\"'), [])
        sections = parser.add_chunk('",')
        self.assertEqual(sections[0].content, 'say "hi"')

    def test_field_name_inside_value_is_ignored(self):
        text = json.dumps(
            {"context": 'He wrote {"summary": "fake"}, "summary": "also fake"'}
        )
        parser = StreamingJsonParser()
        parser.add_chunk(text)
        self.assertNotIn("summary", parser.parsed_data)
        self.assertIn("context", parser.parsed_data)

    def test_array_waits_for_closing_bracket(self):
        parser = StreamingJsonParser()
        self.assertEqual(parser.add_chunk('{"relatedVerses": ["John 3:16", "Rom ['), [])
        self.assertEqual(parser.add_chunk('5]"'), [])
        sections = parser.add_chunk("]")
        self.assertEqual(sections[0].type, "relatedVerses")
        self.assertEqual(sections[0].content, ["John 3:16", "Rom [5]"])
        self.assertEqual(sections[0].index, 3)

    def test_reset_restores_fresh_state(self):
        text = json.dumps(FULL_GUIDE)
        parser = StreamingJsonParser()
        _feed(parser, text[: len(text) // 2], 4)
        parser.reset()

        fresh = StreamingJsonParser()
        self.assertEqual(parser.buffer, fresh.buffer)
        self.assertEqual(parser.parsed_data, fresh.parsed_data)
        self.assertEqual(parser.sections_emitted, fresh.sections_emitted)
        self.assertFalse(parser.is_complete())

        self.assertEqual(_feed(parser, text, 9), _feed(fresh, text, 9))

    def test_parsed_data_is_a_copy(self):
        parser = StreamingJsonParser()
        parser.add_chunk(json.dumps(FULL_GUIDE))
        data = parser.parsed_data
        data["prayerPoints"].append("mutated")
        data["summary"] = "mutated"
        self.assertEqual(parser.parsed_data["prayerPoints"], ["Trust", "Follow"])
        self.assertEqual(parser.parsed_data["summary"], FULL_GUIDE["summary"])

    def test_completeness_only_requires_required_sections(self):
        required = {
            name: FULL_GUIDE[name] for name in streaming_parser.REQUIRED_SECTIONS
        }
        parser = StreamingJsonParser()
        parser.add_chunk(json.dumps(required))
        self.assertTrue(parser.is_complete())
        self.assertEqual(parser.get_complete_study_guide(), required)

    def test_get_complete_study_guide_raises_when_incomplete(self):
        parser = StreamingJsonParser()
        parser.add_chunk('{"summary": "A", "interpretation": "B"}')
        with self.assertRaises(IncompleteStudyGuideError):
            parser.get_complete_study_guide()

    def test_try_parse_complete_strips_fences(self):
        parser = StreamingJsonParser()
        parser.add_chunk("```json\n" + json.dumps(FULL_GUIDE) + "\n```")
        self.assertEqual(parser.try_parse_complete(), FULL_GUIDE)

    def test_try_parse_complete_drops_mistyped_optional_fields(self):
        data = dict(FULL_GUIDE, summaryInsights="not a list", prayerQuestion=3)
        parser = StreamingJsonParser()
        parser.add_chunk("Here you go: " + json.dumps(data))
        result = parser.try_parse_complete()
        self.assertNotIn("summaryInsights", result)
        self.assertNotIn("prayerQuestion", result)
        self.assertEqual(result["summary"], FULL_GUIDE["summary"])

    def test_try_parse_complete_logs_fingerprint_not_content(self):
        parser = StreamingJsonParser()
        parser.add_chunk('{"summary": "secret prayer request", "interp')
        with self.assertLogs(streaming_parser.logger, level="WARNING") as logs:
            self.assertIsNone(parser.try_parse_complete())
        output = "\n".join(logs.output)
        self.assertIn("sha256=", output)
        self.assertNotIn("secret prayer request", output)

    def test_try_parse_complete_rejects_missing_required(self):
        parser = StreamingJsonParser()
        parser.add_chunk('{"summary": "A"}')
        with self.assertLogs(streaming_parser.logger, level="WARNING"):
            self.assertIsNone(parser.try_parse_complete())


class SseEventTest(unittest.TestCase):

    def test_format_sse_event(self):
        self.assertEqual(
            streaming_parser.format_sse_event("init", {"status": "started"}),
            'event: init\ndata: {"status":"started"}\n\n',
        )

    def test_section_event_keeps_unicode(self):
        section = ParsedSection(type="summary", content="यीशु", index=0)
        event = streaming_parser.create_section_event(section, total=14)
        self.assertTrue(event.startswith("event: section\n"))
        payload = json.loads(event.split("data: ", 1)[1])
        self.assertEqual(
            payload, {"type": "summary", "content": "यीशु", "index": 0, "total": 14}
        )
        self.assertIn("यीशु", event)

    def test_complete_and_error_events(self):
        complete = streaming_parser.create_complete_event("guide-1", 10, False)
        self.assertIn('"studyGuideId":"guide-1"', complete)
        self.assertIn('"fromCache":false', complete)
        error = streaming_parser.create_error_event("LM-E-002", "bad", True)
        self.assertTrue(error.startswith("event: error\n"))
        self.assertIn('"retryable":true', error)


if __name__ == "__main__":
    unittest.main()
