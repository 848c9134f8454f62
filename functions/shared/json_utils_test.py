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

from shared.json_utils import (
    clean_json_response,
    convert_keys,
    parse_json_safely,
    repair_truncated_json,
)


class ConvertKeysTest(unittest.TestCase):

    def test_camel_to_snake_is_recursive(self):
        data = {"relatedVerses": ["a"], "nested": [{"prayerQuestion": "q"}]}
        self.assertEqual(
            convert_keys(data, "camel_to_snake"),
            {"related_verses": ["a"], "nested": [{"prayer_question": "q"}]},
        )

    def test_snake_to_camel(self):
        self.assertEqual(
            convert_keys({"related_verses_question": 1}, "snake_to_camel"),
            {"relatedVersesQuestion": 1},
        )

    def test_unknown_direction(self):
        with self.assertRaises(ValueError):
            convert_keys({}, "kebab")


class RepairTruncatedJsonTest(unittest.TestCase):

    def test_closes_unterminated_string_and_objects(self):
        repaired = repair_truncated_json('{"summary": "Grace and')
        self.assertEqual(json.loads(repaired), {"summary": "Grace and"})

    def test_closes_in_nesting_order(self):
        repaired = repair_truncated_json('{"relatedVerses": ["John 3:16", "Rom 8')
        self.assertEqual(
            json.loads(repaired), {"relatedVerses": ["John 3:16", "Rom 8"]}
        )

    def test_drops_trailing_comma(self):
        repaired = repair_truncated_json('{"a": [1, 2],')
        self.assertEqual(json.loads(repaired), {"a": [1, 2]})

    def test_dangling_key_gets_null(self):
        repaired = repair_truncated_json('{"a": "x", "b":')
        self.assertEqual(json.loads(repaired), {"a": "x", "b": None})

    def test_truncated_key_gets_null(self):
        repaired = repair_truncated_json('{"a": ["x"], "inte')
        self.assertEqual(json.loads(repaired), {"a": ["x"], "inte": None})

    def test_ignores_brackets_inside_strings(self):
        repaired = repair_truncated_json('{"a": "[{ not json", "b": ["x"')
        self.assertEqual(json.loads(repaired), {"a": "[{ not json", "b": ["x"]})

    def test_drops_dangling_escape(self):
        repaired = repair_truncated_json('{"a": "line\\')
        self.assertEqual(json.loads(repaired), {"a": "line"})

    def test_complete_document_is_unchanged(self):
        text = '{"a": {"b": [1]}}'
        self.assertEqual(repair_truncated_json(text), text)


class CleanJsonResponseTest(unittest.TestCase):

    def test_strips_code_fences(self):
        self.assertEqual(clean_json_response('```json\n{"a": 1}\n```'), '{"a": 1}')

    def test_extracts_outer_object(self):
        self.assertEqual(
            clean_json_response('Sure! {"a": {"b": 2}} Hope this helps.'),
            '{"a": {"b": 2}}',
        )

    def test_parse_json_safely_repairs_truncation(self):
        self.assertEqual(
            parse_json_safely('```json\n{"summary": "A", "prayerPoints": ["x", "y'),
            {"summary": "A", "prayerPoints": ["x", "y"]},
        )

    def test_brace_inside_truncated_string_keeps_later_fields(self):
        text = '{"summary": "Use {grace}", "interpretation": "B", "context": "trunc'
        self.assertEqual(
            parse_json_safely(text),
            {"summary": "Use {grace}", "interpretation": "B", "context": "trunc"},
        )

    def test_keeps_truncated_object_after_leading_prose(self):
        self.assertEqual(
            parse_json_safely('Here you go: {"summary": "A", "context": "cut'),
            {"summary": "A", "context": "cut"},
        )


if __name__ == "__main__":
    unittest.main()
