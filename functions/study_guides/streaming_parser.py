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
"""
Incremental extraction of study guide sections from a streaming LLM response.

The model is asked for a single JSON object whose top-level fields arrive in
SECTION_ORDER. Each field is emitted as soon as its value is fully received so
clients can render sections while the rest of the document is still streaming.
"""

import hashlib
import json
import logging
import re
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Union

from shared.api import ParsedSection
from shared.json_utils import strip_code_fences

logger = logging.getLogger(__name__)

SECTION_ORDER = (
    "summary",
    "interpretation",
    "context",
    "relatedVerses",
    "reflectionQuestions",
    "prayerPoints",
    "interpretationInsights",
    "summaryInsights",
    "reflectionAnswers",
    "contextQuestion",
    "summaryQuestion",
    "relatedVersesQuestion",
    "reflectionQuestion",
    "prayerQuestion",
)

REQUIRED_SECTIONS = SECTION_ORDER[:6]

ARRAY_SECTIONS = frozenset(
    [
        "relatedVerses",
        "reflectionQuestions",
        "prayerPoints",
        "interpretationInsights",
        "summaryInsights",
        "reflectionAnswers",
    ]
)

DEFAULT_SECTION_TOTAL = len(REQUIRED_SECTIONS)

# Keys are only matched where an object key can start, so a quoted field name
# inside another value never matches.
_STRING_PATTERNS = {
    name: re.compile(
        r'[{,]\s*"%s"\s*:\s*"((?:[^"\\]|\\.)*)"' % re.escape(name), re.DOTALL
    )
    for name in SECTION_ORDER
}
_ARRAY_START_PATTERNS = {
    name: re.compile(r'[{,]\s*"%s"\s*:\s*\[' % re.escape(name))
    for name in SECTION_ORDER
}
_STRING_TERMINATOR = re.compile(r'\s*(?:[,}]|"[a-zA-Z])')
_QUOTED_ITEM = re.compile(r'"((?:[^"\\]|\\.)*)"', re.DOTALL)
_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}

SectionValue = Union[str, List[str]]


class IncompleteStudyGuideError(Exception):
    pass


def _unescape(raw: str) -> str:
    try:
        return json.loads('"%s"' % raw, strict=False)
    except json.JSONDecodeError:
        return _ESCAPE.sub(lambda m: _SIMPLE_ESCAPES.get(m.group(1), m.group(1)), raw)


def _fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class StreamingJsonParser:
    """Accumulates streamed text and emits each section once it is complete."""

    def __init__(self):
        self._buffer = ""
        self._emitted: set[str] = set()
        self._parsed: Dict[str, SectionValue] = {}

    def add_chunk(self, chunk: str) -> List[ParsedSection]:
        """Appends a chunk and returns the sections it completed, in order."""
        self._buffer += chunk
        sections: List[ParsedSection] = []
        for index, name in enumerate(SECTION_ORDER):
            if name in self._emitted:
                continue
            if name in ARRAY_SECTIONS:
                value = self._extract_array(name)
            else:
                value = self._extract_string(name)
            if value is None:
                continue
            self._emitted.add(name)
            self._parsed[name] = value
            sections.append(ParsedSection(type=name, content=value, index=index))
        return sections

    def _extract_string(self, name: str) -> Optional[str]:
        match = _STRING_PATTERNS[name].search(self._buffer)
        if not match:
            return None
        # The closing quote only counts once the next token has arrived.
        if not _STRING_TERMINATOR.match(self._buffer, match.end()):
            return None
        return _unescape(match.group(1))

    def _extract_array(self, name: str) -> Optional[List[str]]:
        match = _ARRAY_START_PATTERNS[name].search(self._buffer)
        if not match:
            return None

        start = match.end()
        depth = 1
        in_string = False
        escaped = False
        pos = start
        while pos < len(self._buffer) and depth > 0:
            char = self._buffer[pos]
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = not in_string
            elif not in_string:
                if char == "[":
                    depth += 1
                elif char == "]":
                    depth -= 1
            pos += 1

        if depth != 0:
            return None

        body = self._buffer[start : pos - 1]
        try:
            items = json.loads("[%s]" % body)
        except json.JSONDecodeError:
            items = None
        if isinstance(items, list) and all(isinstance(i, str) for i in items):
            return items
        return [_unescape(m.group(1)) for m in _QUOTED_ITEM.finditer(body)]

    @property
    def sections_emitted(self) -> int:
        return len(self._emitted)

    @property
    def total_sections(self) -> int:
        return len(SECTION_ORDER)

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def parsed_data(self) -> Dict[str, SectionValue]:
        data = {}
        for name, value in self._parsed.items():
            data[name] = list(value) if isinstance(value, list) else value
        return data

    def has_emitted(self, name: str) -> bool:
        return name in self._emitted

    def is_complete(self) -> bool:
        return all(name in self._emitted for name in REQUIRED_SECTIONS)

    def get_complete_study_guide(self) -> Dict[str, SectionValue]:
        if not self.is_complete():
            missing = [n for n in REQUIRED_SECTIONS if n not in self._emitted]
            raise IncompleteStudyGuideError(
                f"Study guide is missing sections: {', '.join(missing)}"
            )
        return self.parsed_data

    def try_parse_complete(self) -> Optional[Dict[str, SectionValue]]:
        """
        Parses the whole buffer as one JSON document.

        Used once streaming ends, for fields the incremental pass missed.
        Returns None if the buffer is not a valid study guide.
        """
        text = strip_code_fences(self._buffer)
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(
                "Full-buffer parse failed (%s): length=%d sha256=%s",
                e.msg,
                len(self._buffer),
                _fingerprint(self._buffer),
            )
            return None

        if not isinstance(data, dict) or not _has_required_sections(data):
            logger.warning(
                "Parsed buffer is missing required sections: length=%d sha256=%s",
                len(self._buffer),
                _fingerprint(self._buffer),
            )
            return None

        return extract_sections(data)

    def reset(self) -> None:
        self._buffer = ""
        self._emitted = set()
        self._parsed = {}


def _has_required_sections(data: Dict[str, Any]) -> bool:
    for name in REQUIRED_SECTIONS:
        expected = list if name in ARRAY_SECTIONS else str
        if not isinstance(data.get(name), expected):
            return False
    return True


def extract_sections(data: Dict[str, Any]) -> Dict[str, SectionValue]:
    """Returns the known sections of data whose values have the right type."""
    result: Dict[str, SectionValue] = {}
    for name in SECTION_ORDER:
        value = data.get(name)
        if name in ARRAY_SECTIONS:
            if isinstance(value, list):
                result[name] = [
                    item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
                    for item in value
                ]
        elif isinstance(value, str):
            result[name] = value
    return result


def format_sse_event(event_type: str, data: Any) -> str:
    payload = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return f"event: {event_type}\ndata: {payload}\n\n"


def create_section_event(
    section: ParsedSection, total: int = DEFAULT_SECTION_TOTAL
) -> str:
    data = asdict(section)
    data["total"] = total
    return format_sse_event("section", data)


def create_init_event(
    status: str, estimated_sections: int = DEFAULT_SECTION_TOTAL
) -> str:
    return format_sse_event(
        "init", {"status": status, "estimatedSections": estimated_sections}
    )


def create_complete_event(
    study_guide_id: str, tokens_consumed: int, from_cache: bool
) -> str:
    return format_sse_event(
        "complete",
        {
            "studyGuideId": study_guide_id,
            "tokensConsumed": tokens_consumed,
            "fromCache": from_cache,
        },
    )


def create_error_event(code: str, message: str, retryable: bool) -> str:
    return format_sse_event(
        "error", {"code": code, "message": message, "retryable": retryable}
    )
