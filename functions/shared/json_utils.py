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
import re
from typing import Any

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_CODE_FENCE_START = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_END = re.compile(r"\s*```\s*$")
_OUTER_OBJECT = re.compile(r"\{[\s\S]*\}")
_DANGLING_KEY = re.compile(r'[{,]\s*"(?:[^"\\]|\\.)*"$')

_CLOSERS = {"{": "}", "[": "]"}


def _camel_to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _snake_to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def convert_keys(data: Any, direction: str) -> Any:
    """Recursively renames dict keys, "camel_to_snake" or "snake_to_camel"."""
    if direction == "camel_to_snake":
        rename = _camel_to_snake
    elif direction == "snake_to_camel":
        rename = _snake_to_camel
    else:
        raise ValueError(f"Unknown key conversion: {direction}")

    def _convert(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                (rename(k) if isinstance(k, str) else k): _convert(v)
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [_convert(item) for item in value]
        return value

    return _convert(data)


def strip_code_fences(text: str) -> str:
    """Removes a surrounding ```json ... ``` markdown fence, if present."""
    cleaned = text.strip()
    cleaned = _CODE_FENCE_START.sub("", cleaned, count=1)
    cleaned = _CODE_FENCE_END.sub("", cleaned, count=1)
    return cleaned.strip()


def clean_json_response(text: str) -> str:
    """
    Returns the JSON body of an LLM response.

    Fences are stripped first. If the result still doesn't parse, the outermost
    object is used when it parses on its own. Otherwise everything from the
    first brace on is kept, and an unterminated string in it is repaired.
    """
    cleaned = strip_code_fences(text)
    try:
        json.loads(cleaned)
        return cleaned
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    if start == -1:
        return cleaned
    match = _OUTER_OBJECT.search(cleaned)
    if match:
        try:
            json.loads(match.group(0))
            return match.group(0)
        except json.JSONDecodeError:
            pass

    # A closing brace inside a truncated string value must not end the object.
    candidate = cleaned[start:]
    try:
        json.loads(candidate)
    except json.JSONDecodeError as e:
        if "Unterminated string" in e.msg:
            return repair_truncated_json(candidate)
    return candidate



def repair_truncated_json(text: str) -> str:
    """
    Closes whatever a truncated JSON document left open.

    Brackets are counted outside of strings. An unterminated string is
    closed, a dangling comma dropped, a dangling key given a null value, and
    the open arrays and objects closed in nesting order.
    """
    repaired = text.rstrip()
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in repaired:
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = in_string
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]") and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    elif repaired.endswith(":"):
        repaired += " null"
    elif stack and stack[-1] == "}" and _DANGLING_KEY.search(repaired):
        repaired += ": null"

    return repaired + "".join(reversed(stack))


def parse_json_safely(text: str) -> Any:
    """Parses an LLM response, repairing truncation if a plain parse fails."""
    cleaned = clean_json_response(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return json.loads(repair_truncated_json(cleaned))
