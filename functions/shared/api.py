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

from dataclasses import dataclass, field
from typing import List, Optional, Union

INPUT_TYPES = ("scripture", "topic", "question")
SUPPORTED_LANGUAGES = ("en", "hi", "ml")
STUDY_MODES = ("quick", "standard", "deep", "lectio", "sermon")


@dataclass
class UserContext:
    """The authenticated (or anonymous) caller of an edge function."""

    type: str  # "authenticated" | "anonymous"
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    user_type: Optional[str] = None  # "admin" | "user"

    @property
    def is_authenticated(self) -> bool:
        return self.type == "authenticated"

    @property
    def is_admin(self) -> bool:
        return self.user_type == "admin"

    @property
    def identifier(self) -> str:
        """Identifier used for token accounting."""
        return (self.user_id if self.is_authenticated else self.session_id) or ""


@dataclass
class StudyGuideInput:
    """Request object for generating a study guide."""

    input_type: str
    input_value: str
    language: str = "en"
    study_mode: str = "standard"
    topic_description: Optional[str] = None


@dataclass
class StudyGuideContent:
    """The sections of a generated study guide."""

    summary: str
    interpretation: str
    context: str
    related_verses: List[str]
    reflection_questions: List[str]
    prayer_points: List[str]
    interpretation_insights: List[str] = field(default_factory=list)
    summary_insights: List[str] = field(default_factory=list)
    reflection_answers: List[str] = field(default_factory=list)
    context_question: Optional[str] = None
    summary_question: Optional[str] = None
    related_verses_question: Optional[str] = None
    reflection_question: Optional[str] = None
    prayer_question: Optional[str] = None


@dataclass
class StudyGuide:
    """A saved study guide, as returned to clients."""

    id: str
    input: StudyGuideInput
    content: StudyGuideContent
    creator_user_id: Optional[str]
    creator_session_id: Optional[str]
    created_at: float


@dataclass
class ParsedSection:
    """One top-level field of a study guide, emitted while streaming."""

    type: str
    content: Union[str, List[str]]
    index: int


@dataclass
class LLMUsage:
    """Token usage reported by an LLM provider for a single generation."""

    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class BibleVerse:
    """A single verse fetched from the Bible text API."""

    reference: str
    text: str
    translation: str
    language: str
