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
"""Per-language generation settings for study guides."""

from dataclasses import dataclass, replace

from models.llm_types import ANTHROPIC, OPENAI

MAX_TOKEN_BUDGET = 8000
NON_LATIN_TOKEN_BONUS = 500
NON_LATIN_LANGUAGES = ("hi", "ml")

THEOLOGY_TERMS = (
    "theology",
    "doctrine",
    "hermeneutics",
    "exegesis",
    "eschatology",
    "soteriology",
    "pneumatology",
)


@dataclass(frozen=True)
class LanguageConfig:
    name: str
    model_preference: str
    max_tokens: int
    temperature: float
    language_instruction: str
    complexity_instruction: str
    cultural_context: str

    def adjusted_for_retry(self, attempt: int) -> "LanguageConfig":
        """Lower temperature and a larger token budget for a parse retry."""
        return replace(
            self,
            temperature=max(0.1, round(self.temperature - 0.1 * attempt, 2)),
            max_tokens=self.max_tokens + 500 * attempt,
        )


LANGUAGE_CONFIGS = {
    "en": LanguageConfig(
        name="English",
        model_preference=OPENAI,
        max_tokens=3000,
        temperature=0.3,
        language_instruction="Output only in clear, accessible English.",
        complexity_instruction=(
            "Use simple, everyday words that anyone can understand. Keep"
            " sentences short and clear."
        ),
        cultural_context="Western Christian context with Protestant theological emphasis",
    ),
    "hi": LanguageConfig(
        name="Hindi",
        model_preference=ANTHROPIC,
        max_tokens=4000,
        temperature=0.2,
        language_instruction=(
            "Write in simple spoken Hindi using Devanagari script. Never use"
            " romanized Hinglish."
        ),
        complexity_instruction=(
            "Use everyday Hindi words that village people and children"
            " understand. Avoid Sanskrit-heavy vocabulary."
        ),
        cultural_context=(
            "Indian Christian context with respect for local traditions and"
            " Hindi-speaking church communities"
        ),
    ),
    "ml": LanguageConfig(
        name="Malayalam",
        model_preference=ANTHROPIC,
        max_tokens=4000,
        temperature=0.2,
        language_instruction=(
            "Write in simple spoken Malayalam using Malayalam script. Never use"
            " romanized Manglish."
        ),
        complexity_instruction=(
            "Use everyday Malayalam words that anyone in Kerala understands."
            " Avoid literary vocabulary."
        ),
        cultural_context=(
            "Kerala Christian context with respect for the Syrian Christian"
            " heritage and local church traditions"
        ),
    ),
}


def get_language_config(language: str) -> LanguageConfig:
    config = LANGUAGE_CONFIGS.get(language)
    if not config:
        raise ValueError(f"Unsupported language: {language}")
    return config


def estimate_content_complexity(input_type: str, input_value: str) -> int:
    """Extra tokens for inputs that tend to produce longer study guides."""
    if input_type == "scripture":
        return 0 if len(input_value) < 20 else 500

    lowered = input_value.lower()
    if any(term in lowered for term in THEOLOGY_TERMS) or len(input_value) > 100:
        return 1000
    if len(input_value) > 50:
        return 500
    return 0


def calculate_optimal_tokens(
    input_type: str, input_value: str, language: str, config: LanguageConfig
) -> int:
    tokens = config.max_tokens + estimate_content_complexity(input_type, input_value)
    if language in NON_LATIN_LANGUAGES:
        tokens += NON_LATIN_TOKEN_BONUS
    return min(tokens, MAX_TOKEN_BUDGET)
