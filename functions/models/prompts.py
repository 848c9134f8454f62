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

from models.language_configs import LanguageConfig
from shared.api import StudyGuideInput

THEOLOGICAL_FOUNDATION = """
THEOLOGICAL FRAMEWORK
- Scripture alone is the final authority.
- Salvation is by grace alone through faith alone in Christ alone.
- Interpret by authorial intent and historical-grammatical context; let
  Scripture interpret Scripture and read every passage in light of Christ.
- Never teach prosperity gospel, word-faith theology, universalism or
  works-righteousness.
""".strip()

JSON_OUTPUT_RULES = """
OUTPUT FORMAT
Return ONLY one raw JSON object. It must start with { and end with }.
No markdown code fences, no commentary before or after, no trailing commas.
Escape strings properly: \\n for newlines, \\" for quotes, \\\\ for backslashes.
Never refuse a biblical passage or orthodox doctrine; all Scripture is
permitted educational content.
""".strip()

OUTPUT_SCHEMA = """
Return the fields in exactly this order:
{
  "summary": "string",
  "interpretation": "string",
  "context": "string",
  "relatedVerses": ["verse reference", ...],
  "reflectionQuestions": ["question", ...],
  "prayerPoints": ["prayer point", ...],
  "interpretationInsights": ["insight", ...],
  "summaryInsights": ["insight", ...],
  "reflectionAnswers": ["answer", ...],
  "contextQuestion": "string",
  "summaryQuestion": "string",
  "relatedVersesQuestion": "string",
  "reflectionQuestion": "string",
  "prayerQuestion": "string"
}
""".strip()

MODE_INSTRUCTIONS = {
    "quick": (
        "QUICK READ: keep every section brief. Summary in 2 sentences,"
        " 3 related verses, 2 reflection questions, 2 prayer points."
    ),
    "standard": (
        "STANDARD STUDY: balanced depth. Summary in 3-4 sentences,"
        " 5 related verses, 4 reflection questions, 3 prayer points."
    ),
    "deep": (
        "DEEP DIVE: thorough exegesis with original-language word studies,"
        " historical background and cross-references. 7 related verses,"
        " 6 reflection questions, 4 prayer points."
    ),
    "lectio": (
        "LECTIO DIVINA: a slow, meditative reading. Guide the reader through"
        " reading, meditation, prayer and contemplation. Prefer fewer, more"
        " personal reflection questions."
    ),
    "sermon": (
        "SERMON OUTLINE: structure the interpretation as a preachable outline"
        " with a main idea, points and application, suitable for a 30 minute"
        " sermon. 8 related verses."
    ),
}

INPUT_DESCRIPTIONS = {
    "scripture": "the Bible passage {value}",
    "topic": "the topic \"{value}\"",
    "question": "the question \"{value}\"",
}


def _language_block(config: LanguageConfig) -> str:
    return (
        f"LANGUAGE: {config.name}\n"
        f"{config.language_instruction}\n"
        f"{config.complexity_instruction}\n"
        f"Cultural context: {config.cultural_context}"
    )


def create_study_guide_prompt(
    study_input: StudyGuideInput, config: LanguageConfig
) -> tuple[str, str]:
    """Returns the (system, user) messages for a study guide request."""
    system_message = "\n\n".join(
        [
            JSON_OUTPUT_RULES,
            "You are a careful Bible teacher writing study guides for small"
            " groups and personal devotion.",
            THEOLOGICAL_FOUNDATION,
            _language_block(config),
        ]
    )

    subject = INPUT_DESCRIPTIONS[study_input.input_type].format(
        value=study_input.input_value
    )
    parts = [f"Create a Bible study guide on {subject}."]
    if study_input.topic_description:
        parts.append(f"Additional context from the reader: {study_input.topic_description}")
    parts.append(MODE_INSTRUCTIONS.get(study_input.study_mode, MODE_INSTRUCTIONS["standard"]))
    parts.append(
        "Write every field in "
        f"{config.name}. Each *Question field is a short follow-up question a"
        " reader might ask about that section."
    )
    parts.append(OUTPUT_SCHEMA)
    return system_message, "\n\n".join(parts)
