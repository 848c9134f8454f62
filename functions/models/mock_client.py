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
"""Offline client returning a canned study guide, for local development."""

import json
from typing import Iterator, Optional

from models.llm_types import CompletionRequest
from shared.api import LLMUsage

MOCK_PROVIDER = "mock"
STREAM_CHUNK_SIZE = 24

MOCK_STUDY_GUIDE = {
    "summary": (
        "John 3:16 declares that God's love for the world moved Him to give"
        " His only Son, so that everyone who believes in Him has eternal life."
    ),
    "interpretation": (
        "Jesus tells Nicodemus that salvation is God's gift, not a human"
        " achievement. The Father's love is the source, the Son's sacrifice is"
        " the means, and faith is how we receive it."
    ),
    "context": (
        "Jesus speaks at night with Nicodemus, a Pharisee and member of the"
        " Jewish ruling council, about being born again."
    ),
    "relatedVerses": [
        "Romans 5:8",
        "1 John 4:9-10",
        "Ephesians 2:8-9",
        "John 1:12",
        "Romans 6:23",
    ],
    "reflectionQuestions": [
        "What does this verse show you about God's character?",
        "What does it mean for you to believe in Jesus?",
        "How can you share this love with someone this week?",
    ],
    "prayerPoints": [
        "Thank God for His love shown in Jesus.",
        "Ask for faith that trusts Him fully.",
        "Pray for a friend who needs to hear this good news.",
    ],
    "interpretationInsights": [
        "God's love reaches the whole world.",
        "Eternal life is received, not earned.",
    ],
    "summaryInsights": ["Love gives", "Faith receives"],
    "reflectionAnswers": [
        "God is loving and generous.",
        "Trusting Him with my life and future.",
    ],
    "contextQuestion": "Why did Nicodemus come to Jesus at night?",
    "summaryQuestion": "What is the gift God gave?",
    "relatedVersesQuestion": "How does Romans 5:8 echo this verse?",
    "reflectionQuestion": "Where do you need to trust God's love today?",
    "prayerQuestion": "Who will you pray for this week?",
}


class MockLLMClient:
    def __init__(self, provider: str = MOCK_PROVIDER, study_guide: dict | None = None):
        self.provider = provider
        self.study_guide = study_guide or MOCK_STUDY_GUIDE

    def _text(self) -> str:
        return json.dumps(self.study_guide, ensure_ascii=False)

    def complete(self, request: CompletionRequest) -> tuple[str, LLMUsage]:
        text = self._text()
        return text, LLMUsage(provider=self.provider, model="mock", output_tokens=len(text) // 4)

    def stream(
        self, request: CompletionRequest, usage: Optional[LLMUsage] = None
    ) -> Iterator[str]:
        text = self._text()
        if usage is not None:
            usage.provider = self.provider
            usage.model = "mock"
            usage.output_tokens = len(text) // 4
        for start in range(0, len(text), STREAM_CHUNK_SIZE):
            yield text[start : start + STREAM_CHUNK_SIZE]
