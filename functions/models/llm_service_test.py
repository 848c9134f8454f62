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

from models import language_configs
from models.llm_service import LLMService, sanitize_text
from models.llm_types import (
    ANTHROPIC,
    OPENAI,
    LLMConfigurationError,
    LLMInvalidResponseException,
    LLMProviderError,
)
from models.mock_client import MOCK_STUDY_GUIDE
from shared.api import LLMUsage, StudyGuideInput

GOOD_RESPONSE = json.dumps(MOCK_STUDY_GUIDE)


class FakeClient:
    """Replays scripted responses; an Exception entry is raised instead."""

    def __init__(self, provider, responses=None, chunks=None):
        self.provider = provider
        self.responses = list(responses or [])
        self.chunks = chunks
        self.requests = []

    def complete(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response, LLMUsage(provider=self.provider, model="fake", input_tokens=5, output_tokens=7)

    def stream(self, request, usage=None):
        self.requests.append(request)
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


def _input(language="en", **kwargs):
    return StudyGuideInput(
        input_type=kwargs.pop("input_type", "scripture"),
        input_value=kwargs.pop("input_value", "John 3:16"),
        language=language,
        **kwargs,
    )


class ProviderSelectionTest(unittest.TestCase):

    def test_requires_at_least_one_provider(self):
        with self.assertRaises(LLMConfigurationError):
            LLMService()

    def test_rejects_unknown_provider(self):
        with self.assertRaises(LLMConfigurationError):
            LLMService(provider="gemini", use_mock=True)

    def test_non_latin_languages_prefer_anthropic(self):
        service = LLMService(
            provider=OPENAI,
            clients={OPENAI: FakeClient(OPENAI), ANTHROPIC: FakeClient(ANTHROPIC)},
        )
        self.assertEqual(service.select_provider("hi"), ANTHROPIC)
        self.assertEqual(service.select_provider("ml"), ANTHROPIC)
        self.assertEqual(service.select_provider("en"), OPENAI)

    def test_english_uses_language_preference_without_configured_provider(self):
        service = LLMService(
            clients={OPENAI: FakeClient(OPENAI), ANTHROPIC: FakeClient(ANTHROPIC)}
        )
        self.assertEqual(service.primary_provider, ANTHROPIC)
        self.assertEqual(service.select_provider("en"), OPENAI)

    def test_uses_only_available_provider(self):
        service = LLMService(clients={OPENAI: FakeClient(OPENAI)})
        self.assertEqual(service.select_provider("hi"), OPENAI)
        self.assertIsNone(service.fallback_provider(OPENAI))

    def test_unsupported_language(self):
        service = LLMService(use_mock=True)
        with self.assertRaises(ValueError):
            service.select_provider("fr")


class TokenBudgetTest(unittest.TestCase):

    def test_calculate_optimal_tokens(self):
        en = language_configs.get_language_config("en")
        hi = language_configs.get_language_config("hi")
        self.assertEqual(
            language_configs.calculate_optimal_tokens("scripture", "John 3:16", "en", en),
            3000,
        )
        self.assertEqual(
            language_configs.calculate_optimal_tokens(
                "topic", "Eschatology in Revelation", "hi", hi
            ),
            5500,
        )
        self.assertEqual(
            language_configs.calculate_optimal_tokens("question", "x" * 60, "en", en),
            3500,
        )

    def test_budget_is_capped(self):
        config = language_configs.LanguageConfig(
            name="Test",
            model_preference=OPENAI,
            max_tokens=7800,
            temperature=0.3,
            language_instruction="",
            complexity_instruction="",
            cultural_context="",
        )
        self.assertEqual(
            language_configs.calculate_optimal_tokens("topic", "doctrine", "ml", config),
            language_configs.MAX_TOKEN_BUDGET,
        )

    def test_retry_adjustment(self):
        config = language_configs.get_language_config("en").adjusted_for_retry(2)
        self.assertAlmostEqual(config.temperature, 0.1)
        self.assertEqual(config.max_tokens, 4000)


class GenerateStudyGuideTest(unittest.TestCase):

    def test_falls_back_when_primary_fails(self):
        openai_client = FakeClient(OPENAI, [LLMProviderError(OPENAI, "boom", 500)])
        anthropic_client = FakeClient(ANTHROPIC, [GOOD_RESPONSE])
        service = LLMService(
            provider=OPENAI,
            clients={OPENAI: openai_client, ANTHROPIC: anthropic_client},
        )
        data, usage = service.generate_study_guide(_input())
        self.assertEqual(data["summary"], sanitize_text(MOCK_STUDY_GUIDE["summary"]))
        self.assertEqual(usage.provider, ANTHROPIC)
        self.assertEqual(len(anthropic_client.requests), 1)

    def test_reraises_without_fallback(self):
        client = FakeClient(OPENAI, [LLMProviderError(OPENAI, "boom", 500)])
        service = LLMService(clients={OPENAI: client})
        with self.assertRaises(LLMProviderError):
            service.generate_study_guide(_input())

    def test_retries_with_adjusted_parameters(self):
        client = FakeClient(OPENAI, ["not json at all", GOOD_RESPONSE])
        service = LLMService(clients={OPENAI: client})
        data, usage = service.generate_study_guide(_input())

        self.assertEqual(data["prayerPoints"], MOCK_STUDY_GUIDE["prayerPoints"])
        first, retry = client.requests
        self.assertAlmostEqual(retry.temperature, max(0.1, first.temperature - 0.1))
        self.assertEqual(retry.max_tokens, first.max_tokens + 500)
        self.assertEqual(usage.input_tokens, 10)

    def test_repairs_truncated_response_as_last_resort(self):
        truncated = GOOD_RESPONSE[: GOOD_RESPONSE.index('"interpretationInsights"') + 5]
        client = FakeClient(OPENAI, [truncated, truncated, truncated])
        service = LLMService(clients={OPENAI: client})
        data, _ = service.generate_study_guide(_input())
        self.assertEqual(data["relatedVerses"], MOCK_STUDY_GUIDE["relatedVerses"])
        self.assertEqual(len(client.requests), 3)

    def test_gives_up_after_max_attempts(self):
        client = FakeClient(OPENAI, ["nope", "still nope", "never"])
        service = LLMService(clients={OPENAI: client})
        with self.assertRaises(LLMInvalidResponseException) as ctx:
            service.generate_study_guide(_input())
        self.assertIn("after 3 attempts", str(ctx.exception))

    def test_rejects_empty_required_sections(self):
        bad = dict(MOCK_STUDY_GUIDE, prayerPoints=[])
        client = FakeClient(OPENAI, [json.dumps(bad)])
        service = LLMService(clients={OPENAI: client})
        with self.assertRaises(LLMInvalidResponseException):
            service.generate_study_guide(_input())

    def test_sanitize_text(self):
        self.assertEqual(sanitize_text("  a\n\n<b>bold</b>  "), "a bbold/b")
        self.assertEqual(len(sanitize_text("x" * 5000)), 2000)


class StreamStudyGuideTest(unittest.TestCase):

    def test_falls_back_before_first_chunk(self):
        openai_client = FakeClient(OPENAI, chunks=[LLMProviderError(OPENAI, "down")])
        anthropic_client = FakeClient(ANTHROPIC, chunks=["{", "}"])
        service = LLMService(
            provider=OPENAI,
            clients={OPENAI: openai_client, ANTHROPIC: anthropic_client},
        )
        self.assertEqual(list(service.stream_study_guide(_input())), ["{", "}"])

    def test_does_not_fall_back_after_output(self):
        openai_client = FakeClient(OPENAI, chunks=["{", LLMProviderError(OPENAI, "cut")])
        anthropic_client = FakeClient(ANTHROPIC, chunks=["{", "}"])
        service = LLMService(
            provider=OPENAI,
            clients={OPENAI: openai_client, ANTHROPIC: anthropic_client},
        )
        received = []
        with self.assertRaises(LLMProviderError):
            for chunk in service.stream_study_guide(_input()):
                received.append(chunk)
        self.assertEqual(received, ["{"])
        self.assertEqual(anthropic_client.requests, [])

    def test_force_provider(self):
        openai_client = FakeClient(OPENAI, chunks=["a"])
        anthropic_client = FakeClient(ANTHROPIC, chunks=["b"])
        service = LLMService(
            provider=OPENAI,
            clients={OPENAI: openai_client, ANTHROPIC: anthropic_client},
        )
        self.assertEqual(
            list(service.stream_study_guide(_input(), force_provider=ANTHROPIC)), ["b"]
        )

    def test_mock_stream_is_the_canned_guide(self):
        service = LLMService(use_mock=True)
        text = "".join(service.stream_study_guide(_input()))
        self.assertEqual(json.loads(text), MOCK_STUDY_GUIDE)


if __name__ == "__main__":
    unittest.main()
