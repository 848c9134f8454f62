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
"""Provider selection, fallback and JSON retry around the LLM clients."""

import json
import logging
import re
from typing import Any, Dict, Iterator, Mapping, Optional

from models import prompts
from models.anthropic_client import AnthropicClient
from models.language_configs import (
    NON_LATIN_LANGUAGES,
    LanguageConfig,
    calculate_optimal_tokens,
    get_language_config,
)
from models.llm_types import (
    ANTHROPIC,
    OPENAI,
    PROVIDERS,
    CompletionRequest,
    LLMClient,
    LLMConfigurationError,
    LLMInvalidResponseException,
    LLMProviderError,
)
from models.mock_client import MockLLMClient
from models.openai_client import OpenAIClient
from shared.api import LLMUsage, StudyGuideInput
from shared.json_utils import clean_json_response, repair_truncated_json
from study_guides.streaming_parser import ARRAY_SECTIONS, REQUIRED_SECTIONS, SECTION_ORDER

logger = logging.getLogger(__name__)

MAX_PARSE_ATTEMPTS = 3
MAX_TEXT_LENGTH = 2000

_WHITESPACE = re.compile(r"\s+")
_ANGLE_BRACKETS = re.compile(r"[<>]")


def sanitize_text(text: str) -> str:
    cleaned = _WHITESPACE.sub(" ", text.strip())
    return _ANGLE_BRACKETS.sub("", cleaned)[:MAX_TEXT_LENGTH]


def validate_study_guide(data: Any) -> None:
    """Raises LLMInvalidResponseException unless all required sections are usable."""
    if not isinstance(data, dict):
        raise LLMInvalidResponseException("LLM response is not a JSON object")
    for name in REQUIRED_SECTIONS:
        value = data.get(name)
        if name in ARRAY_SECTIONS:
            if not isinstance(value, list) or not value:
                raise LLMInvalidResponseException(
                    f"Invalid or empty array field in LLM response: {name}"
                )
        elif not isinstance(value, str) or not value.strip():
            raise LLMInvalidResponseException(
                f"Invalid or empty string field in LLM response: {name}"
            )


def sanitize_study_guide(data: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for name in SECTION_ORDER:
        value = data.get(name)
        if name in ARRAY_SECTIONS:
            if isinstance(value, list):
                sanitized[name] = [
                    sanitize_text(item) for item in value if isinstance(item, str)
                ]
        elif isinstance(value, str):
            sanitized[name] = sanitize_text(value)
    return sanitized


class LLMService:
    """Chooses between the configured providers and returns parsed study guides."""

    def __init__(
        self,
        openai_api_key: str | None = None,
        anthropic_api_key: str | None = None,
        provider: str | None = None,
        use_mock: bool = False,
        clients: Optional[Mapping[str, LLMClient]] = None,
        max_attempts: int = MAX_PARSE_ATTEMPTS,
    ):
        if provider and provider not in PROVIDERS:
            raise LLMConfigurationError(f"Unknown LLM provider: {provider}")

        if clients is not None:
            self.clients: Dict[str, LLMClient] = dict(clients)
        elif use_mock:
            self.clients = {OPENAI: MockLLMClient(), ANTHROPIC: MockLLMClient()}
        else:
            self.clients = {}
            if openai_api_key:
                self.clients[OPENAI] = OpenAIClient(openai_api_key)
            if anthropic_api_key:
                self.clients[ANTHROPIC] = AnthropicClient(anthropic_api_key)

        if not self.clients:
            raise LLMConfigurationError(
                "No LLM providers available. Configure OPENAI_API_KEY or"
                " ANTHROPIC_API_KEY environment variables."
            )

        self.provider = provider
        self.max_attempts = max_attempts
        if provider in self.clients:
            self.primary_provider = provider
        elif ANTHROPIC in self.clients:
            self.primary_provider = ANTHROPIC
        else:
            self.primary_provider = OPENAI
        logger.info(
            "LLM service initialized: primary=%s available=%s",
            self.primary_provider,
            sorted(self.clients),
        )

    @property
    def available_providers(self) -> list[str]:
        return [p for p in PROVIDERS if p in self.clients]

    def select_provider(self, language: str) -> str:
        config = get_language_config(language)
        if language in NON_LATIN_LANGUAGES and ANTHROPIC in self.clients:
            return ANTHROPIC
        if self.provider in self.clients:
            return self.provider
        if config.model_preference in self.clients:
            return config.model_preference
        return self.primary_provider

    def fallback_provider(self, primary: str) -> str | None:
        for provider in self.available_providers:
            if provider != primary:
                return provider
        return None

    def _build_request(
        self,
        study_input: StudyGuideInput,
        config: LanguageConfig,
        tier: str | None,
    ) -> CompletionRequest:
        system_message, user_message = prompts.create_study_guide_prompt(
            study_input, config
        )
        return CompletionRequest(
            system_message=system_message,
            user_message=user_message,
            temperature=config.temperature,
            max_tokens=calculate_optimal_tokens(
                study_input.input_type,
                study_input.input_value,
                study_input.language,
                config,
            ),
            language=study_input.language,
            tier=tier,
        )

    def _complete_with_fallback(
        self, primary: str, request: CompletionRequest
    ) -> tuple[str, LLMUsage, str]:
        try:
            text, usage = self.clients[primary].complete(request)
            return text, usage, primary
        except LLMProviderError as e:
            fallback = self.fallback_provider(primary)
            if not fallback:
                raise
            logger.warning("%s call failed (%s), falling back to %s", primary, e, fallback)
            text, usage = self.clients[fallback].complete(request)
            return text, usage, fallback

    def generate_study_guide(
        self, study_input: StudyGuideInput, tier: str | None = None
    ) -> tuple[Dict[str, Any], LLMUsage]:
        config = get_language_config(study_input.language)
        provider = self.select_provider(study_input.language)
        request = self._build_request(study_input, config, tier)

        text, usage, provider = self._complete_with_fallback(provider, request)
        data = self._parse_with_retry(text, provider, study_input, config, tier, usage)
        validate_study_guide(data)
        return sanitize_study_guide(data), usage

    def _parse_with_retry(
        self,
        text: str,
        provider: str,
        study_input: StudyGuideInput,
        config: LanguageConfig,
        tier: str | None,
        usage: LLMUsage,
    ) -> Any:
        responses = [text]
        for attempt in range(1, self.max_attempts + 1):
            try:
                return json.loads(clean_json_response(responses[-1]))
            except json.JSONDecodeError as e:
                logger.warning(
                    "Attempt %d/%d: could not parse %s response (%s), length=%d",
                    attempt,
                    self.max_attempts,
                    provider,
                    e.msg,
                    len(responses[-1]),
                )
            if attempt == self.max_attempts:
                break

            retry_request = self._build_request(
                study_input, config.adjusted_for_retry(attempt), tier
            )
            try:
                retry_text, retry_usage = self.clients[provider].complete(retry_request)
            except LLMProviderError as e:
                logger.warning("Retry %d with %s failed: %s", attempt, provider, e)
                break
            usage.input_tokens += retry_usage.input_tokens
            usage.output_tokens += retry_usage.output_tokens
            responses.append(retry_text)

        for candidate in reversed(responses):
            try:
                data = json.loads(repair_truncated_json(clean_json_response(candidate)))
            except json.JSONDecodeError:
                continue
            logger.info("Recovered %s response with truncated-JSON repair", provider)
            return data

        raise LLMInvalidResponseException(
            f"Failed to parse LLM response after {len(responses)} attempts"
        )

    def stream_study_guide(
        self,
        study_input: StudyGuideInput,
        tier: str | None = None,
        force_provider: str | None = None,
        usage: Optional[LLMUsage] = None,
    ) -> Iterator[str]:
        """
        Yields raw text chunks of a study guide.

        Falls back to the other provider only if the first one fails before
        producing any output; once chunks have been yielded, errors propagate.
        """
        config = get_language_config(study_input.language)
        request = self._build_request(study_input, config, tier)

        if force_provider in self.clients:
            primary = force_provider
        else:
            if force_provider:
                logger.warning("Forced provider %s is not available", force_provider)
            primary = self.select_provider(study_input.language)

        providers = [primary]
        fallback = self.fallback_provider(primary)
        if fallback:
            providers.append(fallback)

        for position, provider in enumerate(providers):
            started = False
            try:
                for chunk in self.clients[provider].stream(request, usage=usage):
                    started = True
                    yield chunk
                return
            except LLMProviderError as e:
                if started or position == len(providers) - 1:
                    raise
                logger.warning(
                    "%s stream failed before output (%s), falling back to %s",
                    provider,
                    e,
                    providers[position + 1],
                )
