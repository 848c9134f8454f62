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

import logging
from typing import Iterator, Optional

import openai

from models.llm_types import (
    OPENAI,
    CompletionRequest,
    LLMContentFilterException,
    LLMProviderError,
)
from shared.api import LLMUsage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini-2024-07-18"
PREMIUM_ENGLISH_MODEL = "gpt-4.1-mini-2025-04-14"
REQUEST_TIMEOUT = 60
PRESENCE_PENALTY = 0.1
FREQUENCY_PENALTY = 0.1


def select_model(language: str, tier: str | None = None) -> str:
    if language == "en" and tier == "premium":
        return PREMIUM_ENGLISH_MODEL
    return DEFAULT_MODEL


class OpenAIClient:
    """Chat completions through the OpenAI SDK."""

    provider = OPENAI

    def __init__(self, api_key: str, client: openai.OpenAI | None = None):
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required for OpenAIClient")
        self.client = client or openai.OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT)

    def _create(self, request: CompletionRequest, model: str, **kwargs):
        params = dict(
            model=model,
            messages=[
                {"role": "system", "content": request.system_message},
                {"role": "user", "content": request.user_message},
            ],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            presence_penalty=PRESENCE_PENALTY,
            frequency_penalty=FREQUENCY_PENALTY,
        )
        if request.json_mode:
            params["response_format"] = {"type": "json_object"}
        params.update(kwargs)
        try:
            return self.client.chat.completions.create(**params)
        except openai.APIStatusError as e:
            raise LLMProviderError(OPENAI, str(e), status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise LLMProviderError(OPENAI, str(e)) from e

    def complete(self, request: CompletionRequest) -> tuple[str, LLMUsage]:
        model = request.model or select_model(request.language, request.tier)
        response = self._create(request, model)

        choice = response.choices[0] if response.choices else None
        if choice is not None and choice.finish_reason == "content_filter":
            raise LLMContentFilterException(OPENAI, "response blocked by content filter")
        content = choice.message.content if choice is not None else None
        if not content:
            raise LLMProviderError(OPENAI, "empty response")

        usage = LLMUsage(provider=OPENAI, model=model)
        if response.usage:
            usage.input_tokens = response.usage.prompt_tokens
            usage.output_tokens = response.usage.completion_tokens
        return content, usage

    def stream(
        self, request: CompletionRequest, usage: Optional[LLMUsage] = None
    ) -> Iterator[str]:
        model = request.model or select_model(request.language, request.tier)
        if usage is not None:
            usage.provider = OPENAI
            usage.model = model

        stream = self._create(
            request, model, stream=True, stream_options={"include_usage": True}
        )
        try:
            for chunk in stream:
                if chunk.usage and usage is not None:
                    usage.input_tokens = chunk.usage.prompt_tokens
                    usage.output_tokens = chunk.usage.completion_tokens
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason == "content_filter":
                    raise LLMContentFilterException(
                        OPENAI, "response blocked by content filter"
                    )
                if choice.delta and choice.delta.content:
                    yield choice.delta.content
        except openai.OpenAIError as e:
            raise LLMProviderError(OPENAI, f"stream interrupted: {e}") from e
