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
import logging
from typing import Iterator, Optional

import requests

from models.llm_types import (
    ANTHROPIC,
    CompletionRequest,
    LLMContentFilterException,
    LLMProviderError,
)
from shared.api import LLMUsage

logger = logging.getLogger(__name__)

MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
REQUEST_TIMEOUT = 60
TOP_P = 0.9
TOP_K = 250

SONNET_MODEL = "claude-sonnet-4-20250514"
HAIKU_MODEL = "claude-haiku-4-5-20251001"


def select_model(language: str) -> str:
    if language in ("hi", "ml"):
        return SONNET_MODEL
    return HAIKU_MODEL


class AnthropicClient:
    """Messages API client over plain HTTP."""

    provider = ANTHROPIC

    def __init__(self, api_key: str, session: requests.Session | None = None):
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY is required for AnthropicClient")
        self.api_key = api_key
        self.session = session or requests.Session()

    def _payload(self, request: CompletionRequest, model: str, stream: bool) -> dict:
        user_message = request.user_message
        if request.json_mode:
            user_message += "\n\nRespond with the JSON object only."
        payload = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": TOP_P,
            "top_k": TOP_K,
            "system": request.system_message,
            "messages": [{"role": "user", "content": user_message}],
        }
        if stream:
            payload["stream"] = True
        return payload

    def _post(self, payload: dict, stream: bool = False) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        try:
            response = self.session.post(
                MESSAGES_URL,
                headers=headers,
                json=payload,
                timeout=REQUEST_TIMEOUT,
                stream=stream,
            )
        except requests.exceptions.RequestException as e:
            raise LLMProviderError(ANTHROPIC, f"request failed: {e}") from e

        if response.status_code != 200:
            raise LLMProviderError(
                ANTHROPIC,
                f"{response.status_code} - {response.text[:500]}",
                status_code=response.status_code,
            )
        return response

    def complete(self, request: CompletionRequest) -> tuple[str, LLMUsage]:
        model = request.model or select_model(request.language)
        data = self._post(self._payload(request, model, stream=False)).json()

        if data.get("stop_reason") == "refusal":
            raise LLMContentFilterException(ANTHROPIC, "response refused")
        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        if not text:
            raise LLMProviderError(ANTHROPIC, "empty response")

        usage_data = data.get("usage") or {}
        usage = LLMUsage(
            provider=ANTHROPIC,
            model=model,
            input_tokens=usage_data.get("input_tokens", 0),
            output_tokens=usage_data.get("output_tokens", 0),
        )
        return text, usage

    def stream(
        self, request: CompletionRequest, usage: Optional[LLMUsage] = None
    ) -> Iterator[str]:
        model = request.model or select_model(request.language)
        if usage is not None:
            usage.provider = ANTHROPIC
            usage.model = model

        response = self._post(self._payload(request, model, stream=True), stream=True)
        # Event streams are UTF-8 whatever the content type says.
        response.encoding = "utf-8"
        try:
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data: "):
                    continue
                try:
                    event = json.loads(line[len("data: ") :])
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed Anthropic stream line")
                    continue

                event_type = event.get("type")
                if event_type == "content_block_delta":
                    text = (event.get("delta") or {}).get("text")
                    if text:
                        yield text
                elif event_type == "message_start" and usage is not None:
                    message_usage = (event.get("message") or {}).get("usage") or {}
                    usage.input_tokens = message_usage.get("input_tokens", 0)
                elif event_type == "message_delta":
                    if (event.get("delta") or {}).get("stop_reason") == "refusal":
                        raise LLMContentFilterException(ANTHROPIC, "response refused")
                    if usage is not None:
                        delta_usage = event.get("usage") or {}
                        usage.output_tokens = delta_usage.get("output_tokens", 0)
                elif event_type == "message_stop":
                    return
                elif event_type == "error":
                    error = event.get("error") or {}
                    raise LLMProviderError(
                        ANTHROPIC, error.get("message", "stream error")
                    )
        except requests.exceptions.RequestException as e:
            raise LLMProviderError(ANTHROPIC, f"stream interrupted: {e}") from e
        finally:
            response.close()
