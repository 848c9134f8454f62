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

from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

from shared.api import LLMUsage

OPENAI = "openai"
ANTHROPIC = "anthropic"
PROVIDERS = (OPENAI, ANTHROPIC)


class LLMProviderError(Exception):
    """A provider call failed (HTTP error, empty response, network issue)."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.status_code = status_code


class LLMContentFilterException(LLMProviderError):
    pass


class LLMInvalidResponseException(Exception):
    pass


class LLMConfigurationError(Exception):
    pass


@dataclass
class CompletionRequest:
    """A single chat completion, independent of provider."""

    system_message: str
    user_message: str
    temperature: float
    max_tokens: int
    language: str = "en"
    json_mode: bool = True
    tier: Optional[str] = None
    model: Optional[str] = None


class LLMClient(Protocol):
    """Interface implemented by each provider client."""

    provider: str

    def complete(self, request: CompletionRequest) -> tuple[str, LLMUsage]:
        ...

    def stream(
        self, request: CompletionRequest, usage: Optional[LLMUsage] = None
    ) -> Iterator[str]:
        ...
