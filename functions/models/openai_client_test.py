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

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

import openai

from models import openai_client
from models.llm_types import (
    CompletionRequest,
    LLMContentFilterException,
    LLMProviderError,
)
from models.openai_client import OpenAIClient
from shared.api import LLMUsage


def _request(**kwargs):
    return CompletionRequest(
        system_message="system",
        user_message="user",
        temperature=0.3,
        max_tokens=3000,
        **kwargs,
    )


def _chunk(content=None, finish_reason=None, usage=None, empty=False):
    choices = [] if empty else [
        SimpleNamespace(
            delta=SimpleNamespace(content=content), finish_reason=finish_reason
        )
    ]
    return SimpleNamespace(choices=choices, usage=usage)


class OpenAIClientTest(unittest.TestCase):

    def setUp(self):
        self.sdk = MagicMock()
        self.client = OpenAIClient("sk-test", client=self.sdk)

    def test_select_model(self):
        self.assertEqual(openai_client.select_model("en"), openai_client.DEFAULT_MODEL)
        self.assertEqual(
            openai_client.select_model("en", "premium"),
            openai_client.PREMIUM_ENGLISH_MODEL,
        )
        self.assertEqual(
            openai_client.select_model("hi", "premium"), openai_client.DEFAULT_MODEL
        )

    def test_complete_requests_json_object(self):
        self.sdk.chat.completions.create.return_value = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    finish_reason="stop",
                    message=SimpleNamespace(content='{"summary": "x"}'),
                )
            ],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=4),
        )

        text, usage = self.client.complete(_request())

        self.assertEqual(text, '{"summary": "x"}')
        self.assertEqual((usage.input_tokens, usage.output_tokens), (3, 4))
        kwargs = self.sdk.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["presence_penalty"], 0.1)
        self.assertEqual(kwargs["frequency_penalty"], 0.1)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "system"})

    def test_empty_response_raises(self):
        self.sdk.chat.completions.create.return_value = SimpleNamespace(
            choices=[
                SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content=""))
            ],
            usage=None,
        )
        with self.assertRaises(LLMProviderError):
            self.client.complete(_request())

    def test_sdk_error_raises_provider_error(self):
        self.sdk.chat.completions.create.side_effect = openai.APIConnectionError(
            request=MagicMock()
        )
        with self.assertRaises(LLMProviderError):
            self.client.complete(_request())

    def test_stream_yields_content_and_usage(self):
        self.sdk.chat.completions.create.return_value = iter(
            [
                _chunk(content='{"sum'),
                _chunk(content=None),
                _chunk(content='mary"', finish_reason="stop"),
                _chunk(empty=True, usage=SimpleNamespace(prompt_tokens=10, completion_tokens=2)),
            ]
        )
        usage = LLMUsage()

        chunks = list(self.client.stream(_request(), usage=usage))

        self.assertEqual(chunks, ['{"sum', 'mary"'])
        self.assertEqual(usage.total_tokens, 12)
        kwargs = self.sdk.chat.completions.create.call_args.kwargs
        self.assertTrue(kwargs["stream"])

    def test_stream_content_filter(self):
        self.sdk.chat.completions.create.return_value = iter(
            [_chunk(content="{"), _chunk(finish_reason="content_filter")]
        )
        stream = self.client.stream(_request())
        self.assertEqual(next(stream), "{")
        with self.assertRaises(LLMContentFilterException):
            next(stream)


if __name__ == "__main__":
    unittest.main()
