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
"""
Study guide generation: cache lookup, token accounting, LLM call and save.

`StudyGuideGenerator.stream` produces the server-sent events of the streaming
endpoint; `StudyGuideGenerator.generate` is the request/response variant.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from edge.db import DbClient, UsageRecord
from edge.errors import AppError, categorize_error
from edge.tokens import TokenService, calculate_token_cost
from models.llm_service import LLMService, validate_study_guide
from models.llm_types import (
    ANTHROPIC,
    LLMConfigurationError,
    LLMContentFilterException,
    LLMInvalidResponseException,
    LLMProviderError,
)
from shared.api import LLMUsage, ParsedSection, StudyGuide, StudyGuideInput, UserContext
from shared.json_utils import convert_keys, parse_json_safely
from study_guides.streaming_parser import (
    ARRAY_SECTIONS,
    REQUIRED_SECTIONS,
    SECTION_ORDER,
    StreamingJsonParser,
    create_complete_event,
    create_error_event,
    create_init_event,
    create_section_event,
    extract_sections,
)

logger = logging.getLogger(__name__)

KEEPALIVE = ": keepalive\n\n"
KEEPALIVE_INTERVAL_SECONDS = 15.0
FEATURE_NAME = "study_generation"

PARSE_FAILED_CODE = "LM-E-002"
GENERATION_FAILED_CODE = "LM-E-001"


@dataclass
class GenerationResult:
    study_guide: StudyGuide
    tokens_consumed: int
    from_cache: bool


def _is_creator(guide: StudyGuide, user_context: UserContext) -> bool:
    if user_context.user_id and guide.creator_user_id == user_context.user_id:
        return True
    return bool(
        user_context.session_id and guide.creator_session_id == user_context.session_id
    )


def cached_sections(guide: StudyGuide) -> List[ParsedSection]:
    """The sections of a saved guide, in stream order, skipping absent ones."""
    content = convert_keys(asdict(guide.content), "snake_to_camel")
    sections = []
    for index, name in enumerate(SECTION_ORDER):
        value = content.get(name)
        if name not in REQUIRED_SECTIONS and not value:
            continue
        if value is None:
            value = [] if name in ARRAY_SECTIONS else ""
        sections.append(ParsedSection(type=name, content=value, index=index))
    return sections


def _finalize(parser: StreamingJsonParser) -> Optional[Dict[str, Any]]:
    """Combines the incremental result with a full parse of the buffer."""
    content = parser.parsed_data
    if not parser.is_complete():
        full = parser.try_parse_complete()
        if full is None:
            try:
                repaired = parse_json_safely(parser.buffer)
            except json.JSONDecodeError:
                logger.warning("Could not repair streamed response")
                repaired = None
            if isinstance(repaired, dict):
                full = extract_sections(repaired)
        content = {**(full or {}), **content}

    try:
        validate_study_guide(content)
    except LLMInvalidResponseException as e:
        logger.warning("Streamed study guide is incomplete: %s", e)
        return None
    return content


class StudyGuideGenerator:
    def __init__(
        self,
        llm_service: LLMService,
        db: DbClient,
        token_service: TokenService,
        clock: Callable[[], float] = time.monotonic,
        keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS,
    ):
        self.llm_service = llm_service
        self.db = db
        self.token_service = token_service
        self.clock = clock
        self.keepalive_interval = keepalive_interval

    def _charge(self, user_context: UserContext, user_plan: str, token_cost: int) -> int:
        if self.token_service.is_unlimited_plan(user_plan):
            return 0
        self.token_service.consume_tokens(user_context.identifier, user_plan, token_cost)
        return token_cost

    def _log_usage(
        self,
        user_context: UserContext,
        user_plan: str,
        operation: str,
        tokens_consumed: int,
        usage: Optional[LLMUsage] = None,
    ) -> None:
        record = UsageRecord(
            feature_name=FEATURE_NAME,
            operation_type=operation,
            tier=user_plan,
            user_id=user_context.user_id,
            tokens_consumed=tokens_consumed,
        )
        if usage is not None:
            record.llm_provider = usage.provider or None
            record.llm_model = usage.model or None
            record.llm_input_tokens = usage.input_tokens
            record.llm_output_tokens = usage.output_tokens
        try:
            self.db.log_usage(record)
        except SQLAlchemyError:
            logger.warning("Failed to log usage for %s", operation, exc_info=True)

    def stream(
        self,
        study_input: StudyGuideInput,
        user_context: UserContext,
        user_plan: str,
    ) -> Iterator[str]:
        """Yields the SSE stream for one study guide request."""
        yield KEEPALIVE
        try:
            yield from self._stream(study_input, user_context, user_plan)
        except AppError as e:
            logger.warning("Study guide stream failed: %s %s", e.code, e.message)
            yield create_error_event(e.code, e.message, e.retryable)
        except Exception as e:
            logger.exception("Study guide stream failed")
            yield create_error_event(
                GENERATION_FAILED_CODE, categorize_error(e).message, True
            )

    def _stream(
        self,
        study_input: StudyGuideInput,
        user_context: UserContext,
        user_plan: str,
    ) -> Iterator[str]:
        token_cost = calculate_token_cost(study_input.language, study_input.study_mode)

        cached = self.db.find_study_guide(study_input)
        if cached is not None:
            yield from self._stream_cached(cached, user_context, user_plan, token_cost)
            return

        try:
            tokens_consumed = self._charge(user_context, user_plan, token_cost)
        except AppError as e:
            if e.code != "INSUFFICIENT_TOKENS":
                raise
            yield create_error_event("TOKEN_LIMIT_EXCEEDED", e.message, False)
            return

        parser = StreamingJsonParser()
        usage = LLMUsage()
        yield create_init_event("started", parser.total_sections)
        yield from self._stream_sections(parser, study_input, user_plan, usage)

        content = _finalize(parser)
        if content is None:
            yield create_error_event(
                PARSE_FAILED_CODE, "Failed to parse study guide response", True
            )
            return

        for index, name in enumerate(SECTION_ORDER):
            if name in content and not parser.has_emitted(name):
                section = ParsedSection(type=name, content=content[name], index=index)
                yield create_section_event(section, parser.total_sections)

        guide = self.db.save_study_guide(study_input, content, user_context)
        self._log_usage(user_context, user_plan, "generate", tokens_consumed, usage)
        logger.info(
            "Generated study guide %s (%s, %s, %d LLM tokens)",
            guide.id,
            study_input.language,
            study_input.study_mode,
            usage.total_tokens,
        )
        yield create_complete_event(guide.id, tokens_consumed, False)

    def _stream_cached(
        self,
        guide: StudyGuide,
        user_context: UserContext,
        user_plan: str,
        token_cost: int,
    ) -> Iterator[str]:
        tokens_consumed = 0
        if not _is_creator(guide, user_context):
            try:
                tokens_consumed = self._charge(user_context, user_plan, token_cost)
            except AppError as e:
                if e.code != "INSUFFICIENT_TOKENS":
                    raise
                yield create_error_event("TOKEN_LIMIT_EXCEEDED", e.message, False)
                return

        sections = cached_sections(guide)
        yield create_init_event("cache_hit", len(sections))
        for section in sections:
            yield create_section_event(section, len(sections))
        self._log_usage(user_context, user_plan, "cache_hit", tokens_consumed)
        yield create_complete_event(guide.id, tokens_consumed, True)

    def _stream_sections(
        self,
        parser: StreamingJsonParser,
        study_input: StudyGuideInput,
        user_plan: str,
        usage: LLMUsage,
    ) -> Iterator[str]:
        force_provider = None
        for attempt in range(2):
            last_sent = self.clock()
            try:
                for chunk in self.llm_service.stream_study_guide(
                    study_input, tier=user_plan, force_provider=force_provider, usage=usage
                ):
                    for section in parser.add_chunk(chunk):
                        yield create_section_event(section, parser.total_sections)
                        last_sent = self.clock()
                    if self.clock() - last_sent >= self.keepalive_interval:
                        yield KEEPALIVE
                        last_sent = self.clock()
                return
            except LLMContentFilterException:
                if attempt:
                    raise
                logger.warning("Content filter triggered, retrying with %s", ANTHROPIC)
                parser.reset()
                force_provider = ANTHROPIC

    def generate(
        self,
        study_input: StudyGuideInput,
        user_context: UserContext,
        user_plan: str,
    ) -> GenerationResult:
        """
        Returns a saved study guide for study_input, generating it if needed.

        Raises:
            AppError: INSUFFICIENT_TOKENS when the caller can't pay, or
                LLM_SERVICE_ERROR when no provider produced a valid guide.
        """
        token_cost = calculate_token_cost(study_input.language, study_input.study_mode)

        cached = self.db.find_study_guide(study_input)
        if cached is not None:
            tokens_consumed = 0
            if not _is_creator(cached, user_context):
                tokens_consumed = self._charge(user_context, user_plan, token_cost)
            self._log_usage(user_context, user_plan, "cache_hit", tokens_consumed)
            return GenerationResult(cached, tokens_consumed, True)

        tokens_consumed = self._charge(user_context, user_plan, token_cost)
        try:
            content, usage = self.llm_service.generate_study_guide(
                study_input, tier=user_plan
            )
        except (
            LLMProviderError,
            LLMInvalidResponseException,
            LLMConfigurationError,
        ) as e:
            logger.error("Study guide generation failed: %s", e)
            raise AppError(
                "LLM_SERVICE_ERROR", "Failed to generate study guide", 503
            ) from e

        guide = self.db.save_study_guide(study_input, content, user_context)
        self._log_usage(user_context, user_plan, "generate", tokens_consumed, usage)
        return GenerationResult(guide, tokens_consumed, False)
