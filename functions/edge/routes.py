"""
HTTP routes for the edge functions API.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

import requests
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from edge.auth import AuthService
from edge.db import DbClient, FeedbackRecord
from edge.dependencies import (
    get_auth_service,
    get_bible_client,
    get_db_client,
    get_feature_flag_service,
    get_study_guide_generator,
    get_token_service,
    get_user_context,
)
from edge.errors import AppError, validation_error
from edge.features import FeatureFlagService
from edge.schemas import (
    FeedbackRequest,
    FeedbackResponse,
    FetchVerseResponse,
    StudyGenerateData,
    StudyGenerateRequest,
    StudyGenerateResponse,
    StudyGuideResponse,
    TokenStatus,
    TokenStatusResponse,
    VerseResponse,
)
from edge.tokens import TokenService
from shared.api import (
    INPUT_TYPES,
    STUDY_MODES,
    SUPPORTED_LANGUAGES,
    StudyGuide,
    StudyGuideInput,
    UserContext,
)
from shared.json_utils import convert_keys
from study_guides.generation import StudyGuideGenerator
from verses.bible_api import BibleApiClient, BibleApiError

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_INPUT_LENGTH = 500
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _study_input(
    input_type: str,
    input_value: str,
    language: str,
    mode: str,
    topic_description: str | None = None,
) -> StudyGuideInput:
    if input_type not in INPUT_TYPES:
        raise validation_error(f"must be one of {', '.join(INPUT_TYPES)}", "input_type")
    value = (input_value or "").strip()
    if not value:
        raise validation_error("is required", "input_value")
    if len(value) > MAX_INPUT_LENGTH:
        raise validation_error(
            f"must be at most {MAX_INPUT_LENGTH} characters", "input_value"
        )
    if language not in SUPPORTED_LANGUAGES:
        raise validation_error(
            f"must be one of {', '.join(SUPPORTED_LANGUAGES)}", "language"
        )
    if mode not in STUDY_MODES:
        raise validation_error(f"must be one of {', '.join(STUDY_MODES)}", "mode")
    return StudyGuideInput(
        input_type=input_type,
        input_value=value,
        language=language,
        study_mode=mode,
        topic_description=(topic_description or "").strip() or None,
    )


def _require_study_mode(features: FeatureFlagService, mode: str, plan: str) -> None:
    if not features.is_study_mode_enabled(mode, plan):
        raise AppError(
            "FEATURE_NOT_AVAILABLE",
            f"The {mode} study mode is not available on the {plan} plan",
            403,
        )


def _study_guide_response(guide: StudyGuide) -> StudyGuideResponse:
    return StudyGuideResponse(
        id=guide.id,
        input_type=guide.input.input_type,
        input_value=guide.input.input_value,
        topic_description=guide.input.topic_description,
        language=guide.input.language,
        study_mode=guide.input.study_mode,
        content=convert_keys(asdict(guide.content), "snake_to_camel"),
        created_at=guide.created_at,
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/study-generate-v2")
def study_generate_stream(
    input_type: str = "",
    input_value: str = "",
    language: str = "en",
    mode: str = "standard",
    topic_description: str | None = None,
    user_context: UserContext = Depends(get_user_context),
    auth: AuthService = Depends(get_auth_service),
    features: FeatureFlagService = Depends(get_feature_flag_service),
    generator: StudyGuideGenerator = Depends(get_study_guide_generator),
):
    """
    Streams a study guide as server-sent events.

    EventSource can't send headers, so the token may also arrive in the
    `authorization` query parameter.
    """
    study_input = _study_input(input_type, input_value, language, mode, topic_description)
    plan = auth.get_user_plan(user_context)
    _require_study_mode(features, study_input.study_mode, plan)
    return StreamingResponse(
        generator.stream(study_input, user_context, plan),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/study-generate", response_model=StudyGenerateResponse)
def study_generate(
    payload: StudyGenerateRequest,
    user_context: UserContext = Depends(get_user_context),
    auth: AuthService = Depends(get_auth_service),
    features: FeatureFlagService = Depends(get_feature_flag_service),
    generator: StudyGuideGenerator = Depends(get_study_guide_generator),
):
    study_input = _study_input(
        payload.input_type,
        payload.input_value,
        payload.language,
        payload.mode,
        payload.topic_description,
    )
    plan = auth.get_user_plan(user_context)
    _require_study_mode(features, study_input.study_mode, plan)
    result = generator.generate(study_input, user_context, plan)
    return StudyGenerateResponse(
        data=StudyGenerateData(
            study_guide=_study_guide_response(result.study_guide),
            from_cache=result.from_cache,
            tokens_consumed=result.tokens_consumed,
        )
    )


@router.get("/fetch-verse", response_model=FetchVerseResponse)
def fetch_verse(
    reference: str = "",
    language: str = "en",
    bible: BibleApiClient = Depends(get_bible_client),
):
    """Fetches a verse in one language, or in all of them with language=all."""
    if not reference.strip():
        raise validation_error("is required", "reference")
    if language != "all" and language not in SUPPORTED_LANGUAGES:
        raise validation_error(
            f"must be one of {', '.join(SUPPORTED_LANGUAGES)} or all", "language"
        )

    try:
        if language == "all":
            verses = bible.fetch_verse_all_languages(reference)
            data = {lang: VerseResponse(**asdict(v)) for lang, v in verses.items()}
        else:
            data = VerseResponse(**asdict(bible.fetch_verse(reference, language)))
    except ValueError as e:
        raise validation_error(str(e), "reference") from e
    except BibleApiError as e:
        if e.status_code in (None, 404):
            raise AppError("VERSE_NOT_FOUND", f"Verse not found: {reference}", 404) from e
        logger.error("Bible API failed for %s: %s", reference, e)
        raise AppError(
            "BIBLE_API_ERROR", "Bible text service temporarily unavailable", 503
        ) from e
    except requests.exceptions.RequestException as e:
        logger.error("Bible API unreachable for %s: %s", reference, e)
        raise AppError("NETWORK_ERROR", "Network error. Please try again.", 503) from e

    return FetchVerseResponse(data=data)


@router.get("/token-status", response_model=TokenStatusResponse)
def token_status(
    user_context: UserContext = Depends(get_user_context),
    auth: AuthService = Depends(get_auth_service),
    tokens: TokenService = Depends(get_token_service),
):
    plan = auth.get_user_plan(user_context)
    balance = tokens.get_user_tokens(user_context.identifier, plan)
    return TokenStatusResponse(
        data=TokenStatus(**balance.as_dict(), is_unlimited=tokens.is_unlimited_plan(plan))
    )


@router.post("/feedback", response_model=FeedbackResponse, status_code=201)
def submit_feedback(
    payload: FeedbackRequest,
    user_context: UserContext = Depends(get_user_context),
    db: DbClient = Depends(get_db_client),
):
    message = (payload.message or "").strip() or None
    if not payload.study_guide_id and not message:
        raise validation_error("a study guide or a message is required", "feedback")
    db.save_feedback(
        FeedbackRecord(
            was_helpful=payload.was_helpful,
            study_guide_id=payload.study_guide_id,
            user_id=user_context.user_id,
            message=message,
            category=payload.category,
        )
    )
    return FeedbackResponse(message="Thank you for your feedback!")
