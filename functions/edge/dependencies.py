"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends, Request

from edge.auth import AuthService, extract_api_key, extract_bearer_token
from edge.cache import InMemoryTtlCache, RedisTtlCache, TtlCache
from edge.config import get_settings
from edge.db import DbClient, InMemoryDbClient, PostgresDbClient
from edge.errors import AppError, configuration_error
from edge.features import FeatureFlagService
from edge.tokens import TokenService
from models.llm_service import LLMService
from models.llm_types import LLMConfigurationError
from shared.api import UserContext
from study_guides.generation import StudyGuideGenerator
from verses.bible_api import BibleApiClient

_db_client: DbClient | None = None
_cache: TtlCache | None = None
_llm_service: LLMService | None = None
_auth_service: AuthService | None = None
_bible_client: BibleApiClient | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so cached guides and balances persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_cache() -> TtlCache:
    global _cache
    if _cache:
        return _cache

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _cache = RedisTtlCache(
            url=settings.redis_url,
            key_prefix=settings.cache_key_prefix,
            default_ttl_seconds=settings.cache_ttl_seconds,
        )
    else:
        _cache = InMemoryTtlCache(default_ttl_seconds=settings.cache_ttl_seconds)
    return _cache


def get_llm_service() -> LLMService:
    global _llm_service
    if _llm_service:
        return _llm_service

    settings = get_settings()
    try:
        _llm_service = LLMService(
            openai_api_key=settings.openai_api_key,
            anthropic_api_key=settings.anthropic_api_key,
            provider=settings.llm_provider,
            use_mock=settings.use_mock_llm,
        )
    except LLMConfigurationError as e:
        raise AppError("CONFIGURATION_ERROR", str(e), 500) from e
    return _llm_service


def get_auth_service() -> AuthService:
    global _auth_service
    if _auth_service:
        return _auth_service

    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise configuration_error(["SUPABASE_URL", "SUPABASE_ANON_KEY"])
    _auth_service = AuthService(
        settings.supabase_url, settings.supabase_anon_key, get_db_client()
    )
    return _auth_service


def get_bible_client() -> BibleApiClient:
    global _bible_client
    if _bible_client:
        return _bible_client

    settings = get_settings()
    if not settings.bible_api_key:
        raise configuration_error(["BIBLE_API_KEY"])
    _bible_client = BibleApiClient(settings.bible_api_key)
    return _bible_client


def get_token_service(db: DbClient = Depends(get_db_client)) -> TokenService:
    return TokenService(db)


def get_feature_flag_service(
    db: DbClient = Depends(get_db_client), cache: TtlCache = Depends(get_cache)
) -> FeatureFlagService:
    return FeatureFlagService(db, cache, get_settings().cache_ttl_seconds)


def get_study_guide_generator(
    llm_service: LLMService = Depends(get_llm_service),
    db: DbClient = Depends(get_db_client),
    token_service: TokenService = Depends(get_token_service),
) -> StudyGuideGenerator:
    return StudyGuideGenerator(llm_service, db, token_service)


def get_user_context(
    request: Request, auth: AuthService = Depends(get_auth_service)
) -> UserContext:
    """Authenticates the caller from the bearer token and apikey of the request."""
    return auth.get_user_context(extract_bearer_token(request), extract_api_key(request))
