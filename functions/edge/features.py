"""
Feature flags gating study modes by subscription plan.
"""

from __future__ import annotations

import logging

from edge.cache import TtlCache, get_or_load
from edge.db import DbClient, FeatureFlag

logger = logging.getLogger(__name__)

FEATURE_FLAGS_CACHE_KEY = "feature_flags"

STUDY_MODE_FEATURES = {
    "quick": "quick_read_mode",
    "standard": "standard_study_mode",
    "deep": "deep_dive_mode",
    "lectio": "lectio_divina_mode",
    "sermon": "sermon_outline_mode",
}


class FeatureFlagService:
    def __init__(self, db: DbClient, cache: TtlCache, ttl_seconds: int | None = None):
        self.db = db
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def _flags(self) -> dict[str, dict]:
        return get_or_load(
            self.cache,
            FEATURE_FLAGS_CACHE_KEY,
            lambda: {k: f.as_dict() for k, f in self.db.get_feature_flags().items()},
            self.ttl_seconds,
        )

    def is_feature_enabled_for_plan(self, feature_key: str, plan: str) -> bool:
        flag = self._flags().get(feature_key)
        if flag is None:
            # Features without a stored flag are on for everyone.
            return True
        flag = FeatureFlag(**flag)
        return flag.is_enabled and plan in flag.enabled_for_plans

    def is_study_mode_enabled(self, mode: str, plan: str) -> bool:
        feature_key = STUDY_MODE_FEATURES.get(mode)
        if feature_key is None:
            return False
        enabled = self.is_feature_enabled_for_plan(feature_key, plan)
        if not enabled:
            logger.info("Study mode %s is not available on plan %s", mode, plan)
        return enabled

    def invalidate(self) -> None:
        self.cache.delete(FEATURE_FLAGS_CACHE_KEY)
