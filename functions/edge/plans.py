"""
Subscription plans and their daily token allowances.
"""

from __future__ import annotations

from dataclasses import dataclass

FREE = "free"
STANDARD = "standard"
PLUS = "plus"
PREMIUM = "premium"

UNLIMITED_TOKENS = 999_999_999


@dataclass(frozen=True)
class PlanConfig:
    daily_limit: int
    is_unlimited: bool = False


PLAN_CONFIGS = {
    FREE: PlanConfig(daily_limit=8),
    STANDARD: PlanConfig(daily_limit=20),
    PLUS: PlanConfig(daily_limit=50),
    PREMIUM: PlanConfig(daily_limit=UNLIMITED_TOKENS, is_unlimited=True),
}


def get_plan_config(plan: str) -> PlanConfig:
    return PLAN_CONFIGS.get(plan, PLAN_CONFIGS[FREE])


def is_unlimited_plan(plan: str) -> bool:
    return get_plan_config(plan).is_unlimited


def plan_from_plan_type(plan_type: str | None) -> str:
    """Maps a subscription plan_type such as 'plus_monthly' onto a plan."""
    normalized = (plan_type or "").lower()
    for plan in (PREMIUM, PLUS, STANDARD):
        if normalized.startswith(plan):
            return plan
    return FREE
