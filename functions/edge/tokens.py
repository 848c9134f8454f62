"""
Token accounting on top of the hosted token stored procedures.
"""

from __future__ import annotations

import logging
import math
import re

from sqlalchemy.exc import SQLAlchemyError

from edge.db import DbClient, TokenBalance, TokenConsumption
from edge.errors import AppError, validation_error
from edge.plans import PLAN_CONFIGS, is_unlimited_plan

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_COST = 10
LANGUAGE_TOKEN_COSTS = {"en": 10, "hi": 15, "ml": 15}
MODE_MULTIPLIERS = {
    "quick": 0.5,
    "standard": 1.0,
    "deep": 1.5,
    "lectio": 1.2,
    "sermon": 2.0,
}

MAX_IDENTIFIER_LENGTH = 255
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-:.@]+$")


def calculate_token_cost(language: str, study_mode: str = "standard") -> int:
    base = LANGUAGE_TOKEN_COSTS.get(language, DEFAULT_TOKEN_COST)
    return math.ceil(base * MODE_MULTIPLIERS.get(study_mode, 1.0))


def _validate_identifier(identifier: str) -> None:
    if not identifier or len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise validation_error("must be 1-255 characters", "identifier")
    if not _IDENTIFIER_PATTERN.match(identifier):
        raise validation_error("contains invalid characters", "identifier")


def _validate_plan(user_plan: str) -> None:
    if user_plan not in PLAN_CONFIGS:
        raise validation_error(f"unknown plan {user_plan}", "user_plan")


class TokenService:
    def __init__(self, db: DbClient):
        self.db = db

    def get_user_tokens(self, identifier: str, user_plan: str) -> TokenBalance:
        _validate_identifier(identifier)
        _validate_plan(user_plan)
        try:
            return self.db.get_or_create_user_tokens(identifier, user_plan)
        except SQLAlchemyError as e:
            logger.exception("Token balance lookup failed")
            raise AppError(
                "TOKEN_SERVICE_ERROR", "Failed to retrieve token information", 500
            ) from e

    def consume_tokens(
        self, identifier: str, user_plan: str, token_cost: int
    ) -> TokenConsumption:
        """Deducts token_cost, raising INSUFFICIENT_TOKENS (429) when short."""
        _validate_identifier(identifier)
        _validate_plan(user_plan)
        if token_cost <= 0:
            raise validation_error("must be positive", "token_cost")

        try:
            result = self.db.consume_user_tokens(identifier, user_plan, token_cost)
        except SQLAlchemyError as e:
            logger.exception("Token consumption failed")
            raise AppError("TOKEN_SERVICE_ERROR", "Failed to consume tokens", 500) from e

        if not result.success:
            raise AppError(
                "INSUFFICIENT_TOKENS",
                result.error_message
                or (
                    f"Insufficient tokens. Required: {token_cost},"
                    f" available: {result.available_tokens + result.purchased_tokens}"
                ),
                429,
            )
        logger.info(
            "Consumed %d tokens on plan %s (remaining daily=%d purchased=%d)",
            token_cost,
            user_plan,
            result.available_tokens,
            result.purchased_tokens,
        )
        return result

    @staticmethod
    def is_unlimited_plan(user_plan: str) -> bool:
        return is_unlimited_plan(user_plan)
