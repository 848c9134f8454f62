"""
Caller authentication against the hosted auth service, and plan resolution.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import requests
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from edge.db import DbClient
from edge.errors import AppError
from edge.plans import FREE, PREMIUM, plan_from_plan_type
from shared.api import UserContext

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
ACTIVE_SUBSCRIPTION_STATUSES = ("trial", "active", "authenticated", "pending_cancellation")


def extract_bearer_token(request: Request) -> Optional[str]:
    """
    Reads the caller's token from the Authorization header.

    EventSource clients can't set headers, so the `authorization` query
    parameter is accepted as well (with or without the Bearer prefix).
    """
    value = request.query_params.get("authorization") or request.headers.get(
        "authorization"
    )
    if not value:
        return None
    if value.lower().startswith("bearer "):
        value = value[len("bearer ") :]
    return value.strip() or None


def extract_api_key(request: Request) -> Optional[str]:
    """Reads the caller's `apikey`, query parameter first, then header."""
    value = request.query_params.get("apikey") or request.headers.get("apikey")
    if not value:
        return None
    return value.strip() or None


def _unauthorized_message(message: str) -> str:
    lowered = message.lower()
    if "expired" in lowered:
        return "Token has expired. Please sign in again."
    if "invalid" in lowered:
        return "Invalid authentication token"
    if "signature" in lowered:
        return "Token signature is invalid"
    return message or "Authentication failed"


def is_subscription_active(subscription: dict, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    status = subscription.get("status")
    if status in ACTIVE_SUBSCRIPTION_STATUSES:
        return True
    period_end = subscription.get("current_period_end")
    return bool(
        status == "cancelled"
        and subscription.get("cancel_at_cycle_end")
        and period_end
        and period_end > now
    )


class AuthService:
    """Validates bearer tokens with `GET {supabase_url}/auth/v1/user`."""

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        db: DbClient,
        session: requests.Session | None = None,
    ):
        self.user_url = f"{supabase_url.rstrip('/')}/auth/v1/user"
        self.anon_key = anon_key
        self.db = db
        self.session = session or requests.Session()

    def _fetch_user(self, token: str, api_key: str | None = None) -> dict:
        try:
            response = self.session.get(
                self.user_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": api_key or self.anon_key,
                },
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise AppError(
                "AUTHENTICATION_ERROR", f"Authentication failed: {e}", 401
            ) from e

        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = (
                body.get("msg")
                or body.get("message")
                or body.get("error_description")
                or response.text
            )
            raise AppError("UNAUTHORIZED", _unauthorized_message(message), 401)
        return response.json()

    def get_user_context(
        self, token: str | None, api_key: str | None = None
    ) -> UserContext:
        if not token:
            raise AppError("UNAUTHORIZED", "Authentication required", 401)

        user = self._fetch_user(token, api_key)
        user_id = user.get("id")
        if not user_id or not isinstance(user_id, str):
            raise AppError("UNAUTHORIZED", "Invalid user data in token", 401)

        if user.get("is_anonymous"):
            return UserContext(type="anonymous", session_id=user_id)

        user_type = "user"
        try:
            profile = self.db.get_user_profile(user_id)
            if profile and profile.get("is_admin"):
                user_type = "admin"
        except SQLAlchemyError:
            logger.warning("Failed to fetch user profile for %s", user_id, exc_info=True)
        return UserContext(type="authenticated", user_id=user_id, user_type=user_type)

    def get_user_plan(self, user_context: UserContext) -> str:
        """Resolves the caller's plan; lookup failures fall back to free."""
        if not user_context.is_authenticated or not user_context.user_id:
            return FREE
        if user_context.is_admin:
            return PREMIUM

        try:
            subscription = self.db.get_subscription(user_context.user_id)
            if subscription and is_subscription_active(subscription):
                return plan_from_plan_type(subscription.get("plan_type"))

            profile = self.db.get_user_profile(user_context.user_id)
            trial_end = profile.get("premium_trial_end_at") if profile else None
            if trial_end and trial_end > datetime.now(timezone.utc):
                return PREMIUM
        except SQLAlchemyError:
            logger.warning(
                "Plan lookup failed for %s, defaulting to free",
                user_context.user_id,
                exc_info=True,
            )
        return FREE
