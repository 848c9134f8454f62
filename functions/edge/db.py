"""
Database abstraction for the hosted Postgres and an in-memory test implementation.

Token accounting lives in stored procedures on the hosted database; the
Postgres client only calls them. The in-memory client emulates their
behaviour for local runs and tests.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Protocol

from dacite import Config, from_dict
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    create_engine,
    select,
    text,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from edge.plans import get_plan_config
from shared.api import StudyGuide, StudyGuideContent, StudyGuideInput, UserContext
from shared.json_utils import convert_keys


class DbClient(Protocol):
    """Interface for database access."""

    def get_user_profile(self, user_id: str) -> Optional[dict]:
        ...

    def get_subscription(self, user_id: str) -> Optional[dict]:
        ...

    def get_or_create_user_tokens(
        self, identifier: str, user_plan: str
    ) -> "TokenBalance":
        ...

    def consume_user_tokens(
        self, identifier: str, user_plan: str, token_cost: int
    ) -> "TokenConsumption":
        ...

    def find_study_guide(self, study_input: StudyGuideInput) -> Optional[StudyGuide]:
        ...

    def save_study_guide(
        self, study_input: StudyGuideInput, content: dict, user_context: UserContext
    ) -> StudyGuide:
        ...

    def get_feature_flags(self) -> Dict[str, "FeatureFlag"]:
        ...

    def save_feedback(self, feedback: "FeedbackRecord") -> None:
        ...

    def log_usage(self, usage: "UsageRecord") -> None:
        ...


@dataclass
class TokenBalance:
    identifier: str
    user_plan: str
    available_tokens: int
    purchased_tokens: int
    daily_limit: int

    @property
    def total_tokens(self) -> int:
        return self.available_tokens + self.purchased_tokens

    def as_dict(self) -> dict:
        return {
            "user_plan": self.user_plan,
            "available_tokens": self.available_tokens,
            "purchased_tokens": self.purchased_tokens,
            "daily_limit": self.daily_limit,
            "total_tokens": self.total_tokens,
        }


@dataclass
class TokenConsumption:
    success: bool
    available_tokens: int
    purchased_tokens: int
    daily_limit: int
    error_message: Optional[str] = None


@dataclass
class FeatureFlag:
    feature_key: str
    is_enabled: bool
    enabled_for_plans: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "feature_key": self.feature_key,
            "is_enabled": self.is_enabled,
            "enabled_for_plans": list(self.enabled_for_plans),
        }


@dataclass
class FeedbackRecord:
    was_helpful: bool
    study_guide_id: Optional[str] = None
    user_id: Optional[str] = None
    message: Optional[str] = None
    category: str = "general"
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "study_guide_id": self.study_guide_id,
            "user_id": self.user_id,
            "was_helpful": self.was_helpful,
            "message": self.message,
            "category": self.category,
            "created_at": self.created_at,
        }


@dataclass
class UsageRecord:
    feature_name: str
    operation_type: str
    tier: str
    user_id: Optional[str] = None
    tokens_consumed: int = 0
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    llm_input_tokens: int = 0
    llm_output_tokens: int = 0
    created_at: float = field(default_factory=lambda: time.time())


def study_guide_cache_key(study_input: StudyGuideInput) -> str:
    """Stable key for a study guide request; equal inputs share a cached guide."""
    normalized = " ".join(study_input.input_value.lower().split())
    raw = "|".join(
        [
            study_input.input_type,
            normalized,
            study_input.language,
            study_input.study_mode,
        ]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def build_study_guide(
    guide_id: str,
    study_input: StudyGuideInput,
    content: dict,
    creator_user_id: Optional[str],
    creator_session_id: Optional[str],
    created_at: float,
) -> StudyGuide:
    return StudyGuide(
        id=guide_id,
        input=study_input,
        content=from_dict(
            data_class=StudyGuideContent,
            data=convert_keys(content, "camel_to_snake"),
            config=Config(check_types=False),
        ),
        creator_user_id=creator_user_id,
        creator_session_id=creator_session_id,
        created_at=created_at,
    )


def _creator_ids(user_context: UserContext) -> tuple[Optional[str], Optional[str]]:
    if user_context.is_authenticated:
        return user_context.user_id, None
    return None, user_context.session_id


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, dict] = {}
        self.subscriptions: Dict[str, dict] = {}
        self.tokens: Dict[str, dict] = {}
        self.study_guides: Dict[str, StudyGuide] = {}
        self.feature_flags: Dict[str, FeatureFlag] = {}
        self.feedback: Dict[str, FeedbackRecord] = {}
        self.usage_logs: List[UsageRecord] = []

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.profiles.clear()
        self.subscriptions.clear()
        self.tokens.clear()
        self.study_guides.clear()
        self.feature_flags.clear()
        self.feedback.clear()
        self.usage_logs.clear()

    def get_user_profile(self, user_id: str) -> Optional[dict]:
        return self.profiles.get(user_id)

    def get_subscription(self, user_id: str) -> Optional[dict]:
        return self.subscriptions.get(user_id)

    def _token_row(self, identifier: str, user_plan: str) -> dict:
        today = date.today()
        daily_limit = get_plan_config(user_plan).daily_limit
        row = self.tokens.get(identifier)
        if row is None:
            row = {"available": daily_limit, "purchased": 0, "reset_on": today}
            self.tokens[identifier] = row
        elif row["reset_on"] != today:
            row["available"] = daily_limit
            row["reset_on"] = today
        row["daily_limit"] = daily_limit
        return row

    def get_or_create_user_tokens(self, identifier: str, user_plan: str) -> TokenBalance:
        row = self._token_row(identifier, user_plan)
        return TokenBalance(
            identifier=identifier,
            user_plan=user_plan,
            available_tokens=row["available"],
            purchased_tokens=row["purchased"],
            daily_limit=row["daily_limit"],
        )

    def consume_user_tokens(
        self, identifier: str, user_plan: str, token_cost: int
    ) -> TokenConsumption:
        row = self._token_row(identifier, user_plan)
        if get_plan_config(user_plan).is_unlimited:
            return TokenConsumption(True, row["available"], row["purchased"], row["daily_limit"])
        if row["available"] + row["purchased"] < token_cost:
            return TokenConsumption(
                False,
                row["available"],
                row["purchased"],
                row["daily_limit"],
                error_message="Insufficient tokens",
            )
        from_daily = min(row["available"], token_cost)
        row["available"] -= from_daily
        row["purchased"] -= token_cost - from_daily
        return TokenConsumption(True, row["available"], row["purchased"], row["daily_limit"])

    def find_study_guide(self, study_input: StudyGuideInput) -> Optional[StudyGuide]:
        return self.study_guides.get(study_guide_cache_key(study_input))

    def save_study_guide(
        self, study_input: StudyGuideInput, content: dict, user_context: UserContext
    ) -> StudyGuide:
        user_id, session_id = _creator_ids(user_context)
        guide = build_study_guide(
            uuid.uuid4().hex, study_input, content, user_id, session_id, time.time()
        )
        self.study_guides[study_guide_cache_key(study_input)] = guide
        return guide

    def get_feature_flags(self) -> Dict[str, FeatureFlag]:
        return dict(self.feature_flags)

    def save_feedback(self, feedback: FeedbackRecord) -> None:
        key = uuid.uuid4().hex
        self.feedback[key] = feedback

    def log_usage(self, usage: UsageRecord) -> None:
        self.usage_logs.append(usage)


Base = declarative_base()


class UserProfileRow(Base):
    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    premium_trial_end_at = Column(DateTime(timezone=True), nullable=True)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    user_id = Column(String, primary_key=True)
    plan_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_cycle_end = Column(Boolean, nullable=False, default=False)


class StudyGuideRow(Base):
    __tablename__ = "study_guides"

    id = Column(String, primary_key=True)
    cache_key = Column(String, nullable=False, unique=True, index=True)
    input_type = Column(String, nullable=False)
    input_value = Column(String, nullable=False)
    topic_description = Column(String, nullable=True)
    language = Column(String, nullable=False)
    study_mode = Column(String, nullable=False)
    content = Column(JSON, nullable=False)
    creator_user_id = Column(String, nullable=True, index=True)
    creator_session_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class FeatureFlagRow(Base):
    __tablename__ = "feature_flags"

    feature_key = Column(String, primary_key=True)
    is_enabled = Column(Boolean, nullable=False, default=True)
    enabled_for_plans = Column(JSON, nullable=False)


class FeedbackRow(Base):
    __tablename__ = "feedback"

    id = Column(String, primary_key=True)
    study_guide_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=True)
    was_helpful = Column(Boolean, nullable=False)
    message = Column(String, nullable=True)
    category = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class UsageLogRow(Base):
    __tablename__ = "usage_logs"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=True, index=True)
    tier = Column(String, nullable=False)
    feature_name = Column(String, nullable=False)
    operation_type = Column(String, nullable=False)
    tokens_consumed = Column(Integer, nullable=False, default=0)
    llm_provider = Column(String, nullable=True)
    llm_model = Column(String, nullable=True)
    llm_input_tokens = Column(Integer, nullable=False, default=0)
    llm_output_tokens = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on round trip.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Token methods call the hosted stored procedures and therefore need Postgres.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def get_user_profile(self, user_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(UserProfileRow, user_id)
            if not row:
                return None
            return {
                "id": row.id,
                "is_admin": bool(row.is_admin),
                "premium_trial_end_at": _aware(row.premium_trial_end_at),
            }

    def get_subscription(self, user_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(SubscriptionRow, user_id)
            if not row:
                return None
            return {
                "plan_type": row.plan_type,
                "status": row.status,
                "current_period_end": _aware(row.current_period_end),
                "cancel_at_cycle_end": bool(row.cancel_at_cycle_end),
            }

    def get_or_create_user_tokens(self, identifier: str, user_plan: str) -> TokenBalance:
        with self.Session() as session:
            row = session.execute(
                text(
                    "select * from get_or_create_user_tokens("
                    ":p_identifier, :p_user_plan)"
                ),
                {"p_identifier": identifier, "p_user_plan": user_plan},
            ).mappings().one()
            session.commit()
            return TokenBalance(
                identifier=identifier,
                user_plan=user_plan,
                available_tokens=row["available_tokens"],
                purchased_tokens=row["purchased_tokens"],
                daily_limit=row["daily_limit"],
            )

    def consume_user_tokens(
        self, identifier: str, user_plan: str, token_cost: int
    ) -> TokenConsumption:
        with self.Session() as session:
            row = session.execute(
                text(
                    "select * from consume_user_tokens("
                    ":p_identifier, :p_user_plan, :p_token_cost)"
                ),
                {
                    "p_identifier": identifier,
                    "p_user_plan": user_plan,
                    "p_token_cost": token_cost,
                },
            ).mappings().one()
            session.commit()
            return TokenConsumption(
                success=bool(row["success"]),
                available_tokens=row["available_tokens"],
                purchased_tokens=row["purchased_tokens"],
                daily_limit=row["daily_limit"],
                error_message=row.get("error_message"),
            )

    def _to_study_guide(self, row: StudyGuideRow) -> StudyGuide:
        study_input = StudyGuideInput(
            input_type=row.input_type,
            input_value=row.input_value,
            language=row.language,
            study_mode=row.study_mode,
            topic_description=row.topic_description,
        )
        return build_study_guide(
            row.id,
            study_input,
            row.content,
            row.creator_user_id,
            row.creator_session_id,
            row.created_at,
        )

    def find_study_guide(self, study_input: StudyGuideInput) -> Optional[StudyGuide]:
        with self.Session() as session:
            stmt = select(StudyGuideRow).where(
                StudyGuideRow.cache_key == study_guide_cache_key(study_input)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_study_guide(row) if row else None

    def save_study_guide(
        self, study_input: StudyGuideInput, content: dict, user_context: UserContext
    ) -> StudyGuide:
        user_id, session_id = _creator_ids(user_context)
        cache_key = study_guide_cache_key(study_input)
        with self.Session() as session:
            row = session.execute(
                select(StudyGuideRow).where(StudyGuideRow.cache_key == cache_key)
            ).scalar_one_or_none()
            if row:
                row.content = content
            else:
                row = StudyGuideRow(
                    id=uuid.uuid4().hex,
                    cache_key=cache_key,
                    input_type=study_input.input_type,
                    input_value=study_input.input_value,
                    topic_description=study_input.topic_description,
                    language=study_input.language,
                    study_mode=study_input.study_mode,
                    content=content,
                    creator_user_id=user_id,
                    creator_session_id=session_id,
                    created_at=time.time(),
                )
                session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_study_guide(row)

    def get_feature_flags(self) -> Dict[str, FeatureFlag]:
        with self.Session() as session:
            rows = session.execute(select(FeatureFlagRow)).scalars().all()
            return {
                row.feature_key: FeatureFlag(
                    feature_key=row.feature_key,
                    is_enabled=bool(row.is_enabled),
                    enabled_for_plans=list(row.enabled_for_plans or []),
                )
                for row in rows
            }

    def save_feature_flag(self, flag: FeatureFlag) -> None:
        with self.Session() as session:
            row = session.get(FeatureFlagRow, flag.feature_key)
            if row:
                row.is_enabled = flag.is_enabled
                row.enabled_for_plans = list(flag.enabled_for_plans)
            else:
                session.add(
                    FeatureFlagRow(
                        feature_key=flag.feature_key,
                        is_enabled=flag.is_enabled,
                        enabled_for_plans=list(flag.enabled_for_plans),
                    )
                )
            session.commit()

    def save_feedback(self, feedback: FeedbackRecord) -> None:
        with self.Session() as session:
            session.add(
                FeedbackRow(
                    id=uuid.uuid4().hex,
                    study_guide_id=feedback.study_guide_id,
                    user_id=feedback.user_id,
                    was_helpful=feedback.was_helpful,
                    message=feedback.message,
                    category=feedback.category,
                    created_at=feedback.created_at,
                )
            )
            session.commit()

    def log_usage(self, usage: UsageRecord) -> None:
        with self.Session() as session:
            session.add(
                UsageLogRow(
                    id=uuid.uuid4().hex,
                    user_id=usage.user_id,
                    tier=usage.tier,
                    feature_name=usage.feature_name,
                    operation_type=usage.operation_type,
                    tokens_consumed=usage.tokens_consumed,
                    llm_provider=usage.llm_provider,
                    llm_model=usage.llm_model,
                    llm_input_tokens=usage.llm_input_tokens,
                    llm_output_tokens=usage.llm_output_tokens,
                    created_at=usage.created_at,
                )
            )
            session.commit()

