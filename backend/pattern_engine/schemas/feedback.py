"""Feedback and pattern statistics schemas."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class FeedbackOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CORRECTED = "corrected"


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedbackRecord(BaseModel):
    """A user's verdict on a suggestion. Immutable once created."""

    rule_id: int | None = None  # None when no rule fired
    category_id: int
    outcome: FeedbackOutcome
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def assume_utc_when_naive(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


class RuleStatistics(BaseModel):
    rule_id: int
    usage_count: int
    success_count: int
    success_rate: float
    trend: Trend


class PatternOverview(BaseModel):
    total_patterns: int
    active_patterns: int
    user_created: int
    system_created: int
    average_success_rate: float  # over rules with usage, 0..1
    total_usage: int
    total_successes: int
    low_performers: list[int]
    high_performers: list[int]
