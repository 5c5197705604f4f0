"""Feedback and learning tracker.

Records the user's verdict on each suggestion, updates the counters of the
rule that produced it, and derives reporting signals (success rate, trend,
poor performers) from that history.
"""

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.core.exceptions import CounterWriteConflict, NotFoundError, ValidationError
from pattern_engine.schemas.feedback import (
    FeedbackOutcome,
    FeedbackRecord,
    PatternOverview,
    RuleStatistics,
    Trend,
)
from pattern_engine.schemas.pattern import CounterSnapshot, RuleOrigin
from pattern_engine.services.pattern_store import PatternStore

logger = structlog.get_logger()

# outcome → (usage increment, success increment)
COUNTER_DELTAS = {
    FeedbackOutcome.ACCEPTED: (1, 1),
    FeedbackOutcome.REJECTED: (1, 0),
    FeedbackOutcome.CORRECTED: (1, 0),
}

PERFORMER_MIN_USAGE = 10
LOW_PERFORMER_RATE = 0.5
HIGH_PERFORMER_RATE = 0.8
MAX_PERFORMERS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedbackTracker:
    def __init__(
        self,
        store: PatternStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock

    # ── Feedback ───────────────────────────────────────

    def record_feedback(
        self,
        rule_id: int | None,
        category_id: int,
        outcome: FeedbackOutcome | str,
        timestamp: datetime | None = None,
    ) -> CounterSnapshot | None:
        """Record a verdict and update the counters of the rule that fired.

        `rule_id` is None when no rule fired; the feedback is kept but no
        counter changes. A correction counts as a use without success for
        the rule that fired and leaves every other rule untouched.
        """
        try:
            outcome = FeedbackOutcome(outcome)
        except ValueError as e:
            raise ValidationError(f"unknown feedback outcome: {outcome!r}") from e

        if rule_id is not None and self.store.get(rule_id) is None:
            raise NotFoundError("CategorizationPattern")

        record = FeedbackRecord(
            rule_id=rule_id,
            category_id=category_id,
            outcome=outcome,
            timestamp=timestamp or self.clock(),
        )

        snapshot = None
        if rule_id is not None:
            usage, success = COUNTER_DELTAS[outcome]
            snapshot = self._increment_with_retry(rule_id, usage, success)
        self.store.add_feedback(record)

        logger.info(
            "feedback_recorded",
            rule_id=rule_id,
            category_id=category_id,
            outcome=outcome.value,
            usage_count=snapshot.usage_count if snapshot else None,
            success_rate=round(snapshot.success_rate, 4) if snapshot else None,
        )
        return snapshot

    def _increment_with_retry(self, rule_id: int, usage: int, success: int) -> CounterSnapshot:
        attempts = max(1, self.settings.counter_write_max_attempts)
        attempt = 1
        while True:
            try:
                return self.store.increment_counters(rule_id, usage, success)
            except CounterWriteConflict:
                if attempt >= attempts:
                    logger.error("counter_write_failed", rule_id=rule_id, attempts=attempts)
                    raise
                logger.warning("counter_write_conflict_retry", rule_id=rule_id, attempt=attempt)
                time.sleep(self.settings.counter_write_backoff_ms * attempt / 1000)
                attempt += 1

    # ── Statistics ─────────────────────────────────────

    def trend(self, rule_id: int, now: datetime | None = None) -> Trend:
        """Compare feedback volume in the recent window against the prior one.

        A coarse count comparison meant to prioritise human review.
        """
        now = now or self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        window = timedelta(days=self.settings.trend_window_days)
        recent = self.store.count_feedback(rule_id, now - window, now)
        prior = self.store.count_feedback(rule_id, now - 2 * window, now - window)
        if recent > prior:
            return Trend.INCREASING
        if recent < prior:
            return Trend.DECREASING
        return Trend.STABLE

    def rule_statistics(self, rule_id: int) -> RuleStatistics:
        rule = self.store.get(rule_id)
        if rule is None:
            raise NotFoundError("CategorizationPattern")
        return RuleStatistics(
            rule_id=rule_id,
            usage_count=rule.usage_count,
            success_count=rule.success_count,
            success_rate=rule.success_rate,
            trend=self.trend(rule_id),
        )

    def overview(self) -> PatternOverview:
        patterns = list(self.store.arena().values())
        used = [p for p in patterns if p.usage_count > 0]
        total_usage = sum(p.usage_count for p in used)
        total_successes = sum(p.success_count for p in used)

        evaluated = [p for p in patterns if p.active and p.usage_count >= PERFORMER_MIN_USAGE]
        low = sorted(
            (p for p in evaluated if p.success_rate < LOW_PERFORMER_RATE),
            key=lambda p: (p.success_rate, p.id),
        )
        high = sorted(
            (p for p in evaluated if p.success_rate >= HIGH_PERFORMER_RATE),
            key=lambda p: (-p.success_rate, -p.usage_count, p.id),
        )

        return PatternOverview(
            total_patterns=len(patterns),
            active_patterns=sum(1 for p in patterns if p.active),
            user_created=sum(1 for p in patterns if p.origin == RuleOrigin.USER),
            system_created=sum(1 for p in patterns if p.origin == RuleOrigin.SYSTEM),
            average_success_rate=total_successes / total_usage if total_usage else 0.0,
            total_usage=total_usage,
            total_successes=total_successes,
            low_performers=[p.id for p in low[:MAX_PERFORMERS]],
            high_performers=[p.id for p in high[:MAX_PERFORMERS]],
        )

    # ── Review ─────────────────────────────────────────

    def deactivate_if_poor_performance(self, rule_id: int) -> bool:
        """Soft-deactivate a system rule with enough usage and a low success rate.

        Only ever runs when asked: trends and counters never deactivate a
        rule on their own. User-created rules are left alone.
        """
        rule = self.store.get(rule_id)
        if rule is None:
            raise NotFoundError("CategorizationPattern")
        if (
            not rule.active
            or rule.origin == RuleOrigin.USER
            or rule.usage_count < self.settings.poor_performance_min_usage
            or rule.success_rate >= self.settings.poor_performance_threshold
        ):
            return False

        self.store.update(rule_id, active=False)
        logger.info(
            "pattern_deactivated_poor_performance",
            rule_id=rule_id,
            usage_count=rule.usage_count,
            success_rate=round(rule.success_rate, 4),
        )
        return True
