"""Pattern store contract and the in-memory implementation.

Atomic rules and composites share one id space, so a rule id is enough to
address either kind (feedback, memoisation, component references).
"""

import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from pattern_engine.core.exceptions import NotFoundError
from pattern_engine.schemas.feedback import FeedbackRecord
from pattern_engine.schemas.pattern import CompositeRule, CounterSnapshot, Rule, RuleType


class PatternStore(ABC):
    """Read-mostly rule snapshot plus atomic counter storage."""

    @abstractmethod
    def active_rules(self) -> list[Rule]: ...

    @abstractmethod
    def active_composites(self) -> list[CompositeRule]: ...

    @abstractmethod
    def all_rules(self) -> list[Rule]: ...

    @abstractmethod
    def all_composites(self) -> list[CompositeRule]: ...

    @abstractmethod
    def get(self, rule_id: int) -> Rule | CompositeRule | None: ...

    @abstractmethod
    def rules_in_category(self, category_id: int, rule_type: RuleType) -> list[Rule]:
        """All atomic rules (active or not) of one type in one category."""

    @abstractmethod
    def add_rule(self, rule: Rule) -> Rule:
        """Store a new atomic rule and return it with its id assigned."""

    @abstractmethod
    def add_composite(self, composite: CompositeRule) -> CompositeRule:
        """Store a new composite and return it with its id assigned."""

    @abstractmethod
    def update(self, rule_id: int, **changes) -> Rule | CompositeRule:
        """Apply an explicit edit (value, weight, active, components...)."""

    @abstractmethod
    def delete(self, rule_id: int) -> None: ...

    @abstractmethod
    def increment_counters(self, rule_id: int, usage: int, success: int) -> CounterSnapshot:
        """Atomically add to a rule's usage and success counters.

        Raises CounterWriteConflict when the write loses a race and
        NotFoundError for an unknown rule.
        """

    @abstractmethod
    def add_feedback(self, record: FeedbackRecord) -> None: ...

    @abstractmethod
    def count_feedback(self, rule_id: int, start: datetime, end: datetime) -> int:
        """Count feedback for a rule with start < timestamp <= end."""

    def arena(self) -> dict[int, Rule | CompositeRule]:
        """Every known rule and composite, indexed by id."""
        arena: dict[int, Rule | CompositeRule] = {r.id: r for r in self.all_rules()}
        arena.update({c.id: c for c in self.all_composites()})
        return arena


class InMemoryPatternStore(PatternStore):
    """Thread-safe store kept in process memory.

    Stored models are replaced on every write, never mutated in place, so
    the lists handed to readers stay consistent snapshots.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._patterns: dict[int, Rule | CompositeRule] = {}
        self._feedback: list[FeedbackRecord] = []

    def _select(self, kind: type, active_only: bool) -> list:
        with self._lock:
            patterns = list(self._patterns.values())
        return [
            p for p in patterns
            if isinstance(p, kind) and (p.active or not active_only)
        ]

    def active_rules(self) -> list[Rule]:
        return self._select(Rule, active_only=True)

    def active_composites(self) -> list[CompositeRule]:
        return self._select(CompositeRule, active_only=True)

    def all_rules(self) -> list[Rule]:
        return self._select(Rule, active_only=False)

    def all_composites(self) -> list[CompositeRule]:
        return self._select(CompositeRule, active_only=False)

    def get(self, rule_id: int) -> Rule | CompositeRule | None:
        with self._lock:
            return self._patterns.get(rule_id)

    def rules_in_category(self, category_id: int, rule_type: RuleType) -> list[Rule]:
        return [
            r for r in self.all_rules()
            if r.category_id == category_id and r.rule_type == rule_type
        ]

    def add_rule(self, rule: Rule) -> Rule:
        return self._add(rule)

    def add_composite(self, composite: CompositeRule) -> CompositeRule:
        return self._add(composite)

    def _add(self, pattern):
        with self._lock:
            stored = pattern.model_copy(update={"id": next(self._ids)})
            self._patterns[stored.id] = stored
        return stored

    def update(self, rule_id: int, **changes) -> Rule | CompositeRule:
        with self._lock:
            current = self._patterns.get(rule_id)
            if current is None:
                raise NotFoundError("CategorizationPattern")
            updated = current.model_copy(update=changes)
            self._patterns[rule_id] = updated
        return updated

    def delete(self, rule_id: int) -> None:
        with self._lock:
            if self._patterns.pop(rule_id, None) is None:
                raise NotFoundError("CategorizationPattern")

    def increment_counters(self, rule_id: int, usage: int, success: int) -> CounterSnapshot:
        with self._lock:
            current = self._patterns.get(rule_id)
            if current is None:
                raise NotFoundError("CategorizationPattern")
            updated = current.model_copy(
                update={
                    "usage_count": current.usage_count + usage,
                    "success_count": current.success_count + success,
                }
            )
            self._patterns[rule_id] = updated
        return CounterSnapshot(
            rule_id=rule_id,
            usage_count=updated.usage_count,
            success_count=updated.success_count,
        )

    def add_feedback(self, record: FeedbackRecord) -> None:
        with self._lock:
            self._feedback.append(record)

    def count_feedback(self, rule_id: int, start: datetime, end: datetime) -> int:
        with self._lock:
            records = list(self._feedback)
        return sum(1 for r in records if r.rule_id == rule_id and start < r.timestamp <= end)
