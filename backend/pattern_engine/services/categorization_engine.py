"""Categorization engine service.

Manages rule definitions in a pattern store, ranks category suggestions
for transactions and learns from the user's feedback on them.
"""

import structlog

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.core.exceptions import NotFoundError, ValidationError
from pattern_engine.schemas.classification import MatchOutcome, Suggestion
from pattern_engine.schemas.feedback import FeedbackOutcome, PatternOverview, RuleStatistics
from pattern_engine.schemas.pattern import (
    CompositeOperator,
    CompositeRule,
    CounterSnapshot,
    NormalizedValue,
    Rule,
    RuleOrigin,
    RuleType,
)
from pattern_engine.schemas.transaction import TransactionRecord
from pattern_engine.services import atomic_matcher, composite_evaluator, ranking_engine
from pattern_engine.services.feedback_tracker import FeedbackTracker
from pattern_engine.services.pattern_store import PatternStore
from pattern_engine.services.pattern_validator import PatternValidator

logger = structlog.get_logger()


class CategorizationEngine:
    def __init__(self, store: PatternStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or default_settings
        self.validator = PatternValidator(self.settings)
        self.tracker = FeedbackTracker(store, self.settings)

    # ── Validation ─────────────────────────────────────

    def validate_and_normalize(
        self,
        rule_type: RuleType | str,
        raw_value: str,
        category_id: int | None = None,
        exclude_rule_id: int | None = None,
    ) -> NormalizedValue:
        """Validate a rule value; with a category, also check for duplicates."""
        existing = ()
        if category_id is not None:
            try:
                existing = self.store.rules_in_category(category_id, RuleType(rule_type))
            except ValueError:
                existing = ()  # unknown type, rejected by the validator below
        return self.validator.validate_and_normalize(
            rule_type,
            raw_value,
            category_id=category_id,
            existing=existing,
            exclude_rule_id=exclude_rule_id,
        )

    # ── Atomic rules ───────────────────────────────────

    def create_rule(
        self,
        category_id: int,
        rule_type: RuleType | str,
        value: str,
        confidence_weight: float | None = None,
        origin: RuleOrigin | str = RuleOrigin.USER,
        active: bool = True,
    ) -> Rule:
        """Validate and store a new atomic rule."""
        weight = self.validator.validate_confidence_weight(
            self.settings.default_confidence_weight if confidence_weight is None else confidence_weight
        )
        normalized = self.validate_and_normalize(rule_type, value, category_id=category_id)
        rule = self.store.add_rule(
            Rule(
                category_id=category_id,
                rule_type=normalized.rule_type,
                value=normalized.value,
                confidence_weight=weight,
                active=active,
                origin=RuleOrigin(origin),
                metadata=normalized.metadata,
            )
        )
        logger.info(
            "pattern_created",
            rule_id=rule.id,
            category_id=category_id,
            rule_type=rule.rule_type.value,
            value=rule.value,
        )
        return rule

    def update_rule(
        self,
        rule_id: int,
        value: str | None = None,
        confidence_weight: float | None = None,
        active: bool | None = None,
    ) -> Rule:
        """Edit an atomic rule's value, weight or active flag."""
        rule = self._get_rule(rule_id)
        changes: dict = {}
        if value is not None:
            normalized = self.validate_and_normalize(
                rule.rule_type, value, category_id=rule.category_id, exclude_rule_id=rule_id
            )
            changes["value"] = normalized.value
            changes["metadata"] = normalized.metadata
        if confidence_weight is not None:
            changes["confidence_weight"] = self.validator.validate_confidence_weight(confidence_weight)
        if active is not None:
            changes["active"] = active
        if not changes:
            return rule

        updated = self.store.update(rule_id, **changes)
        logger.info("pattern_updated", rule_id=rule_id, fields=sorted(changes))
        return updated

    def deactivate_rule(self, rule_id: int) -> Rule | CompositeRule:
        """Soft-deactivate an atomic or composite rule."""
        if self.store.get(rule_id) is None:
            raise NotFoundError("CategorizationPattern")
        updated = self.store.update(rule_id, active=False)
        logger.info("pattern_deactivated", rule_id=rule_id)
        return updated

    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule that no composite references."""
        if self.store.get(rule_id) is None:
            raise NotFoundError("CategorizationPattern")
        referencing = sorted(
            c.id for c in self.store.all_composites() if rule_id in c.component_rule_ids
        )
        if referencing:
            raise ValidationError(
                f"is referenced by composite patterns: {', '.join(map(str, referencing))}; "
                "deactivate it instead"
            )
        self.store.delete(rule_id)
        logger.info("pattern_deleted", rule_id=rule_id)

    # ── Composite rules ────────────────────────────────

    def create_composite(
        self,
        category_id: int,
        operator: CompositeOperator | str,
        component_rule_ids: list[int],
        confidence_weight: float | None = None,
        name: str | None = None,
        origin: RuleOrigin | str = RuleOrigin.USER,
        conditions: dict | None = None,
    ) -> CompositeRule:
        """Validate and store a new composite rule."""
        weight = self.validator.validate_confidence_weight(
            self.settings.default_confidence_weight if confidence_weight is None else confidence_weight
        )
        operator, component_ids = self.validator.validate_composite(
            category_id=category_id,
            operator=operator,
            component_rule_ids=component_rule_ids,
            arena=self.store.arena(),
        )
        guards = self.validator.validate_conditions(conditions)
        composite = self.store.add_composite(
            CompositeRule(
                category_id=category_id,
                operator=operator,
                component_rule_ids=component_ids,
                confidence_weight=weight,
                name=name,
                origin=RuleOrigin(origin),
                conditions=guards,
            )
        )
        logger.info(
            "composite_pattern_created",
            rule_id=composite.id,
            category_id=category_id,
            operator=operator.value,
            components=component_ids,
        )
        return composite

    def update_composite(
        self,
        composite_id: int,
        operator: CompositeOperator | str | None = None,
        component_rule_ids: list[int] | None = None,
        confidence_weight: float | None = None,
        active: bool | None = None,
        conditions: dict | None = None,
    ) -> CompositeRule:
        composite = self.store.get(composite_id)
        if not isinstance(composite, CompositeRule):
            raise NotFoundError("CompositePattern")

        changes: dict = {}
        if operator is not None or component_rule_ids is not None:
            parsed_operator, component_ids = self.validator.validate_composite(
                category_id=composite.category_id,
                operator=operator if operator is not None else composite.operator,
                component_rule_ids=(
                    component_rule_ids
                    if component_rule_ids is not None
                    else composite.component_rule_ids
                ),
                arena=self.store.arena(),
                composite_id=composite_id,
            )
            changes["operator"] = parsed_operator
            changes["component_rule_ids"] = component_ids
        if confidence_weight is not None:
            changes["confidence_weight"] = self.validator.validate_confidence_weight(confidence_weight)
        if conditions is not None:
            changes["conditions"] = self.validator.validate_conditions(conditions)
        if active is not None:
            changes["active"] = active
        if not changes:
            return composite

        updated = self.store.update(composite_id, **changes)
        logger.info("composite_pattern_updated", rule_id=composite_id, fields=sorted(changes))
        return updated

    def describe_composite(self, composite_id: int) -> str:
        arena = self.store.arena()
        composite = arena.get(composite_id)
        if not isinstance(composite, CompositeRule):
            raise NotFoundError("CompositePattern")
        return composite_evaluator.describe(composite, arena)

    # ── Suggestions ────────────────────────────────────

    def suggest(self, record: TransactionRecord, max_suggestions: int | None = None) -> list[Suggestion]:
        """Rank categories for a transaction against the active rule set."""
        return ranking_engine.suggest(
            record,
            self.store.active_rules(),
            self.store.active_composites(),
            max_suggestions=max_suggestions,
            settings=self.settings,
        )

    def test_pattern(
        self,
        rule_type: RuleType | str,
        raw_value: str,
        record: TransactionRecord,
        confidence_weight: float | None = None,
    ) -> MatchOutcome:
        """Validate an ad-hoc rule and match it against a sample record.

        Nothing is stored.
        """
        weight = self.validator.validate_confidence_weight(
            self.settings.default_confidence_weight if confidence_weight is None else confidence_weight
        )
        normalized = self.validator.validate_and_normalize(rule_type, raw_value)
        rule = Rule(
            category_id=0,
            rule_type=normalized.rule_type,
            value=normalized.value,
            confidence_weight=weight,
        )
        return atomic_matcher.match(rule, record, self.settings)

    # ── Feedback & statistics ──────────────────────────

    def record_feedback(
        self,
        rule_id: int | None,
        category_id: int,
        outcome: FeedbackOutcome | str,
    ) -> CounterSnapshot | None:
        return self.tracker.record_feedback(rule_id, category_id, outcome)

    def rule_statistics(self, rule_id: int) -> RuleStatistics:
        return self.tracker.rule_statistics(rule_id)

    def pattern_overview(self) -> PatternOverview:
        return self.tracker.overview()

    def deactivate_if_poor_performance(self, rule_id: int) -> bool:
        return self.tracker.deactivate_if_poor_performance(rule_id)

    # ── Helpers ─────────────────────────────────────────

    def _get_rule(self, rule_id: int) -> Rule:
        rule = self.store.get(rule_id)
        if not isinstance(rule, Rule):
            raise NotFoundError("CategorizationPattern")
        return rule
