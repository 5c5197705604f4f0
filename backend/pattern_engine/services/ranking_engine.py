"""Ranking of category suggestions for a transaction.

`suggest` is a pure function of its inputs: it never touches counters, so
it can run concurrently and repeatedly against the same rule snapshot.
"""

from collections.abc import Iterable

import structlog

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.schemas.classification import MatchOutcome, Suggestion
from pattern_engine.schemas.pattern import CompositeRule, Rule
from pattern_engine.schemas.transaction import TransactionRecord
from pattern_engine.services.composite_evaluator import evaluate_all
from pattern_engine.services.confidence import success_rate_adjustment

logger = structlog.get_logger()


def _strength(outcome: MatchOutcome) -> tuple:
    # Ascending sort key: higher confidence, then higher weight, then lower id
    return (-outcome.confidence, -outcome.weight, outcome.rule_id)


def suggest(
    record: TransactionRecord,
    active_rules: Iterable[Rule],
    active_composites: Iterable[CompositeRule],
    max_suggestions: int | None = None,
    settings: Settings | None = None,
) -> list[Suggestion]:
    """Rank categories for a record.

    Each category is represented by its single strongest matching rule.
    Categories are scored by `confidence * success_rate_adjustment` and
    sorted by score, then raw confidence weight, then rule id.
    """
    settings = settings or default_settings
    if max_suggestions is None:
        max_suggestions = settings.default_max_suggestions
    if max_suggestions < 1:
        return []

    rules = [r for r in active_rules if r.active]
    composites = [c for c in active_composites if c.active]
    outcomes = evaluate_all(record, rules, composites, settings)

    by_id: dict[int, Rule | CompositeRule] = {r.id: r for r in rules}
    by_id.update({c.id: c for c in composites})

    best: dict[int, MatchOutcome] = {}
    for rule_id, outcome in outcomes.items():
        if not outcome.matched:
            continue
        category_id = by_id[rule_id].category_id
        current = best.get(category_id)
        if current is None or _strength(outcome) < _strength(current):
            best[category_id] = outcome

    ranked = []
    for category_id, outcome in best.items():
        score = outcome.confidence * success_rate_adjustment(by_id[outcome.rule_id], settings)
        ranked.append(
            (
                (-score, -outcome.weight, outcome.rule_id),
                Suggestion(
                    category_id=category_id,
                    confidence=outcome.confidence,
                    score=score,
                    reason=outcome.reason,
                    rule_id=outcome.rule_id,
                ),
            )
        )
    ranked.sort(key=lambda item: item[0])

    logger.debug(
        "suggestions_computed",
        rules_evaluated=len(outcomes),
        categories_matched=len(best),
        returned=min(len(ranked), max_suggestions),
    )
    return [suggestion for _, suggestion in ranked[:max_suggestions]]
