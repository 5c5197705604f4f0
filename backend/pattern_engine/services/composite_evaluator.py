"""Boolean composition of rule outcomes.

Composites form a DAG over rule ids (checked acyclic when they are
created). For a given record every atomic rule is matched once, then
composites are evaluated in dependency order so each outcome is computed
exactly once and looked up by id afterwards.
"""

from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation

import structlog

from pattern_engine.config import Settings
from pattern_engine.schemas.classification import MatchOutcome
from pattern_engine.schemas.pattern import CompositeOperator, CompositeRule, Rule
from pattern_engine.schemas.transaction import TransactionRecord
from pattern_engine.services.atomic_matcher import match
from pattern_engine.services.confidence import composite_scale
from pattern_engine.services.pattern_validator import DAY_NAMES, parse_clock_time

logger = structlog.get_logger()


def _in_time_range(minutes: int, start: int, end: int) -> bool:
    if end < start:  # wraps past midnight
        return minutes >= start or minutes <= end
    return start <= minutes <= end


def _check_conditions(conditions: Mapping, record: TransactionRecord) -> bool:
    amount = Decimal(record.amount)
    if conditions.get("min_amount") is not None and amount < Decimal(str(conditions["min_amount"])):
        return False
    if conditions.get("max_amount") is not None and amount > Decimal(str(conditions["max_amount"])):
        return False

    dt = record.transaction_date
    if conditions.get("days_of_week"):
        allowed = {day.lower() for day in conditions["days_of_week"]}
        if DAY_NAMES[dt.weekday()] not in allowed:
            return False

    if conditions.get("time_ranges"):
        minutes = dt.hour * 60 + dt.minute
        bounds = [
            (parse_clock_time(r["start"]), parse_clock_time(r["end"]))
            for r in conditions["time_ranges"]
        ]
        if not any(
            start is not None and end is not None and _in_time_range(minutes, start, end)
            for start, end in bounds
        ):
            return False

    if conditions.get("merchant_blacklist") and record.merchant_name:
        blacklist = {name.lower() for name in conditions["merchant_blacklist"]}
        if " ".join(record.merchant_name.split()).lower() in blacklist:
            return False

    return True


def conditions_match(composite: CompositeRule, record: TransactionRecord) -> bool:
    """Check a composite's guard conditions against a record.

    Conditions that cannot be evaluated (data edited outside the validator)
    count as not met.
    """
    if not composite.conditions:
        return True
    try:
        return _check_conditions(composite.conditions, record)
    except (InvalidOperation, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("composite_conditions_unusable", rule_id=composite.id, error=str(e))
        return False


def evaluate(
    composite: CompositeRule,
    record: TransactionRecord,
    atomic_outcomes: Mapping[int, MatchOutcome],
) -> MatchOutcome:
    """Combine the pre-computed outcomes of a composite's components.

    Components missing from `atomic_outcomes` (inactive or unknown) are
    skipped. A composite left with no components, or whose guard conditions
    fail, never matches.
    """
    outcomes = [
        atomic_outcomes[rid] for rid in composite.component_rule_ids if rid in atomic_outcomes
    ]
    if not composite.active or not outcomes:
        return MatchOutcome.no_match(composite.id, reason="no active components")
    if not conditions_match(composite, record):
        return MatchOutcome.no_match(composite.id, reason="conditions not met")

    if composite.operator == CompositeOperator.AND:
        if not all(o.matched for o in outcomes):
            return MatchOutcome.no_match(composite.id)
        contributing = outcomes
        combined = min(o.confidence for o in outcomes)
    else:
        contributing = [o for o in outcomes if o.matched]
        if not contributing:
            return MatchOutcome.no_match(composite.id)
        combined = max(o.confidence for o in contributing)

    reasons = "; ".join(o.reason for o in contributing)
    return MatchOutcome(
        rule_id=composite.id,
        matched=True,
        confidence=combined * composite_scale(composite.confidence_weight),
        weight=composite.confidence_weight,
        reason=f"{composite.operator.value}({reasons})",
    )


def evaluate_all(
    record: TransactionRecord,
    rules: Iterable[Rule],
    composites: Iterable[CompositeRule],
    settings: Settings | None = None,
) -> dict[int, MatchOutcome]:
    """Evaluate every active rule and composite, keyed by rule id."""
    outcomes: dict[int, MatchOutcome] = {
        rule.id: match(rule, record, settings) for rule in rules if rule.active
    }
    arena = {c.id: c for c in composites if c.active}
    for composite in topological_order(arena):
        outcomes[composite.id] = evaluate(composite, record, outcomes)
    return outcomes


def topological_order(arena: Mapping[int, CompositeRule]) -> list[CompositeRule]:
    """Order composites so each comes after the composites it references.

    Composites caught in a cycle are left out (and logged); they can only
    appear through data edited outside the validator.
    """
    indegree: dict[int, int] = {}
    dependents: dict[int, list[int]] = defaultdict(list)
    for cid, composite in arena.items():
        deps = {rid for rid in composite.component_rule_ids if rid in arena}
        indegree[cid] = len(deps)
        for dep in deps:
            dependents[dep].append(cid)

    ready = deque(sorted(cid for cid, n in indegree.items() if n == 0))
    order: list[CompositeRule] = []
    while ready:
        cid = ready.popleft()
        order.append(arena[cid])
        for dependent in sorted(dependents[cid]):
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)

    if len(order) != len(arena):
        stuck = sorted(set(arena) - {c.id for c in order})
        logger.error("composite_cycle_detected", composite_ids=stuck)
    return order


def describe(composite: CompositeRule, arena: Mapping[int, Rule | CompositeRule]) -> str:
    """Human readable form, e.g. "merchant:uber AND time:evening"."""
    parts = []
    for rid in composite.component_rule_ids:
        component = arena.get(rid)
        if component is None:
            parts.append(f"#{rid}?")
        elif isinstance(component, CompositeRule):
            parts.append(f"({describe(component, arena)})")
        else:
            parts.append(f"{component.rule_type.value}:{component.value}")
    return f" {composite.operator.value} ".join(parts)
