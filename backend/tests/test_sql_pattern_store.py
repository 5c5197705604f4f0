"""SQLAlchemy pattern store tests (in-memory SQLite)."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from pattern_engine.core.exceptions import CounterWriteConflict, NotFoundError, ValidationError
from pattern_engine.schemas.feedback import FeedbackOutcome, FeedbackRecord
from pattern_engine.schemas.pattern import (
    CompositeOperator,
    CompositeRule,
    Rule,
    RuleOrigin,
    RuleType,
)
from pattern_engine.services.categorization_engine import CategorizationEngine

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _rule(value="walmart", category_id=1, rule_type=RuleType.MERCHANT, **fields):
    return Rule(category_id=category_id, rule_type=rule_type, value=value, **fields)


def test_rules_and_composites_share_one_id_space(sql_store):
    a = sql_store.add_rule(_rule("uber"))
    b = sql_store.add_rule(_rule("evening", rule_type=RuleType.TIME))
    composite = sql_store.add_composite(
        CompositeRule(
            category_id=1,
            operator=CompositeOperator.AND,
            component_rule_ids=[a.id, b.id],
            name="Evening rides",
        )
    )
    assert len({a.id, b.id, composite.id}) == 3

    loaded = sql_store.get(composite.id)
    assert isinstance(loaded, CompositeRule)
    assert loaded.component_rule_ids == [a.id, b.id]
    assert loaded.operator == CompositeOperator.AND
    assert loaded.name == "Evening rides"
    assert set(sql_store.arena()) == {a.id, b.id, composite.id}


def test_rule_round_trip_keeps_metadata_and_origin(sql_store):
    stored = sql_store.add_rule(
        _rule("amzn", metadata={"similar_patterns": ["amazon"]}, origin=RuleOrigin.SYSTEM)
    )
    loaded = sql_store.get(stored.id)
    assert loaded == stored
    assert loaded.metadata == {"similar_patterns": ["amazon"]}
    assert loaded.origin == RuleOrigin.SYSTEM


def test_active_filters(sql_store):
    on = sql_store.add_rule(_rule("uber"))
    off = sql_store.add_rule(_rule("lyft", active=False))
    assert [r.id for r in sql_store.active_rules()] == [on.id]
    assert [r.id for r in sql_store.all_rules()] == [on.id, off.id]
    assert sql_store.active_composites() == []


def test_rules_in_category(sql_store):
    sql_store.add_rule(_rule("uber", category_id=1))
    sql_store.add_rule(_rule("uber", category_id=2))
    sql_store.add_rule(_rule("uber", category_id=1, rule_type=RuleType.KEYWORD))
    found = sql_store.rules_in_category(1, RuleType.MERCHANT)
    assert [(r.category_id, r.rule_type) for r in found] == [(1, RuleType.MERCHANT)]


def test_duplicate_value_is_rejected_by_the_database(sql_store):
    sql_store.add_rule(_rule("walmart"))
    with pytest.raises(ValidationError, match="already exists"):
        sql_store.add_rule(_rule("walmart"))


def test_update_and_delete(sql_store):
    rule = sql_store.add_rule(_rule("walmart"))
    updated = sql_store.update(rule.id, confidence_weight=2.5, active=False, value="wal-mart")
    assert (updated.confidence_weight, updated.active, updated.value) == (2.5, False, "wal-mart")

    sql_store.delete(rule.id)
    assert sql_store.get(rule.id) is None
    with pytest.raises(NotFoundError):
        sql_store.delete(rule.id)
    with pytest.raises(NotFoundError):
        sql_store.update(rule.id, active=True)


def test_update_composite_components(sql_store):
    ids = [sql_store.add_rule(_rule(v)).id for v in ("uber", "lyft", "taxi")]
    composite = sql_store.add_composite(
        CompositeRule(category_id=1, operator=CompositeOperator.OR, component_rule_ids=ids[:2])
    )
    updated = sql_store.update(
        composite.id, operator=CompositeOperator.AND, component_rule_ids=ids
    )
    assert updated.operator == CompositeOperator.AND
    assert sql_store.get(composite.id).component_rule_ids == ids


def test_composite_conditions_are_persisted(sql_store):
    ids = [sql_store.add_rule(_rule(v)).id for v in ("uber", "lyft")]
    conditions = {
        "days_of_week": ["friday", "saturday"],
        "time_ranges": [{"start": "22:00", "end": "02:00"}],
    }
    composite = sql_store.add_composite(
        CompositeRule(
            category_id=1,
            operator=CompositeOperator.OR,
            component_rule_ids=ids,
            conditions=conditions,
        )
    )
    assert sql_store.get(composite.id).conditions == conditions

    sql_store.update(composite.id, conditions={"min_amount": 5.0})
    assert sql_store.get(composite.id).conditions == {"min_amount": 5.0}
    plain = sql_store.add_composite(
        CompositeRule(category_id=1, operator=CompositeOperator.AND, component_rule_ids=ids)
    )
    assert sql_store.get(plain.id).conditions == {}


# ── Counters ────────────────────────────────────────


def test_increment_counters_updates_success_rate(sql_store):
    rule = sql_store.add_rule(_rule())
    sql_store.increment_counters(rule.id, 1, 1)
    snapshot = sql_store.increment_counters(rule.id, 1, 0)
    assert (snapshot.usage_count, snapshot.success_count) == (2, 1)
    assert snapshot.success_rate == pytest.approx(0.5)

    with sql_store.engine.connect() as conn:
        stored_rate = conn.execute(
            text("SELECT success_rate FROM categorization_patterns WHERE id = :id"), {"id": rule.id}
        ).scalar_one()
    assert stored_rate == pytest.approx(0.5)


def test_increment_unknown_rule(sql_store):
    with pytest.raises(NotFoundError):
        sql_store.increment_counters(404, 1, 1)


def test_storage_failure_surfaces_as_write_conflict(sql_store):
    rule = sql_store.add_rule(_rule())
    with sql_store.engine.begin() as conn:
        conn.execute(text("DROP TABLE pattern_feedbacks"))
        conn.execute(text("DROP TABLE categorization_patterns"))
    with pytest.raises(CounterWriteConflict):
        sql_store.increment_counters(rule.id, 1, 1)


# ── Feedback ────────────────────────────────────────


def test_count_feedback_window(sql_store):
    rule = sql_store.add_rule(_rule())
    for days_ago in (0, 1, 7, 8):
        sql_store.add_feedback(
            FeedbackRecord(
                rule_id=rule.id,
                category_id=1,
                outcome=FeedbackOutcome.ACCEPTED,
                timestamp=NOW - timedelta(days=days_ago),
            )
        )
    assert sql_store.count_feedback(rule.id, NOW - timedelta(days=7), NOW) == 2
    assert sql_store.count_feedback(rule.id, NOW - timedelta(days=14), NOW - timedelta(days=7)) == 2
    assert sql_store.count_feedback(rule.id + 1, NOW - timedelta(days=14), NOW) == 0


# ── Engine on SQL storage ───────────────────────────


def test_engine_end_to_end(sql_store, settings, make_record):
    engine = CategorizationEngine(sql_store, settings)
    rule = engine.create_rule(1, "merchant", "  Walmart ", confidence_weight=2.0)
    with pytest.raises(ValidationError, match="already exists"):
        engine.create_rule(1, "merchant", "WALMART")

    [suggestion] = engine.suggest(make_record(merchant_name="WALMART #4402"))
    assert suggestion.rule_id == rule.id
    assert suggestion.confidence == pytest.approx(0.4)

    engine.record_feedback(rule.id, 1, "accepted")
    engine.record_feedback(rule.id, 1, "rejected")
    stats = engine.rule_statistics(rule.id)
    assert (stats.usage_count, stats.success_count) == (2, 1)
