"""SQLAlchemy-backed pattern store.

Counter updates are single UPDATE statements that add to the stored
values in the database, so concurrent feedback never loses an increment.
"""

from datetime import datetime

import structlog
from sqlalchemy import Engine, Float, case, cast, create_engine, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.core.exceptions import CounterWriteConflict, NotFoundError, ValidationError
from pattern_engine.models import Base, CategorizationPattern, PatternFeedback
from pattern_engine.schemas.feedback import FeedbackRecord
from pattern_engine.schemas.pattern import (
    CompositeOperator,
    CompositeRule,
    CounterSnapshot,
    Rule,
    RuleOrigin,
    RuleType,
)
from pattern_engine.services.pattern_store import PatternStore

logger = structlog.get_logger()

ATOMIC = "atomic"
COMPOSITE = "composite"

# Schema field name → model attribute
_COLUMNS = {
    "rule_type": "pattern_type",
    "value": "pattern_value",
    "component_rule_ids": "component_ids",
    "metadata": "pattern_metadata",
}


def _to_schema(row: CategorizationPattern) -> Rule | CompositeRule:
    common = {
        "id": row.id,
        "category_id": row.category_id,
        "confidence_weight": row.confidence_weight,
        "active": row.active,
        "origin": RuleOrigin(row.origin),
        "usage_count": row.usage_count,
        "success_count": row.success_count,
    }
    if row.kind == COMPOSITE:
        return CompositeRule(
            operator=CompositeOperator(row.operator),
            component_rule_ids=list(row.component_ids or []),
            name=row.name,
            conditions=dict(row.conditions or {}),
            **common,
        )
    return Rule(
        rule_type=RuleType(row.pattern_type),
        value=row.pattern_value,
        metadata=dict(row.pattern_metadata or {}),
        **common,
    )


def _to_column_value(field: str, value):
    if isinstance(value, (RuleType, RuleOrigin, CompositeOperator)):
        return value.value
    if field == "component_rule_ids":
        return list(value)
    return value


class SqlPatternStore(PatternStore):
    def __init__(self, engine: Engine | None = None, settings: Settings | None = None):
        settings = settings or default_settings
        self.engine = engine or create_engine(settings.database_url)
        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("pattern_schema_created", url=self.engine.url.render_as_string(hide_password=True))

    # ── Reads ──────────────────────────────────────────

    def _select(self, kind: str, active_only: bool) -> list:
        query = select(CategorizationPattern).where(CategorizationPattern.kind == kind)
        if active_only:
            query = query.where(CategorizationPattern.active.is_(True))
        with self.session_factory() as session:
            rows = session.execute(query.order_by(CategorizationPattern.id)).scalars().all()
            return [_to_schema(row) for row in rows]

    def active_rules(self) -> list[Rule]:
        return self._select(ATOMIC, active_only=True)

    def active_composites(self) -> list[CompositeRule]:
        return self._select(COMPOSITE, active_only=True)

    def all_rules(self) -> list[Rule]:
        return self._select(ATOMIC, active_only=False)

    def all_composites(self) -> list[CompositeRule]:
        return self._select(COMPOSITE, active_only=False)

    def get(self, rule_id: int) -> Rule | CompositeRule | None:
        with self.session_factory() as session:
            row = session.get(CategorizationPattern, rule_id)
            return _to_schema(row) if row else None

    def rules_in_category(self, category_id: int, rule_type: RuleType) -> list[Rule]:
        query = select(CategorizationPattern).where(
            CategorizationPattern.kind == ATOMIC,
            CategorizationPattern.category_id == category_id,
            CategorizationPattern.pattern_type == RuleType(rule_type).value,
        )
        with self.session_factory() as session:
            return [_to_schema(row) for row in session.execute(query).scalars().all()]

    # ── Writes ─────────────────────────────────────────

    def add_rule(self, rule: Rule) -> Rule:
        row = CategorizationPattern(
            kind=ATOMIC,
            category_id=rule.category_id,
            pattern_type=rule.rule_type.value,
            pattern_value=rule.value,
            confidence_weight=rule.confidence_weight,
            active=rule.active,
            origin=rule.origin.value,
            usage_count=rule.usage_count,
            success_count=rule.success_count,
            success_rate=rule.success_rate,
            pattern_metadata=dict(rule.metadata),
        )
        return self._insert(row)

    def add_composite(self, composite: CompositeRule) -> CompositeRule:
        row = CategorizationPattern(
            kind=COMPOSITE,
            category_id=composite.category_id,
            name=composite.name,
            operator=composite.operator.value,
            component_ids=list(composite.component_rule_ids),
            conditions=dict(composite.conditions),
            confidence_weight=composite.confidence_weight,
            active=composite.active,
            origin=composite.origin.value,
            usage_count=composite.usage_count,
            success_count=composite.success_count,
            success_rate=composite.success_rate,
        )
        return self._insert(row)

    def _insert(self, row: CategorizationPattern):
        try:
            with self.session_factory.begin() as session:
                session.add(row)
                session.flush()
                return _to_schema(row)
        except IntegrityError as e:
            raise ValidationError("already exists for this category and pattern type") from e

    def update(self, rule_id: int, **changes) -> Rule | CompositeRule:
        with self.session_factory.begin() as session:
            row = session.get(CategorizationPattern, rule_id)
            if row is None:
                raise NotFoundError("CategorizationPattern")
            for field, value in changes.items():
                setattr(row, _COLUMNS.get(field, field), _to_column_value(field, value))
            session.flush()
            return _to_schema(row)

    def delete(self, rule_id: int) -> None:
        with self.session_factory.begin() as session:
            row = session.get(CategorizationPattern, rule_id)
            if row is None:
                raise NotFoundError("CategorizationPattern")
            session.delete(row)

    def increment_counters(self, rule_id: int, usage: int, success: int) -> CounterSnapshot:
        new_usage = CategorizationPattern.usage_count + usage
        new_success = CategorizationPattern.success_count + success
        stmt = (
            update(CategorizationPattern)
            .where(CategorizationPattern.id == rule_id)
            .values(
                usage_count=new_usage,
                success_count=new_success,
                success_rate=case(
                    (new_usage > 0, cast(new_success, Float) / new_usage),
                    else_=0.0,
                ),
            )
            .returning(CategorizationPattern.usage_count, CategorizationPattern.success_count)
            .execution_options(synchronize_session=False)
        )
        try:
            with self.session_factory.begin() as session:
                result = session.execute(stmt).one_or_none()
        except OperationalError as e:
            raise CounterWriteConflict(rule_id, f"Counter write conflict on rule {rule_id}: {e.orig}") from e

        if result is None:
            raise NotFoundError("CategorizationPattern")
        return CounterSnapshot(rule_id=rule_id, usage_count=result[0], success_count=result[1])

    # ── Feedback ───────────────────────────────────────

    def add_feedback(self, record: FeedbackRecord) -> None:
        with self.session_factory.begin() as session:
            session.add(
                PatternFeedback(
                    pattern_id=record.rule_id,
                    category_id=record.category_id,
                    outcome=record.outcome.value,
                    created_at=record.timestamp,
                )
            )

    def count_feedback(self, rule_id: int, start: datetime, end: datetime) -> int:
        query = (
            select(func.count())
            .select_from(PatternFeedback)
            .where(
                PatternFeedback.pattern_id == rule_id,
                PatternFeedback.created_at > start,
                PatternFeedback.created_at <= end,
            )
        )
        with self.session_factory() as session:
            return session.execute(query).scalar_one()
