"""Shared test fixtures."""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from pattern_engine.config import Settings
from pattern_engine.schemas.pattern import Rule, RuleType
from pattern_engine.schemas.transaction import TransactionRecord
from pattern_engine.services.categorization_engine import CategorizationEngine
from pattern_engine.services.pattern_store import InMemoryPatternStore
from pattern_engine.services.sql_pattern_store import SqlPatternStore

# Wednesday afternoon
WEDNESDAY_2PM = datetime(2026, 3, 4, 14, 0)


@pytest.fixture
def settings():
    """Default settings, isolated from any local .env file."""
    return Settings(_env_file=None, counter_write_backoff_ms=0)


@pytest.fixture
def store():
    return InMemoryPatternStore()


@pytest.fixture
def engine(store, settings):
    return CategorizationEngine(store, settings)


@pytest.fixture
def sql_store(settings):
    """SQL pattern store on a private in-memory SQLite database."""
    db = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = SqlPatternStore(db, settings)
    store.create_schema()
    yield store
    db.dispose()


@pytest.fixture
def make_record():
    def _make(
        merchant_name: str | None = None,
        description: str | None = None,
        amount: str = "10.00",
        transaction_date: datetime = WEDNESDAY_2PM,
    ) -> TransactionRecord:
        return TransactionRecord(
            merchant_name=merchant_name,
            description=description,
            amount=Decimal(amount),
            transaction_date=transaction_date,
        )

    return _make


@pytest.fixture
def make_rule():
    def _make(
        rule_id: int,
        rule_type: RuleType,
        value: str,
        category_id: int = 1,
        weight: float = 1.0,
        **fields,
    ) -> Rule:
        return Rule(
            id=rule_id,
            category_id=category_id,
            rule_type=rule_type,
            value=value,
            confidence_weight=weight,
            **fields,
        )

    return _make
