"""Pattern matching and confidence engine for transaction categorization."""

from pattern_engine.core.exceptions import (
    CounterWriteConflict,
    EvaluationFault,
    NotFoundError,
    PatternEngineError,
    ValidationError,
)
from pattern_engine.schemas.classification import MatchOutcome, Suggestion
from pattern_engine.schemas.feedback import FeedbackOutcome, FeedbackRecord, RuleStatistics, Trend
from pattern_engine.schemas.pattern import CompositeOperator, CompositeRule, Rule, RuleOrigin, RuleType
from pattern_engine.schemas.transaction import TransactionRecord
from pattern_engine.services.categorization_engine import CategorizationEngine
from pattern_engine.services.pattern_store import InMemoryPatternStore, PatternStore

__all__ = [
    "CategorizationEngine",
    "CompositeOperator",
    "CompositeRule",
    "CounterWriteConflict",
    "EvaluationFault",
    "FeedbackOutcome",
    "FeedbackRecord",
    "InMemoryPatternStore",
    "MatchOutcome",
    "NotFoundError",
    "PatternEngineError",
    "PatternStore",
    "Rule",
    "RuleOrigin",
    "RuleStatistics",
    "RuleType",
    "Suggestion",
    "TransactionRecord",
    "Trend",
    "ValidationError",
]
