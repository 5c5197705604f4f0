"""SQLAlchemy models."""

from pattern_engine.models.base import Base
from pattern_engine.models.categorization_pattern import CategorizationPattern
from pattern_engine.models.pattern_feedback import PatternFeedback

__all__ = [
    "Base",
    "CategorizationPattern",
    "PatternFeedback",
]
