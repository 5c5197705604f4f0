"""Match outcome and suggestion schemas."""

from pydantic import BaseModel


class MatchOutcome(BaseModel):
    """Result of evaluating one rule against one transaction.

    `weight` is the rule's raw confidence weight, `confidence` the same
    value normalised into [0, 1]. Both are 0 when the rule did not match.
    """

    rule_id: int | None
    matched: bool
    confidence: float = 0.0
    weight: float = 0.0
    reason: str = ""

    @classmethod
    def no_match(cls, rule_id: int | None, reason: str = "") -> "MatchOutcome":
        return cls(rule_id=rule_id, matched=False, reason=reason)


class Suggestion(BaseModel):
    """A ranked category suggestion for a transaction."""

    category_id: int
    confidence: float
    score: float
    reason: str
    rule_id: int
