"""Categorization pattern schemas."""

from enum import Enum

from pydantic import BaseModel, Field, computed_field


class RuleType(str, Enum):
    MERCHANT = "merchant"
    KEYWORD = "keyword"
    DESCRIPTION = "description"
    AMOUNT_RANGE = "amount_range"
    REGEX = "regex"
    TIME = "time"


TEXT_RULE_TYPES = frozenset({RuleType.MERCHANT, RuleType.KEYWORD, RuleType.DESCRIPTION})


class RuleOrigin(str, Enum):
    USER = "user"
    SYSTEM = "system"


class CompositeOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class PatternCounters(BaseModel):
    """Usage counters shared by atomic and composite rules."""

    usage_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.usage_count <= 0:
            return 0.0
        return self.success_count / self.usage_count


class Rule(PatternCounters):
    """An atomic pattern of a single type."""

    id: int | None = None
    category_id: int
    rule_type: RuleType
    value: str
    confidence_weight: float = 1.0
    active: bool = True
    origin: RuleOrigin = RuleOrigin.USER
    metadata: dict = Field(default_factory=dict)


class CompositeRule(PatternCounters):
    """A boolean combination of atomic and/or composite rules.

    Components are referenced by id and must form a DAG; this is checked
    when the composite is created or edited, never at evaluation time.
    """

    id: int | None = None
    category_id: int
    operator: CompositeOperator
    component_rule_ids: list[int]
    confidence_weight: float = 1.0
    active: bool = True
    origin: RuleOrigin = RuleOrigin.USER
    name: str | None = None
    # Guards checked before the operator; see PatternValidator.validate_conditions
    conditions: dict = Field(default_factory=dict)


class NormalizedValue(BaseModel):
    """Result of a successful validation."""

    rule_type: RuleType
    value: str
    metadata: dict = Field(default_factory=dict)


class CounterSnapshot(PatternCounters):
    rule_id: int
