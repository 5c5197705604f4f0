"""Categorization pattern model."""

from sqlalchemy import JSON, Boolean, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pattern_engine.models.base import Base, TimestampMixin


class CategorizationPattern(Base, TimestampMixin):
    """An atomic rule or a composite rule.

    Both kinds live in one table so they share a single id space; `kind`
    tells them apart. Atomic rows fill pattern_type/pattern_value, composite
    rows fill operator/component_ids and optionally conditions.
    """

    __tablename__ = "categorization_patterns"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)  # atomic, composite
    category_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Atomic rules
    pattern_type: Mapped[str | None] = mapped_column(
        String(20), nullable=True
    )  # merchant, keyword, description, amount_range, regex, time
    pattern_value: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Composite rules
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    operator: Mapped[str | None] = mapped_column(String(3), nullable=True)  # AND, OR
    component_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # Guards checked before the operator
    conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    confidence_weight: Mapped[float] = mapped_column(Float, default=1.0)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    origin: Mapped[str] = mapped_column(String(10), default="user")  # user, system
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    # "metadata" is reserved on declarative classes
    pattern_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "category_id", "pattern_type", "pattern_value", name="uq_patterns_category_type_value"
        ),
        Index("idx_patterns_kind_active", "kind", "active"),
    )
