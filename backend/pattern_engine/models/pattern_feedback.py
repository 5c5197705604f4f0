"""Pattern feedback model."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pattern_engine.models.base import Base


class PatternFeedback(Base):
    """One user verdict on a suggestion. Rows are never updated."""

    __tablename__ = "pattern_feedbacks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    pattern_id: Mapped[int | None] = mapped_column(
        ForeignKey("categorization_patterns.id", ondelete="SET NULL"), nullable=True
    )
    category_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    outcome: Mapped[str] = mapped_column(String(10), nullable=False)  # accepted, rejected, corrected
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_pattern_feedbacks_pattern_created", "pattern_id", "created_at"),
    )
