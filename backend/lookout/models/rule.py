"""Detection rule model for Lookout."""

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from lookout.database import Base
from lookout.models.compat import ArrayType, enum_values
from lookout.schemas.events import SeverityLevel


class RuleType(str, enum.Enum):
    """Detection rule type."""

    SIGMA = "sigma"  # pattern rule, YAML selection + condition
    CEL = "cel"  # boolean expression rule
    PYTHON = "python"  # scripted sequence rule


class DetectionRule(Base):
    """Persisted detection rule definition."""

    __tablename__ = "rules"
    __table_args__ = (
        CheckConstraint("threshold IS NULL OR threshold >= 1", name="ck_rules_threshold"),
        CheckConstraint("timeframe IS NULL OR timeframe >= 0", name="ck_rules_timeframe"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stored as a plain string so rows with an unknown type can still be
    # loaded and rejected at evaluation time.
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=RuleType.SIGMA.value)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Type-specific bodies
    yaml: Mapped[str | None] = mapped_column(Text, nullable=True)
    expression: Mapped[str | None] = mapped_column(Text, nullable=True)
    python_code: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Tuning
    timeframe: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    level: Mapped[SeverityLevel] = mapped_column(
        Enum(SeverityLevel, name="severity_level", values_callable=enum_values),
        nullable=False,
        default=SeverityLevel.MEDIUM,
    )
    fields: Mapped[list[str]] = mapped_column(ArrayType(String), default=list)
    tags: Mapped[list[str]] = mapped_column(ArrayType(String), default=list)

    # Trigger statistics, written only by the correlation sweep
    last_triggered: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<DetectionRule {self.title} ({self.type})>"
