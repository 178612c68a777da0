"""Alert model for Lookout detection.

Alerts are created by the correlation sweep when a rule matches. They track:
- Rule that triggered the alert (title and severity copied at fire time)
- Matched event window, count and participating entities
- Alert lifecycle (open -> investigating -> resolved, or false_positive)

Only the status and operator fields change after creation.
"""

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lookout.database import Base
from lookout.models.compat import ArrayType, JSONBType, enum_values
from lookout.schemas.events import SeverityLevel


class AlertStatus(str, enum.Enum):
    """Alert status lifecycle."""

    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


# Columns an operator may change after the alert exists
MUTABLE_ALERT_FIELDS = frozenset({"status", "assigned_to", "notes", "resolution"})


class Alert(Base):
    """Security alert generated by a matching detection rule."""

    __tablename__ = "alerts"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)

    # Rule reference
    rule_id: Mapped[UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("rules.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    rule_title: Mapped[str] = mapped_column(String(255), nullable=False)

    severity: Mapped[SeverityLevel] = mapped_column(
        Enum(SeverityLevel, name="severity_level", values_callable=enum_values),
        nullable=False,
    )
    status: Mapped[AlertStatus] = mapped_column(
        Enum(AlertStatus, name="alert_status", values_callable=enum_values),
        nullable=False,
        default=AlertStatus.OPEN,
        index=True,
    )

    # Matched window
    timestamp_first: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    timestamp_last: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entity_keys: Mapped[list[str]] = mapped_column(ArrayType(String), default=list)
    correlation_data: Mapped[dict] = mapped_column(JSONBType, default=dict)

    # Operator fields
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    events: Mapped[list["AlertEvent"]] = relationship(
        "AlertEvent",
        back_populates="alert",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Alert {self.rule_title} ({self.status.value})>"


class AlertEvent(Base):
    """Link between an alert and an event that contributed to it."""

    __tablename__ = "alert_events"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    alert_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("alerts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Events live in Elasticsearch, so this is a reference rather than a FK
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    alert: Mapped["Alert"] = relationship("Alert", back_populates="events")

    def __repr__(self) -> str:
        return f"<AlertEvent {self.alert_id} -> {self.event_id}>"
