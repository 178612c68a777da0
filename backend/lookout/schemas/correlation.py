"""Evaluation and sweep results."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lookout.models.alert import AlertStatus
from lookout.schemas.events import NormalizedEvent, SeverityLevel


class EvaluationResult(BaseModel):
    """Outcome of evaluating one rule against an event set.

    ``correlation`` is None when nothing matched, except for expression
    rules, which always report their matched count.
    """

    matches: bool
    matched_events: list[NormalizedEvent] = Field(default_factory=list)
    correlation: dict[str, Any] | None = None

    @classmethod
    def no_match(cls) -> "EvaluationResult":
        return cls(matches=False)


class EvaluationResponse(BaseModel):
    """Evaluation result with events serialized as flat ECS documents."""

    matches: bool
    matched_events: list[dict[str, Any]] = Field(default_factory=list)
    correlation: dict[str, Any] | None = None

    @classmethod
    def from_result(cls, result: EvaluationResult) -> "EvaluationResponse":
        return cls(
            matches=result.matches,
            matched_events=[event.to_document() for event in result.matched_events],
            correlation=result.correlation,
        )


class AlertSummary(BaseModel):
    """Alert as reported in a sweep result."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    rule_id: UUID | None
    rule_title: str
    severity: SeverityLevel
    status: AlertStatus
    timestamp_first: datetime
    timestamp_last: datetime
    count: int
    entity_keys: list[str] = Field(default_factory=list)
    correlation_data: dict[str, Any] = Field(default_factory=dict)


class AlertResponse(AlertSummary):
    """Full alert including operator fields."""

    assigned_to: str | None = None
    notes: str | None = None
    resolution: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SweepResult(BaseModel):
    """Summary of one correlation sweep."""

    processed_rules: int = 0
    processed_events: int = 0
    alerts_generated: int = 0
    alerts: list[AlertSummary] = Field(default_factory=list)
    failed_rules: list[str] = Field(default_factory=list)
    timed_out: bool = False
