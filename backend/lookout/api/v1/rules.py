"""Rule evaluation API endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, ValidationError

from lookout.exceptions import BadRequestError, ErrorDetail
from lookout.schemas.correlation import EvaluationResponse
from lookout.schemas.events import NormalizedEvent
from lookout.services.correlation_engine import CorrelationEngine, get_correlation_engine

router = APIRouter()


class EvaluateRequest(BaseModel):
    """Evaluate rule request."""

    events: list[dict[str, Any]] | None = Field(
        default=None,
        description="Events to evaluate; the last hour of stored events when omitted",
    )


def parse_events(raw_events: list[dict[str, Any]] | None) -> list[NormalizedEvent] | None:
    """Convert request event documents into normalized events.

    Raises:
        BadRequestError: If an event is missing its id or timestamp or has
            a malformed field
    """
    if raw_events is None:
        return None

    events = []
    for index, raw in enumerate(raw_events):
        try:
            events.append(NormalizedEvent.from_document(raw))
        except ValidationError as e:
            details = [
                ErrorDetail(
                    field=f"events.{index}." + ".".join(str(loc) for loc in error["loc"]),
                    message=error["msg"],
                    code=error["type"],
                )
                for error in e.errors()
            ]
            raise BadRequestError(f"Invalid event at index {index}", details=details) from e
    return events


@router.post("/{rule_id}/evaluate", response_model=EvaluationResponse)
async def evaluate_rule(
    rule_id: str,
    request: EvaluateRequest | None = None,
    engine: CorrelationEngine = Depends(get_correlation_engine),
) -> EvaluationResponse:
    """Evaluate a rule against supplied events without creating alerts."""
    events = parse_events(request.events if request else None)
    result = await engine.evaluate_rule(rule_id, events)
    return EvaluationResponse.from_result(result)


@router.post("/{rule_id}/test", response_model=EvaluationResponse)
async def test_rule(
    rule_id: str,
    engine: CorrelationEngine = Depends(get_correlation_engine),
) -> EvaluationResponse:
    """Evaluate a rule against the most recent sample of stored events."""
    result = await engine.test_rule(rule_id)
    return EvaluationResponse.from_result(result)
