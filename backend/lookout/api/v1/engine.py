"""Single-endpoint engine interface.

Accepts ``{"action": ..., "rule_id": ..., "events": [...]}`` and dispatches
to rule evaluation, rule testing or a correlation sweep.
"""

from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from lookout.api.v1.rules import parse_events
from lookout.exceptions import BadRequestError
from lookout.schemas.correlation import EvaluationResponse, SweepResult
from lookout.services.correlation_engine import CorrelationEngine, get_correlation_engine

router = APIRouter()


class EngineAction(str, Enum):
    EVALUATE_RULE = "evaluate_rule"
    TEST_RULE = "test_rule"
    CORRELATE_EVENTS = "correlate_events"


class EngineRequest(BaseModel):
    """Engine action request."""

    action: str
    rule_id: str | None = None
    events: list[dict[str, Any]] | None = None


@router.post("", response_model=None)
async def run_action(
    request: EngineRequest,
    engine: CorrelationEngine = Depends(get_correlation_engine),
) -> EvaluationResponse | SweepResult:
    """Run one engine action."""
    try:
        action = EngineAction(request.action)
    except ValueError:
        raise BadRequestError(f"Invalid action: {request.action}") from None

    if action == EngineAction.CORRELATE_EVENTS:
        return await engine.run_sweep()

    if not request.rule_id:
        raise BadRequestError(f"Action '{action.value}' requires rule_id")

    if action == EngineAction.TEST_RULE:
        result = await engine.test_rule(request.rule_id)
    else:
        result = await engine.evaluate_rule(request.rule_id, parse_events(request.events))
    return EvaluationResponse.from_result(result)
