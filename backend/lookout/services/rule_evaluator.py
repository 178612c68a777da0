"""Rule evaluation against a set of normalized events.

One strategy per rule type:

- Pattern rules: events inside the rule's timeframe that satisfy the
  detection condition are grouped by entity; the first group (in the order
  the events were supplied) reaching the threshold fires.
- Expression rules: events inside the timeframe for which the expression
  holds are counted; the rule fires when the count reaches the threshold.
  The count is reported in the correlation data even without a match.
- Scripted rules: the whole event set is grouped by user; every user who
  completes the sequence contributes one witness event per step.

Evaluation is pure: nothing is persisted here.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from lookout.schemas.correlation import EvaluationResult
from lookout.schemas.events import ENTITY_KEY_FIELDS, NormalizedEvent
from lookout.schemas.rules import ExpressionRule, RuleDefinition, ScriptedRule, SigmaRule

logger = logging.getLogger(__name__)

UNKNOWN_ENTITY = "unknown"


def entity_key(event: NormalizedEvent) -> str:
    """Grouping key: first present of source IP, user name, host name."""
    for field in ENTITY_KEY_FIELDS:
        value = event.get(field)
        if value is not None:
            return str(value)
    return UNKNOWN_ENTITY


def within_timeframe(
    events: Sequence[NormalizedEvent],
    timeframe_minutes: int,
    now: datetime,
) -> list[NormalizedEvent]:
    """Events with ``timestamp >= now - timeframe`` (inclusive), order kept."""
    cutoff = now - timedelta(minutes=timeframe_minutes)
    return [event for event in events if event.timestamp >= cutoff]


class RuleEvaluator:
    """Evaluates rule definitions against events."""

    def evaluate(
        self,
        rule: RuleDefinition,
        events: Sequence[NormalizedEvent],
        now: datetime | None = None,
    ) -> EvaluationResult:
        """Evaluate a rule.

        Args:
            rule: Rule definition
            events: Candidate events, most recent first
            now: Reference time for the timeframe window (defaults to now)

        Returns:
            Evaluation result; no match is a normal result
        """
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)

        match rule:
            case SigmaRule():
                result = self._evaluate_pattern(rule, events, now)
            case ExpressionRule():
                result = self._evaluate_expression(rule, events, now)
            case ScriptedRule():
                result = self._evaluate_sequence(rule, events)

        logger.debug(
            "Rule %s evaluated against %d events: matches=%s",
            rule.id,
            len(events),
            result.matches,
        )
        return result

    def _evaluate_pattern(
        self,
        rule: SigmaRule,
        events: Sequence[NormalizedEvent],
        now: datetime,
    ) -> EvaluationResult:
        if rule.detection is None:
            return EvaluationResult.no_match()

        groups: dict[str, list[NormalizedEvent]] = {}
        for event in within_timeframe(events, rule.timeframe, now):
            if rule.detection.matches(event):
                groups.setdefault(entity_key(event), []).append(event)

        for key, group in groups.items():
            if len(group) >= rule.threshold:
                return EvaluationResult(
                    matches=True,
                    matched_events=group,
                    correlation={
                        "entity_key": key,
                        "event_count": len(group),
                        "timeframe": rule.timeframe_label,
                        "threshold_exceeded": True,
                    },
                )

        return EvaluationResult.no_match()

    def _evaluate_expression(
        self,
        rule: ExpressionRule,
        events: Sequence[NormalizedEvent],
        now: datetime,
    ) -> EvaluationResult:
        matched = []
        if rule.program is not None:
            matched = [
                event
                for event in within_timeframe(events, rule.timeframe, now)
                if rule.program.evaluate(event)
            ]

        correlation = {"expression": rule.expression, "matched_count": len(matched)}
        if not matched or len(matched) < rule.threshold:
            return EvaluationResult(matches=False, correlation=correlation)

        return EvaluationResult(matches=True, matched_events=matched, correlation=correlation)

    def _evaluate_sequence(
        self,
        rule: ScriptedRule,
        events: Sequence[NormalizedEvent],
    ) -> EvaluationResult:
        if rule.sequence is None:
            return EvaluationResult.no_match()

        completed = rule.sequence.find(events)
        if not completed:
            return EvaluationResult.no_match()

        return EvaluationResult(
            matches=True,
            matched_events=[event for match in completed for event in match.events],
            correlation={
                "sequence_detected": True,
                "user_count": len(completed),
                "users": [match.entity for match in completed],
            },
        )
