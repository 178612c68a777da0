"""Correlation orchestration: rule tests, ad-hoc evaluation and sweeps.

``test_rule`` and ``evaluate_rule`` never persist anything. ``run_sweep``
evaluates every enabled rule against one shared window of recent events
and, for each rule that fires, stores an alert, links it to its events and
updates the rule's trigger statistics in a transaction of its own.

Example:
```python
engine = CorrelationEngine(session, event_store)
summary = await engine.run_sweep()
```
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lookout.config import Settings, get_settings
from lookout.database import get_db
from lookout.exceptions import NotFoundError
from lookout.models.alert import Alert, AlertStatus
from lookout.models.rule import DetectionRule
from lookout.schemas.correlation import AlertSummary, EvaluationResult, SweepResult
from lookout.schemas.events import ENTITY_KEY_FIELDS, NormalizedEvent, SeverityLevel
from lookout.schemas.rules import RuleDefinition, build_rule_definition
from lookout.services.alert_store import AlertStore
from lookout.services.event_store import EventStore, get_event_store
from lookout.services.rule_evaluator import RuleEvaluator
from lookout.services.rule_store import RuleStore

logger = logging.getLogger(__name__)

# Window used by evaluate_rule when no events are supplied
EVALUATE_LOOKBACK = timedelta(hours=1)


def collect_entity_keys(events: Sequence[NormalizedEvent]) -> list[str]:
    """``field:value`` keys for every entity field present, deduplicated in order."""
    keys: dict[str, None] = {}
    for event in events:
        for field in ENTITY_KEY_FIELDS:
            value = event.get(field)
            if value is not None:
                keys.setdefault(f"{field}:{value}", None)
    return list(keys)


def build_alert(rule: RuleDefinition, result: EvaluationResult) -> Alert:
    """Create the alert for a matching evaluation.

    Args:
        rule: Rule that fired
        result: Matching evaluation result

    Returns:
        New, unsaved alert in the ``open`` state
    """
    events = result.matched_events
    ordered = sorted(event.timestamp for event in events)
    return Alert(
        rule_id=UUID(rule.id),
        rule_title=rule.title,
        severity=SeverityLevel(rule.level),
        status=AlertStatus.OPEN,
        timestamp_first=ordered[0],
        timestamp_last=ordered[-1],
        count=len(events),
        entity_keys=collect_entity_keys(events),
        correlation_data=result.correlation or {},
    )


class CorrelationEngine:
    """Runs rules against event windows and turns matches into alerts."""

    def __init__(
        self,
        session: AsyncSession,
        event_store: EventStore,
        rule_store: RuleStore | None = None,
        alert_store: AlertStore | None = None,
        evaluator: RuleEvaluator | None = None,
        settings: Settings | None = None,
    ):
        """Initialize correlation engine.

        Args:
            session: Database session shared by the rule and alert stores
            event_store: Source of event windows
            rule_store: Rule access (defaults to one bound to ``session``)
            alert_store: Alert access (defaults to one bound to ``session``)
            evaluator: Rule evaluator
            settings: Application settings
        """
        self.session = session
        self.events = event_store
        self.rules = rule_store or RuleStore(session)
        self.alerts = alert_store or AlertStore(session)
        self.evaluator = evaluator or RuleEvaluator()
        self.settings = settings or get_settings()

    async def _load_rule(self, rule_id: str) -> RuleDefinition:
        rule = await self.rules.get(rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)
        return build_rule_definition(rule, self.settings)

    async def test_rule(self, rule_id: str) -> EvaluationResult:
        """Evaluate a rule against the most recent sample of events.

        Raises:
            NotFoundError: If the rule does not exist
            UnsupportedRuleTypeError: If the rule type is unknown
            StoreUnavailableError: If events cannot be fetched
        """
        rule = await self._load_rule(rule_id)
        events = await self.events.fetch_sample_events(self.settings.sample_event_limit)
        logger.info("Testing rule %s against %d sample events", rule_id, len(events))
        return self.evaluator.evaluate(rule, events)

    async def evaluate_rule(
        self,
        rule_id: str,
        events: Sequence[NormalizedEvent] | None = None,
    ) -> EvaluationResult:
        """Evaluate a rule against supplied events or the last hour of events.

        Raises:
            NotFoundError: If the rule does not exist
            UnsupportedRuleTypeError: If the rule type is unknown
            StoreUnavailableError: If events cannot be fetched
        """
        rule = await self._load_rule(rule_id)
        now = datetime.now(UTC)
        if events is None:
            events = await self.events.fetch_recent_events(now - EVALUATE_LOOKBACK)
        return self.evaluator.evaluate(rule, events, now=now)

    async def run_sweep(self) -> SweepResult:
        """Evaluate all enabled rules and persist alerts for matches.

        Rules are evaluated one at a time, each persisting its alert in a
        savepoint. A rule that fails to load, evaluate or persist is logged
        and skipped. When the sweep exceeds ``sweep_timeout_seconds`` the summary
        gathered so far is returned with ``timed_out`` set.

        Raises:
            StoreUnavailableError: If rules or events cannot be loaded
        """
        now = datetime.now(UTC)
        summary = SweepResult()

        rules = await self.rules.list(enabled=True)
        summary.processed_rules = len(rules)

        # Definitions are built up front; ORM rows are not read again once
        # the sweep starts committing.
        definitions = self._build_definitions(rules, summary)

        since = now - timedelta(minutes=self.settings.sweep_lookback_minutes)
        events = await self.events.fetch_recent_events(since)
        summary.processed_events = len(events)

        logger.info("Correlation sweep: %d rules, %d events", len(rules), len(events))

        try:
            async with asyncio.timeout(self.settings.sweep_timeout_seconds):
                for definition in definitions:
                    await self._sweep_rule(definition, events, now, summary)
        except TimeoutError:
            logger.error(
                "Correlation sweep timed out after %.1fs; %d alerts generated",
                self.settings.sweep_timeout_seconds,
                summary.alerts_generated,
            )
            await self.session.rollback()
            summary.timed_out = True

        logger.info(
            "Correlation sweep complete: %d alerts generated, %d rules failed",
            summary.alerts_generated,
            len(summary.failed_rules),
        )
        return summary

    def _build_definitions(
        self,
        rules: Sequence[DetectionRule],
        summary: SweepResult,
    ) -> list[RuleDefinition]:
        definitions = []
        for rule in rules:
            rule_id = str(rule.id)
            try:
                definitions.append(build_rule_definition(rule, self.settings))
            except Exception:
                logger.exception("Rule %s could not be loaded for correlation sweep", rule_id)
                summary.failed_rules.append(rule_id)
        return definitions

    async def _sweep_rule(
        self,
        rule: RuleDefinition,
        events: Sequence[NormalizedEvent],
        now: datetime,
        summary: SweepResult,
    ) -> None:
        """Evaluate one rule and persist its alert.

        The alert, its links and the trigger update are written inside a
        savepoint, so a failure discards only this rule's writes and leaves
        the session usable for the next rule.
        """
        try:
            result = self.evaluator.evaluate(rule, events, now=now)
            if not result.matches:
                return

            async with self.session.begin_nested():
                alert = await self.alerts.insert(build_alert(rule, result))
                try:
                    await self.alerts.insert_links(
                        alert.id, [event.id for event in result.matched_events]
                    )
                except Exception:
                    logger.exception("Failed to link events to alert %s", alert.id)

                await self.rules.record_trigger(rule.id, now)
            fired = AlertSummary.model_validate(alert)
        except Exception:
            logger.exception("Rule %s failed during correlation sweep", rule.id)
            summary.failed_rules.append(rule.id)
            return

        try:
            await self.session.commit()
        except Exception:
            logger.exception("Failed to commit alert for rule %s", rule.id)
            await self.session.rollback()
            summary.failed_rules.append(rule.id)
            return

        summary.alerts_generated += 1
        summary.alerts.append(fired)
        logger.info("Rule %s fired: alert %s (%d events)", rule.id, fired.id, fired.count)


async def get_correlation_engine(
    db: AsyncSession = Depends(get_db),
    event_store: EventStore = Depends(get_event_store),
) -> CorrelationEngine:
    """Dependency providing a correlation engine bound to the request session."""
    return CorrelationEngine(db, event_store)
