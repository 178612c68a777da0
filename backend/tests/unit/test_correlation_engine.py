"""Unit tests for the correlation orchestrator."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from lookout.exceptions import NotFoundError, StoreUnavailableError, UnsupportedRuleTypeError
from lookout.models.alert import AlertStatus
from lookout.services.correlation_engine import CorrelationEngine, collect_entity_keys
from tests.factories import (
    DetectionRuleFactory,
    DnsEventFactory,
    ExpressionRuleFactory,
    NormalizedEventFactory,
)
from tests.mocks.stores import InMemoryAlertStore, InMemoryEventStore

pytestmark = pytest.mark.unit


def recent(minutes: float) -> datetime:
    return datetime.now(UTC) - timedelta(minutes=minutes)


def brute_force_events(count: int = 11, source_ip: str = "203.0.113.50"):
    return [
        NormalizedEventFactory(source_ip=source_ip, user_name="root", timestamp=recent(1 + i / 60))
        for i in range(count)
    ]


class TestCollectEntityKeys:
    """Tests for alert entity key collection."""

    def test_keys_are_prefixed_and_deduplicated(self):
        events = [
            NormalizedEventFactory(source_ip="10.0.0.1", user_name="root", host_name="web-01"),
            NormalizedEventFactory(source_ip="10.0.0.1", user_name="admin", host_name="web-01"),
            NormalizedEventFactory(source_ip=None, user_name=None, host_name=None),
        ]

        assert collect_entity_keys(events) == [
            "source.ip:10.0.0.1",
            "user.name:root",
            "host.name:web-01",
            "user.name:admin",
        ]


class TestTestRule:
    """Tests for test_rule."""

    @pytest.mark.asyncio
    async def test_uses_sample_window(self, correlation_engine, rule_store, event_store, alert_store):
        rule = rule_store.add(DetectionRuleFactory())
        event_store.events = brute_force_events()

        result = await correlation_engine.test_rule(str(rule.id))

        assert result.matches
        assert event_store.queries == [{"since": None, "limit": 1000}]
        assert alert_store.alerts == {}
        assert rule.trigger_count == 0

    @pytest.mark.asyncio
    async def test_missing_rule(self, correlation_engine):
        with pytest.raises(NotFoundError):
            await correlation_engine.test_rule("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_unsupported_type(self, correlation_engine, rule_store, event_store):
        rule = rule_store.add(DetectionRuleFactory(type="yara"))

        with pytest.raises(UnsupportedRuleTypeError):
            await correlation_engine.test_rule(str(rule.id))
        assert event_store.queries == []

    @pytest.mark.asyncio
    async def test_event_store_unavailable(self, correlation_engine, rule_store, event_store):
        rule = rule_store.add(DetectionRuleFactory())
        event_store.unavailable = True

        with pytest.raises(StoreUnavailableError):
            await correlation_engine.test_rule(str(rule.id))


class TestEvaluateRule:
    """Tests for evaluate_rule."""

    @pytest.mark.asyncio
    async def test_supplied_events(self, correlation_engine, rule_store, event_store, alert_store):
        rule = rule_store.add(DetectionRuleFactory())

        result = await correlation_engine.evaluate_rule(str(rule.id), brute_force_events())

        assert result.matches
        assert event_store.queries == []
        assert alert_store.alerts == {}

    @pytest.mark.asyncio
    async def test_recent_window_when_no_events(self, correlation_engine, rule_store, event_store):
        rule = rule_store.add(DetectionRuleFactory())
        event_store.events = brute_force_events()

        result = await correlation_engine.evaluate_rule(str(rule.id))

        assert result.matches
        since = event_store.queries[0]["since"]
        assert timedelta(minutes=59) < datetime.now(UTC) - since < timedelta(minutes=61)

    @pytest.mark.asyncio
    async def test_empty_event_list_is_not_replaced(self, correlation_engine, rule_store, event_store):
        rule = rule_store.add(DetectionRuleFactory())
        event_store.events = brute_force_events()

        result = await correlation_engine.evaluate_rule(str(rule.id), [])

        assert not result.matches
        assert event_store.queries == []


class TestRunSweep:
    """Tests for run_sweep."""

    @pytest.mark.asyncio
    async def test_alert_created_for_match(
        self, correlation_engine, rule_store, event_store, alert_store, session
    ):
        rule = rule_store.add(DetectionRuleFactory())
        events = brute_force_events()
        event_store.events = events

        summary = await correlation_engine.run_sweep()

        assert summary.processed_rules == 1
        assert summary.processed_events == 11
        assert summary.alerts_generated == 1
        assert summary.failed_rules == []
        assert not summary.timed_out

        alert = next(iter(alert_store.alerts.values()))
        assert alert.rule_id == rule.id
        assert alert.rule_title == rule.title
        assert alert.severity == rule.level
        assert alert.status == AlertStatus.OPEN
        assert alert.count == 11
        assert alert.timestamp_first == min(e.timestamp for e in events)
        assert alert.timestamp_last == max(e.timestamp for e in events)
        assert alert.entity_keys == [
            "source.ip:203.0.113.50",
            "user.name:root",
            "host.name:web-01",
        ]
        assert alert.correlation_data["entity_key"] == "203.0.113.50"
        assert sorted(alert_store.links[alert.id]) == sorted(e.id for e in events)

        assert rule.trigger_count == 1
        assert rule.last_triggered is not None
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lookback_window(self, correlation_engine, event_store):
        await correlation_engine.run_sweep()

        since = event_store.queries[0]["since"]
        assert timedelta(minutes=59) < datetime.now(UTC) - since < timedelta(minutes=61)

    @pytest.mark.asyncio
    async def test_disabled_rules_are_excluded(
        self, correlation_engine, rule_store, event_store, alert_store
    ):
        rule_store.add(DetectionRuleFactory(enabled=False))
        event_store.events = brute_force_events()

        summary = await correlation_engine.run_sweep()

        assert summary.processed_rules == 0
        assert summary.alerts_generated == 0
        assert alert_store.alerts == {}

    @pytest.mark.asyncio
    async def test_no_match_persists_nothing(
        self, correlation_engine, rule_store, event_store, alert_store, session
    ):
        rule = rule_store.add(DetectionRuleFactory())
        event_store.events = brute_force_events(count=3)

        summary = await correlation_engine.run_sweep()

        assert summary.alerts_generated == 0
        assert alert_store.alerts == {}
        assert rule.trigger_count == 0
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_failure(
        self, correlation_engine, rule_store, event_store, alert_store, session
    ):
        """Test a broken rule is skipped while the others still alert."""
        broken = rule_store.add(DetectionRuleFactory(yaml="detection: [unclosed\n"))
        unsupported = rule_store.add(DetectionRuleFactory(type="yara"))
        good = rule_store.add(DetectionRuleFactory())
        event_store.events = brute_force_events()

        summary = await correlation_engine.run_sweep()

        assert summary.processed_rules == 3
        assert summary.alerts_generated == 1
        assert summary.failed_rules == [str(broken.id), str(unsupported.id)]
        assert summary.alerts[0].rule_id == good.id
        assert good.trigger_count == 1
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_failure_is_isolated(
        self, correlation_engine, rule_store, event_store, session
    ):
        """Test a rule whose writes fail does not stop later rules."""
        failing = rule_store.add(DetectionRuleFactory())
        rule_store.add(DetectionRuleFactory())
        rule_store.record_trigger = AsyncMock(side_effect=[RuntimeError("update failed"), None])
        event_store.events = brute_force_events()

        summary = await correlation_engine.run_sweep()

        assert summary.processed_rules == 2
        assert summary.alerts_generated == 1
        assert summary.failed_rules == [str(failing.id)]
        assert session.begin_nested.call_count == 2
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_link_failure_keeps_alert(self, session, rule_store, test_settings):
        """Test failing to link events does not undo the alert."""
        alert_store = InMemoryAlertStore(fail_links=True)
        event_store = InMemoryEventStore(brute_force_events())
        rule = rule_store.add(DetectionRuleFactory())
        engine = CorrelationEngine(
            session,
            event_store,
            rule_store=rule_store,
            alert_store=alert_store,
            settings=test_settings,
        )

        summary = await engine.run_sweep()

        assert summary.alerts_generated == 1
        assert summary.failed_rules == []
        assert len(alert_store.alerts) == 1
        assert alert_store.links == {}
        assert rule.trigger_count == 1
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_returns_partial_summary(self, session, rule_store, test_settings):
        """Test a sweep that overruns its timeout reports what it finished."""
        alert_store = InMemoryAlertStore(insert_delays=[0, 5])
        event_store = InMemoryEventStore(brute_force_events())
        first = rule_store.add(DetectionRuleFactory())
        rule_store.add(DetectionRuleFactory())
        rule_store.add(DetectionRuleFactory())
        settings = test_settings.model_copy(update={"sweep_timeout_seconds": 0.2})
        engine = CorrelationEngine(
            session,
            event_store,
            rule_store=rule_store,
            alert_store=alert_store,
            settings=settings,
        )

        summary = await engine.run_sweep()

        assert summary.timed_out
        assert summary.processed_rules == 3
        assert summary.alerts_generated == 1
        assert summary.alerts[0].rule_id == first.id
        session.rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_event_store_unavailable(self, correlation_engine, rule_store, event_store):
        rule_store.add(DetectionRuleFactory())
        event_store.unavailable = True

        with pytest.raises(StoreUnavailableError):
            await correlation_engine.run_sweep()

    @pytest.mark.asyncio
    async def test_expression_rule_alert(self, correlation_engine, rule_store, event_store):
        rule = rule_store.add(ExpressionRuleFactory())
        event_store.events = [
            DnsEventFactory(dns_question_name="c2.evil.net", source_ip="10.9.9.9",
                            timestamp=recent(2)),
        ]

        summary = await correlation_engine.run_sweep()

        assert summary.alerts_generated == 1
        alert = summary.alerts[0]
        assert alert.severity == "critical"
        assert alert.correlation_data == {
            "expression": rule.expression,
            "matched_count": 1,
        }
