"""Lookout services package.

Contains the correlation services:
- Event store: Event windows from Elasticsearch
- Rule and alert stores: Rule lookup, trigger statistics, alert persistence
- Rule evaluator: Pattern, expression and sequence matching
- Correlation engine: Rule tests, ad-hoc evaluation and sweeps
"""

from lookout.services.alert_store import AlertStore, get_alert_store
from lookout.services.correlation_engine import CorrelationEngine, get_correlation_engine
from lookout.services.event_store import EventStore, get_event_store
from lookout.services.rule_evaluator import RuleEvaluator
from lookout.services.rule_store import RuleStore

__all__ = [
    "AlertStore",
    "get_alert_store",
    "CorrelationEngine",
    "get_correlation_engine",
    "EventStore",
    "get_event_store",
    "RuleEvaluator",
    "RuleStore",
]
