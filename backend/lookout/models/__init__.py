"""SQLAlchemy models for Lookout."""

from lookout.models.alert import Alert, AlertEvent, AlertStatus
from lookout.models.rule import DetectionRule, RuleType

__all__ = [
    "Alert",
    "AlertEvent",
    "AlertStatus",
    "DetectionRule",
    "RuleType",
]
