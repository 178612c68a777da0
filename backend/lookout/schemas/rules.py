"""Immutable rule definitions used by the evaluator.

A stored ``DetectionRule`` row carries every type's body column. Evaluation
works on exactly one of ``SigmaRule``, ``ExpressionRule`` or ``ScriptedRule``,
each holding only its own parsed body together with the tuning values that
every rule shares. Unknown rule types are rejected while building the
definition, so code that matches on ``RuleDefinition`` is exhaustive.
"""

from dataclasses import dataclass, field
from typing import Any

from lookout.config import Settings
from lookout.detection.expression import Expression, compile_expression
from lookout.detection.sequence import SequenceDefinition, parse_sequence
from lookout.detection.sigma import SigmaDetection, parse_detection
from lookout.exceptions import RuleDefinitionError, UnsupportedRuleTypeError
from lookout.models.rule import RuleType
from lookout.schemas.events import SeverityLevel


@dataclass(frozen=True, kw_only=True)
class BaseRuleDefinition:
    id: str
    title: str
    level: SeverityLevel
    timeframe: int  # minutes
    threshold: int
    enabled: bool = True
    fields: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    @property
    def timeframe_label(self) -> str:
        return f"{self.timeframe} minutes"


@dataclass(frozen=True, kw_only=True)
class SigmaRule(BaseRuleDefinition):
    """Pattern rule; ``detection`` is None when the body has no selection."""

    detection: SigmaDetection | None = field(default=None, compare=False)


@dataclass(frozen=True, kw_only=True)
class ExpressionRule(BaseRuleDefinition):
    """Expression rule; ``program`` is None for an empty expression."""

    expression: str = ""
    program: Expression | None = field(default=None, compare=False)


@dataclass(frozen=True, kw_only=True)
class ScriptedRule(BaseRuleDefinition):
    """Scripted sequence rule; ``sequence`` is None for an empty body."""

    sequence: SequenceDefinition | None = field(default=None, compare=False)


RuleDefinition = SigmaRule | ExpressionRule | ScriptedRule


def build_rule_definition(rule: Any, settings: Settings) -> RuleDefinition:
    """Build the evaluation definition for a stored rule.

    Args:
        rule: ``DetectionRule`` row (or any object with the same attributes)
        settings: Application settings supplying defaults

    Returns:
        The definition variant for the rule's type

    Raises:
        UnsupportedRuleTypeError: If the rule type is unknown
        RuleDefinitionError: If the body or tuning values are invalid
    """
    rule_id = str(rule.id)
    raw_type = rule.type.value if isinstance(rule.type, RuleType) else rule.type
    try:
        rule_type = RuleType(raw_type)
    except ValueError:
        raise UnsupportedRuleTypeError(str(raw_type), rule_id=rule_id) from None

    timeframe = rule.timeframe
    if timeframe is None:
        timeframe = settings.default_rule_timeframe_minutes
    threshold = rule.threshold
    if threshold is None:
        threshold = settings.default_rule_threshold

    if threshold < 1:
        raise RuleDefinitionError(f"Rule '{rule_id}' threshold must be at least 1")
    if timeframe < 0:
        raise RuleDefinitionError(f"Rule '{rule_id}' timeframe must not be negative")

    common = {
        "id": rule_id,
        "title": rule.title,
        "level": SeverityLevel(rule.level),
        "timeframe": timeframe,
        "threshold": threshold,
        "enabled": bool(rule.enabled),
        "fields": tuple(rule.fields or ()),
        "tags": tuple(rule.tags or ()),
    }

    match rule_type:
        case RuleType.SIGMA:
            return SigmaRule(detection=parse_detection(rule.yaml), **common)
        case RuleType.CEL:
            expression = (rule.expression or "").strip()
            program = compile_expression(expression) if expression else None
            return ExpressionRule(expression=expression, program=program, **common)
        case RuleType.PYTHON:
            sequence = parse_sequence(
                rule.python_code,
                settings.scripted_sentinel_process,
                settings.scripted_sensitive_dataset,
            )
            return ScriptedRule(sequence=sequence, **common)
