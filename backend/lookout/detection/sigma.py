"""Sigma-style pattern matching for normalized events.

Provides:
- Parsing of a rule's YAML body into named selection blocks and a condition
- Field predicates with Sigma value modifiers
- Condition evaluation (and/or/not, parentheses, "1 of", "all of")

Example rule body:
```yaml
title: SSH Brute Force Attack
detection:
  selection:
    event.dataset: auth
    event.action: login
    event.outcome: failure
  filter:
    user.name|startswith: svc_
  condition: selection and not filter | count() by source.ip > 10
```

Only the part of the condition before ``|`` decides whether a single event
matches. The aggregation after it is parsed and kept for reference; entity
grouping and thresholds come from the rule's own columns.
"""

import fnmatch
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import yaml

from lookout.exceptions import RuleDefinitionError
from lookout.schemas.events import NormalizedEvent

logger = logging.getLogger(__name__)

SUPPORTED_MODIFIERS = {"contains", "startswith", "endswith", "re", "exists", "all"}

AGGREGATION_PATTERN = re.compile(
    r"^count\(\s*(?P<field>[\w.]*)\s*\)"
    r"(?:\s+by\s+(?P<group_by>[\w.]+))?"
    r"\s*(?P<operator>>=|>|<=|<|==|=)\s*(?P<value>\d+)$",
    re.IGNORECASE,
)

_CONDITION_TOKEN = re.compile(r"\s*(\(|\)|[\w.*?]+)")

# A compiled condition takes a block lookup and returns the verdict
Condition = Callable[[Callable[[str], bool]], bool]


@dataclass(frozen=True)
class SigmaAggregation:
    """Parsed ``count() by field > n`` clause of a condition."""

    operator: str
    value: int
    field: str | None = None
    group_by: str | None = None


@dataclass(frozen=True)
class SelectionBlock:
    """One named detection block.

    ``alternatives`` holds field maps (a map matches when all of its fields
    match); the block matches when any alternative does. ``keywords`` holds
    free-text values searched across every field of the event.
    """

    name: str
    alternatives: tuple[dict[str, Any], ...] = ()
    keywords: tuple[str, ...] = ()

    def matches(self, event: NormalizedEvent) -> bool:
        if self.keywords and _match_keywords(event, self.keywords):
            return True
        return any(
            all(match_field(event, key, expected) for key, expected in alternative.items())
            for alternative in self.alternatives
        )


@dataclass(frozen=True)
class SigmaDetection:
    """Parsed detection section of a pattern rule."""

    blocks: dict[str, SelectionBlock]
    condition: str
    aggregation: SigmaAggregation | None = None
    _compiled: Condition = field(repr=False, compare=False, default=None)

    def matches(self, event: NormalizedEvent) -> bool:
        """Check whether a single event satisfies the condition."""
        results: dict[str, bool] = {}

        def block_result(name: str) -> bool:
            if name not in results:
                results[name] = self.blocks[name].matches(event)
            return results[name]

        return self._compiled(block_result)


# =============================================================================
# Parsing
# =============================================================================


def parse_detection(text: str | None) -> SigmaDetection | None:
    """Parse a pattern rule body.

    Args:
        text: YAML rule body

    Returns:
        Parsed detection, or None when the body has no usable selection

    Raises:
        RuleDefinitionError: If the YAML or the condition is malformed
    """
    if not text or not text.strip():
        return None

    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as error:
        raise RuleDefinitionError(f"Invalid rule YAML: {error}") from error

    if not isinstance(doc, dict):
        raise RuleDefinitionError("Rule YAML must be a mapping")

    detection = doc.get("detection")
    if not isinstance(detection, dict):
        return None

    blocks = {
        name: parse_block(name, value)
        for name, value in detection.items()
        if name not in ("condition", "timeframe")
    }
    if not blocks:
        return None

    condition = detection.get("condition")
    if isinstance(condition, list):
        # Several conditions are alternatives
        condition = " or ".join(f"({c})" for c in condition)
    if not condition:
        return None

    boolean_part, _, aggregation_part = str(condition).partition("|")
    aggregation = _parse_aggregation(aggregation_part) if aggregation_part.strip() else None
    compiled = _ConditionParser(boolean_part, list(blocks)).parse()

    return SigmaDetection(
        blocks=blocks,
        condition=str(condition),
        aggregation=aggregation,
        _compiled=compiled,
    )


def parse_block(name: str, value: Any) -> SelectionBlock:
    """Parse one selection block (a field map, or a list of maps/keywords)."""
    if isinstance(value, dict):
        _check_modifiers(name, value)
        return SelectionBlock(name=name, alternatives=(value,))

    if isinstance(value, list):
        alternatives = []
        keywords = []
        for item in value:
            if isinstance(item, dict):
                _check_modifiers(name, item)
                alternatives.append(item)
            elif isinstance(item, (str, int, float)):
                keywords.append(str(item))
            else:
                raise RuleDefinitionError(f"Unsupported entry in detection block '{name}'")
        return SelectionBlock(name=name, alternatives=tuple(alternatives), keywords=tuple(keywords))

    raise RuleDefinitionError(f"Detection block '{name}' must be a mapping or a list")


def _check_modifiers(block: str, mapping: dict[str, Any]) -> None:
    for key in mapping:
        _, *modifiers = str(key).split("|")
        unknown = set(modifiers) - SUPPORTED_MODIFIERS
        if unknown:
            raise RuleDefinitionError(
                f"Unsupported modifier(s) {sorted(unknown)} in detection block '{block}'"
            )


def _parse_aggregation(text: str) -> SigmaAggregation:
    match = AGGREGATION_PATTERN.match(text.strip())
    if not match:
        raise RuleDefinitionError(f"Unsupported aggregation: {text.strip()}")

    operator = match.group("operator")
    return SigmaAggregation(
        operator="==" if operator == "=" else operator,
        value=int(match.group("value")),
        field=match.group("field") or None,
        group_by=match.group("group_by"),
    )


class _ConditionParser:
    """Recursive descent parser for the boolean part of a condition.

    Grammar:
        expr    := term ("or" term)*
        term    := factor ("and" factor)*
        factor  := "not" factor | "(" expr ")" | quantifier | NAME
        quantifier := ("1" | "any" | "all") "of" (PATTERN | "them")
    """

    def __init__(self, text: str, block_names: list[str]):
        self.text = text
        self.block_names = block_names
        self.tokens = self._tokenize(text)
        self.pos = 0

    def _tokenize(self, text: str) -> list[str]:
        tokens = []
        pos = 0
        text = text.strip()
        while pos < len(text):
            match = _CONDITION_TOKEN.match(text, pos)
            if not match:
                raise RuleDefinitionError(f"Invalid condition: {text}")
            tokens.append(match.group(1))
            pos = match.end()
        return tokens

    def _peek(self) -> str | None:
        return self.tokens[self.pos].lower() if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        if self.pos >= len(self.tokens):
            raise RuleDefinitionError(f"Unexpected end of condition: {self.text}")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Condition:
        if not self.tokens:
            raise RuleDefinitionError("Empty condition")
        compiled = self._expr()
        if self.pos != len(self.tokens):
            raise RuleDefinitionError(
                f"Unexpected token '{self.tokens[self.pos]}' in condition: {self.text}"
            )
        return compiled

    def _expr(self) -> Condition:
        terms = [self._term()]
        while self._peek() == "or":
            self._next()
            terms.append(self._term())
        if len(terms) == 1:
            return terms[0]
        return lambda lookup: any(term(lookup) for term in terms)

    def _term(self) -> Condition:
        factors = [self._factor()]
        while self._peek() == "and":
            self._next()
            factors.append(self._factor())
        if len(factors) == 1:
            return factors[0]
        return lambda lookup: all(factor(lookup) for factor in factors)

    def _factor(self) -> Condition:
        token = self._next()
        lowered = token.lower()

        if lowered == "not":
            inner = self._factor()
            return lambda lookup: not inner(lookup)

        if token == "(":
            inner = self._expr()
            if self._next() != ")":
                raise RuleDefinitionError(f"Unbalanced parentheses in condition: {self.text}")
            return inner

        if lowered in ("1", "any", "all") and self._peek() == "of":
            self._next()
            pattern = self._next()
            names = self._names_for(pattern)
            if lowered == "all":
                return lambda lookup: all(lookup(name) for name in names)
            return lambda lookup: any(lookup(name) for name in names)

        if token not in self.block_names:
            raise RuleDefinitionError(f"Condition references unknown selection '{token}'")
        return lambda lookup: lookup(token)

    def _names_for(self, pattern: str) -> list[str]:
        if pattern.lower() == "them":
            return list(self.block_names)
        names = [name for name in self.block_names if fnmatch.fnmatchcase(name, pattern)]
        if not names:
            raise RuleDefinitionError(f"Condition pattern '{pattern}' matches no selection")
        return names


# =============================================================================
# Matching
# =============================================================================


def match_field(event: NormalizedEvent, key: str, expected: Any) -> bool:
    """Match one ``field|modifier: value`` entry against an event.

    Args:
        event: Event to check
        key: Field name with optional modifiers (``process.name|contains``)
        expected: Expected value or list of values (any-of, or all-of with
            the ``all`` modifier)

    Returns:
        True if the field matches
    """
    field_name, *modifiers = key.split("|")
    value = event.get(field_name)

    if "exists" in modifiers:
        return (value is not None) == bool(expected)

    values = expected if isinstance(expected, list) else [expected]

    if value is None:
        return any(v is None for v in values)

    results = (_match_value(value, v, modifiers) for v in values if v is not None)
    if "all" in modifiers:
        return all(results)
    return any(results)


def _match_value(value: Any, pattern: Any, modifiers: list[str]) -> bool:
    str_value = str(value).lower()
    if isinstance(pattern, bool):
        str_pattern = str(pattern).lower()
    else:
        str_pattern = str(pattern)

    if "re" in modifiers:
        return bool(_compile_regex(str_pattern).search(str(value)))

    str_pattern = str_pattern.lower()
    if "contains" in modifiers:
        return str_pattern in str_value
    if "startswith" in modifiers:
        return str_value.startswith(str_pattern)
    if "endswith" in modifiers:
        return str_value.endswith(str_pattern)

    if "*" in str_pattern or "?" in str_pattern:
        return fnmatch.fnmatchcase(str_value, str_pattern)

    return str_value == str_pattern


@lru_cache(maxsize=256)
def _compile_regex(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as error:
        raise RuleDefinitionError(f"Invalid regular expression '{pattern}': {error}") from error


def _match_keywords(event: NormalizedEvent, keywords: tuple[str, ...]) -> bool:
    haystack = [
        str(value).lower()
        for key, value in event.to_document().items()
        if key not in ("id", "timestamp") and value is not None
    ]
    return any(keyword.lower() in text for keyword in keywords for text in haystack)
