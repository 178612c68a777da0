"""Multi-step sequence detection for scripted rules.

A sequence is a list of steps, each a selection block in the same syntax as
pattern rules. Events are grouped by an entity field (``user.name`` by
default); an entity qualifies when it has at least one event for every
step. Step order is not enforced.

The default sequence is login, then a privilege elevation process, then
access to a sensitive dataset. A rule body can override it:

```yaml
group_by: user.name
steps:
  - event.action: login
  - process.name|contains: sudo
  - event.dataset: file
```

Rule bodies are never executed.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import yaml

from lookout.detection.sigma import SelectionBlock, parse_block
from lookout.exceptions import RuleDefinitionError
from lookout.schemas.events import NormalizedEvent

logger = logging.getLogger(__name__)

DEFAULT_GROUP_BY = "user.name"


@dataclass(frozen=True)
class SequenceMatch:
    """An entity that completed the sequence, with one witness event per step."""

    entity: str
    events: tuple[NormalizedEvent, ...]


@dataclass(frozen=True)
class SequenceDefinition:
    steps: tuple[SelectionBlock, ...]
    group_by: str = DEFAULT_GROUP_BY

    def find(self, events: Iterable[NormalizedEvent]) -> list[SequenceMatch]:
        """Find every entity that has an event for each step.

        Entities are returned in the order they first appear in ``events``.
        Events without the grouping field are skipped.
        """
        groups: dict[str, list[NormalizedEvent]] = {}
        for event in events:
            entity = event.get(self.group_by)
            if entity is None:
                continue
            groups.setdefault(str(entity), []).append(event)

        matches = []
        for entity, group in groups.items():
            witnesses = self._witnesses(group)
            if witnesses is not None:
                matches.append(SequenceMatch(entity=entity, events=witnesses))
        return matches

    def _witnesses(self, group: list[NormalizedEvent]) -> tuple[NormalizedEvent, ...] | None:
        ordered = sorted(group, key=lambda e: e.timestamp)
        chosen: dict[str, NormalizedEvent] = {}

        for step in self.steps:
            earliest = next((event for event in ordered if step.matches(event)), None)
            if earliest is None:
                return None
            chosen.setdefault(earliest.id, earliest)

        return tuple(sorted(chosen.values(), key=lambda e: e.timestamp))


def default_sequence(sentinel_process: str, sensitive_dataset: str) -> SequenceDefinition:
    """Login, elevation via ``sentinel_process``, then ``sensitive_dataset`` access."""
    return SequenceDefinition(
        steps=(
            SelectionBlock(name="login", alternatives=({"event.action": "login"},)),
            SelectionBlock(
                name="elevation",
                alternatives=({"process.name|contains": sentinel_process},),
            ),
            SelectionBlock(
                name="sensitive_access",
                alternatives=({"event.dataset": sensitive_dataset},),
            ),
        )
    )


def parse_sequence(
    body: str | None,
    sentinel_process: str,
    sensitive_dataset: str,
) -> SequenceDefinition | None:
    """Build the sequence for a scripted rule body.

    Args:
        body: Rule body
        sentinel_process: Elevation tool for the default sequence
        sensitive_dataset: Sensitive dataset for the default sequence

    Returns:
        The sequence, or None for an empty body

    Raises:
        RuleDefinitionError: If a YAML mapping body has malformed steps
    """
    if not body or not body.strip():
        return None

    try:
        doc = yaml.safe_load(body)
    except yaml.YAMLError:
        # Free-form script text runs the default sequence
        doc = None

    if not isinstance(doc, dict) or not ({"steps", "group_by"} & doc.keys()):
        return default_sequence(sentinel_process, sensitive_dataset)

    group_by = doc.get("group_by", DEFAULT_GROUP_BY)
    if not isinstance(group_by, str) or not group_by:
        raise RuleDefinitionError("Sequence 'group_by' must be a field name")

    raw_steps = doc.get("steps")
    if raw_steps is None:
        steps = default_sequence(sentinel_process, sensitive_dataset).steps
    elif isinstance(raw_steps, list) and raw_steps:
        steps = tuple(parse_block(f"step_{index}", step) for index, step in enumerate(raw_steps))
    else:
        raise RuleDefinitionError("Sequence 'steps' must be a non-empty list")

    logger.debug("Parsed sequence with %d steps grouped by %s", len(steps), group_by)
    return SequenceDefinition(steps=steps, group_by=group_by)
