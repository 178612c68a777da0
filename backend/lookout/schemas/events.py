"""Normalized security event schema.

Events are stored in Elasticsearch as ECS-style nested documents. The
detection engine only ever reads them, so the model is frozen. Fields are
addressed by their dotted ECS name (``event.get("source.ip")``); attributes
that are not part of the common schema are kept in ``attributes``.
"""

import enum
from datetime import UTC, datetime
from functools import cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SeverityLevel(str, enum.Enum):
    """Ordered severity levels shared by events, rules and alerts."""

    INFORMATIONAL = "informational"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the ordering, informational being lowest."""
        return list(SeverityLevel).index(self)


class EventOutcome(str, enum.Enum):
    """Outcome of the action an event describes."""

    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


# Entity attribution fields in entity key priority order
ENTITY_KEY_FIELDS = ("source.ip", "user.name", "host.name")

_RESERVED_KEYS = {"id", "_id", "timestamp", "@timestamp", "_index", "_score"}


def _flatten(doc: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted keys."""
    flat: dict[str, Any] = {}
    for key, value in doc.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(_flatten(value, f"{path}."))
        else:
            flat[path] = value
    return flat


class NormalizedEvent(BaseModel):
    """A security event reduced to the common schema."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str
    timestamp: datetime

    event_dataset: str | None = None
    event_action: str | None = None
    event_outcome: EventOutcome | None = None
    event_severity: SeverityLevel | None = None

    host_name: str | None = None
    host_ip: str | None = None
    user_name: str | None = None
    source_ip: str | None = None
    source_port: int | None = None
    destination_ip: str | None = None
    destination_port: int | None = None
    process_name: str | None = None
    dns_question_name: str | None = None
    file_name: str | None = None
    http_request_method: str | None = None
    http_request_url: str | None = None

    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @classmethod
    @cache
    def ecs_fields(cls) -> dict[str, str]:
        """Map dotted ECS names to model attribute names."""
        return {
            name.replace("_", "."): name
            for name in cls.model_fields
            if name not in ("id", "timestamp", "attributes")
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "NormalizedEvent":
        """Build an event from a stored document.

        Accepts ECS nested documents (``{"source": {"ip": ...}}``), flat
        dotted keys (``"source.ip"``) and flat column names (``source_ip``).
        """
        known = set(cls.ecs_fields().values())
        values: dict[str, Any] = {}
        attributes: dict[str, Any] = {}

        for path, value in _flatten(doc).items():
            if path in _RESERVED_KEYS or value is None:
                continue
            name = path.replace(".", "_")
            if name in known:
                values.setdefault(name, value)
            else:
                attributes[path] = value

        raw_id = doc.get("id") or doc.get("_id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            timestamp=doc.get("timestamp") or doc.get("@timestamp"),
            attributes=attributes,
            **values,
        )

    def get(self, path: str) -> Any:
        """Return the value at a dotted field path, or None when absent."""
        name = self.ecs_fields().get(path)
        if name is not None:
            return getattr(self, name)
        if path == "id":
            return self.id
        if path in ("timestamp", "@timestamp"):
            return self.timestamp
        return self.attributes.get(path)

    def to_document(self) -> dict[str, Any]:
        """Serialize with dotted keys and an ISO-8601 timestamp."""
        doc: dict[str, Any] = {"id": self.id, "timestamp": self.timestamp.isoformat()}
        for path, name in self.ecs_fields().items():
            value = getattr(self, name)
            if value is not None:
                doc[path] = value
        doc.update(self.attributes)
        return doc
