"""Core domain models.

These dataclasses are shared across the core and adapters so that neither
side depends on the wire format of the source server or the bot API.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from core.errors import SerializationError

# RFC3339Nano drops trailing zeros and may carry nanoseconds; fromisoformat
# needs exactly six fraction digits on older interpreters.
_FRACTION_RE = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class ExtraScalar:
    """A leaf value of the extras map, already rendered to text."""

    value: str


@dataclass(frozen=True)
class ExtraMap:
    """A nested level of the extras map."""

    items: Mapping[str, "Extra"]


Extra = Union[ExtraScalar, ExtraMap]


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def parse_extras(raw: Optional[Mapping[str, Any]]) -> Mapping[str, Extra]:
    """Convert a decoded JSON object into the tagged extras tree."""

    if not raw:
        return MappingProxyType({})
    parsed: dict[str, Extra] = {}
    for key, value in raw.items():
        if isinstance(value, Mapping):
            parsed[str(key)] = ExtraMap(items=parse_extras(value))
        else:
            parsed[str(key)] = ExtraScalar(value=_scalar_text(value))
    return MappingProxyType(parsed)


def _microseconds(match: "re.Match[str]") -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(_microseconds, text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise SerializationError(f"invalid timestamp: {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Event:
    """One notification as streamed by the source server."""

    id: int
    app_id: int
    title: str
    message: str
    priority: int
    extras: Mapping[str, Extra] = field(default_factory=dict)
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_payload(cls, payload: Any) -> "Event":
        """Build an Event from a decoded stream frame."""

        if not isinstance(payload, Mapping):
            raise SerializationError(f"expected a JSON object, got {type(payload).__name__}")
        extras = payload.get("extras") or {}
        if not isinstance(extras, Mapping):
            raise SerializationError("extras must be a JSON object")
        try:
            return cls(
                id=int(payload.get("id", 0)),
                app_id=int(payload["appid"]),
                title=str(payload.get("title") or ""),
                message=str(payload.get("message") or ""),
                priority=int(payload.get("priority") or 0),
                extras=parse_extras(extras),
                date=parse_timestamp(payload.get("date")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"malformed event payload: {exc}") from exc

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Event":
        try:
            payload = json.loads(data)
        except ValueError as exc:
            raise SerializationError(f"invalid JSON frame: {exc}") from exc
        return cls.from_payload(payload)


@dataclass(frozen=True)
class ApplicationInfo:
    """Descriptive metadata for a source application."""

    app_id: int
    name: str
    description: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ApplicationInfo":
        try:
            return cls(
                app_id=int(payload["id"]),
                name=str(payload.get("name") or ""),
                description=str(payload.get("description") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"malformed application payload: {exc}") from exc


@dataclass(frozen=True)
class EnrichedMessage:
    """An Event joined with the metadata of the application that sent it."""

    event: Event
    app_name: str
    app_description: str

    @property
    def app_id(self) -> int:
        return self.event.app_id

    @property
    def title(self) -> str:
        return self.event.title

    @property
    def message(self) -> str:
        return self.event.message

    @property
    def priority(self) -> int:
        return self.event.priority

    @property
    def extras(self) -> Mapping[str, Extra]:
        return self.event.extras
