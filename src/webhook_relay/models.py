"""
Data models for the webhook relay.

Endpoint is validated with pydantic; transient values (outcomes, queue
entries) are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, field_validator


class Endpoint(BaseModel):
    """Webhook destination plus optional display overrides.

    Replaced as a whole whenever configuration changes; never mutated.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    username: Optional[str] = None
    icon_url: Optional[str] = None
    icon_emoji: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v):
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"Webhook URL must be http(s): {v!r}")
        try:
            parsed = httpx.URL(v)
        except httpx.InvalidURL as exc:
            raise ValueError(f"Malformed webhook URL: {exc}") from exc
        if not parsed.host:
            raise ValueError("Webhook URL has no host")
        return v

    @field_validator("username", "icon_url", "icon_emoji")
    @classmethod
    def _blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    def display_defaults(self) -> dict[str, str]:
        """Display overrides that are set, keyed by payload name."""
        out: dict[str, str] = {}
        if self.username:
            out["username"] = self.username
        if self.icon_url:
            out["icon_url"] = self.icon_url
        if self.icon_emoji:
            out["icon_emoji"] = self.icon_emoji
        return out


class FieldType(str, Enum):
    """Primitive types an inbound record field may carry."""

    STRING = "string"
    JSON = "json"  # pre-encoded JSON text
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: FieldType = FieldType.STRING


RecordSchema = Sequence[FieldSpec]
Record = Mapping[str, Any]


def schema_from_mapping(fields: Mapping[str, FieldType | str]) -> list[FieldSpec]:
    """Build a RecordSchema from ``{"name": "string", ...}``, preserving order."""
    return [FieldSpec(name, FieldType(t)) for name, t in fields.items()]


class OutcomeKind(str, Enum):
    """Classification of one delivery attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    ENDPOINT_INVALID = "endpoint_invalid"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of a single send attempt. Never persisted."""

    kind: OutcomeKind
    status_code: int | None = None
    detail: str | None = None

    @classmethod
    def success(cls, status_code: int = 200) -> "DeliveryOutcome":
        return cls(OutcomeKind.SUCCESS, status_code)

    @classmethod
    def retryable(cls, status_code: int | None = None, detail: str | None = None) -> "DeliveryOutcome":
        return cls(OutcomeKind.RETRYABLE, status_code, detail)

    @classmethod
    def endpoint_invalid(cls, status_code: int = 404, detail: str | None = None) -> "DeliveryOutcome":
        return cls(OutcomeKind.ENDPOINT_INVALID, status_code, detail)

    @classmethod
    def permanent(cls, detail: str | None = None) -> "DeliveryOutcome":
        return cls(OutcomeKind.PERMANENT, None, detail)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass
class PendingItem:
    """A record waiting in the delivery queue, with retry bookkeeping."""

    record: Record
    sequence: int
    enqueued_at: float
    attempts: int = 0
    last_outcome: Optional[DeliveryOutcome] = field(default=None, compare=False)
