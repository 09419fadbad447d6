"""
Payload encoder: record -> webhook JSON body.

The encoding mode is chosen once from the inbound schema and stays fixed for
the life of the pipeline. The field mapping may be swapped when the
configuration snapshot changes, but is always validated against the schema
before it takes effect.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .config_source import FIELD_OVERRIDE_KEYS
from .errors import ConfigurationError, PayloadError
from .models import Endpoint, FieldType, Record, RecordSchema

PAYLOAD_KEYS = ("text", "username", "icon_url", "icon_emoji")


class EncodingMode(str, Enum):
    RAW_JSON = "raw_json"  # one pre-built JSON string field
    SINGLE_TEXT = "single_text"  # one text field, not named "text"
    STRUCTURED = "structured"  # named fields mapped onto payload keys


@dataclass(frozen=True)
class FieldMapping:
    """Which record field feeds each payload key."""

    text: str
    username: Optional[str] = None
    icon_url: Optional[str] = None
    icon_emoji: Optional[str] = None

    def as_dict(self) -> dict[str, Optional[str]]:
        return {key: getattr(self, key) for key in PAYLOAD_KEYS}


def select_mode(schema: RecordSchema) -> EncodingMode:
    """Pick the encoding mode for an inbound schema shape."""
    if not schema:
        raise ConfigurationError("Inbound schema has no fields; nothing to encode")
    if len(schema) == 1:
        only = schema[0]
        if only.type is FieldType.JSON:
            return EncodingMode.RAW_JSON
        if only.type is FieldType.STRING and only.name != "text":
            return EncodingMode.SINGLE_TEXT
    return EncodingMode.STRUCTURED


def resolve_mapping(
    schema: RecordSchema,
    base: FieldMapping | Mapping[str, Optional[str]] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> FieldMapping:
    """Resolve the structured-mode field mapping.

    Precedence per payload key: configuration snapshot override, then the
    mapping given at construction, then a same-named schema field (``message``
    is also accepted as the text source).
    """
    names = [f.name for f in schema]
    if isinstance(base, FieldMapping):
        base = base.as_dict()
    base = dict(base or {})

    chosen: dict[str, Optional[str]] = {}
    for key in PAYLOAD_KEYS:
        value = (overrides or {}).get(FIELD_OVERRIDE_KEYS[key]) or base.get(key)
        if value is None and key in names:
            value = key
        chosen[key] = value

    if chosen["text"] is None and "message" in names:
        chosen["text"] = "message"
    if chosen["text"] is None:
        raise ConfigurationError(
            f"No text field found in schema {names}; set a message field mapping"
        )

    for key, value in chosen.items():
        if value is not None and value not in names:
            raise ConfigurationError(
                f"Field mapping {key}={value!r} does not name a schema field {names}"
            )
    return FieldMapping(**chosen)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class PayloadEncoder:
    """Encodes records for one fixed schema."""

    def __init__(self, schema: RecordSchema, mode: EncodingMode, mapping: FieldMapping):
        self.schema = list(schema)
        self.mode = mode
        self.mapping = mapping

    @classmethod
    def for_schema(
        cls,
        schema: RecordSchema,
        mapping: FieldMapping | Mapping[str, Optional[str]] | None = None,
        overrides: Mapping[str, str] | None = None,
    ) -> "PayloadEncoder":
        mode = select_mode(schema)
        if mode is EncodingMode.STRUCTURED:
            resolved = resolve_mapping(schema, mapping, overrides)
        else:
            resolved = FieldMapping(text=schema[0].name)
        return cls(schema, mode, resolved)

    def with_overrides(
        self,
        overrides: Mapping[str, str],
        base: FieldMapping | Mapping[str, Optional[str]] | None = None,
    ) -> "PayloadEncoder":
        """Same schema and mode, mapping re-resolved against new overrides."""
        if self.mode is not EncodingMode.STRUCTURED:
            return self
        mapping = resolve_mapping(self.schema, base, overrides)
        if mapping == self.mapping:
            return self
        return PayloadEncoder(self.schema, self.mode, mapping)

    def build(self, record: Record, endpoint: Endpoint | None = None) -> dict[str, str]:
        """Payload object for single_text/structured modes."""
        text = record.get(self.mapping.text)
        if text is None:
            raise PayloadError(f"Record has no value for text field '{self.mapping.text}'")

        payload = {"text": _as_text(text)}
        if self.mode is EncodingMode.STRUCTURED:
            for key in PAYLOAD_KEYS[1:]:
                source = getattr(self.mapping, key)
                if source is None:
                    continue
                value = record.get(source)
                if value is not None and value != "":
                    payload[key] = _as_text(value)

        if endpoint is not None:
            for key, value in endpoint.display_defaults().items():
                payload.setdefault(key, value)
        return payload

    def encode(self, record: Record, endpoint: Endpoint | None = None) -> str:
        """Render the delivery body. Deterministic for a given record and endpoint."""
        if self.mode is EncodingMode.RAW_JSON:
            raw = record.get(self.mapping.text)
            if not isinstance(raw, str):
                raise PayloadError(f"Field '{self.mapping.text}' does not hold JSON text")
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise PayloadError(f"Field '{self.mapping.text}' holds malformed JSON: {exc}") from exc
            if not isinstance(parsed, dict):
                raise PayloadError(f"Field '{self.mapping.text}' must hold a JSON object")
            return raw

        return json.dumps(self.build(record, endpoint), ensure_ascii=False, separators=(",", ":"))
