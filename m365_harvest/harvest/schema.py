"""
Record schemas applied at the harvest boundary.

API responses are loosely typed JSON. A RecordSchema projects each item onto
a fixed set of named, typed fields and returns a read-only mapping, so a
missing or mistyped field fails loudly here instead of turning into a blank
CSV cell three stages later.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional

RawRecord = Mapping[str, Any]

_MISSING = object()


class SchemaError(ValueError):
    """Raised when a harvested item does not fit its declared schema."""
    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        super().__init__(f"Field '{field_name}': {message}")


@dataclass(frozen=True)
class SchemaField:
    name: str
    type: type = str
    required: bool = True
    source: Optional[str] = None    # dotted path into the item; defaults to name

    def extract(self, item: Mapping[str, Any]) -> Any:
        value: Any = item
        for part in (self.source or self.name).split("."):
            if not isinstance(value, Mapping) or part not in value:
                return _MISSING
            value = value[part]
        return value

    def coerce(self, value: Any) -> Any:
        if self.type is datetime:
            if isinstance(value, datetime):
                return value
            if isinstance(value, str):
                try:
                    return datetime.fromisoformat(value.replace("Z", "+00:00"))
                except ValueError:
                    raise SchemaError(self.name, f"not an ISO-8601 timestamp: {value!r}")
            raise SchemaError(self.name, f"expected timestamp, got {type(value).__name__}")

        # bool is an int subclass; keep them apart
        if isinstance(value, bool) and self.type is not bool:
            raise SchemaError(self.name, f"expected {self.type.__name__}, got bool")
        if self.type is float and isinstance(value, int):
            return float(value)
        if not isinstance(value, self.type):
            raise SchemaError(
                self.name, f"expected {self.type.__name__}, got {type(value).__name__}"
            )
        return value


class RecordSchema:
    def __init__(self, *fields: SchemaField, strict: bool = False):
        names = [f.name for f in fields]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate field names in schema: {names}")
        self.fields = fields
        self.strict = strict

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def project(self, item: Mapping[str, Any]) -> RawRecord:
        """Validate one item and return its read-only projection."""
        if not isinstance(item, Mapping):
            raise SchemaError("<item>", f"expected an object, got {type(item).__name__}")

        if self.strict:
            declared = {(f.source or f.name).split(".")[0] for f in self.fields}
            unknown = sorted(set(item) - declared)
            if unknown:
                raise SchemaError(unknown[0], "undeclared field")

        projected: dict[str, Any] = {}
        for f in self.fields:
            value = f.extract(item)
            if value is _MISSING or value is None:
                if f.required:
                    raise SchemaError(f.name, "required field is missing")
                projected[f.name] = None
                continue
            projected[f.name] = f.coerce(value)
        return MappingProxyType(projected)


def freeze(item: Mapping[str, Any]) -> RawRecord:
    """Read-only view for schema-less harvests."""
    return MappingProxyType(dict(item))
