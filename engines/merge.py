"""Field-level merge of partial updates into stored records."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel

NAME_FIELDS = frozenset({"first_name", "last_name"})


class FieldState(str, Enum):
    UNTOUCHED = "untouched"
    CLEAR = "clear"
    SET = "set"


@dataclass(frozen=True)
class FieldUpdate:
    """Incoming value for one field together with its presence state."""

    state: FieldState
    value: Any = None

    @classmethod
    def set(cls, value: Any) -> "FieldUpdate":
        if value is None:
            return cls.clear()
        return cls(FieldState.SET, value)

    @classmethod
    def clear(cls) -> "FieldUpdate":
        return cls(FieldState.CLEAR)

    @classmethod
    def untouched(cls) -> "FieldUpdate":
        return cls(FieldState.UNTOUCHED)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], key: str) -> "FieldUpdate":
        if key not in payload:
            return cls.untouched()
        return cls.set(payload[key])


def merge(
    existing: Optional[Mapping[str, Any]],
    incoming: Mapping[str, FieldUpdate],
    name_fields: Iterable[str] = NAME_FIELDS,
) -> Dict[str, Any]:
    """Combine ``existing`` with ``incoming`` and return the full record.

    SET overwrites, CLEAR writes ``None`` and UNTOUCHED keeps the stored
    value. Name fields never clear: they coalesce to the stored value.
    """
    names = frozenset(name_fields)
    resolved: Dict[str, Any] = dict(existing or {})
    for field, update in incoming.items():
        if update.state is FieldState.SET:
            resolved[field] = update.value
        elif update.state is FieldState.CLEAR:
            if field in names:
                resolved.setdefault(field, None)
            else:
                resolved[field] = None
        else:
            resolved.setdefault(field, None)
    return resolved


def updates_from_mapping(
    payload: Mapping[str, Any],
    fields: Mapping[str, str] | Iterable[str],
) -> Dict[str, FieldUpdate]:
    """Build updates from a plain mapping, keyed by presence of each field.

    ``fields`` is either an iterable of keys or a ``{payload_key: column}``
    mapping when the payload uses different names than the store.
    """
    mapping = fields if isinstance(fields, Mapping) else {key: key for key in fields}
    updates: Dict[str, FieldUpdate] = {}
    for key, column in mapping.items():
        update = FieldUpdate.from_payload(payload, key)
        if update.state is FieldState.UNTOUCHED and column in updates:
            continue
        updates[column] = update
    return updates


def updates_from_model(
    model: BaseModel,
    fields: Mapping[str, str] | Iterable[str],
) -> Dict[str, FieldUpdate]:
    """Like :func:`updates_from_mapping` using the pydantic ``model_fields_set``."""
    supplied = {name: getattr(model, name) for name in model.model_fields_set}
    return updates_from_mapping(supplied, fields)
