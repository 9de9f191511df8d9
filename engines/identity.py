"""Canonical identifier resolution across the three source sets."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

_DIGITS = re.compile(r"^\d+$")


@dataclass(frozen=True)
class CanonicalEntry:
    identifier: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def numeric_key(raw: str) -> Optional[int]:
    """Return the numeric value of a digits-only identifier."""
    if not _DIGITS.match(raw):
        return None
    return int(raw)


def normalize_identifier(raw: object, canonical: Mapping[int, str]) -> Optional[str]:
    """Resolve ``raw`` against ``canonical`` (numeric value -> canonical id).

    Returns ``None`` for empty input so the caller can skip the record.
    Identifiers without a numeric match come back trimmed but otherwise as
    given.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    key = numeric_key(text)
    if key is not None and key in canonical:
        return canonical[key]
    return text


class CanonicalIndex:
    """Lookup of canonical identifiers and the names stored with them.

    Rows are registered in precedence order: the first textual form seen for
    a numeric value stays canonical, and names fill in from later rows only
    where earlier ones were blank.
    """

    def __init__(self) -> None:
        self._numbers: Dict[int, str] = {}
        self._entries: Dict[str, CanonicalEntry] = {}

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, object]]) -> "CanonicalIndex":
        index = cls()
        for row in rows:
            index.register(row.get("local_id"), row.get("first_name"), row.get("last_name"))
        return index

    def register(
        self,
        identifier: object,
        first_name: object = None,
        last_name: object = None,
    ) -> Optional[str]:
        """Add ``identifier`` to the index and return its canonical form."""
        text = self.resolve(identifier)
        if text is None:
            return None

        first = _clean_name(first_name)
        last = _clean_name(last_name)
        current = self._entries.get(text)
        if current is not None:
            first = current.first_name or first
            last = current.last_name or last
        self._entries[text] = CanonicalEntry(text, first, last)

        key = numeric_key(text)
        if key is not None:
            self._numbers.setdefault(key, text)
        return text

    def resolve(self, raw: object) -> Optional[str]:
        return normalize_identifier(raw, self._numbers)

    def names_for(self, identifier: str) -> Tuple[Optional[str], Optional[str]]:
        entry = self._entries.get(identifier)
        if entry is None:
            return None, None
        return entry.first_name, entry.last_name


def _clean_name(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
