"""Offline-capable local mirror of the unified student view.

The replica sits on a key-indexed store that only offers get, put and delete.
It is written after successful server writes, or by local edits that are
queued and replayed against the server later.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from engines.classifier import classify_record
from engines.merge import NAME_FIELDS, FieldState, FieldUpdate, merge
from engines.validation import NotFoundError, TransportError, ValidationError, validate_score
from schemas import PatchOutcome, ScoreConfig, ScorePatch, StudentRecord
from thresholds import parse_config

logger = logging.getLogger(__name__)

_STUDENT_PREFIX = "student:"
_PENDING_PREFIX = "pending:"
_NEXT_ID_KEY = "meta:next_id"
_NEXT_EDIT_KEY = "meta:next_edit"
_SETTINGS_KEY = "settings:thresholds"
_SUBJECT_KEY = "meta:subject"
DEFAULT_SUBJECT = "math"

# Record fields a local edit may change.
EDITABLE_FIELDS = frozenset(
    {"first_name", "last_name", "grade", "campus", "teacher", "prior_score", "fall_score", "spring_score"}
)
_SCORE_FIELDS = ("prior_score", "fall_score", "spring_score")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryKeyValueStore:
    """Dictionary-backed store, mostly for tests and short-lived sessions."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(key for key in self._data if key.startswith(prefix))


class SQLiteKeyValueStore:
    """Single-file store: one ``kv`` table holding JSON values."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._con = sqlite3.connect(str(self.path), check_same_thread=False)
        self._con.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        self._con.commit()

    def get(self, key: str) -> Optional[Any]:
        row = self._con.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else json.loads(row[0])

    def put(self, key: str, value: Any) -> None:
        self._con.execute(
            "INSERT INTO kv(key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, json.dumps(value)),
        )
        self._con.commit()

    def delete(self, key: str) -> None:
        self._con.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._con.commit()

    def keys(self, prefix: str = "") -> List[str]:
        rows = self._con.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key", (len(prefix), prefix)
        ).fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        self._con.close()


class ReplicaRecord(StudentRecord):
    """Mirrored student with the local-only surrogate key."""

    id: int


class LocalReplica:
    """Single-writer mirror of the unified view plus a queue of local edits."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def _next(self, key: str) -> int:
        value = int(self.store.get(key) or 1)
        self.store.put(key, value + 1)
        return value

    def _put_record(self, record: StudentRecord, surrogate: Optional[int] = None) -> ReplicaRecord:
        current = self.get(record.identifier)
        if surrogate is None:
            surrogate = current.id if current is not None else self._next(_NEXT_ID_KEY)
        stored = ReplicaRecord(id=surrogate, **record.model_dump(exclude={"id"}))
        self.store.put(_STUDENT_PREFIX + record.identifier, stored.model_dump())
        return stored

    def get(self, identifier: str) -> Optional[ReplicaRecord]:
        raw = self.store.get(_STUDENT_PREFIX + identifier)
        return None if raw is None else ReplicaRecord.model_validate(raw)

    def records(self) -> List[ReplicaRecord]:
        found = []
        for key in self.store.keys(_STUDENT_PREFIX):
            raw = self.store.get(key)
            if raw is not None:
                found.append(ReplicaRecord.model_validate(raw))
        found.sort(key=lambda r: (r.last_name or "", r.first_name or "", r.identifier))
        return found

    # ------------------------------------------------------------------
    def load_settings(self) -> Optional[ScoreConfig]:
        raw = self.store.get(_SETTINGS_KEY)
        return None if raw is None else parse_config(raw)

    def save_settings(self, config: ScoreConfig | Mapping[str, Any]) -> None:
        parsed = config if isinstance(config, ScoreConfig) else parse_config(config)
        self.store.put(_SETTINGS_KEY, parsed.model_dump(mode="json"))

    def subject(self) -> str:
        """Subject whose thresholds classify the mirrored records."""
        return self.store.get(_SUBJECT_KEY) or DEFAULT_SUBJECT

    # ------------------------------------------------------------------
    def mirror(self, records: Iterable[StudentRecord], subject: Optional[str] = None) -> int:
        """Replace the mirror with a fresh unified read.

        ``subject`` is remembered and used when local edits and CSV imports
        reclassify records.

        Students with queued local edits keep their local version; students
        that vanished upstream are dropped unless they have queued edits.
        """
        with self._lock:
            if subject:
                self.store.put(_SUBJECT_KEY, subject)
            pending_ids = {edit["identifier"] for edit in self._pending()}
            seen = set()
            for record in records:
                seen.add(record.identifier)
                if record.identifier in pending_ids:
                    continue
                self._put_record(record)
            for key in self.store.keys(_STUDENT_PREFIX):
                identifier = key[len(_STUDENT_PREFIX):]
                if identifier not in seen and identifier not in pending_ids:
                    self.store.delete(key)
            logger.info("Mirrored %s students into the local replica", len(seen))
            return len(seen)

    def apply_server_write(self, record: StudentRecord) -> ReplicaRecord:
        with self._lock:
            return self._put_record(record)

    def remove(self, identifier: str) -> None:
        with self._lock:
            self.store.delete(_STUDENT_PREFIX + identifier)

    # ------------------------------------------------------------------
    def edit_local(self, identifier: str, updates: Mapping[str, FieldUpdate]) -> ReplicaRecord:
        """Apply an edit to the mirror and queue it for the server."""
        unknown = set(updates) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"fields cannot be edited locally: {', '.join(sorted(unknown))}")
        for field in _SCORE_FIELDS:
            update = updates.get(field)
            if update is not None:
                validate_score(field, update.value)

        with self._lock:
            current = self.get(identifier)
            if current is None:
                raise NotFoundError(f"{identifier} is not in the local replica")
            merged = merge(current.model_dump(), updates, NAME_FIELDS)
            record = StudentRecord.model_validate(merged)
            config = self.load_settings()
            if config is not None:
                record = classify_record(record, config, self.subject())
            else:
                stale = {
                    field.replace("_score", "_level"): None
                    for field in _SCORE_FIELDS
                    if field in updates and updates[field].state is not FieldState.UNTOUCHED
                }
                record = record.model_copy(update=stale)
            stored = self._put_record(record, surrogate=current.id)

            self.store.put(
                f"{_PENDING_PREFIX}{self._next(_NEXT_EDIT_KEY):08d}",
                {
                    "identifier": identifier,
                    "changes": {
                        field: update.value
                        for field, update in updates.items()
                        if update.state is not FieldState.UNTOUCHED
                    },
                },
            )
            return stored

    def _pending(self) -> List[Dict[str, Any]]:
        edits = []
        for key in self.store.keys(_PENDING_PREFIX):
            edit = self.store.get(key)
            if edit is not None:
                edits.append(dict(edit, key=key))
        return edits

    def pending_edits(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._pending()

    def flush(self, send: Callable[[ScorePatch], PatchOutcome]) -> Dict[str, int]:
        """Replay queued edits in order through ``send``.

        Only score and name changes travel to the server. Rejected edits are
        dropped; a transport failure stops the replay and keeps the rest.
        """
        sent = dropped = 0
        with self._lock:
            edits = self._pending()
        for edit in edits:
            payload = {
                field: value
                for field, value in edit["changes"].items()
                if field in _SCORE_FIELDS or field in NAME_FIELDS
            }
            if not any(field in payload for field in _SCORE_FIELDS):
                with self._lock:
                    self.store.delete(edit["key"])
                dropped += 1
                continue
            try:
                send(ScorePatch(identifier=edit["identifier"], **payload))
            except ValidationError as exc:
                logger.warning("Dropping rejected local edit for %s: %s", edit["identifier"], exc)
                with self._lock:
                    self.store.delete(edit["key"])
                dropped += 1
                continue
            except TransportError:
                logger.warning("Server unreachable; %s edits stay queued", len(edits) - sent - dropped)
                break
            with self._lock:
                self.store.delete(edit["key"])
            sent += 1
        return {"sent": sent, "dropped": dropped, "remaining": len(self.pending_edits())}

    # ------------------------------------------------------------------
    def import_csv(self, text: str, subject: Optional[str] = None) -> int:
        """Load students from CSV text with loosely matched headers.

        Levels come from the stored settings for ``subject``, defaulting to
        the subject of the last mirror.
        """
        reader = csv.reader(io.StringIO(text))
        rows = [row for row in reader if any(cell.strip() for cell in row)]
        if len(rows) < 2:
            raise ValidationError("CSV is empty or missing headers")

        columns = [_csv_column(header) for header in rows[0]]
        records = []
        for row in rows[1:]:
            values: Dict[str, Any] = {}
            for column, cell in zip(columns, row):
                cell = cell.strip()
                if column is None or not cell:
                    continue
                if column in _SCORE_FIELDS:
                    try:
                        values[column] = float(cell)
                    except ValueError:
                        continue
                else:
                    values[column] = cell
            if values.get("identifier"):
                records.append(StudentRecord.model_validate(values))
        if not records:
            raise ValidationError("No valid student records found (Local ID is required)")

        config = self.load_settings()
        subject = subject or self.subject()
        with self._lock:
            for record in records:
                self._put_record(classify_record(record, config, subject))
        return len(records)


def _csv_column(header: str) -> Optional[str]:
    name = header.strip().lower()
    if "local" in name and "id" in name:
        return "identifier"
    if "first" in name:
        return "first_name"
    if "last" in name:
        return "last_name"
    if "grade" in name:
        return "grade"
    if "teacher" in name:
        return "teacher"
    if "campus" in name:
        return "campus"
    if "score" in name:
        if "staar" in name or "prior" in name:
            return "prior_score"
        if "fall" in name:
            return "fall_score"
        if "spring" in name or "benchmark" in name:
            return "spring_score"
    return None
