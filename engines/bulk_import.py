"""Bulk score import from pasted text lines or structured records."""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import db
from engines.identity import CanonicalIndex
from engines.merge import NAME_FIELDS, FieldUpdate, merge
from engines.validation import ImportRecordError, TransportError, ValidationError, validate_score
from schemas import ImportOutcome, Source

logger = logging.getLogger(__name__)

_ID_NAME_SCORE = re.compile(r"^(\d+)\s+(.+)\s+(\d+(?:\.\d+)?)$")
_ID_SCORE = re.compile(r"^(\d+)\s+(\d+(?:\.\d+)?)$")
_GRADE = re.compile(r"^0*(\d{1,2})(?:st|nd|rd|th)?$", re.IGNORECASE)

IMPORT_KINDS = {
    "": Source.SPRING,
    "standard": Source.SPRING,
    "previous": Source.PRIOR,
    "previous_performance": Source.PRIOR,
    "fall": Source.FALL,
    "fall_performance": Source.FALL,
}

# Structured payload key -> spring_matrix column
_SPRING_KEYS = {
    "grade": "grade",
    "campus": "campus",
    "teacher": "teacher",
    "staarScore": "prior_score",
    "priorScore": "prior_score",
    "benchmarkScore": "spring_score",
    "springScore": "spring_score",
}
_SCORE_COLUMNS = frozenset({"score", "prior_score", "spring_score"})


# -------------- raw record variants --------------
@dataclass(frozen=True)
class TextLine:
    text: str


@dataclass(frozen=True)
class StructuredRecord:
    fields: Mapping[str, Any]


RawRecord = Union[TextLine, StructuredRecord]


@dataclass
class ParsedRecord:
    """A record reduced to its identifier plus per-column updates."""

    raw_identifier: str
    updates: Dict[str, FieldUpdate] = field(default_factory=dict)


def to_raw_record(item: Any) -> RawRecord:
    if isinstance(item, str):
        return TextLine(item)
    if isinstance(item, Mapping):
        return StructuredRecord(item)
    raise ImportRecordError(f"unsupported record type {type(item).__name__}")


def normalize_grade(value: Any) -> Optional[str]:
    """Canonicalize grade spellings such as ``07`` or ``7th`` to ``7``."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    match = _GRADE.match(text)
    if match:
        return str(int(match.group(1)))
    return text


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _score(name: str, value: Any) -> Optional[float]:
    try:
        return validate_score(name, value)
    except ValidationError as exc:
        raise ImportRecordError(str(exc)) from exc


def parse_text_line(line: TextLine, score_column: str) -> ParsedRecord:
    text = line.text.strip()
    match = _ID_NAME_SCORE.match(text)
    if match:
        parts = match.group(2).split()
        first_name = " ".join(parts[:-1]) if len(parts) > 1 else parts[0]
        last_name = parts[-1] if len(parts) > 1 else None
        return ParsedRecord(
            match.group(1),
            {
                "first_name": FieldUpdate.set(first_name),
                "last_name": FieldUpdate.set(last_name),
                score_column: FieldUpdate.set(_score("score", match.group(3))),
            },
        )
    match = _ID_SCORE.match(text)
    if match:
        return ParsedRecord(
            match.group(1),
            {score_column: FieldUpdate.set(_score("score", match.group(2)))},
        )
    raise ImportRecordError(f"unrecognized line: {text[:60]!r}")


def parse_structured(record: StructuredRecord, source: Source, subject: Optional[str]) -> ParsedRecord:
    fields = record.fields
    identifier = _text(fields.get("localId", fields.get("identifier")))
    if identifier is None:
        raise ImportRecordError("record has no localId")

    updates: Dict[str, FieldUpdate] = {
        "first_name": FieldUpdate.set(_text(fields.get("firstName"))),
        "last_name": FieldUpdate.set(_text(fields.get("lastName"))),
    }
    if source is Source.SPRING:
        for key, column in _SPRING_KEYS.items():
            if key not in fields or column in updates:
                continue
            value = fields[key]
            if column in _SCORE_COLUMNS:
                updates[column] = FieldUpdate.set(_score(key, value))
            elif column == "grade":
                updates[column] = FieldUpdate.set(normalize_grade(value))
            else:
                updates[column] = FieldUpdate.set(_text(value))
    elif "score" in fields:
        updates["score"] = FieldUpdate.set(_score("score", fields["score"]))

    record_subject = _text(fields.get("subject")) or subject
    if record_subject:
        updates["subject"] = FieldUpdate.set(record_subject)
    return ParsedRecord(identifier, updates)


def _score_column(source: Source) -> str:
    return "spring_score" if source is Source.SPRING else "score"


def parse_record(raw: RawRecord, source: Source, subject: Optional[str]) -> ParsedRecord:
    if isinstance(raw, TextLine):
        parsed = parse_text_line(raw, _score_column(source))
        if subject:
            parsed.updates["subject"] = FieldUpdate.set(subject)
        return parsed
    return parse_structured(raw, source, subject)


# -------------- pipeline --------------
def import_records(
    students: Iterable[Any],
    subject: Optional[str] = None,
    import_kind: Optional[str] = None,
    verbose: bool = False,
) -> ImportOutcome:
    """Normalize every raw record and upsert it into the target source set.

    Malformed records are skipped and the batch continues. A store failure
    rolls back the whole batch.
    """
    kind = (import_kind or "").strip().lower()
    if kind not in IMPORT_KINDS:
        raise ValidationError(f"unknown import kind: {import_kind}")
    source = IMPORT_KINDS[kind]
    items = list(students)

    processed = 0
    errors: List[str] = []
    try:
        with db.transaction() as con:
            index = CanonicalIndex.from_rows(db.canonical_rows(con))
            for position, item in enumerate(items, start=1):
                try:
                    parsed = parse_record(to_raw_record(item), source, subject)
                except ImportRecordError as exc:
                    errors.append(f"record {position}: {exc}")
                    if verbose:
                        logger.warning("Skipping import record %s: %s", position, exc)
                    else:
                        logger.debug("Skipping import record %s: %s", position, exc)
                    continue

                identifier = index.resolve(parsed.raw_identifier)
                known_first, known_last = index.names_for(identifier)
                for column, known in (("first_name", known_first), ("last_name", known_last)):
                    update = parsed.updates.get(column)
                    if (update is None or update.value is None) and known:
                        parsed.updates[column] = FieldUpdate.set(known)

                existing = db.get_source_row(con, source, identifier) or {"local_id": identifier}
                resolved = merge(existing, parsed.updates, NAME_FIELDS)
                db.write_source_row(con, source, resolved)
                index.register(identifier, resolved.get("first_name"), resolved.get("last_name"))
                processed += 1
    except sqlite3.Error as exc:
        logger.exception("Bulk import into %s rolled back", db.SOURCE_TABLES[source])
        raise TransportError("Bulk import failed") from exc

    skipped = len(items) - processed
    label = {Source.PRIOR: "previous", Source.FALL: "fall", Source.SPRING: "standard"}[source]
    logger.info("Bulk import (%s, %s): %s processed, %s skipped", label, subject, processed, skipped)
    return ImportOutcome(
        success=True,
        processed=processed,
        skipped=skipped,
        message=f"Successfully processed {processed} of {len(items)} {label} records"
        + (f" for {subject.upper()}." if subject else "."),
        errors=errors if verbose else None,
    )
