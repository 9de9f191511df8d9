"""Atomic score updates and deletes across the three source sets."""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict

import db
from engines.identity import CanonicalIndex
from engines.merge import NAME_FIELDS, FieldState, FieldUpdate, merge, updates_from_model
from engines.validation import TransportError, ValidationError, clean_identifier, validate_patch
from schemas import SCORE_FIELDS, PatchOutcome, ScorePatch, Source

logger = logging.getLogger(__name__)

OUTCOME_KEYS: Dict[Source, str] = {
    Source.PRIOR: "prior",
    Source.FALL: "fall",
    Source.SPRING: "spring",
}


def _name_updates(patch: ScorePatch, stored: tuple) -> Dict[str, FieldUpdate]:
    supplied = patch.supplied()
    updates: Dict[str, FieldUpdate] = {}
    for field, fallback in zip(("first_name", "last_name"), stored):
        value = supplied.get(field)
        if isinstance(value, str):
            value = value.strip() or None
        updates[field] = FieldUpdate.set(value if value is not None else fallback)
    return updates


def apply_patch(patch: ScorePatch) -> PatchOutcome:
    """Apply a partial score update to every destination it names.

    Validation runs before the transaction opens. All writes share one
    transaction: either every supplied score lands or none does.
    """
    supplied = patch.supplied()
    validate_patch(patch.identifier, supplied, SCORE_FIELDS)

    scores = updates_from_model(patch, list(SCORE_FIELDS))
    updated = {key: False for key in OUTCOME_KEYS.values()}
    try:
        with db.transaction() as con:
            index = CanonicalIndex.from_rows(db.canonical_rows(con))
            identifier = index.resolve(patch.identifier)
            names = _name_updates(patch, db.find_names(con, identifier))

            for field, (source, column) in SCORE_FIELDS.items():
                if scores[field].state is FieldState.UNTOUCHED:
                    continue
                existing = db.get_source_row(con, source, identifier) or {"local_id": identifier}
                incoming = dict(names)
                incoming[column] = scores[field]
                db.write_source_row(con, source, merge(existing, incoming, NAME_FIELDS))
                updated[OUTCOME_KEYS[source]] = True
    except sqlite3.Error as exc:
        logger.exception("Score patch for %s rolled back", patch.identifier)
        raise TransportError("Failed to update scores") from exc

    logger.info("Patched scores for %s: %s", identifier, updated)
    return PatchOutcome(
        identifier=identifier,
        updated=updated,
        message=f"Updated scores for {identifier}",
    )


def remove_student(identifier: object) -> Dict[str, int]:
    """Delete the identifier from all three source sets.

    Deleting an identifier that does not exist is not an error.
    """
    cleaned = clean_identifier(identifier)
    if cleaned is None:
        raise ValidationError("identifier is required")
    try:
        with db.transaction() as con:
            resolved = CanonicalIndex.from_rows(db.canonical_rows(con)).resolve(cleaned)
            counts = db.delete_source_rows(con, resolved)
    except sqlite3.Error as exc:
        logger.exception("Delete for %s rolled back", cleaned)
        raise TransportError("Failed to delete student") from exc
    logger.info("Deleted %s: %s", resolved, counts)
    return counts
