import sqlite3

import pytest

import db
from engines import patching, reconciliation
from engines.validation import TransportError, ValidationError
from schemas import ScorePatch, Source


def _patch(**payload):
    return ScorePatch.model_validate(payload)


def _row(source, identifier):
    with db._conn() as con:
        return db.get_source_row(con, source, identifier)


def test_short_identifier_patches_canonical_row_with_names(seed_rows):
    seed_rows(Source.SPRING, {"local_id": "006547", "first_name": "Itzhak", "last_name": "Aguilar"})

    outcome = patching.apply_patch(_patch(identifier="6547", fallScore=91))

    assert outcome.identifier == "006547"
    assert outcome.updated == {"prior": False, "fall": True, "spring": False}
    fall = _row(Source.FALL, "006547")
    assert fall["score"] == 91
    assert fall["first_name"] == "Itzhak"
    assert fall["last_name"] == "Aguilar"
    assert _row(Source.FALL, "6547") is None


def test_out_of_range_score_is_rejected_before_transaction(temp_db, monkeypatch):
    def _no_transaction():
        raise AssertionError("transaction must not open for invalid input")

    monkeypatch.setattr(db, "transaction", _no_transaction)
    with pytest.raises(ValidationError):
        patching.apply_patch(_patch(identifier="006547", staarScore=150))


@pytest.mark.parametrize(
    "payload",
    [
        {"fallScore": 50},
        {"identifier": "   ", "fallScore": 50},
        {"identifier": "1"},
        {"identifier": "1", "firstName": "Ana"},
        {"identifier": "1", "springScore": -1},
    ],
)
def test_invalid_patches_raise_validation_error(temp_db, payload):
    with pytest.raises(ValidationError):
        patching.apply_patch(_patch(**payload))


def test_multi_field_patch_writes_every_destination(seed_rows):
    seed_rows(Source.PRIOR, {"local_id": "10", "first_name": "Ana", "last_name": "Lopez", "score": 40})

    outcome = patching.apply_patch(_patch(identifier="10", priorScore=45, fallScore=50, springScore=60))

    assert outcome.updated == {"prior": True, "fall": True, "spring": True}
    assert _row(Source.PRIOR, "10")["score"] == 45
    assert _row(Source.FALL, "10")["score"] == 50
    spring = _row(Source.SPRING, "10")
    assert spring["spring_score"] == 60
    assert spring["last_name"] == "Lopez"


def test_failed_write_rolls_back_every_destination(seed_rows, monkeypatch):
    seed_rows(Source.PRIOR, {"local_id": "10", "first_name": "Ana", "last_name": "Lopez", "score": 40})
    real_write = db.write_source_row

    def _flaky_write(con, source, row):
        if source is Source.SPRING:
            raise sqlite3.OperationalError("disk I/O error")
        return real_write(con, source, row)

    monkeypatch.setattr(db, "write_source_row", _flaky_write)
    with pytest.raises(TransportError):
        patching.apply_patch(_patch(identifier="10", priorScore=99, fallScore=99, springScore=99))

    assert _row(Source.PRIOR, "10")["score"] == 40
    assert _row(Source.FALL, "10") is None
    assert _row(Source.SPRING, "10") is None


def test_patch_is_idempotent(seed_rows):
    seed_rows(Source.SPRING, {"local_id": "20", "first_name": "Kai", "last_name": "Ng", "spring_score": 10})
    patch = _patch(identifier="20", springScore=77, fallScore=33)

    patching.apply_patch(patch)
    first = db.fetch_source_rows()
    patching.apply_patch(patch)
    second = db.fetch_source_rows()
    assert first == second


def test_explicit_null_clears_score_but_keeps_names(seed_rows):
    seed_rows(Source.FALL, {"local_id": "30", "first_name": "Lu", "last_name": "Wei", "score": 70})

    patching.apply_patch(_patch(identifier="30", fallScore=None, lastName=None))

    fall = _row(Source.FALL, "30")
    assert fall["score"] is None
    assert fall["first_name"] == "Lu"
    assert fall["last_name"] == "Wei"


def test_supplied_names_override_stored_names(seed_rows):
    seed_rows(Source.SPRING, {"local_id": "40", "first_name": "Sam", "last_name": "Old"})

    patching.apply_patch(_patch(identifier="40", springScore=80, lastName="New"))

    spring = _row(Source.SPRING, "40")
    assert spring["first_name"] == "Sam"
    assert spring["last_name"] == "New"


def test_spring_patch_keeps_other_spring_columns(seed_rows):
    seed_rows(
        Source.SPRING,
        {"local_id": "50", "grade": "8", "teacher": "Kim", "prior_score": 61, "spring_score": 20},
    )
    patching.apply_patch(_patch(identifier="50", benchmarkScore=66))

    spring = _row(Source.SPRING, "50")
    assert spring["spring_score"] == 66
    assert spring["prior_score"] == 61
    assert spring["grade"] == "8" and spring["teacher"] == "Kim"


def test_delete_removes_identifier_everywhere(seed_rows):
    row = {"local_id": "006547", "first_name": "Itzhak", "last_name": "Aguilar"}
    seed_rows(Source.PRIOR, dict(row, score=72))
    seed_rows(Source.FALL, dict(row, score=80))
    seed_rows(Source.SPRING, dict(row, spring_score=88))

    counts = patching.remove_student("006547")

    assert counts == {"spring_matrix": 1, "fall_performance": 1, "previous_performance": 1}
    view = reconciliation.build_view(db.fetch_source_rows(), None)
    assert "006547" not in {r.identifier for r in view}


def test_delete_resolves_short_identifier(seed_rows):
    seed_rows(Source.PRIOR, {"local_id": "000123", "score": 5})
    counts = patching.remove_student("123")
    assert counts["previous_performance"] == 1


def test_delete_of_unknown_identifier_is_not_an_error(temp_db):
    counts = patching.remove_student("nobody")
    assert sum(counts.values()) == 0


def test_delete_requires_identifier(temp_db):
    with pytest.raises(ValidationError):
        patching.remove_student("  ")
