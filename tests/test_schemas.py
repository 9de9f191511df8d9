import pytest
from pydantic import ValidationError

from schemas import BulkImportBody, DeleteBody, ScorePatch, StudentRecord


def test_patch_aliases_map_to_score_fields():
    patch = ScorePatch.model_validate({"localId": 6547, "staarScore": 80, "benchmarkScore": 70})
    assert patch.identifier == "6547"
    assert patch.supplied() == {"identifier": "6547", "prior_score": 80, "spring_score": 70}


def test_patch_keeps_explicit_null_apart_from_absent():
    patch = ScorePatch.model_validate({"identifier": "1", "fallScore": None})
    assert "fall_score" in patch.supplied()
    assert "spring_score" not in patch.supplied()


def test_patch_rejects_non_numeric_score():
    with pytest.raises(ValidationError):
        ScorePatch.model_validate({"identifier": "1", "fallScore": "high"})


def test_delete_body_accepts_numeric_identifier():
    assert DeleteBody.model_validate({"localId": 12}).identifier == "12"


def test_bulk_import_body_kind_aliases():
    body = BulkImportBody.model_validate({"subject": "rla", "students": [], "type": "fall"})
    assert body.import_kind == "fall"
    with pytest.raises(ValidationError):
        BulkImportBody.model_validate({"subject": "science", "students": []})


def test_student_record_dumps_camel_case():
    record = StudentRecord(identifier="1", prior_score=50)
    dumped = record.model_dump(by_alias=True)
    assert dumped["priorScore"] == 50
    assert StudentRecord.model_validate(dumped) == record
