# app.py — Score Reconciler API
# - Unified, classified view over the prior / fall / spring source sets
# - Transactional score patches, cascading deletes and bulk imports
# - Threshold configuration load/save

import logging
import sqlite3
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Request

import db
from engines import bulk_import as importer
from engines import patching, reconciliation, validation
from env_validation import get_env_bool
from schemas import (
    BulkImportBody,
    DeleteBody,
    ImportOutcome,
    MatrixCellBody,
    PatchOutcome,
    ScorePatch,
    Source,
    StudentRecord,
)
from thresholds import ThresholdConfigError, ThresholdConfigStore

logger = logging.getLogger(__name__)

CONFIG_STORE = ThresholdConfigStore()


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        CONFIG_STORE.ensure_default()
        logger.info("Source sets ready: %s", db.count_rows())
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    try:
        yield
    finally:
        db.close()


app = FastAPI(title="Score Reconciler", version="1.0.0", lifespan=_lifespan)

_HTTP_LOGGER = logging.getLogger("scores.http")
if not _HTTP_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
    _HTTP_LOGGER.addHandler(_handler)
_HTTP_LOGGER.setLevel(logging.INFO)
_HTTP_LOGGER.propagate = False


@app.middleware("http")
async def _log_requests(request: Request, call_next):
    started = perf_counter()
    response = await call_next(request)
    _HTTP_LOGGER.info(
        "%s %s -> %s (%.1f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (perf_counter() - started) * 1000,
    )
    return response


# ---------- Helpers ----------
def _unified_view(subject: str) -> List[StudentRecord]:
    try:
        return reconciliation.read_unified_view(db.fetch_source_rows, CONFIG_STORE.load, subject)
    except sqlite3.Error as exc:
        logger.exception("Failed to read source sets")
        raise HTTPException(status_code=500, detail="Internal Server Error") from exc


def _internal_error(exc: Exception) -> HTTPException:
    logger.error("Request failed: %s", exc)
    return HTTPException(status_code=500, detail="Internal Server Error")


# ---------- Unified scores ----------
@app.get("/student-scores", response_model=List[StudentRecord])
def list_student_scores(subject: str = "math"):
    return _unified_view(subject)


@app.get("/student-scores/{identifier}", response_model=StudentRecord)
def get_student_score(identifier: str, subject: str = "math"):
    try:
        return reconciliation.find_record(_unified_view(subject), identifier)
    except validation.NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.patch("/student-scores", response_model=PatchOutcome)
def patch_student_scores(body: ScorePatch):
    try:
        return patching.apply_patch(body)
    except validation.ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except validation.TransportError as exc:
        raise _internal_error(exc) from exc


@app.delete("/student-scores")
def delete_student_scores(body: DeleteBody):
    try:
        deleted = patching.remove_student(body.identifier)
    except validation.ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except validation.TransportError as exc:
        raise _internal_error(exc) from exc
    return {
        "success": True,
        "message": f"Deleted {body.identifier.strip()} from {sum(deleted.values())} source rows",
        "deleted": deleted,
    }


# ---------- Imports ----------
@app.post("/bulk-import", response_model=ImportOutcome)
def bulk_import_students(body: BulkImportBody):
    verbose = body.verbose if body.verbose is not None else get_env_bool("IMPORT_VERBOSE")
    try:
        return importer.import_records(
            body.students,
            subject=body.subject,
            import_kind=body.import_kind,
            verbose=verbose,
        )
    except validation.ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except validation.TransportError as exc:
        raise _internal_error(exc) from exc


@app.post("/clear-data")
def clear_data():
    try:
        cleared = db.clear_source_sets()
    except sqlite3.Error as exc:
        raise _internal_error(exc) from exc
    return {
        "success": True,
        "message": "All student data tables cleared successfully.",
        "cleared": cleared,
    }


# ---------- Settings ----------
@app.get("/settings")
def get_settings():
    try:
        return CONFIG_STORE.load().model_dump(mode="json")
    except (OSError, ThresholdConfigError) as exc:
        logger.error("Error reading config: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to load configuration") from exc


@app.post("/settings")
def save_settings(body: Dict[str, Any] = Body(...)):
    try:
        warnings = CONFIG_STORE.save(body)
    except ThresholdConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OSError as exc:
        logger.error("Error saving config: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to save configuration") from exc
    return {"success": True, "message": "Configuration saved", "warnings": warnings}


# ---------- Source listings & reports ----------
@app.get("/previous-performance")
def list_previous_performance():
    rows = db.list_source_rows(Source.PRIOR)
    return {"data": rows, "count": len(rows)}


@app.get("/fall-performance")
def list_fall_performance():
    rows = db.list_source_rows(Source.FALL)
    return {"data": rows, "count": len(rows)}


@app.get("/missing-data")
def missing_data(subject: str = "math"):
    return reconciliation.missing_scores(_unified_view(subject))


@app.get("/teachers")
def list_teachers(grade: Optional[str] = None):
    return {"teachers": db.list_teachers(grade)}


@app.get("/grades")
def list_grades():
    grades = db.list_grades()
    return {"grades": grades, "hasData": {grade: True for grade in grades}}


@app.get("/matrix")
def performance_matrix(subject: str = "math", teacher: Optional[str] = None):
    config = reconciliation.load_config_or_none(CONFIG_STORE.load)
    records = reconciliation.build_view(db.fetch_source_rows(), config, subject)
    matrix = reconciliation.transition_matrix(records, config, subject, teacher=teacher)
    matrix["teachers"] = sorted({r.teacher for r in records if r.teacher})
    if config is not None:
        matrix["labels"] = config.labels.model_dump()
    return matrix


@app.post("/matrix")
def performance_matrix_cell(body: MatrixCellBody):
    records = _unified_view(body.subject)
    students = reconciliation.matrix_cell(
        records, body.prior_level, body.spring_level, teacher=body.teacher
    )
    return {"students": students, "count": len(students)}
