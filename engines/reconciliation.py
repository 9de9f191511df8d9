"""Unified per-student view over the prior, fall and spring source sets."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from engines.classifier import UNKNOWN_LEVEL, classify_record
from engines.identity import CanonicalIndex
from engines.validation import NotFoundError
from schemas import ScoreConfig, Source, StudentRecord

logger = logging.getLogger(__name__)

NAME_PRECEDENCE: Tuple[Source, ...] = (Source.SPRING, Source.FALL, Source.PRIOR)
PRIOR_SCORE_PRECEDENCE: Tuple[Tuple[Source, str], ...] = (
    (Source.PRIOR, "score"),
    (Source.SPRING, "prior_score"),
)
FALL_SCORE_PRECEDENCE: Tuple[Tuple[Source, str], ...] = ((Source.FALL, "score"),)
SPRING_SCORE_PRECEDENCE: Tuple[Tuple[Source, str], ...] = ((Source.SPRING, "spring_score"),)

Snapshot = Mapping[Source, Iterable[Mapping[str, Any]]]


def _first_present(
    rows: Mapping[Source, Optional[Mapping[str, Any]]],
    precedence: Sequence[Tuple[Source, str]],
) -> Any:
    for source, column in precedence:
        row = rows.get(source)
        if row is None:
            continue
        value = row.get(column)
        if value is not None:
            return value
    return None


def _assemble(identifier: str, rows: Mapping[Source, Optional[Mapping[str, Any]]]) -> StudentRecord:
    spring = rows.get(Source.SPRING) or {}
    return StudentRecord(
        identifier=identifier,
        first_name=_first_present(rows, [(source, "first_name") for source in NAME_PRECEDENCE]),
        last_name=_first_present(rows, [(source, "last_name") for source in NAME_PRECEDENCE]),
        grade=spring.get("grade"),
        campus=spring.get("campus"),
        teacher=spring.get("teacher"),
        prior_score=_first_present(rows, PRIOR_SCORE_PRECEDENCE),
        fall_score=_first_present(rows, FALL_SCORE_PRECEDENCE),
        spring_score=_first_present(rows, SPRING_SCORE_PRECEDENCE),
    )


def _sort_key(record: StudentRecord) -> Tuple[str, str, str]:
    return (record.last_name or "", record.first_name or "", record.identifier)


def build_view(
    snapshot: Snapshot,
    config: Optional[ScoreConfig],
    subject: str = "math",
) -> List[StudentRecord]:
    """Produce one classified record per identifier found in any source set."""
    indexed: Dict[Source, Dict[str, Mapping[str, Any]]] = {}
    for source in Source:
        indexed[source] = {row["local_id"]: row for row in snapshot.get(source, ())}

    identifiers = set()
    for rows in indexed.values():
        identifiers.update(rows)

    records = []
    for identifier in identifiers:
        rows = {source: indexed[source].get(identifier) for source in Source}
        records.append(classify_record(_assemble(identifier, rows), config, subject))
    records.sort(key=_sort_key)
    return records


def load_config_or_none(load_config: Callable[[], ScoreConfig]) -> Optional[ScoreConfig]:
    """Load the threshold config, or return ``None`` when it is unavailable."""
    try:
        return load_config()
    except (OSError, ValueError) as exc:
        logger.warning("Threshold config unavailable, levels will be empty: %s", exc)
        return None


def read_unified_view(
    fetch_snapshot: Callable[[], Snapshot],
    load_config: Callable[[], ScoreConfig],
    subject: str = "math",
) -> List[StudentRecord]:
    return build_view(fetch_snapshot(), load_config_or_none(load_config), subject)


def missing_scores(records: Iterable[StudentRecord]) -> Dict[str, List[StudentRecord]]:
    """Split out students whose spring or prior score is absent or zero."""
    missing_spring: List[StudentRecord] = []
    missing_prior: List[StudentRecord] = []
    for record in records:
        if not record.spring_score:
            missing_spring.append(record)
        if not record.prior_score:
            missing_prior.append(record)
    return {"missingSpring": missing_spring, "missingPrior": missing_prior}


def transition_matrix(
    records: Iterable[StudentRecord],
    config: Optional[ScoreConfig] = None,
    subject: str = "math",
    teacher: Optional[str] = None,
) -> Dict[str, Any]:
    """Count students by (prior level, spring level).

    Rows follow the ``previous`` threshold table, columns the ``current`` one.
    Records missing either level are left out.
    """
    pairs: List[Tuple[str, str]] = []
    for record in records:
        if teacher and record.teacher != teacher:
            continue
        if record.prior_level is None or record.spring_level is None:
            continue
        pairs.append((record.prior_level, record.spring_level))

    if config is not None:
        row_labels = [t.label for t in config.threshold_set(subject, "previous")]
        col_labels = [t.label for t in config.threshold_set(subject, "current")]
    else:
        row_labels, col_labels = [], []
    for prior_level, spring_level in pairs:
        if prior_level not in row_labels:
            row_labels.append(prior_level)
        if spring_level not in col_labels:
            col_labels.append(spring_level)
    for labels in (row_labels, col_labels):
        if UNKNOWN_LEVEL in labels:
            labels.remove(UNKNOWN_LEVEL)
            labels.append(UNKNOWN_LEVEL)

    counts = [[0 for _ in col_labels] for _ in row_labels]
    for prior_level, spring_level in pairs:
        counts[row_labels.index(prior_level)][col_labels.index(spring_level)] += 1

    return {
        "rows": row_labels,
        "columns": col_labels,
        "counts": counts,
        "rowTotals": {label: sum(counts[idx]) for idx, label in enumerate(row_labels)},
        "total": len(pairs),
    }


def matrix_cell(
    records: Iterable[StudentRecord],
    prior_level: str,
    spring_level: str,
    teacher: Optional[str] = None,
) -> List[StudentRecord]:
    """Students counted in one (prior level, spring level) cell of the matrix."""
    return [
        record
        for record in records
        if record.prior_level == prior_level
        and record.spring_level == spring_level
        and (not teacher or record.teacher == teacher)
    ]


def find_record(records: Iterable[StudentRecord], identifier: object) -> StudentRecord:
    """Return the record for ``identifier``, accepting non-padded forms."""
    by_id = {record.identifier: record for record in records}
    index = CanonicalIndex.from_rows({"local_id": key} for key in sorted(by_id))
    resolved = index.resolve(identifier)
    if resolved is None or resolved not in by_id:
        raise NotFoundError(f"No student found for identifier {identifier!r}")
    return by_id[resolved]
