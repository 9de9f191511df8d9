"""Score to performance-level classification driven by threshold tables."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from schemas import ScoreConfig, StudentRecord, Threshold

logger = logging.getLogger(__name__)

UNKNOWN_LEVEL = "Unknown"

# Score field -> (level field, threshold period)
LEVEL_FIELDS = (
    ("prior_score", "prior_level", "previous"),
    ("fall_score", "fall_level", "current"),
    ("spring_score", "spring_level", "current"),
)


def classify(score: Optional[float], thresholds: Sequence[Threshold]) -> Optional[str]:
    """Return the label of the first threshold containing ``score``.

    Bounds are inclusive. Overlaps are resolved by table order, and a score no
    entry covers falls back to ``"Unknown"``.
    """
    if score is None:
        return None
    for threshold in thresholds:
        if threshold.min <= score <= threshold.max:
            return threshold.label
    return UNKNOWN_LEVEL


def classify_record(
    record: StudentRecord,
    config: Optional[ScoreConfig],
    subject: str = "math",
) -> StudentRecord:
    """Return a copy of ``record`` with the three level fields computed.

    Without a config every level is ``None``; the scores are left alone.
    """
    levels = {}
    for score_field, level_field, period in LEVEL_FIELDS:
        if config is None:
            levels[level_field] = None
            continue
        levels[level_field] = classify(
            getattr(record, score_field), config.threshold_set(subject, period)
        )
    return record.model_copy(update=levels)


def find_overlaps(thresholds: Sequence[Threshold]) -> List[Tuple[str, str]]:
    """Return label pairs whose ranges intersect, in table order."""
    overlaps: List[Tuple[str, str]] = []
    for idx, first in enumerate(thresholds):
        for second in thresholds[idx + 1:]:
            if first.min <= second.max and second.min <= first.max:
                overlaps.append((first.label, second.label))
    return overlaps


def find_gaps(
    thresholds: Sequence[Threshold],
    lower: float = 0.0,
    upper: float = 100.0,
    tolerance: float = 0.0,
) -> List[Tuple[float, float]]:
    """Return stretches of [lower, upper] that no threshold covers.

    Bounds are inclusive, so 60-79 followed by 80-100 leaves (79, 80) open:
    a score of 79.5 matches neither. Pass ``tolerance=1`` to ignore such
    stretches when every score is a whole number.
    """
    ranges = sorted((t.min, t.max) for t in thresholds if t.min <= t.max)
    if not ranges:
        return [(lower, upper)]

    gaps: List[Tuple[float, float]] = []
    if ranges[0][0] > lower:
        gaps.append((lower, ranges[0][0]))
    cursor = ranges[0][1]
    for start, end in ranges[1:]:
        if start - cursor > tolerance:
            gaps.append((cursor, start))
        cursor = max(cursor, end)
    if cursor < upper:
        gaps.append((cursor, upper))
    return gaps


def describe_problems(config: ScoreConfig) -> List[str]:
    """Collect authoring warnings for every threshold set in ``config``."""
    warnings: List[str] = []
    for subject, periods in config.thresholds.items():
        for period in ("previous", "current"):
            table = getattr(periods, period)
            for threshold in table:
                if threshold.min > threshold.max:
                    warnings.append(
                        f"{subject}/{period}: '{threshold.label}' has min above max"
                    )
            for first, second in find_overlaps(table):
                warnings.append(
                    f"{subject}/{period}: '{first}' overlaps '{second}'; '{first}' wins"
                )
            narrow = []
            for start, end in find_gaps(table):
                if end - start <= 1:
                    narrow.append(f"{start:g} and {end:g}")
                else:
                    warnings.append(f"{subject}/{period}: scores between {start:g} and {end:g} are not covered")
            if narrow:
                warnings.append(
                    f"{subject}/{period}: fractional scores between {', '.join(narrow)} match no band"
                )
    for message in warnings:
        logger.warning("Threshold configuration: %s", message)
    return warnings
