"""Error kinds and request validation for score updates."""

import math
from typing import Any, Iterable, Mapping, Optional

SCORE_MIN = 0.0
SCORE_MAX = 100.0


class ScoreEngineError(Exception):
    """Base class for engine errors."""
    pass


class ValidationError(ScoreEngineError):
    """Raised when a request is rejected before any write happens."""
    pass


class NotFoundError(ScoreEngineError):
    """Raised when an identifier has no matching row where one is required."""
    pass


class TransportError(ScoreEngineError):
    """Raised when the backing store fails; the transaction has been rolled back."""
    pass


class ImportRecordError(ScoreEngineError):
    """Raised for a single malformed record inside a bulk import."""
    pass


def clean_identifier(value: Any) -> Optional[str]:
    """Return the trimmed identifier or ``None`` when it is empty or absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_score(name: str, value: Any) -> Optional[float]:
    """Validate a single score value.

    ``None`` is a deliberate clear and passes through. Anything else must be a
    finite number within [0, 100].
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        score = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number") from exc
    if math.isnan(score) or math.isinf(score):
        raise ValidationError(f"{name} must be a finite number")
    if not (SCORE_MIN <= score <= SCORE_MAX):
        raise ValidationError(
            f"{name} must be between {SCORE_MIN:g} and {SCORE_MAX:g} (got {score:g})"
        )
    return score


def validate_patch(
    identifier: Any,
    supplied: Mapping[str, Any],
    score_fields: Iterable[str],
) -> str:
    """Validate a patch request and return the trimmed identifier.

    ``supplied`` holds only the fields the caller explicitly sent, so a score
    explicitly set to ``None`` counts as present.
    """
    cleaned = clean_identifier(identifier)
    if cleaned is None:
        raise ValidationError("identifier is required")

    present = [field for field in score_fields if field in supplied]
    if not present:
        raise ValidationError(
            "at least one of priorScore, fallScore or springScore must be supplied"
        )

    for field in present:
        validate_score(field, supplied[field])
    return cleaned
