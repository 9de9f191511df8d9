"""Pydantic schemas shared by the API, the engines and the local replica."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "Source",
    "Threshold",
    "PeriodThresholds",
    "AxisLabels",
    "ScoreConfig",
    "StudentRecord",
    "ScorePatch",
    "PatchOutcome",
    "DeleteBody",
    "BulkImportBody",
    "MatrixCellBody",
    "ImportOutcome",
    "SCORE_FIELDS",
]


class Source(str, Enum):
    """The three independently keyed source record sets."""

    PRIOR = "prior"
    FALL = "fall"
    SPRING = "spring"


# Patch score field -> (source set, owned column)
SCORE_FIELDS: Dict[str, tuple[Source, str]] = {
    "prior_score": (Source.PRIOR, "score"),
    "fall_score": (Source.FALL, "score"),
    "spring_score": (Source.SPRING, "spring_score"),
}


class Threshold(BaseModel):
    label: str
    min: float
    max: float
    color: Optional[str] = Field(default=None, description="Display color, stored as given.")


class PeriodThresholds(BaseModel):
    previous: List[Threshold] = Field(default_factory=list)
    current: List[Threshold] = Field(default_factory=list)


class AxisLabels(BaseModel):
    xAxis: str = ""
    yAxis: str = ""


class ScoreConfig(BaseModel):
    """Axis labels plus one ordered threshold set per (subject, period)."""

    labels: AxisLabels
    thresholds: Dict[str, PeriodThresholds]

    def threshold_set(self, subject: str, period: Literal["previous", "current"]) -> List[Threshold]:
        per_subject = self.thresholds.get(subject)
        if per_subject is None:
            return []
        return list(getattr(per_subject, period))


class StudentRecord(BaseModel):
    """One reconciled row of the unified view."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    identifier: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    grade: Optional[str] = None
    campus: Optional[str] = None
    teacher: Optional[str] = None
    prior_score: Optional[float] = None
    fall_score: Optional[float] = None
    spring_score: Optional[float] = None
    prior_level: Optional[str] = None
    fall_level: Optional[str] = None
    spring_level: Optional[str] = None


def _number_as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class ScorePatch(BaseModel):
    """Partial score update.

    ``model_fields_set`` tells an explicit ``null`` (clear) apart from a field
    that was never sent (untouched).
    """

    model_config = ConfigDict(populate_by_name=True)

    identifier: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("identifier", "localId")
    )
    prior_score: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("priorScore", "staarScore", "prior_score"),
    )
    fall_score: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("fallScore", "fall_score")
    )
    spring_score: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("springScore", "benchmarkScore", "spring_score"),
    )
    first_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("firstName", "first_name")
    )
    last_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("lastName", "last_name")
    )

    @field_validator("identifier", mode="before")
    @classmethod
    def _identifier_as_text(cls, value: Any) -> Any:
        return _number_as_text(value)

    def supplied(self) -> Dict[str, Any]:
        """Return only the fields the caller explicitly sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class PatchOutcome(BaseModel):
    identifier: str
    updated: Dict[str, bool]
    success: bool = True
    message: str = ""


class DeleteBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("identifier", "localId")
    )

    @field_validator("identifier", mode="before")
    @classmethod
    def _identifier_as_text(cls, value: Any) -> Any:
        return _number_as_text(value)


class MatrixCellBody(BaseModel):
    """Selects one cell of the prior-level by spring-level matrix."""

    model_config = ConfigDict(populate_by_name=True)

    prior_level: str = Field(validation_alias=AliasChoices("priorLevel", "staar_level", "prior_level"))
    spring_level: str = Field(
        validation_alias=AliasChoices("springLevel", "benchmark_level", "spring_level")
    )
    teacher: Optional[str] = None
    subject: str = "math"


class BulkImportBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: Literal["math", "rla"]
    students: List[Any]
    import_kind: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("importKind", "type", "import_kind")
    )
    verbose: Optional[bool] = None


class ImportOutcome(BaseModel):
    success: bool
    processed: int
    skipped: int = 0
    message: str = ""
    errors: Optional[List[str]] = None
