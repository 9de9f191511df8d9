"""Threshold configuration file loader and writer."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError

from engines.classifier import describe_problems
from schemas import ScoreConfig

logger = logging.getLogger(__name__)


class ThresholdConfigError(ValueError):
    """Raised when the threshold configuration is missing keys or malformed."""


def _bands(cut_points: List[tuple[str, int, int, str]]) -> List[Dict[str, Any]]:
    return [{"label": label, "min": low, "max": high, "color": color} for label, low, high, color in cut_points]


_PREVIOUS_BANDS = _bands(
    [
        ("Masters", 80, 100, "#9333ea"),
        ("Meets", 60, 79, "#16a34a"),
        ("High Approaches", 50, 59, "#2563eb"),
        ("Low Approaches", 40, 49, "#2563eb"),
        ("High Did Not Meet", 20, 39, "#dc2626"),
        ("Low Did Not Meet", 0, 19, "#dc2626"),
    ]
)
_CURRENT_BANDS = _bands(
    [
        ("Masters", 85, 100, "#9333ea"),
        ("Meets", 65, 84, "#16a34a"),
        ("High Approaches", 55, 64, "#2563eb"),
        ("Low Approaches", 45, 54, "#2563eb"),
        ("High Did Not Meet", 22, 44, "#dc2626"),
        ("Low Did Not Meet", 0, 21, "#dc2626"),
    ]
)

DEFAULT_CONFIG: Dict[str, Any] = {
    "labels": {"xAxis": "Spring Benchmark", "yAxis": "Prior STAAR"},
    "thresholds": {
        subject: {"previous": list(_PREVIOUS_BANDS), "current": list(_CURRENT_BANDS)}
        for subject in ("math", "rla")
    },
}


def parse_config(raw: Any) -> ScoreConfig:
    """Validate a raw config structure.

    Only the presence of ``labels`` and ``thresholds`` is required; overlap and
    coverage problems are logged but accepted.
    """
    if not isinstance(raw, Mapping):
        raise ThresholdConfigError("Configuration must be a JSON object")
    missing = [key for key in ("labels", "thresholds") if key not in raw]
    if missing:
        raise ThresholdConfigError(f"Invalid configuration format: missing {', '.join(missing)}")
    try:
        return ScoreConfig.model_validate(raw)
    except ValidationError as exc:
        raise ThresholdConfigError(f"Invalid configuration format: {exc}") from exc


class ThresholdConfigStore:
    """Load and save the threshold configuration stored at ``path``.

    Each call to :meth:`load` reads the file again; nothing is cached between
    reads.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        default = os.getenv("THRESHOLDS_PATH") or str(Path("data") / "thresholds.json")
        self.path = Path(path) if path is not None else Path(default)

    # ------------------------------------------------------------------
    def load(self) -> ScoreConfig:
        if not self.path.exists():
            raise FileNotFoundError(f"Threshold config not found: {self.path}")
        with self.path.open("r", encoding="utf-8") as fh:
            try:
                raw = json.load(fh)
            except json.JSONDecodeError as exc:
                raise ThresholdConfigError(f"Threshold config is not valid JSON: {exc}") from exc
        return parse_config(raw)

    def save(self, raw: Any) -> List[str]:
        """Replace the stored configuration wholesale.

        Returns the authoring warnings found in the new configuration.
        """
        config = parse_config(raw)
        warnings = describe_problems(config)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(config.model_dump(mode="json"), fh, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Saved threshold configuration to %s", self.path)
        return warnings

    def ensure_default(self) -> bool:
        """Write :data:`DEFAULT_CONFIG` when no config file exists yet."""
        if self.path.exists():
            return False
        self.save(DEFAULT_CONFIG)
        logger.info("Seeded default threshold configuration at %s", self.path)
        return True
