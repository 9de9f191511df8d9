import pytest

from engines.classifier import (
    UNKNOWN_LEVEL,
    classify,
    classify_record,
    describe_problems,
    find_gaps,
    find_overlaps,
)
from schemas import ScoreConfig, StudentRecord, Threshold
from thresholds import DEFAULT_CONFIG


def _table(*bands):
    return [Threshold(label=label, min=low, max=high) for label, low, high in bands]


COVERING = _table(("High", 70, 100), ("Mid", 40, 69.99), ("Low", 0, 39.99))


def test_none_score_is_not_classified():
    assert classify(None, COVERING) is None


def test_bounds_are_inclusive():
    assert classify(70, COVERING) == "High"
    assert classify(100, COVERING) == "High"
    assert classify(0, COVERING) == "Low"
    assert classify(69.5, COVERING) == "Mid"


def test_out_of_table_score_is_unknown():
    assert classify(101, COVERING) == UNKNOWN_LEVEL
    assert classify(50, []) == UNKNOWN_LEVEL


def test_overlap_resolved_by_table_order():
    table = _table(("First", 50, 80), ("Second", 60, 100))
    assert classify(65, table) == "First"
    assert classify(65, list(reversed(table))) == "Second"


def test_classification_is_stable_across_calls():
    table = _table(("A", 0, 50), ("B", 40, 100))
    scores = [0, 12.5, 40, 45, 50, 50.01, 99, 100, 150, -1]
    first = [classify(score, table) for score in scores]
    for _ in range(5):
        assert [classify(score, table) for score in scores] == first


def test_covering_table_never_yields_unknown():
    config = ScoreConfig.model_validate(DEFAULT_CONFIG)
    table = config.threshold_set("math", "previous")
    for score in range(0, 101):
        label = classify(score, table)
        assert label != UNKNOWN_LEVEL
        assert sum(1 for t in table if t.min <= score <= t.max) == 1


def test_classify_record_uses_previous_and_current_sets():
    config = ScoreConfig.model_validate(DEFAULT_CONFIG)
    record = StudentRecord(identifier="1", prior_score=82, fall_score=82, spring_score=None)
    classified = classify_record(record, config, "math")
    assert classified.prior_level == "Masters"
    assert classified.fall_level == "Meets"
    assert classified.spring_level is None
    assert record.prior_level is None


def test_classify_record_without_config_keeps_scores():
    record = StudentRecord(identifier="1", prior_score=82, fall_score=40)
    classified = classify_record(record, None)
    assert classified.prior_score == 82
    assert classified.prior_level is None
    assert classified.fall_level is None


def test_unknown_subject_falls_back_to_unknown_label():
    config = ScoreConfig.model_validate(DEFAULT_CONFIG)
    record = StudentRecord(identifier="1", prior_score=50)
    assert classify_record(record, config, "science").prior_level == UNKNOWN_LEVEL


def test_overlap_and_gap_diagnostics():
    table = _table(("A", 0, 50), ("B", 45, 60), ("C", 80, 100))
    assert find_overlaps(table) == [("A", "B")]
    assert find_gaps(table) == [(60, 80)]
    assert find_gaps([]) == [(0.0, 100.0)]
    assert find_gaps(_table(("Top", 10, 90))) == [(0.0, 10), (90, 100.0)]


def test_fractional_score_between_integer_bands_is_reported():
    config = ScoreConfig.model_validate(DEFAULT_CONFIG)
    assert classify(84.5, config.threshold_set("math", "current")) == UNKNOWN_LEVEL

    warnings = describe_problems(config)
    current = [w for w in warnings if w.startswith("math/current")]
    assert len(current) == 1
    assert "fractional scores between" in current[0]
    assert "84 and 85" in current[0]
    assert all("fractional" in w for w in warnings)
    assert len(warnings) == 4


def test_whole_number_tolerance_ignores_integer_band_gaps():
    config = ScoreConfig.model_validate(DEFAULT_CONFIG)
    table = config.threshold_set("math", "current")
    assert (84, 85) in find_gaps(table)
    assert find_gaps(table, tolerance=1) == []


def test_describe_problems_reports_without_raising(caplog):
    config = ScoreConfig.model_validate(
        {
            "labels": {"xAxis": "x", "yAxis": "y"},
            "thresholds": {
                "math": {
                    "previous": [{"label": "A", "min": 0, "max": 60}, {"label": "B", "min": 50, "max": 100}],
                    "current": [{"label": "Odd", "min": 90, "max": 10}],
                }
            },
        }
    )
    with caplog.at_level("WARNING"):
        warnings = describe_problems(config)
    assert any("overlaps" in message for message in warnings)
    assert any("min above max" in message for message in warnings)
    assert any("not covered" in message for message in warnings)
    assert "overlaps" in caplog.text
