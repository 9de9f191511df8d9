import pytest

from engines.identity import CanonicalIndex, normalize_identifier


def test_short_id_resolves_to_padded_canonical():
    canonical = {6547: "006547"}
    assert normalize_identifier("6547", canonical) == "006547"
    assert normalize_identifier("  006547 ", canonical) == "006547"


def test_canonical_identifier_is_a_fixed_point():
    canonical = {6547: "006547", 12: "12"}
    for value in canonical.values():
        assert normalize_identifier(value, canonical) == value
        once = normalize_identifier(value, canonical)
        assert normalize_identifier(once, canonical) == once


def test_unknown_identifier_is_trimmed_only():
    assert normalize_identifier(" 9999 ", {6547: "006547"}) == "9999"
    assert normalize_identifier("S-100", {100: "100"}) == "S-100"


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_empty_identifier_returns_none(raw):
    assert normalize_identifier(raw, {}) is None


def test_index_keeps_first_form_and_fills_names():
    index = CanonicalIndex.from_rows(
        [
            {"local_id": "006547", "first_name": None, "last_name": "Aguilar"},
            {"local_id": "6547", "first_name": "Itzhak", "last_name": "Other"},
        ]
    )
    assert index.resolve("6547") == "006547"
    assert index.register("6547") == "006547"
    assert index.resolve("0006547") == "006547"
    assert index.names_for("006547") == ("Itzhak", "Aguilar")
    assert index.names_for("missing") == (None, None)


def test_register_makes_new_ids_canonical_for_later_records():
    index = CanonicalIndex()
    assert index.register("6547") == "6547"
    assert index.register("006547", "Itzhak", "Aguilar") == "6547"
    assert index.resolve("0006547") == "6547"
    assert index.names_for("6547") == ("Itzhak", "Aguilar")
