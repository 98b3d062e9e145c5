from datetime import datetime

import pytest

from rating_engine import (
    LEAGUE_LEVELS,
    RatingError,
    absolute_skill,
    apply_rating,
    calculate_main_from_subs,
    clamp_rating,
    core_attributes_for,
    history_with_levels,
    new_attribute,
    overall_level_and_rating,
    overall_level_rating,
    overall_rating,
    pool_rating,
    rating_category,
    resolve_rating_value,
    validate_rating,
)

NOW = datetime(2024, 3, 1, 12, 0)


def _rated(name: str, value: int, level: int = 0):
    attr = new_attribute("p1", name, level=level)
    apply_rating(attr, value, now=NOW)
    return attr


def test_clamp_rating_rounds_half_up_and_clamps() -> None:
    assert clamp_rating(0) == 1
    assert clamp_rating(150) == 99
    assert clamp_rating(45.5) == 46
    assert clamp_rating(45.4) == 45


def test_validate_rating_messages() -> None:
    assert validate_rating(50) == (True, "")
    assert validate_rating("abc") == (False, "Bewertung muss eine Zahl sein")
    assert validate_rating(100) == (False, "Bewertung muss zwischen 1 und 99 liegen")
    assert validate_rating(50.5) == (False, "Bewertung muss eine ganze Zahl sein")


def test_main_value_from_sub_attributes_ignores_invalid_values() -> None:
    assert calculate_main_from_subs({"a": 60, "b": 71, "c": 0, "d": "x"}) == 66
    assert calculate_main_from_subs({"a": 150}) is None
    assert calculate_main_from_subs(None) is None


def test_resolve_rating_value_prefers_explicit_value() -> None:
    assert resolve_rating_value(70, {"a": 10}) == 70
    assert resolve_rating_value(None, {"a": 40, "b": 50}) == 45
    with pytest.raises(RatingError):
        resolve_rating_value(None, {})
    with pytest.raises(RatingError):
        resolve_rating_value(0, None)


def test_absolute_skill_round_trip() -> None:
    assert absolute_skill(2, 45) == 245
    assert absolute_skill(0, None) == 1
    assert overall_level_and_rating(245) == (2, 45)
    assert overall_level_and_rating(812) == (7, 12)


def test_first_rating_records_zero_change() -> None:
    attr = _rated("Angriff", 55)
    assert attr["numeric_value"] == 55
    assert attr["level_rating"] == 55
    assert attr["progression_history"] == [
        {"value": 55, "change": 0, "notes": None, "level": 0, "updated_by": None, "updated_at": NOW}
    ]


def test_regular_update_records_difference() -> None:
    attr = _rated("Angriff", 55)
    outcome = apply_rating(attr, 62, updated_by="coach", notes="Gute Woche", now=NOW)
    assert not outcome.promoted
    assert outcome.history_entry["change"] == 7
    assert attr["notes"] == "Gute Woche"
    assert len(attr["progression_history"]) == 2


def test_rating_of_ninety_promotes_and_resets() -> None:
    attr = _rated("Aufschlag", 85)
    outcome = apply_rating(attr, 92, now=NOW)
    assert outcome.promoted
    assert (outcome.old_level, outcome.new_level) == (0, 1)
    assert attr["level"] == 1
    assert attr["numeric_value"] == 1
    assert attr["level_rating"] == 1
    entry = attr["progression_history"][-1]
    assert entry["notes"] == "Level-Aufstieg: Kreisliga → Bezirksklasse"
    assert entry["change"] == absolute_skill(1, 1) - absolute_skill(0, 85)


def test_no_promotion_beyond_bundesliga() -> None:
    attr = _rated("Mental", 50, level=7)
    outcome = apply_rating(attr, 95, now=NOW)
    assert not outcome.promoted
    assert attr["level"] == 7
    assert attr["numeric_value"] == 95


def test_history_is_append_only() -> None:
    attr = _rated("Abwehr", 40)
    first = dict(attr["progression_history"][0])
    for value in (45, 91, 20):
        apply_rating(attr, value, now=NOW)
    assert len(attr["progression_history"]) == 4
    assert attr["progression_history"][0] == first


def test_history_with_levels_reconstructs_missing_levels() -> None:
    attr = {
        "attribute_name": "Athletik",
        "level": 1,
        "progression_history": [
            {"value": 80, "change": 0, "notes": None},
            {"value": 1, "change": 21, "notes": "Level-Aufstieg: Kreisliga → Bezirksklasse"},
            {"value": 30, "change": 29, "notes": None},
        ],
    }
    annotated = history_with_levels(attr)
    assert [e["level"] for e in annotated] == [0, 1, 1]
    assert [e["absolute_value"] for e in annotated] == [80, 101, 130]
    assert annotated[1]["league"] == LEAGUE_LEVELS[1]


def test_rating_category_bands() -> None:
    assert rating_category(95)["category"] == "Elite"
    assert rating_category(75)["category"] == "Sehr gut"
    assert rating_category(60)["category"] == "Gut"
    assert rating_category(40)["category"] == "Durchschnitt"
    assert rating_category(39)["category"] == "Entwicklungsbedarf"
    assert rating_category("x")["category"] == "Unbekannt"


def test_overall_rating_uses_position_weights() -> None:
    attributes = [_rated("Annahme", 80), _rated("Angriff", 40)]
    # Außen: Annahme 18, Angriff 15
    assert overall_rating(attributes, "Außen") == round((80 * 18 + 40 * 15) / 33)
    # Default: Annahme 10, Angriff 15
    assert overall_rating(attributes, None) == 56
    assert overall_rating([], "Außen") is None


def test_libero_ignores_zero_weighted_attributes() -> None:
    attributes = [_rated("Angriff", 10), _rated("Annahme", 70)]
    assert overall_rating(attributes, "Libero") == 70


def test_overall_level_rating_on_absolute_scale() -> None:
    attributes = [_rated("Annahme", 50, level=2), _rated("Abwehr", 50, level=2)]
    result = overall_level_rating(attributes)
    assert result == {"absolute_skill": 250, "level": 2, "league": "Bezirksliga", "level_rating": 50}


def test_pool_rating_blends_attendance() -> None:
    assert pool_rating(60, 0) == 60
    assert pool_rating(60, 80) == 66


def test_position_specific_sub_attributes() -> None:
    libero = {a["name"]: a for a in core_attributes_for("Libero")}
    assert "Dankeball" in libero["Positionsspezifisch"]["sub_attributes"]
    unknown = {a["name"]: a for a in core_attributes_for(None)}
    assert unknown["Positionsspezifisch"]["sub_attributes"] == []
