from datetime import datetime, timedelta

import pytest

from progress import (
    ProgressError,
    find_entry_index,
    milestones,
    player_progress,
    progress_stats,
    team_distribution,
    team_percentiles,
)
from rating_engine import CORE_ATTRIBUTE_NAMES, apply_rating, new_attribute

START = datetime(2024, 1, 1, 10, 0)


def _attribute(name: str, values, level: int = 0):
    attr = new_attribute("p1", name, level=level)
    for day, value in enumerate(values):
        apply_rating(attr, value, now=START + timedelta(days=day))
    return attr


def test_player_progress_filters_history_by_date() -> None:
    attr = _attribute("Angriff", [40, 50, 60])
    data = player_progress([attr], date_from=START + timedelta(days=1))
    entry = data["Angriff"]
    assert entry["current_value"] == 60
    assert entry["current_league"] == "Kreisliga"
    assert [e["value"] for e in entry["progression_history"]] == [50, 60]
    assert entry["total_entries"] == 2


def test_milestones_include_threshold_and_level_up() -> None:
    attr = _attribute("Aufschlag", [80, 95, 10])
    found = milestones([attr])
    kinds = [m["type"] for m in found]
    assert "levelup" in kinds
    crossing = [m for m in found if m.get("threshold") == 100]
    assert len(crossing) == 1
    assert crossing[0]["label"] == "Aufschlag: Bezirksklasse erreicht"


def test_progress_stats_detects_trend_and_plateau() -> None:
    rising = _attribute("Angriff", [40, 50, 60])
    flat = _attribute("Abwehr", [50, 51, 52, 52])
    stats = progress_stats([rising, flat])
    assert stats["attribute_stats"]["Angriff"]["trend"] == "improving"
    assert stats["attribute_stats"]["Abwehr"]["trend"] == "stable"
    assert stats["overall_stats"]["plateau_attributes"] == ["Abwehr"]
    assert stats["overall_stats"]["most_improved_attribute"]["name"] == "Angriff"


def test_find_entry_index_within_a_day() -> None:
    history = _attribute("Mental", [40, 45])["progression_history"]
    assert find_entry_index(history, START + timedelta(hours=20)) == 0
    assert find_entry_index(history, START + timedelta(days=5)) is None


def _team(size: int):
    team = {}
    for i in range(size):
        team[f"p{i}"] = {name: _attribute(name, [10 + i * 10]) for name in CORE_ATTRIBUTE_NAMES}
    return team


def test_team_comparison_needs_five_players() -> None:
    with pytest.raises(ProgressError):
        team_percentiles("p0", _team(4))
    with pytest.raises(ProgressError):
        team_distribution(_team(4))


def test_team_percentiles_rank_players() -> None:
    team = _team(5)
    best = team_percentiles("p4", team)
    worst = team_percentiles("p0", team)
    assert best["percentiles"]["angriff"] == 100
    assert worst["percentiles"]["angriff"] == 0
    assert "angriff" in best["strengths"]
    assert "angriff" in worst["improvements"]
    assert "grundtechnik" in best["percentiles"]
    with pytest.raises(LookupError):
        team_percentiles("unknown", team)


def test_team_distribution_bins() -> None:
    result = team_distribution(_team(5))
    angriff = result["distributions"]["angriff"]
    assert sum(angriff["bins"]) == 5
    assert angriff["min"] == 10
    assert angriff["max"] == 50
    assert result["level_distributions"]["angriff"]["level_counts"][0] == 5
