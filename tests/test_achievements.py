from datetime import datetime, timedelta

from achievement_service import (
    BADGE_DEFINITIONS,
    achievement_stats,
    available_badges,
    check_and_award,
    next_achievable,
    reset,
    team_leaderboard,
)
from conftest import make_team, make_user
from database import create_document, db
from rating_engine import CORE_ATTRIBUTE_NAMES, apply_rating, new_attribute

START = datetime(2024, 2, 1, 9, 0)


def _rate(player_id: str, name: str, *values) -> None:
    attr = new_attribute(player_id, name)
    for day, value in enumerate(values):
        apply_rating(attr, value, now=START + timedelta(days=day))
    create_document("player_attribute", attr)


def _badge_ids(docs):
    return sorted(d["badge_id"] for d in docs)


def test_catalogue_size() -> None:
    assert len(BADGE_DEFINITIONS) == 29
    assert len({b["badge_id"] for b in BADGE_DEFINITIONS}) == 29


def test_all_attribute_badges_and_idempotency() -> None:
    player_id = str(make_user("Anna")["_id"])
    for name in CORE_ATTRIBUTE_NAMES:
        _rate(player_id, name, 55)
    awarded = check_and_award(player_id)
    assert _badge_ids(awarded) == ["first_steps", "solid_foundation", "well_rounded"]
    assert check_and_award(player_id) == []
    assert db["achievement"].count_documents({"player_id": player_id}) == 3


def test_unrated_core_attributes_block_all_badges() -> None:
    player_id = str(make_user("Anna")["_id"])
    _rate(player_id, "Angriff", 80)
    assert _badge_ids(check_and_award(player_id)) == ["attack_power", "first_steps"]


def test_improvement_badges_compare_with_first_values() -> None:
    player_id = str(make_user("Anna")["_id"])
    _rate(player_id, "Angriff", 40, 60)
    assert _badge_ids(check_and_award(player_id)) == ["breakthrough", "first_steps", "rising_star"]


def test_position_badges_need_matching_position() -> None:
    player_id = str(make_user("Anna", position="Libero")["_id"])
    _rate(player_id, "Positionsspezifisch", 65)
    ids = _badge_ids(check_and_award(player_id, "Libero"))
    assert "libero_starter" in ids
    assert "setter_starter" not in ids


def test_next_achievable_sorted_by_progress() -> None:
    player_id = str(make_user("Anna")["_id"])
    _rate(player_id, "Aufschlag", 60)
    check_and_award(player_id)
    upcoming = next_achievable(player_id)
    assert [b["badge_id"] for b in upcoming] == ["serve_specialist", "serve_master"]
    assert upcoming[0]["progress_text"] == "Aufschlag: 60/70"


def test_stats_available_and_reset() -> None:
    player_id = str(make_user("Anna")["_id"])
    _rate(player_id, "Angriff", 80)
    check_and_award(player_id)
    stats = achievement_stats(player_id)
    assert stats["total"] == 2
    assert stats["by_rarity"]["Bronze"] == 2
    assert stats["completion_percentage"] == 7
    assert len(available_badges(player_id, limit=50)) == 27
    assert reset(player_id) == 2
    assert achievement_stats(player_id)["total"] == 0


def test_team_leaderboard_orders_by_total() -> None:
    coach = make_user("Trainer", role="Trainer")
    strong = make_user("Stark")
    weak = make_user("Schwach")
    team = make_team(coach, [strong, weak])
    _rate(str(strong["_id"]), "Angriff", 80)
    check_and_award(str(strong["_id"]))
    board = team_leaderboard(str(team["_id"]))
    players = [e["player_id"] for e in board if e["player_id"] != str(coach["_id"])]
    assert players == [str(strong["_id"]), str(weak["_id"])]
    assert board[0]["total_achievements"] == 2
