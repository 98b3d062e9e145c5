from datetime import datetime

import pytest

from conftest import make_event, make_team, make_user
from database import create_document, db
from pool_service import (
    PoolError,
    add_player,
    approve_player,
    available_pools_for_event,
    build_pool,
    is_approved,
    is_pending,
    league_for_rating,
    player_standing,
    reject_player,
    remove_player,
    request_access,
)


def test_league_pool_defaults_to_band() -> None:
    pool = build_pool({"name": "Landesliga-Pool", "type": "league", "league_level": "Landesliga"}, "c1")
    assert (pool["min_rating"], pool["max_rating"]) == (41, 53)
    assert pool["min_attendance_percentage"] == 0
    assert pool["team_id"] is None


def test_team_pool_requires_team() -> None:
    with pytest.raises(PoolError):
        build_pool({"name": "Team-Pool", "type": "team"}, "c1")
    pool = build_pool({"name": "Team-Pool", "type": "team", "team_id": "t1"}, "c1")
    assert (pool["min_rating"], pool["max_rating"]) == (1, 99)
    assert pool["min_attendance_percentage"] == 75


def test_invalid_pool_configuration() -> None:
    with pytest.raises(PoolError):
        build_pool({"name": "X", "type": "league", "league_level": "Weltliga"}, "c1")
    with pytest.raises(PoolError):
        build_pool({"name": "X", "type": "team", "team_id": "t1", "min_rating": 60, "max_rating": 40}, "c1")
    with pytest.raises(PoolError):
        build_pool({"name": "X", "type": "club"}, "c1")


def test_league_for_rating() -> None:
    assert league_for_rating(14) == "Kreisliga"
    assert league_for_rating(15) == "Bezirksklasse"
    assert league_for_rating(99) == "Bundesliga"


def _league_pool():
    return build_pool({"name": "Pool", "type": "league", "league_level": "Bezirksliga"}, "c1")


def test_request_approve_and_remove() -> None:
    pool = _league_pool()
    standing = {"pool_rating": 30, "attendance_percentage": 0}
    request_access(pool, "p1", standing)
    assert is_pending(pool, "p1")
    with pytest.raises(PoolError):
        request_access(pool, "p1", standing)
    approve_player(pool, "p1", "c1")
    assert is_approved(pool, "p1")
    assert not is_pending(pool, "p1")
    assert pool["approved_players"][0]["current_rating"] == 30
    with pytest.raises(PoolError):
        request_access(pool, "p1", standing)
    remove_player(pool, "p1")
    assert not is_approved(pool, "p1")
    with pytest.raises(PoolError):
        remove_player(pool, "p1")


def test_request_outside_band_is_rejected() -> None:
    pool = _league_pool()
    with pytest.raises(PoolError):
        request_access(pool, "p1", {"pool_rating": 70, "attendance_percentage": 0})


def test_reject_and_direct_add() -> None:
    pool = _league_pool()
    request_access(pool, "p1", {"pool_rating": 30, "attendance_percentage": 0})
    reject_player(pool, "p1")
    assert pool["pending_approval"] == []
    with pytest.raises(PoolError):
        approve_player(pool, "p1", "c1")
    add_player(pool, "p2", "c1", {"pool_rating": 80, "attendance_percentage": 10})
    assert is_approved(pool, "p2")
    with pytest.raises(PoolError):
        add_player(pool, "p2", "c1", {"pool_rating": 80, "attendance_percentage": 10})


def test_player_standing_combines_skill_and_attendance() -> None:
    player = make_user("Anna", attendance={"attendance_percentage_3_months": 80})
    player_id = str(player["_id"])
    for name, value in (("Angriff", 50), ("Abwehr", 70), ("Mental", None)):
        create_document("player_attribute", {
            "player_id": player_id, "attribute_name": name, "numeric_value": value, "team_id": None,
        })
    standing = player_standing(player_id)
    assert standing == {"skill_rating": 60, "attendance_percentage": 80, "pool_rating": 66}


def test_player_standing_defaults() -> None:
    player = make_user("Neu")
    assert player_standing(str(player["_id"])) == {"skill_rating": 50, "attendance_percentage": 0, "pool_rating": 50}


def test_available_pools_exclude_involved_players() -> None:
    coach = make_user("Trainer", role="Trainer")
    member = make_user("Anna")
    team = make_team(coach, [member])
    pool = _league_pool()
    pool["approved_players"] = [
        {"player_id": str(member["_id"]), "current_rating": 30},
        {"player_id": "outside", "current_rating": 35},
    ]
    create_document("training_pool", pool)
    create_document("training_pool", _league_pool())
    event = make_event(team, datetime(2024, 6, 1, 18))
    result = available_pools_for_event(event)
    assert len(result) == 1
    assert result[0]["total_players_count"] == 2
    assert result[0]["available_players_count"] == 1
    assert result[0]["available_players"][0]["player_id"] == "outside"
    assert db["training_pool"].count_documents({}) == 2
