import os
from datetime import datetime, timedelta
from typing import Any, Dict

import mongomock
import pymongo
import pytest

os.environ["ENABLE_BACKGROUND_JOBS"] = "false"
os.environ["COACH_REGISTRATION_PASSWORD"] = "trainer-secret"
os.environ["DATABASE_NAME"] = "volleyball_test"

# database.py builds its client at import time
pymongo.MongoClient = mongomock.MongoClient

from auth import create_token, hash_password  # noqa: E402
from database import create_document, db, ensure_indexes, oid  # noqa: E402

TEST_PASSWORD = "geheim123"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    ensure_indexes()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from main import app

    with TestClient(app) as test_client:
        yield test_client


def make_user(name: str = "Anna", role: str = "Spieler", **fields) -> Dict[str, Any]:
    data = {
        "name": name,
        "email": fields.pop("email", f"{name.lower()}@example.com"),
        "password": _PASSWORD_HASH,
        "role": role,
        "teams": [],
        "position": None,
        "attendance": {},
    }
    data.update(fields)
    user_id = create_document("user", data)
    return db["user"].find_one({"_id": oid(user_id)})


def make_team(coach: Dict[str, Any], players=(), name: str = "H1") -> Dict[str, Any]:
    player_ids = [str(p["_id"]) for p in players]
    team_id = create_document("team", {
        "name": name,
        "type": "Adult",
        "coaches": [str(coach["_id"])],
        "players": player_ids,
    })
    for user_id in player_ids + [str(coach["_id"])]:
        db["user"].update_one({"_id": oid(user_id)}, {"$addToSet": {"teams": team_id}})
    return db["team"].find_one({"_id": oid(team_id)})


def make_event(team: Dict[str, Any], start: datetime, **fields) -> Dict[str, Any]:
    data = {
        "title": "Training",
        "type": "Training",
        "start_time": start,
        "end_time": start + timedelta(hours=2),
        "location": "Halle",
        "teams": [str(team["_id"])],
        "organizing_teams": [str(team["_id"])],
        "created_by": team["coaches"][0],
        "invited_players": list(team.get("players") or []),
        "attending_players": [],
        "declined_players": [],
        "unsure_players": [],
        "uninvited_players": [],
        "player_responses": [],
        "guest_players": [],
        "voting_deadline": None,
        "auto_decline_processed": False,
        "is_open_access": False,
        "notification_settings": {"enabled": True, "reminder_times": [{"hours": 24, "minutes": 0}], "custom_message": ""},
        "reminders_sent": [],
        "training_pool_auto_invite": {"enabled": False, "invites_sent": False},
        "quick_feedback": [],
        "attendance_auto_processed": False,
    }
    data.update(fields)
    event_id = create_document("event", data)
    return db["event"].find_one({"_id": oid(event_id)})


def auth_header(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_token(str(user['_id']))}"}
