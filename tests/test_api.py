from datetime import datetime

from conftest import TEST_PASSWORD, auth_header, make_event, make_team, make_user
from database import db, oid


def test_health_and_root(client) -> None:
    assert client.get("/").json() == {"message": "Volleyball Team Manager API running"}
    health = client.get("/api/health").json()
    assert health["status"] == "OK"
    assert "timestamp" in health


def test_requests_without_token_are_rejected(client) -> None:
    resp = client.get("/api/users/profile")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Nicht autorisiert, kein Token"
    resp = client.get("/api/users/profile", headers={"Authorization": "Bearer kaputt"})
    assert resp.status_code == 401


def test_malformed_ids_return_400(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    resp = client.get("/api/teams/keine-id", headers=auth_header(coach))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Ungültiges ID-Format"


# -----------------------------
# Users
# -----------------------------
def test_register_and_login(client) -> None:
    resp = client.post("/api/users/register", json={
        "name": "Anna", "email": "Anna@example.com", "password": TEST_PASSWORD,
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["email"] == "anna@example.com"
    assert body["role"] == "Spieler"
    assert "password" not in body
    assert body["token"]

    duplicate = client.post("/api/users/register", json={
        "name": "Anna", "email": "anna@example.com", "password": TEST_PASSWORD,
    })
    assert duplicate.status_code == 400

    login = client.post("/api/users/login", json={"email": "anna@example.com", "password": TEST_PASSWORD})
    assert login.status_code == 200
    profile = client.get("/api/users/profile", headers={"Authorization": f"Bearer {login.json()['token']}"})
    assert profile.json()["name"] == "Anna"

    wrong = client.post("/api/users/login", json={"email": "anna@example.com", "password": "falsch123"})
    assert wrong.status_code == 401


def test_coach_registration_needs_password(client) -> None:
    payload = {"name": "Tom", "email": "tom@example.com", "password": TEST_PASSWORD, "role": "Trainer"}
    assert client.post("/api/users/register", json=payload).status_code == 403
    payload["coach_password"] = "trainer-secret"
    assert client.post("/api/users/register", json=payload).status_code == 201


def test_player_directory_is_coach_only(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    make_user("Jule", role="Jugendspieler")
    assert client.get("/api/users", headers=auth_header(player)).status_code == 403
    youth = client.get("/api/users/youth", headers=auth_header(coach)).json()
    assert [u["name"] for u in youth] == ["Jule"]


# -----------------------------
# Teams & invites
# -----------------------------
def test_team_invite_flow(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    headers = auth_header(coach)
    team = client.post("/api/teams", json={"name": "H2", "type": "Adult"}, headers=headers)
    assert team.status_code == 201
    team_id = team.json()["id"]

    invite = client.post("/api/team-invites", json={"team_id": team_id, "max_usage": 1}, headers=headers).json()
    assert len(invite["invite_code"]) == 32
    assert invite["invite_url"].endswith(invite["invite_code"])
    assert client.get(f"/api/team-invites/validate/{invite['invite_code']}").json()["valid"] is True

    resp = client.post("/api/users/register", json={
        "name": "Ben", "email": "ben@example.com", "password": TEST_PASSWORD, "invite_code": invite["invite_code"],
    })
    assert resp.status_code == 201
    assert resp.json()["teams"] == [team_id]
    assert resp.json()["id"] in db["team"].find_one({"_id": oid(team_id)})["players"]

    used_up = client.post("/api/users/register", json={
        "name": "Cara", "email": "cara@example.com", "password": TEST_PASSWORD, "invite_code": invite["invite_code"],
    })
    assert used_up.status_code == 400
    assert db["user"].count_documents({"email": "cara@example.com"}) == 0


def test_add_and_remove_team_player(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    team = make_team(coach)
    team_id = str(team["_id"])
    resp = client.post(f"/api/teams/{team_id}/players", json={"user_id": str(player["_id"])}, headers=auth_header(coach))
    assert resp.status_code == 200
    assert db["user"].find_one({"_id": player["_id"]})["teams"] == [team_id]
    resp = client.delete(f"/api/teams/{team_id}/players/{player['_id']}", headers=auth_header(coach))
    assert resp.json()["players"] == []
    assert db["user"].find_one({"_id": player["_id"]})["teams"] == []


# -----------------------------
# Events
# -----------------------------
def _create_series(client, coach, team):
    return client.post("/api/events", headers=auth_header(coach), json={
        "title": "Training",
        "type": "Training",
        "start_time": "2030-05-01T18:00:00",
        "end_time": "2030-05-01T20:00:00",
        "location": "Halle",
        "teams": [str(team["_id"])],
        "is_recurring": True,
        "recurring_pattern": "weekly",
        "recurring_end_date": "2030-05-15T23:00:00",
    })


def test_create_recurring_event_and_respond(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    outsider = make_user("Bert")
    team = make_team(coach, [player])

    resp = _create_series(client, coach, team)
    assert resp.status_code == 201
    event = resp.json()
    assert event["created_events"] == 3
    assert event["invited_players"] == [str(player["_id"])]
    assert db["notification_queue"].count_documents({}) == 6

    listed = client.get("/api/events", headers=auth_header(player)).json()
    assert len(listed) == 3
    assert client.get("/api/events", headers=auth_header(outsider)).json() == []
    by_day = client.get("/api/events", params={"date": "2030-05-08"}, headers=auth_header(player)).json()
    assert len(by_day) == 1

    accepted = client.post(f"/api/events/{event['id']}/accept", headers=auth_header(player))
    assert accepted.json()["attending_players"] == [str(player["_id"])]
    declined = client.post(f"/api/events/{event['id']}/decline", json={"reason": "Krank"}, headers=auth_header(player))
    assert declined.json()["attending_players"] == []
    assert declined.json()["player_responses"][0]["reason"] == "Krank"

    forbidden = client.post(f"/api/events/{event['id']}/accept", headers=auth_header(outsider))
    assert forbidden.status_code == 403
    assert client.get(f"/api/events/{event['id']}", headers=auth_header(outsider)).status_code == 403


def test_update_and_delete_series(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    team = make_team(coach, [make_user("Anna")])
    event = _create_series(client, coach, team).json()

    resp = client.put(f"/api/events/{event['id']}", headers=auth_header(coach),
                      json={"location": "Sporthalle Nord", "update_recurring": True})
    assert resp.json()["updated_events"] == 3
    assert db["event"].count_documents({"location": "Sporthalle Nord"}) == 3

    resp = client.delete(f"/api/events/{event['id']}", params={"delete_recurring": True}, headers=auth_header(coach))
    assert resp.json()["deleted_count"] == 3
    assert db["notification_queue"].count_documents({}) == 0


def test_invalid_event_times_are_rejected(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    team = make_team(coach)
    resp = client.post("/api/events", headers=auth_header(coach), json={
        "title": "Spiel",
        "type": "Game",
        "start_time": "2030-05-01T18:00:00",
        "end_time": "2030-05-01T17:00:00",
        "location": "Halle",
        "teams": [str(team["_id"])],
    })
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Endzeit muss nach der Startzeit liegen"


def test_coaches_cannot_respond_to_events(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    team = make_team(coach, [make_user("Anna")])
    event = make_event(team, datetime(2030, 5, 1, 18, 0), is_open_access=True)

    resp = client.post(f"/api/events/{event['_id']}/accept", headers=auth_header(coach))
    assert resp.status_code == 403
    assert db["event"].find_one({"_id": event["_id"]})["attending_players"] == []


def test_processed_attendance_rejects_feedback_without_writing(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    team = make_team(coach, [make_user("Anna")])
    event = make_event(team, datetime(2030, 5, 1, 18, 0), attendance_auto_processed=True)

    resp = client.post(f"/api/events/{event['_id']}/quick-feedback",
                       json={"attended_players": []}, headers=auth_header(coach))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Anwesenheit wurde bereits erfasst"
    assert db["event"].find_one({"_id": event["_id"]})["quick_feedback"] == []


# -----------------------------
# Ratings
# -----------------------------
def test_saving_ratings_promotes_and_awards(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    player_id = str(player["_id"])
    resp = client.post(f"/api/attributes/universal/{player_id}", headers=auth_header(coach), json={
        "ratings": [
            {"attribute_name": "Angriff", "numeric_value": 92},
            {"attribute_name": "Aufschlag", "sub_attributes": {"Kraft": 60, "Genauigkeit": 70}},
        ],
    })
    assert resp.status_code == 200
    body = resp.json()
    angriff, aufschlag = body["attributes"]
    assert (angriff["level"], angriff["numeric_value"]) == (1, 1)
    assert aufschlag["numeric_value"] == 65
    assert body["promotions"] == [{"attribute_name": "Angriff", "old_level": 0, "new_level": 1}]
    assert "first_steps" in [a["badge_id"] for a in body["new_achievements"]]

    own = client.get(f"/api/attributes/universal/{player_id}", headers=auth_header(player))
    assert [a["attribute_name"] for a in own.json()] == ["Angriff", "Aufschlag"]
    other = make_user("Bert")
    assert client.get(f"/api/attributes/universal/{player_id}", headers=auth_header(other)).status_code == 403


def test_invalid_rating_is_rejected(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    resp = client.post(f"/api/attributes/universal/{player['_id']}", headers=auth_header(coach), json={
        "ratings": [{"attribute_name": "Angriff", "numeric_value": 150}],
    })
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Bewertung muss zwischen 1 und 99 liegen"


def test_self_assessment_comparison(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    player_id = str(player["_id"])
    client.post(f"/api/attributes/universal/{player_id}", headers=auth_header(coach),
                json={"ratings": [{"attribute_name": "Mental", "numeric_value": 60}]})
    resp = client.post("/api/attributes/self-assessment", headers=auth_header(player),
                       json={"ratings": {"Mental": 75}})
    assert resp.status_code == 200
    comparison = client.get(f"/api/attributes/self-assessment/{player_id}/comparison",
                            headers=auth_header(player)).json()
    mental = next(c for c in comparison if c["attribute_name"] == "Mental")
    assert (mental["self_rating"], mental["coach_rating"], mental["difference"]) == (75, 60, 15)


def test_calculate_overall_preview(client) -> None:
    player = make_user("Anna")
    resp = client.post("/api/attributes/calculate-overall", headers=auth_header(player),
                       json={"ratings": {"Annahme": 80, "Angriff": 40}, "position": "Außen"})
    assert resp.json()["overall_rating"] == 62
    assert resp.json()["category"]["category"] == "Gut"


# -----------------------------
# Pools & notifications
# -----------------------------
def test_pool_request_and_approval(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    pool = client.post("/api/training-pools", headers=auth_header(coach),
                       json={"name": "Landesliga-Pool", "type": "league", "league_level": "Landesliga"})
    assert pool.status_code == 201
    pool_id = pool.json()["id"]

    resp = client.post(f"/api/training-pools/{pool_id}/request-access", headers=auth_header(player))
    assert resp.status_code == 200
    assert resp.json()["standing"]["pool_rating"] == 50

    resp = client.post(f"/api/training-pools/{pool_id}/approve", headers=auth_header(coach),
                       json={"player_id": str(player["_id"])})
    assert [p["player_id"] for p in resp.json()["approved_players"]] == [str(player["_id"])]

    listed = client.get("/api/training-pools", headers=auth_header(player)).json()
    assert listed[0]["is_member"] is True


def test_pool_rejects_players_outside_band(client) -> None:
    coach = make_user("Trainer", role="Trainer")
    player = make_user("Anna")
    pool_id = client.post("/api/training-pools", headers=auth_header(coach),
                          json={"name": "Bezirksliga-Pool", "type": "league", "league_level": "Bezirksliga"}).json()["id"]
    resp = client.post(f"/api/training-pools/{pool_id}/request-access", headers=auth_header(player))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Sie erfüllen nicht die Anforderungen für diesen Pool"


def test_notification_inbox(client) -> None:
    player = make_user("Anna")
    headers = auth_header(player)
    assert client.post("/api/notifications/test", headers=headers).json()["sent"] == 1
    inbox = client.get("/api/notifications", headers=headers).json()
    assert len(inbox) == 1
    assert client.post(f"/api/notifications/{inbox[0]['id']}/read", headers=headers).status_code == 200
    assert client.get("/api/notifications", params={"unread_only": True}, headers=headers).json() == []


def test_notification_preferences_are_honoured(client) -> None:
    player = make_user("Anna")
    headers = auth_header(player)
    client.post("/api/notifications/subscribe", headers=headers, json={"endpoint": "https://push.example/abc"})
    prefs = client.put("/api/notifications/preferences", headers=headers, json={"event_reminders": False}).json()
    assert prefs["event_reminders"] is False
    assert prefs["guest_invitations"] is True
    status = client.get("/api/notifications/status", headers=headers).json()
    assert status["subscribed"] is True


# -----------------------------
# Training templates
# -----------------------------
def test_template_clone_rate_and_delete(client) -> None:
    owner = make_user("Trainer", role="Trainer")
    other = make_user("Coach", role="Trainer")
    created = client.post("/api/training-templates", headers=auth_header(owner), json={
        "name": "Aufschlagblock",
        "description": "Vier Wochen Aufschlagtraining",
        "category": "Technik",
        "visibility": "public",
        "target_level": "Fortgeschritten",
    })
    assert created.status_code == 201
    template_id = created.json()["id"]
    assert created.json()["version"] == 1

    forbidden = client.put(f"/api/training-templates/{template_id}", headers=auth_header(other), json={"name": "Neu"})
    assert forbidden.status_code == 403

    clone = client.post(f"/api/training-templates/{template_id}/clone", headers=auth_header(other), json={}).json()
    assert clone["name"] == "Aufschlagblock (Kopie)"
    assert clone["visibility"] == "private"
    assert clone["original_template"] == template_id
    source = client.get(f"/api/training-templates/{template_id}", headers=auth_header(owner)).json()
    assert source["usage"]["count"] == 1

    client.post(f"/api/training-templates/{template_id}/rate", headers=auth_header(other), json={"rating": 4})
    rated = client.post(f"/api/training-templates/{template_id}/rate", headers=auth_header(other), json={"rating": 2})
    assert rated.json() == {"rating": 3.0, "rating_count": 2}

    assert client.delete(f"/api/training-templates/{template_id}", headers=auth_header(owner)).status_code == 200
    assert client.get(f"/api/training-templates/{template_id}", headers=auth_header(owner)).status_code == 404
    assert client.get("/api/training-templates", headers=auth_header(owner)).json() == []
