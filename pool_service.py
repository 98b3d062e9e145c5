"""
Training pools: rating-banded groups of approved players that can be
auto-invited to under-subscribed events.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from database import db, oid, universal_attributes, utcnow
from rating_engine import pool_rating, round_half_up

logger = logging.getLogger(__name__)

# Pool access bands on the 1-99 pool rating scale
POOL_LEAGUE_BANDS: Dict[str, Dict[str, int]] = {
    "Kreisliga": {"min": 1, "max": 14, "order": 1},
    "Bezirksklasse": {"min": 15, "max": 27, "order": 2},
    "Bezirksliga": {"min": 28, "max": 40, "order": 3},
    "Landesliga": {"min": 41, "max": 53, "order": 4},
    "Bayernliga": {"min": 54, "max": 66, "order": 5},
    "Regionalliga": {"min": 67, "max": 79, "order": 6},
    "Dritte Liga": {"min": 80, "max": 92, "order": 7},
    "Bundesliga": {"min": 93, "max": 99, "order": 8},
}

DEFAULT_SKILL_RATING = 50
DEFAULT_TEAM_MIN_ATTENDANCE = 75
DEFAULT_LEAGUE_MIN_ATTENDANCE = 0


class PoolError(ValueError):
    pass


def league_bands() -> List[Dict[str, Any]]:
    return [
        dict(name=name, **band)
        for name, band in sorted(POOL_LEAGUE_BANDS.items(), key=lambda item: item[1]["order"])
    ]


def league_for_rating(rating: int) -> str:
    for name, band in POOL_LEAGUE_BANDS.items():
        if band["min"] <= rating <= band["max"]:
            return name
    return "Kreisliga"


def build_pool(data: Mapping[str, Any], created_by: str) -> Dict[str, Any]:
    """Validated pool document from a create request."""
    pool_type = data.get("type")
    if pool_type == "league":
        band = POOL_LEAGUE_BANDS.get(data.get("league_level") or "")
        if band is None:
            raise PoolError("Ungültiges Liga-Level")
        min_rating = data.get("min_rating") or band["min"]
        max_rating = data.get("max_rating") or band["max"]
        default_attendance = DEFAULT_LEAGUE_MIN_ATTENDANCE
        team_id = None
    elif pool_type == "team":
        if not data.get("team_id"):
            raise PoolError("Team-Pools benötigen ein Team")
        min_rating = data.get("min_rating") or 1
        max_rating = data.get("max_rating") or 99
        default_attendance = DEFAULT_TEAM_MIN_ATTENDANCE
        team_id = data["team_id"]
    else:
        raise PoolError("Ungültiger Pool-Typ")

    if min_rating > max_rating:
        raise PoolError("Minimale Bewertung darf nicht größer als die maximale sein")

    attendance = data.get("min_attendance_percentage")
    return {
        "name": data.get("name"),
        "type": pool_type,
        "team_id": team_id,
        "league_level": data.get("league_level") if pool_type == "league" else None,
        "min_rating": min_rating,
        "max_rating": max_rating,
        "min_attendance_percentage": default_attendance if attendance is None else attendance,
        "pending_approval": [],
        "approved_players": [],
        "auto_invite_enabled": bool(data.get("auto_invite_enabled", False)),
        "auto_invite_rules": {
            "min_participants": 6,
            "trigger_type": "deadline",
            "hours_before_event": 24,
        },
        "stats": {"total_invites_sent": 0, "total_accepted": 0, "last_invite_date": None},
        "created_by": created_by,
        "active": True,
    }


# -----------------------------
# Membership
# -----------------------------
def _index_of(players: List[Mapping[str, Any]], player_id: str) -> int:
    for i, p in enumerate(players):
        if p.get("player_id") == player_id:
            return i
    return -1


def is_approved(pool: Mapping[str, Any], player_id: str) -> bool:
    return _index_of(pool.get("approved_players") or [], player_id) >= 0


def is_pending(pool: Mapping[str, Any], player_id: str) -> bool:
    return _index_of(pool.get("pending_approval") or [], player_id) >= 0


def is_player_eligible(pool: Mapping[str, Any], player_id: str, rating: int, attendance: float) -> bool:
    if rating < pool["min_rating"] or rating > pool["max_rating"]:
        return False
    if attendance < pool.get("min_attendance_percentage", 0):
        return False
    return not is_approved(pool, player_id)


def player_standing(player_id: str) -> Dict[str, Any]:
    """Skill, attendance and combined pool rating of a player."""
    values = [a["numeric_value"] for a in universal_attributes(player_id) if a.get("numeric_value") is not None]
    skill = round_half_up(sum(values) / len(values)) if values else DEFAULT_SKILL_RATING
    user = db["user"].find_one({"_id": oid(player_id)}, {"attendance": 1}) or {}
    attendance = (user.get("attendance") or {}).get("attendance_percentage_3_months") or 0
    return {
        "skill_rating": skill,
        "attendance_percentage": attendance,
        "pool_rating": pool_rating(skill, attendance),
    }


def request_access(pool: Dict[str, Any], player_id: str, standing: Mapping[str, Any],
                   now: Optional[datetime] = None) -> None:
    rating = standing["pool_rating"]
    attendance = standing["attendance_percentage"]
    if not is_player_eligible(pool, player_id, rating, attendance):
        if is_approved(pool, player_id):
            raise PoolError("Anfrage bereits vorhanden oder Spieler bereits im Pool")
        raise PoolError("Sie erfüllen nicht die Anforderungen für diesen Pool")
    if is_pending(pool, player_id):
        raise PoolError("Anfrage bereits vorhanden oder Spieler bereits im Pool")
    pool.setdefault("pending_approval", []).append({
        "player_id": player_id,
        "current_rating": rating,
        "attendance_percentage": attendance,
        "request_date": now or utcnow(),
    })


def approve_player(pool: Dict[str, Any], player_id: str, coach_id: str, now: Optional[datetime] = None) -> None:
    pending = pool.get("pending_approval") or []
    index = _index_of(pending, player_id)
    if index < 0:
        raise PoolError("Spieler nicht in Warteliste gefunden")
    entry = pending.pop(index)
    pool.setdefault("approved_players", []).append({
        "player_id": player_id,
        "approved_by": coach_id,
        "approved_date": now or utcnow(),
        "current_rating": entry.get("current_rating"),
        "attendance_percentage": entry.get("attendance_percentage", 0),
    })


def reject_player(pool: Dict[str, Any], player_id: str) -> None:
    pool["pending_approval"] = [p for p in pool.get("pending_approval") or [] if p.get("player_id") != player_id]


def add_player(pool: Dict[str, Any], player_id: str, coach_id: str, standing: Mapping[str, Any],
               now: Optional[datetime] = None) -> None:
    """Approve a player directly, bypassing the request queue."""
    if is_approved(pool, player_id):
        raise PoolError("Spieler ist bereits im Pool")
    reject_player(pool, player_id)
    pool.setdefault("approved_players", []).append({
        "player_id": player_id,
        "approved_by": coach_id,
        "approved_date": now or utcnow(),
        "current_rating": standing["pool_rating"],
        "attendance_percentage": standing["attendance_percentage"],
    })


def remove_player(pool: Dict[str, Any], player_id: str) -> None:
    approved = pool.get("approved_players") or []
    index = _index_of(approved, player_id)
    if index < 0:
        raise PoolError("Spieler nicht im Pool gefunden")
    approved.pop(index)


def save_pool(pool: Dict[str, Any]) -> None:
    fields = {k: v for k, v in pool.items() if k != "_id"}
    fields["updated_at"] = utcnow()
    db["training_pool"].update_one({"_id": pool["_id"]}, {"$set": fields})


# -----------------------------
# Queries
# -----------------------------
def pools_for_user(user: Mapping[str, Any]) -> List[Dict[str, Any]]:
    user_id = str(user["_id"])
    if user.get("role") == "Trainer":
        team_ids = [str(t["_id"]) for t in db["team"].find({"coaches": user_id}, {"_id": 1})]
        flt = {"$or": [{"type": "team", "team_id": {"$in": team_ids}}, {"type": "league"}], "active": True}
    else:
        team_ids = [str(t["_id"]) for t in db["team"].find({"players": user_id}, {"_id": 1})]
        flt = {
            "$or": [
                {"type": "team", "team_id": {"$in": team_ids}},
                {"type": "league"},
                {"approved_players.player_id": user_id},
                {"pending_approval.player_id": user_id},
            ],
            "active": True,
        }
    pools = list(db["training_pool"].find(flt))
    pools.sort(key=lambda p: (p.get("type") != "team", p.get("name") or ""))
    return pools


def involved_player_ids(event: Mapping[str, Any]) -> set:
    ids = set(event.get("invited_players") or [])
    ids.update(event.get("attending_players") or [])
    ids.update(event.get("declined_players") or [])
    ids.update(event.get("unsure_players") or [])
    ids.update(g.get("player_id") for g in event.get("guest_players") or [])
    return ids


def available_pools_for_event(event: Mapping[str, Any]) -> List[Dict[str, Any]]:
    teams = list(event.get("teams") or [])
    pools = db["training_pool"].find({
        "$or": [{"type": "team", "team_id": {"$in": teams}}, {"type": "league"}],
        "active": True,
    })
    taken = involved_player_ids(event)
    result = []
    for pool in pools:
        approved = pool.get("approved_players") or []
        if not approved:
            continue
        available = [p for p in approved if p.get("player_id") not in taken]
        result.append({
            "id": str(pool["_id"]),
            "name": pool.get("name"),
            "type": pool.get("type"),
            "league_level": pool.get("league_level"),
            "total_players_count": len(approved),
            "available_players_count": len(available),
            "available_players": available,
        })
    return result
