import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import get_current_user, require_coach, require_player, user_id
from database import create_document, db, get_or_404, oid, serialize, utcnow
from jobs import process_training_pool_auto_invite
from pool_service import (
    PoolError,
    add_player,
    approve_player,
    available_pools_for_event,
    build_pool,
    is_approved,
    is_pending,
    league_bands,
    player_standing,
    pools_for_user,
    reject_player,
    remove_player,
    request_access,
    save_pool,
)
from schemas import TrainingPool

logger = logging.getLogger(__name__)

router = APIRouter()


class PoolIn(BaseModel):
    name: str = Field(..., min_length=1)
    type: Literal["team", "league"]
    team_id: Optional[str] = None
    league_level: Optional[str] = None
    min_rating: Optional[int] = Field(default=None, ge=1, le=99)
    max_rating: Optional[int] = Field(default=None, ge=1, le=99)
    min_attendance_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    auto_invite_enabled: bool = False


class PoolUpdateIn(BaseModel):
    name: Optional[str] = None
    min_rating: Optional[int] = Field(default=None, ge=1, le=99)
    max_rating: Optional[int] = Field(default=None, ge=1, le=99)
    min_attendance_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    auto_invite_enabled: Optional[bool] = None
    auto_invite_rules: Optional[Dict[str, Any]] = None
    active: Optional[bool] = None


class PlayerIn(BaseModel):
    player_id: str


def _pool_or_404(pool_id: str) -> Dict[str, Any]:
    return get_or_404("training_pool", pool_id, "Pool nicht gefunden")


def _pool_out(pool: Dict[str, Any], viewer: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    out = serialize(pool)
    if viewer is not None and viewer.get("role") != "Trainer":
        me = user_id(viewer)
        out["is_member"] = is_approved(pool, me)
        out["has_pending_request"] = is_pending(pool, me)
        out.pop("pending_approval", None)
    return out


@router.get("/config/league-levels")
def get_league_levels():
    return league_bands()


@router.get("")
def list_pools(user=Depends(get_current_user)):
    return [_pool_out(p, user) for p in pools_for_user(user)]


@router.get("/event/{event_id}/available")
def event_available_pools(event_id: str, coach=Depends(require_coach)):
    event = get_or_404("event", event_id, "Event nicht gefunden")
    return available_pools_for_event(event)


@router.post("/event/{event_id}/trigger-auto-invite")
def trigger_event_auto_invite(event_id: str, coach=Depends(require_coach)):
    get_or_404("event", event_id, "Event nicht gefunden")
    return process_training_pool_auto_invite(event_id)


@router.post("/update-attendance")
def refresh_member_standings(coach=Depends(require_coach)):
    """Refresh rating and attendance of every approved pool member."""
    updated = 0
    for pool in db["training_pool"].find({"active": True}):
        for member in pool.get("approved_players") or []:
            standing = player_standing(member["player_id"])
            member["current_rating"] = standing["pool_rating"]
            member["attendance_percentage"] = standing["attendance_percentage"]
            updated += 1
        save_pool(pool)
    logger.info("Refreshed %d pool member standing(s)", updated)
    return {"message": "Pool-Daten aktualisiert", "updated_players": updated}


@router.get("/{pool_id}")
def get_pool(pool_id: str, user=Depends(get_current_user)):
    return _pool_out(_pool_or_404(pool_id), user)


@router.post("", status_code=201)
def create_pool(payload: PoolIn, coach=Depends(require_coach)):
    if payload.type == "team" and payload.team_id:
        get_or_404("team", payload.team_id, "Team nicht gefunden")
    pool = build_pool(payload.model_dump(), user_id(coach))
    pool_id = create_document("training_pool", TrainingPool(**pool))
    logger.info("Training pool %s created", payload.name)
    return _pool_out(db["training_pool"].find_one({"_id": oid(pool_id)}))


@router.put("/{pool_id}")
def update_pool(pool_id: str, payload: PoolUpdateIn, coach=Depends(require_coach)):
    pool = _pool_or_404(pool_id)
    changes = payload.model_dump(exclude_unset=True)
    pool.update(changes)
    if pool["min_rating"] > pool["max_rating"]:
        raise PoolError("Minimale Bewertung darf nicht größer als die maximale sein")
    save_pool(pool)
    return _pool_out(pool)


@router.delete("/{pool_id}")
def delete_pool(pool_id: str, coach=Depends(require_coach)):
    pool = _pool_or_404(pool_id)
    db["training_pool"].delete_one({"_id": pool["_id"]})
    return {"message": "Pool gelöscht"}


# -----------------------------
# Membership
# -----------------------------
@router.post("/{pool_id}/request-access")
def request_pool_access(pool_id: str, player=Depends(require_player)):
    pool = _pool_or_404(pool_id)
    standing = player_standing(user_id(player))
    request_access(pool, user_id(player), standing)
    save_pool(pool)
    return {"message": "Anfrage gesendet", "standing": standing}


@router.post("/{pool_id}/approve")
def approve_pool_player(pool_id: str, payload: PlayerIn, coach=Depends(require_coach)):
    pool = _pool_or_404(pool_id)
    approve_player(pool, payload.player_id, user_id(coach), utcnow())
    save_pool(pool)
    return _pool_out(pool)


@router.post("/{pool_id}/reject")
def reject_pool_player(pool_id: str, payload: PlayerIn, coach=Depends(require_coach)):
    pool = _pool_or_404(pool_id)
    if not is_pending(pool, payload.player_id):
        raise HTTPException(status_code=404, detail="Spieler nicht in Warteliste gefunden")
    reject_player(pool, payload.player_id)
    save_pool(pool)
    return _pool_out(pool)


@router.post("/{pool_id}/players")
def add_pool_player(pool_id: str, payload: PlayerIn, coach=Depends(require_coach)):
    pool = _pool_or_404(pool_id)
    get_or_404("user", payload.player_id, "Spieler nicht gefunden")
    add_player(pool, payload.player_id, user_id(coach), player_standing(payload.player_id))
    save_pool(pool)
    return _pool_out(pool)


@router.delete("/{pool_id}/players/{player_id}")
def remove_pool_player(pool_id: str, player_id: str, coach=Depends(require_coach)):
    pool = _pool_or_404(pool_id)
    remove_player(pool, player_id)
    save_pool(pool)
    return _pool_out(pool)
