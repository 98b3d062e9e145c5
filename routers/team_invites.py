import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import settings
from auth import get_current_user, require_coach, user_id
from database import create_document, db, get_or_404, oid, serialize, utcnow
from schemas import TeamInvite

logger = logging.getLogger(__name__)

router = APIRouter()


class InviteIn(BaseModel):
    team_id: str
    expires_in_days: Optional[int] = Field(default=None, ge=1)
    max_usage: Optional[int] = Field(default=None, ge=1)
    description: str = ""


def invite_url(code: str) -> str:
    return f"{settings.CLIENT_URL}/register?invite={code}"


def is_valid(invite: Dict[str, Any]) -> bool:
    if not invite.get("is_active"):
        return False
    expires_at = invite.get("expires_at")
    if expires_at is not None and expires_at < utcnow():
        return False
    max_usage = invite.get("max_usage")
    return max_usage is None or invite.get("usage_count", 0) < max_usage


def find_valid_invite(code: str) -> Dict[str, Any]:
    invite = db["team_invite"].find_one({"invite_code": code})
    if not invite or not is_valid(invite):
        raise HTTPException(status_code=400, detail="Einladungslink ist ungültig oder abgelaufen")
    return invite


def redeem_invite(invite: Dict[str, Any], new_user_id: str) -> None:
    """Add the user to the invite's team and count the usage."""
    now = utcnow()
    db["team"].update_one({"_id": oid(invite["team_id"])}, {"$addToSet": {"players": new_user_id}})
    db["user"].update_one({"_id": oid(new_user_id)}, {"$addToSet": {"teams": invite["team_id"]}})
    db["team_invite"].update_one({"_id": invite["_id"]}, {
        "$inc": {"usage_count": 1},
        "$push": {"used_by": {"user_id": new_user_id, "used_at": now}},
        "$set": {"updated_at": now},
    })


def _with_url(invite: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(invite)
    out["invite_url"] = invite_url(invite["invite_code"])
    out["is_valid"] = is_valid(invite)
    return out


def _require_team_coach(team_id: str, coach: Dict[str, Any]) -> Dict[str, Any]:
    team = get_or_404("team", team_id, "Team nicht gefunden")
    if user_id(coach) not in (team.get("coaches") or []):
        raise HTTPException(status_code=403, detail="Nicht autorisiert für dieses Team")
    return team


@router.post("")
def create_invite(payload: InviteIn, coach=Depends(require_coach)):
    _require_team_coach(payload.team_id, coach)
    expires_at = utcnow() + timedelta(days=payload.expires_in_days) if payload.expires_in_days else None
    code = secrets.token_hex(16)
    _id = create_document("team_invite", TeamInvite(
        team_id=payload.team_id,
        created_by=user_id(coach),
        invite_code=code,
        expires_at=expires_at,
        max_usage=payload.max_usage,
        description=payload.description,
    ))
    logger.info("Team invite created for team %s", payload.team_id)
    return _with_url(db["team_invite"].find_one({"_id": oid(_id)}))


@router.get("/team/{team_id}")
def list_team_invites(team_id: str, coach=Depends(require_coach)):
    _require_team_coach(team_id, coach)
    return [_with_url(i) for i in db["team_invite"].find({"team_id": team_id}).sort("created_at", -1)]


@router.get("/validate/{code}")
def validate_invite(code: str):
    invite = find_valid_invite(code)
    team = db["team"].find_one({"_id": oid(invite["team_id"])}, {"name": 1, "type": 1})
    return {
        "valid": True,
        "team": {"id": invite["team_id"], "name": (team or {}).get("name"), "type": (team or {}).get("type")},
        "description": invite.get("description", ""),
        "expires_at": invite["expires_at"].isoformat() if invite.get("expires_at") else None,
    }


@router.delete("/{invite_id}")
def deactivate_invite(invite_id: str, coach=Depends(require_coach)):
    invite = get_or_404("team_invite", invite_id, "Einladung nicht gefunden")
    _require_team_coach(invite["team_id"], coach)
    db["team_invite"].update_one({"_id": invite["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    return {"message": "Einladungslink deaktiviert"}


@router.get("/my-invites")
def my_invites(user=Depends(get_current_user)):
    return [_with_url(i) for i in db["team_invite"].find({"created_by": user_id(user)}).sort("created_at", -1)]
