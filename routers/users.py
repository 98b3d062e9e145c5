import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

import settings
from auth import create_token, get_current_user, hash_password, require_coach, user_id, verify_password
from database import create_document, db, get_or_404, oid, serialize, utcnow
from routers.team_invites import find_valid_invite, redeem_invite
from schemas import User

logger = logging.getLogger(__name__)

router = APIRouter()


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Literal["Spieler", "Trainer", "Jugendspieler"] = "Spieler"
    birth_date: Optional[datetime] = None
    phone_number: Optional[str] = None
    position: Optional[str] = None
    coach_password: Optional[str] = None
    invite_code: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class ProfileIn(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    phone_number: Optional[str] = None
    position: Optional[str] = None
    birth_date: Optional[datetime] = None


class CreatePlayerIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: Optional[str] = Field(default=None, min_length=6)
    role: Literal["Spieler", "Jugendspieler"] = "Spieler"
    position: Optional[str] = None
    birth_date: Optional[datetime] = None
    phone_number: Optional[str] = None
    team_ids: List[str] = Field(default_factory=list)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(doc)
    out.pop("password", None)
    return out


def _insert_user(data: Dict[str, Any]) -> str:
    data = User(**data).model_dump()
    data["email"] = data["email"].lower()
    if db["user"].find_one({"email": data["email"]}):
        raise HTTPException(status_code=400, detail="Benutzer existiert bereits")
    try:
        return create_document("user", data)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Benutzer existiert bereits")


# -----------------------------
# Auth
# -----------------------------
@router.post("/register", status_code=201)
def register(payload: RegisterIn):
    if payload.role == "Trainer":
        expected = settings.COACH_REGISTRATION_PASSWORD
        if not expected or payload.coach_password != expected:
            raise HTTPException(status_code=403, detail="Ungültiges Trainer-Registrierungspasswort")
    invite = find_valid_invite(payload.invite_code) if payload.invite_code else None

    data = payload.model_dump(exclude={"coach_password", "invite_code"})
    data["password"] = hash_password(payload.password)
    new_id = _insert_user(data)
    if invite:
        redeem_invite(invite, new_id)
    logger.info("User registered: %s (%s)", payload.email, payload.role)

    user = db["user"].find_one({"_id": oid(new_id)})
    return dict(public_user(user), token=create_token(new_id))


@router.post("/login")
def login(payload: LoginIn):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Ungültige E-Mail oder Passwort")
    logger.info("User logged in: %s", payload.email)
    return dict(public_user(user), token=create_token(str(user["_id"])))


# -----------------------------
# Profile
# -----------------------------
@router.get("/profile")
def get_profile(user=Depends(get_current_user)):
    return public_user(user)


@router.put("/profile")
def update_profile(payload: ProfileIn, user=Depends(get_current_user)):
    changes = payload.model_dump(exclude_unset=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        other = db["user"].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}})
        if other:
            raise HTTPException(status_code=400, detail="E-Mail wird bereits verwendet")
    if changes.get("password"):
        changes["password"] = hash_password(changes["password"])
    else:
        changes.pop("password", None)
    changes["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    return public_user(db["user"].find_one({"_id": user["_id"]}))


# -----------------------------
# Directory
# -----------------------------
@router.get("")
def list_users(role: Optional[str] = None, coach=Depends(require_coach)):
    flt = {"role": role} if role else {}
    return [public_user(u) for u in db["user"].find(flt).sort("name", 1)]


@router.get("/players")
def list_players(coach=Depends(require_coach)):
    flt = {"role": {"$in": ["Spieler", "Jugendspieler"]}}
    return [public_user(u) for u in db["user"].find(flt).sort("name", 1)]


@router.get("/youth")
def list_youth_players(coach=Depends(require_coach)):
    return [public_user(u) for u in db["user"].find({"role": "Jugendspieler"}).sort("name", 1)]


@router.get("/team/{team_id}")
def team_players(team_id: str, user=Depends(get_current_user)):
    team = get_or_404("team", team_id, "Team nicht gefunden")
    ids = [oid(p) for p in team.get("players") or []]
    return [public_user(u) for u in db["user"].find({"_id": {"$in": ids}}).sort("name", 1)]


@router.post("/create-player", status_code=201)
def create_player(payload: CreatePlayerIn, coach=Depends(require_coach)):
    password = payload.password or secrets.token_urlsafe(9)
    data = payload.model_dump(exclude={"password", "team_ids"})
    data["password"] = hash_password(password)
    data["created_by"] = user_id(coach)
    new_id = _insert_user(data)
    for team_id in payload.team_ids:
        team = get_or_404("team", team_id, "Team nicht gefunden")
        db["team"].update_one({"_id": team["_id"]}, {"$addToSet": {"players": new_id}})
        db["user"].update_one({"_id": oid(new_id)}, {"$addToSet": {"teams": team_id}})
    logger.info("Coach %s created player %s", user_id(coach), payload.email)
    out = public_user(db["user"].find_one({"_id": oid(new_id)}))
    if not payload.password:
        out["temporary_password"] = password
    return out


@router.get("/{player_id}")
def get_user(player_id: str, user=Depends(get_current_user)):
    if user.get("role") != "Trainer" and user_id(user) != player_id:
        raise HTTPException(status_code=403, detail="Keine Berechtigung")
    return public_user(get_or_404("user", player_id, "Benutzer nicht gefunden"))
