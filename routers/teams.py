import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import get_current_user, require_coach, user_id
from database import create_document, db, get_or_404, oid, serialize, utcnow
from schemas import Team

logger = logging.getLogger(__name__)

router = APIRouter()


class TeamIn(BaseModel):
    name: Literal["H1", "H2", "H3", "H4", "H5", "U20", "U18", "U16"]
    type: Literal["Adult", "Youth"]
    description: Optional[str] = None
    players: List[str] = Field(default_factory=list)


class TeamUpdateIn(BaseModel):
    description: Optional[str] = None
    type: Optional[Literal["Adult", "Youth"]] = None


class MemberIn(BaseModel):
    user_id: str


def _team_out(team: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(team)
    members = [oid(i) for i in (team.get("players") or []) + (team.get("coaches") or [])]
    names = {str(u["_id"]): u.get("name") for u in db["user"].find({"_id": {"$in": members}}, {"name": 1})}
    out["player_names"] = {p: names.get(p) for p in team.get("players") or []}
    out["coach_names"] = {c: names.get(c) for c in team.get("coaches") or []}
    return out


def _require_team_coach(team: Dict[str, Any], coach: Dict[str, Any]) -> None:
    if user_id(coach) not in (team.get("coaches") or []):
        raise HTTPException(status_code=403, detail="Nicht autorisiert für dieses Team")


@router.post("", status_code=201)
def create_team(payload: TeamIn, coach=Depends(require_coach)):
    if db["team"].find_one({"name": payload.name}):
        raise HTTPException(status_code=400, detail="Team existiert bereits")
    coach_id = user_id(coach)
    data = payload.model_dump()
    data["coaches"] = [coach_id]
    team_id = create_document("team", Team(**data))
    db["user"].update_one({"_id": coach["_id"]}, {"$addToSet": {"teams": team_id}})
    for player_id in payload.players:
        db["user"].update_one({"_id": oid(player_id)}, {"$addToSet": {"teams": team_id}})
    logger.info("Team %s created by %s", payload.name, coach_id)
    return _team_out(db["team"].find_one({"_id": oid(team_id)}))


@router.get("")
def list_teams(user=Depends(get_current_user)):
    if user.get("role") == "Trainer":
        teams = db["team"].find({})
    else:
        teams = db["team"].find({"players": user_id(user)})
    return [_team_out(t) for t in teams.sort("name", 1)]


@router.get("/{team_id}")
def get_team(team_id: str, user=Depends(get_current_user)):
    team = get_or_404("team", team_id, "Team nicht gefunden")
    if user.get("role") != "Trainer" and user_id(user) not in (team.get("players") or []):
        raise HTTPException(status_code=403, detail="Nicht autorisiert für dieses Team")
    return _team_out(team)


@router.put("/{team_id}")
def update_team(team_id: str, payload: TeamUpdateIn, coach=Depends(require_coach)):
    team = get_or_404("team", team_id, "Team nicht gefunden")
    _require_team_coach(team, coach)
    changes = payload.model_dump(exclude_unset=True)
    changes["updated_at"] = utcnow()
    db["team"].update_one({"_id": team["_id"]}, {"$set": changes})
    return _team_out(db["team"].find_one({"_id": team["_id"]}))


@router.post("/{team_id}/players")
def add_player(team_id: str, payload: MemberIn, coach=Depends(require_coach)):
    team = get_or_404("team", team_id, "Team nicht gefunden")
    _require_team_coach(team, coach)
    player = get_or_404("user", payload.user_id, "Spieler nicht gefunden")
    if player.get("role") == "Trainer":
        raise HTTPException(status_code=400, detail="Trainer können nicht als Spieler hinzugefügt werden")
    if payload.user_id in (team.get("players") or []):
        raise HTTPException(status_code=400, detail="Spieler ist bereits im Team")
    db["team"].update_one({"_id": team["_id"]}, {"$addToSet": {"players": payload.user_id},
                                                 "$set": {"updated_at": utcnow()}})
    db["user"].update_one({"_id": player["_id"]}, {"$addToSet": {"teams": team_id}})
    return _team_out(db["team"].find_one({"_id": team["_id"]}))


@router.delete("/{team_id}/players/{player_id}")
def remove_player(team_id: str, player_id: str, coach=Depends(require_coach)):
    team = get_or_404("team", team_id, "Team nicht gefunden")
    _require_team_coach(team, coach)
    if player_id not in (team.get("players") or []):
        raise HTTPException(status_code=404, detail="Spieler ist nicht im Team")
    db["team"].update_one({"_id": team["_id"]}, {"$pull": {"players": player_id},
                                                 "$set": {"updated_at": utcnow()}})
    db["user"].update_one({"_id": oid(player_id)}, {"$pull": {"teams": team_id}})
    return _team_out(db["team"].find_one({"_id": team["_id"]}))


@router.post("/{team_id}/coaches")
def add_coach(team_id: str, payload: MemberIn, coach=Depends(require_coach)):
    team = get_or_404("team", team_id, "Team nicht gefunden")
    _require_team_coach(team, coach)
    other = get_or_404("user", payload.user_id, "Trainer nicht gefunden")
    if other.get("role") != "Trainer":
        raise HTTPException(status_code=400, detail="Benutzer ist kein Trainer")
    db["team"].update_one({"_id": team["_id"]}, {"$addToSet": {"coaches": payload.user_id},
                                                 "$set": {"updated_at": utcnow()}})
    db["user"].update_one({"_id": other["_id"]}, {"$addToSet": {"teams": team_id}})
    return _team_out(db["team"].find_one({"_id": team["_id"]}))
