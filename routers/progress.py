from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import get_current_user, require_coach, user_id
from database import db, get_or_404, naive_utc, universal_attributes, utcnow
from progress import (
    find_entry_index,
    milestones,
    player_progress,
    progress_report,
    progress_stats,
    team_distribution,
    team_percentiles,
)

router = APIRouter()


class NoteIn(BaseModel):
    attribute_id: str
    date: datetime
    note: str = Field(..., min_length=1, max_length=500)


def _require_self_or_coach(user: Dict[str, Any], player_id: str) -> None:
    if user.get("role") != "Trainer" and user_id(user) != player_id:
        raise HTTPException(status_code=403, detail="Keine Berechtigung für diesen Spieler")


def _team_attribute_map(team_id: str) -> Dict[str, Dict[str, Dict[str, Any]]]:
    team = get_or_404("team", team_id, "Team nicht gefunden")
    attribute_map = {}
    for player_id in team.get("players") or []:
        attrs = [a for a in universal_attributes(player_id) if a.get("numeric_value") is not None]
        if attrs:
            attribute_map[player_id] = {a["attribute_name"]: a for a in attrs}
    return attribute_map


@router.get("/player/{player_id}")
def get_player_progress(player_id: str, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                        user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return player_progress(universal_attributes(player_id), naive_utc(date_from), naive_utc(date_to))


@router.get("/player/{player_id}/milestones")
def get_milestones(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return milestones(universal_attributes(player_id))


@router.get("/player/{player_id}/stats")
def get_progress_stats(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return progress_stats(universal_attributes(player_id))


@router.get("/player/{player_id}/export")
def export_progress(player_id: str, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                    user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    player = get_or_404("user", player_id, "Spieler nicht gefunden")
    return {
        "player": {"id": player_id, "name": player.get("name"), "position": player.get("position")},
        "period": {"from": date_from, "to": date_to},
        "generated_at": utcnow(),
        "attributes": progress_report(universal_attributes(player_id), naive_utc(date_from), naive_utc(date_to)),
    }


@router.post("/note")
def add_progress_note(payload: NoteIn, coach=Depends(require_coach)):
    """Attach a coach note to the history entry recorded closest to ``date``."""
    attr = get_or_404("player_attribute", payload.attribute_id, "Attribut nicht gefunden")
    history = list(attr.get("progression_history") or [])
    index = find_entry_index(history, naive_utc(payload.date))
    if index is None:
        raise HTTPException(status_code=404, detail="Kein Verlaufseintrag für dieses Datum gefunden")
    history[index] = dict(history[index], notes=payload.note)
    db["player_attribute"].update_one({"_id": attr["_id"]}, {"$set": {
        "progression_history": history,
        "updated_at": utcnow(),
    }})
    return {"message": "Notiz hinzugefügt", "entry": history[index]}


@router.get("/team/{team_id}/percentiles/{player_id}")
def get_team_percentiles(team_id: str, player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    try:
        return team_percentiles(player_id, _team_attribute_map(team_id))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/team/{team_id}/distribution")
def get_team_distribution(team_id: str, user=Depends(get_current_user)):
    return team_distribution(_team_attribute_map(team_id))
