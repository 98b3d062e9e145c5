from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from achievement_service import (
    achievement_stats,
    available_badges,
    check_and_award,
    next_achievable,
    organized_definitions,
    player_achievements,
    reset,
    team_leaderboard,
)
from auth import get_current_user, require_coach, user_id
from database import get_or_404

router = APIRouter()


def _require_self_or_coach(user: Dict[str, Any], player_id: str) -> None:
    if user.get("role") != "Trainer" and user_id(user) != player_id:
        raise HTTPException(status_code=403, detail="Keine Berechtigung für diesen Spieler")


@router.get("/definitions")
def get_definitions():
    return organized_definitions()


@router.get("/player/{player_id}")
def get_player_achievements(player_id: str, category: Optional[str] = None, rarity: Optional[str] = None,
                            user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return player_achievements(player_id, category, rarity)


@router.get("/player/{player_id}/stats")
def get_achievement_stats(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return achievement_stats(player_id)


@router.get("/player/{player_id}/available")
def get_available(player_id: str, limit: int = Query(default=10, ge=1, le=50), user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return available_badges(player_id, limit)


@router.get("/player/{player_id}/next")
def get_next_achievable(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    player = get_or_404("user", player_id, "Spieler nicht gefunden")
    return next_achievable(player_id, player.get("position"))


@router.post("/player/{player_id}/check")
def check_achievements(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    player = get_or_404("user", player_id, "Spieler nicht gefunden")
    awarded = check_and_award(player_id, player.get("position"))
    return {"new_achievements": awarded, "count": len(awarded)}


@router.delete("/player/{player_id}")
def reset_achievements(player_id: str, coach=Depends(require_coach)):
    return {"message": "Erfolge zurückgesetzt", "deleted_count": reset(player_id)}


@router.get("/team/{team_id}/leaderboard")
def get_leaderboard(team_id: str, user=Depends(get_current_user)):
    get_or_404("team", team_id, "Team nicht gefunden")
    return team_leaderboard(team_id)
