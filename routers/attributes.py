import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from achievement_service import check_and_award
from auth import get_current_user, require_coach, require_player, user_id
from database import create_document, db, get_or_404, oid, serialize, universal_attributes, utcnow
from rating_engine import (
    CORE_ATTRIBUTE_NAMES,
    RatingError,
    apply_rating,
    core_attributes_for,
    history_with_levels,
    league_levels,
    level_progress,
    new_attribute,
    overall_level_rating,
    overall_rating,
    overall_summary,
    rating_category,
    resolve_rating_value,
    validate_rating,
)
from schemas import PlayerAttribute

logger = logging.getLogger(__name__)

router = APIRouter()

Category = Literal["Technical", "Tactical", "Physical", "Mental", "Other"]


class RatingIn(BaseModel):
    attribute_name: str = Field(..., min_length=1)
    numeric_value: Optional[int] = None
    sub_attributes: Optional[Dict[str, int]] = None
    notes: Optional[str] = None
    category: Category = "Other"


class RatingBatchIn(BaseModel):
    ratings: List[RatingIn] = Field(..., min_length=1)


class OverallIn(BaseModel):
    ratings: Dict[str, int]
    position: Optional[str] = None


class LevelRatingIn(BaseModel):
    attribute_name: str
    level: int = Field(default=0, ge=0, le=7)
    level_rating: int = Field(..., ge=1, le=99)


class OverallLevelIn(BaseModel):
    attributes: List[LevelRatingIn]
    position: Optional[str] = None


class SelfAssessmentIn(BaseModel):
    ratings: Dict[str, int]


class TeamRatingIn(RatingIn):
    player_id: str
    team_id: str


class TeamRatingUpdateIn(BaseModel):
    numeric_value: Optional[int] = None
    sub_attributes: Optional[Dict[str, int]] = None
    notes: Optional[str] = None


def _require_self_or_coach(user: Dict[str, Any], player_id: str) -> None:
    if user.get("role") != "Trainer" and user_id(user) != player_id:
        raise HTTPException(status_code=403, detail="Keine Berechtigung für diese Bewertungen")


def _attribute_out(attr: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(attr)
    value = attr.get("numeric_value")
    out["rating_category"] = rating_category(value) if value is not None else None
    return out


def _store(attr: Dict[str, Any]) -> Dict[str, Any]:
    if "_id" in attr:
        fields = {k: v for k, v in attr.items() if k != "_id"}
        db["player_attribute"].update_one({"_id": attr["_id"]}, {"$set": fields})
    else:
        attr["_id"] = oid(create_document("player_attribute", PlayerAttribute(**attr)))
    return attr


def _rate(attr: Dict[str, Any], payload, coach_id: str) -> Dict[str, Any]:
    value = resolve_rating_value(payload.numeric_value, payload.sub_attributes)
    outcome = apply_rating(attr, value, updated_by=coach_id, notes=payload.notes,
                           sub_attributes=payload.sub_attributes, now=utcnow())
    _store(attr)
    return {
        "attribute": _attribute_out(attr),
        "promoted": outcome.promoted,
        "old_level": outcome.old_level,
        "new_level": outcome.new_level,
    }


# -----------------------------
# Universal ratings
# -----------------------------
@router.get("/universal/{player_id}")
def get_universal_ratings(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    attributes = sorted(universal_attributes(player_id), key=lambda a: a["attribute_name"])
    return [_attribute_out(a) for a in attributes]


@router.post("/universal/{player_id}")
def save_universal_ratings(player_id: str, payload: RatingBatchIn, coach=Depends(require_coach)):
    player = get_or_404("user", player_id, "Spieler nicht gefunden")
    existing = {a["attribute_name"]: a for a in universal_attributes(player_id)}
    results = []
    for rating in payload.ratings:
        attr = existing.get(rating.attribute_name) or new_attribute(
            player_id, rating.attribute_name, category=rating.category,
        )
        results.append(_rate(attr, rating, user_id(coach)))
        existing[rating.attribute_name] = attr

    awarded = check_and_award(player_id, player.get("position"))
    logger.info("Saved %d rating(s) for player %s", len(results), player_id)
    return {
        "attributes": [r["attribute"] for r in results],
        "promotions": [
            {"attribute_name": r["attribute"]["attribute_name"], "old_level": r["old_level"], "new_level": r["new_level"]}
            for r in results if r["promoted"]
        ],
        "new_achievements": awarded,
    }


@router.get("/overall/{player_id}")
def player_overall(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    player = get_or_404("user", player_id, "Spieler nicht gefunden")
    return overall_summary(universal_attributes(player_id), player.get("position"))


@router.post("/calculate-overall")
def calculate_overall(payload: OverallIn, user=Depends(get_current_user)):
    attributes = []
    for name, value in payload.ratings.items():
        ok, message = validate_rating(value)
        if not ok:
            raise RatingError(f"{name}: {message}")
        attributes.append({"attribute_name": name, "numeric_value": value})
    overall = overall_rating(attributes, payload.position)
    return {
        "overall_rating": overall,
        "category": rating_category(overall) if overall is not None else None,
    }


@router.post("/calculate-overall-level")
def calculate_overall_level(payload: OverallLevelIn, user=Depends(get_current_user)):
    attributes = [a.model_dump() for a in payload.attributes]
    return {"overall": overall_level_rating(attributes, payload.position)}


@router.get("/level-progress/{player_id}")
def player_level_progress(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    return level_progress(sorted(universal_attributes(player_id), key=lambda a: a["attribute_name"]))


@router.get("/league-levels")
def get_league_levels():
    return league_levels()


@router.get("/core-attributes")
def get_core_attributes(position: Optional[str] = None):
    return core_attributes_for(position)


# -----------------------------
# Self-assessment
# -----------------------------
@router.post("/self-assessment")
def save_self_assessment(payload: SelfAssessmentIn, player=Depends(require_player)):
    player_id = user_id(player)
    existing = {a["attribute_name"]: a for a in universal_attributes(player_id)}
    now = utcnow()
    for name, value in payload.ratings.items():
        if name not in CORE_ATTRIBUTE_NAMES:
            raise RatingError(f"Unbekanntes Attribut: {name}")
        ok, message = validate_rating(value)
        if not ok:
            raise RatingError(f"{name}: {message}")
        attr = existing.get(name) or new_attribute(player_id, name)
        attr["self_rating"] = value
        attr["self_rated_at"] = now
        _store(attr)
    return {"message": "Selbsteinschätzung gespeichert", "ratings": payload.ratings}


@router.get("/self-assessment")
def get_self_assessment(player=Depends(require_player)):
    return {
        a["attribute_name"]: {"self_rating": a.get("self_rating"), "self_rated_at": a.get("self_rated_at")}
        for a in universal_attributes(user_id(player)) if a.get("self_rating") is not None
    }


@router.get("/self-assessment/{player_id}/comparison")
def self_assessment_comparison(player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    by_name = {a["attribute_name"]: a for a in universal_attributes(player_id)}
    comparison = []
    for name in CORE_ATTRIBUTE_NAMES:
        attr = by_name.get(name) or {}
        own = attr.get("self_rating")
        coach = attr.get("numeric_value")
        comparison.append({
            "attribute_name": name,
            "self_rating": own,
            "coach_rating": coach,
            "difference": own - coach if own is not None and coach is not None else None,
        })
    return comparison


# -----------------------------
# Team-scoped ratings
# -----------------------------
@router.post("/team", status_code=201)
def create_team_rating(payload: TeamRatingIn, coach=Depends(require_coach)):
    get_or_404("user", payload.player_id, "Spieler nicht gefunden")
    get_or_404("team", payload.team_id, "Team nicht gefunden")
    attr = db["player_attribute"].find_one({
        "player_id": payload.player_id, "team_id": payload.team_id, "attribute_name": payload.attribute_name,
    }) or new_attribute(payload.player_id, payload.attribute_name, team_id=payload.team_id, category=payload.category)
    return _rate(attr, payload, user_id(coach))


@router.get("/team/{team_id}/player/{player_id}")
def list_team_ratings(team_id: str, player_id: str, user=Depends(get_current_user)):
    _require_self_or_coach(user, player_id)
    attrs = db["player_attribute"].find({"player_id": player_id, "team_id": team_id}).sort("attribute_name", 1)
    return [_attribute_out(a) for a in attrs]


@router.get("/item/{attribute_id}")
def get_rating(attribute_id: str, user=Depends(get_current_user)):
    attr = get_or_404("player_attribute", attribute_id, "Attribut nicht gefunden")
    _require_self_or_coach(user, attr["player_id"])
    return _attribute_out(attr)


@router.put("/item/{attribute_id}")
def update_rating(attribute_id: str, payload: TeamRatingUpdateIn, coach=Depends(require_coach)):
    attr = get_or_404("player_attribute", attribute_id, "Attribut nicht gefunden")
    result = _rate(attr, payload, user_id(coach))
    if attr.get("team_id") is None:
        player = db["user"].find_one({"_id": oid(attr["player_id"])}, {"position": 1}) or {}
        result["new_achievements"] = check_and_award(attr["player_id"], player.get("position"))
    return result


@router.delete("/item/{attribute_id}")
def delete_rating(attribute_id: str, coach=Depends(require_coach)):
    attr = get_or_404("player_attribute", attribute_id, "Attribut nicht gefunden")
    db["player_attribute"].delete_one({"_id": attr["_id"]})
    return {"message": "Attribut gelöscht"}


@router.get("/item/{attribute_id}/progress")
def rating_progress(attribute_id: str, user=Depends(get_current_user)):
    attr = get_or_404("player_attribute", attribute_id, "Attribut nicht gefunden")
    _require_self_or_coach(user, attr["player_id"])
    return {
        "attribute_name": attr["attribute_name"],
        "level": attr.get("level", 0),
        "history": history_with_levels(attr),
    }
