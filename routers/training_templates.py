import logging
from typing import Any, Dict, List, Literal, Optional, get_args

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import require_coach, user_id
from database import create_document, db, get_or_404, oid, serialize, utcnow
from schemas import TrainingTemplate

logger = logging.getLogger(__name__)

router = APIRouter()

Category = Literal["Anfänger", "Fortgeschritten", "Wettkampf", "Position-spezifisch",
                   "Saisonvorbereitung", "Kondition", "Technik", "Taktik"]
Visibility = Literal["public", "team", "private"]
TargetLevel = Literal["Anfänger", "Fortgeschritten", "Profi"]

CATEGORIES = list(get_args(Category))


class TemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., max_length=500)
    category: Category
    visibility: Visibility = "team"
    team_id: Optional[str] = None
    duration: Dict[str, Any] = Field(default_factory=lambda: {"value": 4, "unit": "Wochen"})
    phases: List[Dict[str, Any]] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    target_level: TargetLevel


class TemplateUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[Category] = None
    visibility: Optional[Visibility] = None
    team_id: Optional[str] = None
    duration: Optional[Dict[str, Any]] = None
    phases: Optional[List[Dict[str, Any]]] = None
    tags: Optional[List[str]] = None
    target_level: Optional[TargetLevel] = None


class CloneIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    team_id: Optional[str] = None


class RateIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)


def _visible_filter(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "is_active": True,
        "$or": [
            {"visibility": "public"},
            {"visibility": "team", "team_id": {"$in": list(user.get("teams") or [])}},
            {"created_by": user_id(user)},
        ],
    }


def _template_or_404(template_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    template = get_or_404("training_template", template_id, "Vorlage nicht gefunden")
    visible = (
        template.get("visibility") == "public"
        or template.get("created_by") == user_id(user)
        or (template.get("visibility") == "team" and template.get("team_id") in (user.get("teams") or []))
    )
    if not template.get("is_active", True) or not visible:
        raise HTTPException(status_code=404, detail="Vorlage nicht gefunden")
    return template


def _require_owner(template: Dict[str, Any], coach: Dict[str, Any]) -> None:
    if template.get("created_by") != user_id(coach):
        raise HTTPException(status_code=403, detail="Nur der Ersteller kann diese Vorlage ändern")


@router.get("/categories")
def get_categories():
    return CATEGORIES


@router.get("")
def list_templates(category: Optional[str] = None, visibility: Optional[str] = None, coach=Depends(require_coach)):
    flt = _visible_filter(coach)
    if category:
        flt["category"] = category
    if visibility:
        flt["visibility"] = visibility
    return [serialize(t) for t in db["training_template"].find(flt).sort("usage.count", -1)]


@router.get("/{template_id}")
def get_template(template_id: str, coach=Depends(require_coach)):
    return serialize(_template_or_404(template_id, coach))


@router.post("", status_code=201)
def create_template(payload: TemplateIn, coach=Depends(require_coach)):
    if payload.visibility == "team" and not payload.team_id:
        raise HTTPException(status_code=400, detail="Team-Vorlagen benötigen ein Team")
    data = payload.model_dump()
    data.update(
        created_by=user_id(coach),
        usage={"count": 0, "rating": 0, "rating_count": 0},
        version=1,
        original_template=None,
        is_active=True,
    )
    template_id = create_document("training_template", TrainingTemplate(**data))
    return serialize(db["training_template"].find_one({"_id": oid(template_id)}))


@router.put("/{template_id}")
def update_template(template_id: str, payload: TemplateUpdateIn, coach=Depends(require_coach)):
    template = _template_or_404(template_id, coach)
    _require_owner(template, coach)
    changes = payload.model_dump(exclude_unset=True)
    db["training_template"].update_one({"_id": template["_id"]}, {
        "$set": dict(changes, updated_at=utcnow()),
        "$inc": {"version": 1},
    })
    return serialize(db["training_template"].find_one({"_id": template["_id"]}))


@router.post("/{template_id}/clone", status_code=201)
def clone_template(template_id: str, payload: CloneIn, coach=Depends(require_coach)):
    source = _template_or_404(template_id, coach)
    data = {k: v for k, v in source.items() if k not in ("_id", "created_at", "updated_at")}
    data.update(
        name=payload.name or f"{source['name']} (Kopie)",
        created_by=user_id(coach),
        visibility="private",
        team_id=payload.team_id,
        usage={"count": 0, "rating": 0, "rating_count": 0},
        version=1,
        original_template=str(source["_id"]),
    )
    clone_id = create_document("training_template", TrainingTemplate(**data))
    db["training_template"].update_one({"_id": source["_id"]}, {"$inc": {"usage.count": 1}})
    return serialize(db["training_template"].find_one({"_id": oid(clone_id)}))


@router.post("/{template_id}/rate")
def rate_template(template_id: str, payload: RateIn, coach=Depends(require_coach)):
    template = _template_or_404(template_id, coach)
    usage = template.get("usage") or {}
    count = usage.get("rating_count", 0)
    average = (usage.get("rating", 0) * count + payload.rating) / (count + 1)
    db["training_template"].update_one({"_id": template["_id"]}, {"$set": {
        "usage.rating": round(average, 2),
        "usage.rating_count": count + 1,
        "updated_at": utcnow(),
    }})
    return {"rating": round(average, 2), "rating_count": count + 1}


@router.delete("/{template_id}")
def delete_template(template_id: str, coach=Depends(require_coach)):
    template = _template_or_404(template_id, coach)
    _require_owner(template, coach)
    db["training_template"].update_one({"_id": template["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    logger.info("Training template %s deactivated", template_id)
    return {"message": "Vorlage gelöscht"}
