"""
Achievement badges unlocked from a player's universal ratings.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pymongo import DESCENDING

from database import db, serialize, universal_attributes, utcnow
from rating_engine import CORE_ATTRIBUTE_NAMES, overall_level_rating, overall_rating, round_half_up
from schemas import Achievement

logger = logging.getLogger(__name__)

CATEGORIES = ("Fähigkeiten", "Position", "Team", "Fortschritt", "Spezial")
RARITIES = ("Bronze", "Silber", "Gold", "Platin", "Diamant")


def _badge(badge_id, name, description, category, rarity, trigger_value, trigger_type="rating_threshold"):
    return {
        "badge_id": badge_id,
        "badge_name": name,
        "badge_description": description,
        "category": category,
        "rarity": rarity,
        "trigger_type": trigger_type,
        "trigger_value": trigger_value,
    }


def _position_badges(prefix: str, position: str) -> List[Dict[str, Any]]:
    return [
        _badge(f"{prefix}_starter", f"{position} Anfänger", f"Positionsspezifisch ({position}) über 60",
               "Position", "Bronze", {"attribute": "Positionsspezifisch", "threshold": 60, "position": position}),
        _badge(f"{prefix}_expert", f"{position} Experte", f"Positionsspezifisch ({position}) über 80",
               "Position", "Silber", {"attribute": "Positionsspezifisch", "threshold": 80, "position": position}),
        _badge(f"{prefix}_master", f"{position} Meister", f"Positionsspezifisch ({position}) über 90",
               "Position", "Gold", {"attribute": "Positionsspezifisch", "threshold": 90, "position": position}),
    ]


BADGE_DEFINITIONS: List[Dict[str, Any]] = [
    _badge("first_steps", "Erste Schritte", "Erste Bewertung erhalten",
           "Fähigkeiten", "Bronze", {"attribute": "any", "threshold": 1}),
    _badge("solid_foundation", "Solide Basis", "Alle Attribute über 30 Punkte",
           "Fähigkeiten", "Bronze", {"attribute": "all", "threshold": 30}),
    _badge("serve_specialist", "Aufschlag-Spezialist", "Aufschlag-Bewertung über 70",
           "Fähigkeiten", "Bronze", {"attribute": "Aufschlag", "threshold": 70}),
    _badge("defense_expert", "Abwehr-Experte", "Abwehr-Bewertung über 70",
           "Fähigkeiten", "Bronze", {"attribute": "Abwehr", "threshold": 70}),
    _badge("attack_power", "Angriffs-Power", "Angriff-Bewertung über 70",
           "Fähigkeiten", "Bronze", {"attribute": "Angriff", "threshold": 70}),
    _badge("well_rounded", "Allrounder", "Alle Attribute über 50 Punkte",
           "Fähigkeiten", "Silber", {"attribute": "all", "threshold": 50}),
    _badge("serve_master", "Aufschlag-Meister", "Aufschlag-Bewertung über 85",
           "Fähigkeiten", "Silber", {"attribute": "Aufschlag", "threshold": 85}),
    _badge("defense_wall", "Abwehr-Mauer", "Abwehr-Bewertung über 85",
           "Fähigkeiten", "Silber", {"attribute": "Abwehr", "threshold": 85}),
    _badge("attack_machine", "Angriffs-Maschine", "Angriff-Bewertung über 85",
           "Fähigkeiten", "Silber", {"attribute": "Angriff", "threshold": 85}),
    _badge("mental_strength", "Mentale Stärke", "Mental-Bewertung über 85",
           "Fähigkeiten", "Silber", {"attribute": "Mental", "threshold": 85}),
    _badge("excellence", "Exzellenz", "Alle Attribute über 70 Punkte",
           "Fähigkeiten", "Gold", {"attribute": "all", "threshold": 70}),
    _badge("serve_legend", "Aufschlag-Legende", "Aufschlag-Bewertung über 95",
           "Fähigkeiten", "Gold", {"attribute": "Aufschlag", "threshold": 95}),
    _badge("defense_fortress", "Abwehr-Festung", "Abwehr-Bewertung über 95",
           "Fähigkeiten", "Gold", {"attribute": "Abwehr", "threshold": 95}),
    _badge("attack_destroyer", "Angriffs-Zerstörer", "Angriff-Bewertung über 95",
           "Fähigkeiten", "Gold", {"attribute": "Angriff", "threshold": 95}),
    *_position_badges("setter", "Zuspieler"),
    *_position_badges("libero", "Libero"),
    *_position_badges("outside", "Außen"),
    _badge("rising_star", "Aufsteigender Stern", "Gesamtwertung um 10 Punkte verbessert",
           "Fortschritt", "Bronze", {"attribute": "overallRating", "improvement": 10}, "improvement"),
    _badge("breakthrough", "Durchbruch", "Gesamtwertung um 20 Punkte verbessert",
           "Fortschritt", "Silber", {"attribute": "overallRating", "improvement": 20}, "improvement"),
    _badge("transformation", "Transformation", "Gesamtwertung um 30 Punkte verbessert",
           "Fortschritt", "Gold", {"attribute": "overallRating", "improvement": 30}, "improvement"),
    _badge("perfection", "Perfektion", "Alle Attribute über 90 Punkte",
           "Fähigkeiten", "Platin", {"attribute": "all", "threshold": 90}),
    _badge("legend", "Legende", "Gesamtwertung über 95 Punkte",
           "Spezial", "Diamant", {"attribute": "overallRating", "threshold": 95}),
    _badge("volleyball_god", "Volleyball-Gott", "Alle Attribute auf 99 Punkte",
           "Spezial", "Diamant", {"attribute": "all", "threshold": 99}),
]


def badge_definitions() -> List[Dict[str, Any]]:
    return [dict(b, trigger_value=dict(b["trigger_value"])) for b in BADGE_DEFINITIONS]


def organized_definitions() -> Dict[str, Any]:
    by_category: Dict[str, List[Dict[str, Any]]] = {}
    by_rarity: Dict[str, List[Dict[str, Any]]] = {}
    definitions = badge_definitions()
    for badge in definitions:
        by_category.setdefault(badge["category"], []).append(badge)
        by_rarity.setdefault(badge["rarity"], []).append(badge)
    return {"by_category": by_category, "by_rarity": by_rarity, "all": definitions}


# -----------------------------
# Evaluation
# -----------------------------
def rating_snapshot(attributes: List[Mapping[str, Any]], position: Optional[str]) -> Dict[str, int]:
    """Core attribute values (0 when unrated) plus the overall rating."""
    by_name = {a.get("attribute_name"): a for a in attributes}
    snapshot = {
        name: (by_name.get(name) or {}).get("numeric_value") or 0
        for name in CORE_ATTRIBUTE_NAMES
    }
    snapshot["overallRating"] = overall_rating(attributes, position) or 0
    return snapshot


def overall_improvement(attributes: List[Mapping[str, Any]], position: Optional[str]) -> int:
    """Overall skill gained since the first recorded value of every attribute."""
    baseline = []
    for attr in attributes:
        history = attr.get("progression_history") or []
        if not history:
            continue
        first = history[0]
        baseline.append({
            "attribute_name": attr.get("attribute_name"),
            "numeric_value": first.get("value"),
            "level_rating": first.get("value"),
            "level": first.get("level") or 0,
        })
    before = overall_level_rating(baseline, position)
    now = overall_level_rating(attributes, position)
    if before is None or now is None:
        return 0
    return now["absolute_skill"] - before["absolute_skill"]


def is_eligible(badge: Mapping[str, Any], snapshot: Mapping[str, int], improvement: int = 0) -> bool:
    trigger = badge["trigger_value"]
    if badge["trigger_type"] == "improvement":
        return improvement >= trigger["improvement"]
    if badge["trigger_type"] != "rating_threshold":
        return False
    threshold = trigger["threshold"]
    target = trigger["attribute"]
    core = [snapshot[name] for name in CORE_ATTRIBUTE_NAMES]
    if target == "all":
        return all(v >= threshold for v in core)
    if target == "any":
        return any(v >= threshold for v in core)
    return snapshot.get(target, 0) >= threshold


def badge_progress(badge: Mapping[str, Any], snapshot: Mapping[str, int]) -> Optional[Dict[str, Any]]:
    if badge["trigger_type"] != "rating_threshold":
        return None
    trigger = badge["trigger_value"]
    threshold = trigger["threshold"]
    target = trigger["attribute"]
    if target == "all":
        current = min(snapshot[name] for name in CORE_ATTRIBUTE_NAMES)
        text = f"Niedrigste Bewertung: {current}/{threshold}"
    elif target == "any":
        current = max(snapshot[name] for name in CORE_ATTRIBUTE_NAMES)
        text = f"Höchste Bewertung: {current}/{threshold}"
    elif target == "overallRating":
        current = snapshot["overallRating"]
        text = f"Gesamtwertung: {current}/{threshold}"
    else:
        current = snapshot.get(target, 0)
        text = f"{target}: {current}/{threshold}"
    return {"progress": min(current / threshold * 100, 100), "progress_text": text}


def _applies_to(badge: Mapping[str, Any], position: Optional[str]) -> bool:
    required = badge["trigger_value"].get("position")
    return required is None or required == position


def check_and_award(player_id: str, position: Optional[str] = None) -> List[Dict[str, Any]]:
    """Award every newly earned badge; returns only the new ones."""
    attributes = universal_attributes(player_id)
    if not attributes:
        return []
    snapshot = rating_snapshot(attributes, position)
    improvement = overall_improvement(attributes, position)
    unlocked = {a["badge_id"] for a in db["achievement"].find({"player_id": player_id}, {"badge_id": 1})}

    awarded = []
    for badge in BADGE_DEFINITIONS:
        if badge["badge_id"] in unlocked or not _applies_to(badge, position):
            continue
        if not is_eligible(badge, snapshot, improvement):
            continue
        now = utcnow()
        fields = Achievement(player_id=player_id, unlocked_at=now, **badge).model_dump(exclude={"player_id", "badge_id"})
        fields.update(created_at=now, updated_at=now)
        result = db["achievement"].update_one(
            {"player_id": player_id, "badge_id": badge["badge_id"]},
            {"$setOnInsert": fields},
            upsert=True,
        )
        doc = dict(fields, player_id=player_id, badge_id=badge["badge_id"])
        if result.upserted_id is not None:
            doc["_id"] = result.upserted_id
            awarded.append(serialize(doc))
    if awarded:
        logger.info("Awarded %d achievement(s) to player %s", len(awarded), player_id)
    return awarded


# -----------------------------
# Queries
# -----------------------------
def player_achievements(player_id: str, category: Optional[str] = None,
                        rarity: Optional[str] = None) -> List[Dict[str, Any]]:
    flt: Dict[str, Any] = {"player_id": player_id}
    if category:
        flt["category"] = category
    if rarity:
        flt["rarity"] = rarity
    return [serialize(a) for a in db["achievement"].find(flt).sort("unlocked_at", DESCENDING)]


def achievement_stats(player_id: str) -> Dict[str, Any]:
    achievements = player_achievements(player_id)
    by_category = {c: 0 for c in CATEGORIES}
    by_rarity = {r: 0 for r in RARITIES}
    for achievement in achievements:
        by_category[achievement["category"]] = by_category.get(achievement["category"], 0) + 1
        by_rarity[achievement["rarity"]] = by_rarity.get(achievement["rarity"], 0) + 1
    return {
        "total": len(achievements),
        "total_available": len(BADGE_DEFINITIONS),
        "by_category": by_category,
        "by_rarity": by_rarity,
        "completion_percentage": round_half_up(len(achievements) / len(BADGE_DEFINITIONS) * 100),
        "recent_unlocks": achievements[:5],
    }


def available_badges(player_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    unlocked = {a["badge_id"] for a in db["achievement"].find({"player_id": player_id}, {"badge_id": 1})}
    return [b for b in badge_definitions() if b["badge_id"] not in unlocked][:limit]


def next_achievable(player_id: str, position: Optional[str] = None) -> List[Dict[str, Any]]:
    """Locked threshold badges the player has reached at least 70 % of."""
    attributes = universal_attributes(player_id)
    if not attributes:
        return []
    snapshot = rating_snapshot(attributes, position)
    candidates = []
    for badge in available_badges(player_id, limit=len(BADGE_DEFINITIONS)):
        if not _applies_to(badge, position):
            continue
        progress = badge_progress(badge, snapshot)
        if progress and progress["progress"] >= 70:
            candidates.append(dict(badge, **progress))
    candidates.sort(key=lambda b: b["progress"], reverse=True)
    return candidates[:5]


def reset(player_id: str) -> int:
    result = db["achievement"].delete_many({"player_id": player_id})
    logger.info("Reset %d achievement(s) of player %s", result.deleted_count, player_id)
    return result.deleted_count


def team_leaderboard(team_id: str) -> List[Dict[str, Any]]:
    board = []
    for member in db["user"].find({"teams": team_id}, {"name": 1}):
        stats = achievement_stats(str(member["_id"]))
        board.append({
            "player_id": str(member["_id"]),
            "player_name": member.get("name"),
            "total_achievements": stats["total"],
            "completion_percentage": stats["completion_percentage"],
            "by_rarity": stats["by_rarity"],
            "recent_unlocks": len(stats["recent_unlocks"]),
        })
    board.sort(key=lambda e: e["total_achievements"], reverse=True)
    return board
