"""
Player rating and league-level engine.

Every attribute is rated on a 1-99 scale inside one of eight league levels
(Kreisliga .. Bundesliga). A rating of 90 or more promotes the attribute to the
next league, where it starts again at 1. Every change is appended to the
attribute's progression history.
"""
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

MIN_RATING = 1
MAX_RATING = 99
MAX_LEVEL = 7
PROMOTION_THRESHOLD = 90
LEVEL_UP_MARKER = "Level-Aufstieg"

LEAGUE_LEVELS: Tuple[str, ...] = (
    "Kreisliga",
    "Bezirksklasse",
    "Bezirksliga",
    "Landesliga",
    "Bayernliga",
    "Regionalliga",
    "Dritte Liga",
    "Bundesliga",
)

LEAGUE_COLORS: Tuple[str, ...] = (
    "#9E9E9E", "#795548", "#FF9800", "#4CAF50",
    "#2196F3", "#3F51B5", "#9C27B0", "#FFD700",
)

CORE_ATTRIBUTES: Tuple[Dict[str, Any], ...] = (
    {
        "name": "Athletik",
        "description": "Körperliche Fitness und Beweglichkeit",
        "sub_attributes": ["Sprunghöhe", "Geschwindigkeit", "Beweglichkeit", "Ausdauer", "Reaktionszeit"],
    },
    {
        "name": "Aufschlag",
        "description": "Präzision und Kraft beim Aufschlag",
        "sub_attributes": ["Topspin-Aufschlag", "Flatteraufschlag", "Kraft", "Genauigkeit", "Konstanz"],
    },
    {
        "name": "Abwehr",
        "description": "Defensive Fähigkeiten und Reaktion",
        "sub_attributes": ["Baggern", "Plattformkontrolle", "Spielübersicht", "Feldabsicherung", "Reflexe"],
    },
    {
        "name": "Angriff",
        "description": "Offensive Schlagkraft und Technik",
        "sub_attributes": ["Schlagkraft", "Schlaggenauigkeit", "Schlagauswahl", "Timing", "Abschlaghöhe"],
    },
    {
        "name": "Mental",
        "description": "Mentale Stärke und Spielintelligenz",
        "sub_attributes": ["Gelassenheit", "Führungsqualität", "Spielverständnis", "Krisensituation", "Kommunikation"],
    },
    {
        "name": "Annahme",
        "description": "Ballannahme und Aufschlagverhalten",
        "sub_attributes": ["Obere Annahme", "Untere Annahme", "Flatterannahme", "Topspinannahme",
                           "Konstanz", "Genauigkeit"],
    },
    {
        "name": "Grund-Technik",
        "description": "Grundlegende Volleyball-Techniken",
        "sub_attributes": ["Oberes Zuspiel", "Baggern", "Bewegung zum Ball", "Angriffsschritte", "Hechtbagger"],
    },
    {
        "name": "Positionsspezifisch",
        "description": "Spezielle Positionsfähigkeiten",
        "sub_attributes": [],
    },
)

CORE_ATTRIBUTE_NAMES: Tuple[str, ...] = tuple(a["name"] for a in CORE_ATTRIBUTES)

_OUTSIDE_SUBS = ["Linienschlag", "Diagonalschlag", "Wixxen", "Pipeangriff", "Transition", "Annahme", "Blocken"]
_OPPOSITE_SUBS = ["Linienschlag", "Diagonalschlag", "Werkzeugschlag", "Hinterfeld-Angriff", "Blockpräsenz"]
_MIDDLE_SUBS = ["Block-Timing", "Blockreichweite", "Schnellangriff", "Seitliche Bewegung", "Schließender Block"]

POSITION_SUB_ATTRIBUTES: Dict[str, List[str]] = {
    "Zuspieler": ["Zuspielgenauigkeit", "Zuspiel-Tempo", "Überkopf", "2.Ball", "Entscheidungsfindung",
                  "Out-of-System"],
    "Außen": _OUTSIDE_SUBS,
    "Aussenspieler": _OUTSIDE_SUBS,
    "Dia": _OPPOSITE_SUBS,
    "Diagonalspieler": _OPPOSITE_SUBS,
    "Mitte": _MIDDLE_SUBS,
    "Mittelspieler": _MIDDLE_SUBS,
    "Libero": ["Annahme", "Dankeball", "Feldabdeckung", "Plattformstabilität", "Erster Kontakt"],
}

_MIDDLE_WEIGHTS = {
    "Positionsspezifisch": 24, "Angriff": 18, "Athletik": 16, "Aufschlag": 12,
    "Grund-Technik": 10, "Mental": 10, "Abwehr": 9, "Annahme": 1,
}
_OPPOSITE_WEIGHTS = {
    "Positionsspezifisch": 22, "Angriff": 20, "Abwehr": 12, "Athletik": 12,
    "Aufschlag": 12, "Grund-Technik": 12, "Mental": 9, "Annahme": 1,
}
_OUTSIDE_WEIGHTS = {
    "Annahme": 18, "Mental": 16, "Angriff": 15, "Positionsspezifisch": 11,
    "Athletik": 10, "Grund-Technik": 10, "Aufschlag": 10, "Abwehr": 10,
}

# Percentages per core attribute
POSITION_WEIGHTS: Dict[str, Dict[str, int]] = {
    "Zuspieler": {
        "Positionsspezifisch": 25, "Mental": 18, "Grund-Technik": 18, "Athletik": 14,
        "Aufschlag": 12, "Abwehr": 12, "Angriff": 5, "Annahme": 1,
    },
    "Libero": {
        "Positionsspezifisch": 20, "Annahme": 20, "Abwehr": 18, "Mental": 15,
        "Grund-Technik": 15, "Athletik": 12, "Angriff": 0, "Aufschlag": 0,
    },
    "Mitte": _MIDDLE_WEIGHTS,
    "Mittelspieler": _MIDDLE_WEIGHTS,
    "Dia": _OPPOSITE_WEIGHTS,
    "Diagonalspieler": _OPPOSITE_WEIGHTS,
    "Außen": _OUTSIDE_WEIGHTS,
    "Aussenspieler": _OUTSIDE_WEIGHTS,
}

DEFAULT_WEIGHTS: Dict[str, int] = {
    "Athletik": 12, "Aufschlag": 15, "Abwehr": 15, "Angriff": 15,
    "Mental": 12, "Annahme": 10, "Grund-Technik": 11, "Positionsspezifisch": 10,
}

_LEVEL_UP_PATTERN = re.compile(r"Level-Aufstieg: (.+) → (.+)")


class RatingError(ValueError):
    pass


@dataclass
class RatingOutcome:
    attribute: Dict[str, Any]
    promoted: bool
    old_level: int
    new_level: int
    old_value: Optional[int]
    new_value: int
    history_entry: Dict[str, Any]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_rating(value) -> int:
    return max(MIN_RATING, min(MAX_RATING, round_half_up(float(value))))


def clamp_level(level) -> int:
    return max(0, min(MAX_LEVEL, int(level or 0)))


def validate_rating(value) -> Tuple[bool, str]:
    if isinstance(value, bool):
        return False, "Bewertung muss eine Zahl sein"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False, "Bewertung muss eine Zahl sein"
    if math.isnan(number):
        return False, "Bewertung muss eine Zahl sein"
    if number < MIN_RATING or number > MAX_RATING:
        return False, "Bewertung muss zwischen 1 und 99 liegen"
    if not number.is_integer():
        return False, "Bewertung muss eine ganze Zahl sein"
    return True, ""


def _is_rating_number(value) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and MIN_RATING <= value <= MAX_RATING)


def calculate_main_from_subs(sub_attributes: Optional[Mapping[str, Any]]) -> Optional[int]:
    """Average of the valid sub-attribute values, or None when there are none."""
    if not isinstance(sub_attributes, Mapping):
        return None
    values = [v for v in sub_attributes.values() if _is_rating_number(v)]
    if not values:
        return None
    return round_half_up(sum(values) / len(values))


def league_name(level) -> str:
    return LEAGUE_LEVELS[clamp_level(level)]


def league_levels() -> List[Dict[str, Any]]:
    return [
        {"level": i, "name": name, "color": LEAGUE_COLORS[i]}
        for i, name in enumerate(LEAGUE_LEVELS)
    ]


def absolute_skill(level, level_rating) -> int:
    return clamp_level(level) * 100 + (level_rating or 1)


def overall_level_and_rating(absolute: int) -> Tuple[int, int]:
    return min(MAX_LEVEL, absolute // 100), absolute % 100


def rating_category(value) -> Dict[str, str]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float("nan")
    if math.isnan(number):
        return {"category": "Unbekannt", "color": "grey", "label": "N/A"}
    if number >= 90:
        return {"category": "Elite", "color": "green", "label": "Elite (90-99)"}
    if number >= 75:
        return {"category": "Sehr gut", "color": "lightGreen", "label": "Sehr gut (75-89)"}
    if number >= 60:
        return {"category": "Gut", "color": "yellow", "label": "Gut (60-74)"}
    if number >= 40:
        return {"category": "Durchschnitt", "color": "orange", "label": "Durchschnitt (40-59)"}
    return {"category": "Entwicklungsbedarf", "color": "red", "label": "Entwicklungsbedarf (1-39)"}


def weights_for(position: Optional[str]) -> Dict[str, int]:
    return POSITION_WEIGHTS.get(position or "", DEFAULT_WEIGHTS)


def core_attributes_for(position: Optional[str]) -> List[Dict[str, Any]]:
    result = []
    for attr in CORE_ATTRIBUTES:
        item = dict(attr, sub_attributes=list(attr["sub_attributes"]))
        if attr["name"] == "Positionsspezifisch":
            item["sub_attributes"] = list(POSITION_SUB_ATTRIBUTES.get(position or "", []))
        result.append(item)
    return result


# -----------------------------
# Rating transitions
# -----------------------------
def new_attribute(player_id: str, attribute_name: str, *, team_id: Optional[str] = None,
                  category: str = "Other", level: int = 0) -> Dict[str, Any]:
    """Blank attribute document; the first rating is applied with apply_rating."""
    return {
        "player_id": player_id,
        "attribute_name": attribute_name,
        "category": category,
        "numeric_value": None,
        "sub_attributes": {},
        "level": clamp_level(level),
        "level_rating": None,
        "notes": None,
        "updated_by": None,
        "team_id": team_id,
        "progression_history": [],
    }


def apply_rating(attribute: Dict[str, Any], value, *, updated_by: Optional[str] = None,
                 notes: Optional[str] = None, sub_attributes: Optional[Mapping[str, Any]] = None,
                 now: Optional[datetime] = None) -> RatingOutcome:
    """Store a new rating on ``attribute`` (mutated in place).

    A value of 90+ below Bundesliga promotes the attribute one league and
    restarts it at 1; the history entry then carries the level-up note and a
    change measured on the absolute skill scale.
    """
    if value is None:
        raise RatingError("Bewertung muss eine Zahl sein")
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    new_value = clamp_rating(value)
    old_value = attribute.get("numeric_value")
    old_level = clamp_level(attribute.get("level"))

    if sub_attributes is not None:
        attribute["sub_attributes"] = {
            k: clamp_rating(v) for k, v in sub_attributes.items() if _is_rating_number(v)
        }

    if new_value >= PROMOTION_THRESHOLD and old_level < MAX_LEVEL:
        new_level = old_level + 1
        stored = MIN_RATING
        if old_value is None:
            change = 0
        else:
            change = absolute_skill(new_level, stored) - absolute_skill(old_level, old_value)
        entry_notes = f"{LEVEL_UP_MARKER}: {LEAGUE_LEVELS[old_level]} → {LEAGUE_LEVELS[new_level]}"
        promoted = True
    else:
        new_level = old_level
        stored = new_value
        change = 0 if old_value is None else stored - old_value
        entry_notes = notes
        promoted = False

    entry = {
        "value": stored,
        "change": change,
        "notes": entry_notes,
        "level": new_level,
        "updated_by": updated_by,
        "updated_at": now,
    }
    history = list(attribute.get("progression_history") or [])
    history.append(entry)

    attribute["numeric_value"] = stored
    attribute["level_rating"] = stored
    attribute["level"] = new_level
    attribute["progression_history"] = history
    attribute["updated_by"] = updated_by
    attribute["updated_at"] = now
    if notes is not None:
        attribute["notes"] = notes

    return RatingOutcome(
        attribute=attribute,
        promoted=promoted,
        old_level=old_level,
        new_level=new_level,
        old_value=old_value,
        new_value=stored,
        history_entry=entry,
    )


def resolve_rating_value(numeric_value, sub_attributes: Optional[Mapping[str, Any]]) -> int:
    """Main value of a rating request: explicit value wins, else the sub average."""
    if numeric_value is not None:
        ok, message = validate_rating(numeric_value)
        if not ok:
            raise RatingError(message)
        return int(numeric_value)
    derived = calculate_main_from_subs(sub_attributes)
    if derived is None:
        raise RatingError("Bewertung oder Unterattribute erforderlich")
    return derived


# -----------------------------
# Overall rating
# -----------------------------
def _by_name(attributes: Iterable[Mapping[str, Any]]) -> Dict[str, Mapping[str, Any]]:
    return {a["attribute_name"]: a for a in attributes if a.get("attribute_name")}


def _weighted(attributes: Iterable[Mapping[str, Any]], position: Optional[str], value_of) -> Optional[int]:
    weights = weights_for(position)
    present = _by_name(attributes)
    total = 0.0
    weight_sum = 0
    for name in CORE_ATTRIBUTE_NAMES:
        attr = present.get(name)
        weight = weights.get(name, 0)
        if attr is None or weight <= 0:
            continue
        value = value_of(attr)
        if value is None:
            continue
        total += value * weight
        weight_sum += weight
    if weight_sum == 0:
        return None
    return round_half_up(total / weight_sum)


def overall_rating(attributes: Iterable[Mapping[str, Any]], position: Optional[str] = None) -> Optional[int]:
    """Position-weighted average of the present core attribute ratings."""
    return _weighted(list(attributes), position, lambda a: a.get("numeric_value"))


def overall_level_rating(attributes: Iterable[Mapping[str, Any]],
                         position: Optional[str] = None) -> Optional[Dict[str, Any]]:
    def skill(attr):
        rating = attr.get("level_rating") or attr.get("numeric_value")
        if rating is None:
            return None
        return absolute_skill(attr.get("level"), rating)

    absolute = _weighted(list(attributes), position, skill)
    if absolute is None:
        return None
    level, rating = overall_level_and_rating(absolute)
    return {
        "absolute_skill": absolute,
        "level": level,
        "league": LEAGUE_LEVELS[level],
        "level_rating": rating,
    }


def overall_summary(attributes: Iterable[Mapping[str, Any]], position: Optional[str] = None) -> Dict[str, Any]:
    attributes = list(attributes)
    overall = overall_rating(attributes, position)
    return {
        "overall_rating": overall,
        "category": rating_category(overall) if overall is not None else None,
        "level": overall_level_rating(attributes, position),
        "position": position,
        "weights": weights_for(position),
        "rated_attributes": sorted(
            a["attribute_name"] for a in attributes
            if a.get("attribute_name") in CORE_ATTRIBUTE_NAMES and a.get("numeric_value") is not None
        ),
    }


def pool_rating(skill_rating: int, attendance_percentage: float) -> int:
    if not attendance_percentage:
        return skill_rating
    return round_half_up(skill_rating * 0.7 + attendance_percentage * 0.3)


# -----------------------------
# History helpers
# -----------------------------
def _level_from_note(notes: Optional[str]) -> Optional[int]:
    if not notes or LEVEL_UP_MARKER not in notes:
        return None
    match = _LEVEL_UP_PATTERN.search(notes)
    if match and match.group(2).strip() in LEAGUE_LEVELS:
        return LEAGUE_LEVELS.index(match.group(2).strip())
    return None


def is_level_up(entry: Mapping[str, Any]) -> bool:
    return LEVEL_UP_MARKER in (entry.get("notes") or "")


def history_with_levels(attribute: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """History entries annotated with their league level and absolute value.

    Entries written before levels were stored get their level reconstructed
    from the level-up notes, counting back from the attribute's current level.
    """
    history = list(attribute.get("progression_history") or [])
    level_ups = sum(1 for e in history if is_level_up(e))
    level = max(0, clamp_level(attribute.get("level")) - level_ups)
    result = []
    for entry in history:
        if is_level_up(entry):
            parsed = _level_from_note(entry.get("notes"))
            level = parsed if parsed is not None else min(MAX_LEVEL, level + 1)
        stored_level = entry.get("level")
        entry_level = clamp_level(stored_level) if stored_level is not None else level
        value = entry.get("value") or MIN_RATING
        result.append(dict(
            entry,
            level=entry_level,
            level_rating=value,
            league=LEAGUE_LEVELS[entry_level],
            absolute_value=absolute_skill(entry_level, value),
        ))
    return result


def level_progress(attributes: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    result = []
    for attr in attributes:
        level = clamp_level(attr.get("level"))
        rating = attr.get("level_rating") or attr.get("numeric_value")
        at_top = level >= MAX_LEVEL
        result.append({
            "attribute_name": attr.get("attribute_name"),
            "level": level,
            "league": LEAGUE_LEVELS[level],
            "level_rating": rating,
            "absolute_skill": absolute_skill(level, rating),
            "next_league": None if at_top else LEAGUE_LEVELS[level + 1],
            "points_to_promotion": 0 if at_top or rating is None else max(0, PROMOTION_THRESHOLD - rating),
            "progress_percent": round_half_up((rating or 0) / MAX_RATING * 100),
        })
    return result
