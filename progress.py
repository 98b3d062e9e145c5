"""
Progress analytics over the universal ratings of a player or a team.

All values here are on the absolute skill scale (level * 100 + rating)
unless stated otherwise.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from rating_engine import (
    CORE_ATTRIBUTE_NAMES,
    LEAGUE_LEVELS,
    absolute_skill,
    clamp_level,
    history_with_levels,
    round_half_up,
)

MILESTONE_THRESHOLDS = (100, 200, 300, 400, 500, 600, 700)
MIN_TEAM_SIZE = 5
DEFAULT_TEAM_SKILL = 50
NOTE_TOLERANCE = timedelta(hours=24)


class ProgressError(ValueError):
    pass


def _in_range(when: Optional[datetime], date_from: Optional[datetime], date_to: Optional[datetime]) -> bool:
    if when is None:
        return date_from is None and date_to is None
    if date_from and when < date_from:
        return False
    if date_to and when > date_to:
        return False
    return True


def _filtered(entries: List[Dict[str, Any]], date_from, date_to) -> List[Dict[str, Any]]:
    result = [e for e in entries if _in_range(e.get("updated_at"), date_from, date_to)]
    return sorted(result, key=lambda e: e.get("updated_at") or datetime.min)


def player_progress(attributes: Iterable[Mapping[str, Any]], date_from: Optional[datetime] = None,
                    date_to: Optional[datetime] = None) -> Dict[str, Dict[str, Any]]:
    data = {}
    for attr in sorted(attributes, key=lambda a: a.get("attribute_name") or ""):
        level = clamp_level(attr.get("level"))
        history = _filtered(history_with_levels(attr), date_from, date_to)
        data[attr["attribute_name"]] = {
            "attribute_name": attr["attribute_name"],
            "current_value": absolute_skill(level, attr.get("numeric_value")),
            "current_level": level,
            "current_level_rating": attr.get("level_rating") or 0,
            "current_league": LEAGUE_LEVELS[level],
            "sub_attributes": attr.get("sub_attributes") or {},
            "progression_history": [
                {
                    "value": e["absolute_value"],
                    "change": e.get("change", 0),
                    "notes": e.get("notes"),
                    "updated_at": e.get("updated_at"),
                    "updated_by": e.get("updated_by"),
                    "level": e["level"],
                    "level_rating": e["level_rating"],
                }
                for e in history
            ],
            "last_updated": attr.get("updated_at"),
            "total_entries": len(history),
        }
    return data


def milestones(attributes: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """League threshold crossings and level-ups, oldest first."""
    found = []
    for attr in attributes:
        name = attr.get("attribute_name")
        reached = set()
        reached_levels = set()
        for entry in history_with_levels(attr):
            value = entry["absolute_value"]
            for threshold in MILESTONE_THRESHOLDS:
                if value < threshold or threshold in reached:
                    continue
                reached.add(threshold)
                league = LEAGUE_LEVELS[threshold // 100]
                found.append({
                    "attribute_name": name,
                    "threshold": threshold,
                    "value": value,
                    "date": entry.get("updated_at"),
                    "type": "elite" if threshold >= 600 else "excellent" if threshold >= 400 else "good",
                    "label": f"{name}: {league} erreicht",
                    "description": f"{threshold} Punkte Marke überschritten ({league})",
                })
            notes = entry.get("notes") or ""
            if "Level-Aufstieg" in notes and entry["level"] not in reached_levels:
                reached_levels.add(entry["level"])
                to_league = LEAGUE_LEVELS[entry["level"]]
                from_league = LEAGUE_LEVELS[max(0, entry["level"] - 1)]
                found.append({
                    "attribute_name": name,
                    "level": entry["level"],
                    "league_name": to_league,
                    "value": value,
                    "date": entry.get("updated_at"),
                    "type": "levelup",
                    "label": f"{name}: Level-Aufstieg zu {to_league}",
                    "description": f"Von {from_league} zu {to_league} aufgestiegen",
                    "from_league": from_league,
                    "to_league": to_league,
                })
    found.sort(key=lambda m: m.get("date") or datetime.min)
    return found


def _trend(improvement: int) -> str:
    if improvement > 5:
        return "improving"
    if improvement < -5:
        return "declining"
    return "stable"


def _is_plateau(values: List[int]) -> bool:
    if len(values) < 3:
        return False
    recent = values[-3:]
    return all(abs(b - a) < 3 for a, b in zip(recent, recent[1:]))


def progress_stats(attributes: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    attributes = list(attributes)
    attribute_stats = {}
    improvements = []
    plateaus = []
    total_entries = 0
    current_total = 0

    for attr in attributes:
        history = attr.get("progression_history") or []
        if not history:
            continue
        values = [e.get("value") or 0 for e in history]
        improvement = values[-1] - values[0]
        total_entries += len(history)
        current_total += attr.get("numeric_value") or 0
        if improvement:
            improvements.append({
                "name": attr["attribute_name"],
                "improvement": improvement,
                "current_value": attr.get("numeric_value"),
            })
        if _is_plateau(values):
            plateaus.append(attr["attribute_name"])
        attribute_stats[attr["attribute_name"]] = {
            "current_value": attr.get("numeric_value"),
            "total_entries": len(history),
            "first_value": values[0],
            "last_value": values[-1],
            "total_improvement": improvement,
            "average_value": round_half_up(sum(values) / len(values)),
            "highest_value": max(values),
            "lowest_value": min(values),
            "trend": _trend(improvement),
        }

    ranked = sorted(improvements, key=lambda i: i["improvement"], reverse=True)
    return {
        "overall_stats": {
            "total_attributes": len(attributes),
            "total_progress_entries": total_entries,
            "average_current_rating": round_half_up(current_total / len(attributes)) if attributes else 0,
            "average_improvement": (
                round(sum(i["improvement"] for i in improvements) / len(improvements), 2) if improvements else 0
            ),
            "most_improved_attribute": ranked[0] if ranked else None,
            "most_declined_attribute": ranked[-1] if ranked else None,
            "plateau_attributes": plateaus,
        },
        "attribute_stats": attribute_stats,
    }


def progress_report(attributes: Iterable[Mapping[str, Any]], date_from: Optional[datetime] = None,
                    date_to: Optional[datetime] = None) -> Dict[str, Any]:
    report = {}
    for attr in attributes:
        history = _filtered(list(attr.get("progression_history") or []), date_from, date_to)
        if not history:
            continue
        values = [e.get("value") or 0 for e in history]
        report[attr["attribute_name"]] = {
            "current_value": attr.get("numeric_value"),
            "start_value": values[0],
            "end_value": values[-1],
            "total_change": values[-1] - values[0],
            "progression_history": history,
            "statistics": {
                "average_value": round_half_up(sum(values) / len(values)),
                "highest_value": max(values),
                "lowest_value": min(values),
                "total_entries": len(history),
            },
        }
    return report


def find_entry_index(history: List[Mapping[str, Any]], when: datetime) -> Optional[int]:
    """Index of the first history entry within 24 hours of ``when``."""
    for index, entry in enumerate(history):
        updated_at = entry.get("updated_at")
        if updated_at is not None and abs(updated_at - when) <= NOTE_TOLERANCE:
            return index
    return None


# -----------------------------
# Team comparisons
# -----------------------------
def _simple_key(name: str) -> str:
    return name.lower().replace("-", "", 1)


def _skill_of(attr: Optional[Mapping[str, Any]]) -> int:
    if attr is None:
        return DEFAULT_TEAM_SKILL
    return absolute_skill(attr.get("level"), attr.get("level_rating") or attr.get("numeric_value"))


def _require_team_size(attribute_map: Mapping[str, Mapping[str, Any]]) -> None:
    if len(attribute_map) < MIN_TEAM_SIZE:
        raise ProgressError("Mindestens 5 Spieler mit Bewertungen erforderlich für Teamvergleiche")


def team_percentiles(player_id: str, attribute_map: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> Dict[str, Any]:
    """Percentile rank of one player per core attribute within the team.

    ``attribute_map`` maps player id to {attribute name: attribute document}
    and only contains players that have at least one rating.
    """
    _require_team_size(attribute_map)
    own = attribute_map.get(player_id)
    if own is None:
        raise LookupError("Spielerattribute nicht gefunden")

    percentiles = {}
    level_percentiles = {}
    strengths = []
    improvements = []
    for name in CORE_ATTRIBUTE_NAMES:
        values = sorted(_skill_of(attrs.get(name)) for attrs in attribute_map.values())
        mine = own.get(name)
        skill = _skill_of(mine)
        rank = sum(1 for v in values if v < skill)
        percentile = round_half_up(rank / (len(values) - 1) * 100)
        key = _simple_key(name)
        percentiles[key] = percentile
        level = clamp_level(mine.get("level")) if mine else 0
        level_percentiles[key] = {
            "percentile": percentile,
            "level": level,
            "level_rating": (mine or {}).get("level_rating") or 0,
            "league_name": LEAGUE_LEVELS[level],
        }
        if percentile >= 70:
            strengths.append(key)
        elif percentile <= 30:
            improvements.append(key)

    return {
        "percentiles": percentiles,
        "level_percentiles": level_percentiles,
        "strengths": strengths,
        "improvements": improvements,
        "team_size": len(attribute_map),
    }


def team_distribution(attribute_map: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> Dict[str, Any]:
    _require_team_size(attribute_map)
    distributions = {}
    level_distributions = {}
    for name in CORE_ATTRIBUTE_NAMES:
        values = []
        level_counts = [0] * len(LEAGUE_LEVELS)
        for attrs in attribute_map.values():
            attr = attrs.get(name)
            values.append(_skill_of(attr))
            level_counts[clamp_level(attr.get("level")) if attr else 0] += 1
        values.sort()
        bins = [0] * 10
        for value in values:
            bins[min(value // 80, 9)] += 1
        key = _simple_key(name)
        distributions[key] = {
            "bins": bins,
            "mean": round_half_up(sum(values) / len(values)),
            "min": values[0],
            "max": values[-1],
        }
        level_distributions[key] = {"level_counts": level_counts, "leagues": list(LEAGUE_LEVELS)}
    return {
        "distributions": distributions,
        "level_distributions": level_distributions,
        "team_size": len(attribute_map),
    }
