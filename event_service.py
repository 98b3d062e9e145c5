"""
Event lifecycle: recurring series, RSVP transitions, guests and quick feedback.

Recurring events are materialised up front, one document per occurrence.
The first document is the series parent and every occurrence carries the
parent's id as ``recurring_group_id``.
"""
import calendar
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from database import create_document, db, oid, utcnow
from schemas import NotificationSettings

logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 200
AUTO_DECLINE_REASON = "Automatisch abgelehnt - Abstimmungsfrist abgelaufen"

# Fields an occurrence inherits from its series
SERIES_FIELDS = (
    "title", "type", "location", "teams", "organizing_teams", "description",
    "invited_players", "uninvited_players", "is_open_access", "notification_settings",
    "training_pool_auto_invite",
)


class EventError(ValueError):
    pass


class EventAccessError(EventError):
    pass


# -----------------------------
# Recurrence
# -----------------------------
def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def generate_occurrences(start: datetime, end: datetime, pattern: str,
                         until: datetime) -> List[Tuple[datetime, datetime]]:
    """(start, end) pairs of a series; the first one is the base event.

    Monthly occurrences keep the day of month and fall back to the last day
    of shorter months.
    """
    if end <= start:
        raise EventError("Endzeit muss nach der Startzeit liegen")
    if pattern not in ("weekly", "biweekly", "monthly"):
        raise EventError("Ungültiges Wiederholungsmuster")
    duration = end - start
    occurrences = [(start, end)]
    step = 1
    while True:
        if pattern == "monthly":
            current = add_months(start, step)
        else:
            current = start + timedelta(days=(7 if pattern == "weekly" else 14) * step)
        if current > until:
            break
        if len(occurrences) >= MAX_OCCURRENCES:
            raise EventError("Zu viele Wiederholungen für diesen Zeitraum")
        occurrences.append((current, current + duration))
        step += 1
    return occurrences


def base_event(data: Mapping[str, Any], teams: List[Mapping[str, Any]], created_by: str) -> Dict[str, Any]:
    """Event document for a create request before recurrence is applied."""
    if not teams:
        raise EventError("Mindestens ein Team erforderlich")
    if data["end_time"] <= data["start_time"]:
        raise EventError("Endzeit muss nach der Startzeit liegen")
    team_ids = [str(t["_id"]) for t in teams]
    invited = data.get("invited_players")
    if invited is None:
        invited = []
        for team in teams:
            for player_id in team.get("players") or []:
                if player_id not in invited:
                    invited.append(player_id)
    settings = data.get("notification_settings") or NotificationSettings().model_dump()
    auto_invite = dict(data.get("training_pool_auto_invite") or {})
    auto_invite.setdefault("enabled", False)
    auto_invite.setdefault("pool_id", None)
    auto_invite.setdefault("min_participants", 6)
    auto_invite.setdefault("trigger_type", "deadline")
    auto_invite.setdefault("hours_before_event", 24)
    auto_invite.update(invites_sent=False, invites_sent_at=None, invited_pool_players=[])
    return {
        "title": data["title"],
        "type": data["type"],
        "start_time": data["start_time"],
        "end_time": data["end_time"],
        "location": data["location"],
        "teams": team_ids,
        "organizing_teams": data.get("organizing_teams") or team_ids[:1],
        "description": data.get("description"),
        "created_by": created_by,
        "invited_players": list(invited),
        "attending_players": [],
        "declined_players": [],
        "unsure_players": [],
        "uninvited_players": list(data.get("uninvited_players") or []),
        "player_responses": [],
        "guest_players": [],
        "voting_deadline": data.get("voting_deadline"),
        "auto_decline_processed": False,
        "is_open_access": bool(data.get("is_open_access", False)),
        "is_recurring": False,
        "recurring_pattern": None,
        "recurring_end_date": None,
        "recurring_group_id": None,
        "is_recurring_instance": False,
        "original_start_time": None,
        "notification_settings": settings,
        "reminders_sent": [],
        "training_pool_auto_invite": auto_invite,
        "quick_feedback": [],
        "attendance_auto_processed": False,
        "attendance_processed_at": None,
    }


def _shift_deadline(base: Mapping[str, Any], start: datetime) -> Optional[datetime]:
    deadline = base.get("voting_deadline")
    if deadline is None:
        return None
    return start - (base["start_time"] - deadline)


def _create_instances(parent_id: str, base: Mapping[str, Any],
                      occurrences: List[Tuple[datetime, datetime]]) -> List[str]:
    ids = []
    for start, end in occurrences:
        instance = dict(base)
        instance.update(
            start_time=start,
            end_time=end,
            voting_deadline=_shift_deadline(base, start),
            is_recurring=False,
            recurring_pattern=None,
            recurring_end_date=None,
            recurring_group_id=parent_id,
            is_recurring_instance=True,
            original_start_time=start,
        )
        instance.pop("_id", None)
        ids.append(create_document("event", instance))
    return ids


def create_events(base: Dict[str, Any], pattern: Optional[str] = None,
                  until: Optional[datetime] = None) -> List[str]:
    """Insert a single event or a whole series; returns the new ids, parent first."""
    if not pattern or until is None:
        return [create_document("event", base)]

    occurrences = generate_occurrences(base["start_time"], base["end_time"], pattern, until)
    parent = dict(base, is_recurring=True, recurring_pattern=pattern, recurring_end_date=until)
    parent_id = create_document("event", parent)
    db["event"].update_one({"_id": oid(parent_id)}, {"$set": {"recurring_group_id": parent_id}})
    ids = [parent_id] + _create_instances(parent_id, parent, occurrences[1:])
    logger.info("Created recurring series %s with %d events", parent_id, len(ids))
    return ids


# -----------------------------
# Updates
# -----------------------------
def _with_time_of(day: datetime, clock: datetime) -> datetime:
    return datetime.combine(day.date(), clock.time())


def update_single(event: Mapping[str, Any], changes: Mapping[str, Any]) -> Dict[str, Any]:
    start = changes.get("start_time", event["start_time"])
    end = changes.get("end_time", event["end_time"])
    if end <= start:
        raise EventError("Endzeit muss nach der Startzeit liegen")
    fields = dict(changes)
    fields["updated_at"] = utcnow()
    db["event"].update_one({"_id": event["_id"]}, {"$set": fields})
    return db["event"].find_one({"_id": event["_id"]})


def _retime_series(items: List[Mapping[str, Any]], new_start: Optional[datetime],
                   new_end: Optional[datetime]) -> List[Tuple[Any, Dict[str, Any]]]:
    if new_start is None and new_end is None:
        return []
    retimed = []
    for item in items:
        duration = item["end_time"] - item["start_time"]
        start = _with_time_of(item["start_time"], new_start) if new_start is not None else None
        end = _with_time_of(item["end_time"], new_end) if new_end is not None else None
        if start is None:
            start = end - duration
        if end is None:
            end = start + duration
        if end <= start:
            raise EventError("Endzeit muss nach der Startzeit liegen")
        times = {"start_time": start, "end_time": end}
        if item.get("voting_deadline") is not None:
            times["voting_deadline"] = item["voting_deadline"] + (start - item["start_time"])
        retimed.append((item["_id"], times))
    return retimed


def update_series(event: Mapping[str, Any], changes: Mapping[str, Any]) -> int:
    """Apply changes to every event of the series.

    A new start or end time only changes the time of day; every occurrence
    keeps its own date. When only one bound is given the other one follows
    from the occurrence's duration, and the voting deadline moves with the
    start.
    """
    group_id = event.get("recurring_group_id")
    if not group_id:
        raise EventError("Event gehört zu keiner Serie")
    items = list(db["event"].find({"recurring_group_id": group_id}))
    retimed = _retime_series(items, changes.get("start_time"), changes.get("end_time"))

    shared = {k: v for k, v in changes.items() if k in SERIES_FIELDS}
    now = utcnow()
    if shared:
        db["event"].update_many({"recurring_group_id": group_id}, {"$set": dict(shared, updated_at=now)})
    for item_id, times in retimed:
        db["event"].update_one({"_id": item_id}, {"$set": dict(times, updated_at=now)})
    count = len(items)
    logger.info("Updated %d events of series %s", count, group_id)
    return count


def convert_to_recurring(event: Mapping[str, Any], changes: Mapping[str, Any], pattern: str,
                         until: datetime) -> List[str]:
    if event.get("is_recurring") or event.get("is_recurring_instance"):
        raise EventError("Event ist bereits Teil einer Serie")
    merged = dict(event)
    merged.update(changes)
    occurrences = generate_occurrences(merged["start_time"], merged["end_time"], pattern, until)
    event_id = str(event["_id"])
    parent_fields = dict(changes)
    parent_fields.update(
        is_recurring=True,
        recurring_pattern=pattern,
        recurring_end_date=until,
        recurring_group_id=event_id,
        updated_at=utcnow(),
    )
    db["event"].update_one({"_id": event["_id"]}, {"$set": parent_fields})
    merged.update(parent_fields)
    base = {k: merged.get(k) for k in SERIES_FIELDS}
    base.update(
        start_time=merged["start_time"],
        created_by=merged.get("created_by"),
        voting_deadline=merged.get("voting_deadline"),
        attending_players=[],
        declined_players=[],
        unsure_players=[],
        player_responses=[],
        guest_players=[],
        auto_decline_processed=False,
        reminders_sent=[],
        quick_feedback=[],
        attendance_auto_processed=False,
        attendance_processed_at=None,
    )
    base["training_pool_auto_invite"] = dict(
        base.get("training_pool_auto_invite") or {},
        invites_sent=False, invites_sent_at=None, invited_pool_players=[],
    )
    ids = _create_instances(event_id, base, occurrences[1:])
    return [event_id] + ids


def delete_events(event: Mapping[str, Any], delete_recurring: bool = False) -> int:
    if delete_recurring and event.get("recurring_group_id"):
        ids = [str(e["_id"]) for e in db["event"].find({"recurring_group_id": event["recurring_group_id"]}, {"_id": 1})]
        result = db["event"].delete_many({"recurring_group_id": event["recurring_group_id"]})
    else:
        ids = [str(event["_id"])]
        result = db["event"].delete_one({"_id": event["_id"]})
    db["notification_queue"].delete_many({"event_id": {"$in": ids}})
    return result.deleted_count


# -----------------------------
# RSVP
# -----------------------------
def is_guest(event: Mapping[str, Any], player_id: str) -> bool:
    return any(g.get("player_id") == player_id for g in event.get("guest_players") or [])


def can_view(event: Mapping[str, Any], user: Mapping[str, Any]) -> bool:
    user_id = str(user["_id"])
    if user.get("role") == "Trainer" or event.get("is_open_access"):
        return True
    if user_id in (event.get("uninvited_players") or []):
        return False
    if any(user_id in (event.get(key) or []) for key in
           ("invited_players", "attending_players", "declined_players", "unsure_players")):
        return True
    if is_guest(event, user_id):
        return True
    return bool(set(user.get("teams") or []) & set(event.get("teams") or []))


def voting_deadline_passed(event: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
    deadline = event.get("voting_deadline")
    return deadline is not None and (now or utcnow()) >= deadline


def _check_may_respond(event: Mapping[str, Any], player_id: str, now: Optional[datetime]) -> None:
    allowed = (
        event.get("is_open_access")
        or player_id in (event.get("invited_players") or [])
        or is_guest(event, player_id)
    )
    if not allowed:
        raise EventAccessError("Nicht zu diesem Event eingeladen")
    # guests may still answer after the deadline
    if voting_deadline_passed(event, now) and not is_guest(event, player_id):
        raise EventError("Die Abstimmungsfrist ist abgelaufen")


def _without(items: Optional[List[str]], player_id: str) -> List[str]:
    return [p for p in items or [] if p != player_id]


def _set_response(event: Dict[str, Any], player_id: str, status: str, reason: Optional[str],
                  now: datetime) -> None:
    responses = [r for r in event.get("player_responses") or [] if r.get("player_id") != player_id]
    if status != "accepted":
        responses.append({"player_id": player_id, "status": status, "reason": reason, "responded_at": now})
    event["player_responses"] = responses


def apply_response(event: Dict[str, Any], player_id: str, status: str, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    """Move a player into exactly one of attending, declined or unsure."""
    now = now or utcnow()
    lists = {"accepted": "attending_players", "declined": "declined_players", "unsure": "unsure_players"}
    if status not in lists:
        raise EventError("Ungültiger Antwortstatus")
    for key in lists.values():
        event[key] = _without(event.get(key), player_id)
    event[lists[status]].append(player_id)
    _set_response(event, player_id, status, reason, now)
    return event


def respond(event: Dict[str, Any], player_id: str, status: str, reason: Optional[str] = None,
            now: Optional[datetime] = None) -> Dict[str, Any]:
    _check_may_respond(event, player_id, now)
    apply_response(event, player_id, status, reason, now)
    save_responses(event)
    return event


def save_responses(event: Mapping[str, Any]) -> None:
    db["event"].update_one({"_id": event["_id"]}, {"$set": {
        "attending_players": event.get("attending_players") or [],
        "declined_players": event.get("declined_players") or [],
        "unsure_players": event.get("unsure_players") or [],
        "player_responses": event.get("player_responses") or [],
        "updated_at": utcnow(),
    }})


def has_responded(event: Mapping[str, Any], player_id: str) -> bool:
    return any(player_id in (event.get(key) or []) for key in
               ("attending_players", "declined_players", "unsure_players"))


# -----------------------------
# Guests & feedback
# -----------------------------
def add_guest(event: Mapping[str, Any], player_id: str, from_team_id: Optional[str],
              now: Optional[datetime] = None) -> None:
    if is_guest(event, player_id):
        raise EventError("Spieler ist bereits Gast")
    guest = {"player_id": player_id, "from_team": from_team_id, "added_at": now or utcnow()}
    db["event"].update_one({"_id": event["_id"]}, {
        "$push": {"guest_players": guest},
        "$set": {"updated_at": utcnow()},
    })


def remove_guest(event: Mapping[str, Any], player_id: str) -> None:
    db["event"].update_one({"_id": event["_id"]}, {
        "$pull": {"guest_players": {"player_id": player_id}},
        "$set": {"updated_at": utcnow()},
    })


def record_quick_feedback(event: Mapping[str, Any], coach_id: str, provided: bool = True,
                          now: Optional[datetime] = None) -> None:
    entry = {"coach_id": coach_id, "provided_at": now or utcnow(), "provided": provided}
    db["event"].update_one({"_id": event["_id"]}, {"$push": {"quick_feedback": entry}})


def feedback_provided(event: Mapping[str, Any]) -> bool:
    return any(f.get("provided") for f in event.get("quick_feedback") or [])


# -----------------------------
# Queries
# -----------------------------
def events_for_user(user: Mapping[str, Any], day: Optional[datetime] = None) -> List[Dict[str, Any]]:
    flt: Dict[str, Any] = {}
    if day is not None:
        start = datetime.combine(day.date(), datetime.min.time())
        flt["start_time"] = {"$gte": start, "$lt": start + timedelta(days=1)}
    if user.get("role") != "Trainer":
        user_id = str(user["_id"])
        team_ids = [str(t["_id"]) for t in db["team"].find({"players": user_id}, {"_id": 1})]
        flt["$or"] = [
            {"teams": {"$in": team_ids}},
            {"invited_players": user_id},
            {"attending_players": user_id},
            {"declined_players": user_id},
            {"unsure_players": user_id},
            {"guest_players.player_id": user_id},
            {"is_open_access": True},
        ]
        events = [e for e in db["event"].find(flt).sort("start_time", 1)
                  if user_id not in (e.get("uninvited_players") or [])]
        return events
    return list(db["event"].find(flt).sort("start_time", 1))
