"""
In-app notification delivery.

Every message lands in the ``notification`` collection; push transport is
handled outside this service. Users opt out per message kind through the
preferences on their push subscription.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from database import db, oid, utcnow
from schemas import Notification

logger = logging.getLogger(__name__)

PREFERENCE_KEYS = {
    "event_reminder": "event_reminders",
    "guest_invitation": "guest_invitations",
    "team_update": "team_updates",
}


def format_reminder_time(hours: int, minutes: int = 0) -> str:
    if hours == 0 and minutes == 0:
        return "jetzt"
    if hours == 0:
        return f"{minutes} Minuten"
    if minutes == 0:
        return f"{hours} Stunden"
    return f"{hours} Stunden und {minutes} Minuten"


def _opted_out(user_ids: List[str], kind: str) -> set:
    key = PREFERENCE_KEYS.get(kind)
    if key is None:
        return set()
    return {
        s["user_id"]
        for s in db["push_subscription"].find({"user_id": {"$in": user_ids}, f"preferences.{key}": False})
    }


def notify_users(user_ids: Iterable[str], title: str, message: str, kind: str = "info",
                 data: Optional[Dict[str, Any]] = None) -> int:
    """Create one notification per user; returns how many were written."""
    unique = list(dict.fromkeys(u for u in user_ids if u))
    if not unique:
        return 0
    skipped = _opted_out(unique, kind)
    now = utcnow()
    docs = []
    for user_id in unique:
        if user_id in skipped:
            continue
        doc = Notification(user_id=user_id, title=title, message=message, type=kind, data=dict(data or {}))
        docs.append(dict(doc.model_dump(), created_at=now, updated_at=now))
    if docs:
        db["notification"].insert_many(docs)
    return len(docs)


def reminder_recipients(event: Mapping[str, Any]) -> List[str]:
    """Attending, invited and team players of an event, minus uninvited ones."""
    uninvited = set(event.get("uninvited_players") or [])
    recipients = list(event.get("attending_players") or []) + list(event.get("invited_players") or [])
    for team_id in event.get("teams") or []:
        team = db["team"].find_one({"_id": oid(team_id)}, {"players": 1})
        if team:
            recipients.extend(p for p in team.get("players") or [] if p not in uninvited)
    return list(dict.fromkeys(recipients))


def send_event_reminder(event: Mapping[str, Any], reminder_time: Mapping[str, Any]) -> int:
    hours = reminder_time.get("hours", 0)
    minutes = reminder_time.get("minutes", 0) or 0
    settings = event.get("notification_settings") or {}
    message = settings.get("custom_message") or (
        f"{event['title']} beginnt in {format_reminder_time(hours, minutes)}"
    )
    sent = notify_users(
        reminder_recipients(event),
        f"Event-Erinnerung: {event['title']}",
        message,
        kind="event_reminder",
        data={"event_id": str(event["_id"]), "reminder_time": hours, "url": f"/player/events/{event['_id']}"},
    )
    logger.info("Event reminder for %s delivered to %d user(s)", event["_id"], sent)
    return sent


def send_guest_invitations(event: Mapping[str, Any], player_ids: List[str]) -> int:
    start = event["start_time"].strftime("%d.%m.%Y %H:%M")
    return notify_users(
        player_ids,
        f"Einladung: {event['title']}",
        f"Du wurdest als Gastspieler zu {event['title']} am {start} eingeladen",
        kind="guest_invitation",
        data={"event_id": str(event["_id"]), "url": f"/player/events/{event['_id']}"},
    )
