import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import get_current_user, require_coach, require_player, user_id
from database import db, get_or_404, naive_utc, oid, serialize, utcnow
from event_service import (
    EventError,
    add_guest,
    base_event,
    can_view,
    convert_to_recurring,
    create_events,
    delete_events,
    events_for_user,
    record_quick_feedback,
    remove_guest,
    respond,
    update_series,
    update_single,
)
from jobs import (
    check_and_trigger_auto_invite,
    process_training_pool_auto_invite,
    record_attendance,
    schedule_event_notifications,
)
from notifier import send_guest_invitations
from schemas import AutoInviteSettings, Event, EventType, NotificationSettings, RecurringPattern

logger = logging.getLogger(__name__)

router = APIRouter()

DATE_FIELDS = ("start_time", "end_time", "voting_deadline", "recurring_end_date")


class EventIn(BaseModel):
    title: str = Field(..., min_length=1)
    type: EventType
    start_time: datetime
    end_time: datetime
    location: str
    teams: List[str] = Field(..., min_length=1)
    organizing_teams: Optional[List[str]] = None
    description: Optional[str] = None
    invited_players: Optional[List[str]] = None
    uninvited_players: List[str] = Field(default_factory=list)
    voting_deadline: Optional[datetime] = None
    is_open_access: bool = False
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    recurring_end_date: Optional[datetime] = None
    notification_settings: Optional[NotificationSettings] = None
    training_pool_auto_invite: Optional[AutoInviteSettings] = None


class EventUpdateIn(BaseModel):
    title: Optional[str] = None
    type: Optional[EventType] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    teams: Optional[List[str]] = None
    organizing_teams: Optional[List[str]] = None
    description: Optional[str] = None
    invited_players: Optional[List[str]] = None
    uninvited_players: Optional[List[str]] = None
    voting_deadline: Optional[datetime] = None
    is_open_access: Optional[bool] = None
    notification_settings: Optional[NotificationSettings] = None
    training_pool_auto_invite: Optional[AutoInviteSettings] = None
    update_recurring: bool = False
    convert_to_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    recurring_end_date: Optional[datetime] = None


class ResponseIn(BaseModel):
    reason: Optional[str] = None


class GuestIn(BaseModel):
    player_id: str
    from_team_id: Optional[str] = None


class QuickFeedbackIn(BaseModel):
    provided: bool = True
    attended_players: Optional[List[str]] = None


def _naive(data: Dict[str, Any]) -> Dict[str, Any]:
    for key in DATE_FIELDS:
        if data.get(key) is not None:
            data[key] = naive_utc(data[key])
    return data


def _event_or_404(event_id: str) -> Dict[str, Any]:
    return get_or_404("event", event_id, "Event nicht gefunden")


def _reschedule(event_ids: List[str]) -> None:
    for event_id in event_ids:
        schedule_event_notifications(event_id)


# -----------------------------
# CRUD
# -----------------------------
@router.post("", status_code=201)
def create_event(payload: EventIn, coach=Depends(require_coach)):
    data = _naive(payload.model_dump(exclude={"is_recurring", "recurring_pattern", "recurring_end_date"},
                                     exclude_none=True))
    teams = [get_or_404("team", t, "Team nicht gefunden") for t in payload.teams]
    base = Event(**base_event(data, teams, user_id(coach))).model_dump()

    pattern = until = None
    if payload.is_recurring:
        if not payload.recurring_pattern or not payload.recurring_end_date:
            raise HTTPException(status_code=400, detail="Wiederholungsmuster und Enddatum erforderlich")
        pattern, until = payload.recurring_pattern, naive_utc(payload.recurring_end_date)
    ids = create_events(base, pattern, until)
    _reschedule(ids)
    logger.info("Event %s created by %s (%d occurrence(s))", payload.title, user_id(coach), len(ids))

    out = serialize(db["event"].find_one({"_id": oid(ids[0])}))
    out["created_events"] = len(ids)
    return out


@router.get("")
def list_events(on: Optional[date] = Query(default=None, alias="date"), user=Depends(get_current_user)):
    day = datetime.combine(on, datetime.min.time()) if on else None
    return [serialize(e) for e in events_for_user(user, day)]


@router.get("/{event_id}")
def get_event(event_id: str, user=Depends(get_current_user)):
    event = _event_or_404(event_id)
    if not can_view(event, user):
        raise HTTPException(status_code=403, detail="Keine Berechtigung für dieses Event")
    return serialize(event)


@router.put("/{event_id}")
def update_event(event_id: str, payload: EventUpdateIn, coach=Depends(require_coach)):
    event = _event_or_404(event_id)
    changes = _naive(payload.model_dump(
        exclude_unset=True,
        exclude={"update_recurring", "convert_to_recurring", "recurring_pattern", "recurring_end_date"},
    ))

    if payload.convert_to_recurring:
        if not payload.recurring_pattern or not payload.recurring_end_date:
            raise HTTPException(status_code=400, detail="Wiederholungsmuster und Enddatum erforderlich")
        ids = convert_to_recurring(event, changes, payload.recurring_pattern,
                                   naive_utc(payload.recurring_end_date))
        _reschedule(ids)
        out = serialize(db["event"].find_one({"_id": event["_id"]}))
        out["created_events"] = len(ids) - 1
        return out

    if payload.update_recurring and event.get("recurring_group_id"):
        update_series(event, changes)
        ids = [str(e["_id"]) for e in db["event"].find({"recurring_group_id": event["recurring_group_id"]}, {"_id": 1})]
        _reschedule(ids)
        out = serialize(db["event"].find_one({"_id": event["_id"]}))
        out["updated_events"] = len(ids)
        return out

    updated = update_single(event, changes)
    if {"start_time", "notification_settings"} & set(changes):
        _reschedule([event_id])
    return serialize(updated)


@router.delete("/{event_id}")
def delete_event(event_id: str, delete_recurring: bool = False, coach=Depends(require_coach)):
    event = _event_or_404(event_id)
    deleted = delete_events(event, delete_recurring)
    logger.info("Deleted %d event(s) starting from %s", deleted, event_id)
    return {"message": "Event gelöscht", "deleted_count": deleted}


# -----------------------------
# RSVP
# -----------------------------
def _respond(event_id: str, user: Dict[str, Any], status: str, reason: Optional[str]) -> Dict[str, Any]:
    event = _event_or_404(event_id)
    respond(event, user_id(user), status, reason)
    check_and_trigger_auto_invite(event_id)
    return serialize(db["event"].find_one({"_id": event["_id"]}))


@router.post("/{event_id}/accept")
def accept_event(event_id: str, player=Depends(require_player)):
    return _respond(event_id, player, "accepted", None)


@router.post("/{event_id}/decline")
def decline_event(event_id: str, payload: ResponseIn, player=Depends(require_player)):
    return _respond(event_id, player, "declined", payload.reason)


@router.post("/{event_id}/unsure")
def mark_unsure(event_id: str, payload: ResponseIn, player=Depends(require_player)):
    return _respond(event_id, player, "unsure", payload.reason)


# -----------------------------
# Guests & feedback
# -----------------------------
@router.post("/{event_id}/guests")
def add_guest_player(event_id: str, payload: GuestIn, coach=Depends(require_coach)):
    event = _event_or_404(event_id)
    get_or_404("user", payload.player_id, "Spieler nicht gefunden")
    add_guest(event, payload.player_id, payload.from_team_id)
    send_guest_invitations(event, [payload.player_id])
    return serialize(db["event"].find_one({"_id": event["_id"]}))


@router.delete("/{event_id}/guests/{player_id}")
def remove_guest_player(event_id: str, player_id: str, coach=Depends(require_coach)):
    event = _event_or_404(event_id)
    remove_guest(event, player_id)
    return serialize(db["event"].find_one({"_id": event["_id"]}))


@router.post("/{event_id}/quick-feedback")
def quick_feedback(event_id: str, payload: QuickFeedbackIn, coach=Depends(require_coach)):
    event = _event_or_404(event_id)
    if payload.attended_players is not None and event.get("attendance_auto_processed"):
        raise EventError("Anwesenheit wurde bereits erfasst")
    record_quick_feedback(event, user_id(coach), payload.provided)
    if payload.attended_players is not None:
        record_attendance(event, payload.attended_players)
        db["event"].update_one({"_id": event["_id"]}, {"$set": {
            "attending_players": payload.attended_players,
            "attendance_auto_processed": True,
            "attendance_processed_at": utcnow(),
        }})
    return serialize(db["event"].find_one({"_id": event["_id"]}))


@router.post("/{event_id}/trigger-auto-invite")
def trigger_auto_invite(event_id: str, coach=Depends(require_coach)):
    _event_or_404(event_id)
    return process_training_pool_auto_invite(event_id)
