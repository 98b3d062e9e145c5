"""
Scheduled work: reminder queue, voting deadlines, training-pool auto-invite
and attendance tracking.

Each ``check_*`` / ``process_*`` function handles one batch and can be called
directly (tests, admin routes). ``start_background_jobs`` runs them on fixed
intervals inside the web process.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import settings
from database import db, oid, utcnow
from event_service import AUTO_DECLINE_REASON, add_months, feedback_provided, has_responded, voting_deadline_passed
from notifier import send_event_reminder, send_guest_invitations
from pool_service import involved_player_ids
from schemas import NotificationQueue

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
DUE_WINDOW = timedelta(minutes=5)
QUEUE_RETENTION = timedelta(days=2)
ATTENDANCE_GRACE = timedelta(days=7)


# -----------------------------
# Notification queue
# -----------------------------
def schedule_event_notifications(event_id: str, now: Optional[datetime] = None) -> int:
    """Replace the queued reminders of an event; returns how many were queued."""
    now = now or utcnow()
    event = db["event"].find_one({"_id": oid(event_id)})
    db["notification_queue"].delete_many({"event_id": event_id})
    if not event:
        return 0
    settings_doc = event.get("notification_settings") or {}
    if not settings_doc.get("enabled", True):
        return 0

    queued = 0
    for reminder in settings_doc.get("reminder_times") or []:
        offset = timedelta(hours=reminder.get("hours", 0), minutes=reminder.get("minutes", 0) or 0)
        scheduled = event["start_time"] - offset
        if scheduled <= now:
            continue
        entry = NotificationQueue(
            event_id=event_id,
            reminder_time={"hours": reminder.get("hours", 0), "minutes": reminder.get("minutes", 0) or 0},
            scheduled_time=scheduled,
        ).model_dump()
        db["notification_queue"].insert_one(dict(entry, created_at=now, updated_at=now))
        queued += 1
    logger.info("Scheduled %d reminder(s) for event %s", queued, event_id)
    return queued


def _already_sent(event: Mapping[str, Any], reminder: Mapping[str, Any]) -> bool:
    return any(
        s.get("reminder_time") == reminder.get("hours") and (s.get("reminder_minutes") or 0) == (reminder.get("minutes") or 0)
        for s in event.get("reminders_sent") or []
    )


def _deliver_entry(entry: Mapping[str, Any], now: datetime) -> str:
    """Send one queued reminder; returns the resulting entry status."""
    queue = db["notification_queue"]
    event = db["event"].find_one({"_id": oid(entry["event_id"])})
    if not event:
        queue.update_one({"_id": entry["_id"]}, {"$set": {
            "status": "failed", "error": "Event not found", "updated_at": now,
        }})
        return "failed"

    reminder = entry["reminder_time"]
    if _already_sent(event, reminder):
        queue.update_one({"_id": entry["_id"]}, {"$set": {"status": "sent", "updated_at": now}})
        return "sent"

    send_event_reminder(event, reminder)
    db["event"].update_one({"_id": event["_id"]}, {"$push": {"reminders_sent": {
        "reminder_time": reminder.get("hours"),
        "reminder_minutes": reminder.get("minutes") or 0,
        "sent_at": now,
    }}})
    queue.update_one({"_id": entry["_id"]}, {
        "$set": {"status": "sent", "last_attempt": now, "updated_at": now},
        "$inc": {"attempts": 1},
    })
    return "sent"


def process_pending_notifications(now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    due = list(db["notification_queue"].find({
        "status": "pending",
        "scheduled_time": {"$lte": now + DUE_WINDOW},
    }))
    logger.info("Found %d due notification(s)", len(due))
    result = {"sent": 0, "failed": 0, "retrying": 0}

    queue = db["notification_queue"]
    for entry in due:
        try:
            result[_deliver_entry(entry, now)] += 1
        except Exception as e:
            logger.exception("Sending reminder %s failed", entry["_id"])
            attempts = entry.get("attempts", 0) + 1
            status = "failed" if attempts >= MAX_ATTEMPTS else "pending"
            queue.update_one({"_id": entry["_id"]}, {"$set": {
                "status": status,
                "attempts": attempts,
                "last_attempt": now,
                "error": str(e),
                "updated_at": now,
            }})
            result["failed" if status == "failed" else "retrying"] += 1
    return result


def cleanup_old_notifications(now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - QUEUE_RETENTION
    result = db["notification_queue"].delete_many({
        "status": {"$in": ["sent", "failed"]},
        "updated_at": {"$lt": cutoff},
    })
    if result.deleted_count:
        logger.info("Removed %d old queue entries", result.deleted_count)
    return result.deleted_count


# -----------------------------
# Training-pool auto-invite
# -----------------------------
def auto_invite_due(event: Mapping[str, Any], now: datetime) -> bool:
    config = event.get("training_pool_auto_invite") or {}
    if config.get("trigger_type") == "hours_before":
        hours = config.get("hours_before_event") or 24
        return now >= event["start_time"] - timedelta(hours=hours)
    return voting_deadline_passed(event, now)


def _mark_invites_sent(event_id, now: datetime, invited: Optional[List[str]] = None) -> None:
    fields: Dict[str, Any] = {
        "training_pool_auto_invite.invites_sent": True,
        "training_pool_auto_invite.invites_sent_at": now,
        "updated_at": now,
    }
    if invited is not None:
        fields["training_pool_auto_invite.invited_pool_players"] = invited
    db["event"].update_one({"_id": event_id}, {"$set": fields})


def process_training_pool_auto_invite(event_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Backfill an under-subscribed event with every available pool player."""
    now = now or utcnow()
    event = db["event"].find_one({"_id": oid(event_id)})
    if not event:
        return {"success": False, "message": "Event nicht gefunden", "players_invited": 0}
    config = event.get("training_pool_auto_invite") or {}
    if not config.get("enabled") or not config.get("pool_id") or config.get("invites_sent"):
        return {"success": False, "message": "Auto-Einladung nicht aktiv oder bereits versendet", "players_invited": 0}
    if not auto_invite_due(event, now):
        return {"success": False, "message": "Auslösebedingung noch nicht erreicht", "players_invited": 0}

    participants = len(event.get("attending_players") or []) + len(event.get("unsure_players") or [])
    if participants >= (config.get("min_participants") or 6):
        _mark_invites_sent(event["_id"], now)
        return {"success": True, "message": "Genügend Teilnehmer", "players_invited": 0}

    pool = db["training_pool"].find_one({"_id": oid(config["pool_id"])})
    if not pool:
        logger.warning("Training pool %s of event %s not found", config["pool_id"], event_id)
        return {"success": False, "message": "Trainingspool nicht gefunden", "players_invited": 0}

    taken = involved_player_ids(event)
    candidates = [p for p in pool.get("approved_players") or [] if p.get("player_id") not in taken]
    candidates.sort(key=lambda p: (-(p.get("current_rating") or 0), -(p.get("attendance_percentage") or 0)))
    invited = [p["player_id"] for p in candidates]

    if invited:
        guests = [{"player_id": pid, "from_team": pool.get("team_id"), "added_at": now} for pid in invited]
        db["event"].update_one({"_id": event["_id"]}, {"$push": {
            "guest_players": {"$each": guests},
            "invited_players": {"$each": invited},
        }})
        db["training_pool"].update_one({"_id": pool["_id"]}, {
            "$inc": {"stats.total_invites_sent": len(invited)},
            "$set": {"stats.last_invite_date": now, "updated_at": now},
        })
    _mark_invites_sent(event["_id"], now, invited)

    if invited:
        try:
            send_guest_invitations(event, invited)
        except Exception:
            logger.exception("Notifying pool players of event %s failed", event_id)
    logger.info("Auto-invited %d player(s) from pool %s to event %s", len(invited), pool.get("name"), event_id)
    return {
        "success": True,
        "message": f"{len(invited)} Spieler aus Pool {pool.get('name')} eingeladen",
        "players_invited": len(invited),
        "invited_player_ids": invited,
    }


def check_and_trigger_auto_invite(event_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    now = now or utcnow()
    event = db["event"].find_one({"_id": oid(event_id)}, {"training_pool_auto_invite": 1, "voting_deadline": 1,
                                                          "start_time": 1})
    if not event:
        return None
    config = event.get("training_pool_auto_invite") or {}
    if not config.get("enabled") or config.get("invites_sent") or not auto_invite_due(event, now):
        return None
    return process_training_pool_auto_invite(event_id, now)


# -----------------------------
# Voting deadlines
# -----------------------------
def process_voting_deadline(event_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Decline every invited player without a response once the deadline passed."""
    now = now or utcnow()
    event = db["event"].find_one({"_id": oid(event_id)})
    if not event or event.get("auto_decline_processed"):
        return {"success": False, "message": "Event nicht gefunden oder bereits verarbeitet", "players_declined": 0}
    if not voting_deadline_passed(event, now):
        return {"success": False, "message": "Abstimmungsfrist noch nicht erreicht", "players_declined": 0}

    silent = [p for p in dict.fromkeys(event.get("invited_players") or []) if not has_responded(event, p)]
    declined = list(event.get("declined_players") or []) + silent
    responses = [r for r in event.get("player_responses") or [] if r.get("player_id") not in silent]
    responses.extend(
        {"player_id": p, "status": "declined", "reason": AUTO_DECLINE_REASON, "responded_at": now}
        for p in silent
    )
    db["event"].update_one({"_id": event["_id"]}, {"$set": {
        "declined_players": declined,
        "player_responses": responses,
        "auto_decline_processed": True,
        "updated_at": now,
    }})
    logger.info("Auto-declined %d player(s) for event %s", len(silent), event_id)

    result: Dict[str, Any] = {"success": True, "players_declined": len(silent)}
    config = event.get("training_pool_auto_invite") or {}
    if config.get("enabled") and config.get("trigger_type", "deadline") == "deadline":
        result["auto_invite"] = process_training_pool_auto_invite(event_id, now)
    return result


def check_voting_deadlines(now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    expired = [str(e["_id"]) for e in db["event"].find(
        {"voting_deadline": {"$lte": now}, "auto_decline_processed": {"$ne": True}}, {"_id": 1},
    )]
    for event_id in expired:
        try:
            process_voting_deadline(event_id, now)
        except Exception:
            logger.exception("Processing voting deadline of event %s failed", event_id)

    pending_invites = [str(e["_id"]) for e in db["event"].find({
        "training_pool_auto_invite.enabled": True,
        "training_pool_auto_invite.invites_sent": {"$ne": True},
        "start_time": {"$gt": now},
    }, {"_id": 1})]
    for event_id in pending_invites:
        try:
            check_and_trigger_auto_invite(event_id, now)
        except Exception:
            logger.exception("Auto-invite check of event %s failed", event_id)
    return len(expired)


# -----------------------------
# Attendance
# -----------------------------
def _default_attendance() -> Dict[str, Any]:
    return {
        "total_events": 0,
        "attended_events": 0,
        "attendance_percentage": 0,
        "events_last_3_months": 0,
        "attended_last_3_months": 0,
        "attendance_percentage_3_months": 0,
        "monthly_breakdown": [],
    }


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0


def _update_month(breakdown: List[Dict[str, Any]], month: str, attended: bool) -> List[Dict[str, Any]]:
    breakdown = [dict(m) for m in breakdown]
    for item in breakdown:
        if item.get("month") == month:
            item["total_events"] += 1
            item["attended_events"] += 1 if attended else 0
            break
    else:
        item = {"month": month, "total_events": 1, "attended_events": 1 if attended else 0}
        breakdown.append(item)
    item["percentage"] = round(item["attended_events"] / item["total_events"] * 100)
    return breakdown


def record_attendance(event: Mapping[str, Any], attending_ids: Iterable[str], now: Optional[datetime] = None) -> int:
    """Count an event for every invited and guest player; returns players updated."""
    now = now or utcnow()
    attending = set(attending_ids)
    players = list(dict.fromkeys(
        list(event.get("invited_players") or []) + [g.get("player_id") for g in event.get("guest_players") or []]
    ))
    since = add_months(now, -3)
    month = event["start_time"].strftime("%Y-%m")
    updated = 0

    for player_id in players:
        user = db["user"].find_one({"_id": oid(player_id)}, {"attendance": 1})
        if not user:
            logger.debug("Skipping attendance for unknown player %s", player_id)
            continue
        stats = dict(_default_attendance(), **(user.get("attendance") or {}))
        attended = player_id in attending
        stats["total_events"] += 1
        stats["attended_events"] += 1 if attended else 0
        stats["attendance_percentage"] = _percentage(stats["attended_events"], stats["total_events"])

        recent = list(db["event"].find({
            "$or": [{"invited_players": player_id}, {"guest_players.player_id": player_id}],
            "start_time": {"$gte": since, "$lte": now},
        }, {"attending_players": 1}))
        in_period = len(recent)
        attended_in_period = sum(
            1 for e in recent
            if (attended if e["_id"] == event["_id"] else player_id in (e.get("attending_players") or []))
        )
        stats["events_last_3_months"] = in_period
        stats["attended_last_3_months"] = attended_in_period
        stats["attendance_percentage_3_months"] = _percentage(attended_in_period, in_period)
        stats["monthly_breakdown"] = _update_month(stats.get("monthly_breakdown") or [], month, attended)

        db["user"].update_one({"_id": user["_id"]}, {"$set": {"attendance": stats, "updated_at": now}})
        updated += 1
    return updated


def check_attendance_processing(now: Optional[datetime] = None) -> int:
    """Process attendance for events that ended a week ago without coach feedback."""
    now = now or utcnow()
    candidates = db["event"].find({
        "end_time": {"$lt": now - ATTENDANCE_GRACE},
        "attendance_auto_processed": {"$ne": True},
    })
    processed = 0
    for event in candidates:
        if feedback_provided(event):
            continue
        try:
            record_attendance(event, event.get("attending_players") or [], now)
            db["event"].update_one({"_id": event["_id"]}, {"$set": {
                "attendance_auto_processed": True,
                "attendance_processed_at": now,
            }})
            processed += 1
        except Exception:
            logger.exception("Attendance processing of event %s failed", event["_id"])
    logger.info("Processed attendance for %d event(s)", processed)
    return processed


# -----------------------------
# Polling loops
# -----------------------------
async def _poll(name: str, interval: int, work: Callable[[], Any], initial_delay: int = 0) -> None:
    if initial_delay:
        await asyncio.sleep(initial_delay)
    while True:
        try:
            await asyncio.to_thread(work)
        except Exception:
            logger.exception("Background job %s failed", name)
        await asyncio.sleep(interval)


def start_background_jobs() -> List[asyncio.Task]:
    logger.info("Starting background jobs")
    return [
        asyncio.create_task(_poll("notification-queue", settings.NOTIFICATION_QUEUE_INTERVAL,
                                  process_pending_notifications)),
        asyncio.create_task(_poll("notification-cleanup", settings.NOTIFICATION_CLEANUP_INTERVAL,
                                  cleanup_old_notifications)),
        asyncio.create_task(_poll("voting-deadlines", settings.VOTING_DEADLINE_INTERVAL,
                                  check_voting_deadlines, initial_delay=5)),
        asyncio.create_task(_poll("attendance", settings.ATTENDANCE_INTERVAL, check_attendance_processing)),
    ]


async def stop_background_jobs(tasks: List[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Background jobs stopped")
