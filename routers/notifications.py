import logging
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import get_current_user, user_id
from database import db, naive_utc, oid, serialize, utcnow
from notifier import notify_users
from schemas import PushSubscription

logger = logging.getLogger(__name__)

router = APIRouter()


class SubscriptionIn(BaseModel):
    endpoint: str = Field(..., min_length=1)
    expiration_time: Optional[datetime] = None
    keys: Dict[str, str] = Field(default_factory=dict)


class PreferencesIn(BaseModel):
    event_reminders: Optional[bool] = None
    guest_invitations: Optional[bool] = None
    team_updates: Optional[bool] = None
    reminder_hours: Optional[int] = Field(default=None, ge=1, le=168)


@router.post("/subscribe")
def subscribe(payload: SubscriptionIn, user=Depends(get_current_user)):
    me = user_id(user)
    existing = db["push_subscription"].find_one({"user_id": me})
    now = utcnow()
    fields = {
        "endpoint": payload.endpoint,
        "expiration_time": naive_utc(payload.expiration_time),
        "keys": payload.keys,
        "updated_at": now,
    }
    if existing:
        db["push_subscription"].update_one({"_id": existing["_id"]}, {"$set": fields})
    else:
        doc = PushSubscription(user_id=me, endpoint=payload.endpoint, keys=payload.keys).model_dump()
        doc.update(fields, created_at=now)
        db["push_subscription"].insert_one(doc)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"notification_prompt_shown": True}})
    logger.info("Push subscription stored for user %s", me)
    return {"message": "Benachrichtigungen aktiviert"}


@router.delete("/unsubscribe")
def unsubscribe(user=Depends(get_current_user)):
    result = db["push_subscription"].delete_many({"user_id": user_id(user)})
    return {"message": "Benachrichtigungen deaktiviert", "removed": result.deleted_count}


@router.put("/preferences")
def update_preferences(payload: PreferencesIn, user=Depends(get_current_user)):
    subscription = db["push_subscription"].find_one({"user_id": user_id(user)})
    if not subscription:
        raise HTTPException(status_code=404, detail="Kein Abonnement gefunden")
    changes = {f"preferences.{k}": v for k, v in payload.model_dump(exclude_none=True).items()}
    changes["updated_at"] = utcnow()
    db["push_subscription"].update_one({"_id": subscription["_id"]}, {"$set": changes})
    return serialize(db["push_subscription"].find_one({"_id": subscription["_id"]}))["preferences"]


@router.get("/status")
def subscription_status(user=Depends(get_current_user)):
    subscription = db["push_subscription"].find_one({"user_id": user_id(user)})
    return {
        "subscribed": subscription is not None,
        "preferences": (subscription or {}).get("preferences"),
        "prompt_shown": bool(user.get("notification_prompt_shown")),
        "prompt_dismissed_at": user.get("notification_prompt_dismissed_at"),
    }


@router.post("/dismiss-prompt")
def dismiss_prompt(user=Depends(get_current_user)):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {
        "notification_prompt_shown": True,
        "notification_prompt_dismissed_at": utcnow(),
    }})
    return {"message": "Hinweis ausgeblendet"}


@router.post("/test")
def send_test(user=Depends(get_current_user)):
    sent = notify_users([user_id(user)], "Test-Benachrichtigung", "Benachrichtigungen funktionieren")
    return {"message": "Testbenachrichtigung gesendet", "sent": sent}


# -----------------------------
# Inbox
# -----------------------------
@router.get("")
def list_notifications(unread_only: bool = False, limit: int = Query(default=50, ge=1, le=200),
                       user=Depends(get_current_user)):
    flt = {"user_id": user_id(user)}
    if unread_only:
        flt["is_read"] = False
    cursor = db["notification"].find(flt).sort("created_at", -1).limit(limit)
    return [serialize(n) for n in cursor]


@router.post("/read-all")
def mark_all_read(user=Depends(get_current_user)):
    result = db["notification"].update_many({"user_id": user_id(user), "is_read": False},
                                            {"$set": {"is_read": True, "updated_at": utcnow()}})
    return {"updated": result.modified_count}


@router.post("/{notification_id}/read")
def mark_read(notification_id: str, user=Depends(get_current_user)):
    result = db["notification"].update_one(
        {"_id": oid(notification_id), "user_id": user_id(user)},
        {"$set": {"is_read": True, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Benachrichtigung nicht gefunden")
    return {"message": "Als gelesen markiert"}
