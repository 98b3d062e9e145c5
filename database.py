"""
MongoDB access helpers.

`db` is the shared database handle. Collections are addressed by their
lowercase document name, e.g. db["event"].
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

import settings

client = MongoClient(settings.DATABASE_URL)
db = client[settings.DATABASE_NAME]


def utcnow() -> datetime:
    # Mongo hands back naive UTC datetimes, so everything stays naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Ungültiges ID-Format")


def serialize(doc):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        doc[k] = _jsonable(v)
    return doc


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    now = utcnow()
    data.setdefault("created_at", now)
    data["updated_at"] = now
    result = db[collection_name].insert_one(data)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


def find_by_id(collection_name: str, id_str: str) -> Optional[Dict[str, Any]]:
    return db[collection_name].find_one({"_id": oid(id_str)})


def ensure_indexes() -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["achievement"].create_index([("player_id", ASCENDING), ("badge_id", ASCENDING)], unique=True)
    db["player_attribute"].create_index([("player_id", ASCENDING), ("attribute_name", ASCENDING), ("team_id", ASCENDING)])
    db["notification_queue"].create_index([("scheduled_time", ASCENDING), ("status", ASCENDING)])
    db["team_invite"].create_index([("invite_code", ASCENDING)], unique=True)
    db["event"].create_index([("recurring_group_id", ASCENDING)])


def universal_attributes(player_id: str) -> List[Dict[str, Any]]:
    """Ratings of a player that are not scoped to a team."""
    return list(db["player_attribute"].find({"player_id": player_id, "team_id": None}))


def get_or_404(collection_name: str, id_str: str, detail: str) -> Dict[str, Any]:
    doc = find_by_id(collection_name, id_str)
    if not doc:
        raise HTTPException(status_code=404, detail=detail)
    return doc
