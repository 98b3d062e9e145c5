"""
Database Schemas for the Volleyball Team Manager

Each Pydantic model name maps to a MongoDB collection with the snake_case name.
Example: class PlayerAttribute -> collection "player_attribute"

References to other documents are stored as stringified ObjectIds.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["Spieler", "Trainer", "Jugendspieler"]
EventType = Literal["Training", "Game"]
RecurringPattern = Literal["weekly", "biweekly", "monthly"]
TriggerType = Literal["deadline", "hours_before"]


# Users & teams
class AttendanceTracking(BaseModel):
    total_events: int = Field(default=0, ge=0)
    attended_events: int = Field(default=0, ge=0)
    attendance_percentage: float = Field(default=0, ge=0, le=100)
    events_last_3_months: int = Field(default=0, ge=0)
    attended_last_3_months: int = Field(default=0, ge=0)
    attendance_percentage_3_months: float = Field(default=0, ge=0, le=100)
    monthly_breakdown: List[Dict[str, Any]] = Field(default_factory=list)


class User(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., description="bcrypt hash")
    role: Role
    teams: List[str] = Field(default_factory=list)
    birth_date: Optional[datetime] = None
    phone_number: Optional[str] = None
    position: Optional[str] = None
    created_by: Optional[str] = None
    notification_prompt_shown: bool = False
    notification_prompt_dismissed_at: Optional[datetime] = None
    attendance: AttendanceTracking = Field(default_factory=AttendanceTracking)


class Team(BaseModel):
    name: Literal["H1", "H2", "H3", "H4", "H5", "U20", "U18", "U16"]
    type: Literal["Adult", "Youth"]
    description: Optional[str] = None
    coaches: List[str] = Field(default_factory=list)
    players: List[str] = Field(default_factory=list)


class TeamInvite(BaseModel):
    team_id: str
    created_by: str
    invite_code: str
    expires_at: Optional[datetime] = None
    usage_count: int = Field(default=0, ge=0)
    max_usage: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True
    description: str = ""
    used_by: List[Dict[str, Any]] = Field(default_factory=list)


# Ratings
class HistoryEntry(BaseModel):
    value: int = Field(..., ge=1, le=99)
    change: int = 0
    notes: Optional[str] = None
    level: int = Field(default=0, ge=0, le=7)
    updated_by: Optional[str] = None
    updated_at: datetime


class PlayerAttribute(BaseModel):
    player_id: str
    attribute_name: str
    category: Literal["Technical", "Tactical", "Physical", "Mental", "Other"] = "Other"
    numeric_value: Optional[int] = Field(default=None, ge=1, le=99)
    sub_attributes: Dict[str, int] = Field(default_factory=dict)
    level: int = Field(default=0, ge=0, le=7)
    level_rating: Optional[int] = Field(default=None, ge=1, le=99)
    notes: Optional[str] = None
    updated_by: Optional[str] = None
    team_id: Optional[str] = Field(default=None, description="None means universal rating")
    progression_history: List[HistoryEntry] = Field(default_factory=list)
    self_rating: Optional[int] = Field(default=None, ge=1, le=99)
    self_rated_at: Optional[datetime] = None


class Achievement(BaseModel):
    player_id: str
    badge_id: str
    badge_name: str
    badge_description: str
    category: Literal["Fähigkeiten", "Position", "Team", "Fortschritt", "Spezial"]
    rarity: Literal["Bronze", "Silber", "Gold", "Platin", "Diamant"]
    trigger_type: Literal["rating_threshold", "improvement", "consistency", "special_event"]
    trigger_value: Dict[str, Any]
    unlocked_at: datetime
    is_visible: bool = True


# Events
class ReminderTime(BaseModel):
    hours: int = Field(..., ge=0)
    minutes: int = Field(default=0, ge=0, lt=60)


class NotificationSettings(BaseModel):
    enabled: bool = True
    reminder_times: List[ReminderTime] = Field(
        default_factory=lambda: [ReminderTime(hours=24), ReminderTime(hours=1)]
    )
    custom_message: str = ""


class AutoInviteSettings(BaseModel):
    enabled: bool = False
    pool_id: Optional[str] = None
    min_participants: int = Field(default=6, ge=1)
    trigger_type: TriggerType = "deadline"
    hours_before_event: int = Field(default=24, ge=1)
    invites_sent: bool = False
    invites_sent_at: Optional[datetime] = None
    invited_pool_players: List[str] = Field(default_factory=list)


class Event(BaseModel):
    title: str
    type: EventType
    start_time: datetime
    end_time: datetime
    location: str
    teams: List[str] = Field(default_factory=list)
    organizing_teams: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    created_by: str
    invited_players: List[str] = Field(default_factory=list)
    attending_players: List[str] = Field(default_factory=list)
    declined_players: List[str] = Field(default_factory=list)
    unsure_players: List[str] = Field(default_factory=list)
    uninvited_players: List[str] = Field(default_factory=list)
    player_responses: List[Dict[str, Any]] = Field(default_factory=list)
    guest_players: List[Dict[str, Any]] = Field(default_factory=list)
    voting_deadline: Optional[datetime] = None
    auto_decline_processed: bool = False
    is_open_access: bool = False
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    recurring_end_date: Optional[datetime] = None
    recurring_group_id: Optional[str] = None
    is_recurring_instance: bool = False
    original_start_time: Optional[datetime] = None
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    reminders_sent: List[Dict[str, Any]] = Field(default_factory=list)
    training_pool_auto_invite: AutoInviteSettings = Field(default_factory=AutoInviteSettings)
    quick_feedback: List[Dict[str, Any]] = Field(default_factory=list)
    attendance_auto_processed: bool = False
    attendance_processed_at: Optional[datetime] = None


class NotificationQueue(BaseModel):
    event_id: str
    reminder_time: ReminderTime
    scheduled_time: datetime
    status: Literal["pending", "sent", "failed"] = "pending"
    attempts: int = Field(default=0, ge=0)
    last_attempt: Optional[datetime] = None
    error: Optional[str] = None


class Notification(BaseModel):
    user_id: str
    title: str
    message: str
    type: Literal["event_reminder", "guest_invitation", "team_update", "achievement", "info"] = "info"
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False


class PushSubscription(BaseModel):
    user_id: str
    endpoint: str
    expiration_time: Optional[datetime] = None
    keys: Dict[str, str] = Field(default_factory=dict)
    preferences: Dict[str, Any] = Field(default_factory=lambda: {
        "event_reminders": True,
        "guest_invitations": True,
        "team_updates": True,
        "reminder_hours": 24,
    })


# Training pools & templates
class PoolPlayer(BaseModel):
    player_id: str
    current_rating: Optional[int] = Field(default=None, ge=1, le=99)
    attendance_percentage: float = Field(default=0, ge=0, le=100)
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    request_date: Optional[datetime] = None


class TrainingPool(BaseModel):
    name: str
    type: Literal["team", "league"]
    team_id: Optional[str] = None
    league_level: Optional[str] = None
    min_rating: int = Field(..., ge=1, le=99)
    max_rating: int = Field(..., ge=1, le=99)
    min_attendance_percentage: float = Field(default=75, ge=0, le=100)
    pending_approval: List[PoolPlayer] = Field(default_factory=list)
    approved_players: List[PoolPlayer] = Field(default_factory=list)
    auto_invite_enabled: bool = False
    auto_invite_rules: Dict[str, Any] = Field(default_factory=lambda: {
        "min_participants": 6,
        "trigger_type": "deadline",
        "hours_before_event": 24,
    })
    stats: Dict[str, Any] = Field(default_factory=lambda: {
        "total_invites_sent": 0,
        "total_accepted": 0,
        "last_invite_date": None,
    })
    created_by: str
    active: bool = True


class TrainingTemplate(BaseModel):
    name: str = Field(..., max_length=100)
    description: str = Field(..., max_length=500)
    created_by: str
    category: Literal["Anfänger", "Fortgeschritten", "Wettkampf", "Position-spezifisch",
                      "Saisonvorbereitung", "Kondition", "Technik", "Taktik"]
    visibility: Literal["public", "team", "private"] = "team"
    team_id: Optional[str] = None
    duration: Dict[str, Any] = Field(default_factory=lambda: {"value": 4, "unit": "Wochen"})
    phases: List[Dict[str, Any]] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    target_level: Literal["Anfänger", "Fortgeschritten", "Profi"]
    usage: Dict[str, Any] = Field(default_factory=lambda: {"count": 0, "rating": 0, "rating_count": 0})
    version: int = 1
    original_template: Optional[str] = None
    is_active: bool = True
