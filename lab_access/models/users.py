"""
Domain models for persisted users, the key lease and attendance logs.

Records are stored as JSON documents; field names follow the camelCase keys
the attendance front-end reads.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from lab_access.models.timestamps import utcnow

USERS_PARTITION = "users"
KEYS_PARTITION = "keys"
MAIN_KEY_SORT_KEY = "main"
LOGS_PARTITION = "logs"


class Room(str, Enum):
    """Rooms whose occupancy is tracked per user."""

    ROOM_2218 = "room2218"
    GRAD_ROOM = "gradRoom"

    @property
    def display_name(self) -> str:
        return _ROOM_DISPLAY_NAMES[self]


_ROOM_DISPLAY_NAMES = {
    Room.ROOM_2218: "2218号室",
    Room.GRAD_ROOM: "院生部屋",
}

PRESENCE_FIELDS = (Room.ROOM_2218.value, Room.GRAD_ROOM.value, "hasKey")


class SlackIdentity(BaseModel):
    """Canonical application identity derived from a Slack profile."""

    model_config = ConfigDict(populate_by_name=True)

    uid: str = Field(..., description="Provider-namespaced id, e.g. slack_U123.")
    name: str
    email: str = ""
    avatar: str = ""
    provider: str = "slack"
    slack_user_id: str = Field(..., alias="slackUserId")
    slack_team_id: str = Field(..., alias="slackTeamId")

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


class UserProfile(SlackIdentity):
    """A user document with identity, presence flags and token custody."""

    room2218: bool = False
    grad_room: bool = Field(False, alias="gradRoom")
    has_key: bool = Field(False, alias="hasKey")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    last_activity: datetime = Field(default_factory=utcnow, alias="lastActivity")
    encrypted_token: Optional[str] = Field(None, alias="encryptedToken")


class KeyLease(BaseModel):
    """Singleton record naming the user who currently holds the key."""

    model_config = ConfigDict(populate_by_name=True)

    holder_id: Optional[str] = Field(None, alias="holderId")


class AttendanceAction(str, Enum):
    ENTER = "入室"
    EXIT = "退室"
    TAKE_KEY = "鍵取得"
    RETURN_KEY = "鍵返却"


class LogCreatedEvent(BaseModel):
    """Event handed to the notification collaborator once a log is committed."""

    model_config = ConfigDict(populate_by_name=True)

    user_name: str = Field(..., alias="userName")
    action: AttendanceAction
    room: str
    timestamp: datetime
    user_id: str = Field(..., alias="userId")


__all__ = [
    "AttendanceAction",
    "KEYS_PARTITION",
    "KeyLease",
    "LOGS_PARTITION",
    "LogCreatedEvent",
    "MAIN_KEY_SORT_KEY",
    "PRESENCE_FIELDS",
    "Room",
    "SlackIdentity",
    "USERS_PARTITION",
    "UserProfile",
]
