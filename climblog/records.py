"""
Plain records exchanged between the store, the services and the routes.
"""

from __future__ import annotations

import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar, Optional

from climblog.errors import InvalidInputError

RECENT_INTERACTIONS_LIMIT = 5

_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")

_clock_lock = threading.Lock()
_last_timestamp = 0.0


def next_timestamp() -> float:
    """
    Wall-clock epoch seconds, strictly increasing within the process so that
    creation order is total even for records written in the same clock tick.
    """
    global _last_timestamp
    with _clock_lock:
        now = time.time()
        if now <= _last_timestamp:
            now = _last_timestamp + 1e-6
        _last_timestamp = now
        return now


def new_id() -> str:
    return uuid.uuid4().hex


def validate_identifier(value: Optional[str], name: str = "id") -> str:
    if not value or not _ID_PATTERN.match(value):
        raise InvalidInputError(f"{name} has an invalid format: {value!r}")
    return value


class Role(StrEnum):
    USER = "user"
    ADMIN = "admin"


class ClimbStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class AscensionType(StrEnum):
    ONSIGHT = "onsight"
    FLASH = "flash"
    REDPOINT = "redpoint"
    TOPROPE = "toprope"


class InteractionKind(StrEnum):
    LIKE = "like"
    COMMENT = "comment"
    ASCENSION = "ascension"
    FOLLOW = "follow"


class MailTemplate(StrEnum):
    CONFIRMATION = "confirmation"
    PASSWORD_RESET = "password_reset"


class MailStatus(StrEnum):
    PENDING = "PENDING"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


@dataclass
class UserRecord:
    id: str
    email: str
    username: str
    password_hash: str
    roles: list[str] = field(default_factory=lambda: [Role.USER.value])
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    is_verified: bool = False
    verification_code: Optional[str] = None
    reset_token: Optional[str] = None
    reset_token_expires_at: Optional[float] = None
    followers_count: int = 0
    following_count: int = 0
    created_at: float = field(default_factory=next_timestamp)
    updated_at: float = field(default_factory=time.time)

    def has_role(self, role: Role | str) -> bool:
        return str(role) in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)

    def as_dict(self) -> dict:
        # Credentials and one-time codes never leave the service.
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "roles": list(self.roles),
            "is_verified": self.is_verified,
            "followers_count": self.followers_count,
            "following_count": self.following_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class ClimbRecord:
    id: str
    title: str
    grade: str
    created_by: str
    description: Optional[str] = None
    rating_average: Optional[float] = None
    grade_average: Optional[float] = None
    tags: list[str] = field(default_factory=list)
    status: str = ClimbStatus.OPEN.value
    likes_count: int = 0
    comments_count: int = 0
    recent_likes: list[str] = field(default_factory=list)
    recent_comments: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=next_timestamp)
    updated_at: float = field(default_factory=time.time)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "grade": self.grade,
            "created_by": self.created_by,
            "description": self.description,
            "rating_average": self.rating_average,
            "grade_average": self.grade_average,
            "tags": list(self.tags),
            "status": self.status,
            "likes_count": self.likes_count,
            "comments_count": self.comments_count,
            "recent_likes": list(self.recent_likes),
            "recent_comments": list(self.recent_comments),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class LikeRecord:
    kind: ClassVar[InteractionKind] = InteractionKind.LIKE

    id: str
    climb_id: str
    user_id: str
    created_at: float = field(default_factory=next_timestamp)

    @property
    def parent_id(self) -> str:
        return self.climb_id

    @property
    def recent_key(self) -> str:
        return self.user_id

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "climb_id": self.climb_id,
            "user_id": self.user_id,
            "created_at": self.created_at,
        }


@dataclass
class CommentRecord:
    kind: ClassVar[InteractionKind] = InteractionKind.COMMENT

    id: str
    climb_id: str
    user_id: str
    content: str
    created_at: float = field(default_factory=next_timestamp)

    @property
    def parent_id(self) -> str:
        return self.climb_id

    @property
    def recent_key(self) -> str:
        return self.id

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "climb_id": self.climb_id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass
class AscensionRecord:
    kind: ClassVar[InteractionKind] = InteractionKind.ASCENSION

    id: str
    climb_id: str
    user_id: str
    ascension_type: str = AscensionType.REDPOINT.value
    created_at: float = field(default_factory=next_timestamp)

    @property
    def parent_id(self) -> str:
        return self.climb_id

    @property
    def recent_key(self) -> str:
        return self.user_id

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "climb_id": self.climb_id,
            "user_id": self.user_id,
            "ascension_type": self.ascension_type,
            "created_at": self.created_at,
        }


@dataclass
class FollowRecord:
    kind: ClassVar[InteractionKind] = InteractionKind.FOLLOW

    id: str
    follower_id: str
    following_id: str
    created_at: float = field(default_factory=next_timestamp)

    @property
    def user_id(self) -> str:
        return self.follower_id

    @property
    def parent_id(self) -> str:
        return self.following_id

    @property
    def recent_key(self) -> str:
        return self.follower_id

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "follower_id": self.follower_id,
            "following_id": self.following_id,
            "created_at": self.created_at,
        }


InteractionRecord = LikeRecord | CommentRecord | AscensionRecord | FollowRecord

RECORD_TYPES: dict[InteractionKind, type] = {
    InteractionKind.LIKE: LikeRecord,
    InteractionKind.COMMENT: CommentRecord,
    InteractionKind.ASCENSION: AscensionRecord,
    InteractionKind.FOLLOW: FollowRecord,
}

# Attribute holding the parent reference for each kind.
PARENT_FIELDS: dict[InteractionKind, str] = {
    InteractionKind.LIKE: "climb_id",
    InteractionKind.COMMENT: "climb_id",
    InteractionKind.ASCENSION: "climb_id",
    InteractionKind.FOLLOW: "following_id",
}


@dataclass
class MailJobRecord:
    job_id: str
    template: MailTemplate
    recipient: str
    context: dict = field(default_factory=dict)
    status: MailStatus = MailStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    locked_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "template": self.template.value,
            "recipient": self.recipient,
            "status": self.status.name,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Page:
    items: list
    total: int
    page: int
    page_size: int
