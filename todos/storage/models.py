from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

TITLE_MAX_LENGTH = 255
DETAILS_MAX_LENGTH = 4095


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    username: str
    email: str
    password: str = field(default="", repr=False)
    is_admin: bool = False
    last_seen: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Token:
    """Persisted record backing an access/refresh token pair.

    Records are immutable once created; refreshing issues a new record and
    deletes the old one. Timestamps are whole seconds so that the signed
    claims and the stored row carry identical values.
    """

    id: uuid.UUID
    user_id: int
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime

    def __post_init__(self) -> None:
        if not (self.issued_at < self.access_expires_at < self.refresh_expires_at):
            raise ValueError(
                "token must satisfy issued_at < access_expires_at < refresh_expires_at"
            )

    @classmethod
    def new(
        cls,
        user_id: int,
        *,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> "Token":
        issued = (now or utcnow()).replace(microsecond=0)
        return cls(
            id=uuid.uuid4(),
            user_id=user_id,
            issued_at=issued,
            access_expires_at=issued + access_ttl,
            refresh_expires_at=issued + refresh_ttl,
        )


@dataclass
class Checklist:
    id: int
    user_id: int
    title: str
    details: str = ""
    completed: bool = False
    archived: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    # Computed from the checklist's tasks when read
    size: int = 0
    completed_tasks: int = 0
    archived_tasks: int = 0


@dataclass
class Task:
    id: int
    user_id: int
    title: str
    details: str = ""
    completed: bool = False
    archived: bool = False
    checklist_id: Optional[int] = None
    deadline: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


TASK_MUTABLE_FIELDS = frozenset(
    {"title", "details", "completed", "archived", "checklist_id", "deadline"}
)
CHECKLIST_MUTABLE_FIELDS = frozenset({"title", "details", "completed", "archived"})
