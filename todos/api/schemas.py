from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from todos.storage.models import DETAILS_MAX_LENGTH, TITLE_MAX_LENGTH


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize a string after stripping zero-width and bidi override characters."""
    zero_width = '\u200b\u200c\u200d\ufeff'
    cleaned = ''.join(c for c in value if c not in zero_width)

    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = ''.join(c for c in cleaned if c not in bidi_overrides)

    return unicodedata.normalize('NFKC', cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


def _validate_username(value: str) -> str:
    value = _normalize_unicode(value.strip())
    if not value:
        raise ValueError("username is required")
    if len(value) > 255:
        raise ValueError("username must be at most 255 characters")
    if not _USERNAME_PATTERN.match(value):
        raise ValueError("username must contain only letters, digits, '.', '_' and '-'")
    return value


def _validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


class Response(BaseModel):
    """Every JSON body carries ``success`` and, on failure, ``error``."""

    success: bool = True
    error: Optional[str] = None


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    is_admin: bool = False

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class RegisterResponse(Response):
    username: Optional[str] = None


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)
    no_cookie: bool = False

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        # Must match the normalization applied by RegisterRequest
        value = _normalize_unicode(value.strip())
        if not value:
            raise ValueError("username is required")
        return value


class LoginResponse(Response):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    revoke_all: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)
    no_cookie: bool = False


class StatusResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    email: str
    is_admin: bool
    last_seen: Optional[datetime] = None


class OverviewResponse(Response):
    user: Optional[UserOut] = None
    tasks: int = 0
    checklists: int = 0


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    details: str
    completed: bool
    archived: bool
    checklist: Optional[int] = Field(default=None, validation_alias="checklist_id")
    deadline: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    details: str = Field(default="", max_length=DETAILS_MAX_LENGTH)
    completed: bool = False
    archived: bool = False
    checklist: Optional[int] = None
    deadline: Optional[datetime] = None


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    details: Optional[str] = Field(default=None, max_length=DETAILS_MAX_LENGTH)
    completed: Optional[bool] = None
    archived: Optional[bool] = None
    checklist: Optional[int] = None
    deadline: Optional[datetime] = None

    def to_fields(self) -> dict:
        fields = self.model_dump(exclude_unset=True)
        if "checklist" in fields:
            fields["checklist_id"] = fields.pop("checklist")
        # Only the checklist and deadline may be cleared with null
        return {
            k: v for k, v in fields.items() if v is not None or k in {"checklist_id", "deadline"}
        }


class TaskListResponse(Response):
    tasks: List[TaskOut] = Field(default_factory=list)


class TaskDetailResponse(Response):
    task: Optional[TaskOut] = None


class TaskCreatedResponse(Response):
    task: Optional[int] = None


class ChecklistOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    details: str
    completed: bool
    archived: bool
    size: int
    completed_tasks: int
    archived_tasks: int
    created_at: datetime
    updated_at: datetime


class ChecklistCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    details: str = Field(default="", max_length=DETAILS_MAX_LENGTH)
    completed: bool = False
    archived: bool = False


class ChecklistUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    details: Optional[str] = Field(default=None, max_length=DETAILS_MAX_LENGTH)
    completed: Optional[bool] = None
    archived: Optional[bool] = None

    def to_fields(self) -> dict:
        return {k: v for k, v in self.model_dump(exclude_unset=True).items() if v is not None}


class ChecklistListResponse(Response):
    checklists: List[ChecklistOut] = Field(default_factory=list)


class ChecklistDetailResponse(Response):
    checklist: Optional[ChecklistOut] = None


class ChecklistCreatedResponse(Response):
    checklist: Optional[int] = None
