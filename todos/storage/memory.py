from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from todos.storage.errors import ConstraintViolation
from todos.storage.models import (
    CHECKLIST_MUTABLE_FIELDS,
    TASK_MUTABLE_FIELDS,
    Checklist,
    Task,
    Token,
    User,
    utcnow,
)


class MemoryStore:
    """In-memory backing store for tests and single-process development.

    Every read returns a copy so that callers cannot mutate stored rows
    without going through the store.
    """

    def __init__(self) -> None:
        self.users: Dict[int, User] = {}
        self.tokens: Dict[uuid.UUID, Token] = {}
        self.checklists: Dict[int, Checklist] = {}
        self.tasks: Dict[int, Task] = {}
        self._seqs: Dict[str, int] = {"user": 0, "checklist": 0, "task": 0}
        # Thread lock for sequence counters
        self._seq_lock = threading.Lock()
        # RLock for all data operations; nested acquisitions happen on cascades
        self._data_lock = threading.RLock()

    def _next_id(self, kind: str) -> int:
        with self._seq_lock:
            self._seqs[kind] += 1
            return self._seqs[kind]

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    # users
    def create_user(
        self,
        username: str,
        email: str,
        password: str,
        *,
        is_admin: bool = False,
    ) -> User:
        with self._data_lock:
            for existing in self.users.values():
                if existing.username == username:
                    raise ConstraintViolation.duplicate("username")
                if existing.email == email:
                    raise ConstraintViolation.duplicate("email")
            user = User(
                id=self._next_id("user"),
                username=username,
                email=email,
                password=password,
                is_admin=is_admin,
            )
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.username == username), None)
            return replace(user) if user else None

    def get_login_record(self, username: str) -> Optional[Tuple[int, str]]:
        with self._data_lock:
            for user in self.users.values():
                if user.username == username:
                    return user.id, user.password
            return None

    def update_user_password(self, user_id: int, password: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            user.password = password
            user.updated_at = utcnow()
            return True

    def touch_user(self, user_id: int, when: Optional[datetime] = None) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if user:
                user.last_seen = when or utcnow()

    def count_users(self) -> int:
        with self._data_lock:
            return len(self.users)

    # tokens
    def create_token(self, token: Token) -> Token:
        with self._data_lock:
            if token.user_id not in self.users:
                raise ConstraintViolation.unknown_user(token.user_id)
            if token.id in self.tokens:
                raise ConstraintViolation.duplicate("token", token_id=str(token.id))
            self.tokens[token.id] = token
            return token

    def get_token(self, token_id: uuid.UUID) -> Optional[Token]:
        with self._data_lock:
            return self.tokens.get(token_id)

    def delete_token(self, token_id: uuid.UUID) -> bool:
        with self._data_lock:
            return self.tokens.pop(token_id, None) is not None

    def delete_user_tokens(self, user_id: int) -> int:
        with self._data_lock:
            stale = [tid for tid, tok in self.tokens.items() if tok.user_id == user_id]
            for tid in stale:
                del self.tokens[tid]
            return len(stale)

    def delete_expired_tokens(self, now: datetime) -> int:
        with self._data_lock:
            stale = [tid for tid, tok in self.tokens.items() if tok.refresh_expires_at < now]
            for tid in stale:
                del self.tokens[tid]
            return len(stale)

    # checklists
    def _summarize(self, checklist: Checklist) -> Checklist:
        members = [t for t in self.tasks.values() if t.checklist_id == checklist.id]
        return replace(
            checklist,
            size=len(members),
            completed_tasks=sum(1 for t in members if t.completed),
            archived_tasks=sum(1 for t in members if t.archived),
        )

    def list_checklists(self, user_id: int) -> List[Checklist]:
        with self._data_lock:
            owned = [c for c in self.checklists.values() if c.user_id == user_id]
            return [self._summarize(c) for c in sorted(owned, key=lambda c: c.id)]

    def create_checklist(
        self,
        user_id: int,
        title: str,
        details: str = "",
        *,
        completed: bool = False,
        archived: bool = False,
    ) -> Checklist:
        with self._data_lock:
            checklist = Checklist(
                id=self._next_id("checklist"),
                user_id=user_id,
                title=title,
                details=details,
                completed=completed,
                archived=archived,
            )
            self.checklists[checklist.id] = checklist
            return replace(checklist)

    def get_checklist(self, checklist_id: int, user_id: int) -> Optional[Checklist]:
        with self._data_lock:
            checklist = self.checklists.get(checklist_id)
            if not checklist or checklist.user_id != user_id:
                return None
            return self._summarize(checklist)

    def update_checklist(
        self, checklist_id: int, user_id: int, fields: Dict[str, Any]
    ) -> Optional[Checklist]:
        with self._data_lock:
            checklist = self.checklists.get(checklist_id)
            if not checklist or checklist.user_id != user_id:
                return None
            for name, value in fields.items():
                if name in CHECKLIST_MUTABLE_FIELDS:
                    setattr(checklist, name, value)
            checklist.updated_at = utcnow()
            return self._summarize(checklist)

    def delete_checklist(self, checklist_id: int, user_id: int) -> bool:
        with self._data_lock:
            checklist = self.checklists.get(checklist_id)
            if not checklist or checklist.user_id != user_id:
                return False
            for task_id in [t.id for t in self.tasks.values() if t.checklist_id == checklist_id]:
                del self.tasks[task_id]
            del self.checklists[checklist_id]
            return True

    def count_checklists(self, user_id: int) -> int:
        with self._data_lock:
            return sum(1 for c in self.checklists.values() if c.user_id == user_id)

    # tasks
    def _check_checklist_owner(self, checklist_id: Optional[int], user_id: int) -> None:
        if checklist_id is None:
            return
        checklist = self.checklists.get(checklist_id)
        if not checklist or checklist.user_id != user_id:
            raise ConstraintViolation.unknown_checklist(checklist_id)

    def list_tasks(self, user_id: int, checklist_id: Optional[int] = None) -> List[Task]:
        with self._data_lock:
            owned = [
                replace(t)
                for t in self.tasks.values()
                if t.user_id == user_id and (checklist_id is None or t.checklist_id == checklist_id)
            ]
            return sorted(owned, key=lambda t: t.id)

    def create_task(
        self,
        user_id: int,
        title: str,
        details: str = "",
        *,
        completed: bool = False,
        archived: bool = False,
        checklist_id: Optional[int] = None,
        deadline: Optional[datetime] = None,
    ) -> Task:
        with self._data_lock:
            self._check_checklist_owner(checklist_id, user_id)
            task = Task(
                id=self._next_id("task"),
                user_id=user_id,
                title=title,
                details=details,
                completed=completed,
                archived=archived,
                checklist_id=checklist_id,
                deadline=deadline,
            )
            self.tasks[task.id] = task
            return replace(task)

    def get_task(self, task_id: int, user_id: int) -> Optional[Task]:
        with self._data_lock:
            task = self.tasks.get(task_id)
            if not task or task.user_id != user_id:
                return None
            return replace(task)

    def update_task(self, task_id: int, user_id: int, fields: Dict[str, Any]) -> Optional[Task]:
        with self._data_lock:
            task = self.tasks.get(task_id)
            if not task or task.user_id != user_id:
                return None
            if "checklist_id" in fields:
                self._check_checklist_owner(fields["checklist_id"], user_id)
            for name, value in fields.items():
                if name in TASK_MUTABLE_FIELDS:
                    setattr(task, name, value)
            task.updated_at = utcnow()
            return replace(task)

    def delete_task(self, task_id: int, user_id: int) -> bool:
        with self._data_lock:
            task = self.tasks.get(task_id)
            if not task or task.user_id != user_id:
                return False
            del self.tasks[task_id]
            return True

    def count_tasks(self, user_id: int) -> int:
        with self._data_lock:
            return sum(1 for t in self.tasks.values() if t.user_id == user_id)


__all__ = ["MemoryStore"]
