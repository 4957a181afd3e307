from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from todos.logging import get_logger
from todos.storage.errors import ConstraintViolation
from todos.storage.models import (
    CHECKLIST_MUTABLE_FIELDS,
    TASK_MUTABLE_FIELDS,
    Checklist,
    Task,
    Token,
    User,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    username VARCHAR(255) NOT NULL UNIQUE,
    email VARCHAR(255) NOT NULL UNIQUE,
    password VARCHAR(255) NOT NULL,
    is_admin BOOLEAN NOT NULL DEFAULT FALSE,
    last_seen TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS tokens (
    id UUID PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    issued_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    refresh_by TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS tokens_user_id_idx ON tokens (user_id);
CREATE INDEX IF NOT EXISTS tokens_refresh_by_idx ON tokens (refresh_by);

CREATE TABLE IF NOT EXISTS checklists (
    id SERIAL PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    title VARCHAR(255) NOT NULL,
    details VARCHAR(4095) NOT NULL DEFAULT '',
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    archived BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS tasks (
    id SERIAL PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    checklist_id INTEGER REFERENCES checklists (id) ON DELETE CASCADE,
    title VARCHAR(255) NOT NULL,
    details VARCHAR(4095) NOT NULL DEFAULT '',
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    archived BOOLEAN NOT NULL DEFAULT FALSE,
    deadline TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS tasks_user_id_idx ON tasks (user_id);
"""

_CHECKLIST_SELECT = """
    SELECT c.*,
           count(t.id) AS size,
           count(t.id) FILTER (WHERE t.completed) AS completed_tasks,
           count(t.id) FILTER (WHERE t.archived) AS archived_tasks
    FROM checklists c
    LEFT JOIN tasks t ON t.checklist_id = c.id
"""


class PostgresStore:
    """Postgres-backed store for users, tokens, checklists and tasks."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the tables if they are missing."""

        with self._connect() as conn:
            conn.execute(SCHEMA)

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1")
        except Exception as exc:
            self.logger.warning("postgres_ping_failed", error=str(exc))
            return False
        return True

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            password=row["password"],
            is_admin=row["is_admin"],
            last_seen=row.get("last_seen"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _token_from_row(row: Dict[str, Any]) -> Token:
        return Token(
            id=row["id"],
            user_id=row["user_id"],
            issued_at=row["issued_at"],
            access_expires_at=row["expires_at"],
            refresh_expires_at=row["refresh_by"],
        )

    @staticmethod
    def _checklist_from_row(row: Dict[str, Any]) -> Checklist:
        return Checklist(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            details=row["details"],
            completed=row["completed"],
            archived=row["archived"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            size=row.get("size", 0),
            completed_tasks=row.get("completed_tasks", 0),
            archived_tasks=row.get("archived_tasks", 0),
        )

    @staticmethod
    def _task_from_row(row: Dict[str, Any]) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            details=row["details"],
            completed=row["completed"],
            archived=row["archived"],
            checklist_id=row.get("checklist_id"),
            deadline=row.get("deadline"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # users
    def create_user(
        self,
        username: str,
        email: str,
        password: str,
        *,
        is_admin: bool = False,
    ) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (username, email, password, is_admin)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (username, email, password, is_admin),
                ).fetchone()
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None) or ""
            field = "email" if "email" in constraint else "username"
            raise ConstraintViolation.duplicate(field) from exc
        return self._user_from_row(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = %s", (username,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_login_record(self, username: str) -> Optional[Tuple[int, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, password FROM users WHERE username = %s", (username,)
            ).fetchone()
        if not row:
            return None
        return row["id"], row["password"]

    def update_user_password(self, user_id: int, password: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE users SET password = %s, updated_at = now() WHERE id = %s",
                (password, user_id),
            )
            return cur.rowcount > 0

    def touch_user(self, user_id: int, when: Optional[datetime] = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET last_seen = COALESCE(%s, now()) WHERE id = %s",
                (when, user_id),
            )

    def count_users(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT count(*) AS n FROM users").fetchone()
        return int(row["n"])

    # tokens
    def create_token(self, token: Token) -> Token:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tokens (id, user_id, issued_at, expires_at, refresh_by)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        token.id,
                        token.user_id,
                        token.issued_at,
                        token.access_expires_at,
                        token.refresh_expires_at,
                    ),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation.unknown_user(token.user_id) from exc
        except errors.UniqueViolation as exc:
            raise ConstraintViolation.duplicate("token", token_id=str(token.id)) from exc
        return token

    def get_token(self, token_id: uuid.UUID) -> Optional[Token]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tokens WHERE id = %s", (token_id,)).fetchone()
        return self._token_from_row(row) if row else None

    def delete_token(self, token_id: uuid.UUID) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM tokens WHERE id = %s", (token_id,))
            return cur.rowcount > 0

    def delete_user_tokens(self, user_id: int) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM tokens WHERE user_id = %s", (user_id,))
            return cur.rowcount

    def delete_expired_tokens(self, now: datetime) -> int:
        # Single statement, so the scan and delete commit together
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM tokens WHERE refresh_by < %s", (now,))
            return cur.rowcount

    # checklists
    def list_checklists(self, user_id: int) -> List[Checklist]:
        with self._connect() as conn:
            rows = conn.execute(
                _CHECKLIST_SELECT + " WHERE c.user_id = %s GROUP BY c.id ORDER BY c.id",
                (user_id,),
            ).fetchall()
        return [self._checklist_from_row(row) for row in rows]

    def create_checklist(
        self,
        user_id: int,
        title: str,
        details: str = "",
        *,
        completed: bool = False,
        archived: bool = False,
    ) -> Checklist:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO checklists (user_id, title, details, completed, archived)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (user_id, title, details, completed, archived),
            ).fetchone()
        return self._checklist_from_row(row)

    def get_checklist(self, checklist_id: int, user_id: int) -> Optional[Checklist]:
        with self._connect() as conn:
            row = conn.execute(
                _CHECKLIST_SELECT + " WHERE c.id = %s AND c.user_id = %s GROUP BY c.id",
                (checklist_id, user_id),
            ).fetchone()
        return self._checklist_from_row(row) if row else None

    def update_checklist(
        self, checklist_id: int, user_id: int, fields: Dict[str, Any]
    ) -> Optional[Checklist]:
        updates = {k: v for k, v in fields.items() if k in CHECKLIST_MUTABLE_FIELDS}
        query = self._update_query("checklists", updates)
        with self._connect() as conn:
            cur = conn.execute(query, (*updates.values(), checklist_id, user_id))
            if cur.rowcount == 0:
                return None
        return self.get_checklist(checklist_id, user_id)

    def delete_checklist(self, checklist_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM checklists WHERE id = %s AND user_id = %s",
                (checklist_id, user_id),
            )
            return cur.rowcount > 0

    def count_checklists(self, user_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT count(*) AS n FROM checklists WHERE user_id = %s", (user_id,)
            ).fetchone()
        return int(row["n"])

    # tasks
    @staticmethod
    def _update_query(table: str, updates: Dict[str, Any]) -> sql.Composed:
        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in updates
        ]
        assignments.append(sql.SQL("updated_at = now()"))
        return sql.SQL("UPDATE {} SET {} WHERE id = %s AND user_id = %s").format(
            sql.Identifier(table), sql.SQL(", ").join(assignments)
        )

    def _check_checklist_owner(self, conn, checklist_id: Optional[int], user_id: int) -> None:
        if checklist_id is None:
            return
        row = conn.execute(
            "SELECT 1 FROM checklists WHERE id = %s AND user_id = %s",
            (checklist_id, user_id),
        ).fetchone()
        if not row:
            raise ConstraintViolation.unknown_checklist(checklist_id)

    def list_tasks(self, user_id: int, checklist_id: Optional[int] = None) -> List[Task]:
        query = "SELECT * FROM tasks WHERE user_id = %s"
        params: List[Any] = [user_id]
        if checklist_id is not None:
            query += " AND checklist_id = %s"
            params.append(checklist_id)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [self._task_from_row(row) for row in rows]

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
        with self._connect() as conn:
            self._check_checklist_owner(conn, checklist_id, user_id)
            row = conn.execute(
                """
                INSERT INTO tasks (user_id, title, details, completed, archived, checklist_id, deadline)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (user_id, title, details, completed, archived, checklist_id, deadline),
            ).fetchone()
        return self._task_from_row(row)

    def get_task(self, task_id: int, user_id: int) -> Optional[Task]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = %s AND user_id = %s", (task_id, user_id)
            ).fetchone()
        return self._task_from_row(row) if row else None

    def update_task(self, task_id: int, user_id: int, fields: Dict[str, Any]) -> Optional[Task]:
        updates = {k: v for k, v in fields.items() if k in TASK_MUTABLE_FIELDS}
        query = self._update_query("tasks", updates)
        with self._connect() as conn:
            if "checklist_id" in updates:
                self._check_checklist_owner(conn, updates["checklist_id"], user_id)
            cur = conn.execute(query, (*updates.values(), task_id, user_id))
            if cur.rowcount == 0:
                return None
        return self.get_task(task_id, user_id)

    def delete_task(self, task_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM tasks WHERE id = %s AND user_id = %s", (task_id, user_id)
            )
            return cur.rowcount > 0

    def count_tasks(self, user_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT count(*) AS n FROM tasks WHERE user_id = %s", (user_id,)
            ).fetchone()
        return int(row["n"])


__all__ = ["PostgresStore", "SCHEMA"]
