"""Errors shared by the memory and Postgres stores."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A write broke a uniqueness or ownership rule of the todos schema.

    ``message`` is returned to API clients as-is. ``detail`` names the
    offending column or reference and only goes to the logs.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @classmethod
    def duplicate(cls, name: str, **detail: Any) -> "ConstraintViolation":
        """A username, email or token id that is already taken."""
        return cls(f"{name} already exists", detail or {"field": name})

    @classmethod
    def unknown_user(cls, user_id: int) -> "ConstraintViolation":
        return cls("token user missing", {"user_id": user_id})

    @classmethod
    def unknown_checklist(cls, checklist_id: Optional[int]) -> "ConstraintViolation":
        # Checklists owned by another user are reported the same way
        return cls("checklist not found", {"checklist": checklist_id})


__all__ = ["ConstraintViolation"]
