"""Domain records for the student roster."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

STUDENT_ROLE = "student"


@dataclass(frozen=True)
class Role:
    """A named role a user account can hold."""

    id: int
    name: str


@dataclass(frozen=True)
class Caller:
    """Identity attached to an inbound request by the adapter."""

    id: int
    name: Optional[str] = None


@dataclass(frozen=True)
class Student:
    """Read projection of a user account whose role is ``student``."""

    id: int
    email: str
    name: str
    status: bool
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    roll: Optional[str] = None
    profile: Dict[str, Any] = field(default_factory=dict)
    reviewer_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class StudentCreate:
    """Validated payload for adding a student."""

    email: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StudentUpdate:
    """Validated payload for a partial student update."""

    email: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    def changes(self) -> Dict[str, Any]:
        """Return the field map handed to the repository."""

        changes = dict(self.fields)
        if self.email is not None:
            changes["email"] = self.email
        return changes


__all__ = ["STUDENT_ROLE", "Role", "Caller", "Student", "StudentCreate", "StudentUpdate"]
