"""Storage contract consumed by :class:`roster.students.StudentService`."""
from __future__ import annotations

from typing import List, Mapping, Optional, Protocol, runtime_checkable

from .models import Student, StudentCreate


@runtime_checkable
class StudentRepository(Protocol):
    """Role-scoped persistence operations.

    Every method that takes a student id applies the student role filter in
    the same statement that reads or mutates the row. Mutations return the
    number of rows matched by that filter, so ``0`` means "no student with
    this id" and a repeated, value-identical update still reports ``1``.
    """

    async def resolve_role_id(self, name: str) -> int:
        """Return the id of the role called ``name`` or raise ``LookupError``."""
        ...

    async def find_students(self, filters: Mapping[str, str]) -> List[Student]:
        ...

    async def upsert_student(self, role_id: int, payload: StudentCreate) -> Student:
        """Insert or update the student keyed by ``payload.email``."""
        ...

    async def find_student_detail(self, student_id: int) -> Optional[Student]:
        ...

    async def set_student_fields(self, student_id: int, fields: Mapping[str, object]) -> int:
        ...

    async def set_student_active(self, student_id: int, active: bool, reviewer_id: int) -> int:
        ...


__all__ = ["StudentRepository"]
