"""Student lifecycle: role-scoped create, read, update and soft delete."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Set, TypeVar

from .errors import NotFound, StorageFailure, StudentError, Unauthenticated
from .models import STUDENT_ROLE, Student, StudentCreate, StudentUpdate
from .notifications import Notifier, NullNotifier
from .observability import LoggingObserver, Observer
from .repository import StudentRepository

T = TypeVar("T")

DEFAULT_NOTIFY_TIMEOUT = 5.0

LIST_FILTER_KEYS = ("name", "class", "section", "roll")

# Keys a caller may not change through the update payload. The student id
# only ever comes from the resource path.
PROTECTED_FIELDS = frozenset(
    {
        "id",
        "userId",
        "user_id",
        "studentId",
        "student_id",
        "roleId",
        "role_id",
        "status",
        "is_active",
        "reviewerId",
        "reviewer_id",
    }
)


class StudentService:
    """Orchestrates repository calls for the student resource.

    A missing row and a row owned by a non-student account are reported the
    same way, as :class:`~roster.errors.NotFound`. For mutations the affected
    row count returned by the role-scoped statement is the only signal used.
    """

    def __init__(
        self,
        repository: StudentRepository,
        *,
        observer: Observer | None = None,
        notifier: Notifier | None = None,
        notify_timeout: float = DEFAULT_NOTIFY_TIMEOUT,
    ) -> None:
        self._repository = repository
        self._observer = observer or LoggingObserver()
        self._notifier = notifier or NullNotifier()
        self._notify_timeout = notify_timeout
        self._pending: Set[asyncio.Task[None]] = set()

    async def _storage(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except StudentError:
            raise
        except Exception as exc:
            self._observer.record(
                logging.ERROR,
                "Database operation failed",
                operation=operation,
                error=f"{type(exc).__name__}: {exc}",
            )
            raise StorageFailure("Database operation failed") from exc

    async def list_students(self, filters: Mapping[str, Any] | None = None) -> List[Student]:
        query: Dict[str, str] = {}
        for key in LIST_FILTER_KEYS:
            value = (filters or {}).get(key)
            if value is None:
                continue
            text = str(value).strip()
            if text:
                query[key] = text

        students = await self._storage(
            "find_students", lambda: self._repository.find_students(query)
        )
        self._observer.record(logging.DEBUG, "Listed students", count=len(students), filters=query)
        return list(students)

    async def create_student(self, payload: StudentCreate) -> Student:
        fields = {key: value for key, value in payload.fields.items() if key not in PROTECTED_FIELDS}
        validated = StudentCreate(email=payload.email, fields=fields)

        role_id = await self._storage(
            "resolve_role_id", lambda: self._repository.resolve_role_id(STUDENT_ROLE)
        )
        student = await self._storage(
            "upsert_student", lambda: self._repository.upsert_student(role_id, validated)
        )
        self._observer.record(logging.INFO, "Student saved", student_id=student.id)

        self._dispatch_verification(student)
        return student

    async def get_student_detail(self, student_id: int) -> Student:
        student = await self._storage(
            "find_student_detail", lambda: self._repository.find_student_detail(student_id)
        )
        if student is None:
            raise NotFound("Student not found")
        return student

    async def update_student(self, student_id: int, payload: StudentUpdate) -> Student:
        changes = {
            key: value for key, value in payload.changes().items() if key not in PROTECTED_FIELDS
        }
        affected = await self._storage(
            "set_student_fields",
            lambda: self._repository.set_student_fields(student_id, changes),
        )
        if affected == 0:
            raise NotFound("Student not found")

        self._observer.record(
            logging.INFO, "Student updated", student_id=student_id, fields=sorted(changes)
        )
        return await self.get_student_detail(student_id)

    async def set_student_status(
        self, student_id: int, status: bool, reviewer_id: int | None
    ) -> Student:
        await self._set_active(student_id, status, reviewer_id)
        return await self.get_student_detail(student_id)

    async def delete_student(self, student_id: int, reviewer_id: int | None) -> None:
        """Deactivate a student. Repeating the call on an inactive student succeeds."""

        await self._set_active(student_id, False, reviewer_id)

    async def _set_active(self, student_id: int, active: bool, reviewer_id: int | None) -> None:
        if reviewer_id is None:
            raise Unauthenticated("Authentication required")
        affected = await self._storage(
            "set_student_active",
            lambda: self._repository.set_student_active(student_id, active, reviewer_id),
        )
        if affected == 0:
            raise NotFound("Student not found")
        self._observer.record(
            logging.INFO,
            "Student status changed",
            student_id=student_id,
            status=active,
            reviewer_id=reviewer_id,
        )

    # ------------------------------------------------------------------
    # Account verification notifications
    # ------------------------------------------------------------------
    def _dispatch_verification(self, student: Student) -> None:
        task = asyncio.create_task(self._notify(student))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _notify(self, student: Student) -> None:
        try:
            await asyncio.wait_for(
                self._notifier.send_account_verification(student),
                timeout=self._notify_timeout,
            )
        except asyncio.TimeoutError:
            self._observer.record(
                logging.WARNING,
                "Account verification timed out",
                student_id=student.id,
                timeout=self._notify_timeout,
            )
        except Exception as exc:
            self._observer.record(
                logging.WARNING,
                "Account verification failed",
                student_id=student.id,
                error=str(exc),
            )
        else:
            self._observer.record(logging.INFO, "Account verification sent", student_id=student.id)

    @property
    def pending_notifications(self) -> int:
        return len(self._pending)

    async def drain_notifications(self) -> None:
        """Wait for every outstanding notification task to settle."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["StudentService", "PROTECTED_FIELDS", "LIST_FILTER_KEYS"]
