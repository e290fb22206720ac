"""SQLite-backed persistence for user accounts and their student projection."""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

import anyio

from .config import resolve_database_path
from .errors import InvalidArgument
from .models import STUDENT_ROLE, Role, Student, StudentCreate

logger = logging.getLogger("roster.database")

T = TypeVar("T")

DEFAULT_ROLES = ("admin", "teacher", STUDENT_ROLE)

# Profile keys stored in dedicated, filterable columns.
_COLUMN_ALIASES = {
    "name": "name",
    "class": "class_name",
    "class_name": "class_name",
    "className": "class_name",
    "section": "section_name",
    "section_name": "section_name",
    "sectionName": "section_name",
    "roll": "roll",
}

_STUDENT_ROLE_FILTER = "role_id = (SELECT id FROM roles WHERE name = ?)"

# Largest rowid SQLite can store; bigger ids cannot match any row.
_MAX_ROW_ID = 2**63 - 1


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _column_value(column: str, value: Any) -> Optional[str]:
    if value is None:
        return "" if column == "name" else None
    return str(value).strip()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def split_student_fields(fields: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Separate column-backed fields from the opaque profile fields."""

    columns: Dict[str, Any] = {}
    profile: Dict[str, Any] = {}
    for key, value in fields.items():
        column = _COLUMN_ALIASES.get(key)
        if column is not None:
            columns[column] = _column_value(column, value)
        elif key == "email":
            columns["email"] = value
        else:
            profile[key] = value
    return columns, profile


class Database:
    """Simple wrapper around SQLite for persisting users and roles."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables and seed the default roles."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS roles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                );

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL UNIQUE,
                    role_id INTEGER NOT NULL REFERENCES roles(id),
                    is_active INTEGER NOT NULL DEFAULT 1,
                    class_name TEXT,
                    section_name TEXT,
                    roll TEXT,
                    profile TEXT NOT NULL DEFAULT '{}',
                    reviewer_id INTEGER,
                    reviewed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_role_id ON users(role_id);
                """
            )
            conn.executemany(
                "INSERT OR IGNORE INTO roles (name) VALUES (?)",
                [(name,) for name in DEFAULT_ROLES],
            )

    # ------------------------------------------------------------------
    # Roles and generic users
    # ------------------------------------------------------------------
    def resolve_role_id(self, name: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT id FROM roles WHERE name = ?", (name,)).fetchone()
        if row is None:
            raise LookupError(f"Unknown role '{name}'")
        return int(row["id"])

    def list_roles(self) -> List[Role]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, name FROM roles ORDER BY id").fetchall()
        return [Role(id=int(row["id"]), name=str(row["name"])) for row in rows]

    def create_user(self, name: str, email: str, role: str) -> int:
        """Insert a plain account holding ``role`` and return its id."""

        role_id = self.resolve_role_id(role)
        now = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, role_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (name.strip(), email.strip().lower(), role_id, now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise InvalidArgument("A user with that email already exists") from exc
            return int(cursor.lastrowid)

    # ------------------------------------------------------------------
    # Student projection
    # ------------------------------------------------------------------
    def find_students(self, filters: Mapping[str, str]) -> List[Student]:
        clauses = [_STUDENT_ROLE_FILTER]
        params: List[object] = [STUDENT_ROLE]

        name = filters.get("name")
        if name:
            clauses.append("name LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(name)}%")
        for key, column in (("class", "class_name"), ("section", "section_name"), ("roll", "roll")):
            value = filters.get(key)
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)

        query = f"SELECT * FROM users WHERE {' AND '.join(clauses)} ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_student(row) for row in rows]

    def find_student_detail(self, student_id: int) -> Optional[Student]:
        if student_id > _MAX_ROW_ID:
            return None
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM users WHERE id = ? AND {_STUDENT_ROLE_FILTER}",
                (student_id, STUDENT_ROLE),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_student(row)

    def upsert_student(self, role_id: int, payload: StudentCreate) -> Student:
        """Create the student keyed by email, or update it when it already exists.

        The lookup and the write share one immediate transaction. An email
        that belongs to a non-student account is rejected.
        """

        columns, profile = split_student_fields(payload.fields)
        columns.pop("email", None)
        now = _serialize_datetime(_current_timestamp())

        conn = self._connect()
        try:
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                existing = conn.execute(
                    "SELECT id, role_id, profile FROM users WHERE email = ?",
                    (payload.email,),
                ).fetchone()

                if existing is None:
                    cursor = conn.execute(
                        """
                        INSERT INTO users (
                            name, email, role_id, is_active, class_name, section_name, roll,
                            profile, created_at, updated_at
                        ) VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            columns.get("name", ""),
                            payload.email,
                            role_id,
                            columns.get("class_name"),
                            columns.get("section_name"),
                            columns.get("roll"),
                            json.dumps(profile),
                            now,
                            now,
                        ),
                    )
                    student_id = int(cursor.lastrowid)
                else:
                    if int(existing["role_id"]) != role_id:
                        raise InvalidArgument("A user with that email already exists")
                    student_id = int(existing["id"])
                    merged = json.loads(existing["profile"] or "{}")
                    merged.update(profile)
                    columns["profile"] = json.dumps(merged)
                    columns["updated_at"] = now
                    assignments = ", ".join(f"{column} = ?" for column in columns)
                    conn.execute(
                        f"UPDATE users SET {assignments} WHERE id = ? AND role_id = ?",
                        [*columns.values(), student_id, role_id],
                    )

                row = conn.execute("SELECT * FROM users WHERE id = ?", (student_id,)).fetchone()
        finally:
            conn.close()

        return self._row_to_student(row)

    def set_student_fields(self, student_id: int, fields: Mapping[str, Any]) -> int:
        """Apply a partial update and return the number of matched student rows."""

        if student_id > _MAX_ROW_ID:
            return 0
        columns, profile = split_student_fields(fields)
        columns["updated_at"] = _serialize_datetime(_current_timestamp())

        conn = self._connect()
        try:
            with conn:
                if profile:
                    conn.execute("BEGIN IMMEDIATE")
                    row = conn.execute(
                        f"SELECT profile FROM users WHERE id = ? AND {_STUDENT_ROLE_FILTER}",
                        (student_id, STUDENT_ROLE),
                    ).fetchone()
                    if row is None:
                        return 0
                    merged = json.loads(row["profile"] or "{}")
                    merged.update(profile)
                    columns["profile"] = json.dumps(merged)

                assignments = ", ".join(f"{column} = ?" for column in columns)
                try:
                    cursor = conn.execute(
                        f"UPDATE users SET {assignments} WHERE id = ? AND {_STUDENT_ROLE_FILTER}",
                        [*columns.values(), student_id, STUDENT_ROLE],
                    )
                except sqlite3.IntegrityError as exc:
                    raise InvalidArgument("A user with that email already exists") from exc
                return cursor.rowcount
        finally:
            conn.close()

    def set_student_active(self, student_id: int, active: bool, reviewer_id: int) -> int:
        if student_id > _MAX_ROW_ID:
            return 0
        now = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE users
                   SET is_active = ?, reviewer_id = ?, reviewed_at = ?, updated_at = ?
                 WHERE id = ? AND {_STUDENT_ROLE_FILTER}
                """,
                (int(bool(active)), reviewer_id, now, now, student_id, STUDENT_ROLE),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_student(self, row: sqlite3.Row) -> Student:
        return Student(
            id=int(row["id"]),
            email=str(row["email"]),
            name=str(row["name"] or ""),
            status=bool(row["is_active"]),
            class_name=row["class_name"],
            section_name=row["section_name"],
            roll=row["roll"],
            profile=json.loads(row["profile"] or "{}"),
            reviewer_id=row["reviewer_id"],
            reviewed_at=_parse_datetime(row["reviewed_at"]),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )


class SQLiteStudentRepository:
    """Async implementation of :class:`roster.repository.StudentRepository`.

    Statements run in worker threads so the event loop is never blocked.
    Slow statements are logged as warnings and failures as errors before the
    exception propagates to the caller.
    """

    def __init__(self, database: Database, *, slow_query_ms: int = 1000) -> None:
        self._database = database
        self._slow_query_ms = slow_query_ms

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        started = time.monotonic()
        try:
            result = await anyio.to_thread.run_sync(partial(func, *args))
        except InvalidArgument:
            raise
        except Exception as exc:
            logger.error(
                "Database operation failed (queryType=%s duration=%dms error=%s)",
                operation,
                (time.monotonic() - started) * 1000,
                exc,
            )
            raise

        duration_ms = (time.monotonic() - started) * 1000
        if duration_ms > self._slow_query_ms:
            rows = len(result) if isinstance(result, list) else result
            logger.warning(
                "Slow database query detected (queryType=%s duration=%dms rowsAffected=%s)",
                operation,
                duration_ms,
                rows,
            )
        return result

    async def resolve_role_id(self, name: str) -> int:
        return await self._run("SELECT", self._database.resolve_role_id, name)

    async def find_students(self, filters: Mapping[str, str]) -> List[Student]:
        return await self._run("SELECT", self._database.find_students, dict(filters))

    async def upsert_student(self, role_id: int, payload: StudentCreate) -> Student:
        return await self._run("INSERT", self._database.upsert_student, role_id, payload)

    async def find_student_detail(self, student_id: int) -> Optional[Student]:
        return await self._run("SELECT", self._database.find_student_detail, student_id)

    async def set_student_fields(self, student_id: int, fields: Mapping[str, object]) -> int:
        return await self._run("UPDATE", self._database.set_student_fields, student_id, dict(fields))

    async def set_student_active(self, student_id: int, active: bool, reviewer_id: int) -> int:
        return await self._run(
            "UPDATE", self._database.set_student_active, student_id, active, reviewer_id
        )


__all__ = [
    "Database",
    "SQLiteStudentRepository",
    "resolve_database_path",
    "split_student_fields",
]
