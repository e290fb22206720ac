"""Core package for the student roster service."""

from __future__ import annotations

from typing import Any

from .database import Database, SQLiteStudentRepository, resolve_database_path
from .errors import InvalidArgument, NotFound, StorageFailure, StudentError, Unauthenticated
from .students import StudentService


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "SQLiteStudentRepository",
    "StudentService",
    "StudentError",
    "InvalidArgument",
    "Unauthenticated",
    "NotFound",
    "StorageFailure",
    "resolve_database_path",
    "create_app",
]
