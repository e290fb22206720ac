"""Input validation performed before any storage access.

Every function here is pure: it either returns a normalised value or raises
:class:`~roster.errors.InvalidArgument` (or
:class:`~roster.errors.Unauthenticated` for the caller check). Request bodies
are parsed with the pydantic request models below.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError, field_validator, model_validator

from .errors import InvalidArgument, Unauthenticated
from .models import StudentCreate, StudentUpdate

_INTEGER_PATTERN = re.compile(r"^[+-]?[0-9]+$")
_EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")


def validate_identifier(raw: Any) -> int:
    """Return ``raw`` as a positive integer id."""

    if raw is None:
        raise InvalidArgument("Student id is required")
    if isinstance(raw, bool):
        raise InvalidArgument("Student id must be a positive integer")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not _INTEGER_PATTERN.match(text):
            raise InvalidArgument("Student id must be a positive integer")
        value = int(text, 10)
    else:
        raise InvalidArgument("Student id must be a positive integer")

    if value <= 0:
        raise InvalidArgument("Student id must be a positive integer")
    return value


def _normalize_email(raw: Any) -> str:
    if not isinstance(raw, str):
        raise ValueError("Email is required")
    email = raw.strip().lower()
    if not email:
        raise ValueError("Email is required")
    if not _EMAIL_PATTERN.fullmatch(email):
        raise ValueError("Email address is not valid")
    return email


def validate_email(raw: Any) -> str:
    """Trim, lower-case and structurally check an email address."""

    try:
        return _normalize_email(raw)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


class _StudentPayload(BaseModel):
    """Base for student bodies: a non-empty JSON object with opaque extras."""

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _require_object(cls, value: Any) -> Any:
        if not isinstance(value, Mapping) or not value:
            raise ValueError("Request body must not be empty")
        return dict(value)

    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class StudentCreateRequest(_StudentPayload):
    email: str

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, value: Any) -> str:
        return _normalize_email(value)


class StudentUpdateRequest(_StudentPayload):
    email: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, value: Any) -> str:
        return _normalize_email(value)


class StudentStatusRequest(BaseModel):
    status: StrictBool

    @model_validator(mode="before")
    @classmethod
    def _coerce_object(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return {}
        return dict(value)


def _error_message(exc: ValidationError, *, missing: str) -> str:
    for error in exc.errors():
        if error["type"] == "missing":
            return missing
        reason = (error.get("ctx") or {}).get("error")
        if reason is not None:
            return str(reason)
    return "Request body is not valid"


def validate_create_payload(body: Any) -> StudentCreate:
    try:
        request = StudentCreateRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidArgument(_error_message(exc, missing="Email is required")) from exc
    return StudentCreate(email=request.email, fields=request.extra_fields())


def validate_update_payload(body: Any) -> StudentUpdate:
    try:
        request = StudentUpdateRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidArgument(_error_message(exc, missing="Request body must not be empty")) from exc
    return StudentUpdate(email=request.email, fields=request.extra_fields())


def validate_status_payload(body: Any) -> bool:
    """Return the strictly boolean ``status`` carried by ``body``."""

    try:
        request = StudentStatusRequest.model_validate(body)
    except ValidationError as exc:
        for error in exc.errors():
            if error["type"] == "missing" or error.get("input") is None:
                raise InvalidArgument("Status is required") from exc
        raise InvalidArgument("Status must be a boolean") from exc
    return request.status


def require_authenticated_caller(identity: Any) -> int:
    """Return the caller id attached to the request or raise ``Unauthenticated``."""

    if identity is None:
        raise Unauthenticated("Authentication required")
    if isinstance(identity, Mapping):
        caller_id = identity.get("id")
    else:
        caller_id = getattr(identity, "id", None)
    if caller_id is None or isinstance(caller_id, bool):
        raise Unauthenticated("Authentication required")
    try:
        return validate_identifier(caller_id)
    except InvalidArgument as exc:
        raise Unauthenticated("Authentication required") from exc


__all__ = [
    "StudentCreateRequest",
    "StudentUpdateRequest",
    "StudentStatusRequest",
    "validate_identifier",
    "validate_email",
    "validate_create_payload",
    "validate_update_payload",
    "validate_status_payload",
    "require_authenticated_caller",
]
