"""FastAPI application exposing the student resource."""
from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .database import Database, SQLiteStudentRepository
from .errors import ErrorSeverity, InvalidArgument, StudentError, classify
from .models import Caller, Student
from .notifications import Notifier, build_notifier
from .observability import LoggingObserver, Observer
from .security import TokenIdentity
from .students import StudentService
from .validation import (
    require_authenticated_caller,
    validate_create_payload,
    validate_identifier,
    validate_status_payload,
    validate_update_payload,
)

logger = logging.getLogger("roster.api")

_SEVERITY_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.CRITICAL: logging.ERROR,
}


class StudentResponse(BaseModel):
    id: int
    email: str
    name: str
    status: bool
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    roll: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict)
    reviewer_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StudentEnvelope(BaseModel):
    success: bool = True
    data: StudentResponse


class StudentListEnvelope(BaseModel):
    success: bool = True
    data: List[StudentResponse]
    count: int


def student_to_response(student: Student) -> StudentResponse:
    return StudentResponse(
        id=student.id,
        email=student.email,
        name=student.name,
        status=student.status,
        class_name=student.class_name,
        section_name=student.section_name,
        roll=student.roll,
        profile=dict(student.profile),
        reviewer_id=student.reviewer_id,
        reviewed_at=student.reviewed_at,
        created_at=student.created_at,
        updated_at=student.updated_at,
    )


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return await request.json()
    except ValueError as exc:
        raise InvalidArgument("Request body must be valid JSON") from exc


def register_error_handlers(app: FastAPI, observer: Observer, *, debug: bool = False) -> None:
    """Render every failure as ``{"error": message}`` with its stable status code."""

    @app.exception_handler(StudentError)
    async def student_error_handler(request: Request, exc: StudentError) -> JSONResponse:
        observer.record(
            _SEVERITY_LEVELS.get(exc.severity, logging.ERROR),
            exc.message,
            method=request.method,
            path=request.url.path,
            status_code=exc.code,
        )
        return JSONResponse(status_code=exc.code, content=exc.to_response())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        context: Dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        }
        if debug:
            context["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        observer.record(logging.ERROR, f"Unhandled {type(exc).__name__}", **context)
        error = classify(exc)
        return JSONResponse(status_code=error.code, content=error.to_response())


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    service: StudentService | None = None,
    observer: Observer | None = None,
    notifier: Notifier | None = None,
    identity: Callable[[Request], Awaitable[Optional[Caller]]] | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    if observer is None:
        observer = LoggingObserver(logger)

    if service is None:
        if database is None:
            database = Database(settings.database_path)
            database.initialize()
        elif initialize_database:
            database.initialize()
        repository = SQLiteStudentRepository(database, slow_query_ms=settings.slow_query_ms)
        service = StudentService(
            repository,
            observer=observer,
            notifier=notifier or build_notifier(settings),
            notify_timeout=settings.notify_timeout,
        )

    if identity is None:
        identity = TokenIdentity(settings.api_tokens)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await service.drain_notifications()

    app = FastAPI(
        title="Student Roster",
        description="Role-scoped student management API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.service = service
    register_error_handlers(app, observer, debug=settings.debug)

    def get_service() -> StudentService:
        return service

    async def get_caller(request: Request) -> Optional[Caller]:
        return await identity(request)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    router = APIRouter(prefix="/api/v1")

    @router.get("/students", response_model=StudentListEnvelope)
    async def list_students(
        request: Request,
        students: StudentService = Depends(get_service),
    ) -> StudentListEnvelope:
        found = await students.list_students(dict(request.query_params))
        return StudentListEnvelope(
            data=[student_to_response(item) for item in found],
            count=len(found),
        )

    @router.post(
        "/students",
        response_model=StudentEnvelope,
        status_code=status.HTTP_201_CREATED,
    )
    async def add_student(
        request: Request,
        students: StudentService = Depends(get_service),
    ) -> StudentEnvelope:
        payload = validate_create_payload(await _read_json_body(request))
        created = await students.create_student(payload)
        return StudentEnvelope(data=student_to_response(created))

    @router.get("/students/{student_id}", response_model=StudentEnvelope)
    async def read_student(
        student_id: str,
        students: StudentService = Depends(get_service),
    ) -> StudentEnvelope:
        found = await students.get_student_detail(validate_identifier(student_id))
        return StudentEnvelope(data=student_to_response(found))

    @router.put("/students/{student_id}", response_model=StudentEnvelope)
    async def update_student(
        student_id: str,
        request: Request,
        students: StudentService = Depends(get_service),
    ) -> StudentEnvelope:
        identifier = validate_identifier(student_id)
        payload = validate_update_payload(await _read_json_body(request))
        updated = await students.update_student(identifier, payload)
        return StudentEnvelope(data=student_to_response(updated))

    @router.patch("/students/{student_id}/status", response_model=StudentEnvelope)
    async def change_student_status(
        student_id: str,
        request: Request,
        caller: Optional[Caller] = Depends(get_caller),
        students: StudentService = Depends(get_service),
    ) -> StudentEnvelope:
        reviewer_id = require_authenticated_caller(caller)
        identifier = validate_identifier(student_id)
        new_status = validate_status_payload(await _read_json_body(request))
        updated = await students.set_student_status(identifier, new_status, reviewer_id)
        return StudentEnvelope(data=student_to_response(updated))

    @router.delete("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_student(
        student_id: str,
        caller: Optional[Caller] = Depends(get_caller),
        students: StudentService = Depends(get_service),
    ) -> Response:
        reviewer_id = require_authenticated_caller(caller)
        await students.delete_student(validate_identifier(student_id), reviewer_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(router)
    return app


__all__ = ["create_app", "register_error_handlers", "student_to_response", "StudentResponse"]
