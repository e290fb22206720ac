"""Command-line interface for the student roster service."""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import sys
from typing import Sequence

from roster.config import Settings, load_settings
from roster.database import Database, SQLiteStudentRepository
from roster.errors import StudentError
from roster.notifications import build_notifier
from roster.students import StudentService
from roster.validation import validate_create_payload, validate_identifier

logger = logging.getLogger("roster.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Student roster service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the roster tables and seed the roles")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP roster service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=5007,
        help="Port for the HTTP API (default: 5007)",
    )

    admin_parser = subparsers.add_parser(
        "admin", help="Launch the interactive administration console"
    )
    admin_parser.add_argument(
        "--reviewer-id",
        type=int,
        default=None,
        help=(
            "Account id recorded as the reviewer of status changes. Defaults to the "
            "ROSTER_ADMIN_ID environment variable when unset."
        ),
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _build_service(database: Database, settings: Settings) -> StudentService:
    repository = SQLiteStudentRepository(database, slow_query_ms=settings.slow_query_ms)
    return StudentService(
        repository,
        notifier=build_notifier(settings),
        notify_timeout=settings.notify_timeout,
    )


def _serve(*, database: Database, settings: Settings, host: str, port: int) -> None:
    from roster.api import create_app
    import uvicorn

    logger.info("Starting roster API on http://%s:%s", host, port)
    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=host, port=port, log_level="debug" if settings.debug else "info")


def _run_admin_cli(service: StudentService, *, reviewer_id: int | None = None) -> None:
    """Provide an interactive roster console for administrators."""

    print("Student Roster Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List students")
            print("  2) Add a student")
            print("  3) Deactivate a student")
            print("  4) Reactivate a student")
            print("  5) Exit")

            choice = input("Enter choice [1-5]: ").strip()

            if choice == "1":
                _list_students(service)
            elif choice == "2":
                _add_student(service)
            elif choice == "3":
                _change_status(service, active=False, reviewer_id=reviewer_id)
            elif choice == "4":
                _change_status(service, active=True, reviewer_id=reviewer_id)
            elif choice == "5":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_students(service: StudentService) -> None:
    students = asyncio.run(service.list_students({}))
    if not students:
        print("No students are currently registered.")
        return

    print(f"{len(students)} student(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Class':<8}  Status")
    print("-" * 80)
    for student in students:
        state = "active" if student.status else "inactive"
        print(
            f"{student.id:>4}  {student.name:<24}  {student.email:<32}  "
            f"{student.class_name or '-':<8}  {state}"
        )


def _add_student(service: StudentService) -> None:
    print("\nAdd a student (leave the email blank to cancel).")
    email = input("Email address: ").strip()
    if not email:
        print("Student creation cancelled.")
        return

    body = {"email": email}
    for label, key in (("Name", "name"), ("Class", "class"), ("Section", "section"), ("Roll", "roll")):
        value = input(f"{label}: ").strip()
        if value:
            body[key] = value

    async def _create():
        created = await service.create_student(validate_create_payload(body))
        await service.drain_notifications()
        return created

    try:
        student = asyncio.run(_create())
    except StudentError as exc:
        print(f"Failed to add student: {exc.message}")
        return

    print(f"Saved student #{student.id}: {student.name or '<no name>'} <{student.email}>")


def _change_status(service: StudentService, *, active: bool, reviewer_id: int | None) -> None:
    if reviewer_id is None:
        print(
            "No reviewer account configured. Provide --reviewer-id when launching the "
            "admin console or set the ROSTER_ADMIN_ID environment variable."
        )
        return

    raw = input("Student id: ").strip()
    try:
        student_id = validate_identifier(raw)
        asyncio.run(service.set_student_status(student_id, active, reviewer_id))
    except StudentError as exc:
        print(f"Failed to update student: {exc.message}")
        return

    print(f"Student #{student_id} is now {'active' if active else 'inactive'}.")


def _resolve_reviewer_id(value: int | None) -> int | None:
    if value is not None:
        return value
    raw = os.getenv("ROSTER_ADMIN_ID")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric ROSTER_ADMIN_ID value %r", raw)
        return None


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = load_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(database=database, settings=settings, host=args.host, port=args.port)
    elif args.command == "admin":
        _run_admin_cli(
            _build_service(database, settings),
            reviewer_id=_resolve_reviewer_id(getattr(args, "reviewer_id", None)),
        )
    elif args.command == "init-db":
        roles = ", ".join(role.name for role in database.list_roles())
        print(f"Database initialisation complete. Roles: {roles}")


if __name__ == "__main__":
    main()
