import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from roster.config import load_settings, resolve_database_path
from roster.database import Database, SQLiteStudentRepository
from roster.errors import StudentError
from roster.notifications import build_notifier
from roster.students import StudentService
from roster.validation import validate_create_payload


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add or update a student on the roster")
    parser.add_argument("email", help="Unique email address of the student")
    parser.add_argument("--name", default=None, help="Display name for the student")
    parser.add_argument("--class", dest="class_name", default=None, help="Class the student attends")
    parser.add_argument("--section", default=None, help="Section within the class")
    parser.add_argument("--roll", default=None, help="Roll number within the section")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to ROSTER_DB_PATH or data/roster.sqlite3)",
    )
    return parser.parse_args()


async def _create(service: StudentService, body: dict):
    student = await service.create_student(validate_create_payload(body))
    await service.drain_notifications()
    return student


def main() -> int:
    args = parse_args()
    settings = load_settings()

    db_path = resolve_database_path(args.db_path) if args.db_path else settings.database_path
    database = Database(db_path)
    database.initialize()

    service = StudentService(
        SQLiteStudentRepository(database, slow_query_ms=settings.slow_query_ms),
        notifier=build_notifier(settings),
        notify_timeout=settings.notify_timeout,
    )

    body = {"email": args.email}
    for key, value in (
        ("name", args.name),
        ("class", args.class_name),
        ("section", args.section),
        ("roll", args.roll),
    ):
        if value:
            body[key] = value

    try:
        student = asyncio.run(_create(service, body))
    except StudentError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Saved student #{student.id}: {student.name or '<no name>'} <{student.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
