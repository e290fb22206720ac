import asyncio
from itertools import chain, repeat

from main import _change_status, _list_students, _parse_args, _resolve_reviewer_id, main
from roster.database import Database, SQLiteStudentRepository
from roster.models import StudentCreate
from roster.students import StudentService


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"
    assert args.port == 5007


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_admin_subcommand_accepts_reviewer() -> None:
    args = _parse_args(["admin", "--reviewer-id", "3"])
    assert args.command == "admin"
    assert args.reviewer_id == 3


def test_init_db_subcommand_available() -> None:
    assert _parse_args(["init-db"]).command == "init-db"


def test_reviewer_id_falls_back_to_environment(monkeypatch) -> None:
    monkeypatch.setenv("ROSTER_ADMIN_ID", "12")
    assert _resolve_reviewer_id(None) == 12
    assert _resolve_reviewer_id(4) == 4
    monkeypatch.setenv("ROSTER_ADMIN_ID", "twelve")
    assert _resolve_reviewer_id(None) is None


def _service(tmp_path) -> StudentService:
    database = Database(tmp_path / "roster.sqlite3")
    database.initialize()
    return StudentService(SQLiteStudentRepository(database))


def test_list_students_prints_table(tmp_path, capsys) -> None:
    service = _service(tmp_path)
    asyncio.run(service.create_student(StudentCreate(email="ann@test.com", fields={"name": "Ann"})))

    _list_students(service)

    output = capsys.readouterr().out
    assert "1 student(s) found" in output
    assert "ann@test.com" in output
    assert "active" in output


def test_change_status_without_reviewer_refuses(tmp_path, capsys) -> None:
    _change_status(_service(tmp_path), active=False, reviewer_id=None)
    assert "No reviewer account configured" in capsys.readouterr().out


def test_change_status_deactivates_student(tmp_path, capsys, monkeypatch) -> None:
    service = _service(tmp_path)
    created = asyncio.run(service.create_student(StudentCreate(email="ann@test.com")))
    answers = chain([str(created.id)], repeat(""))
    monkeypatch.setattr("builtins.input", lambda _prompt="": next(answers))

    _change_status(service, active=False, reviewer_id=1)

    assert f"Student #{created.id} is now inactive." in capsys.readouterr().out
    assert asyncio.run(service.get_student_detail(created.id)).status is False


def test_change_status_reports_unknown_student(tmp_path, capsys, monkeypatch) -> None:
    monkeypatch.setattr("builtins.input", lambda _prompt="": "999")
    _change_status(_service(tmp_path), active=True, reviewer_id=1)
    assert "Failed to update student: Student not found" in capsys.readouterr().out


def test_init_db_creates_database_and_reports_roles(tmp_path, capsys, monkeypatch) -> None:
    db_path = tmp_path / "fresh.sqlite3"
    monkeypatch.setenv("ROSTER_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("ROSTER_DB_PATH", str(db_path))

    main(["init-db"])

    assert db_path.exists()
    assert "Roles: admin, teacher, student" in capsys.readouterr().out
