from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path

import pytest

from roster.database import Database, SQLiteStudentRepository, split_student_fields
from roster.errors import InvalidArgument
from roster.models import StudentCreate


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db_path = tmp_path / "roster.sqlite3"
    db = Database(db_path)
    db.initialize()
    return db


@pytest.fixture()
def student_role_id(database: Database) -> int:
    return database.resolve_role_id("student")


def test_initialize_seeds_roles_once(database: Database) -> None:
    database.initialize()
    names = [role.name for role in database.list_roles()]
    assert names == ["admin", "teacher", "student"]


def test_resolve_unknown_role_raises_lookup_error(database: Database) -> None:
    with pytest.raises(LookupError):
        database.resolve_role_id("janitor")


def test_split_student_fields_maps_aliases_to_columns() -> None:
    columns, profile = split_student_fields(
        {"name": " Ann ", "class": 5, "sectionName": "B", "roll": None, "phone": "555"}
    )
    assert columns == {"name": "Ann", "class_name": "5", "section_name": "B", "roll": None}
    assert profile == {"phone": "555"}


def test_upsert_creates_then_updates_by_email(database: Database, student_role_id: int) -> None:
    created = database.upsert_student(
        student_role_id,
        StudentCreate(email="ann@example.com", fields={"name": "Ann", "class": "5", "phone": "555"}),
    )
    assert created.status is True
    assert created.class_name == "5"
    assert created.profile == {"phone": "555"}

    updated = database.upsert_student(
        student_role_id,
        StudentCreate(email="ann@example.com", fields={"section": "B", "guardian": "Bea"}),
    )
    assert updated.id == created.id
    assert updated.name == "Ann"
    assert updated.section_name == "B"
    assert updated.profile == {"phone": "555", "guardian": "Bea"}


def test_upsert_rejects_email_of_non_student(database: Database, student_role_id: int) -> None:
    database.create_user("Tess", "tess@example.com", "teacher")
    with pytest.raises(InvalidArgument):
        database.upsert_student(student_role_id, StudentCreate(email="tess@example.com"))


def test_detail_is_scoped_to_student_role(database: Database, student_role_id: int) -> None:
    teacher_id = database.create_user("Tess", "tess@example.com", "teacher")
    student = database.upsert_student(student_role_id, StudentCreate(email="s@example.com"))

    assert database.find_student_detail(teacher_id) is None
    assert database.find_student_detail(student.id) == student
    assert database.find_student_detail(999999) is None


def test_student_loses_visibility_when_role_changes(database: Database, student_role_id: int) -> None:
    student = database.upsert_student(student_role_id, StudentCreate(email="s@example.com"))
    with sqlite3.connect(database.path) as conn:
        conn.execute(
            "UPDATE users SET role_id = (SELECT id FROM roles WHERE name = 'teacher') WHERE id = ?",
            (student.id,),
        )

    assert database.find_student_detail(student.id) is None
    assert database.set_student_fields(student.id, {"name": "Changed"}) == 0
    assert database.set_student_active(student.id, False, 1) == 0


def test_find_students_applies_filters(database: Database, student_role_id: int) -> None:
    database.upsert_student(student_role_id, StudentCreate(email="a@example.com", fields={"name": "Ann Lee", "class": "5", "section": "A", "roll": "1"}))
    database.upsert_student(student_role_id, StudentCreate(email="b@example.com", fields={"name": "Ben Ray", "class": "5", "section": "B", "roll": "2"}))
    database.upsert_student(student_role_id, StudentCreate(email="c@example.com", fields={"name": "Cal Lee", "class": "6", "section": "A", "roll": "1"}))
    database.create_user("Lee Teacher", "lee@example.com", "teacher")

    def emails(filters):
        return [student.email for student in database.find_students(filters)]

    assert emails({}) == ["a@example.com", "b@example.com", "c@example.com"]
    assert emails({"name": "Lee"}) == ["a@example.com", "c@example.com"]
    assert emails({"class": "5", "section": "B"}) == ["b@example.com"]
    assert emails({"roll": "1", "class": "6"}) == ["c@example.com"]
    assert emails({"class": "9"}) == []


def test_set_student_fields_merges_profile(database: Database, student_role_id: int) -> None:
    student = database.upsert_student(
        student_role_id, StudentCreate(email="s@example.com", fields={"phone": "1"})
    )
    assert database.set_student_fields(student.id, {"address": "Main St", "email": "new@example.com"}) == 1

    refreshed = database.find_student_detail(student.id)
    assert refreshed is not None
    assert refreshed.email == "new@example.com"
    assert refreshed.profile == {"phone": "1", "address": "Main St"}


def test_set_student_fields_rejects_duplicate_email(database: Database, student_role_id: int) -> None:
    database.create_user("Tess", "tess@example.com", "teacher")
    student = database.upsert_student(student_role_id, StudentCreate(email="s@example.com"))
    with pytest.raises(InvalidArgument):
        database.set_student_fields(student.id, {"email": "tess@example.com"})


def test_set_student_fields_with_no_changes_still_reports_match(database: Database, student_role_id: int) -> None:
    student = database.upsert_student(student_role_id, StudentCreate(email="s@example.com"))
    assert database.set_student_fields(student.id, {}) == 1
    assert database.set_student_fields(999999, {}) == 0


def test_set_student_active_counts_matched_rows(database: Database, student_role_id: int) -> None:
    student = database.upsert_student(student_role_id, StudentCreate(email="s@example.com"))

    assert database.set_student_active(student.id, False, 7) == 1
    assert database.set_student_active(student.id, False, 7) == 1
    assert database.set_student_active(999999, False, 7) == 0

    refreshed = database.find_student_detail(student.id)
    assert refreshed is not None
    assert refreshed.status is False
    assert refreshed.reviewer_id == 7
    assert refreshed.reviewed_at is not None


def test_repository_runs_statements_off_the_event_loop(database: Database) -> None:
    repository = SQLiteStudentRepository(database)

    async def scenario():
        role_id = await repository.resolve_role_id("student")
        created = await repository.upsert_student(role_id, StudentCreate(email="s@example.com"))
        affected = await repository.set_student_active(created.id, False, 3)
        return created, affected, await repository.find_students({})

    created, affected, listed = asyncio.run(scenario())
    assert affected == 1
    assert [student.id for student in listed] == [created.id]


def test_repository_logs_slow_queries(database: Database, caplog) -> None:
    repository = SQLiteStudentRepository(database, slow_query_ms=-1)
    with caplog.at_level(logging.WARNING, logger="roster.database"):
        asyncio.run(repository.find_students({}))
    assert "Slow database query detected" in caplog.text
    assert "queryType=SELECT" in caplog.text


def test_repository_logs_and_propagates_database_errors(tmp_path: Path, caplog) -> None:
    database = Database(tmp_path / "uninitialised.sqlite3")
    repository = SQLiteStudentRepository(database)
    with caplog.at_level(logging.ERROR, logger="roster.database"):
        with pytest.raises(sqlite3.OperationalError):
            asyncio.run(repository.find_student_detail(1))
    assert "Database operation failed" in caplog.text


def test_name_filter_treats_wildcards_literally(database: Database, student_role_id: int) -> None:
    database.upsert_student(student_role_id, StudentCreate(email="a@example.com", fields={"name": "Ann"}))
    database.upsert_student(student_role_id, StudentCreate(email="b@example.com", fields={"name": "100% Ben_R"}))

    def emails(name):
        return [student.email for student in database.find_students({"name": name})]

    assert emails("%") == ["b@example.com"]
    assert emails("_") == ["b@example.com"]
    assert emails("\\") == []
    assert emails("n_R") == ["b@example.com"]


def test_identifiers_beyond_sqlite_range_match_nothing(database: Database, student_role_id: int) -> None:
    huge = 99999999999999999999999
    database.upsert_student(student_role_id, StudentCreate(email="s@example.com"))

    assert database.find_student_detail(huge) is None
    assert database.set_student_fields(huge, {"name": "X"}) == 0
    assert database.set_student_active(huge, False, 1) == 0
    assert database.find_student_detail(2**63 - 1) is None
