from __future__ import annotations

import copy
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.core.clock import FrozenClock, get_clock
from app.core.database import get_supabase
from app.schemas.assignments import Assignment, Submission
from app.services.assignment_store import AssignmentStore
from app.services.session_registry import SessionRegistry, get_session_registry
from app.services.submission_store import SubmissionStore

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class StorageUnavailable(Exception):
    pass


class FakeQuery:
    """Just enough of the PostgREST builder chain for the stores."""

    def __init__(self, db: "FakeSupabase", table: str, op: str, payload=None, on_conflict=None):
        self.db = db
        self.table = table
        self.op = op
        self.payload = payload
        self.on_conflict = on_conflict
        self.filters: list[tuple[str, object]] = []
        self.order_by: tuple[str, bool] | None = None
        self.limit_to: int | None = None

    def select(self, columns: str = "*"):
        return self

    def eq(self, column: str, value):
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.limit_to = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(row.get(col) == val for col, val in self.filters)

    def execute(self):
        self.db.calls.append((self.op, self.table))
        self.db.maybe_fail(self.op, self.table)
        rows = self.db.tables[self.table]

        if self.op == "select":
            found = [copy.deepcopy(r) for r in rows.values() if self._matches(r)]
            if self.order_by:
                column, desc = self.order_by
                found.sort(key=lambda r: (r.get(column) is not None, r.get(column) or ""), reverse=desc)
            if self.limit_to is not None:
                found = found[: self.limit_to]
            return SimpleNamespace(data=found)

        if self.op == "insert":
            doc = copy.deepcopy(self.payload)
            if doc["id"] in rows:
                raise StorageUnavailable(f"duplicate key {doc['id']}")
            rows[doc["id"]] = doc
            return SimpleNamespace(data=[copy.deepcopy(doc)])

        if self.op == "upsert":
            doc = copy.deepcopy(self.payload)
            merged = rows.get(doc["id"], {})
            merged.update(doc)
            rows[doc["id"]] = merged
            return SimpleNamespace(data=[copy.deepcopy(merged)])

        if self.op == "update":
            updated = []
            for row in rows.values():
                if self._matches(row):
                    row.update(copy.deepcopy(self.payload))
                    updated.append(copy.deepcopy(row))
            return SimpleNamespace(data=updated)

        if self.op == "delete":
            doomed = [key for key, row in rows.items() if self._matches(row)]
            return SimpleNamespace(data=[rows.pop(key) for key in doomed])

        raise AssertionError(f"unsupported op {self.op}")


class FakeTable:
    def __init__(self, db: "FakeSupabase", name: str):
        self.db = db
        self.name = name

    def select(self, columns: str = "*"):
        return FakeQuery(self.db, self.name, "select")

    def insert(self, payload):
        return FakeQuery(self.db, self.name, "insert", payload)

    def upsert(self, payload, on_conflict=None):
        return FakeQuery(self.db, self.name, "upsert", payload, on_conflict)

    def update(self, payload):
        return FakeQuery(self.db, self.name, "update", payload)

    def delete(self):
        return FakeQuery(self.db, self.name, "delete")


class FakeSupabase:
    """In-memory stand-in for the Supabase client used by the stores."""

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = defaultdict(dict)
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, int] = {}

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    def fail(self, op: str, times: int = 10**6) -> None:
        self._failures[op] = times

    def heal(self) -> None:
        self._failures.clear()

    def maybe_fail(self, op: str, table: str) -> None:
        remaining = self._failures.get(op, 0)
        if remaining > 0:
            self._failures[op] = remaining - 1
            raise StorageUnavailable(f"{op} on {table} failed")

    def count(self, op: str) -> int:
        return sum(1 for call_op, _ in self.calls if call_op == op)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Run async tests on asyncio only."""
    return "asyncio"


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture()
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture()
def submission_store(fake_db, clock) -> SubmissionStore:
    return SubmissionStore(fake_db, clock)


@pytest.fixture()
def assignment_store(fake_db, clock) -> AssignmentStore:
    return AssignmentStore(fake_db, clock)


def _default_questions() -> list[dict]:
    return [
        {
            "id": "q1",
            "type": "multiple-choice",
            "text": "Pick B",
            "options": ["A", "B", "C"],
            "correct_answer": 1,
            "points": 10,
            "explanation": "B is the second option",
            "required": True,
        },
        {
            "id": "q2",
            "type": "short-answer",
            "text": "Capital of France?",
            "correct_answer": "Paris",
            "points": 10,
        },
        {
            "id": "q3",
            "type": "essay",
            "text": "Discuss.",
            "points": 5,
        },
        {
            "id": "q4",
            "type": "file-upload",
            "text": "Upload your notebook",
            "points": 5,
        },
    ]


@pytest.fixture()
def make_assignment():
    def _make(**overrides) -> Assignment:
        questions = overrides.pop("questions", None)
        if questions is None:
            questions = _default_questions()
        data = {
            "id": "hw1",
            "unit_id": "week-1",
            "title": "Homework 1",
            "description": "First homework",
            "questions": questions,
            "total_points": sum(q["points"] for q in questions),
            "due_date": NOW + timedelta(days=2),
            "allow_late_submission": False,
            "is_published": True,
            "show_answers_after_deadline": True,
        }
        data.update(overrides)
        return Assignment.model_validate(data)

    return _make


@pytest.fixture()
def make_submission():
    def _make(**overrides) -> Submission:
        data = {
            "id": "student-uid_hw1_1",
            "user_id": "student-uid",
            "assignment_id": "hw1",
            "answers": {},
            "is_submitted": True,
            "submitted_at": NOW,
        }
        data.update(overrides)
        return Submission.model_validate(data)

    return _make


# ---- HTTP ----

STUDENT = {"Authorization": "Bearer mock-student@example.com"}
INSTRUCTOR = {"Authorization": "Bearer mock-instructor@example.com"}


@pytest.fixture()
def registry(clock) -> SessionRegistry:
    return SessionRegistry(clock=clock, autosave_delay=3600, countdown_interval=3600)


@pytest.fixture()
def test_app(fake_db, clock, registry) -> FastAPI:
    from app.main import app

    app.dependency_overrides[get_supabase] = lambda: fake_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_session_registry] = lambda: registry
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(test_app: FastAPI, registry: SessionRegistry) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    await registry.close_all()
