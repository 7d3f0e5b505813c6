"""
Shared pytest fixtures for backend tests.
Uses a temp-file SQLite database per test for isolation.
"""
import pytest
import sqlite3
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from classifier import ClassificationError
from models import Priority, Status, Task, TaskProposal

USER = "U-test-user"


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT,
            priority TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'unprocessed',
            created_at TEXT NOT NULL,
            sort_order INTEGER
        );

        CREATE TABLE user_settings (
            user_id TEXT PRIMARY KEY,
            dev_rank_name TEXT,
            idea_rank_name TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE access_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT,
            path TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def make_task(test_db):
    """
    Insert a task with an explicit created_at so display order is deterministic.
    Minutes count up from 2026-01-01T09:00 in call order unless given.
    """
    counter = {"n": 0}

    def _make(title, priority="C", status="unprocessed", user_id=USER, created_at=None, category=None):
        counter["n"] += 1
        created_at = created_at or f"2026-01-01T09:{counter['n']:02d}:00"
        task_id = f"task-{counter['n']}"
        conn = sqlite3.connect(test_db)
        conn.execute(
            """INSERT INTO tasks (id, user_id, title, category, priority, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (task_id, user_id, title, category, Priority(priority).value, Status(status).value, created_at)
        )
        conn.commit()
        conn.close()
        return database.get_task_db(user_id, task_id)

    return _make


class FakeClassifier:
    """Stands in for TaskClassifier; returns canned proposals or raises."""

    def __init__(self, proposals=None, error=None, raw_text=None):
        self.proposals = proposals or []
        self.error = error
        self.raw_text = raw_text
        self.calls = []

    async def complete(self, text, rubric):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.raw_text or ""

    async def classify(self, text, rubric=None):
        self.calls.append(text)
        if self.error:
            raise self.error
        if not self.proposals:
            raise ClassificationError("AI response contained no tasks")
        return [TaskProposal(**p) if isinstance(p, dict) else p for p in self.proposals]


class FakeMessenger:
    """Records replies and pushes instead of calling the LINE API."""

    def __init__(self, error=None):
        self.replies = []
        self.pushes = []
        self.error = error

    async def reply(self, reply_token, messages):
        if self.error:
            raise self.error
        self.replies.append((reply_token, messages))

    async def push(self, to, messages):
        if self.error:
            raise self.error
        self.pushes.append((to, messages))


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def fake_messenger():
    return FakeMessenger()


@pytest.fixture
def app_client(test_db, monkeypatch, fake_classifier, fake_messenger):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations and swaps in fake AI/LINE clients.
    """
    from fastapi.testclient import TestClient
    import main

    # Skip alembic in tests - tables already created by test_db fixture
    monkeypatch.setattr(database, "init_db", lambda: None)
    monkeypatch.setenv("LINE_CHANNEL_SECRET", "test-secret")
    monkeypatch.setenv("ADMIN_LINE_ID", "U-admin")

    main.app.dependency_overrides[main.get_classifier] = lambda: fake_classifier
    main.app.dependency_overrides[main.get_messenger] = lambda: fake_messenger
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


def active_titles(user_id=USER):
    """Titles of the user's active tasks in display order."""
    from renderer import sort_tasks
    return [t.title for t in sort_tasks(database.get_active_tasks(user_id))]


def as_task(**fields) -> Task:
    base = {
        "id": "t",
        "user_id": USER,
        "title": "task",
        "priority": Priority.C,
        "status": Status.UNPROCESSED,
        "created_at": "2026-01-01T09:00:00",
    }
    base.update(fields)
    return Task(**base)
