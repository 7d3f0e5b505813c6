import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from models import (
    INACTIVE_STATUSES,
    Priority,
    Status,
    Task,
    TaskProposal,
)

logger = logging.getLogger(__name__)

DATABASE_PATH = os.getenv("DATABASE_PATH", "tasks.db")

DEFAULT_DEV_RANK_NAME = "自由設定（名前変更可能）"
DEFAULT_IDEA_RANK_NAME = "アイデア"

# Fields update_task_db is allowed to touch
UPDATABLE_FIELDS = ("title", "category", "priority", "status", "sort_order")


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess

    # Run alembic upgrade from the backend directory, against the same file we open
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    env = dict(os.environ, DATABASE_PATH=os.path.abspath(DATABASE_PATH))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        env=env,
        check=True
    )


def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    keys = row.keys()
    return Task(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        category=row["category"],
        priority=Priority(row["priority"]),
        status=Status(row["status"]),
        created_at=row["created_at"],
        sort_order=row["sort_order"] if "sort_order" in keys else None,
    )


def _now() -> str:
    return datetime.now().isoformat()


def _db_value(value):
    # Enum members are stored by their value
    if isinstance(value, (Priority, Status)):
        return value.value
    return value


def create_task_db(
    user_id: str,
    title: str,
    category: Optional[str] = None,
    priority: Priority = Priority.IDEA,
    status: Status = Status.UNPROCESSED,
    task_id: Optional[str] = None,
) -> Task:
    """Insert a single task for user_id and return it."""
    task_id = task_id or str(uuid.uuid4())
    created_at = _now()
    priority = Priority(priority)
    status = Status(status)

    with get_db() as conn:
        conn.execute(
            """INSERT INTO tasks
               (id, user_id, title, category, priority, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (task_id, user_id, title, category, priority.value, status.value, created_at)
        )
        conn.commit()

    return Task(
        id=task_id,
        user_id=user_id,
        title=title,
        category=category,
        priority=priority,
        status=status,
        created_at=created_at,
    )


def insert_tasks_db(user_id: str, proposals: Iterable[TaskProposal]) -> list[Task]:
    """
    Insert a batch of classified tasks for user_id.
    Every inserted task starts out unprocessed.
    """
    tasks = [
        Task(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=proposal.title,
            category=proposal.category,
            priority=proposal.priority,
            status=Status.UNPROCESSED,
            created_at=_now(),
        )
        for proposal in proposals
    ]
    if not tasks:
        return []

    with get_db() as conn:
        conn.executemany(
            """INSERT INTO tasks
               (id, user_id, title, category, priority, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (t.id, t.user_id, t.title, t.category, t.priority.value, t.status.value, t.created_at)
                for t in tasks
            ]
        )
        conn.commit()
    return tasks


def get_task_db(user_id: str, task_id: str) -> Optional[Task]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM tasks WHERE id = ? AND user_id = ?",
            (task_id, user_id)
        ).fetchone()
        if row:
            return _row_to_task(row)
    return None


def get_tasks_for_user(user_id: str) -> list[Task]:
    """All of a user's tasks in dashboard order: manual order first, then oldest first."""
    with get_db() as conn:
        rows = conn.execute("""
            SELECT * FROM tasks
            WHERE user_id = ?
            ORDER BY
                CASE WHEN sort_order IS NULL THEN 1 ELSE 0 END,
                sort_order,
                created_at
        """, (user_id,)).fetchall()
        return [_row_to_task(row) for row in rows]


def get_active_tasks(user_id: str) -> list[Task]:
    """
    Tasks that are not done, deleted, on hold or watching.
    Display order is decided by the renderer, not here.
    """
    inactive = sorted(status.value for status in INACTIVE_STATUSES)
    placeholders = ", ".join("?" for _ in inactive)
    with get_db() as conn:
        rows = conn.execute(
            f"SELECT * FROM tasks WHERE user_id = ? AND status NOT IN ({placeholders})",
            (user_id, *inactive)
        ).fetchall()
        return [_row_to_task(row) for row in rows]


def get_all_tasks_db() -> list[Task]:
    """Every user's tasks, newest first. Only the admin view reads across users."""
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC").fetchall()
        return [_row_to_task(row) for row in rows]


def update_task_db(user_id: str, task_id: str, **updates) -> Optional[Task]:
    """
    Update a task with any fields provided.
    Only updates fields that differ from current values.

    Args:
        user_id: Owner of the task; tasks of other users are never touched
        task_id: Task ID to update
        **updates: Field names and values to update (title, category, priority, status, sort_order)
    """
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM tasks WHERE id = ? AND user_id = ?",
            (task_id, user_id)
        ).fetchone()
        if not row:
            return None

        changes = {}
        for field, new_value in updates.items():
            if field not in UPDATABLE_FIELDS:
                continue
            new_value = _db_value(new_value)
            if new_value != row[field]:
                changes[field] = new_value

        # Execute UPDATE only if there are actual changes
        if changes:
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            values = list(changes.values()) + [task_id, user_id]
            conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ? AND user_id = ?", values)
            conn.commit()

        # Return updated task (re-fetch to get current state)
        updated_row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(updated_row)


def set_status_db(user_id: str, task_id: str, status: Status) -> Optional[Task]:
    return update_task_db(user_id, task_id, status=Status(status))


def set_priority_db(user_id: str, task_id: str, priority: Priority) -> Optional[Task]:
    """Change priority; the task goes back to unprocessed for re-triage."""
    return update_task_db(
        user_id, task_id,
        priority=Priority(priority),
        status=Status.UNPROCESSED,
    )


def rename_task_db(user_id: str, task_id: str, title: str) -> Optional[Task]:
    """Rename a task. Raises ValueError when the trimmed title is empty."""
    title = title.strip()
    if not title:
        raise ValueError("title must not be empty")
    return update_task_db(user_id, task_id, title=title)


def delete_task_db(user_id: str, task_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM tasks WHERE id = ? AND user_id = ?",
            (task_id, user_id)
        )
        conn.commit()
        return cursor.rowcount > 0


def update_sort_orders_db(user_id: str, ordered_ids: list[str]):
    """Persist a manual ordering: each id gets its position in ordered_ids."""
    with get_db() as conn:
        conn.executemany(
            "UPDATE tasks SET sort_order = ? WHERE id = ? AND user_id = ?",
            [(position, task_id, user_id) for position, task_id in enumerate(ordered_ids)]
        )
        conn.commit()


# User settings
def get_user_settings_db(user_id: str) -> dict:
    """Return the user's column labels, falling back to defaults when unset."""
    settings = {
        "user_id": user_id,
        "dev_rank_name": DEFAULT_DEV_RANK_NAME,
        "idea_rank_name": DEFAULT_IDEA_RANK_NAME,
    }
    with get_db() as conn:
        row = conn.execute(
            "SELECT dev_rank_name, idea_rank_name FROM user_settings WHERE user_id = ?",
            (user_id,)
        ).fetchone()
    if row:
        if row["dev_rank_name"]:
            settings["dev_rank_name"] = row["dev_rank_name"]
        if row["idea_rank_name"]:
            settings["idea_rank_name"] = row["idea_rank_name"]
    return settings


def save_user_settings_db(
    user_id: str,
    dev_rank_name: Optional[str] = None,
    idea_rank_name: Optional[str] = None
) -> dict:
    """Upsert the user's column labels. Labels passed as None keep their stored value."""
    now = _now()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO user_settings (user_id, dev_rank_name, idea_rank_name, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   dev_rank_name = COALESCE(excluded.dev_rank_name, dev_rank_name),
                   idea_rank_name = COALESCE(excluded.idea_rank_name, idea_rank_name),
                   updated_at = excluded.updated_at""",
            (user_id, dev_rank_name, idea_rank_name, now)
        )
        conn.commit()
    return get_user_settings_db(user_id)


def log_access_db(user_id: Optional[str], path: str):
    with get_db() as conn:
        conn.execute(
            "INSERT INTO access_logs (user_id, path, created_at) VALUES (?, ?, ?)",
            (user_id, path, _now())
        )
        conn.commit()
