"""Initial schema - tasks, user settings and access logs

Revision ID: 001
Revises: None
Create Date: 2026-01-12

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT,
            priority TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'unprocessed',
            created_at TEXT NOT NULL
        )
    """))
    conn.execute(text(
        "CREATE INDEX IF NOT EXISTS ix_tasks_user_status ON tasks (user_id, status)"
    ))

    # Per-user labels for the two freeform dashboard columns
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_settings (
            user_id TEXT PRIMARY KEY,
            dev_rank_name TEXT,
            idea_rank_name TEXT,
            updated_at TEXT NOT NULL
        )
    """))

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS access_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT,
            path TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS access_logs"))
    conn.execute(text("DROP TABLE IF EXISTS user_settings"))
    conn.execute(text("DROP INDEX IF EXISTS ix_tasks_user_status"))
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
