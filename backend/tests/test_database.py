"""
Tests for database.py - user-scoped task CRUD, status/priority helpers, settings, access logs.
"""
import pytest
import sqlite3
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import (
    create_task_db,
    insert_tasks_db,
    get_task_db,
    get_tasks_for_user,
    get_active_tasks,
    get_all_tasks_db,
    update_task_db,
    set_status_db,
    set_priority_db,
    rename_task_db,
    delete_task_db,
    update_sort_orders_db,
    get_user_settings_db,
    save_user_settings_db,
    log_access_db,
    DEFAULT_DEV_RANK_NAME,
    DEFAULT_IDEA_RANK_NAME,
)
from models import Priority, Status, TaskProposal

from conftest import USER


class TestTaskCRUD:
    """Tests for basic task create/read/update/delete operations."""

    def test_create_task_defaults(self, test_db):
        """New tasks start unprocessed."""
        task = create_task_db(USER, "Buy milk", "日用品", Priority.C)

        assert task.user_id == USER
        assert task.title == "Buy milk"
        assert task.category == "日用品"
        assert task.priority == Priority.C
        assert task.status == Status.UNPROCESSED
        assert get_task_db(USER, task.id) == task

    def test_insert_batch(self, test_db):
        """Batch insert stores every proposal as unprocessed."""
        created = insert_tasks_db(USER, [
            TaskProposal(title="資料作成", category="仕事", priority=Priority.S),
            TaskProposal(title="散歩", priority=Priority.C),
        ])

        assert [t.title for t in created] == ["資料作成", "散歩"]
        stored = get_tasks_for_user(USER)
        assert len(stored) == 2
        assert all(t.status == Status.UNPROCESSED for t in stored)

    def test_insert_empty_batch(self, test_db):
        assert insert_tasks_db(USER, []) == []
        assert get_tasks_for_user(USER) == []

    def test_queries_are_scoped_by_user(self, test_db):
        """Tasks of another user are invisible and untouchable."""
        mine = create_task_db(USER, "Mine", priority=Priority.A)
        theirs = create_task_db("U-other", "Theirs", priority=Priority.A)

        assert [t.title for t in get_tasks_for_user(USER)] == ["Mine"]
        assert get_task_db(USER, theirs.id) is None
        assert update_task_db(USER, theirs.id, title="Hijacked") is None
        assert delete_task_db(USER, theirs.id) is False
        assert get_task_db("U-other", theirs.id).title == "Theirs"
        assert get_task_db(USER, mine.id) is not None

    def test_get_all_tasks_reads_across_users(self, test_db):
        create_task_db(USER, "Mine")
        create_task_db("U-other", "Theirs")

        assert {t.user_id for t in get_all_tasks_db()} == {USER, "U-other"}

    def test_active_tasks_exclude_inactive_statuses(self, make_task):
        make_task("open")
        make_task("running", status="in_progress")
        make_task("legacy revert", status="reverted")
        for status in ("done", "deleted", "on_hold", "watching"):
            make_task(status, status=status)

        titles = {t.title for t in get_active_tasks(USER)}
        assert titles == {"open", "running", "legacy revert"}

    def test_update_only_changed_fields(self, make_task):
        task = make_task("Same", priority="B")
        updated = update_task_db(USER, task.id, title="Same", priority=Priority.A)

        assert updated.title == "Same"
        assert updated.priority == Priority.A

    def test_update_ignores_unknown_fields(self, make_task):
        task = make_task("Keep")
        updated = update_task_db(USER, task.id, owner="U-other", created_at="1999")

        assert updated.user_id == USER
        assert updated.created_at == task.created_at

    def test_update_task_not_found(self, test_db):
        """Update nonexistent task returns None."""
        assert update_task_db(USER, "nonexistent", title="New title") is None

    def test_hard_delete(self, make_task):
        task = make_task("Delete me")
        assert delete_task_db(USER, task.id) is True
        assert get_task_db(USER, task.id) is None

    def test_delete_task_not_found(self, test_db):
        """Delete nonexistent task returns False."""
        assert delete_task_db(USER, "nonexistent") is False


class TestStatusAndPriority:
    """Tests for the status, priority and title helpers."""

    def test_set_status(self, make_task):
        task = make_task("Work", status="in_progress")
        assert set_status_db(USER, task.id, Status.ON_HOLD).status == Status.ON_HOLD

    def test_soft_delete_keeps_row(self, make_task):
        task = make_task("Soft")
        set_status_db(USER, task.id, Status.DELETED)

        assert get_task_db(USER, task.id).status == Status.DELETED
        assert get_active_tasks(USER) == []

    def test_priority_change_resets_status(self, make_task):
        task = make_task("Triage", priority="B", status="in_progress")
        updated = set_priority_db(USER, task.id, Priority.S)

        assert updated.priority == Priority.S
        assert updated.status == Status.UNPROCESSED

    def test_rename_trims(self, make_task):
        task = make_task("Old")
        assert rename_task_db(USER, task.id, "  New  ").title == "New"

    def test_rename_rejects_empty(self, make_task):
        task = make_task("Old")
        with pytest.raises(ValueError):
            rename_task_db(USER, task.id, "   ")
        assert get_task_db(USER, task.id).title == "Old"

    def test_rename_to_same_title(self, make_task):
        task = make_task("打ち合わせ")
        assert rename_task_db(USER, task.id, "打ち合わせ").title == "打ち合わせ"

    def test_unknown_priority_in_store_is_rejected(self, test_db):
        """Priority values outside the enumeration never make it into a Task."""
        with pytest.raises(ValueError):
            create_task_db(USER, "Bad", priority="Z")


class TestOrdering:
    """Tests for dashboard ordering with sort_order."""

    def test_default_order_oldest_first(self, make_task):
        make_task("first")
        make_task("second")
        assert [t.title for t in get_tasks_for_user(USER)] == ["first", "second"]

    def test_sort_order_takes_precedence(self, make_task):
        a = make_task("a")
        b = make_task("b")
        c = make_task("c")
        update_sort_orders_db(USER, [c.id, a.id])

        # Tasks without a manual position come after the ordered ones
        assert [t.title for t in get_tasks_for_user(USER)] == ["c", "a", "b"]
        assert get_task_db(USER, b.id).sort_order is None


class TestUserSettings:
    """Tests for per-user column labels."""

    def test_defaults_when_absent(self, test_db):
        settings = get_user_settings_db(USER)
        assert settings["dev_rank_name"] == DEFAULT_DEV_RANK_NAME
        assert settings["idea_rank_name"] == DEFAULT_IDEA_RANK_NAME

    def test_upsert(self, test_db):
        save_user_settings_db(USER, dev_rank_name="開発")
        save_user_settings_db(USER, idea_rank_name="メモ")

        settings = get_user_settings_db(USER)
        assert settings["dev_rank_name"] == "開発"
        assert settings["idea_rank_name"] == "メモ"


class TestAccessLog:
    def test_log_access(self, test_db):
        log_access_db(USER, "/dev")

        conn = sqlite3.connect(test_db)
        rows = conn.execute("SELECT user_id, path FROM access_logs").fetchall()
        conn.close()
        assert rows == [(USER, "/dev")]
