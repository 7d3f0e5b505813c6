"""
Chat command interpreter.

Each inbound message is normalized, split into lines and every line is
parsed with commands.parse_line. Index-bearing commands run immediately
against the user's active list; free-text lines are collected and sent to
the classifier as one batch. The reply is a single text message summarising
every line, followed by the refreshed task list when anything changed.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from classifier import ClassificationError
from commands import (
    META_DASHBOARD,
    META_HELP,
    META_LIST,
    FreeText,
    MetaCommand,
    Rename,
    SetPriority,
    SetStatus,
    Unrecognized,
    parse_line,
    split_lines,
)
from models import STATUS_LABELS, Status, Task
from prompts import HELP_TEXT
from renderer import build_flex_message, dashboard_link, sort_tasks

logger = logging.getLogger(__name__)


def not_found_text(index: int) -> str:
    return f"エラー: タスク {index} 番は見つかりませんでした。"


def text_message(text: str) -> dict:
    return {"type": "text", "text": text}


@dataclass
class Outcome:
    text: str
    changed: bool = False


@dataclass
class _Pass:
    """State of one message-handling pass for a single user."""
    user_id: str
    snapshot: Optional[list[Task]] = None
    notes: list[str] = field(default_factory=list)
    free_lines: list[str] = field(default_factory=list)
    show_list: bool = False


class CommandInterpreter:
    """
    Interprets chat text against one user's tasks.

    store is anything exposing the database.py task functions
    (get_active_tasks, set_status_db, set_priority_db, rename_task_db,
    insert_tasks_db); classifier is a TaskClassifier or a stand-in.
    """

    def __init__(self, store, classifier, dashboard_url: str):
        self.store = store
        self.classifier = classifier
        self.dashboard_url = dashboard_url

    async def handle_message(self, user_id: str, text: str) -> list[dict]:
        """Process one chat message and return the LINE messages to reply with."""
        current = _Pass(user_id)

        for line in split_lines(text):
            parsed = parse_line(line)
            if isinstance(parsed, FreeText):
                current.free_lines.append(parsed.text)
            elif isinstance(parsed, MetaCommand):
                self._meta(current, parsed)
            elif isinstance(parsed, Unrecognized):
                current.notes.append(f"「{parsed.text}」はコマンドとして理解できませんでした。")
            else:
                self._record(current, self._execute(current, parsed))

        if current.free_lines:
            self._record(current, await self._register(user_id, current.free_lines))

        return self._reply(current)

    def active_tasks(self, user_id: str) -> list[Task]:
        """The user's active tasks in display order."""
        return sort_tasks(self.store.get_active_tasks(user_id))

    def _record(self, current: _Pass, outcome: Outcome):
        current.notes.append(outcome.text)
        if outcome.changed:
            current.show_list = True
            # Later lines must resolve indices against the post-write list
            current.snapshot = None

    def _snapshot(self, current: _Pass) -> list[Task]:
        if current.snapshot is None:
            current.snapshot = self.active_tasks(current.user_id)
        return current.snapshot

    def _meta(self, current: _Pass, command: MetaCommand):
        if command.kind == META_LIST:
            current.show_list = True
        elif command.kind == META_HELP:
            current.notes.append(HELP_TEXT)
        elif command.kind == META_DASHBOARD:
            current.notes.append(f"ダッシュボード: {dashboard_link(self.dashboard_url, current.user_id)}")

    def _execute(self, current: _Pass, command) -> Outcome:
        try:
            tasks = self._snapshot(current)
        except sqlite3.Error:
            logger.exception("Failed to fetch active tasks for %s", current.user_id)
            return Outcome("タスク一覧の取得に失敗しました。")

        if isinstance(command, Rename):
            return self._rename(current.user_id, tasks, command)
        if isinstance(command, SetPriority):
            return self._set_priority(current.user_id, tasks, command)
        if isinstance(command, SetStatus):
            return self._set_status(current.user_id, tasks, command)
        raise TypeError(f"unsupported command: {command!r}")

    @staticmethod
    def _resolve(tasks: list[Task], index: int) -> Optional[Task]:
        if 1 <= index <= len(tasks):
            return tasks[index - 1]
        return None

    def _rename(self, user_id: str, tasks: list[Task], command: Rename) -> Outcome:
        target = self._resolve(tasks, command.index)
        if target is None:
            return Outcome(not_found_text(command.index))
        if not command.title:
            return Outcome("エラー: 新しいタスク名が空です。")

        try:
            renamed = self.store.rename_task_db(user_id, target.id, command.title)
        except sqlite3.Error:
            logger.exception("Rename failed for task %s", target.id)
            return Outcome("修正に失敗しました。")
        if renamed is None:
            return Outcome(not_found_text(command.index))
        return Outcome(f"タスク「{target.title}」を「{command.title}」に修正しました。", changed=True)

    def _set_priority(self, user_id: str, tasks: list[Task], command: SetPriority) -> Outcome:
        target = self._resolve(tasks, command.index)
        if target is None:
            return Outcome(not_found_text(command.index))

        try:
            updated = self.store.set_priority_db(user_id, target.id, command.priority)
        except sqlite3.Error:
            logger.exception("Priority update failed for task %s", target.id)
            return Outcome("優先度の変更に失敗しました。")
        if updated is None:
            return Outcome(not_found_text(command.index))
        return Outcome(
            f"タスク「{target.title}」の優先度を「{command.priority.value}」に変更しました。",
            changed=True
        )

    def _set_status(self, user_id: str, tasks: list[Task], command: SetStatus) -> Outcome:
        missing = [index for index in command.indices if self._resolve(tasks, index) is None]
        if missing:
            return Outcome("\n".join(not_found_text(index) for index in missing))

        # All indices refer to the same snapshot, so resolve before writing
        targets = [self._resolve(tasks, index) for index in command.indices]
        lines = []
        changed = False
        for index, target in zip(command.indices, targets):
            try:
                updated = self.store.set_status_db(user_id, target.id, command.status)
            except sqlite3.Error:
                logger.exception("Status update failed for task %s", target.id)
                lines.append("ステータスの更新に失敗しました。")
                continue
            if updated is None:
                # Removed between the list fetch and the write
                lines.append(not_found_text(index))
                continue
            changed = True
            lines.append(self._status_text(target, command))
        return Outcome("\n".join(lines), changed=changed)

    @staticmethod
    def _status_text(task: Task, command: SetStatus) -> str:
        if command.status == Status.DELETED:
            return f"タスク「{task.title}」を削除しました。"
        return f"タスク「{task.title}」を「{STATUS_LABELS[command.status]}」に変更しました。"

    async def _register(self, user_id: str, lines: list[str]) -> Outcome:
        text = "\n".join(lines)
        try:
            proposals = await self.classifier.classify(text)
        except ClassificationError as e:
            logger.error("Classification failed for %s: %s", user_id, e)
            return Outcome(f"「{text}」が理解できませんでした。")

        try:
            created = self.store.insert_tasks_db(user_id, proposals)
        except sqlite3.Error:
            logger.exception("Insert failed for %s", user_id)
            return Outcome("タスクの登録に失敗しました。")

        added = "\n".join(f"・{task.title} [{task.priority.value}]" for task in created)
        return Outcome(f"以下のタスクを登録しました：\n{added}", changed=True)

    def _reply(self, current: _Pass) -> list[dict]:
        messages = []
        notes = [note for note in current.notes if note]
        if notes:
            messages.append(text_message("\n".join(notes)))

        if current.show_list:
            try:
                tasks = self.active_tasks(current.user_id)
            except sqlite3.Error:
                logger.exception("Failed to fetch active tasks for %s", current.user_id)
                messages.append(text_message("タスク一覧の取得に失敗しました。"))
            else:
                link = dashboard_link(self.dashboard_url, current.user_id)
                messages.append(build_flex_message(tasks, link))

        if not messages:
            messages.append(text_message(HELP_TEXT))
        return messages
