from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class Priority(str, Enum):
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    DEV = "DEV"
    IDEA = "IDEA"


class Status(str, Enum):
    UNPROCESSED = "unprocessed"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ON_HOLD = "on_hold"
    WATCHING = "watching"
    REVERTED = "reverted"
    DELETED = "deleted"


# Ordinal used for display order; DEV/IDEA fall back to the lowest rank
PRIORITY_RANK = {
    Priority.S: 0,
    Priority.A: 1,
    Priority.B: 2,
    Priority.C: 3,
}
DEFAULT_RANK = 3

STATUS_LABELS = {
    Status.UNPROCESSED: "未処理",
    Status.IN_PROGRESS: "進行中",
    Status.DONE: "完了",
    Status.ON_HOLD: "保留",
    Status.WATCHING: "静観",
    Status.REVERTED: "戻す",
    Status.DELETED: "削除済み",
}

INACTIVE_STATUSES = frozenset({
    Status.DONE,
    Status.DELETED,
    Status.ON_HOLD,
    Status.WATCHING,
})

MANUAL_ENTRY_CATEGORY = "手動入力"


def parse_priority(value) -> Optional[Priority]:
    """Return the Priority for a raw value, or None if it is not one of the six."""
    if isinstance(value, Priority):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Priority(value.strip().upper())
    except ValueError:
        return None


class Task(BaseModel):
    id: str
    user_id: str
    title: str
    category: Optional[str] = None
    priority: Priority
    status: Status = Status.UNPROCESSED
    created_at: str  # ISO format datetime string
    sort_order: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES


class TaskProposal(BaseModel):
    """One task extracted from free text by the classifier."""
    title: str
    category: Optional[str] = None
    priority: Priority = Priority.IDEA


class TaskBatchCreate(BaseModel):
    user_id: str
    tasks: list[TaskProposal]


class StatusUpdate(BaseModel):
    user_id: str
    status: Status


class PriorityUpdate(BaseModel):
    user_id: str
    priority: Priority


class TitleUpdate(BaseModel):
    user_id: str
    title: str


class AnalyzeRequest(BaseModel):
    text: str


class QuickAddRequest(BaseModel):
    user_id: str
    text: str


class DropRequest(BaseModel):
    user_id: str
    active_id: str
    over_id: Optional[str] = None  # None when the gesture was cancelled


class UserSettings(BaseModel):
    user_id: str
    dev_rank_name: Optional[str] = None
    idea_rank_name: Optional[str] = None


class AccessLog(BaseModel):
    user_id: Optional[str] = None
    path: str


class ErrorReport(BaseModel):
    context: str
    error: Any = None
