"""
Dashboard drag-and-drop reconciliation.

plan_drop decides what a gesture means without touching anything;
DashboardBoard applies the plan to the store and to its in-memory list.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from models import STATUS_LABELS, Status, Task, parse_priority

logger = logging.getLogger(__name__)

STATUS_ZONES = {
    "done": Status.DONE,
    "trash": Status.DELETED,
    "pending": Status.ON_HOLD,
    "watch": Status.WATCHING,
    "progress": Status.IN_PROGRESS,
}
# Columns may also be identified by the raw status value or its label
STATUS_ZONES.update({status.value: status for status in Status})
STATUS_ZONES.update({label: status for status, label in STATUS_LABELS.items()})
# Reverting is written as unprocessed; the legacy reverted status is never written
STATUS_ZONES.update({"reverted": Status.UNPROCESSED, STATUS_LABELS[Status.REVERTED]: Status.UNPROCESSED})


class DropKind(str, Enum):
    NONE = "none"
    STATUS = "status"
    PRIORITY = "priority"
    MOVE = "move"
    REORDER = "reorder"


@dataclass
class DropPlan:
    kind: DropKind
    task_id: Optional[str] = None
    target_id: Optional[str] = None
    updates: dict = field(default_factory=dict)


def zone_updates(over_id: str) -> Optional[tuple[DropKind, dict]]:
    """Store updates for dropping onto a zone, or None if over_id is not a zone."""
    status = STATUS_ZONES.get(over_id)
    if status is not None:
        return DropKind.STATUS, {"status": status}
    priority = parse_priority(over_id)
    if priority is not None and over_id == priority.value:
        # Moving into a priority column sends the task back for re-triage
        return DropKind.PRIORITY, {"priority": priority, "status": Status.UNPROCESSED}
    return None


def plan_drop(tasks: list[Task], active_id: str, over_id: Optional[str]) -> DropPlan:
    if over_id is None or active_id == over_id:
        return DropPlan(DropKind.NONE)

    by_id = {task.id: task for task in tasks}
    active = by_id.get(active_id)
    if active is None:
        return DropPlan(DropKind.NONE)

    zone = zone_updates(over_id)
    if zone is not None:
        kind, updates = zone
        return DropPlan(kind, task_id=active_id, updates=updates)

    target = by_id.get(over_id)
    if target is None:
        return DropPlan(DropKind.NONE)

    if target.priority != active.priority or target.status != active.status:
        return DropPlan(
            DropKind.MOVE,
            task_id=active_id,
            target_id=over_id,
            updates={"priority": target.priority, "status": target.status},
        )
    return DropPlan(DropKind.REORDER, task_id=active_id, target_id=over_id)


def move_item(tasks: list[Task], active_id: str, over_id: str) -> list[Task]:
    """Return a new list with the active task moved to the target's position."""
    ids = [task.id for task in tasks]
    old_index = ids.index(active_id)
    new_index = ids.index(over_id)
    moved = list(tasks)
    moved.insert(new_index, moved.pop(old_index))
    return moved


class DashboardBoard:
    """
    In-memory view of one user's board.

    Store-backed drops (zone and cross-column moves) update local state only
    after the store accepted the write. Same-column reorders update local
    state straight away and only reach the store when persist_order is set.
    """

    def __init__(self, store, user_id: str, tasks: list[Task], persist_order: bool = False):
        self.store = store
        self.user_id = user_id
        self.tasks = list(tasks)
        self.persist_order = persist_order

    def drop(self, active_id: str, over_id: Optional[str]) -> DropPlan:
        plan = plan_drop(self.tasks, active_id, over_id)

        if plan.kind == DropKind.NONE:
            return plan

        if plan.kind == DropKind.REORDER:
            self.tasks = move_item(self.tasks, active_id, over_id)
            self._persist_order()
            return plan

        stored = self.store.update_task_db(self.user_id, active_id, **plan.updates)
        if stored is None:
            logger.warning("Drop of %s for %s not applied: task not in store", active_id, self.user_id)
            return DropPlan(DropKind.NONE)
        self.tasks = [
            task.model_copy(update=plan.updates) if task.id == active_id else task
            for task in self.tasks
        ]
        if plan.kind == DropKind.MOVE:
            self.tasks = move_item(self.tasks, active_id, over_id)
            self._persist_order()
        logger.info("Drop %s on %s for %s: %s", active_id, over_id, self.user_id, plan.kind.value)
        return plan

    def _persist_order(self):
        if self.persist_order:
            self.store.update_sort_orders_db(self.user_id, [task.id for task in self.tasks])
            self.tasks = [
                task.model_copy(update={"sort_order": position})
                for position, task in enumerate(self.tasks)
            ]
