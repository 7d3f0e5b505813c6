from urllib.parse import urlencode

from models import DEFAULT_RANK, PRIORITY_RANK, Priority, Status, Task

EMPTY_LIST_TEXT = "未処理のタスクはありません"
IN_PROGRESS_GLYPH = "🏃"
USAGE_HINT = "例: '1 完了' / '1 削除' / '1 は 〇〇 に修正'"

PRIORITY_COLORS = {
    Priority.S: "#FF3333",
    Priority.A: "#FF9933",
    Priority.B: "#33CC33",
    Priority.C: "#3399FF",
}
DEFAULT_COLOR = "#000000"
ACCENT_COLOR = "#1DB446"

RANKED_PRIORITIES = (Priority.S, Priority.A, Priority.B, Priority.C)


def priority_rank(priority) -> int:
    return PRIORITY_RANK.get(priority, DEFAULT_RANK)


def sort_tasks(tasks: list[Task]) -> list[Task]:
    """
    Canonical display order: priority rank (S first), then oldest first.
    The 1-based position in this list is what chat commands refer to.
    """
    return sorted(tasks, key=lambda t: (priority_rank(t.priority), t.created_at))


def format_task_line(position: int, task: Task) -> str:
    glyph = f"{IN_PROGRESS_GLYPH} " if task.status == Status.IN_PROGRESS else ""
    return f"{position}. {glyph}{task.title} ({task.priority.value})"


def render_text(tasks: list[Task]) -> str:
    """Numbered plain-text list of already-sorted tasks."""
    if not tasks:
        return EMPTY_LIST_TEXT
    return "\n".join(format_task_line(i, task) for i, task in enumerate(tasks, start=1))


def dashboard_link(base_url: str, user_id: str) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode({'u': user_id})}"


def _task_row(position: int, task: Task) -> dict:
    glyph = f"{IN_PROGRESS_GLYPH} " if task.status == Status.IN_PROGRESS else ""
    return {
        "type": "box",
        "layout": "horizontal",
        "contents": [
            {
                "type": "text",
                "text": f"{position}. {glyph}{task.title}",
                "flex": 4,
                "size": "sm",
                "color": "#333333",
                "wrap": True,
            },
            {
                "type": "text",
                "text": f"({task.priority.value})",
                "flex": 1,
                "size": "sm",
                "color": PRIORITY_COLORS.get(task.priority, DEFAULT_COLOR),
                "align": "end",
                "weight": "bold",
            },
        ],
        "margin": "md",
    }


def build_flex_message(tasks: list[Task], dashboard_url: str) -> dict:
    """LINE Flex bubble listing already-sorted tasks, linked to the dashboard."""
    rows = [_task_row(i, task) for i, task in enumerate(tasks, start=1)]
    if not rows:
        rows = [{"type": "text", "text": EMPTY_LIST_TEXT, "color": "#aaaaaa", "align": "center", "size": "sm"}]

    open_dashboard = {"type": "uri", "label": "Dashboard", "uri": dashboard_url}
    return {
        "type": "flex",
        "altText": "タスク一覧",
        "contents": {
            "type": "bubble",
            "header": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    {
                        "type": "text",
                        "text": "📋 タスク一覧 (ダッシュボード)",
                        "weight": "bold",
                        "size": "md",
                        "color": ACCENT_COLOR,
                    }
                ],
                "action": open_dashboard,
            },
            "body": {
                "type": "box",
                "layout": "vertical",
                "contents": rows,
                "action": open_dashboard,
            },
            "footer": {
                "type": "box",
                "layout": "vertical",
                "spacing": "sm",
                "contents": [
                    {
                        "type": "button",
                        "action": {"type": "uri", "label": "ダッシュボードを開く", "uri": dashboard_url},
                        "style": "primary",
                        "color": ACCENT_COLOR,
                        "height": "sm",
                    },
                    {
                        "type": "text",
                        "text": USAGE_HINT,
                        "size": "xxs",
                        "color": "#aaaaaa",
                        "align": "center",
                    },
                ],
            },
        },
    }


def summarize_by_user(tasks: list[Task]) -> list[dict]:
    """
    Admin aggregate: for each user, the S/A/B/C buckets of open tasks
    plus active and done counts. Deleted tasks are left out entirely.
    """
    users: dict[str, list[Task]] = {}
    for task in tasks:
        if task.user_id:
            users.setdefault(task.user_id, []).append(task)

    summary = []
    for user_id, user_tasks in users.items():
        open_tasks = [t for t in user_tasks if t.status not in (Status.DONE, Status.DELETED)]
        buckets = {
            priority.value: [t for t in sort_tasks(open_tasks) if t.priority == priority]
            for priority in RANKED_PRIORITIES
        }
        summary.append({
            "user_id": user_id,
            "active": sum(len(bucket) for bucket in buckets.values()),
            "done": sum(1 for t in user_tasks if t.status == Status.DONE),
            "buckets": buckets,
        })
    return summary
