import asyncio
import json
import logging
import os
import sqlite3
import sys
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

import anthropic
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import database
from classifier import DEFAULT_MODEL, ClassificationError, TaskClassifier, extract_json_array, normalize_proposals
from interpreter import CommandInterpreter
from line_client import AdminNotifier, LineMessagingClient, validate_signature
from models import (
    MANUAL_ENTRY_CATEGORY,
    AccessLog,
    AnalyzeRequest,
    DropRequest,
    ErrorReport,
    Priority,
    PriorityUpdate,
    QuickAddRequest,
    StatusUpdate,
    Task,
    TaskBatchCreate,
    TaskProposal,
    TitleUpdate,
    UserSettings,
)
from prompts import DASHBOARD_RUBRIC
from reconciler import DashboardBoard
from renderer import sort_tasks, summarize_by_user

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)
LINE_CHANNEL_ACCESS_TOKEN = os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")
DASHBOARD_URL = os.getenv("DASHBOARD_URL", "http://localhost:5173")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    database.init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Shared clients, built once per process
@lru_cache
def get_classifier() -> TaskClassifier:
    if not ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY is not set; classification will fail")
        return TaskClassifier(None, model=ANTHROPIC_MODEL)
    return TaskClassifier(anthropic.AsyncAnthropic(api_key=ANTHROPIC_API_KEY), model=ANTHROPIC_MODEL)


@lru_cache
def get_messenger() -> LineMessagingClient:
    return LineMessagingClient(LINE_CHANNEL_ACCESS_TOKEN)


def get_notifier(messenger=Depends(get_messenger)) -> AdminNotifier:
    return AdminNotifier(messenger, os.getenv("ADMIN_LINE_ID"))


def get_interpreter(classifier=Depends(get_classifier)) -> CommandInterpreter:
    return CommandInterpreter(database, classifier, DASHBOARD_URL)


@app.exception_handler(sqlite3.Error)
async def store_error_handler(request: Request, exc: sqlite3.Error):
    """Store failures become a 500 and an alert to the operator."""
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    messenger_factory = request.app.dependency_overrides.get(get_messenger, get_messenger)
    notifier = get_notifier(messenger_factory())
    await notifier.notify_error(f"{request.method} {request.url.path}", str(exc))
    return JSONResponse(status_code=500, content={"detail": "Store operation failed"})


def _require_task(task: Optional[Task]) -> Task:
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


# Chat webhook
async def handle_event(event: dict, interpreter: CommandInterpreter, messenger: LineMessagingClient):
    message = event.get("message") or {}
    if event.get("type") != "message" or message.get("type") != "text":
        return
    user_id = (event.get("source") or {}).get("userId")
    if not user_id:
        logger.warning("Ignoring text event without a user id")
        return
    messages = await interpreter.handle_message(user_id, message.get("text", ""))
    await messenger.reply(event["replyToken"], messages)


@app.post("/webhook")
async def webhook(
    request: Request,
    interpreter: CommandInterpreter = Depends(get_interpreter),
    messenger: LineMessagingClient = Depends(get_messenger),
) -> dict:
    body = await request.body()
    channel_secret = os.getenv("LINE_CHANNEL_SECRET", "")
    if not channel_secret:
        logger.error("LINE_CHANNEL_SECRET is not set")
        raise HTTPException(status_code=500, detail="Server Error")

    if not validate_signature(body, channel_secret, request.headers.get("x-line-signature")):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        events = json.loads(body).get("events") or []
    except (json.JSONDecodeError, AttributeError):
        raise HTTPException(status_code=400, detail="Malformed payload")
    if not isinstance(events, list) or not all(isinstance(event, dict) for event in events):
        raise HTTPException(status_code=400, detail="Malformed payload")

    # Events fail independently of each other
    results = await asyncio.gather(
        *(handle_event(event, interpreter, messenger) for event in events),
        return_exceptions=True
    )
    for result in results:
        if isinstance(result, Exception):
            logger.error("Webhook event failed: %r", result)

    return {"message": "OK"}


# Dashboard data API
@app.get("/tasks")
def get_tasks(user_id: str) -> list[Task]:
    return database.get_tasks_for_user(user_id)


@app.get("/tasks/active")
def get_active_tasks(user_id: str) -> list[dict]:
    """Active tasks in chat display order, with the index chat commands use."""
    tasks = sort_tasks(database.get_active_tasks(user_id))
    return [{"index": i, **task.model_dump(mode="json")} for i, task in enumerate(tasks, start=1)]


@app.post("/tasks")
def create_tasks(batch: TaskBatchCreate) -> list[Task]:
    return database.insert_tasks_db(batch.user_id, batch.tasks)


@app.patch("/tasks/{task_id}/status")
def update_status(task_id: str, update: StatusUpdate) -> Task:
    return _require_task(database.set_status_db(update.user_id, task_id, update.status))


@app.patch("/tasks/{task_id}/priority")
def update_priority(task_id: str, update: PriorityUpdate) -> Task:
    return _require_task(database.set_priority_db(update.user_id, task_id, update.priority))


@app.patch("/tasks/{task_id}/title")
def update_title(task_id: str, update: TitleUpdate) -> Task:
    try:
        task = database.rename_task_db(update.user_id, task_id, update.title)
    except ValueError:
        raise HTTPException(status_code=400, detail="Title must not be empty")
    return _require_task(task)


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str, user_id: str) -> dict:
    if not database.delete_task_db(user_id, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


@app.post("/tasks/analyze")
async def analyze(request: AnalyzeRequest, classifier: TaskClassifier = Depends(get_classifier)) -> list[TaskProposal]:
    """Preview classification for the dashboard; nothing is stored."""
    try:
        ai_text = await classifier.complete(request.text, DASHBOARD_RUBRIC)
    except ClassificationError as e:
        logger.error("AI analysis error: %s", e)
        raise HTTPException(status_code=500, detail="Analysis failed")

    items = extract_json_array(ai_text)
    if items is None:
        return []
    return normalize_proposals(items)


@app.post("/tasks/quick-add")
async def quick_add(request: QuickAddRequest, classifier: TaskClassifier = Depends(get_classifier)) -> list[Task]:
    """
    Classify and store dashboard input. If classification fails the raw text
    is stored as a single IDEA task so the input is never lost.
    """
    text = request.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Text must not be empty")

    try:
        proposals = await classifier.classify(text, DASHBOARD_RUBRIC)
    except ClassificationError as e:
        logger.warning("Quick-add classification failed, storing as manual entry: %s", e)
        proposals = [TaskProposal(title=text, category=MANUAL_ENTRY_CATEGORY, priority=Priority.IDEA)]

    return database.insert_tasks_db(request.user_id, proposals)


@app.post("/tasks/drop")
def drop_task(request: DropRequest) -> dict:
    board = DashboardBoard(
        database,
        request.user_id,
        database.get_tasks_for_user(request.user_id),
        persist_order=True
    )
    plan = board.drop(request.active_id, request.over_id)
    return {"effect": plan.kind.value, "tasks": [task.model_dump(mode="json") for task in board.tasks]}


# User settings
@app.get("/user-settings")
def get_user_settings(user_id: Optional[str] = None) -> dict:
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing userId")
    return database.get_user_settings_db(user_id)


@app.post("/user-settings")
def save_user_settings(settings: UserSettings) -> dict:
    if not settings.user_id:
        raise HTTPException(status_code=400, detail="Missing userId")
    return database.save_user_settings_db(
        settings.user_id,
        dev_rank_name=settings.dev_rank_name,
        idea_rank_name=settings.idea_rank_name
    )


# Side channels: failures here never reach the caller
@app.post("/log-access")
async def log_access(entry: AccessLog, notifier: AdminNotifier = Depends(get_notifier)) -> dict:
    try:
        database.log_access_db(entry.user_id, entry.path)
    except sqlite3.Error as e:
        logger.error("Access log write failed: %s", e)
    await notifier.notify_access(entry.user_id, entry.path)
    return {"message": "Logged"}


@app.post("/notify-error")
async def notify_error(report: ErrorReport, notifier: AdminNotifier = Depends(get_notifier)) -> dict:
    notified = await notifier.notify_error(report.context, report.error)
    return {"message": "Notified" if notified else "Skipped"}


@app.get("/admin/tasks")
def admin_tasks() -> dict:
    tasks = database.get_all_tasks_db()
    users = summarize_by_user(tasks)
    for user in users:
        user["buckets"] = {
            priority: [task.model_dump(mode="json") for task in bucket]
            for priority, bucket in user["buckets"].items()
        }
    return {"total_users": len(users), "total_tasks": len(tasks), "users": users}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
