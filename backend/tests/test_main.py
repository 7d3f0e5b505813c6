"""
Tests for main.py wiring: startup, shared clients and the webhook event handler.
"""
import pytest
import sys
import os
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
import main
from classifier import TaskClassifier
from line_client import AdminNotifier

from conftest import USER, FakeMessenger


class TestStartup:
    def test_lifespan_runs_migrations(self, test_db):
        from fastapi.testclient import TestClient

        with patch.object(database, "init_db") as init_db:
            with TestClient(main.app):
                pass
        init_db.assert_called_once()


class TestDependencies:
    def test_classifier_without_api_key(self, monkeypatch):
        monkeypatch.setattr(main, "ANTHROPIC_API_KEY", None)
        main.get_classifier.cache_clear()
        try:
            classifier = main.get_classifier()
            assert isinstance(classifier, TaskClassifier)
            assert classifier.client is None
        finally:
            main.get_classifier.cache_clear()

    def test_notifier_reads_admin_id(self, monkeypatch):
        monkeypatch.setenv("ADMIN_LINE_ID", "U-admin")
        notifier = main.get_notifier(FakeMessenger())
        assert isinstance(notifier, AdminNotifier)
        assert notifier.admin_id == "U-admin"

    def test_interpreter_uses_dashboard_url(self, fake_classifier):
        interpreter = main.get_interpreter(fake_classifier)
        assert interpreter.dashboard_url == main.DASHBOARD_URL
        assert interpreter.classifier is fake_classifier


class TestHandleEvent:
    @pytest.mark.asyncio
    async def test_text_event_is_replied(self, test_db, fake_classifier):
        messenger = FakeMessenger()
        event = {
            "type": "message",
            "replyToken": "token-1",
            "source": {"userId": USER},
            "message": {"type": "text", "text": "使い方"},
        }

        await main.handle_event(event, main.get_interpreter(fake_classifier), messenger)

        assert messenger.replies[0][0] == "token-1"

    @pytest.mark.asyncio
    async def test_event_without_user_is_ignored(self, test_db, fake_classifier):
        messenger = FakeMessenger()
        event = {
            "type": "message",
            "replyToken": "token-1",
            "source": {"type": "group"},
            "message": {"type": "text", "text": "一覧"},
        }

        await main.handle_event(event, main.get_interpreter(fake_classifier), messenger)

        assert messenger.replies == []
