"""
Tests for the chat history cleanup Celery task.
"""
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.fixtures import SessionFactory, TurnFactory
from walios.celery_app import celery_app
from walios.models import utcnow
from walios.tasks.cleanup import cleanup_chat_history, run_chat_cleanup

RESULTS = {
    "usersProcessed": 1,
    "emailsSent": 1,
    "conversationsDeleted": 4,
    "errors": [],
}


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    engine.dispose = AsyncMock()
    return engine


class TestCleanupChatHistoryTask:
    """Tests for the cleanup_chat_history task."""

    def test_runs_cleanup_and_disposes_engine(self, mock_engine):
        with patch("walios.tasks.cleanup.run_chat_cleanup", new=AsyncMock(return_value=RESULTS)) as run, patch(
            "walios.tasks.cleanup.async_engine", mock_engine
        ):
            results = cleanup_chat_history(hours_old=48, dry_run=True)

        assert results == RESULTS
        run.assert_awaited_once_with(48, True)
        mock_engine.dispose.assert_awaited_once()

    def test_default_horizon(self, mock_engine):
        with patch("walios.tasks.cleanup.run_chat_cleanup", new=AsyncMock(return_value=RESULTS)) as run, patch(
            "walios.tasks.cleanup.async_engine", mock_engine
        ), patch("walios.tasks.cleanup.settings") as mock_settings:
            mock_settings.chat_cleanup_hours_old = 24
            cleanup_chat_history()

        run.assert_awaited_once_with(24, False)

    def test_engine_disposed_on_failure(self, mock_engine):
        with patch(
            "walios.tasks.cleanup.run_chat_cleanup", new=AsyncMock(side_effect=RuntimeError("db down"))
        ), patch("walios.tasks.cleanup.async_engine", mock_engine):
            with pytest.raises(RuntimeError, match="db down"):
                cleanup_chat_history(hours_old=24)

        mock_engine.dispose.assert_awaited_once()


class TestRunChatCleanup:
    """Tests for run_chat_cleanup against the test database."""

    @pytest.mark.asyncio
    async def test_run(self, async_session, db_profile, mock_email_service):
        session = SessionFactory.create()
        async_session.add(session)
        async_session.add_all(
            TurnFactory.create_batch(3, session_id=session.id, start=utcnow() - timedelta(days=2))
        )
        await async_session.commit()

        @asynccontextmanager
        async def session_scope():
            yield async_session

        with patch("walios.tasks.cleanup.get_async_session", session_scope), patch(
            "walios.tasks.cleanup.get_email_service", return_value=mock_email_service
        ):
            results = await run_chat_cleanup(24)

        assert results["conversationsDeleted"] == 3
        assert results["emailsSent"] == 1


class TestBeatSchedule:
    """Tests for the Celery beat configuration."""

    def test_daily_cleanup_is_scheduled(self):
        entry = celery_app.conf.beat_schedule["chat-history-cleanup"]

        assert entry["task"] == "walios.tasks.cleanup.cleanup_chat_history"
        assert entry["schedule"] == timedelta(hours=24)
        assert entry["options"]["queue"] == "maintenance"

    def test_task_is_registered(self):
        assert "walios.tasks.cleanup.cleanup_chat_history" in celery_app.tasks
