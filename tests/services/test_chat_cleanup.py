"""
Tests for the chat history export, email and delete flow.
"""
import uuid
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from tests.fixtures import OTHER_USER_ID, TEST_USER_ID, SessionFactory, TurnFactory
from walios.core.exceptions import NotFoundError
from walios.models import AssistantConversation, UserProfile, utcnow
from walios.services.chat_cleanup import (
    ChatCleanupService,
    cutoff_for,
    export_user_history,
    group_into_sessions,
)


def _turn(created_at, role="user", content="Hello"):
    return TurnFactory.create(session_id=uuid.uuid4(), role=role, content=content, created_at=created_at)


async def _seed_turns(db, user_id, count, age):
    session = SessionFactory.create(user_id=user_id)
    db.add(session)
    turns = TurnFactory.create_batch(count, session_id=session.id, user_id=user_id, start=utcnow() - age)
    db.add_all(turns)
    await db.commit()
    return turns


async def _remaining(db):
    return (await db.execute(select(func.count(AssistantConversation.id)))).scalar_one()


@pytest.fixture
def cutoff():
    return cutoff_for(24)


@pytest_asyncio.fixture
async def old_and_new_turns(async_session, db_profile):
    """Six day-old turns and two fresh ones for TEST_USER_ID."""
    await _seed_turns(async_session, TEST_USER_ID, 6, timedelta(days=3))
    await _seed_turns(async_session, TEST_USER_ID, 2, timedelta(minutes=10))


class TestGroupIntoSessions:
    """Tests for splitting turns into reading sessions."""

    def test_gap_and_day_split(self):
        day = datetime(2026, 3, 2, 9, 0)
        turns = [
            _turn(day),
            _turn(day + timedelta(minutes=10), role="assistant"),
            _turn(day + timedelta(minutes=50)),
            _turn(day + timedelta(days=1)),
        ]

        sessions = group_into_sessions(turns)

        assert [s["messageCount"] for s in sessions] == [2, 1, 1]
        assert sessions[0]["date"] == "Monday, March 2, 2026"
        assert sessions[0]["messages"][1]["time"] == "9:10 AM"
        assert sessions[0]["messages"][1]["role"] == "assistant"

    def test_afternoon_time(self):
        sessions = group_into_sessions([_turn(datetime(2026, 3, 2, 12, 5))])
        assert sessions[0]["messages"][0]["time"] == "12:05 PM"

    def test_midnight_boundary_starts_new_session(self):
        late = datetime(2026, 3, 2, 23, 55)
        sessions = group_into_sessions([_turn(late), _turn(late + timedelta(minutes=10))])
        assert len(sessions) == 2

    def test_empty(self):
        assert group_into_sessions([]) == []


class TestExportUserHistory:
    """Tests for export_user_history."""

    @pytest.mark.asyncio
    async def test_export(self, async_session, old_and_new_turns, cutoff):
        export = await export_user_history(async_session, TEST_USER_ID, cutoff)

        assert export["hasData"] is True
        assert export["userProfile"]["email"] == "grants@riverbend.org"
        assert export["summary"]["totalMessages"] == 6
        assert sum(s["messageCount"] for s in export["sessions"]) == 6

    @pytest.mark.asyncio
    async def test_without_cutoff_exports_everything(self, async_session, old_and_new_turns):
        export = await export_user_history(async_session, TEST_USER_ID)
        assert export["summary"]["totalMessages"] == 8

    @pytest.mark.asyncio
    async def test_no_turns(self, async_session, db_profile, cutoff):
        export = await export_user_history(async_session, TEST_USER_ID, cutoff)
        assert export["hasData"] is False
        assert "sessions" not in export

    @pytest.mark.asyncio
    async def test_missing_profile(self, async_session, cutoff):
        with pytest.raises(NotFoundError):
            await export_user_history(async_session, OTHER_USER_ID, cutoff)


class TestRunCleanup:
    """Tests for ChatCleanupService.run_cleanup."""

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, async_session, old_and_new_turns, mock_email_service, cutoff):
        service = ChatCleanupService(mock_email_service)

        results = await service.run_cleanup(async_session, cutoff, dry_run=True)

        assert results["dryRun"] is True
        assert results["usersProcessed"] == 1
        assert results["conversationsDeleted"] == 6
        assert results["emailsSent"] == 0
        mock_email_service.send_chat_history.assert_not_called()
        assert await _remaining(async_session) == 8

    @pytest.mark.asyncio
    async def test_exports_emails_and_deletes(self, async_session, old_and_new_turns, mock_email_service, cutoff):
        service = ChatCleanupService(mock_email_service)

        results = await service.run_cleanup(async_session, cutoff)

        assert results["success"] is True
        assert results["emailsSent"] == 1
        assert results["conversationsDeleted"] == 6
        email, export = mock_email_service.send_chat_history.call_args.args
        assert email == "grants@riverbend.org"
        assert export["summary"]["totalMessages"] == 6
        assert await _remaining(async_session) == 2

    @pytest.mark.asyncio
    async def test_user_errors_do_not_stop_run(self, async_session, old_and_new_turns, mock_email_service, cutoff):
        await _seed_turns(async_session, OTHER_USER_ID, 2, timedelta(days=2))
        service = ChatCleanupService(mock_email_service)

        results = await service.run_cleanup(async_session, cutoff)

        assert results["emailsSent"] == 1
        assert results["errors"][0].startswith(f"Failed to process {OTHER_USER_ID}")
        assert results["conversationsDeleted"] == 8

    @pytest.mark.asyncio
    async def test_profile_without_email(self, async_session, mock_email_service, cutoff):
        async_session.add(UserProfile(user_id=OTHER_USER_ID, organization_name="No Email Org"))
        await _seed_turns(async_session, OTHER_USER_ID, 2, timedelta(days=2))
        service = ChatCleanupService(mock_email_service)

        results = await service.run_cleanup(async_session, cutoff)

        assert results["errors"] == [f"No email address for user: {OTHER_USER_ID}"]
        assert results["conversationsDeleted"] == 2

    @pytest.mark.asyncio
    async def test_email_failure_still_deletes(self, async_session, old_and_new_turns, mock_email_service, cutoff):
        mock_email_service.send_chat_history.side_effect = RuntimeError("SendGrid returned 500")
        service = ChatCleanupService(mock_email_service)

        results = await service.run_cleanup(async_session, cutoff)

        assert results["emailsFailed"] == 1
        assert results["errors"] == [f"Email failed for {TEST_USER_ID}: SendGrid returned 500"]
        assert await _remaining(async_session) == 2


class TestPreviewAndExport:
    """Tests for preview and single-user export."""

    @pytest.mark.asyncio
    async def test_preview(self, async_session, old_and_new_turns, mock_email_service, cutoff):
        preview = await ChatCleanupService(mock_email_service).preview(async_session, cutoff)

        assert preview["totalUsers"] == 1
        assert preview["totalConversations"] == 6
        assert preview["sampleUsers"][0]["organization_name"] == "Riverbend Community Health"
        assert preview["message"] == "Would process 1 users and delete 6 conversations"

    @pytest.mark.asyncio
    async def test_export_user(self, async_session, old_and_new_turns, mock_email_service, cutoff):
        result = await ChatCleanupService(mock_email_service).export_user(async_session, TEST_USER_ID, cutoff)

        assert result["message"] == "Chat history sent to grants@riverbend.org"
        assert result["summary"]["totalMessages"] == 6
        assert await _remaining(async_session) == 8

    @pytest.mark.asyncio
    async def test_export_user_without_history(self, async_session, db_profile, mock_email_service, cutoff):
        result = await ChatCleanupService(mock_email_service).export_user(async_session, TEST_USER_ID, cutoff)

        assert result["message"] == "No chat history found for this user"
        mock_email_service.send_chat_history.assert_not_called()

    @pytest.mark.asyncio
    async def test_export_user_without_email(self, async_session, mock_email_service, cutoff):
        async_session.add(UserProfile(user_id=OTHER_USER_ID, organization_name="No Email Org"))
        await _seed_turns(async_session, OTHER_USER_ID, 2, timedelta(days=2))

        with pytest.raises(ValueError, match="No email address"):
            await ChatCleanupService(mock_email_service).export_user(async_session, OTHER_USER_ID, cutoff)
