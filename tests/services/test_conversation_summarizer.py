"""
Tests for rolling conversation summaries.
"""
import uuid
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Update

from tests.fixtures import OTHER_USER_ID, TEST_USER_ID, SessionFactory, TurnFactory, make_completion
from walios.models import AssistantConversation, AssistantSessionSummary
from walios.services.conversation_summarizer import (
    MAX_UNSUMMARIZED_TURNS,
    RECENT_PRESERVE,
    ConversationSummarizer,
    build_transcript,
    heuristic_summary,
)


@pytest_asyncio.fixture
async def chat_session(async_session):
    session = SessionFactory.create()
    async_session.add(session)
    await async_session.commit()
    return session


@pytest.fixture
def chat_session_turns():
    session_id = uuid.uuid4()
    return [
        TurnFactory.create(session_id=session_id, role="user", content="We need $50,000 for the clinic."),
        TurnFactory.create(
            session_id=session_id, role="assistant", content="You should register on SAM.gov first."
        ),
    ]


async def _add_turns(db, session, count):
    turns = TurnFactory.create_batch(count, session_id=session.id)
    db.add_all(turns)
    await db.commit()
    return turns


async def _summaries(db):
    return (await db.execute(select(AssistantSessionSummary))).scalars().all()


async def _unsummarized_count(db, session_id):
    return (
        await db.execute(
            select(func.count(AssistantConversation.id)).where(
                AssistantConversation.session_id == session_id,
                AssistantConversation.summarized.is_(False),
            )
        )
    ).scalar_one()


class TestSummarizeSessionIfNeeded:
    """Tests for ConversationSummarizer.summarize_session_if_needed."""

    @pytest.mark.asyncio
    async def test_at_threshold_is_skipped_without_writes(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, MAX_UNSUMMARIZED_TURNS)
        summarizer = ConversationSummarizer(fake_provider)

        result = await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        assert result == {"skipped": True, "reason": "below_threshold", "unsummarized": MAX_UNSUMMARIZED_TURNS}
        assert await _summaries(async_session) == []
        fake_provider.generate_completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_over_threshold_preserves_recent_turns(self, async_session, chat_session, fake_provider):
        turns = await _add_turns(async_session, chat_session, 30)
        fake_provider.generate_completion.return_value = make_completion("Key User Objectives:\n- Fund the clinic")
        summarizer = ConversationSummarizer(fake_provider)

        result = await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        assert result == {"summarized": True, "turns": 20, "method": "llm"}
        summaries = await _summaries(async_session)
        assert len(summaries) == 1
        assert summaries[0].turns_covered == 20
        assert summaries[0].covered_until == turns[19].created_at
        assert summaries[0].summary_text.startswith("Key User Objectives")
        assert await _unsummarized_count(async_session, chat_session.id) == RECENT_PRESERVE

    @pytest.mark.asyncio
    async def test_newest_turns_stay_unsummarized(self, async_session, chat_session, fake_provider):
        turns = await _add_turns(async_session, chat_session, 26)
        summarizer = ConversationSummarizer(fake_provider)

        await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        remaining = (
            await async_session.execute(
                select(AssistantConversation.id).where(AssistantConversation.summarized.is_(False))
            )
        ).scalars().all()
        assert set(remaining) == {t.id for t in turns[-RECENT_PRESERVE:]}

    @pytest.mark.asyncio
    async def test_llm_failure_uses_heuristic(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, 30)
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")
        summarizer = ConversationSummarizer(fake_provider)

        result = await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        assert result["method"] == "heuristic"
        summary = (await _summaries(async_session))[0]
        assert "Key User Objectives:" in summary.summary_text
        assert "Next Steps:" in summary.summary_text

    @pytest.mark.asyncio
    async def test_other_users_turns_are_not_counted(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, 30)
        summarizer = ConversationSummarizer(fake_provider)

        result = await summarizer.summarize_session_if_needed(async_session, chat_session.id, OTHER_USER_ID)

        assert result["skipped"] is True
        assert result["unsummarized"] == 0

    @pytest.mark.asyncio
    async def test_missing_identifiers(self, async_session):
        result = await ConversationSummarizer().summarize_session_if_needed(async_session, None, TEST_USER_ID)
        assert result == {"skipped": True, "reason": "missing_identifiers"}

    @pytest.mark.asyncio
    async def test_heuristic_only_when_llm_disabled(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, 30)
        summarizer = ConversationSummarizer(fake_provider)

        result = await summarizer.summarize_session_if_needed(
            async_session, chat_session.id, TEST_USER_ID, use_llm=False
        )

        assert result == {"summarized": True, "turns": 20, "method": "heuristic"}
        fake_provider.generate_completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_insert_failure_is_skipped(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, 30)
        summarizer = ConversationSummarizer(fake_provider)

        with patch.object(
            async_session,
            "flush",
            new=AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full"))),
        ):
            result = await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        assert result == {"skipped": True, "reason": "insert_failed"}
        assert await _summaries(async_session) == []
        assert await _unsummarized_count(async_session, chat_session.id) == 30

    @pytest.mark.asyncio
    async def test_flag_update_failure_keeps_summary(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, 30)
        summarizer = ConversationSummarizer(fake_provider)
        execute = async_session.execute

        async def execute_without_updates(statement, *args, **kwargs):
            if isinstance(statement, Update):
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return await execute(statement, *args, **kwargs)

        with patch.object(async_session, "execute", new=AsyncMock(side_effect=execute_without_updates)):
            result = await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        assert result["summarized"] is True
        assert len(await _summaries(async_session)) == 1
        assert await _unsummarized_count(async_session, chat_session.id) == 30


class TestSessionContextSummary:
    """Tests for get_session_context_summary."""

    @pytest.mark.asyncio
    async def test_summary_and_recent_turns(self, async_session, chat_session, fake_provider):
        await _add_turns(async_session, chat_session, 30)
        fake_provider.generate_completion.return_value = make_completion("Summary text")
        summarizer = ConversationSummarizer(fake_provider)
        await summarizer.summarize_session_if_needed(async_session, chat_session.id, TEST_USER_ID)

        context = await summarizer.get_session_context_summary(async_session, chat_session.id, TEST_USER_ID)

        assert context["summary"] == "Summary text"
        assert len(context["recent_turns"]) == RECENT_PRESERVE
        assert context["recent_turns"][-1]["content"].startswith("Turn 29")

    @pytest.mark.asyncio
    async def test_no_session(self, async_session):
        context = await ConversationSummarizer().get_session_context_summary(async_session, None, None)
        assert context == {"summary": None, "recent_turns": []}


class TestHeuristicSummary:
    """Tests for the regex fallback summary."""

    def test_sections(self, chat_session_turns):
        summary = heuristic_summary(chat_session_turns)

        assert "We need $50,000 for the clinic." in summary
        assert "You should register on SAM.gov first." in summary

    def test_empty_sections(self):
        summary = heuristic_summary([])
        assert summary.count("(none captured)") == 3

    def test_transcript(self, chat_session_turns):
        transcript = build_transcript(chat_session_turns)
        assert transcript.splitlines()[0] == "User: We need $50,000 for the clinic."
        assert transcript.splitlines()[1].startswith("Assistant: ")
