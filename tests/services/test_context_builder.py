"""
Tests for organization context building and assistant intent handling.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from tests.fixtures import OTHER_USER_ID, TEST_USER_ID, make_completion
from walios.models import OrgContextCache, UserProfile, utcnow
from walios.services.context_builder import (
    DATA_UNAVAILABLE_MESSAGE,
    build_definition_response,
    build_deadlines_response,
    build_ein_response,
    build_intent_response,
    build_org_context,
    classify_assistant_intent,
    classify_intent_with_llm,
    context_hash,
    find_ein,
    get_cached_org_context,
    summarize_funding,
    upcoming_deadlines,
)


class TestClassifyAssistantIntent:
    """Tests for the regex intent table."""

    @pytest.mark.parametrize(
        "message,intent",
        [
            ("What is my EIN?", "ein_lookup"),
            ("Can you give me our tax id", "ein_lookup"),
            ("What does EIN mean?", "definition"),
            ("What is an EIN?", "definition"),
            ("Do we have a UEI on file?", "registration_ids"),
            ("Are we woman-owned certified?", "certifications"),
            ("What deadlines are coming up?", "deadlines"),
            ("How much funding have we been awarded?", "funding_summary"),
            ("How is my crowdfunding campaign doing?", "campaigns"),
            ("Find grants for after-school programs", "opportunities"),
            ("Help me write the application", "application_help"),
            ("What can you do?", "capabilities"),
            ("Hello there", "greeting"),
            ("asdf qwerty", "general"),
        ],
    )
    def test_intents(self, message, intent):
        assert classify_assistant_intent(message) == intent

    def test_possessive_lookup_wins_over_definition(self):
        """A question about the user's own EIN is a lookup, not a glossary entry."""
        assert classify_assistant_intent("what is our EIN") == "ein_lookup"
        assert classify_assistant_intent("what is an EIN") == "definition"

    def test_empty_message(self):
        assert classify_assistant_intent("") == "general"
        assert classify_assistant_intent(None) == "general"

    @pytest.mark.asyncio
    async def test_llm_classification(self, fake_provider):
        fake_provider.generate_completion.return_value = make_completion('{"intent": "deadlines"}')
        assert await classify_intent_with_llm(fake_provider, "anything due soon-ish?") == "deadlines"

    @pytest.mark.asyncio
    async def test_llm_classification_unknown_intent(self, fake_provider):
        fake_provider.generate_completion.return_value = make_completion('{"intent": "weather"}')
        assert await classify_intent_with_llm(fake_provider, "is it raining") == "general"

    @pytest.mark.asyncio
    async def test_llm_classification_failure(self, fake_provider):
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")
        assert await classify_intent_with_llm(fake_provider, "hello") == "general"


class TestResponseBuilders:
    """Tests for the intent response builders."""

    def test_ein_response_with_ein(self):
        context = {"profile": {"organization_name": "Riverbend", "ein": "12-3456789"}}
        response = build_ein_response(context, "what is my ein")
        assert "12-3456789" in response
        assert "Riverbend" in response

    def test_ein_response_falls_back_to_tax_id(self):
        assert find_ein({"tax_id": "98-7654321"}) == "98-7654321"

    def test_ein_response_without_ein(self):
        response = build_ein_response({"profile": {}}, "what is my ein")
        assert "couldn't find an EIN" in response

    def test_definition_response(self):
        assert "Unique Entity ID" in build_definition_response({}, "what does UEI mean")

    def test_deadlines_window(self):
        now = utcnow()
        context = {
            "applications": [
                {"title": "Soon", "deadline": (now + timedelta(days=5)).isoformat(), "status": "draft"},
                {"title": "Done", "deadline": (now + timedelta(days=5)).isoformat(), "status": "awarded"},
            ],
            "opportunities": [
                {"title": "Later", "deadline_date": (now + timedelta(days=30)).isoformat()},
                {"title": "Too far", "deadline_date": (now + timedelta(days=120)).isoformat()},
                {"title": "Past", "deadline_date": (now - timedelta(days=2)).isoformat()},
            ],
        }

        items = upcoming_deadlines(context)

        assert [item["title"] for item in items] == ["Soon", "Later"]
        assert "Soon" in build_deadlines_response(context, "deadlines")

    def test_missing_context(self):
        assert build_intent_response("deadlines", None, "deadlines") == DATA_UNAVAILABLE_MESSAGE

    def test_unknown_intent_uses_general(self):
        response = build_intent_response("nonsense", {"meta": {"counts": {"projects": 2}}}, "hmm")
        assert "2 projects" in response


class TestSummarizeFunding:
    """Tests for summarize_funding."""

    def test_drafts_are_excluded(self):
        applications = [
            {"status": "draft", "amount_requested": 1000},
            {"status": "awarded", "amount_requested": 5000, "amount_awarded": 4000},
            {"status": "rejected", "amount_requested": 3000},
            {"status": "pending", "amount_requested": 2000},
        ]
        summary = summarize_funding(applications, [{"raised_amount": 750}])

        assert summary["total_submissions"] == 3
        assert summary["total_requested"] == 10000
        assert summary["total_awarded"] == 4000
        assert summary["total_raised"] == 750
        assert summary["award_rate"] == 0.5
        assert summary["pending_count"] == 1

    def test_no_decisions(self):
        assert summarize_funding([], [])["award_rate"] is None


class TestBuildOrgContext:
    """Tests for build_org_context and its cache."""

    @pytest.mark.asyncio
    async def test_build_org_context(self, async_session, db_profile, db_project, db_applications, db_opportunity):
        context = await build_org_context(async_session, TEST_USER_ID)

        assert context["profile"]["ein"] == "12-3456789"
        assert len(context["projects"]) == 1
        assert context["meta"]["counts"]["applications"] == 2
        assert context["funding_summary"]["total_awarded"] == 75000
        assert context["funding_summary"]["pending_count"] == 1

    @pytest.mark.asyncio
    async def test_context_is_scoped_to_user(self, async_session, db_profile, db_project):
        async_session.add(UserProfile(user_id=OTHER_USER_ID, organization_name="Other Org"))
        await async_session.commit()

        context = await build_org_context(async_session, OTHER_USER_ID)

        assert context["profile"]["organization_name"] == "Other Org"
        assert context["projects"] == []

    @pytest.mark.asyncio
    async def test_context_hash_ignores_meta(self, async_session, db_profile):
        first = await build_org_context(async_session, TEST_USER_ID)
        second = await build_org_context(async_session, TEST_USER_ID)
        assert context_hash(first) == context_hash(second)

    @pytest.mark.asyncio
    async def test_cached_context(self, async_session, db_profile):
        context, cached = await get_cached_org_context(async_session, TEST_USER_ID)
        assert cached is False

        again, cached = await get_cached_org_context(async_session, TEST_USER_ID)
        assert cached is True
        assert again["profile"]["ein"] == context["profile"]["ein"]

        _, cached = await get_cached_org_context(async_session, TEST_USER_ID, force=True)
        assert cached is False

    @pytest.mark.asyncio
    async def test_stale_cache_is_rebuilt(self, async_session, db_profile):
        await get_cached_org_context(async_session, TEST_USER_ID)
        row = (await async_session.execute(select(OrgContextCache))).scalar_one()
        row.updated_at = utcnow() - timedelta(minutes=30)
        await async_session.flush()

        _, cached = await get_cached_org_context(async_session, TEST_USER_ID, ttl_minutes=10)

        assert cached is False
