"""
Tests for stored project and opportunity analyses.
"""
import json
import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from tests.fixtures import OTHER_USER_ID, TEST_USER_ID, make_completion
from walios.core.exceptions import NotFoundError, UpstreamAIError
from walios.models import Opportunity, OpportunityAIAnalysis, ProjectAIAnalysis, utcnow
from walios.services.analysis import (
    ITEM_CHAR_CAP,
    LIST_CAP,
    AnalysisService,
    heuristic_opportunity_analysis,
    normalize_project_analysis,
)

PROJECT_ANALYSIS = {
    "ai_understanding": "Mobile preventive care for rural Ohio.",
    "key_themes": ["rural health", "prevention"],
    "project_scale": "medium",
    "cost_effectiveness_score": 0.8,
    "estimated_beneficiaries": 2500,
    "confidence_score": 0.9,
}


async def _count(db, model):
    return (await db.execute(select(func.count(model.id)))).scalar_one()


class TestNormalizeProjectAnalysis:
    """Tests for clamping model output."""

    def test_lists_are_capped(self):
        parsed = {"key_themes": ["x" * 500] * 50}
        analysis = normalize_project_analysis(parsed)

        assert len(analysis["key_themes"]) == LIST_CAP
        assert len(analysis["key_themes"][0]) == ITEM_CHAR_CAP

    def test_defaults(self):
        analysis = normalize_project_analysis({"focus_areas": "health", "cost_effectiveness_score": "high"})

        assert analysis["ai_understanding"] == "No analysis"
        assert analysis["focus_areas"] == []
        assert analysis["project_scale"] is None
        assert analysis["cost_effectiveness_score"] is None
        assert analysis["confidence_score"] == 0.75

    def test_unknown_keys_dropped(self):
        assert "secret" not in normalize_project_analysis({"secret": "value"})


class TestAnalyzeProject:
    """Tests for AnalysisService.analyze_project."""

    @pytest.mark.asyncio
    async def test_stores_analysis(self, async_session, db_profile, db_project, fake_provider):
        fake_provider.generate_completion.return_value = make_completion(json.dumps(PROJECT_ANALYSIS))
        service = AnalysisService(fake_provider)

        result = await service.analyze_project(async_session, TEST_USER_ID, db_project.id)

        assert result["reused"] is False
        assert result["analysis"]["analysis"]["key_themes"] == ["rural health", "prevention"]
        assert result["analysis"]["model"] == "openai:gpt-4o-mini"
        prompt = fake_provider.generate_completion.call_args.args[1][1]["content"]
        assert "Riverbend Community Health" in prompt

    @pytest.mark.asyncio
    async def test_fresh_analysis_is_reused(self, async_session, db_project, fake_provider):
        fake_provider.generate_completion.return_value = make_completion(json.dumps(PROJECT_ANALYSIS))
        service = AnalysisService(fake_provider)

        await service.analyze_project(async_session, TEST_USER_ID, db_project.id)
        again = await service.analyze_project(async_session, TEST_USER_ID, db_project.id)

        assert again["reused"] is True
        assert fake_provider.generate_completion.call_count == 1

    @pytest.mark.asyncio
    async def test_force_and_stale_reanalyze(self, async_session, db_project, fake_provider):
        fake_provider.generate_completion.return_value = make_completion(json.dumps(PROJECT_ANALYSIS))
        async_session.add(
            ProjectAIAnalysis(
                user_id=TEST_USER_ID,
                project_id=db_project.id,
                analysis={"ai_understanding": "old"},
                updated_at=utcnow() - timedelta(days=3),
            )
        )
        await async_session.flush()
        service = AnalysisService(fake_provider)

        stale = await service.analyze_project(async_session, TEST_USER_ID, db_project.id)
        forced = await service.analyze_project(async_session, TEST_USER_ID, db_project.id, force=True)

        assert stale["reused"] is False
        assert forced["reused"] is False
        assert await _count(async_session, ProjectAIAnalysis) == 3

    @pytest.mark.asyncio
    async def test_other_users_project(self, async_session, db_project, fake_provider):
        with pytest.raises(NotFoundError):
            await AnalysisService(fake_provider).analyze_project(async_session, OTHER_USER_ID, db_project.id)

    @pytest.mark.asyncio
    async def test_unusable_reply(self, async_session, db_project, fake_provider):
        fake_provider.generate_completion.return_value = make_completion("[1, 2, 3]")

        with pytest.raises(UpstreamAIError) as exc_info:
            await AnalysisService(fake_provider).analyze_project(async_session, TEST_USER_ID, db_project.id)

        assert isinstance(exc_info.value, HTTPException)
        assert exc_info.value.status_code == 500
        assert await _count(async_session, ProjectAIAnalysis) == 0


class TestAnalyzeOpportunity:
    """Tests for AnalysisService.analyze_opportunity."""

    @pytest.mark.asyncio
    async def test_llm_analysis(self, async_session, db_opportunity, fake_provider):
        fake_provider.generate_completion.return_value = make_completion(
            json.dumps({"ai_understanding": "Rural prevention grant", "competition_level": "high"})
        )

        result = await AnalysisService(fake_provider).analyze_opportunity(
            async_session, TEST_USER_ID, db_opportunity.id
        )

        assert result["analysis"]["analysis"]["competition_level"] == "high"
        assert result["analysis"]["is_heuristic"] is False
        assert fake_provider.generate_completion.call_args.args[0] == "opportunity-analysis"

    @pytest.mark.asyncio
    async def test_heuristic_fallback(self, async_session, db_opportunity, fake_provider):
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")

        result = await AnalysisService(fake_provider).analyze_opportunity(
            async_session, TEST_USER_ID, db_opportunity.id
        )

        analysis = result["analysis"]["analysis"]
        assert result["analysis"]["is_heuristic"] is True
        assert analysis["confidence_score"] == 0.4
        assert analysis["keyword_indicators"] == ["rural", "health", "outreach", "grant"]
        assert analysis["organization_fit_types"] == ["nonprofit"]

    @pytest.mark.asyncio
    async def test_existing_analysis_is_reused(self, async_session, db_opportunity, fake_provider):
        service = AnalysisService(fake_provider)
        await service.analyze_opportunity(async_session, TEST_USER_ID, db_opportunity.id)

        again = await service.analyze_opportunity(async_session, TEST_USER_ID, db_opportunity.id)

        assert again["reused"] is True
        assert await _count(async_session, OpportunityAIAnalysis) == 1

    @pytest.mark.asyncio
    async def test_unknown_opportunity(self, async_session, fake_provider):
        with pytest.raises(NotFoundError):
            await AnalysisService(fake_provider).analyze_opportunity(async_session, TEST_USER_ID, uuid.uuid4())

    def test_heuristic_priorities(self, sample_opportunity_data):
        data = {**sample_opportunity_data, "deadline_date": None}
        data["description"] = "Innovative community research programs"
        analysis = heuristic_opportunity_analysis(Opportunity(user_id=TEST_USER_ID, **data))

        assert analysis["funding_priorities"] == ["community impact", "research", "innovation"]
