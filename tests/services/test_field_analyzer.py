"""
Tests for form field definitions, field extraction and field help.
"""
import json
from datetime import timedelta

import pytest
from sqlalchemy import select

from tests.fixtures import make_completion
from walios.models import FieldDefinitionCache, utcnow
from walios.services.field_analyzer import (
    UNKNOWN_FIELD,
    FieldAnalyzerService,
    build_field_help,
    fallback_definition,
    heuristic_extract_field_name,
    normalize_field_name,
)

DEFINITION = {
    "definition": "The legal name of the applicant organization.",
    "purpose": "Identifies the applicant",
    "expectedFormat": "Text",
    "commonExamples": ["Riverbend Community Health"],
    "tips": ["Match your IRS records"],
    "relatedFields": ["ein"],
    "contextSpecificGuidance": "Use the name on your 501(c)(3) letter",
}


class TestNormalizeFieldName:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Project Title (max 100)", "project_title_max_100"),
            ("  EIN  ", "ein"),
            ("Organization--Name", "organization_name"),
        ],
    )
    def test_normalize(self, name, expected):
        assert normalize_field_name(name) == expected


class TestFallbackDefinition:
    """Tests for pattern-based definitions."""

    def test_budget_field(self):
        definition = fallback_definition("Total Budget Amount", user_context={"organizationType": "Nonprofits"})
        assert "financial information" in definition["definition"]
        assert definition["contextSpecificGuidance"].startswith("Nonprofits")

    def test_timeline_field(self):
        definition = fallback_definition("Project Duration", user_context={"projectType": "health"})
        assert "For health projects" in definition["contextSpecificGuidance"]

    def test_organization_field_uses_name(self):
        definition = fallback_definition("Applicant Name", user_context={"organizationName": "Riverbend"})
        assert definition["commonExamples"][0] == "Riverbend"

    def test_generic_field(self):
        assert fallback_definition("Favorite Color")["relatedFields"] == []


class TestHeuristicExtraction:
    def test_common_field(self):
        assert heuristic_extract_field_name("what goes in the project title?", []) == "project_title"

    def test_available_field(self):
        assert heuristic_extract_field_name("help with the matching funds box", ["matching_funds"]) == "matching_funds"

    def test_unknown(self):
        assert heuristic_extract_field_name("huh?", ["matching_funds"]) == UNKNOWN_FIELD


class TestBuildFieldHelp:
    """Tests for heuristic field guidance."""

    def test_short_narrative(self):
        help_ = build_field_help("project_description", "We help people.")
        assert len(help_["suggestions"]) == 3
        assert help_["common_pitfalls"]

    def test_budget_with_categories(self):
        help_ = build_field_help("budget_summary", "Personnel $100,000 and equipment $20,000")
        assert help_["suggestions"] == []

    def test_outcomes_without_timeframe(self):
        help_ = build_field_help("expected_outcomes", "Serve 200 patients")
        assert help_["suggestions"] == ["Include a clear timeframe for achieving the change."]

    def test_other_field(self):
        help_ = build_field_help("ein", "12-3456789")
        assert help_["what_great_looks_like"] == []


class TestAnalyzeField:
    """Tests for FieldAnalyzerService.analyze_field."""

    @pytest.mark.asyncio
    async def test_generates_and_caches(self, async_session, fake_provider):
        fake_provider.generate_completion.return_value = make_completion(json.dumps(DEFINITION))
        service = FieldAnalyzerService(fake_provider)

        first = await service.analyze_field(async_session, "Organization Name")
        second = await service.analyze_field(async_session, "organization name")

        assert first["cached"] is False
        assert first["analysis"] == DEFINITION
        assert second["cached"] is True
        assert second["analysis"] == DEFINITION
        assert fake_provider.generate_completion.call_count == 1
        assert fake_provider.generate_completion.call_args.args[0] == "field-analysis"

    @pytest.mark.asyncio
    async def test_incomplete_response_uses_fallback(self, async_session, fake_provider):
        service = FieldAnalyzerService(fake_provider)

        result = await service.analyze_field(async_session, "Project Budget")

        assert result["fallback"] is True
        assert result["aiError"] == "AI response missing required fields"
        row = (await async_session.execute(select(FieldDefinitionCache))).scalar_one()
        assert row.field_key == "project_budget"
        assert row.is_fallback is True

    @pytest.mark.asyncio
    async def test_expired_definition_is_regenerated(self, async_session, fake_provider):
        async_session.add(
            FieldDefinitionCache(
                field_key="ein",
                field_name="EIN",
                definition={"definition": "old", "purpose": "old"},
                is_fallback=False,
                updated_at=utcnow() - timedelta(days=30),
            )
        )
        await async_session.flush()
        fake_provider.generate_completion.return_value = make_completion(json.dumps(DEFINITION))
        service = FieldAnalyzerService(fake_provider)

        result = await service.analyze_field(async_session, "EIN")

        assert result["cached"] is False
        row = (await async_session.execute(select(FieldDefinitionCache))).scalar_one()
        assert row.definition == DEFINITION


class TestExtractField:
    """Tests for FieldAnalyzerService.extract_field."""

    @pytest.mark.asyncio
    async def test_llm_answer(self, fake_provider):
        fake_provider.generate_completion.return_value = make_completion('"project_budget"\n')
        service = FieldAnalyzerService(fake_provider)

        assert await service.extract_field("How much should I ask for?", ["project_budget"]) == "project_budget"

    @pytest.mark.asyncio
    async def test_llm_failure_uses_heuristic(self, fake_provider):
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")
        service = FieldAnalyzerService(fake_provider)

        assert await service.extract_field("What's an EIN box for?") == "ein"


class TestFieldHelp:
    """Tests for FieldAnalyzerService.field_help."""

    @pytest.mark.asyncio
    async def test_heuristic_only(self, fake_provider):
        result = await FieldAnalyzerService(fake_provider).field_help("budget", "$50,000", use_llm=False)

        assert result["field"] == "budget"
        fake_provider.generate_completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_refinement(self, fake_provider):
        refined = {"field": "budget", "suggestions": ["Break out personnel costs."]}
        fake_provider.generate_completion.return_value = make_completion(json.dumps(refined))

        result = await FieldAnalyzerService(fake_provider).field_help("budget", "$50,000")

        assert result == refined

    @pytest.mark.asyncio
    async def test_llm_failure_returns_heuristic(self, fake_provider):
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")

        result = await FieldAnalyzerService(fake_provider).field_help("budget", "$50,000")

        assert result["explanation"] == "Refine financial clarity and alignment with activities."
