"""
Structured AI analyses of projects and opportunities, stored per user and
reused until stale.
"""

import json
import re
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from walios.core.config import settings
from walios.core.exceptions import NotFoundError, UpstreamAIError
from walios.models import Opportunity, OpportunityAIAnalysis, Project, ProjectAIAnalysis, UserProfile, utcnow
from walios.services.ai_provider import AIProviderService, safe_parse_json
from walios.utils import serialize_row

logger = structlog.get_logger(__name__)

LIST_CAP = 30
ITEM_CHAR_CAP = 160
UNDERSTANDING_CHAR_CAP = 15000

PROJECT_LIST_KEYS = (
    "key_themes",
    "focus_areas",
    "target_populations",
    "methodology_types",
    "geographic_scope",
    "funding_categories",
    "organization_requirements",
    "alignment_keywords",
    "sustainability_factors",
    "measurable_outcomes",
    "alignment_with_priorities",
)
PROJECT_ENUM_KEYS = (
    "project_scale",
    "innovation_level",
    "evidence_strength",
    "budget_category",
    "matching_fund_potential",
    "impact_timeframe",
)

PROJECT_SYSTEM_PROMPT = """You are an AI specializing in analyzing funding projects.
Return ONLY valid JSON. Assess project narrative, scope, beneficiaries, budget signals, innovation, sustainability.
Strict JSON keys:
{
  "ai_understanding": string,
  "key_themes": string[], "focus_areas": string[], "target_populations": string[],
  "methodology_types": string[], "geographic_scope": string[], "funding_categories": string[],
  "organization_requirements": string[], "alignment_keywords": string[],
  "project_scale": "micro"|"small"|"medium"|"large",
  "innovation_level": "traditional"|"innovative"|"cutting-edge",
  "evidence_strength": "emerging"|"promising"|"evidence-based",
  "budget_category": "micro"|"small"|"medium"|"large",
  "cost_effectiveness_score": number (0-1),
  "sustainability_factors": string[],
  "matching_fund_potential": "none"|"limited"|"moderate"|"strong",
  "estimated_beneficiaries": number|null,
  "impact_timeframe": "immediate"|"short-term"|"long-term"|null,
  "measurable_outcomes": string[], "alignment_with_priorities": string[],
  "confidence_score": number (0-1)
}"""

OPPORTUNITY_SYSTEM_PROMPT = """You analyze grant funding opportunities for applicants.
Return ONLY valid JSON with keys:
ai_understanding (string), funding_priorities, eligibility_factors, preference_indicators,
evaluation_criteria, keyword_indicators, organization_fit_types, geographic_preferences,
success_factors, common_pitfalls (all string arrays), competition_level ("low"|"medium"|"high"|null),
application_complexity ("simple"|"moderate"|"complex"|null) and confidence_score (0-1)."""


def _cap(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    return [str(v)[:ITEM_CHAR_CAP] for v in values[:LIST_CAP]]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def normalize_project_analysis(parsed: dict[str, Any]) -> dict[str, Any]:
    """Clamp list lengths and string sizes; unknown keys are dropped."""
    analysis: dict[str, Any] = {
        "ai_understanding": str(parsed.get("ai_understanding") or "")[:UNDERSTANDING_CHAR_CAP] or "No analysis",
    }
    for key in PROJECT_LIST_KEYS:
        analysis[key] = _cap(parsed.get(key))
    for key in PROJECT_ENUM_KEYS:
        analysis[key] = parsed.get(key) or None
    analysis["cost_effectiveness_score"] = _number(parsed.get("cost_effectiveness_score"))
    analysis["estimated_beneficiaries"] = _number(parsed.get("estimated_beneficiaries"))
    analysis["confidence_score"] = _number(parsed.get("confidence_score")) or 0.75
    return analysis


def heuristic_opportunity_analysis(opportunity: Opportunity) -> dict[str, Any]:
    """Keyword-derived analysis used when the LLM call fails."""
    text = f"{opportunity.description or ''} {opportunity.eligibility or ''}".lower()
    priorities = []
    if re.search(r"community|local", text):
        priorities.append("community impact")
    if re.search(r"research|study", text):
        priorities.append("research")
    if re.search(r"innovation|innovative", text):
        priorities.append("innovation")

    return {
        "ai_understanding": f"Heuristic analysis pending full AI extraction. Title: {opportunity.title}",
        "funding_priorities": priorities,
        "eligibility_factors": [],
        "preference_indicators": [],
        "evaluation_criteria": [],
        "keyword_indicators": (opportunity.title or "").lower().split()[:8],
        "organization_fit_types": list(opportunity.organization_types or []),
        "geographic_preferences": [],
        "success_factors": [],
        "common_pitfalls": [],
        "competition_level": None,
        "application_complexity": None,
        "confidence_score": 0.4,
    }


class AnalysisService:
    """Project and opportunity analyses backed by the *_ai_analysis tables."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider

    async def analyze_project(
        self,
        db: AsyncSession,
        user_id: str,
        project_id: UUID,
        force: bool = False,
    ) -> dict[str, Any]:
        """
        Analyze one of the user's projects.

        Args:
            db: Database session.
            user_id: Owner of the project.
            project_id: Project to analyze.
            force: Ignore a stored analysis even if it is fresh.

        Returns:
            ``{"reused": bool, "analysis": row}``.

        Raises:
            NotFoundError: If the project does not exist or is not the user's.
            UpstreamAIError: If the model reply could not be used.
        """
        project = (
            await db.execute(select(Project).where(Project.id == project_id, Project.user_id == user_id))
        ).scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project", str(project_id))

        if not force:
            existing = (
                await db.execute(
                    select(ProjectAIAnalysis)
                    .where(ProjectAIAnalysis.project_id == project_id, ProjectAIAnalysis.user_id == user_id)
                    .order_by(ProjectAIAnalysis.updated_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            ttl = timedelta(hours=settings.project_analysis_ttl_hours)
            if existing is not None and utcnow() - existing.updated_at < ttl:
                return {"reused": True, "analysis": serialize_row(existing)}

        profile = (
            await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        ).scalar_one_or_none()

        project_data = {
            "name": project.name,
            "description": project.description,
            "type": project.project_type,
            "funding_needed": project.funding_needed,
            "total_budget": project.total_budget,
            "target_population": project.target_population,
            "geographic_scope": project.geographic_scope,
            "goals": project.goals,
        }
        org_data = {
            "organization_name": profile.organization_name if profile else None,
            "organization_type": profile.organization_type if profile else None,
            "annual_budget": profile.annual_budget if profile else None,
            "years_in_operation": profile.years_in_operation if profile else None,
        }
        prompt = (
            f"PROJECT RAW DATA:\n{json.dumps(project_data, indent=2, default=str)}\n\n"
            f"ORGANIZATION CONTEXT:\n{json.dumps(org_data, indent=2, default=str)}\n\n"
            "Return the JSON now."
        )

        try:
            result = await self.provider.generate_completion(
                "project-analysis",
                [{"role": "system", "content": PROJECT_SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
                max_tokens=1400,
                temperature=0.1,
                response_format="json_object",
            )
            parsed = safe_parse_json(result.content)
            if not isinstance(parsed, dict):
                raise ValueError("Project analysis must be a JSON object")
        except Exception as e:
            logger.error("project_analysis_failed", project_id=str(project_id), error=str(e))
            raise UpstreamAIError("AI analysis failed") from e

        row = ProjectAIAnalysis(
            user_id=user_id,
            project_id=project_id,
            analysis=normalize_project_analysis(parsed),
            model=f"{result.provider}:{result.model}",
        )
        db.add(row)
        await db.flush()

        logger.info("project_analysis_stored", project_id=str(project_id), model=row.model)
        return {"reused": False, "analysis": serialize_row(row)}

    async def analyze_opportunity(
        self,
        db: AsyncSession,
        user_id: str,
        opportunity_id: UUID,
        force: bool = False,
    ) -> dict[str, Any]:
        """Analyze an opportunity; stored analyses are reused unless ``force``."""
        opportunity = (
            await db.execute(
                select(Opportunity).where(Opportunity.id == opportunity_id, Opportunity.user_id == user_id)
            )
        ).scalar_one_or_none()
        if opportunity is None:
            raise NotFoundError("Opportunity", str(opportunity_id))

        if not force:
            existing = (
                await db.execute(
                    select(OpportunityAIAnalysis)
                    .where(
                        OpportunityAIAnalysis.opportunity_id == opportunity_id,
                        OpportunityAIAnalysis.user_id == user_id,
                    )
                    .order_by(OpportunityAIAnalysis.updated_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            if existing is not None:
                return {"reused": True, "analysis": serialize_row(existing)}

        opportunity_data = {
            "title": opportunity.title,
            "sponsor": opportunity.sponsor,
            "description": opportunity.description,
            "amount_min": opportunity.amount_min,
            "amount_max": opportunity.amount_max,
            "deadline_date": opportunity.deadline_date,
            "eligibility": opportunity.eligibility,
            "organization_types": opportunity.organization_types,
            "focus_areas": opportunity.focus_areas,
        }

        is_heuristic = False
        try:
            result = await self.provider.generate_completion(
                "opportunity-analysis",
                [
                    {"role": "system", "content": OPPORTUNITY_SYSTEM_PROMPT},
                    {"role": "user", "content": json.dumps(opportunity_data, indent=2, default=str)},
                ],
                max_tokens=1200,
                temperature=0.1,
                response_format="json_object",
            )
            analysis = safe_parse_json(result.content)
            if not isinstance(analysis, dict):
                raise ValueError("Opportunity analysis must be a JSON object")
        except Exception as e:
            logger.warning("opportunity_analysis_heuristic", opportunity_id=str(opportunity_id), error=str(e))
            analysis = heuristic_opportunity_analysis(opportunity)
            is_heuristic = True

        row = OpportunityAIAnalysis(
            user_id=user_id,
            opportunity_id=opportunity_id,
            analysis=analysis,
            is_heuristic=is_heuristic,
        )
        db.add(row)
        await db.flush()
        return {"reused": False, "analysis": serialize_row(row)}
