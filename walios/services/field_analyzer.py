"""
Form field help: cached field definitions, field-name extraction from user
questions, and improvement guidance for a drafted field value.
"""

import json
import re
from datetime import timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from walios.core.config import settings
from walios.models import FieldDefinitionCache, utcnow
from walios.services.ai_provider import AIProviderService, safe_parse_json

logger = structlog.get_logger(__name__)

UNKNOWN_FIELD = "UNKNOWN"
COMMON_FIELD_NAMES = (
    "project description",
    "project title",
    "budget",
    "timeline",
    "ein",
    "organization name",
    "personnel",
    "objectives",
    "summary",
)


def normalize_field_name(field_name: str) -> str:
    """``"Project Title (max 100)"`` -> ``"project_title_max_100"``."""
    return re.sub(r"_+", "_", re.sub(r"[^a-z0-9]", "_", field_name.lower())).strip("_")


def fallback_definition(
    field_name: str,
    form_context: Optional[dict[str, Any]] = None,
    user_context: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Pattern-based definition used when the LLM is unavailable."""
    user_context = user_context or {}
    name = field_name.lower()
    project_type = user_context.get("projectType") or "your project"
    org_type = user_context.get("organizationType")

    if "submit" in name or "status" in name:
        return {
            "definition": f'The "{field_name}" field tracks submission or status information for your application.',
            "purpose": "Helps manage application workflow and tracking",
            "expectedFormat": "Select from dropdown options or enter status update",
            "commonExamples": ["Submitted", "In Review", "Draft", "Approved"],
            "tips": [
                "Update this field to reflect current status",
                "Be accurate with dates and status changes",
            ],
            "relatedFields": ["submission_date", "review_status"],
            "contextSpecificGuidance": "Check with your organization's process for status updates",
        }
    if any(word in name for word in ("period", "duration", "timeline")):
        return {
            "definition": f'The "{field_name}" field specifies a time period or duration for your project.',
            "purpose": "Defines timeframes for project planning and funding allocation",
            "expectedFormat": "Date ranges, number of months/years, or specific periods",
            "commonExamples": ["12 months", "January 2025 - December 2025", "18-month period"],
            "tips": [
                "Be realistic with timelines based on project scope",
                "Align with project milestones and deliverables",
                "Consider approval and setup time in your timeline",
            ],
            "relatedFields": ["start_date", "end_date", "project_timeline"],
            "contextSpecificGuidance": f"For {project_type} projects, typical durations range from 6-24 months",
        }
    if any(word in name for word in ("budget", "amount", "cost")):
        return {
            "definition": f'The "{field_name}" field requires financial information related to your project budget.',
            "purpose": "Provides funding details necessary for grant evaluation and award decisions",
            "expectedFormat": "Dollar amounts, budget breakdowns, or cost estimates",
            "commonExamples": ["$50,000", "$125,500 (Personnel: $100,000, Equipment: $25,500)"],
            "tips": [
                "Provide detailed budget justification when possible",
                "Ensure amounts are realistic and well-researched",
                "Include matching funds or in-kind contributions if applicable",
            ],
            "relatedFields": ["total_budget", "matching_funds", "cost_breakdown"],
            "contextSpecificGuidance": f"{org_type or 'Organizations'} typically include indirect costs of 10-25%",
        }
    if any(word in name for word in ("description", "summary", "narrative")):
        return {
            "definition": f'The "{field_name}" field requires a detailed description or narrative about your project.',
            "purpose": "Provides reviewers with essential information to understand and evaluate your proposal",
            "expectedFormat": "Clear, compelling narrative with specific details and examples",
            "commonExamples": ["Project addresses urban food insecurity by...", "Our organization will implement..."],
            "tips": [
                "Be specific about goals, methods, and expected outcomes",
                "Include quantifiable metrics and target populations",
            ],
            "relatedFields": ["project_goals", "target_population", "expected_outcomes"],
            "contextSpecificGuidance": f"For {project_type} projects, focus on community impact and measurable results",
        }
    if "organization" in name or "applicant" in name:
        return {
            "definition": f'The "{field_name}" field requires information about your organization or entity applying for funding.',
            "purpose": "Establishes your organization's identity, credibility, and eligibility for the grant",
            "expectedFormat": "Official organization name, details, and identifying information",
            "commonExamples": [user_context.get("organizationName") or "Your Organization Name", "EIN: 12-3456789"],
            "tips": [
                "Use your organization's legal, registered name",
                "Ensure information matches your tax documents",
            ],
            "relatedFields": ["ein", "organization_type", "tax_status"],
            "contextSpecificGuidance": (
                f"As a {org_type or 'organization'}, include your EIN and tax-exempt status if applicable"
            ),
        }
    return {
        "definition": f'The "{field_name}" field requires specific information for your grant application.',
        "purpose": "Provides necessary details for complete application evaluation",
        "expectedFormat": "Follow any specific formatting requirements or examples provided",
        "commonExamples": ["Refer to form instructions for examples"],
        "tips": [
            "Check form instructions for specific requirements",
            "Be clear, specific, and accurate in your response",
        ],
        "relatedFields": [],
        "contextSpecificGuidance": "Consult the grant guidelines or contact the funder for clarification if needed",
    }


def heuristic_extract_field_name(query: str, available_fields: list[str]) -> str:
    lower = query.lower()
    for common in COMMON_FIELD_NAMES:
        if common in lower:
            return common.replace(" ", "_")
    for field in available_fields:
        if isinstance(field, str) and re.sub(r"[_\s]+", " ", field.lower()) in lower:
            return field
    return UNKNOWN_FIELD


def build_field_help(field: str, value: str) -> dict[str, Any]:
    """Improvement guidance for narrative, budget and outcome fields."""
    help_ = {
        "field": field,
        "explanation": "Improvement suggestions based on your current draft.",
        "what_great_looks_like": [],
        "examples": [],
        "common_pitfalls": [],
        "suggestions": [],
    }
    name = field.lower()
    value = value or ""

    if "narrative" in name or "description" in name:
        help_["explanation"] = "Strengthen narrative clarity, specificity, quantification."
        help_["what_great_looks_like"] = [
            "Clear statement of need with supporting data",
            "Specific target population and scale",
            "Theory of change or logic model elements",
            "Baseline + intended measurable outcomes",
        ]
        help_["examples"] = [
            "We address rural clinic staffing shortages by deploying a telehealth training program "
            "projected to reach 2,500 patients in year one."
        ]
        help_["common_pitfalls"] = ["Vague impact claims", "Missing beneficiary counts", "Overly broad goals"]
        if len(value) < 200:
            help_["suggestions"].append("Add problem scale data (numbers, % or trend).")
        if not re.search(r"\d", value):
            help_["suggestions"].append("Introduce at least one quantitative metric to anchor scope.")
        if not re.search(r"(will|increase|reduce|expand)", value, re.IGNORECASE):
            help_["suggestions"].append("Add action verbs and expected directional change.")
    elif "budget" in name or "amount" in name:
        help_["explanation"] = "Refine financial clarity and alignment with activities."
        help_["what_great_looks_like"] = [
            "Breakdown by major category",
            "Alignment between scope and cost",
            "Mention of leveraged/matching funds if available",
        ]
        help_["examples"] = ["Total: $185K (Personnel 60%, Technology 25%, Evaluation 10%, Admin 5%)"]
        help_["common_pitfalls"] = ["Round numbers without rationale", "No linkage to activities"]
        if "%" not in value and not re.search(r"personnel|equipment|travel|indirect", value, re.IGNORECASE):
            help_["suggestions"].append("Add category percentages or amounts for transparency.")
    elif "outcome" in name or "goal" in name:
        help_["explanation"] = "Elevate outcomes to SMART structure."
        help_["what_great_looks_like"] = ["Uses baseline + target", "Time-bound", "Directly tied to activities"]
        help_["examples"] = ["Increase colorectal screening rates from 48% to 62% across 12 clinics within 18 months."]
        help_["common_pitfalls"] = ["Listing activities instead of outcomes", "No baseline metric"]
        if not re.search(r"\d", value):
            help_["suggestions"].append("Add baseline and numeric target (e.g., from 120 to 180 participants).")
        if not re.search(r"month|year|week|quarter", value, re.IGNORECASE):
            help_["suggestions"].append("Include a clear timeframe for achieving the change.")
    return help_


class FieldAnalyzerService:
    """Field definitions (cached for a week), field extraction and field help."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider

    async def _get_cached(self, db: AsyncSession, field_key: str) -> Optional[FieldDefinitionCache]:
        result = await db.execute(select(FieldDefinitionCache).where(FieldDefinitionCache.field_key == field_key))
        return result.scalar_one_or_none()

    async def _store(
        self,
        db: AsyncSession,
        existing: Optional[FieldDefinitionCache],
        field_key: str,
        field_name: str,
        definition: dict[str, Any],
        is_fallback: bool,
    ) -> None:
        if existing is None:
            db.add(
                FieldDefinitionCache(
                    field_key=field_key,
                    field_name=field_name,
                    definition=definition,
                    is_fallback=is_fallback,
                )
            )
        else:
            existing.field_name = field_name
            existing.definition = definition
            existing.is_fallback = is_fallback
            existing.updated_at = utcnow()
        await db.flush()

    async def analyze_field(
        self,
        db: AsyncSession,
        field_name: str,
        form_context: Optional[dict[str, Any]] = None,
        user_context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        form_context = form_context or {}
        user_context = user_context or {}
        field_key = normalize_field_name(field_name)

        cached = await self._get_cached(db, field_key)
        ttl = timedelta(days=settings.field_definition_ttl_days)
        if cached is not None and utcnow() - cached.updated_at <= ttl:
            logger.debug("field_definition_cache_hit", field_key=field_key)
            return {
                "analysis": cached.definition,
                "cached": True,
                "lastUpdated": cached.updated_at.isoformat(),
            }

        available = ", ".join((form_context.get("availableFields") or [])[:10]) or "Unknown"
        system = f"""You are an expert in grant applications and form completion. Analyze the field name and provide a helpful definition.

Context about this field:
- Field name: "{field_name}"
- Form type: {form_context.get('formType') or 'Unknown'}
- Available fields: {available}
- User's organization: {user_context.get('organizationType') or 'Unknown'}
- User's project type: {user_context.get('projectType') or 'Unknown'}
- Organization name: {user_context.get('organizationName') or 'Unknown'}

Provide a JSON response with: definition (2-3 sentences), purpose, expectedFormat,
commonExamples, tips, relatedFields and contextSpecificGuidance. Be specific and actionable."""

        try:
            result = await self.provider.generate_completion(
                "field-analysis",
                [{"role": "system", "content": system}, {"role": "user", "content": f'Analyze this field: "{field_name}"'}],
                max_tokens=600,
                temperature=0.3,
                response_format="json_object",
            )
            analysis = safe_parse_json(result.content)
            if not isinstance(analysis, dict) or not analysis.get("definition") or not analysis.get("purpose"):
                raise ValueError("AI response missing required fields")
        except Exception as e:
            logger.warning("field_analysis_fallback", field_key=field_key, error=str(e))
            fallback = fallback_definition(field_name, form_context, user_context)
            await self._store(db, cached, field_key, field_name, fallback, is_fallback=True)
            return {"analysis": fallback, "cached": False, "fallback": True, "aiError": str(e)}

        await self._store(db, cached, field_key, field_name, analysis, is_fallback=False)
        logger.info("field_definition_cached", field_key=field_key)
        return {"analysis": analysis, "cached": False, "generatedAt": utcnow().isoformat()}

    async def extract_field(self, user_query: str, available_fields: Optional[list[str]] = None) -> str:
        """Name of the form field a user question is about, or ``UNKNOWN``."""
        available_fields = available_fields or []
        prompt = (
            "Extract the most likely field name from this user question about a form field.\n\n"
            f'User question: "{user_query}"\n\n'
            f"Available fields: {', '.join(str(f) for f in available_fields) or 'None'}\n\n"
            "Return a single field name exactly as it appears in the list above if clearly matched, "
            "otherwise return the most likely normalized field name (snake_case). If unclear, return UNKNOWN."
        )
        try:
            result = await self.provider.generate_completion(
                "field-analysis",
                [{"role": "user", "content": prompt}],
                max_tokens=60,
                temperature=0.1,
            )
            extracted = (result.content or "").strip().replace('"', "")
            if extracted:
                return extracted
        except Exception as e:
            logger.warning("field_extraction_failed", error=str(e))
        return heuristic_extract_field_name(user_query, available_fields)

    async def field_help(
        self,
        field: str,
        current_value: str = "",
        project_draft: Optional[dict[str, Any]] = None,
        use_llm: bool = True,
    ) -> dict[str, Any]:
        heuristic = build_field_help(field, current_value)
        if not use_llm:
            return heuristic

        prompt = (
            f'Field: {field}\nCurrent Raw Value:\n"""\n{current_value}\n"""\n'
            f"Project Draft Snapshot (truncated):\n{json.dumps(project_draft or {}, default=str)[:1500]}\n\n"
            f"Heuristic JSON (keys to preserve):\n{json.dumps(heuristic)}\n\n"
            "Revise STRICTLY to focus on missing elements, clarity, measurability and alignment with "
            "funder expectations. Do not restate generic field definitions. Keep keys identical."
        )
        try:
            result = await self.provider.generate_completion(
                "document-analysis",
                [
                    {
                        "role": "system",
                        "content": "You are Wali-OS Assistant, an expert grant strategist. ONLY provide "
                        "improvement guidance for the user's existing text. Return JSON only.",
                    },
                    {"role": "user", "content": prompt},
                ],
                max_tokens=600,
                temperature=0.3,
            )
            refined = safe_parse_json(result.content)
        except Exception as e:
            logger.warning("field_help_refinement_failed", error=str(e))
            return heuristic
        return refined if isinstance(refined, dict) else heuristic
