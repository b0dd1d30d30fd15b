"""
Opportunity fit scoring.

Rule-based scores (fast-score, pre-score and its compliance / strategic fit /
readiness parts) are plain functions over request payload dicts. The
ScoringService adds the LLM passes: AI verification of high fast-scores,
AI analysis, and the blended enhanced score.
"""

import json
import re
import time
from typing import Any, Optional

import structlog

from walios.services.ai_provider import AIProviderService, safe_parse_json
from walios.utils import as_list, days_until, to_number

logger = structlog.get_logger(__name__)

AI_VERIFICATION_THRESHOLD = 70
RULE_WEIGHT = 0.4
AI_WEIGHT = 0.6
BATCH_LIMIT = 10
FAST_SCORE_MAX = 100

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does",
    "did", "will", "would", "could", "should", "this", "that", "these", "those", "from",
    "their", "there", "which", "into", "through", "also", "such", "than", "then", "them",
})
MAX_KEYWORDS = 20
MIN_KEYWORD_LENGTH = 4

COMPETITION_POINTS = {"low": 5, "medium": 3, "high": 1}

AI_ANALYSIS_FALLBACK = {
    "score": 50,
    "strengths": ["Basic compatibility confirmed"],
    "weaknesses": ["Detailed AI analysis unavailable"],
    "recommendations": ["Manual review recommended"],
    "confidence": 0.4,
    "reasoning": "AI analysis failed, using fallback scoring",
}


def extract_keywords(text: Optional[str]) -> list[str]:
    """First 20 words longer than 3 characters that are not stop words."""
    if not text:
        return []
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return [w for w in words if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS][:MAX_KEYWORDS]


def keyword_overlap(first: list[str], second: list[str]) -> float:
    """Share of the longer keyword list found in the other list (0-1)."""
    if not first or not second:
        return 0.0
    second_set = set(second)
    overlap = sum(1 for word in first if word in second_set)
    return overlap / max(len(first), len(second))


def _text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value) if value else ""


def _lower_set(values: Any) -> set[str]:
    return {str(v).strip().lower() for v in as_list(values)}


def _requested_amount(project: dict[str, Any]) -> Optional[float]:
    for key in ("funding_needed", "funding_request_amount", "amount_requested", "total_budget", "total_project_budget"):
        amount = to_number(project.get(key))
        if amount:
            return amount
    return None


# =============================================================================
# Fast score
# =============================================================================


def calculate_fast_score(
    opportunity: dict[str, Any],
    project: dict[str, Any],
    user_profile: dict[str, Any],
) -> dict[str, Any]:
    """
    Rule-based 0-100 fit score.

    Weights: keywords 25, goals 20, funding precision 15, eligibility 20,
    timeline 10, geography 5, competition 5. A past deadline short-circuits to
    an ineligible score of 0.
    """
    started = time.perf_counter()
    strengths: list[str] = []
    weaknesses: list[str] = []
    eligible = True

    left = days_until(opportunity.get("deadline_date") or opportunity.get("deadline"))
    if left is not None and left < 0:
        return {
            "overallScore": 0,
            "eligible": False,
            "breakdown": {},
            "strengths": [],
            "weaknesses": ["Application deadline has passed"],
            "processingTime": round((time.perf_counter() - started) * 1000, 2),
        }

    breakdown: dict[str, int] = {}

    # Project description vs opportunity description
    project_keywords = extract_keywords(
        " ".join([_text(project.get("description")), _text(project.get("keywords"))])
    )
    opportunity_keywords = extract_keywords(
        " ".join([_text(opportunity.get("description")), _text(opportunity.get("title"))])
    )
    breakdown["keywords"] = int(keyword_overlap(project_keywords, opportunity_keywords) * 25)
    if breakdown["keywords"] >= 15:
        strengths.append("Project description closely matches the opportunity")

    # Goals vs focus areas, or project type vs eligible project types
    goals = project.get("goals") or project.get("primary_goals")
    focus_areas = opportunity.get("focus_areas")
    project_type = (project.get("project_type") or "").lower()
    project_types = [t.lower() for t in as_list(opportunity.get("project_types"))]
    if goals and focus_areas:
        alignment = keyword_overlap(extract_keywords(_text(goals)), extract_keywords(_text(focus_areas)))
        breakdown["goals"] = int(alignment * 20)
    elif project_type and project_type in project_types:
        breakdown["goals"] = 20
    elif project_type and any(
        t.split("_")[0] in project_type or project_type.split("_")[0] in t for t in project_types
    ):
        breakdown["goals"] = 12
    else:
        breakdown["goals"] = 0
    if breakdown["goals"] >= 12:
        strengths.append("Project goals align with the funder's focus")

    # Funding amount precision
    need = _requested_amount(project)
    amount_min = to_number(opportunity.get("amount_min"))
    amount_max = to_number(opportunity.get("amount_max"))
    breakdown["funding"] = 0
    if need and amount_max:
        floor = amount_min or 0
        if floor <= need <= amount_max:
            breakdown["funding"] = 15
            strengths.append("Funding request fits the award range")
        elif amount_max < need <= amount_max * 1.1:
            breakdown["funding"] = 12
        elif need < floor:
            breakdown["funding"] = 8
            weaknesses.append("Request is below the minimum award")
        else:
            breakdown["funding"] = 4
            weaknesses.append("Request exceeds the maximum award")

    # Eligibility
    eligibility = opportunity.get("eligibility")
    org_types = _lower_set(opportunity.get("organization_types"))
    org_type = (user_profile.get("organization_type") or "").lower()
    if isinstance(eligibility, dict):
        if eligibility.get("eligible"):
            points = int((to_number(eligibility.get("confidence")) or 0) * 0.15)
            if ((eligibility.get("checks") or {}).get("certifications") or {}).get("advantages"):
                points += 5
        else:
            points = -10
            eligible = False
            weaknesses.append("Eligibility check failed")
        points -= min(5, len(eligibility.get("warnings") or []))
    elif org_types and "all" not in org_types:
        if org_type and org_type in org_types:
            points = 15
            strengths.append("Organization type is eligible")
        else:
            points = -10
            eligible = False
            weaknesses.append("Organization type not eligible for this opportunity")
    else:
        points = 10
    breakdown["eligibility"] = points

    # Timeline
    if left is None:
        breakdown["timeline"] = 6
    elif 30 < left <= 90:
        breakdown["timeline"] = 10
        strengths.append("Comfortable time to prepare")
    elif 14 < left <= 180:
        breakdown["timeline"] = 8
    elif 7 < left <= 14:
        breakdown["timeline"] = 5
        weaknesses.append("Deadline is within two weeks")
    elif 0 <= left <= 7:
        breakdown["timeline"] = 2
        weaknesses.append("Deadline is within a week")
    else:
        breakdown["timeline"] = 0

    # Geography
    geography = _lower_set(opportunity.get("geography") or opportunity.get("geographic_restrictions"))
    location = " ".join(
        [_text(project.get("location")), _text(project.get("geographic_scope")), _text(user_profile.get("state"))]
    ).lower()
    if not geography or geography & {"nationwide", "national", "united states"}:
        breakdown["geography"] = 5
    elif location.strip() and any(geo in location for geo in geography):
        breakdown["geography"] = 5
    elif len(geography) > 5:
        breakdown["geography"] = 3
    else:
        breakdown["geography"] = 0
        weaknesses.append("Outside the funder's geographic focus")

    # Competition
    breakdown["competition"] = COMPETITION_POINTS.get((opportunity.get("competition_level") or "").lower(), 2)

    raw = sum(breakdown.values())
    overall = max(0, min(FAST_SCORE_MAX, round(raw / FAST_SCORE_MAX * 100)))

    return {
        "overallScore": overall,
        "eligible": eligible,
        "breakdown": breakdown,
        "strengths": strengths,
        "weaknesses": weaknesses,
        "processingTime": round((time.perf_counter() - started) * 1000, 2),
    }


# =============================================================================
# Pre-score
# =============================================================================


def calculate_compliance_score(user_profile: dict[str, Any]) -> int:
    """Registration readiness, max 25."""
    score = 0
    if user_profile.get("ein") or user_profile.get("tax_id"):
        score += 5
    if user_profile.get("duns_uei") or user_profile.get("uei") or user_profile.get("duns_number"):
        score += 5
    sam = user_profile.get("sam_registration")
    if sam == "active":
        score += 10
    elif sam == "pending":
        score += 5
    audit = user_profile.get("audit_status")
    if audit == "clean":
        score += 5
    elif audit == "qualified":
        score += 3
    return min(score, 25)


def calculate_strategic_fit(
    opportunity: dict[str, Any],
    project: dict[str, Any],
    user_profile: dict[str, Any],
) -> int:
    """Focus-area and population overlap, max 25."""
    score = 0
    user_focus = _lower_set(user_profile.get("focus_areas") or user_profile.get("primary_focus_areas"))
    opp_focus = _lower_set(opportunity.get("focus_areas"))
    score += min(len(user_focus & opp_focus) * 5, 15)

    populations = _lower_set(user_profile.get("populations_served"))
    targets = _lower_set(opportunity.get("target_populations"))
    score += min(len(populations & targets) * 3, 10)
    return min(score, 25)


READINESS_BY_STATUS = {"planning": 15, "pilot": 20, "operational": 10}


def calculate_readiness_score(project: dict[str, Any]) -> int:
    """Project maturity, max 25."""
    score = READINESS_BY_STATUS.get(project.get("status") or project.get("current_status"), 0)
    if as_list(project.get("goals") or project.get("primary_goals")):
        score += 5
    if project.get("expected_outcomes") or as_list(project.get("outcome_measures")):
        score += 5
    if project.get("innovation") or project.get("unique_innovation"):
        score += 5
    return min(score, 25)


def calculate_pre_score(
    opportunity: dict[str, Any],
    project: dict[str, Any],
    user_profile: dict[str, Any],
) -> dict[str, Any]:
    """Eligibility gates followed by compliance, strategic fit and readiness."""
    pre = {
        "eligibleByRules": True,
        "confidence": "high",
        "quickScore": 0,
        "flags": [],
        "complianceScore": 0,
        "strategicFit": 0,
        "readinessScore": 0,
        "strengths": [],
        "weaknesses": [],
        "recommendations": [],
    }

    org_types = _lower_set(opportunity.get("organization_types"))
    org_type = (user_profile.get("organization_type") or "").lower()
    if org_types and org_type not in org_types and "all" not in org_types:
        pre["eligibleByRules"] = False
        pre["flags"].append("organization_type_mismatch")
        pre["weaknesses"].append("Organization type not eligible for this opportunity")
        return pre

    request_amount = _requested_amount(project)
    amount_min = to_number(opportunity.get("amount_min"))
    if amount_min and request_amount:
        ratio = request_amount / amount_min
        if ratio < 0.1 or ratio > 10:
            pre["eligibleByRules"] = False
            pre["flags"].append("amount_mismatch")
            pre["weaknesses"].append("Funding request amount not aligned with opportunity range")
            return pre
        if 0.5 <= ratio <= 2.0:
            pre["quickScore"] += 15
            pre["strengths"].append("Good budget alignment")

    left = days_until(opportunity.get("deadline_date"))
    if left is not None:
        if left < 0:
            pre["eligibleByRules"] = False
            pre["flags"].append("past_deadline")
            pre["weaknesses"].append("Application deadline has passed")
            return pre
        if left > 30:
            pre["quickScore"] += 10
            pre["strengths"].append("Adequate time for application preparation")
        else:
            pre["quickScore"] += 5
            pre["weaknesses"].append("Limited time remaining for application")

    pre["complianceScore"] = calculate_compliance_score(user_profile)
    pre["strategicFit"] = calculate_strategic_fit(opportunity, project, user_profile)
    pre["readinessScore"] = calculate_readiness_score(project)
    pre["quickScore"] += pre["complianceScore"] + pre["strategicFit"] + pre["readinessScore"]

    if pre["complianceScore"] < 15:
        pre["recommendations"].append("Complete EIN, UEI and SAM.gov registration details")
    return pre


def blend_scores(rule_score: float, ai_score: float) -> int:
    return round(rule_score * RULE_WEIGHT + ai_score * AI_WEIGHT)


# =============================================================================
# LLM-backed scoring
# =============================================================================


def _analysis_prompt(opportunity: dict[str, Any], project: dict[str, Any], user_profile: dict[str, Any]) -> str:
    return f"""As a grant funding expert, analyze this opportunity match and provide a detailed scoring assessment.

OPPORTUNITY:
Title: {opportunity.get('title')}
Description: {opportunity.get('description') or 'N/A'}
Funding Amount: {opportunity.get('amount_min') or 'N/A'} - {opportunity.get('amount_max') or 'N/A'}
Focus Areas: {', '.join(as_list(opportunity.get('focus_areas'))) or 'N/A'}
Requirements: {opportunity.get('requirements') or opportunity.get('eligibility') or 'N/A'}

ORGANIZATION:
Type: {user_profile.get('organization_type') or 'N/A'}
Focus Areas: {', '.join(as_list(user_profile.get('focus_areas'))) or 'N/A'}
Annual Budget: {user_profile.get('annual_budget') or 'N/A'}
Years Operating: {user_profile.get('years_in_operation') or 'N/A'}

PROJECT:
Title: {project.get('name') or project.get('title')}
Description: {project.get('description') or 'N/A'}
Budget Request: {_requested_amount(project) or 'N/A'}
Target Population: {project.get('target_population') or 'N/A'}

Provide: an overall compatibility score (0-100), top 3 strengths, top 3 weaknesses,
3 recommendations and your confidence (0.0-1.0).
Respond as JSON with exactly these keys: score, strengths, weaknesses, recommendations, confidence, reasoning"""


class ScoringService:
    """LLM passes layered on the rule-based scores."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider

    async def ai_analysis(
        self,
        opportunity: dict[str, Any],
        project: dict[str, Any],
        user_profile: dict[str, Any],
    ) -> dict[str, Any]:
        """LLM compatibility analysis; falls back to a neutral 50 on any failure."""
        try:
            result = await self.provider.generate_completion(
                "enhanced-scoring",
                [
                    {"role": "system", "content": "You are an expert grant funding analyst."},
                    {"role": "user", "content": _analysis_prompt(opportunity, project, user_profile)},
                ],
                max_tokens=1500,
                temperature=0.3,
                response_format="json_object",
            )
            analysis = safe_parse_json(result.content)
            score = analysis.get("score")
            if not isinstance(score, (int, float)) or not isinstance(analysis.get("strengths"), list):
                raise ValueError("Invalid response format from AI")
        except Exception as e:
            logger.error("ai_analysis_failed", error=str(e))
            return dict(AI_ANALYSIS_FALLBACK)

        return {
            "score": max(0, min(100, score)),
            "strengths": analysis.get("strengths") or [],
            "weaknesses": analysis.get("weaknesses") or [],
            "recommendations": analysis.get("recommendations") or [],
            "confidence": max(0.0, min(1.0, to_number(analysis.get("confidence")) or 0.7)),
            "reasoning": analysis.get("reasoning") or "AI analysis completed",
        }

    async def enhanced_score(
        self,
        opportunity: dict[str, Any],
        project: dict[str, Any],
        user_profile: dict[str, Any],
    ) -> dict[str, Any]:
        pre = calculate_pre_score(opportunity, project, user_profile)
        if not pre["eligibleByRules"]:
            return {
                "overallScore": 0,
                "preScore": pre,
                "eligible": False,
                "reasoning": "Failed pre-screening criteria",
            }

        analysis = await self.ai_analysis(opportunity, project, user_profile)
        return {
            "overallScore": blend_scores(pre["quickScore"], analysis["score"]),
            "preScore": pre,
            "aiAnalysis": analysis,
            "eligible": True,
            "categoryScores": {
                "eligibility": pre["complianceScore"],
                "alignment": pre["strategicFit"],
                "feasibility": pre["readinessScore"],
                "aiInsight": analysis["score"],
            },
            "strengths": pre["strengths"] + analysis["strengths"],
            "weaknesses": pre["weaknesses"] + analysis["weaknesses"],
            "recommendations": pre["recommendations"] + analysis["recommendations"],
            "confidence": min(0.9 if pre["confidence"] == "high" else 0.7, analysis["confidence"]),
        }

    async def verify_with_ai(
        self,
        score: dict[str, Any],
        opportunity: dict[str, Any],
        project: dict[str, Any],
        user_profile: dict[str, Any],
    ) -> dict[str, Any]:
        """Blend a high fast-score 40/60 with an LLM verification score."""
        if not score["eligible"] or score["overallScore"] < AI_VERIFICATION_THRESHOLD:
            return {**score, "aiVerified": False}

        prompt = (
            "A rule-based matcher scored this opportunity "
            f"{score['overallScore']}/100 for the project. Verify the fit.\n\n"
            f"OPPORTUNITY:\n{json.dumps(opportunity, default=str)}\n\n"
            f"PROJECT:\n{json.dumps(project, default=str)}\n\n"
            f"ORGANIZATION:\n{json.dumps(user_profile, default=str)}\n\n"
            'Respond as JSON: {"score": <0-100>, "reasoning": "<one sentence>"}'
        )
        try:
            result = await self.provider.generate_completion(
                "basic-scoring",
                [
                    {"role": "system", "content": "You verify grant opportunity fit scores."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=300,
                temperature=0.1,
                response_format="json_object",
            )
            verification = safe_parse_json(result.content)
            ai_score = to_number(verification.get("score"))
            if ai_score is None:
                raise ValueError("AI verification returned no score")
        except Exception as e:
            logger.warning("ai_verification_failed", error=str(e))
            return {**score, "aiVerified": False}

        return {
            **score,
            "ruleScore": score["overallScore"],
            "aiScore": max(0, min(100, ai_score)),
            "overallScore": blend_scores(score["overallScore"], max(0, min(100, ai_score))),
            "aiVerified": True,
            "aiReasoning": verification.get("reasoning"),
        }

    async def fast_score(
        self,
        opportunity: dict[str, Any],
        project: dict[str, Any],
        user_profile: dict[str, Any],
        use_ai: bool = False,
    ) -> dict[str, Any]:
        score = calculate_fast_score(opportunity, project, user_profile)
        if use_ai:
            return await self.verify_with_ai(score, opportunity, project, user_profile)
        return {**score, "aiVerified": False}

    async def batch_score(
        self,
        opportunities: list[dict[str, Any]],
        project: dict[str, Any],
        user_profile: dict[str, Any],
    ) -> dict[str, Any]:
        scores = []
        for opportunity in opportunities[:BATCH_LIMIT]:
            try:
                scores.append({
                    "opportunityId": opportunity.get("id"),
                    "score": calculate_fast_score(opportunity, project, user_profile),
                    "processed": True,
                })
            except Exception as e:
                logger.error("batch_score_item_failed", opportunity_id=opportunity.get("id"), error=str(e))
                scores.append({"opportunityId": opportunity.get("id"), "error": str(e), "processed": False})

        return {
            "totalProcessed": len(scores),
            "successful": sum(1 for s in scores if s["processed"]),
            "failed": sum(1 for s in scores if not s["processed"]),
            "scores": scores,
        }
