"""Project categorization prompts for the funding-source sync jobs."""

from typing import Any, Optional

import structlog

from walios.services.ai_provider import AIProviderService, safe_parse_json

logger = structlog.get_logger(__name__)

_JSON_ONLY = "Return only valid JSON without any markdown formatting or explanations."

SYSTEM_PROMPTS = {
    "research": "You are an expert at analyzing research projects and matching them to NSF funding opportunities.",
    "health": "You are an expert at analyzing health and medical projects and matching them to NIH funding opportunities.",
    "foundations": "You are an expert at analyzing nonprofit projects and matching them to foundation funding opportunities.",
    "contracts": "You are an expert at analyzing business projects and matching them to government contract opportunities.",
    "sync_strategy": "You are an expert at analyzing user data to optimize grant sync strategies.",
}

GENERIC_SYSTEM_PROMPT = "You are an expert grant advisor. Analyze projects and return categorization data as JSON."


def build_messages(
    category_type: Optional[str],
    prompt: Optional[str],
    project: Optional[dict[str, Any]] = None,
) -> list[dict[str, str]]:
    if category_type in SYSTEM_PROMPTS:
        return [
            {"role": "system", "content": f"{SYSTEM_PROMPTS[category_type]}\n{_JSON_ONLY}"},
            {"role": "user", "content": prompt or ""},
        ]
    name = (project or {}).get("name") or "Unknown"
    return [
        {"role": "system", "content": GENERIC_SYSTEM_PROMPT},
        {"role": "user", "content": prompt or f"Analyze this project: {name} for grant opportunities."},
    ]


async def categorize(
    provider: AIProviderService,
    category_type: Optional[str],
    prompt: Optional[str],
    project: Optional[dict[str, Any]] = None,
) -> Any:
    """
    Categorize a project for one funding source.

    Returns:
        The parsed JSON answer, or ``None`` when the model gives nothing
        usable so the caller can fall back to its rule-based categories.
    """
    try:
        result = await provider.generate_completion(
            "categorization",
            build_messages(category_type, prompt, project),
            max_tokens=1000,
            temperature=0.1,
            response_format="json_object",
        )
        if not result.content:
            return None
        return safe_parse_json(result.content)
    except Exception as e:
        logger.warning("categorization_unavailable", type=category_type, error=str(e))
        return None
