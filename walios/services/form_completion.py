"""
Form auto-fill.

Populates a structured form (``formFields`` keyed by field id, optional
``formSections``) from the caller's user data. Each field is resolved from,
in order: the LLM-suggested ``dataPath``, any ``fallbackPaths``, the mapping's
``fallbackValue``, and finally the label-pattern matchers below. Calculated
fields are applied last.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from walios.services.ai_provider import AIProviderService, safe_parse_json
from walios.utils import parse_datetime, to_number

logger = structlog.get_logger(__name__)

MAX_TOKENS = 4000

# =============================================================================
# Path lookup, transformations and calculations
# =============================================================================


def extract_value_from_path(data: Any, path: Optional[str]) -> Any:
    """Follow a dotted path (``organization.ein``) through nested dicts."""
    if not path or not isinstance(path, str):
        return None
    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
        if current is None:
            return None
    return current


def _format_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def _format_currency(amount: float) -> str:
    if amount == int(amount):
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def apply_transformation(value: Any, transformation: Optional[str]) -> Any:
    """Format a value as currency, phone, date or a different letter case."""
    if not value or not transformation:
        return value

    if transformation == "currency":
        amount = to_number(re.sub(r"[^0-9.\-]", "", str(value)))
        return value if amount is None else _format_currency(amount)

    if transformation == "phone":
        digits = re.sub(r"\D", "", str(value))
        if len(digits) == 10:
            return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
        return value

    if transformation == "date":
        if isinstance(value, datetime) or (isinstance(value, str) and re.match(r"^\d{4}-\d{2}-\d{2}", value)):
            parsed = parse_datetime(value)
            return _format_date(parsed) if parsed else value
        return value

    if transformation == "uppercase":
        return str(value).upper()
    if transformation == "lowercase":
        return str(value).lower()
    if transformation == "title_case":
        return re.sub(r"\w\S*", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), str(value))

    return value


def _numeric(value: Any) -> float:
    number = to_number(value)
    return number if number is not None else 0.0


def perform_calculation(
    calculation: dict[str, Any],
    populated: dict[str, Any],
    user_data: dict[str, Any],
) -> Optional[float]:
    """Evaluate a ``sum``, ``project_duration_months`` or ``percentage`` formula."""
    formula = calculation.get("formula")
    dependencies = calculation.get("dependencies") or []

    if formula == "sum":
        return sum(_numeric(populated.get(field_id)) for field_id in dependencies)

    if formula == "project_duration_months":
        project = user_data.get("project") or {}
        start = parse_datetime(project.get("start_date") or project.get("startDate"))
        end = parse_datetime(project.get("end_date") or project.get("endDate"))
        if start and end:
            return round((end - start).total_seconds() / (86400 * 30))
        return None

    if formula == "percentage":
        if len(dependencies) < 2:
            return None
        numerator = _numeric(populated.get(dependencies[0]))
        denominator = to_number(populated.get(dependencies[1]))
        if denominator is None:
            denominator = 1.0
        return round(numerator / denominator * 100) if denominator else 0

    return None


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[()\d\s\-+.]{10,}$")


def validate_field_value(value: Any, field: dict[str, Any]) -> dict[str, Any]:
    """Check a value against its field type; unknown types always pass."""
    field_type = field.get("type")

    if field_type == "email":
        valid = bool(EMAIL_RE.match(str(value)))
        return {"valid": valid, "error": None if valid else "Invalid email format"}

    if field_type == "phone":
        valid = bool(PHONE_RE.match(str(value)))
        return {"valid": valid, "error": None if valid else "Invalid phone number format"}

    if field_type == "currency":
        amount = to_number(re.sub(r"[^0-9.\-]", "", str(value)))
        valid = amount is not None and amount >= 0
        return {"valid": valid, "error": None if valid else "Invalid currency amount"}

    if field_type == "date":
        valid = parse_datetime(value) is not None
        return {"valid": valid, "error": None if valid else "Invalid date format"}

    return {"valid": True, "error": None}


# =============================================================================
# Label pattern matching
# =============================================================================

Extractor = Callable[[dict, dict, dict], Any]


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, "", [], {}):
            return value
    return None


def _address(org: dict, project: dict, user: dict) -> Any:
    address = org.get("address")
    if isinstance(address, dict):
        parts = [address.get("street"), address.get("city"), address.get("state"), address.get("zip")]
        return ", ".join(str(p) for p in parts if p) or None
    return _first(org.get("address_line1"), address)


def _history(org: dict, project: dict, user: dict) -> str:
    if org.get("organization_history"):
        return org["organization_history"]
    name = org.get("organization_name") or "Our organization"
    founded = _first(org.get("incorporation_year"), org.get("founded_year"), "[year]")
    return f"{name} was established in {founded} and has been serving the community since then."


def _geography(org: dict, project: dict, user: dict) -> Any:
    location = _first(project.get("project_location"), project.get("geographic_scope"), org.get("service_areas"))
    if location:
        return ", ".join(location) if isinstance(location, list) else location
    if org.get("city") and org.get("state"):
        return f"{org['city']}, {org['state']}"
    return None


def _certifications(org: dict, project: dict, user: dict) -> Any:
    certs = org.get("certifications")
    if isinstance(certs, dict):
        held = [name for name, active in certs.items() if active]
        return ", ".join(held) or None
    if isinstance(certs, list):
        return ", ".join(str(c) for c in certs) or None
    return certs


def _goals(org: dict, project: dict, user: dict) -> Any:
    goals = _first(project.get("goals"), project.get("primary_goals"))
    if isinstance(goals, list):
        return "; ".join(str(g) for g in goals)
    return goals or "Project goals will be defined to meet program requirements"


FIELD_MATCHERS: list[tuple[re.Pattern, Extractor]] = [
    (
        re.compile(r"(organization|company|entity|business|legal|applicant)\s*(name|title)"),
        lambda o, p, u: _first(o.get("organization_name"), o.get("name"), u.get("full_name")),
    ),
    (
        re.compile(r"\b(ein|tax\s*id|federal\s*id|employer\s*id|tax\s*exempt)"),
        lambda o, p, u: _first(o.get("ein"), o.get("tax_id"), o.get("taxId")),
    ),
    (re.compile(r"\b(duns|uei|unique\s*entity)"), lambda o, p, u: _first(o.get("uei"), o.get("duns_number"), o.get("duns_uei"))),
    (re.compile(r"\bcage\b"), lambda o, p, u: o.get("cage_code")),
    (re.compile(r"^(?!.*email).*address"), _address),
    (re.compile(r"^city\b"), lambda o, p, u: _first(o.get("city"), (o.get("address") or {}).get("city") if isinstance(o.get("address"), dict) else None)),
    (re.compile(r"^state\b"), lambda o, p, u: _first(o.get("state"), o.get("state_province"))),
    (re.compile(r"(zip|postal)"), lambda o, p, u: _first(o.get("zip_code"), o.get("postal_code"))),
    (re.compile(r"(phone|telephone|\btel\b)"), lambda o, p, u: _first(o.get("phone"), u.get("phone"))),
    (re.compile(r"e-?mail"), lambda o, p, u: _first(o.get("email"), u.get("email"))),
    (re.compile(r"(website|\burl\b|web\s*site)"), lambda o, p, u: o.get("website")),
    (
        re.compile(r"(executive|director|ceo|president|leader|contact|authorized)"),
        lambda o, p, u: _first(
            o.get("contact_name"),
            u.get("full_name"),
            " ".join(filter(None, [o.get("first_name"), o.get("last_name")])),
            o.get("executive_director"),
        ),
    ),
    (re.compile(r"mission"), lambda o, p, u: _first(o.get("mission_statement"), "To be provided upon request")),
    (re.compile(r"(annual|yearly|operating).*budget"), lambda o, p, u: _first(o.get("annual_budget"), o.get("annual_revenue"))),
    (re.compile(r"history"), _history),
    (re.compile(r"(project|program|initiative|campaign).*(name|title)"), lambda o, p, u: _first(p.get("name"), p.get("title"))),
    (re.compile(r"(project|program).*(description|summary|abstract)"), lambda o, p, u: _first(p.get("description"), p.get("summary"))),
    (
        re.compile(r"(amount|funding|budget).*request"),
        lambda o, p, u: _first(p.get("funding_needed"), p.get("funding_request_amount"), p.get("funding_goal")),
    ),
    (re.compile(r"(total|project).*budget"), lambda o, p, u: _first(p.get("total_budget"), p.get("total_project_budget"), p.get("funding_goal"))),
    (
        re.compile(r"(timeline|duration|period)"),
        lambda o, p, u: _first(p.get("timeline"), f"{p.get('project_duration') or '12'} months"),
    ),
    (re.compile(r"(goal|objective)"), _goals),
    (
        re.compile(r"(need|problem|challenge)"),
        lambda o, p, u: _first(p.get("statement_of_need"), p.get("community_benefit"), "Community needs assessment will be provided"),
    ),
    (
        re.compile(r"evaluation"),
        lambda o, p, u: _first(
            p.get("evaluation_plan"),
            "Evaluation methodology will be developed in accordance with best practices",
        ),
    ),
    (
        re.compile(r"(outcome|impact|result)"),
        lambda o, p, u: _first(
            p.get("expected_outcomes"),
            p.get("outcome_measures"),
            "Measurable outcomes will be tracked throughout the project period",
        ),
    ),
    (re.compile(r"(geographic|service\s*area|location)"), _geography),
    (re.compile(r"(revenue|income)"), lambda o, p, u: o.get("annual_revenue")),
    (re.compile(r"(employee|staff).*(count|number)|number of (employees|staff)"), lambda o, p, u: _first(o.get("employee_count"), o.get("full_time_staff"))),
    (re.compile(r"certification"), _certifications),
    (re.compile(r"(date|deadline)"), lambda o, p, u: _format_date(datetime.now(timezone.utc))),
]


def comprehensive_field_match(field: dict[str, Any], user_data: dict[str, Any]) -> Any:
    """Value for a field chosen by matching its label against FIELD_MATCHERS in order."""
    label = (field.get("label") or "").lower().strip()
    if not label:
        return None

    user = user_data.get("user") or {}
    org = user_data.get("organization") or user_data.get("userProfile") or user
    project = user_data.get("project") or {}

    for pattern, extractor in FIELD_MATCHERS:
        if pattern.search(label):
            return extractor(org, project, user)
    return None


def _is_filled(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value is not False


def populate_form(
    form_fields: dict[str, dict[str, Any]],
    user_data: dict[str, Any],
    mappings: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Resolve a value for every field that has one; unresolved fields are omitted."""
    mappings = mappings or {}
    field_mappings = mappings.get("fieldMappings") or {}
    populated: dict[str, Any] = {}

    for field_id, field in form_fields.items():
        mapping = field_mappings.get(field_id)
        value = None

        if mapping:
            value = extract_value_from_path(user_data, mapping.get("dataPath"))
            for path in mapping.get("fallbackPaths") or []:
                if _is_filled(value):
                    break
                value = extract_value_from_path(user_data, path)
            if _is_filled(value) and mapping.get("transformation"):
                value = apply_transformation(value, mapping["transformation"])
            if not _is_filled(value) and mapping.get("fallbackValue"):
                value = mapping["fallbackValue"]

        if not _is_filled(value):
            value = comprehensive_field_match(field, user_data)

        if _is_filled(value):
            populated[field_id] = value

    for field_id, calculation in (mappings.get("calculatedFields") or {}).items():
        try:
            calculated = perform_calculation(calculation, populated, user_data)
        except (TypeError, ValueError, ZeroDivisionError) as e:
            logger.warning("field_calculation_failed", field_id=field_id, error=str(e))
            calculated = calculation.get("fallback")
        if calculated is not None:
            populated[field_id] = calculated

    return populated


def completion_stats(form_fields: dict[str, dict[str, Any]], populated: dict[str, Any]) -> dict[str, Any]:
    total = len(form_fields)
    filled = sum(1 for field_id in form_fields if _is_filled(populated.get(field_id)))
    required = [field_id for field_id, field in form_fields.items() if field.get("required")]
    return {
        "totalFields": total,
        "populatedFields": filled,
        "requiredFields": len(required),
        "requiredFieldsPopulated": sum(1 for field_id in required if _is_filled(populated.get(field_id))),
        "completionPercentage": round(filled / total * 100) if total else 0,
    }


def build_sections(form_structure: dict[str, Any], populated: dict[str, Any]) -> list[dict[str, Any]]:
    """Group populated fields by the form's sections, or one default section."""
    form_fields = form_structure["formFields"]
    sections = form_structure.get("formSections") or [
        {"id": "main_section", "title": "Form Fields", "fields": list(form_fields), "order": 1}
    ]

    built = []
    for section in sections:
        fields = {}
        for field_id in section.get("fields") or []:
            if field_id in form_fields:
                value = populated.get(field_id)
                fields[field_id] = {**form_fields[field_id], "value": value, "populated": _is_filled(value)}
        built.append({
            **section,
            "fields": fields,
            "completionStats": {
                "total": len(fields),
                "populated": sum(1 for f in fields.values() if f["populated"]),
            },
        })
    return built


# =============================================================================
# Service
# =============================================================================

MAPPING_PROMPT = """Analyze this form structure and user data to create intelligent field mappings:

FORM STRUCTURE:
{form_structure}

USER DATA:
{user_data}

Create comprehensive field mappings that:
1. Map form fields to available user data
2. Handle missing data gracefully
3. Suggest data transformations where needed (currency, phone, date, uppercase, lowercase, title_case)
4. Identify calculated fields (sum, project_duration_months, percentage)
5. Recommend fallback values

REQUIRED JSON RESPONSE:
{{
  "fieldMappings": {{
    "field_id": {{
      "dataPath": "path.to.user.data",
      "fallbackPaths": ["other.path"],
      "transformation": "formatting rule if needed",
      "confidence": 0.0,
      "fallbackValue": "default if primary data missing",
      "requiresInput": false,
      "mappingReason": "explanation of mapping logic"
    }}
  }},
  "missingData": [{{"fieldId": "", "fieldLabel": "", "required": false, "suggestedSource": "", "priority": "high|medium|low"}}],
  "calculatedFields": {{"field_id": {{"formula": "sum", "dependencies": ["other_field_ids"], "fallback": null}}}},
  "confidence": 0.0,
  "recommendedActions": []
}}"""

ENHANCE_PROMPT = """Analyze and improve these field mappings based on the form structure and user data:

CURRENT MAPPINGS:
{mappings}

FORM STRUCTURE:
{form_structure}

USER DATA:
{user_data}

Provide enhanced mappings that fix incorrect mappings, add mappings for unmapped
fields, improve confidence, suggest better data sources and add helpful
transformations. Return the complete enhanced mapping structure as JSON."""

SMART_ACTIONS = {
    "complete-form": (
        "You are an expert grant application consultant. Complete form fields accurately "
        "and provide helpful suggestions.",
        "Complete the following form fields using the provided user and project information. "
        "For each field provide a completed value, a confidence (0.0-1.0), whether more "
        "information is needed, and suggested improvements. Respond with JSON containing "
        "completedFields, suggestions and missingInfo.",
        0.1,
    ),
    "create-completion-plan": (
        "You are a strategic grant application consultant. Create actionable completion plans "
        "that maximize success probability.",
        "Create a strategic completion plan for this grant application with phases, priorities, "
        "timeline, resources, dependencies and risks. Format as JSON with a phases array and an "
        "overall strategy.",
        0.2,
    ),
    "generate-narratives": (
        "You are an expert grant writer. Create compelling, professional narratives that clearly "
        "communicate value and impact.",
        "Generate narrative content for the form sections below. For each section provide content, "
        "key_points, word_count, tone and improvement_tips as JSON.",
        0.3,
    ),
    "detect-missing-info": (
        "You are a thorough grant application analyst. Identify exactly what information is needed "
        "for a complete, competitive application.",
        "Identify missing_critical, missing_recommended, incomplete_fields, questions_to_ask and "
        "priority_order for completing this form. Respond as JSON.",
        0.1,
    ),
}


class FormCompletionService:
    """Document generation and smart form completion."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider

    async def _json_completion(
        self, system: str, prompt: str, temperature: float = 0.1, task_type: str = "smart-form-completion"
    ) -> Any:
        result = await self.provider.generate_completion(
            task_type,
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            max_tokens=MAX_TOKENS,
            temperature=temperature,
            response_format="json_object",
        )
        if not result.content:
            raise ValueError("No response received from AI provider")
        return safe_parse_json(result.content)

    async def generate_mappings(self, form_structure: dict[str, Any], user_data: dict[str, Any]) -> dict[str, Any]:
        mappings = await self._json_completion(
            "You are an expert at mapping form fields to user data. Create intelligent, "
            "accurate field mappings that maximize form completion.",
            MAPPING_PROMPT.format(
                form_structure=json.dumps(form_structure, indent=2, default=str),
                user_data=json.dumps(user_data, indent=2, default=str),
            ),
            task_type="document-generation",
        )
        return mappings if isinstance(mappings, dict) else {}

    async def generate(self, form_structure: dict[str, Any], user_data: dict[str, Any]) -> dict[str, Any]:
        mappings = await self.generate_mappings(form_structure, user_data)
        populated = populate_form(form_structure["formFields"], user_data, mappings)
        stats = completion_stats(form_structure["formFields"], populated)

        logger.info(
            "form_populated",
            total=stats["totalFields"],
            populated=stats["populatedFields"],
            completion=stats["completionPercentage"],
        )
        return {
            "formMetadata": form_structure.get("formMetadata"),
            "sections": build_sections(form_structure, populated),
            "populatedFields": populated,
            "fieldMappings": mappings,
            "completionStats": stats,
        }

    async def preview(self, form_structure: dict[str, Any], user_data: dict[str, Any]) -> dict[str, Any]:
        document = await self.generate(form_structure, user_data)
        stats = document["completionStats"]
        return {
            **document,
            "preview": True,
            "previewStats": {
                "readyToGenerate": stats["completionPercentage"] > 50,
                "missingRequired": stats["requiredFields"] - stats["requiredFieldsPopulated"],
            },
        }

    def validate(self, form_structure: dict[str, Any], values: dict[str, Any]) -> dict[str, Any]:
        """Check flat ``{field_id: value}`` data against the form's fields."""
        missing_required = []
        invalid_fields = []

        for field_id, field in form_structure["formFields"].items():
            value = values.get(field_id)
            if field.get("required") and not _is_filled(value):
                missing_required.append({"fieldId": field_id, "label": field.get("label"), "section": field.get("section")})
            if _is_filled(value):
                check = validate_field_value(value, field)
                if not check["valid"]:
                    invalid_fields.append({
                        "fieldId": field_id,
                        "label": field.get("label"),
                        "value": value,
                        "error": check["error"],
                    })

        errors = [f"Required field missing: {f['label']}" for f in missing_required]
        errors += [f"Invalid {f['label']}: {f['error']}" for f in invalid_fields]
        return {
            "valid": not missing_required and not invalid_fields,
            "errors": errors,
            "warnings": [],
            "missingRequired": missing_required,
            "invalidFields": invalid_fields,
        }

    async def enhance_mappings(
        self,
        form_structure: dict[str, Any],
        user_data: dict[str, Any],
        current_mappings: Optional[dict[str, Any]] = None,
    ) -> Any:
        return await self._json_completion(
            "You are an expert at optimizing form field mappings. Analyze current mappings and provide improvements.",
            ENHANCE_PROMPT.format(
                mappings=json.dumps(current_mappings or {}, indent=2, default=str),
                form_structure=json.dumps(form_structure, indent=2, default=str),
                user_data=json.dumps(user_data, indent=2, default=str),
            ),
            task_type="document-generation",
        )

    async def smart_completion(
        self,
        action: str,
        form_fields: Any,
        user_profile: Any,
        project_data: Any,
    ) -> Any:
        """Run one of the SMART_ACTIONS prompts; unknown actions raise ValueError."""
        if action not in SMART_ACTIONS:
            raise ValueError("Invalid action specified")
        system, instructions, temperature = SMART_ACTIONS[action]
        prompt = (
            f"{instructions}\n\n"
            f"FORM FIELDS:\n{json.dumps(form_fields, indent=2, default=str)}\n\n"
            f"USER PROFILE:\n{json.dumps(user_profile, indent=2, default=str)}\n\n"
            f"PROJECT DATA:\n{json.dumps(project_data, indent=2, default=str)}"
        )
        return await self._json_completion(system, prompt, temperature)
