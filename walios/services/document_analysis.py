"""
Document and form analysis.

Covers free-text funding document analysis (RFPs, guidelines, application
forms), dynamic form structure extraction that merges LLM output with
pattern matching, and post-award compliance extraction.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from walios.services.ai_provider import AIProviderService, AIResponseParseError, safe_parse_json

logger = structlog.get_logger(__name__)

MAX_TOKENS = 4000
DOCUMENT_CHAR_LIMIT = 12000
FORM_CHAR_LIMIT = 10000
EXTRACTION_CHAR_LIMIT = 15000

ANALYSIS_ACTIONS = ("analyze", "form-analysis", "requirements-checklist", "questions", "batch-summary")

BASE_SYSTEM_PROMPT = (
    "You are an expert grant and funding analyst with deep expertise in government grants, "
    "private foundations, venture funding, and corporate programs."
)

DOCUMENT_TYPE_PROMPTS = {
    "application": "You specialize in analyzing application forms and requirements to help users complete them accurately and competitively.",
    "rfp": "You specialize in analyzing RFPs and funding announcements to extract requirements, deadlines, and strategic insights.",
    "guidelines": "You specialize in interpreting program guidelines and eligibility criteria to help users understand compliance requirements.",
    "contract": "You specialize in analyzing funding contracts and award documents to understand obligations and requirements.",
    "report": "You specialize in analyzing reports and documentation to understand reporting requirements and compliance needs.",
}


def get_system_prompt(document_type: str) -> str:
    specific = DOCUMENT_TYPE_PROMPTS.get(document_type)
    if specific:
        return f"{BASE_SYSTEM_PROMPT} {specific}"
    return (
        f"{BASE_SYSTEM_PROMPT} Analyze any funding-related document to extract key information, "
        "requirements, and strategic insights. Always respond with valid, well-structured JSON."
    )


def _as_text(content: Any) -> str:
    return content if isinstance(content, str) else json.dumps(content, default=str)


def truncate(text: str, limit: int, marker: str = " ...[truncated]") -> str:
    return text[:limit] + marker if len(text) > limit else text


def build_analysis_prompt(document_text: Any, document_type: str, context: dict[str, Any]) -> str:
    prompt = f"""Analyze this {document_type} document and extract structured information. Focus on:

1. KEY INFORMATION (keyInformation): title, sponsor, fundingAmount, deadlines, contacts
2. REQUIREMENTS (requirements): eligibility, documents, technical requirements, compliance obligations
3. EVALUATION CRITERIA (evaluationCriteria): scoring factors and selection preferences
4. STRATEGIC INSIGHTS (strategicInsights): alignment, positioning, risks, recommended approach

DOCUMENT CONTENT:
{truncate(_as_text(document_text), DOCUMENT_CHAR_LIMIT)}"""

    if context.get("userProfile") or context.get("project"):
        prompt += f"\n\nCONTEXT FOR PERSONALIZED ANALYSIS:\n{json.dumps(context, indent=2, default=str)}"
    return prompt


def calculate_confidence(analysis: dict[str, Any]) -> float:
    """Base 0.5 plus 0.1 per key item the analysis found, capped at 1.0."""
    score = 0.5
    key_info = analysis.get("keyInformation") or {}
    if isinstance(key_info, dict):
        if key_info.get("title"):
            score += 0.1
        if key_info.get("sponsor"):
            score += 0.1
        if key_info.get("deadlines"):
            score += 0.1
        if key_info.get("fundingAmount"):
            score += 0.1

    requirements = analysis.get("requirements") or {}
    if isinstance(requirements, dict):
        if requirements.get("eligibility"):
            score += 0.1
        if requirements.get("documents"):
            score += 0.1
    if analysis.get("evaluationCriteria"):
        score += 0.1

    return round(min(score, 1.0), 2)


# =============================================================================
# Pattern-based form extraction
# =============================================================================

FORM_PATTERNS: dict[str, dict[str, Any]] = {
    "organization": {
        "patterns": [r"organization\s*name", r"applicant\s*organization", r"entity\s*name", r"institution\s*name", r"company\s*name", r"agency\s*name"],
        "type": "text",
        "section": "applicant_info",
    },
    "contact_person": {
        "patterns": [r"contact\s*person", r"principal\s*investigator", r"project\s*director", r"authorized\s*representative", r"primary\s*contact"],
        "type": "text",
        "section": "contact_info",
    },
    "email": {
        "patterns": [r"email\s*address", r"e-mail", r"electronic\s*mail"],
        "type": "email",
        "section": "contact_info",
    },
    "phone": {
        "patterns": [r"phone\s*number", r"telephone", r"contact\s*number"],
        "type": "phone",
        "section": "contact_info",
    },
    "address": {
        "patterns": [r"mailing\s*address", r"street\s*address", r"physical\s*address", r"organization\s*address"],
        "type": "textarea",
        "section": "contact_info",
    },
    "project_title": {
        "patterns": [r"project\s*title", r"program\s*title", r"grant\s*title", r"proposal\s*title", r"application\s*title"],
        "type": "text",
        "section": "project_info",
    },
    "project_description": {
        "patterns": [r"project\s*description", r"program\s*description", r"project\s*summary", r"abstract", r"overview"],
        "type": "textarea",
        "section": "project_info",
    },
    "requested_amount": {
        "patterns": [r"requested\s*amount", r"funding\s*amount", r"grant\s*amount", r"total\s*budget", r"project\s*cost", r"amount\s*requested"],
        "type": "currency",
        "section": "budget_info",
    },
    "project_period": {
        "patterns": [r"project\s*period", r"grant\s*period", r"performance\s*period", r"project\s*duration"],
        "type": "text",
        "section": "project_info",
    },
    "start_date": {
        "patterns": [r"start\s*date", r"begin\s*date", r"commencement\s*date", r"project\s*start"],
        "type": "date",
        "section": "project_info",
    },
    "end_date": {
        "patterns": [r"end\s*date", r"completion\s*date", r"finish\s*date", r"project\s*end"],
        "type": "date",
        "section": "project_info",
    },
    "tax_exempt_status": {
        "patterns": [r"tax\s*exempt", r"501\(c\)\(3\)", r"nonprofit\s*status", r"tax\s*id", r"\bein\b", r"federal\s*id"],
        "type": "text",
        "section": "eligibility",
    },
    "statement_of_need": {
        "patterns": [r"statement\s*of\s*need", r"needs\s*assessment", r"problem\s*statement", r"community\s*need"],
        "type": "textarea",
        "section": "narrative",
    },
    "project_goals": {
        "patterns": [r"project\s*goals", r"objectives", r"outcomes", r"goals\s*and\s*objectives"],
        "type": "textarea",
        "section": "narrative",
    },
    "methodology": {
        "patterns": [r"methodology", r"approach", r"implementation\s*plan", r"work\s*plan", r"activities"],
        "type": "textarea",
        "section": "narrative",
    },
    "evaluation": {
        "patterns": [r"evaluation", r"assessment\s*plan", r"measurement", r"metrics", r"success\s*indicators"],
        "type": "textarea",
        "section": "narrative",
    },
    "sustainability": {
        "patterns": [r"sustainability", r"long.term\s*plan", r"continuation", r"future\s*funding"],
        "type": "textarea",
        "section": "narrative",
    },
}

SECTION_ORDER = {
    "applicant_info": 1,
    "contact_info": 2,
    "project_info": 3,
    "budget_info": 4,
    "narrative": 5,
    "eligibility": 6,
    "additional_info": 7,
    "certification": 8,
}

FIELD_CATEGORIES = {
    "applicant_info": "organizational",
    "contact_info": "contact",
    "project_info": "project",
    "budget_info": "financial",
    "narrative": "narrative",
    "eligibility": "compliance",
    "certification": "compliance",
}

PLACEHOLDERS = {
    "email": "Enter email address",
    "phone": "Enter phone number",
    "currency": "Enter dollar amount",
    "date": "MM/DD/YYYY",
}

_CHECKBOX = re.compile(r"\[\s*\]\s*([^\n\r]+)")
_TITLE_PATTERNS = [
    re.compile(r"^([^.\n]{5,60})\s*(application|grant|proposal|form)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"(?:application|grant|proposal)\s*for\s*([^.\n]{5,60})", re.IGNORECASE),
]


def _humanize(name: str) -> str:
    return name.replace("_", " ").title()


def _is_required(field_name: str, text: str) -> bool:
    name = field_name.replace("_", r"\s*")
    return any(
        re.search(pattern, text, re.IGNORECASE)
        for pattern in (rf"{name}.*\*", rf"\*.*{name}", rf"{name}.*(required|mandatory)")
    )


def extract_form_title(content: str) -> Optional[str]:
    head = "\n".join(content.split("\n")[:10])
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(head)
        if match:
            return match.group(1).strip()
    return None


def calculate_pattern_confidence(fields: dict[str, Any], content: str) -> float:
    """Confidence for pattern-only extraction; never above 0.95."""
    confidence = 0.3
    if len(fields) > 5:
        confidence += 0.2
    if len(fields) > 10:
        confidence += 0.2
    if any(key in fields for key in ("organization", "project_title", "requested_amount")):
        confidence += 0.2
    if len(content) > 1000:
        confidence += 0.1
    return round(min(confidence, 0.95), 2)


def categorize_fields(fields: dict[str, dict[str, Any]]) -> dict[str, list[str]]:
    categories: dict[str, list[str]] = {
        "organizational": [],
        "contact": [],
        "project": [],
        "financial": [],
        "narrative": [],
        "compliance": [],
    }
    for field_id, field in fields.items():
        category = FIELD_CATEGORIES.get(field.get("section"))
        if category:
            categories[category].append(field_id)
    return categories


def build_form_sections(fields: dict[str, dict[str, Any]]) -> list[dict[str, Any]]:
    """Sections for the fields' ``section`` values, in SECTION_ORDER."""
    names: list[str] = []
    for field in fields.values():
        section = field.get("section")
        if section and section not in names:
            names.append(section)

    sections = [
        {
            "id": name,
            "title": _humanize(name),
            "fields": [field_id for field_id, field in fields.items() if field.get("section") == name],
            "order": SECTION_ORDER.get(name, 999),
            "description": f"Fields related to {name.replace('_', ' ')}",
        }
        for name in names
    ]
    return sorted(sections, key=lambda s: s["order"])


def extract_pattern_structure(content: str, document_type: str = "grant_application") -> dict[str, Any]:
    """Form structure found by FORM_PATTERNS, checkboxes and signature lines."""
    text = content.lower()
    fields: dict[str, dict[str, Any]] = {}

    for field_name, config in FORM_PATTERNS.items():
        if any(re.search(pattern, text) for pattern in config["patterns"]):
            fields[field_name] = {
                "label": _humanize(field_name),
                "type": config["type"],
                "section": config["section"],
                "required": _is_required(field_name, text),
                "placeholder": PLACEHOLDERS.get(config["type"], f"Enter your {field_name.replace('_', ' ')}"),
            }

    for index, match in enumerate(_CHECKBOX.finditer(text)):
        label = match.group(1).strip()
        if len(label) > 3:
            fields[f"checkbox_{index}"] = {
                "label": label,
                "type": "checkbox",
                "section": "additional_info",
                "required": False,
            }

    if "signature" in text or "signed by" in text:
        fields["signature"] = {
            "label": "Authorized Signature",
            "type": "text",
            "section": "certification",
            "required": True,
            "placeholder": "Enter name of authorized signatory",
        }
        fields["signature_date"] = {"label": "Date Signed", "type": "date", "section": "certification", "required": True}

    confidence = calculate_pattern_confidence(fields, content)
    return {
        "formFields": fields,
        "formSections": build_form_sections(fields),
        "formMetadata": {
            "title": extract_form_title(content) or "Grant Application",
            "documentType": document_type,
            "totalFields": len(fields),
        },
        "extractionConfidence": confidence,
        "detectedFormType": document_type,
        "fieldPatterns": categorize_fields(fields),
    }


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_") or "field"


def dedupe_field_ids(fields: Any) -> dict[str, dict[str, Any]]:
    """
    Normalize LLM ``formFields`` into a dict keyed by unique field ids.

    The model sometimes returns a list of field objects, possibly repeating an
    id; repeats are renamed ``<id>_1``, ``<id>_2`` and so on.
    """
    if isinstance(fields, dict):
        return {str(k): v for k, v in fields.items() if isinstance(v, dict)}
    if not isinstance(fields, list):
        return {}

    unique: dict[str, dict[str, Any]] = {}
    for item in fields:
        if not isinstance(item, dict):
            continue
        base = str(item.get("id") or _slug(item.get("label") or "field"))
        field_id = base
        counter = 1
        while field_id in unique:
            field_id = f"{base}_{counter}"
            counter += 1
        unique[field_id] = {k: v for k, v in item.items() if k != "id"}
    return unique


def merge_extraction_results(ai_result: Optional[dict[str, Any]], pattern_result: dict[str, Any]) -> dict[str, Any]:
    """LLM fields take precedence; pattern fields fill the gaps."""
    if not ai_result:
        return pattern_result

    fields = {**pattern_result["formFields"], **dedupe_field_ids(ai_result.get("formFields"))}
    return {
        "formFields": fields,
        "formSections": ai_result.get("formSections") or pattern_result["formSections"],
        "formMetadata": {
            **pattern_result.get("formMetadata", {}),
            **(ai_result.get("formMetadata") or {}),
            "extractionMethod": "hybrid_ai_pattern",
        },
        "extractionConfidence": max(
            ai_result.get("extractionConfidence") or 0,
            pattern_result.get("extractionConfidence") or 0,
        ),
        "detectedFormType": ai_result.get("detectedFormType") or pattern_result.get("detectedFormType"),
        "fieldPatterns": ai_result.get("fieldPatterns") or pattern_result.get("fieldPatterns"),
    }


def calculate_extraction_confidence(structure: dict[str, Any]) -> float:
    score = 0.3
    fields = structure.get("formFields") or {}
    section_count = len(structure.get("formSections") or [])

    if fields:
        score += 0.2
    if len(fields) > 5:
        score += 0.1
    if len(fields) > 15:
        score += 0.1
    if section_count > 0:
        score += 0.1
    if section_count > 2:
        score += 0.1

    types = {field.get("type") for field in fields.values()}
    if len(types) > 2:
        score += 0.1
    if len(types) > 4:
        score += 0.1
    if any(field.get("required") for field in fields.values()):
        score += 0.1

    return round(min(score, 1.0), 2)


def validate_structure(structure: dict[str, Any]) -> dict[str, Any]:
    """Fill missing keys, order sections and recompute metadata counts."""
    fields = dedupe_field_ids(structure.get("formFields"))
    sections = structure.get("formSections") or []
    sections = sorted(
        (s for s in sections if isinstance(s, dict)),
        key=lambda s: s.get("order") or SECTION_ORDER.get(s.get("id"), 999),
    )

    metadata = dict(structure.get("formMetadata") or {})
    metadata["totalFields"] = len(fields)
    metadata["requiredFields"] = sum(1 for f in fields.values() if f.get("required"))
    metadata["sections"] = len(sections)

    validated = {**structure, "formFields": fields, "formSections": sections, "formMetadata": metadata}
    if not validated.get("extractionConfidence"):
        validated["extractionConfidence"] = calculate_extraction_confidence(validated)
    if not validated.get("fieldPatterns"):
        validated["fieldPatterns"] = categorize_fields(fields)
    return validated


EXTRACTION_SYSTEM_PROMPT = (
    "You are an advanced form analysis AI that extracts structured field information from any type "
    "of application form. Look for actual form patterns in the text, infer field types from labels "
    "and context, group related fields into sections, detect required fields and keep the original "
    "order. Always respond with valid, complete JSON."
)

EXTRACTION_MODE_HINTS = {
    "comprehensive": "Extract every possible field and detail.",
    "minimal": "Focus only on clearly defined fields.",
    "structured": "Prioritize well-organized sections and clear field hierarchies.",
}

COMPLIANCE_EMPTY = {
    "compliance_tracking_items": [],
    "compliance_documents": [],
    "compliance_recurring": [],
    "critical_deadlines": [],
    "special_conditions": [],
    "summary": {
        "total_requirements": 0,
        "reporting_frequency": "unknown",
        "audit_required": False,
        "complexity_level": "unknown",
    },
}


class DocumentAnalysisService:
    """LLM document analysis, form extraction and compliance extraction."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider

    async def _json(self, task_type: str, system: str, prompt: str, temperature: float = 0.1):
        result = await self.provider.generate_completion(
            task_type,
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            max_tokens=MAX_TOKENS,
            temperature=temperature,
            response_format="json_object",
        )
        if not result.content:
            raise ValueError("No response received from AI provider")
        return result, safe_parse_json(result.content)

    async def analyze(
        self,
        action: str,
        document_text: Any = None,
        document_type: str = "unknown",
        context: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Dispatch one of ANALYSIS_ACTIONS; unknown actions raise ValueError."""
        context = context or {}
        if action == "analyze":
            if not document_text:
                raise ValueError("Document text is required for analysis")
            return await self.analyze_document(document_text, document_type, context)
        if action == "form-analysis":
            return await self.analyze_application_form(
                document_text, context.get("userProfile"), context.get("projectData")
            )
        if action == "requirements-checklist":
            return await self.requirements_checklist(context.get("analysis"), context.get("userProfile"))
        if action == "questions":
            return await self.clarifying_questions(context.get("formAnalysis"), context)
        if action == "batch-summary":
            return await self.batch_summary(context.get("analyses") or [])
        raise ValueError("Invalid action specified")

    async def analyze_document(self, document_text: Any, document_type: str, context: dict[str, Any]) -> dict[str, Any]:
        result, analysis = await self._json(
            "document-analysis",
            get_system_prompt(document_type),
            build_analysis_prompt(document_text, document_type, context),
        )
        if not isinstance(analysis, dict):
            analysis = {"result": analysis}

        usage = result.usage or {}
        tokens = usage.get("total_tokens") or (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0)
        return {
            **analysis,
            "metadata": {
                "documentType": document_type,
                "analyzedAt": datetime.now(timezone.utc).isoformat(),
                "tokensUsed": tokens,
                "confidence": calculate_confidence(analysis),
                "provider": result.provider,
                "model": result.model,
            },
        }

    async def analyze_application_form(self, form_content: Any, user_profile: Any, project_data: Any) -> Any:
        prompt = f"""Analyze this application form and provide intelligent completion suggestions:

APPLICATION FORM:
{_as_text(form_content or "")[:FORM_CHAR_LIMIT]}

USER PROFILE:
{json.dumps(user_profile, indent=2, default=str)}

PROJECT DATA:
{json.dumps(project_data, indent=2, default=str)}

Provide completion suggestions for each field we can fill, missing information by priority,
questions to ask, strategic recommendations and a risk assessment."""
        _, parsed = await self._json(
            "smart-form-completion",
            "You are an expert grant application assistant. Analyze application forms and provide "
            "intelligent completion suggestions based on the user's profile and project data.",
            prompt,
            temperature=0.2,
        )
        return parsed

    async def requirements_checklist(self, analysis: Any, user_profile: Any) -> Any:
        prompt = f"""Based on this document analysis and user profile, create a comprehensive requirements checklist:

DOCUMENT ANALYSIS:
{json.dumps(analysis, indent=2, default=str)}

USER PROFILE:
{json.dumps(user_profile, indent=2, default=str)}

Include required documents, eligibility criteria with the user's status, deadline-driven
action items, preparation steps and risk factors. Format as JSON with requirements
categorized by type and priority."""
        _, parsed = await self._json(
            "document-analysis",
            "You are a grant compliance expert. Create comprehensive, actionable requirement checklists.",
            prompt,
        )
        return parsed

    async def clarifying_questions(self, form_analysis: Any, context: dict[str, Any]) -> Any:
        prompt = f"""Based on this form analysis, generate context-aware questions to gather missing information:

FORM ANALYSIS:
{json.dumps(form_analysis, indent=2, default=str)}

CONTEXT:
{json.dumps(context, indent=2, default=str)}

Questions must be specific, prioritized and avoid information we already have.
Respond as JSON: {{"questions": [{{"question": "", "priority": "", "category": "", "helpText": "", "expectedAnswer": ""}}]}}"""
        _, parsed = await self._json(
            "smart-form-completion",
            "You are an expert grant application consultant. Generate helpful questions that guide "
            "users to provide exactly what's needed.",
            prompt,
            temperature=0.3,
        )
        if isinstance(parsed, dict) and "questions" in parsed:
            return parsed["questions"]
        return parsed

    async def batch_summary(self, analyses: list[Any]) -> Any:
        prompt = f"""Analyze these document analyses and provide a consolidated summary:

{json.dumps(analyses, indent=2, default=str)}

Cover the overall opportunity overview, combined requirements and deadlines, strategic
recommendations, risk assessment and next steps."""
        _, parsed = await self._json(
            "document-analysis",
            "You are a senior funding strategy consultant. Synthesize multiple document analyses "
            "into actionable strategic insights.",
            prompt,
            temperature=0.2,
        )
        return parsed

    # Dynamic form analysis

    async def extract_form_structure(
        self,
        document_content: Any,
        extraction_mode: str = "comprehensive",
        context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        context = context or {}
        text = _as_text(document_content)

        ai_result = None
        prompt = (
            "Extract ALL form fields, input areas and sections from this document.\n\n"
            f"DOCUMENT CONTENT:\n{truncate(text, EXTRACTION_CHAR_LIMIT, chr(10) + '...[content truncated for analysis]')}\n\n"
            "Respond as JSON with formFields (keyed by unique field id: label, type, required, "
            "section, placeholder, validation, options), formSections (id, title, fields, order), "
            "formMetadata, extractionConfidence, detectedFormType and fieldPatterns.\n\n"
            f"EXTRACTION MODE: {extraction_mode}\n{EXTRACTION_MODE_HINTS.get(extraction_mode, '')}"
        )
        if context.get("projectType"):
            prompt += f"\nCONTEXT: This is for a {context['projectType']} project."
        try:
            _, parsed = await self._json("document-analysis", EXTRACTION_SYSTEM_PROMPT, prompt)
            ai_result = parsed if isinstance(parsed, dict) else None
        except Exception as e:
            logger.warning("ai_form_extraction_failed_using_patterns", error=str(e))

        patterns = extract_pattern_structure(text, context.get("documentType") or "grant_application")
        return merge_extraction_results(ai_result, patterns)

    async def suggest_field_mappings(self, structure: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        if not structure.get("formFields"):
            return {}
        prompt = f"""Based on this extracted form structure, suggest how project data should map to form fields:

FORM STRUCTURE:
{json.dumps(structure, indent=2, default=str)}

CONTEXT:
{json.dumps(context, indent=2, default=str)}

Respond as JSON: {{"mappings": {{"form_field_id": {{"dataSource": "organization|project|user|calculated",
"dataField": "", "transformation": "", "confidence": 0.0, "fallback": ""}}}},
"unmappedFields": [], "requiredData": [], "suggestions": []}}"""
        try:
            _, parsed = await self._json(
                "smart-form-completion",
                "You are an expert at mapping form fields to data structures.",
                prompt,
                temperature=0.2,
            )
        except ValueError as e:
            logger.warning("field_mapping_suggestions_unavailable", error=str(e))
            return {}
        return parsed if isinstance(parsed, dict) else {}

    async def dynamic_form_analysis(
        self,
        document_content: Any,
        extraction_mode: str = "comprehensive",
        context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        context = context or {}
        structure = validate_structure(await self.extract_form_structure(document_content, extraction_mode, context))
        mappings = await self.suggest_field_mappings(structure, context)

        return {
            "formStructure": structure,
            "fieldMappings": mappings,
            "extractionMetadata": {
                "totalFieldsDetected": len(structure["formFields"]),
                "sectionsDetected": len(structure["formSections"]),
                "extractionMode": extraction_mode,
                "confidence": structure.get("extractionConfidence") or 0,
                "analyzedAt": datetime.now(timezone.utc).isoformat(),
                "documentType": structure.get("detectedFormType") or "unknown",
            },
        }

    # Compliance

    async def extract_compliance(
        self,
        document_text: Optional[str] = None,
        form_structure: Any = None,
        application_data: Any = None,
        opportunity_info: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Post-award requirements, documents, recurring obligations and deadlines."""
        if not document_text and not form_structure:
            raise ValueError("Document text or form structure is required")

        sections = ["Extract ALL compliance requirements, deadlines and reporting obligations from this application."]
        if opportunity_info:
            sections.append(
                "APPLICATION INFORMATION:\n"
                f"Opportunity: {opportunity_info.get('title') or 'Unknown'}\n"
                f"Funder: {opportunity_info.get('funder') or 'Unknown'}\n"
                f"Amount: {opportunity_info.get('amount') or 'Unknown'}"
            )
        sections.append(f"DOCUMENT CONTENT:\n{document_text or json.dumps(form_structure, indent=2, default=str)}")
        if application_data:
            sections.append(f"SUBMITTED APPLICATION DATA:\n{json.dumps(application_data, indent=2, default=str)}")
        sections.append(
            "Return JSON with keys compliance_tracking_items (title, compliance_type, description, priority, "
            "deadline_date, frequency, estimated_hours, notes), compliance_documents (document_type, "
            "document_name, is_required, expiration_date, notes), compliance_recurring (name, compliance_type, "
            "description, frequency, frequency_interval, reminder_days, estimated_hours), critical_deadlines "
            "(deadline, description, type), special_conditions (condition, description, category) and summary "
            "(total_requirements, reporting_frequency, audit_required, complexity_level). Use low, medium, high "
            "or critical for priorities. When no date is given, note timing relative to award."
        )

        result = await self.provider.generate_completion(
            "compliance-extraction",
            [
                {"role": "system", "content": "You are a compliance expert analyzing grant and funding application documents."},
                {"role": "user", "content": "\n\n".join(sections)},
            ],
            max_tokens=MAX_TOKENS,
            temperature=0.3,
        )
        try:
            data = safe_parse_json(result.content)
        except AIResponseParseError as e:
            logger.error("compliance_parse_failed", error=str(e))
            return {
                "success": False,
                "error": "Failed to parse AI response",
                "rawResponse": result.content,
                "complianceData": COMPLIANCE_EMPTY,
            }
        return {"success": True, "complianceData": data, "usage": result.usage}
