"""
AI API Endpoints
Assistant chat, scoring, form auto-fill, document analysis and the
per-entity AI analyses.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from walios.api.deps import (
    get_analysis_service,
    get_assistant_service,
    get_document_analysis_service,
    get_field_analyzer_service,
    get_form_completion_service,
    get_scoring_service,
)
from walios.core.exceptions import MethodNotAllowedError, ValidationError
from walios.database import get_db
from walios.schemas.ai import (
    AssistantRequest,
    CategorizeRequest,
    ComplianceRequest,
    DocumentAnalysisRequest,
    DocumentGenerationRequest,
    DynamicFormAnalysisRequest,
    FieldAnalyzerRequest,
    FieldExtractRequest,
    FieldHelpRequest,
    OpportunityAnalysisRequest,
    ProjectAnalysisRequest,
    ScoringRequest,
    SmartFormCompletionRequest,
)
from walios.services import categorization
from walios.services.ai_provider import AIProviderService, AIResponseParseError, get_ai_provider
from walios.services.analysis import AnalysisService
from walios.services.assistant import AssistantService
from walios.services.document_analysis import DocumentAnalysisService
from walios.services.field_analyzer import FieldAnalyzerService
from walios.services.form_completion import FormCompletionService
from walios.services.scoring import ScoringService, calculate_pre_score

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["AI"])

SCORING_ACTIONS = ("fast-score", "pre-score", "ai-analysis", "enhanced-score", "batch-score")
DOCUMENT_GENERATION_ACTIONS = ("generate", "preview", "validate", "enhance-mappings")


def _server_error(prefix: str, exc: Exception) -> HTTPException:
    logger.error(f"{prefix}: {exc}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"{prefix}: {exc}")


# =============================================================================
# Assistant
# =============================================================================


@router.post("/assistant")
async def assistant_chat(
    request: AssistantRequest,
    db: AsyncSession = Depends(get_db),
    service: AssistantService = Depends(get_assistant_service),
) -> dict[str, Any]:
    """
    Answer one assistant chat message.

    Questions about the user's own data (EIN, deadlines, funding totals...)
    are answered from the database; ``useLLM`` lets the model polish the
    answer and classify messages the regex table cannot.
    """
    try:
        data = await service.respond(
            db,
            user_id=request.user_id,
            message=request.message,
            session_id=request.session_id,
            use_llm=request.use_llm,
            mode=request.mode,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error("Assistant failed", e)
    return {"data": data}


@router.post("/assistant/field-help")
async def assistant_field_help(
    request: FieldHelpRequest,
    service: FieldAnalyzerService = Depends(get_field_analyzer_service),
) -> dict[str, Any]:
    """Improvement guidance for the text a user has typed into a form field."""
    help_ = await service.field_help(
        request.field,
        current_value=request.current_value,
        project_draft=request.project_draft,
        use_llm=request.use_llm,
    )
    return {"data": help_}


# =============================================================================
# Categorization
# =============================================================================


@router.post("/categorize")
async def categorize_project(
    request: CategorizeRequest,
    provider: AIProviderService = Depends(get_ai_provider),
) -> Any:
    """
    Categorize a project for a funding source.

    Responds with JSON ``null`` when the model has no usable answer; callers
    then use their rule-based categories.
    """
    return await categorization.categorize(provider, request.type, request.prompt, request.project)


# =============================================================================
# Scoring
# =============================================================================


@router.post("/enhanced-scoring")
async def enhanced_scoring(
    request: ScoringRequest,
    service: ScoringService = Depends(get_scoring_service),
) -> dict[str, Any]:
    """
    Score how well an opportunity fits a project and organization.

    Actions: fast-score, pre-score, ai-analysis, enhanced-score, batch-score.
    """
    action = request.action
    if action == "batch-score":
        if not request.opportunities or not request.project or not request.user_profile:
            raise ValidationError("Missing required parameters: opportunities, project, userProfile")
    elif not request.opportunity or not request.project or not request.user_profile:
        raise ValidationError("Missing required parameters: opportunity, project, userProfile")

    if action not in SCORING_ACTIONS:
        raise ValidationError(f"Invalid action. Supported actions: {', '.join(SCORING_ACTIONS)}")

    try:
        if action == "fast-score":
            data = await service.fast_score(
                request.opportunity, request.project, request.user_profile, use_ai=request.use_ai
            )
        elif action == "pre-score":
            data = calculate_pre_score(request.opportunity, request.project, request.user_profile)
        elif action == "ai-analysis":
            data = await service.ai_analysis(request.opportunity, request.project, request.user_profile)
        elif action == "enhanced-score":
            data = await service.enhanced_score(request.opportunity, request.project, request.user_profile)
        else:
            data = await service.batch_score(request.opportunities, request.project, request.user_profile)
    except Exception as e:
        raise _server_error("Scoring failed", e)

    return {"success": True, "data": data}


# =============================================================================
# Form auto-fill
# =============================================================================


@router.post("/document-generation")
async def document_generation(
    request: DocumentGenerationRequest,
    service: FormCompletionService = Depends(get_form_completion_service),
) -> dict[str, Any]:
    """Fill a form's fields from the user's data (generate, preview, validate, enhance-mappings)."""
    form_structure = request.form_structure
    if not form_structure or not form_structure.get("formFields"):
        raise ValidationError("Form structure with formFields is required")
    if request.action not in DOCUMENT_GENERATION_ACTIONS:
        raise ValidationError("Invalid action specified")

    try:
        if request.action == "generate":
            data = await service.generate(form_structure, request.user_data)
        elif request.action == "preview":
            data = await service.preview(form_structure, request.user_data)
        elif request.action == "validate":
            data = service.validate(form_structure, request.form_data)
        else:
            data = await service.enhance_mappings(form_structure, request.user_data, request.current_mappings)
    except Exception as e:
        raise _server_error("Document generation failed", e)

    return {"success": True, "action": request.action, "data": data}


@router.post("/smart-form-completion")
async def smart_form_completion(
    request: SmartFormCompletionRequest,
    service: FormCompletionService = Depends(get_form_completion_service),
) -> dict[str, Any]:
    if not request.form_fields:
        raise ValidationError("Form fields are required")

    try:
        data = await service.smart_completion(
            request.action, request.form_fields, request.user_profile, request.project_data
        )
    except AIResponseParseError as e:
        raise _server_error("Smart form completion failed", e)
    except ValueError as e:
        raise ValidationError(str(e))
    except Exception as e:
        raise _server_error("Smart form completion failed", e)

    return {"success": True, "action": request.action, "data": data}


# =============================================================================
# Document analysis
# =============================================================================


@router.get("/document-analysis")
async def document_analysis_get() -> None:
    raise MethodNotAllowedError("Method not allowed. Use POST to analyze documents.")


@router.post("/document-analysis")
async def document_analysis(
    request: DocumentAnalysisRequest,
    service: DocumentAnalysisService = Depends(get_document_analysis_service),
) -> dict[str, Any]:
    """
    Analyze a grant document.

    Actions: analyze, form-analysis, requirements-checklist, questions,
    batch-summary. Inputs other than the document text travel in ``context``.
    """
    try:
        data = await service.analyze(
            request.action,
            document_text=request.document_text,
            document_type=request.document_type,
            context=request.context,
        )
    except AIResponseParseError as e:
        raise _server_error("Document analysis failed", e)
    except ValueError as e:
        raise ValidationError(str(e))
    except Exception as e:
        raise _server_error("Document analysis failed", e)

    return {"success": True, "action": request.action, "data": data}


@router.post("/dynamic-form-analysis")
async def dynamic_form_analysis(
    request: DynamicFormAnalysisRequest,
    service: DocumentAnalysisService = Depends(get_document_analysis_service),
) -> dict[str, Any]:
    """Extract a form's fields and sections, then suggest data mappings for them."""
    if not request.document_content:
        raise ValidationError("Document content is required for form analysis")

    context = {"documentType": request.document_type, **request.context}
    try:
        data = await service.dynamic_form_analysis(request.document_content, request.extraction_mode, context)
    except Exception as e:
        raise _server_error("Form analysis failed", e)

    return {"success": True, "data": data}


@router.post("/extract-compliance")
async def extract_compliance(
    request: ComplianceRequest,
    service: DocumentAnalysisService = Depends(get_document_analysis_service),
) -> dict[str, Any]:
    try:
        return await service.extract_compliance(
            document_text=request.document_text,
            form_structure=request.form_structure,
            application_data=request.application_data,
            opportunity_info=request.opportunity_info,
        )
    except ValueError as e:
        raise ValidationError(str(e))
    except Exception as e:
        raise _server_error("Compliance extraction failed", e)


# =============================================================================
# Field analysis
# =============================================================================


@router.post("/field-analyzer")
async def field_analyzer(
    request: FieldAnalyzerRequest,
    db: AsyncSession = Depends(get_db),
    service: FieldAnalyzerService = Depends(get_field_analyzer_service),
) -> dict[str, Any]:
    """Definition, purpose and examples for a form field, cached for a week."""
    try:
        result = await service.analyze_field(db, request.field_name, request.form_context, request.user_context)
    except Exception as e:
        raise _server_error("Field analysis failed", e)
    return {"success": True, **result}


@router.post("/field-extract")
async def field_extract(
    request: FieldExtractRequest,
    service: FieldAnalyzerService = Depends(get_field_analyzer_service),
) -> dict[str, Any]:
    field_name = await service.extract_field(request.user_query, request.available_fields)
    return {"fieldName": field_name}


# =============================================================================
# Project / opportunity analysis
# =============================================================================


@router.post("/project-analysis")
async def project_analysis(
    request: ProjectAnalysisRequest,
    db: AsyncSession = Depends(get_db),
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any]:
    result = await service.analyze_project(db, request.user_id, request.project_id, force=request.force)
    return {"success": True, **result}


@router.post("/opportunity-analysis")
async def opportunity_analysis(
    request: OpportunityAnalysisRequest,
    db: AsyncSession = Depends(get_db),
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any]:
    result = await service.analyze_opportunity(db, request.user_id, request.opportunity_id, force=request.force)
    return {"success": True, **result}


# =============================================================================
# Provider status
# =============================================================================


@router.get("/provider-status")
async def provider_status(
    test: bool = False,
    provider: AIProviderService = Depends(get_ai_provider),
) -> dict[str, Any]:
    """Configured vendors and the task table; ``?test=true`` also pings each vendor."""
    response: dict[str, Any] = {"status": provider.get_provider_status()}
    if test:
        response["connections"] = await provider.test_connections()
    return response
