"""
WALI-OS Pydantic Schemas
Request models for API endpoints.
"""
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
from walios.schemas.chat_cleanup import ChatCleanupRequest
from walios.schemas.common import CamelModel, ErrorResponse, UserScopedRequest
from walios.schemas.form import FormAssistantRequest, FormCacheRequest

__all__ = [
    "AssistantRequest",
    "CamelModel",
    "CategorizeRequest",
    "ChatCleanupRequest",
    "ComplianceRequest",
    "DocumentAnalysisRequest",
    "DocumentGenerationRequest",
    "DynamicFormAnalysisRequest",
    "ErrorResponse",
    "FieldAnalyzerRequest",
    "FieldExtractRequest",
    "FieldHelpRequest",
    "FormAssistantRequest",
    "FormCacheRequest",
    "OpportunityAnalysisRequest",
    "ProjectAnalysisRequest",
    "ScoringRequest",
    "SmartFormCompletionRequest",
    "UserScopedRequest",
]
