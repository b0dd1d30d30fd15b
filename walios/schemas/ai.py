"""AI endpoint request schemas."""
from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from walios.schemas.common import CamelModel, UserScopedRequest


class AssistantRequest(UserScopedRequest):
    """Chat message for the assistant widget."""

    message: str = Field(..., min_length=1)
    use_llm: bool = Field(default=False, alias="useLLM")
    mode: str = "chat"
    session_id: Optional[UUID] = None


class FieldHelpRequest(UserScopedRequest):
    field: str = Field(..., min_length=1)
    current_value: str = ""
    project_draft: Optional[dict[str, Any]] = None
    use_llm: bool = Field(default=True, alias="useLLM")


class CategorizeRequest(CamelModel):
    type: Optional[str] = None
    prompt: Optional[str] = None
    project: Optional[dict[str, Any]] = None


class ScoringRequest(CamelModel):
    """Opportunity/project/profile triple scored by the action named in ``action``."""

    action: Optional[str] = None
    opportunity: Optional[dict[str, Any]] = None
    project: Optional[dict[str, Any]] = None
    user_profile: Optional[dict[str, Any]] = None
    opportunities: Optional[list[dict[str, Any]]] = None
    use_ai: bool = Field(default=False, alias="useAI")


class DocumentGenerationRequest(CamelModel):
    action: str = "generate"
    form_structure: Optional[dict[str, Any]] = None
    user_data: dict[str, Any] = Field(default_factory=dict)
    form_data: dict[str, Any] = Field(default_factory=dict)
    current_mappings: Optional[dict[str, Any]] = None


class SmartFormCompletionRequest(CamelModel):
    action: Optional[str] = None
    form_fields: Any = None
    user_profile: Any = None
    project_data: Any = None


class DocumentAnalysisRequest(CamelModel):
    action: str = "analyze"
    document_text: Any = None
    document_type: str = "unknown"
    context: dict[str, Any] = Field(default_factory=dict)


class DynamicFormAnalysisRequest(CamelModel):
    document_content: Any = None
    document_type: str = "form"
    extraction_mode: str = "comprehensive"
    context: dict[str, Any] = Field(default_factory=dict)


class ComplianceRequest(CamelModel):
    document_text: Optional[str] = None
    form_structure: Any = None
    application_data: Any = None
    opportunity_info: Optional[dict[str, Any]] = None


class FieldAnalyzerRequest(CamelModel):
    field_name: str = Field(..., min_length=1)
    form_context: dict[str, Any] = Field(default_factory=dict)
    user_context: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None


class FieldExtractRequest(CamelModel):
    user_query: str = Field(..., min_length=1)
    available_fields: list[str] = Field(default_factory=list)


class ProjectAnalysisRequest(UserScopedRequest):
    project_id: UUID
    force: bool = False


class OpportunityAnalysisRequest(UserScopedRequest):
    opportunity_id: UUID
    force: bool = False
