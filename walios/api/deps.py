"""
FastAPI Dependencies
Service instances built on the shared AI provider.
"""
from fastapi import Depends

from walios.services.ai_provider import AIProviderService, get_ai_provider
from walios.services.analysis import AnalysisService
from walios.services.assistant import AssistantService
from walios.services.chat_cleanup import ChatCleanupService
from walios.services.document_analysis import DocumentAnalysisService
from walios.services.email import get_email_service
from walios.services.field_analyzer import FieldAnalyzerService
from walios.services.form_assistant import FormAssistantService
from walios.services.form_completion import FormCompletionService
from walios.services.scoring import ScoringService


def get_assistant_service(provider: AIProviderService = Depends(get_ai_provider)) -> AssistantService:
    return AssistantService(provider)


def get_scoring_service(provider: AIProviderService = Depends(get_ai_provider)) -> ScoringService:
    return ScoringService(provider)


def get_form_completion_service(provider: AIProviderService = Depends(get_ai_provider)) -> FormCompletionService:
    return FormCompletionService(provider)


def get_document_analysis_service(
    provider: AIProviderService = Depends(get_ai_provider),
) -> DocumentAnalysisService:
    return DocumentAnalysisService(provider)


def get_field_analyzer_service(provider: AIProviderService = Depends(get_ai_provider)) -> FieldAnalyzerService:
    return FieldAnalyzerService(provider)


def get_analysis_service(provider: AIProviderService = Depends(get_ai_provider)) -> AnalysisService:
    return AnalysisService(provider)


def get_form_assistant_service(provider: AIProviderService = Depends(get_ai_provider)) -> FormAssistantService:
    return FormAssistantService(provider)


def get_chat_cleanup_service() -> ChatCleanupService:
    return ChatCleanupService(get_email_service())
