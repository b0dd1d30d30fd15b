"""
WALI-OS services: AI provider routing and the business logic behind the API.
"""

from walios.services.ai_provider import AIProviderService, get_ai_provider
from walios.services.analysis import AnalysisService
from walios.services.assistant import AssistantService
from walios.services.chat_cleanup import ChatCleanupService
from walios.services.document_analysis import DocumentAnalysisService
from walios.services.email import EmailService, get_email_service
from walios.services.field_analyzer import FieldAnalyzerService
from walios.services.form_assistant import FormAssistantService
from walios.services.form_completion import FormCompletionService
from walios.services.scoring import ScoringService

__all__ = [
    "AIProviderService",
    "AnalysisService",
    "AssistantService",
    "ChatCleanupService",
    "DocumentAnalysisService",
    "EmailService",
    "FieldAnalyzerService",
    "FormAssistantService",
    "FormCompletionService",
    "ScoringService",
    "get_ai_provider",
    "get_email_service",
]
