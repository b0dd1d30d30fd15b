"""Interactive assistant for filling out a single application form."""

import re
import time
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from walios.core.exceptions import NotFoundError, ValidationError
from walios.models import FormAIMessage, FormAISession, utcnow
from walios.services.ai_provider import AIProviderService
from walios.utils import serialize_row, serialize_rows

logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 10

WELCOME_MESSAGE = (
    "Hello! I'm your AI form completion assistant. I can help you:\n\n"
    "• **Understand field requirements** - Ask me what any field means\n"
    "• **Generate content** - I can write text for narrative fields\n"
    "• **Provide suggestions** - Get help with complex questions\n"
    "• **Review your answers** - Check if your responses look good\n\n"
    "What field would you like help with?"
)

FALLBACK_REPLY = "I apologize, but I encountered an issue generating a response. Please try again."

ASSISTANT_SYSTEM_PROMPT = """You are an expert form completion assistant helping users fill out grant applications and government forms.
You know grant application requirements, government form terminology and compliance, and professional application writing.

Your role is to explain form fields clearly, generate ready-to-use content for narrative fields,
give specific suggestions based on the user's context and help with compliance requirements.

Current context:
- Field in focus: {field}
- User type: {user_type}
- Organization: {organization}

Be helpful, professional and specific. Ask clarifying questions when needed."""

FIELD_GENERATION_SYSTEM_PROMPT = """You are an expert grant writer and form completion specialist. Generate professional content
for form fields that is compliant, specific, professional in tone and ready to use without editing.

Context available:
- Organization: {organization}
- User type: {user_type}
- Project type: {project_type}
- Field: {field}"""

_GENERATED_TEXT = re.compile(r"(?:Here's|Here is|Generated content)[\s\S]*?:\s*\n\n([\s\S]+?)(?:\n\n|$)", re.IGNORECASE)


def extract_generated_text(content: str) -> Optional[str]:
    """Pull the drafted text out of replies shaped like "Here is ...:\\n\\n<text>"."""
    match = _GENERATED_TEXT.search(content or "")
    return match.group(1).strip() if match else None


def extract_field_suggestions(content: str, field_context: Optional[str]) -> Optional[dict[str, str]]:
    if field_context and "suggestion" in (content or "").lower():
        return {field_context: content}
    return None


class FormAssistantService:
    """Form assistant sessions and their messages."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider

    async def get_owned_session(self, db: AsyncSession, user_id: str, session_id: Optional[UUID]) -> FormAISession:
        """
        Load a session belonging to the user.

        Raises:
            NotFoundError: If the session does not exist or belongs to someone else.
        """
        if session_id is None:
            raise NotFoundError("Session")
        session = (
            await db.execute(
                select(FormAISession).where(FormAISession.id == session_id, FormAISession.user_id == user_id)
            )
        ).scalar_one_or_none()
        if session is None:
            raise NotFoundError("Session", str(session_id))
        return session

    async def _add_message(
        self,
        db: AsyncSession,
        session: FormAISession,
        role: str,
        content: str,
        message_type: str = "chat",
        metadata: Optional[dict[str, Any]] = None,
    ) -> FormAIMessage:
        message = FormAIMessage(
            session_id=session.id,
            role=role,
            content=content,
            message_type=message_type,
            metadata_=metadata,
        )
        db.add(message)
        session.updated_at = utcnow()
        await db.flush()
        return message

    async def create_session(
        self,
        db: AsyncSession,
        user_id: str,
        form_title: Optional[str] = None,
        form_context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        session = FormAISession(
            user_id=user_id,
            form_title=form_title or f"Form Assistant - {utcnow().strftime('%m/%d/%Y')}",
            form_context=form_context or {},
        )
        db.add(session)
        await db.flush()
        await self._add_message(db, session, "assistant", WELCOME_MESSAGE, message_type="welcome")

        logger.info("form_session_created", session_id=str(session.id))
        return {
            "sessionId": str(session.id),
            "title": session.form_title,
            "created": session.created_at.isoformat(),
        }

    async def _history(self, db: AsyncSession, session_id: UUID) -> list[FormAIMessage]:
        rows = (
            await db.execute(
                select(FormAIMessage)
                .where(FormAIMessage.session_id == session_id)
                .order_by(FormAIMessage.created_at.desc())
                .limit(HISTORY_LIMIT)
            )
        ).scalars().all()
        return list(reversed(rows))

    async def send_message(
        self,
        db: AsyncSession,
        user_id: str,
        session_id: Optional[UUID],
        message: Optional[str],
        field_context: Optional[str] = None,
        user_profile: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if not message:
            raise ValidationError("message is required")
        session = await self.get_owned_session(db, user_id, session_id)
        user_profile = user_profile or {}

        history = await self._history(db, session.id)
        await self._add_message(db, session, "user", message, metadata={"field_context": field_context})

        system = ASSISTANT_SYSTEM_PROMPT.format(
            field=field_context or "General question",
            user_type=user_profile.get("user_type") or "Unknown",
            organization=user_profile.get("organization") or user_profile.get("organization_name") or "Unknown",
        )
        messages = [{"role": "system", "content": system}]
        messages.extend(
            {"role": m.role, "content": m.content} for m in history if m.role in ("user", "assistant")
        )
        messages.append({"role": "user", "content": message})

        started = time.perf_counter()
        provider = model = None
        try:
            result = await self.provider.generate_completion("form-assistant", messages, max_tokens=800, temperature=0.4)
            content = result.content or FALLBACK_REPLY
            provider, model = result.provider, result.model
        except Exception as e:
            logger.warning("form_assistant_reply_failed", session_id=str(session.id), error=str(e))
            content = FALLBACK_REPLY

        generated_text = extract_generated_text(content)
        suggestions = extract_field_suggestions(content, field_context)
        reply = await self._add_message(
            db,
            session,
            "assistant",
            content,
            metadata={
                "field_context": field_context,
                "provider": provider,
                "model": model,
                "response_ms": round((time.perf_counter() - started) * 1000),
                "generated_text": generated_text,
                "field_suggestions": suggestions,
            },
        )
        return {
            "messageId": str(reply.id),
            "content": content,
            "generatedText": generated_text,
            "fieldSuggestions": suggestions,
            "provider": provider,
        }

    async def generate_field_content(
        self,
        db: AsyncSession,
        user_id: str,
        session_id: Optional[UUID],
        field_context: Optional[str],
        form_data: Optional[dict[str, Any]] = None,
        user_profile: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if not field_context:
            raise ValidationError("Field context required")
        session = await self.get_owned_session(db, user_id, session_id)
        form_data = form_data or {}
        user_profile = user_profile or {}

        system = FIELD_GENERATION_SYSTEM_PROMPT.format(
            organization=user_profile.get("organization") or user_profile.get("organization_name") or "Unknown",
            user_type=user_profile.get("user_type") or "Unknown",
            project_type=form_data.get("project_type") or "Unknown",
            field=field_context,
        )
        result = await self.provider.generate_completion(
            "form-assistant",
            [
                {"role": "system", "content": system},
                {
                    "role": "user",
                    "content": f'Generate professional content for the field: "{field_context}". '
                    "Make it compelling, specific and compliance-ready.",
                },
            ],
            max_tokens=1000,
            temperature=0.7,
        )
        generated = result.content or ""
        content = f'Generated content for "{field_context}":\n\n{generated}'
        message = await self._add_message(
            db,
            session,
            "assistant",
            content,
            message_type="field_generation",
            metadata={"field_context": field_context, "provider": result.provider, "model": result.model},
        )
        return {
            "messageId": str(message.id),
            "fieldContext": field_context,
            "generatedText": generated,
            "content": content,
        }

    async def get_session(self, db: AsyncSession, user_id: str, session_id: Optional[UUID]) -> dict[str, Any]:
        return serialize_row(await self.get_owned_session(db, user_id, session_id))

    async def get_messages(self, db: AsyncSession, user_id: str, session_id: Optional[UUID]) -> list[dict[str, Any]]:
        session = await self.get_owned_session(db, user_id, session_id)
        rows = (
            await db.execute(
                select(FormAIMessage)
                .where(FormAIMessage.session_id == session.id)
                .order_by(FormAIMessage.created_at.asc())
            )
        ).scalars().all()
        return serialize_rows(rows)
