"""Funding assistant chat service."""

import json
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from walios.models import AssistantConversation, AssistantSession, utcnow
from walios.services.ai_provider import AIProviderService
from walios.services.context_builder import (
    build_intent_response,
    classify_assistant_intent,
    classify_intent_with_llm,
    compact_context,
    get_cached_org_context,
)
from walios.services.conversation_summarizer import ConversationSummarizer

logger = structlog.get_logger(__name__)

REFINE_SYSTEM_PROMPT = """You are WALI, a funding strategy assistant for grant-seeking organizations.
Rewrite the draft answer so it is accurate, warm and concise. Only use facts from the
organization data and the draft; never invent identifiers, amounts or deadlines.
Keep any emoji section headers from the draft.

ORGANIZATION DATA:
{context}

CONVERSATION SUMMARY:
{summary}"""


class AssistantService:
    """Answers assistant chat messages from the user's own data."""

    def __init__(self, provider: AIProviderService):
        self.provider = provider
        self.summarizer = ConversationSummarizer(provider)

    async def ensure_session(
        self, db: AsyncSession, user_id: str, session_id: Optional[UUID]
    ) -> AssistantSession:
        """Return the user's session, creating one when absent or not theirs."""
        if session_id:
            session = await db.get(AssistantSession, session_id)
            if session and session.user_id == user_id:
                return session

        session = AssistantSession(user_id=user_id, title=f"Chat - {utcnow().strftime('%b %d, %H:%M')}")
        db.add(session)
        await db.flush()
        return session

    async def log_turn(
        self,
        db: AsyncSession,
        session: AssistantSession,
        role: str,
        content: str,
        intent: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AssistantConversation:
        turn = AssistantConversation(
            session_id=session.id,
            user_id=session.user_id,
            role=role,
            content=content,
            intent=intent,
            metadata_=metadata,
        )
        db.add(turn)
        session.updated_at = utcnow()
        await db.flush()
        return turn

    async def _log_turn_quietly(
        self, db: AsyncSession, session: AssistantSession, role: str, content: str, **kwargs: Any
    ) -> None:
        """Log a turn in a savepoint; a failed write is logged and the reply still goes out."""
        try:
            async with db.begin_nested():
                await self.log_turn(db, session, role, content, **kwargs)
        except SQLAlchemyError as e:
            logger.warning("assistant_turn_not_logged", role=role, error=str(e))

    async def respond(
        self,
        db: AsyncSession,
        user_id: str,
        message: str,
        session_id: Optional[UUID] = None,
        use_llm: bool = False,
        mode: str = "chat",
    ) -> dict[str, Any]:
        """
        Produce the assistant's reply to one user message.

        Flow: session -> summarize older turns -> conversation summary ->
        cached org context -> intent -> base answer -> optional LLM rewrite.
        Both turns are logged on the session.
        """
        session = await self.ensure_session(db, user_id, session_id)
        # A rolled-back savepoint expires the session row; keep its id in hand
        session_key = session.id

        convo_summary: dict[str, Any] = {"summary": None, "recent_turns": []}
        try:
            async with db.begin_nested():
                await self.summarizer.summarize_session_if_needed(db, session_key, user_id, use_llm=use_llm)
        except SQLAlchemyError as e:
            logger.warning("session_summary_failed", session_id=str(session_key), error=str(e))
        try:
            convo_summary = await self.summarizer.get_session_context_summary(db, session_key, user_id)
        except SQLAlchemyError as e:
            logger.warning("session_context_summary_unavailable", session_id=str(session_key), error=str(e))

        context: Optional[dict[str, Any]] = None
        cached = False
        try:
            async with db.begin_nested():
                context, cached = await get_cached_org_context(db, user_id)
        except SQLAlchemyError as e:
            logger.error("org_context_unavailable", user_id=user_id, error=str(e))

        intent = classify_assistant_intent(message)
        if intent == "general" and use_llm and context is not None:
            intent = await classify_intent_with_llm(self.provider, message)

        answer = build_intent_response(intent, context, message)
        await self._log_turn_quietly(db, session, "user", message, intent=intent)

        used_llm = False
        if use_llm and context is not None:
            refined = await self._refine(message, answer, context, convo_summary)
            if refined:
                answer = refined
                used_llm = True

        await self._log_turn_quietly(
            db, session, "assistant", answer, intent=intent, metadata={"used_llm": used_llm}
        )

        return {
            "mode": mode,
            "intent": intent,
            "message": answer,
            "usedLLM": used_llm,
            "contextMeta": context.get("meta") if context else None,
            "sessionId": str(session_key),
            "cachedContext": cached,
            "convoSummary": convo_summary.get("summary"),
        }

    async def _refine(
        self,
        message: str,
        draft: str,
        context: dict[str, Any],
        convo_summary: dict[str, Any],
    ) -> Optional[str]:
        system = REFINE_SYSTEM_PROMPT.format(
            context=json.dumps(compact_context(context), default=str),
            summary=convo_summary.get("summary") or "None yet.",
        )
        messages = [{"role": "system", "content": system}]
        messages.extend(convo_summary.get("recent_turns") or [])
        messages.append({"role": "user", "content": f"{message}\n\nDraft answer:\n{draft}"})
        try:
            result = await self.provider.generate_completion(
                "conversation", messages, max_tokens=600, temperature=0.4
            )
        except Exception as e:
            logger.warning("assistant_refinement_failed", error=str(e))
            return None
        return result.content.strip() or None

