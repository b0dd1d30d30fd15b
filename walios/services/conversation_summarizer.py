"""
Rolling summaries for long assistant sessions.

Once a session has more than MAX_UNSUMMARIZED_TURNS turns that have not been
summarized, every such turn except the newest RECENT_PRESERVE is condensed into
one assistant_session_summaries row and flagged summarized. The recency window
is never included in a summary.
"""

import re
from typing import Any, Iterable, Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from walios.models import AssistantConversation, AssistantSessionSummary
from walios.services.ai_provider import AIProviderService

logger = structlog.get_logger(__name__)

MAX_UNSUMMARIZED_TURNS = 24
MIN_TURNS_PER_SUMMARY = 8
RECENT_PRESERVE = 10
RECENT_CONTEXT_TURNS = 14
TRANSCRIPT_CHAR_LIMIT = 8000
SECTION_LIMIT = 5

SUMMARY_SYSTEM_PROMPT = (
    "You summarize funding strategy assistant chats. Output 3 short labeled sections: "
    "Key User Objectives, Context Gleaned, Next Steps."
)

_OBJECTIVE_PATTERN = re.compile(
    r"\b(i want|i need|we need|we want|looking for|help me|trying to|our goal|goal is|plan to|hoping to)\b",
    re.IGNORECASE,
)
_CONTEXT_PATTERN = re.compile(
    r"\$[\d,]+|\b\d{4}\b|\b(deadline|budget|grant|foundation|project|nonprofit|ein|uei|sam)\b",
    re.IGNORECASE,
)
_NEXT_STEP_PATTERN = re.compile(
    r"\b(next step|you should|consider|recommend|make sure|don't forget|be sure to)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")


def build_transcript(turns: Iterable[Any]) -> str:
    """User:/Assistant: transcript of the given turns."""
    lines = []
    for turn in turns:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


def _matching_sentences(texts: Iterable[str], pattern: re.Pattern) -> list[str]:
    found: list[str] = []
    seen: set[str] = set()
    for text in texts:
        for sentence in _SENTENCE_SPLIT.split(text or ""):
            sentence = sentence.strip()
            if not sentence or not pattern.search(sentence):
                continue
            snippet = sentence[:160]
            key = snippet.lower()
            if key in seen:
                continue
            seen.add(key)
            found.append(snippet)
            if len(found) >= SECTION_LIMIT:
                return found
    return found


def heuristic_summary(turns: list[Any]) -> str:
    """Three-section summary built from regex matches over the turns."""
    user_texts = [t.content for t in turns if t.role == "user"]
    assistant_texts = [t.content for t in turns if t.role != "user"]

    sections = [
        ("Key User Objectives", _matching_sentences(user_texts, _OBJECTIVE_PATTERN)),
        ("Context Gleaned", _matching_sentences([t.content for t in turns], _CONTEXT_PATTERN)),
        ("Next Steps", _matching_sentences(assistant_texts, _NEXT_STEP_PATTERN)),
    ]
    blocks = []
    for title, items in sections:
        bullets = "\n".join(f"- {item}" for item in items) if items else "- (none captured)"
        blocks.append(f"{title}:\n{bullets}")
    return "\n\n".join(blocks)


class ConversationSummarizer:
    """Compacts older assistant turns into summary rows."""

    def __init__(self, provider: Optional[AIProviderService] = None):
        self.provider = provider

    async def count_unsummarized(self, db: AsyncSession, session_id: UUID, user_id: str) -> int:
        result = await db.execute(
            select(func.count(AssistantConversation.id)).where(
                AssistantConversation.session_id == session_id,
                AssistantConversation.user_id == user_id,
                AssistantConversation.summarized.is_(False),
            )
        )
        return result.scalar_one()

    async def summarize_session_if_needed(
        self,
        db: AsyncSession,
        session_id: Optional[UUID],
        user_id: Optional[str],
        use_llm: bool = True,
    ) -> dict[str, Any]:
        """
        Summarize older turns when the unsummarized count passes the threshold.

        Returns a dict describing what happened: ``{"skipped": True, "reason": ...}``
        when nothing was written, otherwise ``{"summarized": True, "turns": n, ...}``.
        With ``use_llm`` off only the heuristic summary is used.
        """
        if not session_id or not user_id:
            return {"skipped": True, "reason": "missing_identifiers"}

        try:
            unsummarized = await self.count_unsummarized(db, session_id, user_id)
        except SQLAlchemyError as e:
            logger.error("summary_count_failed", session_id=str(session_id), error=str(e))
            return {"skipped": True, "reason": "fetch_error"}

        if unsummarized <= MAX_UNSUMMARIZED_TURNS:
            return {"skipped": True, "reason": "below_threshold", "unsummarized": unsummarized}

        if unsummarized - RECENT_PRESERVE < MIN_TURNS_PER_SUMMARY:
            return {"skipped": True, "reason": "not_enough_after_preserve", "unsummarized": unsummarized}

        try:
            turns = (
                await db.execute(
                    select(AssistantConversation)
                    .where(
                        AssistantConversation.session_id == session_id,
                        AssistantConversation.user_id == user_id,
                        AssistantConversation.summarized.is_(False),
                    )
                    .order_by(AssistantConversation.created_at.asc())
                )
            ).scalars().all()
        except SQLAlchemyError as e:
            logger.error("summary_fetch_failed", session_id=str(session_id), error=str(e))
            return {"skipped": True, "reason": "fetch_error"}
        older = list(turns[:-RECENT_PRESERVE])

        summary_text, method = await self._summarize(older, use_llm=use_llm)

        try:
            async with db.begin_nested():
                db.add(
                    AssistantSessionSummary(
                        session_id=session_id,
                        user_id=user_id,
                        summary_text=summary_text,
                        covered_until=older[-1].created_at,
                        turns_covered=len(older),
                        method=method,
                    )
                )
                await db.flush()
        except SQLAlchemyError as e:
            logger.error("summary_insert_failed", session_id=str(session_id), error=str(e))
            return {"skipped": True, "reason": "insert_failed"}

        # A failed flag update keeps the summary row; the turns stay unsummarized
        try:
            async with db.begin_nested():
                await db.execute(
                    update(AssistantConversation)
                    .where(
                        AssistantConversation.id.in_([t.id for t in older]),
                        AssistantConversation.user_id == user_id,
                    )
                    .values(summarized=True)
                    .execution_options(synchronize_session="fetch")
                )
        except SQLAlchemyError as e:
            logger.warning("summary_flag_update_failed", session_id=str(session_id), error=str(e))

        logger.info(
            "session_summarized",
            session_id=str(session_id),
            turns=len(older),
            preserved=RECENT_PRESERVE,
            method=method,
        )
        return {"summarized": True, "turns": len(older), "method": method}

    async def _summarize(self, turns: list[Any], use_llm: bool = True) -> tuple[str, str]:
        """LLM summary of the turns, or the heuristic one if the call fails."""
        if use_llm and self.provider is not None:
            transcript = build_transcript(turns)[:TRANSCRIPT_CHAR_LIMIT]
            try:
                result = await self.provider.generate_completion(
                    "conversation-summary",
                    [
                        {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                        {"role": "user", "content": transcript},
                    ],
                    max_tokens=300,
                    temperature=0.2,
                )
                if result.content and result.content.strip():
                    return result.content.strip(), "llm"
            except Exception as e:
                logger.warning("llm_summary_failed_using_heuristic", error=str(e))
        return heuristic_summary(turns), "heuristic"

    async def get_session_context_summary(
        self,
        db: AsyncSession,
        session_id: Optional[UUID],
        user_id: Optional[str],
    ) -> dict[str, Any]:
        """Latest summary text plus the recent unsummarized turns, oldest first."""
        if not session_id or not user_id:
            return {"summary": None, "recent_turns": []}

        latest = (
            await db.execute(
                select(AssistantSessionSummary)
                .where(
                    AssistantSessionSummary.session_id == session_id,
                    AssistantSessionSummary.user_id == user_id,
                )
                .order_by(AssistantSessionSummary.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        recent = (
            await db.execute(
                select(AssistantConversation)
                .where(
                    AssistantConversation.session_id == session_id,
                    AssistantConversation.user_id == user_id,
                )
                .order_by(AssistantConversation.created_at.desc())
                .limit(RECENT_CONTEXT_TURNS)
            )
        ).scalars().all()

        return {
            "summary": latest.summary_text if latest else None,
            "covered_until": latest.covered_until.isoformat() if latest else None,
            "recent_turns": [
                {"role": t.role, "content": t.content}
                for t in reversed(recent)
                if not t.summarized
            ],
        }
