"""
Daily cleanup of assistant chat turns.

Turns older than the cutoff are exported per user, emailed to the user and
then deleted. The three steps are not atomic: a user whose email fails still
loses the turns when the delete runs.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from walios.core.exceptions import NotFoundError
from walios.models import AssistantConversation, UserProfile, utcnow
from walios.services.email import EmailService

logger = structlog.get_logger(__name__)

SESSION_GAP = timedelta(minutes=30)
PREVIEW_SAMPLE_SIZE = 10


def cutoff_for(hours_old: float, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(hours=hours_old)


def _format_date(value: datetime) -> str:
    return f"{value:%A}, {value:%B} {value.day}, {value:%Y}"


def _format_time(value: datetime) -> str:
    return f"{value.hour % 12 or 12}:{value:%M} {'PM' if value.hour >= 12 else 'AM'}"


def group_into_sessions(turns: Sequence[AssistantConversation]) -> list[dict[str, Any]]:
    """
    Split chronologically ordered turns into reading sessions.

    A new session starts on a new calendar day or after a gap longer than
    thirty minutes.
    """
    sessions: list[dict[str, Any]] = []
    current: Optional[dict[str, Any]] = None
    last_time: Optional[datetime] = None

    for turn in turns:
        at = turn.created_at
        if current is None or at.date() != current["start"].date() or at - last_time > SESSION_GAP:
            current = {"start": at, "messages": []}
            sessions.append(current)
        current["messages"].append(
            {"role": turn.role, "content": turn.content, "time": _format_time(at), "timestamp": at.isoformat()}
        )
        last_time = at

    return [
        {
            "date": _format_date(s["start"]),
            "messageCount": len(s["messages"]),
            "messages": s["messages"],
        }
        for s in sessions
    ]


async def users_with_old_turns(db: AsyncSession, cutoff: datetime) -> list[str]:
    rows = await db.execute(
        select(AssistantConversation.user_id)
        .where(AssistantConversation.created_at < cutoff)
        .distinct()
        .order_by(AssistantConversation.user_id)
    )
    return list(rows.scalars().all())


async def count_old_turns(db: AsyncSession, cutoff: datetime) -> int:
    count = await db.scalar(
        select(func.count()).select_from(AssistantConversation).where(AssistantConversation.created_at < cutoff)
    )
    return count or 0


async def delete_old_turns(db: AsyncSession, cutoff: datetime) -> int:
    result = await db.execute(delete(AssistantConversation).where(AssistantConversation.created_at < cutoff))
    await db.flush()
    return result.rowcount or 0


async def export_user_history(db: AsyncSession, user_id: str, cutoff: Optional[datetime] = None) -> dict[str, Any]:
    """
    Collect a user's turns older than ``cutoff`` in an email-ready shape.

    Returns:
        ``{"hasData": False, "userProfile": ...}`` when there is nothing to
        export, otherwise the profile, grouped sessions and a summary.

    Raises:
        NotFoundError: If the user has no profile row.
    """
    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    ).scalar_one_or_none()
    if profile is None:
        raise NotFoundError("User profile", user_id)

    user_profile = {
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "email": profile.email,
        "organization_name": profile.organization_name,
    }

    query = (
        select(AssistantConversation)
        .where(AssistantConversation.user_id == user_id)
        .order_by(AssistantConversation.created_at.asc())
    )
    if cutoff is not None:
        query = query.where(AssistantConversation.created_at < cutoff)
    turns = (await db.execute(query)).scalars().all()

    if not turns:
        return {"hasData": False, "userProfile": user_profile}

    sessions = group_into_sessions(turns)
    return {
        "hasData": True,
        "userProfile": user_profile,
        "sessions": sessions,
        "summary": {
            "totalMessages": len(turns),
            "sessionCount": len(sessions),
            "dateRange": {
                "from": turns[0].created_at.strftime("%m/%d/%Y"),
                "to": turns[-1].created_at.strftime("%m/%d/%Y"),
            },
            "exportedAt": utcnow().isoformat(),
        },
    }


class ChatCleanupService:
    """Export, email and delete flow over the assistant chat log."""

    def __init__(self, email_service: EmailService):
        self.email = email_service

    async def run_cleanup(self, db: AsyncSession, cutoff: datetime, dry_run: bool = False) -> dict[str, Any]:
        """
        Export and email every affected user's history, then delete old turns.

        Per-user failures are recorded in ``errors`` and do not stop the run.

        Args:
            db: Database session.
            cutoff: Turns created before this moment are processed.
            dry_run: Count only; send nothing and delete nothing.

        Returns:
            Results dict with per-run counters.
        """
        results: dict[str, Any] = {
            "cutoffDate": cutoff.isoformat(),
            "dryRun": dry_run,
            "usersProcessed": 0,
            "emailsSent": 0,
            "emailsFailed": 0,
            "conversationsDeleted": 0,
            "errors": [],
            "startTime": utcnow().isoformat(),
        }

        user_ids = await users_with_old_turns(db, cutoff)
        logger.info("chat_cleanup_started", users=len(user_ids), cutoff=cutoff.isoformat(), dry_run=dry_run)

        for user_id in user_ids:
            try:
                export = await export_user_history(db, user_id, cutoff)
            except Exception as e:
                logger.error("chat_export_failed", user_id=user_id, error=str(e))
                results["errors"].append(f"Failed to process {user_id}: {e}")
                continue

            if not export["hasData"]:
                continue
            results["usersProcessed"] += 1

            if dry_run:
                continue

            email = export["userProfile"].get("email")
            if not email:
                results["errors"].append(f"No email address for user: {user_id}")
                continue
            try:
                await self.email.send_chat_history(email, export)
                results["emailsSent"] += 1
            except Exception as e:
                logger.error("chat_history_email_failed", user_id=user_id, error=str(e))
                results["emailsFailed"] += 1
                results["errors"].append(f"Email failed for {user_id}: {e}")

        if dry_run:
            results["conversationsDeleted"] = await count_old_turns(db, cutoff)
        else:
            results["conversationsDeleted"] = await delete_old_turns(db, cutoff)

        results["endTime"] = utcnow().isoformat()
        results["success"] = True
        logger.info(
            "chat_cleanup_finished",
            users=results["usersProcessed"],
            emails_sent=results["emailsSent"],
            deleted=results["conversationsDeleted"],
        )
        return results

    async def preview(self, db: AsyncSession, cutoff: datetime) -> dict[str, Any]:
        user_ids = await users_with_old_turns(db, cutoff)
        total = await count_old_turns(db, cutoff)

        sample = []
        for user_id in user_ids[:PREVIEW_SAMPLE_SIZE]:
            profile = (
                await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
            ).scalar_one_or_none()
            entry: dict[str, Any] = {"userId": user_id}
            if profile is not None:
                entry.update(
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    email=profile.email,
                    organization_name=profile.organization_name,
                )
            sample.append(entry)

        return {
            "cutoffDate": cutoff.isoformat(),
            "totalUsers": len(user_ids),
            "totalConversations": total,
            "sampleUsers": sample,
            "message": f"Would process {len(user_ids)} users and delete {total} conversations",
        }

    async def export_user(self, db: AsyncSession, user_id: str, cutoff: datetime) -> dict[str, Any]:
        """
        Export and email a single user's history without deleting anything.

        Raises:
            NotFoundError: If the user has no profile.
            ValueError: If the profile has no email address.
        """
        export = await export_user_history(db, user_id, cutoff)
        if not export["hasData"]:
            return {"success": True, "message": "No chat history found for this user", "userId": user_id}

        email = export["userProfile"].get("email")
        if not email:
            raise ValueError("No email address found for user")

        await self.email.send_chat_history(email, export)
        return {
            "success": True,
            "message": f"Chat history sent to {email}",
            "userId": user_id,
            "summary": export["summary"],
        }
