"""
WALI-OS Cleanup Tasks

Tasks:
    - cleanup_chat_history: export, email and delete assistant turns older
      than the configured horizon (scheduled daily)
"""

import asyncio
import logging
from typing import Any, Optional

from walios.celery_app import celery_app
from walios.core.config import settings
from walios.database import async_engine, get_async_session
from walios.services.chat_cleanup import ChatCleanupService, cutoff_for
from walios.services.email import get_email_service

logger = logging.getLogger(__name__)


async def run_chat_cleanup(hours_old: float, dry_run: bool = False) -> dict[str, Any]:
    """Run the cleanup flow in its own session; shared by the task and tests."""
    service = ChatCleanupService(get_email_service())
    async with get_async_session() as session:
        return await service.run_cleanup(session, cutoff_for(hours_old), dry_run=dry_run)


async def _run_and_dispose(hours_old: float, dry_run: bool) -> dict[str, Any]:
    try:
        return await run_chat_cleanup(hours_old, dry_run)
    finally:
        # Pooled connections are bound to this event loop
        await async_engine.dispose()


@celery_app.task(
    name="walios.tasks.cleanup.cleanup_chat_history",
    queue="maintenance",
    soft_time_limit=1800,  # 30 minutes
    time_limit=2400,  # 40 minutes
)
def cleanup_chat_history(hours_old: Optional[float] = None, dry_run: bool = False) -> dict[str, Any]:
    """
    Daily chat-history cleanup.

    Args:
        hours_old: Turns older than this many hours are processed.
        dry_run: Count only; no email is sent and nothing is deleted.

    Returns:
        Results dict from the cleanup run.
    """
    hours = hours_old if hours_old is not None else settings.chat_cleanup_hours_old
    logger.info(f"Starting chat history cleanup (hours_old={hours}, dry_run={dry_run})")

    results = asyncio.run(_run_and_dispose(hours, dry_run))

    logger.info(
        f"Chat history cleanup finished: users={results['usersProcessed']} "
        f"emails_sent={results['emailsSent']} deleted={results['conversationsDeleted']}"
    )
    if results["errors"]:
        logger.warning(f"Chat history cleanup errors: {results['errors']}")
    return results
