"""
Chat Cleanup API Endpoints
Export, email and delete assistant conversations older than a cutoff.
Normally driven by the daily Celery beat task; exposed here for manual runs.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from walios.api.deps import get_chat_cleanup_service
from walios.core.exceptions import ValidationError
from walios.database import get_db
from walios.schemas.chat_cleanup import ChatCleanupRequest
from walios.services.chat_cleanup import ChatCleanupService, cutoff_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat-cleanup", tags=["Chat Cleanup"])

CLEANUP_ACTIONS = ("cleanup", "preview", "export-user")


@router.post("")
async def run_chat_cleanup(
    request: ChatCleanupRequest,
    db: AsyncSession = Depends(get_db),
    service: ChatCleanupService = Depends(get_chat_cleanup_service),
) -> dict[str, Any]:
    """
    Run a cleanup action.

    - cleanup: export -> email -> delete for every affected user
    - preview: counts and a sample of affected users
    - export-user: export and email one user's history without deleting
    """
    if request.action not in CLEANUP_ACTIONS:
        raise ValidationError("Invalid action. Use: cleanup, preview, or export-user")
    if request.action == "export-user" and not request.user_id:
        raise ValidationError("userId required for export-user action")

    cutoff = cutoff_for(request.hours_old)
    logger.info(f"Chat cleanup: action={request.action} dry_run={request.dry_run} hours_old={request.hours_old}")

    try:
        if request.action == "cleanup":
            results = await service.run_cleanup(db, cutoff, dry_run=request.dry_run)
            if not results["usersProcessed"] and not results["conversationsDeleted"]:
                message = "No conversations found for cleanup"
            elif request.dry_run:
                message = "Dry run completed successfully"
            else:
                message = "Cleanup completed successfully"
            return {"success": True, "message": message, "results": results}
        if request.action == "preview":
            return {"success": True, "preview": await service.preview(db, cutoff)}
        return await service.export_user(db, request.user_id, cutoff)
    except HTTPException:
        raise
    except ValueError as e:
        raise ValidationError(str(e))
    except Exception as e:
        logger.error(f"Chat cleanup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Cleanup failed: {e}",
        )


@router.get("")
async def chat_cleanup_info() -> dict[str, Any]:
    """Service description and health."""
    return {
        "service": "Chat Cleanup API",
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "endpoints": {
            "POST /api/chat-cleanup": "Main cleanup endpoint",
            "GET /api/chat-cleanup": "Health check",
        },
        "actions": {
            "cleanup": "Full cleanup process (export -> email -> delete)",
            "preview": "Preview what would be cleaned up",
            "export-user": "Export and email single user history",
        },
        "parameters": {
            "action": "cleanup | preview | export-user",
            "dryRun": "boolean - if true, no emails sent or data deleted",
            "hoursOld": "number - cleanup conversations older than this many hours (default: 24)",
            "userId": "string - required for export-user action",
        },
    }
