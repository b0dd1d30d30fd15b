"""
Form API Endpoints
Form assistant sessions and the per-user form analysis cache.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from walios.api.deps import get_form_assistant_service
from walios.core.exceptions import ValidationError
from walios.database import get_db
from walios.schemas.form import FormAssistantRequest, FormCacheRequest
from walios.services.form_assistant import FormAssistantService
from walios.services.form_cache import get_cached_form, store_cached_form

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/form", tags=["Form"])


@router.post("/ai-assistant")
async def form_ai_assistant(
    request: FormAssistantRequest,
    db: AsyncSession = Depends(get_db),
    service: FormAssistantService = Depends(get_form_assistant_service),
) -> dict[str, Any]:
    """
    Form assistant actions.

    - create_session: start a session with a welcome message
    - send_message: chat about the form with the last ten messages as history
    - generate_field_content: draft text for ``fieldContext``
    - get_session / get_messages: read back a session the user owns
    """
    action = request.action
    try:
        if action == "create_session":
            data = await service.create_session(db, request.user_id, request.form_title, request.form_context)
            return {"success": True, **data}
        if action == "send_message":
            data = await service.send_message(
                db,
                request.user_id,
                request.session_id,
                request.message,
                field_context=request.field_context,
                user_profile=request.user_profile,
            )
            return {"success": True, "message": data}
        if action == "generate_field_content":
            data = await service.generate_field_content(
                db,
                request.user_id,
                request.session_id,
                request.field_context,
                form_data=request.form_data,
                user_profile=request.user_profile,
            )
            return {"success": True, **data}
        if action == "get_session":
            return {"success": True, "session": await service.get_session(db, request.user_id, request.session_id)}
        if action == "get_messages":
            return {
                "success": True,
                "messages": await service.get_messages(db, request.user_id, request.session_id),
            }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Form assistant {action} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Form assistant failed: {e}",
        )

    raise ValidationError("Invalid action")


@router.post("/cache")
async def form_cache(
    request: FormCacheRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Look up (``get_cache``) or store (``store_cache``) a form analysis by file hash."""
    if request.action == "get_cache":
        data = await get_cached_form(db, request.user_id, request.file_hash)
        return {"success": True, **data}

    # Requests without a recognised action are treated as stores
    data = await store_cached_form(
        db, request.user_id, request.file_hash, request.file_name, request.analysis_result
    )
    return {"success": True, **data}
