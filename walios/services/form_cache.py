"""Per-user cache of analyzed forms keyed by the uploaded file's hash."""

from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from walios.core.exceptions import NotFoundError, ValidationError
from walios.models import FormAnalysisCache, utcnow

logger = structlog.get_logger(__name__)


async def get_cached_form(db: AsyncSession, user_id: str, file_hash: Optional[str]) -> dict[str, Any]:
    """
    Return a cached analysis and bump its usage counter.

    Raises:
        ValidationError: If no file hash was given.
        NotFoundError: If nothing is cached for this user and hash.
    """
    if not file_hash:
        raise ValidationError("File hash required")

    entry = (
        await db.execute(
            select(FormAnalysisCache).where(
                FormAnalysisCache.user_id == user_id,
                FormAnalysisCache.file_hash == file_hash,
            )
        )
    ).scalar_one_or_none()
    if entry is None:
        raise NotFoundError("Cached form analysis")

    entry.usage_count += 1
    entry.last_used_at = utcnow()
    await db.flush()

    result = entry.analysis_result or {}
    data = result.get("data") if isinstance(result.get("data"), dict) else result
    return {
        "id": str(entry.id),
        "data": {
            "formAnalysis": data.get("formAnalysis") or {},
            "formStructure": data.get("formStructure") or {},
            "walkthrough": data.get("walkthrough") or {},
        },
        "fileName": entry.file_name,
        "usageCount": entry.usage_count,
        "fromCache": True,
    }


async def store_cached_form(
    db: AsyncSession,
    user_id: str,
    file_hash: Optional[str],
    file_name: Optional[str],
    analysis_result: Optional[dict[str, Any]],
) -> dict[str, Any]:
    if not file_hash or not file_name or not analysis_result:
        raise ValidationError("Missing required fields: fileHash, fileName, analysisResult")

    existing = (
        await db.execute(
            select(FormAnalysisCache.id).where(
                FormAnalysisCache.user_id == user_id,
                FormAnalysisCache.file_hash == file_hash,
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        return {"id": str(existing), "message": "Already cached"}

    entry = FormAnalysisCache(
        user_id=user_id,
        file_hash=file_hash,
        file_name=file_name,
        analysis_result=analysis_result,
    )
    db.add(entry)
    await db.flush()

    logger.info("form_analysis_cached", file_name=file_name)
    return {"id": str(entry.id)}
