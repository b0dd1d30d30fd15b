"""Form assistant and form cache request schemas."""
from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from walios.schemas.common import UserScopedRequest


class FormAssistantRequest(UserScopedRequest):
    """
    One request to the form assistant.

    ``action`` is one of create_session, send_message,
    generate_field_content, get_session or get_messages.
    """

    action: Optional[str] = None
    session_id: Optional[UUID] = None
    form_title: Optional[str] = None
    form_context: Optional[dict[str, Any]] = None
    message: Optional[str] = None
    field_context: Optional[str] = None
    form_data: dict[str, Any] = Field(default_factory=dict)
    user_profile: dict[str, Any] = Field(default_factory=dict)


class FormCacheRequest(UserScopedRequest):
    action: Optional[str] = None
    file_hash: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    analysis_result: Optional[dict[str, Any]] = None
