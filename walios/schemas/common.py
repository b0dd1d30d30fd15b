"""
Common schema base classes.
Request bodies arrive in camelCase; models expose snake_case attributes.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model reading camelCase keys while accepting snake_case too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class UserScopedRequest(CamelModel):
    """Request made on behalf of a user; every query filters on this id."""

    user_id: str = Field(..., min_length=1, description="Owner of the data being read or written")


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint."""

    error: Any
    details: Optional[Any] = None
