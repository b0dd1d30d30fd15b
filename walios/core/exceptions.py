"""
Custom Exception Classes for the WALI-OS API.

Provides standardized HTTP exceptions with consistent error messages
across all API endpoints. The application renders every one of them as
``{"error": detail}``.
"""
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Exception raised when a requested resource is not found."""

    def __init__(self, resource: str, id: str = None):
        detail = f"{resource} not found" + (f": {id}" if id else "")
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ValidationError(HTTPException):
    """Exception raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


class MethodNotAllowedError(HTTPException):
    """Exception raised for verbs an endpoint does not serve."""

    def __init__(self, message: str = "Method not allowed"):
        super().__init__(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail=message)


class UpstreamAIError(HTTPException):
    """Exception raised when the AI providers could not produce a usable answer."""

    def __init__(self, message: str):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)
