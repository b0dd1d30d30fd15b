"""
WALI-OS API Routers
FastAPI router modules.
"""
from walios.api import ai, chat_cleanup, form, health

__all__ = [
    "ai",
    "chat_cleanup",
    "form",
    "health",
]
