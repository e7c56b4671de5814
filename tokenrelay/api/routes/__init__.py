"""
tokenrelay - API Routes

Route modules for the HTTP surface.
"""

from .chat import router as chat_router

__all__ = [
    "chat_router",
]
