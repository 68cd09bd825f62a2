"""
FastAPI dependencies.

Collaborators are built once in the application lifespan and kept on
app.state; tests replace them through app.dependency_overrides.
"""

from fastapi import Request

from ..core.session_manager import SessionManager
from ..storage.message_store import MessageStore


def get_session_manager(request: Request) -> SessionManager:
    """Get the process-wide session manager."""
    return request.app.state.session_manager


def get_message_store(request: Request) -> MessageStore:
    """Get the process-wide message store."""
    return request.app.state.message_store
