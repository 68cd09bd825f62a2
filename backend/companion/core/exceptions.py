"""
Companion exceptions.

Raised by the storage layer and the session manager; the API layer converts
the ones that reach it into HTTP responses (see api/errors.py).
"""

from typing import Optional


class CompanionError(Exception):
    """Base exception for the companion backend."""

    code = "COMPANION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInput(CompanionError):
    """User input rejected before any side effect (e.g. blank text)."""

    code = "INVALID_INPUT"


class StorageError(CompanionError):
    """Persistence I/O failure. Never masked, always surfaced to the caller."""

    code = "STORAGE_ERROR"

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class GenerationError(CompanionError):
    """Remote reply generation failed (timeout, auth, rate limit, bad payload)."""

    code = "GENERATION_ERROR"


class SessionNotFound(CompanionError):
    """Referenced chat session does not exist."""

    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Chat session '{session_id}' not found")


class SessionEnded(CompanionError):
    """Chat session was ended and no longer accepts messages."""

    code = "SESSION_ENDED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Chat session '{session_id}' has ended")
