"""Core module - crisis classification and the conversational turn protocol."""

from .exceptions import (
    CompanionError, InvalidInput, StorageError, GenerationError,
    SessionNotFound, SessionEnded,
)
from .safety import SafetyClassifier, DEFAULT_CRISIS_SIGNALS
from .session_manager import (
    SessionManager, TurnState, TurnCompleted, CrisisDetected,
    GREETINGS, FALLBACK_REPLY,
)

__all__ = [
    'CompanionError', 'InvalidInput', 'StorageError', 'GenerationError',
    'SessionNotFound', 'SessionEnded',
    'SafetyClassifier', 'DEFAULT_CRISIS_SIGNALS',
    'SessionManager', 'TurnState', 'TurnCompleted', 'CrisisDetected',
    'GREETINGS', 'FALLBACK_REPLY',
]
