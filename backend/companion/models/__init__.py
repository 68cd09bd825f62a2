"""Models module."""

from .chat import (
    Sender, SafetyFlag, SafetyLevel, ToolId,
    ChatSession, ChatMessage, SafetyVerdict, GeneratedReply,
    AnnotatedReply, SessionSnapshot, SendMessageRequest, CrisisStatus,
)

__all__ = [
    'Sender', 'SafetyFlag', 'SafetyLevel', 'ToolId',
    'ChatSession', 'ChatMessage', 'SafetyVerdict', 'GeneratedReply',
    'AnnotatedReply', 'SessionSnapshot', 'SendMessageRequest', 'CrisisStatus',
]
