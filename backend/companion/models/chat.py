"""
Chat Models - Sessions, messages and the annotated replies handed to the UI.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Sender(str, Enum):
    """Author of a chat message."""
    USER = "user"
    COMPANION = "companion"


class SafetyFlag(str, Enum):
    """Safety metadata attached to a message at creation time."""
    NONE = "none"
    CRISIS_DETECTED = "crisis_detected"


class SafetyLevel(str, Enum):
    """Classifier verdict level."""
    NONE = "none"
    CRISIS = "crisis"


class ToolId(str, Enum):
    """Catalog of coping tools the app offers."""
    LEARN = "learn"
    BREATHE = "breathe"
    GAMES = "games"
    JOURNAL = "journal"
    VISUALIZE = "visualize"
    SLEEP = "sleep"
    AFFIRM = "affirm"
    JOURNEYS = "journeys"


class ChatSession(BaseModel):
    """A unit of conversational continuity. Ended, never deleted."""
    session_id: str = Field(default_factory=_new_id)
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None
    is_crisis_flagged: bool = False
    crisis_flag_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


class ChatMessage(BaseModel):
    """One entry of the append-only chat log."""
    message_id: str = Field(default_factory=_new_id)
    session_id: str
    sender: Sender
    created_at: datetime = Field(default_factory=_utcnow)
    text: str
    safety_flag: SafetyFlag = SafetyFlag.NONE
    suggested_tool: Optional[ToolId] = None

    class Config:
        frozen = True


class SafetyVerdict(BaseModel):
    """Result of classifying a single utterance."""
    level: SafetyLevel = SafetyLevel.NONE
    matched_signal: Optional[str] = None

    @property
    def is_crisis(self) -> bool:
        return self.level == SafetyLevel.CRISIS


class GeneratedReply(BaseModel):
    """What a response generator hands back for one turn."""
    text: str
    suggested_tool: Optional[ToolId] = None


class AnnotatedReply(BaseModel):
    """Companion reply plus the safety metadata the UI acts on."""
    message: ChatMessage
    crisis_detected: bool = False
    matched_signal: Optional[str] = None
    used_fallback: bool = False

    @property
    def safety_flag(self) -> SafetyFlag:
        return self.message.safety_flag


class SessionSnapshot(BaseModel):
    """Session with its ordered messages."""
    session: ChatSession
    messages: List[ChatMessage]


class SendMessageRequest(BaseModel):
    """Body of POST /chat/message."""
    text: str


class CrisisStatus(BaseModel):
    """Whether the UI should surface crisis resources right now."""
    session_id: Optional[str] = None
    show_crisis_resources: bool = False
    reason: Optional[str] = None
