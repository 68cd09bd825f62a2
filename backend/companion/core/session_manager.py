"""
Session Manager - owns the conversational turn protocol.

One turn: persist the user's message, classify it, ask the generator for a
reply (or substitute the fallback), persist the tagged reply, notify
subscribers. Turns on the same session are queued behind each other; turns on
different sessions run independently.
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .exceptions import GenerationError, InvalidInput, SessionEnded
from .logging_config import redact_text
from .safety import SafetyClassifier
from ..generation.base import ResponseGenerator
from ..models import (
    AnnotatedReply, ChatMessage, ChatSession, GeneratedReply,
    SafetyFlag, Sender, SessionSnapshot,
)
from ..storage.message_store import MessageStore

logger = logging.getLogger(__name__)


GREETINGS = (
    "Hi, I'm Rae, your wellbeing companion. 💚\n"
    "I'm here to listen and support you, but I'm not a doctor or therapist.\n"
    "What's on your mind today?",

    "Hey, I'm Rae. Thanks for stopping by. I'm here to help you cope with stress, "
    "worry, or tough feelings, but I can't provide medical or emergency help.\n"
    "How are you feeling right now?",

    "Hi, I'm Rae, your companion in ResetNow. 🌱\n"
    "I can offer gentle support and ideas for calming down or coping, but I'm not "
    "an emergency service.\n"
    "Would you like to tell me what you're going through?",
)

FALLBACK_REPLY = (
    "I'm having trouble responding right now, but I'm still here with you. "
    "Could you try sending that again in a moment?\n\n"
    "If you're in crisis or thinking about hurting yourself, please reach out now:\n"
    "• 988 Suicide & Crisis Lifeline (call or text 988)\n"
    "• Crisis Text Line (text HOME to 741741)\n"
    "• Emergency services (911)"
)


class TurnState(str, Enum):
    """Where a session's current turn stands."""
    IDLE = "idle"
    AWAITING_CLASSIFICATION = "awaiting_classification"
    AWAITING_GENERATION = "awaiting_generation"
    COMPLETE = "complete"


@dataclass(frozen=True)
class TurnCompleted:
    """A turn finished and both messages are persisted."""
    session_id: str
    reply: AnnotatedReply
    type: str = "turn_completed"


@dataclass(frozen=True)
class CrisisDetected:
    """The user's message matched a crisis signal; show crisis resources."""
    session_id: str
    message_id: str
    matched_signal: Optional[str]
    type: str = "crisis_detected"


SessionEvent = Union[TurnCompleted, CrisisDetected]
Listener = Callable[[SessionEvent], Union[None, Awaitable[None]]]


class SessionManager:
    """
    Mediates between the UI, the message store, the safety classifier and the
    response generator. All collaborators are injected.
    """

    def __init__(
        self,
        store: MessageStore,
        generator: ResponseGenerator,
        classifier: SafetyClassifier,
        greetings: Sequence[str] = GREETINGS,
        staleness_window: timedelta = timedelta(hours=6),
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the session manager.

        Args:
            store: Durable chat log (source of truth on reload)
            generator: Produces companion replies
            classifier: Crisis signal classifier applied to user messages
            greetings: Onboarding scripts for a session's first message
            staleness_window: Inactivity after which a new session is started
            rng: Random source for greeting selection
        """
        if not greetings:
            raise ValueError("At least one greeting script is required")
        self.store = store
        self.generator = generator
        self.classifier = classifier
        self.greetings = tuple(greetings)
        self.staleness_window = staleness_window
        self.rng = rng or random.Random()
        self.current_session_id: Optional[str] = None

        self._turn_locks: Dict[str, asyncio.Lock] = {}
        self._states: Dict[str, TurnState] = {}
        self._crisis_pending: Dict[str, Optional[str]] = {}
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Subscriptions and UI side-channel
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a sync or async callable for session events.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Session event listener failed for {event.type}")

    def crisis_pending(self, session_id: str) -> bool:
        """Whether the UI should surface crisis resources for this session."""
        return session_id in self._crisis_pending

    def crisis_reason(self, session_id: str) -> Optional[str]:
        return self._crisis_pending.get(session_id)

    def acknowledge_crisis(self, session_id: str) -> None:
        """Clear the crisis side-channel once the UI has shown the resources."""
        self._crisis_pending.pop(session_id, None)

    def turn_state(self, session_id: str) -> TurnState:
        return self._states.get(session_id, TurnState.IDLE)

    def _set_state(self, session_id: str, state: TurnState) -> None:
        self._states[session_id] = state

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._turn_locks.get(session_id)
        if lock is None:
            lock = self._turn_locks[session_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def _greet(self, session_id: str) -> ChatMessage:
        greeting = ChatMessage(
            session_id=session_id,
            sender=Sender.COMPANION,
            text=self.rng.choice(self.greetings),
        )
        stored = await self.store.append(session_id, greeting)
        logger.info(f"Greeting added to session {session_id}")
        return stored

    async def _messages_with_greeting(self, session_id: str) -> List[ChatMessage]:
        """Ordered messages; a session with none gets its greeting first. Caller holds the lock."""
        messages = await self.store.list_messages(session_id)
        if not messages:
            messages = [await self._greet(session_id)]
        return messages

    def _forget(self, session_id: str) -> None:
        """Drop per-session bookkeeping of a session that can take no more turns."""
        self._turn_locks.pop(session_id, None)
        self._states.pop(session_id, None)
        self._crisis_pending.pop(session_id, None)

    def _track_current(self, session: ChatSession) -> None:
        previous = self.current_session_id
        if previous is not None and previous != session.session_id:
            # Resolving the active session ended the previous one
            self._forget(previous)
        self.current_session_id = session.session_id

    async def load_session(self) -> SessionSnapshot:
        """
        Load the active session and its messages.

        A freshly created session gets exactly one greeting before anything
        else. Calling this again without a new turn returns the same list.
        """
        while True:
            session = await self.store.get_or_create_active_session(self.staleness_window)
            self._track_current(session)
            async with self._lock(session.session_id):
                session = await self.store.get_session(session.session_id)
                if not session.is_active:
                    continue
                messages = await self._messages_with_greeting(session.session_id)
            return SessionSnapshot(session=session, messages=messages)

    async def get_snapshot(self, session_id: str) -> SessionSnapshot:
        """Session and messages of any session, ended ones included."""
        session = await self.store.get_session(session_id)
        return SessionSnapshot(session=session, messages=await self.store.list_messages(session_id))

    async def end_session(self, session_id: str) -> ChatSession:
        """Explicitly end a session. The next load starts a fresh one."""
        await self.store.get_session(session_id)
        async with self._lock(session_id):
            session = await self.store.end_session(session_id)
        self._forget(session_id)
        if self.current_session_id == session_id:
            self.current_session_id = None
        return session

    async def _resolve_session(self, session_id: Optional[str]) -> ChatSession:
        if session_id is None:
            session = await self.store.get_or_create_active_session(self.staleness_window)
            self._track_current(session)
            return session
        session = await self.store.get_session(session_id)
        if not session.is_active:
            raise SessionEnded(session_id)
        return session

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(self, text: str, session_id: Optional[str] = None) -> AnnotatedReply:
        """
        Run one turn and return the companion's annotated reply.

        Args:
            text: The user's message
            session_id: Target session; the active session when None

        Raises:
            InvalidInput: Blank text (nothing is persisted, generator not called)
            StorageError: A write or read failed; never masked
            SessionNotFound / SessionEnded: session_id can't take messages
        """
        if text is None or not text.strip():
            raise InvalidInput("Message text is empty")

        while True:
            session = await self._resolve_session(session_id)
            sid = session.session_id

            async with self._lock(sid):
                # The session may have ended while this turn was queued
                if not (await self.store.get_session(sid)).is_active:
                    if session_id is not None:
                        raise SessionEnded(sid)
                    logger.info(f"Session {sid} ended while a turn was queued, resolving again")
                    continue
                try:
                    reply = await self._run_turn(sid, text)
                finally:
                    self._states.pop(sid, None)
            break

        if reply.crisis_detected:
            await self._emit(CrisisDetected(
                session_id=sid,
                message_id=reply.message.message_id,
                matched_signal=reply.matched_signal,
            ))
        await self._emit(TurnCompleted(session_id=sid, reply=reply))
        return reply

    async def _run_turn(self, session_id: str, text: str) -> AnnotatedReply:
        history = await self._messages_with_greeting(session_id)

        await self.store.append(session_id, ChatMessage(
            session_id=session_id,
            sender=Sender.USER,
            text=text,
        ))

        self._set_state(session_id, TurnState.AWAITING_CLASSIFICATION)
        verdict = self.classifier.classify(text)
        if verdict.is_crisis:
            logger.warning(
                "Crisis signal detected",
                extra={"extra_fields": {
                    "session_id": session_id,
                    "matched_signal": verdict.matched_signal,
                }}
            )
            # Raised before any later write can fail
            self._crisis_pending[session_id] = verdict.matched_signal

        self._set_state(session_id, TurnState.AWAITING_GENERATION)
        logger.debug(f"Generating reply for session {session_id}: {redact_text(text)}")
        generated, used_fallback = await self._generate(session_id, history, text)

        if verdict.is_crisis:
            await self.store.flag_crisis(session_id, verdict.matched_signal or SafetyFlag.CRISIS_DETECTED.value)

        safety_flag = SafetyFlag.CRISIS_DETECTED if verdict.is_crisis else SafetyFlag.NONE
        reply = await self.store.append(session_id, ChatMessage(
            session_id=session_id,
            sender=Sender.COMPANION,
            text=generated.text,
            safety_flag=safety_flag,
            suggested_tool=generated.suggested_tool,
        ))

        self._set_state(session_id, TurnState.COMPLETE)
        logger.info(
            f"Turn completed: session={session_id}, fallback={used_fallback}, "
            f"safety_flag={safety_flag.value}"
        )
        return AnnotatedReply(
            message=reply,
            crisis_detected=verdict.is_crisis,
            matched_signal=verdict.matched_signal,
            used_fallback=used_fallback,
        )

    async def _generate(
        self,
        session_id: str,
        history: List[ChatMessage],
        text: str
    ) -> Tuple[GeneratedReply, bool]:
        """Generated reply, or the fallback when generation fails in any way."""
        try:
            return await self.generator.generate(history, text), False
        except GenerationError as e:
            logger.warning(
                f"Reply generation failed, using fallback: {e}",
                extra={"extra_fields": {"session_id": session_id, "generator": self.generator.name}}
            )
        except Exception:
            logger.exception(
                f"Generator {self.generator.name} raised unexpectedly, using fallback",
                extra={"extra_fields": {"session_id": session_id}}
            )
        return GeneratedReply(text=FALLBACK_REPLY), True

    def describe(self) -> Dict[str, Any]:
        """Small status summary for the health endpoint."""
        return {
            "generator": self.generator.name,
            "crisis_signals": len(self.classifier.signals),
            "staleness_hours": self.staleness_window.total_seconds() / 3600,
        }
