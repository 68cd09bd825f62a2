"""
Message Store - Durable append-only chat log built on StorageInterface.

Layout under the storage root:
    chats/sessions/<session_id>.json     session metadata
    chats/messages/<session_id>.jsonl    one ChatMessage per line, in order
"""

import asyncio
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from .interface import StorageInterface
from ..core.exceptions import StorageError, SessionNotFound
from ..models import ChatMessage, ChatSession

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)
_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStore:
    """
    Source of truth for chat sessions and messages.

    Appends are serialised per session so concurrent sessions never interleave
    within one session's log; no ordering across sessions is promised.
    """

    def __init__(self, storage: StorageInterface, clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the message store.

        Args:
            storage: StorageInterface implementation (typically LocalStorage)
            clock: Returns the current UTC time; injectable for tests
        """
        self.storage = storage
        self.clock = clock
        self.sessions_dir = "chats/sessions"
        self.messages_dir = "chats/messages"
        self._append_locks: Dict[str, asyncio.Lock] = {}
        self._last_timestamps: Dict[str, datetime] = {}
        self._sessions_lock = asyncio.Lock()

    def _check_id(self, session_id: str) -> None:
        # Ids become file names; anything else can never name a stored session
        if not isinstance(session_id, str) or not _SESSION_ID.match(session_id):
            raise SessionNotFound(session_id)

    def _session_path(self, session_id: str) -> str:
        self._check_id(session_id)
        return f"{self.sessions_dir}/{session_id}.json"

    def _messages_path(self, session_id: str) -> str:
        self._check_id(session_id)
        return f"{self.messages_dir}/{session_id}.jsonl"

    def _append_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._append_locks.get(session_id)
        if lock is None:
            lock = self._append_locks[session_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def _write_session(self, session: ChatSession) -> None:
        await self.storage.save(self._session_path(session.session_id), session.model_dump_json(indent=2))

    async def _read_session(self, path: str) -> ChatSession:
        content = await self.storage.load(path)
        if content is None:
            raise StorageError(f"Session file disappeared: {path}", path=path)
        try:
            return ChatSession.model_validate_json(content)
        except ValidationError as e:
            raise StorageError(f"Corrupt session file {path}: {e}", path=path) from e

    async def get_session(self, session_id: str) -> ChatSession:
        """
        Get session by id.

        Raises:
            SessionNotFound: If no such session was ever created
        """
        path = self._session_path(session_id)
        if not await self.storage.exists(path):
            raise SessionNotFound(session_id)
        return await self._read_session(path)

    async def list_sessions(self) -> List[ChatSession]:
        """List all sessions, newest first."""
        files = await self.storage.list(self.sessions_dir, pattern="*.json")
        sessions = [await self._read_session(path) for path in files]
        return sorted(sessions, key=lambda s: s.started_at, reverse=True)

    async def create_session(self) -> ChatSession:
        """Create and persist a new session."""
        session = ChatSession(started_at=self.clock())
        await self._write_session(session)
        logger.info(f"Chat session created: {session.session_id}")
        return session

    async def end_session(self, session_id: str) -> ChatSession:
        """End a session. Ending an already ended session is a no-op."""
        async with self._sessions_lock:
            return await self._end_session(await self.get_session(session_id))

    async def _end_session(self, session: ChatSession) -> ChatSession:
        if session.ended_at is not None:
            return session
        ended = session.model_copy(update={"ended_at": self.clock()})
        await self._write_session(ended)
        self._append_locks.pop(session.session_id, None)
        self._last_timestamps.pop(session.session_id, None)
        logger.info(f"Chat session ended: {session.session_id}")
        return ended

    async def flag_crisis(self, session_id: str, reason: str) -> ChatSession:
        """Mark a session as crisis-flagged. The first reason is kept."""
        async with self._sessions_lock:
            session = await self.get_session(session_id)
            if session.is_crisis_flagged:
                return session
            flagged = session.model_copy(update={
                "is_crisis_flagged": True,
                "crisis_flag_reason": reason,
            })
            await self._write_session(flagged)
            return flagged

    async def get_or_create_active_session(self, staleness_window: timedelta) -> ChatSession:
        """
        Return the session new messages should go to.

        The most recent session that hasn't ended is resumed when its last
        activity falls within staleness_window; otherwise it is ended
        (superseded) and a fresh session is created.
        """
        async with self._sessions_lock:
            active = [s for s in await self.list_sessions() if s.is_active]
            current: Optional[ChatSession] = active[0] if active else None

            if current is not None:
                last_activity = await self._last_activity(current)
                if self.clock() - last_activity <= staleness_window:
                    for older in active[1:]:
                        await self._end_session(older)
                    return current

            for stale in active:
                await self._end_session(stale)
            return await self.create_session()

    async def _last_activity(self, session: ChatSession) -> datetime:
        messages = await self.list_messages(session.session_id)
        return messages[-1].created_at if messages else session.started_at

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append(self, session_id: str, message: ChatMessage) -> ChatMessage:
        """
        Append one message to a session's log.

        The message is stamped with the store clock at persist time, moved
        forward if needed so it lands strictly after the previous message of
        the session; the stored copy is returned.

        Raises:
            SessionNotFound: If the session doesn't exist
            StorageError: On I/O failure
        """
        if message.session_id != session_id:
            raise ValueError(
                f"Message belongs to session {message.session_id}, not {session_id}"
            )
        if not await self.storage.exists(self._session_path(session_id)):
            raise SessionNotFound(session_id)

        async with self._append_lock(session_id):
            last = self._last_timestamps.get(session_id)
            if last is None:
                existing = await self.list_messages(session_id)
                last = existing[-1].created_at if existing else None
            created_at = self.clock()
            if last is not None and created_at <= last:
                created_at = last + _TICK
            message = message.model_copy(update={"created_at": created_at})

            line = message.model_dump_json() + "\n"
            await self.storage.append(self._messages_path(session_id), line)
            self._last_timestamps[session_id] = message.created_at

        logger.debug(
            f"Message appended: session={session_id}, sender={message.sender.value}, "
            f"safety_flag={message.safety_flag.value}"
        )
        return message

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        """
        Get the ordered messages of a session.

        Raises:
            StorageError: On I/O failure or a corrupt log line
        """
        path = self._messages_path(session_id)
        content = await self.storage.load(path)
        if content is None:
            return []

        messages = []
        for line_num, line in enumerate(content.decode('utf-8').splitlines(), 1):
            if not line.strip():
                continue
            try:
                messages.append(ChatMessage.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise StorageError(f"Corrupt message log {path} at line {line_num}: {e}", path=path) from e
        return messages
