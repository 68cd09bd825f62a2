"""
Chat API endpoints - the UI's view of the companion conversation.
"""

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from .dependencies import get_session_manager, get_message_store
from ..core.session_manager import SessionManager, SessionEvent, TurnCompleted
from ..models import (
    AnnotatedReply, ChatSession, CrisisStatus, SendMessageRequest, SessionSnapshot,
)
from ..storage.message_store import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

# Seconds between keep-alive comments on the event stream
EVENT_STREAM_KEEPALIVE = 15.0


def event_payload(event: SessionEvent) -> Dict[str, Any]:
    """JSON-ready representation of a session event."""
    if isinstance(event, TurnCompleted):
        return {
            "type": event.type,
            "session_id": event.session_id,
            "reply": event.reply.model_dump(mode="json"),
        }
    return asdict(event)


@router.get("/session", response_model=SessionSnapshot)
async def load_session(manager: SessionManager = Depends(get_session_manager)):
    """
    Load the active chat session.

    A new session comes back with Rae's greeting as its only message.
    """
    return await manager.load_session()


@router.post("/message", response_model=AnnotatedReply)
async def send_message(
    message: SendMessageRequest,
    session_id: Optional[str] = Query(None, description="Target session, active session if omitted"),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Send a message to Rae and get the annotated reply.

    Generation problems still produce a (fallback) reply; only blank input
    and storage failures come back as errors.
    """
    return await manager.send_message(message.text, session_id=session_id)


def _crisis_status(manager: SessionManager, session_id: Optional[str]) -> CrisisStatus:
    target = session_id or manager.current_session_id
    if target is None:
        return CrisisStatus()
    return CrisisStatus(
        session_id=target,
        show_crisis_resources=manager.crisis_pending(target),
        reason=manager.crisis_reason(target),
    )


@router.get("/crisis", response_model=CrisisStatus)
async def get_crisis_status(
    session_id: Optional[str] = Query(None),
    manager: SessionManager = Depends(get_session_manager),
):
    """Poll whether crisis resources should be shown now."""
    return _crisis_status(manager, session_id)


@router.post("/crisis/acknowledge", response_model=CrisisStatus)
async def acknowledge_crisis(
    session_id: Optional[str] = Query(None),
    manager: SessionManager = Depends(get_session_manager),
):
    """Mark the crisis resources as shown."""
    target = session_id or manager.current_session_id
    if target is not None:
        manager.acknowledge_crisis(target)
    return _crisis_status(manager, target)


@router.get("/events")
async def stream_events(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Server-Sent Events stream of turn_completed / crisis_detected events.
    """
    queue: "asyncio.Queue[SessionEvent]" = asyncio.Queue()
    unsubscribe = manager.subscribe(queue.put_nowait)

    async def event_generator():
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=EVENT_STREAM_KEEPALIVE)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                payload = json.dumps(event_payload(event), ensure_ascii=False)
                yield f"event: {event.type}\ndata: {payload}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.get("/sessions", response_model=List[ChatSession])
async def list_sessions(store: MessageStore = Depends(get_message_store)):
    """All chat sessions, newest first."""
    return await store.list_sessions()


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
):
    """Any session with its messages, ended ones included."""
    return await manager.get_snapshot(session_id)


@router.post("/sessions/{session_id}/end", response_model=ChatSession)
async def end_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
):
    """End a session explicitly; the next load starts a new one."""
    return await manager.end_session(session_id)
