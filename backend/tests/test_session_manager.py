"""
Tests for the conversational turn protocol (SessionManager).
"""

import asyncio
import random
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from conftest import StubGenerator, FailingGenerator

from companion.core.exceptions import (
    InvalidInput, StorageError, SessionNotFound, SessionEnded,
)
from companion.core.session_manager import (
    SessionManager, TurnState, TurnCompleted, CrisisDetected,
    GREETINGS, FALLBACK_REPLY,
)
from companion.generation.base import ResponseGenerator
from companion.models import GeneratedReply, SafetyFlag, Sender, ToolId


class BlockingGenerator(ResponseGenerator):
    """Holds calls until released; only utterances in 'hold' when given."""

    name = "blocking"

    def __init__(self, hold=None):
        self.hold = hold
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = []

    async def generate(self, history, new_utterance):
        self.calls.append(new_utterance)
        if self.hold is None or new_utterance in self.hold:
            self.started.set()
            await self.release.wait()
        return GeneratedReply(text=f"reply to {new_utterance}")


def _manager(store, generator, classifier, **kwargs):
    return SessionManager(store=store, generator=generator, classifier=classifier,
                          rng=random.Random(1), **kwargs)


class TestLoadSession:

    @pytest.mark.asyncio
    async def test_new_session_gets_one_greeting(self, manager, store):
        snapshot = await manager.load_session()
        assert len(snapshot.messages) == 1
        greeting = snapshot.messages[0]
        assert greeting.sender == Sender.COMPANION
        assert greeting.text in GREETINGS
        assert await store.list_messages(snapshot.session.session_id) == snapshot.messages
        assert manager.current_session_id == snapshot.session.session_id

    @pytest.mark.asyncio
    async def test_load_is_idempotent(self, manager):
        first = await manager.load_session()
        second = await manager.load_session()
        assert second.session.session_id == first.session.session_id
        assert second.messages == first.messages

    def test_greetings_disclose_non_clinical_status(self):
        for greeting in GREETINGS:
            assert "Rae" in greeting
            assert "not" in greeting or "can't" in greeting

    @pytest.mark.asyncio
    async def test_stale_session_replaced_on_load(self, manager, clock):
        first = await manager.load_session()
        clock.advance(hours=7)
        second = await manager.load_session()
        assert second.session.session_id != first.session.session_id
        assert len(second.messages) == 1

    @pytest.mark.asyncio
    async def test_custom_staleness_window(self, store, stub_generator, classifier, clock):
        manager = _manager(store, stub_generator, classifier, staleness_window=timedelta(minutes=30))
        first = await manager.load_session()
        clock.advance(minutes=20)
        assert (await manager.load_session()).session.session_id == first.session.session_id
        clock.advance(minutes=31)
        assert (await manager.load_session()).session.session_id != first.session.session_id

    def test_greetings_required(self, store, stub_generator, classifier):
        with pytest.raises(ValueError):
            SessionManager(store, stub_generator, classifier, greetings=())


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_blank_text_has_no_side_effects(self, manager, store, stub_generator):
        snapshot = await manager.load_session()
        for text in ("", "   ", "\n\t"):
            with pytest.raises(InvalidInput):
                await manager.send_message(text)
        assert stub_generator.calls == []
        assert len(await store.list_messages(snapshot.session.session_id)) == 1

    @pytest.mark.asyncio
    async def test_blank_text_on_fresh_install(self, manager, store, stub_generator):
        with pytest.raises(InvalidInput):
            await manager.send_message("")
        assert stub_generator.calls == []
        assert await store.list_sessions() == []

    @pytest.mark.asyncio
    async def test_ordinary_turn(self, manager, store, stub_generator):
        snapshot = await manager.load_session()
        reply = await manager.send_message("hello")

        assert not reply.crisis_detected
        assert not reply.used_fallback
        assert reply.safety_flag == SafetyFlag.NONE
        assert reply.message.text == stub_generator.text
        assert reply.message.suggested_tool == ToolId.BREATHE

        messages = await store.list_messages(snapshot.session.session_id)
        assert [m.sender for m in messages] == [Sender.COMPANION, Sender.USER, Sender.COMPANION]
        assert messages[1].text == "hello"
        assert messages[2] == reply.message
        assert manager.turn_state(snapshot.session.session_id) == TurnState.IDLE

    @pytest.mark.asyncio
    async def test_generator_sees_history_before_new_message(self, manager, stub_generator):
        snapshot = await manager.load_session()
        await manager.send_message("hello")
        history, utterance = stub_generator.calls[0]
        assert utterance == "hello"
        assert history == snapshot.messages

    @pytest.mark.asyncio
    async def test_user_message_persisted_before_generation(self, store, classifier):
        events = []
        generator = StubGenerator(events=events)
        original_append = store.append

        async def recording_append(session_id, message):
            events.append(f"append:{message.sender.value}")
            return await original_append(session_id, message)

        store.append = recording_append
        manager = _manager(store, generator, classifier)
        await manager.load_session()
        events.clear()

        await manager.send_message("hello")
        assert events == ["append:user", "generate", "append:companion"]

    @pytest.mark.asyncio
    async def test_send_without_load_greets_first(self, manager, store):
        reply = await manager.send_message("hello")
        messages = await store.list_messages(reply.message.session_id)
        assert messages[0].sender == Sender.COMPANION
        assert messages[0].text in GREETINGS
        assert [m.sender for m in messages[1:]] == [Sender.USER, Sender.COMPANION]

    @pytest.mark.asyncio
    async def test_crisis_turn_with_successful_generation(self, manager, store, stub_generator):
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id

        reply = await manager.send_message("I want to hurt myself")

        assert reply.crisis_detected
        assert reply.matched_signal == "hurt myself"
        assert reply.message.safety_flag == SafetyFlag.CRISIS_DETECTED
        # Generated text is passed through untouched
        assert reply.message.text == stub_generator.text
        assert not reply.used_fallback

        messages = await store.list_messages(sid)
        assert [m.sender for m in messages[1:]] == [Sender.USER, Sender.COMPANION]
        assert messages[-1].safety_flag == SafetyFlag.CRISIS_DETECTED

        session = await store.get_session(sid)
        assert session.is_crisis_flagged
        assert session.crisis_flag_reason == "hurt myself"
        assert manager.crisis_pending(sid)
        assert manager.crisis_reason(sid) == "hurt myself"

    @pytest.mark.asyncio
    async def test_generation_failure_uses_fallback(self, store, classifier):
        generator = FailingGenerator()
        manager = _manager(store, generator, classifier)
        snapshot = await manager.load_session()

        reply = await manager.send_message("hello")

        assert reply.used_fallback
        assert reply.message.text == FALLBACK_REPLY
        assert "988 Suicide & Crisis Lifeline (call or text 988)" in reply.message.text
        assert "Crisis Text Line (text HOME to 741741)" in reply.message.text
        assert reply.message.safety_flag == SafetyFlag.NONE
        assert reply.message.suggested_tool is None
        assert not manager.crisis_pending(snapshot.session.session_id)

        messages = await store.list_messages(snapshot.session.session_id)
        assert [m.sender for m in messages[1:]] == [Sender.USER, Sender.COMPANION]

    @pytest.mark.asyncio
    async def test_crisis_flag_applies_on_fallback_path(self, store, classifier):
        manager = _manager(store, FailingGenerator(), classifier)
        snapshot = await manager.load_session()

        reply = await manager.send_message("I feel hopeless")

        assert reply.used_fallback
        assert reply.crisis_detected
        assert reply.message.safety_flag == SafetyFlag.CRISIS_DETECTED
        assert (await store.get_session(snapshot.session.session_id)).is_crisis_flagged

    @pytest.mark.asyncio
    async def test_unexpected_generator_error_uses_fallback(self, store, classifier):
        manager = _manager(store, FailingGenerator(RuntimeError("boom")), classifier)
        reply = await manager.send_message("hello")
        assert reply.used_fallback
        assert reply.message.text == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, manager, store, stub_generator):
        snapshot = await manager.load_session()
        store.storage.append = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(StorageError):
            await manager.send_message("hello")

        assert stub_generator.calls == []
        assert manager.turn_state(snapshot.session.session_id) == TurnState.IDLE

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.send_message("hello", session_id="missing")

    @pytest.mark.asyncio
    async def test_ended_session_rejects_messages(self, manager, store):
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id
        await manager.end_session(sid)

        with pytest.raises(SessionEnded):
            await manager.send_message("hello", session_id=sid)
        assert len(await store.list_messages(sid)) == 1
        assert manager.current_session_id is None

    @pytest.mark.asyncio
    async def test_explicit_session_id(self, manager, store):
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id
        reply = await manager.send_message("hello", session_id=sid)
        assert reply.message.session_id == sid

    @pytest.mark.asyncio
    async def test_crisis_signal_survives_flag_write_failure(self, manager, store):
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id
        store.flag_crisis = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(StorageError):
            await manager.send_message("I want to hurt myself", session_id=sid)

        assert manager.crisis_pending(sid)
        assert manager.crisis_reason(sid) == "hurt myself"
        messages = await store.list_messages(sid)
        assert [m.sender for m in messages] == [Sender.COMPANION, Sender.USER]
        assert manager.turn_state(sid) == TurnState.IDLE


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_rapid_sends_queue_in_call_order(self, store, classifier):
        generator = BlockingGenerator()
        manager = _manager(store, generator, classifier)
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id

        first = asyncio.create_task(manager.send_message("first", session_id=sid))
        await generator.started.wait()
        second = asyncio.create_task(manager.send_message("second", session_id=sid))
        await asyncio.sleep(0)
        assert manager.turn_state(sid) == TurnState.AWAITING_GENERATION

        generator.release.set()
        await asyncio.gather(first, second)

        texts = [m.text for m in await store.list_messages(sid)][1:]
        assert texts == ["first", "reply to first", "second", "reply to second"]
        assert generator.calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_sessions_do_not_block_each_other(self, store, classifier):
        generator = BlockingGenerator(hold={"from a"})
        manager = _manager(store, generator, classifier)
        a = await store.create_session()
        b = await store.create_session()

        turn_a = asyncio.create_task(manager.send_message("from a", session_id=a.session_id))
        await generator.started.wait()

        reply_b = await manager.send_message("from b", session_id=b.session_id)
        assert reply_b.message.session_id == b.session_id
        assert reply_b.message.text == "reply to from b"
        assert manager.turn_state(a.session_id) == TurnState.AWAITING_GENERATION

        generator.release.set()
        await turn_a

    @pytest.mark.asyncio
    async def test_cancellation_during_generation(self, store, classifier):
        generator = BlockingGenerator()
        manager = _manager(store, generator, classifier)
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id

        task = asyncio.create_task(manager.send_message("hello", session_id=sid))
        await generator.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        messages = await store.list_messages(sid)
        assert [m.sender for m in messages] == [Sender.COMPANION, Sender.USER]
        assert manager.turn_state(sid) == TurnState.IDLE
        assert not manager._lock(sid).locked()

    @pytest.mark.asyncio
    async def test_turn_queued_behind_end_moves_to_new_session(self, store, classifier):
        generator = BlockingGenerator(hold={"first"})
        manager = _manager(store, generator, classifier)
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id

        first = asyncio.create_task(manager.send_message("first"))
        await generator.started.wait()

        resolved = asyncio.Event()
        original_resolve = store.get_or_create_active_session

        async def resolve_and_signal(staleness_window):
            session = await original_resolve(staleness_window)
            resolved.set()
            return session

        store.get_or_create_active_session = resolve_and_signal
        ending = asyncio.create_task(manager.end_session(sid))
        await asyncio.sleep(0)
        second = asyncio.create_task(manager.send_message("second"))
        await resolved.wait()
        await asyncio.sleep(0)

        generator.release.set()
        _, ended, reply = await asyncio.gather(first, ending, second)

        assert ended.session_id == sid
        texts = [m.text for m in await store.list_messages(sid)][1:]
        assert texts == ["first", "reply to first"]

        new_sid = reply.message.session_id
        assert new_sid != sid
        assert (await store.get_session(new_sid)).is_active
        texts = [m.text for m in await store.list_messages(new_sid)][1:]
        assert texts == ["second", "reply to second"]
        assert manager.current_session_id == new_sid

    @pytest.mark.asyncio
    async def test_explicit_turn_queued_behind_end_is_rejected(self, store, classifier):
        generator = BlockingGenerator(hold={"first"})
        manager = _manager(store, generator, classifier)
        snapshot = await manager.load_session()
        sid = snapshot.session.session_id

        first = asyncio.create_task(manager.send_message("first", session_id=sid))
        await generator.started.wait()
        ending = asyncio.create_task(manager.end_session(sid))
        await asyncio.sleep(0)
        second = asyncio.create_task(manager.send_message("second", session_id=sid))
        for _ in range(20):
            await asyncio.sleep(0.01)

        generator.release.set()
        await asyncio.gather(first, ending)
        with pytest.raises(SessionEnded):
            await second

        texts = [m.text for m in await store.list_messages(sid)][1:]
        assert texts == ["first", "reply to first"]
        assert generator.calls == ["first"]


class TestEvents:

    @pytest.mark.asyncio
    async def test_turn_completed_event(self, manager):
        received = []
        manager.subscribe(received.append)
        reply = await manager.send_message("hello")

        assert len(received) == 1
        event = received[0]
        assert isinstance(event, TurnCompleted)
        assert event.reply == reply
        assert event.type == "turn_completed"

    @pytest.mark.asyncio
    async def test_crisis_event_precedes_turn_completed(self, manager):
        received = []

        async def listener(event):
            received.append(event)

        manager.subscribe(listener)
        reply = await manager.send_message("I want to kill myself")

        assert [type(e) for e in received] == [CrisisDetected, TurnCompleted]
        assert received[0].message_id == reply.message.message_id
        assert received[0].matched_signal == "kill myself"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, manager):
        received = []
        unsubscribe = manager.subscribe(received.append)
        unsubscribe()
        await manager.send_message("hello")
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_turn(self, manager):
        def broken(event):
            raise RuntimeError("listener bug")

        received = []
        manager.subscribe(broken)
        manager.subscribe(received.append)
        reply = await manager.send_message("hello")
        assert not reply.used_fallback
        assert len(received) == 1


class TestCrisisSideChannel:

    @pytest.mark.asyncio
    async def test_acknowledge_clears_signal_but_not_session_flag(self, manager, store):
        reply = await manager.send_message("I want to die")
        sid = reply.message.session_id
        assert manager.crisis_pending(sid)

        manager.acknowledge_crisis(sid)
        assert not manager.crisis_pending(sid)
        assert manager.crisis_reason(sid) is None
        assert (await store.get_session(sid)).is_crisis_flagged

    @pytest.mark.asyncio
    async def test_later_ordinary_turn_keeps_session_flag(self, manager, store):
        reply = await manager.send_message("I want to die")
        sid = reply.message.session_id
        follow_up = await manager.send_message("thanks for listening", session_id=sid)
        assert follow_up.message.safety_flag == SafetyFlag.NONE
        assert (await store.get_session(sid)).crisis_flag_reason == "want to die"

    def test_unknown_session_has_no_pending_crisis(self, manager):
        assert not manager.crisis_pending("missing")
        assert manager.turn_state("missing") == TurnState.IDLE

    def test_describe(self, manager):
        info = manager.describe()
        assert info["generator"] == "stub"
        assert info["staleness_hours"] == 6.0
        assert info["crisis_signals"] > 0


class TestSessionBookkeeping:

    @pytest.mark.asyncio
    async def test_end_session_drops_per_session_state(self, manager, store):
        reply = await manager.send_message("I want to die")
        sid = reply.message.session_id
        assert sid in manager._turn_locks

        await manager.end_session(sid)

        assert sid not in manager._turn_locks
        assert sid not in manager._states
        assert not manager.crisis_pending(sid)
        assert sid not in store._append_locks
        assert sid not in store._last_timestamps

    @pytest.mark.asyncio
    async def test_ending_unknown_session_leaves_no_lock(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.end_session("missing")
        assert "missing" not in manager._turn_locks

    @pytest.mark.asyncio
    async def test_superseded_session_is_forgotten(self, manager, store, clock):
        reply = await manager.send_message("I want to die")
        old_sid = reply.message.session_id

        clock.advance(hours=7)
        snapshot = await manager.load_session()

        assert snapshot.session.session_id != old_sid
        assert old_sid not in manager._turn_locks
        assert not manager.crisis_pending(old_sid)
        assert old_sid not in store._last_timestamps
        assert not (await store.get_session(old_sid)).is_active
