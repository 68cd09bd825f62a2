"""
Shared test fixtures and configuration.
"""

import pytest
import os
import random
import tempfile
from datetime import datetime, timedelta, timezone

# Set test environment variables before importing app modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOCAL_STORAGE_PATH", os.path.join(tempfile.gettempdir(), "companion_test_data"))
os.environ.setdefault("LOG_FILE_ENABLED", "false")
# Never reach a real LLM from the test suite
os.environ["LLM_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

from companion.core.exceptions import GenerationError
from companion.core.safety import SafetyClassifier
from companion.core.session_manager import SessionManager
from companion.generation.base import ResponseGenerator
from companion.models import GeneratedReply, ToolId
from companion.storage import LocalStorage, MessageStore


class FakeClock:
    """Controllable UTC clock for the message store."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubGenerator(ResponseGenerator):
    """Returns a fixed reply and records every call."""

    name = "stub"

    def __init__(self, text="I'm here with you. What's on your mind?", tool=None, events=None):
        self.text = text
        self.tool = tool
        self.calls = []
        self.events = events

    async def generate(self, history, new_utterance):
        self.calls.append((list(history), new_utterance))
        if self.events is not None:
            self.events.append("generate")
        return GeneratedReply(text=self.text, suggested_tool=self.tool)


class FailingGenerator(ResponseGenerator):
    """Always fails with the given exception."""

    name = "failing"

    def __init__(self, exc=None):
        self.exc = exc or GenerationError("request timed out")
        self.calls = 0

    async def generate(self, history, new_utterance):
        self.calls += 1
        raise self.exc


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "data"))


@pytest.fixture
def store(storage, clock):
    return MessageStore(storage, clock=clock)


@pytest.fixture
def classifier():
    return SafetyClassifier()


@pytest.fixture
def stub_generator():
    return StubGenerator(tool=ToolId.BREATHE)


@pytest.fixture
def manager(store, stub_generator, classifier):
    return SessionManager(
        store=store,
        generator=stub_generator,
        classifier=classifier,
        rng=random.Random(7),
    )
