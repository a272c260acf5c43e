"""Pytest configuration and fixtures."""

import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

TOURNAMENT_ID = "t1"
ORGANIZER_ID = "org"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def backend():
    """Create in-memory local backend with one tournament."""
    from tourney_chat.backend import LocalBackend

    be = LocalBackend(":memory:")
    await be.init()
    await be.add_tournament(TOURNAMENT_ID, ORGANIZER_ID)
    await be.register_player(TOURNAMENT_ID, "alice")
    await be.register_player(TOURNAMENT_ID, "bob")
    yield be
    await be.close()


@pytest.fixture
def settings():
    """Settings with fast reconnects."""
    from tourney_chat.config import ChatSettings

    return ChatSettings(
        database_url=":memory:",
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        reconnect_max_attempts=3,
    )


@pytest.fixture
def general_scope():
    from tourney_chat.models import ConversationScope

    return ConversationScope(TOURNAMENT_ID)


@pytest.fixture
def team_scope():
    from tourney_chat.models import ConversationScope

    return ConversationScope(TOURNAMENT_ID, "team-a")


@pytest.fixture
def alice():
    from tourney_chat.models import CurrentUser

    return CurrentUser(id="alice", display_name="Alice")


@pytest.fixture
def bob():
    from tourney_chat.models import CurrentUser

    return CurrentUser(id="bob", display_name="Bob")


@pytest.fixture
def organizer():
    from tourney_chat.models import CurrentUser, Role

    return CurrentUser(id=ORGANIZER_ID, display_name="Olga", role=Role.ORGANIZER)


@pytest.fixture
def toasts():
    from tourney_chat.feedback import ToastCenter

    return ToastCenter()


@pytest.fixture
def notifier():
    """Create mock notifier."""
    return Mock()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def make_session(backend, settings, notifier, clock):
    """Factory for opened-or-not chat sessions on the shared backend."""
    from tourney_chat.chat import ChatSession
    from tourney_chat.feedback import ToastCenter

    sessions = []

    def _make(user, scope, organizer_id=ORGANIZER_ID, **overrides):
        session_settings = replace(settings, **overrides) if overrides else settings
        session = ChatSession(
            backend,
            user,
            scope,
            ToastCenter(),
            notifier,
            settings=session_settings,
            organizer_id=organizer_id,
            clock=clock,
        )
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        await session.close()


def make_row(**overrides):
    """A valid chat_messages row (as returned by the table API)."""
    row = {
        "id": "m1",
        "tournament_id": TOURNAMENT_ID,
        "team_id": None,
        "sender_id": "alice",
        "sender_name": "Alice",
        "message": "hello",
        "message_type": "text",
        "reactions": [],
        "is_edited": False,
        "is_pinned": False,
        "is_announcement": False,
        "created_at": "2025-01-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row
