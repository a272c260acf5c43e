"""Tests for Application."""

from unittest.mock import Mock

import pytest

from tourney_chat.app import Application
from tourney_chat.backend import LocalBackend
from tourney_chat.config import ChatSettings
from tourney_chat.feedback import LogNotifier
from tourney_chat.models import ConversationScope, CurrentUser


@pytest.fixture
def app_settings():
    return ChatSettings(database_url=":memory:")


async def _seeded(app_settings, notifier=None):
    app = Application(settings=app_settings, notifier=notifier)
    await app.start()
    await app.backend.add_tournament("t1", "org")
    await app.backend.register_player("t1", "alice")
    return app


class TestApplicationStart:
    """Tests for Application.start()."""

    @pytest.mark.asyncio
    async def test_start_initializes_components(self, app_settings):
        """Test that start creates the backend and notifier."""
        app = Application(settings=app_settings)
        await app.start()

        assert isinstance(app.backend, LocalBackend)
        assert isinstance(app.notifier, LogNotifier)
        await app.backend.ping()
        await app.stop()

    @pytest.mark.asyncio
    async def test_backend_requires_start(self, app_settings):
        """Test accessing the backend before start fails."""
        app = Application(settings=app_settings)
        with pytest.raises(RuntimeError, match="Application not started"):
            app.backend

    @pytest.mark.asyncio
    async def test_unknown_backend_kind(self):
        """Test an unknown backend setting is rejected."""
        app = Application(settings=ChatSettings(backend="carrier-pigeon"))
        with pytest.raises(ValueError):
            await app.start()

    @pytest.mark.asyncio
    async def test_supabase_requires_credentials(self):
        """Test the Supabase backend refuses to start without credentials."""
        app = Application(settings=ChatSettings(backend="supabase"))
        with pytest.raises(ValueError):
            await app.start()


class TestApplicationSessions:
    """Tests for session bookkeeping."""

    @pytest.mark.asyncio
    async def test_open_and_close_session(self, app_settings):
        """Test sessions are tracked until closed."""
        notifier = Mock()
        app = await _seeded(app_settings, notifier)

        session_id, session = await app.open_session(
            CurrentUser("alice", "Alice"), ConversationScope("t1"), organizer_id="org"
        )

        assert session.is_open
        assert app.get_session(session_id) is session
        assert await app.close_session(session_id)
        assert not await app.close_session(session_id)
        assert app.get_session(session_id) is None
        await app.stop()

    @pytest.mark.asyncio
    async def test_failed_open_is_still_tracked(self, app_settings):
        """Test a denied session stays addressable for its toasts."""
        app = await _seeded(app_settings)

        session_id, session = await app.open_session(
            CurrentUser("mallory", "Mallory"), ConversationScope("t1")
        )

        assert not session.is_open
        assert app.get_session(session_id) is session
        await app.stop()

    @pytest.mark.asyncio
    async def test_reset_closes_sessions_and_clears_data(self, app_settings):
        """Test reset drops sessions, channels and rows."""
        app = await _seeded(app_settings)
        _, session = await app.open_session(
            CurrentUser("alice", "Alice"), ConversationScope("t1")
        )
        await session.composer.send("hello")

        await app.reset()

        assert app.sessions == {}
        assert app.backend.open_channel_count() == 0
        assert await app.backend.select_messages(ConversationScope("t1"), 10) == []
        await app.stop()

    @pytest.mark.asyncio
    async def test_check_connectivity(self, app_settings):
        """Test the application runs diagnostics against its backend."""
        app = await _seeded(app_settings)
        report = await app.check_connectivity()
        assert report.ok
        await app.stop()
