"""Tests for SupabaseBackend against a mocked async client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from tourney_chat.backend import ChangeType, ChannelStatus, SupabaseBackend
from tourney_chat.backend.supabase_backend import _server_filter
from tourney_chat.errors import BackendError
from tourney_chat.models import ConversationScope


def _query(data):
    """PostgREST-style builder whose every step returns itself."""
    query = MagicMock()
    for step in ("select", "eq", "is_", "order", "limit", "insert", "update", "delete"):
        getattr(query, step).return_value = query
    query.execute = AsyncMock(return_value=SimpleNamespace(data=data))
    return query


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def supabase(client):
    return SupabaseBackend("https://x.supabase.co", "key", client=client)


class TestSupabaseTables:
    """Tests for table calls."""

    @pytest.mark.asyncio
    async def test_select_general_room(self, supabase, client):
        """Test general rooms filter on a null team_id."""
        query = _query([{"id": "m1"}])
        client.table.return_value = query

        rows = await supabase.select_messages(ConversationScope("t1"), 50)

        assert rows == [{"id": "m1"}]
        client.table.assert_called_with("chat_messages")
        query.eq.assert_called_with("tournament_id", "t1")
        query.is_.assert_called_once_with("team_id", "null")
        query.order.assert_called_once_with("created_at", desc=True)
        query.limit.assert_called_once_with(50)

    @pytest.mark.asyncio
    async def test_insert_error_wrapped(self, supabase, client):
        """Test client errors surface as BackendError."""
        query = _query(None)
        query.execute.side_effect = RuntimeError("401")
        client.table.return_value = query

        with pytest.raises(BackendError):
            await supabase.insert_message({"message": "hi"})

    @pytest.mark.asyncio
    async def test_update_without_row_fails(self, supabase, client):
        """Test an update that matched nothing is an error."""
        client.table.return_value = _query([])
        with pytest.raises(BackendError):
            await supabase.update_message("m1", {"is_pinned": True})

    @pytest.mark.asyncio
    async def test_toggle_reaction_uses_rpc(self, supabase, client):
        """Test reactions toggle through the server-side function."""
        client.rpc.return_value = _query([{"id": "m1", "reactions": []}])

        row = await supabase.toggle_reaction("m1", "👍", "alice")

        assert row["id"] == "m1"
        client.rpc.assert_called_once_with(
            "toggle_message_reaction",
            {"p_message_id": "m1", "p_emoji": "👍", "p_user_id": "alice"},
        )

    @pytest.mark.asyncio
    async def test_access_via_organizer(self, supabase, client):
        """Test organizers have access without a registration."""
        client.table.side_effect = [_query([]), _query([{"organizer_id": "org"}])]
        assert await supabase.can_access_chat("org", "t1")

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        """Test calls before init raise."""
        with pytest.raises(RuntimeError):
            SupabaseBackend("u", "k").client

    @pytest.mark.asyncio
    async def test_init_requires_credentials(self):
        """Test init refuses empty credentials."""
        with pytest.raises(ValueError):
            await SupabaseBackend("", "").init()


class TestSupabaseRealtime:
    """Tests for realtime subscriptions."""

    def test_server_filter_prefers_team(self):
        """Test the most specific column becomes the server filter."""
        assert _server_filter({"tournament_id": "t1", "team_id": "a"}) == "team_id=eq.a"
        assert _server_filter({"tournament_id": "t1", "team_id": None}) == "tournament_id=eq.t1"
        assert _server_filter({}) is None

    @pytest.mark.asyncio
    async def test_changes_filtered_client_side(self, supabase, client):
        """Test rows outside the scope are dropped and statuses mapped."""
        channel = MagicMock()
        channel.subscribe = AsyncMock()
        client.channel.return_value = channel
        events, statuses = [], []

        await supabase.subscribe_changes(
            "live-chat:t1:general",
            "chat_messages",
            ConversationScope("t1").row_filter(),
            events.append,
            lambda status, error: statuses.append(status),
        )

        callbacks = {
            c.args[0]: c.kwargs["callback"] for c in channel.on_postgres_changes.call_args_list
        }
        assert set(callbacks) == {t.value for t in ChangeType}
        assert channel.on_postgres_changes.call_args.kwargs["filter"] == "tournament_id=eq.t1"

        callbacks["INSERT"]({"data": {"record": {"id": "m1", "tournament_id": "t1", "team_id": "a"}}})
        callbacks["INSERT"]({"data": {"record": {"id": "m2", "tournament_id": "t1", "team_id": None}}})
        callbacks["DELETE"]({"data": {"old_record": {"id": "m2"}}})

        assert [(e.type, (e.record or e.old_record)["id"]) for e in events] == [
            (ChangeType.INSERT, "m2"),
            (ChangeType.DELETE, "m2"),
        ]

        status_callback = channel.subscribe.await_args.args[0]
        status_callback("SUBSCRIBED", None)
        status_callback("CHANNEL_ERROR", RuntimeError("x"))
        assert statuses == [ChannelStatus.SUBSCRIBED, ChannelStatus.CHANNEL_ERROR]

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_channel(self, supabase, client):
        """Test unsubscribe removes the channel once."""
        channel = MagicMock()
        channel.subscribe = AsyncMock()
        client.channel.return_value = channel
        client.remove_channel = AsyncMock()

        handle = await supabase.subscribe_broadcast("typing:t1:general", "typing", print)
        await supabase.unsubscribe(handle)
        await supabase.unsubscribe(handle)

        client.remove_channel.assert_awaited_once_with(channel)
