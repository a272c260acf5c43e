"""Tests for SubscriptionManager."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import TOURNAMENT_ID
from tourney_chat.backend import ChannelHandle, ChannelStatus
from tourney_chat.chat import (
    MessageStore,
    SubscriptionManager,
    chat_channel_key,
    reconnect_delay,
)
from tourney_chat.feedback import ToastCenter


def _row(body="hi", team_id=None, sender_id="bob", sender_name="Bob"):
    return {
        "tournament_id": TOURNAMENT_ID,
        "team_id": team_id,
        "sender_id": sender_id,
        "sender_name": sender_name,
        "message": body,
        "message_type": "text",
    }


async def _wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def manager(backend, alice, notifier, toasts, settings):
    return SubscriptionManager(backend, alice, notifier, toasts, settings=settings)


class TestReconnectDelay:
    """Tests for reconnect backoff."""

    def test_doubles_then_caps(self):
        """Test delays double per attempt up to the cap."""
        delays = [reconnect_delay(i, 1.0, 30.0) for i in range(7)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_channel_key(self, team_scope):
        """Test channel keys are derived from the room key."""
        assert chat_channel_key(team_scope) == "live-chat:t1:team-a"


class TestSubscriptionDelivery:
    """Tests for folding the change feed into stores."""

    @pytest.mark.asyncio
    async def test_insert_update_delete(self, backend, manager, general_scope):
        """Test all three change types reach the store."""
        store = MessageStore(backend, general_scope)
        await manager.subscribe(store)

        stored = await backend.insert_message(_row())
        assert [m.body for m in store.get_all()] == ["hi"]

        await backend.update_message(stored["id"], {"message": "edited", "is_edited": True})
        assert store.get(stored["id"]).body == "edited"
        assert store.get(stored["id"]).flags.is_edited

        await backend.delete_message(stored["id"])
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_team_isolation(
        self, backend, alice, bob, notifier, general_scope, team_scope
    ):
        """Test team rows never reach a general store and vice versa."""
        general_store = MessageStore(backend, general_scope)
        team_store = MessageStore(backend, team_scope)
        await SubscriptionManager(backend, alice, notifier, ToastCenter()).subscribe(
            general_store
        )
        await SubscriptionManager(backend, bob, notifier, ToastCenter()).subscribe(team_store)

        await backend.insert_message(_row(body="team only", team_id="team-a"))
        await backend.insert_message(_row(body="everyone"))

        assert [m.body for m in general_store.get_all()] == ["everyone"]
        assert [m.body for m in team_store.get_all()] == ["team only"]

    @pytest.mark.asyncio
    async def test_malformed_row_is_dropped(self, backend, manager, general_scope):
        """Test a malformed change row does not break the subscription."""
        store = MessageStore(backend, general_scope)
        await manager.subscribe(store)

        await backend.insert_message(dict(_row(), message_type="image"))
        await backend.insert_message(_row(body="fine"))

        assert [m.body for m in store.get_all()] == ["fine"]

    @pytest.mark.asyncio
    async def test_subscribe_reuses_channel_per_scope(self, backend, manager, general_scope):
        """Test subscribing twice to one scope opens one channel."""
        store = MessageStore(backend, general_scope)
        first = await manager.subscribe(store)
        second = await manager.subscribe(store)

        assert first is second
        assert backend.open_channel_count() == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, backend, manager, general_scope):
        """Test unsubscribing twice is harmless and stops delivery."""
        store = MessageStore(backend, general_scope)
        handle = await manager.subscribe(store)

        await manager.unsubscribe(handle)
        await manager.unsubscribe(handle)
        await backend.insert_message(_row())

        assert handle.closed
        assert len(store) == 0
        assert backend.open_channel_count() == 0
        assert manager.handle_for(general_scope) is None


class TestSubscriptionNotifications:
    """Tests for new-message notifications."""

    @pytest.mark.asyncio
    async def test_notifies_for_other_senders(self, backend, manager, notifier, general_scope):
        """Test a message from someone else triggers a notification."""
        await manager.subscribe(MessageStore(backend, general_scope))
        await backend.insert_message(_row(body="ready?"))

        notifier.notify.assert_called_once_with("New message from Bob", "ready?")

    @pytest.mark.asyncio
    async def test_no_notification_for_own_messages(
        self, backend, manager, notifier, general_scope
    ):
        """Test own messages never notify."""
        await manager.subscribe(MessageStore(backend, general_scope))
        await backend.insert_message(_row(sender_id="alice", sender_name="Alice"))

        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_muted_suppresses(self, backend, manager, notifier, general_scope):
        """Test muting suppresses notifications but not delivery."""
        store = MessageStore(backend, general_scope)
        await manager.subscribe(store)
        manager.set_muted(True)
        await backend.insert_message(_row())

        notifier.notify.assert_not_called()
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_focused_suppresses(self, backend, alice, notifier, toasts, general_scope):
        """Test a focused chat view does not notify."""
        manager = SubscriptionManager(
            backend, alice, notifier, toasts, is_focused=lambda: True
        )
        await manager.subscribe(MessageStore(backend, general_scope))
        await backend.insert_message(_row())

        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_block_store(
        self, backend, alice, toasts, general_scope
    ):
        """Test a raising notifier still lets the message land."""
        notifier = Mock()
        notifier.notify.side_effect = RuntimeError("no display")
        manager = SubscriptionManager(backend, alice, notifier, toasts)
        store = MessageStore(backend, general_scope)
        await manager.subscribe(store)

        await backend.insert_message(_row())

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_unknown_sender_name(self, backend, manager, notifier, general_scope):
        """Test notifications fall back to 'Someone'."""
        await manager.subscribe(MessageStore(backend, general_scope))
        await backend.insert_message(_row(sender_name=None))

        title, _ = notifier.notify.call_args.args
        assert title == "New message from Someone"


class TestSubscriptionReconnect:
    """Tests for reconnect after channel errors."""

    @pytest.mark.asyncio
    async def test_reconnects_and_reloads(self, backend, manager, general_scope):
        """Test a dropped channel re-subscribes and backfills the gap."""
        store = MessageStore(backend, general_scope)
        handle = await manager.subscribe(store)

        assert backend.drop_channel(chat_channel_key(general_scope)) == 1
        # Written while disconnected
        await backend.insert_message(_row(body="missed"))
        assert len(store) == 0

        await _wait_for(lambda: handle.reconnects == 1 and len(store) == 1)
        assert [m.body for m in store.get_all()] == ["missed"]
        assert backend.open_channel_count() == 1

        await backend.insert_message(_row(body="live again"))
        assert [m.body for m in store.get_all()] == ["missed", "live again"]

    @pytest.mark.asyncio
    async def test_gives_up_with_toast(self, alice, notifier, settings, general_scope):
        """Test exhausting reconnect attempts surfaces a toast."""
        statuses = {}

        async def subscribe_changes(key, table, filters, on_change, on_status=None):
            statuses["cb"] = on_status
            return ChannelHandle(channel_key=key)

        realtime = Mock()
        realtime.subscribe_changes = AsyncMock(side_effect=subscribe_changes)
        realtime.unsubscribe = AsyncMock()
        toasts = ToastCenter()
        manager = SubscriptionManager(realtime, alice, notifier, toasts, settings=settings)
        table = Mock()
        table.select_messages = AsyncMock(return_value=[])
        handle = await manager.subscribe(MessageStore(table, general_scope))

        realtime.subscribe_changes.side_effect = ConnectionError("offline")
        statuses["cb"](ChannelStatus.TIMED_OUT, None)
        await handle.reconnect_task

        assert toasts.last_error.text == "Chat connection lost"
        assert realtime.subscribe_changes.await_count == 1 + settings.reconnect_max_attempts
        await manager.close()

    @pytest.mark.asyncio
    async def test_unsubscribe_cancels_reconnect(self, backend, manager, general_scope):
        """Test closing during a reconnect stops it."""
        store = MessageStore(backend, general_scope)
        handle = await manager.subscribe(store)
        backend.drop_channel(chat_channel_key(general_scope))
        task = handle.reconnect_task

        await manager.unsubscribe(handle)
        await asyncio.sleep(0.1)

        assert task.done()
        assert handle.reconnects == 0
        assert backend.open_channel_count() == 0
