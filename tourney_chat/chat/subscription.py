"""Realtime subscription manager implementation."""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Protocol

from ..backend.ports import (
    CHAT_MESSAGES_TABLE,
    ChangeEvent,
    ChangeType,
    ChannelHandle,
    ChannelStatus,
    IRealtime,
)
from ..config import ChatSettings
from ..feedback import INotifier, IToastSink
from ..logging_config import get_logger
from ..models import ChatMessage, ConversationScope, CurrentUser, message_from_row, preview_text
from .store import MessageStore

logger = get_logger(__name__)

CHAT_CHANNEL_PREFIX = "live-chat"


def chat_channel_key(scope: ConversationScope) -> str:
    return f"{CHAT_CHANNEL_PREFIX}:{scope.room_key}"


def reconnect_delay(attempt: int, base: float, max_delay: float) -> float:
    """Exponential backoff: base * 2**attempt, capped at max_delay."""
    return min(base * (2**attempt), max_delay)


@dataclass(eq=False)
class SubscriptionHandle:
    """Live change subscription of one store."""

    scope: ConversationScope
    store: MessageStore
    channel: ChannelHandle | None = None
    closed: bool = False
    reconnects: int = 0
    reconnect_task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def channel_key(self) -> str:
        return chat_channel_key(self.scope)


class ISubscriptionManager(Protocol):
    """Keeps stores in sync with the chat_messages change feed."""

    async def subscribe(self, store: MessageStore) -> SubscriptionHandle:
        """Open (or reuse) the channel for the store's scope."""
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Close the channel. Idempotent."""
        ...

    def set_muted(self, muted: bool) -> None:
        ...

    async def close(self) -> None:
        """Unsubscribe everything."""
        ...


class SubscriptionManager:
    """One change channel per scope, folded into that scope's store."""

    def __init__(
        self,
        realtime: IRealtime,
        user: CurrentUser,
        notifier: INotifier,
        toasts: IToastSink,
        settings: ChatSettings | None = None,
        is_focused: Callable[[], bool] | None = None,
    ):
        self._realtime = realtime
        self._user = user
        self._notifier = notifier
        self._toasts = toasts
        self._settings = settings or ChatSettings()
        self._is_focused = is_focused or (lambda: False)
        self._handles: dict[ConversationScope, SubscriptionHandle] = {}
        self._muted = False

    @property
    def muted(self) -> bool:
        return self._muted

    def set_muted(self, muted: bool) -> None:
        self._muted = muted

    def handle_for(self, scope: ConversationScope) -> SubscriptionHandle | None:
        return self._handles.get(scope)

    async def subscribe(self, store: MessageStore) -> SubscriptionHandle:
        """Open the change channel for the store's scope.

        A scope that is already subscribed returns its existing handle.
        """
        existing = self._handles.get(store.scope)
        if existing is not None and not existing.closed:
            return existing

        handle = SubscriptionHandle(scope=store.scope, store=store)
        handle.channel = await self._open_channel(handle)
        self._handles[store.scope] = handle
        logger.info("Subscribed to %s", handle.channel_key)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True

        if handle.reconnect_task and not handle.reconnect_task.done():
            handle.reconnect_task.cancel()
            try:
                await handle.reconnect_task
            except asyncio.CancelledError:
                pass

        if self._handles.get(handle.scope) is handle:
            del self._handles[handle.scope]

        if handle.channel is not None:
            try:
                await self._realtime.unsubscribe(handle.channel)
            except Exception as e:
                logger.warning("Failed to unsubscribe %s: %s", handle.channel_key, e)
        logger.info("Unsubscribed from %s", handle.channel_key)

    async def close(self) -> None:
        for handle in list(self._handles.values()):
            await self.unsubscribe(handle)

    async def _open_channel(self, handle: SubscriptionHandle) -> ChannelHandle:
        return await self._realtime.subscribe_changes(
            handle.channel_key,
            CHAT_MESSAGES_TABLE,
            handle.scope.row_filter(),
            lambda event: self._on_change(handle, event),
            lambda status, error: self._on_status(handle, status, error),
        )

    def _on_change(self, handle: SubscriptionHandle, event: ChangeEvent) -> None:
        if handle.closed:
            return
        store = handle.store

        if event.type == ChangeType.DELETE:
            message_id = (event.old_record or {}).get("id")
            if message_id:
                store.apply_delete(str(message_id))
            return

        row = event.record
        if row is None or not handle.scope.matches(row):
            return
        try:
            message = message_from_row(row)
        except ValueError as e:
            logger.warning(
                "Dropping malformed %s row on %s: %s",
                event.type.value,
                handle.channel_key,
                e,
            )
            return

        if event.type == ChangeType.INSERT:
            if store.apply_insert(message):
                self._maybe_notify(message)
        else:
            store.apply_update(message)

    def _maybe_notify(self, message: ChatMessage) -> None:
        if message.sender_id == self._user.id or self._muted or self._is_focused():
            return
        try:
            self._notifier.notify(
                f"New message from {message.sender_name or 'Someone'}",
                preview_text(message),
            )
        except Exception as e:
            logger.error("Notifier failed: %s", e)

    def _on_status(
        self,
        handle: SubscriptionHandle,
        status: ChannelStatus,
        error: Exception | None,
    ) -> None:
        if handle.closed:
            return
        if status == ChannelStatus.SUBSCRIBED:
            logger.debug("Channel %s is live", handle.channel_key)
            return

        logger.warning(
            "Channel %s reported %s: %s", handle.channel_key, status.value, error
        )
        if handle.reconnect_task is None or handle.reconnect_task.done():
            handle.reconnect_task = asyncio.get_running_loop().create_task(
                self._reconnect(handle)
            )

    async def _reconnect(self, handle: SubscriptionHandle) -> None:
        """Re-subscribe with backoff, then reload the store to fill the gap."""
        if handle.channel is not None:
            try:
                await self._realtime.unsubscribe(handle.channel)
            except Exception as e:
                logger.warning("Failed to drop stale channel %s: %s", handle.channel_key, e)
            handle.channel = None

        max_attempts = self._settings.reconnect_max_attempts
        for attempt in range(max_attempts):
            delay = reconnect_delay(
                attempt,
                self._settings.reconnect_base_delay,
                self._settings.reconnect_max_delay,
            )
            await asyncio.sleep(delay)
            if handle.closed:
                return

            try:
                handle.channel = await self._open_channel(handle)
            except Exception as e:
                logger.warning(
                    "Reconnect attempt %d/%d for %s failed: %s",
                    attempt + 1,
                    max_attempts,
                    handle.channel_key,
                    e,
                )
                continue

            handle.reconnects += 1
            handle.reconnect_task = None
            logger.info(
                "Reconnected %s after %d attempt(s)", handle.channel_key, attempt + 1
            )
            if not await handle.store.load():
                self._toasts.error("Failed to load chat messages")
            return

        logger.error(
            "Giving up on %s after %d reconnect attempts", handle.channel_key, max_attempts
        )
        self._toasts.error("Chat connection lost")
