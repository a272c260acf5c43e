"""Typing presence broadcaster implementation."""

import asyncio
import time
from typing import Any, Callable, Protocol

from ..backend.ports import ChannelHandle, IRealtime
from ..logging_config import get_logger
from ..models import ComposeState, ConversationScope, CurrentUser, TypingSignal

logger = get_logger(__name__)

TYPING_CHANNEL_PREFIX = "typing"
TYPING_EVENT = "typing"
DEFAULT_TYPING_TIMEOUT = 3.0


def typing_channel_key(scope: ConversationScope) -> str:
    return f"{TYPING_CHANNEL_PREFIX}:{scope.room_key}"


class ITypingPresence(Protocol):
    """Ephemeral 'is typing' indicator for one room."""

    async def start(self) -> None:
        """Join the typing channel."""
        ...

    async def stop(self) -> None:
        """Leave the typing channel and cancel timers."""
        ...

    async def input_changed(self, text: str) -> None:
        """Drive the local composing state from the input box."""
        ...

    async def message_sent(self) -> None:
        """Local user sent a message: stop typing."""
        ...

    def typing_users(self) -> list[TypingSignal]:
        """Remote users currently typing (expired signals dropped)."""
        ...


class TypingPresence:
    """Broadcasts local typing state and tracks remote typists.

    Wire payload: {"userId", "userName", "isTyping"} on event "typing".
    Remote signals expire `timeout` seconds after the last `true`.
    """

    def __init__(
        self,
        realtime: IRealtime,
        scope: ConversationScope,
        user: CurrentUser,
        timeout: float = DEFAULT_TYPING_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._realtime = realtime
        self._scope = scope
        self._user = user
        self._timeout = timeout
        self._clock = clock

        self._state = ComposeState.IDLE
        self._signals: dict[str, TypingSignal] = {}
        self._handle: ChannelHandle | None = None
        self._idle_task: asyncio.Task | None = None
        self._last_sent_at: float | None = None

    @property
    def state(self) -> ComposeState:
        return self._state

    @property
    def channel_key(self) -> str:
        return typing_channel_key(self._scope)

    async def start(self) -> None:
        if self._handle is not None:
            return
        self._handle = await self._realtime.subscribe_broadcast(
            self.channel_key, TYPING_EVENT, self._on_broadcast
        )

    async def stop(self) -> None:
        self._cancel_idle_timer()
        if self._state == ComposeState.COMPOSING:
            self._state = ComposeState.IDLE
            await self._broadcast(False)
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                await self._realtime.unsubscribe(handle)
            except Exception as e:
                logger.warning("Failed to leave %s: %s", self.channel_key, e)
        self._signals.clear()

    async def input_changed(self, text: str) -> None:
        if not text.strip():
            await self._go_idle()
            return

        if self._state == ComposeState.IDLE:
            self._state = ComposeState.COMPOSING
            await self._broadcast(True)
        elif (
            self._last_sent_at is None
            or self._clock() - self._last_sent_at >= self._timeout / 2
        ):
            # Refresh remote expiry while the user keeps typing
            await self._broadcast(True)

        self._restart_idle_timer()

    async def message_sent(self) -> None:
        await self._go_idle()

    def typing_users(self) -> list[TypingSignal]:
        now = self._clock()
        for user_id in [uid for uid, s in self._signals.items() if s.is_expired(now)]:
            del self._signals[user_id]
        return list(self._signals.values())

    def typing_label(self) -> str:
        names = [signal.display_name for signal in self.typing_users()]
        if not names:
            return ""
        if len(names) == 1:
            return f"{names[0]} is typing..."
        return f"{', '.join(names)} are typing..."

    def _on_broadcast(self, payload: dict[str, Any]) -> None:
        user_id = payload.get("userId")
        if not user_id or user_id == self._user.id:
            return

        if payload.get("isTyping"):
            self._signals[user_id] = TypingSignal(
                user_id=user_id,
                display_name=payload.get("userName") or "Someone",
                expires_at=self._clock() + self._timeout,
            )
        else:
            self._signals.pop(user_id, None)

    async def _go_idle(self) -> None:
        self._cancel_idle_timer()
        if self._state == ComposeState.IDLE:
            return
        self._state = ComposeState.IDLE
        await self._broadcast(False)

    async def _broadcast(self, is_typing: bool) -> None:
        payload = {
            "userId": self._user.id,
            "userName": self._user.display_name,
            "isTyping": is_typing,
        }
        if is_typing:
            self._last_sent_at = self._clock()
        try:
            await self._realtime.send_broadcast(self.channel_key, TYPING_EVENT, payload)
        except Exception as e:
            # Presence is best effort
            logger.warning("Typing broadcast on %s failed: %s", self.channel_key, e)

    def _restart_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._idle_task = asyncio.get_running_loop().create_task(self._idle_after_timeout())

    def _cancel_idle_timer(self) -> None:
        if self._idle_task is not None and not self._idle_task.done():
            self._idle_task.cancel()
        self._idle_task = None

    async def _idle_after_timeout(self) -> None:
        try:
            await asyncio.sleep(self._timeout)
        except asyncio.CancelledError:
            return
        self._idle_task = None
        await self._go_idle()
