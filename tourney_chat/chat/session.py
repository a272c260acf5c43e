"""Chat session: one user's view of one chat room."""

import time
from typing import Callable

from ..backend.ports import IBackend
from ..config import ChatSettings
from ..feedback import INotifier, IToastSink
from ..logging_config import chat_log_context, get_logger
from ..models import ConversationScope, CurrentUser
from .composer import MessageComposer, ReactionMode
from .presence import TypingPresence
from .store import MessageStore
from .subscription import SubscriptionHandle, SubscriptionManager
from .uploader import AttachmentUploader

logger = get_logger(__name__)

ACCESS_DENIED_TOAST = "You do not have access to this chat"
LOAD_FAILED_TOAST = "Failed to load chat messages"


class ChatSession:
    """Binds store, subscription, typing presence and composer for one room."""

    def __init__(
        self,
        backend: IBackend,
        user: CurrentUser,
        scope: ConversationScope,
        toasts: IToastSink,
        notifier: INotifier,
        settings: ChatSettings | None = None,
        organizer_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._user = user
        self._toasts = toasts
        self._settings = settings or ChatSettings()
        self._organizer_id = organizer_id
        self._clock = clock
        self._focused = False
        self._is_open = False

        self._subscriptions = SubscriptionManager(
            backend,
            user,
            notifier,
            toasts,
            settings=self._settings,
            is_focused=lambda: self._focused,
        )
        self._uploader = AttachmentUploader(backend, self._settings)
        self._handle: SubscriptionHandle | None = None
        self._bind(scope)

    def _bind(self, scope: ConversationScope) -> None:
        self._scope = scope
        self._store = MessageStore(self._backend, scope, limit=self._settings.message_limit)
        self._presence = TypingPresence(
            self._backend,
            scope,
            self._user,
            timeout=self._settings.typing_timeout,
            clock=self._clock,
        )
        self._composer = MessageComposer(
            self._backend,
            self._store,
            self._user,
            self._toasts,
            uploader=self._uploader,
            presence=self._presence,
            reaction_mode=ReactionMode(self._settings.reaction_mode),
            organizer_id=self._organizer_id,
        )

    async def open(self) -> bool:
        """Check access, load history and go live. False (with a toast) on failure."""
        if self._is_open:
            return True
        with chat_log_context(room=self._scope.room_key, user=self._user.id):
            return await self._open()

    async def _open(self) -> bool:
        if not await self._can_access():
            self._toasts.error(ACCESS_DENIED_TOAST)
            return False

        if not await self._store.load():
            self._toasts.error(LOAD_FAILED_TOAST)
            return False

        try:
            self._handle = await self._subscriptions.subscribe(self._store)
            await self._presence.start()
        except Exception as e:
            logger.error("Failed to open chat %s: %s", self._scope.room_key, e, exc_info=True)
            await self._close_channels()
            self._toasts.error(LOAD_FAILED_TOAST)
            return False

        self._is_open = True
        logger.info("Chat %s opened for %s", self._scope.room_key, self._user.id)
        return True

    async def close(self) -> None:
        await self._close_channels()
        if self._is_open:
            logger.info("Chat %s closed for %s", self._scope.room_key, self._user.id)
        self._is_open = False

    async def switch_scope(self, scope: ConversationScope) -> bool:
        """Move to another room (e.g. general to team chat) without leaking channels."""
        if scope == self._scope and self._is_open:
            return True
        await self.close()
        self._bind(scope)
        return await self.open()

    def set_muted(self, muted: bool) -> None:
        self._subscriptions.set_muted(muted)

    def set_focused(self, focused: bool) -> None:
        self._focused = focused

    async def _can_access(self) -> bool:
        if self._user.is_admin:
            return True
        try:
            return await self._backend.can_access_chat(self._user.id, self._scope.tournament_id)
        except Exception as e:
            logger.error("Access check for %s failed: %s", self._user.id, e, exc_info=True)
            return False

    async def _close_channels(self) -> None:
        await self._presence.stop()
        await self._subscriptions.close()
        self._handle = None

    @property
    def user(self) -> CurrentUser:
        return self._user

    @property
    def scope(self) -> ConversationScope:
        return self._scope

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def muted(self) -> bool:
        return self._subscriptions.muted

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def composer(self) -> MessageComposer:
        return self._composer

    @property
    def presence(self) -> TypingPresence:
        return self._presence

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._handle

    @property
    def toasts(self) -> IToastSink:
        return self._toasts
