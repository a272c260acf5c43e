"""Application bootstrap and lifecycle management."""

import uuid
from typing import Protocol

from .backend import IBackend, create_backend
from .chat import ChatSession
from .config import ChatSettings
from .diagnostics import ConnectivityReport, check_connectivity
from .feedback import INotifier, LogNotifier, ToastCenter
from .logging_config import get_logger
from .models import ConversationScope, CurrentUser

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        settings: ChatSettings | None = None,
        backend: IBackend | None = None,
        notifier: INotifier | None = None,
    ):
        self._settings = settings or ChatSettings.from_env()

        # Components (will be initialized in start())
        self._backend: IBackend | None = backend
        self._notifier: INotifier | None = notifier
        self._sessions: dict[str, ChatSession] = {}
        self._started = False

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application (backend=%s)", self._settings.backend)

        # 1. Backend (no dependencies)
        if self._backend is None:
            self._backend = create_backend(self._settings)
        await self._backend.init()
        logger.info("Backend initialized")

        # 2. Notifier (sessions deliver notifications through it)
        if self._notifier is None:
            self._notifier = LogNotifier()

        self._started = True
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        await self._close_sessions()
        if self._backend:
            await self._backend.close()
            logger.info("Backend closed")
        self._started = False

    async def reset(self) -> None:
        """Reset data between test runs."""
        # 1. Close live channels
        await self._close_sessions()

        # 2. Clear backend data
        if self._backend:
            await self._backend.clear()
            logger.info("Backend cleared")
        logger.info("Reset complete")

    async def open_session(
        self,
        user: CurrentUser,
        scope: ConversationScope,
        organizer_id: str | None = None,
    ) -> tuple[str, ChatSession]:
        """Create a session and open it. The session is kept even if open() fails."""
        session = ChatSession(
            self.backend,
            user,
            scope,
            ToastCenter(),
            self.notifier,
            settings=self._settings,
            organizer_id=organizer_id,
        )
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = session
        await session.open()
        return session_id, session

    def get_session(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    async def close_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def check_connectivity(self) -> ConnectivityReport:
        return await check_connectivity(
            self.backend, timeout=self._settings.connectivity_timeout
        )

    async def _close_sessions(self) -> None:
        sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            await session.close()
        if sessions:
            logger.info("Closed %d chat sessions", len(sessions))

    @property
    def settings(self) -> ChatSettings:
        return self._settings

    @property
    def sessions(self) -> dict[str, ChatSession]:
        return dict(self._sessions)

    @property
    def backend(self) -> IBackend:
        """Get backend instance."""
        if not self._started or not self._backend:
            raise RuntimeError("Application not started")
        return self._backend

    @property
    def notifier(self) -> INotifier:
        """Get notifier instance."""
        if not self._notifier:
            raise RuntimeError("Application not started")
        return self._notifier
