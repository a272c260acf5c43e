"""SIM implementation - scripted tournament chat scenario."""

import asyncio
import random
from typing import Any, Protocol

import httpx

from tourney_chat.logging_config import get_logger

logger = get_logger(__name__)

TOURNAMENT_ID = "sim-tournament"
ORGANIZER = {"user_id": "sim-organizer", "display_name": "Olga", "role": "organizer"}
PLAYERS = [
    {"user_id": "sim-player-1", "display_name": "Alice", "role": "player"},
    {"user_id": "sim-player-2", "display_name": "Bob", "role": "player"},
    {"user_id": "sim-player-3", "display_name": "Charlie", "role": "player"},
]
MESSAGES = [
    "Hi all, ready for the weekend?",
    "Which court are we on?",
    "See you at 9!",
]
REACTIONS = ["👍", "🔥", "🎉"]


class ISim(Protocol):
    """Generate chat traffic through the HTTP gateway."""

    async def start(self) -> None:
        """Start scripted scenario."""
        ...

    async def stop(self) -> None:
        """Stop scenario."""
        ...


class Sim:
    """SIM with a scripted scenario: organizer plus players in one tournament."""

    def __init__(
        self,
        api_url: str = "http://localhost:8000",
        pace: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = api_url
        self._pace = pace
        self._transport = transport
        self._running = False
        self._task: asyncio.Task | None = None
        self._client: httpx.AsyncClient | None = None
        self._sessions: dict[str, str] = {}  # user id -> session id

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start scripted scenario."""
        if self._running:
            return

        self._running = True
        self._client = httpx.AsyncClient(
            base_url=self._api_url, timeout=10.0, transport=self._transport
        )

        # Start background task
        self._task = asyncio.create_task(self._run_scenario())

    async def stop(self) -> None:
        """Stop scenario."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._client:
            await self._close_sessions()
            await self._client.aclose()
            self._client = None

    async def _pause(self) -> None:
        await asyncio.sleep(random.uniform(0.5, 1.5) * self._pace)

    async def _run_scenario(self) -> None:
        """Seed, join, then chat for a few rounds."""
        try:
            await self._post(
                "/api/control/tournaments",
                {
                    "tournament_id": TOURNAMENT_ID,
                    "organizer_id": ORGANIZER["user_id"],
                    "player_ids": [p["user_id"] for p in PLAYERS],
                },
            )

            for user in [ORGANIZER, *PLAYERS]:
                data = await self._post(
                    "/api/chat/sessions",
                    {
                        **user,
                        "tournament_id": TOURNAMENT_ID,
                        "organizer_id": ORGANIZER["user_id"],
                    },
                )
                if data:
                    self._sessions[user["user_id"]] = data["session_id"]

            organizer_session = self._sessions.get(ORGANIZER["user_id"])
            if organizer_session:
                await self._post(
                    f"/api/chat/sessions/{organizer_session}/announcements",
                    {"body": "Welcome! Check-in opens at 8:30."},
                )

            for round_no in range(len(MESSAGES)):
                for player in PLAYERS:
                    if not self._running:
                        return
                    session_id = self._sessions.get(player["user_id"])
                    if not session_id:
                        continue
                    await self._chat_turn(session_id, MESSAGES[round_no])
                    await self._pause()

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("SIM scenario error: %s", e)

    async def _chat_turn(self, session_id: str, text: str) -> None:
        """Type, send, and react to the newest message of someone else."""
        base = f"/api/chat/sessions/{session_id}"
        await self._post(f"{base}/typing", {"text": text[: len(text) // 2]})
        await self._pause()
        await self._post(f"{base}/typing", {"text": text})
        message = await self._post(f"{base}/messages", {"body": text})
        if not message:
            return
        logger.info("SIM: %s -> %s", message["sender_name"], text)

        messages = await self._get(f"{base}/messages")
        others = [m for m in messages or [] if m["sender_id"] != message["sender_id"]]
        if others:
            await self._post(
                f"{base}/messages/{others[-1]['id']}/reactions",
                {"emoji": random.choice(REACTIONS)},
            )

    async def _close_sessions(self) -> None:
        for session_id in list(self._sessions.values()):
            try:
                await self._client.delete(f"/api/chat/sessions/{session_id}")
            except Exception as e:
                logger.warning("SIM: Failed to close session %s: %s", session_id, e)
        self._sessions.clear()

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        """POST via HTTP API; returns JSON or None on error."""
        if not self._client:
            return None
        try:
            response = await self._client.post(path, json=payload)
        except Exception as e:
            logger.error("SIM: Request to %s failed: %s", path, e)
            return None
        if response.status_code != 200:
            logger.error("SIM: %s returned %s: %s", path, response.status_code, response.text)
            return None
        return response.json()

    async def _get(self, path: str) -> Any:
        if not self._client:
            return None
        try:
            response = await self._client.get(path)
        except Exception as e:
            logger.error("SIM: Request to %s failed: %s", path, e)
            return None
        if response.status_code != 200:
            logger.error("SIM: %s returned %s", path, response.status_code)
            return None
        return response.json()
