"""Connectivity checks against the configured backend."""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..backend.ports import CHAT_MESSAGES_TABLE, ChannelHandle, ChannelStatus, IBackend
from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CHECK_TIMEOUT = 5.0

# Unsubscribes of channels that finished opening after their check timed out
_late_cleanups: set[asyncio.Task] = set()


@dataclass
class CheckResult:
    """Outcome of one connectivity check."""

    name: str
    ok: bool
    latency_ms: float | None = None
    error: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectivityReport:
    """All checks of one diagnostics run."""

    checks: list[CheckResult]

    @property
    def ok(self) -> bool:
        return all(check.ok for check in self.checks)

    @property
    def failed(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.ok]


async def _check_table(backend: IBackend) -> dict[str, Any]:
    await backend.ping()
    return {}


async def _check_storage(backend: IBackend) -> dict[str, Any]:
    buckets = await backend.list_buckets()
    return {"buckets": buckets}


async def _check_realtime(backend: IBackend) -> dict[str, Any]:
    """Open a throwaway change channel and wait until the server confirms it."""
    loop = asyncio.get_running_loop()
    joined: asyncio.Future = loop.create_future()

    def on_status(status: ChannelStatus, error: Exception | None) -> None:
        if joined.done():
            return
        if status == ChannelStatus.SUBSCRIBED:
            joined.set_result(status)
        else:
            joined.set_exception(error or ConnectionError(f"Channel {status.value}"))

    subscribing = asyncio.ensure_future(
        backend.subscribe_changes(
            f"diagnostics:{uuid.uuid4()}",
            CHAT_MESSAGES_TABLE,
            {"id": str(uuid.uuid4())},
            lambda event: None,
            on_status,
        )
    )
    try:
        handle = await asyncio.shield(subscribing)
    except asyncio.CancelledError:
        subscribing.add_done_callback(lambda task: _unsubscribe_late(backend, task))
        raise

    try:
        await joined
    finally:
        await backend.unsubscribe(handle)
    return {}


async def _close_channel(backend: IBackend, handle: ChannelHandle) -> None:
    try:
        await backend.unsubscribe(handle)
    except Exception as e:
        logger.warning("Failed to close diagnostics channel: %s", e)


def _unsubscribe_late(backend: IBackend, subscribing: asyncio.Future) -> None:
    if subscribing.cancelled() or subscribing.exception() is not None:
        return
    task = asyncio.ensure_future(_close_channel(backend, subscribing.result()))
    _late_cleanups.add(task)
    task.add_done_callback(_late_cleanups.discard)


async def _run_check(
    name: str,
    check: Callable[[IBackend], Awaitable[dict[str, Any]]],
    backend: IBackend,
    timeout: float,
) -> CheckResult:
    started = time.perf_counter()
    try:
        detail = await asyncio.wait_for(check(backend), timeout=timeout)
    except asyncio.TimeoutError:
        error = f"{name} check timed out after {timeout:g} seconds"
        logger.warning(error)
        return CheckResult(name=name, ok=False, error=error)
    except Exception as e:
        logger.warning("%s check failed: %s", name, e)
        return CheckResult(name=name, ok=False, error=str(e))

    latency_ms = round((time.perf_counter() - started) * 1000, 1)
    return CheckResult(name=name, ok=True, latency_ms=latency_ms, detail=detail)


CHECKS: tuple[tuple[str, Callable[[IBackend], Awaitable[dict[str, Any]]]], ...] = (
    ("Table", _check_table),
    ("Storage", _check_storage),
    ("Realtime", _check_realtime),
)


async def check_connectivity(
    backend: IBackend, timeout: float = DEFAULT_CHECK_TIMEOUT
) -> ConnectivityReport:
    """Run every check, each bounded by `timeout` seconds."""
    results = await asyncio.gather(
        *(_run_check(name, check, backend, timeout) for name, check in CHECKS)
    )
    report = ConnectivityReport(checks=list(results))
    if report.ok:
        logger.info("Connectivity OK")
    else:
        logger.warning(
            "Connectivity degraded: %s", ", ".join(c.name for c in report.failed)
        )
    return report
