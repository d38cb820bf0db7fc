"""Timeout defaults and the inactivity watchdog for sessions."""

from __future__ import annotations

import inspect
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any

import anyio

from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)


def _env_seconds(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(
            "[timeout] Ignoring invalid %s=%r, using %.1fs",
            name,
            raw,
            default,
        )
        return default
    return max(value, 0.0)


# Timeout constants for session operations
INIT_TIMEOUT_SEC = _env_seconds("CLAUDE_AGENTS_SDK_INIT_TIMEOUT", 60.0)
HOOK_TIMEOUT_SEC = _env_seconds("CLAUDE_AGENTS_SDK_HOOK_TIMEOUT", 30.0)
INACTIVITY_TIMEOUT_SEC = _env_seconds("CLAUDE_AGENTS_SDK_INACTIVITY_TIMEOUT", 600.0)  # 0 disables
CONTROL_TIMEOUT_SEC = _env_seconds("CLAUDE_AGENTS_SDK_CONTROL_TIMEOUT", 60.0)
SHUTDOWN_GRACE_SEC = _env_seconds("CLAUDE_AGENTS_SDK_SHUTDOWN_GRACE", 5.0)

DEFAULT_MAX_LINE_BYTES = 1024 * 1024  # 1MB


def resolve(value: float | None, default: float) -> float:
    """Pick an explicit option over the environment default."""
    return default if value is None else value


class InactivityWatchdog:
    """Watches an active turn and fires when no activity is seen for too long.

    The watchdog only counts time while armed. ``run()`` is meant to be
    started in the session's task group and returns after firing once, or
    when ``stop()`` is called.
    """

    def __init__(
        self,
        timeout_sec: float,
        on_timeout: Callable[[float], Awaitable[Any] | Any],
        check_interval: float | None = None,
    ):
        """Initialize watchdog.

        Args:
            timeout_sec: Maximum idle seconds while armed. ``0`` disables.
            on_timeout: Called with the idle duration when the timeout fires.
            check_interval: Seconds between activity checks.
        """
        self.timeout_sec = timeout_sec
        self.check_interval = (
            check_interval
            if check_interval is not None
            else min(max(timeout_sec / 10, 0.05), 30.0)
        )
        self._on_timeout = on_timeout
        self._last_activity = time.monotonic()
        self._armed = False
        self._stopped = False

    @property
    def enabled(self) -> bool:
        return self.timeout_sec > 0

    @property
    def armed(self) -> bool:
        return self._armed

    def ping(self) -> None:
        """Record activity so the watchdog does not fire."""
        self._last_activity = time.monotonic()

    def arm(self) -> None:
        if not self._armed:
            self._armed = True
            self.ping()

    def disarm(self) -> None:
        self._armed = False

    def stop(self) -> None:
        self._stopped = True

    async def run(self) -> None:
        if not self.enabled:
            return
        logger.debug(
            "[watchdog] Started with timeout=%.1fs, check_interval=%.2fs",
            self.timeout_sec,
            self.check_interval,
        )
        while not self._stopped:
            await anyio.sleep(self.check_interval)
            if not self._armed:
                continue
            idle = time.monotonic() - self._last_activity
            if idle > self.timeout_sec:
                logger.error(
                    "[watchdog] No activity for %.1fs (timeout=%.1fs)",
                    idle,
                    self.timeout_sec,
                )
                self._stopped = True
                result = self._on_timeout(idle)
                if inspect.isawaitable(result):
                    await result
                return
        logger.debug("[watchdog] Stopped")


__all__ = [
    "INIT_TIMEOUT_SEC",
    "HOOK_TIMEOUT_SEC",
    "INACTIVITY_TIMEOUT_SEC",
    "CONTROL_TIMEOUT_SEC",
    "SHUTDOWN_GRACE_SEC",
    "DEFAULT_MAX_LINE_BYTES",
    "InactivityWatchdog",
    "resolve",
]
