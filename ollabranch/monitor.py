from __future__ import annotations

"""Observer hooks for raw protocol traffic.

A monitor sees every request body sent, every raw body or stream line
received, and every failure.  The client only *invokes* monitors; what they do
with the data (dashboards, traffic dumps, GUI consoles) is up to them.
"""

import threading
from typing import List, Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class Monitor(Protocol):
    """Callback interface for protocol traffic.  Names need not be unique."""

    name: str

    def requested(self, request: str) -> None:
        """Raw request JSON, called before it is sent."""

    def responded(self, response: str) -> None:
        """Raw response JSON (a full body or one stream line)."""

    def oops(self, exception: BaseException) -> None:
        """A failure during the exchange."""


class LoggingMonitor:
    """Monitor that writes the traffic to Loguru at DEBUG level."""

    def __init__(self, name: str = "logging") -> None:
        self.name = name

    def requested(self, request: str) -> None:
        logger.debug(f"[MONITOR:{self.name}] >>> {request}")

    def responded(self, response: str) -> None:
        logger.debug(f"[MONITOR:{self.name}] <<< {response}")

    def oops(self, exception: BaseException) -> None:
        logger.debug(f"[MONITOR:{self.name}] !!! {exception!r}")


class MonitorRegistry:
    """Thread-safe list of monitors owned by one client instance."""

    def __init__(self) -> None:
        self._monitors: List[Monitor] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._monitors)

    def register(self, monitor: Monitor) -> None:
        with self._lock:
            self._monitors.append(monitor)

    def deregister(self, name: str) -> int:
        """Remove every monitor called *name*; returns how many were removed."""
        with self._lock:
            keep = [m for m in self._monitors if m.name != name]
            removed = [m for m in self._monitors if m.name == name]
            self._monitors = keep
        for mon in removed:
            close = getattr(mon, "close", None)
            if callable(close):
                close()
        return len(removed)

    # The dispatchers snapshot the list so a monitor may (de)register others.
    def requested(self, data: str) -> None:
        with self._lock:
            monitors = list(self._monitors)
        for mon in monitors:
            mon.requested(data)

    def responded(self, data: str) -> None:
        with self._lock:
            monitors = list(self._monitors)
        for mon in monitors:
            mon.responded(data)

    def oops(self, exception: BaseException) -> None:
        with self._lock:
            monitors = list(self._monitors)
        for mon in monitors:
            mon.oops(exception)
