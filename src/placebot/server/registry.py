"""
ConnectionRegistry - connected agents and their liveness.

All mutation and iteration happens under one lock, held only long enough
to update a field or copy a snapshot; never across network I/O.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..models import now_ms
from ..protocol import UNKNOWN_BRAND

logger = logging.getLogger(__name__)

LIVENESS_WINDOW_MS = 11 * 60 * 1000
LIVENESS_TICK_SECONDS = 1.0


@dataclass
class AgentConnection:
    """One connected agent. Lives as long as its socket."""

    id: int
    brand: str = UNKNOWN_BRAND
    last_activity_ms: int = 0
    websocket: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class LivenessSnapshot:
    """Activity aggregate over the liveness window."""

    connection_count: int = 0
    brand_usage: dict[str, int] = field(default_factory=dict)
    computed_at: int = 0


class ConnectionRegistry:
    """Thread-safe registry of agent connections."""

    def __init__(
        self,
        window_ms: int = LIVENESS_WINDOW_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self._window_ms = window_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._connections: dict[int, AgentConnection] = {}
        self._ids = itertools.count()
        self._snapshot = LivenessSnapshot()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def raw_count(self) -> int:
        """All open connections, active or not."""
        with self._lock:
            return len(self._connections)

    @property
    def snapshot(self) -> LivenessSnapshot:
        """Latest liveness aggregate."""
        return self._snapshot

    def add(self, websocket: Any = None, now: int | None = None) -> AgentConnection:
        """Register a new connection, starting outside the liveness window."""
        now = self._clock() if now is None else now
        with self._lock:
            conn = AgentConnection(
                id=next(self._ids),
                last_activity_ms=now - self._window_ms,
                websocket=websocket,
            )
            self._connections[conn.id] = conn
        logger.info(f"[+] Client connected: {conn.id}")
        return conn

    def remove(self, conn_id: int) -> None:
        with self._lock:
            removed = self._connections.pop(conn_id, None)
        if removed is not None:
            logger.info(f"[-] Client disconnected: {conn_id}")

    def get(self, conn_id: int) -> AgentConnection | None:
        """Copy of a connection's state."""
        with self._lock:
            conn = self._connections.get(conn_id)
            if conn is None:
                return None
            return AgentConnection(conn.id, conn.brand, conn.last_activity_ms, conn.websocket)

    def set_brand(self, conn_id: int, brand: str) -> None:
        with self._lock:
            conn = self._connections.get(conn_id)
            if conn is not None:
                conn.brand = brand

    def touch(self, conn_id: int, now: int | None = None) -> None:
        """Mark a connection as active."""
        now = self._clock() if now is None else now
        with self._lock:
            conn = self._connections.get(conn_id)
            if conn is not None:
                conn.last_activity_ms = now

    def sockets(self) -> list[Any]:
        """Snapshot of live sockets for broadcasting."""
        with self._lock:
            return [c.websocket for c in self._connections.values() if c.websocket is not None]

    def compute_snapshot(self, now: int | None = None) -> LivenessSnapshot:
        """Aggregate activity over the current registry contents.

        connection_count excludes unbranded agents; brand_usage does not.
        """
        now = self._clock() if now is None else now
        threshold = now - self._window_ms
        with self._lock:
            pairs = [(c.brand, c.last_activity_ms) for c in self._connections.values()]

        active_brands = [brand for brand, last in pairs if last >= threshold]
        return LivenessSnapshot(
            connection_count=sum(1 for brand in active_brands if brand != UNKNOWN_BRAND),
            brand_usage=dict(Counter(active_brands)),
            computed_at=now,
        )

    def refresh(self, now: int | None = None) -> LivenessSnapshot:
        """Recompute and publish the liveness snapshot."""
        self._snapshot = self.compute_snapshot(now)
        return self._snapshot


class LivenessMonitor:
    """Recomputes the registry's liveness snapshot on a fixed tick."""

    def __init__(self, registry: ConnectionRegistry, interval: float = LIVENESS_TICK_SECONDS):
        self._registry = registry
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.is_running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            try:
                self._registry.refresh()
            except Exception as e:
                logger.error(f"Liveness tick failed: {e}")
            await asyncio.sleep(self._interval)
