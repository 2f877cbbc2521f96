"""
Order broadcaster for connected agents.

Queued fan-out: the submitter enqueues and returns immediately, a background
loop sends each message to every socket in the registry. A failing socket
never blocks delivery to the others.
"""

import asyncio
import logging
from dataclasses import dataclass

from pydantic import BaseModel

from ..protocol import encode
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass
class BroadcasterStats:
    """Statistics for the broadcaster."""

    messages_broadcast: int = 0
    messages_dropped: int = 0
    deliveries: int = 0
    delivery_failures: int = 0


class OrderBroadcaster:
    """Fan-out of server messages to all registered agents."""

    def __init__(self, registry: ConnectionRegistry, max_queue_size: int = 100):
        """
        Initialize broadcaster.

        Args:
            registry: Source of connected agent sockets
            max_queue_size: Maximum messages to queue before dropping
        """
        self._registry = registry
        self._stats = BroadcasterStats()
        self._queue: asyncio.Queue | None = None
        self._is_running = False
        self._max_queue_size = max_queue_size
        self._broadcast_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        """Create the queue and start the broadcast loop (needs a running loop)."""
        self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._is_running = True
        if self._broadcast_task is None or self._broadcast_task.done():
            self._broadcast_task = asyncio.create_task(self._broadcast_loop())
        logger.info("OrderBroadcaster started")

    def stop(self) -> None:
        self._is_running = False
        if self._broadcast_task:
            self._broadcast_task.cancel()
            self._broadcast_task = None
        logger.info("OrderBroadcaster stopped")

    def broadcast(self, message: BaseModel) -> bool:
        """Queue a message for every connected agent.

        Returns:
            False if the message could not be queued
        """
        if self._queue is None:
            logger.warning("Broadcast called before start()")
            return False

        try:
            self._queue.put_nowait(encode(message))
            return True
        except asyncio.QueueFull:
            self._stats.messages_dropped += 1
            logger.warning("Broadcast queue full, dropping message")
            return False

    async def _broadcast_loop(self) -> None:
        logger.info("Broadcast loop started")
        while self._is_running:
            try:
                text = await self._queue.get()
                await self.send_to_all(text)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Broadcast error: {e}")

    async def send_to_all(self, text: str) -> int:
        """Send a text frame to all sockets. Returns successful deliveries."""
        sockets = self._registry.sockets()
        if not sockets:
            self._stats.messages_broadcast += 1
            return 0

        results = await asyncio.gather(
            *[self._safe_send(ws, text) for ws in sockets],
            return_exceptions=True,
        )
        delivered = sum(1 for ok in results if ok is True)
        self._stats.messages_broadcast += 1
        self._stats.deliveries += delivered
        self._stats.delivery_failures += len(sockets) - delivered
        logger.info(f"Broadcast delivered to {delivered}/{len(sockets)} agents")
        return delivered

    async def _safe_send(self, websocket, text: str) -> bool:
        try:
            await websocket.send_text(text)
            return True
        except Exception as e:
            logger.debug(f"Send failed, agent will be dropped on close: {e}")
            return False

    def get_stats(self) -> dict:
        return {
            "is_running": self._is_running,
            "messages_broadcast": self._stats.messages_broadcast,
            "messages_dropped": self._stats.messages_dropped,
            "deliveries": self._stats.deliveries,
            "delivery_failures": self._stats.delivery_failures,
            "queue_size": self._queue.qsize() if self._queue else 0,
        }
