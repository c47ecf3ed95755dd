"""
Publish/subscribe fan-out of the POS state.

Subscribers are registered sinks with an async send(event, data). The channel
knows nothing about the transport behind a sink (WebSocket, queue, test
double); a broadcast is "push this message to every sink in the set".
Sinks are written to concurrently and each send is bounded by a timeout, so
a stalled client is dropped instead of holding up the mutation or the other
subscribers.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

_subscriber_ids = itertools.count(1)

# Seconds a single sink may take to accept a message
DEFAULT_SEND_TIMEOUT = 5.0


class Subscriber(Protocol):
    """A registered sink for channel messages."""

    subscriber_id: str

    async def send(self, event: str, data: Any) -> None:
        ...


class QueueSubscriber:
    """Subscriber that collects messages in an asyncio queue."""

    def __init__(self, subscriber_id: Optional[str] = None) -> None:
        self.subscriber_id = subscriber_id or f"q{next(_subscriber_ids)}"
        self.queue: asyncio.Queue = asyncio.Queue()

    async def send(self, event: str, data: Any) -> None:
        await self.queue.put((event, data))


class WebSocketSubscriber:
    """Subscriber backed by a Starlette/FastAPI WebSocket."""

    def __init__(self, websocket, subscriber_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.subscriber_id = subscriber_id or f"ws{next(_subscriber_ids)}"
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, data: Any) -> None:
        await self.send_frame({"event": event, "data": data})

    async def send_frame(self, frame: Dict[str, Any]) -> None:
        # Print acks are sent from separate tasks; frames must not interleave
        async with self._send_lock:
            await self.websocket.send_json(frame)


class BroadcastChannel:
    """Registered set of subscribers with full-state fan-out."""

    def __init__(self, send_timeout: float = DEFAULT_SEND_TIMEOUT) -> None:
        self.send_timeout = send_timeout
        self._subscribers: Dict[str, Subscriber] = {}

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers[subscriber.subscriber_id] = subscriber
        logger.info(f"Subscriber connected: {subscriber.subscriber_id} ({len(self._subscribers)} total)")

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if self._subscribers.pop(subscriber.subscriber_id, None) is not None:
            logger.info(f"Subscriber disconnected: {subscriber.subscriber_id} ({len(self._subscribers)} total)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers.values())

    async def send_to(self, subscriber: Subscriber, event: str, data: Any) -> bool:
        """Deliver one message to one subscriber; a failing or stalled sink is dropped."""
        try:
            await asyncio.wait_for(subscriber.send(event, data), self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send to {subscriber.subscriber_id} timed out after {self.send_timeout}s, "
                           f"dropping subscriber")
            self.unsubscribe(subscriber)
            return False
        except Exception as e:
            logger.warning(f"Send to {subscriber.subscriber_id} failed, dropping subscriber: {e}")
            self.unsubscribe(subscriber)
            return False

    async def broadcast(self, event: str, data: Any) -> int:
        """
        Deliver a message to every registered subscriber.

        Returns:
            int: Number of successful deliveries
        """
        results = await asyncio.gather(
            *(self.send_to(subscriber, event, data) for subscriber in self.subscribers())
        )
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast '{event}' delivered to {delivered} subscriber(s)")
        return delivered
