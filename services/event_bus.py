"""
Simple Async Pub/Sub Event Bus

This module provides a lightweight publish/subscribe utility built on top of
asyncio queues. Exchange push handlers publish normalized balance and order
events here so the session's reader task never waits on a consumer; any
number of consumers subscribe and drain their own bounded queue.

Topics:
    "{exchange}.balance"  - BalanceEvent
    "{exchange}.order"    - OrderEvent
    "{exchange}.raw"      - push frames with no normalized form
"""

import asyncio
from collections import defaultdict
from typing import Any, DefaultDict, Optional, Set

from core.config import settings
from core.logging import get_logger


class EventBus:
    """
    Async event bus with topic-based pub/sub.

    - Each subscriber gets its own asyncio.Queue and will not block publishers.
    - Unsubscribing is important to avoid queue leaks when consumers stop.
    """

    def __init__(self, max_queue_size: Optional[int] = None) -> None:
        self._topics: DefaultDict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._max_queue_size = max_queue_size if max_queue_size is not None else settings.event_queue_size
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    async def subscribe(self, topic: str) -> asyncio.Queue:
        """
        Subscribe to a topic. Returns an asyncio.Queue for receiving events.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._topics[topic].add(queue)
        self._logger.debug(f"Subscriber added to topic '{topic}'. total={len(self._topics[topic])}")
        return queue

    async def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            if queue in self._topics.get(topic, set()):
                self._topics[topic].remove(queue)
                while not queue.empty():
                    queue.get_nowait()
        self._logger.debug(f"Subscriber removed from topic '{topic}'. total={len(self._topics[topic])}")

    def publish_nowait(self, topic: str, event: Any) -> int:
        """
        Publish without awaiting. Drops the event for subscribers whose queue is full.

        Returns:
            int: Number of subscribers that received the event
        """
        subscribers = list(self._topics.get(topic, set()))
        delivered = 0

        for q in subscribers:
            try:
                q.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._logger.warning(f"Dropping event for topic '{topic}' due to full queue")

        return delivered

    async def publish(self, topic: str, event: Any) -> int:
        return self.publish_nowait(topic, event)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, set()))


# Singleton event bus shared by all clients
bus = EventBus()
