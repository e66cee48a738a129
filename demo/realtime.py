# Real-time topic fan-out over WebSockets
#
# publish() never awaits: each subscriber owns a pending map and a sender
# task, so a slow or dead socket can only stall itself. Pending pushes are
# keyed by event name, so at most one snapshot per topic ever waits.

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set

from starlette.websockets import WebSocket

from store import Topic

logger = logging.getLogger(__name__)

CONNECTED_MESSAGE = "Connected to CivicLedger Backend"


def update_event(topic: Topic) -> str:
    return f"{Topic(topic).value}_update"


class Subscriber:
    """One connected client: undelivered pushes, one per event name, drained
    in arrival order by a sender task."""

    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.pending: Dict[str, Any] = {}
        self._ready = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def push(self, event: str, data: Any) -> None:
        # Pushes are full snapshots: a newer one replaces an undelivered one
        # for the same event and keeps its place in line
        if event in self.pending:
            logger.debug("Subscriber %s lagging, replaced pending %s", self.id, event)
        self.pending[event] = data
        self._ready.set()

    def next_message(self) -> Optional[Dict[str, Any]]:
        if not self.pending:
            return None
        event = next(iter(self.pending))
        return {"event": event, "data": self.pending.pop(event)}

    async def _drain(self) -> None:
        while True:
            await self._ready.wait()
            message = self.next_message()
            while message is not None:
                try:
                    await self.websocket.send_json(message)
                except Exception as e:
                    logger.info("Subscriber %s send failed: %s", self.id, e)
                    return
                message = self.next_message()
            self._ready.clear()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class TopicHub:
    def __init__(self):
        self._topics: Dict[Topic, Set[Subscriber]] = {topic: set() for topic in Topic}

    def subscribe(self, topic: Topic, subscriber: Subscriber, snapshot: Any) -> None:
        """Join *topic* and push its current snapshot ahead of any later broadcast."""
        topic = Topic(topic)
        self._topics[topic].add(subscriber)
        subscriber.push(update_event(topic), snapshot)
        logger.info("Subscriber %s joined %s", subscriber.id, topic.value)

    def unsubscribe(self, topic: Topic, subscriber: Subscriber) -> None:
        topic = Topic(topic)
        self._topics[topic].discard(subscriber)
        logger.info("Subscriber %s left %s", subscriber.id, topic.value)

    def drop(self, subscriber: Subscriber) -> None:
        for members in self._topics.values():
            members.discard(subscriber)

    def subscribers(self, topic: Topic) -> Set[Subscriber]:
        return set(self._topics[Topic(topic)])

    def publish(self, topic: Topic, payload: Any) -> int:
        topic = Topic(topic)
        members = list(self._topics[topic])
        for subscriber in members:
            subscriber.push(update_event(topic), payload)
        logger.debug("Published %s to %d subscriber(s)", topic.value, len(members))
        return len(members)
