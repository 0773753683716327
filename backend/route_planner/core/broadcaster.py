"""In-process fan-out of planning session events to WebSocket subscribers."""

import asyncio
import logging

import orjson

logger = logging.getLogger(__name__)

QUEUE_SIZE = 50


class Broadcaster:
    """Publishes session events to every subscriber queue of that session."""

    def __init__(self) -> None:
        # session key -> subscriber queues
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def publish(self, session_key: str, event: dict) -> None:
        """Serialize one event and push it to the session's subscribers."""
        queues = self._subscribers.get(session_key)
        if not queues:
            return
        payload = orjson.dumps(event)

        dead = set()
        for q in queues:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dead.add(q)
        if dead:
            logger.warning("Dropping %d slow subscriber(s) of %s", len(dead), session_key)
            queues -= dead

    def subscribe(self, session_key: str) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._subscribers.setdefault(session_key, set()).add(q)
        return q

    def unsubscribe(self, session_key: str, q: asyncio.Queue) -> None:
        queues = self._subscribers.get(session_key)
        if queues is None:
            return
        queues.discard(q)
        if not queues:
            del self._subscribers[session_key]

    def subscriber_count(self, session_key: str) -> int:
        return len(self._subscribers.get(session_key, ()))
