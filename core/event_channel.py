# Realtime Event Channels
# Publishes conversation events to per-conversation and per-user rooms
import json
import logging
import threading
from typing import Any, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class EventChannel:
    """Transport for realtime events. Subclasses deliver to rooms."""

    def publish(self, room: str, event_name: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def emit_to_conversation(self, conversation_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        self.publish(conversation_room(conversation_id), event_name, payload)

    def emit_to_user(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        self.publish(user_room(user_id), event_name, payload)


class InMemoryEventChannel(EventChannel):
    """Keeps published events in order. Used when no broker is configured."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def publish(self, room: str, event_name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append({"room": room, "event": event_name, "payload": payload})

    def events_named(self, event_name: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == event_name]

    def events_for(self, room: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["room"] == room]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class RedisEventChannel(EventChannel):
    """
    Publishes events as JSON on Redis pub/sub, one channel per room.
    A websocket gateway subscribes to the channels and fans out to sockets.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None, prefix: str = "collab"):
        self._redis_url = redis_url or "redis://localhost:6379/0"
        self._client = client
        self.prefix = prefix

    def _get_redis(self):
        """Get Redis client (lazy initialization)."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url)
        return self._client

    def publish(self, room: str, event_name: str, payload: Dict[str, Any]) -> None:
        message = json.dumps({"event": event_name, "room": room, "payload": payload}, default=str)
        self._get_redis().publish(f"{self.prefix}:{room}", message)


def build_event_channel(redis_url: Optional[str] = None) -> EventChannel:
    """Redis-backed channel when a URL is configured, in-memory otherwise."""
    if redis_url:
        logger.info("Publishing realtime events through Redis")
        return RedisEventChannel(redis_url)
    return InMemoryEventChannel()
