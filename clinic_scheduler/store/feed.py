"""In-process change feed for document store writes."""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RawChangeEvent:
    """A store change as delivered to collection subscribers."""

    events: list[str]
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for external transports."""
        return {
            "events": list(self.events),
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


ChangeHandler = Callable[[RawChangeEvent], Awaitable[None] | None]


class EventPublisher(Protocol):
    """Mirror for raw change events, e.g. a Redis channel."""

    def publish(self, collection: str, event: RawChangeEvent) -> bool: ...


def build_event_names(collection: str, document_id: str, action: str) -> list[str]:
    """Event names for a change, most specific first."""
    return [
        f"collections.{collection}.documents.{document_id}.{action}",
        f"collections.{collection}.documents.*.{action}",
        f"collections.{collection}.documents",
    ]


class ChangeFeed:
    """Fan-out of raw change events to per-collection subscribers."""

    def __init__(self, publisher: EventPublisher | None = None):
        """Initialize feed with an optional external publisher."""
        self.publisher = publisher
        self._handlers: dict[str, dict[str, ChangeHandler]] = {}

    def subscribe(self, collection: str, handler: ChangeHandler) -> Callable[[], None]:
        """
        Register a handler for a collection.

        Returns:
            Idempotent callable removing the handler
        """
        token = uuid4().hex
        self._handlers.setdefault(collection, {})[token] = handler
        logger.debug("feed_subscribed", collection=collection, token=token)

        def unsubscribe() -> None:
            handlers = self._handlers.get(collection)
            if handlers is None or token not in handlers:
                return
            del handlers[token]
            if not handlers:
                del self._handlers[collection]
            logger.debug("feed_unsubscribed", collection=collection, token=token)

        return unsubscribe

    def subscriber_count(self, collection: str) -> int:
        """Number of handlers registered for a collection."""
        return len(self._handlers.get(collection, {}))

    async def publish(self, collection: str, action: str, payload: dict[str, Any]) -> RawChangeEvent:
        """
        Deliver a change to every handler of the collection.

        Args:
            collection: Collection name
            action: One of create, update, delete
            payload: Document as stored after the change

        Returns:
            The delivered event
        """
        event = RawChangeEvent(
            events=build_event_names(collection, str(payload.get("id", "*")), action),
            payload=payload,
        )

        # Snapshot: handlers may unsubscribe while being called
        for handler in list(self._handlers.get(collection, {}).values()):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("feed_handler_failed", collection=collection, action=action)

        # Publishers do blocking network I/O
        if self.publisher is not None:
            await asyncio.to_thread(self.publisher.publish, collection, event)

        return event
