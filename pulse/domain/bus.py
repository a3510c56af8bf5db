"""Synchronous in-process bus for catalogue events."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class EventBus:
    """Publish/subscribe bus for domain events.

    Handlers run in the publisher's thread, in subscription order. A handler
    that raises stops the remaining handlers and the error reaches the
    publisher, so handlers that must never fail the caller catch their own
    errors.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, message_type: type, handler: Handler) -> None:
        self._handlers[message_type].append(handler)

    def publish(self, message: Any) -> None:
        handlers = self._handlers.get(type(message), [])
        logger.debug(f"Publishing {type(message).__name__} to {len(handlers)} handler(s)")
        for handler in handlers:
            handler(message)
