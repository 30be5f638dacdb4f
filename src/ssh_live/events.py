"""Lifecycle notifications delivered to subscribed observers."""

import logging
from collections.abc import Callable

from .types import LifecycleEvent

logger = logging.getLogger(__name__)

Listener = Callable[[LifecycleEvent], None]


class EventBus:
    """Fan-out of lifecycle events to subscribed listeners.

    One bus is created by the application and handed to every component
    that emits events; there is no module-level registry.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: LifecycleEvent) -> None:
        # A failing observer must not break the operation that emitted.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed while handling {event.type.value} event")
