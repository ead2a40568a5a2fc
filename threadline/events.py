"""Publish/subscribe channel for engine output.

The presentation layer subscribes; the engine emits at the moment each thing
happens (a delivered message is emitted when it becomes visible).

    bus = EventBus()
    unsubscribe = bus.on(EventType.MESSAGE_ADDED, lambda e: print(e.data["message"].text))
    ...
    unsubscribe()

Handlers run synchronously. A handler that raises is logged and skipped; the
remaining handlers and the engine carry on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    MESSAGE_ADDED = "message.added"  # data: message
    CONTACT_UNLOCKED = "contact.unlocked"  # data: contact
    THREAD_STATE_CHANGED = "thread.state_changed"  # data: contact, state
    VARIABLE_CHANGED = "variable.changed"  # data: name, value
    ACTION_EXECUTED = "action.executed"  # data: action, contact
    NOTIFICATION_ADDED = "notification.added"  # data: notification


@dataclass
class GameEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.type.value}] {self.data}"


EventHandler = Callable[[GameEvent], None]


class EventBus:
    def __init__(self, history_limit: int = 100) -> None:
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: list[GameEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType, handler: EventHandler) -> Callable[[], None]:
        """Subscribe. Returns a callable that removes this subscription."""
        handlers = self._listeners.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
        return lambda: self.off(event_type, handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_type: EventType, **data: Any) -> GameEvent:
        event = GameEvent(type=event_type, data=data)
        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        # Copy so handlers may unsubscribe while being called
        for handler in list(self._listeners.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Error in handler for %s", event_type.value)
        return event

    def clear(self) -> None:
        self._listeners.clear()

    def get_history(self, event_type: EventType | None = None) -> list[GameEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, []))
