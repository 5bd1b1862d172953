"""
Runtime events and the observer bus.

Observers see registration, extension and execution events. They are
purely passive: an observer that raises is logged and skipped, and never
changes the outcome of the operation that published the event.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EventType = Literal[
    "skill_registered",
    "skill_updated",
    "skill_unregistered",
    "extension_added",
    "extension_removed",
    "execution_started",
    "execution_finished",
]


class RuntimeEvent(BaseModel):
    """A typed event emitted by the runtime."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventObserver(ABC):
    @abstractmethod
    async def on_event(self, event: RuntimeEvent) -> None:
        ...


class LoggingObserver(EventObserver):
    """Writes every event to a logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level
        self._logger = logging.getLogger("skillstack.events.audit")

    async def on_event(self, event: RuntimeEvent) -> None:
        self._logger.log(self._level, "%s %s", event.event_type, event.payload)


class EventBus:
    """Fan-out of runtime events to subscribed observers."""

    def __init__(self) -> None:
        self._observers: List[EventObserver] = []

    def subscribe(self, observer: EventObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: EventObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @property
    def observers(self) -> List[EventObserver]:
        return list(self._observers)

    async def publish(self, event_type: EventType, **payload: Any) -> RuntimeEvent:
        event = RuntimeEvent(event_type=event_type, payload=payload)
        for observer in list(self._observers):
            try:
                await observer.on_event(event)
            except Exception:
                logger.exception(
                    "Observer %r failed on %s", observer, event.event_type
                )
        return event
