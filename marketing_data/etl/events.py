import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .errors import UnknownEventError
from .types import TransformWarning

log = logging.getLogger(__name__)


class Event(str, Enum):
    LOAD_COMPLETED = "LoadCompleted"
    REPORT_GENERATED = "ReportGenerated"


@dataclass(frozen=True)
class LoadCompleted:
    """Payload published after a pipeline run has been persisted."""
    run_id: Optional[int]
    records: int
    warnings: list[TransformWarning] = field(default_factory=list)
    finished_at: datetime = field(default_factory=datetime.now)


Handler = Callable[[Any], None]


class EventBus:
    """
    In-process publish/subscribe keyed by the Event enum.

    Handlers run synchronously in subscription order. A handler that raises is
    logged and counted; the publisher and the remaining handlers carry on.
    """

    def __init__(self):
        self._handlers: dict[Event, list[Handler]] = defaultdict(list)
        self._published: dict[Event, int] = defaultdict(int)
        self._errors: dict[Event, int] = defaultdict(int)
        self._last_published: dict[Event, datetime] = {}

    def subscribe(self, event: Event, handler: Handler) -> None:
        self._handlers[_as_event(event)].append(handler)

    def publish(self, event: Event, payload: Any = None) -> None:
        event = _as_event(event)
        self._published[event] += 1
        self._last_published[event] = datetime.now()
        handlers = list(self._handlers.get(event, ()))
        if not handlers:
            log.info("event %s published with no subscribers", event.value)
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                self._errors[event] += 1
                log.exception("subscriber %r failed on %s", handler, event.value)

    def stats(self) -> dict[str, dict[str, Any]]:
        return {
            e.value: {
                "published": self._published.get(e, 0),
                "errors": self._errors.get(e, 0),
                "last_published": self._last_published.get(e),
                "subscribers": len(self._handlers.get(e, ())),
            }
            for e in Event
        }


def _as_event(event) -> Event:
    if isinstance(event, Event):
        return event
    raise UnknownEventError(f"not a known event: {event!r}")
