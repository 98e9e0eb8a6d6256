"""Domain events emitted by the engine.

The engine only knows the EventSink interface. The notification layer subscribes
to an EventBus and does its own delivery; a failing subscriber is logged and
skipped so that it can never fail or roll back the operation that emitted the
event. Services emit only after their transaction has committed.
"""
import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List, Protocol

logger = logging.getLogger(__name__)

REGISTRATION_CREATED = "registration.created"
REGISTRATION_APPROVED = "registration.approved"
REGISTRATION_REJECTED = "registration.rejected"
REGISTRATION_WITHDRAWN = "registration.withdrawn"
REGISTRATION_DISQUALIFIED = "registration.disqualified"
MATCH_RESULTS_UPDATED = "match.resultsUpdated"
PHASE_COMPLETED = "phase.completed"
TEAM_QUALIFIED = "team.qualified"
TEAM_ELIMINATED = "team.eliminated"
INVITATION_ISSUED = "invitation.issued"

ALL_EVENTS = (
    REGISTRATION_CREATED,
    REGISTRATION_APPROVED,
    REGISTRATION_REJECTED,
    REGISTRATION_WITHDRAWN,
    REGISTRATION_DISQUALIFIED,
    MATCH_RESULTS_UPDATED,
    PHASE_COMPLETED,
    TEAM_QUALIFIED,
    TEAM_ELIMINATED,
    INVITATION_ISSUED,
)

Handler = Callable[[str, Dict[str, Any]], None]


class EventSink(Protocol):
    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        ...


class EventBus:
    """In-process fan-out of domain events to subscribers."""

    def __init__(self):
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        """Register `handler` for one event name, or for every event with "*"."""
        self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._handlers.get(name, []):
            self._handlers[name].remove(handler)

    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        handlers = list(self._handlers.get(name, [])) + list(self._handlers.get("*", []))
        logger.debug("emit %s to %d handler(s)", name, len(handlers))
        for handler in handlers:
            try:
                handler(name, payload)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, name)


def emit_all(sink: EventSink, events: List[tuple]) -> None:
    for name, payload in events:
        sink.emit(name, payload)


event_bus = EventBus()
