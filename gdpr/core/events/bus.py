from __future__ import annotations

import collections
import threading
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List

from gdpr.core.events.models import EventSeverity, WorkflowEvent


EventHandler = Callable[[WorkflowEvent], None]


@dataclass
class _Sub:
    event_type: str
    handler: EventHandler
    priority: int


class EventBus:
    """
    In-process event bus.

    - delivery is synchronous, in subscriber priority order
    - handler failures are isolated (logged, never raised to the publisher)
    - the most recent events are kept for introspection
    """

    def __init__(self, *, logger=None, keep_recent: int = 200):
        self.logger = logger
        self._lock = threading.Lock()
        self._subs: List[_Sub] = []
        self._recent: Deque[Dict[str, Any]] = collections.deque(maxlen=max(10, int(keep_recent)))
        self._published_total = 0
        self._handler_errors_total = 0

    def subscribe(self, event_type: str, handler: EventHandler, priority: int = 50) -> None:
        """
        event_type supports:
        - exact match ("breach.initiated")
        - prefix match ("breach.*")
        - wildcard all ("*")
        """
        if not callable(handler):
            raise ValueError("handler must be callable")
        with self._lock:
            self._subs.append(_Sub(event_type=str(event_type), handler=handler, priority=int(priority)))
            self._subs.sort(key=lambda s: int(s.priority))

    def unsubscribe(self, handler: EventHandler) -> int:
        with self._lock:
            keep = [s for s in self._subs if s.handler is not handler]
            removed = len(self._subs) - len(keep)
            self._subs = keep
        return removed

    def publish(self, ev: WorkflowEvent) -> int:
        with self._lock:
            self._published_total += 1
            self._recent.appendleft(ev.model_dump(mode="json"))
            subs = [s for s in self._subs if _match(s.event_type, ev.event_type)]
        delivered = 0
        for s in subs:
            try:
                s.handler(ev)
                delivered += 1
            except Exception as e:  # noqa: BLE001
                with self._lock:
                    self._handler_errors_total += 1
                if self.logger:
                    self.logger.warning(f"Event handler {getattr(s.handler, '__name__', 'handler')} failed for {ev.event_type}: {e}")
        return delivered

    def dump_recent(self, n: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[: max(1, int(n))]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "published_total": self._published_total,
                "handler_errors_total": self._handler_errors_total,
                "subscribers": len(self._subs),
            }


def _match(subscribed: str, event_type: str) -> bool:
    subscribed = str(subscribed)
    if subscribed == "*":
        return True
    if subscribed.endswith(".*"):
        return str(event_type).startswith(subscribed[:-1])
    return subscribed == event_type


def emit(
    bus: Any,
    *,
    trace_id: str,
    event_type: str,
    payload: Dict[str, Any],
    severity: EventSeverity = EventSeverity.INFO,
) -> None:
    """Best-effort publish; a missing or failing bus never breaks the caller."""
    if bus is None:
        return
    try:
        bus.publish(
            WorkflowEvent(
                event_type=str(event_type),
                trace_id=str(trace_id or "gdpr"),
                severity=severity,
                payload=dict(payload or {}),
            )
        )
    except Exception as e:  # noqa: BLE001
        log = getattr(bus, "logger", None)
        if log:
            log.warning(f"Event {event_type} not published: {e}")
