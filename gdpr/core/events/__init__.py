"""
In-process event bus + append-only audit log.

Exports:
- `AuditLogger`, `redact`
- `WorkflowEvent`, `EventSeverity`, `SourceSubsystem`, `EVENT_CATALOG`
- `EventBus`, `emit`
"""

from gdpr.core.events.audit import AuditLogger, redact
from gdpr.core.events.models import EVENT_CATALOG, EventSeverity, SourceSubsystem, WorkflowEvent
from gdpr.core.events.bus import EventBus, emit

__all__ = [
    "AuditLogger",
    "redact",
    "WorkflowEvent",
    "EventSeverity",
    "SourceSubsystem",
    "EVENT_CATALOG",
    "EventBus",
    "emit",
]
