from __future__ import annotations

import json
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gdpr.core.events.audit import redact


class EventSeverity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class SourceSubsystem(str, Enum):
    consent = "consent"
    requests = "requests"
    breach = "breach"
    scheduler = "scheduler"
    telemetry = "telemetry"


# Every event this engine publishes, with the subsystem that owns it.
EVENT_CATALOG: Dict[str, SourceSubsystem] = {
    "consent.saved": SourceSubsystem.consent,
    "request.confirmed": SourceSubsystem.requests,
    "breach.initiated": SourceSubsystem.breach,
    "breach.confirmed": SourceSubsystem.breach,
    "breach.expired": SourceSubsystem.breach,
    "breach.cleared": SourceSubsystem.breach,
    "breach.email_failed": SourceSubsystem.breach,
    "telemetry.purged": SourceSubsystem.telemetry,
    "scheduler.task_failed": SourceSubsystem.scheduler,
}


class WorkflowEvent(BaseModel):
    """
    A state change in one of the admin workflows.

    `event_type` must be a catalogued name; `source_subsystem` is filled in
    from the catalogue when omitted and must agree with it when given.
    Payloads are redacted on construction, so confirmation keys and links
    never reach subscribers.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: str
    timestamp: float = Field(default_factory=time.time)
    trace_id: Optional[str] = None
    source_subsystem: SourceSubsystem
    severity: EventSeverity = EventSeverity.INFO
    payload: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _owner_from_catalog(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        owner = EVENT_CATALOG.get(str(data.get("event_type") or "").strip())
        if owner is None:
            raise ValueError(f"unknown event_type: {data.get('event_type')!r}")
        given = data.get("source_subsystem")
        if given is None:
            return {**data, "source_subsystem": owner}
        if SourceSubsystem(given) != owner:
            raise ValueError(f"{data.get('event_type')} belongs to {owner.value}, not {SourceSubsystem(given).value}")
        return data

    @field_validator("event_type")
    @classmethod
    def _strip(cls, v: str) -> str:
        return str(v).strip()

    @field_validator("payload")
    @classmethod
    def _redacted_json(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        safe = redact(v)
        try:
            json.dumps(safe, ensure_ascii=False)
        except TypeError as e:
            raise ValueError("payload must be JSON-serializable") from e
        return safe
