from __future__ import annotations

import contextvars
import uuid
from typing import Any, Callable, Dict, Optional

_TRACE_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("gdpr.trace_id", default=None)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def current_trace_id(default: Optional[str] = None) -> Optional[str]:
    trace_id = _TRACE_ID.get()
    return trace_id if trace_id else default


def resolve_trace_id(trace_id: Optional[str] = None) -> str:
    if trace_id:
        return str(trace_id)
    existing = current_trace_id()
    if existing:
        return existing
    return new_trace_id()


def task_trace_id(task_id: str, payload: Optional[Dict[str, Any]] = None) -> str:
    """
    Trace id for a scheduled run: the one the task was armed with, or a fresh
    id prefixed by the task id so recurring runs stay distinguishable.
    """
    given = str((payload or {}).get("trace_id") or "").strip()
    return given or f"{task_id}-{uuid.uuid4().hex[:12]}"


def run_traced(trace_id: str, fn: Callable[..., Any], *args: Any) -> Any:
    token = _TRACE_ID.set(str(trace_id))
    try:
        return fn(*args)
    finally:
        _TRACE_ID.reset(token)
