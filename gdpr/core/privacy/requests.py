from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from gdpr.core.events import emit
from gdpr.core.errors import NotFoundError
from gdpr.core.options.store import REQUESTS_COLLECTION, OptionStore
from gdpr.core.privacy.models import DataSubjectRequest, RequestType
from gdpr.core.trace import resolve_trace_id


RequestIndex = str
Partition = Dict[RequestType, Dict[RequestIndex, DataSubjectRequest]]


def _iter_raw(requests: Any) -> List[Tuple[RequestIndex, Any]]:
    if isinstance(requests, Mapping):
        return [(str(k), v) for k, v in requests.items()]
    if isinstance(requests, (list, tuple)):
        return [(str(i), v) for i, v in enumerate(requests)]
    return []


def _coerce(raw: Any) -> Optional[DataSubjectRequest]:
    if isinstance(raw, DataSubjectRequest):
        return raw
    if not isinstance(raw, Mapping):
        return None
    try:
        return DataSubjectRequest.model_validate(dict(raw))
    except PydanticValidationError:
        return None


def partition_by_type_and_confirmation(requests: Any) -> Partition:
    """
    Group confirmed requests by type in one pass.

    Unconfirmed and malformed entries are left out. Each request keeps the
    index it had in the source collection; nothing is renumbered.
    """
    out: Partition = {t: {} for t in RequestType}
    for index, raw in _iter_raw(requests):
        req = _coerce(raw)
        if req is None or not req.confirmed:
            continue
        out[req.type][index] = req
    return out


def count_confirmed(requests: Any) -> int:
    return sum(len(group) for group in partition_by_type_and_confirmation(requests).values())


def confirmed_badge(requests: Any) -> Optional[int]:
    """Navigation badge count, or None when there is nothing to show."""
    n = count_confirmed(requests)
    return n if n > 0 else None


class RequestStore:
    """
    Data-subject request log kept under a single option key.

    Requests are appended elsewhere (public form handlers); the admin side
    reads them and flips `confirmed` once the requester verified the request.
    """

    def __init__(self, *, options: OptionStore, event_bus: Any = None, logger=None):
        self.options = options
        self.event_bus = event_bus
        self.logger = logger
        self._lock = threading.Lock()

    def load(self) -> Dict[RequestIndex, Any]:
        raw = self.options.get(REQUESTS_COLLECTION, {})
        if isinstance(raw, list):
            return {str(i): v for i, v in enumerate(raw)}
        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items()}

    def get(self, index: RequestIndex) -> Optional[DataSubjectRequest]:
        return _coerce(self.load().get(str(index)))

    def partition(self) -> Partition:
        return partition_by_type_and_confirmation(self.load())

    def count_confirmed(self) -> int:
        return count_confirmed(self.load())

    def menu_badge(self) -> Optional[int]:
        return confirmed_badge(self.load())

    def tabs(self) -> Dict[str, Dict[str, Any]]:
        parts = self.partition()
        return {t.value: {"name": t.display_name, "count": len(parts[t])} for t in RequestType}

    def confirm(self, index: RequestIndex, *, trace_id: Optional[str] = None) -> DataSubjectRequest:
        """
        Mark a request as confirmed. Confirming twice is a no-op.
        """
        tid = resolve_trace_id(trace_id)
        idx = str(index)
        with self._lock:
            data = self.load()
            req = _coerce(data.get(idx))
            if req is None:
                raise NotFoundError("No such request.", index=idx)
            if req.confirmed:
                return req
            req.confirmed = True
            entry = dict(data[idx]) if isinstance(data[idx], Mapping) else req.model_dump(mode="json")
            entry["confirmed"] = True
            data[idx] = entry
            self.options.set(REQUESTS_COLLECTION, data)
        if self.logger:
            self.logger.info(f"Request {idx} ({req.type.value}) confirmed.")
        emit(self.event_bus, trace_id=tid, event_type="request.confirmed", payload={"index": idx, "type": req.type.value})
        return req
