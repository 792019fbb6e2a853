from __future__ import annotations

import hashlib
import secrets
import string
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from gdpr.core.events import EventSeverity, emit
from gdpr.core.errors import GdprError, InvalidKeyError, NotFoundError, TransientIOError, ValidationError
from gdpr.core.notify.senders import NotificationSender, SendResult
from gdpr.core.options.store import BREACH_NOTIFICATION_RECORD, OptionStore
from gdpr.core.privacy.models import BREACH_TEXT_FIELDS, BreachNotification, BreachState
from gdpr.core.privacy.sanitize import sanitize_textarea_field
from gdpr.core.scheduler.bridge import SchedulerBridge
from gdpr.core.trace import resolve_trace_id


EXPIRY_TASK_ID = "clean_data_breach_request"
DEFAULT_EXPIRY_SECONDS = 2 * 86400
KEY_LENGTH = 20
# URL-unreserved symbols only, so the key travels in a query string untouched.
KEY_ALPHABET = string.ascii_letters + string.digits + "-_.~"
REQUEST_TEMPLATE_ID = "data-breach-request"

T = TypeVar("T")


def generate_key(length: int = KEY_LENGTH) -> str:
    n = max(KEY_LENGTH, int(length))
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(n))


def key_digest(key: str) -> str:
    """Short fingerprint of a confirmation key, safe to keep in a task payload."""
    return hashlib.sha256(str(key).encode("utf-8")).hexdigest()[:16]


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass(frozen=True)
class InitiateResult:
    key: str
    send_result: SendResult
    expires_at: float


class BreachWorkflow:
    """
    Single-slot data breach notification state machine.

        IDLE --initiate--> PENDING_CONFIRMATION --confirm--> CONFIRMED
          ^                        |                             |
          +------ expire/clear ----+-----------------------------+

    `initiate` overwrites any earlier record and replaces its expiry timer.
    The expiry task deletes the record whether or not it was confirmed.
    """

    def __init__(
        self,
        *,
        options: OptionStore,
        scheduler: SchedulerBridge,
        sender: NotificationSender,
        admin_email: str,
        site_url: str = "",
        expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
        fail_on_send_error: bool = False,
        key_factory: Callable[[], str] = generate_key,
        event_bus: Any = None,
        audit: Any = None,
        logger=None,
    ):
        self.options = options
        self.scheduler = scheduler
        self.sender = sender
        self.admin_email = str(admin_email)
        self.site_url = str(site_url or "").rstrip("/")
        self.expiry_seconds = int(expiry_seconds)
        self.fail_on_send_error = bool(fail_on_send_error)
        self.key_factory = key_factory
        self.event_bus = event_bus
        self.audit = audit
        self.logger = logger
        self.last_send_result: Optional[SendResult] = None
        self._lock = threading.RLock()
        self.scheduler.register(EXPIRY_TASK_ID, self.on_expiry_task)

    # ---- reads ----
    def current(self) -> Optional[BreachNotification]:
        raw = self._io(lambda: self.options.get(BREACH_NOTIFICATION_RECORD), "read breach record")
        if not isinstance(raw, dict):
            return None
        try:
            return BreachNotification.model_validate(raw)
        except PydanticValidationError:
            if self.logger:
                self.logger.warning("Stored breach notification is malformed; treating as absent.")
            return None

    def state(self) -> BreachState:
        rec = self.current()
        if rec is None:
            return BreachState.IDLE
        return BreachState.CONFIRMED if rec.confirmed else BreachState.PENDING_CONFIRMATION

    def stored_key(self) -> Optional[str]:
        rec = self.current()
        return rec.key if rec else None

    def verify_key(self, key: Any) -> bool:
        stored = self.stored_key()
        if not stored or not key:
            return False
        return secrets.compare_digest(str(key).encode("utf-8"), stored.encode("utf-8"))

    def confirmation_url(self, key: str, *, referer_path: str = "") -> str:
        base = self.site_url + str(referer_path or "")
        sep = "&" if "?" in base else "?"
        return f"{base}{sep}{urlencode({'type': 'data-breach-confirmed', 'key': key})}#data-breach"

    # ---- transitions ----
    def initiate(self, fields: Mapping[str, Any], *, requester: str = "", referer_path: str = "", trace_id: Optional[str] = None) -> str:
        """
        Start a breach notification and return its confirmation key.

        All five text fields must be present, otherwise ValidationError is
        raised before anything is written. The record is persisted, the
        previous expiry timer is cancelled and a new one scheduled, then the
        confirmation email goes out. A failed send leaves the record pending.
        """
        return self.initiate_with_result(fields, requester=requester, referer_path=referer_path, trace_id=trace_id).key

    def initiate_with_result(
        self, fields: Mapping[str, Any], *, requester: str = "", referer_path: str = "", trace_id: Optional[str] = None
    ) -> InitiateResult:
        """Like initiate(), but also returns this call's send outcome and expiry deadline."""
        tid = resolve_trace_id(trace_id)
        if not isinstance(fields, Mapping):
            raise ValidationError("Breach notification fields must be an object.", missing=list(BREACH_TEXT_FIELDS))
        missing = [f for f in BREACH_TEXT_FIELDS if fields.get(f) is None]
        if missing:
            raise ValidationError("One or more required fields are missing. Please try again.", missing=missing)
        values: Dict[str, str] = {f: sanitize_textarea_field(fields.get(f)) for f in BREACH_TEXT_FIELDS}

        with self._lock:
            key = self.key_factory()
            record = BreachNotification(key=key, requester=str(requester or ""), initiated_at=_iso_now(), **values)
            self._io(lambda: self.options.set(BREACH_NOTIFICATION_RECORD, record.model_dump(mode="json")), "write breach record")
            self._io(lambda: self.scheduler.cancel(EXPIRY_TASK_ID), "cancel expiry task")
            run_at = self._io(lambda: self.scheduler.schedule_once(EXPIRY_TASK_ID, self.expiry_seconds, {"trace_id": tid, "key_digest": key_digest(key)}), "schedule expiry task")
            result = self._send_confirmation(record, referer_path=referer_path)
            self.last_send_result = result

        if self.logger:
            self.logger.info(f"Data breach notification initiated by {requester or 'unknown'}; expires at {run_at:.0f}.")
        if self.audit is not None:
            self.audit.log(tid, "breach.initiated", {"requester": requester, "email_ok": result.ok, "expires_at": run_at})
        emit(
            self.event_bus,
            trace_id=tid,
            event_type="breach.initiated",
            payload={"requester": requester, "expires_at": run_at, "email_ok": result.ok},
        )
        if not result.ok:
            if self.logger:
                self.logger.warning(f"Breach confirmation email was not delivered ({result.error}); the notification stays pending.")
            emit(
                self.event_bus,
                trace_id=tid,
                event_type="breach.email_failed",
                payload={"backend": result.backend, "error": str(result.error or "")[:200]},
                severity=EventSeverity.WARN,
            )
            if self.fail_on_send_error:
                raise TransientIOError("The confirmation email could not be sent.", backend=result.backend)
        return InitiateResult(key=key, send_result=result, expires_at=run_at)

    def confirm(self, key: Any, *, trace_id: Optional[str] = None) -> BreachNotification:
        """
        Mark the pending notification as confirmed when `key` matches.
        The expiry timer is left in place.
        """
        tid = resolve_trace_id(trace_id)
        with self._lock:
            rec = self.current()
            if rec is None:
                raise NotFoundError("There is no pending data breach notification.")
            if not self.verify_key(key):
                raise InvalidKeyError()
            if rec.confirmed:
                return rec
            rec.confirmed = True
            rec.confirmed_at = _iso_now()
            self._io(lambda: self.options.set(BREACH_NOTIFICATION_RECORD, rec.model_dump(mode="json")), "write breach record")
        if self.audit is not None:
            self.audit.log(tid, "breach.confirmed", {"requester": rec.requester})
        emit(self.event_bus, trace_id=tid, event_type="breach.confirmed", payload={"requester": rec.requester})
        return rec

    def expire(self, *, trace_id: Optional[str] = None) -> bool:
        """
        Delete the notification record. No record: no-op (returns False).
        """
        return self._remove(reason="expired", trace_id=trace_id)

    def clear(self, *, trace_id: Optional[str] = None) -> bool:
        """
        Same as expire(), for callers resolving the notification themselves.
        The now-pointless expiry timer is cancelled as well.
        """
        removed = self._remove(reason="cleared", trace_id=trace_id)
        self._io(lambda: self.scheduler.cancel(EXPIRY_TASK_ID), "cancel expiry task")
        return removed

    # ---- internals ----
    def _remove(self, *, reason: str, trace_id: Optional[str], only_digest: Optional[str] = None) -> bool:
        tid = resolve_trace_id(trace_id)
        with self._lock:
            rec = self.current()
            if rec is None:
                if self.logger:
                    self.logger.info(f"No data breach notification to remove ({reason}).")
                return False
            if only_digest and key_digest(rec.key) != only_digest:
                if self.logger:
                    self.logger.info("Skipping stale expiry timer; the breach notification it was armed for has been replaced.")
                return False
            if rec.confirmed and reason == "expired" and self.logger:
                # TODO: archive confirmed notifications instead of deleting them once a retention policy exists.
                self.logger.warning("Expiring a data breach notification that was already confirmed.")
            self._io(lambda: self.options.delete(BREACH_NOTIFICATION_RECORD), "delete breach record")
        if self.audit is not None:
            self.audit.log(tid, f"breach.{reason}", {"was_confirmed": rec.confirmed})
        emit(
            self.event_bus,
            trace_id=tid,
            event_type=f"breach.{reason}",
            payload={"was_confirmed": rec.confirmed},
        )
        return True

    def on_expiry_task(self, payload: Dict[str, Any]) -> bool:
        """
        Scheduler handler. Removes the record only if it is still the one the
        timer was armed for; a timer that fired while initiate() replaced the
        record must not delete the newer one. Payloads without a digest
        (timers restored from an older host) expire unconditionally.
        """
        payload = payload or {}
        return self._remove(
            reason="expired",
            trace_id=str(payload.get("trace_id") or "") or None,
            only_digest=str(payload.get("key_digest") or "") or None,
        )

    def _send_confirmation(self, record: BreachNotification, *, referer_path: str) -> SendResult:
        fields = {
            "requester": record.requester,
            "nature": record.nature,
            "office_contact": record.office_contact,
            "consequences": record.consequences,
            "measures": record.measures,
            "confirm_url": self.confirmation_url(record.key, referer_path=referer_path),
        }
        try:
            return self.sender.send(self.admin_email, REQUEST_TEMPLATE_ID, fields)
        except Exception as e:  # noqa: BLE001
            return SendResult(ok=False, backend=getattr(self.sender, "backend", "unknown"), error=str(e)[:200])

    @staticmethod
    def _io(fn: Callable[[], T], what: str) -> T:
        try:
            return fn()
        except GdprError:
            raise
        except Exception as e:  # noqa: BLE001
            raise TransientIOError(f"Unable to {what}.", error=str(e)[:200]) from e
