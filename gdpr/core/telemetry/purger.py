from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gdpr.core.events import EventSeverity, emit
from gdpr.core.telemetry.records import RecordStore
from gdpr.core.trace import resolve_trace_id


PURGE_TASK_ID = "telemetry_cleanup"
DEFAULT_PURGE_INTERVAL_SECONDS = 12 * 3600


@dataclass
class PurgeResult:
    record_type: str
    listed: int = 0
    deleted: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"record_type": self.record_type, "listed": self.listed, "deleted": self.deleted, "failed": len(self.failed)}


class EphemeralRecordPurger:
    """
    Permanently deletes every record of a transient type.
    Best effort: a failing deletion is logged and the sweep continues.
    """

    def __init__(self, *, records: RecordStore, record_type: str = "telemetry", event_bus: Any = None, logger=None):
        self.records = records
        self.record_type = str(record_type)
        self.event_bus = event_bus
        self.logger = logger

    def purge_all(self, record_type: Optional[str] = None, *, trace_id: Optional[str] = None) -> PurgeResult:
        rt = str(record_type or self.record_type)
        tid = resolve_trace_id(trace_id)
        result = PurgeResult(record_type=rt)
        ids = list(self.records.list_ids(rt))
        result.listed = len(ids)
        for rid in ids:
            try:
                self.records.delete(rid, force=True)
                result.deleted += 1
            except Exception as e:  # noqa: BLE001
                result.failed.append(str(rid))
                if self.logger:
                    self.logger.warning(f"Unable to delete {rt} record {rid}: {e}")
        if self.logger:
            self.logger.info(f"Purged {result.deleted}/{result.listed} {rt} records.")
        emit(
            self.event_bus,
            trace_id=tid,
            event_type="telemetry.purged",
            payload=result.to_dict(),
            severity=EventSeverity.WARN if result.failed else EventSeverity.INFO,
        )
        return result

    def run_scheduled(self, payload: Dict[str, Any]) -> None:
        self.purge_all(str((payload or {}).get("record_type") or "") or None)

    def install(self, scheduler: Any, *, interval_seconds: float = DEFAULT_PURGE_INTERVAL_SECONDS) -> float:
        """
        Register the recurring sweep. Calling again re-arms the same task id.
        """
        scheduler.register(PURGE_TASK_ID, self.run_scheduled)
        return scheduler.schedule_recurring(PURGE_TASK_ID, float(interval_seconds), {"record_type": self.record_type})
