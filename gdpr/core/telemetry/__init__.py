from gdpr.core.telemetry.purger import PURGE_TASK_ID, EphemeralRecordPurger, PurgeResult
from gdpr.core.telemetry.records import RecordStore, SqliteRecordStore

__all__ = ["PURGE_TASK_ID", "EphemeralRecordPurger", "PurgeResult", "RecordStore", "SqliteRecordStore"]
