from __future__ import annotations

import os
import threading
from typing import Any, Dict, Optional

from gdpr.core.config.manager import ConfigManager
from gdpr.core.config.models import GdprConfigFile
from gdpr.core.events import AuditLogger, EventBus
from gdpr.core.notify.senders import NotificationSender, build_sender
from gdpr.core.options.store import JsonFileOptionStore, OptionStore
from gdpr.core.privacy.access import IdentityLookup, InMemoryIdentityLookup, UserDataExporter
from gdpr.core.privacy.breach import EXPIRY_TASK_ID, BreachWorkflow
from gdpr.core.privacy.requests import RequestStore
from gdpr.core.privacy.settings import SettingsRegistry
from gdpr.core.scheduler.bridge import ManualScheduler, SchedulerBridge
from gdpr.core.telemetry.purger import PURGE_TASK_ID, EphemeralRecordPurger
from gdpr.core.telemetry.records import RecordStore, SqliteRecordStore


SMTP_PASSWORD_ENV = "GDPR_SMTP_PASSWORD"


class GdprAdmin:
    """
    Wires the admin-side components around one option store and one scheduler.
    """

    def __init__(
        self,
        *,
        config: GdprConfigFile,
        options: OptionStore,
        scheduler: SchedulerBridge,
        sender: NotificationSender,
        records: RecordStore,
        identities: Optional[IdentityLookup] = None,
        event_bus: Optional[EventBus] = None,
        audit: Optional[AuditLogger] = None,
        logger=None,
    ):
        self.config = config
        self.options = options
        self.scheduler = scheduler
        self.sender = sender
        self.records = records
        self.event_bus = event_bus or EventBus(logger=logger)
        self.audit = audit
        self.logger = logger

        self.requests = RequestStore(options=options, event_bus=self.event_bus, logger=logger)
        self.settings = SettingsRegistry(options=options, event_bus=self.event_bus, logger=logger)
        self.breach = BreachWorkflow(
            options=options,
            scheduler=scheduler,
            sender=sender,
            admin_email=config.admin_email,
            site_url=config.site_url,
            expiry_seconds=config.breach_expiry_seconds,
            fail_on_send_error=config.breach_fail_on_send_error,
            event_bus=self.event_bus,
            audit=audit,
            logger=logger,
        )
        self.purger = EphemeralRecordPurger(records=records, record_type=config.telemetry_record_type, event_bus=self.event_bus, logger=logger)
        self.exporter = UserDataExporter(identities=identities or InMemoryIdentityLookup(), audit=audit, logger=logger)

        self._start_lock = threading.Lock()
        self._started = False

    @classmethod
    def from_config(
        cls,
        config_manager: ConfigManager,
        *,
        scheduler: Optional[SchedulerBridge] = None,
        identities: Optional[IdentityLookup] = None,
        event_bus: Optional[EventBus] = None,
        logger=None,
    ) -> "GdprAdmin":
        cfg = config_manager.get()
        bus = event_bus or EventBus(logger=logger)
        return cls(
            config=cfg,
            options=JsonFileOptionStore(root_dir=config_manager.resolve_path(cfg.options_dir), logger=logger),
            scheduler=scheduler or ManualScheduler(logger=logger, event_bus=bus),
            sender=build_sender(
                cfg.email,
                root_path=config_manager.fs.root,
                logger=logger,
                password_provider=lambda: os.environ.get(SMTP_PASSWORD_ENV, ""),
            ),
            records=SqliteRecordStore(db_path=config_manager.resolve_path(cfg.records_db_path), logger=logger),
            identities=identities,
            event_bus=bus,
            audit=AuditLogger(path=config_manager.resolve_path(cfg.audit_log_path)),
            logger=logger,
        )

    def start(self) -> bool:
        """
        Arm the recurring telemetry sweep. Returns False when already started.
        The breach expiry handler is registered when the workflow is built.
        """
        with self._start_lock:
            if self._started:
                return False
            self.purger.install(self.scheduler, interval_seconds=self.config.telemetry_purge_interval_seconds)
            start = getattr(self.scheduler, "start", None)
            if callable(start):
                start()
            self._started = True
        if self.logger:
            self.logger.info("GDPR admin started.")
        return True

    def stop(self) -> None:
        stop = getattr(self.scheduler, "stop", None)
        if callable(stop):
            stop()
        with self._start_lock:
            self._started = False

    def status(self) -> Dict[str, Any]:
        return {
            "started": self._started,
            "confirmed_requests": self.requests.count_confirmed(),
            "breach_state": self.breach.state().value,
            "breach_expires_at": self.scheduler.next_scheduled(EXPIRY_TASK_ID),
            "next_telemetry_purge": self.scheduler.next_scheduled(PURGE_TASK_ID),
            "privacy_policy_page_missing": self.settings.privacy_policy_page_missing(),
        }
