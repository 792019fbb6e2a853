from __future__ import annotations

import os

import pytest

from gdpr.core.admin import GdprAdmin
from gdpr.core.config.manager import ConfigManager
from gdpr.core.config.models import GdprConfigFile
from gdpr.core.config.paths import ConfigFsPaths
from gdpr.core.events import AuditLogger, EventBus
from gdpr.core.options.store import InMemoryOptionStore
from gdpr.core.privacy.access import InMemoryIdentityLookup, User
from gdpr.core.privacy.breach import BreachWorkflow
from gdpr.core.scheduler import ManualScheduler
from gdpr.core.telemetry.records import SqliteRecordStore
from tests.helpers.fakes import DummyLogger, EventRecorder, FakeClock, RecordingSender


@pytest.fixture
def tmp_config_root(tmp_path):
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load()
    return cm


@pytest.fixture
def logger():
    return DummyLogger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def event_bus():
    return EventBus(logger=None)


@pytest.fixture
def recorder(event_bus):
    rec = EventRecorder()
    event_bus.subscribe("*", rec)
    return rec


@pytest.fixture
def options():
    return InMemoryOptionStore()


@pytest.fixture
def scheduler(clock, event_bus, logger):
    return ManualScheduler(clock=clock, logger=logger, event_bus=event_bus)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def audit(tmp_path):
    return AuditLogger(path=str(tmp_path / "logs" / "audit.jsonl"))


@pytest.fixture
def workflow(options, scheduler, sender, event_bus, audit, logger):
    return BreachWorkflow(
        options=options,
        scheduler=scheduler,
        sender=sender,
        admin_email="dpo@example.com",
        site_url="https://example.com",
        event_bus=event_bus,
        audit=audit,
        logger=logger,
    )


@pytest.fixture
def identities():
    return InMemoryIdentityLookup(
        [
            User(
                user_id="7",
                username="jdoe",
                email="jane@example.com",
                display_name="Jane Doe",
                first_name="Jane",
                last_name="Doe",
                nickname="jd",
                bio="Hello",
                url="https://jane.example.com",
                registered="2018-05-01 10:00:00",
                roles=["subscriber", "editor"],
                metadata={"newsletter": ["yes"], "prefs": ['{"theme": "dark"}']},
            )
        ]
    )


@pytest.fixture
def admin(tmp_path, options, scheduler, sender, identities, event_bus, audit, logger):
    cfg = GdprConfigFile(admin_email="dpo@example.com", site_url="https://example.com/")
    return GdprAdmin(
        config=cfg,
        options=options,
        scheduler=scheduler,
        sender=sender,
        records=SqliteRecordStore(db_path=str(tmp_path / "runtime" / "records.sqlite")),
        identities=identities,
        event_bus=event_bus,
        audit=audit,
        logger=logger,
    )
