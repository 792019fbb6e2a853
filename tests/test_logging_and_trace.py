from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from gdpr.core.errors import InvalidKeyError, ValidationError, http_status_for
from gdpr.core.logger import setup_logging
from gdpr.core.scheduler import ManualScheduler
from gdpr.core.trace import current_trace_id, resolve_trace_id, run_traced, task_trace_id
from tests.helpers.fakes import FakeClock


def test_setup_logging_is_idempotent(tmp_path):
    log_dir = str(tmp_path / "logs")
    logger = setup_logging(log_dir)
    setup_logging(log_dir)
    try:
        assert logger.name == "gdpr"
        assert sum(isinstance(h, RotatingFileHandler) for h in logger.handlers) == 1
        logger.info("hello")
        for h in logger.handlers:
            h.flush()
        assert os.path.exists(os.path.join(log_dir, "gdpr.log"))
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        logging.getLogger("gdpr").handlers.clear()


def test_run_traced_scopes_ids():
    assert current_trace_id() is None
    assert run_traced("abc", resolve_trace_id) == "abc"
    assert run_traced("abc", resolve_trace_id, "explicit") == "explicit"
    assert current_trace_id() is None
    assert len(resolve_trace_id()) == 32


def test_task_trace_id_prefers_payload():
    assert task_trace_id("purge", {"trace_id": "t-1"}) == "t-1"
    generated = task_trace_id("purge", {})
    assert generated.startswith("purge-") and generated != task_trace_id("purge")


def test_scheduled_handler_runs_under_task_trace_id():
    seen = []
    sched = ManualScheduler(clock=FakeClock())
    sched.register("job", lambda _p: seen.append(current_trace_id()))
    sched.schedule_once("job", 5, {"trace_id": "armed-by-initiate"})
    sched.advance(5)
    assert seen == ["armed-by-initiate"]
    assert current_trace_id() is None


def test_error_to_dict_and_status():
    err = ValidationError(missing=["nature"], key="secret")
    d = err.to_dict()
    assert d["code"] == "validation_error"
    assert d["context"] == {"missing": ["nature"], "key": "***REDACTED***"}
    assert http_status_for(err) == 400
    assert http_status_for(InvalidKeyError()) == 403
