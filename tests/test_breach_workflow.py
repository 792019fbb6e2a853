from __future__ import annotations

import threading

import pytest

from gdpr.core.errors import InvalidKeyError, NotFoundError, TransientIOError, ValidationError
from gdpr.core.options.store import BREACH_NOTIFICATION_RECORD
from gdpr.core.privacy.breach import EXPIRY_TASK_ID, KEY_ALPHABET, BreachWorkflow, key_digest
from gdpr.core.privacy.models import BreachState
from gdpr.core.scheduler import ManualScheduler
from tests.helpers.fakes import BrokenOptionStore, RecordingSender
from tests.helpers.log_assertions import read_jsonl

TWO_DAYS = 2 * 86400
FIELDS = {"content": "c", "nature": "n", "office_contact": "o", "consequences": "q", "measures": "m"}


def test_initiate_then_expiry_fires_two_days_later(workflow, options, scheduler, sender, clock):
    key = workflow.initiate(dict(FIELDS), requester="admin@example.com", referer_path="/admin/requests")

    assert len(key) >= 20
    assert set(key) <= set(KEY_ALPHABET)
    assert len(sender.sent) == 1
    assert sender.sent[0]["to"] == "dpo@example.com"
    assert sender.sent[0]["template_id"] == "data-breach-request"
    assert sender.sent[0]["fields"]["confirm_url"] == f"https://example.com/admin/requests?type=data-breach-confirmed&key={key}#data-breach"
    pending = scheduler.pending()
    assert len(pending) == 1
    assert pending[0]["task_id"] == EXPIRY_TASK_ID
    assert pending[0]["run_at"] == clock.time() + TWO_DAYS
    assert pending[0]["interval_seconds"] is None
    stored = options.get(BREACH_NOTIFICATION_RECORD)
    assert stored["key"] == key
    assert stored["nature"] == "n"
    assert stored["requester"] == "admin@example.com"
    assert workflow.state() == BreachState.PENDING_CONFIRMATION

    assert scheduler.advance(TWO_DAYS - 1) == 0
    assert options.get(BREACH_NOTIFICATION_RECORD) is not None

    assert scheduler.advance(1) == 1
    assert options.get(BREACH_NOTIFICATION_RECORD) is None
    assert workflow.state() == BreachState.IDLE
    assert scheduler.pending() == []


def test_initiate_then_expire_leaves_nothing(workflow):
    workflow.initiate(dict(FIELDS))
    assert workflow.expire() is True
    assert workflow.current() is None
    assert workflow.state() == BreachState.IDLE


def test_second_initiate_overwrites_and_keeps_one_timer(workflow, options, scheduler, sender, clock):
    k1 = workflow.initiate(dict(FIELDS))
    clock.advance(3600)
    k2 = workflow.initiate({**FIELDS, "nature": "second"})

    assert k1 != k2
    assert options.get(BREACH_NOTIFICATION_RECORD)["key"] == k2
    assert options.get(BREACH_NOTIFICATION_RECORD)["nature"] == "second"
    assert len(scheduler.pending()) == 1
    assert scheduler.next_scheduled(EXPIRY_TASK_ID) == clock.time() + TWO_DAYS
    assert len(sender.sent) == 2

    # the first timer's deadline no longer fires anything
    assert scheduler.advance(TWO_DAYS - 3600) == 0
    assert workflow.stored_key() == k2
    assert scheduler.advance(3600) == 1
    assert workflow.current() is None


def test_expire_without_initiate_is_noop(workflow, options, recorder):
    assert workflow.expire() is False
    assert options.get(BREACH_NOTIFICATION_RECORD) is None
    assert "breach.expired" not in recorder.types()


def test_missing_fields_rejected_before_any_mutation(workflow, options, scheduler, sender):
    with pytest.raises(ValidationError) as ei:
        workflow.initiate({"content": "c", "nature": None})
    assert ei.value.missing == ["nature", "office_contact", "consequences", "measures"]
    assert ei.value.code == "validation_error"
    assert options.get(BREACH_NOTIFICATION_RECORD) is None
    assert scheduler.pending() == []
    assert sender.sent == []


def test_non_mapping_fields_rejected(workflow):
    with pytest.raises(ValidationError):
        workflow.initiate("not a form")  # type: ignore[arg-type]


def test_empty_strings_count_as_present(workflow):
    key = workflow.initiate({f: "" for f in FIELDS})
    assert workflow.stored_key() == key


def test_fields_are_normalized_as_plain_text(workflow):
    workflow.initiate({**FIELDS, "measures": "<b>Reset</b> passwords\r\n<script>x</script>Notify users"})
    assert workflow.current().measures == "Reset passwords\nNotify users"


def test_confirm_with_key(workflow, scheduler, recorder):
    key = workflow.initiate(dict(FIELDS))
    with pytest.raises(InvalidKeyError):
        workflow.confirm("x" * 20)
    with pytest.raises(InvalidKeyError):
        workflow.confirm("")

    rec = workflow.confirm(key)
    assert rec.confirmed is True
    assert rec.confirmed_at
    assert workflow.state() == BreachState.CONFIRMED
    assert workflow.verify_key(key) is True
    # confirming does not cancel the cleanup timer
    assert scheduler.next_scheduled(EXPIRY_TASK_ID) is not None

    again = workflow.confirm(key)
    assert again.confirmed_at == rec.confirmed_at
    assert recorder.types().count("breach.confirmed") == 1


def test_confirm_without_record_raises(workflow):
    with pytest.raises(NotFoundError):
        workflow.confirm("a" * 20)


def test_expiry_deletes_confirmed_notification_with_warning(workflow, scheduler, logger):
    key = workflow.initiate(dict(FIELDS))
    workflow.confirm(key)
    scheduler.advance(TWO_DAYS)
    assert workflow.current() is None
    assert any("already confirmed" in w for w in logger.warnings())


def test_clear_removes_record_and_timer(workflow, scheduler):
    workflow.initiate(dict(FIELDS))
    assert workflow.clear() is True
    assert workflow.current() is None
    assert scheduler.pending() == []
    assert workflow.clear() is False


def test_failed_email_keeps_pending_record(options, scheduler, event_bus, recorder, logger):
    sender = RecordingSender(fail=True)
    wf = BreachWorkflow(options=options, scheduler=scheduler, sender=sender, admin_email="dpo@example.com", event_bus=event_bus, logger=logger)
    key = wf.initiate(dict(FIELDS))

    assert wf.stored_key() == key
    assert wf.state() == BreachState.PENDING_CONFIRMATION
    assert wf.last_send_result is not None and wf.last_send_result.ok is False
    assert "breach.email_failed" in recorder.types()
    assert len(scheduler.pending()) == 1


def test_sender_exception_is_captured(options, scheduler):
    wf = BreachWorkflow(options=options, scheduler=scheduler, sender=RecordingSender(raise_error=True), admin_email="dpo@example.com")
    wf.initiate(dict(FIELDS))
    assert wf.last_send_result.ok is False
    assert "mail transport down" in (wf.last_send_result.error or "")


def test_strict_mode_raises_after_persisting(options, scheduler):
    wf = BreachWorkflow(
        options=options,
        scheduler=scheduler,
        sender=RecordingSender(fail=True),
        admin_email="dpo@example.com",
        fail_on_send_error=True,
    )
    with pytest.raises(TransientIOError):
        wf.initiate(dict(FIELDS))
    assert options.get(BREACH_NOTIFICATION_RECORD) is not None


def test_option_store_failure_surfaces_as_transient(scheduler, sender):
    wf = BreachWorkflow(options=BrokenOptionStore(), scheduler=scheduler, sender=sender, admin_email="dpo@example.com")
    with pytest.raises(TransientIOError):
        wf.initiate(dict(FIELDS))
    assert sender.sent == []


def test_audit_and_events_never_carry_the_key(workflow, audit, event_bus):
    key = workflow.initiate(dict(FIELDS), requester="admin@example.com")
    workflow.confirm(key)
    workflow.expire()

    lines = read_jsonl(audit.path)
    assert [ln["event"] for ln in lines] == ["breach.initiated", "breach.confirmed", "breach.expired"]
    assert key not in str(lines)
    assert key not in str(event_bus.dump_recent(50))


def test_expiry_handler_registered_on_construction(options, sender):
    sched = ManualScheduler()
    BreachWorkflow(options=options, scheduler=sched, sender=sender, admin_email="dpo@example.com")
    assert EXPIRY_TASK_ID in sched.registered()


def test_initiate_with_result_reports_this_calls_send(options, scheduler, clock):
    wf = BreachWorkflow(options=options, scheduler=scheduler, sender=RecordingSender(fail=True), admin_email="dpo@example.com")
    res = wf.initiate_with_result(dict(FIELDS))
    assert res.key == wf.stored_key()
    assert res.send_result.ok is False
    assert res.expires_at == clock.time() + TWO_DAYS


def test_expiry_payload_carries_key_digest_not_key(workflow, scheduler):
    key = workflow.initiate(dict(FIELDS))
    payload = scheduler.pending()[0]["payload"]
    assert payload["key_digest"] == key_digest(key)
    assert key not in str(payload)


def test_old_timer_payload_does_not_remove_newer_record(workflow, scheduler, logger):
    workflow.initiate(dict(FIELDS))
    old_payload = scheduler.pending()[0]["payload"]
    k2 = workflow.initiate({**FIELDS, "nature": "second"})

    assert workflow.on_expiry_task(old_payload) is False
    assert workflow.stored_key() == k2
    assert any("stale expiry timer" in ln for ln in logger.lines)

    # a direct expire() stays unconditional
    assert workflow.expire() is True
    assert workflow.current() is None


def test_expiry_firing_while_initiate_replaces_record(workflow, scheduler, options):
    workflow.initiate(dict(FIELDS))
    second = {}

    # The scheduler has already taken the due task when the handler runs;
    # a new initiate landing in that gap must survive the old handler.
    def initiate_then_expire(payload):
        second["key"] = workflow.initiate({**FIELDS, "nature": "second"})
        workflow.on_expiry_task(payload)

    scheduler.register(EXPIRY_TASK_ID, initiate_then_expire)
    assert scheduler.advance(TWO_DAYS) == 1

    stored = options.get(BREACH_NOTIFICATION_RECORD)
    assert stored is not None
    assert stored["key"] == second["key"]
    assert stored["nature"] == "second"
    assert workflow.state() == BreachState.PENDING_CONFIRMATION
    pending = scheduler.pending()
    assert len(pending) == 1
    assert pending[0]["payload"]["key_digest"] == key_digest(second["key"])

    scheduler.register(EXPIRY_TASK_ID, workflow.on_expiry_task)
    assert scheduler.advance(TWO_DAYS) == 1
    assert options.get(BREACH_NOTIFICATION_RECORD) is None


def test_concurrent_initiates_leave_one_consistent_record(workflow, scheduler, options):
    n = 8
    start = threading.Barrier(n)
    keys = {}
    errors = []

    def run(i):
        try:
            start.wait()
            fields = {f: f"{f}-{i}" for f in FIELDS}
            keys[workflow.initiate(fields, requester=f"admin{i}@example.com")] = i
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(keys) == n
    stored = options.get(BREACH_NOTIFICATION_RECORD)
    assert stored["key"] in keys
    i = keys[stored["key"]]
    assert {f: stored[f] for f in FIELDS} == {f: f"{f}-{i}" for f in FIELDS}
    assert stored["requester"] == f"admin{i}@example.com"
    pending = scheduler.pending()
    assert len(pending) == 1
    assert pending[0]["payload"]["key_digest"] == key_digest(stored["key"])
