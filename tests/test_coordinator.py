# tests/test_coordinator.py
import threading

import pytest

from catalog_tracker import coordinator as coordinator_module
from catalog_tracker.coordinator import RunCoordinator, RunState
from catalog_tracker.errors import AuthRequired, RunAlreadyActive
from catalog_tracker.models import RunStatus, ScraperRun, TriggerType
from catalog_tracker.schemas import ScanSummary
from catalog_tracker.services import IngestResult
from catalog_tracker.utils import get_logger
from conftest import SELLER, scan_at

log = get_logger("catalog_tracker.tests")


def finished_run(db, run_id):
    db.expire_all()
    return db.get(ScraperRun, run_id)


def test_successful_run_is_recorded(session_factory, db):
    def runner(session_factory, ctx):
        log.info("scraping seller %s", SELLER)
        return IngestResult(summaries=[ScanSummary(seller_phone=SELLER, scan_time=scan_at(9), products_found=7)])

    coordinator = RunCoordinator(session_factory, runner=runner)
    outputs = []
    coordinator.subscribe(outputs.append)
    run_id = coordinator.start()
    assert coordinator.wait(5)

    run = finished_run(db, run_id)
    assert run.status == RunStatus.COMPLETED
    assert run.trigger_type == TriggerType.MANUAL
    assert (run.sellers_processed, run.products_scraped) == (1, 7)
    assert "scraping seller" in run.output
    assert outputs[0].type == "status"
    assert outputs[-1].type == "complete"
    assert coordinator.state == RunState.IDLE
    assert coordinator.current_run_id is None


def test_second_start_is_rejected_while_running(session_factory, db):
    release = threading.Event()

    def runner(session_factory, ctx):
        release.wait(5)
        return IngestResult()

    coordinator = RunCoordinator(session_factory, runner=runner)
    run_id = coordinator.start()
    assert coordinator.is_running()
    assert coordinator.current_run_id == run_id
    with pytest.raises(RunAlreadyActive):
        coordinator.start(TriggerType.SCHEDULED)
    release.set()
    assert coordinator.wait(5)
    assert db.query(ScraperRun).count() == 1
    assert coordinator.start() != run_id
    assert coordinator.wait(5)


def test_auth_required_and_failures(session_factory, db):
    def needs_login(session_factory, ctx):
        raise AuthRequired("scraper needs a QR code login")

    coordinator = RunCoordinator(session_factory, runner=needs_login)
    run_id = coordinator.start()
    coordinator.wait(5)
    assert finished_run(db, run_id).status == RunStatus.AUTH_REQUIRED
    assert coordinator.state == RunState.IDLE

    coordinator.runner = lambda session_factory, ctx: IngestResult(failures={SELLER: "batch 2/3 failed"})
    run_id = coordinator.start()
    coordinator.wait(5)
    run = finished_run(db, run_id)
    assert run.status == RunStatus.FAILED
    assert run.error_message == f"{SELLER}: batch 2/3 failed"
    assert coordinator.state == RunState.FAILED

    def crash(session_factory, ctx):
        raise ValueError("unexpected")

    coordinator.runner = crash
    run_id = coordinator.start()
    coordinator.wait(5)
    assert finished_run(db, run_id).error_message == "unexpected"


def test_stop_sets_flag_and_runs_hooks(session_factory):
    started, hooks = threading.Event(), []

    def runner(session_factory, ctx):
        ctx.on_stop(lambda: hooks.append("terminated"))
        started.set()
        ctx.stop_event.wait(5)
        assert ctx.should_stop()
        return IngestResult()

    coordinator = RunCoordinator(session_factory, runner=runner)
    assert coordinator.stop() is False
    coordinator.start()
    started.wait(5)
    assert coordinator.stop() is True
    assert coordinator.wait(5)
    assert hooks == ["terminated"]


def test_failing_subscriber_is_dropped(session_factory):
    coordinator = RunCoordinator(session_factory, runner=lambda session_factory, ctx: IngestResult())
    received = []

    def broken(output):
        raise RuntimeError("socket closed")

    coordinator.subscribe(broken)
    unsubscribe = coordinator.subscribe(received.append)
    coordinator.start()
    coordinator.wait(5)
    assert broken not in coordinator._listeners
    assert received
    unsubscribe()
    assert not coordinator._listeners


def test_run_is_stoppable_while_its_row_is_created(session_factory, monkeypatch):
    seen = {}

    def runner(session_factory, ctx):
        seen["stopped"] = ctx.should_stop()
        return IngestResult()

    coordinator = RunCoordinator(session_factory, runner=runner)
    first_id = coordinator.start()
    coordinator.wait(5)

    create_run = coordinator_module.crud.create_run

    def observing_create_run(db, trigger_type):
        seen["current_run_id"] = coordinator.current_run_id
        seen["stop"] = coordinator.stop()
        return create_run(db, trigger_type)

    monkeypatch.setattr(coordinator_module.crud, "create_run", observing_create_run)
    second_id = coordinator.start()
    coordinator.wait(5)

    assert second_id != first_id
    assert seen["current_run_id"] is None
    assert seen["stop"] is True
    assert seen["stopped"] is True
