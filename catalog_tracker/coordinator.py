# catalog_tracker/coordinator.py
"""Process-wide run coordination.

At most one reconciliation run is active at a time. A start request while a
run is active is rejected with ``RunAlreadyActive``; it is never queued.
"""
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from . import crud
from .errors import AuthRequired, RunAlreadyActive
from .models import RunStatus, TriggerType
from .utils import LOG_FORMAT, get_logger

logger = get_logger(__name__)


class RunState(str, enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    FAILED = "FAILED"


@dataclass
class RunOutput:
    type: str  # status | log | complete
    data: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RunContext:
    run_id: Optional[int] = None
    stop_event: threading.Event = field(default_factory=threading.Event)
    stop_hooks: List[Callable[[], object]] = field(default_factory=list)

    def should_stop(self):
        return self.stop_event.is_set()

    def on_stop(self, hook):
        self.stop_hooks.append(hook)


def default_runner(session_factory, ctx):
    from .enrich import Enricher, make_provider
    from .pipeline import build_source, run_pipeline
    from .sources import resolve_seller_configs

    source = build_source()
    ctx.on_stop(source.stop)
    enricher = Enricher(make_provider())
    return run_pipeline(session_factory, source, enricher, resolve_seller_configs(), should_stop=ctx.should_stop)


class _RunLogHandler(logging.Handler):
    """Forwards log records emitted on the run's worker thread."""

    def __init__(self, coordinator, thread_id):
        super().__init__()
        self.coordinator = coordinator
        self.thread_id = thread_id
        self.setFormatter(logging.Formatter(LOG_FORMAT))

    def emit(self, record):
        if record.thread != self.thread_id:
            return
        self.coordinator._record(RunOutput(type="log", data=self.format(record)))


class RunCoordinator:
    def __init__(self, session_factory, runner=default_runner):
        self.session_factory = session_factory
        self.runner = runner
        self.state = RunState.IDLE
        self._lock = threading.Lock()
        self._ctx = None
        self._thread = None
        self._output = []
        self._listeners = set()

    def is_running(self):
        return self.state == RunState.RUNNING

    @property
    def current_run_id(self):
        ctx = self._ctx
        return ctx.run_id if ctx and self.is_running() else None

    def subscribe(self, callback):
        self._listeners.add(callback)
        return lambda: self._listeners.discard(callback)

    def _broadcast(self, output):
        for callback in list(self._listeners):
            try:
                callback(output)
            except Exception:
                # a failing subscriber is dropped
                self._listeners.discard(callback)

    def _record(self, output):
        self._output.append(output.data)
        self._broadcast(output)

    def start(self, trigger_type=TriggerType.MANUAL):
        """Begin a run on a worker thread and return its run id."""
        with self._lock:
            if self.state == RunState.RUNNING:
                raise RunAlreadyActive("Scraper is already running")
            self.state = RunState.RUNNING
            # run_id stays None until the ScraperRun row exists
            ctx = self._ctx = RunContext()
            self._output = []
        try:
            with self.session_factory() as db:
                ctx.run_id = crud.create_run(db, TriggerType(trigger_type)).id
        except Exception:
            with self._lock:
                self.state = RunState.IDLE
                self._ctx = None
            raise

        run_id = ctx.run_id
        self._broadcast(RunOutput(type="status", data=f"Starting scraper (Run #{run_id})..."))
        self._thread = threading.Thread(target=self._execute, args=(ctx,), name=f"run-{run_id}", daemon=True)
        self._thread.start()
        return run_id

    def _execute(self, ctx):
        handler = _RunLogHandler(self, threading.get_ident())
        package_logger = logging.getLogger("catalog_tracker")
        package_logger.addHandler(handler)
        updates = {"sellers_processed": 0, "products_scraped": 0, "error_message": None}
        try:
            result = self.runner(self.session_factory, ctx)
            updates["sellers_processed"] = len(result.summaries)
            updates["products_scraped"] = result.products_found
            if result.ok:
                updates["status"] = RunStatus.COMPLETED
            else:
                updates["status"] = RunStatus.FAILED
                updates["error_message"] = "; ".join(f"{k}: {v}" for k, v in result.failures.items())
        except AuthRequired as e:
            logger.warning("Run #%d needs authentication: %s", ctx.run_id, e)
            updates["status"] = RunStatus.AUTH_REQUIRED
            updates["error_message"] = str(e)
        except Exception as e:
            logger.exception("Run #%d failed: %s", ctx.run_id, e)
            updates["status"] = RunStatus.FAILED
            updates["error_message"] = str(e)
        finally:
            package_logger.removeHandler(handler)

        updates["output"] = "\n".join(self._output)
        try:
            with self.session_factory() as db:
                crud.finish_run(db, ctx.run_id, updates)
        except Exception:
            logger.exception("Could not record outcome of run #%d", ctx.run_id)

        status = updates["status"]
        self._broadcast(RunOutput(type="complete", data=f"Scraper finished with status: {status.value}"))
        with self._lock:
            self.state = RunState.IDLE if status != RunStatus.FAILED else RunState.FAILED

    def stop(self):
        """Ask the active run to stop; returns False when nothing is running."""
        with self._lock:
            ctx = self._ctx if self.state == RunState.RUNNING else None
        if ctx is None:
            return False
        ctx.stop_event.set()
        for hook in ctx.stop_hooks:
            hook()
        return True

    def wait(self, timeout=None):
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return not (thread and thread.is_alive())
