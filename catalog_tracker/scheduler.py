# catalog_tracker/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import SQLAlchemyError

from . import crud
from .errors import RunAlreadyActive
from .models import TriggerType
from .schemas import SchedulerConfigOut
from .utils import logger

JOB_ID = "scheduled-run"


def parse_cron(cron_expr):
    """Build a UTC cron trigger; raises ValueError for invalid expressions."""
    try:
        return CronTrigger.from_crontab(cron_expr.strip(), timezone="UTC")
    except (ValueError, AttributeError) as e:
        raise ValueError(f"Invalid cron expression: {cron_expr!r}") from e


class RunScheduler:
    """Triggers scheduled runs through the coordinator, one cron job at most."""

    def __init__(self, session_factory, coordinator, scheduler=None):
        self.session_factory = session_factory
        self.coordinator = coordinator
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def _scheduled_run(self):
        logger.info("Scheduled scraper run starting...")
        try:
            self.coordinator.start(TriggerType.SCHEDULED)
        except RunAlreadyActive:
            logger.warning("Skipping scheduled run: a run is already active")

    def apply(self, enabled, cron_expr):
        if not enabled:
            if self.scheduler.get_job(JOB_ID):
                self.scheduler.remove_job(JOB_ID)
                logger.info("Scheduler stopped")
            return
        self.scheduler.add_job(self._scheduled_run, parse_cron(cron_expr), id=JOB_ID, replace_existing=True)
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Scheduler started with cron: %s", cron_expr)

    def init(self):
        try:
            with self.session_factory() as db:
                config = SchedulerConfigOut.model_validate(crud.get_scheduler_config(db, create=True))
        except SQLAlchemyError as e:
            logger.warning("Scheduler init skipped - database not ready: %s", e)
            return None
        if config.enabled:
            try:
                self.apply(True, config.cron_expr)
            except ValueError as e:
                logger.error("Stored schedule not applied: %s", e)
        return config

    def get_config(self):
        with self.session_factory() as db:
            return SchedulerConfigOut.model_validate(crud.get_scheduler_config(db, create=True))

    def update(self, enabled, cron_expr):
        parse_cron(cron_expr)
        with self.session_factory() as db:
            config = SchedulerConfigOut.model_validate(crud.update_scheduler_config(db, enabled, cron_expr))
        self.apply(config.enabled, config.cron_expr)
        return config

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
