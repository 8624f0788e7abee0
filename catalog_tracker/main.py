# catalog_tracker/main.py
from fastapi import FastAPI

from . import models  # noqa: F401 ensure models are imported so tables are known
from .api.routes import router as api_router
from .coordinator import RunCoordinator, default_runner
from .db import Base, SessionLocal, engine, get_db
from .scheduler import RunScheduler
from .utils import logger


def create_app(session_factory=SessionLocal, bind=engine, runner=default_runner, scheduler=None):
    app = FastAPI(title="catalog-tracker")
    app.state.coordinator = RunCoordinator(session_factory, runner=runner)
    app.state.run_scheduler = RunScheduler(session_factory, app.state.coordinator, scheduler=scheduler)
    app.include_router(api_router)

    if session_factory is not SessionLocal:
        def _get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()
        app.dependency_overrides[get_db] = _get_db

    @app.on_event("startup")
    def on_startup():
        # create_all only creates tables that are missing
        Base.metadata.create_all(bind=bind)
        app.state.run_scheduler.init()
        logger.info("catalog-tracker API started")

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.coordinator.stop()
        app.state.run_scheduler.shutdown()

    return app


app = create_app()
