from contextlib import asynccontextmanager
import asyncio
import logging
from fastapi import FastAPI

from .db import engine, Base
from .routers.ingest import router as ingest_router
from .routers.sources import router as sources_router
from .routers.crm import router as crm_router
from .routers.reports import router as reports_router
from marketing_data import services, settings
from marketing_data.etl.jobs import is_running
from marketing_data.setup_logging import setup_logging

# --------------------------------------------------------------------
# App bootstrap
# --------------------------------------------------------------------
setup_logging(settings.LOG_LEVEL) # Init Logging
log = logging.getLogger(__name__)

# Create database tables if they don’t exist.
Base.metadata.create_all(bind=engine)

# --------------------------------------------------------------------
# FastAPI application with lifespan hook
# --------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context runs once at startup and once at shutdown.
    Starts the nightly ETL scheduler as a background task and stops it
    (waking any pending sleep) when the server shuts down.
    """
    app.state.scheduler = None
    task = None
    if settings.ETL_SCHEDULER_ENABLED:
        app.state.scheduler = services.build_scheduler()
        task = asyncio.create_task(app.state.scheduler.run_forever())
    else:
        log.info("ETL scheduler disabled (ETL_SCHEDULER_ENABLED=false)")

    # Hand control back to FastAPI to serve requests
    yield

    if task is not None:
        app.state.scheduler.stop()
        try:
            await asyncio.wait_for(task, timeout=10)
        except asyncio.TimeoutError:
            # wait_for has cancelled the loop; a job thread may still be finishing
            log.warning("ETL scheduler did not stop in time, cancelled")

# Create the FastAPI app instance
app = FastAPI(title="Marketing Data API", lifespan=lifespan)

# --------------------------------------------------------------------
# Routes
# --------------------------------------------------------------------
@app.get("/healthz")
def health():
    """
    Simple health probe for monitoring.
    Returns:
      - ok: static True if the app is alive
      - scheduler: state and next run time of the nightly ETL (None if disabled)
      - etl_running: True while a pipeline run is in progress
      - events: per-event publish/error counters
    """
    sched = getattr(app.state, "scheduler", None)
    return {
        "ok": True,
        "service": "marketing-data",
        "version": 1,
        "scheduler": None if sched is None else {
            "state": sched.state.value,
            "next_run": sched.next_run,
        },
        "etl_running": is_running(),
        "events": services.event_bus.stats(),
    }

# Register API routers:
app.include_router(sources_router)
app.include_router(ingest_router)
app.include_router(crm_router)
app.include_router(reports_router)
