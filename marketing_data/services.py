# marketing_data/services.py
"""
Process-wide ETL collaborators shared by the app, the routers and the scheduler.
"""
import logging
from datetime import timedelta

from marketing_data import settings
from marketing_data.db import SessionLocal
from marketing_data.etl.alerts import AlertService
from marketing_data.etl.events import Event, EventBus, LoadCompleted
from marketing_data.etl.jobs import run_etl_job
from marketing_data.etl.scheduler import EtlScheduler
from marketing_data.etl.types import PipelineOutput
from marketing_data.reports import generate_report

log = logging.getLogger(__name__)

event_bus = EventBus()
alert_service = AlertService(
    enabled=settings.ALERTS_ENABLED,
    webhook_url=settings.ALERT_WEBHOOK_URL,
    email=settings.ALERT_EMAIL,
)


def export_report_on_load(payload: LoadCompleted) -> None:
    """LoadCompleted subscriber: snapshot the sales data into a workbook."""
    with SessionLocal() as db:
        report = generate_report(
            db, settings.REPORTS_DIR, description=f"Generated after ETL run {payload.run_id}"
        )
    event_bus.publish(Event.REPORT_GENERATED, report.id)


event_bus.subscribe(Event.LOAD_COMPLETED, export_report_on_load)


def run_scheduled_etl() -> PipelineOutput:
    with SessionLocal() as db:
        return run_etl_job(
            db, event_bus, trigger="scheduled",
            marker=settings.ENRICHMENT_MARKER, alerts=alert_service,
        )


def build_scheduler() -> EtlScheduler:
    return EtlScheduler(
        job=run_scheduled_etl,
        alerts=alert_service,
        run_at=settings.ETL_RUN_AT,
        max_attempts=settings.ETL_MAX_ATTEMPTS,
        retry_delay=timedelta(seconds=settings.ETL_RETRY_DELAY_SECONDS),
    )
