import logging
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from marketing_data.models import IngestionLog
from marketing_data.repositories import SqlRecordStore
from .alerts import AlertService
from .enricher import MarkerEnricher
from .errors import PipelineBusyError
from .events import EventBus
from .pipeline import EtlPipeline
from .types import PipelineOutput

log = logging.getLogger(__name__)

# Scheduler and manual trigger share this: one run per process at a time.
_run_lock = threading.Lock()


def is_running() -> bool:
    return _run_lock.locked()


def run_etl_job(
    db: Session,
    bus: EventBus,
    trigger: str = "scheduled",
    marker: Optional[str] = None,
    alerts: Optional[AlertService] = None,
) -> PipelineOutput:
    """
    One audited pipeline run: opens an ingestion_logs row, runs the pipeline and
    stamps the row completed/failed. Failures are re-raised for the caller.
    """
    if not _run_lock.acquire(blocking=False):
        raise PipelineBusyError("an ETL run is already in progress")
    try:
        entry = IngestionLog(trigger=trigger, status="running", started_at=datetime.now())
        db.add(entry)
        db.commit()

        enricher = MarkerEnricher(marker) if marker is not None else None
        pipeline = EtlPipeline(SqlRecordStore(db, run_id=entry.id), bus, enricher=enricher)
        try:
            out = pipeline.run(run_id=entry.id)
        except Exception as e:
            db.rollback()
            entry.status = "failed"
            entry.finished_at = datetime.now()
            entry.error = f"{type(e).__name__}: {e}"
            db.commit()
            raise

        entry.status = "completed"
        entry.finished_at = datetime.now()
        entry.processed = out.received
        entry.stored = len(out.records)
        entry.warnings = len(out.warnings)
        db.commit()

        if out.warnings:
            for w in out.warnings:
                log.warning("fallback record for raw %s (%s): %s",
                            w.raw_record_id, w.source_format.value, w.message)
            if alerts is not None:
                alerts.send_warning(
                    f"ETL run {entry.id}: {len(out.warnings)} raw records could not be parsed "
                    "and were stored as generic records"
                )
        return out
    finally:
        _run_lock.release()
