import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketing_data import services, settings
from marketing_data.db import get_db
from marketing_data.etl.errors import PipelineBusyError
from marketing_data.etl.jobs import run_etl_job
from marketing_data.models import IngestionLog, NormalizedData, RawData
from marketing_data.repositories import insert_raw_records

log = logging.getLogger(__name__)

# --------------------------------------------------------------------
# Router setup
# --------------------------------------------------------------------
router = APIRouter(prefix="", tags=["ingest"])


class RawIn(BaseModel):
    content: Optional[str] = None        # opaque payload (JSON, CSV, XML or text)
    timestamp: Optional[datetime] = None  # when the source produced it
    source_id: Optional[int] = None
    source_name: Optional[str] = None     # created on first use


@router.post("/ingest")
def ingest(payload: List[RawIn], db: Session = Depends(get_db)):
    """
    Store raw records for the next ETL run.

    Nothing is validated here beyond the source reference: blank or undated
    records are kept and dropped later by the pipeline's validator.

    Returns:
        {"ok": True, "ingested": <n>, "failed": <n>, "errors": [... up to 10 ...]}
    """
    if not payload:
        raise HTTPException(400, "Payload must be a non-empty JSON array")
    try:
        ok, errors = insert_raw_records(db, [p.model_dump() for p in payload])
        db.commit()
    except Exception as e:
        db.rollback()
        log.exception("ingest failed")
        raise HTTPException(500, f"Ingest failed: {e}")
    return {"ok": True, "ingested": ok, "failed": len(errors), "errors": errors[:10]}


def _raw_to_dict(r: RawData) -> Dict[str, Any]:
    return {
        "id": r.id,
        "content": r.content,
        "timestamp": r.timestamp,
        "ingested_at": r.ingested_at,
        "source_id": r.source_id,
        "source": r.source.name if r.source else None,
        "format": r.format,
    }

def _normalized_to_dict(n: NormalizedData) -> Dict[str, Any]:
    return {
        "id": n.id,
        "system_id": n.system_id,
        "category": n.category,
        "value": n.value,
        "content": n.content,
        "source_format": n.source_format,
        "raw_data_id": n.raw_data_id,
        "run_id": n.run_id,
    }

def _log_to_dict(e: IngestionLog) -> Dict[str, Any]:
    duration = (e.finished_at - e.started_at).total_seconds() if e.finished_at else None
    return {
        "id": e.id,
        "trigger": e.trigger,
        "status": e.status,
        "started_at": e.started_at,
        "finished_at": e.finished_at,
        "duration_seconds": duration,
        "processed": e.processed,
        "stored": e.stored,
        "warnings": e.warnings,
        "error": e.error,
        "running": e.status == "running" and e.finished_at is None,
    }


@router.get("/raw-data")
def list_raw_data(
    source_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=2000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    q = db.query(RawData)
    if source_id is not None:
        q = q.filter(RawData.source_id == source_id)
    return [_raw_to_dict(r) for r in q.order_by(RawData.id).offset(offset).limit(limit).all()]


@router.get("/normalized-data")
def list_normalized_data(
    category: Optional[str] = Query(None, description="Exact category match"),
    limit: int = Query(100, ge=1, le=2000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    q = db.query(NormalizedData)
    if category:
        q = q.filter(NormalizedData.category == category)
    return [_normalized_to_dict(n) for n in q.order_by(NormalizedData.id).offset(offset).limit(limit).all()]


@router.post("/ingestion/start")
def start_ingestion(db: Session = Depends(get_db)):
    """
    Run the ETL pipeline now, outside the nightly schedule.
    409 if a run (scheduled or manual) is already in progress.
    """
    log.info("manual ETL run requested")
    try:
        out = run_etl_job(
            db, services.event_bus, trigger="manual",
            marker=settings.ENRICHMENT_MARKER, alerts=services.alert_service,
        )
    except PipelineBusyError as e:
        raise HTTPException(409, str(e))
    except Exception as e:
        raise HTTPException(500, f"ETL run failed: {e}")

    return {
        "ok": True,
        "trigger": "manual",
        "received": out.received,
        "valid": out.valid,
        "stored": len(out.records),
        "warnings": [
            {"raw_record_id": w.raw_record_id, "format": w.source_format.value, "message": w.message}
            for w in out.warnings
        ],
    }


@router.get("/ingestion/status")
def ingestion_status(db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Latest ETL run, or status "no_runs" when the pipeline never ran."""
    last = (
        db.query(IngestionLog)
        .order_by(IngestionLog.started_at.desc(), IngestionLog.id.desc())
        .first()
    )
    if last is None:
        return {"status": "no_runs", "message": "The ETL pipeline has not run yet"}
    return _log_to_dict(last)


@router.get("/ingestion/runs")
def list_runs(
    limit: int = Query(20, ge=1, le=500),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    runs = db.query(IngestionLog).order_by(IngestionLog.id.desc()).limit(limit).all()
    return [_log_to_dict(e) for e in runs]
