import logging
from pathlib import Path
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from marketing_data import settings
from marketing_data.db import get_db
from marketing_data.models import Report
from marketing_data.reports import generate_report

log = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _report_to_dict(r: Report) -> Dict[str, Any]:
    return {
        "id": r.id,
        "name": r.name,
        "description": r.description,
        "file_name": r.file_name,
        "created_at": r.created_at,
        "available": Path(r.path).exists(),
    }


@router.get("/reports")
def list_reports(db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [_report_to_dict(r) for r in db.query(Report).order_by(Report.id.desc()).all()]


@router.post("/reports/generate", status_code=201)
def create_report(db: Session = Depends(get_db)):
    """Export a workbook now instead of waiting for the next ETL run."""
    try:
        report = generate_report(db, settings.REPORTS_DIR, description="Generated on request")
    except OSError as e:
        db.rollback()
        log.exception("report export failed")
        raise HTTPException(500, f"Report export failed: {e}")
    return _report_to_dict(report)


@router.get("/reports/{report_id}")
def get_report(report_id: int, db: Session = Depends(get_db)):
    r = db.get(Report, report_id)
    if not r: raise HTTPException(404, "Report not found")
    return _report_to_dict(r)


@router.get("/reports/{report_id}/download")
def download_report(report_id: int, db: Session = Depends(get_db)):
    r = db.get(Report, report_id)
    if not r: raise HTTPException(404, "Report not found")
    if not Path(r.path).exists():
        raise HTTPException(410, "Report file is no longer on disk")
    return FileResponse(r.path, media_type=XLSX_MEDIA_TYPE, filename=r.file_name)
