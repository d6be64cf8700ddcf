from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketing_data.db import get_db
from marketing_data.etl.types import SourceFormat
from marketing_data.models import RawData, Source

# --------------------------------------------------------------------
# Router setup
# --------------------------------------------------------------------
router = APIRouter(prefix="", tags=["sources"])


class SourceIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    kind: Optional[str] = None          # api, file, feed ...
    format: Optional[SourceFormat] = None  # omit to sniff each payload
    url: Optional[str] = None
    description: Optional[str] = None

    @field_validator("format", mode="before")
    @classmethod
    def _lower(cls, v):
        return v.lower() if isinstance(v, str) else v


def _source_to_dict(s: Source, db: Session) -> Dict[str, Any]:
    """Return a source row plus how many raw records it has delivered."""
    return {
        "id": s.id,
        "name": s.name,
        "kind": s.kind,
        "format": s.format,
        "url": s.url,
        "description": s.description,
        "raw_records": db.query(RawData).filter(RawData.source_id == s.id).count(),
    }


def _fields(body: SourceIn) -> Dict[str, Any]:
    data = body.model_dump()
    data["name"] = data["name"].strip()
    data["format"] = body.format.value if body.format else None
    return data


@router.get("/sources")
def list_sources(db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [_source_to_dict(s, db) for s in db.query(Source).order_by(Source.id).all()]


@router.get("/sources/{source_id}")
def get_source(source_id: int, db: Session = Depends(get_db)):
    s = db.get(Source, source_id)
    if not s: raise HTTPException(404, "Source not found")
    return _source_to_dict(s, db)


@router.post("/sources", status_code=201)
def create_source(body: SourceIn, db: Session = Depends(get_db)):
    s = Source(**_fields(body))
    db.add(s)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, f"Source '{body.name}' already exists")
    db.refresh(s)
    return _source_to_dict(s, db)


@router.put("/sources/{source_id}")
def update_source(source_id: int, body: SourceIn, db: Session = Depends(get_db)):
    s = db.get(Source, source_id)
    if not s: raise HTTPException(404, "Source not found")
    for k, v in _fields(body).items():
        setattr(s, k, v)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, f"Source '{body.name}' already exists")
    return _source_to_dict(s, db)


@router.delete("/sources/{source_id}", status_code=204)
def delete_source(source_id: int, db: Session = Depends(get_db)):
    s = db.get(Source, source_id)
    if not s: raise HTTPException(404, "Source not found")
    # Raw records are kept indefinitely, so a source that delivered data stays.
    if db.query(RawData).filter(RawData.source_id == source_id).first():
        raise HTTPException(409, "Source has raw records and cannot be deleted")
    db.delete(s)
    db.commit()
