import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, StatementError
from sqlalchemy.orm import Session

from marketing_data.etl.base import RecordStore
from marketing_data.etl.transformer import resolve_format
from marketing_data.etl.types import NormalizedRecord, RawRecord, SourceFormat
from marketing_data.models import NormalizedData, RawData, Source

log = logging.getLogger(__name__)


class SqlRecordStore(RecordStore):
    """
    Pipeline storage backed by the ORM session.
    Every run reads all raw rows and replaces the normalized table.
    """

    def __init__(self, db: Session, run_id: Optional[int] = None):
        self.db = db
        self.run_id = run_id

    def get_pending_raw_records(self) -> list[RawRecord]:
        rows = self.db.execute(select(RawData).order_by(RawData.id)).scalars().all()
        return [
            RawRecord(
                content=row.content,
                timestamp=row.timestamp,
                origin=row.source.name if row.source else "",
                format=_stored_format(row.format),
                id=row.id,
                source_id=row.source_id,
            )
            for row in rows
        ]

    def save_normalized_records(self, records: list[NormalizedRecord]) -> int:
        try:
            self.db.execute(delete(NormalizedData))
            self.db.add_all(
                NormalizedData(
                    system_id=r.system_id,
                    category=r.category,
                    value=r.value,
                    content=r.content,
                    source_format=r.source_format.value,
                    raw_data_id=r.raw_record_id,
                    run_id=self.run_id,
                )
                for r in records
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log.info("stored %d normalized records (run_id=%s)", len(records), self.run_id)
        return len(records)


def _stored_format(value: Optional[str]) -> Optional[SourceFormat]:
    if not value:
        return None
    try:
        return SourceFormat(value)
    except ValueError:
        log.warning("raw row has unknown format %r, will sniff", value)
        return None


def get_or_create_source(db: Session, name: str) -> Source:
    src = db.execute(select(Source).where(Source.name == name)).scalar_one_or_none()
    if src is None:
        log.info("creating source on first ingest: %s", name)
        src = Source(name=name)
        db.add(src)
        db.flush()
    return src


def insert_raw_records(db: Session, records: list[dict]) -> tuple[int, list[dict]]:
    """
    Store as-ingested payloads. No validation beyond referential checks: the
    pipeline's validator decides later what is usable.
    The payload format is resolved here (declared by the source, else sniffed).
    """
    ok = 0
    errors: list[dict] = []

    for i, r in enumerate(records):
        content = r.get("content")
        if content is None:
            content = ""
        try:
            with db.begin_nested():  # savepoint per record
                src = None
                if r.get("source_id") is not None:
                    src = db.get(Source, r["source_id"])
                    if src is None:
                        raise ValueError(f"source {r['source_id']} not found")
                elif r.get("source_name"):
                    src = get_or_create_source(db, str(r["source_name"]).strip())

                fmt = resolve_format(src.format if src else None, content)
                db.add(RawData(
                    content=content,
                    timestamp=r.get("timestamp"),
                    ingested_at=datetime.now(),
                    source_id=src.id if src else None,
                    format=fmt.value,
                ))
            ok += 1
        except (IntegrityError, StatementError, TypeError, ValueError) as e:
            log.warning("raw record %d rejected: %s", i, e)
            errors.append({"index": i, "error": str(e)})

    return ok, errors
