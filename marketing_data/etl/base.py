# marketing_data/etl/base.py
from typing import Iterable, Protocol

from .types import NormalizedRecord, RawRecord, TransformResult


class Validator(Protocol):
    def validate(self, record: RawRecord) -> bool:
        """True when the record is worth transforming. Never raises."""
        ...


class Transformer(Protocol):
    def transform(self, record: RawRecord) -> TransformResult:
        """Return a NEW normalized record for a validated raw record."""
        ...


class Enricher(Protocol):
    def enrich(self, records: Iterable[NormalizedRecord]) -> list[NormalizedRecord]:
        ...


class Deduplicator(Protocol):
    def dedupe(self, records: Iterable[NormalizedRecord]) -> list[NormalizedRecord]:
        ...


class RecordStore(Protocol):
    """Where the pipeline reads raw records from and writes its output to."""

    def get_pending_raw_records(self) -> list[RawRecord]:
        ...

    def save_normalized_records(self, records: list[NormalizedRecord]) -> int:
        ...
