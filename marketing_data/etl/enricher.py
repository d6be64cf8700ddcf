from dataclasses import replace
from typing import Iterable

from .base import Enricher
from .types import NormalizedRecord

DEFAULT_MARKER = " | enriched"


class MarkerEnricher(Enricher):
    """Appends a fixed metadata marker to every record's content."""

    def __init__(self, marker: str = DEFAULT_MARKER):
        self.marker = marker

    def enrich(self, records: Iterable[NormalizedRecord]) -> list[NormalizedRecord]:
        return [replace(r, content=r.content + self.marker) for r in records]
