from typing import Iterable

from .base import Deduplicator
from .types import NormalizedRecord


class FirstWinsDeduplicator(Deduplicator):
    """
    Keeps the first record seen for each system_id and drops the rest.
    Output order is the first-seen order of the identifiers.
    """

    def dedupe(self, records: Iterable[NormalizedRecord]) -> list[NormalizedRecord]:
        kept: dict[str, NormalizedRecord] = {}
        for r in records:
            kept.setdefault(r.system_id, r)
        return list(kept.values())
