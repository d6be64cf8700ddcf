import logging
from enum import Enum
from typing import Iterable, Optional

from .base import Deduplicator, Enricher, RecordStore, Transformer, Validator
from .deduplicator import FirstWinsDeduplicator
from .enricher import MarkerEnricher
from .errors import PipelineBusyError
from .events import Event, EventBus, LoadCompleted
from .transformer import FormatTransformer
from .types import PipelineOutput, RawRecord
from .validator import RecordValidator

log = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class EtlPipeline:
    """
    validate -> transform -> enrich -> dedupe over every pending raw record,
    then persist the result and announce it on the event bus.

    Stage failures are not caught here; they propagate to the caller (the
    scheduler retries, the manual trigger reports).
    """

    def __init__(
        self,
        store: RecordStore,
        bus: EventBus,
        validator: Optional[Validator] = None,
        transformer: Optional[Transformer] = None,
        enricher: Optional[Enricher] = None,
        deduplicator: Optional[Deduplicator] = None,
    ):
        self.store = store
        self.bus = bus
        self.validator = validator or RecordValidator()
        self.transformer = transformer or FormatTransformer()
        self.enricher = enricher or MarkerEnricher()
        self.deduplicator = deduplicator or FirstWinsDeduplicator()
        self.state = PipelineState.IDLE

    def process(self, raw_records: Iterable[RawRecord]) -> PipelineOutput:
        """Run the four stages in memory. Invalid records are dropped silently."""
        out = PipelineOutput()
        normalized = []
        for raw in raw_records:
            out.received += 1
            if not self.validator.validate(raw):
                continue
            out.valid += 1
            result = self.transformer.transform(raw)
            normalized.append(result.record)
            if result.warning is not None:
                out.warnings.append(result.warning)

        enriched = self.enricher.enrich(normalized)
        out.records = self.deduplicator.dedupe(enriched)
        log.info(
            "processed raw=%d valid=%d normalized=%d deduplicated=%d warnings=%d",
            out.received, out.valid, len(normalized), len(out.records), len(out.warnings),
        )
        return out

    def run(self, run_id: Optional[int] = None) -> PipelineOutput:
        if self.state is PipelineState.RUNNING:
            raise PipelineBusyError("pipeline is already running")

        self.state = PipelineState.RUNNING
        log.info("ETL run started (run_id=%s)", run_id)
        try:
            raw = self.store.get_pending_raw_records()
            out = self.process(raw)
            self.store.save_normalized_records(out.records)
        except Exception:
            log.exception("ETL run failed (run_id=%s)", run_id)
            raise
        finally:
            self.state = PipelineState.IDLE

        self.bus.publish(
            Event.LOAD_COMPLETED,
            LoadCompleted(run_id=run_id, records=len(out.records), warnings=list(out.warnings)),
        )
        log.info("ETL run completed (run_id=%s, records=%d)", run_id, len(out.records))
        return out
