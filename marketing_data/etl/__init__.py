from .pipeline import EtlPipeline, PipelineState
from .validator import RecordValidator
from .transformer import FormatTransformer, detect_format, resolve_format
from .enricher import MarkerEnricher
from .deduplicator import FirstWinsDeduplicator
from .events import Event, EventBus, LoadCompleted
from .alerts import AlertService
from .scheduler import EtlScheduler, SchedulerState, next_run_after
from .errors import EtlError, PipelineBusyError, UnknownEventError
from .types import (
    NormalizedRecord,
    PipelineOutput,
    RawRecord,
    SourceFormat,
    TransformResult,
    TransformWarning,
)

__all__ = [
    "EtlPipeline",
    "PipelineState",
    "RecordValidator",
    "FormatTransformer",
    "detect_format",
    "resolve_format",
    "MarkerEnricher",
    "FirstWinsDeduplicator",
    "Event",
    "EventBus",
    "LoadCompleted",
    "AlertService",
    "EtlScheduler",
    "SchedulerState",
    "next_run_after",
    "EtlError",
    "PipelineBusyError",
    "UnknownEventError",
    "NormalizedRecord",
    "PipelineOutput",
    "RawRecord",
    "SourceFormat",
    "TransformResult",
    "TransformWarning",
]
