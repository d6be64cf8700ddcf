# marketing_data/etl/types.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SourceFormat(str, Enum):
    """Payload layout of a raw record, resolved once at ingestion."""
    JSON = "json"
    CSV = "csv"
    XML = "xml"
    TEXT = "text"


@dataclass(frozen=True)
class RawRecord:
    content: Optional[str]
    timestamp: Optional[datetime]
    origin: str = ""                          # source name
    format: Optional[SourceFormat] = None     # None = sniff from content
    id: Optional[int] = None
    source_id: Optional[int] = None


@dataclass(frozen=True)
class NormalizedRecord:
    system_id: str
    category: str
    value: float
    raw_record_id: Optional[int]
    content: str = ""
    source_format: SourceFormat = SourceFormat.TEXT


@dataclass(frozen=True)
class TransformWarning:
    """A payload that could not be parsed as its declared format."""
    raw_record_id: Optional[int]
    source_format: SourceFormat
    message: str


@dataclass(frozen=True)
class TransformResult:
    record: NormalizedRecord
    warning: Optional[TransformWarning] = None


@dataclass
class PipelineOutput:
    records: list[NormalizedRecord] = field(default_factory=list)
    warnings: list[TransformWarning] = field(default_factory=list)
    received: int = 0      # raw records read
    valid: int = 0         # raw records that passed validation
