from datetime import datetime

from .base import Validator
from .types import RawRecord


class RecordValidator(Validator):
    """Rejects raw records with blank content or an unset timestamp."""

    def validate(self, record: RawRecord) -> bool:
        if record.content is None or not record.content.strip():
            return False
        return record.timestamp is not None and record.timestamp != datetime.min
