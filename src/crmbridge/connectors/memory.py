"""
In-process record source.
"""

from typing import Dict, Iterable, List, Optional

from ..models.record import Record
from .base import RecordSource, record_sort_key


class InMemoryRecordSource(RecordSource):
    """Record source holding records in a dict. Used for tests and local runs."""

    def __init__(self, records: Optional[Iterable[Record]] = None, **kwargs):
        super().__init__(**kwargs)
        self._records: Dict[str, Record] = {}
        for record in records or []:
            self.put(record)

    def put(self, record: Record) -> None:
        """Add or replace a record."""
        self._records[record.record_id] = record.model_copy(deep=True)

    def remove(self, record_id: str) -> None:
        self._records.pop(record_id, None)

    def find_record(self, record_id: str) -> Optional[Record]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def list_record_ids(self, record_type: str, after_id: Optional[str] = None, limit: int = 50) -> List[str]:
        ids = sorted(
            (r.record_id for r in self._records.values() if r.record_type == record_type),
            key=record_sort_key,
        )
        if after_id is not None:
            after_key = record_sort_key(after_id)
            ids = [i for i in ids if record_sort_key(i) > after_key]
        return ids[:limit]
