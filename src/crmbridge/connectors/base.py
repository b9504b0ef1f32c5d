"""
Base class for content record sources.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, Union
import logging

from ..exceptions import RecordNotFoundError
from ..models.record import Record

logger = logging.getLogger(__name__)


def record_sort_key(record_id: str) -> Tuple[int, Union[int, str]]:
    """Order numeric ids numerically and place them before non-numeric ids."""
    if record_id.isdigit():
        return (0, int(record_id))
    return (1, record_id)


class RecordSource(ABC):
    """
    Abstract base class for the store the content records live in.

    The sync pipeline only reads from a record source; writing content is the
    host system's business.
    """

    def __init__(self, **kwargs):
        self.config = kwargs
        logger.info(f"Initialized {self.__class__.__name__} record source")

    @abstractmethod
    def find_record(self, record_id: str) -> Optional[Record]:
        """Return the record, or None if it does not exist."""
        pass

    @abstractmethod
    def list_record_ids(self, record_type: str, after_id: Optional[str] = None, limit: int = 50) -> List[str]:
        """
        List record ids of a type in a stable order.

        Args:
            record_type: Record type to enumerate
            after_id: Only return ids ordered after this one
            limit: Page size

        Returns:
            Up to `limit` ids; an empty list means the corpus is exhausted
        """
        pass

    def get_record(self, record_id: str) -> Record:
        """Return the record or raise RecordNotFoundError."""
        record = self.find_record(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return record
