"""
Record source reading content records mirrored into Firestore by the host.
"""

import logging
from typing import List, Optional
from google.cloud import firestore

from ..models.record import Record
from .base import RecordSource

logger = logging.getLogger(__name__)

# Numeric copy of the document id, written by the host alongside each record
ID_FIELD = "post_id"


class FirestoreRecordSource(RecordSource):
    """
    Reads records from a Firestore collection, one document per record.

    Documents are keyed by record id and carry the id again as an integer in
    ``post_id``, so listing orders numerically ("9" before "10"). Listing by
    type needs a composite index on (record_type, post_id).
    """

    def __init__(self, project_id: Optional[str] = None, collection: str = "records",
                 client: Optional[firestore.Client] = None, id_field: str = ID_FIELD, **kwargs):
        super().__init__(**kwargs)
        self.db = client or firestore.Client(project=project_id)
        self.collection = collection
        self.id_field = id_field

    def find_record(self, record_id: str) -> Optional[Record]:
        try:
            doc = self.db.collection(self.collection).document(record_id).get()
            if doc.exists:
                return Record.from_firestore(record_id, doc.to_dict())
            return None
        except Exception as e:
            logger.error(f"Failed to get record {record_id}: {e}")
            raise

    def list_record_ids(self, record_type: str, after_id: Optional[str] = None, limit: int = 50) -> List[str]:
        if after_id is not None and not after_id.isdigit():
            raise ValueError(f"Record id {after_id} is not numeric")

        try:
            query = (self.db.collection(self.collection)
                     .where("record_type", "==", record_type)
                     .order_by(self.id_field))
            if after_id is not None:
                # Field cursor, so the cursor record itself may have been deleted
                query = query.start_after({self.id_field: int(after_id)})
            query = query.limit(limit)
            return [doc.id for doc in query.stream()]
        except Exception as e:
            logger.error(f"Failed to list {record_type} records after {after_id}: {e}")
            raise
