"""
Record sources for CRM Bridge.

A record source is where the content records being synced are read from.
"""

from .base import RecordSource
from .memory import InMemoryRecordSource

__all__ = [
    "RecordSource",
    "InMemoryRecordSource",
    "get_record_source",
]


def _firestore_source(**config) -> RecordSource:
    from .firestore import FirestoreRecordSource
    return FirestoreRecordSource(**config)


# Record source registry for dynamic loading
SOURCE_REGISTRY = {
    "memory": InMemoryRecordSource,
    "firestore": _firestore_source,
}


def get_record_source(source_type: str, **config) -> RecordSource:
    """Create a record source by type."""
    if source_type not in SOURCE_REGISTRY:
        raise ValueError(f"Unknown record source: {source_type}")
    return SOURCE_REGISTRY[source_type](**config)
