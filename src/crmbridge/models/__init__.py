"""
Models for the CRM Bridge sync system.
"""

from .config import SyncConfig, FieldMapping, MappingStrategy, ComputedField
from .sync import (
    SyncEvent, SyncRecord, SyncOutcome, SyncStatus, TriggerReason,
    PendingSync, QueueRunSummary, MigrationItemOutcome, MigrationSummary
)
from .audit import AuditEntry, AuditLevel, AuditCategory
from .record import Record

__all__ = [
    # Configuration
    "SyncConfig",
    "FieldMapping",
    "MappingStrategy",
    "ComputedField",

    # Sync state
    "SyncEvent",
    "SyncRecord",
    "SyncOutcome",
    "SyncStatus",
    "TriggerReason",
    "PendingSync",
    "QueueRunSummary",
    "MigrationItemOutcome",
    "MigrationSummary",

    # Audit
    "AuditEntry",
    "AuditLevel",
    "AuditCategory",

    "Record",
]
