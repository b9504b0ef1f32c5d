"""
Append-only audit trail of sync attempts and their outcomes.
"""

import csv
import io
import json
import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Dict, List, Any, Optional, Callable

from ..models.audit import AuditEntry, AuditLevel, AuditCategory
from .store import StateStore

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    AuditLevel.INFO: logging.INFO,
    AuditLevel.WARNING: logging.WARNING,
    AuditLevel.ERROR: logging.ERROR,
}


class AuditTrail:
    """
    Records every sync attempt to the state store and mirrors it to the process log.

    Entries are never updated or deleted here; retention is handled outside
    the sync pipeline.
    """

    def __init__(self, store: StateStore, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.clock = clock

    def record(
        self,
        level: AuditLevel,
        category: AuditCategory,
        message: str,
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Append an entry to the audit trail.

        Args:
            level: Severity of the entry
            category: Pipeline area that produced the entry
            message: Human-readable summary
            record_id: Local record the entry is about, if any
            context: Structured details (trigger, field, error body, ...)

        Returns:
            The stored entry
        """
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            record_id=record_id,
            timestamp=self.clock(),
            level=level,
            message=message,
            context=context or {},
            category=category,
        )
        self.store.append_audit(entry)

        suffix = f" [record {record_id}]" if record_id else ""
        logger.log(_LOG_LEVELS[level], f"{category.value}: {message}{suffix} {json.dumps(entry.context, default=str)}")
        return entry

    def info(self, category: AuditCategory, message: str, record_id: Optional[str] = None, **context) -> AuditEntry:
        return self.record(AuditLevel.INFO, category, message, record_id, context)

    def warning(self, category: AuditCategory, message: str, record_id: Optional[str] = None, **context) -> AuditEntry:
        return self.record(AuditLevel.WARNING, category, message, record_id, context)

    def error(self, category: AuditCategory, message: str, record_id: Optional[str] = None, **context) -> AuditEntry:
        return self.record(AuditLevel.ERROR, category, message, record_id, context)

    def list_recent(
        self,
        record_id: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        level: Optional[AuditLevel] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        """Most recent entries first, optionally filtered."""
        return self.store.list_audit(record_id=record_id, category=category, level=level, limit=limit)

    def stats(self, limit: int = 1000) -> Dict[str, Any]:
        """Counts per level and per category over the most recent entries."""
        entries = self.store.list_audit(limit=limit)
        by_level = Counter(e.level.value for e in entries)
        by_category = Counter(e.category.value for e in entries)
        return {
            "total": len(entries),
            "by_level": {level.value: by_level.get(level.value, 0) for level in AuditLevel},
            "by_category": dict(by_category),
            "last_entry_at": entries[0].timestamp.isoformat() if entries else None,
        }

    def export_csv(self, entries: List[AuditEntry]) -> str:
        """Render entries as CSV."""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["id", "timestamp", "level", "category", "record_id", "message", "context"])
        for entry in entries:
            writer.writerow([
                entry.id,
                entry.timestamp.isoformat(),
                entry.level.value,
                entry.category.value,
                entry.record_id or "",
                entry.message,
                json.dumps(entry.context, default=str),
            ])
        return buffer.getvalue()
