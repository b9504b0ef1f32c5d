"""
Deferred sync queue.

Sync requests are not executed inline: a record is marked pending and
synced on a later host-triggered run. Requests for a record that is
already pending merge into the existing entry, so several field changes
from one save end up as one remote call.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Callable

from ..models.audit import AuditCategory
from ..models.sync import PendingSync
from ..services.audit import AuditTrail
from ..services.store import StateStore

logger = logging.getLogger(__name__)


class SyncQueue:
    """Debounced per-record queue stored in the state store."""

    def __init__(
        self,
        store: StateStore,
        audit: AuditTrail,
        coalesce_seconds: int = 5,
        retry_delay_seconds: int = 30,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.audit = audit
        self.coalesce = timedelta(seconds=coalesce_seconds)
        self.retry_delay = timedelta(seconds=retry_delay_seconds)
        self.max_attempts = max_attempts
        self.clock = clock

    def enqueue(self, record_id: str, reason: str) -> PendingSync:
        """
        Mark a record pending.

        An existing entry keeps its due time and gains the new reason.

        Returns:
            The pending entry after the merge
        """
        now = self.clock()
        pending = self.store.get_pending(record_id)

        if pending is None:
            pending = PendingSync(
                record_id=record_id,
                reasons=[reason],
                first_queued_at=now,
                due_at=now + self.coalesce,
            )
            logger.info(f"Queued sync for record {record_id} ({reason}), due {pending.due_at.isoformat()}")
        else:
            if reason not in pending.reasons:
                pending.reasons.append(reason)
            logger.info(f"Coalesced {reason} into pending sync for record {record_id}")

        self.store.save_pending(pending)
        return pending

    def requeue(self, pending: PendingSync, error: str) -> bool:
        """
        Put a failed entry back with a retry delay.

        Returns:
            False if the entry ran out of attempts and was dropped
        """
        pending.attempts += 1
        if pending.attempts >= self.max_attempts:
            self.store.delete_pending(pending.record_id)
            self.audit.error(
                AuditCategory.QUEUE,
                f"Dropped pending sync after {pending.attempts} attempts",
                record_id=pending.record_id,
                reasons=pending.reasons,
                error=error,
            )
            return False

        pending.due_at = self.clock() + self.retry_delay
        self.store.save_pending(pending)
        logger.info(f"Re-queued record {pending.record_id}, attempt {pending.attempts}, "
                    f"due {pending.due_at.isoformat()}")
        return True

    def complete(self, record_id: str) -> None:
        self.store.delete_pending(record_id)

    def is_pending(self, record_id: str) -> bool:
        return self.store.get_pending(record_id) is not None

    def due(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[PendingSync]:
        """Entries whose due time has passed, oldest first."""
        now = now or self.clock()
        entries = [p for p in self.store.list_pending() if p.due_at <= now]
        return entries[:limit] if limit is not None else entries

    def size(self) -> int:
        return len(self.store.list_pending())
