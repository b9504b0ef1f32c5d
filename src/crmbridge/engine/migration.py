"""
Batch migration: backfill every existing record of a type into Salesforce.
"""

import logging
import time
from datetime import datetime
from typing import Dict, Any, Iterator, Optional, Callable

from ..connectors.base import RecordSource
from ..exceptions import ConfigurationError, SalesforceAPIError, FailureKind
from ..integrations.salesforce.client import SalesforceClient
from ..models.audit import AuditCategory
from ..models.sync import MigrationItemOutcome, MigrationSummary, SyncRecord, SyncStatus, TriggerReason
from ..services.audit import AuditTrail
from ..services.store import StateStore
from .mappings import FieldMappingRegistry
from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Walks the record corpus of a type page by page and syncs each record.

    Records are processed one at a time with a delay in between. The id of
    the last processed record is persisted after every record, so a run that
    is interrupted continues where it stopped. An authentication failure ends
    the run without moving the cursor past the failing record.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        source: RecordSource,
        registry: FieldMappingRegistry,
        client: SalesforceClient,
        store: StateStore,
        audit: AuditTrail,
        page_size: int = 50,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.orchestrator = orchestrator
        self.source = source
        self.registry = registry
        self.client = client
        self.store = store
        self.audit = audit
        self.page_size = page_size
        self.delay_seconds = delay_seconds
        self.sleep = sleep
        self.clock = clock
        self._summaries: Dict[str, MigrationSummary] = {}

    def run_batch(self, record_type: str, page_size: Optional[int] = None,
                  max_records: Optional[int] = None) -> Iterator[MigrationItemOutcome]:
        """
        Migrate records of a type, starting after the saved cursor.

        Args:
            record_type: Record type to migrate
            page_size: Ids fetched per page
            max_records: Stop after this many records; the next run continues from there

        Yields:
            One MigrationItemOutcome per processed record

        Raises:
            ConfigurationError: If the record type is not configured for sync
        """
        config = self.registry.get_sync_config(record_type)
        if config is None:
            raise ConfigurationError(f"Record type {record_type} is not configured for sync")

        page_size = page_size or self.page_size
        cursor = self.store.get_cursor(record_type)
        summary = MigrationSummary(record_type=record_type, started_at=self.clock(),
                                   start_cursor=cursor, cursor=cursor)
        self._summaries[record_type] = summary

        if self.store.get_auth_failure():
            summary.aborted_reason = "Salesforce authentication is failing"
            summary.finished_at = self.clock()
            self.audit.warning(AuditCategory.MIGRATION, f"Migration of {record_type} not started: "
                               f"{summary.aborted_reason}", cursor=cursor)
            return

        self.audit.info(AuditCategory.MIGRATION, f"Migration of {record_type} started", cursor=cursor)

        while True:
            record_ids = self.source.list_record_ids(record_type, after_id=cursor, limit=page_size)
            if not record_ids:
                summary.completed = True
                break

            for record_id in record_ids:
                if max_records is not None and summary.processed >= max_records:
                    self._finish(summary)
                    return

                if summary.processed:
                    self.sleep(self.delay_seconds)

                item = self._migrate_record(record_id, config.remote_object_name, config.external_id_field)
                summary.processed += 1
                self._count(summary, item)

                if item.failure_kind == FailureKind.AUTHENTICATION:
                    summary.aborted_reason = item.message
                    self._finish(summary)
                    yield item
                    return

                cursor = record_id
                self.store.save_cursor(record_type, cursor)
                summary.cursor = cursor
                logger.info(f"Migrated {record_type} {record_id}: {item.status} ({summary.processed} processed)")
                yield item

        self._finish(summary)

    def _migrate_record(self, record_id: str, object_name: str, external_id_field: str) -> MigrationItemOutcome:
        existing_id = None
        try:
            existing = self.client.find_by_external_id(object_name, external_id_field, record_id)
            if existing:
                existing_id = existing.get("Id")
        except SalesforceAPIError as e:
            # The sync below reports the error if it persists
            logger.warning(f"Lookup of {object_name} {record_id} failed: {e}")

        if existing_id:
            state = self.store.get_sync_record(record_id) or SyncRecord(record_id=record_id)
            state.remote_external_id = existing_id
            self.store.save_sync_record(state)

        try:
            outcome = self.orchestrator.sync_record(record_id, TriggerReason.MIGRATION.value)
        except Exception as e:
            logger.error(f"Migration of record {record_id} failed: {e}")
            self.audit.error(AuditCategory.MIGRATION, f"Migration of record failed: {e}", record_id=record_id)
            return MigrationItemOutcome(record_id=record_id, status=SyncStatus.FAILED.value, message=str(e))

        if outcome.succeeded:
            status = "linked" if existing_id else "synced"
        else:
            status = outcome.status.value
        return MigrationItemOutcome(record_id=record_id, status=status,
                                    remote_id=outcome.remote_id or existing_id, message=outcome.message,
                                    failure_kind=outcome.failure_kind)

    @staticmethod
    def _count(summary: MigrationSummary, item: MigrationItemOutcome) -> None:
        if item.status == "synced":
            summary.synced += 1
        elif item.status == "linked":
            summary.linked += 1
        elif item.status == SyncStatus.INELIGIBLE.value:
            summary.ineligible += 1
        elif item.status == SyncStatus.RETRYABLE.value:
            summary.retryable += 1
        else:
            summary.failed += 1

    def _finish(self, summary: MigrationSummary) -> None:
        summary.finished_at = self.clock()
        message = (f"Migration of {summary.record_type} "
                   f"{'completed' if summary.completed else 'stopped'}: {summary.processed} processed, "
                   f"{summary.synced} synced, {summary.linked} linked, {summary.ineligible} ineligible, "
                   f"{summary.failed} failed")
        context = {"cursor": summary.cursor, "aborted_reason": summary.aborted_reason}
        if summary.aborted_reason:
            self.audit.error(AuditCategory.MIGRATION, message, **context)
        else:
            self.audit.info(AuditCategory.MIGRATION, message, **context)

    def summary(self, record_type: str) -> Optional[MigrationSummary]:
        """Summary of the latest run for a record type in this process."""
        return self._summaries.get(record_type)

    def reset(self, record_type: str) -> None:
        """Forget the cursor; the next run starts from the first record."""
        self.store.delete_cursor(record_type)
        self._summaries.pop(record_type, None)
        self.audit.info(AuditCategory.MIGRATION, f"Migration cursor for {record_type} reset")

    def status(self, record_type: str) -> Dict[str, Any]:
        last_run = self._summaries.get(record_type)
        return {
            "record_type": record_type,
            "cursor": self.store.get_cursor(record_type),
            "last_run": last_run.model_dump(mode="json") if last_run else None,
        }
