"""
Sync orchestrator: decides when a record is synced and runs one sync attempt.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional, Callable

from ..connectors.base import RecordSource
from ..core.models import ConnectionCheck
from ..exceptions import (
    ConfigurationError, TransformationFailure, SalesforceAPIError, AuthenticationFailure, TransientFailure,
    FailureKind,
)
from ..integrations.salesforce.client import SalesforceClient
from ..models.audit import AuditCategory
from ..models.config import SyncConfig
from ..models.record import Record
from ..models.sync import (
    SyncEvent, SyncOutcome, SyncRecord, SyncStatus, TriggerReason, QueueRunSummary
)
from ..services.audit import AuditTrail
from ..services.notifications import EmailAlerter
from ..services.store import StateStore
from .hooks import HookRegistry
from .mappings import FieldMappingRegistry
from .queue import SyncQueue
from .transforms import DataTransformer
from .validator import EligibilityValidator

logger = logging.getLogger(__name__)

# Record states that never reach the remote side from a save trigger
IGNORED_SAVE_STATUSES = {"auto-draft"}

SAVE_TRIGGERS = {TriggerReason.SAVE, TriggerReason.FIELD_SAVE}


class SyncOrchestrator:
    """
    Runs the per-record sync state machine.

    Triggered -> Validating -> Ineligible
                            -> Transforming -> Calling -> Success | Retryable | Failed

    Host events go through handle_event(), which filters them and defers the
    sync to the queue. The queue is drained by process_queue(). Manual and
    migration syncs call sync_record() directly.
    """

    def __init__(
        self,
        source: RecordSource,
        registry: FieldMappingRegistry,
        client: SalesforceClient,
        store: StateStore,
        audit: AuditTrail,
        queue: SyncQueue,
        hooks: Optional[HookRegistry] = None,
        validator: Optional[EligibilityValidator] = None,
        transformer: Optional[DataTransformer] = None,
        alerter: Optional[EmailAlerter] = None,
        batch_size: int = 10,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.source = source
        self.registry = registry
        self.client = client
        self.store = store
        self.audit = audit
        self.queue = queue
        self.hooks = hooks or registry.hooks
        self.validator = validator or EligibilityValidator(self.hooks, audit)
        self.transformer = transformer or DataTransformer(self.hooks)
        self.alerter = alerter
        self.batch_size = batch_size
        self.clock = clock

    # Triggers

    def handle_event(self, event: SyncEvent) -> SyncOutcome:
        """
        Entry point for host events.

        Trash events sync immediately, everything else is queued.

        Returns:
            SyncOutcome with status queued, ignored, or the trash sync result
        """
        reason = event.trigger_reason.value

        if event.is_autosave or event.is_revision:
            return self._ignored(event.record_id, reason, "Autosave or revision")

        record = self.source.find_record(event.record_id)
        if record is None:
            return self._ignored(event.record_id, reason, "Record not found")

        config = self.registry.get_sync_config(record.record_type)
        if config is None or not config.enabled:
            return self._ignored(record.record_id, reason, f"Record type {record.record_type} is not synced")

        skip_reason = self._filter_event(event, record, config)
        if skip_reason:
            return self._ignored(record.record_id, reason, skip_reason)

        if event.trigger_reason == TriggerReason.TRASH:
            return self.sync_record(record.record_id, reason)

        pending = self.queue.enqueue(record.record_id, reason)
        state = self._sync_state(record.record_id)
        state.pending_reason = ",".join(pending.reasons)
        self.store.save_sync_record(state)

        return SyncOutcome(
            record_id=record.record_id,
            status=SyncStatus.QUEUED,
            trigger_reason=reason,
            message=f"Sync queued, due {pending.due_at.isoformat()}",
        )

    def _filter_event(self, event: SyncEvent, record: Record, config: SyncConfig) -> Optional[str]:
        """Return why an event should not cause a sync, or None."""
        trigger = event.trigger_reason

        if trigger in SAVE_TRIGGERS and record.status in IGNORED_SAVE_STATUSES:
            return f"Status {record.status} is not synced"

        if trigger == TriggerReason.UPDATE and event.previous is not None:
            before = event.previous
            if (before.get("status") == record.status
                    and before.get("title") == record.title
                    and before.get("content") == record.content):
                return "No status, title or content change"

        if trigger == TriggerReason.FIELD_CHANGED:
            trigger_values = config.tracked_fields.get(event.changed_field or "")
            if trigger_values is None:
                return f"Field {event.changed_field} is not tracked"
            if event.new_value not in trigger_values or event.old_value in trigger_values:
                return f"Field {event.changed_field} did not change into a trigger value"

        if trigger == TriggerReason.TRASH:
            state = self.store.get_sync_record(record.record_id)
            if state is None or not state.remote_external_id:
                return "Record was never synced"

        return None

    def _ignored(self, record_id: str, reason: str, message: str) -> SyncOutcome:
        logger.debug(f"Ignoring {reason} for record {record_id}: {message}")
        return SyncOutcome(record_id=record_id, status=SyncStatus.IGNORED, trigger_reason=reason, message=message)

    def manual_sync(self, record_id: str) -> SyncOutcome:
        """
        Sync one record now.

        Raises:
            RecordNotFoundError: If the record does not exist
            ConfigurationError: If its record type is not enabled for sync
        """
        record = self.source.get_record(record_id)
        if not self.registry.is_sync_enabled(record.record_type):
            raise ConfigurationError(f"Record type {record.record_type} is not configured for sync")
        return self.sync_record(record_id, TriggerReason.MANUAL.value)

    # Sync attempt

    def sync_record(self, record_id: str, reason: str, requeue: bool = True) -> SyncOutcome:
        """
        Run one sync attempt for a record.

        Failures are returned as outcomes, never raised.

        Args:
            record_id: Local record id
            reason: Trigger reason stamped on the payload and audit entries
            requeue: Put the record back on the queue after a transient failure

        Returns:
            SyncOutcome of the attempt
        """
        auth_failure = self.store.get_auth_failure()
        if auth_failure:
            message = "Skipped: Salesforce authentication is failing"
            logger.warning(f"Skipping sync of record {record_id}: authentication is failing since "
                           f"{auth_failure.get('since')}")
            # Recorded, but no HTTP call and no new alert
            self.audit.error(AuditCategory.AUTH, message, record_id=record_id, trigger=reason,
                             failing_since=auth_failure.get("since"))
            self.hooks.notify_failed(record_id, message, {
                "trigger": reason,
                "failure_kind": FailureKind.AUTHENTICATION.value,
            })
            return SyncOutcome(
                record_id=record_id,
                status=SyncStatus.FAILED,
                trigger_reason=reason,
                message=message,
                failure_kind=FailureKind.AUTHENTICATION,
            )

        record = self.source.find_record(record_id)
        if record is None:
            return self._failed(record_id, reason, AuditCategory.SYNC, f"Record {record_id} not found")

        config = self.registry.get_sync_config(record.record_type)
        if config is None or not config.enabled:
            return self._failed(record_id, reason, AuditCategory.CONFIG,
                                f"Record type {record.record_type} is not configured for sync")

        # Validating; a trashed record only needs its deleted status pushed
        if not record.is_trashed:
            eligible, message = self.validator.check(record, config, reason)
            if not eligible:
                return self._ineligible(record, reason, message)

        # Transforming
        mappings = self.registry.resolve_mappings(record.record_type)
        now = self.clock()
        try:
            payload = self.transformer.build_payload(record, mappings, config, reason, now)
        except TransformationFailure as e:
            return self._failed(record_id, reason, AuditCategory.TRANSFORM, f"Transformation failed: {e}",
                                local_key=e.local_key)

        # Calling
        try:
            result = self.client.upsert(config.remote_object_name, config.external_id_field, record_id, payload)
        except AuthenticationFailure as e:
            return self._authentication_failed(record_id, reason, e)
        except TransientFailure as e:
            return self._retryable(record_id, reason, e, requeue)
        except SalesforceAPIError as e:
            return self._failed(record_id, reason, AuditCategory.API, f"Salesforce rejected record: {e}",
                                failure_kind=e.kind, error=e.to_dict())
        except ConfigurationError as e:
            return self._failed(record_id, reason, AuditCategory.CONFIG, str(e))

        outcome = SyncOutcome(
            record_id=record_id,
            status=SyncStatus.SUCCESS,
            trigger_reason=reason,
            message=f"{'Created' if result.created else 'Updated'} {config.remote_object_name} {result.remote_id}",
            remote_id=result.remote_id,
            created=result.created,
            payload=payload,
        )

        state = self._sync_state(record_id)
        state.remote_external_id = result.remote_id
        state.last_synced_at = now
        state.last_sync_status = SyncStatus.SUCCESS
        state.last_trigger = reason
        state.pending_reason = None
        state.last_error = None
        self.store.save_sync_record(state)
        self.queue.complete(record_id)

        self.audit.info(
            AuditCategory.SYNC,
            outcome.message,
            record_id=record_id,
            trigger=reason,
            remote_id=result.remote_id,
            created=result.created,
            remote_object=config.remote_object_name,
        )
        self.hooks.notify_synced(record_id, outcome)
        return outcome

    def _sync_state(self, record_id: str) -> SyncRecord:
        return self.store.get_sync_record(record_id) or SyncRecord(record_id=record_id)

    def _save_failure_state(self, record_id: str, status: SyncStatus, reason: str, message: str) -> None:
        state = self._sync_state(record_id)
        state.last_sync_status = status
        state.last_trigger = reason
        state.last_error = message
        self.store.save_sync_record(state)

    def _ineligible(self, record: Record, reason: str, message: str) -> SyncOutcome:
        # The validator already wrote the warning entry
        self._save_failure_state(record.record_id, SyncStatus.INELIGIBLE, reason, message)
        self.queue.complete(record.record_id)
        self.hooks.notify_failed(record.record_id, message, {"trigger": reason, "status": SyncStatus.INELIGIBLE.value})
        return SyncOutcome(record_id=record.record_id, status=SyncStatus.INELIGIBLE, trigger_reason=reason,
                           message=message)

    def _failed(self, record_id: str, reason: str, category: AuditCategory, message: str,
                failure_kind: Optional[FailureKind] = FailureKind.PERMANENT,
                error: Optional[Dict[str, Any]] = None, **context) -> SyncOutcome:
        self._save_failure_state(record_id, SyncStatus.FAILED, reason, message)
        self.audit.error(category, message, record_id=record_id, trigger=reason, error=error, **context)
        self.hooks.notify_failed(record_id, message, {"trigger": reason, "error": error, **context})
        return SyncOutcome(record_id=record_id, status=SyncStatus.FAILED, trigger_reason=reason,
                           message=message, failure_kind=failure_kind, error=error)

    def _retryable(self, record_id: str, reason: str, error: TransientFailure, requeue: bool) -> SyncOutcome:
        message = f"Temporary Salesforce error: {error}"
        self._save_failure_state(record_id, SyncStatus.RETRYABLE, reason, message)
        self.audit.warning(AuditCategory.API, message, record_id=record_id, trigger=reason, error=error.to_dict())
        self.hooks.notify_failed(record_id, message, {"trigger": reason, "error": error.to_dict()})
        if requeue:
            self.queue.enqueue(record_id, TriggerReason.RETRY.value)
        return SyncOutcome(record_id=record_id, status=SyncStatus.RETRYABLE, trigger_reason=reason,
                           message=message, failure_kind=FailureKind.TRANSIENT, error=error.to_dict())

    def _authentication_failed(self, record_id: str, reason: str, error: AuthenticationFailure) -> SyncOutcome:
        outcome = self._failed(record_id, reason, AuditCategory.AUTH, f"Salesforce authentication failed: {error}",
                               failure_kind=FailureKind.AUTHENTICATION, error=error.to_dict())
        self.store.set_auth_failure({"since": self.clock().isoformat(), "message": str(error)})
        # Keep the record around for when the credentials are fixed
        self.queue.enqueue(record_id, reason)

        if self.alerter:
            self.alerter.alert(
                "Salesforce authentication failed",
                "Syncing to Salesforce is paused because the credentials were rejected.\n\n"
                f"Error: {error}\nRecord: {record_id}\nTrigger: {reason}\n\n"
                "Fix the credentials and run the connection test to resume.",
                key="salesforce-auth",
                metadata={"record_id": record_id},
            )
        return outcome

    # Queue

    def process_queue(self, limit: Optional[int] = None) -> QueueRunSummary:
        """
        Sync the due pending records.

        Stops at the first authentication failure and leaves the rest queued.
        """
        summary = QueueRunSummary()

        if self.store.get_auth_failure():
            logger.warning("Authentication is failing, queue processing skipped")
            summary.remaining = self.queue.size()
            return summary

        for pending in self.queue.due(limit or self.batch_size):
            reason = TriggerReason.RETRY.value if pending.attempts else pending.reasons[-1]
            try:
                outcome = self.sync_record(pending.record_id, reason, requeue=False)
            except Exception as e:
                logger.error(f"Queued sync of record {pending.record_id} failed: {e}")
                self.audit.error(AuditCategory.QUEUE, f"Queued sync failed: {e}", record_id=pending.record_id,
                                 trigger=reason)
                outcome = SyncOutcome(record_id=pending.record_id, status=SyncStatus.FAILED,
                                      trigger_reason=reason, message=str(e))
            summary.processed += 1
            summary.outcomes.append(outcome)

            if outcome.status == SyncStatus.SUCCESS:
                summary.succeeded += 1
            elif outcome.status == SyncStatus.RETRYABLE:
                if self.queue.requeue(pending, outcome.message):
                    summary.requeued += 1
                else:
                    summary.dropped += 1
            elif outcome.failure_kind == FailureKind.AUTHENTICATION:
                summary.failed += 1
                break
            elif outcome.status == SyncStatus.FAILED:
                self.queue.complete(pending.record_id)
                summary.failed += 1
            else:
                self.queue.complete(pending.record_id)
                summary.skipped += 1

        summary.remaining = self.queue.size()
        logger.info(f"Queue run: {summary.processed} processed, {summary.succeeded} synced, "
                    f"{summary.requeued} re-queued, {summary.failed} failed, {summary.remaining} remaining")
        return summary

    # Status

    def get_sync_status(self, record_id: str) -> Dict[str, Any]:
        """Sync state of a record as shown to operators."""
        state = self.store.get_sync_record(record_id)
        pending = self.store.get_pending(record_id)

        if state is None and pending is None:
            return {"record_id": record_id, "status": "never_synced", "message": "Record has not been synced"}

        state = state or SyncRecord(record_id=record_id)
        status = state.last_sync_status.value if state.last_sync_status else "never_synced"
        return {
            "record_id": record_id,
            "status": SyncStatus.QUEUED.value if pending else status,
            "last_sync_status": status,
            "remote_id": state.remote_external_id,
            "last_synced_at": state.last_synced_at.isoformat() if state.last_synced_at else None,
            "last_trigger": state.last_trigger,
            "last_error": state.last_error,
            "pending_reasons": pending.reasons if pending else [],
        }

    def test_connection(self) -> ConnectionCheck:
        """Test Salesforce connectivity; a passing test resumes syncing after an authentication failure."""
        check = self.client.test_connection()
        if check.success:
            if self.store.get_auth_failure():
                self.store.set_auth_failure(None)
                self.audit.info(AuditCategory.AUTH, "Salesforce authentication restored, syncing resumed")
        else:
            category = AuditCategory.AUTH if check.failure_kind == FailureKind.AUTHENTICATION.value else AuditCategory.API
            self.audit.error(category, f"Connection test failed: {check.message}")
        return check
