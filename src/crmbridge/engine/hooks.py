"""
Extension points for code outside the sync pipeline.

Each hook keeps its callbacks in registration order and has one
composition rule:

- field mapping overrides: applied in order, last writer wins per local_key
- payload post-processors: chained, each receives the previous one's output
- eligibility checks: AND-composed, can only turn an eligible record ineligible
- post-sync observers: fan-out, every observer is called, failures are logged
- sync failure observers: fan-out, every observer is called, failures are logged
"""

import logging
from typing import Dict, List, Any, Callable, Tuple

from ..models.config import FieldMapping
from ..models.sync import SyncOutcome

logger = logging.getLogger(__name__)

PayloadProcessor = Callable[[Dict[str, Any], str], Dict[str, Any]]
EligibilityCheck = Callable[[str], bool]
PostSyncObserver = Callable[[str, SyncOutcome], None]
FailureObserver = Callable[[str, str, Dict[str, Any]], None]


class HookRegistry:
    """Ordered callback registries, one per extension point."""

    def __init__(self):
        self._mapping_overrides: List[Tuple[str, FieldMapping]] = []
        self._payload_processors: List[PayloadProcessor] = []
        self._eligibility_checks: List[EligibilityCheck] = []
        self._post_sync_observers: List[PostSyncObserver] = []
        self._failure_observers: List[FailureObserver] = []

    # Registration

    def register_field_mapping_override(self, record_type: str, mapping: FieldMapping) -> None:
        self._mapping_overrides.append((record_type, mapping))

    def register_payload_post_processor(self, fn: PayloadProcessor) -> None:
        self._payload_processors.append(fn)

    def register_eligibility_check(self, fn: EligibilityCheck) -> None:
        self._eligibility_checks.append(fn)

    def register_post_sync_observer(self, fn: PostSyncObserver) -> None:
        self._post_sync_observers.append(fn)

    def register_sync_failure_observer(self, fn: FailureObserver) -> None:
        self._failure_observers.append(fn)

    # Application

    def mapping_overrides(self, record_type: str) -> List[FieldMapping]:
        """Overrides registered for a record type, in registration order."""
        return [m.model_copy(deep=True) for rt, m in self._mapping_overrides if rt == record_type]

    def post_process_payload(self, payload: Dict[str, Any], record_id: str) -> Dict[str, Any]:
        """Run every post-processor over the payload, in registration order."""
        for fn in self._payload_processors:
            result = fn(dict(payload), record_id)
            if not isinstance(result, dict):
                raise TypeError(f"Payload post-processor {getattr(fn, '__name__', fn)} returned "
                                f"{type(result).__name__}, expected dict")
            payload = result
        return payload

    def check_eligibility(self, record_id: str) -> Tuple[bool, str]:
        """
        Run the extension eligibility checks.

        Returns:
            (eligible, name of the vetoing check or "")
        """
        for fn in self._eligibility_checks:
            name = getattr(fn, "__name__", repr(fn))
            try:
                eligible = fn(record_id)
            except Exception as e:
                # A check that raises counts as a veto
                logger.error(f"Eligibility check {name} failed for {record_id}: {e}")
                return False, name
            if not eligible:
                return False, name
        return True, ""

    def notify_synced(self, record_id: str, outcome: SyncOutcome) -> None:
        for fn in self._post_sync_observers:
            try:
                fn(record_id, outcome)
            except Exception as e:
                logger.error(f"Post-sync observer {getattr(fn, '__name__', fn)} failed for {record_id}: {e}")

    def notify_failed(self, record_id: str, error_message: str, context: Dict[str, Any]) -> None:
        for fn in self._failure_observers:
            try:
                fn(record_id, error_message, dict(context))
            except Exception as e:
                logger.error(f"Sync failure observer {getattr(fn, '__name__', fn)} failed for {record_id}: {e}")
