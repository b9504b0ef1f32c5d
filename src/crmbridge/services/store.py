"""
State store interface and the in-process implementation.

Ownership of the stored state:
- field mappings and sync configs: the field mapping registry
- OAuth token cache: the Salesforce client
- sync records and integration health: the sync orchestrator
- pending queue entries: the sync queue
- audit entries: the audit trail (append-only)
- migration cursors: the migration runner
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional

from ..core.models import OAuthToken
from ..models.audit import AuditEntry, AuditLevel, AuditCategory
from ..models.config import FieldMapping, SyncConfig
from ..models.sync import SyncRecord, PendingSync

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Durable state used by the sync pipeline."""

    # Field mappings and sync configuration

    @abstractmethod
    def get_field_mappings(self, record_type: str) -> Optional[List[FieldMapping]]:
        """Admin-saved mappings for a record type, None if never saved."""

    @abstractmethod
    def save_field_mappings(self, record_type: str, mappings: List[FieldMapping]) -> None:
        pass

    @abstractmethod
    def get_sync_config(self, record_type: str) -> Optional[SyncConfig]:
        pass

    @abstractmethod
    def save_sync_config(self, config: SyncConfig) -> None:
        pass

    @abstractmethod
    def list_sync_configs(self) -> List[SyncConfig]:
        pass

    # OAuth token cache

    @abstractmethod
    def get_token(self) -> Optional[OAuthToken]:
        pass

    @abstractmethod
    def save_token(self, token: OAuthToken) -> None:
        pass

    @abstractmethod
    def clear_token(self) -> None:
        pass

    # Per-record sync state

    @abstractmethod
    def get_sync_record(self, record_id: str) -> Optional[SyncRecord]:
        pass

    @abstractmethod
    def save_sync_record(self, record: SyncRecord) -> None:
        pass

    # Integration health

    @abstractmethod
    def get_auth_failure(self) -> Optional[Dict[str, Any]]:
        """Details of the last unresolved authentication failure, if any."""

    @abstractmethod
    def set_auth_failure(self, details: Optional[Dict[str, Any]]) -> None:
        """Record an authentication failure, or clear it with None."""

    # Pending queue

    @abstractmethod
    def get_pending(self, record_id: str) -> Optional[PendingSync]:
        pass

    @abstractmethod
    def save_pending(self, pending: PendingSync) -> None:
        pass

    @abstractmethod
    def delete_pending(self, record_id: str) -> None:
        pass

    @abstractmethod
    def list_pending(self) -> List[PendingSync]:
        """All pending entries, oldest due first."""

    # Audit trail

    @abstractmethod
    def append_audit(self, entry: AuditEntry) -> None:
        pass

    @abstractmethod
    def list_audit(
        self,
        record_id: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        level: Optional[AuditLevel] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        """Audit entries, newest first."""

    # Migration cursors

    @abstractmethod
    def get_cursor(self, record_type: str) -> Optional[str]:
        pass

    @abstractmethod
    def save_cursor(self, record_type: str, last_record_id: str) -> None:
        pass

    @abstractmethod
    def delete_cursor(self, record_type: str) -> None:
        pass


class InMemoryStateStore(StateStore):
    """State kept in process memory. Used for tests and single-process runs."""

    def __init__(self):
        self._mappings: Dict[str, List[FieldMapping]] = {}
        self._configs: Dict[str, SyncConfig] = {}
        self._token: Optional[OAuthToken] = None
        self._sync_records: Dict[str, SyncRecord] = {}
        self._auth_failure: Optional[Dict[str, Any]] = None
        self._pending: Dict[str, PendingSync] = {}
        self._audit: List[AuditEntry] = []
        self._cursors: Dict[str, str] = {}

    def get_field_mappings(self, record_type: str) -> Optional[List[FieldMapping]]:
        mappings = self._mappings.get(record_type)
        if mappings is None:
            return None
        return [m.model_copy(deep=True) for m in mappings]

    def save_field_mappings(self, record_type: str, mappings: List[FieldMapping]) -> None:
        self._mappings[record_type] = [m.model_copy(deep=True) for m in mappings]

    def get_sync_config(self, record_type: str) -> Optional[SyncConfig]:
        config = self._configs.get(record_type)
        return config.model_copy(deep=True) if config else None

    def save_sync_config(self, config: SyncConfig) -> None:
        self._configs[config.record_type] = config.model_copy(deep=True)

    def list_sync_configs(self) -> List[SyncConfig]:
        return [c.model_copy(deep=True) for c in self._configs.values()]

    def get_token(self) -> Optional[OAuthToken]:
        return self._token.model_copy() if self._token else None

    def save_token(self, token: OAuthToken) -> None:
        self._token = token.model_copy()

    def clear_token(self) -> None:
        self._token = None

    def get_sync_record(self, record_id: str) -> Optional[SyncRecord]:
        record = self._sync_records.get(record_id)
        return record.model_copy() if record else None

    def save_sync_record(self, record: SyncRecord) -> None:
        self._sync_records[record.record_id] = record.model_copy()

    def get_auth_failure(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._auth_failure)

    def set_auth_failure(self, details: Optional[Dict[str, Any]]) -> None:
        self._auth_failure = copy.deepcopy(details)

    def get_pending(self, record_id: str) -> Optional[PendingSync]:
        pending = self._pending.get(record_id)
        return pending.model_copy(deep=True) if pending else None

    def save_pending(self, pending: PendingSync) -> None:
        self._pending[pending.record_id] = pending.model_copy(deep=True)

    def delete_pending(self, record_id: str) -> None:
        self._pending.pop(record_id, None)

    def list_pending(self) -> List[PendingSync]:
        return sorted(
            (p.model_copy(deep=True) for p in self._pending.values()),
            key=lambda p: p.due_at,
        )

    def append_audit(self, entry: AuditEntry) -> None:
        self._audit.append(entry.model_copy(deep=True))

    def list_audit(
        self,
        record_id: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        level: Optional[AuditLevel] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        entries = []
        for entry in reversed(self._audit):
            if record_id is not None and entry.record_id != record_id:
                continue
            if category is not None and entry.category != category:
                continue
            if level is not None and entry.level != level:
                continue
            entries.append(entry.model_copy(deep=True))
            if len(entries) >= limit:
                break
        return entries

    def get_cursor(self, record_type: str) -> Optional[str]:
        return self._cursors.get(record_type)

    def save_cursor(self, record_type: str, last_record_id: str) -> None:
        self._cursors[record_type] = last_record_id

    def delete_cursor(self, record_type: str) -> None:
        self._cursors.pop(record_type, None)
