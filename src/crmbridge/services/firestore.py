"""
Firestore-backed state store for mappings, tokens, sync state and the audit trail.
"""

import logging
from datetime import datetime
from typing import Dict, List, Any, Optional
from google.cloud import firestore
from google.auth import default

from ..core.models import OAuthToken
from ..models.audit import AuditEntry, AuditLevel, AuditCategory
from ..models.config import FieldMapping, SyncConfig
from ..models.sync import SyncRecord, PendingSync
from .store import StateStore

logger = logging.getLogger(__name__)


class FirestoreStateStore(StateStore):
    """
    State store persisting into Firestore collections.
    """

    def __init__(self, project_id: Optional[str] = None, client: Optional[firestore.Client] = None):
        """
        Initialize the Firestore state store.

        Args:
            project_id: Google Cloud project ID. If None, uses default from environment.
            client: Pre-built Firestore client, mainly for tests
        """
        try:
            if client is not None:
                self.db = client
            elif project_id:
                self.db = firestore.Client(project=project_id)
            else:
                # Use application default credentials
                credentials, project = default()
                self.db = firestore.Client(project=project, credentials=credentials)

            self.mappings_collection = "field_mappings"
            self.configs_collection = "sync_configs"
            self.state_collection = "integration_state"
            self.sync_records_collection = "sync_records"
            self.queue_collection = "sync_queue"
            self.audit_collection = "audit_trail"
            self.cursors_collection = "migration_cursors"

            logger.info(f"Firestore state store initialized for project: {self.db.project}")

        except Exception as e:
            logger.error(f"Failed to initialize Firestore: {e}")
            raise

    def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(collection).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    def _set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.db.collection(collection).document(doc_id).set(data)

    def _delete(self, collection: str, doc_id: str) -> None:
        self.db.collection(collection).document(doc_id).delete()

    # Field mappings and sync configuration

    def get_field_mappings(self, record_type: str) -> Optional[List[FieldMapping]]:
        try:
            data = self._get(self.mappings_collection, record_type)
            if data is None:
                return None
            return [FieldMapping(**item) for item in data.get("mappings", [])]
        except Exception as e:
            logger.error(f"Failed to get field mappings for {record_type}: {e}")
            raise

    def save_field_mappings(self, record_type: str, mappings: List[FieldMapping]) -> None:
        try:
            self._set(self.mappings_collection, record_type, {
                "mappings": [m.model_dump(mode="json") for m in mappings],
                "updated_at": datetime.utcnow().isoformat(),
            })
            logger.info(f"Saved {len(mappings)} field mappings for {record_type}")
        except Exception as e:
            logger.error(f"Failed to save field mappings for {record_type}: {e}")
            raise

    def get_sync_config(self, record_type: str) -> Optional[SyncConfig]:
        try:
            data = self._get(self.configs_collection, record_type)
            return SyncConfig.from_firestore(data) if data else None
        except Exception as e:
            logger.error(f"Failed to get sync config {record_type}: {e}")
            raise

    def save_sync_config(self, config: SyncConfig) -> None:
        try:
            config.updated_at = datetime.utcnow()
            self._set(self.configs_collection, config.record_type, config.to_firestore())
            logger.info(f"Saved sync config: {config.record_type}")
        except Exception as e:
            logger.error(f"Failed to save sync config {config.record_type}: {e}")
            raise

    def list_sync_configs(self) -> List[SyncConfig]:
        try:
            return [
                SyncConfig.from_firestore(doc.to_dict())
                for doc in self.db.collection(self.configs_collection).stream()
            ]
        except Exception as e:
            logger.error(f"Failed to list sync configs: {e}")
            raise

    # OAuth token cache

    def get_token(self) -> Optional[OAuthToken]:
        data = self._get(self.state_collection, "oauth_token")
        if not data:
            return None
        if isinstance(data.get("expires_at"), str):
            data["expires_at"] = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))
        return OAuthToken(**data)

    def save_token(self, token: OAuthToken) -> None:
        self._set(self.state_collection, "oauth_token", token.model_dump(mode="json"))

    def clear_token(self) -> None:
        self._delete(self.state_collection, "oauth_token")

    # Per-record sync state

    def get_sync_record(self, record_id: str) -> Optional[SyncRecord]:
        data = self._get(self.sync_records_collection, record_id)
        return SyncRecord.from_firestore(data) if data else None

    def save_sync_record(self, record: SyncRecord) -> None:
        try:
            self._set(self.sync_records_collection, record.record_id, record.to_firestore())
        except Exception as e:
            logger.error(f"Failed to save sync record {record.record_id}: {e}")
            raise

    # Integration health

    def get_auth_failure(self) -> Optional[Dict[str, Any]]:
        data = self._get(self.state_collection, "auth_failure")
        return data.get("details") if data else None

    def set_auth_failure(self, details: Optional[Dict[str, Any]]) -> None:
        if details is None:
            self._delete(self.state_collection, "auth_failure")
        else:
            self._set(self.state_collection, "auth_failure", {"details": details})

    # Pending queue

    def get_pending(self, record_id: str) -> Optional[PendingSync]:
        data = self._get(self.queue_collection, record_id)
        return PendingSync.from_firestore(data) if data else None

    def save_pending(self, pending: PendingSync) -> None:
        self._set(self.queue_collection, pending.record_id, pending.to_firestore())

    def delete_pending(self, record_id: str) -> None:
        self._delete(self.queue_collection, record_id)

    def list_pending(self) -> List[PendingSync]:
        try:
            query = self.db.collection(self.queue_collection).order_by("due_at")
            return [PendingSync.from_firestore(doc.to_dict()) for doc in query.stream()]
        except Exception as e:
            logger.error(f"Failed to list pending syncs: {e}")
            raise

    # Audit trail

    def append_audit(self, entry: AuditEntry) -> None:
        try:
            data = entry.to_firestore()
            data.pop("id", None)
            self._set(self.audit_collection, entry.id, data)
        except Exception as e:
            logger.error(f"Failed to append audit entry {entry.id}: {e}")
            raise

    def list_audit(
        self,
        record_id: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        level: Optional[AuditLevel] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        try:
            query = self.db.collection(self.audit_collection)

            if record_id is not None:
                query = query.where("record_id", "==", record_id)
            if category is not None:
                query = query.where("category", "==", category.value)
            if level is not None:
                query = query.where("level", "==", level.value)

            query = query.order_by("timestamp", direction=firestore.Query.DESCENDING)
            query = query.limit(limit)

            return [AuditEntry.from_firestore(doc.id, doc.to_dict()) for doc in query.stream()]

        except Exception as e:
            logger.error(f"Failed to list audit entries: {e}")
            raise

    # Migration cursors

    def get_cursor(self, record_type: str) -> Optional[str]:
        data = self._get(self.cursors_collection, record_type)
        return data.get("last_record_id") if data else None

    def save_cursor(self, record_type: str, last_record_id: str) -> None:
        self._set(self.cursors_collection, record_type, {
            "last_record_id": last_record_id,
            "updated_at": datetime.utcnow().isoformat(),
        })

    def delete_cursor(self, record_type: str) -> None:
        self._delete(self.cursors_collection, record_type)
