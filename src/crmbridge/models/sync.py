"""
Models for sync triggers, per-record sync state and sync outcomes.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, Field

from ..exceptions import FailureKind


class TriggerReason(str, Enum):
    """What caused a sync attempt."""
    SAVE = "save_post"
    UPDATE = "post_updated"
    FIELD_SAVE = "acf_save"
    FIELD_CHANGED = "field_changed"
    TRASH = "trash"
    UNTRASH = "untrash"
    MANUAL = "manual"
    MIGRATION = "migration"
    RETRY = "retry"


class SyncStatus(str, Enum):
    """Outcome state of one sync attempt."""
    SUCCESS = "success"
    INELIGIBLE = "ineligible"
    RETRYABLE = "retryable"
    FAILED = "failed"
    QUEUED = "queued"
    IGNORED = "ignored"


class SyncEvent(BaseModel):
    """A record-level event pushed in by the host adapter."""
    record_id: str
    trigger_reason: TriggerReason
    changed_field: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    is_autosave: bool = False
    is_revision: bool = False
    # For update triggers: the record before the change
    previous: Optional[Dict[str, Any]] = None


class SyncRecord(BaseModel):
    """Persisted sync state of one local record."""
    record_id: str
    remote_external_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    last_sync_status: Optional[SyncStatus] = None
    last_trigger: Optional[str] = None
    pending_reason: Optional[str] = None
    last_error: Optional[str] = None

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        return self.model_dump(mode="json")

    @classmethod
    def from_firestore(cls, data: Dict[str, Any]) -> "SyncRecord":
        """Create instance from Firestore document."""
        if data.get("last_synced_at") and isinstance(data["last_synced_at"], str):
            data["last_synced_at"] = datetime.fromisoformat(data["last_synced_at"].replace("Z", "+00:00"))
        return cls(**data)


class SyncOutcome(BaseModel):
    """Result of one pass through the sync state machine."""
    record_id: str
    status: SyncStatus
    trigger_reason: str
    message: str = ""
    remote_id: Optional[str] = None
    created: Optional[bool] = None
    failure_kind: Optional[FailureKind] = None
    error: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SyncStatus.SUCCESS


class PendingSync(BaseModel):
    """A deferred sync waiting in the queue. One per record."""
    record_id: str
    reasons: List[str] = Field(default_factory=list)
    first_queued_at: datetime
    due_at: datetime
    attempts: int = 0

    def to_firestore(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_firestore(cls, data: Dict[str, Any]) -> "PendingSync":
        for key in ("first_queued_at", "due_at"):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key].replace("Z", "+00:00"))
        return cls(**data)


class QueueRunSummary(BaseModel):
    """Summary of one queue processing run."""
    processed: int = 0
    succeeded: int = 0
    requeued: int = 0
    skipped: int = 0
    failed: int = 0
    dropped: int = 0
    remaining: int = 0
    outcomes: List[SyncOutcome] = Field(default_factory=list)


class MigrationItemOutcome(BaseModel):
    """Outcome of one record in a migration batch."""
    record_id: str
    status: str
    remote_id: Optional[str] = None
    message: str = ""
    failure_kind: Optional[FailureKind] = None


class MigrationSummary(BaseModel):
    """Counts for one migration batch run."""
    record_type: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    start_cursor: Optional[str] = None
    cursor: Optional[str] = None
    processed: int = 0
    synced: int = 0
    linked: int = 0
    ineligible: int = 0
    retryable: int = 0
    failed: int = 0
    completed: bool = False
    aborted_reason: Optional[str] = None
