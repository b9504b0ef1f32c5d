"""
Audit trail models.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class AuditLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditCategory(str, Enum):
    SYNC = "sync"
    VALIDATION = "validation"
    TRANSFORM = "transform"
    API = "api"
    AUTH = "auth"
    QUEUE = "queue"
    MIGRATION = "migration"
    CONFIG = "config"


class AuditEntry(BaseModel):
    """One append-only audit trail entry."""
    id: str
    record_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    level: AuditLevel
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    category: AuditCategory

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        return self.model_dump(mode="json")

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "AuditEntry":
        """Create instance from Firestore document."""
        if data.get("timestamp") and isinstance(data["timestamp"], str):
            data["timestamp"] = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        data["id"] = doc_id
        return cls(**data)
