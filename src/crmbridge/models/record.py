"""
The content record abstraction the sync pipeline reads from.
"""

from datetime import datetime
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class Record(BaseModel):
    """A content item (post) with its custom fields."""
    record_id: str
    record_type: str
    status: str = "draft"
    title: str = ""
    content: str = ""
    modified_at: Optional[datetime] = None
    fields: Dict[str, Any] = Field(default_factory=dict)

    def get_field(self, key: str) -> Optional[Any]:
        """
        Get a field value by key.

        Built-in post attributes are addressable by their post_* names,
        everything else is looked up in the custom fields.

        Returns:
            The raw value, or None when the field is absent
        """
        builtin = {
            "ID": self.record_id,
            "post_title": self.title,
            "post_content": self.content,
            "post_status": self.status,
            "post_type": self.record_type,
        }
        if key in builtin:
            return builtin[key]
        return self.fields.get(key)

    @property
    def is_trashed(self) -> bool:
        return self.status == "trash"

    def status_label(self) -> str:
        """Status as shown on the remote object."""
        if self.is_trashed:
            return "Deleted"
        return self.status.capitalize()

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "Record":
        if data.get("modified_at") and isinstance(data["modified_at"], str):
            data["modified_at"] = datetime.fromisoformat(data["modified_at"].replace("Z", "+00:00"))
        data["record_id"] = doc_id
        return cls(**data)
