"""
Configuration models for field mappings and per-record-type sync settings.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, Field


class MappingStrategy(str, Enum):
    """How a local field value is turned into a remote field value."""
    NONE = "none"
    BOOLEAN = "boolean"
    COMMA_SEPARATED = "comma_separated"
    CUSTOM_DELIMITER = "custom_delimiter"
    NUMERIC = "numeric"
    DATE = "date"
    SEMICOLON = "semicolon"
    JSON = "json"
    FIRST_VALUE = "first_value"
    COUNT = "count"


class FieldMapping(BaseModel):
    """Maps a local record field to a remote object field."""
    local_key: str = Field(..., description="Field key on the local record")
    remote_field: str = Field(..., description="Field API name on the remote object")
    strategy: MappingStrategy = Field(MappingStrategy.NONE, description="Transformation strategy")
    strategy_params: Dict[str, Any] = Field(default_factory=dict, description="Strategy parameters, e.g. delimiter")


class ComputedField(BaseModel):
    """
    A remote field derived from other payload fields.

    The value is the product of the source fields and is only emitted
    when every source is present in the payload and numeric.
    """
    remote_field: str
    source_fields: List[str] = Field(..., min_length=1)


class SyncConfig(BaseModel):
    """
    Sync settings for one record type.
    This is stored in the state store, keyed by record type.
    """
    record_type: str = Field(..., description="Local record type identifier, e.g. a post type")
    remote_object_name: str = Field(..., description="Remote object API name")
    external_id_field: str = Field(..., description="Remote external id field holding the local record id")
    enabled: bool = Field(True, description="Whether records of this type are synced")

    # Eligibility
    publishable_statuses: List[str] = Field(default_factory=lambda: ["publish"])
    required_fields: List[str] = Field(default_factory=list)
    approval_field: Optional[str] = Field(None, description="Boolean field that must be set for the record to sync")

    # Triggers: field key -> values that fire a sync when the field changes into them
    tracked_fields: Dict[str, List[Any]] = Field(default_factory=dict)

    # Payload extras
    computed_fields: List[ComputedField] = Field(default_factory=list)
    platform_metadata: Dict[str, Any] = Field(default_factory=dict)
    record_type_field: Optional[str] = Field(None, description="Remote field receiving the record type")
    last_updated_field: Optional[str] = Field(None, description="Remote field receiving the sync timestamp")
    trigger_field: Optional[str] = Field(None, description="Remote field receiving the trigger reason")
    status_field: Optional[str] = Field(None, description="Remote field receiving the status label")

    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        data = self.model_dump(mode="json")
        return data

    @classmethod
    def from_firestore(cls, data: Dict[str, Any]) -> "SyncConfig":
        """Create instance from Firestore document."""
        if data.get("updated_at") and isinstance(data["updated_at"], str):
            data["updated_at"] = datetime.fromisoformat(data["updated_at"].replace("Z", "+00:00"))
        return cls(**data)


WASTE_LISTING_MAPPINGS: List[FieldMapping] = [
    FieldMapping(local_key="post_title", remote_field="Title__c"),
    FieldMapping(local_key="post_content", remote_field="Description__c"),
    FieldMapping(local_key="location_of_waste", remote_field="Location_of_Waste__c"),
    FieldMapping(local_key="country_of_waste", remote_field="Country__c"),
    FieldMapping(local_key="seller_warehouse_address", remote_field="Warehouse_Address__c"),
    FieldMapping(local_key="material_type", remote_field="Material_Type__c"),
    FieldMapping(local_key="polymer_group", remote_field="Polymer_Group__c"),
    FieldMapping(local_key="material", remote_field="Material__c"),
    FieldMapping(local_key="material_specifications", remote_field="Material_Specifications__c"),
    FieldMapping(local_key="quantity", remote_field="Quantity__c", strategy=MappingStrategy.NUMERIC),
    FieldMapping(local_key="quantity_metric", remote_field="Quantity_Metric__c"),
    FieldMapping(local_key="guide_price", remote_field="Guide_Price__c", strategy=MappingStrategy.NUMERIC),
    FieldMapping(local_key="how_its_packaged", remote_field="Packaging_Type__c"),
    FieldMapping(local_key="how_its_stored", remote_field="Storage_Type__c"),
    FieldMapping(local_key="number_of_loads", remote_field="Number_of_Loads__c", strategy=MappingStrategy.NUMERIC),
    FieldMapping(
        local_key="average_weight_per_load",
        remote_field="Average_Weight_Per_Load__c",
        strategy=MappingStrategy.NUMERIC,
    ),
    FieldMapping(local_key="seller_loads_remaining", remote_field="Loads_Remaining__c", strategy=MappingStrategy.NUMERIC),
    FieldMapping(local_key="regular_load", remote_field="Regular_Load__c", strategy=MappingStrategy.BOOLEAN),
    FieldMapping(local_key="frequency", remote_field="Frequency__c"),
    FieldMapping(local_key="end_date", remote_field="End_Date__c", strategy=MappingStrategy.DATE),
    FieldMapping(local_key="available_from", remote_field="Available_From__c", strategy=MappingStrategy.DATE),
    FieldMapping(local_key="seller_id", remote_field="Seller_ID__c"),
    FieldMapping(local_key="seller_warehouse_id", remote_field="Warehouse_ID__c"),
    FieldMapping(local_key="listing_status", remote_field="Listing_Status__c"),
    FieldMapping(local_key="listing_sold", remote_field="Is_Sold__c", strategy=MappingStrategy.BOOLEAN),
    FieldMapping(local_key="listing_pern", remote_field="Is_PERN__c", strategy=MappingStrategy.BOOLEAN),
    FieldMapping(local_key="manage_approved_export", remote_field="Approved_Export__c", strategy=MappingStrategy.BOOLEAN),
    FieldMapping(local_key="approved_listing", remote_field="Is_Approved__c", strategy=MappingStrategy.BOOLEAN),
    FieldMapping(local_key="media", remote_field="Media_Attachment_IDs__c", strategy=MappingStrategy.COMMA_SEPARATED),
    FieldMapping(local_key="post_notes", remote_field="Post_Notes__c"),
    FieldMapping(local_key="listing_rejection_reason", remote_field="Rejection_Reason__c"),
]

WASTE_LISTING_CONFIG = SyncConfig(
    record_type="waste_listing",
    remote_object_name="Waste_Listing__c",
    external_id_field="WordPress_Post_ID__c",
    publishable_statuses=["publish"],
    approval_field="approved_listing",
    required_fields=["material_type", "quantity", "country_of_waste", "seller_id"],
    tracked_fields={"listing_status": ["Approved"], "listing_sold": ["1", 1, True]},
    computed_fields=[
        ComputedField(remote_field="Total_Weight__c", source_fields=["Quantity__c", "Average_Weight_Per_Load__c"]),
    ],
    platform_metadata={"Platform__c": "Waste Trading Platform", "Data_Source__c": "WordPress"},
    record_type_field="WordPress_Post_Type__c",
    last_updated_field="WordPress_Last_Updated__c",
    trigger_field="Sync_Trigger__c",
    status_field="WordPress_Status__c",
)

# Built-in defaults, keyed by record type
DEFAULT_SYNC_CONFIGS: Dict[str, SyncConfig] = {WASTE_LISTING_CONFIG.record_type: WASTE_LISTING_CONFIG}
DEFAULT_FIELD_MAPPINGS: Dict[str, List[FieldMapping]] = {WASTE_LISTING_CONFIG.record_type: WASTE_LISTING_MAPPINGS}
