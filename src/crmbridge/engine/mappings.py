"""
Field mapping registry: resolves the effective local -> remote field mappings.
"""

import json
import logging
from typing import Dict, List, Iterable, Optional

from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..models.audit import AuditCategory
from ..models.config import FieldMapping, SyncConfig, DEFAULT_FIELD_MAPPINGS, DEFAULT_SYNC_CONFIGS
from ..services.audit import AuditTrail
from ..services.store import StateStore
from .hooks import HookRegistry

logger = logging.getLogger(__name__)


def merge_mappings(*layers: Iterable[FieldMapping]) -> List[FieldMapping]:
    """
    Merge mapping layers; a later mapping replaces an earlier one with the same local_key.

    A replaced mapping keeps the position of the one it replaces.
    """
    merged: Dict[str, FieldMapping] = {}
    for layer in layers:
        for mapping in layer:
            merged[mapping.local_key] = mapping.model_copy(deep=True)
    return list(merged.values())


class FieldMappingRegistry:
    """
    Owns field mappings and per-record-type sync configuration.

    Effective mappings for a record type are, in order: the admin-saved
    mappings (or the built-in defaults when none were saved), then the
    overrides registered through the hook registry.
    """

    def __init__(
        self,
        store: StateStore,
        hooks: HookRegistry,
        audit: Optional[AuditTrail] = None,
        default_mappings: Optional[Dict[str, List[FieldMapping]]] = None,
        default_configs: Optional[Dict[str, SyncConfig]] = None,
    ):
        self.store = store
        self.hooks = hooks
        self.audit = audit
        self.default_mappings = DEFAULT_FIELD_MAPPINGS if default_mappings is None else default_mappings
        self.default_configs = DEFAULT_SYNC_CONFIGS if default_configs is None else default_configs

    # Mappings

    def base_mappings(self, record_type: str) -> List[FieldMapping]:
        saved = self.store.get_field_mappings(record_type)
        if saved is not None:
            return saved
        return [m.model_copy(deep=True) for m in self.default_mappings.get(record_type, [])]

    def resolve_mappings(self, record_type: str) -> List[FieldMapping]:
        """
        Effective mappings for a record type.

        The result is a fresh copy; later mapping edits do not affect a
        sync that already holds it.
        """
        return merge_mappings(self.base_mappings(record_type), self.hooks.mapping_overrides(record_type))

    def save_mappings(self, record_type: str, mappings: List[FieldMapping]) -> List[FieldMapping]:
        """Replace the admin-saved mappings for a record type."""
        deduplicated = merge_mappings(mappings)
        self.store.save_field_mappings(record_type, deduplicated)
        if self.audit:
            self.audit.info(AuditCategory.CONFIG, f"Saved {len(deduplicated)} field mappings for {record_type}",
                            record_type=record_type)
        return deduplicated

    def upsert_mapping(self, record_type: str, mapping: FieldMapping) -> List[FieldMapping]:
        """Add a mapping, or replace the one with the same local_key."""
        return self.save_mappings(record_type, merge_mappings(self.base_mappings(record_type), [mapping]))

    def delete_mapping(self, record_type: str, local_key: str) -> bool:
        """Remove a mapping. Returns False if no such mapping exists."""
        current = self.base_mappings(record_type)
        remaining = [m for m in current if m.local_key != local_key]
        if len(remaining) == len(current):
            return False
        self.save_mappings(record_type, remaining)
        return True

    def export_mappings(self, record_type: str) -> str:
        return json.dumps([m.model_dump(mode="json") for m in self.base_mappings(record_type)], indent=2)

    def import_mappings(self, record_type: str, payload: str) -> List[FieldMapping]:
        """Replace mappings from a JSON export."""
        try:
            items = json.loads(payload)
            if not isinstance(items, list):
                raise ConfigurationError("Mapping import must be a JSON list")
            mappings = [FieldMapping(**item) for item in items]
        except (ValueError, TypeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid mapping import: {e}")
        return self.save_mappings(record_type, mappings)

    # Sync configuration

    def get_sync_config(self, record_type: str) -> Optional[SyncConfig]:
        config = self.store.get_sync_config(record_type)
        if config is not None:
            return config
        default = self.default_configs.get(record_type)
        return default.model_copy(deep=True) if default else None

    def save_sync_config(self, config: SyncConfig) -> None:
        self.store.save_sync_config(config)
        if self.audit:
            self.audit.info(AuditCategory.CONFIG, f"Saved sync config for {config.record_type}",
                            remote_object=config.remote_object_name, enabled=config.enabled)

    def enabled_record_types(self) -> List[str]:
        configs = {rt: c for rt, c in self.default_configs.items()}
        configs.update({c.record_type: c for c in self.store.list_sync_configs()})
        return sorted(rt for rt, c in configs.items() if c.enabled)

    def is_sync_enabled(self, record_type: str) -> bool:
        config = self.get_sync_config(record_type)
        return bool(config and config.enabled)
