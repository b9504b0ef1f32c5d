"""
Field transformation utilities for building remote payloads from local records.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..exceptions import TransformationFailure
from ..models.config import FieldMapping, MappingStrategy, SyncConfig
from ..models.record import Record
from .hooks import HookRegistry

logger = logging.getLogger(__name__)

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")
_COMPACT_DATE_RE = re.compile(r"^\d{8}$")

# Strategies that still emit a value when the local field is empty
_EMPTY_ALLOWED = {MappingStrategy.BOOLEAN}


def is_empty(value: Any) -> bool:
    """None, blank strings and empty collections count as empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def is_numeric(value: Any) -> bool:
    """True for numbers and numeric strings; booleans are not numeric."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        return bool(_NUMERIC_RE.match(value))
    return False


class FieldTransformer:
    """
    Per-strategy value transformations.
    """

    DEFAULT_DELIMITER = ","

    @staticmethod
    def to_boolean(value: Any) -> bool:
        """"1", 1 and True are true; everything else is false."""
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value == 1
        return value == "1"

    @staticmethod
    def to_number(value: Any) -> Any:
        """Cast numeric input to float, pass anything else through."""
        if is_numeric(value):
            return float(value)
        return value

    @staticmethod
    def to_date(value: Any) -> Any:
        """Reformat YYYYMMDD to YYYY-MM-DD, pass anything else through."""
        if isinstance(value, int) and not isinstance(value, bool):
            candidate = str(value)
        elif isinstance(value, str):
            candidate = value
        else:
            return value
        if _COMPACT_DATE_RE.match(candidate):
            return f"{candidate[0:4]}-{candidate[4:6]}-{candidate[6:8]}"
        return value

    @staticmethod
    def join(value: Any, delimiter: str) -> Any:
        """Join list values with a delimiter, pass scalars through."""
        if isinstance(value, (list, tuple)):
            return delimiter.join(str(v) for v in value)
        return value

    @staticmethod
    def apply_strategy(value: Any, mapping: FieldMapping) -> Any:
        """
        Apply a mapping's strategy to a value.

        Args:
            value: Raw local value
            mapping: The field mapping

        Returns:
            Transformed value

        Raises:
            TransformationFailure: If the strategy parameters are malformed
        """
        strategy = mapping.strategy

        if strategy == MappingStrategy.BOOLEAN:
            return FieldTransformer.to_boolean(value)
        elif strategy == MappingStrategy.NUMERIC:
            return FieldTransformer.to_number(value)
        elif strategy == MappingStrategy.DATE:
            return FieldTransformer.to_date(value)
        elif strategy == MappingStrategy.COMMA_SEPARATED:
            return FieldTransformer.join(value, FieldTransformer._delimiter(mapping))
        elif strategy == MappingStrategy.CUSTOM_DELIMITER:
            return FieldTransformer.join(value, FieldTransformer._delimiter(mapping))
        elif strategy == MappingStrategy.SEMICOLON:
            return FieldTransformer.join(value, ";")
        elif strategy == MappingStrategy.JSON:
            try:
                return json.dumps(value)
            except (TypeError, ValueError) as e:
                raise TransformationFailure(f"Value of '{mapping.local_key}' is not JSON serializable: {e}",
                                            local_key=mapping.local_key)
        elif strategy == MappingStrategy.FIRST_VALUE:
            if isinstance(value, (list, tuple)):
                return value[0]
            return value
        elif strategy == MappingStrategy.COUNT:
            if isinstance(value, (list, tuple, set, dict)):
                return len(value)
            return 1
        else:
            # Multi-select values go out semicolon separated
            return FieldTransformer.join(value, ";")

    @staticmethod
    def _delimiter(mapping: FieldMapping) -> str:
        delimiter = mapping.strategy_params.get("delimiter")
        if delimiter is None or delimiter == "":
            if mapping.strategy == MappingStrategy.CUSTOM_DELIMITER:
                logger.warning(f"Mapping '{mapping.local_key}' has no delimiter, using "
                               f"'{FieldTransformer.DEFAULT_DELIMITER}'")
            return FieldTransformer.DEFAULT_DELIMITER
        if not isinstance(delimiter, str):
            raise TransformationFailure(
                f"Mapping '{mapping.local_key}' delimiter must be a string, got {type(delimiter).__name__}",
                local_key=mapping.local_key,
            )
        return delimiter


class DataTransformer:
    """
    Builds the remote payload for a record.

    Per mapping: read the local value, skip it if empty, apply the strategy.
    Then derive computed fields, run the payload post-processors and finally
    inject metadata, which overwrites any mapped value with the same key.
    """

    def __init__(self, hooks: Optional[HookRegistry] = None):
        self.hooks = hooks or HookRegistry()
        self.transformer = FieldTransformer()

    def map_fields(self, record: Record, mappings: List[FieldMapping]) -> Dict[str, Any]:
        """Apply the field mappings only."""
        payload: Dict[str, Any] = {}

        for mapping in mappings:
            raw_value = record.get_field(mapping.local_key)

            if is_empty(raw_value) and mapping.strategy not in _EMPTY_ALLOWED:
                logger.debug(f"Field '{mapping.local_key}' empty on record {record.record_id}, omitted")
                continue

            payload[mapping.remote_field] = self.transformer.apply_strategy(raw_value, mapping)

        return payload

    @staticmethod
    def add_computed_fields(payload: Dict[str, Any], config: Optional[SyncConfig]) -> Dict[str, Any]:
        """Derive product fields when every source field is present and numeric."""
        if config is None:
            return payload
        for computed in config.computed_fields:
            values = [payload.get(source) for source in computed.source_fields]
            if not all(is_numeric(v) for v in values):
                continue
            product = 1.0
            for v in values:
                product *= float(v)
            payload[computed.remote_field] = product
        return payload

    @staticmethod
    def metadata(record: Record, config: Optional[SyncConfig], trigger: Optional[str],
                 now: Optional[datetime] = None) -> Dict[str, Any]:
        """Fixed fields describing where the payload came from."""
        if config is None:
            return {}
        data: Dict[str, Any] = dict(config.platform_metadata)
        if config.record_type_field:
            data[config.record_type_field] = record.record_type
        if config.last_updated_field:
            data[config.last_updated_field] = (now or datetime.utcnow()).strftime("%Y-%m-%d %H:%M:%S")
        if config.trigger_field and trigger:
            data[config.trigger_field] = trigger
        if config.status_field:
            data[config.status_field] = record.status_label()
        return data

    def build_payload(
        self,
        record: Record,
        mappings: List[FieldMapping],
        config: Optional[SyncConfig] = None,
        trigger: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Build the remote payload for a record.

        Args:
            record: The local record
            mappings: Mapping snapshot to apply
            config: Sync config of the record type, for computed fields and metadata
            trigger: Trigger reason, stamped into the metadata
            now: Sync timestamp

        Returns:
            Flat remote_field -> value map

        Raises:
            TransformationFailure: On malformed strategy parameters or a broken post-processor
        """
        payload = self.map_fields(record, mappings)
        payload = self.add_computed_fields(payload, config)

        try:
            payload = self.hooks.post_process_payload(payload, record.record_id)
        except Exception as e:
            logger.error(f"Payload post-processing failed for record {record.record_id}: {e}")
            raise TransformationFailure(f"Payload post-processor failed: {e}")

        payload.update(self.metadata(record, config, trigger, now))
        return payload
