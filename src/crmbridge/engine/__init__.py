"""
Sync pipeline: mapping resolution, transformation, eligibility, orchestration.
"""

from .hooks import HookRegistry
from .mappings import FieldMappingRegistry, merge_mappings
from .transforms import FieldTransformer, DataTransformer
from .validator import EligibilityValidator
from .queue import SyncQueue
from .sync import SyncOrchestrator
from .migration import MigrationRunner

__all__ = [
    "HookRegistry",
    "FieldMappingRegistry",
    "merge_mappings",
    "FieldTransformer",
    "DataTransformer",
    "EligibilityValidator",
    "SyncQueue",
    "SyncOrchestrator",
    "MigrationRunner",
]
