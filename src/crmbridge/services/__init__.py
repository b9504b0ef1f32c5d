"""
Services for the CRM bridge.
"""

from .store import StateStore, InMemoryStateStore
from .audit import AuditTrail
from .notifications import EmailAlerter
from .firestore import FirestoreStateStore
from .scheduler import SchedulerService

__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "AuditTrail",
    "EmailAlerter",
    "FirestoreStateStore",
    "SchedulerService",
]
