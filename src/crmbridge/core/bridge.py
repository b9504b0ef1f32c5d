"""
Builds the sync pipeline from settings; shared by the API and the CLI.
"""

import logging
import time
from datetime import datetime
from typing import Dict, Optional, Callable

from ..connectors import RecordSource, get_record_source
from ..engine.hooks import HookRegistry
from ..engine.mappings import FieldMappingRegistry
from ..engine.migration import MigrationRunner
from ..engine.queue import SyncQueue
from ..engine.sync import SyncOrchestrator
from ..exceptions import ConfigurationError
from ..integrations.salesforce.client import SalesforceClient, create_client_from_env
from ..services.audit import AuditTrail
from ..services.notifications import EmailAlerter
from ..services.secrets import SecretManagerService, credentials_from_env
from ..services.store import StateStore, InMemoryStateStore
from .config import BridgeSettings

logger = logging.getLogger(__name__)


class Bridge:
    """The wired sync pipeline. Components share one state store and hook registry."""

    def __init__(
        self,
        settings: BridgeSettings,
        store: StateStore,
        source: RecordSource,
        client: SalesforceClient,
        hooks: Optional[HookRegistry] = None,
        alerter: Optional[EmailAlerter] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.store = store
        self.source = source
        self.client = client
        self.hooks = hooks or HookRegistry()
        self.alerter = alerter

        self.audit = AuditTrail(store, clock)
        self.registry = FieldMappingRegistry(store, self.hooks, self.audit)
        self.queue = SyncQueue(
            store,
            self.audit,
            coalesce_seconds=settings.coalesce_seconds,
            retry_delay_seconds=settings.retry_delay_seconds,
            max_attempts=settings.queue_max_attempts,
            clock=clock,
        )
        self.orchestrator = SyncOrchestrator(
            source,
            self.registry,
            client,
            store,
            self.audit,
            self.queue,
            hooks=self.hooks,
            alerter=alerter,
            batch_size=settings.queue_batch_size,
            clock=clock,
        )
        self.migration = MigrationRunner(
            self.orchestrator,
            source,
            self.registry,
            client,
            store,
            self.audit,
            page_size=settings.migration_page_size,
            delay_seconds=settings.migration_delay_seconds,
            sleep=sleep,
            clock=clock,
        )


def create_store(settings: BridgeSettings) -> StateStore:
    if settings.state_backend == "memory":
        return InMemoryStateStore()
    if settings.state_backend == "firestore":
        from ..services.firestore import FirestoreStateStore
        return FirestoreStateStore(project_id=settings.google_cloud_project)
    raise ConfigurationError(f"Unknown state backend: {settings.state_backend}")


def resolve_credentials(settings: BridgeSettings) -> Dict[str, str]:
    """Salesforce credentials from Secret Manager or the environment."""
    if settings.credentials_source == "secret_manager":
        return SecretManagerService(project_id=settings.google_cloud_project).get_salesforce_credentials()
    return credentials_from_env()


def create_bridge(
    settings: Optional[BridgeSettings] = None,
    store: Optional[StateStore] = None,
    source: Optional[RecordSource] = None,
    client: Optional[SalesforceClient] = None,
    credentials: Optional[Dict[str, str]] = None,
    hooks: Optional[HookRegistry] = None,
) -> Bridge:
    """
    Create the sync pipeline.

    Components that are not passed in are built from the settings.

    Raises:
        ConfigurationError: If the state backend or record source is unknown
        ValueError: If no usable Salesforce credentials are configured
    """
    settings = settings or BridgeSettings.from_env()
    store = store or create_store(settings)

    if source is None:
        source_config = {}
        if settings.record_source == "firestore":
            source_config["project_id"] = settings.google_cloud_project
        try:
            source = get_record_source(settings.record_source, **source_config)
        except ValueError as e:
            raise ConfigurationError(str(e))

    if client is None:
        client = create_client_from_env(
            store,
            credentials or resolve_credentials(settings),
            login_url=settings.login_url,
            api_version=settings.api_version,
            timeout=settings.http_timeout_seconds,
            max_attempts=settings.http_max_attempts,
            backoff_factor=settings.http_backoff_factor,
        )

    alerter = EmailAlerter(settings.alert_email_to, settings.smtp, settings.alert_window_seconds)

    logger.info(f"Bridge created: state={settings.state_backend}, records={settings.record_source}, "
                f"api={settings.api_version}")
    return Bridge(settings, store, source, client, hooks=hooks, alerter=alerter)
