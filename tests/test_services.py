"""Tests for pipeline wiring, settings and the Google Cloud backed services."""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import NotFound

from crmbridge.connectors import InMemoryRecordSource, get_record_source
from crmbridge.connectors.base import record_sort_key
from crmbridge.connectors.firestore import FirestoreRecordSource
from crmbridge.core.bridge import Bridge, create_bridge, create_store
from crmbridge.core.config import BridgeSettings
from crmbridge.core.models import OAuthToken
from crmbridge.exceptions import ConfigurationError, RecordNotFoundError
from crmbridge.models.config import WASTE_LISTING_CONFIG, WASTE_LISTING_MAPPINGS
from crmbridge.models.sync import PendingSync, SyncRecord, SyncStatus
from crmbridge.services.firestore import FirestoreStateStore
from crmbridge.services.scheduler import QUEUE_JOB_NAME, SchedulerService
from crmbridge.services.secrets import SecretManagerService
from crmbridge.services.store import InMemoryStateStore

from conftest import make_record

CREDENTIALS = {"SALESFORCE_CLIENT_ID": "id", "SALESFORCE_CLIENT_SECRET": "secret"}


# ── Settings & Wiring ────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        settings = BridgeSettings()
        assert settings.coalesce_seconds == 5
        assert settings.queue_max_attempts == 5
        assert settings.migration_page_size == 50
        assert settings.state_backend == "memory"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SALESFORCE_API_VERSION", "v60.0")
        monkeypatch.setenv("SYNC_COALESCE_SECONDS", "10")
        monkeypatch.setenv("MIGRATION_DELAY_SECONDS", "0.5")
        monkeypatch.setenv("SMTP_USE_TLS", "false")
        monkeypatch.setenv("ALERT_EMAIL_TO", "ops@example.com")
        monkeypatch.setenv("HTTP_MAX_ATTEMPTS", "4")

        settings = BridgeSettings.from_env()

        assert settings.api_version == "v60.0"
        assert settings.coalesce_seconds == 10
        assert settings.migration_delay_seconds == 0.5
        assert settings.smtp.use_tls is False
        assert settings.alert_email_to == "ops@example.com"
        assert settings.http_max_attempts == 4


class TestCreateBridge:
    def test_memory_store(self):
        assert isinstance(create_store(BridgeSettings()), InMemoryStateStore)

    def test_unknown_store(self):
        with pytest.raises(ConfigurationError):
            create_store(BridgeSettings(state_backend="redis"))

    def test_unknown_record_source(self):
        with pytest.raises(ConfigurationError, match="Unknown record source"):
            create_bridge(BridgeSettings(record_source="mysql"), credentials=CREDENTIALS)

    def test_missing_credentials(self, monkeypatch):
        for name in ("SALESFORCE_CLIENT_ID", "SALESFORCE_CLIENT_SECRET"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ValueError):
            create_bridge(BridgeSettings())

    def test_builds_pipeline_from_settings(self):
        settings = BridgeSettings(api_version="v60.0", queue_max_attempts=2, migration_page_size=7,
                                  http_max_attempts=2)
        bridge = create_bridge(settings, credentials=CREDENTIALS)

        assert isinstance(bridge, Bridge)
        assert bridge.client.api_version == "v60.0"
        assert bridge.queue.max_attempts == 2
        assert bridge.migration.page_size == 7
        assert bridge.orchestrator.alerter is bridge.alerter
        assert bridge.alerter.recipients == []
        assert bridge.client.tokens.max_attempts == 2
        assert bridge.client.session.get_adapter("https://example.com").max_retries.total == 1

    def test_components_share_hooks(self, bridge):
        assert bridge.registry.hooks is bridge.hooks
        assert bridge.orchestrator.hooks is bridge.hooks
        assert bridge.orchestrator.validator.hooks is bridge.hooks


# ── Record sources ───────────────────────────────────────────────────────────


class TestRecordSource:
    def test_ids_ordered_numerically(self):
        source = InMemoryRecordSource([make_record(i) for i in ("10", "9", "100", "abc")])
        assert source.list_record_ids("waste_listing") == ["9", "10", "100", "abc"]
        assert source.list_record_ids("waste_listing", after_id="10", limit=1) == ["100"]

    def test_sort_key(self):
        assert record_sort_key("9") < record_sort_key("10") < record_sort_key("a")

    def test_get_record(self):
        source = InMemoryRecordSource([make_record("101")])
        assert source.get_record("101").title == "Listing 101"
        with pytest.raises(RecordNotFoundError):
            source.get_record("102")

    def test_returned_records_are_copies(self):
        source = InMemoryRecordSource([make_record("101")])
        source.find_record("101").fields["quantity"] = 0
        assert source.find_record("101").fields["quantity"] == 10

    def test_registry(self):
        assert isinstance(get_record_source("memory"), InMemoryRecordSource)
        with pytest.raises(ValueError):
            get_record_source("csv")


class TestFirestoreRecordSource:
    @pytest.fixture
    def db(self):
        return MagicMock()

    @pytest.fixture
    def firestore_source(self, db):
        return FirestoreRecordSource(client=db)

    def test_orders_by_numeric_id_and_resumes_from_value(self, firestore_source, db):
        query = db.collection.return_value.where.return_value.order_by.return_value
        paged = query.start_after.return_value.limit.return_value
        paged.stream.return_value = [MagicMock(id="100"), MagicMock(id="101")]

        ids = firestore_source.list_record_ids("waste_listing", after_id="99", limit=2)

        assert ids == ["100", "101"]
        db.collection.return_value.where.assert_called_once_with("record_type", "==", "waste_listing")
        db.collection.return_value.where.return_value.order_by.assert_called_once_with("post_id")
        query.start_after.assert_called_once_with({"post_id": 99})
        query.start_after.return_value.limit.assert_called_once_with(2)

    def test_first_page_has_no_cursor(self, firestore_source, db):
        query = db.collection.return_value.where.return_value.order_by.return_value
        query.limit.return_value.stream.return_value = [MagicMock(id="9")]

        assert firestore_source.list_record_ids("waste_listing") == ["9"]
        query.start_after.assert_not_called()

    def test_non_numeric_cursor_rejected(self, firestore_source):
        with pytest.raises(ValueError, match="not numeric"):
            firestore_source.list_record_ids("waste_listing", after_id="abc")

    def test_find_record_ignores_stored_numeric_id(self, firestore_source, db):
        doc = db.collection.return_value.document.return_value.get.return_value
        doc.exists = True
        doc.to_dict.return_value = {"post_id": 101, "record_type": "waste_listing", "status": "publish",
                                    "fields": {"quantity": 10}}

        record = firestore_source.find_record("101")

        assert record.record_id == "101"
        assert record.get_field("quantity") == 10


# ── Firestore ────────────────────────────────────────────────────────────────


class FakeDocument:
    def __init__(self, docs, doc_id):
        self._docs = docs
        self.id = doc_id

    @property
    def exists(self):
        return self.id in self._docs

    def get(self):
        return self

    def to_dict(self):
        return dict(self._docs[self.id])

    def set(self, data):
        self._docs[self.id] = dict(data)

    def delete(self):
        self._docs.pop(self.id, None)


class FakeFirestore:
    """Document get/set/delete over nested dicts."""

    project = "demo-project"

    def __init__(self):
        self.collections = {}

    def collection(self, name):
        docs = self.collections.setdefault(name, {})
        collection = MagicMock()
        collection.document.side_effect = lambda doc_id: FakeDocument(docs, doc_id)
        collection.stream.side_effect = lambda: [FakeDocument(docs, doc_id) for doc_id in docs]
        return collection


class TestFirestoreStateStore:
    @pytest.fixture
    def fs(self):
        return FirestoreStateStore(client=FakeFirestore())

    def test_sync_record(self, fs):
        assert fs.get_sync_record("101") is None
        fs.save_sync_record(SyncRecord(record_id="101", remote_external_id="a0X1",
                                       last_synced_at=datetime(2025, 3, 14, 9, 30),
                                       last_sync_status=SyncStatus.SUCCESS))
        state = fs.get_sync_record("101")
        assert state.remote_external_id == "a0X1"
        assert state.last_synced_at == datetime(2025, 3, 14, 9, 30)
        assert state.last_sync_status == SyncStatus.SUCCESS

    def test_token(self, fs):
        fs.save_token(OAuthToken(access_token="t", expires_at=datetime(2025, 3, 14, 11, 30)))
        assert fs.get_token().expires_at == datetime(2025, 3, 14, 11, 30)
        fs.clear_token()
        assert fs.get_token() is None

    def test_auth_failure(self, fs):
        fs.set_auth_failure({"since": "2025-03-14T09:30:00", "message": "invalid_grant"})
        assert fs.get_auth_failure()["message"] == "invalid_grant"
        fs.set_auth_failure(None)
        assert fs.get_auth_failure() is None

    def test_pending(self, fs):
        fs.save_pending(PendingSync(record_id="101", reasons=["save_post"],
                                    first_queued_at=datetime(2025, 3, 14, 9, 30),
                                    due_at=datetime(2025, 3, 14, 9, 30, 5)))
        assert fs.get_pending("101").due_at == datetime(2025, 3, 14, 9, 30, 5)
        fs.delete_pending("101")
        assert fs.get_pending("101") is None

    def test_mappings_and_configs(self, fs):
        assert fs.get_field_mappings("waste_listing") is None
        fs.save_field_mappings("waste_listing", WASTE_LISTING_MAPPINGS)
        assert fs.get_field_mappings("waste_listing") == WASTE_LISTING_MAPPINGS

        fs.save_sync_config(WASTE_LISTING_CONFIG.model_copy(deep=True))
        config = fs.get_sync_config("waste_listing")
        assert config.required_fields == WASTE_LISTING_CONFIG.required_fields
        assert [c.record_type for c in fs.list_sync_configs()] == ["waste_listing"]

    def test_cursor(self, fs):
        fs.save_cursor("waste_listing", "105")
        assert fs.get_cursor("waste_listing") == "105"
        fs.delete_cursor("waste_listing")
        assert fs.get_cursor("waste_listing") is None


# ── Secret Manager ───────────────────────────────────────────────────────────


class TestSecretManager:
    def test_requires_project(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
        with pytest.raises(ValueError):
            SecretManagerService()

    def test_missing_secret_falls_back_to_environment(self, monkeypatch):
        monkeypatch.setenv("SALESFORCE_USERNAME", "env-user")
        secrets = {"salesforce-client-id": "sm-id", "salesforce-client-secret": "sm-secret"}

        def access(request):
            name = request["name"].split("/")[3]
            if name not in secrets:
                raise NotFound(f"Secret {name} not found")
            response = MagicMock()
            response.payload.data = secrets[name].encode("UTF-8")
            return response

        with patch("crmbridge.services.secrets.secretmanager.SecretManagerServiceClient") as client_cls:
            client_cls.return_value.access_secret_version.side_effect = access
            service = SecretManagerService(project_id="demo-project")
            credentials = service.get_salesforce_credentials()
            service.get_secret("salesforce-client-id")

        assert credentials["SALESFORCE_CLIENT_ID"] == "sm-id"
        assert credentials["SALESFORCE_CLIENT_SECRET"] == "sm-secret"
        assert credentials["SALESFORCE_USERNAME"] == "env-user"
        # Six lookups, the repeated one is served from the cache
        assert client_cls.return_value.access_secret_version.call_count == 6


# ── Cloud Scheduler ──────────────────────────────────────────────────────────


class TestSchedulerService:
    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def scheduler(self, client):
        return SchedulerService(project_id="demo-project", region="europe-west2", client=client)

    def test_creates_missing_job(self, scheduler, client):
        client.get_job.side_effect = NotFound("missing")
        client.create_job.return_value.name = scheduler.job_path

        job = scheduler.ensure_queue_job("https://bridge.example.com/", "*/5 * * * *")

        assert job["uri"] == "https://bridge.example.com/api/v1/queue/process"
        assert job["schedule"] == "*/5 * * * *"
        kwargs = client.create_job.call_args[1]
        assert kwargs["parent"] == "projects/demo-project/locations/europe-west2"
        assert kwargs["job"]["http_target"]["oidc_token"]["service_account_email"] == \
            "crmbridge-sa@demo-project.iam.gserviceaccount.com"
        client.update_job.assert_not_called()

    def test_updates_existing_job(self, scheduler, client):
        scheduler.ensure_queue_job("https://bridge.example.com", service_account="sched@demo.iam")
        client.update_job.assert_called_once()
        client.create_job.assert_not_called()
        assert client.update_job.call_args[1]["job"]["name"].endswith(f"/jobs/{QUEUE_JOB_NAME}")

    def test_delete_and_missing(self, scheduler, client):
        assert scheduler.delete_queue_job() is True
        client.delete_job.side_effect = NotFound("missing")
        assert scheduler.delete_queue_job() is False

    def test_pause_resume(self, scheduler, client):
        assert scheduler.pause_queue_job() is True
        assert scheduler.resume_queue_job() is True
        client.resume_job.side_effect = NotFound("missing")
        assert scheduler.resume_queue_job() is False

    def test_get_missing_job(self, scheduler, client):
        client.get_job.side_effect = NotFound("missing")
        assert scheduler.get_queue_job() is None
