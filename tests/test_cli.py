"""Tests for the command line interface."""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from crmbridge.core.cli import cli
from crmbridge.exceptions import ConfigurationError

from conftest import make_record


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, bridge):
    def _invoke(*args):
        with patch("crmbridge.core.cli.create_bridge", return_value=bridge):
            return runner.invoke(cli, list(args))
    return _invoke


# ── Connection & Sync ────────────────────────────────────────────────────────


class TestConnectionCommand:
    def test_success(self, invoke):
        result = invoke("test-connection")
        assert result.exit_code == 0
        assert "✅ Connected to Waste Trading Ltd" in result.output
        assert "Instance: https://example.my.salesforce.com" in result.output

    def test_failure(self, invoke, salesforce):
        salesforce.reject_tokens = True
        result = invoke("test-connection")
        assert result.exit_code == 1
        assert "Authentication failed" in result.output

    def test_missing_credentials(self, runner):
        with patch("crmbridge.core.cli.create_bridge",
                   side_effect=ValueError("SALESFORCE_CLIENT_ID and SALESFORCE_CLIENT_SECRET are required")):
            result = runner.invoke(cli, ["test-connection"])
        assert result.exit_code == 1
        assert "Configuration Error" in result.output


class TestSyncRecordCommand:
    def test_text_output(self, invoke):
        result = invoke("sync-record", "101")
        assert result.exit_code == 0
        assert result.output.startswith("Record 101: success - Created Waste_Listing__c")

    def test_json_output(self, invoke):
        result = invoke("sync-record", "101", "--output", "json")
        data = json.loads(result.output)
        assert data["status"] == "success"
        assert "payload" not in data

    def test_unknown_record(self, invoke):
        result = invoke("sync-record", "999")
        assert result.exit_code == 1
        assert "Record 999 not found" in result.output

    def test_ineligible_record_exits_nonzero(self, invoke, source):
        source.put(make_record(status="draft"))
        result = invoke("sync-record", "101")
        assert result.exit_code == 1
        assert "ineligible" in result.output


class TestProcessQueueCommand:
    def test_processes_due_entries(self, invoke, bridge, clock):
        bridge.queue.enqueue("101", "save_post")
        clock.advance(5)
        result = invoke("process-queue")
        assert result.exit_code == 0
        assert "Synced: 1" in result.output
        assert "Remaining: 0" in result.output


# ── Migration ────────────────────────────────────────────────────────────────


class TestMigrateCommand:
    def test_full_run(self, invoke, source):
        source.put(make_record("102"))
        result = invoke("migrate", "waste_listing")
        assert result.exit_code == 0
        assert "Synced: 2" in result.output
        assert "✅ All records processed" in result.output

    def test_partial_run_then_reset(self, invoke, bridge, source):
        source.put(make_record("102"))
        result = invoke("migrate", "waste_listing", "--max-records", "1")
        assert "Cursor: 101" in result.output
        assert "All records processed" not in result.output

        result = invoke("migrate", "waste_listing", "--reset", "--max-records", "1")
        assert "Migration cursor for waste_listing reset" in result.output
        assert "Cursor: 101" in result.output

    def test_aborted_run_exits_nonzero(self, invoke, bridge):
        bridge.store.set_auth_failure({"since": "2025-03-14T09:00:00", "message": "invalid_grant"})
        result = invoke("migrate", "waste_listing")
        assert result.exit_code == 1
        assert "Migration stopped" in result.output

    def test_unknown_record_type(self, invoke):
        result = invoke("migrate", "page")
        assert result.exit_code == 1
        assert "not configured" in result.output


# ── Mappings ─────────────────────────────────────────────────────────────────


class TestMappingCommands:
    def test_show_table(self, invoke):
        result = invoke("mappings", "show", "waste_listing")
        assert result.exit_code == 0
        assert "Title__c" in result.output
        assert "Media_Attachment_IDs__c" in result.output

    def test_show_json(self, invoke):
        result = invoke("mappings", "show", "waste_listing", "--output", "json")
        data = json.loads(result.output)
        assert data[0] == {"local_key": "post_title", "remote_field": "Title__c", "strategy": "none",
                           "strategy_params": {}}

    def test_show_unknown_type(self, invoke):
        assert "No mappings for page." in invoke("mappings", "show", "page").output

    def test_set_with_delimiter(self, invoke, bridge):
        result = invoke("mappings", "set", "waste_listing", "media", "Media__c",
                        "--strategy", "custom_delimiter", "--delimiter", "|")
        assert result.exit_code == 0
        mapping = {m.local_key: m for m in bridge.registry.base_mappings("waste_listing")}["media"]
        assert mapping.remote_field == "Media__c"
        assert mapping.strategy_params == {"delimiter": "|"}

    def test_set_failure(self, invoke, bridge):
        with patch.object(bridge.registry, "upsert_mapping", side_effect=ConfigurationError("store unavailable")):
            result = invoke("mappings", "set", "waste_listing", "a", "A__c")
        assert result.exit_code == 1
        assert "store unavailable" in result.output

    def test_delete(self, invoke):
        assert invoke("mappings", "delete", "waste_listing", "media").exit_code == 0
        result = invoke("mappings", "delete", "waste_listing", "media")
        assert result.exit_code == 1
        assert "Mapping media not found" in result.output


# ── Audit & Scheduling ───────────────────────────────────────────────────────


class TestAuditCommand:
    def test_empty(self, invoke):
        assert "No audit entries found." in invoke("audit").output

    def test_listing_and_filters(self, invoke, source):
        source.put(make_record("102", status="draft"))
        invoke("sync-record", "101")
        invoke("sync-record", "102")

        result = invoke("audit", "--level", "warning")
        assert "validation" in result.output
        assert "102" in result.output
        assert "Created" not in result.output

    def test_csv(self, invoke):
        invoke("sync-record", "101")
        result = invoke("audit", "--csv")
        assert result.output.splitlines()[0] == "id,timestamp,level,category,record_id,message,context"


class TestScheduleQueueCommand:
    def test_creates_job(self, runner, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "demo-project")
        monkeypatch.delenv("SCHEDULER_SERVICE_ACCOUNT", raising=False)
        scheduler = MagicMock()
        scheduler.ensure_queue_job.return_value = {
            "job_name": "crmbridge-process-queue",
            "uri": "https://bridge.example.com/api/v1/queue/process",
            "schedule": "* * * * *",
        }
        with patch("crmbridge.core.cli.SchedulerService", return_value=scheduler) as service:
            result = runner.invoke(cli, ["schedule-queue", "--service-url", "https://bridge.example.com"])

        assert result.exit_code == 0
        assert service.call_args[1]["project_id"] == "demo-project"
        scheduler.ensure_queue_job.assert_called_once_with("https://bridge.example.com", "* * * * *", None)
        assert "✅ Queue job crmbridge-process-queue" in result.output

    def test_delete_missing_job(self, runner):
        scheduler = MagicMock()
        scheduler.delete_queue_job.return_value = False
        with patch("crmbridge.core.cli.SchedulerService", return_value=scheduler):
            result = runner.invoke(cli, ["schedule-queue", "--delete"])
        assert result.exit_code == 0
        assert "Queue job not found" in result.output

    def test_scheduler_error(self, runner):
        with patch("crmbridge.core.cli.SchedulerService", side_effect=RuntimeError("no credentials")):
            result = runner.invoke(cli, ["schedule-queue"])
        assert result.exit_code == 1
        assert "Scheduler error: no credentials" in result.output

    @pytest.mark.parametrize("flag,method,word", [
        ("--pause", "pause_queue_job", "paused"),
        ("--resume", "resume_queue_job", "resumed"),
    ])
    def test_pause_and_resume(self, runner, flag, method, word):
        scheduler = MagicMock()
        with patch("crmbridge.core.cli.SchedulerService", return_value=scheduler):
            result = runner.invoke(cli, ["schedule-queue", flag])
        assert result.exit_code == 0
        getattr(scheduler, method).assert_called_once_with()
        scheduler.ensure_queue_job.assert_not_called()
        assert f"✅ Queue job {word}" in result.output

    def test_status(self, runner):
        scheduler = MagicMock()
        scheduler.get_queue_job.return_value = {
            "job_name": "crmbridge-process-queue",
            "status": "PAUSED",
            "schedule": "* * * * *",
            "uri": "https://bridge.example.com/api/v1/queue/process",
        }
        with patch("crmbridge.core.cli.SchedulerService", return_value=scheduler):
            result = runner.invoke(cli, ["schedule-queue", "--status"])
        assert result.exit_code == 0
        assert "crmbridge-process-queue: PAUSED (* * * * *)" in result.output

    def test_status_missing_job(self, runner):
        scheduler = MagicMock()
        scheduler.get_queue_job.return_value = None
        with patch("crmbridge.core.cli.SchedulerService", return_value=scheduler):
            result = runner.invoke(cli, ["schedule-queue", "--status"])
        assert "Queue job not found" in result.output

    def test_conflicting_flags(self, runner):
        result = runner.invoke(cli, ["schedule-queue", "--pause", "--delete"])
        assert result.exit_code == 2
        assert "Use only one of" in result.output
