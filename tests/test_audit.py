"""Tests for the audit trail and operator alerts."""

import csv
import io
import smtplib
from unittest.mock import MagicMock, patch

import pytest

from crmbridge.core.config import SmtpSettings
from crmbridge.models.audit import AuditCategory, AuditLevel
from crmbridge.services.audit import AuditTrail
from crmbridge.services.notifications import EmailAlerter


@pytest.fixture
def trail(store, clock):
    return AuditTrail(store, clock=clock)


# ── Audit trail ──────────────────────────────────────────────────────────────


class TestAuditTrail:
    def test_entries_newest_first(self, trail, clock):
        trail.info(AuditCategory.SYNC, "first", record_id="101")
        clock.advance(1)
        trail.warning(AuditCategory.VALIDATION, "second", record_id="102")
        clock.advance(1)
        trail.error(AuditCategory.API, "third", record_id="101")

        assert [e.message for e in trail.list_recent()] == ["third", "second", "first"]

    def test_filters(self, trail):
        trail.info(AuditCategory.SYNC, "synced", record_id="101")
        trail.warning(AuditCategory.VALIDATION, "rejected", record_id="102")
        trail.error(AuditCategory.API, "failed", record_id="101")

        assert [e.message for e in trail.list_recent(record_id="101")] == ["failed", "synced"]
        assert [e.message for e in trail.list_recent(category=AuditCategory.VALIDATION)] == ["rejected"]
        assert [e.message for e in trail.list_recent(level=AuditLevel.ERROR)] == ["failed"]
        assert len(trail.list_recent(limit=2)) == 2

    def test_context_and_timestamp(self, trail, clock):
        entry = trail.warning(AuditCategory.VALIDATION, "rejected", record_id="101", field="seller_id",
                              trigger="save_post")
        assert entry.context == {"field": "seller_id", "trigger": "save_post"}
        assert entry.timestamp == clock()
        assert entry.id

    def test_stats(self, trail, clock):
        trail.info(AuditCategory.SYNC, "a")
        trail.info(AuditCategory.SYNC, "b")
        clock.advance(60)
        trail.error(AuditCategory.AUTH, "c")

        stats = trail.stats()

        assert stats["total"] == 3
        assert stats["by_level"] == {"info": 2, "warning": 0, "error": 1}
        assert stats["by_category"] == {"sync": 2, "auth": 1}
        assert stats["last_entry_at"] == "2025-03-14T09:31:00"

    def test_stats_empty(self, trail):
        assert trail.stats()["last_entry_at"] is None

    def test_export_csv(self, trail):
        trail.error(AuditCategory.API, "HTTP 400, bad field", record_id="101", status_code=400)

        rows = list(csv.reader(io.StringIO(trail.export_csv(trail.list_recent()))))

        assert rows[0] == ["id", "timestamp", "level", "category", "record_id", "message", "context"]
        assert rows[1][2:6] == ["error", "api", "101", "HTTP 400, bad field"]
        assert rows[1][6] == '{"status_code": 400}'


# ── Alerts ───────────────────────────────────────────────────────────────────


class TestEmailAlerter:
    def test_no_recipients_only_logs(self, clock):
        alerter = EmailAlerter("", clock=clock)
        with patch("crmbridge.services.notifications.smtplib.SMTP") as smtp:
            assert alerter.alert("Salesforce authentication failed", "body") is False
        smtp.assert_not_called()

    def test_sends_email(self, clock):
        settings = SmtpSettings(host="smtp.example.com", port=2525, username="user", password="secret")
        alerter = EmailAlerter("ops@example.com, dev@example.com", settings, clock=clock)

        with patch("crmbridge.services.notifications.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            assert alerter.alert("Salesforce authentication failed", "body", metadata={"record_id": "101"})

        smtp.assert_called_once_with("smtp.example.com", 2525)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")
        message = server.send_message.call_args[0][0]
        assert message["To"] == "ops@example.com, dev@example.com"
        assert message["Subject"] == "[CRM Bridge] Salesforce authentication failed"

    def test_same_key_suppressed_within_window(self, clock):
        alerter = EmailAlerter("ops@example.com", window_seconds=3600, clock=clock)
        with patch("crmbridge.services.notifications.smtplib.SMTP") as smtp:
            assert alerter.alert("Auth failed", "one", key="salesforce-auth") is True
            clock.advance(600)
            assert alerter.alert("Auth failed again", "two", key="salesforce-auth") is False
            assert alerter.alert("Something else", "three", key="other") is True
            clock.advance(3000)
            assert alerter.alert("Auth failed", "four", key="salesforce-auth") is True
        assert smtp.call_count == 3

    def test_smtp_error_reported_not_raised(self, clock):
        alerter = EmailAlerter("ops@example.com", clock=clock)
        with patch("crmbridge.services.notifications.smtplib.SMTP",
                   MagicMock(side_effect=smtplib.SMTPConnectError(421, "busy"))):
            assert alerter.alert("Auth failed", "body", key="salesforce-auth") is False

        # A failed send does not start the suppression window
        with patch("crmbridge.services.notifications.smtplib.SMTP"):
            assert alerter.alert("Auth failed", "body", key="salesforce-auth") is True
