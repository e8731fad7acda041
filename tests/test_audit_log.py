"""Tests for the structured audit log."""

import json

from strongbox.core import AuditLogger, EventSeverity, EventType, configure_audit_logger, get_audit_logger
from strongbox.core.audit_log import REDACTED, scrub_details


def _events(log_file):
    return [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines() if line]


class TestAuditLogger:

    def test_writes_json_line(self, tmp_path):
        audit = AuditLogger(log_dir=tmp_path / "logs")

        event_id = audit.log_event(
            EventType.BACKUP_CREATED, EventSeverity.INFO, "Backup created", details={"size": 10}
        )

        events = _events(audit.log_file)
        assert len(events) == 1
        assert events[0]["event_id"] == event_id
        assert events[0]["event_type"] == "backup.created"
        assert events[0]["severity"] == "info"
        assert events[0]["details"] == {"size": 10}
        assert "os_user" in events[0]["user_context"]

    def test_secret_detail_keys_masked(self, tmp_path):
        audit = AuditLogger(log_dir=tmp_path / "logs")

        audit.log_vault_event(
            EventType.VAULT_SECRET_STORED, "stored", {"key": "openaiApiKey", "value": "sk-123"}
        )

        text = audit.log_file.read_text(encoding="utf-8")
        assert "sk-123" not in text
        assert _events(audit.log_file)[0]["details"] == {"key": "openaiApiKey", "value": REDACTED}

    def test_key_event_prefix_and_severity(self, tmp_path):
        audit = AuditLogger(log_dir=tmp_path / "logs")

        audit.log_key_event(EventType.KEY_UNRECOVERABLE, "boom", severity=EventSeverity.CRITICAL)

        event = _events(audit.log_file)[0]
        assert event["message"] == "Master key: boom"
        assert event["severity"] == "critical"

    def test_configure_replaces_singleton(self, tmp_path):
        configured = configure_audit_logger(tmp_path / "elsewhere")

        assert get_audit_logger() is configured
        assert configured.log_file.parent == tmp_path / "elsewhere"


class TestScrubDetails:

    def test_empty(self):
        assert scrub_details(None) == {}

    def test_case_insensitive(self):
        assert scrub_details({"Password": "x", "name": "y"}) == {"Password": REDACTED, "name": "y"}
