"""
Tests for structured logging, metrics labels and Sentry filtering.
"""
import json
import logging
from datetime import datetime, timezone

from prometheus_client import REGISTRY

from app.core.idempotency import DuplicateOperation, StoreUnavailable
from app.obs.logging import PIIRedactor, StructuredFormatter
from app.obs.metrics import MetricsCollector, metrics
from app.obs.sentry import before_send_event, redact_pii


def _record(message, **extra):
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Test JSON log lines."""

    def test_idempotency_fields_are_emitted(self):
        formatter = StructuredFormatter(redact_pii=True)
        line = json.loads(formatter.format(_record(
            "Duplicate operation rejected",
            owner_id="u1",
            operation="create-post",
            dedup_key="u1:create-post:abc",
            outcome="duplicate",
        )))

        assert line["level"] == "INFO"
        assert line["message"] == "Duplicate operation rejected"
        assert line["operation"] == "create-post"
        assert line["dedup_key"] == "u1:create-post:abc"
        assert line["outcome"] == "duplicate"
        assert "first_seen_at" not in line

    def test_pii_is_redacted(self):
        formatter = StructuredFormatter(redact_pii=True)
        line = json.loads(formatter.format(_record("Contact jane@example.com or 555-123-4567")))
        assert "jane@example.com" not in line["message"]
        assert "[REDACTED_EMAIL]" in line["message"]
        assert "[REDACTED_PHONE]" in line["message"]

    def test_redaction_can_be_disabled(self):
        assert PIIRedactor(enabled=False).redact("jane@example.com") == "jane@example.com"


class TestMetricsCollector:
    """Test metric label handling."""

    def test_operation_routes_are_collapsed(self):
        assert metrics._normalize_route("/api/v1/operations/create-post") == "/api/v1/operations/{operation_name}"
        assert metrics._normalize_route("/health") == "/health"

    def test_unknown_operations_share_one_series(self):
        collector = MetricsCollector(known_operations=["create-post"])
        before = REGISTRY.get_sample_value("idempotency_claims_total", {"operation": "other"}) or 0

        collector.record_claim("create-post")
        for i in range(5):
            collector.record_claim(f"client-chosen-{i}")

        assert REGISTRY.get_sample_value("idempotency_claims_total", {"operation": "other"}) == before + 5
        assert REGISTRY.get_sample_value("idempotency_claims_total", {"operation": "client-chosen-0"}) is None
        assert REGISTRY.get_sample_value("idempotency_claims_total", {"operation": "create-post"}) >= 1

    def test_default_operations_from_settings(self):
        assert metrics._operation_label("create-post") == "create-post"
        assert metrics._operation_label("start-checkout") == "start-checkout"
        assert metrics._operation_label("anything-else") == "other"


class TestSentryFilter:
    """Test events sent to Sentry."""

    def test_duplicates_are_dropped(self):
        exc = DuplicateOperation("k", "op", datetime.now(timezone.utc))
        assert before_send_event({"message": "x"}, {"exc_info": (type(exc), exc, None)}) is None

    def test_store_errors_are_kept_and_redacted(self):
        exc = StoreUnavailable("down")
        event = {"exception": {"values": [{"value": "failed for jane@example.com"}]}}

        result = before_send_event(event, {"exc_info": (type(exc), exc, None)})

        assert result["exception"]["values"][0]["value"] == "failed for [EMAIL_REDACTED]"

    def test_redact_api_keys(self):
        assert redact_pii("key sk_live123") == "key sk_[REDACTED]"
