"""
Tests unitaires StructuredLogger et SensitiveMasker

Propriétés testées:
    - Entrées JSON avec timestamp, level, correlation_id, tenant_id, message
    - Secrets de licence jamais en clair
"""
import json

import pytest

from hrsm_licensing.logging import (
    LogConfig,
    LogLevel,
    MissingRequiredFieldError,
    SensitiveMasker,
    StructuredLogger,
)


class TestStructuredLogger:
    def test_entry_has_required_fields(self):
        logger = StructuredLogger("hrsm.test")
        entry = logger.info("License validated", tenant_id="acme", module_key="payroll")

        data = entry.to_dict()
        assert data["level"] == "INFO"
        assert data["tenant_id"] == "acme"
        assert data["message"] == "License validated"
        assert data["correlation_id"]
        assert data["timestamp"].endswith("Z")
        assert data["extra"] == {"module_key": "payroll"}

    def test_platform_tenant_by_default(self):
        entry = StructuredLogger("hrsm.test").info("Module registry loaded")
        assert entry.tenant_id == "platform"

    def test_missing_tenant_rejected_without_default(self):
        logger = StructuredLogger("hrsm.test", config=LogConfig(default_tenant_id=None))
        with pytest.raises(MissingRequiredFieldError):
            logger.info("No tenant")

    def test_level_filtering(self):
        logger = StructuredLogger("hrsm.test")
        assert logger.debug("hidden") is None
        assert logger.get_entries() == []

    def test_entries_by_level(self):
        logger = StructuredLogger("hrsm.test")
        logger.info("a")
        logger.warn("b")
        logger.warn("c")
        assert [e.message for e in logger.get_entries_by_level(LogLevel.WARN)] == ["b", "c"]

    def test_output_handler_receives_json(self):
        lines = []
        logger = StructuredLogger("hrsm.test", output_handler=lines.append)
        logger.error("Remote validation failed", tenant_id="acme", attempts=3)

        payload = json.loads(lines[0])
        assert payload["level"] == "ERROR"
        assert payload["extra"]["attempts"] == 3
        assert payload["logger"] == "hrsm.test"

    def test_secrets_masked_in_extra(self):
        logger = StructuredLogger("hrsm.test")
        entry = logger.info("Issued", license_secret="s3cr3t", signature="abcd", license_number="HRMS-AB12-CD34-EF56")
        assert entry.extra["license_secret"] == "***MASKED***"
        assert entry.extra["signature"] == "***MASKED***"
        assert entry.extra["license_number"] == "HRMS-AB12-CD34-EF56"

    def test_child_shares_output(self):
        lines = []
        parent = StructuredLogger("hrsm", output_handler=lines.append)
        child = parent.child("license_store")
        child.info("hello")
        assert child.name == "hrsm.license_store"
        assert len(lines) == 1

    def test_with_context_fixes_correlation_and_tenant(self):
        logger = StructuredLogger("hrsm.test")
        ctx = logger.with_context(correlation_id="req-1", tenant_id="acme")
        first = ctx.info("one")
        second = ctx.warn("two")
        assert first.correlation_id == second.correlation_id == "req-1"
        assert first.tenant_id == "acme"

    def test_max_entries_bounded(self):
        logger = StructuredLogger("hrsm.test", config=LogConfig(max_entries=2))
        for i in range(5):
            logger.info(f"m{i}")
        assert [e.message for e in logger.get_entries()] == ["m3", "m4"]

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            StructuredLogger("  ")


class TestSensitiveMasker:
    """Masquage récursif."""

    def test_nested_structures_masked(self):
        masker = SensitiveMasker()
        data = {
            "remote": {"response_token_secret": "jwt-secret", "url": "https://x"},
            "keys": [{"encryption_key": "fernet"}, "plain"],
        }
        result = masker.mask(data)
        assert result["remote"]["response_token_secret"] == "***MASKED***"
        assert result["remote"]["url"] == "https://x"
        assert result["keys"][0]["encryption_key"] == "***MASKED***"
        assert result["keys"][1] == "plain"

    def test_case_insensitive(self):
        assert SensitiveMasker().is_sensitive_key("X-Authorization") is True

    def test_additional_pattern(self):
        masker = SensitiveMasker(additional_patterns=["machineId"])
        assert masker.mask({"machineId": "srv-01"}) == {"machineId": "***MASKED***"}

    def test_empty_pattern_rejected(self):
        with pytest.raises(ValueError):
            SensitiveMasker().add_pattern(" ")

    def test_original_not_modified(self):
        data = {"password": "x"}
        SensitiveMasker().mask(data)
        assert data == {"password": "x"}
