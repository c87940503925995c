"""
Tests unitaires AuditSink

Propriétés testées:
    - Append-only, événements hachés SHA-384 et vérifiables
    - Requêtes filtrées triées par timestamp décroissant, paginées
    - Purge de rétention qui conserve les événements critiques
    - Écrivains concurrents sans perte
"""
import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from hrsm_licensing.audit import (
    AuditEventType,
    AuditQuery,
    AuditSeverity,
    AuditSink,
    AuditSinkError,
    IAuditSink,
)


class TestRecord:
    def test_implements_interface(self, audit_sink):
        assert isinstance(audit_sink, IAuditSink)

    def test_record_hashes_event(self, audit_sink):
        event = audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="payroll")

        assert len(event.hash_value) == 96
        assert audit_sink.verify_event(event) is True
        assert len(audit_sink) == 1

    def test_modified_event_fails_verification(self, audit_sink):
        event = audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="payroll")
        forged = replace(event, module_key="clinic")
        assert audit_sink.verify_event(forged) is False

    def test_default_severity_by_type(self, audit_sink):
        assert audit_sink.record("acme", AuditEventType.LIMIT_EXCEEDED).severity == AuditSeverity.CRITICAL
        assert audit_sink.record("acme", AuditEventType.VALIDATION_FAILURE).severity == AuditSeverity.WARNING
        assert audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED).severity == AuditSeverity.INFO

    def test_details_are_json_safe_and_frozen(self, audit_sink, clock):
        event = audit_sink.record(
            "acme",
            AuditEventType.LICENSE_CREATED,
            details={"expiresAt": clock(), "modules": {"payroll", "attendance"}, "severity": AuditSeverity.ERROR},
        )
        assert event.details["expiresAt"] == clock().isoformat()
        assert event.details["modules"] == ["attendance", "payroll"]
        assert event.details["severity"] == "error"
        with pytest.raises(TypeError):
            event.details["new"] = 1

    def test_empty_tenant_rejected(self, audit_sink):
        with pytest.raises(AuditSinkError):
            audit_sink.record("", AuditEventType.MODULE_ACTIVATED)

    def test_invalid_type_rejected(self, audit_sink):
        with pytest.raises(AuditSinkError):
            audit_sink.record("acme", "MODULE_ACTIVATED")

    def test_typed_helpers(self, audit_sink, clock):
        audit_sink.log_validation_failure("acme", "license_expired", module_key="payroll")
        audit_sink.log_limit_warning("acme", "attendance", "devices", 2, 2, 100.0)
        audit_sink.log_dependency_violation("acme", "payroll", ["attendance"])
        audit_sink.log_license_expired("acme", clock())

        failure = audit_sink.query(AuditQuery(event_type=AuditEventType.VALIDATION_FAILURE))[0]
        warning = audit_sink.query(AuditQuery(event_type=AuditEventType.LIMIT_WARNING))[0]
        violation = audit_sink.query(AuditQuery(event_type=AuditEventType.DEPENDENCY_VIOLATION))[0]
        assert failure.details["reason"] == "license_expired"
        assert warning.details == {"limitType": "devices", "currentUsage": 2, "limit": 2, "percentage": 100.0}
        assert violation.details["missingDependencies"] == ["attendance"]
        assert violation.severity == AuditSeverity.ERROR

    def test_subscription_event_type_validated(self, audit_sink):
        event = audit_sink.log_subscription_event("acme", AuditEventType.TRIAL_STARTED, days=14)
        assert event.details["days"] == 14
        with pytest.raises(AuditSinkError):
            audit_sink.log_subscription_event("acme", AuditEventType.MODULE_ACTIVATED)

    def test_concurrent_writers(self, crypto_provider):
        sink = AuditSink(crypto_provider)

        def write(worker: int) -> None:
            for i in range(50):
                sink.record(f"tenant-{worker}", AuditEventType.USAGE_TRACKED, details={"i": i})

        threads = [threading.Thread(target=write, args=(w,)) for w in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(sink) == 400
        assert sink.count(AuditQuery(tenant_id="tenant-3")) == 50


class TestQuery:
    """Filtres et pagination."""

    def test_sorted_descending(self, audit_sink, clock):
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="a", timestamp=clock() - timedelta(hours=2))
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="b", timestamp=clock())
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="c", timestamp=clock() - timedelta(hours=1))

        assert [e.module_key for e in audit_sink.query()] == ["b", "c", "a"]

    def test_filters(self, audit_sink, clock):
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="payroll")
        audit_sink.record("acme", AuditEventType.LIMIT_EXCEEDED, module_key="payroll")
        audit_sink.record("other", AuditEventType.MODULE_ACTIVATED, module_key="payroll")

        assert len(audit_sink.query(AuditQuery(tenant_id="acme"))) == 2
        assert len(audit_sink.query(AuditQuery(severity=AuditSeverity.CRITICAL))) == 1
        assert len(audit_sink.query(AuditQuery(tenant_id="acme", event_type=AuditEventType.MODULE_ACTIVATED))) == 1
        assert audit_sink.query(AuditQuery(start_date=clock() + timedelta(seconds=1))) == []

    def test_pagination(self, audit_sink, clock):
        for i in range(5):
            audit_sink.record("acme", AuditEventType.USAGE_TRACKED, timestamp=clock() + timedelta(minutes=i), details={"i": i})

        page = audit_sink.query(AuditQuery(limit=2, skip=1))

        assert [e.details["i"] for e in page] == [3, 2]
        assert audit_sink.count() == 5

    def test_negative_limit_rejected(self, audit_sink):
        with pytest.raises(AuditSinkError):
            audit_sink.query(AuditQuery(limit=-1))

    def test_statistics(self, audit_sink):
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="payroll")
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="leave")
        audit_sink.record("acme", AuditEventType.LIMIT_EXCEEDED, module_key="payroll")

        stats = audit_sink.statistics("acme")

        assert stats["total"] == 3
        assert stats["by_event_type"]["MODULE_ACTIVATED"] == 2
        assert stats["by_severity"]["critical"] == 1
        assert stats["by_module"]["payroll"] == 2

    def test_recent_violations(self, audit_sink):
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED)
        audit_sink.record("acme", AuditEventType.DEPENDENCY_VIOLATION)
        audit_sink.record("acme", AuditEventType.LIMIT_EXCEEDED)

        violations = audit_sink.recent_violations("acme")

        assert {e.event_type for e in violations} == {
            AuditEventType.DEPENDENCY_VIOLATION,
            AuditEventType.LIMIT_EXCEEDED,
        }

    def test_module_audit_trail(self, audit_sink, clock):
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="payroll", timestamp=clock() - timedelta(days=40))
        audit_sink.record("acme", AuditEventType.MODULE_DEACTIVATED, module_key="payroll")
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, module_key="leave")

        trail = audit_sink.module_audit_trail("acme", "payroll", days=30)

        assert [e.event_type for e in trail] == [AuditEventType.MODULE_DEACTIVATED]


class TestPurge:
    def test_purge_keeps_critical_events(self, audit_sink, clock):
        old = clock() - timedelta(days=400)
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, timestamp=old)
        audit_sink.record("acme", AuditEventType.LIMIT_EXCEEDED, timestamp=old)
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED)

        result = audit_sink.purge()

        assert result.deleted_count == 1
        assert result.retained_critical == 1
        assert result.cutoff == clock() - timedelta(days=365)
        assert len(audit_sink) == 2

    def test_purge_with_custom_horizon(self, audit_sink, clock):
        audit_sink.record("acme", AuditEventType.MODULE_ACTIVATED, timestamp=clock() - timedelta(days=10))
        assert audit_sink.purge(retention_days=7).deleted_count == 1

    def test_invalid_retention_rejected(self, crypto_provider):
        with pytest.raises(AuditSinkError):
            AuditSink(crypto_provider, retention_days=0)
