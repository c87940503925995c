"""
Tests unitaires ModuleGate

Propriétés testées:
    - Tout refus est audité avant d'être levé
    - Usage d'un module non licencié : événement critique
    - Désactivation refusée pour un module core ou requis
"""
import pytest

from hrsm_licensing.audit import AuditEventType, AuditQuery, AuditSeverity
from hrsm_licensing.licensing import (
    AvailabilityReason,
    EntitlementChecker,
    ModuleAccessDeniedError,
    ModuleDeactivationError,
    ModuleGate,
    TenantConfig,
    UnauthorizedModuleUsageError,
)
from hrsm_licensing.registry import MissingDependencyError, UnknownModuleError


@pytest.fixture
def gate(registry, audit_sink):
    return ModuleGate(EntitlementChecker(registry), audit_sink)


def events(audit_sink, event_type):
    return audit_sink.query(AuditQuery(event_type=event_type))


class TestAccess:
    def test_granted_access_is_audited(self, gate, audit_sink, make_license, clock):
        tenant = TenantConfig.of("acme", enabled=["payroll"])

        result = gate.require_access(tenant, make_license(), "payroll", clock())

        assert result.available is True
        success = events(audit_sink, AuditEventType.VALIDATION_SUCCESS)[0]
        assert success.module_key == "payroll"

    def test_denied_access_raises_after_audit(self, gate, audit_sink, make_license, clock):
        tenant = TenantConfig.of("acme", enabled=["clinic"])

        with pytest.raises(ModuleAccessDeniedError) as exc_info:
            gate.require_access(tenant, make_license(), "clinic", clock())

        assert exc_info.value.reason == AvailabilityReason.FEATURE_NOT_LICENSED
        failure = events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0]
        assert failure.details["reason"] == "feature_not_licensed"
        assert failure.severity == AuditSeverity.WARNING

    def test_unlicensed_usage_is_critical(self, gate, audit_sink, make_license, clock):
        tenant = TenantConfig.of("acme", enabled=["clinic"], used=["clinic"])

        result = gate.check_access(tenant, make_license(), "clinic", clock())

        assert result.available is False
        assert events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0].severity == AuditSeverity.CRITICAL

    def test_visibility(self, gate, make_license, clock):
        tenant = TenantConfig.of("acme", enabled=["payroll", "attendance", "clinic"])

        visible = gate.visibility(tenant, make_license(), clock())

        assert visible["hr-core"] is True
        assert visible["payroll"] is True
        assert visible["clinic"] is False
        assert visible["documents"] is False
        assert len(visible) == 11


class TestActivate:
    """Activation avec contrôle de dépendances."""

    def test_activation_returns_new_config(self, gate, audit_sink, make_license, clock):
        tenant = TenantConfig.of("acme", enabled=["attendance"])

        updated = gate.activate_module(tenant, make_license(), "payroll", clock())

        assert updated.enabled_modules == frozenset({"attendance", "payroll"})
        assert tenant.enabled_modules == frozenset({"attendance"})
        activated = events(audit_sink, AuditEventType.MODULE_ACTIVATED)[0]
        assert activated.details["requiredDependencies"] == ["hr-core", "attendance"]

    def test_activation_is_idempotent(self, gate, audit_sink, make_license, clock):
        tenant = TenantConfig.of("acme", enabled=["attendance"])
        assert gate.activate_module(tenant, make_license(), "attendance", clock()) is tenant
        assert len(audit_sink) == 0

    def test_missing_dependency_audited(self, gate, audit_sink, make_license, clock):
        with pytest.raises(MissingDependencyError):
            gate.activate_module(TenantConfig.of("acme"), make_license(), "payroll", clock())

        violation = events(audit_sink, AuditEventType.DEPENDENCY_VIOLATION)[0]
        assert violation.details["missingDependencies"] == ["attendance"]

    def test_unlicensed_activation_audited(self, gate, audit_sink, make_license, clock):
        with pytest.raises(UnauthorizedModuleUsageError):
            gate.activate_module(TenantConfig.of("acme"), make_license(), "clinic", clock())
        assert events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0].severity == AuditSeverity.CRITICAL

    def test_unknown_module_audited(self, gate, audit_sink, make_license, clock):
        with pytest.raises(UnknownModuleError):
            gate.activate_module(TenantConfig.of("acme"), make_license(), "crm", clock())
        assert events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0].details["reason"] == "module_not_found"


class TestDeactivate:
    def test_core_module_cannot_be_deactivated(self, gate, audit_sink):
        with pytest.raises(ModuleDeactivationError) as exc_info:
            gate.deactivate_module(TenantConfig.of("acme", enabled=["hr-core"]), "hr-core")
        assert exc_info.value.reason == "core_module"
        assert len(events(audit_sink, AuditEventType.VALIDATION_FAILURE)) == 1

    def test_required_module_blocked(self, gate, audit_sink):
        tenant = TenantConfig.of("acme", enabled=["attendance", "payroll"])

        with pytest.raises(ModuleDeactivationError) as exc_info:
            gate.deactivate_module(tenant, "attendance")

        assert exc_info.value.reason == "required_by_enabled_modules"
        assert exc_info.value.blocking_dependents == ["payroll"]
        violation = events(audit_sink, AuditEventType.DEPENDENCY_VIOLATION)[0]
        assert violation.details["blockingDependents"] == ["payroll"]

    def test_deactivation(self, gate, audit_sink):
        tenant = TenantConfig.of("acme", enabled=["attendance", "payroll"])

        updated = gate.deactivate_module(tenant, "payroll")

        assert updated.enabled_modules == frozenset({"attendance"})
        assert len(events(audit_sink, AuditEventType.MODULE_DEACTIVATED)) == 1

    def test_deactivating_disabled_module_is_noop(self, gate):
        tenant = TenantConfig.of("acme", enabled=["attendance"])
        assert gate.deactivate_module(tenant, "payroll") is tenant

    def test_unknown_module(self, gate):
        with pytest.raises(UnknownModuleError):
            gate.deactivate_module(TenantConfig.of("acme"), "crm")
