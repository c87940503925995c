"""
Tests unitaires UsageLimitChecker

Propriétés testées:
    - Usage projeté = courant + demandé, dépassement si projeté > limite
    - Avertissement à 80 %, dédupliqué 24 h par (tenant, module, limite)
    - ADVISORY autorise et audite ; ENFORCE audite puis lève
"""
import pytest

from hrsm_licensing.audit import AuditEventType, AuditQuery
from hrsm_licensing.licensing import QuotaExceededError, QuotaPolicy, UsageLimitChecker
from hrsm_licensing.registry import UnknownModuleError


@pytest.fixture
def checker(registry, audit_sink, clock):
    return UsageLimitChecker(registry, audit_sink, clock=clock)


def count(audit_sink, event_type):
    return audit_sink.count(AuditQuery(event_type=event_type))


class TestResolveLimit:
    def test_from_registry_tier(self, checker):
        assert checker.resolve_limit("attendance", "devices") == 2
        assert checker.resolve_limit("attendance", "devices", tier="business") == 10
        assert checker.resolve_limit("attendance", "devices", tier="enterprise") is None

    def test_explicit_limits_take_precedence(self, checker):
        assert checker.resolve_limit("attendance", "devices", limits={"devices": 5}) == 5
        assert checker.resolve_limit("attendance", "devices", limits={}) is None

    def test_zero_means_unlimited(self, checker):
        assert checker.resolve_limit("attendance", "devices", limits={"devices": 0}) is None

    def test_unknown_module(self, checker):
        with pytest.raises(UnknownModuleError):
            checker.resolve_limit("crm", "devices")


class TestCheckLimit:
    """Contrôle avant opération."""

    def test_within_limits(self, checker, audit_sink):
        result = checker.check_limit("acme", "attendance", "employees", 10, requested_amount=5)

        assert result.allowed is True
        assert result.projected_usage == 15
        assert result.percentage == 30.0
        assert result.warning is False
        assert len(audit_sink) == 0

    def test_reaching_limit_is_warning_not_exceeded(self, checker, audit_sink):
        result = checker.check_limit("acme", "attendance", "devices", 1, requested_amount=1)

        assert result.allowed is True
        assert result.warning is True
        assert result.exceeded is False
        assert result.percentage == 100.0
        assert count(audit_sink, AuditEventType.LIMIT_WARNING) == 1

    def test_exceeded_advisory(self, checker, audit_sink):
        result = checker.check_limit("acme", "attendance", "devices", 2, requested_amount=1)

        assert result.allowed is False
        assert result.exceeded is True
        assert result.percentage == 150.0
        event = audit_sink.query(AuditQuery(event_type=AuditEventType.LIMIT_EXCEEDED))[0]
        assert event.module_key == "attendance"
        assert event.details == {"limitType": "devices", "currentUsage": 3, "limit": 2, "percentage": 150.0}

    def test_exceeded_enforce_raises_after_audit(self, registry, audit_sink, clock):
        checker = UsageLimitChecker(registry, audit_sink, policy=QuotaPolicy.ENFORCE, clock=clock)

        with pytest.raises(QuotaExceededError) as exc_info:
            checker.check_limit("acme", "attendance", "employees", 50, requested_amount=1)

        assert exc_info.value.projected_usage == 51
        assert exc_info.value.limit == 50
        assert count(audit_sink, AuditEventType.LIMIT_EXCEEDED) == 1

    def test_unlimited(self, checker):
        result = checker.check_limit("acme", "attendance", "devices", 10 ** 6, tier="enterprise")
        assert result.allowed is True
        assert result.unlimited is True
        assert result.percentage is None

    def test_core_module_always_allowed(self, checker):
        result = checker.check_limit("acme", "hr-core", "employees", 10 ** 6)
        assert result.allowed is True
        assert result.unlimited is True

    def test_percentage_rounded(self, checker):
        result = checker.check_limit("acme", "attendance", "devices", 1, limits={"devices": 3})
        assert result.percentage == 33.33

    def test_negative_values_rejected(self, checker):
        with pytest.raises(ValueError):
            checker.check_limit("acme", "attendance", "devices", -1)
        with pytest.raises(ValueError):
            checker.check_limit("acme", "attendance", "devices", 1, requested_amount=-1)


class TestWarningDeduplication:
    def test_warning_audited_once_per_day(self, checker, audit_sink, clock):
        checker.check_limit("acme", "attendance", "devices", 2)
        clock.advance(hours=23)
        second = checker.check_limit("acme", "attendance", "devices", 2)

        assert second.warning is True
        assert count(audit_sink, AuditEventType.LIMIT_WARNING) == 1

        clock.advance(hours=1)
        checker.check_limit("acme", "attendance", "devices", 2)
        assert count(audit_sink, AuditEventType.LIMIT_WARNING) == 2

    def test_dedup_key_includes_tenant_and_limit(self, checker, audit_sink):
        checker.check_limit("acme", "attendance", "devices", 2)
        checker.check_limit("globex", "attendance", "devices", 2)
        checker.check_limit("acme", "attendance", "employees", 45)
        assert count(audit_sink, AuditEventType.LIMIT_WARNING) == 3
