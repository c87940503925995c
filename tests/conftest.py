"""
HRSM Licensing - Pytest Configuration
Fixtures partagées pour tous les tests.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from hrsm_licensing.audit.audit_sink import AuditSink
from hrsm_licensing.core.crypto_provider import CryptoProvider
from hrsm_licensing.licensing.interfaces import LicenseFeatures, LicenseRecord, LicenseStatus
from hrsm_licensing.licensing.license_store import LicenseStore
from hrsm_licensing.licensing.signature_service import SignatureService
from hrsm_licensing.network.interfaces import RetryConfig
from hrsm_licensing.network.retry_handler import RetryHandler
from hrsm_licensing.registry.module_registry import load_default_registry


LICENSE_SECRET = "test-license-secret-0123456789"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Horloge UTC déterministe, avançable à la main."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def license_secret() -> str:
    return LICENSE_SECRET


@pytest.fixture
def crypto_provider() -> CryptoProvider:
    return CryptoProvider()


@pytest.fixture
def signature_service(crypto_provider) -> SignatureService:
    return SignatureService(crypto_provider)


@pytest.fixture
def audit_sink(crypto_provider, clock) -> AuditSink:
    return AuditSink(crypto_provider, clock=clock)


@pytest.fixture
def registry():
    """Registre construit depuis le catalogue par défaut."""
    return load_default_registry()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Attente de retry instantanée."""
    return AsyncMock()


@pytest.fixture
def store(signature_service, audit_sink, clock, no_sleep) -> LicenseStore:
    """Store sans validateur distant (validation locale seule)."""
    return LicenseStore(
        signature_service,
        LICENSE_SECRET,
        audit_sink,
        retry_handler=RetryHandler(sleep=no_sleep),
        clock=clock,
    )


@pytest.fixture
def remote_validator() -> AsyncMock:
    """Validateur distant mocké (confirme par défaut)."""
    from hrsm_licensing.licensing.interfaces import RemoteValidationResult

    validator = AsyncMock()
    validator.validate.return_value = RemoteValidationResult(valid=True)
    return validator


@pytest.fixture
def remote_store(signature_service, audit_sink, clock, no_sleep, remote_validator) -> LicenseStore:
    """Store avec validateur distant et 3 tentatives sans attente."""
    return LicenseStore(
        signature_service,
        LICENSE_SECRET,
        audit_sink,
        remote_validator=remote_validator,
        retry_handler=RetryHandler(sleep=no_sleep),
        retry_config=RetryConfig(max_attempts=3, initial_delay=0.01, max_delay=0.01),
        clock=clock,
    )


@pytest.fixture
def make_license():
    """Fabrique de LicenseRecord non scellés (contrôles de droits et conformité)."""

    def _make(
        tenant_id: str = "acme",
        modules=("attendance", "leave", "payroll"),
        expires_in_days: float = 200,
        status: LicenseStatus = LicenseStatus.ACTIVE,
        max_users=100,
        max_storage=None,
        max_api_calls_per_month=None,
        max_activations: int = 1,
        now: datetime = NOW,
        **overrides,
    ) -> LicenseRecord:
        return LicenseRecord(
            tenant_id=tenant_id,
            license_number="HRMS-AB12-CD34-EF56",
            status=status,
            issued_at=now - timedelta(days=30),
            expires_at=now + timedelta(days=expires_in_days),
            features=LicenseFeatures(
                modules=tuple(modules),
                max_users=max_users,
                max_storage=max_storage,
                max_api_calls_per_month=max_api_calls_per_month,
            ),
            max_activations=max_activations,
            **overrides,
        )

    return _make
