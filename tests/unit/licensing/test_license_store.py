"""
Tests unitaires LicenseStore

Propriétés testées:
    - Chaque écriture re-signe, re-chiffre et incrémente la version
    - Une copie altérée est marquée et n'est plus jamais acceptée
    - Grâce hors ligne : échéance fixe, refus strictement après
    - Retries distants bornés ; une seule tentative en EXPIRED_OFFLINE
    - État hors ligne reconstruit depuis l'échéance persistée
    - Instantané vérifié : None si scellé invalide ou grâce écoulée
"""
from dataclasses import replace
from datetime import timedelta

import pytest

from hrsm_licensing.audit import AuditEventType, AuditQuery, AuditSeverity
from hrsm_licensing.licensing import (
    ActivationLimitExceededError,
    ConcurrentUpdateError,
    ExpiredLicenseError,
    InMemoryLicenseRepository,
    LicenseFeatures,
    LicenseNotFoundError,
    LicenseRevokedError,
    LicenseStatus,
    LicenseStore,
    LicenseStoreError,
    OfflineGraceExpiredError,
    OfflineState,
    RemoteValidationRejectedError,
    RemoteValidationResult,
    TamperDetectedError,
    ValidationStructureError,
)


FEATURES = LicenseFeatures(modules=("attendance", "payroll"), max_users=100)


def events(audit_sink, event_type):
    return audit_sink.query(AuditQuery(event_type=event_type))


def failure_reasons(audit_sink):
    return [e.details["reason"] for e in events(audit_sink, AuditEventType.VALIDATION_FAILURE)]


async def create(store, clock, tenant_id="acme", **kwargs):
    return await store.create(tenant_id, FEATURES, clock() + timedelta(days=365), **kwargs)


def tamper(store, tenant_id="acme"):
    current = store.repository.get(tenant_id)
    payload = bytearray(current.encrypted_payload)
    payload[40] = payload[40] ^ 0x01
    store.repository.save(replace(current, encrypted_payload=bytes(payload)), expected_version=current.version)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_seals_record(self, store, signature_service, license_secret, audit_sink, clock):
        record = await create(store, clock, license_number="HRMS-AB12-CD34-EF56")

        assert record.version == 1
        assert record.license_number == "HRMS-AB12-CD34-EF56"
        assert record.status == LicenseStatus.ACTIVE
        assert record.issued_at == clock()
        assert signature_service.verify_sealed(record, license_secret)
        assert store.get_snapshot("acme") is record
        assert len(events(audit_sink, AuditEventType.LICENSE_CREATED)) == 1

    @pytest.mark.asyncio
    async def test_create_twice_rejected_and_audited(self, store, audit_sink, clock):
        await create(store, clock)
        with pytest.raises(LicenseStoreError):
            await create(store, clock)
        assert failure_reasons(audit_sink) == ["license_already_exists"]

    @pytest.mark.asyncio
    async def test_invalid_period_rejected_and_audited(self, store, audit_sink, clock):
        with pytest.raises(ValidationStructureError):
            await store.create("acme", FEATURES, clock() - timedelta(days=1))
        assert "invalid_license_record" in failure_reasons(audit_sink)

    def test_secret_required(self, signature_service, audit_sink):
        with pytest.raises(LicenseStoreError):
            LicenseStore(signature_service, "", audit_sink)

    @pytest.mark.asyncio
    async def test_injected_empty_repository_is_used(self, signature_service, license_secret, audit_sink, clock):
        repository = InMemoryLicenseRepository()
        store = LicenseStore(signature_service, license_secret, audit_sink, repository=repository, clock=clock)

        await create(store, clock)

        assert store.repository is repository
        assert repository.get("acme") is not None
        assert len(repository) == 1


class TestUpdate:
    """Chemin de mise à jour unique."""

    @pytest.mark.asyncio
    async def test_update_resigns_and_increments_version(self, store, signature_service, license_secret, clock):
        created = await create(store, clock)

        updated = await store.update("acme", features=LicenseFeatures(modules=("payroll", "clinic")))

        assert updated.version == created.version + 1
        assert updated.signature != created.signature
        assert updated.encrypted_payload != created.encrypted_payload
        assert signature_service.verify_sealed(updated, license_secret)["features"]["modules"] == ["payroll", "clinic"]

    @pytest.mark.asyncio
    async def test_expected_version_mismatch(self, store, audit_sink, clock):
        await create(store, clock)
        await store.update("acme", max_activations=3)

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await store.update("acme", expected_version=1, max_activations=5)
        assert exc_info.value.actual_version == 2
        assert "concurrent_update" in failure_reasons(audit_sink)

    @pytest.mark.asyncio
    async def test_non_updatable_field_rejected(self, store, clock):
        await create(store, clock)
        with pytest.raises(LicenseStoreError):
            await store.update("acme", tenant_id="other")

    @pytest.mark.asyncio
    async def test_invalid_value_rejected(self, store, clock):
        await create(store, clock)
        with pytest.raises(ValidationStructureError):
            await store.update("acme", max_activations=0)
        assert store.get_snapshot("acme").version == 1

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, store):
        with pytest.raises(LicenseNotFoundError):
            await store.update("ghost", max_activations=2)
        with pytest.raises(LicenseNotFoundError):
            store.get_snapshot("ghost")


class TestLocalValidation:
    @pytest.mark.asyncio
    async def test_valid_license(self, store, audit_sink, clock):
        await create(store, clock)

        validation = await store.validate("acme")

        assert validation.state == OfflineState.ONLINE_VALID
        assert validation.remote_confirmed is False
        assert validation.offline is False
        assert validation.days_until_expiry == 365
        success = events(audit_sink, AuditEventType.VALIDATION_SUCCESS)[0]
        assert success.details["mode"] == "online_valid"

    @pytest.mark.asyncio
    async def test_missing_license_audited(self, store, audit_sink):
        with pytest.raises(LicenseNotFoundError):
            await store.validate("ghost")
        failure = events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0]
        assert failure.details["reason"] == "license_not_found"
        assert failure.severity == AuditSeverity.ERROR

    @pytest.mark.asyncio
    async def test_revoked_license(self, store, audit_sink, clock):
        await create(store, clock)
        revoked = await store.revoke("acme", "non-payment")

        assert revoked.revocation_reason == "non-payment"
        with pytest.raises(LicenseRevokedError):
            await store.validate("acme")
        assert "license_revoked" in failure_reasons(audit_sink)

    @pytest.mark.asyncio
    async def test_expired_license(self, store, audit_sink, clock):
        await create(store, clock)
        clock.advance(days=365, seconds=1)

        with pytest.raises(ExpiredLicenseError):
            await store.validate("acme")
        assert len(events(audit_sink, AuditEventType.LICENSE_EXPIRED)) == 1

    @pytest.mark.asyncio
    async def test_valid_at_exact_expiry(self, store, clock):
        await create(store, clock)
        clock.advance(days=365)
        assert (await store.validate("acme")).days_until_expiry == 0


class TestTamperDetection:
    """Altération de la copie chiffrée."""

    @pytest.mark.asyncio
    async def test_tampered_copy_is_flagged(self, store, audit_sink, clock):
        await create(store, clock)
        tamper(store)

        with pytest.raises(TamperDetectedError):
            await store.validate("acme")

        assert store.get_snapshot("acme").tamper_detected is True
        failure = events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0]
        assert failure.details["reason"] == "tamper_detected"
        assert failure.severity == AuditSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_flagged_license_never_accepted_again(self, store, clock):
        await create(store, clock)
        tamper(store)
        with pytest.raises(TamperDetectedError):
            await store.validate("acme")

        with pytest.raises(TamperDetectedError):
            await store.validate("acme")
        with pytest.raises(TamperDetectedError):
            await store.update("acme", max_activations=2)


class TestActivations:
    @pytest.mark.asyncio
    async def test_machine_registered_on_validation(self, store, clock):
        await create(store, clock)

        validation = await store.validate("acme", machine_id="srv-01")

        assert validation.record.machine_ids == frozenset({"srv-01"})
        assert store.get_snapshot("acme").version == 2

    @pytest.mark.asyncio
    async def test_registration_is_idempotent(self, store, clock):
        await create(store, clock)
        await store.register_activation("acme", "srv-01")
        record = await store.register_activation("acme", "srv-01")
        assert len(record.activations) == 1

    @pytest.mark.asyncio
    async def test_activation_limit(self, store, audit_sink, clock):
        await create(store, clock, max_activations=1)
        await store.validate("acme", machine_id="srv-01")

        with pytest.raises(ActivationLimitExceededError):
            await store.validate("acme", machine_id="srv-02")
        assert "activation_limit_exceeded" in failure_reasons(audit_sink)


class TestOfflineGrace:
    """Grâce hors ligne sans validateur distant."""

    @pytest.mark.asyncio
    async def test_lose_connectivity_sets_deadline(self, store, audit_sink, clock):
        await create(store, clock)

        status = await store.lose_connectivity("acme")

        assert status.state == OfflineState.OFFLINE_GRACE
        assert status.deadline == clock() + timedelta(hours=72)
        assert store.get_snapshot("acme").offline.grace_deadline == status.deadline
        assert len(events(audit_sink, AuditEventType.OFFLINE_GRACE_ENTERED)) == 1

    @pytest.mark.asyncio
    async def test_validation_allowed_until_deadline(self, store, clock):
        await create(store, clock)
        status = await store.lose_connectivity("acme")
        clock.now = status.deadline

        validation = await store.validate("acme")

        assert validation.state == OfflineState.OFFLINE_GRACE
        assert validation.grace_deadline == status.deadline

    @pytest.mark.asyncio
    async def test_refused_after_deadline(self, store, audit_sink, clock):
        await create(store, clock)
        status = await store.lose_connectivity("acme")
        clock.now = status.deadline + timedelta(seconds=1)

        with pytest.raises(OfflineGraceExpiredError) as exc_info:
            await store.validate("acme")

        assert exc_info.value.deadline == status.deadline
        assert len(events(audit_sink, AuditEventType.OFFLINE_GRACE_EXPIRED)) == 1
        assert "offline_grace_expired" in failure_reasons(audit_sink)
        assert (await store.offline_status("acme")).state == OfflineState.EXPIRED_OFFLINE

    @pytest.mark.asyncio
    async def test_repeated_loss_does_not_extend_deadline(self, store, clock):
        await create(store, clock)
        first = await store.lose_connectivity("acme")
        clock.advance(hours=24)
        second = await store.lose_connectivity("acme")
        assert second.deadline == first.deadline

    @pytest.mark.asyncio
    async def test_offline_disabled(self, store, clock):
        await create(store, clock, offline_enabled=False)

        status = await store.lose_connectivity("acme")

        assert status.state == OfflineState.EXPIRED_OFFLINE
        with pytest.raises(OfflineGraceExpiredError):
            await store.validate("acme")

    @pytest.mark.asyncio
    async def test_custom_grace_hours(self, store, clock):
        await create(store, clock, grace_hours=4)
        status = await store.lose_connectivity("acme")
        assert status.deadline == clock() + timedelta(hours=4)

    @pytest.mark.asyncio
    async def test_reconnect_requires_remote(self, store, clock):
        await create(store, clock)
        with pytest.raises(LicenseStoreError):
            await store.reconnect("acme")


class TestRemoteValidation:
    """Confirmation distante, retries et grâce."""

    @pytest.mark.asyncio
    async def test_remote_confirmation(self, remote_store, remote_validator, clock):
        record = await create(remote_store, clock)

        validation = await remote_store.validate("acme", machine_id="srv-01")

        assert validation.remote_confirmed is True
        assert validation.state == OfflineState.ONLINE_VALID
        remote_validator.validate.assert_awaited_once_with(record.license_number, "srv-01")

    @pytest.mark.asyncio
    async def test_unreachable_remote_enters_grace(self, remote_store, remote_validator, no_sleep, clock):
        await create(remote_store, clock)
        remote_validator.validate.side_effect = ConnectionError("unreachable")

        validation = await remote_store.validate("acme")

        assert validation.state == OfflineState.OFFLINE_GRACE
        assert validation.remote_confirmed is False
        assert validation.grace_deadline == clock() + timedelta(hours=72)
        assert remote_validator.validate.await_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_remote_back_restores_online(self, remote_store, remote_validator, audit_sink, clock):
        await create(remote_store, clock)
        remote_validator.validate.side_effect = ConnectionError("unreachable")
        await remote_store.validate("acme")

        remote_validator.validate.side_effect = None
        clock.advance(hours=10)
        validation = await remote_store.validate("acme")

        assert validation.state == OfflineState.ONLINE_VALID
        assert validation.grace_deadline is None
        assert remote_store.get_snapshot("acme").offline.grace_deadline is None
        restored = events(audit_sink, AuditEventType.ONLINE_RESTORED)[0]
        assert restored.details["previousState"] == "offline_grace"

    @pytest.mark.asyncio
    async def test_expired_offline_makes_single_attempt(self, remote_store, remote_validator, clock):
        await create(remote_store, clock)
        remote_validator.validate.side_effect = ConnectionError("unreachable")
        await remote_store.validate("acme")
        clock.advance(hours=73)

        with pytest.raises(OfflineGraceExpiredError):
            await remote_store.validate("acme")

        assert remote_validator.validate.await_count == 4

    @pytest.mark.asyncio
    async def test_retries_stop_at_deadline(self, remote_store, remote_validator, no_sleep, clock):
        await create(remote_store, clock)
        status = await remote_store.lose_connectivity("acme")
        clock.now = status.deadline - timedelta(seconds=1)
        remote_validator.validate.side_effect = ConnectionError("unreachable")
        no_sleep.side_effect = lambda delay: clock.advance(hours=1)

        with pytest.raises(OfflineGraceExpiredError):
            await remote_store.validate("acme")

        assert remote_validator.validate.await_count == 2

    @pytest.mark.asyncio
    async def test_reconnect_from_expired_offline(self, remote_store, remote_validator, clock):
        await create(remote_store, clock, offline_enabled=False)
        assert (await remote_store.lose_connectivity("acme")).state == OfflineState.EXPIRED_OFFLINE

        status = await remote_store.reconnect("acme")

        assert status.state == OfflineState.ONLINE_VALID
        assert remote_validator.validate.await_count == 1
        assert (await remote_store.validate("acme")).remote_confirmed is True

    @pytest.mark.asyncio
    async def test_remote_rejection(self, remote_store, remote_validator, audit_sink, clock):
        await create(remote_store, clock)
        remote_validator.validate.return_value = RemoteValidationResult(valid=False, reason="revoked_remotely")

        with pytest.raises(RemoteValidationRejectedError):
            await remote_store.validate("acme")
        assert "remote_rejected" in failure_reasons(audit_sink)

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self, remote_store, remote_validator, audit_sink, clock):
        await create(remote_store, clock)
        remote_validator.validate.side_effect = ValueError("bad payload")

        with pytest.raises(ValueError):
            await remote_store.validate("acme")

        assert remote_validator.validate.await_count == 1
        assert "remote_error" in failure_reasons(audit_sink)


class TestRestart:
    """Un nouveau store sur le même repository reprend l'état hors ligne."""

    def restart(self, store, signature_service, license_secret, audit_sink, clock):
        return LicenseStore(signature_service, license_secret, audit_sink, repository=store.repository, clock=clock)

    @pytest.mark.asyncio
    async def test_grace_resumed_from_persisted_deadline(
        self, store, signature_service, license_secret, audit_sink, clock
    ):
        await create(store, clock)
        status = await store.lose_connectivity("acme")

        restarted = self.restart(store, signature_service, license_secret, audit_sink, clock)
        resumed = await restarted.offline_status("acme")

        assert resumed.state == OfflineState.OFFLINE_GRACE
        assert resumed.deadline == status.deadline
        assert (await restarted.validate("acme")).state == OfflineState.OFFLINE_GRACE

    @pytest.mark.asyncio
    async def test_expired_grace_still_refused_after_restart(
        self, store, signature_service, license_secret, audit_sink, clock
    ):
        await create(store, clock)
        status = await store.lose_connectivity("acme")
        clock.now = status.deadline + timedelta(seconds=1)
        with pytest.raises(OfflineGraceExpiredError):
            await store.validate("acme")

        restarted = self.restart(store, signature_service, license_secret, audit_sink, clock)

        with pytest.raises(OfflineGraceExpiredError) as exc_info:
            await restarted.validate("acme")
        assert exc_info.value.deadline == status.deadline
        assert (await restarted.offline_status("acme")).state == OfflineState.EXPIRED_OFFLINE

    @pytest.mark.asyncio
    async def test_offline_disabled_still_refused_after_restart(
        self, store, signature_service, license_secret, audit_sink, clock
    ):
        await create(store, clock, offline_enabled=False)
        await store.lose_connectivity("acme")

        restarted = self.restart(store, signature_service, license_secret, audit_sink, clock)

        with pytest.raises(OfflineGraceExpiredError):
            await restarted.validate("acme")

    @pytest.mark.asyncio
    async def test_online_license_starts_online(self, store, signature_service, license_secret, audit_sink, clock):
        await create(store, clock)
        restarted = self.restart(store, signature_service, license_secret, audit_sink, clock)
        assert (await restarted.offline_status("acme")).state == OfflineState.ONLINE_VALID


class TestVerifiedSnapshot:
    """Licence fournie aux contrôles d'accès modules."""

    @pytest.mark.asyncio
    async def test_valid_record_returned(self, store, clock):
        record = await create(store, clock)
        assert await store.verified_snapshot("acme") == record

    @pytest.mark.asyncio
    async def test_missing_license(self, store):
        assert await store.verified_snapshot("ghost") is None

    @pytest.mark.asyncio
    async def test_expired_grace_gives_none(self, store, audit_sink, clock):
        await create(store, clock)
        status = await store.lose_connectivity("acme")

        clock.now = status.deadline
        assert await store.verified_snapshot("acme") is not None

        clock.advance(seconds=1)
        assert await store.verified_snapshot("acme") is None
        assert "offline_grace_expired" in failure_reasons(audit_sink)

    @pytest.mark.asyncio
    async def test_tampered_copy_gives_none(self, store, audit_sink, clock):
        await create(store, clock)
        tamper(store)

        assert await store.verified_snapshot("acme") is None
        assert store.get_snapshot("acme").tamper_detected is True
        assert failure_reasons(audit_sink) == ["tamper_detected"]

    @pytest.mark.asyncio
    async def test_unsigned_change_gives_none(self, store, audit_sink, clock):
        await create(store, clock)
        current = store.repository.get("acme")
        widened = LicenseFeatures(modules=FEATURES.modules + ("clinic",), max_users=100)
        store.repository.save(replace(current, features=widened), expected_version=current.version)

        assert await store.verified_snapshot("acme") is None
        failure = events(audit_sink, AuditEventType.VALIDATION_FAILURE)[0]
        assert failure.details["reason"] == "signature_mismatch"
        assert failure.severity == AuditSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_revoked_record_still_returned(self, store, clock):
        await create(store, clock)
        await store.revoke("acme", "non-payment")

        record = await store.verified_snapshot("acme")

        assert record.status == LicenseStatus.REVOKED
