"""
Licensing - License Store

Cycle de vie des licences par tenant : création, mise à jour, révocation,
activations machine, validation en ligne et hors ligne.

Invariants:
    - Toute écriture passe par seal (re-signature, re-chiffrement, nouveau
      hash, version + 1) puis par le repository avec contrôle de version
    - Écritures sérialisées par tenant (asyncio.Lock) ; les lecteurs voient
      un enregistrement immuable complet
    - Une copie altérée est marquée tamper_detection et n'est plus jamais
      acceptée ; elle n'est pas re-scellée par une mise à jour
    - Chaque tentative de validation et chaque transition hors ligne est
      un événement d'audit ; tout rejet est audité avant d'être levé
    - Les retries distants sont bornés et s'arrêtent à l'échéance de grâce ;
      en EXPIRED_OFFLINE une seule tentative de reconnexion
"""
import asyncio
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import (
    ActivationLimitExceededError,
    ExpiredLicenseError,
    LicenseNotFoundError,
    LicenseRevokedError,
    OfflineGraceExpiredError,
    RemoteValidationRejectedError,
    SignatureMismatchError,
    TamperDetectedError,
    ValidationStructureError,
)
from .interfaces import (
    Activation,
    ILicenseRepository,
    IRemoteLicenseValidator,
    LicenseFeatures,
    LicenseRecord,
    LicenseStatus,
    OfflineSettings,
    RemoteValidationResult,
)
from .license_file import LicenseArtifact, features_from_artifact, generate_license_key
from .offline_grace import OfflineGraceTracker, OfflineState, OfflineStatus, OfflineTransition
from .repository import ConcurrentUpdateError, InMemoryLicenseRepository
from .signature_service import Secret, SignatureService
from ..audit.audit_sink import AuditSink
from ..audit.interfaces import AuditEventType, AuditSeverity
from ..logging.structured_logger import StructuredLogger
from ..network.interfaces import RetryConfig
from ..network.retry_handler import RetryHandler
from ..network.timeout_manager import TimeoutManager


class LicenseStoreError(Exception):
    """Opération de store invalide."""

    pass


@dataclass(frozen=True)
class LicenseValidation:
    """Résultat d'une validation réussie."""

    tenant_id: str
    license_number: str
    state: OfflineState
    remote_confirmed: bool
    grace_deadline: Optional[datetime]
    days_until_expiry: int
    record: LicenseRecord

    @property
    def offline(self) -> bool:
        return self.state != OfflineState.ONLINE_VALID


class LicenseStore:
    """
    Gestionnaire des licences tenant.

    Example:
        store = LicenseStore(signatures, secret, audit_sink)
        await store.create("tenant-1", LicenseFeatures(modules=("payroll",)), expires_at)
        await store.validate("tenant-1", machine_id="srv-01")
    """

    REMOTE_ENDPOINT: str = "license-validation"

    UPDATABLE_FIELDS = frozenset({
        "status",
        "expires_at",
        "features",
        "max_activations",
        "offline",
        "revocation_reason",
    })

    def __init__(
        self,
        signature_service: SignatureService,
        secret: Secret,
        audit_sink: AuditSink,
        repository: Optional[ILicenseRepository] = None,
        remote_validator: Optional[IRemoteLicenseValidator] = None,
        retry_handler: Optional[RetryHandler] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        default_grace_hours: int = 72,
    ):
        """
        Args:
            signature_service: Signature et scellement des enregistrements
            secret: Secret HMAC de l'autorité de licence
            audit_sink: Journal d'audit
            repository: Persistance (mémoire par défaut)
            remote_validator: Service distant (None = validation locale seule)
            retry_handler: Backoff vers le service distant
            retry_config: Politique de retry distante
            timeout_manager: Budget de requête distant
            logger: Logger structuré
            clock: Horloge UTC (injectable pour tests)
            default_grace_hours: Grâce hors ligne par défaut
        """
        if not secret:
            raise LicenseStoreError("secret de licence obligatoire")
        self._signatures = signature_service
        self._secret = secret
        self._audit = audit_sink
        self._repository = repository if repository is not None else InMemoryLicenseRepository()
        self._remote = remote_validator
        self._retry = retry_handler or RetryHandler()
        self._retry_config = retry_config or RetryConfig()
        self._timeouts = timeout_manager or TimeoutManager()
        self._logger = logger or StructuredLogger("hrsm.license_store")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._default_grace_hours = default_grace_hours

        self._locks: Dict[str, asyncio.Lock] = {}
        self._trackers: Dict[str, OfflineGraceTracker] = {}

    @property
    def repository(self) -> ILicenseRepository:
        return self._repository

    # ──────────────────────────────────────────────────────────────────────
    # Cycle de vie
    # ──────────────────────────────────────────────────────────────────────

    async def create(
        self,
        tenant_id: str,
        features: LicenseFeatures,
        expires_at: datetime,
        issued_at: Optional[datetime] = None,
        license_number: Optional[str] = None,
        max_activations: int = 1,
        offline_enabled: bool = True,
        grace_hours: Optional[int] = None,
    ) -> LicenseRecord:
        """
        Émet et scelle la licence d'un tenant.

        Raises:
            LicenseStoreError: Licence déjà existante
            ValidationStructureError: Champs invalides
        """
        async with self._lock(tenant_id):
            if self._repository.get(tenant_id) is not None:
                self._audit.log_validation_failure(tenant_id, "license_already_exists", severity=AuditSeverity.ERROR)
                raise LicenseStoreError(f"Licence déjà existante pour '{tenant_id}'")
            now = self._clock()
            try:
                record = LicenseRecord(
                    tenant_id=tenant_id,
                    license_number=license_number or generate_license_key(),
                    status=LicenseStatus.ACTIVE,
                    issued_at=issued_at or now,
                    expires_at=expires_at,
                    features=features,
                    offline=OfflineSettings(
                        enabled=offline_enabled,
                        grace_hours=self._default_grace_hours if grace_hours is None else grace_hours,
                    ),
                    max_activations=max_activations,
                )
            except ValueError as e:
                self._audit.log_validation_failure(tenant_id or "unknown", "invalid_license_record", error=str(e))
                raise ValidationStructureError([str(e)]) from e

            sealed = self._signatures.seal(record, self._secret, now)
            self._repository.save(sealed, expected_version=None)

        self._audit.record(
            tenant_id,
            AuditEventType.LICENSE_CREATED,
            details={
                "licenseNumber": sealed.license_number,
                "modules": list(sealed.features.modules),
                "expiresAt": sealed.expires_at,
            },
        )
        self._logger.info("License created", tenant_id=tenant_id, license_number=sealed.license_number)
        return sealed

    async def create_from_artifact(
        self,
        artifact: LicenseArtifact,
        tenant_id: Optional[str] = None,
        max_activations: int = 1,
        offline_enabled: bool = True,
        grace_hours: Optional[int] = None,
    ) -> LicenseRecord:
        """Crée la licence à partir d'un artefact déjà vérifié (parse_license_file)."""
        return await self.create(
            tenant_id or artifact.company_id,
            features_from_artifact(artifact),
            artifact.expires_datetime,
            issued_at=artifact.issued_datetime,
            license_number=artifact.license_key,
            max_activations=max_activations,
            offline_enabled=offline_enabled,
            grace_hours=grace_hours,
        )

    async def update(self, tenant_id: str, expected_version: Optional[int] = None, **changes: Any) -> LicenseRecord:
        """
        Chemin de mise à jour unique.

        Args:
            expected_version: Contrôle optimiste côté appelant (optionnel)
            changes: Sous-ensemble de UPDATABLE_FIELDS

        Raises:
            LicenseStoreError: Champ non modifiable
            LicenseNotFoundError: Aucune licence
            ConcurrentUpdateError: Version différente de expected_version
            TamperDetectedError / SignatureMismatchError: Enregistrement courant compromis
        """
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise LicenseStoreError(f"Champs non modifiables: {sorted(unknown)}")
        async with self._lock(tenant_id):
            current = self._require(tenant_id)
            if expected_version is not None and current.version != expected_version:
                self._audit.log_validation_failure(
                    tenant_id, "concurrent_update", expectedVersion=expected_version, actualVersion=current.version
                )
                raise ConcurrentUpdateError(tenant_id, expected_version, current.version)
            updated = self._write(current, changes, self._clock())

        self._audit.record(
            tenant_id,
            AuditEventType.LICENSE_UPDATED,
            details={"fields": sorted(changes), "version": updated.version},
        )
        self._logger.info("License updated", tenant_id=tenant_id, fields=sorted(changes), version=updated.version)
        return updated

    async def revoke(self, tenant_id: str, reason: str) -> LicenseRecord:
        """Révoque la licence ; toute validation ultérieure échoue."""
        async with self._lock(tenant_id):
            current = self._require(tenant_id)
            updated = self._write(
                current, {"status": LicenseStatus.REVOKED, "revocation_reason": reason}, self._clock()
            )
        self._audit.record(
            tenant_id,
            AuditEventType.LICENSE_UPDATED,
            severity=AuditSeverity.WARNING,
            details={"action": "revoked", "reason": reason, "version": updated.version},
        )
        self._logger.warn("License revoked", tenant_id=tenant_id, reason=reason)
        return updated

    def get_snapshot(self, tenant_id: str) -> LicenseRecord:
        """
        Instantané immuable de la licence.

        Raises:
            LicenseNotFoundError: Aucune licence
        """
        record = self._repository.get(tenant_id)
        if record is None:
            raise LicenseNotFoundError(tenant_id)
        return record

    async def verified_snapshot(self, tenant_id: str) -> Optional[LicenseRecord]:
        """
        Licence utilisable pour les contrôles d'accès modules.

        Applique l'échéance hors ligne puis vérifie sceau et signature. Un
        refus est audité par la vérification et donne None, que
        l'EntitlementChecker traduit en license_invalid. Révocation et
        expiration restent portées par l'enregistrement renvoyé.
        """
        async with self._lock(tenant_id):
            record = self._repository.get(tenant_id)
            if record is None:
                return None
            tracker = self._tracker(record)
            now = self._clock()
            self._expire_if_due(record, tracker, now)
            if not tracker.allows_local_validation(now):
                self._audit.log_validation_failure(
                    tenant_id,
                    "offline_grace_expired",
                    severity=AuditSeverity.CRITICAL,
                    deadline=tracker.deadline,
                )
                return None
            try:
                self._verify_seal(record, now)
            except SignatureMismatchError:
                return None
            return record

    async def register_activation(self, tenant_id: str, machine_id: str) -> LicenseRecord:
        """
        Enregistre une machine (idempotent).

        Raises:
            ActivationLimitExceededError: max_activations atteint
        """
        async with self._lock(tenant_id):
            current = self._require(tenant_id)
            return self._register_locked(current, machine_id, self._clock())

    # ──────────────────────────────────────────────────────────────────────
    # Validation et état hors ligne
    # ──────────────────────────────────────────────────────────────────────

    async def validate(self, tenant_id: str, machine_id: Optional[str] = None) -> LicenseValidation:
        """
        Valide la licence du tenant.

        Processus:
            1. Échéance de grâce (OFFLINE_GRACE -> EXPIRED_OFFLINE si dépassée)
            2. Confirmation distante si configurée (retries bornés) ; un
               échec réseau fait entrer ou rester en grâce
            3. EXPIRED_OFFLINE : refus ferme
            4. Contrôles locaux : altération, signature, révocation, expiration
            5. Activation machine si machine_id fourni

        Raises:
            LicenseNotFoundError, OfflineGraceExpiredError, TamperDetectedError,
            SignatureMismatchError, LicenseRevokedError, ExpiredLicenseError,
            RemoteValidationRejectedError, ActivationLimitExceededError
        """
        async with self._lock(tenant_id):
            record = self._repository.get(tenant_id)
            if record is None:
                self._audit.log_validation_failure(tenant_id, "license_not_found", severity=AuditSeverity.ERROR)
                raise LicenseNotFoundError(tenant_id)

            tracker = self._tracker(record)
            record = self._expire_if_due(record, tracker, self._clock())

            remote_confirmed = False
            if self._remote is not None:
                record, remote_confirmed = await self._confirm_remotely(record, tracker, machine_id)

            now = self._clock()
            record = self._expire_if_due(record, tracker, now)
            if not tracker.allows_local_validation(now):
                self._audit.log_validation_failure(
                    tenant_id,
                    "offline_grace_expired",
                    severity=AuditSeverity.CRITICAL,
                    deadline=tracker.deadline,
                )
                raise OfflineGraceExpiredError(tenant_id, tracker.deadline)

            self._verify_record(record, now)
            if machine_id:
                record = self._register_locked(record, machine_id, now)

            validation = LicenseValidation(
                tenant_id=tenant_id,
                license_number=record.license_number,
                state=tracker.state,
                remote_confirmed=remote_confirmed,
                grace_deadline=tracker.deadline,
                days_until_expiry=math.ceil((record.expires_at - now) / timedelta(days=1)),
                record=record,
            )

        self._audit.log_validation_success(
            tenant_id,
            mode=validation.state.value,
            remoteConfirmed=remote_confirmed,
            machineId=machine_id,
            graceDeadline=validation.grace_deadline,
        )
        return validation

    async def lose_connectivity(self, tenant_id: str) -> OfflineStatus:
        """Signale la perte du service distant : entrée en grâce."""
        async with self._lock(tenant_id):
            record = self._require(tenant_id)
            tracker = self._tracker(record)
            now = self._clock()
            self._enter_offline(record, tracker, now)
            return tracker.status(now)

    async def reconnect(self, tenant_id: str, machine_id: Optional[str] = None) -> OfflineStatus:
        """
        Tente une reconnexion au service distant.

        Raises:
            LicenseStoreError: Aucun validateur distant configuré
            RemoteValidationRejectedError: Le service refuse la licence
        """
        if self._remote is None:
            raise LicenseStoreError("Aucun validateur distant configuré")
        async with self._lock(tenant_id):
            record = self._require(tenant_id)
            tracker = self._tracker(record)
            self._expire_if_due(record, tracker, self._clock())
            await self._confirm_remotely(record, tracker, machine_id)
            now = self._clock()
            self._expire_if_due(record, tracker, now)
            return tracker.status(now)

    async def offline_status(self, tenant_id: str) -> OfflineStatus:
        """État hors ligne courant (applique l'échéance si dépassée)."""
        async with self._lock(tenant_id):
            record = self._require(tenant_id)
            tracker = self._tracker(record)
            now = self._clock()
            self._expire_if_due(record, tracker, now)
            return tracker.status(now)

    # ──────────────────────────────────────────────────────────────────────
    # Internes
    # ──────────────────────────────────────────────────────────────────────

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        return lock

    def _tracker(self, record: LicenseRecord) -> OfflineGraceTracker:
        """Tracker du tenant, reconstruit depuis l'échéance persistée au premier accès."""
        tracker = self._trackers.get(record.tenant_id)
        if tracker is None:
            tracker = OfflineGraceTracker.resume(record.offline.grace_deadline, expired=not record.offline.enabled)
            self._trackers[record.tenant_id] = tracker
        return tracker

    def _require(self, tenant_id: str) -> LicenseRecord:
        record = self._repository.get(tenant_id)
        if record is None:
            raise LicenseNotFoundError(tenant_id)
        return record

    def _write(self, current: LicenseRecord, changes: Dict[str, Any], now: datetime) -> LicenseRecord:
        """Vérifie l'enregistrement courant puis scelle et persiste la nouvelle version."""
        self._verify_seal(current, now)
        try:
            candidate = replace(current, **changes)
        except (TypeError, ValueError) as e:
            self._audit.log_validation_failure(current.tenant_id, "invalid_license_update", error=str(e))
            raise ValidationStructureError([str(e)]) from e
        sealed = self._signatures.seal(candidate, self._secret, now)
        self._repository.save(sealed, expected_version=current.version)
        return sealed

    def _save_runtime_state(self, current: LicenseRecord, **changes: Any) -> LicenseRecord:
        """Persiste un champ hors signature (échéance de grâce, drapeau d'altération)."""
        updated = replace(current, version=current.version + 1, **changes)
        self._repository.save(updated, expected_version=current.version)
        return updated

    def _verify_seal(self, record: LicenseRecord, now: datetime) -> None:
        if record.tamper_detected:
            self._audit.log_validation_failure(
                record.tenant_id, "tamper_detected", severity=AuditSeverity.CRITICAL, flagged=True
            )
            raise TamperDetectedError(record.tenant_id)
        try:
            self._signatures.verify_sealed(record, self._secret)
        except TamperDetectedError:
            self._save_runtime_state(
                record,
                integrity=replace(record.integrity, tamper_detection=True, last_integrity_check=now)
                if record.integrity
                else None,
            )
            self._audit.log_validation_failure(record.tenant_id, "tamper_detected", severity=AuditSeverity.CRITICAL)
            self._logger.critical("License tampering detected", tenant_id=record.tenant_id)
            raise
        except SignatureMismatchError as e:
            self._audit.log_validation_failure(
                record.tenant_id, "signature_mismatch", severity=AuditSeverity.CRITICAL, error=str(e)
            )
            self._logger.critical("License signature mismatch", tenant_id=record.tenant_id)
            raise

    def _verify_record(self, record: LicenseRecord, now: datetime) -> None:
        self._verify_seal(record, now)
        if record.status == LicenseStatus.REVOKED:
            self._audit.log_validation_failure(
                record.tenant_id, "license_revoked", severity=AuditSeverity.ERROR, reason_detail=record.revocation_reason
            )
            raise LicenseRevokedError(record.tenant_id)
        if record.status == LicenseStatus.EXPIRED or record.is_expired(now):
            self._audit.log_license_expired(record.tenant_id, record.expires_at)
            raise ExpiredLicenseError(record.expires_at, record.tenant_id)

    def _register_locked(self, current: LicenseRecord, machine_id: str, now: datetime) -> LicenseRecord:
        if machine_id in current.machine_ids:
            return current
        if len(current.activations) >= current.max_activations:
            self._audit.log_validation_failure(
                current.tenant_id,
                "activation_limit_exceeded",
                machineId=machine_id,
                maxActivations=current.max_activations,
            )
            raise ActivationLimitExceededError(current.tenant_id, machine_id, current.max_activations)
        updated = self._write(
            current, {"activations": current.activations + (Activation(machine_id, now),)}, now
        )
        self._audit.record(
            current.tenant_id,
            AuditEventType.LICENSE_UPDATED,
            details={"action": "activation_registered", "machineId": machine_id, "version": updated.version},
        )
        return updated

    async def _call_remote(self, record: LicenseRecord, machine_id: Optional[str]) -> RemoteValidationResult:
        return await self._timeouts.run(
            self._remote.validate(record.license_number, machine_id),
            endpoint=self.REMOTE_ENDPOINT,
        )

    async def _confirm_remotely(
        self, record: LicenseRecord, tracker: OfflineGraceTracker, machine_id: Optional[str]
    ) -> Tuple[LicenseRecord, bool]:
        """
        Interroge le service distant.

        Returns:
            (enregistrement courant, True si confirmé en ligne)
        """
        config = self._retry_config
        stop_when = None
        if tracker.state == OfflineState.EXPIRED_OFFLINE:
            config = replace(config, max_attempts=1)
        elif tracker.state == OfflineState.OFFLINE_GRACE:
            def stop_when() -> bool:
                return self._clock() > tracker.deadline

        result = await self._retry.execute_with_retry(
            self._call_remote, record, machine_id, config=config, stop_when=stop_when
        )

        if result.success:
            remote: RemoteValidationResult = result.result
            if not remote.valid:
                self._audit.log_validation_failure(
                    record.tenant_id, "remote_rejected", severity=AuditSeverity.ERROR, remote_reason=remote.reason
                )
                raise RemoteValidationRejectedError(record.tenant_id, remote.reason)
            return self._restore_online(record, tracker, self._clock()), True

        error = result.last_error
        if error is not None and not self._retry.is_retryable(error, config):
            self._audit.log_validation_failure(
                record.tenant_id, "remote_error", severity=AuditSeverity.ERROR, error=str(error)
            )
            raise error

        self._logger.warn(
            "Remote license validation unavailable",
            tenant_id=record.tenant_id,
            attempts=result.attempts,
            stopped_early=result.stopped_early,
            error=str(error),
        )
        return self._enter_offline(record, tracker, self._clock()), False

    def _enter_offline(self, record: LicenseRecord, tracker: OfflineGraceTracker, now: datetime) -> LicenseRecord:
        transition = tracker.lose_connectivity(now, record.offline.grace_hours, record.offline.enabled)
        if transition is None:
            return record
        if transition.to_state == OfflineState.OFFLINE_GRACE:
            self._audit.record(
                record.tenant_id,
                AuditEventType.OFFLINE_GRACE_ENTERED,
                details={"deadline": tracker.deadline, "graceHours": record.offline.grace_hours},
            )
            self._logger.warn("Offline grace entered", tenant_id=record.tenant_id, deadline=tracker.deadline)
        else:
            self._audit_grace_expired(record, transition, reason="offline_disabled")
        # hors ligne désactivé : l'échéance persistée est l'instant de la perte
        deadline = tracker.deadline if tracker.deadline is not None else now
        return self._save_runtime_state(record, offline=replace(record.offline, grace_deadline=deadline))

    def _expire_if_due(self, record: LicenseRecord, tracker: OfflineGraceTracker, now: datetime) -> LicenseRecord:
        transition = tracker.expire_if_due(now)
        if transition is not None:
            self._audit_grace_expired(record, transition, reason="deadline_passed")
        return record

    def _restore_online(self, record: LicenseRecord, tracker: OfflineGraceTracker, now: datetime) -> LicenseRecord:
        transition = tracker.restore(now)
        if transition is None:
            return record
        self._audit.record(
            record.tenant_id,
            AuditEventType.ONLINE_RESTORED,
            details={"previousState": transition.from_state.value, "deadline": transition.deadline},
        )
        self._logger.info("Online validation restored", tenant_id=record.tenant_id)
        return self._save_runtime_state(record, offline=replace(record.offline, grace_deadline=None))

    def _audit_grace_expired(self, record: LicenseRecord, transition: OfflineTransition, reason: str) -> None:
        self._audit.record(
            record.tenant_id,
            AuditEventType.OFFLINE_GRACE_EXPIRED,
            details={"reason": reason, "deadline": transition.deadline, "at": transition.at},
        )
        self._logger.critical("Offline grace expired", tenant_id=record.tenant_id, reason=reason)
