"""
HRSM Licensing - Engine

Racine de composition : construit registre, journal d'audit, store de
licences, contrôle des droits et conformité à partir d'EngineSettings, puis
expose les opérations aux couches HTTP et services.

Invariants:
    - Aucun état global : chaque moteur possède son registre et son journal
    - Graphe des dépendances validé au démarrage (cycle = échec fatal)
    - Les droits modules ne sont évalués que sur une licence vérifiée
    - Tout fichier de licence rejeté est audité avant que l'erreur remonte
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .audit.audit_sink import AuditSink
from .audit.interfaces import AuditSeverity
from .core.config_loader import ConfigLoader
from .core.crypto_provider import CryptoProvider
from .core.interfaces import EngineSettings
from .licensing.compliance_analyzer import ComplianceAnalyzer, ComplianceReport, UtilizationPenaltyPolicy
from .licensing.entitlement_checker import Availability, EntitlementChecker, TenantEntitlement
from .licensing.errors import ExpiredLicenseError, SignatureMismatchError, ValidationStructureError
from .licensing.interfaces import (
    ILicenseRepository,
    IRemoteLicenseValidator,
    IUsageMetricsProvider,
    LicenseFeatures,
    LicenseRecord,
    TenantConfig,
    UsageStats,
)
from .licensing.license_file import LicenseArtifact, parse_license_file
from .licensing.license_store import LicenseStore, LicenseValidation
from .licensing.module_gate import ModuleGate
from .licensing.offline_grace import OfflineStatus
from .licensing.remote_validator import HttpRemoteLicenseValidator
from .licensing.signature_service import SignatureService
from .licensing.usage_limits import LimitCheckResult, QuotaPolicy, UsageLimitChecker
from .logging.structured_logger import StructuredLogger
from .network.interfaces import RetryConfig, TimeoutConfig
from .network.retry_handler import RetryHandler
from .network.timeout_manager import TimeoutManager
from .registry.catalog import DEFAULT_CATALOG
from .registry.interfaces import ModuleConfig, PricingTier
from .registry.module_registry import ModuleRegistry, load_registry


class LicensingEngine:
    """
    Moteur de licences et de droits modules.

    Example:
        engine = LicensingEngine.bootstrap(EngineSettings(license_secret="..."))
        await engine.store.create("acme", LicenseFeatures(modules=("attendance",)), expires_at)
        await engine.check_availability(TenantConfig.of("acme", {"attendance"}), "attendance")
    """

    UNKNOWN_TENANT: str = "unknown"

    def __init__(
        self,
        settings: EngineSettings,
        registry: ModuleRegistry,
        crypto_provider: CryptoProvider,
        audit_sink: AuditSink,
        store: LicenseStore,
        remote_validator: Optional[IRemoteLicenseValidator] = None,
        metrics_provider: Optional[IUsageMetricsProvider] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.crypto_provider = crypto_provider
        self.audit_sink = audit_sink
        self.store = store
        self.signatures = SignatureService(crypto_provider)
        self.checker = EntitlementChecker(registry)
        self._logger = logger or StructuredLogger("hrsm.engine")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._remote = remote_validator
        self.gate = ModuleGate(self.checker, audit_sink, logger=self._logger.child("module_gate"))
        self.compliance = ComplianceAnalyzer(
            settings.compliance,
            penalty_policy=UtilizationPenaltyPolicy(settings.utilization_penalty),
            exempt_modules=registry.core_modules,
            audit_sink=audit_sink,
            metrics_provider=metrics_provider,
            logger=self._logger.child("compliance"),
            clock=self._clock,
        )
        self.usage_limits = UsageLimitChecker(
            registry,
            audit_sink,
            policy=QuotaPolicy(settings.quota_policy),
            logger=self._logger.child("usage_limits"),
            clock=self._clock,
        )

    # ──────────────────────────────────────────────────────────────────────
    # Construction
    # ──────────────────────────────────────────────────────────────────────

    @classmethod
    def bootstrap(
        cls,
        settings: EngineSettings,
        catalog: Optional[Iterable[Union[ModuleConfig, Mapping[str, Any]]]] = None,
        repository: Optional[ILicenseRepository] = None,
        remote_validator: Optional[IRemoteLicenseValidator] = None,
        metrics_provider: Optional[IUsageMetricsProvider] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> "LicensingEngine":
        """
        Construit un moteur complet.

        Args:
            settings: Configuration validée
            catalog: Catalogue de modules (settings.catalog_path, sinon catalogue par défaut)
            repository: Persistance des licences (mémoire par défaut)
            remote_validator: Validateur distant (HTTP si settings.remote.url)
            metrics_provider: Télémétrie d'usage (rapports de conformité)
            logger: Logger racine
            clock: Horloge UTC (injectable pour tests)
            sleep: Attente entre retries (injectable pour tests)

        Raises:
            RegistryValidationError: Catalogue invalide
            CircularDependencyError: Cycle dans les dépendances requises
            ConfigIntegrityError: Catalogue YAML illisible
        """
        root_logger = logger or StructuredLogger("hrsm")
        if catalog is None:
            catalog = (
                ConfigLoader().load_catalog(settings.catalog_path) if settings.catalog_path else DEFAULT_CATALOG
            )
        registry = load_registry(catalog, logger=root_logger.child("registry"))

        keys = {settings.key_version: settings.encryption_key.encode()} if settings.encryption_key else None
        crypto = CryptoProvider(keys, active_key_version=settings.key_version if keys else None)
        audit_sink = AuditSink(
            crypto,
            retention_days=settings.audit_retention_days,
            logger=root_logger.child("audit"),
            clock=clock,
        )

        remote = settings.remote
        timeouts = TimeoutConfig(connection_timeout=remote.connection_timeout, request_timeout=remote.request_timeout)
        timeout_manager = TimeoutManager()
        timeout_manager.set_endpoint_timeout(LicenseStore.REMOTE_ENDPOINT, timeouts)
        if remote_validator is None and remote.url:
            remote_validator = HttpRemoteLicenseValidator(
                remote.url,
                response_token_secret=remote.response_token_secret,
                timeouts=timeouts,
                logger=root_logger.child("remote_validator"),
            )

        retry_config = RetryConfig(
            max_attempts=remote.retry.max_attempts,
            initial_delay=remote.retry.initial_delay,
            max_delay=remote.retry.max_delay,
            exponential_base=remote.retry.exponential_base,
        )
        store = LicenseStore(
            SignatureService(crypto),
            settings.license_secret,
            audit_sink,
            repository=repository,
            remote_validator=remote_validator,
            retry_handler=RetryHandler(retry_config, sleep=sleep),
            retry_config=retry_config,
            timeout_manager=timeout_manager,
            logger=root_logger.child("license_store"),
            clock=clock,
            default_grace_hours=settings.grace_hours,
        )
        engine = cls(
            settings,
            registry,
            crypto,
            audit_sink,
            store,
            remote_validator=remote_validator,
            metrics_provider=metrics_provider,
            logger=root_logger,
            clock=clock,
        )
        root_logger.info(
            "Licensing engine started",
            modules=len(registry),
            remote_validation=remote_validator is not None,
            quota_policy=settings.quota_policy,
        )
        return engine

    @classmethod
    def from_config(cls, config_path: str, **overrides: Any) -> "LicensingEngine":
        """Construit le moteur depuis un fichier YAML (voir ConfigLoader)."""
        return cls.bootstrap(ConfigLoader(config_path).load(), **overrides)

    async def close(self) -> None:
        """Libère le client HTTP du validateur distant."""
        if isinstance(self._remote, HttpRemoteLicenseValidator):
            await self._remote.close()

    # ──────────────────────────────────────────────────────────────────────
    # Licences
    # ──────────────────────────────────────────────────────────────────────

    def parse_license(self, content: Union[str, bytes], tenant_id: Optional[str] = None) -> LicenseArtifact:
        """
        Parse et vérifie un fichier de licence avec le secret du moteur.

        Args:
            content: Contenu JSON du fichier
            tenant_id: Tenant destinataire, pour l'audit des rejets

        Raises:
            ValidationStructureError, SignatureMismatchError, ExpiredLicenseError
            (rejet audité avant d'être levé)
        """
        audit_tenant = tenant_id or self.UNKNOWN_TENANT
        try:
            return parse_license_file(content, self.settings.license_secret, self.signatures, now=self._clock())
        except SignatureMismatchError as e:
            self.audit_sink.log_validation_failure(
                audit_tenant, "signature_mismatch", severity=AuditSeverity.CRITICAL, error=str(e)
            )
            self._logger.critical("License file signature mismatch", tenant_id=audit_tenant)
            raise
        except ExpiredLicenseError as e:
            self.audit_sink.log_validation_failure(
                audit_tenant, "license_expired", severity=AuditSeverity.ERROR, expiresAt=e.expires_at
            )
            raise
        except ValidationStructureError as e:
            self.audit_sink.log_validation_failure(
                audit_tenant, "invalid_license_file", severity=AuditSeverity.ERROR, errors=e.errors
            )
            raise

    async def install_license(
        self, content: Union[str, bytes], tenant_id: Optional[str] = None, max_activations: int = 1
    ) -> LicenseRecord:
        """Vérifie un fichier de licence puis l'enregistre pour le tenant."""
        artifact = self.parse_license(content, tenant_id)
        return await self.store.create_from_artifact(
            artifact, tenant_id=tenant_id, max_activations=max_activations
        )

    async def issue_license(
        self,
        tenant_id: str,
        modules: Iterable[str],
        valid_days: int = 365,
        max_users: Optional[int] = None,
        max_storage: Optional[int] = None,
        max_api_calls_per_month: Optional[int] = None,
        max_activations: int = 1,
    ) -> LicenseRecord:
        """Émet une licence pour des modules du catalogue."""
        features = LicenseFeatures(
            modules=tuple(self.registry.require(m).key for m in modules),
            max_users=max_users,
            max_storage=max_storage,
            max_api_calls_per_month=max_api_calls_per_month,
        )
        return await self.store.create(
            tenant_id,
            features,
            self._clock() + timedelta(days=valid_days),
            max_activations=max_activations,
        )

    async def validate_license(self, tenant_id: str, machine_id: Optional[str] = None) -> LicenseValidation:
        return await self.store.validate(tenant_id, machine_id)

    async def lose_connectivity(self, tenant_id: str) -> OfflineStatus:
        return await self.store.lose_connectivity(tenant_id)

    async def reconnect(self, tenant_id: str, machine_id: Optional[str] = None) -> OfflineStatus:
        return await self.store.reconnect(tenant_id, machine_id)

    async def license_for(self, tenant_id: str) -> Optional[LicenseRecord]:
        """Licence vérifiée (sceau, signature, grâce hors ligne) ou None."""
        return await self.store.verified_snapshot(tenant_id)

    # ──────────────────────────────────────────────────────────────────────
    # Droits modules
    # ──────────────────────────────────────────────────────────────────────

    async def check_availability(self, tenant: TenantConfig, module_key: str) -> Availability:
        license = await self.license_for(tenant.tenant_id)
        return self.checker.check_availability(tenant, license, module_key, self._clock())

    async def available_modules(self, tenant: TenantConfig) -> TenantEntitlement:
        license = await self.license_for(tenant.tenant_id)
        return self.checker.get_available_modules(tenant, license, self._clock())

    async def require_access(self, tenant: TenantConfig, module_key: str) -> Availability:
        license = await self.license_for(tenant.tenant_id)
        return self.gate.require_access(tenant, license, module_key, self._clock())

    async def activate_module(self, tenant: TenantConfig, module_key: str) -> TenantConfig:
        license = await self.license_for(tenant.tenant_id)
        return self.gate.activate_module(tenant, license, module_key, self._clock())

    def deactivate_module(self, tenant: TenantConfig, module_key: str) -> TenantConfig:
        return self.gate.deactivate_module(tenant, module_key)

    def activation_order(self, requested: Iterable[str]) -> List[str]:
        return self.registry.resolver.activation_order(requested)

    def check_limit(
        self,
        tenant_id: str,
        module_key: str,
        limit_type: str,
        current_usage: int,
        requested_amount: int = 0,
        tier: Union[PricingTier, str] = PricingTier.STARTER,
        limits: Optional[Mapping[str, Optional[int]]] = None,
    ) -> LimitCheckResult:
        return self.usage_limits.check_limit(
            tenant_id, module_key, limit_type, current_usage, requested_amount, tier=tier, limits=limits
        )

    # ──────────────────────────────────────────────────────────────────────
    # Conformité
    # ──────────────────────────────────────────────────────────────────────

    def compliance_report(
        self,
        tenant_id: str,
        usage: UsageStats,
        period: Optional[Tuple[datetime, datetime]] = None,
    ) -> ComplianceReport:
        """
        Raises:
            LicenseNotFoundError: Aucune licence pour le tenant
        """
        return self.compliance.generate_report(self.store.get_snapshot(tenant_id), usage, period, self._clock())

    async def build_compliance_report(
        self, tenant_id: str, period: Optional[Tuple[datetime, datetime]] = None
    ) -> ComplianceReport:
        return await self.compliance.build_report(self.store.get_snapshot(tenant_id), period, self._clock())

    def audit_statistics(self, tenant_id: Optional[str] = None, days: int = 30) -> Dict[str, Any]:
        return self.audit_sink.statistics(tenant_id, start_date=self._clock() - timedelta(days=days))
