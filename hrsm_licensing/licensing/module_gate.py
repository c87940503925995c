"""
Licensing - Module Gate

Contrôle d'accès aux modules avec audit : enveloppe l'EntitlementChecker
pour les appelants (middleware HTTP, services).

Invariants:
    - Tout refus d'accès ou d'activation est audité avant d'être levé
    - Un module utilisé sans couverture licence est un événement critique
    - Un module core ne se désactive pas ; un module requis par un module
      activé non plus
"""
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from .entitlement_checker import Availability, AvailabilityReason, EntitlementChecker
from .errors import UnauthorizedModuleUsageError
from .interfaces import LicenseRecord, TenantConfig
from ..audit.audit_sink import AuditSink
from ..audit.interfaces import AuditSeverity
from ..logging.structured_logger import StructuredLogger
from ..registry.dependency_resolver import ActivationValidation, MissingDependencyError, UnknownModuleError


class ModuleAccessDeniedError(Exception):
    """Accès refusé à un module (équivalent 403)."""

    def __init__(self, module_key: str, tenant_id: str, reason: AvailabilityReason):
        self.module_key = module_key
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Accès refusé au module '{module_key}' pour le tenant '{tenant_id}' ({reason.value})")


class ModuleDeactivationError(Exception):
    """Désactivation refusée (module core ou requis par un module activé)."""

    def __init__(self, module_key: str, blocking_dependents: List[str], reason: str):
        self.module_key = module_key
        self.blocking_dependents = list(blocking_dependents)
        self.reason = reason
        super().__init__(f"Désactivation de '{module_key}' refusée ({reason})")


class ModuleGate:
    """
    Contrôle d'accès modules avec audit.

    Example:
        gate = ModuleGate(checker, audit_sink)
        gate.require_access(tenant, license, "payroll", now)
        tenant = gate.activate_module(tenant, license, "attendance", now)
    """

    def __init__(
        self,
        checker: EntitlementChecker,
        audit_sink: AuditSink,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Args:
            checker: Règles de disponibilité
            audit_sink: Journal d'audit
            logger: Logger structuré
        """
        self._checker = checker
        self._audit = audit_sink
        self._logger = logger or StructuredLogger("hrsm.module_gate")

    def check_access(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        module_key: str,
        at: datetime,
    ) -> Availability:
        """Disponibilité du module, avec trace d'audit positive ou négative."""
        result = self._checker.check_availability(tenant, license, module_key, at)
        if result.available:
            self._audit.log_validation_success(tenant.tenant_id, module_key, reason=result.reason.value)
            return result

        severity = AuditSeverity.WARNING
        if result.reason == AvailabilityReason.FEATURE_NOT_LICENSED and module_key in tenant.used_modules:
            severity = AuditSeverity.CRITICAL
        self._audit.log_validation_failure(
            tenant.tenant_id,
            result.reason.value,
            module_key=module_key,
            severity=severity,
            **dict(result.details),
        )
        self._logger.warn(
            "Module access denied", tenant_id=tenant.tenant_id, module_key=module_key, reason=result.reason.value
        )
        return result

    def require_access(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        module_key: str,
        at: datetime,
    ) -> Availability:
        """
        Raises:
            ModuleAccessDeniedError: Module indisponible (refus audité)
        """
        result = self.check_access(tenant, license, module_key, at)
        if not result.available:
            raise ModuleAccessDeniedError(module_key, tenant.tenant_id, result.reason)
        return result

    def visibility(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        at: datetime,
    ) -> Dict[str, bool]:
        """Visibilité UI par module (les modules indisponibles sont masqués)."""
        entitlement = self._checker.get_available_modules(tenant, license, at)
        return {module_key: entitlement.is_available(module_key) for module_key in self._checker.registry}

    def activate_module(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        module_key: str,
        at: datetime,
    ) -> TenantConfig:
        """
        Active un module (idempotent).

        Returns:
            Nouvelle configuration tenant

        Raises:
            UnknownModuleError, UnauthorizedModuleUsageError, MissingDependencyError
        """
        if module_key in tenant.enabled_modules:
            return tenant
        try:
            validation: ActivationValidation = self._checker.check_activation(tenant, license, module_key, at)
        except UnknownModuleError:
            self._audit.log_validation_failure(tenant.tenant_id, "module_not_found", module_key=module_key)
            raise
        except UnauthorizedModuleUsageError as e:
            self._audit.log_validation_failure(
                tenant.tenant_id, e.reason, module_key=module_key, severity=AuditSeverity.CRITICAL, action="activate"
            )
            raise
        except MissingDependencyError as e:
            self._audit.log_dependency_violation(tenant.tenant_id, module_key, e.missing_dependencies)
            self._logger.warn(
                "Module activation blocked by dependencies",
                tenant_id=tenant.tenant_id,
                module_key=module_key,
                missing=e.missing_dependencies,
            )
            raise

        self._audit.log_module_activated(
            tenant.tenant_id, module_key, requiredDependencies=list(validation.required_dependencies)
        )
        self._logger.info("Module activated", tenant_id=tenant.tenant_id, module_key=module_key)
        return replace(tenant, enabled_modules=tenant.enabled_modules | {module_key})

    def deactivate_module(self, tenant: TenantConfig, module_key: str) -> TenantConfig:
        """
        Désactive un module (idempotent).

        Raises:
            UnknownModuleError: Module inconnu
            ModuleDeactivationError: Module core ou requis par un module activé
        """
        registry = self._checker.registry
        config = registry.require(module_key)
        if config.core:
            self._audit.log_validation_failure(
                tenant.tenant_id, "core_module", module_key=module_key, action="deactivate"
            )
            raise ModuleDeactivationError(module_key, [], "core_module")
        if module_key not in tenant.enabled_modules:
            return tenant

        check = registry.resolver.validate_deactivation(module_key, tenant.enabled_modules)
        if not check.valid:
            self._audit.log_dependency_violation(
                tenant.tenant_id,
                module_key,
                [],
                action="deactivate",
                blockingDependents=list(check.blocking_dependents),
            )
            raise ModuleDeactivationError(module_key, list(check.blocking_dependents), "required_by_enabled_modules")

        self._audit.log_module_deactivated(tenant.tenant_id, module_key)
        self._logger.info("Module deactivated", tenant_id=tenant.tenant_id, module_key=module_key)
        return replace(tenant, enabled_modules=tenant.enabled_modules - {module_key})
