"""
Licensing - Entitlement Checker

Répond à "le module X est-il disponible pour le tenant Y, et pourquoi".

Invariants:
    - Fonction pure de (tenant, licence, registre, instant) : aucun état caché,
      aucune I/O, pas de lecture d'horloge
    - Ordre des règles : core, inconnu, désactivé, licence invalide,
      module non licencié, disponible
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import UnauthorizedModuleUsageError
from .interfaces import LicenseRecord, LicenseStatus, TenantConfig
from ..registry.dependency_resolver import ActivationValidation, UnknownModuleError
from ..registry.module_registry import ModuleRegistry


class AvailabilityReason(Enum):
    CORE_MODULE = "core_module"
    MODULE_NOT_FOUND = "module_not_found"
    MODULE_DISABLED = "module_disabled"
    LICENSE_INVALID = "license_invalid"
    FEATURE_NOT_LICENSED = "feature_not_licensed"
    AVAILABLE = "available"


@dataclass(frozen=True)
class Availability:
    module_key: str
    available: bool
    reason: AvailabilityReason
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class TenantEntitlement:
    """Partition dérivée (jamais persistée) des modules d'un tenant."""

    tenant_id: str
    core_modules: Tuple[str, ...]
    available_modules: Tuple[str, ...]
    unavailable_modules: Mapping[str, Availability]
    unauthorized_usage: Tuple[str, ...]

    def is_available(self, module_key: str) -> bool:
        return module_key in self.core_modules or module_key in self.available_modules


def license_invalid_cause(license: Optional[LicenseRecord], at: datetime) -> Optional[str]:
    """Cause d'invalidité de la licence à l'instant at (None si utilisable)."""
    if license is None:
        return "absent"
    if license.tamper_detected:
        return "tampered"
    if license.status == LicenseStatus.REVOKED:
        return "revoked"
    if license.status != LicenseStatus.ACTIVE or license.is_expired(at):
        return "expired"
    return None


class EntitlementChecker:
    """
    Disponibilité des modules pour un tenant.

    Example:
        checker = EntitlementChecker(registry)
        checker.check_availability(tenant, license, "clinic", now).reason
        # AvailabilityReason.FEATURE_NOT_LICENSED
    """

    def __init__(self, registry: ModuleRegistry):
        self.registry = registry

    def check_availability(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        module_key: str,
        at: datetime,
    ) -> Availability:
        config = self.registry.get(module_key)
        if config is not None and config.core:
            return Availability(module_key, True, AvailabilityReason.CORE_MODULE)
        if config is None:
            return Availability(module_key, False, AvailabilityReason.MODULE_NOT_FOUND)
        if module_key not in tenant.enabled_modules:
            return Availability(module_key, False, AvailabilityReason.MODULE_DISABLED)

        if config.requires_license:
            cause = license_invalid_cause(license, at)
            if cause is not None:
                return Availability(
                    module_key,
                    False,
                    AvailabilityReason.LICENSE_INVALID,
                    MappingProxyType({"cause": cause}),
                )
            if not license.features.covers(module_key):
                return Availability(
                    module_key,
                    False,
                    AvailabilityReason.FEATURE_NOT_LICENSED,
                    MappingProxyType({"licensedModules": list(license.features.modules)}),
                )

        return Availability(module_key, True, AvailabilityReason.AVAILABLE)

    def get_available_modules(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        at: datetime,
    ) -> TenantEntitlement:
        """Partitionne tous les modules du registre et calcule l'usage non autorisé."""
        core: List[str] = []
        available: List[str] = []
        unavailable: Dict[str, Availability] = {}

        for module_key in self.registry:
            result = self.check_availability(tenant, license, module_key, at)
            if result.reason == AvailabilityReason.CORE_MODULE:
                core.append(module_key)
            elif result.available:
                available.append(module_key)
            else:
                unavailable[module_key] = result

        authorized = set(core) | set(available)
        unauthorized = tuple(sorted(m for m in tenant.used_modules if m not in authorized))
        return TenantEntitlement(
            tenant_id=tenant.tenant_id,
            core_modules=tuple(core),
            available_modules=tuple(available),
            unavailable_modules=MappingProxyType(unavailable),
            unauthorized_usage=unauthorized,
        )

    def check_activation(
        self,
        tenant: TenantConfig,
        license: Optional[LicenseRecord],
        module_key: str,
        at: datetime,
    ) -> ActivationValidation:
        """
        Contrôle d'activation : couverture licence puis dépendances requises.

        Les modules core comptent toujours comme activés.

        Raises:
            UnknownModuleError: Module inconnu
            UnauthorizedModuleUsageError: Licence invalide ou module non licencié
            MissingDependencyError: Dépendances requises non activées
        """
        config = self.registry.get(module_key)
        if config is None:
            raise UnknownModuleError(module_key)

        if config.requires_license:
            cause = license_invalid_cause(license, at)
            if cause is not None:
                raise UnauthorizedModuleUsageError(tenant.tenant_id, module_key, AvailabilityReason.LICENSE_INVALID.value)
            if not license.features.covers(module_key):
                raise UnauthorizedModuleUsageError(
                    tenant.tenant_id, module_key, AvailabilityReason.FEATURE_NOT_LICENSED.value
                )

        enabled = set(tenant.enabled_modules) | set(self.registry.core_modules)
        return self.registry.resolver.require_activation(module_key, enabled, tenant.tenant_id)
