"""
Registry: catalogue des modules et graphe des dépendances.
"""
from .interfaces import (
    TIER_ORDER,
    CommercialInfo,
    ModuleConfig,
    ModuleDependencies,
    ModulePricing,
    PricingTier,
    TierPricing,
)
from .catalog import DEFAULT_CATALOG
from .dependency_resolver import (
    ActivationValidation,
    CircularDependencyError,
    DeactivationValidation,
    DependencyResolver,
    GraphValidation,
    MissingDependencyError,
    TransitiveDependencies,
    UnknownModuleError,
    find_cycles,
)
from .module_registry import (
    ModuleRegistry,
    RegistryValidationError,
    load_default_registry,
    load_registry,
    parse_module_config,
    validate_module_config,
)

__all__ = [
    # Data classes
    "ModuleConfig",
    "CommercialInfo",
    "ModulePricing",
    "TierPricing",
    "ModuleDependencies",
    "ActivationValidation",
    "DeactivationValidation",
    "GraphValidation",
    "TransitiveDependencies",
    # Enums
    "PricingTier",
    "TIER_ORDER",
    # Catalog
    "DEFAULT_CATALOG",
    # Implementations
    "ModuleRegistry",
    "DependencyResolver",
    "load_registry",
    "load_default_registry",
    "parse_module_config",
    "validate_module_config",
    "find_cycles",
    # Exceptions
    "CircularDependencyError",
    "MissingDependencyError",
    "UnknownModuleError",
    "RegistryValidationError",
]
