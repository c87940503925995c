"""
Registry - Module Registry

Catalogue immuable des modules licenciables, construit une seule fois au
démarrage par load_registry puis injecté dans les consommateurs.

Invariants:
    - Configs validées à la construction (toutes les erreurs rapportées)
    - Références de dépendances connues, graphe requis acyclique
    - Aucune mutation après chargement
"""
import re
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .catalog import DEFAULT_CATALOG
from .dependency_resolver import (
    CircularDependencyError,
    DependencyResolver,
    UnknownModuleError,
    find_cycles,
)
from .interfaces import (
    TIER_ORDER,
    CommercialInfo,
    ModuleConfig,
    ModuleDependencies,
    ModulePricing,
    PricingTier,
    TierPricing,
)
from ..logging.structured_logger import StructuredLogger


class RegistryValidationError(Exception):
    """Catalogue de modules invalide (fatal au démarrage)."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} erreur(s) de catalogue: " + "; ".join(self.errors))


MODULE_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")
UNBOUNDED_MARKERS = frozenset({"custom", "unlimited"})


# ══════════════════════════════════════════════════════════════════════════════
# PARSING
# ══════════════════════════════════════════════════════════════════════════════


def _parse_amount(value: Any, location: str, errors: List[str], integer: bool = False) -> Optional[float]:
    if isinstance(value, str) and value.lower() in UNBOUNDED_MARKERS:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"{location}: valeur numérique, 'custom' ou 'unlimited' attendue ({value!r})")
        return None
    if value < 0:
        errors.append(f"{location}: valeur négative ({value})")
        return None
    if integer:
        if isinstance(value, float) and not value.is_integer():
            errors.append(f"{location}: entier attendu ({value})")
            return None
        return int(value)
    return value


def _parse_tier(data: Any, location: str, errors: List[str]) -> TierPricing:
    if not isinstance(data, Mapping):
        errors.append(f"{location}: objet attendu")
        return TierPricing(monthly=None, on_premise=None)
    limits_raw = data.get("limits", {})
    if not isinstance(limits_raw, Mapping):
        errors.append(f"{location}.limits: objet attendu")
        limits_raw = {}
    limits = {
        str(name): _parse_amount(value, f"{location}.limits.{name}", errors, integer=True)
        for name, value in limits_raw.items()
    }
    return TierPricing(
        monthly=_parse_amount(data.get("monthly"), f"{location}.monthly", errors),
        on_premise=_parse_amount(data.get("onPremise"), f"{location}.onPremise", errors),
        limits=MappingProxyType(limits),
    )


def _parse_key_list(value: Any, location: str, errors: List[str]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        errors.append(f"{location}: liste de clés attendue")
        return ()
    return tuple(dict.fromkeys(value))


def parse_module_config(data: Mapping[str, Any]) -> ModuleConfig:
    """
    Construit un ModuleConfig depuis une config brute (catalogue ou YAML).

    Raises:
        RegistryValidationError: Toutes les erreurs de structure et d'invariants
    """
    errors: List[str] = []
    key = data.get("key")
    if not isinstance(key, str) or not MODULE_KEY_PATTERN.match(key):
        raise RegistryValidationError([f"clé de module invalide: {key!r}"])

    display_name = data.get("displayName")
    if not isinstance(display_name, str) or not display_name.strip():
        errors.append(f"{key}.displayName: obligatoire")
        display_name = key

    commercial = data.get("commercial")
    if not isinstance(commercial, Mapping):
        raise RegistryValidationError([f"{key}.commercial: objet obligatoire"])
    pricing_raw = commercial.get("pricing")
    if not isinstance(pricing_raw, Mapping):
        raise RegistryValidationError([f"{key}.commercial.pricing: objet obligatoire"])
    tiers = {
        tier: _parse_tier(pricing_raw.get(tier.value), f"{key}.pricing.{tier.value}", errors)
        for tier in TIER_ORDER
    }

    dependencies_raw = data.get("dependencies") or {}
    if not isinstance(dependencies_raw, Mapping):
        errors.append(f"{key}.dependencies: objet attendu")
        dependencies_raw = {}

    features: Dict[str, PricingTier] = {}
    features_raw = data.get("features") or {}
    if not isinstance(features_raw, Mapping):
        errors.append(f"{key}.features: objet attendu")
        features_raw = {}
    for name, feature in features_raw.items():
        tier_value = feature.get("tier") if isinstance(feature, Mapping) else feature
        try:
            features[str(name)] = PricingTier(tier_value)
        except ValueError:
            errors.append(f"{key}.features.{name}: tier invalide ({tier_value!r})")

    config = ModuleConfig(
        key=key,
        display_name=display_name,
        commercial=CommercialInfo(
            description=str(commercial.get("description", "")),
            target_segment=str(commercial.get("targetSegment", "")),
            value_proposition=str(commercial.get("valueProposition", "")),
            pricing=ModulePricing(
                starter=tiers[PricingTier.STARTER],
                business=tiers[PricingTier.BUSINESS],
                enterprise=tiers[PricingTier.ENTERPRISE],
            ),
        ),
        dependencies=ModuleDependencies(
            required=_parse_key_list(dependencies_raw.get("required"), f"{key}.dependencies.required", errors),
            optional=_parse_key_list(dependencies_raw.get("optional"), f"{key}.dependencies.optional", errors),
        ),
        version=str(data.get("version", "1.0.0")),
        features=MappingProxyType(features),
        core=bool(data.get("core", False)),
    )

    errors.extend(validate_module_config(config))
    if errors:
        raise RegistryValidationError(errors)
    return config


def validate_module_config(config: ModuleConfig) -> List[str]:
    """
    Vérifie les invariants d'un module.

    L'auto-dépendance n'est pas rapportée ici : c'est un cycle de longueur 1,
    détecté par find_cycles au chargement.
    """
    errors: List[str] = []

    key_sets = config.limit_keys()
    starter_keys = key_sets[PricingTier.STARTER]
    for tier, keys in key_sets.items():
        if keys != starter_keys:
            errors.append(
                f"{config.key}: limites du tier {tier.value} {sorted(keys)} "
                f"différentes du tier starter {sorted(starter_keys)}"
            )

    for attribute in ("monthly", "on_premise"):
        previous: Optional[float] = None
        previous_tier: Optional[PricingTier] = None
        for tier, pricing in config.commercial.pricing.tiers():
            current = getattr(pricing, attribute)
            if previous_tier is not None and not _is_non_decreasing(previous, current):
                errors.append(
                    f"{config.key}: prix {attribute} décroissant entre {previous_tier.value} et {tier.value}"
                )
            previous, previous_tier = current, tier

    overlap = set(config.dependencies.required) & set(config.dependencies.optional)
    if overlap:
        errors.append(f"{config.key}: dépendances à la fois requises et optionnelles: {sorted(overlap)}")

    if config.core and config.dependencies.required:
        errors.append(f"{config.key}: un module core ne peut pas avoir de dépendance requise")

    return errors


def _is_non_decreasing(previous: Optional[float], current: Optional[float]) -> bool:
    # None = sur devis, borne supérieure
    if previous is None:
        return current is None
    if current is None:
        return True
    return current >= previous


# ══════════════════════════════════════════════════════════════════════════════
# REGISTRY
# ══════════════════════════════════════════════════════════════════════════════


class ModuleRegistry:
    """
    Catalogue immuable des modules, avec son DependencyResolver.

    Ne pas instancier directement : utiliser load_registry, qui garantit un
    graphe valide.

    Example:
        registry = load_registry(DEFAULT_CATALOG)
        registry.get("payroll").dependencies.required  # ("hr-core", "attendance")
    """

    def __init__(self, modules: Mapping[str, ModuleConfig]):
        self._modules: Mapping[str, ModuleConfig] = MappingProxyType(dict(modules))
        self._resolver = DependencyResolver(self._modules)

    @property
    def resolver(self) -> DependencyResolver:
        return self._resolver

    @property
    def modules(self) -> Mapping[str, ModuleConfig]:
        return self._modules

    def __contains__(self, module_key: object) -> bool:
        return module_key in self._modules

    def __iter__(self) -> Iterator[str]:
        return iter(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def keys(self) -> List[str]:
        return list(self._modules)

    def get(self, module_key: str) -> Optional[ModuleConfig]:
        return self._modules.get(module_key)

    def require(self, module_key: str) -> ModuleConfig:
        """
        Raises:
            UnknownModuleError: Module absent du catalogue
        """
        config = self._modules.get(module_key)
        if config is None:
            raise UnknownModuleError(module_key)
        return config

    @property
    def core_modules(self) -> Tuple[str, ...]:
        return tuple(key for key, config in self._modules.items() if config.core)

    @property
    def root_module(self) -> Optional[str]:
        return self._resolver.root_module

    def is_core(self, module_key: str) -> bool:
        config = self._modules.get(module_key)
        return bool(config and config.core)

    def pricing(self, module_key: str, tier: Union[PricingTier, str]) -> Optional[TierPricing]:
        """Grille d'un tier, None si module inconnu."""
        config = self._modules.get(module_key)
        if config is None:
            return None
        return config.commercial.pricing.for_tier(PricingTier(tier))

    def modules_by_tier(self, tier: Union[PricingTier, str]) -> Dict[str, TierPricing]:
        """Grille du tier pour chaque module licenciable (hors core)."""
        resolved = PricingTier(tier)
        return {
            key: config.commercial.pricing.for_tier(resolved)
            for key, config in self._modules.items()
            if not config.core
        }

    def has_feature_in_tier(self, module_key: str, feature: str, tier: Union[PricingTier, str]) -> bool:
        """True si feature est incluse dans tier (les tiers supérieurs héritent)."""
        config = self._modules.get(module_key)
        if config is None or feature not in config.features:
            return False
        return PricingTier(tier).rank >= config.features[feature].rank

    def features_for_tier(self, module_key: str, tier: Union[PricingTier, str]) -> List[str]:
        config = self.require(module_key)
        rank = PricingTier(tier).rank
        return [name for name, min_tier in config.features.items() if rank >= min_tier.rank]

    def marketing_summary(self) -> List[Dict[str, Any]]:
        """Résumé commercial de chaque module (prix d'appel = starter mensuel)."""
        return [
            {
                "key": config.key,
                "displayName": config.display_name,
                "description": config.commercial.description,
                "targetSegment": config.commercial.target_segment,
                "valueProposition": config.commercial.value_proposition,
                "startingPrice": config.commercial.pricing.starter.monthly,
                "features": list(config.features),
            }
            for config in self._modules.values()
        ]


def load_registry(
    configs: Iterable[Union[ModuleConfig, Mapping[str, Any]]],
    logger: Optional[StructuredLogger] = None,
) -> ModuleRegistry:
    """
    Construit et valide le registre (opération de démarrage).

    Étapes:
        1. Parsing + invariants par module (toutes les erreurs collectées)
        2. Unicité des clés, références de dépendances requises connues
        3. DFS trois couleurs : un cycle est fatal

    Raises:
        RegistryValidationError: Catalogue invalide
        CircularDependencyError: Graphe requis cyclique
    """
    log = logger or StructuredLogger("hrsm.registry")
    errors: List[str] = []
    modules: Dict[str, ModuleConfig] = {}

    for raw in configs:
        try:
            if isinstance(raw, ModuleConfig):
                config = raw
                invariant_errors = validate_module_config(config)
                if invariant_errors:
                    raise RegistryValidationError(invariant_errors)
            else:
                config = parse_module_config(raw)
        except RegistryValidationError as e:
            errors.extend(e.errors)
            continue
        if config.key in modules:
            errors.append(f"clé de module dupliquée: {config.key}")
            continue
        modules[config.key] = config

    for config in modules.values():
        for dep in config.dependencies.required:
            if dep not in modules:
                errors.append(f"{config.key}: dépendance requise inconnue '{dep}'")

    if errors:
        log.error("Module catalog rejected", error_count=len(errors), errors=errors)
        raise RegistryValidationError(errors)

    cycles = find_cycles({key: config.dependencies.required for key, config in modules.items()})
    if cycles:
        log.critical("Circular module dependency", cycles=cycles)
        raise CircularDependencyError(cycles)

    registry = ModuleRegistry(modules)
    for warning in registry.resolver.validate_graph().warnings:
        log.warn("Module catalog warning", warning=warning)
    log.info("Module registry loaded", module_count=len(registry), root_module=registry.root_module)
    return registry


def load_default_registry(logger: Optional[StructuredLogger] = None) -> ModuleRegistry:
    """Registre construit depuis le catalogue par défaut."""
    return load_registry(DEFAULT_CATALOG, logger=logger)
