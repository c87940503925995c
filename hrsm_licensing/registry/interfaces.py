"""
Registry - Interfaces

Types du catalogue de modules : métadonnées commerciales, grilles tarifaires,
formes de quotas et dépendances.

Invariants:
    - Mêmes clés de limites pour les trois tiers d'un module
    - Prix non décroissants starter <= business <= enterprise
    - Un module ne se liste jamais lui-même comme dépendance
    - Graphe des dépendances requises acyclique
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


class PricingTier(Enum):
    """Niveau commercial, du moins au plus complet."""
    STARTER = "starter"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]


_TIER_RANKS = {
    PricingTier.STARTER: 1,
    PricingTier.BUSINESS: 2,
    PricingTier.ENTERPRISE: 3,
}

TIER_ORDER: Tuple[PricingTier, ...] = (
    PricingTier.STARTER,
    PricingTier.BUSINESS,
    PricingTier.ENTERPRISE,
)


@dataclass(frozen=True)
class TierPricing:
    """
    Prix et quotas d'un tier.

    None signifie "sur devis" pour un prix et "illimité" pour une limite.
    """
    monthly: Optional[float]
    on_premise: Optional[float]
    limits: Mapping[str, Optional[int]] = field(default_factory=lambda: MappingProxyType({}))

    def limit(self, name: str) -> Optional[int]:
        return self.limits.get(name)


@dataclass(frozen=True)
class ModulePricing:
    """Grille des trois tiers."""
    starter: TierPricing
    business: TierPricing
    enterprise: TierPricing

    def for_tier(self, tier: PricingTier) -> TierPricing:
        return getattr(self, tier.value)

    def tiers(self) -> Tuple[Tuple[PricingTier, TierPricing], ...]:
        return tuple((tier, self.for_tier(tier)) for tier in TIER_ORDER)


@dataclass(frozen=True)
class CommercialInfo:
    description: str
    target_segment: str
    value_proposition: str
    pricing: ModulePricing


@dataclass(frozen=True)
class ModuleDependencies:
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ModuleConfig:
    """
    Métadonnées d'un module licenciable.

    Un module core (hr-core) est toujours actif et ne requiert pas de
    couverture par la licence.
    """
    key: str
    display_name: str
    commercial: CommercialInfo
    dependencies: ModuleDependencies = field(default_factory=ModuleDependencies)
    version: str = "1.0.0"
    features: Mapping[str, PricingTier] = field(default_factory=lambda: MappingProxyType({}))
    core: bool = False

    @property
    def requires_license(self) -> bool:
        return not self.core

    def limit_keys(self) -> Dict[PricingTier, frozenset]:
        """Clés de limites par tier."""
        return {tier: frozenset(pricing.limits) for tier, pricing in self.commercial.pricing.tiers()}
