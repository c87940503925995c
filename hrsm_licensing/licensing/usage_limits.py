"""
Licensing - Usage Limit Checker

Contrôle des quotas par module (employés, stockage, appels API, ...) avant
une opération consommatrice.

Invariants:
    - Une limite absente, None ou 0 vaut "illimité"
    - Usage projeté = usage courant + quantité demandée
    - Dépassement toujours audité ; levée uniquement en politique ENFORCE
    - Avertissement à 80 %, au plus une fois par 24 h et par
      (tenant, module, limite)
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple, Union

from ..audit.audit_sink import AuditSink
from ..logging.structured_logger import StructuredLogger
from ..registry.interfaces import PricingTier
from ..registry.module_registry import ModuleRegistry


class QuotaPolicy(Enum):
    ADVISORY = "advisory"
    ENFORCE = "enforce"


class QuotaExceededError(Exception):
    """Quota dépassé en politique ENFORCE."""

    def __init__(self, tenant_id: str, module_key: str, limit_type: str, projected_usage: int, limit: int):
        self.tenant_id = tenant_id
        self.module_key = module_key
        self.limit_type = limit_type
        self.projected_usage = projected_usage
        self.limit = limit
        super().__init__(
            f"Quota '{limit_type}' du module '{module_key}' dépassé pour '{tenant_id}' "
            f"({projected_usage}/{limit})"
        )


@dataclass(frozen=True)
class LimitCheckResult:
    allowed: bool
    module_key: str
    limit_type: str
    current_usage: int
    projected_usage: int
    limit: Optional[int]
    percentage: Optional[float]
    warning: bool = False
    exceeded: bool = False

    @property
    def unlimited(self) -> bool:
        return self.limit is None


class UsageLimitChecker:
    """
    Quotas par module.

    La limite vient de `limits` (ex. ModuleGrant.limits d'un artefact) ou, à
    défaut, de la grille du tier dans le registre.

    Example:
        checker = UsageLimitChecker(registry, audit_sink)
        result = checker.check_limit("acme", "attendance", "devices", 1, requested_amount=1)
        result.warning  # True : 2/2 appareils en starter
    """

    WARNING_THRESHOLD: float = 80.0
    WARNING_DEDUP_WINDOW: timedelta = timedelta(hours=24)

    def __init__(
        self,
        registry: ModuleRegistry,
        audit_sink: AuditSink,
        policy: QuotaPolicy = QuotaPolicy.ADVISORY,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._registry = registry
        self._audit = audit_sink
        self.policy = policy
        self._logger = logger or StructuredLogger("hrsm.usage_limits")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_warnings: Dict[Tuple[str, str, str], datetime] = {}
        self._lock = threading.Lock()

    def resolve_limit(
        self,
        module_key: str,
        limit_type: str,
        tier: Union[PricingTier, str] = PricingTier.STARTER,
        limits: Optional[Mapping[str, Optional[int]]] = None,
    ) -> Optional[int]:
        """
        Limite effective (None = illimité).

        Raises:
            UnknownModuleError: Module inconnu
        """
        self._registry.require(module_key)
        if limits is not None:
            value = limits.get(limit_type)
        else:
            value = self._registry.pricing(module_key, tier).limit(limit_type)
        return value or None

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
        """
        Vérifie qu'une opération de requested_amount reste dans le quota.

        Raises:
            UnknownModuleError: Module inconnu
            QuotaExceededError: Dépassement en politique ENFORCE (après audit)
            ValueError: Usage ou quantité négatifs
        """
        if current_usage < 0 or requested_amount < 0:
            raise ValueError("current_usage et requested_amount doivent être >= 0")

        projected = current_usage + requested_amount
        if self._registry.is_core(module_key):
            return LimitCheckResult(True, module_key, limit_type, current_usage, projected, None, None)

        limit = self.resolve_limit(module_key, limit_type, tier, limits)
        if limit is None:
            return LimitCheckResult(True, module_key, limit_type, current_usage, projected, None, None)

        percentage = round(projected / limit * 100, 2)
        if projected > limit:
            self._audit.log_limit_exceeded(tenant_id, module_key, limit_type, projected, limit, percentage)
            self._logger.warn(
                "Usage limit exceeded",
                tenant_id=tenant_id,
                module_key=module_key,
                limit_type=limit_type,
                projected=projected,
                limit=limit,
            )
            if self.policy == QuotaPolicy.ENFORCE:
                raise QuotaExceededError(tenant_id, module_key, limit_type, projected, limit)
            return LimitCheckResult(
                False, module_key, limit_type, current_usage, projected, limit, percentage, exceeded=True
            )

        warning = percentage >= self.WARNING_THRESHOLD
        if warning and self._should_warn(tenant_id, module_key, limit_type):
            self._audit.log_limit_warning(tenant_id, module_key, limit_type, projected, limit, percentage)
        return LimitCheckResult(
            True, module_key, limit_type, current_usage, projected, limit, percentage, warning=warning
        )

    def _should_warn(self, tenant_id: str, module_key: str, limit_type: str) -> bool:
        now = self._clock()
        key = (tenant_id, module_key, limit_type)
        with self._lock:
            last = self._last_warnings.get(key)
            if last is not None and now - last < self.WARNING_DEDUP_WINDOW:
                return False
            self._last_warnings[key] = now
            return True
