"""
Licensing - Compliance Analyzer

Compare la télémétrie d'usage aux quotas de la licence : violations typées,
score de conformité 0-100, recommandations.

Invariants:
    - Score borné à [0, 100]
    - Un quota None (illimité) ne produit ni violation ni pénalité
    - La pénalité d'utilisation > 90 % suit UtilizationPenaltyPolicy :
      FOLDED ne la compte que pour une ressource sans violation propre,
      ADDITIVE la cumule avec la violation
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .interfaces import IUsageMetricsProvider, LicenseRecord, UsageStats
from ..audit.audit_sink import AuditSink
from ..audit.interfaces import AuditSeverity
from ..core.interfaces import ComplianceSettings
from ..logging.structured_logger import StructuredLogger


class ViolationSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ComplianceLevel(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    NEEDS_IMPROVEMENT = "needs_improvement"
    POOR = "poor"


class UtilizationPenaltyPolicy(Enum):
    FOLDED = "folded"
    ADDITIVE = "additive"


@dataclass(frozen=True)
class Violation:
    type: str
    severity: ViolationSeverity
    message: str
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    impact: str = ""
    recommendation: str = ""
    resource: Optional[str] = None


@dataclass(frozen=True)
class ResourceUsage:
    """Usage d'une ressource ; utilization en pourcentage (None si illimitée)."""

    resource: str
    current: int
    limit: Optional[int]
    utilization: Optional[float]
    remaining: Optional[int]

    @property
    def within_limits(self) -> bool:
        return self.limit is None or self.current <= self.limit


@dataclass(frozen=True)
class ModuleCompliance:
    authorized_modules: Tuple[str, ...]
    used_modules: Tuple[str, ...]
    unauthorized_usage: Tuple[str, ...]
    unused_authorized_modules: Tuple[str, ...]


@dataclass(frozen=True)
class ActivationCompliance:
    current_activations: int
    max_activations: int

    @property
    def within_limits(self) -> bool:
        return self.current_activations <= self.max_activations

    @property
    def remaining(self) -> int:
        return self.max_activations - self.current_activations


@dataclass(frozen=True)
class UsageAnalysis:
    license_status: str
    is_valid: bool
    is_expired: bool
    days_until_expiry: int
    resources: Mapping[str, ResourceUsage]
    module_compliance: ModuleCompliance
    activation_compliance: ActivationCompliance


@dataclass(frozen=True)
class Recommendation:
    title: str
    description: str
    priority: str
    category: str
    impact: str
    action_items: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplianceReport:
    """Rapport de conformité (non autoritatif) pour un tenant et une période."""

    tenant_id: str
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    compliance_score: int
    compliance_level: ComplianceLevel
    violations: Tuple[Violation, ...]
    usage_analysis: UsageAnalysis
    recommendations: Tuple[Recommendation, ...]

    @property
    def days_until_expiry(self) -> int:
        return self.usage_analysis.days_until_expiry

    @property
    def module_compliance(self) -> ModuleCompliance:
        return self.usage_analysis.module_compliance

    @property
    def activation_compliance(self) -> ActivationCompliance:
        return self.usage_analysis.activation_compliance

    def violations_by_severity(self, severity: ViolationSeverity) -> List[Violation]:
        return [v for v in self.violations if v.severity == severity]


@dataclass(frozen=True)
class _ResourceRule:
    resource: str
    prefix: str
    label: str
    usage_attr: str
    limit_attr: str
    warning_attr: str
    critical_attr: str
    exceeded_impact: str
    exceeded_recommendation: str


RESOURCE_RULES: Tuple[_ResourceRule, ...] = (
    _ResourceRule(
        "users", "user", "User", "current_users", "max_users", "user_warning", "user_critical",
        "License violation - immediate action required",
        "Upgrade license or reduce user count",
    ),
    _ResourceRule(
        "storage", "storage", "Storage", "current_storage", "max_storage", "storage_warning", "storage_critical",
        "License violation - data operations may be restricted",
        "Upgrade license or implement data cleanup",
    ),
    _ResourceRule(
        "api_calls", "api", "API", "current_api_calls_this_month", "max_api_calls_per_month",
        "api_warning", "api_critical",
        "API throttling may be applied",
        "Upgrade license or optimize API usage",
    ),
)

SEVERITY_PENALTIES = {
    ViolationSeverity.CRITICAL: 20,
    ViolationSeverity.WARNING: 5,
}
DEFAULT_PENALTY = 2
HIGH_UTILIZATION_PERCENT = 90.0
HIGH_UTILIZATION_PENALTY = 5
CLEAN_BONUS = 10
LONG_TERM_BONUS = 5
LONG_TERM_DAYS = 90


def days_until_expiry(expires_at: datetime, now: datetime) -> int:
    return math.ceil((expires_at - now) / timedelta(days=1))


class ComplianceAnalyzer:
    """
    Analyse de conformité licence.

    Example:
        analyzer = ComplianceAnalyzer(ComplianceSettings())
        violations = analyzer.identify_violations(license, UsageStats(current_users=96), now)
        analyzer.compliance_score(violations, analyzer.analyze_usage(license, usage, now))
    """

    def __init__(
        self,
        settings: Optional[ComplianceSettings] = None,
        penalty_policy: UtilizationPenaltyPolicy = UtilizationPenaltyPolicy.FOLDED,
        exempt_modules: Iterable[str] = (),
        audit_sink: Optional[AuditSink] = None,
        metrics_provider: Optional[IUsageMetricsProvider] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            settings: Seuils de conformité
            penalty_policy: Traitement de la pénalité d'utilisation > 90 %
            exempt_modules: Modules jamais comptés comme usage non autorisé (core)
            audit_sink: Journal d'audit (generate_report)
            metrics_provider: Télémétrie (build_report)
            logger: Logger structuré
            clock: Horloge UTC (injectable pour tests)
        """
        self.settings = settings or ComplianceSettings()
        self.penalty_policy = penalty_policy
        self.exempt_modules = frozenset(exempt_modules)
        self._audit = audit_sink
        self._metrics = metrics_provider
        self._logger = logger or StructuredLogger("hrsm.compliance")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ──────────────────────────────────────────────────────────────────────
    # Analyse
    # ──────────────────────────────────────────────────────────────────────

    def analyze_usage(self, license: LicenseRecord, usage: UsageStats, now: Optional[datetime] = None) -> UsageAnalysis:
        moment = now or self._clock()
        resources = {
            rule.resource: self._resource_usage(
                rule.resource, getattr(usage, rule.usage_attr), getattr(license.features, rule.limit_attr)
            )
            for rule in RESOURCE_RULES
        }
        authorized = license.features.modules
        used = tuple(usage.module_usage)
        return UsageAnalysis(
            license_status=license.status.value,
            is_valid=license.is_usable(moment),
            is_expired=license.is_expired(moment),
            days_until_expiry=days_until_expiry(license.expires_at, moment),
            resources=MappingProxyType(resources),
            module_compliance=ModuleCompliance(
                authorized_modules=tuple(authorized),
                used_modules=used,
                unauthorized_usage=self._unauthorized(license, used),
                unused_authorized_modules=tuple(m for m in authorized if m not in usage.module_usage),
            ),
            activation_compliance=ActivationCompliance(len(license.activations), license.max_activations),
        )

    def identify_violations(
        self, license: LicenseRecord, usage: UsageStats, now: Optional[datetime] = None
    ) -> List[Violation]:
        moment = now or self._clock()
        violations: List[Violation] = []

        days = days_until_expiry(license.expires_at, moment)
        if days <= 0:
            violations.append(Violation(
                type="license_expired",
                severity=ViolationSeverity.CRITICAL,
                message="License has expired",
                details=MappingProxyType({"expiresAt": license.expires_at, "daysExpired": abs(days)}),
                impact="System access may be restricted",
                recommendation="Renew license immediately",
            ))
        elif days <= self.settings.expiry_critical_days:
            violations.append(Violation(
                type="license_expiring_critical",
                severity=ViolationSeverity.CRITICAL,
                message=f"License expires in {days} days",
                details=MappingProxyType({"expiresAt": license.expires_at, "daysUntilExpiry": days}),
                impact="System will become inaccessible soon",
                recommendation="Renew license immediately",
            ))
        elif days <= self.settings.expiry_warning_days:
            violations.append(Violation(
                type="license_expiring_warning",
                severity=ViolationSeverity.WARNING,
                message=f"License expires in {days} days",
                details=MappingProxyType({"expiresAt": license.expires_at, "daysUntilExpiry": days}),
                impact="Plan for license renewal",
                recommendation="Schedule license renewal",
            ))

        for rule in RESOURCE_RULES:
            violation = self._resource_violation(
                rule,
                self._resource_usage(
                    rule.resource, getattr(usage, rule.usage_attr), getattr(license.features, rule.limit_attr)
                ),
            )
            if violation is not None:
                violations.append(violation)

        for module_key in self._unauthorized(license, tuple(usage.module_usage)):
            violations.append(Violation(
                type="unauthorized_module_usage",
                severity=ViolationSeverity.CRITICAL,
                message=f"Unauthorized module usage: {module_key}",
                details=MappingProxyType({
                    "module": module_key,
                    "usage": dict(usage.module_usage[module_key]),
                    "authorizedModules": list(license.features.modules),
                }),
                impact="License violation - module access should be restricted",
                recommendation="Upgrade license to include module or disable module access",
            ))

        current_activations = len(license.activations)
        if current_activations > license.max_activations:
            violations.append(Violation(
                type="activation_limit_exceeded",
                severity=ViolationSeverity.CRITICAL,
                message=(
                    f"License activations ({current_activations}) exceed limit ({license.max_activations})"
                ),
                details=MappingProxyType({
                    "currentActivations": current_activations,
                    "maxActivations": license.max_activations,
                    "excess": current_activations - license.max_activations,
                }),
                impact="License violation - some activations should be revoked",
                recommendation="Revoke excess activations or upgrade license",
            ))

        return violations

    def compliance_score(self, violations: Iterable[Violation], analysis: UsageAnalysis) -> int:
        """
        100 - 20/critique - 5/warning - 2/autre - pénalités d'utilisation
        + 10 sans violation + 5 si expiration > 90 jours, borné à [0, 100].
        """
        violations = list(violations)
        score = 100
        for violation in violations:
            score -= SEVERITY_PENALTIES.get(violation.severity, DEFAULT_PENALTY)

        violated_resources = {v.resource for v in violations if v.resource is not None}
        for resource, usage in analysis.resources.items():
            if usage.utilization is None or usage.utilization <= HIGH_UTILIZATION_PERCENT:
                continue
            if self.penalty_policy == UtilizationPenaltyPolicy.ADDITIVE or resource not in violated_resources:
                score -= HIGH_UTILIZATION_PENALTY

        if analysis.days_until_expiry > LONG_TERM_DAYS:
            score += LONG_TERM_BONUS
        if not violations:
            score += CLEAN_BONUS
        return max(0, min(100, score))

    @staticmethod
    def compliance_level(score: float) -> ComplianceLevel:
        if score >= 95:
            return ComplianceLevel.EXCELLENT
        if score >= 85:
            return ComplianceLevel.GOOD
        if score >= 70:
            return ComplianceLevel.ACCEPTABLE
        if score >= 50:
            return ComplianceLevel.NEEDS_IMPROVEMENT
        return ComplianceLevel.POOR

    def generate_recommendations(self, analysis: UsageAnalysis) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        days = analysis.days_until_expiry
        if days <= self.settings.expiry_warning_days:
            recommendations.append(Recommendation(
                title="License Renewal Required",
                description=f"License expires in {days} days. Initiate renewal process immediately.",
                priority="critical" if days <= self.settings.expiry_critical_days else "high",
                category="license_management",
                impact="System access will be lost if license expires",
                action_items=(
                    "Contact license provider for renewal",
                    "Prepare renewal documentation",
                    "Schedule renewal before expiry date",
                ),
            ))

        capacity = {
            "users": ("User Limit Management", "capacity_planning", "Risk of exceeding user limits", (
                "Review inactive user accounts",
                "Consider license upgrade",
                "Implement user lifecycle management",
            )),
            "storage": ("Storage Management", "storage_optimization", "Risk of exceeding storage limits", (
                "Implement data archival policies",
                "Clean up unnecessary files",
                "Consider license upgrade for more storage",
            )),
            "api_calls": ("API Usage Optimization", "api_optimization", "Risk of API throttling", (
                "Implement API caching",
                "Optimize API call patterns",
                "Consider license upgrade for higher API limits",
            )),
        }
        for rule in RESOURCE_RULES:
            usage = analysis.resources[rule.resource]
            warning = getattr(self.settings, rule.warning_attr)
            critical = getattr(self.settings, rule.critical_attr)
            if usage.utilization is None or usage.utilization <= warning:
                continue
            title, category, impact, actions = capacity[rule.resource]
            recommendations.append(Recommendation(
                title=title,
                description=f"{rule.label} utilization is at {usage.utilization:.1f}%.",
                priority="critical" if usage.utilization > critical else "medium",
                category=category,
                impact=impact,
                action_items=actions,
            ))

        modules = analysis.module_compliance
        if modules.unauthorized_usage:
            recommendations.append(Recommendation(
                title="Unauthorized Module Usage",
                description=f"{len(modules.unauthorized_usage)} modules are being used without proper licensing.",
                priority="critical",
                category="license_compliance",
                impact="License violation",
                action_items=(
                    "Upgrade license to include required modules",
                    "Disable unauthorized module access",
                    "Review module usage policies",
                ),
            ))
        if modules.unused_authorized_modules:
            recommendations.append(Recommendation(
                title="Unused Licensed Modules",
                description=f"{len(modules.unused_authorized_modules)} licensed modules are not being used.",
                priority="low",
                category="cost_optimization",
                impact="Potential cost savings",
                action_items=(
                    "Review module necessity",
                    "Consider downgrading license",
                    "Train users on available modules",
                ),
            ))
        return recommendations

    # ──────────────────────────────────────────────────────────────────────
    # Rapports
    # ──────────────────────────────────────────────────────────────────────

    def generate_report(
        self,
        license: LicenseRecord,
        usage: UsageStats,
        period: Optional[Tuple[datetime, datetime]] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceReport:
        """
        Rapport complet ; les dépassements et l'usage non autorisé sont
        audités si un AuditSink est configuré.
        """
        moment = now or self._clock()
        period_start, period_end = period or (moment - timedelta(days=30), moment)
        analysis = self.analyze_usage(license, usage, moment)
        violations = self.identify_violations(license, usage, moment)
        score = self.compliance_score(violations, analysis)

        report = ComplianceReport(
            tenant_id=license.tenant_id,
            period_start=period_start,
            period_end=period_end,
            generated_at=moment,
            compliance_score=score,
            compliance_level=self.compliance_level(score),
            violations=tuple(violations),
            usage_analysis=analysis,
            recommendations=tuple(self.generate_recommendations(analysis)),
        )
        self._audit_report(report)
        self._logger.info(
            "Compliance report generated",
            tenant_id=license.tenant_id,
            score=score,
            level=report.compliance_level.value,
            violation_count=len(violations),
        )
        return report

    async def build_report(
        self,
        license: LicenseRecord,
        period: Optional[Tuple[datetime, datetime]] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceReport:
        """
        Rapport à partir du fournisseur de métriques.

        Raises:
            ValueError: Aucun fournisseur de métriques configuré
        """
        if self._metrics is None:
            raise ValueError("Aucun fournisseur de métriques configuré")
        usage = await self._metrics.get_usage(license.tenant_id)
        return self.generate_report(license, usage, period, now)

    # ──────────────────────────────────────────────────────────────────────
    # Internes
    # ──────────────────────────────────────────────────────────────────────

    def _unauthorized(self, license: LicenseRecord, used: Iterable[str]) -> Tuple[str, ...]:
        return tuple(
            m for m in used if not license.features.covers(m) and m not in self.exempt_modules
        )

    @staticmethod
    def _resource_usage(resource: str, current: int, limit: Optional[int]) -> ResourceUsage:
        if limit is None:
            return ResourceUsage(resource, current, None, None, None)
        if limit == 0:
            utilization = 0.0 if current == 0 else None
        else:
            utilization = current / limit * 100
        return ResourceUsage(resource, current, limit, utilization, limit - current)

    def _resource_violation(self, rule: _ResourceRule, usage: ResourceUsage) -> Optional[Violation]:
        if usage.limit is None:
            return None
        details = MappingProxyType({
            "current": usage.current,
            "limit": usage.limit,
            "utilization": usage.utilization,
        })
        if usage.current > usage.limit:
            return Violation(
                type=f"{rule.prefix}_limit_exceeded",
                severity=ViolationSeverity.CRITICAL,
                message=f"{rule.label} count ({usage.current}) exceeds license limit ({usage.limit})",
                details=MappingProxyType({**details, "excess": usage.current - usage.limit}),
                impact=rule.exceeded_impact,
                recommendation=rule.exceeded_recommendation,
                resource=rule.resource,
            )
        if usage.utilization is None:
            return None
        critical = getattr(self.settings, rule.critical_attr)
        warning = getattr(self.settings, rule.warning_attr)
        if usage.utilization >= critical:
            return Violation(
                type=f"{rule.prefix}_limit_critical",
                severity=ViolationSeverity.CRITICAL,
                message=f"{rule.label} utilization at {usage.utilization:.1f}% of license limit",
                details=details,
                impact=f"Risk of exceeding {rule.label.lower()} limit",
                recommendation="Plan license upgrade",
                resource=rule.resource,
            )
        if usage.utilization >= warning:
            return Violation(
                type=f"{rule.prefix}_limit_warning",
                severity=ViolationSeverity.WARNING,
                message=f"{rule.label} utilization at {usage.utilization:.1f}% of license limit",
                details=details,
                impact=f"Monitor {rule.label.lower()} growth",
                recommendation="Consider license upgrade planning",
                resource=rule.resource,
            )
        return None

    def _audit_report(self, report: ComplianceReport) -> None:
        if self._audit is None:
            return
        tenant_id = report.tenant_id
        for violation in report.violations:
            if violation.resource is not None:
                usage = report.usage_analysis.resources[violation.resource]
                percentage = round(usage.utilization, 2) if usage.utilization is not None else None
                if violation.type.endswith("_exceeded"):
                    self._audit.log_limit_exceeded(
                        tenant_id, None, violation.resource, usage.current, usage.limit, percentage
                    )
                else:
                    self._audit.log_limit_warning(
                        tenant_id, None, violation.resource, usage.current, usage.limit, percentage
                    )
            elif violation.type == "unauthorized_module_usage":
                self._audit.log_validation_failure(
                    tenant_id,
                    "unauthorized_module_usage",
                    module_key=violation.details["module"],
                    severity=AuditSeverity.CRITICAL,
                )
