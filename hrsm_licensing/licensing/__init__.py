"""
Licensing: licences signées, état hors ligne, droits modules et conformité.
"""
from .interfaces import (
    Activation,
    ILicenseRepository,
    IRemoteLicenseValidator,
    IUsageMetricsProvider,
    LicenseFeatures,
    LicenseIntegrity,
    LicenseRecord,
    LicenseStatus,
    OfflineSettings,
    RemoteValidationResult,
    TenantConfig,
    UsageStats,
)
from .errors import (
    ActivationLimitExceededError,
    ExpiredLicenseError,
    LicenseNotFoundError,
    LicenseRevokedError,
    OfflineGraceExpiredError,
    RemoteValidationRejectedError,
    SignatureMismatchError,
    TamperDetectedError,
    UnauthorizedModuleUsageError,
    ValidationStructureError,
)
from .signature_service import SignatureService, license_payload
from .license_file import (
    LicenseArtifact,
    ModuleGrant,
    StructureValidation,
    days_until_expiration,
    features_from_artifact,
    generate_license_file,
    generate_license_key,
    is_license_expired,
    parse_license_file,
    validate_license_structure,
)
from .offline_grace import OfflineGraceTracker, OfflineState, OfflineStatus, OfflineTransition
from .repository import ConcurrentUpdateError, InMemoryLicenseRepository
from .remote_validator import HttpRemoteLicenseValidator, RemoteValidatorError
from .license_store import LicenseStore, LicenseStoreError, LicenseValidation
from .entitlement_checker import (
    Availability,
    AvailabilityReason,
    EntitlementChecker,
    TenantEntitlement,
    license_invalid_cause,
)
from .module_gate import ModuleAccessDeniedError, ModuleDeactivationError, ModuleGate
from .compliance_analyzer import (
    ActivationCompliance,
    ComplianceAnalyzer,
    ComplianceLevel,
    ComplianceReport,
    ModuleCompliance,
    Recommendation,
    ResourceUsage,
    UsageAnalysis,
    UtilizationPenaltyPolicy,
    Violation,
    ViolationSeverity,
    days_until_expiry,
)
from .usage_limits import LimitCheckResult, QuotaExceededError, QuotaPolicy, UsageLimitChecker

__all__ = [
    # Interfaces
    "ILicenseRepository",
    "IRemoteLicenseValidator",
    "IUsageMetricsProvider",
    # Data classes
    "LicenseRecord",
    "LicenseFeatures",
    "LicenseIntegrity",
    "OfflineSettings",
    "Activation",
    "TenantConfig",
    "UsageStats",
    "RemoteValidationResult",
    "LicenseArtifact",
    "ModuleGrant",
    "StructureValidation",
    "LicenseValidation",
    "OfflineStatus",
    "OfflineTransition",
    "Availability",
    "TenantEntitlement",
    "Violation",
    "ResourceUsage",
    "ModuleCompliance",
    "ActivationCompliance",
    "UsageAnalysis",
    "Recommendation",
    "ComplianceReport",
    "LimitCheckResult",
    # Enums
    "LicenseStatus",
    "OfflineState",
    "AvailabilityReason",
    "ViolationSeverity",
    "ComplianceLevel",
    "UtilizationPenaltyPolicy",
    "QuotaPolicy",
    # Implementations
    "SignatureService",
    "license_payload",
    "OfflineGraceTracker",
    "InMemoryLicenseRepository",
    "HttpRemoteLicenseValidator",
    "LicenseStore",
    "EntitlementChecker",
    "ModuleGate",
    "ComplianceAnalyzer",
    "UsageLimitChecker",
    "license_invalid_cause",
    "days_until_expiry",
    # License files
    "parse_license_file",
    "validate_license_structure",
    "generate_license_file",
    "generate_license_key",
    "days_until_expiration",
    "is_license_expired",
    "features_from_artifact",
    # Exceptions
    "ValidationStructureError",
    "SignatureMismatchError",
    "TamperDetectedError",
    "ExpiredLicenseError",
    "UnauthorizedModuleUsageError",
    "OfflineGraceExpiredError",
    "LicenseNotFoundError",
    "LicenseRevokedError",
    "ActivationLimitExceededError",
    "RemoteValidationRejectedError",
    "ConcurrentUpdateError",
    "RemoteValidatorError",
    "LicenseStoreError",
    "ModuleAccessDeniedError",
    "ModuleDeactivationError",
    "QuotaExceededError",
]
