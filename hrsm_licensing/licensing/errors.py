"""
Licensing - Errors

Erreurs de rejet de licence partagées par le parsing d'artefacts, le store
et les contrôles d'accès. Chaque rejet est audité avant d'être levé.
"""
from datetime import datetime
from typing import List, Optional


class ValidationStructureError(Exception):
    """Fichier de licence malformé (rejeté avant la vérification de signature)."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Structure de licence invalide: " + "; ".join(self.errors))


class SignatureMismatchError(Exception):
    """Signature différente de la valeur recalculée (falsification)."""

    def __init__(self, message: str = "Signature de licence invalide", tenant_id: Optional[str] = None):
        self.tenant_id = tenant_id
        super().__init__(message)


class TamperDetectedError(SignatureMismatchError):
    """Copie chiffrée au repos altérée (hash d'intégrité différent)."""

    def __init__(self, tenant_id: Optional[str] = None):
        super().__init__(f"Altération détectée sur la copie chiffrée (tenant {tenant_id})", tenant_id)


class ExpiredLicenseError(Exception):
    """Licence expirée."""

    def __init__(self, expires_at: datetime, tenant_id: Optional[str] = None):
        self.expires_at = expires_at
        self.tenant_id = tenant_id
        super().__init__(f"Licence expirée depuis {expires_at.isoformat()}")


class UnauthorizedModuleUsageError(Exception):
    """Module utilisé ou activé sans couverture par la licence."""

    def __init__(self, tenant_id: str, module_key: str, reason: str = "feature_not_licensed"):
        self.tenant_id = tenant_id
        self.module_key = module_key
        self.reason = reason
        super().__init__(f"Module '{module_key}' non couvert par la licence du tenant '{tenant_id}' ({reason})")


class OfflineGraceExpiredError(Exception):
    """Période de grâce hors ligne écoulée : refus ferme."""

    def __init__(self, tenant_id: str, deadline: Optional[datetime]):
        self.tenant_id = tenant_id
        self.deadline = deadline
        when = deadline.isoformat() if deadline else "grâce désactivée"
        super().__init__(f"Période de grâce hors ligne expirée pour '{tenant_id}' ({when})")


class LicenseNotFoundError(Exception):
    """Aucune licence pour ce tenant."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Aucune licence pour le tenant '{tenant_id}'")


class LicenseRevokedError(Exception):
    """Licence révoquée."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Licence révoquée pour le tenant '{tenant_id}'")


class ActivationLimitExceededError(Exception):
    """Nombre maximal d'activations machine atteint."""

    def __init__(self, tenant_id: str, machine_id: str, max_activations: int):
        self.tenant_id = tenant_id
        self.machine_id = machine_id
        self.max_activations = max_activations
        super().__init__(
            f"Activation de '{machine_id}' refusée: limite de {max_activations} activation(s) atteinte"
        )


class RemoteValidationRejectedError(Exception):
    """Le service distant a répondu que la licence n'est pas valide."""

    def __init__(self, tenant_id: str, reason: Optional[str] = None):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Licence rejetée par le service distant ({reason or 'sans motif'})")
