"""
Licensing - License Repository

Persistance des enregistrements de licence avec contrôle de version
optimiste. L'implémentation en mémoire sert aux tests et aux déploiements
mono-processus ; un backend persistant implémente ILicenseRepository.
"""
import threading
from typing import Dict, List, Optional

from .interfaces import ILicenseRepository, LicenseRecord


class ConcurrentUpdateError(Exception):
    """Version stockée différente de la version attendue."""

    def __init__(self, tenant_id: str, expected_version: Optional[int], actual_version: Optional[int]):
        self.tenant_id = tenant_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Mise à jour concurrente pour '{tenant_id}': "
            f"version attendue {expected_version}, trouvée {actual_version}"
        )


class InMemoryLicenseRepository(ILicenseRepository):
    """
    Stockage en mémoire des licences (une par tenant).

    Les enregistrements sont immuables : get renvoie toujours un instantané
    cohérent, jamais un enregistrement partiellement mis à jour.
    """

    def __init__(self) -> None:
        self._records: Dict[str, LicenseRecord] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> Optional[LicenseRecord]:
        return self._records.get(tenant_id)

    def save(self, record: LicenseRecord, expected_version: Optional[int]) -> None:
        with self._lock:
            current = self._records.get(record.tenant_id)
            actual_version = current.version if current else None
            if actual_version != expected_version:
                raise ConcurrentUpdateError(record.tenant_id, expected_version, actual_version)
            self._records[record.tenant_id] = record

    def tenants(self) -> List[str]:
        return sorted(self._records)

    def __len__(self) -> int:
        return len(self._records)
