"""
Logging - Sensitive Masker

Masquage des secrets de licence (secret HMAC, signatures, clés Fernet,
jetons du service distant) avant écriture dans les logs.
"""

from typing import Any, Dict, List, Optional

from .interfaces import ISensitiveMasker


class SensitiveMasker(ISensitiveMasker):
    """
    Masquage récursif des données sensibles.

    Example:
        masker = SensitiveMasker()
        masker.mask({"license_secret": "s3cr3t", "module_key": "payroll"})
        # {"license_secret": "***MASKED***", "module_key": "payroll"}
    """

    def __init__(self, additional_patterns: Optional[List[str]] = None) -> None:
        """
        Args:
            additional_patterns: Motifs supplémentaires à masquer
        """
        self._patterns: List[str] = [p.lower() for p in self.SENSITIVE_PATTERNS]
        for pattern in additional_patterns or []:
            self.add_pattern(pattern)

    @property
    def patterns(self) -> List[str]:
        """Retourne les motifs sensibles configurés."""
        return list(self._patterns)

    def mask(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Masque récursivement les valeurs dont la clé est sensible.

        Les dictionnaires et listes imbriqués sont parcourus ; les autres
        valeurs sont copiées telles quelles.
        """
        if not isinstance(data, dict):
            return data

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if self.is_sensitive_key(str(key)):
                result[key] = self.MASK_VALUE
            elif isinstance(value, dict):
                result[key] = self.mask(value)
            elif isinstance(value, (list, tuple)):
                result[key] = self._mask_list(value)
            else:
                result[key] = value
        return result

    def _mask_list(self, items: Any) -> List[Any]:
        result = []
        for item in items:
            if isinstance(item, dict):
                result.append(self.mask(item))
            elif isinstance(item, (list, tuple)):
                result.append(self._mask_list(item))
            else:
                result.append(item)
        return result

    def is_sensitive_key(self, key: str) -> bool:
        """Vérification case-insensitive par sous-chaîne."""
        if not key:
            return False
        key_lower = key.lower()
        return any(pattern in key_lower for pattern in self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """
        Ajoute un motif sensible.

        Raises:
            ValueError: Si pattern vide
        """
        if not pattern or not pattern.strip():
            raise ValueError("Pattern cannot be empty")
        pattern_lower = pattern.lower().strip()
        if pattern_lower not in self._patterns:
            self._patterns.append(pattern_lower)
