"""
HRSM Licensing - Config Loader Implementation
Charge la configuration moteur et le catalogue de modules depuis YAML.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from .interfaces import EngineSettings, IConfigLoader


class ConfigIntegrityError(Exception):
    """Erreur d'intégrité de configuration."""

    pass


class ConfigLoader(IConfigLoader):
    """
    Chargement de la configuration depuis fichiers YAML.

    Les secrets ne devraient pas vivre dans le fichier : les variables
    d'environnement listées dans ENV_OVERRIDES priment sur le YAML.
    """

    ENV_OVERRIDES: Dict[str, tuple] = {
        "HRSM_LICENSE_SECRET": ("license_secret",),
        "HRSM_ENCRYPTION_KEY": ("encryption_key",),
        "HRSM_REMOTE_URL": ("remote", "url"),
    }

    def __init__(
        self,
        config_path: str = "config/licensing.yaml",
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config_path = Path(config_path)
        self._environ = os.environ if environ is None else environ

    def load(self) -> EngineSettings:
        """
        Charge la configuration moteur.

        Returns:
            EngineSettings validés

        Raises:
            ConfigIntegrityError: Si fichier inexistant ou structure invalide
        """
        config = self._read_yaml(self.config_path)
        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigIntegrityError("Configuration doit être un objet YAML")

        self._apply_env_overrides(config)

        try:
            return EngineSettings.model_validate(config)
        except ValidationError as e:
            raise ConfigIntegrityError(f"Configuration invalide: {e}")

    def load_catalog(self, path: str) -> List[Dict[str, Any]]:
        """
        Charge un catalogue de modules.

        Le fichier contient une clé `modules` : liste de configs ou mapping
        clé -> config.

        Raises:
            ConfigIntegrityError: Si fichier inexistant ou structure invalide
        """
        data = self._read_yaml(Path(path))
        if not isinstance(data, dict) or "modules" not in data:
            raise ConfigIntegrityError("Catalogue: champ obligatoire manquant: modules")

        modules = data["modules"]
        if isinstance(modules, dict):
            entries = []
            for key, config in modules.items():
                if not isinstance(config, dict):
                    raise ConfigIntegrityError(f"Catalogue: module {key} doit être un objet")
                entries.append({"key": key, **config})
            return entries
        if isinstance(modules, list) and all(isinstance(m, dict) for m in modules):
            return list(modules)
        raise ConfigIntegrityError("Catalogue: modules doit être une liste ou un objet")

    def _read_yaml(self, path: Path) -> Any:
        if not path.exists():
            raise ConfigIntegrityError(f"Configuration non trouvée: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigIntegrityError(f"Erreur de parsing YAML: {e}")
        except OSError as e:
            raise ConfigIntegrityError(f"Erreur de lecture fichier: {e}")

    def _apply_env_overrides(self, config: Dict[str, Any]) -> None:
        for env_name, path in self.ENV_OVERRIDES.items():
            value = self._environ.get(env_name)
            if not value:
                continue
            target = config
            for part in path[:-1]:
                nested = target.get(part)
                if not isinstance(nested, dict):
                    nested = {}
                    target[part] = nested
                target = nested
            target[path[-1]] = value
