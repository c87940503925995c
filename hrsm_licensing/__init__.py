"""
HRSM Licensing

Moteur de licences et de droits modules d'une plateforme RH SaaS :
catalogue de modules, licences signées, mode hors ligne, conformité, audit.
"""
from .core.interfaces import ComplianceSettings, EngineSettings
from .engine import LicensingEngine

__version__ = "1.0.0"

__all__ = [
    "LicensingEngine",
    "EngineSettings",
    "ComplianceSettings",
    "__version__",
]
