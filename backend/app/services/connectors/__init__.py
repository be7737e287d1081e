from __future__ import annotations

from typing import Optional
import logging

from .base import RegistryFacts, RegistryLookup
from .prh_registry import PRHRegistryConnector
from ...core.config import get_settings

logger = logging.getLogger(__name__)

_registry: Optional[RegistryLookup] = None


def get_registry_lookup() -> Optional[RegistryLookup]:
    """
    Process-wide registry client, or None when REGISTRY_ENABLED is off.

    The enrichment collector treats None as "no authoritative source", which
    caps field confidence below `verified`.
    """
    global _registry
    if not get_settings().REGISTRY_ENABLED:
        return None
    if _registry is None:
        _registry = PRHRegistryConnector()
    return _registry


__all__ = ["RegistryFacts", "RegistryLookup", "PRHRegistryConnector", "get_registry_lookup"]
