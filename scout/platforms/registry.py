"""
Platform adapter registry.

A fixed mapping from platform key to adapter class. Discovery and extraction
select adapters through this registry; platforms without an adapter are
rejected as configuration errors.
"""

from typing import Dict, List, Optional, Type

from scout.exceptions import ConfigurationError
from scout.platforms.base import PlatformAdapter
from scout.platforms.lieferando import LieferandoAdapter
from scout.platforms.uber_eats import UberEatsAdapter

ADAPTER_REGISTRY: Dict[str, Type[PlatformAdapter]] = {
    LieferandoAdapter.platform: LieferandoAdapter,
    UberEatsAdapter.platform: UberEatsAdapter,
}

_instances: Dict[str, PlatformAdapter] = {}


def get_adapter(platform: str) -> PlatformAdapter:
    """Adapter instance for a platform key."""
    adapter_class = ADAPTER_REGISTRY.get(platform)
    if adapter_class is None:
        raise ConfigurationError(
            f"No adapter registered for platform {platform!r}. "
            f"Available: {', '.join(sorted(ADAPTER_REGISTRY))}"
        )
    if platform not in _instances:
        _instances[platform] = adapter_class()
    return _instances[platform]


def available_platforms() -> List[str]:
    return sorted(ADAPTER_REGISTRY)


def adapters_for_country(country: str) -> List[PlatformAdapter]:
    return [get_adapter(p) for p in available_platforms() if get_adapter(p).supports(country)]


def adapter_for_url(url: str) -> Optional[PlatformAdapter]:
    """The adapter whose venue URL grammar matches, if any."""
    for platform in available_platforms():
        adapter = get_adapter(platform)
        if adapter.extract_venue_id(url):
            return adapter
    return None
