import os
import logging
import importlib
from urllib.parse import urlparse
from typing import Callable, List, Tuple, Union

logger = logging.getLogger('scraper.overrides')

# override(soup, url, slots) -> None
Override = Callable[..., None]


class OverrideRegistry:
    """Site-specific extraction overrides keyed by hostname substring."""

    _registry: List[Tuple[str, Override]] = []

    @classmethod
    def register(cls, domain: Union[str, List[str]], override: Override):
        domains = domain if isinstance(domain, (list, tuple)) else [domain]
        for single_domain in domains:
            if (single_domain, override) in cls._registry:
                continue
            cls._registry.append((single_domain, override))
            logger.debug(f"Registered override for domain: {single_domain}")

    @classmethod
    def unregister(cls, override: Override):
        cls._registry = [(domain, func) for domain, func in cls._registry if func is not override]

    @classmethod
    def get_overrides(cls, url: str) -> List[Override]:
        hostname = (urlparse(url).hostname or "").lower()
        matched = []
        for registered_domain, override in cls._registry:
            if registered_domain in hostname and override not in matched:
                matched.append(override)
        return matched


def discover_overrides():
    overrides_dir = os.path.dirname(os.path.abspath(__file__))

    for filename in sorted(os.listdir(overrides_dir)):
        if not filename.endswith('_override.py'):
            continue

        module_name = filename[:-3]
        try:
            module = importlib.import_module(f"{__package__}.{module_name}")
        except ImportError as e:
            logger.warning(f"Failed to load override from {filename}: {e}")
            continue

        if hasattr(module, 'DOMAIN') and hasattr(module, 'override'):
            OverrideRegistry.register(module.DOMAIN, module.override)
        else:
            logger.warning(f"{filename} does not define DOMAIN and override")


discover_overrides()
