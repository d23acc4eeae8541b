"""Feature and configuration predicates.

Side-effect-free checks over a Settings snapshot. Callers return their
input unchanged as soon as a required predicate is False.
"""

from fnmatch import fnmatch
from typing import Optional

from .config import get_provider_config
from .metadata import MetadataSource
from .models import ImageRef, Settings
from .providers import get_provider, normalize_provider_id

DEFAULT_FEATURES = {
    "picture_wrap": True,
    "avatars": True,
    "cache": True,
    "preloads": True,
    "htaccess_cache": False,
}


def provider_configured(settings: Settings) -> bool:
    """Whether a known provider other than 'none' is selected and has its required fields.

    Unknown ids resolve to the pass-through provider, so they count as unconfigured.
    """
    if normalize_provider_id(settings.provider) == "none":
        return False
    return get_provider(get_provider_config(settings)).is_configured()


def transformation_globally_enabled(settings: Settings) -> bool:
    return settings.enabled and normalize_provider_id(settings.provider) != "none"


def feature_enabled(settings: Settings, name: str) -> bool:
    """Check a per-feature toggle, falling back to the feature's default."""
    return bool(settings.features.get(name, DEFAULT_FEATURES.get(name, False)))


def picture_wrap_enabled(settings: Settings) -> bool:
    return feature_enabled(settings, "picture_wrap")


def is_excluded(settings: Settings, url: str) -> bool:
    return any(fnmatch(url, pattern) for pattern in settings.exclude)


def should_transform_url(
    settings: Settings,
    url: Optional[str],
    metadata: Optional[MetadataSource] = None,
) -> bool:
    """Decide whether a single image URL should go through the edge.

    Args:
        settings: Settings snapshot
        url: Image source URL
        metadata: Collaborator deciding whether the URL is local

    Returns:
        False for empty, SVG, data: or excluded URLs, remote sources,
        or when transformation is off
    """
    if not url or url.startswith("data:"):
        return False
    if not transformation_globally_enabled(settings) or not provider_configured(settings):
        return False
    if ImageRef(url).is_svg:
        return False
    if is_excluded(settings, url):
        return False
    if metadata is not None and not metadata.is_local_url(url):
        return False
    return True
