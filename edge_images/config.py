"""Configuration management for Edge Images.

Handles loading the settings file, validating provider configuration,
and building the read-only Settings and ProviderConfig snapshots.
"""

import json
from pathlib import Path
from typing import Any

from .models import ProviderConfig, Settings
from .providers import PROVIDERS, is_valid_provider, normalize_provider_id


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


def get_config_dir() -> Path:
    """Get or create the config directory.

    Returns:
        Path to config directory (~/.config/edge-images/)
    """
    config_dir = Path.home() / ".config" / "edge-images"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def load_settings(settings_path: Path | None = None) -> dict[str, Any]:
    """Load the raw settings file.

    Searches for the settings file in the following order:
    1. Explicit path if provided
    2. ~/.config/edge-images/config.json (recommended)
    3. ./edge-images.json (current directory)

    Args:
        settings_path: Optional explicit path to the settings file

    Returns:
        Dictionary containing all settings

    Raises:
        ConfigError: If the settings file is missing or invalid
    """
    if settings_path is not None:
        if not settings_path.exists():
            raise ConfigError(f"Settings file not found at {settings_path}.")
        found_path = settings_path
    else:
        config_path = get_config_dir() / "config.json"
        local_path = Path("edge-images.json")

        if config_path.exists():
            found_path = config_path
        elif local_path.exists():
            found_path = local_path
        else:
            raise ConfigError(
                f"Settings file not found at {config_path} or ./edge-images.json."
            )

    try:
        with open(found_path) as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {found_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a JSON object in {found_path}")

    return raw


def validate_config(raw: dict[str, Any]) -> None:
    """Validate the provider choice and its required fields.

    Args:
        raw: Dictionary loaded from the settings file

    Raises:
        ConfigError: If the provider is unknown or required fields are missing
    """
    provider = raw.get("provider", "none")
    if not is_valid_provider(provider):
        raise ConfigError(f"Unknown provider: {provider}")

    provider = normalize_provider_id(provider)
    options = raw.get("providers", {}).get(provider, {})

    for field_name in PROVIDERS[provider].required_fields:
        if not options.get(field_name):
            raise ConfigError(f"Missing required field: providers.{provider}.{field_name}")

    max_width = raw.get("max_width", 650)
    if not isinstance(max_width, int) or max_width <= 0:
        raise ConfigError(f"max_width must be a positive integer, got {max_width!r}")


def get_settings(raw: dict[str, Any]) -> Settings:
    """Build a Settings snapshot from raw settings.

    Args:
        raw: Dictionary loaded from the settings file

    Returns:
        Settings dataclass
    """
    defaults = Settings()
    return Settings(
        provider=normalize_provider_id(raw.get("provider", defaults.provider)),
        domain=raw.get("domain", ""),
        site_url=raw.get("site_url", ""),
        document_root=raw.get("document_root"),
        max_width=int(raw.get("max_width", defaults.max_width)),
        quality=int(raw.get("quality", defaults.quality)),
        enabled=bool(raw.get("enabled", True)),
        features=dict(raw.get("features", {})),
        providers={k.lower(): dict(v) for k, v in raw.get("providers", {}).items()},
        breakpoints=sorted(int(w) for w in raw.get("breakpoints", defaults.breakpoints)),
        cache_ttl=int(raw.get("cache_ttl", defaults.cache_ttl)),
        exclude=list(raw.get("exclude", [])),
        redis_url=raw.get("redis_url") or None,
    )


def get_provider_config(settings: Settings, provider_id: str | None = None) -> ProviderConfig:
    """Extract the configuration of one provider.

    Args:
        settings: Settings snapshot
        provider_id: Provider to describe (defaults to the active provider)

    Returns:
        ProviderConfig with the rewrite domain and provider-specific fields
    """
    provider = normalize_provider_id(provider_id or settings.provider)
    options = settings.providers.get(provider, {})
    return ProviderConfig(
        provider=provider,
        domain=(settings.domain or settings.site_url).rstrip("/"),
        subdomain=options.get("subdomain") or None,
        endpoint=options.get("endpoint") or None,
    )


def get_cache_dir() -> Path:
    """Get or create the cache directory for memoized transforms.

    Returns:
        Path to cache directory (~/.cache/edge-images/)
    """
    cache_dir = Path.home() / ".cache" / "edge-images"
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir
