"""Error taxonomy for Edge Images.

None of these cross the engine boundary: the engine logs them and returns
its input unchanged.
"""


class EdgeImagesError(Exception):
    """Base class for all transformation errors."""
    pass


class ProviderMisconfigured(EdgeImagesError):
    """Raised when a provider is missing a required field (e.g., subdomain)."""

    def __init__(self, provider: str, field_name: str):
        self.provider = provider
        self.field_name = field_name
        super().__init__(f"Provider '{provider}' requires '{field_name}' to be configured")


class InvalidDimensions(EdgeImagesError):
    """Raised for zero, negative or missing sizes where a size is required."""
    pass


class UnsupportedSource(EdgeImagesError):
    """Raised for sources that are never transformed (SVG, remote URLs)."""
    pass


class CacheUnavailable(EdgeImagesError):
    """Raised by cache backends when the store cannot be read or written."""
    pass
