"""Data models for Edge Images.

Contains data classes for image references, transform arguments, srcset
candidates, provider configuration, rewrite results and cache entries.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Literal, Optional
from urllib.parse import urlsplit

from .errors import InvalidDimensions


Fit = Literal["cover", "contain", "pad", "scale-down"]
Format = Literal["auto", "webp", "avif", "jpeg", "png"]
Gravity = Literal["auto", "center", "north", "south", "east", "west"]

FITS = ("cover", "contain", "pad", "scale-down")
FORMATS = ("auto", "webp", "avif", "jpeg", "png")
GRAVITIES = ("auto", "center", "north", "south", "east", "west")

SVG_EXTENSIONS = (".svg", ".svgz")


@dataclass(frozen=True)
class ImageRef:
    """A source image identity.

    Attributes:
        source_url: Canonical pre-transform URL
        intrinsic_width: Original pixel width, if known
        intrinsic_height: Original pixel height, if known
    """
    source_url: str
    intrinsic_width: Optional[int] = None
    intrinsic_height: Optional[int] = None

    @property
    def is_svg(self) -> bool:
        if self.source_url.lower().startswith("data:image/svg"):
            return True
        path = urlsplit(self.source_url).path.lower()
        return path.endswith(SVG_EXTENSIONS)

    @property
    def has_dimensions(self) -> bool:
        return bool(
            self.intrinsic_width and self.intrinsic_height
            and self.intrinsic_width > 0 and self.intrinsic_height > 0
        )

    @property
    def aspect_ratio(self) -> float | None:
        """Height divided by width, or None when dimensions are unknown."""
        if not self.has_dimensions:
            return None
        return self.intrinsic_height / self.intrinsic_width


def _check_dimension(name: str, value) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidDimensions(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidDimensions(f"{name} must be positive and finite, got {value!r}")


@dataclass(frozen=True)
class TransformArgs:
    """Transform knobs handed to an edge provider.

    Never mutated once built; use merged() to derive a copy.

    Attributes:
        width: Target width in pixels
        height: Target height in pixels (omit for proportional scaling)
        fit: Resize mode: cover|contain|pad|scale-down
        format: Output format: auto|webp|avif|jpeg|png
        quality: Encoder quality 1-100
        gravity: Crop focus: auto|center|north|south|east|west
        sharpen: Sharpening strength 0-10
        dpr: Device pixel ratio
        blur: Blur radius 0-250
    """
    width: Optional[int] = None
    height: Optional[int] = None
    fit: Optional[str] = None
    format: Optional[str] = None
    quality: Optional[int] = None
    gravity: Optional[str] = None
    sharpen: Optional[float] = None
    dpr: float = 1
    blur: Optional[int] = None

    def __post_init__(self):
        _check_dimension("width", self.width)
        _check_dimension("height", self.height)
        _check_dimension("dpr", self.dpr)

    def merged(self, **overrides) -> "TransformArgs":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict[str, object]:
        """Return the populated knobs, sorted by name."""
        values = {
            "width": self.width,
            "height": self.height,
            "fit": self.fit,
            "format": self.format,
            "quality": self.quality,
            "gravity": self.gravity,
            "sharpen": self.sharpen,
            "dpr": self.dpr,
            "blur": self.blur,
        }
        return {k: values[k] for k in sorted(values) if values[k] is not None}

    def canonical(self) -> str:
        """Stable serialization used in cache keys."""
        return "&".join(f"{k}={_format_value(v)}" for k, v in self.to_dict().items())


def _format_value(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class Candidate:
    """One srcset entry.

    Attributes:
        url: Transformed image URL
        descriptor: Either "<width>w" or "<n>x"
    """
    url: str
    descriptor: str

    def __str__(self) -> str:
        return f"{self.url} {self.descriptor}"


@dataclass(frozen=True)
class ProviderConfig:
    """Edge provider configuration for one rewrite operation.

    Attributes:
        provider: Provider identifier (e.g., cloudflare, imgix)
        domain: Rewrite domain the edge is served from (e.g., https://example.com)
        subdomain: Hosted subdomain for providers with their own domain
        endpoint: Base URL for self-hosted providers (imgproxy)
    """
    provider: str
    domain: str = ""
    subdomain: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass
class RewriteResult:
    """Result of rewriting one image fragment.

    Attributes:
        html: Full replacement fragment (input unchanged when not transformed)
        tag_html: The rewritten <img> tag on its own
        container_html: Wrapping container, when picture-wrap applied
        transformed: Whether the markup was changed
    """
    html: str
    tag_html: str = ""
    container_html: Optional[str] = None
    transformed: bool = False


@dataclass
class CacheEntry:
    """A memoized value with its expiry.

    Attributes:
        key: Cache key digest
        value: Cached URL, or False for a known non-transformable source
        expires_at: Expiry timestamp in the backend clock
    """
    key: str
    value: str | bool
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class Settings:
    """Read-only configuration snapshot.

    Attributes:
        provider: Active provider id (none disables transformation)
        domain: Rewrite domain for path-prefix providers (defaults to site_url)
        site_url: Public URL of the site whose images are rewritten
        document_root: Local directory holding the site's files
        max_width: Maximum rendered width for content images
        quality: Default encoder quality
        enabled: Global kill switch
        features: Per-feature toggles (picture_wrap, avatars, cache, htaccess_cache)
        providers: Per-provider options, e.g. {"imgix": {"subdomain": "acme"}}
        breakpoints: Named widths used to build srcset candidates
        cache_ttl: Transform cache TTL in seconds
        exclude: fnmatch patterns of URLs never to transform
        redis_url: Shared Redis for the transform cache (CLI uses a JSON file otherwise)
    """
    provider: str = "none"
    domain: str = ""
    site_url: str = ""
    document_root: Optional[str] = None
    max_width: int = 650
    quality: int = 85
    enabled: bool = True
    features: dict[str, bool] = field(default_factory=dict)
    providers: dict[str, dict[str, str]] = field(default_factory=dict)
    breakpoints: list[int] = field(default_factory=lambda: [150, 300, 768, 1024, 1536, 2048])
    cache_ttl: int = 3600
    exclude: list[str] = field(default_factory=list)
    redis_url: Optional[str] = None
