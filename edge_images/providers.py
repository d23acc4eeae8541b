"""Edge provider registry and URL builders.

Each provider turns an ImageRef plus TransformArgs into the URL its image
service understands. Query keys are always emitted in sorted order so that
identical arguments produce identical URLs.
"""

import hashlib
import re
from typing import Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

from .errors import ProviderMisconfigured, UnsupportedSource
from .models import ImageRef, ProviderConfig, TransformArgs
from .utils import round_half_up


def _number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _origin(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}"
    if parts.netloc:
        return f"//{parts.netloc}"
    return ""


def _path(url: str) -> str:
    path = urlsplit(url).path
    if not path.startswith("/"):
        path = "/" + path
    return path


class Provider:
    """Base edge provider.

    Used as-is for the 'none' provider: URLs pass through untouched.
    """

    name = "none"
    label = "None (Disabled)"
    required_fields: tuple[str, ...] = ()
    supports_dpr = False
    hosted_subdomain = False

    def __init__(self, config: ProviderConfig):
        self.config = config

    def uses_hosted_subdomain(self) -> bool:
        """Whether URLs move to the provider's own domain rather than a path prefix."""
        return self.hosted_subdomain

    def missing_fields(self) -> list[str]:
        return [f for f in self.required_fields if not getattr(self.config, f, None)]

    def is_configured(self) -> bool:
        return not self.missing_fields()

    @property
    def cache_namespace(self) -> str:
        """Cache label: provider name plus a digest of domain, subdomain and endpoint."""
        config = self.config
        fingerprint = "\x1f".join((config.domain, config.subdomain or "", config.endpoint or ""))
        return f"{self.name}:{hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:12]}"

    def build_url(self, image: ImageRef, args: TransformArgs) -> str:
        """Build the edge URL for an image.

        Args:
            image: Source image reference
            args: Resolved transform arguments

        Returns:
            Provider-specific URL

        Raises:
            ProviderMisconfigured: If a required provider field is missing
            UnsupportedSource: If the source is an SVG
        """
        if image.is_svg:
            raise UnsupportedSource(f"SVG images are not transformed: {image.source_url}")
        missing = self.missing_fields()
        if missing:
            raise ProviderMisconfigured(self.name, missing[0])
        params = self.map_args(self.apply_dpr(args))
        return self.format_url(image, dict(sorted(params.items())))

    def apply_dpr(self, args: TransformArgs) -> TransformArgs:
        """Fold dpr into width/height for providers that lack a dpr knob."""
        if self.supports_dpr or args.dpr == 1:
            return args
        return TransformArgs(
            width=round_half_up(args.width * args.dpr) if args.width else None,
            height=round_half_up(args.height * args.dpr) if args.height else None,
            fit=args.fit,
            format=args.format,
            quality=args.quality,
            gravity=args.gravity,
            sharpen=args.sharpen,
            blur=args.blur,
        )

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        return {}

    def format_url(self, image: ImageRef, params: dict[str, str]) -> str:
        return image.source_url

    def rewrite_domain(self, image: ImageRef) -> str:
        return (self.config.domain or _origin(image.source_url)).rstrip("/")

    def is_transformed_url(self, url: str) -> bool:
        return False

    def original_url(self, url: str) -> str:
        """Recover the source URL from one of this provider's URLs."""
        return url


class Cloudflare(Provider):
    """Cloudflare Image Resizing: /cdn-cgi/image/<options>/<path>."""

    name = "cloudflare"
    label = "Cloudflare"
    supports_dpr = True

    EDGE_ROOT = "/cdn-cgi/image/"
    # Option separator inside the path segment.
    SEPARATOR = "%2C"
    GRAVITY = {
        "auto": "auto",
        "center": "0.5x0.5",
        "north": "top",
        "south": "bottom",
        "east": "right",
        "west": "left",
    }
    PATTERN = re.compile(r"/cdn-cgi/image/[^/]+(/.*)$")

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        params = {"onerror": "redirect", "metadata": "none"}
        if args.width:
            params["width"] = str(args.width)
        if args.height:
            params["height"] = str(args.height)
        if args.fit:
            params["fit"] = args.fit
        if args.format:
            params["format"] = args.format
        if args.quality:
            params["quality"] = str(args.quality)
        if args.gravity in self.GRAVITY:
            params["gravity"] = self.GRAVITY[args.gravity]
        if args.sharpen:
            params["sharpen"] = _number(args.sharpen)
        if args.blur:
            params["blur"] = str(args.blur)
        if args.dpr != 1:
            params["dpr"] = _number(args.dpr)
        return params

    def format_url(self, image: ImageRef, params: dict[str, str]) -> str:
        options = self.SEPARATOR.join(f"{k}={v}" for k, v in params.items())
        return f"{self.rewrite_domain(image)}{self.EDGE_ROOT}{options}{_path(image.source_url)}"

    def is_transformed_url(self, url: str) -> bool:
        return self.EDGE_ROOT in urlsplit(url).path

    def original_url(self, url: str) -> str:
        match = self.PATTERN.search(urlsplit(url).path)
        if not match:
            return url
        return _origin(url) + match.group(1)


class AcceleratedDomains(Provider):
    """Accelerated Domains: /acd-cgi/img/v1/<path>?<options>."""

    name = "accelerated_domains"
    label = "Accelerated Domains"
    supports_dpr = True

    EDGE_ROOT = "/acd-cgi/img/v1"

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        params = {}
        if args.width:
            params["width"] = str(args.width)
        if args.height:
            params["height"] = str(args.height)
        if args.fit:
            params["fit"] = args.fit
        if args.format:
            params["format"] = args.format
        if args.quality:
            params["quality"] = str(args.quality)
        if args.gravity:
            params["gravity"] = args.gravity
        if args.sharpen:
            params["sharpen"] = _number(args.sharpen)
        if args.blur:
            params["blur"] = str(args.blur)
        if args.dpr != 1:
            params["dpr"] = _number(args.dpr)
        return params

    def format_url(self, image: ImageRef, params: dict[str, str]) -> str:
        return "{}{}{}?{}".format(
            self.rewrite_domain(image),
            self.EDGE_ROOT,
            _path(image.source_url),
            urlencode(params, safe=","),
        )

    def is_transformed_url(self, url: str) -> bool:
        return urlsplit(url).path.startswith(self.EDGE_ROOT + "/")

    def original_url(self, url: str) -> str:
        path = urlsplit(url).path
        if not path.startswith(self.EDGE_ROOT + "/"):
            return url
        return _origin(url) + path[len(self.EDGE_ROOT):]


class HostedProvider(Provider):
    """Provider serving images from <subdomain><EDGE_ROOT> with a query string."""

    required_fields = ("subdomain",)
    hosted_subdomain = True
    EDGE_ROOT = ""

    @property
    def host(self) -> str:
        return f"{self.config.subdomain}{self.EDGE_ROOT}"

    def format_url(self, image: ImageRef, params: dict[str, str]) -> str:
        url = f"https://{self.host}{_path(image.source_url)}"
        if params:
            url += "?" + urlencode(params, safe=",")
        return url

    def is_transformed_url(self, url: str) -> bool:
        return bool(self.config.subdomain) and urlsplit(url).netloc == self.host

    def original_url(self, url: str) -> str:
        if not self.is_transformed_url(url):
            return url
        return self.config.domain.rstrip("/") + urlsplit(url).path


class Bunny(HostedProvider):
    """Bunny Optimizer: https://<subdomain>.b-cdn.net/<path>?<options>."""

    name = "bunny"
    label = "Bunny CDN"
    EDGE_ROOT = ".b-cdn.net"
    GRAVITY = {
        "center": "center",
        "north": "north",
        "south": "south",
        "east": "east",
        "west": "west",
    }

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        params = {}
        if args.width:
            params["width"] = str(args.width)
        if args.height:
            params["height"] = str(args.height)
        if args.quality:
            params["quality"] = str(args.quality)
        if args.gravity in self.GRAVITY:
            params["crop_gravity"] = self.GRAVITY[args.gravity]
        if args.sharpen:
            params["sharpen"] = "true"
        if args.blur:
            params["blur"] = str(min(100, args.blur))
        return params


class Imgix(HostedProvider):
    """Imgix: https://<subdomain>.imgix.net/<path>?<options>."""

    name = "imgix"
    label = "Imgix"
    supports_dpr = True
    EDGE_ROOT = ".imgix.net"
    FIT = {
        "cover": "crop",
        "contain": "fit",
        "scale-down": "max",
        "pad": "fill",
    }
    GRAVITY = {
        "north": "top",
        "south": "bottom",
        "east": "right",
        "west": "left",
    }

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        params = {"cs": "srgb", "dpr": _number(args.dpr)}
        if args.width:
            params["w"] = str(args.width)
        if args.height:
            params["h"] = str(args.height)
        if args.fit in self.FIT:
            params["fit"] = self.FIT[args.fit]
        if args.quality:
            params["q"] = str(args.quality)
        if args.format and args.format != "auto":
            params["fm"] = "jpg" if args.format == "jpeg" else args.format
        else:
            params["auto"] = "format,compress"
        if args.gravity in self.GRAVITY:
            params["crop"] = self.GRAVITY[args.gravity]
        if args.sharpen:
            params["sharp"] = _number(args.sharpen)
        if args.blur:
            params["blur"] = str(args.blur)
        return params


class Imgproxy(Provider):
    """Self-hosted imgproxy: <endpoint>/insecure/<options>/plain/<source>."""

    name = "imgproxy"
    label = "imgproxy"
    required_fields = ("endpoint",)
    supports_dpr = True
    hosted_subdomain = True
    RESIZING = {
        "cover": "fill",
        "contain": "fit",
        "scale-down": "fit",
        "pad": "fit",
    }
    GRAVITY = {
        "auto": "sm",
        "center": "ce",
        "north": "no",
        "south": "so",
        "east": "ea",
        "west": "we",
    }

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        params = {}
        if args.width:
            params["width"] = str(args.width)
        if args.height:
            params["height"] = str(args.height)
        if args.fit in self.RESIZING:
            params["resizing_type"] = self.RESIZING[args.fit]
        if args.fit == "pad":
            params["extend"] = "1"
        if args.format and args.format != "auto":
            params["format"] = args.format
        if args.quality:
            params["quality"] = str(args.quality)
        if args.gravity in self.GRAVITY:
            params["gravity"] = self.GRAVITY[args.gravity]
        if args.sharpen:
            params["sharpen"] = _number(args.sharpen)
        if args.blur:
            params["blur"] = str(args.blur)
        if args.dpr != 1:
            params["dpr"] = _number(args.dpr)
        return params

    @property
    def prefix(self) -> str:
        return f"{self.config.endpoint.rstrip('/')}/insecure/"

    def format_url(self, image: ImageRef, params: dict[str, str]) -> str:
        source = image.source_url
        if not urlsplit(source).netloc:
            source = self.config.domain.rstrip("/") + _path(source)
        options = "/".join(f"{k}:{v}" for k, v in params.items())
        return f"{self.prefix}{options}/plain/{quote(source, safe=':/')}"

    def is_transformed_url(self, url: str) -> bool:
        return bool(self.config.endpoint) and url.startswith(self.prefix) and "/plain/" in url

    def original_url(self, url: str) -> str:
        if not self.is_transformed_url(url):
            return url
        return unquote(url.split("/plain/", 1)[1])


class Native(Provider):
    """Origin-served resizing: <path>?edge_images=true&width=..&height=.."""

    name = "native"
    label = "Native (origin)"
    TRANSFORM_PARAM = "edge_images"

    def map_args(self, args: TransformArgs) -> dict[str, str]:
        params = {self.TRANSFORM_PARAM: "true"}
        if args.width:
            params["width"] = str(args.width)
        if args.height:
            params["height"] = str(args.height)
        return params

    def format_url(self, image: ImageRef, params: dict[str, str]) -> str:
        return "{}{}?{}".format(
            self.rewrite_domain(image), _path(image.source_url), urlencode(params)
        )

    def is_transformed_url(self, url: str) -> bool:
        query = dict(parse_qsl(urlsplit(url).query))
        return query.get(self.TRANSFORM_PARAM) == "true"

    def original_url(self, url: str) -> str:
        if not self.is_transformed_url(url):
            return url
        parts = urlsplit(url)
        kept = [
            (k, v) for k, v in parse_qsl(parts.query)
            if k not in (self.TRANSFORM_PARAM, "width", "height")
        ]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


PROVIDERS: dict[str, type[Provider]] = {
    "none": Provider,
    "cloudflare": Cloudflare,
    "accelerated_domains": AcceleratedDomains,
    "bunny": Bunny,
    "imgix": Imgix,
    "imgproxy": Imgproxy,
    "native": Native,
}

DEFAULT_PROVIDER = "none"


def get_providers() -> dict[str, str]:
    """Return provider ids mapped to display names."""
    return {name: cls.label for name, cls in PROVIDERS.items()}


def is_valid_provider(provider_id: Optional[str]) -> bool:
    """Check a provider id against the registry (case-insensitive)."""
    return bool(provider_id) and provider_id.lower() in PROVIDERS


def normalize_provider_id(provider_id: Optional[str]) -> str:
    """Lowercase a provider id, falling back to 'none' for unknown ids."""
    if not is_valid_provider(provider_id):
        return DEFAULT_PROVIDER
    return provider_id.lower()


def get_provider(config: ProviderConfig) -> Provider:
    """Instantiate the provider described by a ProviderConfig."""
    return PROVIDERS[normalize_provider_id(config.provider)](config)
