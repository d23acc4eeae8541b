"""Edge Images - Serve responsive images through an edge transformation service.

Rewrites <img> markup so a CDN image service (Cloudflare, Accelerated
Domains, Bunny, Imgix, imgproxy) resizes and reformats image bytes, with
responsive srcset/sizes and an optional aspect-ratio container.
"""

__version__ = "0.1.0"
__author__ = "Edge Images"

from .engine import EdgeImages
from .models import ImageRef, TransformArgs, Candidate, ProviderConfig, RewriteResult, Settings
from .errors import EdgeImagesError, ProviderMisconfigured, InvalidDimensions, UnsupportedSource, CacheUnavailable

__all__ = [
    "__version__",
    "EdgeImages",
    "ImageRef",
    "TransformArgs",
    "Candidate",
    "ProviderConfig",
    "RewriteResult",
    "Settings",
    "EdgeImagesError",
    "ProviderMisconfigured",
    "InvalidDimensions",
    "UnsupportedSource",
    "CacheUnavailable",
]
