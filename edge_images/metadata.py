"""Image metadata collaborators.

Resolve image URLs to identities and identities to intrinsic dimensions,
and decide which URLs belong to the site.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.parse import unquote, urlsplit

from PIL import Image

logger = logging.getLogger("edge_images")


class MetadataSource(Protocol):
    """Interface the engine expects from a metadata collaborator."""

    def get_intrinsic_dimensions(self, identity: Any) -> Optional[tuple[int, int]]:
        ...

    def resolve_identity_from_url(self, url: str) -> Optional[Any]:
        ...

    def is_local_url(self, url: str) -> bool:
        ...


def dimensions_for_url(metadata: MetadataSource, url: str) -> Optional[tuple[int, int]]:
    """Intrinsic (width, height) for an image URL, or None when unknown."""
    identity = metadata.resolve_identity_from_url(url)
    if identity is None:
        return None
    return metadata.get_intrinsic_dimensions(identity)


def _host(url: str) -> str:
    host = urlsplit(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


class SiteMetadata:
    """Shared local-URL detection against a site URL."""

    def __init__(self, site_url: str = ""):
        self.site_url = site_url.rstrip("/")

    def is_local_url(self, url: str) -> bool:
        """Relative URLs and URLs on the site's host are local."""
        if not url or url.startswith("data:"):
            return False
        host = _host(url)
        if not host:
            return True
        return bool(self.site_url) and host == _host(self.site_url)

    def resolve_identity_from_url(self, url: str) -> Optional[Any]:
        raise NotImplementedError

    def get_intrinsic_dimensions(self, identity: Any) -> Optional[tuple[int, int]]:
        raise NotImplementedError


class StaticMetadata(SiteMetadata):
    """In-memory table of known image sizes.

    Identities are site-relative paths, so absolute and relative URLs to the
    same image share one entry.
    """

    def __init__(self, dimensions: dict[str, tuple[int, int]], site_url: str = ""):
        super().__init__(site_url)
        self._dimensions = {self._key(url): size for url, size in dimensions.items()}

    @staticmethod
    def _key(url: str) -> str:
        return urlsplit(url).path

    def resolve_identity_from_url(self, url: str) -> Optional[str]:
        if not self.is_local_url(url):
            return None
        key = self._key(url)
        return key if key in self._dimensions else None

    def get_intrinsic_dimensions(self, identity: str) -> Optional[tuple[int, int]]:
        return self._dimensions.get(identity)


class LocalFileMetadata(SiteMetadata):
    """Reads intrinsic sizes from image files under a document root.

    Pillow only parses the header on open, so no pixels are decoded.
    """

    def __init__(self, site_url: str, document_root: Path | str):
        super().__init__(site_url)
        self.document_root = Path(document_root).resolve()
        self._sizes: dict[tuple[Path, float], tuple[int, int]] = {}

    def resolve_identity_from_url(self, url: str) -> Optional[Path]:
        """Map a site URL to a file under the document root.

        Args:
            url: Absolute or root-relative image URL

        Returns:
            Path to the file, or None if remote, missing or outside the root
        """
        if not self.is_local_url(url):
            return None

        relative = unquote(urlsplit(url).path).lstrip("/")
        if not relative:
            return None

        candidate = (self.document_root / relative).resolve()
        if self.document_root not in candidate.parents:
            return None
        if not candidate.is_file():
            return None
        return candidate

    def get_intrinsic_dimensions(self, identity: Path) -> Optional[tuple[int, int]]:
        """Read (width, height) from the image header.

        Args:
            identity: Path returned by resolve_identity_from_url

        Returns:
            (width, height), or None if the file is not a raster image
        """
        if identity.suffix.lower() in {'.svg', '.svgz'}:
            return None

        try:
            key = (identity, identity.stat().st_mtime)
        except OSError:
            return None

        if key not in self._sizes:
            try:
                with Image.open(identity) as img:
                    self._sizes[key] = img.size
            except OSError as e:
                logger.debug("Could not read image size for %s: %s", identity, e)
                return None

        return self._sizes[key]
