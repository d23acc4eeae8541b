"""Edge Images engine.

EdgeImages is the single entry point callers use. It owns one settings
snapshot, provider, metadata collaborator and transform cache, and never
raises: any failure is logged and the input is returned unchanged.
"""

import html
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .cache import MemoryCacheBackend, TransformCache
from .config import get_provider_config
from .errors import EdgeImagesError
from .gate import feature_enabled, should_transform_url
from .metadata import LocalFileMetadata, MetadataSource, StaticMetadata, dimensions_for_url
from .models import ImageRef, RewriteResult, Settings, TransformArgs
from .providers import get_provider
from .resolver import AVATAR, CONTENT, DEFAULT_AVATAR_SIZE, is_fixed_context, normalize_args, resolve
from .rewriter import ImageRewriter, Veto
from .srcset import SrcsetGenerator
from .tags import find_image_units

AVATAR_CONTAINER_CLASS = "avatar-picture"

CallerArgs = Mapping[str, Any] | TransformArgs | None


class EdgeImages:
    """Responsive image transformation for one site configuration.

    Args:
        settings: Settings snapshot
        metadata: Metadata collaborator (defaults to reading files under
            settings.document_root, or an empty table)
        cache: Transform cache (defaults to an in-process cache when the
            cache feature is enabled)
        logger: Logger for failures and skips
        veto: Optional predicate rejecting individual tags
    """

    def __init__(
        self,
        settings: Settings,
        metadata: Optional[MetadataSource] = None,
        cache: Optional[TransformCache] = None,
        logger: Optional[logging.Logger] = None,
        veto: Optional[Veto] = None,
    ):
        self.settings = settings
        self.logger = logger or logging.getLogger("edge_images")
        self.provider = get_provider(get_provider_config(settings))
        self.metadata = metadata if metadata is not None else self._default_metadata()

        if not feature_enabled(settings, "cache"):
            cache = None
        elif cache is None:
            cache = TransformCache(MemoryCacheBackend(), ttl=settings.cache_ttl, logger=self.logger)
        self.cache = cache

        self.srcset = SrcsetGenerator(
            self.provider,
            settings.max_width,
            cache=self.cache,
            breakpoints=settings.breakpoints,
        )
        self.rewriter = ImageRewriter(
            settings,
            self.provider,
            self.srcset,
            metadata=self.metadata,
            veto=veto,
            logger=self.logger,
        )

    def _default_metadata(self) -> MetadataSource:
        if self.settings.document_root:
            return LocalFileMetadata(self.settings.site_url, self.settings.document_root)
        return StaticMetadata({}, self.settings.site_url)

    def rewrite_result(
        self,
        fragment: str,
        context: str = CONTENT,
        args: CallerArgs = None,
        sizes: Optional[str] = None,
        container_classes: Sequence[str] = (),
        allow_wrap: bool = True,
    ) -> RewriteResult:
        """Rewrite one image fragment, returning the full RewriteResult.

        Never raises; on failure the fragment comes back untransformed.
        """
        try:
            return self.rewriter.rewrite(
                fragment,
                context=context,
                args=args,
                sizes=sizes,
                container_classes=container_classes,
                allow_wrap=allow_wrap,
            )
        except EdgeImagesError as e:
            self.logger.warning("Image rewrite failed, markup left unchanged: %s", e)
        except Exception:
            self.logger.exception("Unexpected error rewriting image markup")
        return RewriteResult(html=fragment)

    def rewrite(
        self,
        fragment: str,
        context: str = CONTENT,
        args: CallerArgs = None,
        sizes: Optional[str] = None,
        container_classes: Sequence[str] = (),
    ) -> str:
        """Rewrite one <img> fragment for the edge.

        Args:
            fragment: HTML with an <img>, optionally wrapped in an <a>
            context: Rendering context
            args: Caller transform overrides (e.g., {"width": 300, "fit": "contain"})
            sizes: Caller-supplied sizes attribute
            container_classes: Extra classes for the <picture> container

        Returns:
            Rewritten HTML, or the fragment unchanged
        """
        return self.rewrite_result(fragment, context, args, sizes, container_classes).html

    def rewrite_avatar(self, fragment: str, size: int = DEFAULT_AVATAR_SIZE, args: CallerArgs = None) -> str:
        """Rewrite an avatar <img> at a fixed square size.

        Args:
            fragment: Avatar <img> markup
            size: Rendered size in CSS pixels
            args: Extra transform overrides

        Returns:
            Rewritten HTML, or the fragment unchanged when avatars are disabled
        """
        if not feature_enabled(self.settings, "avatars"):
            return fragment

        overrides = normalize_args(args)
        overrides.setdefault("width", size)
        overrides.setdefault("height", size)
        return self.rewrite(fragment, AVATAR, overrides, container_classes=(AVATAR_CONTAINER_CLASS,))

    def transform_url(self, url: str, context: str = CONTENT, args: CallerArgs = None) -> str:
        """Transform a bare image URL for non-markup call sites.

        Used for social, schema and sitemap metadata where only a URL is
        emitted. Results are cached per context; URLs that cannot be
        transformed are cached as False and returned unchanged.

        Args:
            url: Image URL
            context: Rendering context (e.g., social, schema, sitemap)
            args: Caller transform overrides

        Returns:
            Provider URL, or the input URL
        """
        try:
            source = self.provider.original_url(url) if url else url
            caller = normalize_args(args)

            def compute() -> str | bool:
                if not should_transform_url(self.settings, source, self.metadata):
                    return False
                intrinsic = dimensions_for_url(self.metadata, source)
                image = ImageRef(source, *intrinsic) if intrinsic else ImageRef(source)
                return self.provider.build_url(image, resolve(context, caller, intrinsic, self.settings))

            if self.cache is None:
                value = compute()
            else:
                canonical = "&".join(f"{k}={v}" for k, v in sorted(caller.items()))
                label = f"{self.provider.cache_namespace}:{context}"
                value = self.cache.get_or_compute((source or "", canonical, label), compute)
            return value or url
        except EdgeImagesError as e:
            self.logger.warning("URL transform failed for %s: %s", url, e)
        except Exception:
            self.logger.exception("Unexpected error transforming %s", url)
        return url

    def preload_link(
        self,
        url: str,
        context: str = CONTENT,
        args: CallerArgs = None,
        sizes: Optional[str] = None,
    ) -> str:
        """Build a <link rel="preload"> tag for a hero image.

        The tag carries the same srcset and sizes the rewritten <img> gets,
        so the browser fetches the right edge variant early.

        Args:
            url: Image URL
            context: Rendering context
            args: Caller transform overrides
            sizes: Caller-supplied sizes value

        Returns:
            The link tag, or "" when preloads are disabled, the image cannot
            be transformed, or its dimensions are unknown
        """
        if not feature_enabled(self.settings, "preloads"):
            return ""

        try:
            source = self.provider.original_url(url) if url else url
            if not should_transform_url(self.settings, source, self.metadata):
                return ""
            intrinsic = dimensions_for_url(self.metadata, source)
            if not intrinsic:
                return ""

            target = resolve(context, normalize_args(args), intrinsic, self.settings)
            srcset, sizes = self.srcset.generate(
                ImageRef(source, *intrinsic),
                target,
                sizes,
                fixed=is_fixed_context(context),
            )
            if not srcset:
                return ""

            tag = f'<link rel="preload" as="image" imagesrcset="{html.escape(srcset)}"'
            if sizes:
                tag += f' imagesizes="{html.escape(sizes)}"'
            return tag + ">"
        except EdgeImagesError as e:
            self.logger.warning("Preload failed for %s: %s", url, e)
        except Exception:
            self.logger.exception("Unexpected error building preload for %s", url)
        return ""

    def preload_links(self, images: Iterable[Mapping[str, Any]]) -> str:
        """Build preload tags for a list of hero images.

        Each entry needs a "url" and may set "context", "args" and "sizes".
        Entries without a URL are skipped and duplicate tags are emitted once.

        Returns:
            Newline-separated link tags
        """
        links = []
        for image in images:
            if not image.get("url"):
                continue
            link = self.preload_link(
                image["url"],
                image.get("context", CONTENT),
                image.get("args"),
                image.get("sizes"),
            )
            if link and link not in links:
                links.append(link)
        return "\n".join(links)

    def rewrite_document(
        self,
        content: str,
        context: str = CONTENT,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> tuple[str, int]:
        """Rewrite every image in a page.

        Args:
            content: HTML document or fragment
            context: Rendering context for all images
            should_continue: Polled before each image; returning False stops
                the loop and leaves the remaining images untouched

        Returns:
            Tuple of (rewritten content, number of images transformed)
        """
        parts = []
        pos = 0
        count = 0

        for unit in find_image_units(content):
            if should_continue is not None and not should_continue():
                self.logger.info("Document rewrite stopped after %d images", count)
                break

            result = self.rewrite_result(
                content[unit.start:unit.end],
                context=context,
                allow_wrap=not unit.in_picture,
            )
            parts.append(content[pos:unit.start])
            parts.append(result.html)
            pos = unit.end
            if result.transformed:
                count += 1

        parts.append(content[pos:])
        return "".join(parts), count

    def asset_replaced(self, url: str, prior_url: Optional[str] = None) -> None:
        """Drop cached transforms after an image file was replaced.

        Without the prior URL the whole transform cache is flushed, since
        entries keyed by the old URL cannot be found.
        """
        if self.cache is None:
            return
        if prior_url:
            self.cache.invalidate(url, prior_url)
        else:
            self.cache.flush()

    def asset_deleted(self, url: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(url)

    def metadata_updated(self, url: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(url)
