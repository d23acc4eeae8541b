"""Markup rewriter.

Rewrites one <img> (and a directly enclosing <a>) so it is served by the
edge provider, optionally wrapping it in a responsive <picture> container.

State chart::

    init -> locate_img_tag -> (skip | extract_link)
    skip -> done
    extract_link -> compute_attributes -> (wrap_in_container | replace_in_place)
    wrap_in_container | replace_in_place -> done

Skipping leaves the fragment byte-for-byte unchanged. Rewritten tags carry
the processed marker class, so rewriting a second time is a no-op.
"""

import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from .errors import EdgeImagesError
from .gate import picture_wrap_enabled, should_transform_url
from .metadata import MetadataSource, dimensions_for_url
from .models import ImageRef, RewriteResult, Settings, TransformArgs
from .providers import Provider
from .resolver import CONTENT, is_fixed_context, resolve
from .srcset import SrcsetGenerator
from .tags import ImageUnit, TagProcessor, find_image_units

PROCESSED_CLASS = "edge-images-processed"
IMG_CLASS = "edge-images-img"
CONTAINER_CLASS = "edge-images-container"

# Receives (src, img tag html); True vetoes the rewrite
Veto = Callable[[str, str], bool]


class RewriteState(str, Enum):
    INIT = "init"
    LOCATE_IMG_TAG = "locate_img_tag"
    SKIP = "skip"
    EXTRACT_LINK = "extract_link"
    COMPUTE_ATTRIBUTES = "compute_attributes"
    WRAP_IN_CONTAINER = "wrap_in_container"
    REPLACE_IN_PLACE = "replace_in_place"
    DONE = "done"


ALLOWED_TRANSITIONS = {
    RewriteState.INIT: (RewriteState.LOCATE_IMG_TAG,),
    RewriteState.LOCATE_IMG_TAG: (RewriteState.SKIP, RewriteState.EXTRACT_LINK),
    RewriteState.SKIP: (RewriteState.DONE,),
    RewriteState.EXTRACT_LINK: (RewriteState.COMPUTE_ATTRIBUTES,),
    RewriteState.COMPUTE_ATTRIBUTES: (
        RewriteState.WRAP_IN_CONTAINER,
        RewriteState.REPLACE_IN_PLACE,
    ),
    RewriteState.WRAP_IN_CONTAINER: (RewriteState.DONE,),
    RewriteState.REPLACE_IN_PLACE: (RewriteState.DONE,),
    RewriteState.DONE: (),
}


class InvalidRewriteTransition(EdgeImagesError):
    """Raised when the rewriter attempts a transition not in the state chart."""

    def __init__(self, current: RewriteState, target: RewriteState):
        super().__init__(f"Cannot move from {current.value} to {target.value}")


def _positive_int(value: Any) -> Optional[int]:
    if not isinstance(value, str):
        return None
    try:
        number = int(value.strip().removesuffix("px"))
    except ValueError:
        return None
    return number if number > 0 else None


@dataclass
class RewriteRun:
    """Per-call state of one rewrite."""
    fragment: str
    context: str
    args: Any = None
    sizes: Optional[str] = None
    container_classes: Sequence[str] = ()
    allow_wrap: bool = True
    state: RewriteState = RewriteState.INIT
    history: list[RewriteState] = field(default_factory=list)
    unit: Optional[ImageUnit] = None
    processor: Optional[TagProcessor] = None
    anchor_open: str = ""
    anchor_close: str = ""
    image: Optional[ImageRef] = None
    target: Optional[TransformArgs] = None
    result: Optional[RewriteResult] = None
    skip_reason: str = ""

    def advance(self, target: RewriteState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidRewriteTransition(self.state, target)
        self.history.append(self.state)
        self.state = target


class ImageRewriter:
    """Tag-level <img> rewriter bound to one provider and settings snapshot.

    Args:
        settings: Settings snapshot
        provider: Edge provider used for every URL
        srcset: Srcset generator sharing the provider and cache
        metadata: Collaborator for local-URL checks and intrinsic sizes
        veto: Optional predicate rejecting individual tags
        logger: Logger for skip decisions
    """

    def __init__(
        self,
        settings: Settings,
        provider: Provider,
        srcset: SrcsetGenerator,
        metadata: Optional[MetadataSource] = None,
        veto: Optional[Veto] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.provider = provider
        self.srcset = srcset
        self.metadata = metadata
        self.veto = veto
        self.logger = logger or logging.getLogger("edge_images")

        self._handlers = {
            RewriteState.INIT: self._init,
            RewriteState.LOCATE_IMG_TAG: self._locate_img_tag,
            RewriteState.SKIP: self._skip,
            RewriteState.EXTRACT_LINK: self._extract_link,
            RewriteState.COMPUTE_ATTRIBUTES: self._compute_attributes,
            RewriteState.WRAP_IN_CONTAINER: self._wrap_in_container,
            RewriteState.REPLACE_IN_PLACE: self._replace_in_place,
        }

    def rewrite(
        self,
        fragment: str,
        context: str = CONTENT,
        args: Mapping[str, Any] | TransformArgs | None = None,
        sizes: Optional[str] = None,
        container_classes: Sequence[str] = (),
        allow_wrap: bool = True,
    ) -> RewriteResult:
        """Rewrite the first <img> in a fragment.

        Args:
            fragment: HTML containing an <img>, optionally inside an <a>
            context: Rendering context (content, avatar, fixed, ...)
            args: Caller transform overrides
            sizes: Caller-supplied sizes attribute
            container_classes: Extra classes for the wrapping container
            allow_wrap: False when the image already sits in a <picture>

        Returns:
            RewriteResult; transformed is False when the fragment was skipped

        Raises:
            EdgeImagesError: On provider or dimension errors (the engine
                catches these and returns the fragment unchanged)
        """
        run = RewriteRun(fragment, context, args, sizes, tuple(container_classes), allow_wrap)
        while run.state is not RewriteState.DONE:
            self._handlers[run.state](run)
        return run.result

    def _init(self, run: RewriteRun) -> None:
        run.advance(RewriteState.LOCATE_IMG_TAG)

    def _locate_img_tag(self, run: RewriteRun) -> None:
        units = find_image_units(run.fragment)
        if not units:
            return self._to_skip(run, "no <img> tag")

        run.unit = units[0]
        run.processor = TagProcessor(run.fragment[run.unit.img_start:run.unit.img_end])
        run.processor.next_tag("img")

        if run.processor.has_class(PROCESSED_CLASS):
            return self._to_skip(run, "already processed")

        src = run.processor.get_attribute("src")
        if not isinstance(src, str) or not src.strip():
            return self._to_skip(run, "missing src")

        source = self.provider.original_url(src.strip())
        if ImageRef(source).is_svg:
            return self._to_skip(run, "svg source")

        if self.veto is not None and self.veto(source, run.processor.get_tag_html()):
            return self._to_skip(run, "vetoed")

        if not should_transform_url(self.settings, source, self.metadata):
            return self._to_skip(run, "not transformable")

        run.image = ImageRef(source)
        run.advance(RewriteState.EXTRACT_LINK)

    def _to_skip(self, run: RewriteRun, reason: str) -> None:
        run.skip_reason = reason
        run.advance(RewriteState.SKIP)

    def _skip(self, run: RewriteRun) -> None:
        self.logger.debug("Skipping image rewrite: %s", run.skip_reason)
        run.result = RewriteResult(html=run.fragment)
        run.advance(RewriteState.DONE)

    def _extract_link(self, run: RewriteRun) -> None:
        unit = run.unit
        if unit.has_anchor:
            run.anchor_open = run.fragment[unit.start:unit.img_start]
            run.anchor_close = run.fragment[unit.img_end:unit.end]
        run.advance(RewriteState.COMPUTE_ATTRIBUTES)

    def _intrinsic(self, run: RewriteRun) -> Optional[tuple[int, int]]:
        width = _positive_int(run.processor.get_attribute("width"))
        height = _positive_int(run.processor.get_attribute("height"))
        if width and height:
            return width, height

        if self.metadata is None:
            return None
        return dimensions_for_url(self.metadata, run.image.source_url)

    def _compute_attributes(self, run: RewriteRun) -> None:
        processor = run.processor
        intrinsic = self._intrinsic(run)
        if intrinsic:
            run.image = ImageRef(run.image.source_url, *intrinsic)

        fixed = is_fixed_context(run.context)
        run.target = resolve(run.context, run.args, intrinsic, self.settings)

        existing_sizes = processor.get_attribute("sizes")
        sizes_hint = run.sizes or (existing_sizes if isinstance(existing_sizes, str) else None)
        srcset, sizes = self.srcset.generate(run.image, run.target, sizes_hint, fixed)

        processor.set_attribute("src", self.srcset.build_url(run.image, run.target, label="src"))
        if srcset:
            processor.set_attribute("srcset", srcset)
            if sizes:
                processor.set_attribute("sizes", sizes)
            else:
                processor.remove_attribute("sizes")
        else:
            processor.remove_attribute("srcset")

        if intrinsic:
            processor.set_attribute("width", str(intrinsic[0]))
            processor.set_attribute("height", str(intrinsic[1]))

        processor.add_class(IMG_CLASS)
        processor.add_class(PROCESSED_CLASS)

        wrap = run.allow_wrap and not run.unit.in_picture
        if wrap and picture_wrap_enabled(self.settings) and run.image.has_dimensions:
            run.advance(RewriteState.WRAP_IN_CONTAINER)
        else:
            run.advance(RewriteState.REPLACE_IN_PLACE)

    def _container_max_width(self, run: RewriteRun) -> int:
        if is_fixed_context(run.context) and run.target.width:
            return run.target.width
        return min(run.image.intrinsic_width, self.settings.max_width)

    def _wrap_in_container(self, run: RewriteRun) -> None:
        tag_html = run.processor.get_updated_html()
        inner = f"{run.anchor_open}{tag_html}{run.anchor_close}"

        classes = [CONTAINER_CLASS]
        for name in run.container_classes:
            if name and name not in classes:
                classes.append(name)
        style = "--aspect-ratio: {}/{}; --max-width: {}px".format(
            run.image.intrinsic_width,
            run.image.intrinsic_height,
            self._container_max_width(run),
        )
        container = '<picture class="{}" style="{}">{}</picture>'.format(
            html.escape(" ".join(classes)), html.escape(style), inner
        )

        run.result = RewriteResult(
            html=self._splice(run, container),
            tag_html=tag_html,
            container_html=container,
            transformed=True,
        )
        run.advance(RewriteState.DONE)

    def _replace_in_place(self, run: RewriteRun) -> None:
        tag_html = run.processor.get_updated_html()
        replacement = f"{run.anchor_open}{tag_html}{run.anchor_close}"
        run.result = RewriteResult(
            html=self._splice(run, replacement),
            tag_html=tag_html,
            transformed=True,
        )
        run.advance(RewriteState.DONE)

    @staticmethod
    def _splice(run: RewriteRun, replacement: str) -> str:
        return run.fragment[:run.unit.start] + replacement + run.fragment[run.unit.end:]
