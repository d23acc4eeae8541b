"""Srcset candidate generation.

Derives a deduplicated, strictly increasing set of width (or DPR)
variants for an image and renders each through the edge provider.
"""

from typing import Iterable, Optional

from .cache import TransformCache
from .errors import InvalidDimensions
from .models import Candidate, ImageRef, TransformArgs
from .providers import Provider
from .utils import round_half_up

DEFAULT_BREAKPOINTS = (150, 300, 768, 1024, 1536, 2048)


def candidate_widths(ceiling: int, breakpoints: Iterable[int] = DEFAULT_BREAKPOINTS) -> list[int]:
    """Pick the srcset widths for an image.

    Walks down from the ceiling through the breakpoints below it. A width
    is dropped when it, or its 2x counterpart, is already covered, so no
    visually redundant 1x/2x pairs are emitted.

    Args:
        ceiling: Largest width allowed
        breakpoints: Named widths to consider

    Returns:
        Widths in ascending order, always including the ceiling

    Raises:
        InvalidDimensions: If ceiling is not positive
    """
    if ceiling <= 0:
        raise InvalidDimensions(f"Srcset ceiling must be positive, got {ceiling}")

    below = sorted({int(b) for b in breakpoints if 0 < int(b) < ceiling}, reverse=True)

    widths = []
    covered = set()
    for width in [ceiling, *below]:
        if width in covered or width * 2 in covered:
            continue
        widths.append(width)
        covered.update((width, width * 2))

    return sorted(widths)


def default_sizes(width: int) -> str:
    return f"(max-width: {width}px) 100vw, {width}px"


def format_srcset(candidates: list[Candidate]) -> str:
    return ", ".join(str(c) for c in candidates)


class SrcsetGenerator:
    """Builds srcset/sizes strings for one provider and cache."""

    def __init__(
        self,
        provider: Provider,
        max_width: int,
        cache: Optional[TransformCache] = None,
        breakpoints: Iterable[int] = DEFAULT_BREAKPOINTS,
    ):
        self.provider = provider
        self.max_width = max_width
        self.cache = cache
        self.breakpoints = tuple(breakpoints)

    def build_url(self, image: ImageRef, args: TransformArgs, label: str = "srcset") -> str:
        """Build one provider URL, memoized by the transform cache."""
        def compute():
            return self.provider.build_url(image, args)

        if self.cache is None:
            return compute()
        key_parts = (image.source_url, args.canonical(), f"{self.provider.cache_namespace}:{label}")
        return self.cache.get_or_compute(key_parts, compute)

    def ceiling(self, image: ImageRef, base_args: TransformArgs) -> int:
        requested = base_args.width or image.intrinsic_width
        return min(image.intrinsic_width, self.max_width, requested)

    def candidates(self, image: ImageRef, base_args: TransformArgs, fixed: bool = False) -> list[Candidate]:
        """Compute the srcset candidates for an image.

        Args:
            image: Source image (needs intrinsic dimensions)
            base_args: Resolved arguments for the primary src
            fixed: Fixed-size context: emit a single 2x candidate

        Returns:
            Candidates, empty when intrinsic dimensions are unknown

        Raises:
            InvalidDimensions: If the computed ceiling is not positive
        """
        if not image.has_dimensions:
            return []

        if fixed:
            args = base_args.merged(dpr=2)
            return [Candidate(self.build_url(image, args), "2x")]

        if base_args.width and base_args.height:
            ratio = base_args.height / base_args.width
        else:
            ratio = image.aspect_ratio

        result = []
        for width in candidate_widths(self.ceiling(image, base_args), self.breakpoints):
            args = base_args.merged(width=width, height=round_half_up(width * ratio))
            result.append(Candidate(self.build_url(image, args), f"{width}w"))
        return result

    def generate(
        self,
        image: ImageRef,
        base_args: TransformArgs,
        sizes_hint: Optional[str] = None,
        fixed: bool = False,
    ) -> tuple[str, str]:
        """Build the srcset and sizes strings.

        Args:
            image: Source image
            base_args: Resolved arguments for the primary src
            sizes_hint: Caller-supplied sizes value
            fixed: Fixed-size context

        Returns:
            Tuple of (srcset, sizes); srcset is "" when dimensions are unknown
        """
        candidates = self.candidates(image, base_args, fixed)
        if not candidates:
            return "", sizes_hint or ""

        if sizes_hint:
            sizes = sizes_hint
        elif fixed:
            sizes = ""
        else:
            sizes = default_sizes(self.ceiling(image, base_args))

        return format_srcset(candidates), sizes
