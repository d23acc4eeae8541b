"""Transform argument resolution.

Merges global defaults, context defaults and caller overrides into one
fully-populated TransformArgs, then applies the upscale floor and the
max-width ceiling.
"""

import logging
from collections.abc import Mapping
from dataclasses import fields
from typing import Any, Optional

from .errors import InvalidDimensions
from .models import FITS, FORMATS, GRAVITIES, Settings, TransformArgs
from .utils import round_half_up

logger = logging.getLogger("edge_images")

# Rendering contexts
CONTENT = "content"
AVATAR = "avatar"
FIXED = "fixed"
SCHEMA = "schema"
SOCIAL = "social"
SITEMAP = "sitemap"

FIXED_CONTEXTS = frozenset({AVATAR, FIXED})
SHARE_CONTEXTS = frozenset({SCHEMA, SOCIAL, SITEMAP})
EXACT_SIZE_CONTEXTS = FIXED_CONTEXTS | SHARE_CONTEXTS

SHARE_WIDTH = 1200
SHARE_HEIGHT = 675
DEFAULT_AVATAR_SIZE = 96

# Short names accepted from callers
ALIASES = {
    "w": "width",
    "h": "height",
    "q": "quality",
    "f": "format",
    "g": "gravity",
}

_FIELDS = {f.name for f in fields(TransformArgs)}
_INT_FIELDS = {"width", "height", "quality", "blur"}
_FLOAT_FIELDS = {"sharpen", "dpr"}


def is_fixed_context(context: str) -> bool:
    """Fixed contexts render at one exact size (avatars, icons)."""
    return context in FIXED_CONTEXTS


def normalize_args(caller_args: Mapping[str, Any] | TransformArgs | None) -> dict[str, Any]:
    """Normalize caller arguments into a dict of known TransformArgs fields.

    Accepts a TransformArgs, a mapping using full or short names
    (w, h, q, f, g), or None. Unknown keys and empty values are dropped.

    Args:
        caller_args: Caller-supplied transform arguments

    Returns:
        Dictionary keyed by TransformArgs field names
    """
    if caller_args is None:
        return {}
    if isinstance(caller_args, TransformArgs):
        items = caller_args.to_dict().items()
    else:
        items = caller_args.items()

    normalized = {}
    for key, value in items:
        name = ALIASES.get(key, key)
        if name not in _FIELDS:
            logger.debug("Dropping unknown transform argument %r", key)
            continue
        if value is None or value == "":
            continue
        try:
            if name in _INT_FIELDS:
                value = round_half_up(float(value))
            elif name in _FLOAT_FIELDS:
                value = float(value)
            else:
                value = str(value).lower()
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid value %r for %s", value, name)
            continue
        normalized[name] = value
    return normalized


def _target_dimensions(
    context: str,
    caller: dict[str, Any],
    intrinsic_width: Optional[int],
    intrinsic_height: Optional[int],
) -> tuple[Optional[int], Optional[int]]:
    width = caller.get("width")
    height = caller.get("height")

    if context in FIXED_CONTEXTS:
        size = width or height or DEFAULT_AVATAR_SIZE
        return width or size, height or size

    if width or height:
        # Derive the missing side from the source's aspect ratio
        if intrinsic_width and intrinsic_height:
            if width and not height:
                height = round_half_up(width * intrinsic_height / intrinsic_width)
            elif height and not width:
                width = round_half_up(height * intrinsic_width / intrinsic_height)
        return width, height

    if context in SHARE_CONTEXTS:
        return SHARE_WIDTH, SHARE_HEIGHT

    return intrinsic_width, intrinsic_height


def _scale(width: int, height: Optional[int], factor: float) -> tuple[int, Optional[int]]:
    new_width = max(1, round_half_up(width * factor))
    if height is None:
        return new_width, None
    return new_width, max(1, round_half_up(height * new_width / width))


def _choice(args: dict[str, Any], key: str, allowed: tuple[str, ...], default: str) -> None:
    if args.get(key) not in allowed:
        logger.warning("Unsupported %s %r, using %r", key, args.get(key), default)
        args[key] = default


def _clamp(value, low, high):
    if value is None:
        return None
    return max(low, min(high, value))


def resolve(
    context: str,
    caller_args: Mapping[str, Any] | TransformArgs | None = None,
    intrinsic: Optional[tuple[int, int]] = None,
    settings: Optional[Settings] = None,
) -> TransformArgs:
    """Resolve the transform arguments for one image in one context.

    Order: global defaults, context defaults, caller overrides. Then the
    small-source heuristic (exact-size contexts only), the upscale floor,
    and the max-width ceiling (responsive contexts only).

    Args:
        context: Rendering context (content, avatar, fixed, schema, social, sitemap)
        caller_args: Caller overrides
        intrinsic: Source (width, height) if known
        settings: Settings snapshot

    Returns:
        Fully-populated TransformArgs

    Raises:
        InvalidDimensions: If intrinsic dimensions are zero or negative
    """
    settings = settings or Settings()
    caller = normalize_args(caller_args)

    intrinsic_width = intrinsic_height = None
    if intrinsic is not None:
        intrinsic_width, intrinsic_height = intrinsic
        if intrinsic_width <= 0 or intrinsic_height <= 0:
            raise InvalidDimensions(f"Invalid intrinsic dimensions: {intrinsic}")

    args: dict[str, Any] = {
        "fit": "cover",
        "format": "auto",
        "quality": settings.quality,
        "gravity": "auto",
        "dpr": 1,
    }
    if context in FIXED_CONTEXTS:
        args["sharpen"] = 1
    args.update(caller)

    width, height = _target_dimensions(context, caller, intrinsic_width, intrinsic_height)

    padded = False
    if context in EXACT_SIZE_CONTEXTS and "fit" not in caller and intrinsic_width and width:
        too_narrow = intrinsic_width < width
        too_short = height is not None and intrinsic_height < height
        if too_narrow or too_short:
            args["fit"] = "pad"
            args["sharpen"] = max(args.get("sharpen") or 0, 2)
            padded = True

    _choice(args, "fit", FITS, "cover")
    _choice(args, "format", FORMATS, "auto")
    _choice(args, "gravity", GRAVITIES, "auto")

    may_upscale = args["fit"] in ("pad", "contain") and ("fit" in caller or padded)
    if width and intrinsic_width and not may_upscale:
        factor = intrinsic_width / width
        if height and intrinsic_height:
            factor = min(factor, intrinsic_height / height)
        if factor < 1:
            width, height = _scale(width, height, factor)

    if context not in EXACT_SIZE_CONTEXTS:
        if width is None:
            width = settings.max_width
        if width > settings.max_width:
            width, height = _scale(width, height, settings.max_width / width)

    args["width"] = width
    args["height"] = height
    args["quality"] = _clamp(args.get("quality"), 1, 100)
    args["sharpen"] = _clamp(args.get("sharpen"), 0, 10)
    args["blur"] = _clamp(args.get("blur"), 0, 250)

    return TransformArgs(**{k: v for k, v in args.items() if v is not None})
