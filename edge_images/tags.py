"""Tag-at-a-time HTML tokenizer.

TagProcessor walks the tags of an HTML fragment with a cursor and edits
attributes of the tag under the cursor without building a DOM, so
malformed or partial markup passes through untouched. Only tags whose
attributes were changed are re-serialized.
"""

import html
import re
from dataclasses import dataclass, field
from typing import Optional

TAG_NAME_RE = re.compile(r'<([A-Za-z][A-Za-z0-9:-]*)')
CLOSER_RE = re.compile(r'</([A-Za-z][A-Za-z0-9:-]*)[^>]*>')
ATTR_RE = re.compile(r'''\s*([^\s"'<>/=]+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?''')
TAG_END_RE = re.compile(r'\s*(/?)>')

# Elements whose content is text, not markup
RAW_TEXT_ELEMENTS = {"script", "style", "textarea", "title"}


@dataclass
class Attribute:
    """One attribute of a tag.

    Attributes:
        name: Name as written in the source
        value: Decoded value, or True for a boolean attribute
        raw: Source text of the attribute (used when unmodified)
        modified: Whether the value was changed through the processor
    """
    name: str
    value: str | bool
    raw: str = ""
    modified: bool = False

    def render(self) -> str:
        if not self.modified:
            return self.raw.strip()
        if self.value is True:
            return self.name
        return f'{self.name}="{html.escape(self.value, quote=True)}"'


@dataclass
class Tag:
    """A tag found by the processor, with its span in the source."""
    name: str
    start: int
    end: int
    closer: bool = False
    self_closing: bool = False
    attributes: list[Attribute] = field(default_factory=list)
    modified: bool = False

    def find(self, name: str) -> Optional[Attribute]:
        name = name.lower()
        for attribute in self.attributes:
            if attribute.name.lower() == name:
                return attribute
        return None

    def render(self) -> str:
        parts = [self.name] + [a.render() for a in self.attributes]
        closing = " />" if self.self_closing else ">"
        return "<" + " ".join(parts) + closing


class TagProcessor:
    """Cursor over the tags of an HTML fragment.

    Example:
        processor = TagProcessor('<p><img src="a.jpg"></p>')
        while processor.next_tag("img"):
            processor.add_class("lazy")
        processor.get_updated_html()
    """

    def __init__(self, source: str):
        self.source = source
        self._pos = 0
        self._current: Optional[Tag] = None
        self._edits: list[Tag] = []

    @property
    def tag(self) -> Optional[Tag]:
        return self._current

    @property
    def tag_name(self) -> Optional[str]:
        return self._current.name.lower() if self._current else None

    def is_tag_closer(self) -> bool:
        return bool(self._current and self._current.closer)

    def next_tag(self, name: Optional[str] = None, closers: bool = False) -> bool:
        """Move the cursor to the next tag.

        Args:
            name: Only stop at tags with this name (case-insensitive)
            closers: Also stop at closing tags

        Returns:
            True if a tag was found, False at the end of the fragment
        """
        self._release()
        wanted = name.lower() if name else None

        while True:
            tag = self._scan()
            if tag is None:
                self._current = None
                return False
            if tag.closer and not closers:
                continue
            if wanted and tag.name.lower() != wanted:
                continue
            self._current = tag
            return True

    def _scan(self) -> Optional[Tag]:
        source = self.source
        while True:
            start = source.find("<", self._pos)
            if start == -1:
                self._pos = len(source)
                return None

            if source.startswith("<!--", start):
                end = source.find("-->", start + 4)
                self._pos = len(source) if end == -1 else end + 3
                continue

            if source.startswith("<!", start) or source.startswith("<?", start):
                end = source.find(">", start)
                self._pos = len(source) if end == -1 else end + 1
                continue

            closer = CLOSER_RE.match(source, start)
            if closer:
                self._pos = closer.end()
                return Tag(closer.group(1), start, closer.end(), closer=True)

            tag = self._parse_opener(start)
            if tag is None:
                # Not a tag; a literal "<" in text
                self._pos = start + 1
                continue

            self._pos = tag.end
            if tag.name.lower() in RAW_TEXT_ELEMENTS and not tag.self_closing:
                close_at = source.lower().find(f"</{tag.name.lower()}", tag.end)
                if close_at != -1:
                    self._pos = close_at
            return tag

    def _parse_opener(self, start: int) -> Optional[Tag]:
        source = self.source
        match = TAG_NAME_RE.match(source, start)
        if not match:
            return None

        tag = Tag(match.group(1), start, start)
        pos = match.end()
        while pos < len(source):
            end = TAG_END_RE.match(source, pos)
            if end:
                tag.self_closing = bool(end.group(1))
                tag.end = end.end()
                return tag

            attr = ATTR_RE.match(source, pos)
            if not attr or attr.end() == pos:
                # Stray character such as "/" or a lone quote
                pos += 1
                continue

            name, double, single, bare = attr.groups()
            if double is not None or single is not None or bare is not None:
                value = html.unescape(next(v for v in (double, single, bare) if v is not None))
            else:
                value = True
            tag.attributes.append(Attribute(name, value, attr.group(0)))
            pos = attr.end()

        # Unterminated tag
        return None

    def _release(self) -> None:
        if self._current is not None and self._current.modified:
            self._edits.append(self._current)
        self._current = None

    def get_attribute(self, name: str) -> str | bool | None:
        """Return the decoded attribute value, True if boolean, None if absent."""
        if self._current is None or self._current.closer:
            return None
        attribute = self._current.find(name)
        return attribute.value if attribute else None

    def get_attribute_names(self) -> list[str]:
        if self._current is None:
            return []
        return [a.name.lower() for a in self._current.attributes]

    def set_attribute(self, name: str, value: str | bool) -> None:
        """Set an attribute on the current tag, adding it if absent."""
        if self._current is None or self._current.closer:
            return
        attribute = self._current.find(name)
        if attribute is None:
            self._current.attributes.append(Attribute(name.lower(), value, modified=True))
        elif attribute.value != value:
            attribute.value = value
            attribute.modified = True
        else:
            return
        self._current.modified = True

    def remove_attribute(self, name: str) -> None:
        if self._current is None:
            return
        attribute = self._current.find(name)
        if attribute is not None:
            self._current.attributes.remove(attribute)
            self._current.modified = True

    def class_list(self) -> list[str]:
        value = self.get_attribute("class")
        return value.split() if isinstance(value, str) else []

    def has_class(self, name: str) -> bool:
        return name in self.class_list()

    def add_class(self, name: str) -> None:
        classes = self.class_list()
        if name not in classes:
            self.set_attribute("class", " ".join(classes + [name]))

    def get_tag_html(self) -> str:
        """Current tag as it would be written out."""
        if self._current is None:
            return ""
        if not self._current.modified:
            return self.source[self._current.start:self._current.end]
        return self._current.render()

    def get_updated_html(self) -> str:
        """Return the fragment with every attribute edit applied."""
        edits = list(self._edits)
        if self._current is not None and self._current.modified:
            edits.append(self._current)

        parts = []
        pos = 0
        for tag in sorted(edits, key=lambda t: t.start):
            parts.append(self.source[pos:tag.start])
            parts.append(tag.render())
            pos = tag.end
        parts.append(self.source[pos:])
        return "".join(parts)


@dataclass
class ImageUnit:
    """Span of one <img>, including a directly enclosing <a> when present.

    Attributes:
        start: Start of the unit (the anchor, if any)
        end: End of the unit
        img_start: Start of the <img> tag
        img_end: End of the <img> tag
        in_picture: Whether the unit already sits directly inside a <picture>
    """
    start: int
    end: int
    img_start: int
    img_end: int
    in_picture: bool = False

    @property
    def has_anchor(self) -> bool:
        return self.start != self.img_start


def find_image_units(source: str) -> list[ImageUnit]:
    """Locate every <img> in a fragment with its enclosing link.

    An <a> counts as enclosing only when nothing but whitespace separates
    it from the image on both sides.

    Args:
        source: HTML fragment or document

    Returns:
        ImageUnits in document order
    """
    processor = TagProcessor(source)
    units = []
    previous: Optional[Tag] = None
    pending: Optional[ImageUnit] = None
    picture_depth = 0

    while processor.next_tag(closers=True):
        tag = processor.tag
        name = tag.name.lower()

        if pending is not None:
            if tag.closer and name == "a" and not source[pending.img_end:tag.start].strip():
                pending.end = tag.end
            else:
                pending.start = pending.img_start
            units.append(pending)
            pending = None

        if name == "picture":
            picture_depth = max(0, picture_depth + (-1 if tag.closer else 1))
        elif name == "img" and not tag.closer:
            unit = ImageUnit(tag.start, tag.end, tag.start, tag.end, picture_depth > 0)
            anchored = (
                previous is not None and not previous.closer and previous.name.lower() == "a"
                and not source[previous.end:tag.start].strip()
            )
            if anchored:
                unit.start = previous.start
                pending = unit
            else:
                units.append(unit)

        previous = tag

    if pending is not None:
        pending.start = pending.img_start
        units.append(pending)

    return units
