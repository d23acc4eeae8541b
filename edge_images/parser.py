"""Markdown and HTML document helpers for Edge Images.

Handles image reference extraction, reference categorization, Markdown
image rewriting, and saving rewritten documents.
"""

import re
from pathlib import Path
from typing import Callable, Literal

from bs4 import BeautifulSoup

from .metadata import SiteMetadata
from .providers import Provider
from .utils import HTML_SUFFIXES, MARKDOWN_SUFFIXES


# ![alt](src) or ![alt](src "title")
MARKDOWN_IMAGE_PATTERN = re.compile(
    r'(!\[[^\]]*\]\(\s*<?)([^)\s>]+)(>?(?:\s+"[^"]*")?\s*\))'
)


ReferenceType = Literal["local", "external", "transformed"]


def extract_images(content: str, doc_type: str) -> list[str]:
    """Find all image references in a document.

    Args:
        content: Document content
        doc_type: Document type ('markdown' or 'html')

    Returns:
        List of image paths/URLs found (unique, preserving order)
    """
    images = []
    seen = set()

    def add(src: str) -> None:
        src = src.strip()
        if src and src not in seen:
            images.append(src)
            seen.add(src)

    if doc_type == 'markdown':
        for match in MARKDOWN_IMAGE_PATTERN.finditer(content):
            add(match.group(2))

    # HTML img tags, including those embedded in Markdown
    soup = BeautifulSoup(content, 'lxml')
    for img in soup.find_all('img'):
        add(img.get('src', ''))

    return images


def categorize_reference(ref: str, site_url: str, provider: Provider) -> ReferenceType:
    """Determine if a reference is local, external, or already transformed.

    Args:
        ref: Image reference (path or URL)
        site_url: Public URL of the site
        provider: Active edge provider

    Returns:
        Reference type: 'local', 'external', or 'transformed'
    """
    if provider.is_transformed_url(ref):
        return "transformed"

    if SiteMetadata(site_url).is_local_url(ref):
        return "local"

    return "external"


def rewrite_markdown_images(content: str, transform: Callable[[str], str]) -> str:
    """Replace the URL of every ![alt](src) image.

    Args:
        content: Markdown content
        transform: Maps a source URL to its replacement

    Returns:
        Markdown with image URLs replaced
    """
    def replace(match: re.Match) -> str:
        return f"{match.group(1)}{transform(match.group(2))}{match.group(3)}"

    return MARKDOWN_IMAGE_PATTERN.sub(replace, content)


def save_new_document(
    original_path: Path,
    content: str,
) -> Path:
    """Save processed document with _edge suffix.

    Args:
        original_path: Path to original document
        content: Processed content with edge URLs

    Returns:
        Path to new document (e.g., document_edge.html)
    """
    stem = original_path.stem
    suffix = original_path.suffix
    new_name = f"{stem}_edge{suffix}"
    new_path = original_path.parent / new_name

    with open(new_path, 'w') as f:
        f.write(content)

    return new_path


def detect_document_type(path: Path) -> str:
    """Detect document type from file extension.

    Args:
        path: Path to document

    Returns:
        Document type: 'markdown' or 'html'

    Raises:
        ValueError: If the extension is not a supported document type
    """
    suffix = path.suffix.lower()

    if suffix in MARKDOWN_SUFFIXES:
        return 'markdown'
    elif suffix in HTML_SUFFIXES:
        return 'html'
    else:
        raise ValueError(f"Unsupported document type: {suffix}")
