"""Utility functions for Edge Images.

Provides clipboard operations, output formatting, rounding, file type
detection, and console message helpers.
"""

import math
from pathlib import Path

import pyperclip
from rich.console import Console


console = Console()


def copy_to_clipboard(text: str) -> bool:
    """Copy text to system clipboard.

    Args:
        text: Text to copy

    Returns:
        True if successful, False otherwise
    """
    try:
        pyperclip.copy(text)
        return True
    except pyperclip.PyperclipException:
        return False


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    Python's round() uses banker's rounding; image sizes need 365.5 -> 366.
    """
    return int(math.floor(value + 0.5))


def format_plain(urls: list[str]) -> str:
    """Format URLs as plain text, one per line."""
    return '\n'.join(urls)


def format_markdown(urls: list[str]) -> str:
    """Format URLs as Markdown image syntax."""
    return '\n'.join(f"![]({url})" for url in urls)


def format_html(urls: list[str]) -> str:
    """Format URLs as HTML img tags."""
    return '\n'.join(f'<img src="{url}">' for url in urls)


def format_output(urls: list[str], format_type: str) -> str:
    """Format URLs based on output format setting.

    Args:
        urls: Transformed URLs
        format_type: Output format (plain, markdown, html)

    Returns:
        Formatted output string
    """
    formatters = {
        'plain': format_plain,
        'markdown': format_markdown,
        'html': format_html,
    }

    formatter = formatters.get(format_type, format_plain)
    return formatter(urls)


def format_dimensions(dimensions: tuple[int, int] | None) -> str:
    """Format intrinsic dimensions for display.

    Args:
        dimensions: (width, height) or None

    Returns:
        "1600×900", or "unknown"
    """
    if not dimensions:
        return "unknown"
    return f"{dimensions[0]}×{dimensions[1]}"


MARKDOWN_SUFFIXES = frozenset({'.md', '.markdown'})
HTML_SUFFIXES = frozenset({'.html', '.htm'})


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {message}")


def is_supported_document(path: Path) -> bool:
    """Whether a file is Markdown or HTML, judged by its suffix."""
    return path.suffix.lower() in MARKDOWN_SUFFIXES | HTML_SUFFIXES
