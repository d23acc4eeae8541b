"""CLI interface for Edge Images using Typer.

Main entry point for the application. Handles command definitions,
argument parsing, progress bars, and Rich console output.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from .cache import JsonFileCacheBackend, RedisCacheBackend, TransformCache
from .config import load_settings, validate_config, get_settings, get_provider_config, ConfigError
from .engine import EdgeImages
from .gate import DEFAULT_FEATURES, feature_enabled, provider_configured
from .metadata import dimensions_for_url
from .models import Settings
from .parser import extract_images, categorize_reference, rewrite_markdown_images, save_new_document, detect_document_type
from .providers import get_provider, get_providers
from .resolver import CONTENT
from .utils import console, copy_to_clipboard, format_dimensions, format_output, is_supported_document, print_success, print_error, print_warning

logger = logging.getLogger("edge_images")

app = typer.Typer(
    name="edge-images",
    help="Rewrite <img> markup to serve images through an edge transformation service",
    add_completion=False,
)
cache_app = typer.Typer(help="Manage the transform cache", add_completion=False)
app.add_typer(cache_app, name="cache")


@app.callback()
def main_options(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to settings JSON (default: ~/.config/edge-images/config.json)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Edge Images command line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    ctx.obj = {"config": config}


def load_config(ctx: typer.Context) -> Settings:
    """Load and validate settings for a command."""
    raw = load_settings(ctx.obj.get("config") if ctx.obj else None)
    validate_config(raw)
    return get_settings(raw)


def build_cache(settings: Settings) -> TransformCache:
    """Persistent transform cache shared between CLI runs."""
    if settings.redis_url:
        backend = RedisCacheBackend.from_url(settings.redis_url)
    else:
        backend = JsonFileCacheBackend()
    return TransformCache(backend, ttl=settings.cache_ttl, logger=logger)


def build_engine(settings: Settings) -> EdgeImages:
    return EdgeImages(settings, cache=build_cache(settings), logger=logger)


def expand_paths(paths: list[Path]) -> list[Path]:
    """Expand paths, recursively finding documents in directories.

    Args:
        paths: List of file or directory paths

    Returns:
        List of document paths, skipping previously written _edge copies
    """
    expanded = []

    for path in paths:
        if path.is_dir():
            expanded.extend(p for p in path.rglob("*") if p.is_file() and is_supported_document(p))
        else:
            expanded.append(path)

    # Sort by name for consistent ordering
    return sorted(
        (p for p in expanded if not p.stem.endswith("_edge")),
        key=lambda p: p.name.lower(),
    )


def rewrite_file(engine: EdgeImages, file_path: Path, context: str) -> tuple[str, int]:
    """Rewrite every image in one document.

    Returns:
        Tuple of (new content, number of images transformed)
    """
    content = file_path.read_text()
    doc_type = detect_document_type(file_path)

    new_content, count = engine.rewrite_document(content, context)

    if doc_type == 'markdown':
        transformed = []

        def transform(src: str) -> str:
            url = engine.transform_url(src, context)
            if url != src:
                transformed.append(src)
            return url

        new_content = rewrite_markdown_images(new_content, transform)
        count += len(transformed)

    return new_content, count


@app.command()
def rewrite(
    ctx: typer.Context,
    files: list[Path] = typer.Argument(
        ...,
        help="Document files (md, html) or folders to rewrite",
        exists=True,
    ),
    context: str = typer.Option(
        CONTENT,
        "--context",
        "-c",
        help="Rendering context: content|avatar|fixed|schema|social|sitemap",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Report what would change without writing files",
    ),
) -> None:
    """Rewrite images in documents and save _edge copies."""
    try:
        settings = load_config(ctx)
        if not provider_configured(settings):
            print_warning(f"Provider '{settings.provider}' is not configured; documents will be unchanged")

        engine = build_engine(settings)
        expanded_files = expand_paths(files)

        if not expanded_files:
            console.print("[yellow]No supported documents found[/yellow]")
            raise typer.Exit(0)

        results = []

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:

            task = progress.add_task("[cyan]Rewriting documents...", total=len(expanded_files))

            for file_path in expanded_files:
                progress.update(task, description=f"[cyan]Rewriting {file_path.name}...")

                try:
                    new_content, count = rewrite_file(engine, file_path, context)
                except (OSError, ValueError) as e:
                    print_error(f"Failed to rewrite {file_path.name}: {e}")
                    progress.advance(task)
                    continue

                if count and not dry_run:
                    new_path = save_new_document(file_path, new_content)
                    results.append((file_path.name, count, new_path.name))
                else:
                    results.append((file_path.name, count, None))

                progress.advance(task)

        for name, count, new_name in results:
            if new_name:
                print_success(f"{name}: {count} image(s) → {new_name}")
            elif count:
                console.print(f"[dim]Would rewrite {count} image(s) in {name}[/dim]")
            else:
                console.print(f"[yellow]No images to rewrite in {name}[/yellow]")

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)


@app.command()
def url(
    ctx: typer.Context,
    src: str = typer.Argument(..., help="Image URL to transform"),
    width: Optional[int] = typer.Option(None, "--width", "-w", help="Target width", min=1),
    height: Optional[int] = typer.Option(None, "--height", "-h", help="Target height", min=1),
    fit: Optional[str] = typer.Option(None, "--fit", "-f", help="Fit: cover|contain|pad|scale-down"),
    context: str = typer.Option(CONTENT, "--context", "-c", help="Rendering context"),
    output_format: str = typer.Option(
        "plain",
        "--output-format",
        "-o",
        help="Output format: plain|markdown|html",
    ),
) -> None:
    """Print the edge URL for an image and copy it to the clipboard."""
    try:
        settings = load_config(ctx)
        engine = build_engine(settings)

        args = {"width": width, "height": height, "fit": fit}
        transformed = engine.transform_url(src, context, args)

        if transformed == src:
            print_warning("URL was not transformed (remote, SVG, excluded or provider not configured)")

        output = format_output([transformed], output_format)
        console.print(output)

        if copy_to_clipboard(output):
            console.print("\n[dim]URL copied to clipboard[/dim]")

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)


@app.command()
def preload(
    ctx: typer.Context,
    srcs: list[str] = typer.Argument(..., help="Hero image URLs to preload"),
    context: str = typer.Option(CONTENT, "--context", "-c", help="Rendering context"),
    sizes: Optional[str] = typer.Option(None, "--sizes", "-s", help="sizes value for the preloaded image"),
) -> None:
    """Print <link rel="preload"> tags for hero images and copy them."""
    try:
        settings = load_config(ctx)
        engine = build_engine(settings)

        links = engine.preload_links({"url": src, "context": context, "sizes": sizes} for src in srcs)
        if not links:
            print_warning("No preload tags (preloads disabled, images not transformable, or sizes unknown)")
            return

        console.print(links, markup=False, highlight=False)

        if copy_to_clipboard(links):
            console.print("\n[dim]Preload tags copied to clipboard[/dim]")

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)


@app.command()
def scan(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Document to scan", exists=True, dir_okay=False),
) -> None:
    """List the images in a document and how they would be handled."""
    try:
        settings = load_config(ctx)
        engine = build_engine(settings)

        content = file.read_text()
        refs = extract_images(content, detect_document_type(file))

        if not refs:
            console.print(f"[yellow]No images found in {file.name}[/yellow]")
            return

        table = Table(title=f"Images in {file.name}")
        table.add_column("Source", style="cyan")
        table.add_column("Category")
        table.add_column("Size", justify="right")
        table.add_column("Edge URL", style="green")

        for ref in refs:
            category = categorize_reference(ref, settings.site_url, engine.provider)
            dimensions = dimensions_for_url(engine.metadata, ref) if category == "local" else None
            edge_url = engine.transform_url(ref)
            table.add_row(ref, category, format_dimensions(dimensions), edge_url if edge_url != ref else "-")

        console.print(table)

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command()
def check(ctx: typer.Context) -> None:
    """Validate settings and report the provider and features."""
    try:
        with console.status("[bold green]Validating configuration..."):
            settings = load_config(ctx)

        console.print("[green]✓[/green] Configuration valid")

        label = get_providers()[settings.provider]
        provider = get_provider(get_provider_config(settings))
        if settings.provider == "none":
            print_warning("No provider selected (transformation disabled)")
        elif provider.is_configured():
            print_success(f"Provider: {label}")
        else:
            print_error(f"Provider {label} missing: {', '.join(provider.missing_fields())}")
            raise typer.Exit(1)

        console.print(f"  Site: {settings.site_url or '-'}")
        console.print(f"  Max width: {settings.max_width}px")
        if not settings.enabled:
            print_warning("Transformation globally disabled")

        for name in DEFAULT_FEATURES:
            state = "[green]on[/green]" if feature_enabled(settings, name) else "[dim]off[/dim]"
            console.print(f"  {name}: {state}")

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    urls: Optional[list[str]] = typer.Option(
        None,
        "--url",
        "-u",
        help="Only purge entries for this source URL (repeatable)",
    ),
) -> None:
    """Purge cached transforms."""
    try:
        settings = load_config(ctx)
        cache = build_cache(settings)

        if urls:
            cache.invalidate(*urls)
            print_success(f"Purged cached transforms for {len(urls)} URL(s)")
        else:
            cache.flush()
            print_success("Transform cache cleared")

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
