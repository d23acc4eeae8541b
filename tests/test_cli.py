"""Tests for cli.py module.

Runs the Typer commands against a temporary settings file and home
directory.
"""

import json

import pytest
from pathlib import Path
from PIL import Image
from typer.testing import CliRunner

from edge_images.cli import app, expand_paths


runner = CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Isolated home directory for the cache file."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    return home


@pytest.fixture
def config(tmp_path, home):
    """Cloudflare settings file."""
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "provider": "cloudflare",
        "site_url": "https://site.test",
        "max_width": 650,
    }))
    return path


def flat(output):
    return output.replace("\n", "")


class TestCheck:
    """Tests for the check command."""

    def test_valid_config(self, config):
        """Should report the provider and features."""
        result = runner.invoke(app, ["--config", str(config), "check"])

        assert result.exit_code == 0
        assert "Configuration valid" in result.output
        assert "Cloudflare" in result.output
        assert "picture_wrap" in result.output

    def test_missing_config(self, tmp_path, home):
        """Should exit with an error when settings are missing."""
        result = runner.invoke(app, ["--config", str(tmp_path / "missing.json"), "check"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_misconfigured_provider(self, tmp_path, home):
        """Should fail validation for a hosted provider without subdomain."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"provider": "imgix"}))

        result = runner.invoke(app, ["--config", str(path), "check"])

        assert result.exit_code == 1
        assert "subdomain" in result.output


class TestUrl:
    """Tests for the url command."""

    def test_prints_edge_url(self, config, monkeypatch):
        """Should print the transformed URL and copy it."""
        copied = []
        monkeypatch.setattr("edge_images.cli.copy_to_clipboard", lambda text: copied.append(text) or True)

        result = runner.invoke(app, ["--config", str(config), "url", "https://site.test/img.jpg", "--width", "300"])

        assert result.exit_code == 0
        assert "https://site.test/cdn-cgi/image/" in flat(result.output)
        assert "width=300" in copied[0]

    def test_remote_url_warning(self, config, monkeypatch):
        """Should warn when the URL cannot be transformed."""
        monkeypatch.setattr("edge_images.cli.copy_to_clipboard", lambda text: False)

        result = runner.invoke(app, ["--config", str(config), "url", "https://other.test/img.jpg"])

        assert result.exit_code == 0
        assert "not transformed" in result.output


class TestRewrite:
    """Tests for the rewrite command."""

    def test_writes_edge_copy(self, config, tmp_path):
        """Should save a rewritten _edge document."""
        doc = tmp_path / "post.html"
        doc.write_text('<p><img src="/img.jpg" width="1600" height="900"></p>')

        result = runner.invoke(app, ["--config", str(config), "rewrite", str(doc)])

        assert result.exit_code == 0
        new_doc = tmp_path / "post_edge.html"
        assert new_doc.exists()
        content = new_doc.read_text()
        assert "edge-images-processed" in content
        assert "--max-width: 650px" in content
        assert doc.read_text() == '<p><img src="/img.jpg" width="1600" height="900"></p>'

    def test_markdown_images(self, config, tmp_path):
        """Should rewrite ![alt](src) image URLs in Markdown."""
        doc = tmp_path / "post.md"
        doc.write_text("# Post\n\n![Photo](/img.jpg)\n")

        result = runner.invoke(app, ["--config", str(config), "rewrite", str(doc)])

        assert result.exit_code == 0
        assert "![Photo](https://site.test/cdn-cgi/image/" in (tmp_path / "post_edge.md").read_text()

    def test_dry_run(self, config, tmp_path):
        """Should not write files in dry-run mode."""
        doc = tmp_path / "post.html"
        doc.write_text('<img src="/img.jpg">')

        result = runner.invoke(app, ["--config", str(config), "rewrite", "--dry-run", str(doc)])

        assert result.exit_code == 0
        assert not (tmp_path / "post_edge.html").exists()


class TestPreload:
    """Tests for the preload command."""

    def test_prints_link_tags(self, tmp_path, home, monkeypatch):
        """Should print and copy a preload tag for a sized local image."""
        docroot = tmp_path / "site"
        docroot.mkdir()
        Image.new("RGB", (1600, 900)).save(docroot / "hero.jpg")
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "provider": "cloudflare",
            "site_url": "https://site.test",
            "document_root": str(docroot),
        }))
        copied = []
        monkeypatch.setattr("edge_images.cli.copy_to_clipboard", lambda text: copied.append(text) or True)

        result = runner.invoke(app, ["--config", str(path), "preload", "/hero.jpg", "/hero.jpg"])

        assert result.exit_code == 0
        assert '<link rel="preload"' in result.output
        assert copied[0].count("<link") == 1
        assert 'imagesizes="(max-width: 650px) 100vw, 650px"' in copied[0]

    def test_nothing_to_preload(self, config, monkeypatch):
        """Should warn when no tag can be built."""
        monkeypatch.setattr("edge_images.cli.copy_to_clipboard", lambda text: False)

        result = runner.invoke(app, ["--config", str(config), "preload", "https://other.test/a.jpg"])

        assert result.exit_code == 0
        assert "No preload tags" in result.output


class TestScan:
    """Tests for the scan command."""

    def test_lists_references(self, config, tmp_path):
        """Should categorize each image reference."""
        doc = tmp_path / "page.html"
        doc.write_text('<img src="/img.jpg"><img src="https://other.test/a.jpg">')

        result = runner.invoke(app, ["--config", str(config), "scan", str(doc)])

        assert result.exit_code == 0
        assert "local" in result.output
        assert "external" in result.output


class TestCacheClear:
    """Tests for the cache clear command."""

    def test_flush(self, config):
        """Should clear the whole cache."""
        result = runner.invoke(app, ["--config", str(config), "cache", "clear"])

        assert result.exit_code == 0
        assert "Transform cache cleared" in result.output

    def test_single_url(self, config):
        """Should purge entries for given URLs."""
        result = runner.invoke(app, ["--config", str(config), "cache", "clear", "--url", "/img.jpg"])

        assert result.exit_code == 0
        assert "1 URL(s)" in result.output


class TestExpandPaths:
    """Tests for expand_paths function."""

    def test_expands_directories(self, tmp_path):
        """Should find documents recursively and skip _edge copies."""
        (tmp_path / "a.md").write_text("")
        (tmp_path / "a_edge.md").write_text("")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.html").write_text("")
        (tmp_path / "photo.jpg").write_text("")

        result = expand_paths([tmp_path])

        assert [p.name for p in result] == ["a.md", "b.html"]
