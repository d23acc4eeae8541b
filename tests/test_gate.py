"""Tests for gate.py module.

Tests the provider, feature and per-URL transformation predicates.
"""

import pytest

from edge_images.gate import (
    feature_enabled,
    is_excluded,
    picture_wrap_enabled,
    provider_configured,
    should_transform_url,
    transformation_globally_enabled,
)
from edge_images.metadata import StaticMetadata
from edge_images.models import Settings


@pytest.fixture
def settings():
    return Settings(provider="cloudflare", site_url="https://site.test")


class TestProviderConfigured:
    """Tests for provider_configured function."""

    def test_cloudflare_needs_nothing(self, settings):
        """Should accept Cloudflare without extra fields."""
        assert provider_configured(settings)

    def test_none_is_never_configured(self):
        """Should report the disabled provider as unconfigured."""
        assert not provider_configured(Settings(provider="none"))

    def test_hosted_provider_needs_subdomain(self):
        """Should require a subdomain for imgix."""
        assert not provider_configured(Settings(provider="imgix"))
        assert provider_configured(Settings(provider="imgix", providers={"imgix": {"subdomain": "acme"}}))

    @pytest.mark.parametrize("provider", ["bogus", "None", ""])
    def test_unknown_provider_is_unconfigured(self, provider):
        """Should treat unknown ids like the pass-through provider."""
        settings = Settings(provider=provider, site_url="https://site.test")

        assert not provider_configured(settings)
        assert not transformation_globally_enabled(settings)
        assert not should_transform_url(settings, "/img.jpg")

    def test_provider_id_case_insensitive(self):
        """Should accept a known id in any case."""
        assert provider_configured(Settings(provider="CloudFlare"))


class TestFeatures:
    """Tests for feature toggles."""

    def test_defaults(self):
        """Should fall back to built-in defaults."""
        settings = Settings()

        assert feature_enabled(settings, "picture_wrap")
        assert feature_enabled(settings, "avatars")
        assert feature_enabled(settings, "cache")
        assert feature_enabled(settings, "preloads")
        assert not feature_enabled(settings, "htaccess_cache")
        assert not feature_enabled(settings, "unknown")

    def test_overrides(self):
        """Should honour explicit toggles."""
        settings = Settings(features={"picture_wrap": False, "htaccess_cache": True})

        assert not picture_wrap_enabled(settings)
        assert feature_enabled(settings, "htaccess_cache")

    def test_global_switch(self, settings):
        """Should be off when disabled or without a provider."""
        assert transformation_globally_enabled(settings)
        settings.enabled = False
        assert not transformation_globally_enabled(settings)
        assert not transformation_globally_enabled(Settings(provider="none"))

    def test_predicates_are_repeatable(self, settings):
        """Should give the same answer on every call."""
        assert [provider_configured(settings) for _ in range(3)] == [True, True, True]


class TestShouldTransformUrl:
    """Tests for should_transform_url function."""

    def test_local_raster_image(self, settings):
        """Should accept a local JPEG."""
        metadata = StaticMetadata({}, "https://site.test")

        assert should_transform_url(settings, "https://site.test/a.jpg", metadata)
        assert should_transform_url(settings, "/uploads/a.jpg", metadata)

    @pytest.mark.parametrize("url", [
        "",
        None,
        "data:image/png;base64,AAAA",
        "https://site.test/logo.svg",
        "https://site.test/logo.SVG?ver=2",
    ])
    def test_rejects_unsupported_sources(self, settings, url):
        """Should reject empty, data: and SVG sources."""
        assert not should_transform_url(settings, url)

    def test_rejects_remote_urls(self, settings):
        """Should reject images on other hosts."""
        metadata = StaticMetadata({}, "https://site.test")

        assert not should_transform_url(settings, "https://other.test/a.jpg", metadata)

    def test_rejects_excluded_patterns(self):
        """Should honour fnmatch exclusions."""
        settings = Settings(provider="cloudflare", exclude=["*/private/*", "*.gif"])

        assert is_excluded(settings, "https://site.test/private/a.jpg")
        assert not should_transform_url(settings, "https://site.test/anim.gif")
        assert should_transform_url(settings, "https://site.test/a.jpg")

    def test_rejects_when_disabled(self, settings):
        """Should reject everything when transformation is off."""
        settings.enabled = False

        assert not should_transform_url(settings, "https://site.test/a.jpg")
