"""Tests for rewriter.py module.

Tests skip conditions, attribute computation, link handling, container
wrapping, idempotence, and the rewrite state chart.
"""

import re

import pytest
from unittest.mock import MagicMock

from edge_images.engine import EdgeImages
from edge_images.metadata import StaticMetadata
from edge_images.models import Settings
from edge_images.rewriter import (
    ALLOWED_TRANSITIONS,
    InvalidRewriteTransition,
    RewriteRun,
    RewriteState,
)
from edge_images.tags import TagProcessor


SITE = "https://site.test"
IMG = '<img src="https://site.test/img.jpg" width="1600" height="900">'


@pytest.fixture
def settings():
    return Settings(provider="cloudflare", site_url=SITE, max_width=650)


@pytest.fixture
def engine(settings):
    return EdgeImages(settings, metadata=StaticMetadata({}, SITE))


def img_attributes(fragment):
    """Attributes of the first <img> in a fragment."""
    processor = TagProcessor(fragment)
    assert processor.next_tag("img")
    return {name: processor.get_attribute(name) for name in processor.get_attribute_names()}


class TestEndToEnd:
    """The 1600x900 Cloudflare example."""

    def test_constrains_src_and_keeps_intrinsic_attributes(self, engine):
        """Should resize to 650x366 while keeping width/height at 1600x900."""
        result = engine.rewrite_result(IMG)
        attrs = img_attributes(result.html)

        assert result.transformed
        assert attrs["src"].startswith("https://site.test/cdn-cgi/image/")
        assert "width=650" in attrs["src"]
        assert "height=366" in attrs["src"]
        assert attrs["width"] == "1600"
        assert attrs["height"] == "900"
        assert "--max-width: 650px" in result.container_html
        assert "--aspect-ratio: 1600/900" in result.container_html

    def test_srcset_and_sizes(self, engine):
        """Should add width-descriptor candidates and default sizes."""
        attrs = img_attributes(engine.rewrite(IMG))

        descriptors = re.findall(r" (\d+w)(?:,|$)", attrs["srcset"])
        assert descriptors == ["300w", "650w"]
        assert attrs["sizes"] == "(max-width: 650px) 100vw, 650px"

    def test_marker_classes(self, engine):
        """Should append the image and processed classes once."""
        attrs = img_attributes(engine.rewrite(IMG.replace("<img", '<img class="alignnone"')))

        assert attrs["class"] == "alignnone edge-images-img edge-images-processed"

    def test_container_structure(self, engine):
        """Should wrap only the image in the container."""
        result = engine.rewrite_result(IMG)

        assert result.html == result.container_html
        assert result.container_html.startswith(
            '<picture class="edge-images-container" '
            'style="--aspect-ratio: 1600/900; --max-width: 650px"><img '
        )
        assert result.container_html.endswith("></picture>")
        assert result.tag_html in result.container_html


class TestIdempotence:
    """Rewriting rewritten markup changes nothing."""

    @pytest.mark.parametrize("fragment", [
        IMG,
        f'<a href="/big.jpg">{IMG}</a>',
        '<img src="/uploads/unknown.jpg" alt="x">',
        '<p>Before</p>' + IMG + '<p>After</p>',
    ])
    def test_rewrite_twice(self, engine, fragment):
        """Should be a fixed point after one pass."""
        once = engine.rewrite(fragment)

        assert engine.rewrite(once) == once

    def test_without_picture_wrap(self, settings):
        """Should also hold for in-place replacement."""
        settings.features = {"picture_wrap": False}
        engine = EdgeImages(settings, metadata=StaticMetadata({}, SITE))
        once = engine.rewrite(IMG)

        assert engine.rewrite(once) == once
        assert "<picture" not in once

    def test_cleans_transformed_src(self, engine):
        """Should rebuild from the source when src is already an edge URL."""
        expected = img_attributes(engine.rewrite(IMG))["src"]
        stale = IMG.replace(
            "https://site.test/img.jpg",
            "https://site.test/cdn-cgi/image/width=100%2Cquality=10/img.jpg",
        )

        assert img_attributes(engine.rewrite(stale))["src"] == expected


class TestSkip:
    """Inputs that must come back unchanged."""

    @pytest.mark.parametrize("fragment", [
        '<img src="https://site.test/logo.svg" width="100" height="100">',
        '<img src="https://other.test/img.jpg" width="1600" height="900">',
        '<img src="data:image/png;base64,AAAA">',
        '<img alt="no source">',
        '<p>No image here</p>',
        '<img class="edge-images-processed" src="https://site.test/img.jpg">',
    ])
    def test_unchanged(self, engine, fragment):
        """Should return the fragment byte-for-byte."""
        result = engine.rewrite_result(fragment)

        assert result.html == fragment
        assert not result.transformed

    def test_veto(self, settings):
        """Should honour a collaborator veto."""
        veto = MagicMock(return_value=True)
        engine = EdgeImages(settings, metadata=StaticMetadata({}, SITE), veto=veto)

        assert engine.rewrite(IMG) == IMG
        veto.assert_called_once()
        assert veto.call_args[0][0] == "https://site.test/img.jpg"

    def test_provider_none(self):
        """Should not transform without a provider."""
        engine = EdgeImages(Settings(site_url=SITE))

        assert engine.rewrite(IMG) == IMG

    def test_unknown_provider(self):
        """Should leave markup alone for an unknown provider id."""
        engine = EdgeImages(Settings(provider="bogus", site_url=SITE), metadata=StaticMetadata({}, SITE))

        result = engine.rewrite_result(IMG)

        assert result.html == IMG
        assert not result.transformed

    def test_unconfigured_provider(self):
        """Should not transform when required fields are missing."""
        engine = EdgeImages(Settings(provider="imgix", site_url=SITE))

        assert engine.rewrite(IMG) == IMG


class TestLinks:
    """Images wrapped in anchors."""

    def test_anchor_inside_container(self, engine):
        """Should re-apply the anchor inside the container exactly once."""
        fragment = f'<a href="/big.jpg" class="lightbox">{IMG}</a>'

        html = engine.rewrite(fragment)

        assert html.startswith('<picture class="edge-images-container"')
        assert '><a href="/big.jpg" class="lightbox"><img ' in html
        assert html.endswith("</a></picture>")
        assert html.count("<a ") == 1
        assert html.count("</a>") == 1

    def test_anchor_kept_in_place(self, settings):
        """Should keep the anchor around the image without wrapping."""
        settings.features = {"picture_wrap": False}
        engine = EdgeImages(settings, metadata=StaticMetadata({}, SITE))

        html = engine.rewrite(f'<a href="/big.jpg">{IMG}</a>')

        assert html.startswith('<a href="/big.jpg"><img ')
        assert html.endswith("></a>")

    def test_surrounding_markup_untouched(self, engine):
        """Should leave markup around the unit as it was."""
        html = engine.rewrite(f"<figure>{IMG}<figcaption>Hi</figcaption></figure>")

        assert html.startswith("<figure><picture ")
        assert html.endswith("</picture><figcaption>Hi</figcaption></figure>")


class TestDimensions:
    """Intrinsic size sources and unknown sizes."""

    def test_metadata_dimensions(self, settings):
        """Should use the metadata collaborator when attributes are absent."""
        metadata = StaticMetadata({"/img.jpg": (1600, 900)}, SITE)
        engine = EdgeImages(settings, metadata=metadata)

        attrs = img_attributes(engine.rewrite('<img src="https://site.test/img.jpg">'))

        assert attrs["width"] == "1600"
        assert attrs["height"] == "900"
        assert "width=650" in attrs["src"]

    def test_unknown_dimensions(self, engine):
        """Should transform src only, drop stale srcset, and not wrap."""
        fragment = '<img src="/uploads/a.jpg" srcset="/uploads/a.jpg 1x, /uploads/a-2x.jpg 2x">'

        result = engine.rewrite_result(fragment)
        attrs = img_attributes(result.html)

        assert result.transformed
        assert result.container_html is None
        assert "width=650" in attrs["src"]
        assert "srcset" not in attrs
        assert "width" not in attrs

    def test_invalid_dimension_attributes(self, engine):
        """Should ignore non-numeric or zero size attributes."""
        attrs = img_attributes(engine.rewrite('<img src="/a.jpg" width="auto" height="0">'))

        assert "srcset" not in attrs
        assert attrs["width"] == "auto"


class TestSizes:
    """Precedence of the sizes attribute."""

    def test_caller_sizes(self, engine):
        """Should prefer the caller's sizes."""
        attrs = img_attributes(engine.rewrite(IMG, sizes="50vw"))

        assert attrs["sizes"] == "50vw"

    def test_existing_sizes(self, engine):
        """Should keep a sizes attribute already on the tag."""
        attrs = img_attributes(engine.rewrite(IMG.replace("<img", '<img sizes="33vw"')))

        assert attrs["sizes"] == "33vw"


class TestAvatars:
    """Fixed-size avatar rendering."""

    def test_single_2x_candidate(self, engine):
        """Should emit one dpr=2 candidate and an avatar container."""
        fragment = '<img src="https://site.test/avatar.jpg" width="96" height="96" class="avatar">'

        html = engine.rewrite_avatar(fragment, 96)
        attrs = img_attributes(html)

        assert attrs["srcset"].endswith(" 2x")
        assert "dpr=2" in attrs["srcset"]
        assert "sizes" not in attrs
        assert "width=96" in attrs["src"]
        assert '<picture class="edge-images-container avatar-picture"' in html
        assert "--max-width: 96px" in html

    def test_disabled_feature(self, settings):
        """Should leave avatars alone when the feature is off."""
        settings.features = {"avatars": False}
        engine = EdgeImages(settings, metadata=StaticMetadata({}, SITE))
        fragment = '<img src="https://site.test/avatar.jpg" width="96" height="96">'

        assert engine.rewrite_avatar(fragment) == fragment


class TestStateChart:
    """Tests for the rewrite state transitions."""

    def test_every_state_reaches_done(self):
        """Should have a path to done from every state."""
        for state in RewriteState:
            seen = {state}
            frontier = [state]
            while frontier:
                for target in ALLOWED_TRANSITIONS[frontier.pop()]:
                    if target not in seen:
                        seen.add(target)
                        frontier.append(target)
            assert RewriteState.DONE in seen

    def test_rejects_illegal_transition(self):
        """Should refuse to jump from init straight to done."""
        run = RewriteRun("<img>", "content")

        with pytest.raises(InvalidRewriteTransition):
            run.advance(RewriteState.DONE)

    def test_records_history(self):
        """Should keep the states passed through."""
        run = RewriteRun("<img>", "content")
        run.advance(RewriteState.LOCATE_IMG_TAG)
        run.advance(RewriteState.SKIP)
        run.advance(RewriteState.DONE)

        assert run.history == [RewriteState.INIT, RewriteState.LOCATE_IMG_TAG, RewriteState.SKIP]
