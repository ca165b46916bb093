"""Tests for confidence policies and authority tiers."""

import pytest

from geo_pipeline.config.settings import Settings
from geo_pipeline.exceptions import ConfigurationError
from geo_pipeline.models import AuthorityTier, ConfidenceLevel, Source
from geo_pipeline.quality.confidence import (
    EvidenceProfile,
    GradedConfidencePolicy,
    PrimaryContentConfidencePolicy,
    get_confidence_policy,
)
from geo_pipeline.quality.domain_tiers import hostname_of, tier_for, title_from_uri


def _source(uri, tier):
    return Source(uri=uri, title="t", tier=tier)


class TestEvidenceProfile:

    def test_from_sources(self):
        profile = EvidenceProfile.from_sources(
            [
                _source("https://www.theverge.com/a", AuthorityTier.TECH_MEDIA),
                _source("https://reddit.com/r/x", AuthorityTier.COMMUNITY),
            ],
            has_primary_content=True,
        )
        assert not profile.has_official_sources
        assert profile.has_tech_media_sources
        assert profile.has_community_sources
        assert profile.has_primary_content
        assert profile.grounding_signal_count == 2


class TestGradedPolicy:

    policy = GradedConfidencePolicy()

    @pytest.mark.parametrize("profile,expected", [
        (EvidenceProfile(has_official_sources=True, grounding_signal_count=1), ConfidenceLevel.HIGH),
        (EvidenceProfile(has_tech_media_sources=True, grounding_signal_count=3), ConfidenceLevel.HIGH),
        (EvidenceProfile(has_tech_media_sources=True, grounding_signal_count=2), ConfidenceLevel.MEDIUM),
        (EvidenceProfile(has_community_sources=True, grounding_signal_count=2), ConfidenceLevel.MEDIUM),
        (EvidenceProfile(has_community_sources=True, grounding_signal_count=1), ConfidenceLevel.LOW),
        (EvidenceProfile(has_primary_content=True, grounding_signal_count=1), ConfidenceLevel.MEDIUM),
        (EvidenceProfile(has_primary_content=True), ConfidenceLevel.LOW),
        (EvidenceProfile(), ConfidenceLevel.LOW),
    ])
    def test_assign(self, profile, expected):
        assert self.policy.assign(profile) == expected


class TestPrimaryContentPolicy:

    policy = PrimaryContentConfidencePolicy()

    def test_primary_content_is_high_regardless_of_sources(self):
        assert self.policy.assign(EvidenceProfile(has_primary_content=True)) == ConfidenceLevel.HIGH

    def test_sources_alone_do_not_raise_level(self):
        profile = EvidenceProfile(has_official_sources=True, grounding_signal_count=5)
        assert self.policy.assign(profile) == ConfidenceLevel.LOW


class TestPolicyLookup:

    def test_known_names(self):
        assert isinstance(get_confidence_policy("graded"), GradedConfidencePolicy)
        assert isinstance(get_confidence_policy("primary_content"), PrimaryContentConfidencePolicy)

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError, match="Unknown confidence policy"):
            get_confidence_policy("optimistic")


class TestAuthorityTiers:

    @pytest.mark.parametrize("uri,tier", [
        ("https://news.samsung.com/global/galaxy-s25", AuthorityTier.OFFICIAL),
        ("https://www.samsung.com/us/smartphones/", AuthorityTier.OFFICIAL),
        ("https://www.gsmarena.com/review.php", AuthorityTier.TECH_MEDIA),
        ("https://edition.cnet.com/tech/phones", AuthorityTier.TECH_MEDIA),
        ("https://www.reddit.com/r/samsung", AuthorityTier.COMMUNITY),
        ("https://example.org/samsung.com", AuthorityTier.UNCLASSIFIED),
        ("https://notsamsung.com/", AuthorityTier.UNCLASSIFIED),
        ("", AuthorityTier.UNCLASSIFIED),
    ])
    def test_tier_for(self, uri, tier):
        assert tier_for(uri) == tier

    def test_tier1_checked_before_tier2(self):
        tiers = (("shared.com",), ("shared.com",), ())
        assert tier_for("https://shared.com/x", tiers) == AuthorityTier.OFFICIAL

    def test_settings_tiers_are_normalized(self):
        settings = Settings(_env_file=None, TIER1_DOMAINS=[" Brand.COM ", ""])
        tier1, _, _ = settings.authority_tiers()
        assert tier1 == ("brand.com",)
        assert tier_for("https://shop.brand.com/p", settings.authority_tiers()) == AuthorityTier.OFFICIAL

    def test_hostname_of(self):
        assert hostname_of("WWW.TheVerge.com/path") == "theverge.com"
        assert hostname_of("") == ""

    @pytest.mark.parametrize("uri,title", [
        ("https://www.gsmarena.com/samsung_galaxy_s25_ultra-review.php", "Samsung Galaxy S25 Ultra Review"),
        ("https://www.theverge.com/", "theverge.com"),
        ("", "External Source"),
    ])
    def test_title_from_uri(self, uri, title):
        assert title_from_uri(uri) == title
