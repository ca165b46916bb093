"""
Confidence policies.

Two policies exist side by side and the orchestrator picks one by name:

* ``graded`` - confidence follows the source mix: official sources give HIGH,
  tech media with enough corroborating signals give HIGH, tech media or
  well-corroborated community sources give MEDIUM, primary content with at
  least one signal gives MEDIUM, anything else is LOW.
* ``primary_content`` - the source content is ground truth: HIGH whenever
  primary content exists, LOW otherwise. External sources only supplement and
  never change the level.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Type

from geo_pipeline.exceptions import ConfigurationError
from geo_pipeline.models import AuthorityTier, ConfidenceLevel, Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvidenceProfile:
    has_official_sources: bool = False      # tier 1
    has_tech_media_sources: bool = False    # tier 2
    has_community_sources: bool = False     # tier 3
    has_primary_content: bool = False
    grounding_signal_count: int = 0

    @classmethod
    def from_sources(cls, sources: Iterable[Source], has_primary_content: bool) -> "EvidenceProfile":
        sources = list(sources)
        tiers = {s.tier for s in sources}
        return cls(
            has_official_sources=AuthorityTier.OFFICIAL in tiers,
            has_tech_media_sources=AuthorityTier.TECH_MEDIA in tiers,
            has_community_sources=AuthorityTier.COMMUNITY in tiers,
            has_primary_content=has_primary_content,
            grounding_signal_count=len(sources),
        )


class ConfidencePolicy(ABC):
    name: str = ""

    @abstractmethod
    def assign(self, profile: EvidenceProfile) -> ConfidenceLevel:
        """Map an evidence profile to a confidence label."""


class GradedConfidencePolicy(ConfidencePolicy):
    name = "graded"

    def assign(self, profile: EvidenceProfile) -> ConfidenceLevel:
        if profile.has_official_sources:
            return ConfidenceLevel.HIGH

        if profile.has_tech_media_sources and profile.grounding_signal_count >= 3:
            return ConfidenceLevel.HIGH

        if profile.has_tech_media_sources or (
            profile.has_community_sources and profile.grounding_signal_count >= 2
        ):
            return ConfidenceLevel.MEDIUM

        if profile.has_primary_content and profile.grounding_signal_count >= 1:
            return ConfidenceLevel.MEDIUM

        return ConfidenceLevel.LOW


class PrimaryContentConfidencePolicy(ConfidencePolicy):
    name = "primary_content"

    def assign(self, profile: EvidenceProfile) -> ConfidenceLevel:
        if profile.has_primary_content:
            return ConfidenceLevel.HIGH
        return ConfidenceLevel.LOW


POLICIES: Dict[str, Type[ConfidencePolicy]] = {
    GradedConfidencePolicy.name: GradedConfidencePolicy,
    PrimaryContentConfidencePolicy.name: PrimaryContentConfidencePolicy,
}


def get_confidence_policy(name: str) -> ConfidencePolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown confidence policy {name!r}; expected one of {sorted(POLICIES)}"
        ) from None
