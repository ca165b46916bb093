"""
Grounding quality scoring (10 point metric).

Breakdown:
- Citation density (0-3): share of content backed by citations
- Source authority (0-4): tier mix of the cited sources
- Coverage (0-3): sections with grounding, plus a bonus for claims with sources
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from geo_pipeline.models import (
    AuthorityTier,
    Citation,
    GroundingBreakdown,
    GroundingMetadata,
    GroundingQualityScore,
    SectionCoverage,
    Source,
)
from geo_pipeline.quality.domain_tiers import TierLists, tier_for, title_from_uri

logger = logging.getLogger(__name__)

# (threshold %, points), checked from the top
CITATION_DENSITY_STEPS = (
    (80.0, 3.0),
    (60.0, 2.5),
    (40.0, 2.0),
    (25.0, 1.5),
    (10.0, 1.0),
)
CITATION_DENSITY_FLOOR = 0.5  # any citation at all

TIER1_POINTS, TIER1_CAP = 1.5, 3.0
TIER2_POINTS, TIER2_CAP = 0.5, 1.0
COMMUNITY_ONLY_FLOOR = 0.5
MAX_AUTHORITY = 4.0

MAX_SECTION_COVERAGE = 2.0
MAX_COVERAGE = 3.0
MAX_TOTAL = 10.0


def _round2(value: float) -> float:
    """Half-up rounding to two decimals."""
    return int(value * 100 + 0.5) / 100 if value >= 0 else -int(-value * 100 + 0.5) / 100


def citation_density_score(citation_percentage: float) -> float:
    """Step function; rewards near-full citation coverage disproportionately."""
    for threshold, points in CITATION_DENSITY_STEPS:
        if citation_percentage >= threshold:
            return points
    if citation_percentage > 0:
        return CITATION_DENSITY_FLOOR
    return 0.0


def source_authority_score(tier1_count: int, tier2_count: int, tier3_count: int) -> float:
    """
    Additive per-tier points with per-tier caps.

    Tier 3 never adds points on its own, but a source set made only of tier 3
    gets a flat floor. Tier 4 contributes nothing.
    """
    if tier1_count == 0 and tier2_count == 0:
        return COMMUNITY_ONLY_FLOOR if tier3_count > 0 else 0.0

    score = min(TIER1_CAP, tier1_count * TIER1_POINTS)
    score += min(TIER2_CAP, tier2_count * TIER2_POINTS)
    return min(MAX_AUTHORITY, score)


def coverage_score(coverage: SectionCoverage) -> float:
    """min(3, 2 * section share + share of claims carrying a source)."""
    if coverage.total_sections == 0:
        return 0.0

    section_share = min(1.0, coverage.sections_with_grounding / coverage.total_sections)
    score = section_share * MAX_SECTION_COVERAGE

    if coverage.total_claims > 0:
        score += min(1.0, coverage.claims_with_sources / coverage.total_claims)

    return min(MAX_COVERAGE, score)


def calculate_grounding_quality_score(sources: Sequence[Source],
                                      coverage: SectionCoverage,
                                      content_length: int,
                                      cited_length: int) -> GroundingQualityScore:
    """
    Calculate the composite grounding quality score (0-10).

    Args:
        sources: Deduplicated sources for the whole run
        coverage: Section and claim coverage counts
        content_length: Characters of scoreable content
        cited_length: Characters considered backed by citations

    Returns:
        GroundingQualityScore with every breakdown field populated
    """
    tier_counts = {tier: 0 for tier in AuthorityTier}
    for source in sources:
        tier_counts[source.tier] += 1

    if content_length > 0:
        citation_percentage = min(100.0, max(0.0, cited_length / content_length * 100))
    else:
        citation_percentage = 0.0

    density = citation_density_score(citation_percentage)
    authority = source_authority_score(
        tier_counts[AuthorityTier.OFFICIAL],
        tier_counts[AuthorityTier.TECH_MEDIA],
        tier_counts[AuthorityTier.COMMUNITY],
    )
    covered = coverage_score(coverage)
    total = min(MAX_TOTAL, density + authority + covered)

    return GroundingQualityScore(
        citation_density=_round2(density),
        source_authority=_round2(authority),
        coverage=_round2(covered),
        total=_round2(total),
        breakdown=GroundingBreakdown(
            citation_percentage=_round2(citation_percentage),
            tier1_sources=tier_counts[AuthorityTier.OFFICIAL],
            tier2_sources=tier_counts[AuthorityTier.TECH_MEDIA],
            tier3_sources=tier_counts[AuthorityTier.COMMUNITY],
            tier4_sources=tier_counts[AuthorityTier.UNCLASSIFIED],
            sections_with_grounding=coverage.sections_with_grounding,
            total_sections=coverage.total_sections,
            claims_with_sources=coverage.claims_with_sources,
            total_claims=coverage.total_claims,
        ),
    )


def sources_from_citations(citations: Iterable[Citation], stage: str,
                           tiers: Optional[TierLists] = None) -> List[Source]:
    """Turn provider citations into sources for one stage, counting repeats."""
    by_uri: Dict[str, Source] = {}
    for citation in citations:
        uri = (citation.uri or "").strip()
        if not uri:
            continue
        existing = by_uri.get(uri)
        if existing:
            by_uri[uri] = existing.model_copy(update={"access_count": existing.access_count + 1})
        else:
            by_uri[uri] = Source(
                uri=uri,
                title=citation.title or title_from_uri(uri),
                tier=tier_for(uri, tiers),
                access_count=1,
                used_in=[stage],
            )
    return sorted(by_uri.values(), key=lambda s: s.tier)


def aggregate_grounding_metadata(stage_sources: Mapping[str, Sequence[Source]],
                                 search_queries: Optional[Mapping[str, Sequence[str]]] = None
                                 ) -> GroundingMetadata:
    """
    Merge per-stage source lists into run-level grounding metadata.

    Sources are deduplicated by URI: the using-stage sets are unioned and the
    access counts summed. The result is ordered by tier, most authoritative
    first; ties keep first-seen order.
    """
    merged: Dict[str, Source] = {}
    queries: List[str] = []

    for stage, sources in stage_sources.items():
        for source in sources:
            existing = merged.get(source.uri)
            if existing:
                used_in = list(existing.used_in)
                for name in list(source.used_in) + [stage]:
                    if name not in used_in:
                        used_in.append(name)
                merged[source.uri] = existing.model_copy(update={
                    "used_in": used_in,
                    "access_count": existing.access_count + source.access_count,
                })
            else:
                used_in = list(source.used_in)
                if stage not in used_in:
                    used_in.append(stage)
                merged[source.uri] = source.model_copy(update={"used_in": used_in})

    for stage_queries in (search_queries or {}).values():
        for query in stage_queries:
            if query and query not in queries:
                queries.append(query)

    unique = sorted(merged.values(), key=lambda s: s.tier)
    contributing = sum(1 for sources in stage_sources.values() if sources)
    density = contributing / len(stage_sources) * 100 if stage_sources else 0.0

    return GroundingMetadata(
        web_search_queries=queries,
        sources=unique,
        citation_density=_round2(density),
        total_citations=sum(s.access_count for s in unique),
        unique_sources=len(unique),
    )


def describe_grounding_quality(score: GroundingQualityScore) -> Dict[str, object]:
    """Human-readable level, description and recommendations for a score."""
    total = score.total
    breakdown = score.breakdown
    recommendations: List[str] = []

    if total >= 8:
        level = "excellent"
        description = "Strong grounding with authoritative sources and comprehensive coverage"
    elif total >= 6:
        level = "good"
        description = "Good grounding with reliable sources covering most content"
    elif total >= 4:
        level = "fair"
        description = "Moderate grounding - some areas lack verification"
    else:
        level = "poor"
        description = "Limited grounding - content may need additional verification"

    if breakdown.tier1_sources == 0:
        recommendations.append("Add official brand sources for higher authority")

    if breakdown.citation_percentage < 50:
        recommendations.append("Increase citation coverage to improve content verification")

    if breakdown.sections_with_grounding < breakdown.total_sections * 0.7:
        recommendations.append("Ensure all major sections have grounding support")

    if breakdown.tier1_sources + breakdown.tier2_sources == 0:
        recommendations.append("Include established tech media sources for credibility")

    return {"level": level, "description": description, "recommendations": recommendations}


def format_grounding_score(score: GroundingQualityScore) -> str:
    level = describe_grounding_quality(score)["level"]
    b = score.breakdown
    return "\n".join([
        f"Grounding Quality: {score.total}/10 ({str(level).upper()})",
        f"├── Citation Density: {score.citation_density}/3 ({b.citation_percentage}%)",
        f"├── Source Authority: {score.source_authority}/4 "
        f"(T1:{b.tier1_sources} T2:{b.tier2_sources} T3:{b.tier3_sources})",
        f"└── Coverage: {score.coverage}/3 ({b.sections_with_grounding}/{b.total_sections} sections)",
    ])
