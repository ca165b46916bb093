"""Authority tier classification for cited sources."""

import logging
import re
from typing import Optional, Sequence, Tuple
from urllib.parse import urlparse

from geo_pipeline.config.settings import (
    DEFAULT_TIER1_DOMAINS,
    DEFAULT_TIER2_DOMAINS,
    DEFAULT_TIER3_DOMAINS,
)
from geo_pipeline.models import AuthorityTier

logger = logging.getLogger(__name__)

TierLists = Tuple[Sequence[str], Sequence[str], Sequence[str]]

DEFAULT_TIERS: TierLists = (DEFAULT_TIER1_DOMAINS, DEFAULT_TIER2_DOMAINS, DEFAULT_TIER3_DOMAINS)


def hostname_of(uri: str) -> str:
    """Lower-cased hostname without a leading ``www.``; empty when unparseable."""
    if not uri:
        return ""
    candidate = uri.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def tier_for(uri: str, tiers: Optional[TierLists] = None) -> AuthorityTier:
    """
    Determine the authority tier for a URI.

    Tier 1 is checked first, then tier 2, then tier 3; anything unmatched is
    tier 4. Matching is on the hostname only (exact or subdomain suffix), so
    the path and query never influence the tier.

    Args:
        uri: Source URI
        tiers: Ordered (tier1, tier2, tier3) domain allow-lists

    Returns:
        AuthorityTier
    """
    host = hostname_of(uri)
    if not host:
        return AuthorityTier.UNCLASSIFIED

    tier1, tier2, tier3 = tiers or DEFAULT_TIERS

    if any(_host_matches(host, d) for d in tier1):
        return AuthorityTier.OFFICIAL

    if any(_host_matches(host, d) for d in tier2):
        return AuthorityTier.TECH_MEDIA

    if any(_host_matches(host, d) for d in tier3):
        return AuthorityTier.COMMUNITY

    return AuthorityTier.UNCLASSIFIED


def title_from_uri(uri: str) -> str:
    """
    Build a readable title from a URI when the provider supplied none.

    The last path segment is cleaned up and title-cased; the hostname is used
    when the path is empty.
    """
    host = hostname_of(uri)
    if not host:
        return "External Source"

    path = urlparse(uri if "://" in uri else f"https://{uri}").path
    segments = [s for s in path.split("/") if s]
    last = segments[-1] if segments else ""

    clean = re.sub(r"\.(html?|php|aspx?)$", "", last, flags=re.IGNORECASE)
    clean = re.sub(r"[-_]+", " ", clean).strip()
    if not clean:
        return host
    return " ".join(word[:1].upper() + word[1:] for word in clean.split())
