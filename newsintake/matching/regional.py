"""Regional-topic relevance scoring.

Score components:
- region-name mentions (capped), or a flat trust base when there are none
- distinct configured keywords, landmarks, postcodes and organizations
- a small country-context bonus on national sources
- penalties for other registered regions, waived when the text connects
  both regions ("Brighton to Eastbourne")
- a penalty when a competing region appears in the article URL

The sum is scaled by the source-type multiplier and clamped into the
confidence band, unless the negative signal is overwhelming.
"""

import logging
import re
from typing import Iterable, Optional

from newsintake.config import ScoringWeights
from newsintake.matching.keywords import count_term
from newsintake.models import TopicConfig

logger = logging.getLogger(__name__)

COUNTRY_TERMS = (
    "uk", "united kingdom", "britain", "great britain", "british",
    "england", "english", "nationwide",
)

_CONNECTORS = r"(?:to|and|&|-|–|or|via|from)"


def _phrase(term: str) -> str:
    return r"\s+".join(re.escape(part) for part in term.split())


def regions_connected(text: str, region: str, other: str) -> bool:
    """True when the text joins both regions, e.g. "Brighton and Hove to Eastbourne"."""
    if not text or not region or not other:
        return False
    a, b = _phrase(region), _phrase(other)
    pattern = rf"(?<!\w)(?:{a}\s*{_CONNECTORS}\s*{b}|{b}\s*{_CONNECTORS}\s*{a})(?!\w)"
    return re.search(pattern, text, re.IGNORECASE) is not None


def term_mentions(text: str, terms: Iterable[str]) -> dict[str, int]:
    """Occurrences of each term that appears at least once."""
    found = {}
    for term in terms:
        hits = count_term(text, term)
        if hits:
            found[term] = hits
    return found


def landmark_mentions(text: str, topic: TopicConfig) -> int:
    """Total landmark and postcode occurrences for a regional topic."""
    return sum(term_mentions(text, topic.landmarks + topic.postcodes).values())


def _url_mentions(url: str, region: str) -> bool:
    url = url.lower()
    name = region.lower().strip()
    candidates = {name.replace(" ", "-"), name.replace(" ", ""), name.replace(" ", "_")}
    return any(re.search(rf"(?<![a-z]){re.escape(c)}(?![a-z])", url) for c in candidates if c)


def _competing_penalty(
    text: str,
    topic: TopicConfig,
    competing: Iterable[TopicConfig],
    weights: ScoringWeights,
    source_url: Optional[str],
) -> float:
    penalty = 0.0
    region = topic.region or ""
    for other in competing:
        if not other.region or other.region.lower() == region.lower():
            continue

        if source_url and _url_mentions(source_url, other.region):
            logger.debug("Competing region %s in URL %s", other.region, source_url)
            penalty += weights.competing_url_penalty

        if region and regions_connected(text, region, other.region):
            logger.debug("%s and %s discussed together; no penalty", region, other.region)
            continue

        if count_term(text, other.region):
            penalty += weights.competing_name_penalty
        other_terms = term_mentions(text, other.landmarks + other.postcodes)
        penalty += weights.competing_term_penalty * len(other_terms)
        if other_terms:
            logger.debug("Competing %s terms found: %s", other.region, sorted(other_terms))
    return penalty


def clamp_regional(value: float, weights: ScoringWeights) -> int:
    """Confidence band, with overwhelming negatives passed through (bounded)."""
    value = int(round(value))
    if value <= weights.overwhelming_negative:
        return max(weights.regional_min, value)
    return max(weights.regional_floor, min(weights.regional_cap, value))


def score_regional(
    title: str,
    body: str,
    topic: TopicConfig,
    source_type: str,
    competing: Iterable[TopicConfig],
    weights: ScoringWeights,
    source_url: Optional[str] = None,
) -> tuple[int, dict[str, int]]:
    """Score text against a regional topic.

    Args:
        title: Article title.
        body: Article body.
        topic: Regional topic being scored.
        source_type: hyperlocal, regional or national.
        competing: Other registered regional topics.
        weights: Scoring weights.
        source_url: Article URL, checked for competing region names.

    Returns:
        Tuple of (score in the confidence band, {term: occurrences}).
    """
    text = f"{title or ''}\n{body or ''}"
    matched: dict[str, int] = {}
    score = 0.0

    region_hits = count_term(text, topic.region) if topic.region else 0
    if region_hits:
        matched[topic.region] = region_hits
        score += min(region_hits, weights.region_mention_cap) * weights.region_mention_weight
    else:
        # The source was registered for this region
        score += weights.trust_base

    categories = (
        (topic.keywords, weights.regional_keyword_weight),
        (topic.landmarks, weights.landmark_weight),
        (topic.postcodes, weights.postcode_weight),
        (topic.organizations, weights.organization_weight),
    )
    for terms, weight in categories:
        found = term_mentions(text, terms)
        score += weight * len(found)
        matched.update(found)

    if source_type == "national" and term_mentions(text, COUNTRY_TERMS):
        score += weights.country_context_bonus

    score -= _competing_penalty(text, topic, competing, weights, source_url)
    score *= weights.source_multiplier(source_type)

    final = clamp_regional(score, weights)
    logger.debug(
        "Regional score for %s: raw=%.1f final=%d matched=%s",
        topic.region, score, final, matched,
    )
    return final, matched
