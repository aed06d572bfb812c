"""Relevance Scoring Engine.

Scores an ExtractedDocument against a topic and decides whether to keep
it. The decision order is fixed:

1. negative keywords (any whole-word match rejects)
2. the threshold for (topic type, source type, user selected)
3. competing-region exclusion, regional topics only
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from newsintake.config import ScoringWeights, ThresholdTable
from newsintake.matching.keywords import count_term, score_keywords
from newsintake.matching.regional import landmark_mentions, score_regional
from newsintake.models import (
    TOPIC_KEYWORD,
    TOPIC_REGIONAL,
    ExtractedDocument,
    RelevanceScore,
    TopicConfig,
)

logger = logging.getLogger(__name__)

REASON_NEGATIVE_KEYWORD = "negative_keyword"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_COMPETING_TITLE = "competing_region_title"
REASON_COMPETING_LANDMARKS = "competing_region_landmarks"

# Competing landmarks must reach this count, and exceed ours, to reject
COMPETING_LANDMARK_MARGIN = 2


@dataclass(frozen=True)
class Verdict:
    """Score plus retain/discard decision for one document."""

    relevance: RelevanceScore
    retained: bool
    reason: Optional[str] = None


class RelevanceEngine:
    """Stateless scorer; safe to share between threads."""

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        thresholds: Optional[ThresholdTable] = None,
    ):
        self.weights = weights or ScoringWeights()
        self.thresholds = thresholds or ThresholdTable()

    def score(
        self,
        document: ExtractedDocument,
        topic: TopicConfig,
        source_type: str = "national",
        competing_topics: Iterable[TopicConfig] = (),
        source_url: Optional[str] = None,
    ) -> RelevanceScore:
        """Score a document against a topic. Pure function of its inputs."""
        if topic.is_regional:
            value, matched = score_regional(
                document.title,
                document.body,
                topic,
                source_type,
                competing_topics,
                self.weights,
                source_url=source_url,
            )
            return RelevanceScore(score=value, method=TOPIC_REGIONAL, matched_terms=matched)

        value, matched = score_keywords(document.title, document.body, topic.keywords, self.weights)
        return RelevanceScore(score=value, method=TOPIC_KEYWORD, matched_terms=matched)

    def threshold(self, topic: TopicConfig, source_type: str, user_selected: bool) -> int:
        return self.thresholds.lookup(topic.topic_type, source_type, user_selected)

    def meets_threshold(
        self,
        relevance: RelevanceScore,
        topic: TopicConfig,
        source_type: str,
        user_selected: bool,
    ) -> bool:
        return relevance.score >= self.threshold(topic, source_type, user_selected)

    @staticmethod
    def negative_match(document: ExtractedDocument, topic: TopicConfig) -> Optional[str]:
        """First negative keyword found in the title or body, if any."""
        text = f"{document.title}\n{document.body}"
        for keyword in topic.negative_keywords:
            if count_term(text, keyword):
                return keyword
        return None

    @staticmethod
    def competing_exclusion(
        document: ExtractedDocument,
        topic: TopicConfig,
        competing_topics: Iterable[TopicConfig],
    ) -> Optional[str]:
        """Reason to drop a regional article that is really about another region."""
        if not topic.is_regional or not topic.region:
            return None

        title = document.title or ""
        text = f"{title}\n{document.body}"
        ours_in_title = count_term(title, topic.region) > 0

        competing_landmarks = 0
        for other in competing_topics:
            if not other.region or other.region.lower() == topic.region.lower():
                continue
            if not ours_in_title and count_term(title, other.region):
                logger.debug("Title %r names competing region %s", title, other.region)
                return REASON_COMPETING_TITLE
            competing_landmarks += landmark_mentions(text, other)

        our_landmarks = landmark_mentions(text, topic)
        if competing_landmarks >= COMPETING_LANDMARK_MARGIN and competing_landmarks > our_landmarks:
            logger.debug(
                "Competing landmarks outnumber ours (%d > %d)",
                competing_landmarks, our_landmarks,
            )
            return REASON_COMPETING_LANDMARKS
        return None

    def evaluate(
        self,
        document: ExtractedDocument,
        topic: TopicConfig,
        source_type: str = "national",
        user_selected: bool = False,
        competing_topics: Iterable[TopicConfig] = (),
        source_url: Optional[str] = None,
    ) -> Verdict:
        """Score a document and decide whether it is retained.

        Args:
            document: Extracted article.
            topic: Topic being collected.
            source_type: hyperlocal, regional or national.
            user_selected: Whether the user picked this source explicitly.
            competing_topics: Other registered regional topics.
            source_url: Article URL.

        Returns:
            Verdict with the score, the decision and a discard reason.
        """
        competing_topics = tuple(competing_topics)
        relevance = self.score(
            document, topic, source_type, competing_topics, source_url=source_url,
        )

        negative = self.negative_match(document, topic)
        if negative:
            logger.debug("Rejected %r: negative keyword %r", document.title, negative)
            return Verdict(relevance, False, REASON_NEGATIVE_KEYWORD)

        if not self.meets_threshold(relevance, topic, source_type, user_selected):
            logger.debug(
                "Rejected %r: score %d below threshold %d",
                document.title, relevance.score,
                self.threshold(topic, source_type, user_selected),
            )
            return Verdict(relevance, False, REASON_BELOW_THRESHOLD)

        reason = self.competing_exclusion(document, topic, competing_topics)
        if reason:
            return Verdict(relevance, False, reason)

        return Verdict(relevance, True)
