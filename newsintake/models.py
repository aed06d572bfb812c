"""Shared data models for the news intake pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

EXTRACTOR_VERSION = "2.0"

TOPIC_REGIONAL = "regional"
TOPIC_KEYWORD = "keyword"

SOURCE_TYPES = ("hyperlocal", "regional", "national")


def normalize_hostname(url: str) -> str:
    """Lowercased hostname without a leading ``www.``."""
    if "//" not in url:
        url = "//" + url
    try:
        domain = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def count_words(text: str) -> int:
    if not text:
        return 0
    return len(text.split())


@dataclass
class FetchContext:
    """Mutable per-Fetcher state.

    Owned by exactly one Fetcher; never shared between concurrent fetch
    streams.
    """

    request_count: int = 0
    is_government_site: bool = False


@dataclass(frozen=True)
class RawItem:
    """A single feed entry before its page is fetched."""

    title: str
    link: str
    description: str = ""
    author: str = ""
    published: str = ""


@dataclass(frozen=True)
class ExtractedDocument:
    """Normalized article content produced by the Document Extractor.

    ``word_count`` and ``content_quality_score`` are derived from the body
    and title; create instances through
    :func:`newsintake.extraction.extractor.make_document`.
    """

    title: str
    body: str
    author: str
    published_at: str
    word_count: int
    content_quality_score: int
    extraction_method: str


@dataclass(frozen=True)
class TopicConfig:
    """Relevance target supplied per run. Read-only inside the pipeline."""

    topic_type: str
    keywords: tuple[str, ...] = ()
    negative_keywords: tuple[str, ...] = ()
    region: Optional[str] = None
    landmarks: tuple[str, ...] = ()
    postcodes: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    name: Optional[str] = None

    @property
    def is_regional(self) -> bool:
        return self.topic_type == TOPIC_REGIONAL

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TopicConfig":
        topic_type = data.get("topic_type", TOPIC_KEYWORD)
        if topic_type not in (TOPIC_REGIONAL, TOPIC_KEYWORD):
            raise ValueError(f"Unknown topic_type: {topic_type!r}")

        def terms(key: str) -> tuple[str, ...]:
            return tuple(t.strip() for t in data.get(key) or [] if t and t.strip())

        return cls(
            topic_type=topic_type,
            keywords=terms("keywords"),
            negative_keywords=terms("negative_keywords"),
            region=data.get("region"),
            landmarks=terms("landmarks"),
            postcodes=terms("postcodes"),
            organizations=terms("organizations"),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class SourceInfo:
    """What the caller knows about a content origin."""

    source_type: str = "national"
    canonical_domain: Optional[str] = None
    feed_url: Optional[str] = None
    user_selected: bool = False


@dataclass(frozen=True)
class RelevanceScore:
    """Score of one document against one topic."""

    score: int
    method: str
    matched_terms: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CandidateArticle:
    """An extracted document with its relevance verdict."""

    document: ExtractedDocument
    relevance: RelevanceScore
    retained: bool
    source_url: str
    canonical_url: str
    discard_reason: Optional[str] = None
    source_domain: Optional[str] = None
    scraped_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        """Shape handed to the persistence collaborator."""
        doc = self.document
        return {
            "title": doc.title,
            "body": doc.body,
            "author": doc.author,
            "published_at": doc.published_at or self.scraped_at,
            "source_url": self.source_url,
            "canonical_url": self.canonical_url,
            "word_count": doc.word_count,
            "regional_relevance_score": self.relevance.score,
            "content_quality_score": doc.content_quality_score,
            "processing_status": "new",
            "import_metadata": {
                "extraction_method": doc.extraction_method,
                "source_domain": self.source_domain,
                "scrape_timestamp": self.scraped_at,
                "extractor_version": EXTRACTOR_VERSION,
            },
        }


@dataclass(frozen=True)
class ScrapingResult:
    """Outcome of one orchestration run for a single source."""

    success: bool
    method: str
    articles: tuple[CandidateArticle, ...] = ()
    articles_found: int = 0
    articles_scraped: int = 0
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "method": self.method,
            "articlesFound": self.articles_found,
            "articlesScraped": self.articles_scraped,
            "articles": [a.to_dict() for a in self.articles],
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class SourceRun:
    """A configured source to process: the orchestration input."""

    feed_url: str
    topic: TopicConfig
    source_info: SourceInfo
    region: Optional[str] = None
    name: Optional[str] = None

    @property
    def site_id(self) -> str:
        """Normalized site identifier from URL (domain without www.)."""
        return normalize_hostname(self.feed_url)
