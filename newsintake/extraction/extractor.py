"""Article extraction from raw HTML.

Metadata comes from JSON-LD when the page carries a NewsArticle/Article
block, then from profile selectors, meta tags and generic fallbacks. The
body is chosen by an ordered strategy chain:

1. profile content selectors, each candidate scored
2. paragraph aggregation when the best selector scores below 50
3. the highest-scoring candidate wins

Extraction never raises on poor pages; an empty body with quality 0 is
returned and the caller decides what to do with it.
"""

import json
import logging
import re
from typing import Any, Iterable, Optional

from bs4 import BeautifulSoup, Comment, Tag
from soupsieve import SelectorSyntaxError

from newsintake.extraction.profiles import SourceProfile, get_profile
from newsintake.models import ExtractedDocument, count_words

logger = logging.getLogger(__name__)

METHOD_SELECTOR = "selector"
METHOD_PARAGRAPHS = "paragraph_aggregation"
METHOD_NONE = "none"

FALLBACK_THRESHOLD = 50
MIN_PARAGRAPH_CHARS = 50
MIN_DIV_CHARS = 100
MAX_MATCHES_PER_SELECTOR = 5

_NOISE_TAGS = ("script", "style", "noscript", "template", "iframe", "svg")

_JSON_LD_TYPES = frozenset({
    "NewsArticle", "Article", "ReportageNewsArticle", "AnalysisNewsArticle",
    "BlogPosting", "LiveBlogPosting",
})

_GENERIC_TITLE_SELECTORS = ("h1", ".entry-title", ".post-title", ".headline")
_GENERIC_AUTHOR_SELECTORS = (".byline", ".author-name", ".author", "[rel='author']")
_GENERIC_DATE_SELECTORS = (".published", ".post-date", ".date", ".timestamp")

_TITLE_SEPARATOR = re.compile(r"\s+[-|–—:]\s+|\s*[|–—]\s*")
_BYLINE_PREFIX = re.compile(r"^\s*by\s+", re.I)

_NAV_PHRASES = re.compile(
    r"\b(menu|subscribe|sign up|newsletter|related articles|related stories|"
    r"cookie|privacy policy|follow us|share this|advertisement|log in|"
    r"all rights reserved|most read|trending now)\b",
    re.I,
)


# ── Scoring ────────────────────────────────────────────────────────


def calculate_content_score(content: str) -> int:
    """Score a body candidate; used only to choose between strategies."""
    if not content:
        return 0

    word_count = count_words(content)
    char_count = len(content)
    score = 0

    if word_count > 300:
        score += 40
    elif word_count > 150:
        score += 30
    elif word_count > 80:
        score += 20
    elif word_count > 40:
        score += 10

    if char_count > 1500:
        score += 20
    elif char_count > 800:
        score += 15
    elif char_count > 400:
        score += 10

    if "\n\n" in content:
        score += 10

    if word_count < 20:
        score -= 30
    if char_count < 100:
        score -= 20

    return max(0, score)


def calculate_content_quality(body: str, title: str) -> int:
    """Content richness in [0, 100], independent of topical relevance."""
    word_count = count_words(body)
    length = len(body or "")
    score = 0

    if word_count > 500:
        score += 40
    elif word_count > 300:
        score += 30
    elif word_count > 150:
        score += 20
    elif word_count > 50:
        score += 10

    if "\n\n" in (body or ""):
        score += 10
    if title and len(title) > 10:
        score += 10

    if length > 1000:
        score += 20
    elif length > 500:
        score += 15
    elif length > 200:
        score += 10

    if word_count < 50:
        score -= 20
    if length < 200:
        score -= 15

    return max(0, min(100, score))


def make_document(
    title: str,
    body: str,
    author: str = "",
    published_at: str = "",
    extraction_method: str = METHOD_NONE,
) -> ExtractedDocument:
    """Build an ExtractedDocument with its derived fields filled in."""
    body = body or ""
    title = title or ""
    return ExtractedDocument(
        title=title,
        body=body,
        author=author or "",
        published_at=published_at or "",
        word_count=count_words(body),
        content_quality_score=calculate_content_quality(body, title),
        extraction_method=extraction_method,
    )


# ── Helpers ────────────────────────────────────────────────────────


def _clean(text: str) -> str:
    return " ".join(text.split())


def _select(soup: Tag, selector: str) -> list[Tag]:
    try:
        return soup.select(selector, limit=MAX_MATCHES_PER_SELECTOR)
    except SelectorSyntaxError:
        logger.warning("Invalid selector skipped: %s", selector)
        return []


def _first_text(soup: Tag, selectors: Iterable[str]) -> str:
    for selector in selectors:
        for node in _select(soup, selector):
            text = _clean(node.get_text(" ", strip=True))
            if text:
                return text
    return ""


def _meta(soup: Tag, **attrs: str) -> str:
    node = soup.find("meta", attrs=attrs)
    if node and node.get("content"):
        return _clean(node["content"])
    return ""


def _block_text(node: Tag) -> str:
    """Text of a content container, keeping paragraph breaks."""
    paragraphs = [_clean(p.get_text(" ", strip=True)) for p in node.find_all(["p", "h2", "h3"])]
    paragraphs = [p for p in paragraphs if p]
    if len(paragraphs) >= 2:
        return "\n\n".join(paragraphs)
    return _clean(node.get_text(" ", strip=True))


def _trim_page_title(title: str) -> str:
    return _TITLE_SEPARATOR.split(_clean(title), maxsplit=1)[0].strip()


def _author_name(value: Any) -> str:
    if isinstance(value, str):
        return _clean(value)
    if isinstance(value, dict):
        return _author_name(value.get("name", ""))
    if isinstance(value, list):
        names = [_author_name(v) for v in value]
        return ", ".join(n for n in names if n)
    return ""


def _json_ld_objects(data: Any) -> Iterable[dict]:
    if isinstance(data, list):
        for entry in data:
            yield from _json_ld_objects(entry)
    elif isinstance(data, dict):
        if "@graph" in data:
            yield from _json_ld_objects(data["@graph"])
        yield data


def _is_article_type(value: Any) -> bool:
    if isinstance(value, list):
        return any(_is_article_type(v) for v in value)
    return value in _JSON_LD_TYPES


def extract_json_ld(soup: BeautifulSoup) -> dict[str, str]:
    """Headline, author and publish date from JSON-LD article blocks."""
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("Skipping unparseable JSON-LD block")
            continue
        for obj in _json_ld_objects(data):
            if not _is_article_type(obj.get("@type")):
                continue
            headline = obj.get("headline") or obj.get("name") or ""
            return {
                "title": _clean(headline) if isinstance(headline, str) else "",
                "author": _author_name(obj.get("author")),
                "published_at": str(obj.get("datePublished") or "").strip(),
            }
    return {}


def _strip_noise(soup: BeautifulSoup) -> None:
    for tag in soup(list(_NOISE_TAGS)):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()


def _strip_excluded(soup: BeautifulSoup, profile: SourceProfile) -> None:
    for selector in profile.exclude_selectors:
        try:
            nodes = soup.select(selector)
        except SelectorSyntaxError:
            logger.warning("Invalid exclude selector skipped: %s", selector)
            continue
        for node in nodes:
            node.decompose()


# ── Metadata ───────────────────────────────────────────────────────


def extract_title(soup: BeautifulSoup, profile: SourceProfile, structured: dict[str, str]) -> str:
    if structured.get("title"):
        return structured["title"]
    title = _first_text(soup, profile.title_selectors)
    if title:
        return title
    title = _meta(soup, property="og:title")
    if title:
        return title
    title = _first_text(soup, _GENERIC_TITLE_SELECTORS)
    if title:
        return title
    if soup.title:
        return _trim_page_title(soup.title.get_text(" ", strip=True))
    return ""


def extract_author(soup: BeautifulSoup, profile: SourceProfile, structured: dict[str, str]) -> str:
    author = (
        structured.get("author")
        or _first_text(soup, profile.author_selectors)
        or _meta(soup, name="author")
        or _first_text(soup, _GENERIC_AUTHOR_SELECTORS)
    )
    return _BYLINE_PREFIX.sub("", author).strip()


def extract_published_date(soup: BeautifulSoup, structured: dict[str, str]) -> str:
    if structured.get("published_at"):
        return structured["published_at"]
    published = _meta(soup, property="article:published_time")
    if published:
        return published
    node = soup.find("time", attrs={"datetime": True})
    if node and node["datetime"].strip():
        return node["datetime"].strip()
    return _first_text(soup, _GENERIC_DATE_SELECTORS)


# ── Body ───────────────────────────────────────────────────────────


def extract_by_selectors(soup: BeautifulSoup, selectors: Iterable[str]) -> tuple[str, int]:
    """Best (text, score) among every element matched by ``selectors``."""
    best_text, best_score = "", 0
    for selector in selectors:
        for node in _select(soup, selector):
            text = _block_text(node)
            score = calculate_content_score(text)
            logger.debug(
                "Selector %r: %d words, score %d", selector, count_words(text), score,
            )
            if score > best_score:
                best_text, best_score = text, score
    return best_text, best_score


def aggregate_paragraphs(soup: BeautifulSoup) -> str:
    """Substantial ``<p>`` blocks plus leaf ``<div>``s that are not navigation."""
    blocks = []
    for node in soup.find_all(["p", "div"]):
        text = _clean(node.get_text(" ", strip=True))
        if node.name == "p":
            if len(text) >= MIN_PARAGRAPH_CHARS:
                blocks.append(text)
            continue
        if node.find(["p", "div", "article", "section", "ul", "table"]):
            continue
        if len(text) >= MIN_DIV_CHARS and not _NAV_PHRASES.search(text):
            blocks.append(text)
    return "\n\n".join(blocks)


def extract_body(soup: BeautifulSoup, profile: SourceProfile) -> tuple[str, str]:
    """Run the body strategy chain. Returns (body, extraction_method)."""
    body, score = extract_by_selectors(soup, profile.content_selectors)
    method = METHOD_SELECTOR

    if score < FALLBACK_THRESHOLD:
        logger.debug("Best selector score %d < %d, aggregating paragraphs", score, FALLBACK_THRESHOLD)
        aggregated = aggregate_paragraphs(soup)
        aggregated_score = calculate_content_score(aggregated)
        if aggregated_score > score:
            body, score, method = aggregated, aggregated_score, METHOD_PARAGRAPHS

    if score <= 0:
        return "", METHOD_NONE
    return body, method


def extract(html: str, url: str, profile: Optional[SourceProfile] = None) -> ExtractedDocument:
    """Extract a normalized document from raw HTML.

    Args:
        html: Raw page HTML.
        url: Page address, used to choose the SourceProfile.
        profile: Explicit profile overriding the hostname lookup.

    Returns:
        ExtractedDocument with every field populated; ``body`` is empty and
        the quality score 0 when nothing qualifying was found.
    """
    profile = profile or get_profile(url)
    soup = BeautifulSoup(html or "", "lxml")

    structured = extract_json_ld(soup)
    _strip_noise(soup)

    title = extract_title(soup, profile, structured)
    author = extract_author(soup, profile, structured)
    published_at = extract_published_date(soup, structured)

    _strip_excluded(soup, profile)
    body, method = extract_body(soup, profile)

    document = make_document(
        title=title,
        body=body,
        author=author,
        published_at=published_at,
        extraction_method=method,
    )
    logger.debug(
        "Extracted %d words (quality %d, %s) from %s",
        document.word_count, document.content_quality_score, document.extraction_method, url,
    )
    return document
