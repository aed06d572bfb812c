"""Article, feed and sitemap link discovery from listing pages."""

import logging
import re
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from newsintake.extraction.profiles import get_profile
from newsintake.models import normalize_hostname

logger = logging.getLogger(__name__)

ARTICLE_URL_PATTERNS = (
    re.compile(r"/\d{4}/\d{2}/\d{2}/[^/]+/?$"),  # date-stamped
    re.compile(r"/\d{4}/\d{2}/[^/]+/?$"),
    re.compile(r"/article/[^/]+/?$"),
    re.compile(r"/news/[^/]+/?$"),
    re.compile(r"/story/[^/]+/?$"),
    re.compile(r"/posts?/[^/]+/?$"),
    re.compile(r"/blog/[^/]+/?$"),
    re.compile(r"/[^/]+-\d+/?$"),  # slug ending with an id
    re.compile(r"/[a-z0-9]+(?:-[a-z0-9]+){3,}/?$"),  # long slug
)

EXCLUDE_URL_PATTERNS = (
    re.compile(r"\.(jpe?g|png|gif|svg|webp|ico|pdf|mp4|mp3|mov|avi|zip|css|js|xml|docx?|xlsx?)$", re.I),
    re.compile(r"/(category|categories|tag|tags|topic|author|authors|page|search|archive|archives)/"),
    re.compile(r"/(feed|rss)(/|$)"),
    re.compile(r"/wp-(admin|login|json)"),
    re.compile(r"/(login|register|subscribe|account|contact|privacy|terms|cookies?)(/|$)"),
)

_SKIP_SCHEMES = ("javascript:", "mailto:", "tel:", "#", "data:")

_FEED_TYPES = ("application/rss+xml", "application/atom+xml", "application/rdf+xml")
_FEED_HINT = re.compile(r"\b(rss|atom|feed)\b", re.I)

DEFAULT_ARTICLE_LIMIT = 20


def resolve_url(href: str, base_url: str) -> str:
    """Resolve ``href`` against ``base_url``, concatenating if parsing fails."""
    try:
        return urljoin(base_url, href)
    except ValueError:
        if href.startswith("http"):
            return href
        return base_url.rstrip("/") + "/" + href.lstrip("/")


def normalize_url(url: str) -> str:
    """Normalize a URL for deduplication.

    Removes fragments, lowercases scheme/host, strips trailing slashes.
    """
    parsed = urlparse(url)
    path = parsed.path.rstrip("/") or "/"
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        path,
        parsed.params,
        parsed.query,
        "",  # Remove fragment
    ))


def canonical_url(url: str) -> str:
    """Normalized URL with ``www.`` dropped and tracking parameters removed."""
    parsed = urlparse(normalize_url(url))
    netloc = parsed.netloc
    if netloc.startswith("www."):
        netloc = netloc[4:]
    query = "&".join(
        part for part in parsed.query.split("&")
        if part and not part.lower().startswith(("utm_", "fbclid=", "gclid=", "ref="))
    )
    return urlunparse((parsed.scheme, netloc, parsed.path, parsed.params, query, ""))


def is_same_domain(url: str, base_url: str) -> bool:
    """Check if a URL belongs to the same domain (with/without www)."""
    return normalize_hostname(url) == normalize_hostname(base_url)


def is_likely_article_url(url: str, extra_patterns: Iterable[re.Pattern] = ()) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    path = parsed.path.lower()
    if any(p.search(path) for p in EXCLUDE_URL_PATTERNS):
        return False
    patterns = tuple(extra_patterns) + ARTICLE_URL_PATTERNS
    return any(p.search(path) for p in patterns)


def _hrefs(soup: BeautifulSoup) -> Iterable[str]:
    for tag in soup.find_all("a", href=True):
        href = tag["href"].strip()
        if not href or href.lower().startswith(_SKIP_SCHEMES):
            continue
        yield href


def discover_article_links(
    html: str,
    base_url: str,
    limit: int = DEFAULT_ARTICLE_LIMIT,
) -> list[str]:
    """Candidate article URLs on a listing page, in document order.

    Args:
        html: Listing page HTML.
        base_url: Address the page was fetched from.
        limit: Maximum number of URLs returned.

    Returns:
        Deduplicated same-domain URLs that look like articles.
    """
    soup = BeautifulSoup(html, "lxml")
    extra = get_profile(base_url).article_link_patterns
    seen: set[str] = set()
    links: list[str] = []

    for href in _hrefs(soup):
        url = resolve_url(href, base_url)
        try:
            if not is_same_domain(url, base_url) or not is_likely_article_url(url, extra):
                continue
        except ValueError:
            logger.debug("Skipping unparsable link %r on %s", href, base_url)
            continue
        key = normalize_url(url)
        if key in seen or key == normalize_url(base_url):
            continue
        seen.add(key)
        links.append(url.split("#", 1)[0])
        if len(links) >= limit:
            break

    logger.debug("Discovered %d article links on %s", len(links), base_url)
    return links


def discover_feed_links(html: str, base_url: str) -> list[str]:
    """Feed URLs advertised by a page.

    ``<link rel="alternate" type="application/rss+xml">`` declarations come
    first, then anchors whose href or text mentions rss/feed/atom.
    """
    soup = BeautifulSoup(html, "lxml")
    found: list[str] = []

    def add(href: Optional[str]) -> None:
        if not href:
            return
        url = resolve_url(href.strip(), base_url)
        try:
            urlparse(url)
        except ValueError:
            logger.debug("Skipping unparsable feed link %r on %s", href, base_url)
            return
        if url not in found:
            found.append(url)

    for link in soup.find_all("link", href=True):
        if (link.get("type") or "").lower() in _FEED_TYPES:
            add(link["href"])

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith(_SKIP_SCHEMES):
            continue
        text = anchor.get_text(" ", strip=True)
        if _FEED_HINT.search(href) or _FEED_HINT.search(text):
            add(href)

    logger.debug("Discovered %d feed links on %s", len(found), base_url)
    return found


def sitemap_candidates(base_url: str, robots_txt: Optional[str] = None) -> list[str]:
    """Sitemap URLs declared in robots.txt, then the conventional locations."""
    candidates: list[str] = []
    for line in (robots_txt or "").splitlines():
        if line.lower().startswith("sitemap:"):
            url = line.split(":", 1)[1].strip()
            if url and url not in candidates:
                candidates.append(url)
    for path in ("/sitemap.xml", "/sitemap_index.xml", "/news-sitemap.xml"):
        url = resolve_url(path, base_url)
        if url not in candidates:
            candidates.append(url)
    return candidates


def parse_sitemap(xml: str, base_url: str) -> tuple[list[str], list[str]]:
    """Split a sitemap into (article_urls, nested_sitemap_urls)."""
    soup = BeautifulSoup(xml, "xml")
    extra = get_profile(base_url).article_link_patterns
    articles: list[str] = []
    nested: list[str] = []

    for node in soup.find_all("sitemap"):
        loc = node.find("loc")
        url = loc.get_text(strip=True) if loc else ""
        if not url:
            continue
        try:
            urlparse(url)
        except ValueError:
            logger.debug("Skipping unparsable nested sitemap %r", url)
            continue
        nested.append(url)

    for node in soup.find_all("url"):
        loc = node.find("loc")
        if not loc:
            continue
        url = loc.get_text(strip=True)
        try:
            if is_same_domain(url, base_url) and is_likely_article_url(url, extra):
                articles.append(url)
        except ValueError:
            logger.debug("Skipping unparsable sitemap URL %r", url)

    return articles, nested
