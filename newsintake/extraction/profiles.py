"""Per-domain extraction overrides.

Profiles are immutable and looked up by normalized hostname; anything
without an entry uses the ``default`` profile.
"""

import re
from dataclasses import dataclass
from types import MappingProxyType

from newsintake.models import normalize_hostname


@dataclass(frozen=True)
class SourceProfile:
    content_selectors: tuple[str, ...]
    exclude_selectors: tuple[str, ...]
    title_selectors: tuple[str, ...] = ()
    author_selectors: tuple[str, ...] = ()
    article_link_patterns: tuple[re.Pattern, ...] = ()
    site_specific: bool = True


_COMMON_EXCLUDES = (
    "nav",
    "footer",
    "header",
    "aside",
    "form",
    ".sidebar",
    ".widget",
    ".comments",
    ".social-share",
    ".advertisement",
)

DEFAULT_PROFILE = SourceProfile(
    content_selectors=(
        "article",
        "[role='main'] .entry-content",
        "[itemprop='articleBody']",
        ".post-content",
        ".article-content",
        ".article-body",
        ".story-body",
        ".entry-content",
        "main .content",
        ".content",
    ),
    exclude_selectors=_COMMON_EXCLUDES + (
        ".related",
        ".navigation",
        ".social",
        ".cookie-banner",
        ".newsletter",
    ),
    site_specific=False,
)

PROFILES = MappingProxyType({
    "bournefree.co.uk": SourceProfile(
        content_selectors=(".entry-content", ".post-content", "article .content", ".article-body"),
        title_selectors=(".entry-title", "h1.post-title", "article h1"),
        author_selectors=(".author-name", ".byline", ".post-author"),
        exclude_selectors=_COMMON_EXCLUDES + (".related-posts",),
    ),
    "eastbournereporter.co.uk": SourceProfile(
        content_selectors=(".entry-content", ".post-body", "article .content"),
        title_selectors=("h1.entry-title", "article h1"),
        author_selectors=(".author", ".byline"),
        exclude_selectors=(".sidebar", ".widget-area", ".related-articles", ".comments-area"),
    ),
    "sussexexpress.co.uk": SourceProfile(
        content_selectors=(".article-content", "[data-testid='article-body']", "article"),
        title_selectors=("h1.headline", "h1"),
        author_selectors=(".author-name", "[rel='author']"),
        exclude_selectors=_COMMON_EXCLUDES + (".related-articles", ".inline-ad"),
        article_link_patterns=(re.compile(r"/news/[a-z-]+/[^/]+-\d+/?$"),),
    ),
    "theargus.co.uk": SourceProfile(
        content_selectors=(".article-body", "#article-body", "article"),
        title_selectors=("h1.mar-article__headline", "h1"),
        author_selectors=(".mar-author__name", ".byline"),
        exclude_selectors=_COMMON_EXCLUDES + (".mar-related", ".mar-ad"),
        article_link_patterns=(re.compile(r"/news/\d+\.[^/]+/?$"),),
    ),
    "bbc.co.uk": SourceProfile(
        content_selectors=("[data-component='text-block']", "article", ".story-body__inner"),
        title_selectors=("h1#main-heading", "h1"),
        author_selectors=("[data-testid='byline-name']", ".byline__name"),
        exclude_selectors=_COMMON_EXCLUDES + ("[data-component='links-block']",),
        article_link_patterns=(re.compile(r"/news/(articles/[a-z0-9]+|[a-z-]+-\d+)$"),),
    ),
    "gov.uk": SourceProfile(
        content_selectors=(".govspeak", "#content .gem-c-govspeak", "main"),
        title_selectors=("h1.gem-c-title__text", "h1"),
        author_selectors=(".gem-c-metadata__definition a",),
        exclude_selectors=_COMMON_EXCLUDES + (".gem-c-related-navigation", ".gem-c-contextual-sidebar"),
        article_link_patterns=(re.compile(r"/government/news/[^/]+/?$"),),
    ),
})


def get_profile(url: str) -> SourceProfile:
    """Profile for the URL's host, trying parent domains before the default."""
    host = normalize_hostname(url)
    parts = host.split(".")
    for i in range(len(parts) - 1):
        profile = PROFILES.get(".".join(parts[i:]))
        if profile is not None:
            return profile
    return DEFAULT_PROFILE
