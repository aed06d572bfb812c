"""Source-level scraping runs for the news intake pipeline.

For each source the strategy chain is tried in order, stopping at the
first step that yields at least one qualifying article:
1. rss: fetch the configured feed and extract every item's page
2. government_rss_discovery: try conventional feed paths (government sites only)
3. rss_discovery: feeds advertised by the source's home page
4. sitemap: article URLs from sitemaps (off unless enabled in config)
5. html: article links on the home page, fetched and extracted one by one

A failed run reports only the errors of the last step attempted; earlier
steps' errors are logged.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urljoin, urlparse

from newsintake.config import (
    FetchSettings,
    RunSettings,
    build_fetch_settings,
    build_run_settings,
    build_scoring_weights,
    build_threshold_table,
    competing_topics_for,
    load_sources,
)
from newsintake.crawler.fetcher import (
    Fetcher,
    FetchError,
    is_government_site,
    looks_like_feed,
    normalize_fetch_url,
)
from newsintake.crawler.links import (
    canonical_url,
    discover_article_links,
    discover_feed_links,
    normalize_url,
    parse_sitemap,
    resolve_url,
    sitemap_candidates,
)
from newsintake.extraction.extractor import extract, make_document
from newsintake.extraction.feeds import parse_feed
from newsintake.extraction.profiles import get_profile
from newsintake.matching.relevance import RelevanceEngine
from newsintake.models import (
    CandidateArticle,
    ExtractedDocument,
    RawItem,
    ScrapingResult,
    SourceRun,
    TopicConfig,
    normalize_hostname,
)

logger = logging.getLogger(__name__)

METHOD_RSS = "rss"
METHOD_GOVERNMENT_RSS = "government_rss_discovery"
METHOD_RSS_DISCOVERY = "rss_discovery"
METHOD_SITEMAP = "sitemap"
METHOD_HTML = "html"
METHOD_ENHANCED_HTML = "enhanced_html"
METHOD_RSS_FALLBACK = "rss_fallback"

MAX_DISCOVERED_FEEDS = 5


@dataclass
class StepOutcome:
    """What one strategy step produced."""

    method: str
    candidates: list[CandidateArticle] = field(default_factory=list)
    found: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def retained(self) -> list[CandidateArticle]:
        return [c for c in self.candidates if c.retained]

    @property
    def succeeded(self) -> bool:
        return bool(self.retained)


@dataclass
class _ArticleTask:
    url: str
    item: Optional[RawItem] = None


class ScrapingOrchestrator:
    """Runs the strategy chain for one source.

    A run owns its Fetcher; with ``article_workers > 1`` every concurrent
    article task gets a Fetcher of its own.
    """

    def __init__(
        self,
        source: SourceRun,
        competing_topics: Iterable[TopicConfig] = (),
        fetch_settings: Optional[FetchSettings] = None,
        run_settings: Optional[RunSettings] = None,
        engine: Optional[RelevanceEngine] = None,
        fetcher_factory: Optional[Callable[[], Fetcher]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.competing_topics = tuple(competing_topics)
        self.fetch_settings = fetch_settings or FetchSettings()
        self.run_settings = run_settings or RunSettings()
        self.engine = engine or RelevanceEngine()
        self._fetcher_factory = fetcher_factory
        self._clock = clock
        self.deadline: Optional[float] = None

        info = source.source_info
        self.base_url = self._home_url(source, info.canonical_domain)
        self.feed_url = info.feed_url or source.feed_url
        self.source_domain = normalize_hostname(info.canonical_domain or source.feed_url)
        self._base_page: Optional[tuple[Optional[str], Optional[str]]] = None

    @staticmethod
    def _home_url(source: SourceRun, canonical_domain: Optional[str]) -> str:
        """Home page of the source.

        The configured URL's own host is kept when it is the canonical domain
        (with or without ``www.``); some sites only answer on one form.
        """
        configured = normalize_fetch_url(source.feed_url)[0]
        if not canonical_domain:
            return configured
        if normalize_hostname(configured) == normalize_hostname(canonical_domain):
            parsed = urlparse(configured)
            return f"{parsed.scheme}://{parsed.netloc}/"
        return normalize_fetch_url(canonical_domain)[0].rstrip("/") + "/"

    def new_fetcher(self) -> Fetcher:
        if self._fetcher_factory is not None:
            return self._fetcher_factory()
        return Fetcher(settings=self.fetch_settings, deadline=self.deadline)

    def _expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    # ── Run ────────────────────────────────────────────────────────

    def run(self) -> ScrapingResult:
        """Try each enabled strategy in order. Never raises."""
        if self.run_settings.deadline_seconds:
            self.deadline = self._clock() + float(self.run_settings.deadline_seconds)
        self._base_page = None
        fetcher = self.new_fetcher()

        steps = (
            (METHOD_RSS, self._rss_direct),
            (METHOD_GOVERNMENT_RSS, self._government_discovery),
            (METHOD_RSS_DISCOVERY, self._rss_discovery),
            (METHOD_SITEMAP, self._sitemap_discovery),
            (METHOD_HTML, self._html_discovery),
        )

        last: Optional[StepOutcome] = None
        for name, step in steps:
            if not self.run_settings.enabled(name):
                continue
            if self._expired():
                logger.warning("Deadline reached before %s for %s", name, self.base_url)
                if last is None:
                    last = StepOutcome(name)
                last.errors.append("run deadline exceeded")
                break

            if last is not None and last.errors:
                logger.warning(
                    "%s failed for %s (%d errors): %s",
                    last.method, self.base_url, len(last.errors), "; ".join(last.errors[:3]),
                )

            logger.info("Trying %s for %s", name, self.base_url)
            try:
                outcome = step(fetcher)
            except Exception as e:
                logger.error("Strategy %s crashed for %s: %s", name, self.base_url, e, exc_info=True)
                outcome = StepOutcome(name, errors=[f"{name}: unexpected error: {e}"])

            if outcome is None:
                logger.debug("%s not applicable to %s", name, self.base_url)
                continue

            if outcome.succeeded:
                return self._result(outcome, success=True)
            logger.info(
                "%s yielded no qualifying articles for %s (%d found, %d extracted)",
                name, self.base_url, outcome.found, len(outcome.candidates),
            )
            last = outcome

        if last is None:
            last = StepOutcome(METHOD_RSS, errors=["no strategies enabled"])
        return self._result(last, success=False)

    def _result(self, outcome: StepOutcome, success: bool) -> ScrapingResult:
        retained = tuple(outcome.retained)
        logger.info(
            "Source %s: success=%s method=%s found=%d scraped=%d retained=%d errors=%d",
            self.base_url, success, outcome.method, outcome.found,
            len(outcome.candidates), len(retained), len(outcome.errors),
        )
        return ScrapingResult(
            success=success,
            method=outcome.method,
            articles=retained,
            articles_found=outcome.found,
            articles_scraped=len(outcome.candidates),
            errors=tuple(outcome.errors),
        )

    # ── Strategies ─────────────────────────────────────────────────

    def _rss_direct(self, fetcher: Fetcher) -> StepOutcome:
        is_home = self._is_home(self.feed_url)
        try:
            raw = fetcher.fetch(self.feed_url)
        except FetchError as e:
            if is_home:
                self._base_page = (None, f"Home page fetch failed: {e}")
            return StepOutcome(METHOD_RSS, errors=[f"RSS fetch failed: {e}"])
        if is_home:
            # No feed configured: the HTML steps reuse this response
            self._base_page = (raw, None)
        return self._from_feed(METHOD_RSS, raw, self.feed_url, fetcher)

    def _is_home(self, url: str) -> bool:
        try:
            return normalize_url(normalize_fetch_url(url)[0]) == normalize_url(self.base_url)
        except ValueError:
            return False

    def _government_discovery(self, fetcher: Fetcher) -> Optional[StepOutcome]:
        if not is_government_site(self.base_url):
            return None

        outcome = StepOutcome(METHOD_GOVERNMENT_RSS)
        for feed_url, body in fetcher.try_feed_paths(self.base_url):
            if feed_url == self.feed_url:
                continue
            attempt = self._from_feed(METHOD_GOVERNMENT_RSS, body, feed_url, fetcher)
            if attempt.succeeded:
                return attempt
            outcome.found += attempt.found
            outcome.candidates.extend(attempt.candidates)
            outcome.errors.extend(attempt.errors)
            if self._expired():
                break

        if not outcome.errors and not outcome.found:
            outcome.errors.append("no conventional feed path served a feed")
        return outcome

    def _rss_discovery(self, fetcher: Fetcher) -> StepOutcome:
        html, error = self._home_page(fetcher)
        if html is None:
            return StepOutcome(METHOD_RSS_DISCOVERY, errors=[error])

        feeds = [u for u in discover_feed_links(html, self.base_url) if u != self.feed_url]
        if not feeds:
            return StepOutcome(METHOD_RSS_DISCOVERY, errors=["no feed links on home page"])

        outcome = StepOutcome(METHOD_RSS_DISCOVERY)
        for feed_url in feeds[:MAX_DISCOVERED_FEEDS]:
            if self._expired():
                outcome.errors.append("run deadline exceeded")
                break
            try:
                raw = fetcher.fetch(feed_url)
            except FetchError as e:
                outcome.errors.append(f"Discovered feed failed: {e}")
                continue
            attempt = self._from_feed(METHOD_RSS_DISCOVERY, raw, feed_url, fetcher)
            if attempt.succeeded:
                return attempt
            outcome.found += attempt.found
            outcome.candidates.extend(attempt.candidates)
            outcome.errors.extend(attempt.errors)
        return outcome

    def _sitemap_discovery(self, fetcher: Fetcher) -> StepOutcome:
        parsed = urlparse(self.base_url)
        origin = f"{parsed.scheme}://{parsed.netloc}/"

        robots = None
        try:
            robots = fetcher.fetch(urljoin(origin, "/robots.txt"), max_retries=1)
        except FetchError as e:
            logger.debug("No usable robots.txt for %s: %s", origin, e)

        queue = sitemap_candidates(origin, robots)
        seen: set[str] = set()
        article_urls: list[str] = []
        errors: list[str] = []
        limit = self.run_settings.max_article_links

        while queue and len(seen) < self.run_settings.max_sitemaps and len(article_urls) < limit:
            sitemap_url = queue.pop(0)
            if sitemap_url in seen:
                continue
            seen.add(sitemap_url)
            try:
                xml = fetcher.fetch(sitemap_url, max_retries=1)
            except FetchError as e:
                errors.append(f"Sitemap fetch failed: {e}")
                continue
            urls, nested = parse_sitemap(xml, origin)
            for url in urls:
                if url not in article_urls:
                    article_urls.append(url)
            queue.extend(u for u in nested if u not in seen)

        if not article_urls:
            errors.append("no article URLs in sitemaps")
            return StepOutcome(METHOD_SITEMAP, errors=errors)

        tasks = [_ArticleTask(url) for url in article_urls[:limit]]
        outcome = self._process_tasks(METHOD_SITEMAP, tasks[: self.run_settings.max_html_articles], fetcher)
        outcome.found = len(tasks)
        return outcome

    def _html_discovery(self, fetcher: Fetcher) -> StepOutcome:
        html, error = self._home_page(fetcher)
        if html is None:
            return StepOutcome(METHOD_HTML, errors=[error])

        links = discover_article_links(html, self.base_url, limit=self.run_settings.max_article_links)
        if not links:
            return StepOutcome(METHOD_HTML, errors=["no article links on home page"])

        tasks = [_ArticleTask(url) for url in links[: self.run_settings.max_html_articles]]
        outcome = self._process_tasks(METHOD_HTML, tasks, fetcher)
        outcome.found = len(links)
        if any(get_profile(c.source_url).site_specific for c in outcome.retained):
            outcome.method = METHOD_ENHANCED_HTML
        return outcome

    def _home_page(self, fetcher: Fetcher) -> tuple[Optional[str], Optional[str]]:
        """Home page HTML, fetched once per run and shared by the HTML steps."""
        if self._base_page is None:
            try:
                self._base_page = (fetcher.fetch(self.base_url), None)
            except FetchError as e:
                self._base_page = (None, f"Home page fetch failed: {e}")
        return self._base_page

    def _from_feed(self, method: str, raw: str, feed_url: str, fetcher: Fetcher) -> StepOutcome:
        if not looks_like_feed(raw):
            return StepOutcome(method, errors=[f"{feed_url} is not an RSS/Atom feed"])

        items = parse_feed(raw, max_items=self.run_settings.max_feed_items)
        if not items:
            return StepOutcome(method, errors=[f"{feed_url} has no usable items"])

        tasks = [_ArticleTask(resolve_url(item.link, feed_url), item) for item in items]
        outcome = self._process_tasks(method, tasks, fetcher)
        outcome.found = len(items)
        return outcome

    # ── Articles ───────────────────────────────────────────────────

    def _process_tasks(self, method: str, tasks: list[_ArticleTask], fetcher: Fetcher) -> StepOutcome:
        outcome = StepOutcome(method)
        workers = max(1, self.run_settings.article_workers)

        if workers > 1 and len(tasks) > 1:
            def run_task(task: _ArticleTask):
                if self._expired():
                    return None, "run deadline exceeded"
                return self.process_article(task.url, self.new_fetcher(), task.item)

            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(run_task, tasks))
        else:
            results = []
            for task in tasks:
                if self._expired():
                    results.append((None, "run deadline exceeded"))
                    break
                results.append(self.process_article(task.url, fetcher, task.item))

        for candidate, error in results:
            if candidate is not None:
                outcome.candidates.append(candidate)
            if error:
                outcome.errors.append(error)
        return outcome

    def process_article(
        self,
        url: str,
        fetcher: Fetcher,
        item: Optional[RawItem] = None,
    ) -> tuple[Optional[CandidateArticle], Optional[str]]:
        """Fetch, extract and score one article.

        Returns:
            (candidate, error). The candidate is None when the article was
            dropped for being too thin or could not be fetched.
        """
        error = None
        document: Optional[ExtractedDocument] = None
        try:
            html = fetcher.fetch(url)
        except FetchError as e:
            html = None
            error = f"Article fetch failed: {e}"
            logger.debug("Fetch failed for %s: %s", url, e)

        if html is not None:
            try:
                document = extract(html, url)
            except Exception as e:
                error = f"Extraction failed for {url}: {e}"
                logger.warning("Extraction failed for %s: %s", url, e, exc_info=True)

        if item is not None:
            document = self._merge_feed_item(document, item)

        if document is None or document.word_count < self.run_settings.min_words:
            logger.debug(
                "Dropping %s: %d words < %d", url,
                document.word_count if document else 0, self.run_settings.min_words,
            )
            return None, error
        if document.content_quality_score < self.run_settings.min_quality_score:
            logger.debug(
                "Dropping %s: quality %d < %d", url,
                document.content_quality_score, self.run_settings.min_quality_score,
            )
            return None, None

        info = self.source.source_info
        verdict = self.engine.evaluate(
            document,
            self.source.topic,
            source_type=info.source_type,
            user_selected=info.user_selected,
            competing_topics=self.competing_topics,
            source_url=url,
        )
        if verdict.retained:
            logger.info("Retained %r (score %d) from %s", document.title, verdict.relevance.score, url)
        else:
            logger.info(
                "Discarded %r (score %d, %s) from %s",
                document.title, verdict.relevance.score, verdict.reason, url,
            )

        candidate = CandidateArticle(
            document=document,
            relevance=verdict.relevance,
            retained=verdict.retained,
            source_url=url,
            canonical_url=canonical_url(url),
            discard_reason=verdict.reason,
            source_domain=self.source_domain,
        )
        return candidate, None

    def _merge_feed_item(
        self, document: Optional[ExtractedDocument], item: RawItem,
    ) -> Optional[ExtractedDocument]:
        """Fill gaps in the page extraction from the feed entry.

        A missing or empty page body falls back to the feed description.
        """
        if document is None or not document.body:
            if not item.description:
                return document
            return make_document(
                title=item.title,
                body=item.description,
                author=item.author,
                published_at=item.published,
                extraction_method=METHOD_RSS_FALLBACK,
            )

        if document.title and document.author and document.published_at:
            return document
        return make_document(
            title=document.title or item.title,
            body=document.body,
            author=document.author or item.author,
            published_at=document.published_at or item.published,
            extraction_method=document.extraction_method,
        )


def run_source(
    source: SourceRun,
    sources: list[SourceRun],
    config: dict[str, Any],
    engine: Optional[RelevanceEngine] = None,
) -> dict[str, Any]:
    """Run one configured source and return its result for the collaborator."""
    orchestrator = ScrapingOrchestrator(
        source,
        competing_topics=competing_topics_for(source.topic, sources),
        fetch_settings=build_fetch_settings(config),
        run_settings=build_run_settings(config),
        engine=engine or RelevanceEngine(build_scoring_weights(config), build_threshold_table(config)),
    )
    result = orchestrator.run()
    return {
        "source": source.name or source.site_id,
        "feed_url": source.feed_url,
        "topic": source.topic.name,
        "region": source.region,
        "result": result.to_dict(),
    }


def run_pipeline(config: dict[str, Any]) -> list[dict[str, Any]]:
    """Run every configured source.

    Sources are independent; with ``run.source_workers > 1`` they run in a
    thread pool, each with its own Fetcher.

    Args:
        config: Application configuration dict.

    Returns:
        One entry per source, in configuration order.
    """
    run_id = str(uuid.uuid4())
    run_mode = config.get("run_mode", "local")
    logger.info("=== Pipeline starting: run_id=%s, mode=%s ===", run_id, run_mode)

    sources = load_sources(config)
    if not sources:
        logger.warning("No sources to process. Check %s", config.get("sources_path"))
        return []

    run_settings = build_run_settings(config)
    engine = RelevanceEngine(build_scoring_weights(config), build_threshold_table(config))

    def process(indexed: tuple[int, SourceRun]) -> dict[str, Any]:
        idx, source = indexed
        logger.info("--- Source %d/%d: %s (%s) ---", idx, len(sources), source.feed_url, source.site_id)
        return run_source(source, sources, config, engine=engine)

    indexed = list(enumerate(sources, 1))
    if run_settings.source_workers > 1:
        with ThreadPoolExecutor(max_workers=run_settings.source_workers) as pool:
            results = list(pool.map(process, indexed))
    else:
        results = [process(entry) for entry in indexed]

    succeeded = sum(1 for r in results if r["result"]["success"])
    retained = sum(len(r["result"]["articles"]) for r in results)
    logger.info(
        "=== Pipeline complete: sources=%d, succeeded=%d, articles=%d, run_id=%s ===",
        len(results), succeeded, retained, run_id,
    )
    return results
