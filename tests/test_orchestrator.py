"""Tests for the strategy chain and batch runner."""

import os
import tempfile
import textwrap
import unittest
from unittest import mock

from newsintake.config import RunSettings
from newsintake.crawler.fetcher import Fetcher, FetchError
from newsintake.models import ScrapingResult, SourceInfo, SourceRun, TopicConfig
from newsintake.orchestrator import (
    METHOD_ENHANCED_HTML,
    METHOD_GOVERNMENT_RSS,
    METHOD_HTML,
    METHOD_RSS,
    METHOD_RSS_DISCOVERY,
    METHOD_RSS_FALLBACK,
    METHOD_SITEMAP,
    ScrapingOrchestrator,
    run_pipeline,
)

AI_TOPIC = TopicConfig(topic_type="keyword", keywords=("AI",), name="ai")

SENTENCE = "The council said the new AI tools would help staff answer questions from residents faster. "


def _paragraph(words=40):
    return " ".join((SENTENCE * (words // 14 + 1)).split()[:words])


def article_page(title, paragraphs=5):
    body = "".join("<p>%s</p>" % _paragraph() for _ in range(paragraphs))
    return (
        "<html><head><title>%s | Example News</title></head><body>"
        "<header><nav><a href='/'>Home</a></nav></header>"
        "<article><h1>%s</h1>%s</article>"
        "<footer>All rights reserved</footer></body></html>" % (title, title, body)
    )


def rss(*items):
    entries = "".join(
        "<item><title>%s</title><link>%s</link><description>%s</description></item>"
        % (title, link, description)
        for title, link, description in items
    )
    return (
        "<?xml version='1.0'?><rss version='2.0'><channel><title>Example</title>"
        "%s</channel></rss>" % entries
    )


class FakeFetcher(Fetcher):
    """Serves canned pages; anything else fails like a 404."""

    def __init__(self, pages):
        super().__init__(sleep=lambda seconds: None)
        self.pages = pages
        self.requested = []

    def fetch(self, url, max_retries=None, referer=None):
        self.requested.append(url)
        self.context.request_count += 1
        if url in self.pages:
            return self.pages[url]
        raise FetchError(url, "HTTP 404", attempts=1, status=404)


def _source(url="https://www.example.com/", feed_url=None, source_type="national",
            user_selected=True, canonical_domain=None):
    return SourceRun(
        feed_url=url,
        topic=AI_TOPIC,
        source_info=SourceInfo(
            source_type=source_type,
            canonical_domain=canonical_domain,
            feed_url=feed_url,
            user_selected=user_selected,
        ),
    )


class OrchestratorTestCase(unittest.TestCase):

    def run_source(self, source, pages, **run_settings):
        self.fetcher = FakeFetcher(pages)
        orchestrator = ScrapingOrchestrator(
            source,
            run_settings=RunSettings(**run_settings),
            fetcher_factory=lambda: self.fetcher,
        )
        return orchestrator.run()


class TestRssDirect(OrchestratorTestCase):

    def test_feed_items_refetched_and_extracted(self):
        pages = {
            "https://www.example.com/rss": rss(
                ("Council adopts AI tools", "https://www.example.com/news/ai-tools", "Short"),
                ("AI helpline launched", "/news/ai-helpline", "Short"),
            ),
            "https://www.example.com/news/ai-tools": article_page("Council adopts AI tools"),
            "https://www.example.com/news/ai-helpline": article_page("AI helpline launched"),
        }
        result = self.run_source(_source(feed_url="https://www.example.com/rss"), pages)

        self.assertIsInstance(result, ScrapingResult)
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_RSS)
        self.assertEqual(result.articles_found, 2)
        self.assertEqual(result.articles_scraped, 2)
        self.assertEqual(
            [a.document.title for a in result.articles],
            ["Council adopts AI tools", "AI helpline launched"],
        )
        first = result.articles[0]
        self.assertTrue(first.retained)
        self.assertEqual(first.source_domain, "example.com")
        self.assertEqual(first.canonical_url, "https://example.com/news/ai-tools")
        self.assertEqual(first.document.extraction_method, "selector")

    def test_thin_items_dropped(self):
        pages = {
            "https://www.example.com/rss": rss(
                ("AI pilot", "https://www.example.com/news/ai-pilot", "AI pilot starts."),
            ),
            "https://www.example.com/news/ai-pilot": "<html><body><p>AI pilot starts.</p></body></html>",
        }
        result = self.run_source(
            _source(feed_url="https://www.example.com/rss"), pages,
            strategies={"rss": True, "government_rss_discovery": False,
                        "rss_discovery": False, "html": False},
        )
        self.assertFalse(result.success)
        self.assertEqual(result.articles_found, 1)
        self.assertEqual(result.articles_scraped, 0)
        self.assertEqual(result.errors, ())

    def test_description_fallback_when_page_fails(self):
        description = _paragraph(60)
        pages = {
            "https://www.example.com/rss": rss(
                ("Council adopts AI tools", "https://www.example.com/news/gone", description),
            ),
        }
        result = self.run_source(_source(feed_url="https://www.example.com/rss"), pages)
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_RSS)
        article = result.articles[0]
        self.assertEqual(article.document.extraction_method, METHOD_RSS_FALLBACK)
        self.assertEqual(article.document.word_count, 60)


class TestHomeUrl(unittest.TestCase):

    def test_source_host_kept_for_canonical_domain(self):
        source = _source("https://www.bournefree.co.uk/news/", canonical_domain="bournefree.co.uk")
        orchestrator = ScrapingOrchestrator(source)
        self.assertEqual(orchestrator.base_url, "https://www.bournefree.co.uk/")
        self.assertEqual(orchestrator.source_domain, "bournefree.co.uk")

    def test_canonical_domain_for_other_host(self):
        source = _source("https://feeds.example.net/sussex", canonical_domain="sussexexpress.co.uk")
        orchestrator = ScrapingOrchestrator(source)
        self.assertEqual(orchestrator.base_url, "https://sussexexpress.co.uk/")

    def test_configured_url_without_canonical_domain(self):
        orchestrator = ScrapingOrchestrator(_source("www.example.com/news"))
        self.assertEqual(orchestrator.base_url, "https://www.example.com/news")


class TestFallthrough(OrchestratorTestCase):

    def test_rss_discovery_from_home_page(self):
        home = (
            "<html><head><link rel='alternate' type='application/rss+xml' href='/news.xml'>"
            "</head><body><p>Welcome</p></body></html>"
        )
        pages = {
            "https://www.example.com/": home,
            "https://www.example.com/news.xml": rss(
                ("Council adopts AI tools", "https://www.example.com/news/ai-tools", ""),
            ),
            "https://www.example.com/news/ai-tools": article_page("Council adopts AI tools"),
        }
        result = self.run_source(_source(), pages)
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_RSS_DISCOVERY)
        # Without a feed the first step already fetched the home page
        self.assertEqual(self.fetcher.requested.count("https://www.example.com/"), 1)

    def test_html_link_discovery(self):
        home = (
            "<html><body>"
            "<a href='/news/council-adopts-ai-tools'>AI tools</a>"
            "<a href='/news/ai-helpline-launched'>Helpline</a>"
            "<a href='/tag/ai/'>AI tag</a>"
            "</body></html>"
        )
        pages = {
            "https://www.example.com/": home,
            "https://www.example.com/news/council-adopts-ai-tools": article_page("Council adopts AI tools"),
            "https://www.example.com/news/ai-helpline-launched": article_page("AI helpline launched"),
        }
        result = self.run_source(_source(feed_url="https://www.example.com/rss"), pages)
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_HTML)
        self.assertEqual(result.articles_found, 2)
        self.assertEqual(len(result.articles), 2)
        # The home page is fetched once and shared by both HTML steps
        self.assertEqual(self.fetcher.requested.count("https://www.example.com/"), 1)

    def test_enhanced_html_for_profiled_site(self):
        home = "<html><body><a href='/news/council-adopts-ai-tools'>AI tools</a></body></html>"
        pages = {
            "https://www.bournefree.co.uk/": home,
            "https://www.bournefree.co.uk/news/council-adopts-ai-tools": article_page("Council adopts AI tools"),
        }
        source = _source(url="https://www.bournefree.co.uk/", canonical_domain="www.bournefree.co.uk")
        result = self.run_source(source, pages)
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_ENHANCED_HTML)

    def test_html_articles_bounded(self):
        links = "".join("<a href='/news/ai-story-%d'>s</a>" % i for i in range(12))
        pages = {"https://www.example.com/": "<html><body>%s</body></html>" % links}
        for i in range(12):
            pages["https://www.example.com/news/ai-story-%d" % i] = article_page("AI story %d" % i)
        result = self.run_source(_source(), pages, max_html_articles=4)
        self.assertEqual(result.articles_found, 12)
        self.assertEqual(result.articles_scraped, 4)

    def test_sitemap_strategy_when_enabled(self):
        sitemap = (
            "<?xml version='1.0'?><urlset xmlns='http://www.sitemaps.org/schemas/sitemap/0.9'>"
            "<url><loc>https://www.example.com/news/council-adopts-ai-tools</loc></url>"
            "</urlset>"
        )
        pages = {
            "https://www.example.com/sitemap.xml": sitemap,
            "https://www.example.com/news/council-adopts-ai-tools": article_page("Council adopts AI tools"),
        }
        result = self.run_source(
            _source(), pages,
            strategies={"rss": True, "rss_discovery": True, "sitemap": True, "html": True},
        )
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_SITEMAP)


class TestGovernmentDiscovery(OrchestratorTestCase):

    def test_tries_conventional_paths(self):
        pages = {
            "https://www.eastbourne.gov.uk/feed.xml": rss(
                ("Council adopts AI tools", "https://www.eastbourne.gov.uk/news/ai-tools", ""),
            ),
            "https://www.eastbourne.gov.uk/news/ai-tools": article_page("Council adopts AI tools"),
        }
        result = self.run_source(_source(url="https://www.eastbourne.gov.uk/"), pages)
        self.assertTrue(result.success)
        self.assertEqual(result.method, METHOD_GOVERNMENT_RSS)

    def test_skipped_for_ordinary_sites(self):
        result = self.run_source(_source(), {})
        tried = [u for u in self.fetcher.requested if u.endswith("/atom.xml")]
        self.assertEqual(tried, [])
        self.assertFalse(result.success)


class TestFailure(OrchestratorTestCase):

    def test_only_last_step_errors_reported(self):
        result = self.run_source(_source(feed_url="https://www.example.com/rss"), {})
        self.assertFalse(result.success)
        self.assertEqual(result.method, METHOD_HTML)
        self.assertEqual(len(result.errors), 1)
        self.assertIn("Home page fetch failed", result.errors[0])
        self.assertFalse(any("RSS fetch failed" in e for e in result.errors))

    def test_rejected_articles_do_not_count_as_success(self):
        pages = {
            "https://www.example.com/rss": rss(
                ("Seafront repairs continue", "https://www.example.com/news/repairs", ""),
            ),
            "https://www.example.com/news/repairs": article_page("Seafront repairs continue").replace("AI", "new"),
        }
        result = self.run_source(
            _source(feed_url="https://www.example.com/rss"), pages,
            strategies={"rss": True, "rss_discovery": False, "html": False},
        )
        self.assertFalse(result.success)
        self.assertEqual(result.articles_scraped, 1)
        self.assertEqual(result.articles, ())

    def test_crashing_step_becomes_error(self):
        with mock.patch("newsintake.orchestrator.parse_feed", side_effect=RuntimeError("boom")):
            result = self.run_source(
                _source(feed_url="https://www.example.com/rss"),
                {"https://www.example.com/rss": rss(("t", "https://www.example.com/news/a", ""))},
                strategies={"rss": True, "rss_discovery": False, "html": False},
            )
        self.assertFalse(result.success)
        self.assertEqual(result.method, METHOD_RSS)
        self.assertIn("boom", result.errors[0])

    def test_deadline_stops_run(self):
        ticks = iter([0.0] + [100.0] * 100)
        fetcher = FakeFetcher({})
        orchestrator = ScrapingOrchestrator(
            _source(),
            run_settings=RunSettings(deadline_seconds=10),
            fetcher_factory=lambda: fetcher,
            clock=lambda: next(ticks),
        )
        result = orchestrator.run()
        self.assertFalse(result.success)
        self.assertIn("run deadline exceeded", result.errors)
        self.assertEqual(fetcher.requested, [])


class TestConcurrentArticles(unittest.TestCase):

    def test_workers_keep_discovery_order(self):
        titles = ["AI story %d" % i for i in range(6)]
        pages = {"https://www.example.com/rss": rss(*[
            (t, "https://www.example.com/news/ai-story-%d" % i, "") for i, t in enumerate(titles)
        ])}
        for i, t in enumerate(titles):
            pages["https://www.example.com/news/ai-story-%d" % i] = article_page(t)

        created = []

        def factory():
            fetcher = FakeFetcher(pages)
            created.append(fetcher)
            return fetcher

        orchestrator = ScrapingOrchestrator(
            _source(feed_url="https://www.example.com/rss"),
            run_settings=RunSettings(article_workers=3),
            fetcher_factory=factory,
        )
        result = orchestrator.run()
        self.assertTrue(result.success)
        self.assertEqual([a.document.title for a in result.articles], titles)
        # One fetcher for the source plus one per article task
        self.assertEqual(len(created), 1 + len(titles))


class TestRunPipeline(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.sources_path = os.path.join(self._tmp.name, "sources.yaml")
        with open(self.sources_path, "w") as f:
            f.write(textwrap.dedent("""
                topics:
                  eastbourne: {topic_type: regional, region: Eastbourne}
                  brighton: {topic_type: regional, region: Brighton}
                sources:
                  - {url: "https://www.bournefree.co.uk/", topic: eastbourne, name: Bourne Free}
                  - {url: "https://www.theargus.co.uk/", topic: brighton}
            """))

    def test_runs_every_source(self):
        seen = []

        def fake_run(orchestrator):
            seen.append((orchestrator.source.feed_url, [t.region for t in orchestrator.competing_topics]))
            return ScrapingResult(success=False, method=METHOD_HTML, errors=("no article links on home page",))

        with mock.patch.object(ScrapingOrchestrator, "run", fake_run):
            results = run_pipeline({"sources_path": self.sources_path})

        self.assertEqual([r["source"] for r in results], ["Bourne Free", "theargus.co.uk"])
        self.assertEqual(results[0]["result"]["method"], METHOD_HTML)
        self.assertEqual(seen, [
            ("https://www.bournefree.co.uk/", ["Brighton"]),
            ("https://www.theargus.co.uk/", ["Eastbourne"]),
        ])

    def test_no_sources(self):
        empty = os.path.join(self._tmp.name, "empty.yaml")
        with open(empty, "w") as f:
            f.write("sources: []\n")
        self.assertEqual(run_pipeline({"sources_path": empty}), [])


if __name__ == "__main__":
    unittest.main()
