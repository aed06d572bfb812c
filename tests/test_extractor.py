"""Tests for the Document Extractor."""

import unittest

from bs4 import BeautifulSoup

from newsintake.extraction.extractor import (
    METHOD_NONE,
    METHOD_PARAGRAPHS,
    METHOD_SELECTOR,
    aggregate_paragraphs,
    calculate_content_quality,
    calculate_content_score,
    extract,
    extract_by_selectors,
    make_document,
)
from newsintake.extraction.profiles import DEFAULT_PROFILE, PROFILES, get_profile
from newsintake.models import count_words

SENTENCE = "Residents gathered on the seafront to hear the council explain its plans for the bandstand. "


def _paragraph(words=40):
    tokens = (SENTENCE * (words // 15 + 1)).split()[:words]
    return " ".join(tokens)


def _paragraphs_html(count=5, words=40):
    return "".join("<p>%s</p>" % _paragraph(words) for _ in range(count))


class TestParagraphAggregation(unittest.TestCase):

    def test_falls_back_to_paragraphs_without_profile_match(self):
        html = (
            "<html><head><title>Bandstand plans | Example</title></head><body>"
            "<div class='wrapper'>%s</div></body></html>" % _paragraphs_html()
        )
        doc = extract(html, "https://www.example.com/news/bandstand")
        self.assertEqual(doc.extraction_method, METHOD_PARAGRAPHS)
        self.assertEqual(doc.word_count, 200)
        self.assertGreater(doc.content_quality_score, 0)
        self.assertIn("\n\n", doc.body)

    def test_navigation_blocks_skipped(self):
        html = (
            "<html><body>"
            "<div>Subscribe to our newsletter for the latest stories from around the town, "
            "delivered every morning straight to your inbox for free.</div>"
            "<div>%s</div>"
            "</body></html>" % (_paragraph(30) + " " + _paragraph(30))
        )
        body = aggregate_paragraphs(BeautifulSoup(html, "lxml"))
        self.assertNotIn("Subscribe", body)
        self.assertIn("Residents gathered", body)

    def test_short_paragraphs_ignored(self):
        soup = BeautifulSoup("<html><body><p>Too short.</p></body></html>", "lxml")
        self.assertEqual(aggregate_paragraphs(soup), "")


class TestSelectors(unittest.TestCase):

    def test_profile_selector_used(self):
        html = (
            "<html><body><header><h1>Site name</h1></header>"
            "<h1 class='entry-title'>Bandstand restored</h1>"
            "<div class='entry-content'>%s</div>"
            "<div class='related-posts'><p>%s</p></div>"
            "</body></html>" % (_paragraphs_html(), _paragraph(60))
        )
        doc = extract(html, "https://www.bournefree.co.uk/news/bandstand-restored")
        self.assertEqual(doc.extraction_method, METHOD_SELECTOR)
        self.assertEqual(doc.title, "Bandstand restored")
        self.assertEqual(doc.word_count, 200)

    def test_default_article_selector(self):
        html = "<html><body><article><h2>Intro</h2>%s</article></body></html>" % _paragraphs_html()
        doc = extract(html, "https://unknown.example.org/story")
        self.assertEqual(doc.extraction_method, METHOD_SELECTOR)
        self.assertTrue(doc.body.startswith("Intro"))

    def test_scripts_and_comments_removed(self):
        html = (
            "<html><body><article>%s<script>var tracking = 'Residents';</script>"
            "<!-- hidden comment --></article></body></html>" % _paragraphs_html()
        )
        doc = extract(html, "https://unknown.example.org/story")
        self.assertNotIn("tracking", doc.body)
        self.assertNotIn("hidden comment", doc.body)

    def test_invalid_selector_does_not_raise(self):
        soup = BeautifulSoup("<html><body><article>%s</article></body></html>" % _paragraphs_html(), "lxml")
        text, score = extract_by_selectors(soup, ["div[[", "article"])
        self.assertGreater(score, 0)
        self.assertIn("Residents", text)


class TestMetadata(unittest.TestCase):

    def test_json_ld_preferred(self):
        html = (
            "<html><head>"
            '<script type="application/ld+json">'
            '{"@context": "https://schema.org", "@type": "NewsArticle",'
            ' "headline": "Seafront budget approved",'
            ' "author": [{"@type": "Person", "name": "Sam Smith"}],'
            ' "datePublished": "2024-04-30T09:00:00Z"}'
            "</script>"
            '<meta property="og:title" content="OG title">'
            "</head><body><h1>Page heading</h1><span class='byline'>By Someone Else</span>"
            "<article>%s</article></body></html>" % _paragraphs_html()
        )
        doc = extract(html, "https://www.example.com/news/budget")
        self.assertEqual(doc.title, "Seafront budget approved")
        self.assertEqual(doc.author, "Sam Smith")
        self.assertEqual(doc.published_at, "2024-04-30T09:00:00Z")

    def test_json_ld_graph(self):
        html = (
            '<html><head><script type="application/ld+json">'
            '{"@graph": [{"@type": "WebPage", "name": "Page"},'
            ' {"@type": ["NewsArticle"], "headline": "Graph headline"}]}'
            "</script></head><body></body></html>"
        )
        self.assertEqual(extract(html, "https://example.com/a").title, "Graph headline")

    def test_broken_json_ld_ignored(self):
        html = (
            '<html><head><script type="application/ld+json">{not json</script></head>'
            "<body><h1>Fallback heading</h1></body></html>"
        )
        self.assertEqual(extract(html, "https://example.com/a").title, "Fallback heading")

    def test_meta_fallbacks(self):
        html = (
            "<html><head>"
            '<meta property="og:title" content="Open Graph headline">'
            '<meta property="article:published_time" content="2024-05-02T08:00:00Z">'
            '<meta name="author" content="Alex Jones">'
            "</head><body><h1>Heading</h1></body></html>"
        )
        doc = extract(html, "https://example.com/a")
        self.assertEqual(doc.title, "Open Graph headline")
        self.assertEqual(doc.published_at, "2024-05-02T08:00:00Z")
        self.assertEqual(doc.author, "Alex Jones")

    def test_generic_byline_and_time(self):
        html = (
            "<html><body><h1>Pier reopens</h1>"
            "<span class='byline'>By Jo Bloggs</span>"
            "<time datetime='2024-05-01T10:00:00Z'>1 May</time>"
            "</body></html>"
        )
        doc = extract(html, "https://example.com/a")
        self.assertEqual(doc.title, "Pier reopens")
        self.assertEqual(doc.author, "Jo Bloggs")
        self.assertEqual(doc.published_at, "2024-05-01T10:00:00Z")

    def test_page_title_trimmed_at_separator(self):
        html = "<html><head><title>Pier reopens | Bourne Free</title></head><body></body></html>"
        self.assertEqual(extract(html, "https://example.com/a").title, "Pier reopens")

    def test_page_title_trimmed_at_spaced_dash(self):
        html = "<html><head><title>Pier re-opens - Sussex Express</title></head><body></body></html>"
        self.assertEqual(extract(html, "https://example.com/a").title, "Pier re-opens")


class TestEmptyPages(unittest.TestCase):

    def test_empty_page_populates_every_field(self):
        doc = extract("<html><body></body></html>", "https://example.com/a")
        self.assertEqual(doc.body, "")
        self.assertEqual(doc.word_count, 0)
        self.assertEqual(doc.content_quality_score, 0)
        self.assertEqual(doc.extraction_method, METHOD_NONE)
        self.assertEqual(doc.title, "")
        self.assertEqual(doc.author, "")

    def test_none_html(self):
        doc = extract(None, "https://example.com/a")
        self.assertEqual(doc.word_count, 0)


class TestScoring(unittest.TestCase):

    def test_word_count_matches_body(self):
        for body in ("", "one", _paragraph(10), "\n\n".join([_paragraph(40)] * 5)):
            doc = make_document("Title of the story", body)
            self.assertEqual(doc.word_count, count_words(body))
            self.assertGreaterEqual(doc.content_quality_score, 0)
            self.assertLessEqual(doc.content_quality_score, 100)

    def test_quality_bounded_for_huge_body(self):
        body = "\n\n".join([_paragraph(200)] * 20)
        score = calculate_content_quality(body, "A long enough title")
        self.assertGreater(score, 0)
        self.assertLessEqual(score, 100)

    def test_quality_rewards_title(self):
        body = "\n\n".join([_paragraph(40)] * 5)
        self.assertGreater(
            calculate_content_quality(body, "Bandstand restored to glory"),
            calculate_content_quality(body, ""),
        )

    def test_content_score_rewards_structure(self):
        flat = " ".join([_paragraph(40)] * 5)
        structured = "\n\n".join([_paragraph(40)] * 5)
        self.assertGreater(calculate_content_score(structured), calculate_content_score(flat))

    def test_content_score_penalises_short_text(self):
        self.assertEqual(calculate_content_score("Just a few words."), 0)


class TestProfiles(unittest.TestCase):

    def test_lookup_strips_www(self):
        self.assertIs(get_profile("https://www.theargus.co.uk/news/1"), PROFILES["theargus.co.uk"])

    def test_parent_domain_match(self):
        self.assertIs(get_profile("https://www.bbc.co.uk/news/uk-england-sussex-1"), PROFILES["bbc.co.uk"])
        self.assertIs(get_profile("https://news.gov.uk/x"), PROFILES["gov.uk"])

    def test_default_profile(self):
        profile = get_profile("https://unknown.example.org/")
        self.assertIs(profile, DEFAULT_PROFILE)
        self.assertFalse(profile.site_specific)


if __name__ == "__main__":
    unittest.main()
