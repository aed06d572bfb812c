"""Resilient single-URL HTTP retrieval.

Features:
- identity rotation over a fixed user-agent pool (round-robin by request count)
- adaptive pacing that grows with the number of requests made
- exponential backoff with extra caution for government domains and 403s
- header stripping and referer substitution after repeated 403s
- https -> http fallback after repeated TLS failures
- a hard per-attempt time limit that covers reading the body
- error-page detection on 2xx responses
- conventional feed-path probing for government sites
"""

import logging
import queue
import random
import re
import threading
import time
from typing import Callable, Iterator, Optional
from urllib.parse import urljoin, urlparse, urlunparse

import requests

from newsintake.config import FetchSettings
from newsintake.models import FetchContext, normalize_hostname

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
    "Mozilla/5.0 (compatible; Feedfetcher-Google; +http://www.google.com/feedfetcher.html)",
)

_ACCEPT_VALUES = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "text/html,application/xml;q=0.9,application/rss+xml;q=0.9,*/*;q=0.7",
)

_ACCEPT_LANGUAGES = (
    "en-GB,en;q=0.9",
    "en-GB,en-US;q=0.9,en;q=0.8",
    "en-US,en;q=0.9",
    "en;q=0.8",
)

_GOVERNMENT_PATTERNS = (
    re.compile(r"\.gov\.uk$"),
    re.compile(r"(^|\.)gov\.[a-z]{2,3}$"),
    re.compile(r"\.gov$"),
    re.compile(r"\.police\.uk$"),
    re.compile(r"\.nhs\.uk$"),
    re.compile(r"\.parliament\.uk$"),
    re.compile(r"(^|\.)gov\.(scot|wales)$"),
    re.compile(r"(^|[.-])council\."),
)

# Headers that identify a real browser session; dropped when a site keeps refusing us
_FINGERPRINT_HEADERS = (
    "Sec-Fetch-Dest",
    "Sec-Fetch-Mode",
    "Sec-Fetch-Site",
    "Sec-Fetch-User",
    "Sec-Ch-Ua",
    "Sec-Ch-Ua-Mobile",
    "Sec-Ch-Ua-Platform",
    "Upgrade-Insecure-Requests",
)

_GENERIC_REFERER = "https://www.google.com/"

_ERROR_PAGE_MARKERS = (
    "page not found",
    "404 not found",
    "error 404",
    "maintenance mode",
)

_ERROR_TITLE_MARKERS = frozenset({
    "404",
    "error 404",
    "404 error",
    "404 not found",
    "not found",
    "page not found",
    "403 forbidden",
    "forbidden",
    "access denied",
    "attention required",
    "just a moment",
    "are you a robot",
    "captcha",
    "security check",
})

_TITLE_TAG = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_TITLE_SEGMENTS = re.compile(r"\s*[|–—]\s*|\s+-\s+|:\s+")
_NON_TEXT_BLOCKS = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")

# Body error markers only count on pages with less visible text than this
_THIN_PAGE_WORDS = 150

_FEED_ROOT_MARKERS = ("<rss", "<feed", "<rdf:rdf")

# Consecutive 403s before the next attempt drops fingerprinting headers
_FORBIDDEN_STRIP_AFTER = 2
# Consecutive TLS failures before switching the remaining attempts to http://
_TLS_FALLBACK_AFTER = 2
# Bytes per body read; the attempt cutoff is checked between reads
_CHUNK_SIZE = 1024
# Extra wall-clock time granted before a stalled attempt is abandoned
_ATTEMPT_GRACE = 0.5


class FetchError(Exception):
    """Raised when a URL could not be retrieved within the retry budget."""

    def __init__(
        self,
        url: str,
        message: str,
        attempts: int = 0,
        status: Optional[int] = None,
        last_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.status = status
        self.last_error = last_error

    def __str__(self) -> str:
        return f"{self.args[0]} ({self.url}, attempts={self.attempts})"


class InvalidContentError(FetchError):
    """A 2xx response whose body is an error page or too thin to use."""


def is_government_site(url: str) -> bool:
    host = normalize_hostname(url)
    return any(p.search(host) for p in _GOVERNMENT_PATTERNS)


def looks_like_feed(text: str) -> bool:
    """True when the document carries an RSS/Atom/RDF root element."""
    head = text[:2000].lower()
    return any(marker in head for marker in _FEED_ROOT_MARKERS)


def _visible_word_count(html: str) -> int:
    return len(_TAGS.sub(" ", _NON_TEXT_BLOCKS.sub(" ", html)).split())


def _is_error_title(title: str) -> bool:
    """True when a whole title segment is an error phrase, e.g. "Page not found | Site"."""
    for segment in _TITLE_SEGMENTS.split(title):
        if segment.strip().rstrip(".!?… ") in _ERROR_TITLE_MARKERS:
            return True
    return False


def looks_like_error_page(text: str, min_length: int) -> bool:
    """True for bodies too short to use, error titles and thin error pages.

    Headlines that merely contain an error phrase ("Body not found in
    search for missing walker") are not error pages.
    """
    if len(text.strip()) < min_length:
        return True
    if looks_like_feed(text):
        return False
    head = text[:3000].lower()
    title = _TITLE_TAG.search(head)
    if title and _is_error_title(title.group(1).strip()):
        return True
    if any(marker in head for marker in _ERROR_PAGE_MARKERS):
        return _visible_word_count(text) < _THIN_PAGE_WORDS
    return False


def normalize_fetch_url(url: str) -> tuple[str, bool]:
    """Add ``https://`` to scheme-less URLs.

    Returns:
        Tuple of (url, scheme_was_added).
    """
    url = url.strip()
    if url.startswith("//"):
        return "https:" + url, True
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        return "https://" + url, True
    return url, False


def _with_http_scheme(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(("http",) + tuple(parsed[1:]))


class Fetcher:
    """One fetch stream. Not safe to share between threads.

    Create one instance per source run (or per in-flight article when
    extracting concurrently); the request counter in :class:`FetchContext`
    drives identity rotation and pacing for this stream only.
    """

    def __init__(
        self,
        settings: Optional[FetchSettings] = None,
        context: Optional[FetchContext] = None,
        deadline: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or FetchSettings()
        self.context = context or FetchContext()
        self.deadline = deadline
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    # ── Pacing ─────────────────────────────────────────────────────

    def adaptive_delay(self) -> float:
        """Base delay for the domain category, growing every three requests."""
        s = self.settings
        base = s.government_base_delay if self.context.is_government_site else s.base_delay
        steps = self.context.request_count // 3
        return base + steps * s.step_delay + self._rng.uniform(0, s.jitter_max)

    def backoff_delay(self, attempt: int, status: Optional[int] = None) -> float:
        """Exponential backoff for the retry following ``attempt`` (0-based)."""
        s = self.settings
        base = s.government_base_delay if self.context.is_government_site else s.base_delay
        delay = (2 ** attempt) * base
        if self.context.is_government_site or status == 403:
            delay = delay * 2 + self._rng.uniform(0, s.jitter_max)
        return delay

    def max_attempts(self) -> int:
        attempts = self.settings.max_retries
        if self.context.is_government_site:
            attempts += self.settings.government_extra_retries
        return max(1, attempts)

    # ── Headers ────────────────────────────────────────────────────

    def build_headers(
        self,
        referer: Optional[str] = None,
        stripped: bool = False,
    ) -> dict[str, str]:
        """Headers for the next request, rotating identity by request count."""
        headers = {
            "User-Agent": USER_AGENTS[self.context.request_count % len(USER_AGENTS)],
            "Accept": self._rng.choice(_ACCEPT_VALUES),
            "Accept-Language": self._rng.choice(_ACCEPT_LANGUAGES),
            "Accept-Encoding": "gzip, deflate",
            "Connection": "close",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
        }
        if referer:
            headers["Referer"] = referer

        if self.context.is_government_site:
            headers["DNT"] = "1"
            headers["Sec-GPC"] = "1"
            headers["Cache-Control"] = "no-cache"
            headers["Pragma"] = "no-cache"
            for name in ("Sec-Fetch-User", "Sec-Ch-Ua", "Sec-Ch-Ua-Platform"):
                headers.pop(name, None)

        if stripped:
            for name in _FINGERPRINT_HEADERS:
                headers.pop(name, None)
            headers["Referer"] = _GENERIC_REFERER
            headers["X-Forwarded-For"] = ".".join(
                str(self._rng.randint(1, 254)) for _ in range(4)
            )
        return headers

    # ── Fetching ───────────────────────────────────────────────────

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def _wait(self, seconds: float) -> None:
        remaining = self._remaining()
        if remaining is not None:
            seconds = min(seconds, max(0.0, remaining))
        if seconds > 0:
            self._sleep(seconds)

    def _download(
        self, target: str, headers: dict[str, str], timeout: float,
    ) -> tuple[requests.Response, str]:
        """GET ``target`` and read its body within ``timeout`` seconds in total.

        The requests timeout only bounds each socket read, so a server that
        trickles bytes is cut off here once the attempt's time is used up.
        """
        cutoff = self._clock() + timeout
        response = requests.get(
            target, headers=headers, timeout=timeout, allow_redirects=True, stream=True,
        )
        try:
            if response.status_code >= 400:
                return response, ""
            chunks = []
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                chunks.append(chunk)
                if self._clock() >= cutoff:
                    raise requests.exceptions.Timeout(
                        f"body not complete after {timeout:.1f}s"
                    )
        finally:
            response.close()

        body = b"".join(chunks)
        try:
            return response, body.decode(response.encoding or "utf-8", errors="replace")
        except LookupError:
            return response, body.decode("utf-8", errors="replace")

    def _timed_download(
        self, target: str, headers: dict[str, str], timeout: float,
    ) -> tuple[requests.Response, str]:
        """Run one attempt on a worker thread so a stalled read cannot outlive it."""
        outcome: queue.Queue = queue.Queue(maxsize=1)

        def attempt() -> None:
            try:
                outcome.put((self._download(target, headers, timeout), None))
            except Exception as e:
                outcome.put((None, e))

        threading.Thread(target=attempt, name="fetch-attempt", daemon=True).start()
        try:
            result, error = outcome.get(timeout=timeout + _ATTEMPT_GRACE)
        except queue.Empty:
            raise requests.exceptions.Timeout(
                f"no complete response within {timeout:.1f}s"
            ) from None
        if error is not None:
            raise error
        return result

    def fetch(
        self,
        url: str,
        max_retries: Optional[int] = None,
        referer: Optional[str] = None,
    ) -> str:
        """Fetch a URL and return its decoded body.

        Args:
            url: Address to fetch; ``https://`` is assumed when no scheme is given.
            max_retries: Attempt budget overriding the configured one
                (including any government bonus).
            referer: Optional Referer header.

        Raises:
            FetchError: after every attempt failed or the deadline passed.
        """
        target, scheme_added = normalize_fetch_url(url)
        self.context.is_government_site = is_government_site(target)

        budget = self.max_attempts() if max_retries is None else max(1, max_retries)

        consecutive_403 = 0
        forbidden_seen = False
        last_wait = 0.0
        tls_failures = 0
        last_error: Optional[BaseException] = None
        last_status: Optional[int] = None
        invalid_content = False

        for attempt in range(budget):
            if attempt > 0:
                # A 403 anywhere in this call keeps later waits on the cautious curve
                status = 403 if forbidden_seen else last_status
                delay = max(
                    last_wait,
                    self.backoff_delay(attempt - 1, status) + self.adaptive_delay(),
                )
                last_wait = delay
                logger.debug(
                    "Retry %d/%d for %s in %.1fs (gov=%s, requests=%d)",
                    attempt + 1, budget, target, delay,
                    self.context.is_government_site, self.context.request_count,
                )
                self._wait(delay)

            remaining = self._remaining()
            if remaining is not None and remaining <= 0:
                raise FetchError(
                    target, "deadline exceeded", attempts=attempt,
                    status=last_status, last_error=last_error,
                )
            timeout = self.settings.timeout
            if remaining is not None:
                timeout = min(timeout, remaining)

            stripped = consecutive_403 >= _FORBIDDEN_STRIP_AFTER
            headers = self.build_headers(referer=referer, stripped=stripped)
            if stripped:
                logger.info("Repeated 403 from %s: retrying with stripped headers", target)
            self.context.request_count += 1

            try:
                response, text = self._timed_download(target, headers, timeout)
            except requests.exceptions.SSLError as e:
                last_error, last_status = e, None
                tls_failures += 1
                consecutive_403 = 0
                logger.warning("TLS failure %d for %s: %s", tls_failures, target, e)
                if target.startswith("https://") and (
                    tls_failures >= _TLS_FALLBACK_AFTER or scheme_added
                ):
                    target = _with_http_scheme(target)
                    logger.info("Falling back to %s for remaining attempts", target)
                continue
            except requests.exceptions.RequestException as e:
                last_error, last_status = e, None
                consecutive_403 = 0
                logger.warning(
                    "Attempt %d/%d failed for %s: %s", attempt + 1, budget, target, e,
                )
                if scheme_added and target.startswith("https://"):
                    target = _with_http_scheme(target)
                    scheme_added = False
                    logger.info("Retrying guessed scheme as %s", target)
                continue

            last_status = response.status_code
            if response.status_code >= 400:
                consecutive_403 = consecutive_403 + 1 if response.status_code == 403 else 0
                forbidden_seen = forbidden_seen or response.status_code == 403
                last_error = requests.exceptions.HTTPError(
                    f"HTTP {response.status_code}", response=response,
                )
                logger.warning(
                    "Attempt %d/%d for %s returned HTTP %d",
                    attempt + 1, budget, target, response.status_code,
                )
                continue

            if looks_like_error_page(text, self.settings.min_content_length):
                # Content problems are not fixed by retrying
                invalid_content = True
                last_error = None
                break

            logger.debug(
                "Fetched %s (%d chars, attempt %d/%d)",
                target, len(text), attempt + 1, budget,
            )
            return text

        if invalid_content:
            raise InvalidContentError(
                target, "error page or minimal content", attempts=attempt + 1,
                status=last_status,
            )
        raise FetchError(
            target,
            f"all {budget} attempts failed: {last_error}",
            attempts=budget,
            status=last_status,
            last_error=last_error,
        )

    def try_feed_paths(self, base_url: str) -> Iterator[tuple[str, str]]:
        """Yield (feed_url, body) for conventional feed paths that serve a feed.

        Each path gets the reduced feed-path budget; non-feed responses and
        failures are skipped.
        """
        base, _ = normalize_fetch_url(base_url)
        for path in self.settings.government_feed_paths:
            feed_url = urljoin(base, path)
            try:
                body = self.fetch(feed_url, max_retries=self.settings.feed_path_max_retries)
            except FetchError as e:
                logger.debug("Feed path %s failed: %s", feed_url, e)
                continue
            if looks_like_feed(body):
                logger.info("Feed path hit: %s", feed_url)
                yield feed_url, body
            else:
                logger.debug("Feed path %s did not return a feed", feed_url)
