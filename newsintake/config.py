"""Configuration loading for the news intake pipeline."""

import logging
import os
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from newsintake.models import (
    TOPIC_KEYWORD,
    TOPIC_REGIONAL,
    SourceInfo,
    SourceRun,
    TopicConfig,
)

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = "config/config.yaml"

DEFAULT_GOVERNMENT_FEED_PATHS = (
    "/rss",
    "/rss.xml",
    "/feed",
    "/feed.xml",
    "/atom.xml",
    "/news/rss",
    "/news/feed",
    "/news.rss",
    "/news/rss.xml",
    "/feeds/news.rss",
    "/latest-news/rss",
    "/media/news/rss",
)


@dataclass(frozen=True)
class FetchSettings:
    """Retry, pacing and timeout policy for the Fetcher."""

    max_retries: int = 3
    government_extra_retries: int = 2
    base_delay: float = 1.0
    government_base_delay: float = 3.0
    step_delay: float = 0.5
    jitter_max: float = 1.0
    timeout: float = 30.0
    min_content_length: int = 200
    feed_path_max_retries: int = 1
    government_feed_paths: tuple[str, ...] = DEFAULT_GOVERNMENT_FEED_PATHS


@dataclass(frozen=True)
class ScoringWeights:
    """Tunable weights for both scoring methods.

    Keyword tuning moved repeatedly in the past, so nothing here is treated
    as final; override from config.
    """

    # keyword topics
    title_weight: float = 10.0
    title_cap: float = 30.0
    lead_weight: float = 5.0
    lead_cap: float = 15.0
    body_weight: float = 1.0
    body_cap: float = 10.0
    lead_chars: int = 500
    fuzzy_weight: float = 0.5
    keyword_multiplier: float = 1.5
    keyword_floor: int = 5
    keyword_cap: int = 100
    min_variation_length: int = 4

    # regional topics
    region_mention_weight: float = 30.0
    region_mention_cap: int = 3
    trust_base: float = 10.0
    regional_keyword_weight: float = 10.0
    landmark_weight: float = 15.0
    postcode_weight: float = 20.0
    organization_weight: float = 12.0
    country_context_bonus: float = 5.0
    competing_name_penalty: float = 25.0
    competing_term_penalty: float = 10.0
    competing_url_penalty: float = 100.0
    hyperlocal_multiplier: float = 1.5
    regional_multiplier: float = 1.2
    national_multiplier: float = 1.0
    regional_floor: int = 10
    regional_cap: int = 100
    overwhelming_negative: int = -50
    regional_min: int = -100

    def source_multiplier(self, source_type: str) -> float:
        return {
            "hyperlocal": self.hyperlocal_multiplier,
            "regional": self.regional_multiplier,
            "national": self.national_multiplier,
        }.get(source_type, self.national_multiplier)


_DEFAULT_THRESHOLDS = {
    (TOPIC_KEYWORD, "hyperlocal", False): 10,
    (TOPIC_KEYWORD, "regional", False): 15,
    (TOPIC_KEYWORD, "national", False): 25,
    (TOPIC_KEYWORD, "hyperlocal", True): 3,
    (TOPIC_KEYWORD, "regional", True): 5,
    (TOPIC_KEYWORD, "national", True): 8,
    (TOPIC_REGIONAL, "hyperlocal", False): 20,
    (TOPIC_REGIONAL, "regional", False): 30,
    (TOPIC_REGIONAL, "national", False): 45,
    (TOPIC_REGIONAL, "hyperlocal", True): 10,
    (TOPIC_REGIONAL, "regional", True): 10,
    (TOPIC_REGIONAL, "national", True): 15,
}


@dataclass(frozen=True)
class ThresholdTable:
    """Relevance bar keyed by (topic type, source type, user selected)."""

    table: Mapping[tuple[str, str, bool], int] = field(
        default_factory=lambda: MappingProxyType(dict(_DEFAULT_THRESHOLDS))
    )

    def lookup(self, topic_type: str, source_type: str, user_selected: bool) -> int:
        key = (topic_type, source_type, bool(user_selected))
        if key in self.table:
            return self.table[key]
        # Unknown source types are held to the national bar
        return self.table[(topic_type, "national", bool(user_selected))]


@dataclass(frozen=True)
class RunSettings:
    """Per-source run limits and the strategies switched on."""

    max_feed_items: int = 15
    max_html_articles: int = 8
    max_article_links: int = 20
    max_sitemaps: int = 6
    min_words: int = 30
    min_quality_score: int = 10
    article_workers: int = 1
    source_workers: int = 1
    deadline_seconds: Optional[float] = None
    strategies: Mapping[str, bool] = field(
        default_factory=lambda: MappingProxyType({
            "rss": True,
            "government_rss_discovery": True,
            "rss_discovery": True,
            "sitemap": False,
            "html": True,
        })
    )

    def enabled(self, strategy: str) -> bool:
        return bool(self.strategies.get(strategy, False))


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config YAML. Falls back to CONFIG_PATH env var,
                     then to config/config.yaml.

    Returns:
        Merged configuration dictionary.
    """
    path = config_path or os.environ.get("CONFIG_PATH", _DEFAULT_CONFIG_PATH)
    logger.info("Loading config from %s", path)

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if os.environ.get("SOURCES_PATH"):
        config["sources_path"] = os.environ["SOURCES_PATH"]
    if os.environ.get("RUN_MODE"):
        config["run_mode"] = os.environ["RUN_MODE"]
    if os.environ.get("RUN_DEADLINE_SECONDS"):
        config.setdefault("run", {})["deadline_seconds"] = float(
            os.environ["RUN_DEADLINE_SECONDS"]
        )
    if os.environ.get("FETCH_MAX_RETRIES"):
        config.setdefault("fetch", {})["max_retries"] = int(
            os.environ["FETCH_MAX_RETRIES"]
        )

    return config


def _known_fields(cls, section: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Keep only the keys the settings dataclass declares."""
    if not section:
        return {}
    names = {f.name for f in fields(cls)}
    unknown = set(section) - names
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return {k: v for k, v in section.items() if k in names}


def build_fetch_settings(config: dict[str, Any]) -> FetchSettings:
    values = _known_fields(FetchSettings, config.get("fetch"))
    if "government_feed_paths" in values:
        values["government_feed_paths"] = tuple(values["government_feed_paths"])
    return FetchSettings(**values)


def build_scoring_weights(config: dict[str, Any]) -> ScoringWeights:
    return ScoringWeights(**_known_fields(ScoringWeights, config.get("scoring")))


def build_threshold_table(config: dict[str, Any]) -> ThresholdTable:
    """Overlay configured thresholds on the defaults.

    Config shape::

        thresholds:
          keyword:
            national: {default: 25, user_selected: 8}
    """
    table = dict(_DEFAULT_THRESHOLDS)
    for topic_type, by_source in (config.get("thresholds") or {}).items():
        for source_type, values in (by_source or {}).items():
            if "default" in values:
                table[(topic_type, source_type, False)] = int(values["default"])
            if "user_selected" in values:
                table[(topic_type, source_type, True)] = int(values["user_selected"])
    return ThresholdTable(table=MappingProxyType(table))


def build_run_settings(config: dict[str, Any]) -> RunSettings:
    values = _known_fields(RunSettings, config.get("run"))
    if "strategies" in values:
        merged = dict(RunSettings().strategies)
        merged.update(values["strategies"] or {})
        values["strategies"] = MappingProxyType(merged)
    return RunSettings(**values)


def load_sources(config: dict[str, Any]) -> list[SourceRun]:
    """Load configured sources and their topics from the source list file.

    Args:
        config: Application configuration dict.

    Returns:
        List of SourceRun objects.
    """
    sources_path = config.get("sources_path", "config/sources.yaml")
    logger.info("Loading sources from %s", sources_path)

    with open(sources_path) as f:
        data = yaml.safe_load(f) or {}

    topics = {
        name: TopicConfig.from_dict({"name": name, **(entry or {})})
        for name, entry in (data.get("topics") or {}).items()
    }

    sources = []
    for entry in data.get("sources", []):
        url = entry.get("url") or entry.get("feed_url")
        if not url:
            logger.warning("Skipping source entry with no URL: %s", entry)
            continue
        topic = topics.get(entry.get("topic"))
        if topic is None:
            logger.warning("Skipping source %s: unknown topic %r", url, entry.get("topic"))
            continue
        sources.append(
            SourceRun(
                feed_url=url,
                topic=topic,
                source_info=SourceInfo(
                    source_type=entry.get("source_type", "national"),
                    canonical_domain=entry.get("canonical_domain"),
                    feed_url=entry.get("feed_url"),
                    user_selected=bool(entry.get("user_selected", False)),
                ),
                region=entry.get("region") or topic.region,
                name=entry.get("name"),
            )
        )

    logger.info("Loaded %d sources across %d topics", len(sources), len(topics))
    return sources


def competing_topics_for(topic: TopicConfig, sources: list[SourceRun]) -> list[TopicConfig]:
    """Every other regional topic registered alongside ``topic``."""
    seen: dict[str, TopicConfig] = {}
    for run in sources:
        other = run.topic
        if not other.is_regional or not other.region:
            continue
        if topic.region and other.region.lower() == topic.region.lower():
            continue
        seen.setdefault(other.region.lower(), other)
    return list(seen.values())
