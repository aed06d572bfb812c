"""RSS/Atom feed parsing into raw items."""

import logging
from typing import Optional

from bs4 import BeautifulSoup, Tag

from newsintake.models import RawItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 15


def strip_html(text: str) -> str:
    """Plain text of an HTML fragment such as a feed description."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return " ".join(text.split())
    return BeautifulSoup(text, "lxml").get_text(" ", strip=True)


def _child_text(item: Tag, *names: str) -> str:
    """Text of the first named child that has any, CDATA included."""
    for name in names:
        node = item.find(name)
        if node is None:
            continue
        text = node.get_text(" ", strip=True)
        if text:
            return text
    return ""


def _item_link(item: Tag) -> str:
    links = item.find_all("link")
    # Atom: <link rel="alternate" href="..."/>
    for link in links:
        href = link.get("href")
        if href and link.get("rel", "alternate") in ("alternate", ["alternate"]):
            return href.strip()
    for link in links:
        text = link.get_text(strip=True)
        if text:
            return text
        if link.get("href"):
            return link["href"].strip()
    return _child_text(item, "guid", "id")


def _parse_item(item: Tag) -> Optional[RawItem]:
    title = _child_text(item, "title")
    link = _item_link(item)
    if not title or not link:
        return None
    return RawItem(
        title=strip_html(title),
        link=link,
        description=strip_html(_child_text(item, "description", "summary", "content")),
        author=_child_text(item, "creator", "author"),
        published=_child_text(item, "pubDate", "published", "updated", "date"),
    )


def parse_feed(raw_text: str, max_items: int = DEFAULT_MAX_ITEMS) -> list[RawItem]:
    """Parse an RSS or Atom document.

    Only the first ``max_items`` entries are examined. Entries without a
    title or a link (``guid``/``id`` standing in for a missing link) are
    dropped.

    Args:
        raw_text: Feed document text.
        max_items: Cap on entries examined.

    Returns:
        Raw items in feed order.
    """
    if not raw_text or not raw_text.strip():
        return []

    soup = BeautifulSoup(raw_text, "xml")
    entries = soup.find_all(["item", "entry"], limit=max_items)

    items = []
    for entry in entries:
        item = _parse_item(entry)
        if item is None:
            logger.debug("Dropping feed entry without title or link")
            continue
        items.append(item)

    logger.debug("Parsed %d/%d feed entries", len(items), len(entries))
    return items
