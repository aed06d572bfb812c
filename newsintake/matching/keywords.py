"""Keyword-topic relevance scoring.

Each configured keyword expands into a variation set (plural/singular,
tense, British/American spelling, ``&``/``and`` and a synonym table for
short or ambiguous terms). Variations are matched on whole-word
boundaries and weighted by where they occur: title, the opening of the
body, then the rest. Every location tier is capped so repetition cannot
run the score away.
"""

import logging
import re
from types import MappingProxyType
from typing import Iterable

from newsintake.config import ScoringWeights

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from",
    "has", "had", "he", "her", "his", "in", "is", "it", "its", "new", "not",
    "of", "on", "or", "our", "out", "she", "the", "to", "was", "we", "who",
    "you",
})

SYNONYMS = MappingProxyType({
    "ai": ("artificial intelligence", "a.i."),
    "pr": ("public relations",),
    "nhs": ("national health service",),
    "ev": ("electric vehicle", "electric vehicles"),
    "evs": ("electric vehicles",),
    "uk": ("united kingdom",),
    "mp": ("member of parliament",),
    "mps": ("members of parliament",),
    "gp": ("general practitioner", "family doctor"),
    "gps": ("general practitioners",),
    "a&e": ("accident and emergency", "a and e"),
    "hmo": ("house in multiple occupation",),
    "send": ("special educational needs",),
    "asb": ("anti-social behaviour", "antisocial behaviour"),
    "lgbt": ("lgbtq", "lgbtq+", "lgbt+"),
    "it": ("information technology",),
})

# British <-> American spelling pairs applied to word endings
_SPELLING_SWAPS = (
    ("isation", "ization"),
    ("ization", "isation"),
    ("ise", "ize"),
    ("ize", "ise"),
    ("ising", "izing"),
    ("izing", "ising"),
    ("ised", "ized"),
    ("ized", "ised"),
    ("yse", "yze"),
    ("yze", "yse"),
    ("centre", "center"),
    ("center", "centre"),
    ("theatre", "theater"),
    ("theater", "theatre"),
    ("metre", "meter"),
    ("meter", "metre"),
    ("litre", "liter"),
    ("liter", "litre"),
    ("ogue", "og"),
    ("programme", "program"),
    ("program", "programme"),
)

_OUR_STEMS = (
    "colo", "favo", "labo", "neighbo", "harbo", "hono", "behavio", "humo",
    "flavo", "rumo", "vapo", "endeavo", "savio",
)
_TOKEN = re.compile(r"[a-z0-9]+")
_VOWELS = "aeiou"


def _plural_forms(word: str) -> set[str]:
    forms = set()
    if word.endswith("ies") and len(word) > 4:
        forms.add(word[:-3] + "y")
    elif word.endswith(("ses", "xes", "ches", "shes")):
        forms.add(word[:-2])
    elif word.endswith("s"):
        if not word.endswith(("ss", "is", "us")) and len(word) > 4:
            forms.add(word[:-1])
    else:
        if word.endswith("y") and word[-2:-1] not in _VOWELS:
            forms.add(word[:-1] + "ies")
        elif word.endswith(("s", "x", "ch", "sh")):
            forms.add(word + "es")
        else:
            forms.add(word + "s")
    return forms


def _tense_forms(word: str) -> set[str]:
    forms = set()
    if word.endswith("ing") and len(word) > 5:
        stem = word[:-3]
        forms.update({stem, stem + "e", stem + "ed"})
    elif word.endswith("ed") and len(word) > 4:
        stem = word[:-2]
        forms.update({stem, stem + "ing", word[:-1]})
    elif word.endswith("e"):
        forms.update({word + "d", word[:-1] + "ing"})
    else:
        forms.update({word + "ed", word + "ing"})
    return forms


def _spelling_forms(word: str) -> set[str]:
    forms = set()
    for old, new in _SPELLING_SWAPS:
        if word.endswith(old):
            forms.add(word[: -len(old)] + new)
    for stem in _OUR_STEMS:
        if word.startswith(stem + "ur"):
            forms.add(stem + "r" + word[len(stem) + 2:])
        elif word.startswith(stem + "r"):
            forms.add(stem + "ur" + word[len(stem) + 1:])
    return forms


def generate_keyword_variations(keyword: str, min_length: int = 4) -> frozenset[str]:
    """Lowercased surface forms that count as a match for ``keyword``.

    Terms shorter than ``min_length`` only match themselves and their
    synonyms; morphology on two-letter acronyms produces noise.
    """
    term = " ".join(keyword.lower().split())
    if not term:
        return frozenset()

    variations = {term}
    variations.update(SYNONYMS.get(term, ()))

    if " & " in term:
        variations.add(term.replace(" & ", " and "))
    if " and " in term:
        variations.add(term.replace(" and ", " & "))

    if len(term) < min_length:
        return frozenset(variations)

    words = term.split(" ")
    head, last = words[:-1], words[-1]
    if len(last) >= min_length and last.isalpha():
        for form in _plural_forms(last) | _tense_forms(last) | _spelling_forms(last):
            variations.add(" ".join(head + [form]))

    # Spelling differences can sit anywhere in a phrase
    for i, word in enumerate(head):
        for form in _spelling_forms(word):
            variations.add(" ".join(words[:i] + [form] + words[i + 1:]))

    for variant in list(variations):
        if "-" in variant:
            variations.add(variant.replace("-", " "))

    return frozenset(v for v in variations if v)


def usable_keywords(keywords: Iterable[str]) -> list[str]:
    """Drop blank keywords and short stop words."""
    kept = []
    for keyword in keywords:
        term = keyword.strip()
        if not term:
            continue
        if len(term) <= 3 and term.lower() in STOP_WORDS:
            logger.debug("Ignoring stop-word keyword %r", term)
            continue
        kept.append(term)
    return kept


def compile_variations(variations: Iterable[str]) -> re.Pattern:
    """One whole-word alternation, longest variation first."""
    ordered = sorted(set(variations), key=len, reverse=True)
    alternation = "|".join(re.escape(v).replace(r"\ ", r"\s+") for v in ordered)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)


def count_term(text: str, term: str) -> int:
    """Whole-word, case-insensitive occurrences of a literal term."""
    if not text or not term.strip():
        return 0
    return len(compile_variations([" ".join(term.lower().split())]).findall(text))


def fuzzy_match(keyword: str, text_lower: str) -> bool:
    """True when a strict majority of the keyword's 3+ letter tokens occur."""
    tokens = [t for t in _TOKEN.findall(keyword.lower()) if len(t) >= 3]
    if not tokens:
        return False
    hits = sum(1 for t in tokens if t in text_lower)
    return hits * 2 > len(tokens)


def score_keywords(
    title: str,
    body: str,
    keywords: Iterable[str],
    weights: ScoringWeights,
) -> tuple[int, dict[str, int]]:
    """Score text against a keyword topic.

    Returns:
        Tuple of (score in [0, keyword_cap], {keyword: occurrences}).
        Fuzzy-only matches are recorded with an occurrence count of 0.
    """
    title = title or ""
    body = body or ""
    lead, rest = body[: weights.lead_chars], body[weights.lead_chars:]
    text_lower = f"{title} {body}".lower()

    raw = 0.0
    matched: dict[str, int] = {}

    for keyword in usable_keywords(keywords):
        variations = generate_keyword_variations(keyword, weights.min_variation_length)
        if not variations:
            continue
        pattern = compile_variations(variations)

        title_hits = len(pattern.findall(title))
        lead_hits = len(pattern.findall(lead))
        rest_hits = len(pattern.findall(rest))
        hits = title_hits + lead_hits + rest_hits

        if hits:
            raw += min(title_hits * weights.title_weight, weights.title_cap)
            raw += min(lead_hits * weights.lead_weight, weights.lead_cap)
            raw += min(rest_hits * weights.body_weight, weights.body_cap)
            matched[keyword] = hits
        elif fuzzy_match(keyword, text_lower):
            # Kept below a single exact body hit so exact matches always count for more
            raw += weights.fuzzy_weight
            matched[keyword] = 0

    if not matched:
        return 0, matched

    score = int(round(raw * weights.keyword_multiplier))
    score = max(score, weights.keyword_floor)
    return min(score, weights.keyword_cap), matched
