from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, ProcessingInstruction

from .schema import ExtractedField

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")

# "BDSwiss - DailyForex.com", "XM | Forex Broker Review"
_TITLE_SPLIT_RE = re.compile(r"\s+[-|–—]\s+")
# "BDSwiss Review 2024", "FP Markets Forex Broker Review"
_REVIEW_SUFFIX_RE = re.compile(r"\s+(?:forex\s+)?(?:broker\s+)?review\b.*$", re.I)

_NUM = r"[0-9]+(?:[.,][0-9]+)?"
_CURRENCY_CODE = r"(?:USD|EUR|GBP|AUD)"
_AMOUNT = r"((?:" + _CURRENCY_CODE + r"|[$€£])?\s?[0-9][0-9,.]*(?:\s?" + _CURRENCY_CODE + r"\b)?)"
# label ... value, allowed to cross into the next text node ("<td>Label</td><td>$100</td>")
_LABEL_GAP = r"[^0-9$€£\n]{0,30}?(?:\n[^0-9$€£\n]{0,15}?)?"


class DocumentView:
    """
    One parsed document, shared by all strategies.
    Soup and visible text are built lazily and only once.
    """

    def __init__(self, html: str):
        self.html = html or ""
        self._soup: Optional[BeautifulSoup] = None
        self._text: Optional[str] = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "lxml")
        return self._soup

    @property
    def text(self) -> str:
        """Visible text, one text node per line (script/style/comments dropped)."""
        if self._text is None:
            lines: List[str] = []
            for s in self.soup.find_all(string=True):
                if isinstance(s, (Comment, Declaration, Doctype, ProcessingInstruction)):
                    continue
                if s.parent is not None and s.parent.name in ("script", "style", "noscript"):
                    continue
                t = _WS_RE.sub(" ", str(s)).strip()
                if t:
                    lines.append(t)
            self._text = "\n".join(lines)
        return self._text


StrategyFn = Callable[[DocumentView], object]


@dataclass(frozen=True)
class Strategy:
    name: str
    fn: StrategyFn


@dataclass(frozen=True)
class Extraction:
    fields: Dict[str, ExtractedField]
    unresolved: Tuple[str, ...]

    def value(self, field: str):
        f = self.fields.get(field)
        return f.value if f is not None else None


def _clean(s: Optional[str]) -> Optional[str]:
    if s is None:
        return None
    s = _WS_RE.sub(" ", s).strip()
    return s or None


def _strip_review_suffix(s: Optional[str]) -> Optional[str]:
    s = _clean(s)
    if not s:
        return None
    return _clean(_REVIEW_SUFFIX_RE.sub("", s))


def _first_group(pattern: re.Pattern, text: str) -> Optional[str]:
    m = pattern.search(text)
    return _clean(m.group(1)) if m else None


def _all_groups(pattern: re.Pattern, text: str) -> Tuple[str, ...]:
    out: List[str] = []
    for m in pattern.finditer(text):
        v = _clean(m.group(1))
        if v:
            out.append(v)
    return tuple(out)


# ---------------------------
# name
# ---------------------------

def name_from_title(view: DocumentView) -> Optional[str]:
    el = view.soup.title
    if el is None:
        return None
    title = _clean(el.get_text(" ", strip=True))
    if not title:
        return None
    head = _TITLE_SPLIT_RE.split(title, maxsplit=1)[0]
    return _strip_review_suffix(head)


def name_from_heading(view: DocumentView) -> Optional[str]:
    el = view.soup.find("h1")
    if el is None:
        return None
    return _strip_review_suffix(el.get_text(" ", strip=True))


_BROKER_NAME_JSON_RE = re.compile(r'"brokerName"\s*:\s*"([^"]{2,100})"', re.I)
_BROKER_NAME_KV_RE = re.compile(r"\bbroker\s*name\s*[:=]\s*[\"']?([^\"'<\n]{2,100})", re.I)


def name_from_keyed_text(view: DocumentView) -> Optional[str]:
    return _first_group(_BROKER_NAME_JSON_RE, view.html) or _first_group(_BROKER_NAME_KV_RE, view.text)


# ---------------------------
# rating
# ---------------------------

def rating_from_itemprop(view: DocumentView) -> Optional[str]:
    el = view.soup.find(attrs={"itemprop": "ratingValue"})
    if el is None:
        return None
    return _clean(el.get("content")) or _clean(el.get_text(" ", strip=True))


def rating_from_data_attr(view: DocumentView) -> Optional[str]:
    el = view.soup.find(attrs={"data-rating": True})
    if el is None:
        return None
    return _clean(el.get("data-rating"))


_RATING_KV_RE = re.compile(r"\b(?:overall\s+)?rating\s*[:=]\s*[\"']?(-?" + _NUM + ")", re.I)
_STARS_KV_RE = re.compile(r"\bstars?\s*[:=]\s*[\"']?(-?" + _NUM + ")", re.I)


def rating_from_keyed_text(view: DocumentView) -> Optional[str]:
    return _first_group(_RATING_KV_RE, view.text)


def rating_from_stars(view: DocumentView) -> Optional[str]:
    return _first_group(_STARS_KV_RE, view.text)


# ---------------------------
# description
# ---------------------------

def description_from_meta(view: DocumentView) -> Optional[str]:
    el = view.soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    return _clean(el.get("content")) if el is not None else None


def description_from_og(view: DocumentView) -> Optional[str]:
    el = view.soup.find("meta", attrs={"property": "og:description"})
    return _clean(el.get("content")) if el is not None else None


def description_from_paragraph(view: DocumentView, min_length: int = 150) -> Optional[str]:
    for p in view.soup.find_all("p"):
        t = _clean(p.get_text(" ", strip=True))
        if t and len(t) >= min_length:
            return t
    return None


# ---------------------------
# regulations (multi)
# ---------------------------

_REGULATED_BY_RE = re.compile(
    r"\b(?:regulated|licen[cs]ed|authori[sz]ed)\s+by\s+(?:the\s+)?([^\s,;<()]+)", re.I
)
_REGULATOR_LIST_RE = re.compile(r"\bregulators?\s*:\s*([^\n.;]+)", re.I)
_LIST_SPLIT_RE = re.compile(r"\s*(?:,|/|\band\b|&)\s*", re.I)


def regulations_regulated_by(view: DocumentView) -> Tuple[str, ...]:
    return _all_groups(_REGULATED_BY_RE, view.text)


def regulations_from_list(view: DocumentView) -> Tuple[str, ...]:
    out: List[str] = []
    for chunk in _all_groups(_REGULATOR_LIST_RE, view.text):
        out.extend(p for p in (_clean(x) for x in _LIST_SPLIT_RE.split(chunk)) if p)
    return tuple(out)


# ---------------------------
# minimum deposit
# ---------------------------

_MIN_DEPOSIT_RE = re.compile(r"(?<!\bno\s)\bminimum\s+deposit\b" + _LABEL_GAP + _AMOUNT, re.I)
_MIN_DEPOSIT_SHORT_RE = re.compile(r"\bmin\.?\s+deposit\b" + _LABEL_GAP + _AMOUNT, re.I)
_NO_MIN_DEPOSIT_RE = re.compile(r"\bno\s+minimum\s+deposit\b", re.I)


def min_deposit_explicit(view: DocumentView) -> Optional[str]:
    return _first_group(_MIN_DEPOSIT_RE, view.text)


def min_deposit_short(view: DocumentView) -> Optional[str]:
    return _first_group(_MIN_DEPOSIT_SHORT_RE, view.text)


def min_deposit_none(view: DocumentView) -> Optional[str]:
    return "0" if _NO_MIN_DEPOSIT_RE.search(view.text) else None


# ---------------------------
# founded year / platforms
# ---------------------------

_FOUNDED_RE = re.compile(r"\b(?:founded|established|since)\s+(?:in\s+)?((?:19|20)\d{2})\b", re.I)
_PLATFORM_RE = re.compile(
    r"\b(MT4|MT5|MetaTrader\s*[45]|cTrader|Web\s*Trader|Mobile\s+Trader)\b", re.I
)


def founded_year_from_text(view: DocumentView) -> Optional[str]:
    return _first_group(_FOUNDED_RE, view.text)


def platforms_from_text(view: DocumentView) -> Tuple[str, ...]:
    return _all_groups(_PLATFORM_RE, view.text)


# ---------------------------
# spread / leverage / account types
# ---------------------------

_SPREAD_PIPS_RE = re.compile(
    r"\b(?:typical\s+|average\s+|avg\.?\s+)?spreads?\b" + _LABEL_GAP + r"([0-9]+(?:\.[0-9]+)?\s*pips?)\b", re.I
)
_SPREAD_TYPICAL_RE = re.compile(
    r"\b(?:typical|average|avg\.?)\s+spreads?\b" + _LABEL_GAP + r"([0-9]+(?:\.[0-9]+)?)\b", re.I
)
_LEVERAGE_RATIO_RE = re.compile(
    r"\bleverage\b" + _LABEL_GAP + r"(1\s*:\s*[0-9][0-9,]*|[0-9][0-9,]*\s*:\s*1)\b", re.I
)
_LEVERAGE_MULTIPLIER_RE = re.compile(r"\bleverage\b" + _LABEL_GAP + r"([0-9][0-9,]*\s*x)\b", re.I)
_ACCOUNT_NAMED_RE = re.compile(r"\b(standard|mini|micro|vip|islamic|ecn|stp)\s+accounts?\b", re.I)
_ACCOUNT_LIST_RE = re.compile(r"\baccount\s+types?\s*:\s*([^\n.;]+)", re.I)


def spread_in_pips(view: DocumentView) -> Optional[str]:
    return _first_group(_SPREAD_PIPS_RE, view.text)


def spread_typical(view: DocumentView) -> Optional[str]:
    return _first_group(_SPREAD_TYPICAL_RE, view.text)


def leverage_ratio(view: DocumentView) -> Optional[str]:
    return _first_group(_LEVERAGE_RATIO_RE, view.text)


def leverage_multiplier(view: DocumentView) -> Optional[str]:
    return _first_group(_LEVERAGE_MULTIPLIER_RE, view.text)


def account_types_named(view: DocumentView) -> Tuple[str, ...]:
    return _all_groups(_ACCOUNT_NAMED_RE, view.text)


def account_types_from_list(view: DocumentView) -> Tuple[str, ...]:
    out: List[str] = []
    for chunk in _all_groups(_ACCOUNT_LIST_RE, view.text):
        out.extend(p for p in (_clean(x) for x in _LIST_SPLIT_RE.split(chunk)) if p)
    return tuple(out)


# Order encodes confidence: most structured markup first, loosest text last.
# Changing it changes extraction quality for the whole corpus.
FIELD_STRATEGIES: Dict[str, Tuple[Strategy, ...]] = {
    "name": (
        Strategy("title-tag", name_from_title),
        Strategy("heading-tag", name_from_heading),
        Strategy("keyed-text", name_from_keyed_text),
    ),
    "rating": (
        Strategy("itemprop-rating", rating_from_itemprop),
        Strategy("data-rating", rating_from_data_attr),
        Strategy("keyed-rating", rating_from_keyed_text),
        Strategy("keyed-stars", rating_from_stars),
    ),
    "description": (
        Strategy("meta-description", description_from_meta),
        Strategy("og-description", description_from_og),
        Strategy("long-paragraph", description_from_paragraph),
    ),
    "regulations": (
        Strategy("regulated-by", regulations_regulated_by),
        Strategy("regulator-list", regulations_from_list),
    ),
    "min_deposit": (
        Strategy("minimum-deposit", min_deposit_explicit),
        Strategy("min-deposit", min_deposit_short),
        Strategy("no-minimum-deposit", min_deposit_none),
    ),
    "founded_year": (
        Strategy("founded-in", founded_year_from_text),
    ),
    "platforms": (
        Strategy("platform-names", platforms_from_text),
    ),
    "spread": (
        Strategy("spread-pips", spread_in_pips),
        Strategy("typical-spread", spread_typical),
    ),
    "leverage": (
        Strategy("leverage-ratio", leverage_ratio),
        Strategy("leverage-multiplier", leverage_multiplier),
    ),
    "account_types": (
        Strategy("named-accounts", account_types_named),
        Strategy("account-type-list", account_types_from_list),
    ),
}

MULTI_VALUED_FIELDS = frozenset({"regulations", "platforms", "account_types"})

FIELDS: Tuple[str, ...] = tuple(FIELD_STRATEGIES.keys())


def _run_strategy(strategy: Strategy, view: DocumentView, field: str):
    try:
        return strategy.fn(view)
    except Exception as e:
        # a broken strategy is a miss, never a crash
        logger.debug("strategy %s/%s failed: %s: %s", field, strategy.name, type(e).__name__, e)
        return None


def extract_field(
    view: DocumentView,
    field: str,
    strategies: Optional[Tuple[Strategy, ...]] = None,
) -> ExtractedField:
    """
    First strategy with a non-blank capture wins.
    Multi-valued fields run every strategy and keep all matches in strategy
    order; matched_index is the first strategy that contributed. Duplicates
    are left for the normalizer.
    """
    strategies = strategies if strategies is not None else FIELD_STRATEGIES[field]

    if field in MULTI_VALUED_FIELDS:
        collected: List[str] = []
        first: Optional[int] = None
        for i, strategy in enumerate(strategies):
            got = _run_strategy(strategy, view, field)
            values = [v for v in (_clean(x) for x in (got or ())) if v]
            if values and first is None:
                first = i
            collected.extend(values)
        return ExtractedField(
            field=field,
            attempted=len(strategies),
            matched_index=first,
            value=tuple(collected) if collected else None,
        )

    for i, strategy in enumerate(strategies):
        got = _run_strategy(strategy, view, field)
        v = _clean(got) if isinstance(got, str) else None
        if v:
            return ExtractedField(field=field, attempted=i + 1, matched_index=i, value=v)

    return ExtractedField(field=field, attempted=len(strategies), matched_index=None, value=None)


def extract_document(html: str) -> Extraction:
    view = DocumentView(html)
    fields = {f: extract_field(view, f) for f in FIELDS}
    unresolved = tuple(f for f, ef in fields.items() if not ef.resolved)
    return Extraction(fields=fields, unresolved=unresolved)
