from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from .errors import ValidationRejected
from .extractor import Extraction
from .keys import resolve_slug
from .schema import RATING_UNVERIFIED, BrokerRecord

RATING_MIN = 0.0
RATING_MAX = 5.0
FOUNDED_YEAR_MIN = 1970

_WS_RE = re.compile(r"\s+")
_TRAILING_PUNCT_RE = re.compile(r"[\s.,;:!?)\]}'\"-]+$")
_LEADING_PUNCT_RE = re.compile(r"^[\s(\[{'\"-]+")
_HAS_LETTER_RE = re.compile(r"[A-Za-z]")

# regulator captures that are really sentence glue
_REGULATION_STOPWORDS = {"the", "and", "or", "of", "in", "by", "to", "for", "with", "a", "an", "several", "multiple"}

_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP"}
_CURRENCY_CODES = ("USD", "EUR", "GBP", "AUD")

_PLATFORM_NAMES = {
    "mt4": "MetaTrader 4",
    "metatrader4": "MetaTrader 4",
    "metatrader 4": "MetaTrader 4",
    "mt5": "MetaTrader 5",
    "metatrader5": "MetaTrader 5",
    "metatrader 5": "MetaTrader 5",
    "ctrader": "cTrader",
    "webtrader": "WebTrader",
    "web trader": "WebTrader",
    "mobile trader": "Mobile Trader",
}

_SPREAD_NUM_RE = re.compile(r"\d+(?:\.\d+)?")
_LEVERAGE_RE = re.compile(r"1:(\d+)|(\d+):1|(\d+)x")
_ACCOUNT_SUFFIX_RE = re.compile(r"\s*\baccounts?$", re.I)

_ACCOUNT_NAMES = {
    "standard": "Standard Account",
    "mini": "Mini Account",
    "micro": "Micro Account",
    "vip": "VIP Account",
    "islamic": "Islamic Account",
    "swap free": "Islamic Account",
    "swap-free": "Islamic Account",
    "ecn": "ECN Account",
    "stp": "STP Account",
}

# checked in order; first substring hit wins
_PAGE_TYPES: Tuple[Tuple[str, str], ...] = (
    ("minimum-deposit", "minimum-deposit"),
    ("fees", "fees"),
    ("account-types", "account-types"),
    ("islamic-account", "islamic-account"),
    ("demo", "demo"),
    ("withdrawal", "withdrawal"),
)


@dataclass(frozen=True)
class NormalizedResult:
    record: BrokerRecord
    warnings: Tuple[str, ...] = ()


def _norm_str(s: Any) -> Optional[str]:
    if s is None:
        return None
    if not isinstance(s, str):
        s = str(s)
    s = _WS_RE.sub(" ", html.unescape(s)).strip()
    return s or None


def title_from_slug(slug: Optional[str]) -> Optional[str]:
    """'fp-markets' -> 'Fp Markets'"""
    if not slug:
        return None
    words = [w for w in slug.replace("_", "-").split("-") if w]
    if not words:
        return None
    return " ".join(w[:1].upper() + w[1:] for w in words)


def normalize_name(raw: Optional[str], slug: Optional[str]) -> Optional[str]:
    name = _norm_str(raw)
    if name:
        return name
    return title_from_slug(slug)


def normalize_rating(raw: Optional[str]) -> Tuple[float, bool]:
    """
    Return (rating, verified).
    Unparseable or out-of-range -> (0.0, False). Never clamps a bad value into range.
    """
    s = _norm_str(raw)
    if not s:
        return 0.0, False
    try:
        value = float(s.replace(",", "."))
    except ValueError:
        return 0.0, False
    if value != value or not (RATING_MIN <= value <= RATING_MAX):  # NaN included
        return 0.0, False
    return round(value, 2), True


def normalize_description(raw: Optional[str], max_length: int = 2000) -> str:
    s = _norm_str(raw)
    if not s:
        return ""
    if len(s) <= max_length:
        return s
    return s[:max_length].rstrip()


def _clean_regulator(raw: Any) -> Optional[str]:
    s = _norm_str(raw)
    if not s:
        return None
    s = _LEADING_PUNCT_RE.sub("", s)
    s = _TRAILING_PUNCT_RE.sub("", s)
    if not s or not _HAS_LETTER_RE.search(s):
        return None
    if s.lower() in _REGULATION_STOPWORDS:
        return None
    return s


def normalize_regulations(raw: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    """Case-insensitive dedupe, first-seen casing and order kept."""
    if not raw:
        return ()
    out: List[str] = []
    seen = set()
    for r in raw:
        s = _clean_regulator(r)
        if not s:
            continue
        key = s.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(s)
    return tuple(out)


def _detect_currency(s: str) -> str:
    for sym, code in _CURRENCY_SYMBOLS.items():
        if sym in s:
            return code
    up = s.upper()
    for code in _CURRENCY_CODES:
        if code in up:
            return code
    return "USD"


def parse_amount(raw: Optional[str]) -> Optional[float]:
    """
    '$1,000' -> 1000.0, '1.000' (dot thousands) -> 1000.0, '250.50' -> 250.5
    Unparseable -> None (never 0).
    """
    s = _norm_str(raw)
    if not s:
        return None
    s = re.sub(r"[^\d.,]", "", s).strip(".,")
    if not s:
        return None

    if re.fullmatch(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?", s):
        s = s.replace(",", "")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", s):
        s = s.replace(".", "")
    elif re.fullmatch(r"\d+,\d{1,2}", s):
        s = s.replace(",", ".")
    else:
        s = s.replace(",", "")

    try:
        return float(s)
    except ValueError:
        return None


def normalize_min_deposit(raw: Optional[str]) -> Tuple[Optional[float], Optional[str]]:
    amount = parse_amount(raw)
    if amount is None:
        return None, None
    return amount, _detect_currency(raw or "")


def normalize_founded_year(raw: Optional[str], today: Optional[datetime] = None) -> Optional[int]:
    s = _norm_str(raw)
    if not s or not s.isdigit():
        return None
    year = int(s)
    current = (today or datetime.now(timezone.utc)).year
    if FOUNDED_YEAR_MIN <= year <= current:
        return year
    return None


def normalize_platforms(raw: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    if not raw:
        return ()
    out: List[str] = []
    for p in raw:
        s = _norm_str(p)
        if not s:
            continue
        key = _WS_RE.sub(" ", s.lower())
        name = _PLATFORM_NAMES.get(key) or _PLATFORM_NAMES.get(key.replace(" ", "")) or s
        if name not in out:
            out.append(name)
    return tuple(out)


def normalize_spread(raw: Optional[str]) -> Optional[float]:
    """'0.6 pips' -> 0.6. Unparseable -> None."""
    s = _norm_str(raw)
    if not s:
        return None
    m = _SPREAD_NUM_RE.search(s)
    if not m:
        return None
    return round(float(m.group(0)), 2)


def normalize_leverage(raw: Optional[str]) -> Optional[str]:
    """'1 : 500', '500:1', '500x' -> '1:500'."""
    s = _norm_str(raw)
    if not s:
        return None
    s = s.replace(",", "").replace(" ", "").lower()
    m = _LEVERAGE_RE.fullmatch(s)
    if not m:
        return None
    n = m.group(1) or m.group(2) or m.group(3)
    if int(n) < 1:
        return None
    return f"1:{int(n)}"


def normalize_account_types(raw: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    if not raw:
        return ()
    out: List[str] = []
    for a in raw:
        s = _norm_str(a)
        if not s:
            continue
        base = _ACCOUNT_SUFFIX_RE.sub("", s).strip()
        if not base:
            continue
        name = _ACCOUNT_NAMES.get(base.lower()) or f"{base[:1].upper()}{base[1:]} Account"
        if name.casefold() not in (o.casefold() for o in out):
            out.append(name)
    return tuple(out)


def page_type_from_filename(path: str | Path) -> str:
    stem = Path(path).stem.lower()
    for needle, page_type in _PAGE_TYPES:
        if needle in stem:
            return page_type
    return "main-review"


def normalize_record(
    extraction: Extraction,
    *,
    slug: Optional[str],
    source_path: str,
    extracted_at: str,
    description_max_length: int = 2000,
    page_type: Optional[str] = None,
) -> NormalizedResult:
    """
    Raw extraction -> BrokerRecord.

    slug is the filename-derived candidate (may be empty); when present it
    also feeds the name fallback. The final slug is the filename slug or,
    failing that, the slugified name. Only "no name and no slug" rejects.
    """
    warnings: List[str] = []

    name = normalize_name(extraction.value("name"), slug)
    if not name:
        raise ValidationRejected(source_path)
    final_slug = resolve_slug(slug, name, source_path)

    rating, verified = normalize_rating(extraction.value("rating"))
    flags: Tuple[str, ...] = ()
    if not verified:
        flags = (RATING_UNVERIFIED,)
        warnings.append(f"{RATING_UNVERIFIED}: raw={extraction.value('rating')!r}")

    min_deposit, currency = normalize_min_deposit(extraction.value("min_deposit"))

    record = BrokerRecord(
        slug=final_slug,
        name=name,
        rating=rating,
        description=normalize_description(extraction.value("description"), description_max_length),
        regulations=normalize_regulations(extraction.value("regulations")),
        min_deposit=min_deposit,
        min_deposit_currency=currency,
        founded_year=normalize_founded_year(extraction.value("founded_year")),
        platforms=normalize_platforms(extraction.value("platforms")),
        spread=normalize_spread(extraction.value("spread")),
        leverage=normalize_leverage(extraction.value("leverage")),
        account_types=normalize_account_types(extraction.value("account_types")),
        page_type=page_type or page_type_from_filename(source_path),
        extracted_at=extracted_at,
        source_path=source_path,
        flags=flags,
    )
    return NormalizedResult(record=record, warnings=tuple(warnings))
