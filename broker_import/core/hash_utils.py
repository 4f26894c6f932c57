from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict, List, Optional

# Fields that never take part in change detection (run metadata / storage-owned)
NON_HASH_KEYS = {
    "id",
    "extractedAt",
    "contentHash",
    "schemaVersion",
    "totalReviews",
    "avgReviewScore",
    "createdAt",
    "updatedAt",
}

_WS_RE = re.compile(r"\s+")


def _norm_str(s: Any) -> Optional[str]:
    if s is None:
        return None
    if not isinstance(s, str):
        s = str(s)
    s = s.strip()
    if not s:
        return None
    # collapse whitespace so formatting noise does not count as a change
    return _WS_RE.sub(" ", s)


def _round_float(x: Any, ndigits: int = 6) -> Optional[float]:
    if x is None:
        return None
    try:
        return round(float(x), ndigits)
    except (TypeError, ValueError):
        return None


def _str_list(xs: Any, *, sort: bool = False) -> List[str]:
    if not xs or not isinstance(xs, (list, tuple)):
        return []
    out: List[str] = []
    for v in xs:
        s = _norm_str(v)
        if s and s not in out:
            out.append(s)
    if sort:
        out.sort()
    return out


def canonical_for_hash(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Subset of a stored/payload broker dict that counts as 'meaningful change'.
    Works on both freshly built payloads and rows read back from storage.
    """
    year = payload.get("foundedYear")
    return {
        "slug": _norm_str(payload.get("slug")),
        "name": _norm_str(payload.get("name")),
        "rating": _round_float(payload.get("rating"), 2),
        "description": _norm_str(payload.get("description")) or "",
        # regulator order is meaningful (first seen first)
        "regulations": _str_list(payload.get("regulations")),
        "minDeposit": _round_float(payload.get("minDeposit"), 2),
        "minDepositCurrency": _norm_str(payload.get("minDepositCurrency")),
        "foundedYear": int(year) if year is not None else None,
        "platforms": _str_list(payload.get("platforms"), sort=True),
        "spread": _round_float(payload.get("spread"), 2),
        "leverage": _norm_str(payload.get("leverage")),
        "accountTypes": _str_list(payload.get("accountTypes"), sort=True),
        "pageType": _norm_str(payload.get("pageType")),
        "sourcePath": _norm_str(payload.get("sourcePath")),
    }


def compute_content_hash(payload: Dict[str, Any]) -> str:
    canon = canonical_for_hash(payload)
    blob = json.dumps(canon, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def same_content(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    return compute_content_hash(a) == compute_content_hash(b)
