from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple, Union

# --- Enums (source of truth) ---
SourceCategory = Literal["markup", "script", "other"]
Outcome = Literal["created", "updated", "unchanged", "skipped", "failed", "rejected"]
PageType = Literal[
    "main-review",
    "minimum-deposit",
    "fees",
    "account-types",
    "demo",
    "withdrawal",
    "islamic-account",
]

OUTCOMES: Tuple[str, ...] = ("created", "updated", "unchanged", "skipped", "failed", "rejected")

RATING_UNVERIFIED = "rating-unverified"

SCHEMA_VERSION = "brokers_v1"

FieldValue = Union[str, Tuple[str, ...], None]


@dataclass(frozen=True)
class ExtractedField:
    field: str
    attempted: int
    matched_index: Optional[int] = None
    value: FieldValue = None

    @property
    def resolved(self) -> bool:
        return self.matched_index is not None


@dataclass(frozen=True)
class BrokerRecord:
    slug: str
    name: str
    rating: float = 0.0
    description: str = ""
    regulations: Tuple[str, ...] = ()
    min_deposit: Optional[float] = None
    min_deposit_currency: Optional[str] = None
    founded_year: Optional[int] = None
    platforms: Tuple[str, ...] = ()
    spread: Optional[float] = None
    leverage: Optional[str] = None
    account_types: Tuple[str, ...] = ()
    page_type: str = "main-review"
    extracted_at: Optional[str] = None
    source_path: Optional[str] = None
    flags: Tuple[str, ...] = field(default=(), compare=False)

    def to_payload(self) -> Dict[str, Any]:
        """Storage shape (camelCase). Flags are run-local and never stored."""
        return {
            "schemaVersion": SCHEMA_VERSION,
            "slug": self.slug,
            "name": self.name,
            "rating": self.rating,
            "description": self.description,
            "regulations": list(self.regulations),
            "minDeposit": self.min_deposit,
            "minDepositCurrency": self.min_deposit_currency,
            "foundedYear": self.founded_year,
            "platforms": list(self.platforms),
            "spread": self.spread,
            "leverage": self.leverage,
            "accountTypes": list(self.account_types),
            "pageType": self.page_type,
            "extractedAt": self.extracted_at,
            "sourcePath": self.source_path,
        }

    @classmethod
    def from_payload(cls, d: Dict[str, Any]) -> "BrokerRecord":
        return cls(
            slug=d["slug"],
            name=d.get("name") or "",
            rating=float(d.get("rating") or 0.0),
            description=d.get("description") or "",
            regulations=tuple(d.get("regulations") or ()),
            min_deposit=d.get("minDeposit"),
            min_deposit_currency=d.get("minDepositCurrency"),
            founded_year=d.get("foundedYear"),
            platforms=tuple(d.get("platforms") or ()),
            spread=d.get("spread"),
            leverage=d.get("leverage"),
            account_types=tuple(d.get("accountTypes") or ()),
            page_type=d.get("pageType") or "main-review",
            extracted_at=d.get("extractedAt"),
            source_path=d.get("sourcePath"),
        )


@dataclass(frozen=True)
class ImportOutcome:
    slug: Optional[str]
    source_path: str
    outcome: str  # one of OUTCOMES
    kind: Optional[str] = None  # error kind for failed/rejected/skipped
    reason: Optional[str] = None
    related_path: Optional[str] = None
    record_id: Optional[str] = None
    attempts: int = 0
