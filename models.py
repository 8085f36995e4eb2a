"""Shared typed models for the feed pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

PUBLICATIONS = "publications"
PATENTS = "patents"
FUNDING_OPPORTUNITIES = "funding_opportunities"
TRENDING_SCIENCE_NEWS = "trending_science_news"

CATEGORIES: tuple[str, ...] = (
    PUBLICATIONS,
    PATENTS,
    FUNDING_OPPORTUNITIES,
    TRENDING_SCIENCE_NEWS,
)

# Value stored in feed_items.item_type for each category.
ITEM_TYPES: dict[str, str] = {
    PUBLICATIONS: "publication",
    PATENTS: "patent",
    FUNDING_OPPORTUNITIES: "funding_opportunity",
    TRENDING_SCIENCE_NEWS: "trending_science_news",
}


class TimeRange(str, Enum):
    PAST_MONTH = "past_month"
    PAST_3_MONTHS = "past_3_months"
    PAST_6_MONTHS = "past_6_months"
    PAST_YEAR = "past_year"

    @property
    def months(self) -> int:
        return {"past_month": 1, "past_3_months": 3, "past_6_months": 6, "past_year": 12}[self.value]


class ImpactLevel(str, Enum):
    ALL = "all"
    HIGH = "high"
    BREAKTHROUGH = "breakthrough"


@dataclass(frozen=True, slots=True)
class SearchPreferences:
    """User-tunable modifiers for one discovery run."""

    keywords: str = ""
    categories: dict[str, bool] = field(default_factory=lambda: dict.fromkeys(CATEGORIES, True))
    items_per_category: int | None = None
    time_range: TimeRange = TimeRange.PAST_6_MONTHS
    impact_level: ImpactLevel = ImpactLevel.ALL

    @property
    def enabled_categories(self) -> tuple[str, ...]:
        return tuple(cat for cat in CATEGORIES if self.categories.get(cat, True))


@dataclass(frozen=True, slots=True)
class ResearcherIdentity:
    """Best-effort identity pulled from free profile text."""

    name: str = ""
    institution: str = ""
    eligible_regions: tuple[str, ...] = ("International",)

    @property
    def has_exclusions(self) -> bool:
        return bool(self.name or self.institution)


@dataclass(frozen=True, slots=True)
class SubmittedSource:
    """One row of the submitted_urls table."""

    url: str | None
    keywords: str | None
    profile_type: str | None


@dataclass(frozen=True, slots=True)
class PublicationMeta:
    authors: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"authors": list(self.authors)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PublicationMeta:
        return cls(authors=list(data.get("authors") or []))


@dataclass(frozen=True, slots=True)
class PatentMeta:
    patent_number: str | None
    inventors: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"patent_number": self.patent_number, "inventors": list(self.inventors)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatentMeta:
        return cls(patent_number=data.get("patent_number"), inventors=list(data.get("inventors") or []))


@dataclass(frozen=True, slots=True)
class FundingMeta:
    issuing_agency: str | None
    funding_amount: str | None
    deadline: str | None
    eligible_regions: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "issuing_agency": self.issuing_agency,
            "funding_amount": self.funding_amount,
            "deadline": self.deadline,
            "eligible_regions": self.eligible_regions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FundingMeta:
        return cls(
            issuing_agency=data.get("issuing_agency"),
            funding_amount=data.get("funding_amount"),
            deadline=data.get("deadline"),
            eligible_regions=data.get("eligible_regions"),
        )


@dataclass(frozen=True, slots=True)
class NewsMeta:
    source: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NewsMeta:
        return cls(source=data.get("source"))


Metadata = PublicationMeta | PatentMeta | FundingMeta | NewsMeta

METADATA_TYPES: dict[str, type[PublicationMeta] | type[PatentMeta] | type[FundingMeta] | type[NewsMeta]] = {
    PUBLICATIONS: PublicationMeta,
    PATENTS: PatentMeta,
    FUNDING_OPPORTUNITIES: FundingMeta,
    TRENDING_SCIENCE_NEWS: NewsMeta,
}


def decode_metadata(category: str, data: dict[str, Any]) -> Metadata:
    """Rebuild typed metadata from the JSON stored in feed_items.metadata."""
    return METADATA_TYPES[category].from_dict(data)


@dataclass(frozen=True, slots=True)
class FeedEntry:
    """One normalized record inside a category bucket."""

    title: str
    summary: str | None
    url: str | None
    metadata: Metadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "summary": self.summary,
            "url": self.url,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(slots=True)
class FeedPayload:
    """Normalized model output, keyed by enabled category."""

    categories: dict[str, list[FeedEntry]]
    warnings: list[str] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {cat: len(entries) for cat, entries in self.categories.items()}

    def total(self) -> int:
        return sum(self.counts().values())

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {cat: [entry.to_dict() for entry in entries] for cat, entries in self.categories.items()}


@dataclass(frozen=True, slots=True)
class FeedItem:
    """Persisted feed row."""

    user_id: str
    item_type: str
    title: str
    summary: str | None
    url: str | None
    metadata: dict[str, Any]
    session_id: str | int | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "item_type": self.item_type,
            "title": self.title,
            "summary": self.summary,
            "url": self.url,
            "metadata": self.metadata,
            "session_id": self.session_id,
        }


def feed_items_from_payload(
    payload: FeedPayload, user_id: str, session_id: str | int | None = None
) -> list[FeedItem]:
    """Flatten a payload into rows, preserving category then record order."""
    items: list[FeedItem] = []
    for category, entries in payload.categories.items():
        for entry in entries:
            items.append(
                FeedItem(
                    user_id=user_id,
                    item_type=ITEM_TYPES[category],
                    title=entry.title,
                    summary=entry.summary,
                    url=entry.url,
                    metadata=entry.metadata.to_dict(),
                    session_id=session_id,
                )
            )
    return items


def today_utc() -> date:
    return datetime.now(UTC).date()
