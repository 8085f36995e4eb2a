"""Shape parsed model JSON into typed category buckets."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from typing import Any

from models import (
    FUNDING_OPPORTUNITIES,
    PATENTS,
    PUBLICATIONS,
    TRENDING_SCIENCE_NEWS,
    FeedEntry,
    FeedItem,
    FeedPayload,
    FundingMeta,
    Metadata,
    NewsMeta,
    PatentMeta,
    PublicationMeta,
)

LOGGER = logging.getLogger(__name__)


def normalize_feed(parsed: dict[str, Any], enabled_categories: Iterable[str]) -> FeedPayload:
    """Build a FeedPayload holding only the enabled categories.

    A missing category key yields an empty list. Records that cannot be
    used (not an object, no title) are dropped and listed in ``warnings``.
    """
    categories: dict[str, list[FeedEntry]] = {}
    warnings: list[str] = []

    for category in enabled_categories:
        raw_records = parsed.get(category)
        if raw_records is None:
            categories[category] = []
            continue
        if not isinstance(raw_records, list):
            warnings.append(f"{category}: expected a list, got {type(raw_records).__name__}")
            categories[category] = []
            continue

        entries: list[FeedEntry] = []
        for index, record in enumerate(raw_records):
            entry = _normalize_record(category, record)
            if entry is None:
                warnings.append(f"{category}[{index}]: dropped record without a usable title")
                continue
            entries.append(entry)
        categories[category] = entries

    for message in warnings:
        LOGGER.warning("Normalizer: %s", message)
    return FeedPayload(categories=categories, warnings=warnings)


def _normalize_record(category: str, record: Any) -> FeedEntry | None:
    if not isinstance(record, dict):
        return None
    title = _as_text(record.get("title"))
    if not title:
        return None
    return FeedEntry(
        title=title,
        summary=_as_text(record.get("summary")) or None,
        url=_as_text(record.get("url")) or None,
        metadata=_build_metadata(category, record),
    )


def _build_metadata(category: str, record: dict[str, Any]) -> Metadata:
    if category == PUBLICATIONS:
        return PublicationMeta(authors=_as_name_list(record.get("authors")))
    if category == PATENTS:
        return PatentMeta(
            patent_number=_as_text(record.get("patent_number")) or None,
            inventors=_as_name_list(record.get("inventors")),
        )
    if category == FUNDING_OPPORTUNITIES:
        return FundingMeta(
            issuing_agency=_as_text(record.get("issuing_agency")) or None,
            funding_amount=_as_text(record.get("funding_amount")) or None,
            deadline=_as_text(record.get("deadline")) or None,
            eligible_regions=_as_region_text(record.get("eligible_regions")) or None,
        )
    if category == TRENDING_SCIENCE_NEWS:
        return NewsMeta(source=_as_text(record.get("source")) or None)
    raise ValueError(f"Unknown feed category: {category}")


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return ""


def _as_name_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [name for name in (_as_text(item) for item in value) if name]
    return []


def _as_region_text(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(region for region in (_as_text(item) for item in value) if region)
    return _as_text(value)


def _parse_deadline(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def is_expired_funding(item: FeedItem, today: date) -> bool:
    """True for funding rows whose deadline is today or earlier.

    Rows with a missing or unparseable deadline are never treated as expired.
    """
    if item.item_type != "funding_opportunity":
        return False
    deadline = _parse_deadline(item.metadata.get("deadline"))
    return deadline is not None and deadline <= today


def drop_expired_funding(items: Iterable[FeedItem], today: date) -> list[FeedItem]:
    """Display-time filter; generation keeps expired funding rows."""
    return [item for item in items if not is_expired_funding(item, today)]
