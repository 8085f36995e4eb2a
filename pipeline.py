"""Discovery pipeline shared by feed generation, keyword search and profiles.

prompt -> Perplexity -> JSON extraction -> category normalization -> store.
Every stage runs once, in order, and any failure aborts the run before
the store is touched.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from errors import InvalidRequestError, MalformedResponseError, PipelineCancelledError, ProfileMissingError
from extractor import parse_feed_json, strip_reasoning
from models import (
    CATEGORIES,
    FeedPayload,
    ImpactLevel,
    ResearcherIdentity,
    SearchPreferences,
    TimeRange,
    feed_items_from_payload,
    today_utc,
)
from normalizer import normalize_feed
from perplexity_client import search_perplexity
from prompts import PromptContext, PromptKind, build_prompt, extract_identity, profile_source_keywords
from store import FeedStore

SearchFn = Callable[[str], str]

# Phrases suggesting the model searched the person's name instead of reading the URLs.
_GENERIC_SEARCH_INDICATORS = (
    "multiple individuals named",
    "different people with the same name",
    "another person named",
    "various professionals named",
    "several people named",
    "different individuals with this name",
)

_URL_DOMAIN_HINTS = (
    ("linkedin.com", "linkedin"),
    ("scholar.google", "scholar"),
    ("orcid.org", "orcid"),
    ("github.com", "github"),
)

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def preferences_from_request(raw: Any, keywords: str | None = None) -> SearchPreferences:
    """Parse the camelCase preferences object of a request body.

    Missing category flags default to enabled. ``keywords`` overrides the
    preferences' own keywords when given (keyword-search requests carry
    them at the top level).
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidRequestError("preferences must be an object")

    raw_categories = raw.get("categories") or {}
    if not isinstance(raw_categories, dict):
        raise InvalidRequestError("preferences.categories must be an object")
    categories: dict[str, bool] = {}
    for cat in CATEGORIES:
        flag = raw_categories.get(cat, True)
        if not isinstance(flag, bool):
            raise InvalidRequestError(f"preferences.categories.{cat} must be a boolean")
        categories[cat] = flag

    items_per_category = raw.get("itemsPerCategory")
    if items_per_category is not None:
        if isinstance(items_per_category, bool) or not isinstance(items_per_category, int) or items_per_category < 1:
            raise InvalidRequestError("itemsPerCategory must be a positive integer")

    try:
        time_range = TimeRange(raw.get("timeRange") or TimeRange.PAST_6_MONTHS.value)
        impact_level = ImpactLevel(raw.get("impactLevel") or ImpactLevel.ALL.value)
    except ValueError as exc:
        raise InvalidRequestError(str(exc)) from exc

    raw_keywords = keywords if keywords is not None else raw.get("keywords") or ""
    if not isinstance(raw_keywords, str):
        raise InvalidRequestError("keywords must be a string")

    return SearchPreferences(
        keywords=raw_keywords,
        categories=categories,
        items_per_category=items_per_category,
        time_range=time_range,
        impact_level=impact_level,
    )


@dataclass(frozen=True, slots=True)
class DiscoveryRequest:
    kind: PromptKind
    preferences: SearchPreferences = field(default_factory=SearchPreferences)
    profile_text: str = ""
    today: date | None = None


def _check_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        LOGGER.info("Pipeline cancelled before %s", stage)
        raise PipelineCancelledError(f"Request cancelled before {stage}")


def discover(
    request: DiscoveryRequest,
    search: SearchFn = search_perplexity,
    cancel_event: threading.Event | None = None,
) -> FeedPayload:
    """Run prompt -> search -> extract -> normalize and return the payload."""
    if request.kind is PromptKind.PROFILE:
        raise ValueError("discover() produces feeds; use generate_profile() for profiles")

    context = PromptContext(
        today=request.today or today_utc(),
        profile_text=request.profile_text,
        preferences=request.preferences,
    )
    prompt = build_prompt(request.kind, context)
    LOGGER.info(
        "Discovery kind=%s categories=%s prompt_chars=%s",
        request.kind.value,
        ",".join(request.preferences.enabled_categories),
        len(prompt),
    )

    _check_cancelled(cancel_event, "search")
    raw = search(prompt)
    LOGGER.debug("Raw model response (first 500 chars): %s", raw[:500])

    _check_cancelled(cancel_event, "extraction")
    parsed = parse_feed_json(raw)
    payload = normalize_feed(parsed, request.preferences.enabled_categories)
    LOGGER.info("Discovery produced %s items %s", payload.total(), payload.counts())
    return payload


@dataclass(slots=True)
class FeedResult:
    payload: FeedPayload
    items_generated: int
    identity: ResearcherIdentity
    preferences: SearchPreferences

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "itemsGenerated": self.items_generated,
            "categories": self.payload.counts(),
            "warnings": list(self.payload.warnings),
            "discoveryMetrics": {
                "researcherName": self.identity.name or "Unknown",
                "institution": self.identity.institution or "Unknown",
                "eligibleRegions": list(self.identity.eligible_regions),
                "exclusionFiltersApplied": self.identity.has_exclusions,
                "geographicFilteringApplied": len(self.identity.eligible_regions) > 1,
            },
            "preferences": {
                "keywordsUsed": self.preferences.keywords,
                "enabledCategories": list(self.preferences.enabled_categories),
                "timeRange": self.preferences.time_range.value,
                "impactLevel": self.preferences.impact_level.value,
            },
        }


def generate_feed(
    store: FeedStore,
    user_id: str,
    preferences: SearchPreferences | None = None,
    session_id: str | int | None = None,
    *,
    search: SearchFn = search_perplexity,
    now: Callable[[], datetime] = _utcnow,
    cancel_event: threading.Event | None = None,
) -> FeedResult:
    """Regenerate a user's current feed from their stored profile.

    Replace-on-refresh: the user's unsessioned items are deleted right
    before the new rows are inserted. Rows tagged with a session id are
    never deleted here.
    """
    preferences = preferences or SearchPreferences()
    profile_text = store.get_profile_text(user_id)
    if not profile_text or not profile_text.strip():
        raise ProfileMissingError("User profile not found. Please complete profile generation first.")

    started = now()
    payload = discover(
        DiscoveryRequest(
            kind=PromptKind.FEED,
            preferences=preferences,
            profile_text=profile_text,
            today=started.date(),
        ),
        search=search,
        cancel_event=cancel_event,
    )
    items = feed_items_from_payload(payload, user_id=user_id, session_id=session_id)

    _check_cancelled(cancel_event, "persistence")
    store.delete_unsessioned_items(user_id)
    store.bulk_insert(items)
    store.update_last_generated(user_id, now())
    LOGGER.info("Stored %s feed items for user_id=%s session_id=%s", len(items), user_id, session_id)

    return FeedResult(
        payload=payload,
        items_generated=len(items),
        identity=extract_identity(profile_text),
        preferences=preferences,
    )


def keyword_search(
    keywords: str,
    preferences: SearchPreferences | None = None,
    *,
    search: SearchFn = search_perplexity,
    today: date | None = None,
    cancel_event: threading.Event | None = None,
) -> dict[str, Any]:
    """Profile-free search; results are returned, not stored."""
    if not keywords or not keywords.strip():
        raise InvalidRequestError("Keywords are required for search")
    keywords = keywords.strip()
    base = preferences or SearchPreferences()
    preferences = SearchPreferences(
        keywords=keywords,
        categories=base.categories,
        items_per_category=base.items_per_category,
        time_range=base.time_range,
        impact_level=base.impact_level,
    )
    today = today or today_utc()

    payload = discover(
        DiscoveryRequest(kind=PromptKind.KEYWORD_SEARCH, preferences=preferences, today=today),
        search=search,
        cancel_event=cancel_event,
    )
    return {
        "success": True,
        "keywords": keywords,
        "resultsGenerated": payload.total(),
        "categories": payload.counts(),
        "data": payload.to_dict(),
        "warnings": list(payload.warnings),
        "searchMetrics": {
            "searchType": "keyword-only",
            "keywordsUsed": keywords,
            "profileBiasApplied": False,
            "searchDate": today.isoformat(),
        },
    }


def looks_like_generic_search(profile_text: str, urls: list[str]) -> bool:
    """True when the text reads like a name search and cites none of the given sites."""
    lowered = profile_text.lower()
    generic = any(indicator in lowered for indicator in _GENERIC_SEARCH_INDICATORS)
    if not generic:
        return False
    for url in urls:
        for needle, label in _URL_DOMAIN_HINTS:
            if needle in url and label in lowered:
                return False
    return True


def generate_profile(
    store: FeedStore,
    user_id: str,
    *,
    search: SearchFn = search_perplexity,
    now: Callable[[], datetime] = _utcnow,
    cancel_event: threading.Event | None = None,
) -> dict[str, Any]:
    """Build and store the researcher profile text from submitted URLs/keywords."""
    sources = store.list_submitted_sources(user_id)
    if not sources:
        raise ProfileMissingError("No profile data found for user")

    urls = [source.url.strip() for source in sources if source.url and source.url.strip()]
    has_keywords = bool(profile_source_keywords(sources))
    if not urls and not has_keywords:
        raise ProfileMissingError("No URLs or keywords found for profile generation")

    started = now()
    prompt = build_prompt(PromptKind.PROFILE, PromptContext(today=started.date(), sources=tuple(sources)))
    LOGGER.info("Profile generation user_id=%s urls=%s keywords=%s", user_id, len(urls), has_keywords)

    _check_cancelled(cancel_event, "search")
    raw = search(prompt)
    profile_text = strip_reasoning(raw)
    if not profile_text:
        raise MalformedResponseError("Model returned no profile text after its reasoning block", raw=raw)

    if looks_like_generic_search(profile_text, urls):
        LOGGER.warning(
            "Profile for user_id=%s may come from a general name search rather than the submitted URLs",
            user_id,
        )

    _check_cancelled(cancel_event, "persistence")
    store.save_profile_text(user_id, profile_text, now())
    LOGGER.info("Stored profile for user_id=%s (%s chars)", user_id, len(profile_text))
    return {"success": True, "profileText": profile_text}
