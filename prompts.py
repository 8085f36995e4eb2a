"""Prompt templates for profile analysis, feed discovery and keyword search."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from models import (
    FUNDING_OPPORTUNITIES,
    PATENTS,
    PUBLICATIONS,
    TRENDING_SCIENCE_NEWS,
    ImpactLevel,
    ResearcherIdentity,
    SearchPreferences,
    SubmittedSource,
    TimeRange,
)

DEFAULT_ITEMS_PER_CATEGORY = "3-4"
NEWS_MAX_MONTHS = 3

_NAME_PATTERNS = (
    re.compile(r"(?:Name|Called|Known as):\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"^([A-Z][a-z]+ [A-Z][a-z]+)", re.MULTILINE),
    re.compile(r"Dr\.?\s+([A-Z][a-z]+ [A-Z][a-z]+)", re.IGNORECASE),
)

_INSTITUTION_PATTERNS = (
    re.compile(r"(?:University|Institute|Research|Laboratory|Lab|College|School):\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"(University of [^,\n]+)", re.IGNORECASE),
    re.compile(r"([A-Z][a-z]+ University)", re.IGNORECASE),
    re.compile(r"(CSIRO|RMIT|MIT|Stanford|Harvard|Oxford|Cambridge)", re.IGNORECASE),
)

_COUNTRY_PATTERNS = (
    re.compile(r"(?:Country|Location|Based in|Located in):\s*([^\n]+)", re.IGNORECASE),
    re.compile(
        r"(Australia|United States|Canada|United Kingdom|Germany|France|Japan|Singapore|New Zealand)",
        re.IGNORECASE,
    ),
    re.compile(r"(Australian|American|Canadian|British|German|French|Japanese|Singaporean)", re.IGNORECASE),
)

_PROFILE_KEYWORD_PATTERN = re.compile(r"(?:research|field|area|focus|interest):\s*([^\n,]+)", re.IGNORECASE)

# (country substrings, regions) checked in order; first hit wins.
_COUNTRY_REGIONS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("australia",), ("Australia", "Asia-Pacific", "Commonwealth")),
    (("united states", "american"), ("United States", "North America", "Americas")),
    (("canada", "canadian"), ("Canada", "North America", "Commonwealth", "Americas")),
    (("united kingdom", "british"), ("United Kingdom", "Europe", "Commonwealth", "EU")),
    (("germany", "german"), ("Germany", "Europe", "EU")),
    (("singapore",), ("Singapore", "Asia-Pacific", "ASEAN")),
)

_INSTITUTION_REGIONS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (
        ("csiro", "university of melbourne", "university of sydney", "rmit", "anu", "unsw", "uq"),
        ("Australia", "Asia-Pacific", "Commonwealth"),
    ),
    (("mit", "harvard", "stanford", "caltech"), ("United States", "North America", "Americas")),
    (("oxford", "cambridge", "imperial college", "ucl"), ("United Kingdom", "Europe", "Commonwealth", "EU")),
)

_TIME_RANGE_LABELS = {
    TimeRange.PAST_MONTH: "past month",
    TimeRange.PAST_3_MONTHS: "past 3 months",
    TimeRange.PAST_6_MONTHS: "past 6 months",
    TimeRange.PAST_YEAR: "past 12 months",
}

_IMPACT_GUIDANCE = {
    ImpactLevel.ALL: "",
    ImpactLevel.HIGH: "Prioritize high-impact work: leading journals and conferences, widely cited or widely covered items.",
    ImpactLevel.BREAKTHROUGH: "Only include breakthrough or landmark items that are likely to reshape the field.",
}

_JSON_EXAMPLES: dict[str, dict[str, Any]] = {
    PUBLICATIONS: {
        "title": "Paper title",
        "authors": ["Author1", "Author2"],
        "summary": "Brief summary of the paper",
        "url": "https://journal.com/articles/direct-paper-link",
    },
    PATENTS: {
        "title": "Patent title",
        "patent_number": "US1234567",
        "inventors": ["Inventor1"],
        "summary": "Brief summary",
        "url": "https://example.com/patent",
    },
    FUNDING_OPPORTUNITIES: {
        "title": "Grant title",
        "issuing_agency": "Agency name",
        "funding_amount": "$X amount",
        "deadline": "YYYY-MM-DD",
        "eligible_regions": "Geographic eligibility",
        "summary": "Brief summary",
        "url": "https://example.com/grant",
    },
    TRENDING_SCIENCE_NEWS: {
        "title": "News title",
        "source": "Source name",
        "summary": "Brief summary",
        "url": "https://example.com/news",
    },
}

_PROFILE_SOURCE_LABELS = (
    ("linkedin", "LinkedIn Profile"),
    ("google_scholar", "Google Scholar"),
    ("company", "Company/Institution"),
    ("website", "Personal Website"),
    ("orcid", "ORCID Profile"),
    ("other", "Other Professional Profiles"),
)

_JSON_ONLY_FOOTER = (
    "Do not include any explanatory text, reasoning, or other content outside of this JSON object."
)


class PromptKind(str, Enum):
    PROFILE = "profile"
    FEED = "feed"
    KEYWORD_SEARCH = "keyword_search"


@dataclass(frozen=True, slots=True)
class PromptContext:
    """Everything a template may read. Templates ignore fields they do not use."""

    today: date
    profile_text: str = ""
    preferences: SearchPreferences = field(default_factory=SearchPreferences)
    sources: tuple[SubmittedSource, ...] = ()


def _first_group(patterns: Iterable[re.Pattern[str]], text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return ""


def extract_identity(profile_text: str) -> ResearcherIdentity:
    """Best-effort name, institution and funding regions from free text.

    Never raises: any field that cannot be found is left empty and the
    matching exclusion clause is omitted from the prompt.
    """
    name = _first_group(_NAME_PATTERNS, profile_text)
    institution = _first_group(_INSTITUTION_PATTERNS, profile_text)
    country = _first_group(_COUNTRY_PATTERNS, profile_text).lower()

    regions: list[str] = ["International"]
    for needles, extra in _COUNTRY_REGIONS:
        if country and any(needle in country for needle in needles):
            regions.extend(extra)
            break

    if institution and len(regions) == 1:
        lowered = institution.lower()
        for needles, extra in _INSTITUTION_REGIONS:
            if any(needle in lowered for needle in needles):
                regions.extend(extra)
                break

    return ResearcherIdentity(name=name, institution=institution, eligible_regions=tuple(regions))


def extract_profile_keywords(profile_text: str) -> list[str]:
    """Collect values of "research: ...", "focus: ..." style lines."""
    return [value.strip() for value in _PROFILE_KEYWORD_PATTERN.findall(profile_text) if value.strip()]


def profile_source_keywords(sources: Iterable[SubmittedSource]) -> str:
    """Keywords of the first "keywords" row, or "" when that row has none."""
    for source in sources:
        if source.profile_type == "keywords":
            return (source.keywords or "").strip()
    return ""


def _news_window(time_range: TimeRange) -> str:
    if time_range.months <= NEWS_MAX_MONTHS:
        return _TIME_RANGE_LABELS[time_range]
    return f"past {NEWS_MAX_MONTHS} months"


def _category_instructions(
    preferences: SearchPreferences,
    today: date,
    topic: str = "",
    regions: Iterable[str] = (),
) -> list[str]:
    window = _TIME_RANGE_LABELS[preferences.time_range]
    about = f' related to "{topic}"' if topic else ""
    lines: list[str] = []
    for number, category in enumerate(preferences.enabled_categories, start=1):
        if category == PUBLICATIONS:
            lines.append(
                f"{number}. PUBLICATIONS ({window}): Research papers, journal articles, and preprints{about}. "
                "Include papers from journals, arxiv, research repositories."
            )
        elif category == PATENTS:
            lines.append(
                f"{number}. PATENTS ({window}): Recently granted patents{about}. "
                "Include patents from patent databases and offices."
            )
        elif category == FUNDING_OPPORTUNITIES:
            line = (
                f"{number}. FUNDING (active with future deadlines): Grant opportunities{about} with application "
                f"deadlines AFTER {today.isoformat()}. Only include grants that researchers can still apply for."
            )
            region_list = ", ".join(regions)
            if region_list:
                line += f" Geographic eligibility: {region_list}"
            lines.append(line)
        elif category == TRENDING_SCIENCE_NEWS:
            lines.append(
                f"{number}. NEWS ({_news_window(preferences.time_range)}): Science news, research announcements, "
                f"university press releases, and articles about research developments{about}."
            )
    return lines


def _json_structure(preferences: SearchPreferences) -> str:
    structure = {category: [_JSON_EXAMPLES[category]] for category in preferences.enabled_categories}
    return json.dumps(structure, indent=2)


def _items_clause(preferences: SearchPreferences) -> str:
    count = preferences.items_per_category or DEFAULT_ITEMS_PER_CATEGORY
    return f"Return {count} items per category."


def build_feed_prompt(context: PromptContext) -> str:
    """Profile-driven discovery prompt."""
    preferences = context.preferences
    identity = extract_identity(context.profile_text)

    keywords: list[str] = []
    if preferences.keywords.strip():
        keywords.append(preferences.keywords.strip())
    keywords.extend(extract_profile_keywords(context.profile_text))
    keyword_context = f"\n\nADDITIONAL SEARCH KEYWORDS: {', '.join(keywords)}" if keywords else ""

    window = _TIME_RANGE_LABELS[preferences.time_range]
    exclusions = ""
    if identity.name:
        exclusions += f'Content by "{identity.name}". '
    if identity.institution:
        exclusions += f'Content from "{identity.institution}". '
    exclusions += f"Content older than the {window}."

    sections = [
        f"Find recent research content for this researcher. {_items_clause(preferences)}",
        f"TODAY'S DATE: {context.today.isoformat()}",
        f"RESEARCHER: {context.profile_text}{keyword_context}",
        f"EXCLUDE: {exclusions}",
    ]
    impact = _IMPACT_GUIDANCE[preferences.impact_level]
    if impact:
        sections.append(f"IMPACT: {impact}")
    sections.append(
        "FIND (recent content only):\n"
        + "\n".join(_category_instructions(preferences, context.today, regions=identity.eligible_regions))
    )
    sections.append(f"Return ONLY this JSON structure:\n{_json_structure(preferences)}")
    sections.append(_JSON_ONLY_FOOTER)
    return "\n\n".join(sections)


def build_keyword_search_prompt(context: PromptContext) -> str:
    """Keyword-only prompt; the stored profile is not consulted."""
    preferences = context.preferences
    keywords = preferences.keywords.strip()

    sections = [
        f'Find recent research content related to these keywords: "{keywords}"',
        f"TODAY'S DATE: {context.today.isoformat()}",
        "IMPORTANT: This is a pure keyword search. Do NOT consider any researcher profile or existing "
        "expertise. Focus ONLY on the provided keywords.",
        f"SEARCH FOCUS: {keywords}",
    ]
    impact = _IMPACT_GUIDANCE[preferences.impact_level]
    if impact:
        sections.append(f"IMPACT: {impact}")
    sections.append(
        "FIND recent content in these categories:\n"
        + "\n".join(_category_instructions(preferences, context.today, topic=keywords))
    )
    sections.append(f"Return ONLY this JSON structure:\n{_json_structure(preferences)}")
    sections.append(f'{_items_clause(preferences)} Focus on recent, relevant content related to "{keywords}".')
    sections.append(_JSON_ONLY_FOOTER)
    return "\n\n".join(sections)


def build_profile_prompt(context: PromptContext) -> str:
    """Researcher-profile analysis prompt built from submitted URLs and keywords."""
    known = {key for key, _ in _PROFILE_SOURCE_LABELS}
    urls_by_type: dict[str, list[str]] = {}
    for source in context.sources:
        if source.url and source.url.strip():
            # unrecognised profile types are listed with "other"
            kind = source.profile_type if source.profile_type in known else "other"
            urls_by_type.setdefault(kind, []).append(source.url.strip())
    keywords = profile_source_keywords(context.sources)

    prompt = (
        "You are a world-class professional analyst tasked with creating a detailed profile of a leading "
        "expert in their field.\n\n"
        "CRITICAL INSTRUCTIONS - URL-SPECIFIC ANALYSIS ONLY:\n\n"
        "I will provide you with specific URLs associated with this professional. Your task is to extract "
        "and analyze information ONLY from the content available at these provided URLs."
    )

    if urls_by_type:
        prompt += "\n\nURLS TO ANALYZE:\n\n"
        for key, label in _PROFILE_SOURCE_LABELS:
            urls = urls_by_type.get(key)
            if urls:
                prompt += f"{label}:\n" + "\n".join(f"- {url}" for url in urls) + "\n\n"
        prompt += (
            "MANDATORY CONSTRAINTS:\n"
            "- ONLY analyze information available at the specific URLs listed above\n"
            "- DO NOT perform general web searches using the person's name\n"
            "- DO NOT mix information from different people with similar names\n"
            "- FOCUS exclusively on the content found at the provided URLs\n"
            "- If any URL content is not accessible, clearly state that rather than searching elsewhere\n"
            "- Base your analysis ONLY on what you can extract from these specific URLs\n\n"
        )

    if keywords:
        prompt += (
            "FOCUS AREAS AND KEYWORDS:\n"
            f"The professional is particularly interested in these areas: {keywords}\n\n"
            "Use these keywords to guide what aspects of their profile to emphasize when analyzing the "
            "URL content.\n\n"
        )

    prompt += (
        "PROFILE GENERATION REQUIREMENTS:\n\n"
        "Extract and analyze information from the provided URLs to create a comprehensive technical profile "
        "that includes:\n\n"
        "1. Current Professional Focus: What specific problems, technologies, or research areas are they "
        "working on right now?\n"
        "2. Technical Expertise: Specific tools, frameworks, methodologies, programming languages, or "
        "laboratory techniques\n"
        "3. Research Interests: Detailed sub-fields, emerging areas, interdisciplinary connections\n"
        "4. Academic/Professional Background: Education, current position, career progression as found in URLs\n"
        "5. Publications & Output: Research papers, patents, projects mentioned in their profiles\n"
        "6. Industry Applications: How their work translates to real-world applications or commercial potential\n"
        "7. Professional Network: Collaborations, affiliations, or connections mentioned in their profiles\n\n"
        "Generate a comprehensive professional profile of 500-700 words. Focus heavily on their current and "
        "recent work rather than just career history. Use specific technical terminology and include details "
        "that would help identify relevant recent publications, patents, funding opportunities, and industry "
        "news in their field.\n\n"
        "Write this as a detailed research profile suitable for curating a personalized professional feed, not a "
        "general biography. Be specific about their expertise areas and current focus based on what you can "
        "extract from their URL content.\n\n"
        f"Today's date is {context.today.isoformat()}."
    )
    return prompt


PROMPT_BUILDERS: dict[PromptKind, Callable[[PromptContext], str]] = {
    PromptKind.PROFILE: build_profile_prompt,
    PromptKind.FEED: build_feed_prompt,
    PromptKind.KEYWORD_SEARCH: build_keyword_search_prompt,
}


def build_prompt(kind: PromptKind, context: PromptContext) -> str:
    return PROMPT_BUILDERS[kind](context)
