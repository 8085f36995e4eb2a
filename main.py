"""CLI entrypoint for the research feed pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import os

from dotenv import load_dotenv

from models import CATEGORIES, ImpactLevel, SearchPreferences, TimeRange, today_utc
from pipeline import generate_feed, generate_profile, keyword_search
from prompts import PromptContext, PromptKind, build_prompt
from store import SupabaseFeedStore


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Generate researcher feeds with Perplexity")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.getenv("FEED_SERVER_PORT", "8000")))

    feed = subparsers.add_parser("feed", help="Regenerate one user's current feed")
    feed.add_argument("--user-id", required=True)
    feed.add_argument("--session-id", default=None)
    _add_preference_flags(feed)
    feed.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the prompt that would be sent, without API calls or database writes",
    )

    profile = subparsers.add_parser("profile", help="Rebuild one user's profile text from submitted URLs")
    profile.add_argument("--user-id", required=True)

    search = subparsers.add_parser("search", help="Keyword-only search; prints results, stores nothing")
    search.add_argument("keywords")
    _add_preference_flags(search)

    return parser.parse_args(argv)


def _add_preference_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--keywords", dest="extra_keywords", default="", help="Extra keywords to bias the search")
    parser.add_argument(
        "--categories",
        default=",".join(CATEGORIES),
        help=f"Comma-separated subset of: {', '.join(CATEGORIES)}",
    )
    parser.add_argument("--items-per-category", type=int, default=None)
    parser.add_argument("--time-range", choices=[t.value for t in TimeRange], default=TimeRange.PAST_6_MONTHS.value)
    parser.add_argument("--impact-level", choices=[i.value for i in ImpactLevel], default=ImpactLevel.ALL.value)


def preferences_from_args(args: argparse.Namespace, keywords: str | None = None) -> SearchPreferences:
    selected = {name.strip() for name in args.categories.split(",") if name.strip()}
    unknown = selected - set(CATEGORIES)
    if unknown:
        raise SystemExit(f"Unknown categories: {', '.join(sorted(unknown))}")
    return SearchPreferences(
        keywords=keywords if keywords is not None else args.extra_keywords,
        categories={cat: cat in selected for cat in CATEGORIES},
        items_per_category=args.items_per_category,
        time_range=TimeRange(args.time_range),
        impact_level=ImpactLevel(args.impact_level),
    )


def run_feed(args: argparse.Namespace) -> None:
    """Regenerate one user's feed, or print its prompt with --dry-run."""
    preferences = preferences_from_args(args)
    store = SupabaseFeedStore.from_env()

    if args.dry_run:
        profile_text = store.get_profile_text(args.user_id) or ""
        prompt = build_prompt(
            PromptKind.FEED,
            PromptContext(today=today_utc(), profile_text=profile_text, preferences=preferences),
        )
        logging.info("[dry-run] Would send %s-char prompt for user_id=%s", len(prompt), args.user_id)
        print(prompt)
        return

    result = generate_feed(store, args.user_id, preferences, session_id=args.session_id)
    print(json.dumps(result.to_response(), indent=2))


def run_profile(args: argparse.Namespace) -> None:
    result = generate_profile(SupabaseFeedStore.from_env(), args.user_id)
    print(result["profileText"])


def run_search(args: argparse.Namespace) -> None:
    keywords = " ".join(part for part in (args.keywords, args.extra_keywords) if part)
    preferences = preferences_from_args(args, keywords=keywords)
    result = keyword_search(keywords, preferences)
    for category, entries in result["data"].items():
        print(f"\n== {category} ({len(entries)})")
        for entry in entries:
            print(f"- {entry['title']}")
            if entry["url"]:
                print(f"  {entry['url']}")
    for warning in result["warnings"]:
        logging.warning("Search warning: %s", warning)


def main(argv: list[str] | None = None) -> None:
    """Initialize config and dispatch the chosen command."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    if args.command == "serve":
        from server import create_app  # noqa: PLC0415

        create_app().run(host=args.host, port=args.port)
    elif args.command == "feed":
        run_feed(args)
    elif args.command == "profile":
        run_profile(args)
    elif args.command == "search":
        run_search(args)


if __name__ == "__main__":
    main()
