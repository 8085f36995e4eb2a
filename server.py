"""HTTP endpoints for profile generation, feed generation and keyword search."""

from __future__ import annotations

import logging
import traceback
from typing import Any

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from errors import AuthError, FeedPipelineError, InvalidRequestError
from inflight import InFlightRegistry
from perplexity_client import search_perplexity
from pipeline import SearchFn, generate_feed, generate_profile, keyword_search, preferences_from_request
from store import FeedStore, SupabaseFeedStore

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

ACTIONS = ("generate-feed", "generate-profile", "keyword-search")

LOGGER = logging.getLogger(__name__)


def _bearer_token() -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise AuthError("No authorization header")
    token = header.removeprefix("Bearer ").strip()
    if not token:
        raise AuthError("Invalid authorization")
    return token


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


def _session_id(body: dict[str, Any]) -> int | None:
    raw = body.get("sessionId")
    if raw is None:
        return None
    if isinstance(raw, str) and raw.strip().isdecimal():
        return int(raw.strip())
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidRequestError("sessionId must be an integer")
    return raw


def create_app(
    store: FeedStore | None = None,
    search: SearchFn | None = None,
    registry: InFlightRegistry | None = None,
) -> Flask:
    """Build the Flask app. Dependencies default to Supabase and Perplexity."""
    app = Flask(__name__)
    registry = registry or InFlightRegistry()
    app.config["FEED_REGISTRY"] = registry
    state: dict[str, FeedStore] = {}

    def get_store() -> FeedStore:
        # built on first use; /health answers without credentials
        if "store" not in state:
            state["store"] = store or SupabaseFeedStore.from_env()
        return state["store"]

    def run_search(prompt: str) -> str:
        return (search or search_perplexity)(prompt)

    @app.after_request
    def add_cors_headers(response: Response) -> Response:
        response.headers.update(CORS_HEADERS)
        return response

    @app.errorhandler(FeedPipelineError)
    def handle_pipeline_error(exc: FeedPipelineError) -> tuple[Response, int]:
        LOGGER.warning("%s: %s", type(exc).__name__, exc)
        return jsonify({"error": str(exc), "type": type(exc).__name__}), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> tuple[Response, int] | HTTPException:
        if isinstance(exc, HTTPException):
            return exc
        LOGGER.exception("Unhandled error: %s", exc)
        details = "".join(traceback.format_exception(exc))
        return jsonify({"error": str(exc), "details": details}), 500

    @app.route("/health", methods=["GET"])
    def health() -> Response:
        return jsonify({"status": "ok"})

    @app.route("/generate-feed", methods=["POST", "OPTIONS"])
    def generate_feed_route() -> Response:
        if request.method == "OPTIONS":
            return Response("ok")
        feed_store = get_store()
        user_id = feed_store.resolve_user(_bearer_token())
        body = _json_body()
        preferences = preferences_from_request(body.get("preferences"))
        session_id = _session_id(body)
        with registry.claim(user_id, "generate-feed") as cancel_event:
            result = generate_feed(
                feed_store,
                user_id,
                preferences,
                session_id=session_id,
                search=run_search,
                cancel_event=cancel_event,
            )
        return jsonify(result.to_response())

    @app.route("/generate-profile", methods=["POST", "OPTIONS"])
    def generate_profile_route() -> Response:
        if request.method == "OPTIONS":
            return Response("ok")
        feed_store = get_store()
        user_id = feed_store.resolve_user(_bearer_token())
        with registry.claim(user_id, "generate-profile") as cancel_event:
            result = generate_profile(feed_store, user_id, search=run_search, cancel_event=cancel_event)
        return jsonify(result)

    @app.route("/keyword-search", methods=["POST", "OPTIONS"])
    def keyword_search_route() -> Response:
        if request.method == "OPTIONS":
            return Response("ok")
        body = _json_body()
        keywords = body.get("keywords") or ""
        if not isinstance(keywords, str):
            raise InvalidRequestError("keywords must be a string")
        if not keywords.strip():
            raise InvalidRequestError("Keywords are required for search")
        raw_preferences = body.get("preferences") or {}
        if isinstance(raw_preferences, dict) and body.get("categories") is not None:
            raw_preferences = {**raw_preferences, "categories": body["categories"]}
        preferences = preferences_from_request(raw_preferences, keywords=keywords)
        if body.get("searchType") not in (None, "keyword", "keyword-only"):
            raise InvalidRequestError(f"Unsupported searchType: {body['searchType']}")

        feed_store = get_store()
        user_id = feed_store.resolve_user(_bearer_token())
        with registry.claim(user_id, "keyword-search") as cancel_event:
            result = keyword_search(keywords, preferences, search=run_search, cancel_event=cancel_event)
        return jsonify(result)

    @app.route("/cancel", methods=["POST", "OPTIONS"])
    def cancel_route() -> Response:
        if request.method == "OPTIONS":
            return Response("ok")
        body = _json_body()
        action = body.get("action")
        if action not in ACTIONS:
            raise InvalidRequestError(f"action must be one of {', '.join(ACTIONS)}")
        user_id = get_store().resolve_user(_bearer_token())
        return jsonify({"success": True, "cancelled": registry.cancel(user_id, action)})

    return app
