import json
from unittest.mock import MagicMock

import pytest

from inflight import InFlightRegistry
from models import FeedItem, SubmittedSource
from server import create_app
from store import InMemoryFeedStore

_AUTH = {"Authorization": "Bearer good-token"}
_PROFILE = "Name: Jane Smith\nUniversity: University of Melbourne\nResearch: protein folding"
_MODEL_ANSWER = json.dumps(
    {
        "publications": [{"title": "Paper A", "authors": ["A"], "summary": "S", "url": "https://a"}],
        "patents": [],
        "funding_opportunities": [],
        "trending_science_news": [],
    }
)


@pytest.fixture
def store() -> InMemoryFeedStore:
    return InMemoryFeedStore(
        profiles={"user-1": _PROFILE},
        sources={"user-1": [SubmittedSource(url="https://orcid.org/1", keywords=None, profile_type="orcid")]},
        tokens={"good-token": "user-1"},
    )


@pytest.fixture
def search() -> MagicMock:
    return MagicMock(return_value=_MODEL_ANSWER)


@pytest.fixture
def registry() -> InFlightRegistry:
    return InFlightRegistry()


@pytest.fixture
def client(store, search, registry):
    app = create_app(store=store, search=search, registry=registry)
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_preflight_returns_cors_headers(client) -> None:
    response = client.options("/generate-feed")

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "authorization" in response.headers["Access-Control-Allow-Headers"]


# ---------------------------------------------------------------------------
# /generate-feed
# ---------------------------------------------------------------------------

def test_generate_feed(client, store) -> None:
    response = client.post(
        "/generate-feed",
        json={"preferences": {"categories": {"patents": False}, "timeRange": "past_month"}},
        headers=_AUTH,
    )

    body = response.get_json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["itemsGenerated"] == 1
    assert body["preferences"]["enabledCategories"] == [
        "publications",
        "funding_opportunities",
        "trending_science_news",
    ]
    assert [item.title for item in store.items_for("user-1")] == ["Paper A"]
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_generate_feed_without_token(client, search) -> None:
    response = client.post("/generate-feed", json={})

    assert response.status_code == 401
    assert response.get_json() == {"error": "No authorization header", "type": "AuthError"}
    search.assert_not_called()


def test_generate_feed_with_unknown_token(client) -> None:
    response = client.post("/generate-feed", json={}, headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


def test_generate_feed_rejects_bad_preferences(client) -> None:
    response = client.post("/generate-feed", json={"preferences": {"timeRange": "forever"}}, headers=_AUTH)

    assert response.status_code == 400
    assert response.get_json()["type"] == "InvalidRequestError"


def test_generate_feed_bad_preferences_without_token_is_401(client) -> None:
    response = client.post("/generate-feed", json={"preferences": {"timeRange": "forever"}})

    assert response.status_code == 401


@pytest.mark.parametrize("session_id", [{"bad": 1}, [1], True, "abc", 1.5])
def test_generate_feed_rejects_bad_session_id_before_touching_feed(client, store, search, session_id) -> None:
    existing = FeedItem(
        user_id="user-1",
        item_type="publication",
        title="yesterday",
        summary=None,
        url=None,
        metadata={"authors": []},
    )
    store.bulk_insert([existing])

    response = client.post("/generate-feed", json={"sessionId": session_id}, headers=_AUTH)

    assert response.status_code == 400
    assert response.get_json()["error"] == "sessionId must be an integer"
    assert [item.title for item in store.items_for("user-1")] == ["yesterday"]
    search.assert_not_called()


@pytest.mark.parametrize(("session_id", "expected"), [(42, 42), ("42", 42), (None, None)])
def test_generate_feed_accepts_integer_session_id(client, store, session_id, expected) -> None:
    response = client.post("/generate-feed", json={"sessionId": session_id}, headers=_AUTH)

    assert response.status_code == 200
    assert {item.session_id for item in store.items_for("user-1")} == {expected}


def test_generate_feed_prose_answer_is_a_400_with_excerpt(client, search, store) -> None:
    search.return_value = "Sorry, I found nothing."

    response = client.post("/generate-feed", json={}, headers=_AUTH)

    body = response.get_json()
    assert response.status_code == 400
    assert body["type"] == "MalformedResponseError"
    assert "Sorry, I found nothing." in body["error"]
    assert store.items_for("user-1") == []


def test_generate_feed_while_already_running(client, registry, search) -> None:
    with registry.claim("user-1", "generate-feed"):
        response = client.post("/generate-feed", json={}, headers=_AUTH)

    assert response.status_code == 409
    search.assert_not_called()


def test_unexpected_error_is_a_500_with_details(client, search) -> None:
    search.side_effect = KeyError("boom")

    response = client.post("/generate-feed", json={}, headers=_AUTH)

    body = response.get_json()
    assert response.status_code == 500
    assert "KeyError" in body["details"]


def test_unknown_route_stays_404(client) -> None:
    assert client.get("/nope").status_code == 404


# ---------------------------------------------------------------------------
# /keyword-search
# ---------------------------------------------------------------------------

def test_keyword_search(client, search, store) -> None:
    response = client.post(
        "/keyword-search",
        json={"keywords": "protein folding", "categories": {"patents": False}, "searchType": "keyword-only"},
        headers=_AUTH,
    )

    body = response.get_json()
    assert response.status_code == 200
    assert body["keywords"] == "protein folding"
    assert "patents" not in body["data"]
    assert body["data"]["publications"][0]["title"] == "Paper A"
    assert "Jane Smith" not in search.call_args.args[0]
    assert store.items_for("user-1") == []


def test_keyword_search_requires_keywords_before_auth(client) -> None:
    response = client.post("/keyword-search", json={"keywords": "  "})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Keywords are required for search"


def test_keyword_search_with_malformed_json_body(client) -> None:
    response = client.post(
        "/keyword-search", data="{not json", content_type="application/json", headers=_AUTH
    )

    assert response.status_code == 400


def test_keyword_search_rejects_unknown_search_type(client) -> None:
    response = client.post("/keyword-search", json={"keywords": "x", "searchType": "profile"}, headers=_AUTH)

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# /generate-profile and /cancel
# ---------------------------------------------------------------------------

def test_generate_profile(client, search, store) -> None:
    search.return_value = "<think>reading</think>Jane Smith works on protein folding."

    response = client.post("/generate-profile", headers=_AUTH)

    assert response.status_code == 200
    assert response.get_json()["profileText"] == "Jane Smith works on protein folding."
    assert store.get_profile_text("user-1") == "Jane Smith works on protein folding."


def test_cancel_running_request(client, registry) -> None:
    with registry.claim("user-1", "generate-feed") as cancel_event:
        response = client.post("/cancel", json={"action": "generate-feed"}, headers=_AUTH)
        assert cancel_event.is_set()

    assert response.get_json() == {"success": True, "cancelled": True}


def test_cancel_with_nothing_running(client) -> None:
    response = client.post("/cancel", json={"action": "keyword-search"}, headers=_AUTH)

    assert response.get_json() == {"success": True, "cancelled": False}


def test_cancel_rejects_unknown_action(client) -> None:
    response = client.post("/cancel", json={"action": "everything"}, headers=_AUTH)

    assert response.status_code == 400
