from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from errors import AuthError, PersistenceError
from models import FeedItem, SubmittedSource
from store import InMemoryFeedStore, SupabaseFeedStore

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _item(user_id: str = "user-1", title: str = "T", session_id: int | None = None) -> FeedItem:
    return FeedItem(
        user_id=user_id,
        item_type="publication",
        title=title,
        summary=None,
        url=None,
        metadata={"authors": []},
        session_id=session_id,
    )


# ---------------------------------------------------------------------------
# SupabaseFeedStore
# ---------------------------------------------------------------------------

def test_from_env_requires_url_and_key() -> None:
    with patch.dict("os.environ", {"SUPABASE_SERVICE_ROLE_KEY": "k"}, clear=True):
        with pytest.raises(RuntimeError, match="SUPABASE_URL"):
            SupabaseFeedStore.from_env()

    with patch.dict("os.environ", {"SUPABASE_URL": "https://db.example"}, clear=True):
        with pytest.raises(RuntimeError, match="SUPABASE_SERVICE_ROLE_KEY"):
            SupabaseFeedStore.from_env()


def test_from_env_builds_client() -> None:
    env = {"SUPABASE_URL": "https://db.example", "SUPABASE_SERVICE_ROLE_KEY": "service-key"}
    with patch.dict("os.environ", env, clear=True), patch("store.create_client") as mock_create:
        SupabaseFeedStore.from_env()

    mock_create.assert_called_once_with("https://db.example", "service-key")


def test_resolve_user_returns_user_id() -> None:
    client = MagicMock()
    client.auth.get_user.return_value.user.id = "user-1"

    assert SupabaseFeedStore(client).resolve_user("token") == "user-1"
    client.auth.get_user.assert_called_once_with("token")


def test_resolve_user_rejects_unknown_token() -> None:
    client = MagicMock()
    client.auth.get_user.return_value.user = None

    with pytest.raises(AuthError):
        SupabaseFeedStore(client).resolve_user("token")


def test_resolve_user_wraps_client_errors() -> None:
    client = MagicMock()
    client.auth.get_user.side_effect = Exception("jwt expired")

    with pytest.raises(AuthError, match="Invalid authorization"):
        SupabaseFeedStore(client).resolve_user("token")


def test_get_profile_text() -> None:
    client = MagicMock()
    query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    query.execute.return_value.data = [{"profile_text": "Dr Jane Smith"}]

    assert SupabaseFeedStore(client).get_profile_text("user-1") == "Dr Jane Smith"
    client.table.assert_called_with("profiles")
    client.table.return_value.select.return_value.eq.assert_called_with("id", "user-1")


def test_get_profile_text_missing_row() -> None:
    client = MagicMock()
    query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    query.execute.return_value.data = []

    assert SupabaseFeedStore(client).get_profile_text("user-1") is None


def test_list_submitted_sources() -> None:
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = [
        {"url": "https://orcid.org/1", "keywords": None, "profile_type": "orcid"},
        {"url": None, "keywords": "cryo-EM", "profile_type": "keywords"},
    ]

    sources = SupabaseFeedStore(client).list_submitted_sources("user-1")

    assert sources == [
        SubmittedSource(url="https://orcid.org/1", keywords=None, profile_type="orcid"),
        SubmittedSource(url=None, keywords="cryo-EM", profile_type="keywords"),
    ]
    client.table.assert_called_with("submitted_urls")


def test_delete_only_targets_unsessioned_rows() -> None:
    client = MagicMock()

    SupabaseFeedStore(client).delete_unsessioned_items("user-1")

    delete = client.table.return_value.delete.return_value
    delete.eq.assert_called_once_with("user_id", "user-1")
    delete.eq.return_value.is_.assert_called_once_with("session_id", "null")
    delete.eq.return_value.is_.return_value.execute.assert_called_once()


def test_bulk_insert_sends_rows_in_one_call() -> None:
    client = MagicMock()

    SupabaseFeedStore(client).bulk_insert([_item(title="A"), _item(title="B")])

    client.table.assert_called_once_with("feed_items")
    (rows,), _ = client.table.return_value.insert.call_args
    assert [row["title"] for row in rows] == ["A", "B"]
    assert rows[0]["item_type"] == "publication"


def test_bulk_insert_skips_empty_batch() -> None:
    client = MagicMock()

    SupabaseFeedStore(client).bulk_insert([])

    client.table.assert_not_called()


def test_update_last_generated_writes_iso_timestamp() -> None:
    client = MagicMock()

    SupabaseFeedStore(client).update_last_generated("user-1", _NOW)

    client.table.return_value.update.assert_called_once_with(
        {"last_feed_generated_at": "2026-10-19T12:00:00+00:00"}
    )
    client.table.return_value.update.return_value.eq.assert_called_once_with("id", "user-1")


def test_query_failure_becomes_persistence_error() -> None:
    client = MagicMock()
    client.table.return_value.delete.return_value.eq.return_value.is_.return_value.execute.side_effect = (
        RuntimeError("connection refused")
    )

    with pytest.raises(PersistenceError, match="Failed to clear existing feed items"):
        SupabaseFeedStore(client).delete_unsessioned_items("user-1")


# ---------------------------------------------------------------------------
# InMemoryFeedStore
# ---------------------------------------------------------------------------

def test_in_memory_delete_keeps_sessioned_and_other_users_items() -> None:
    store = InMemoryFeedStore()
    store.bulk_insert([
        _item(title="current"),
        _item(title="saved", session_id=7),
        _item(user_id="user-2", title="someone else"),
    ])

    store.delete_unsessioned_items("user-1")

    assert [item.title for item in store.items] == ["saved", "someone else"]


def test_in_memory_resolve_user() -> None:
    store = InMemoryFeedStore(tokens={"good": "user-1"})

    assert store.resolve_user("good") == "user-1"
    with pytest.raises(AuthError):
        store.resolve_user("bad")


def test_in_memory_save_profile_text() -> None:
    store = InMemoryFeedStore()

    store.save_profile_text("user-1", "profile", _NOW)

    assert store.get_profile_text("user-1") == "profile"
    assert store.last_generated["user-1"] == _NOW
