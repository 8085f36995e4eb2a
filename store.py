"""Row store for profiles and feed items.

``SupabaseFeedStore`` talks to the hosted Postgres through the service-role
key; ``InMemoryFeedStore`` backs the tests. Neither wraps the
delete -> insert -> timestamp sequence in a transaction: a failure between
the delete and the insert leaves the user with an empty current feed until
the next successful run.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from supabase import Client, create_client

from errors import AuthError, PersistenceError
from models import FeedItem, SubmittedSource

PROFILES_TABLE = "profiles"
FEED_ITEMS_TABLE = "feed_items"
SUBMITTED_URLS_TABLE = "submitted_urls"

LOGGER = logging.getLogger(__name__)


class FeedStore(Protocol):
    def resolve_user(self, token: str) -> str: ...

    def get_profile_text(self, user_id: str) -> str | None: ...

    def list_submitted_sources(self, user_id: str) -> list[SubmittedSource]: ...

    def save_profile_text(self, user_id: str, text: str, when: datetime) -> None: ...

    def delete_unsessioned_items(self, user_id: str) -> None: ...

    def bulk_insert(self, items: Sequence[FeedItem]) -> None: ...

    def update_last_generated(self, user_id: str, when: datetime) -> None: ...


class SupabaseFeedStore:
    """FeedStore backed by the supabase client."""

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_env(cls) -> SupabaseFeedStore:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url:
            raise RuntimeError("SUPABASE_URL environment variable is required")
        if not key:
            raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")
        return cls(create_client(url, key))

    def resolve_user(self, token: str) -> str:
        try:
            response = self._client.auth.get_user(token)
        except Exception as exc:  # gotrue raises its own error family
            LOGGER.warning("Token verification failed: %s", exc)
            raise AuthError("Invalid authorization") from exc
        user = getattr(response, "user", None)
        if user is None:
            raise AuthError("Invalid authorization")
        return str(user.id)

    def get_profile_text(self, user_id: str) -> str | None:
        rows = self._execute(
            self._client.table(PROFILES_TABLE).select("profile_text").eq("id", user_id).limit(1),
            action="fetch profile",
        )
        if not rows:
            return None
        return rows[0].get("profile_text")

    def list_submitted_sources(self, user_id: str) -> list[SubmittedSource]:
        rows = self._execute(
            self._client.table(SUBMITTED_URLS_TABLE).select("url, keywords, profile_type").eq("user_id", user_id),
            action="fetch submitted urls",
        )
        return [
            SubmittedSource(url=row.get("url"), keywords=row.get("keywords"), profile_type=row.get("profile_type"))
            for row in rows
        ]

    def save_profile_text(self, user_id: str, text: str, when: datetime) -> None:
        self._execute(
            self._client.table(PROFILES_TABLE)
            .update({"profile_text": text, "last_feed_generated_at": when.isoformat()})
            .eq("id", user_id),
            action="update profile",
        )

    def delete_unsessioned_items(self, user_id: str) -> None:
        self._execute(
            self._client.table(FEED_ITEMS_TABLE).delete().eq("user_id", user_id).is_("session_id", "null"),
            action="clear existing feed items",
        )

    def bulk_insert(self, items: Sequence[FeedItem]) -> None:
        if not items:
            return
        self._execute(
            self._client.table(FEED_ITEMS_TABLE).insert([item.to_row() for item in items]),
            action="insert feed items",
        )

    def update_last_generated(self, user_id: str, when: datetime) -> None:
        self._execute(
            self._client.table(PROFILES_TABLE).update({"last_feed_generated_at": when.isoformat()}).eq("id", user_id),
            action="update last feed generation timestamp",
        )

    @staticmethod
    def _execute(query: Any, action: str) -> list[dict[str, Any]]:
        try:
            response = query.execute()
        except Exception as exc:  # postgrest APIError and transport errors alike
            LOGGER.error("Supabase call failed (%s): %s", action, exc)
            raise PersistenceError(f"Failed to {action}") from exc
        return list(response.data or [])


class InMemoryFeedStore:
    """Process-local FeedStore used by the tests."""

    def __init__(
        self,
        profiles: dict[str, str] | None = None,
        sources: dict[str, list[SubmittedSource]] | None = None,
        tokens: dict[str, str] | None = None,
    ) -> None:
        self.profiles: dict[str, str] = dict(profiles or {})
        self.sources: dict[str, list[SubmittedSource]] = dict(sources or {})
        self.tokens: dict[str, str] = dict(tokens or {})
        self.items: list[FeedItem] = []
        self.last_generated: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def resolve_user(self, token: str) -> str:
        user_id = self.tokens.get(token)
        if user_id is None:
            raise AuthError("Invalid authorization")
        return user_id

    def get_profile_text(self, user_id: str) -> str | None:
        return self.profiles.get(user_id)

    def list_submitted_sources(self, user_id: str) -> list[SubmittedSource]:
        return list(self.sources.get(user_id, []))

    def save_profile_text(self, user_id: str, text: str, when: datetime) -> None:
        with self._lock:
            self.profiles[user_id] = text
            self.last_generated[user_id] = when

    def delete_unsessioned_items(self, user_id: str) -> None:
        with self._lock:
            self.items = [
                item for item in self.items if not (item.user_id == user_id and item.session_id is None)
            ]

    def bulk_insert(self, items: Sequence[FeedItem]) -> None:
        with self._lock:
            self.items.extend(items)

    def update_last_generated(self, user_id: str, when: datetime) -> None:
        with self._lock:
            self.last_generated[user_id] = when

    def items_for(self, user_id: str) -> list[FeedItem]:
        return [item for item in self.items if item.user_id == user_id]
