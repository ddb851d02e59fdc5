"""User-scoped profile storage (character, location, theory records)."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from narrative_qa.errors import StoreUnavailable


class ProfileStore(Protocol):
    """Get/put/list by user and key. Every call is scoped to one user."""

    def get(self, user_id: str, key: str) -> dict[str, Any] | None:
        """Return the stored profile or ``None``."""

    def put(self, user_id: str, key: str, value: dict[str, Any]) -> None:
        """Create or replace a profile."""

    def list_profiles(self, user_id: str, prefix: str = "") -> list[tuple[str, dict[str, Any]]]:
        """Return ``(key, profile)`` pairs whose key starts with ``prefix``."""


def profile_key(profile_type: str, profile_id: str) -> str:
    return f"{profile_type.upper()}#{profile_id}"


class SqliteProfileStore:
    """Local SQLite key-value persistence for profiles."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._execute(
            "CREATE TABLE IF NOT EXISTS profiles ("
            "user_id TEXT NOT NULL, key TEXT NOT NULL, value TEXT NOT NULL, "
            "PRIMARY KEY (user_id, key))"
        )

    def get(self, user_id: str, key: str) -> dict[str, Any] | None:
        rows = self._execute(
            "SELECT value FROM profiles WHERE user_id = ? AND key = ?", (user_id, key)
        )
        return json.loads(rows[0][0]) if rows else None

    def put(self, user_id: str, key: str, value: dict[str, Any]) -> None:
        self._execute(
            "INSERT INTO profiles(user_id, key, value) VALUES(?, ?, ?) "
            "ON CONFLICT(user_id, key) DO UPDATE SET value=excluded.value",
            (user_id, key, json.dumps(value, ensure_ascii=False, sort_keys=True)),
        )

    def list_profiles(self, user_id: str, prefix: str = "") -> list[tuple[str, dict[str, Any]]]:
        rows = self._execute(
            "SELECT key, value FROM profiles WHERE user_id = ? AND substr(key, 1, ?) = ? "
            "ORDER BY key",
            (user_id, len(prefix), prefix),
        )
        return [(key, json.loads(value)) for key, value in rows]

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        try:
            with sqlite3.connect(self._path) as conn:
                rows = conn.execute(sql, params).fetchall()
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Profile store error: {exc}") from exc
        return rows
