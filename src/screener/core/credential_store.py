"""SQLite-backed store of OAuth identity records, keyed by account."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from threading import RLock
from typing import Any

from .config_loader import get_section, resolve_repo_path

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/credentials.db"
DEFAULT_TOKEN_LIFETIME_SEC = 3600


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _iso(dt: datetime) -> str:
    return dt.astimezone(UTC).isoformat()


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)
    except ValueError:
        return None


def _db_path_from_config() -> Path:
    raw = get_section("google_oauth").get("credential_db_path")
    if isinstance(raw, str) and raw.strip():
        return resolve_repo_path(raw.strip())
    return resolve_repo_path(DEFAULT_DB_PATH)


@dataclass(slots=True)
class IdentityRecord:
    account_key: str
    access_token: str
    refresh_token: str
    token_expiry: datetime

    def public_view(self) -> dict[str, Any]:
        """Shape safe to return from status endpoints (no secrets)."""
        return {
            "account_key": self.account_key,
            "has_access_token": bool(self.access_token),
            "has_refresh_token": bool(self.refresh_token),
            "token_expiry": _iso(self.token_expiry),
        }


class CredentialStore:
    """Persist identity records; every mutation is serialized through one lock."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            self._db_path = _db_path_from_config()
        else:
            self._db_path = resolve_repo_path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self.ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        with self._lock, self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS identities (
                    account_key TEXT PRIMARY KEY,
                    access_token TEXT NOT NULL DEFAULT '',
                    refresh_token TEXT NOT NULL DEFAULT '',
                    token_expiry TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> IdentityRecord:
        expiry = _parse_iso(row["token_expiry"]) or datetime.fromtimestamp(0, tz=UTC)
        return IdentityRecord(
            account_key=str(row["account_key"]),
            access_token=str(row["access_token"] or ""),
            refresh_token=str(row["refresh_token"] or ""),
            token_expiry=expiry,
        )

    def get(self, account_key: str) -> IdentityRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM identities WHERE account_key = ?;",
                (account_key,),
            ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def first(self) -> IdentityRecord | None:
        """Oldest stored identity; used when no account key is configured."""
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM identities ORDER BY created_at ASC, account_key ASC LIMIT 1;"
            ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def list_identities(self) -> list[IdentityRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM identities ORDER BY created_at ASC, account_key ASC;").fetchall()
        return [self._row_to_record(row) for row in rows]

    def save(self, identity: IdentityRecord) -> None:
        """Upsert token fields for `identity.account_key` in one statement."""
        now = _iso(_utc_now())
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO identities (account_key, access_token, refresh_token, token_expiry, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_key) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    token_expiry = excluded.token_expiry,
                    updated_at = excluded.updated_at;
                """,
                (
                    identity.account_key,
                    identity.access_token,
                    identity.refresh_token,
                    _iso(identity.token_expiry),
                    now,
                    now,
                ),
            )

    def record_authorization(
        self,
        *,
        account_key: str,
        access_token: str,
        refresh_token: str | None,
        lifetime_sec: int = DEFAULT_TOKEN_LIFETIME_SEC,
    ) -> IdentityRecord:
        """Store the token pair produced by a completed login.

        A missing refresh token keeps the previously stored one, since providers
        only issue it on the first consent.
        """
        key = account_key.strip()
        if not key:
            raise ValueError("account_key must be non-empty.")
        with self._lock:
            existing = self.get(key)
            next_refresh = (refresh_token or "").strip()
            if not next_refresh and existing is not None:
                next_refresh = existing.refresh_token
            identity = IdentityRecord(
                account_key=key,
                access_token=access_token,
                refresh_token=next_refresh,
                token_expiry=_utc_now() + timedelta(seconds=max(1, int(lifetime_sec))),
            )
            self.save(identity)
        logger.info("Stored authorization for account %s", key)
        return identity

    def delete(self, account_key: str) -> bool:
        with self._lock, self._connect() as conn:
            cur = conn.execute("DELETE FROM identities WHERE account_key = ?;", (account_key,))
        return cur.rowcount > 0
