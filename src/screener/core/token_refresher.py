"""Google OAuth token lifecycle: validity predicate, refresh exchange, sweep."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from http.client import HTTPException
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .config_loader import get_section
from .credential_store import DEFAULT_TOKEN_LIFETIME_SEC, CredentialStore, IdentityRecord
from .errors import AuthFailure

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_TIMEOUT_SEC = 15


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class OAuthSettings:
    client_id: str | None = None
    client_secret: str | None = None
    token_uri: str = DEFAULT_TOKEN_URI
    scopes: list[str] = field(default_factory=list)
    timeout_sec: int = DEFAULT_TIMEOUT_SEC
    token_lifetime_sec: int = DEFAULT_TOKEN_LIFETIME_SEC

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.client_id:
            missing.append("google_oauth.client_id")
        if not self.client_secret:
            missing.append("google_oauth.client_secret")
        if not self.token_uri:
            missing.append("google_oauth.token_uri")
        return missing


def load_oauth_settings() -> OAuthSettings:
    config = get_section("google_oauth")
    client_id = config.get("client_id")
    client_secret = config.get("client_secret")
    token_uri = config.get("token_uri")
    scopes = config.get("scopes")
    timeout = config.get("timeout_sec", DEFAULT_TIMEOUT_SEC)
    lifetime = config.get("token_lifetime_sec", DEFAULT_TOKEN_LIFETIME_SEC)
    return OAuthSettings(
        client_id=client_id if isinstance(client_id, str) and client_id else None,
        client_secret=client_secret if isinstance(client_secret, str) and client_secret else None,
        token_uri=token_uri if isinstance(token_uri, str) and token_uri.strip() else DEFAULT_TOKEN_URI,
        scopes=[scope for scope in scopes if isinstance(scope, str) and scope.strip()] if isinstance(scopes, list) else [],
        timeout_sec=int(timeout) if isinstance(timeout, int) and timeout > 0 else DEFAULT_TIMEOUT_SEC,
        token_lifetime_sec=int(lifetime) if isinstance(lifetime, int) and lifetime > 0 else DEFAULT_TOKEN_LIFETIME_SEC,
    )


def is_token_valid(identity: IdentityRecord, *, now: datetime | None = None) -> bool:
    """True when the identity holds an access token that has not yet expired."""
    if not identity.access_token:
        return False
    current = now or _utc_now()
    return current < identity.token_expiry


def _safe_provider_error(http_exc: HTTPError) -> tuple[str, str]:
    error_code = "google_oauth_http_error"
    message = f"OAuth token request failed with HTTP {http_exc.code}."

    try:
        body = http_exc.read().decode("utf-8")
        payload = json.loads(body)
        if isinstance(payload, dict):
            raw_code = payload.get("error")
            if isinstance(raw_code, str) and raw_code:
                error_code = raw_code
            raw_desc = payload.get("error_description")
            if isinstance(raw_desc, str) and raw_desc:
                message = raw_desc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        pass

    if "invalid_grant" in error_code.lower():
        message = "Refresh token is invalid or expired. Re-authentication is required."

    return message, error_code


def exchange_refresh_token(settings: OAuthSettings, refresh_token: str) -> dict[str, Any]:
    """POST a refresh grant to the token endpoint; never raises."""
    form = {
        "client_id": settings.client_id or "",
        "client_secret": settings.client_secret or "",
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    if settings.scopes:
        form["scope"] = " ".join(settings.scopes)

    request = Request(
        settings.token_uri,
        data=urlencode(form).encode("utf-8"),
        headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
        method="POST",
    )

    try:
        with urlopen(request, timeout=settings.timeout_sec) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        message, error_code = _safe_provider_error(exc)
        return {"ok": False, "error": message, "error_code": error_code}
    except URLError:
        return {"ok": False, "error": "OAuth token request failed due to network error.", "error_code": "network_error"}
    except OSError:
        return {"ok": False, "error": "OAuth token request failed.", "error_code": "request_failed"}
    except HTTPException:
        return {"ok": False, "error": "OAuth token response was truncated or malformed.", "error_code": "invalid_response"}
    except ValueError:
        # Includes UnicodeDecodeError on a non-UTF-8 body.
        return {"ok": False, "error": "OAuth token response could not be decoded.", "error_code": "invalid_response"}

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {"ok": False, "error": "OAuth token response was not valid JSON.", "error_code": "invalid_response"}

    if not isinstance(payload, dict):
        return {"ok": False, "error": "OAuth token response had invalid shape.", "error_code": "invalid_response"}

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        return {"ok": False, "error": "OAuth token response missing access token.", "error_code": "invalid_response"}

    return {
        "ok": True,
        "access_token": access_token,
        "refresh_token": payload.get("refresh_token"),
        "error": None,
    }


class TokenRefresher:
    """Keeps identity records usable; refresh failures degrade to the stale token."""

    def __init__(
        self,
        store: CredentialStore,
        *,
        settings: OAuthSettings | None = None,
        exchange: Callable[[OAuthSettings, str], dict[str, Any]] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or load_oauth_settings()
        self._exchange = exchange or exchange_refresh_token

    @property
    def store(self) -> CredentialStore:
        return self._store

    def refresh(self, identity: IdentityRecord) -> IdentityRecord:
        """Exchange the refresh token once and persist the new access token.

        When the exchange fails the identity is left untouched and the failure is
        logged; callers keep using the stale token. When only the save fails the
        new token is kept in memory for this process.
        """
        try:
            self._refresh_or_raise(identity)
        except AuthFailure as exc:
            logger.error("Token refresh failed for account %s: %s", identity.account_key, exc)
        return identity

    def _refresh_or_raise(self, identity: IdentityRecord) -> None:
        missing = self._settings.missing_fields()
        if missing:
            raise AuthFailure("Missing Google OAuth config fields: " + ", ".join(missing))
        if not identity.refresh_token:
            raise AuthFailure("No refresh token stored; re-authentication is required.")

        out = self._exchange(self._settings, identity.refresh_token)
        if not out.get("ok"):
            raise AuthFailure(f"{out.get('error') or 'OAuth token refresh failed.'} ({out.get('error_code')})")

        identity.access_token = str(out["access_token"])
        identity.token_expiry = _utc_now() + timedelta(seconds=self._settings.token_lifetime_sec)
        rotated = out.get("refresh_token")
        if isinstance(rotated, str) and rotated.strip():
            identity.refresh_token = rotated
        try:
            self._store.save(identity)
        except sqlite3.Error as exc:
            raise AuthFailure(f"Refreshed token could not be persisted: {exc}") from exc
        logger.info(
            "Access token refreshed for account %s; expires %s",
            identity.account_key,
            identity.token_expiry.isoformat(),
        )

    def get_valid_token(self, identity: IdentityRecord) -> str:
        if is_token_valid(identity):
            return identity.access_token
        self.refresh(identity)
        return identity.access_token

    def sweep(self) -> dict[str, Any]:
        """Refresh every stored identity regardless of expiry."""
        identities = self._store.list_identities()
        refreshed = 0
        failed: list[str] = []
        for identity in identities:
            try:
                self._refresh_or_raise(identity)
            except AuthFailure as exc:
                logger.error("Token sweep could not refresh account %s: %s", identity.account_key, exc)
                failed.append(identity.account_key)
                continue
            refreshed += 1
        return {
            "ok": not failed,
            "source": "token_sweep",
            "identities": len(identities),
            "refreshed": refreshed,
            "failed_accounts": failed,
            "error": None if not failed else f"{len(failed)} identity refresh(es) failed",
        }
