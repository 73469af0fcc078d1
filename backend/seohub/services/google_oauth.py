"""Google OAuth helpers shared by the GA4 and Search Console integrations.

Access and refresh tokens are stored Fernet-encrypted per user
(:class:`UserGA4Token`, :class:`UserSearchConsoleToken`).  The public
helpers below build consent URLs, exchange authorization codes, and hand out
a *valid* access token, refreshing it when it expires within five minutes.

The HTTP calls go through ``httpx``; tests monkey-patch
:func:`exchange_code` and :func:`refresh_access_token`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Dict
from typing import List
from urllib.parse import urlencode

import httpx
from jose import JWTError
from jose import jwt
from sqlalchemy.orm import Session

from seohub.config import get_settings
from seohub.crud import crud
from seohub.utils.crypto import decrypt
from seohub.utils.crypto import encrypt
from seohub.utils.time import utc_now
from seohub.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

GA4_SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]
SEARCH_CONSOLE_SCOPES = [
    "https://www.googleapis.com/auth/webmasters.readonly",
    "https://www.googleapis.com/auth/siteverification.verify_only",
]

GA4_CALLBACK_PATH = "/api/ga4/auth/callback"
SEARCH_CONSOLE_CALLBACK_PATH = "/api/search-console/callback"

REFRESH_BUFFER = timedelta(minutes=5)
STATE_TTL = timedelta(minutes=10)


class GoogleAuthError(Exception):
    """Missing, expired or unrefreshable Google credentials."""


# ---------------------------------------------------------------------------
# Consent URL & state
# ---------------------------------------------------------------------------


def redirect_uri(path: str) -> str:
    return f"{get_settings().app_url}{path}"


def encode_state(user_id: int, purpose: str) -> str:
    """Signed OAuth ``state`` binding the callback to *user_id*."""

    payload = {
        "sub": str(user_id),
        "purpose": purpose,
        "exp": int((utc_now() + STATE_TTL).timestamp()),
    }
    return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")


def decode_state(state: str, purpose: str) -> int:
    try:
        payload = jwt.decode(state, get_settings().jwt_secret, algorithms=["HS256"])
    except JWTError as exc:
        raise GoogleAuthError("Invalid OAuth state") from exc
    if payload.get("purpose") != purpose:
        raise GoogleAuthError("Invalid OAuth state")
    return int(payload["sub"])


def build_auth_url(*, scopes: List[str], callback_path: str, state: str) -> str:
    params = {
        "client_id": get_settings().google_client_id or "",
        "redirect_uri": redirect_uri(callback_path),
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


def _token_request(data: Dict[str, str]) -> Dict[str, Any]:
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise GoogleAuthError("Google OAuth client not configured")

    data = {**data, "client_id": settings.google_client_id, "client_secret": settings.google_client_secret}
    try:
        response = httpx.post(GOOGLE_TOKEN_URL, data=data, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise GoogleAuthError(f"Google token request failed: {exc}") from exc
    return response.json()


def exchange_code(code: str, callback_path: str) -> Dict[str, Any]:
    """Swap an authorization *code* for ``access_token``/``refresh_token``."""

    return _token_request(
        {"code": code, "grant_type": "authorization_code", "redirect_uri": redirect_uri(callback_path)}
    )


def refresh_access_token(refresh_token: str) -> Dict[str, Any]:
    return _token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"})


def _expiry_from(payload: Dict[str, Any]) -> datetime | None:
    expires_in = payload.get("expires_in")
    if expires_in is None:
        return None
    return utc_now_naive() + timedelta(seconds=int(expires_in))


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

_TOKEN_STORES = {
    "ga4": (crud.get_ga4_token, crud.upsert_ga4_token),
    "search_console": (crud.get_search_console_token, crud.upsert_search_console_token),
}


def store_tokens(db: Session, kind: str, user_id: int, payload: Dict[str, Any], **extra: Any):
    """Encrypt and upsert the token response *payload* for *user_id*."""

    _, upsert = _TOKEN_STORES[kind]
    fields: Dict[str, Any] = {
        "encrypted_access_token": encrypt(payload["access_token"]),
        "expiry_date": _expiry_from(payload),
        "scope": payload.get("scope"),
    }
    if payload.get("refresh_token"):
        fields["encrypted_refresh_token"] = encrypt(payload["refresh_token"])
    if kind == "ga4":
        fields["token_type"] = payload.get("token_type")
    fields.update(extra)
    return upsert(db, user_id=user_id, **fields)


def get_valid_access_token(db: Session, user_id: int, kind: str = "ga4") -> str:
    """Return a decrypted access token, refreshing it close to expiry."""

    getter, _ = _TOKEN_STORES[kind]
    record = getter(db, user_id)
    if record is None:
        label = "GA4" if kind == "ga4" else "Search Console"
        raise GoogleAuthError(f"No {label} tokens found for user")

    try:
        access_token = decrypt(record.encrypted_access_token)
    except ValueError as exc:
        raise GoogleAuthError("Stored Google token could not be decrypted") from exc

    expires_soon = record.expiry_date is not None and record.expiry_date < utc_now_naive() + REFRESH_BUFFER
    if not expires_soon:
        return access_token

    if not record.encrypted_refresh_token:
        raise GoogleAuthError("Token expired and refresh failed. Please re-authenticate.")

    try:
        refreshed = refresh_access_token(decrypt(record.encrypted_refresh_token))
    except (GoogleAuthError, ValueError) as exc:
        logger.warning("Refreshing %s token for user %s failed: %s", kind, user_id, exc)
        raise GoogleAuthError("Token expired and refresh failed. Please re-authenticate.") from exc

    store_tokens(db, kind, user_id, refreshed)
    crud.create_audit_log(
        db,
        action="GA4_TOKEN_REFRESH" if kind == "ga4" else "SEARCH_CONSOLE_TOKEN_REFRESH",
        entity_type="user",
        entity_id=user_id,
        user_id=user_id,
    )
    return refreshed["access_token"]
