"""FastAPI dependencies that expose the *current user* and role guards.

The heavy lifting (development bypass vs. JWT validation) is implemented in
strategy classes under :pymod:`seohub.auth.strategy`.

Roles
-----
* ``USER``  – regular agency member.
* ``ADMIN`` – agency administrator.
* *super admin* – ``is_super_admin`` flag or an address listed in
  ``ADMIN_EMAILS``; may act across agencies.
"""

from __future__ import annotations

from fastapi import Depends
from fastapi import HTTPException
from fastapi import Request
from fastapi import status
from sqlalchemy.orm import Session

from seohub.auth.strategy import AuthStrategy
from seohub.auth.strategy import DevAuthStrategy
from seohub.auth.strategy import JWTAuthStrategy
from seohub.config import get_settings
from seohub.database import get_db

_settings = get_settings()

# Tests patch this flag to toggle dev ↔ prod behaviour.
AUTH_DISABLED: bool = _settings.auth_disabled  # noqa: N816

JWT_SECRET: str = _settings.jwt_secret  # noqa: N816

DEV_EMAIL: str = DevAuthStrategy.DEV_EMAIL  # noqa: N816


_strategy_cache: dict[str, AuthStrategy] = {}


def _get_strategy() -> AuthStrategy:  # noqa: D401 – internal helper
    """Return *singleton* strategy instance based on ``AUTH_DISABLED`` flag."""

    if AUTH_DISABLED:
        if "dev" not in _strategy_cache:
            _strategy_cache["dev"] = DevAuthStrategy()
        return _strategy_cache["dev"]

    if "jwt" not in _strategy_cache:
        _strategy_cache["jwt"] = JWTAuthStrategy()
    return _strategy_cache["jwt"]


# ---------------------------------------------------------------------------
# Role helpers (usable outside the dependency graph)
# ---------------------------------------------------------------------------


def role_of(user) -> str:
    role = getattr(user, "role", "USER")
    return getattr(role, "value", role)


def is_admin(user) -> bool:
    return role_of(user) == "ADMIN"


def is_super_admin(user) -> bool:
    if getattr(user, "is_super_admin", False):
        return True
    email = (getattr(user, "email", "") or "").lower()
    return email in get_settings().admin_email_set


# ---------------------------------------------------------------------------
# Public dependencies
# ---------------------------------------------------------------------------


def get_current_user(request: Request, db: Session = Depends(get_db)):
    """Return the authenticated *User* row or raise **401**."""

    if "Authorization" not in request.headers and not AUTH_DISABLED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _get_strategy().get_current_user(request, db)


def require_admin(current_user=Depends(get_current_user)):
    """Agency admin *or* super admin."""

    if not (is_admin(current_user) or is_super_admin(current_user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")

    return current_user


def require_super_admin(current_user=Depends(get_current_user)):
    if not is_super_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden - Super Admin only")

    return current_user


def agency_scope(user) -> int | None:
    """Agency id to filter tenant data by; ``None`` only for an agency-less super admin.

    Any other caller without an agency gets **400**.
    """

    if user.agency_id is None:
        if is_super_admin(user):
            return None
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User not associated with an agency")
    return user.agency_id


def require_agency(current_user=Depends(get_current_user)):
    """Caller must belong to an agency (400 otherwise)."""

    if current_user.agency_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User not associated with an agency")
    return current_user


__all__ = [
    "get_current_user",
    "require_admin",
    "require_super_admin",
    "require_agency",
    "agency_scope",
    "is_admin",
    "is_super_admin",
    "role_of",
]
