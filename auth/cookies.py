"""
auth/cookies.py -- Session cookie helpers.

Two cookies carry the session: access_token and refresh_token.

  httponly=True: JS cannot read either cookie (XSS mitigation).
  samesite: "lax" outside production; "none" in production, where the
      frontend is served from a different origin and must send credentials
      cross-site. SameSite=None is only honoured together with Secure.
  secure: forced on in production.
  max_age / expires: match the lifetime embedded in the token so the browser
      drops the cookie when the token stops verifying.
  domain: COOKIE_DOMAIN when configured, otherwise host-only.

Logout clears both cookies with the same attributes so browsers match and
drop them immediately.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from core.config import Settings

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _cookie_policy(settings: Settings) -> dict:
    policy: dict = {
        "httponly": True,
        "path": "/",
        "samesite": "none" if settings.is_production else "lax",
        "secure": settings.is_production,
    }
    if settings.cookie_domain:
        policy["domain"] = settings.cookie_domain
    return policy


def _set(response, settings: Settings, name: str, token: str, lifetime_seconds: int) -> None:
    expires = datetime.now(timezone.utc) + timedelta(seconds=lifetime_seconds)
    response.set_cookie(
        name,
        value=token,
        max_age=lifetime_seconds,
        expires=expires,
        **_cookie_policy(settings),
    )


def set_access_cookie(response, settings: Settings, token: str) -> None:
    """Write a freshly minted access token (e.g. after a refresh)."""
    _set(response, settings, ACCESS_COOKIE, token, settings.access_token_ttl_seconds)


def set_session_cookies(response, settings: Settings, access_token: str, refresh_token: str) -> None:
    """Write both session cookies after login / social login."""
    _set(response, settings, ACCESS_COOKIE, access_token, settings.access_token_ttl_seconds)
    _set(response, settings, REFRESH_COOKIE, refresh_token, settings.refresh_token_ttl_seconds)


def clear_session_cookies(response, settings: Settings) -> None:
    """Expire both session cookies immediately."""
    policy = _cookie_policy(settings)
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, **policy)


def emit_fresh_access_token(response, settings: Settings, token: str | None) -> None:
    """Write the access token a refresh stage minted, if there is one."""
    if token:
        set_access_cookie(response, settings, token)
