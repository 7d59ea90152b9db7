"""
auth/tokens.py -- Signed bearer tokens for access, refresh and activation.

Security design decisions:
  JWT: python-jose with HS256. Each TokenKind is signed with its own secret
       from Settings, so a token minted for one purpose never verifies as
       another -- an activation token cannot be replayed as an access token [S1].

  Verification raises InvalidToken on malformed encoding, signature mismatch,
       or an expiry in the past. It never returns a partial result and never
       swallows the failure; the pipeline or route decides what that means.

  Payload round-trip: verify() strips the registered time claims (exp, iat)
       it added during issue(), so verify(issue(p)) == p while the token lives.

  Activation codes: secrets.randbelow gives a uniformly random 6-digit code.

Layer rule: no imports from api/, cache/, or mail/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import JWTError, jwt

from auth.errors import InvalidToken
from core.config import Settings

logger = logging.getLogger("coursegate.auth.tokens")

_ALGORITHM = "HS256"
_TIME_CLAIMS = ("exp", "iat")


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    ACTIVATION = "activation"


class TokenCodec:
    """Issue and verify signed tokens, one secret per TokenKind.

    Usage:
        codec = TokenCodec(get_settings())
        token = codec.issue(TokenKind.ACCESS, {"sub": user_id}, ttl_seconds=300)
        payload = codec.verify(TokenKind.ACCESS, token)   # {"sub": user_id}
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._secrets = {
            TokenKind.ACCESS: settings.access_token_secret,
            TokenKind.REFRESH: settings.refresh_token_secret,
            TokenKind.ACTIVATION: settings.activation_secret,
        }

    @property
    def access_ttl_seconds(self) -> int:
        return self._settings.access_token_ttl_seconds

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._settings.refresh_token_ttl_seconds

    @property
    def activation_ttl_seconds(self) -> int:
        return self._settings.activation_token_expire_seconds

    def issue(self, kind: TokenKind, payload: dict, ttl_seconds: int) -> str:
        """Sign payload as a `kind` token that expires ttl_seconds from now.

        A ttl of zero or less yields a token that is already expired -- useful
        only in tests.
        """
        now = datetime.now(timezone.utc)
        claims = dict(payload)
        claims["iat"] = now
        claims["exp"] = now + timedelta(seconds=ttl_seconds)
        return jwt.encode(claims, self._secrets[kind], algorithm=_ALGORITHM)

    def verify(self, kind: TokenKind, token: str) -> dict:
        """Verify a `kind` token and return the payload it was issued with.

        Raises InvalidToken on any failure: malformed input, wrong secret
        (including a token of another kind), tampering, or expiry.
        """
        try:
            claims = jwt.decode(token, self._secrets[kind], algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.debug("Rejected %s token: %s", kind.value, exc)
            raise InvalidToken() from exc
        for claim in _TIME_CLAIMS:
            claims.pop(claim, None)
        return claims

    # ------------------------------------------------------------------
    # Session helpers -- default lifetimes from Settings
    # ------------------------------------------------------------------

    def issue_access(self, user_id: str) -> str:
        return self.issue(TokenKind.ACCESS, {"sub": user_id}, self.access_ttl_seconds)

    def issue_refresh(self, user_id: str) -> str:
        return self.issue(TokenKind.REFRESH, {"sub": user_id}, self.refresh_ttl_seconds)

    def subject(self, kind: TokenKind, token: str) -> str:
        """Verify a session token and return its subject (user id)."""
        payload = self.verify(kind, token)
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidToken()
        return sub


def new_activation_code() -> str:
    """Return a random 6-digit code, 100000-999999."""
    return str(100000 + secrets.randbelow(900000))
