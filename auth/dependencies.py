"""
auth/dependencies.py -- FastAPI Depends() helpers that run the auth pipeline.

Token sources, in priority order:
  1. access_token cookie -- set by login / social login / refresh.
  2. Authorization: Bearer <token> header -- non-cookie API clients.
The refresh token is only ever read from the refresh_token cookie.

Each dependency builds a RequestContext from the request, runs a fixed stage
list from auth.pipeline, and either returns the final context (identity and
any fresh access token attached) or raises the Halt error. The AuthError
exception handler in api/main.py renders it.

  authenticated         -- [AccessGuard]
  refreshed             -- [SessionRefresh, AccessGuard]
  session_refresh       -- [SessionRefresh]
  require_roles(*roles) -- [SessionRefresh, AccessGuard, RoleGuard(roles)]
  session_subject       -- soft: best-effort user id for logout, never raises

Shared handles (settings, store, cache, codec, service) live on app.state,
wired by the lifespan in api/main.py.

Layer rule: may import from fastapi (Request) because this module is part of
the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from fastapi import Request

from auth.cookies import ACCESS_COOKIE, REFRESH_COOKIE
from auth.errors import InvalidToken
from auth.pipeline import Halt, RequestContext, SessionRefresh, Stage, guarded_stages, run_stages
from auth.service import CredentialService
from auth.tokens import TokenCodec, TokenKind
from core.config import Settings


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def _codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def request_context(request: Request) -> RequestContext:
    """Read the raw credentials off the request. No verification here."""
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip() or None
    return RequestContext(access_token=token, refresh_token=request.cookies.get(REFRESH_COOKIE))


def _run(request: Request, stages: Sequence[Stage]) -> RequestContext:
    result = run_stages(stages, request_context(request))
    if isinstance(result, Halt):
        raise result.error
    return result.context


def authenticated(request: Request) -> RequestContext:
    """Require a valid access token. Use as Depends(authenticated)."""
    return _run(request, guarded_stages(_codec(request), get_credentials(request)))


def refreshed(request: Request) -> RequestContext:
    """Refresh the access token, then authenticate with it.

    The returned context carries fresh_access_token; the handler writes it
    back as a cookie.
    """
    return _run(request, guarded_stages(_codec(request), get_credentials(request), refresh=True))


def session_refresh(request: Request) -> RequestContext:
    """Only mint a fresh access token. No identity is resolved."""
    return _run(request, [SessionRefresh(_codec(request))])


def require_roles(*roles: str, refresh: bool = True) -> Callable[[Request], RequestContext]:
    """Build a dependency admitting only the given roles.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(ctx: RequestContext = Depends(require_roles("admin"))): ...
    """
    if not roles:
        raise ValueError("require_roles() needs at least one role")

    def dependency(request: Request) -> RequestContext:
        return _run(
            request,
            guarded_stages(_codec(request), get_credentials(request), roles=roles, refresh=refresh),
        )

    return dependency


def session_subject(request: Request) -> str | None:
    """Best-effort user id of the caller, from either session token.

    Used by logout, which must succeed whether or not the session is still
    valid. Returns None when neither token verifies.
    """
    codec = _codec(request)
    context = request_context(request)
    for kind, token in ((TokenKind.ACCESS, context.access_token), (TokenKind.REFRESH, context.refresh_token)):
        if not token:
            continue
        try:
            return codec.subject(kind, token)
        except InvalidToken:
            continue
    return None
