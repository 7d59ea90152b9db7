"""
auth/pipeline.py -- Request authentication as an explicit ordered pipeline.

Each stage is a callable taking a frozen RequestContext and returning either
  Continue(context)  -- proceed, with a (possibly) enriched copy of the context
  Halt(error)        -- stop; the error is the terminal response.

run_stages() feeds each stage the previous stage's context and stops at the
first Halt. No stage mutates its input; enrichment is dataclasses.replace().

Stages:
  SessionRefresh  -- refresh_token cookie -> fresh access token on the context.
                     Never reads the directory.
  AccessGuard     -- access token (fresh one first, then cookie, then bearer
                     header) -> Identity via cache -> directory.
  RoleGuard       -- Identity.role must be one of the permitted roles.

Fixed orderings (auth/dependencies.py builds these):
  [AccessGuard]                          -- authenticated routes
  [SessionRefresh, AccessGuard]          -- routes tolerating an expired access token
  [..., AccessGuard, RoleGuard(roles)]   -- role-restricted routes

RoleGuard reads the identity AccessGuard attached; it must never run before
it. guarded_stages() is the one place that composes them.

Layer rule: no imports from api/ or fastapi.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Union

from auth.errors import AuthError, Forbidden, InvalidToken, MissingRefreshToken, Unauthenticated
from auth.models import Identity
from auth.service import CredentialService
from auth.tokens import TokenCodec, TokenKind

logger = logging.getLogger("coursegate.auth.pipeline")


@dataclass(frozen=True)
class RequestContext:
    """Everything the pipeline knows about one request.

    Built from cookies/headers at the edge; stages return enriched copies.
    """

    access_token: str | None = None
    refresh_token: str | None = None
    fresh_access_token: str | None = None
    identity: Identity | None = None


@dataclass(frozen=True)
class Continue:
    context: RequestContext


@dataclass(frozen=True)
class Halt:
    error: AuthError


StageResult = Union[Continue, Halt]
Stage = Callable[[RequestContext], StageResult]


def run_stages(stages: Iterable[Stage], context: RequestContext) -> StageResult:
    """Run stages in order. Returns the final Continue or the first Halt."""
    result: StageResult = Continue(context)
    for stage in stages:
        result = stage(result.context)
        if isinstance(result, Halt):
            logger.debug("Pipeline halted at %s: %s", type(stage).__name__, result.error.message)
            return result
    return result


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class SessionRefresh:
    """Mint a new access token from the refresh_token cookie.

    Attaches the token to the context and never writes a response itself;
    the handler decides whether to surface it.
    """

    def __init__(self, codec: TokenCodec) -> None:
        self._codec = codec

    def __call__(self, context: RequestContext) -> StageResult:
        if not context.refresh_token:
            return Halt(MissingRefreshToken())
        try:
            user_id = self._codec.subject(TokenKind.REFRESH, context.refresh_token)
        except InvalidToken:
            return Halt(InvalidToken("Invalid or expired refresh token."))
        return Continue(replace(context, fresh_access_token=self._codec.issue_access(user_id)))


class AccessGuard:
    """Resolve the caller from the access token and attach an Identity.

    Token absent, invalid, or expired -> Unauthenticated.
    Token fine but the user is gone      -> UserNotFound (from resolve()).
    Directory down                       -> UpstreamUnavailable.
    """

    def __init__(self, codec: TokenCodec, service: CredentialService) -> None:
        self._codec = codec
        self._service = service

    def __call__(self, context: RequestContext) -> StageResult:
        token = context.fresh_access_token or context.access_token
        if not token:
            return Halt(Unauthenticated())
        try:
            user_id = self._codec.subject(TokenKind.ACCESS, token)
        except InvalidToken:
            return Halt(Unauthenticated("Invalid or expired access token."))
        try:
            identity = self._service.resolve(user_id)
        except AuthError as exc:
            return Halt(exc)
        return Continue(replace(context, identity=identity))


class RoleGuard:
    """Pass only identities whose role is in the permitted set."""

    def __init__(self, roles: Iterable[str]) -> None:
        self.roles = frozenset(roles)

    def __call__(self, context: RequestContext) -> StageResult:
        if context.identity is None:
            # Composition error: RoleGuard placed before AccessGuard.
            return Halt(Unauthenticated())
        if context.identity.role not in self.roles:
            return Halt(Forbidden(f"Role: {context.identity.role} is not allowed to access this resource."))
        return Continue(context)


def guarded_stages(
    codec: TokenCodec,
    service: CredentialService,
    *,
    roles: Sequence[str] = (),
    refresh: bool = False,
) -> list[Stage]:
    """Build the stage list in its one permitted order: refresh, access, role."""
    stages: list[Stage] = []
    if refresh:
        stages.append(SessionRefresh(codec))
    stages.append(AccessGuard(codec, service))
    if roles:
        stages.append(RoleGuard(roles))
    return stages
