"""
api/routes/v1/auth.py -- Registration, session, and profile REST endpoints.

Routes:
  POST /api/v1/user/register             -- start registration; emails activation code
  POST /api/v1/user/activate             -- finish registration; creates the user
  POST /api/v1/user/login                -- password login; sets both session cookies
  POST /api/v1/user/social-auth          -- find-or-create by email; sets both cookies
  POST /api/v1/user/logout               -- clears cookies and cache entry; idempotent
  GET  /api/v1/user/refresh              -- new access token from the refresh cookie
  GET  /api/v1/user/me                   -- current user (read-through cache)
  PUT  /api/v1/user/update-user-info     -- rename
  PUT  /api/v1/user/update-user-password -- change password
  PUT  /api/v1/user/update-user-avatar   -- set avatar reference

Auth policy:
  register / activate / login / social-auth / logout: public.
  refresh: Session Refresh only (no directory read).
  me: Access Guard.
  update-*: Session Refresh -> Access Guard; the fresh access token is
    written back as a cookie so the client's session slides forward.

Security:
  [H2] register and login are rate-limited per IP.
  [C1] login timing is equalized inside CredentialService.login().
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ActivateRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    SocialAuthRequest,
    TokenResponse,
    UpdateAvatarRequest,
    UpdateInfoRequest,
    UpdatePasswordRequest,
    UserInfoResponse,
    UserOut,
    UserResponse,
)
from auth.cookies import clear_session_cookies, emit_fresh_access_token, set_access_cookie, set_session_cookies
from auth.dependencies import authenticated, get_credentials, get_settings_dep, refreshed, session_refresh, session_subject
from auth.models import SessionGrant
from auth.pipeline import RequestContext
from auth.service import CredentialService
from core.config import Settings, get_settings

router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _register_limit() -> str:
    return get_settings().register_rate_limit


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@limiter.limit(_register_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post(
    "/user/register",
    response_model=RegisterResponse,
    response_model_exclude_none=True,
    status_code=201,
)
def register(
    request: Request,
    body: RegisterRequest,
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> RegisterResponse:
    """Sign the pending account into an activation token and email its code.

    The code is echoed in the response only when EXPOSE_ACTIVATION_CODE is
    set; otherwise the inbox is the only way to get it.
    """
    ticket = service.register(body.name, body.email, body.password, body.avatar)
    return RegisterResponse(
        message=f"Please check your email {ticket.email} to activate your account.",
        activation_token=ticket.activation_token,
        activation_code=ticket.activation_code if settings.expose_activation_code else None,
    )


@router.post("/user/activate", response_model=MessageResponse, status_code=201)
def activate(body: ActivateRequest, service: CredentialService = Depends(get_credentials)) -> MessageResponse:
    """Create the account encoded in the activation token. Does not log in."""
    service.activate(body.activation_token, body.activation_code)
    return MessageResponse(message="User activated successfully.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def _session_response(grant: SessionGrant, settings: Settings) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=SessionResponse(user=UserOut.from_user(grant.user), access_token=grant.access_token).model_dump(),
    )
    set_session_cookies(resp, settings, grant.access_token, grant.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(_login_limit)  # [H2] brute-force mitigation
@router.post("/user/login", response_model=SessionResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Authenticate with email and password; set both session cookies.

    Unknown email and wrong password produce the same 401 message.
    """
    grant = service.login(body.email, body.password)
    return _session_response(grant, settings)


@router.post("/user/social-auth", response_model=SessionResponse)
def social_auth(
    body: SocialAuthRequest,
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Open a session for an identity the upstream provider already verified."""
    grant = service.social_login(body.email, body.name, body.avatar)
    return _session_response(grant, settings)


@router.post("/user/logout", response_model=MessageResponse)
def logout(
    request: Request,
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Clear both cookies and the caller's cache entry.

    No guard: logging out with an expired or already-cleared session still
    succeeds, so calling this twice is harmless.
    """
    service.logout(session_subject(request))
    resp = JSONResponse(content=MessageResponse(message="User logged out successfully.").model_dump())
    clear_session_cookies(resp, settings)
    return resp


@router.get("/user/refresh", response_model=TokenResponse)
def refresh(
    context: RequestContext = Depends(session_refresh),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Return a new access token and write it as the access_token cookie."""
    resp = JSONResponse(content=TokenResponse(access_token=context.fresh_access_token).model_dump())
    set_access_cookie(resp, settings, context.fresh_access_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/user/me", response_model=UserInfoResponse)
def me(context: RequestContext = Depends(authenticated)) -> UserInfoResponse:
    """Return the current user and which tier (cache or directory) answered."""
    identity = context.identity
    return UserInfoResponse(user=UserOut.from_user(identity.user), source=identity.source)


@router.put("/user/update-user-info", response_model=UserResponse)
def update_user_info(
    body: UpdateInfoRequest,
    response: Response,
    context: RequestContext = Depends(refreshed),
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> UserResponse:
    user = service.update_info(context.identity.user_id, body.name)
    emit_fresh_access_token(response, settings, context.fresh_access_token)
    return UserResponse(user=UserOut.from_user(user))


@router.put("/user/update-user-password", response_model=UserResponse)
def update_user_password(
    body: UpdatePasswordRequest,
    response: Response,
    context: RequestContext = Depends(refreshed),
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> UserResponse:
    """Change the password. The old password must match (401 otherwise)."""
    user = service.update_password(context.identity.user_id, body.old_password, body.new_password)
    emit_fresh_access_token(response, settings, context.fresh_access_token)
    return UserResponse(user=UserOut.from_user(user))


@router.put("/user/update-user-avatar", response_model=UserResponse)
def update_user_avatar(
    body: UpdateAvatarRequest,
    response: Response,
    context: RequestContext = Depends(refreshed),
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> UserResponse:
    """Store an avatar reference. Uploading the image is object storage's job."""
    user = service.update_avatar(context.identity.user_id, body.avatar)
    emit_fresh_access_token(response, settings, context.fresh_access_token)
    return UserResponse(user=UserOut.from_user(user))
