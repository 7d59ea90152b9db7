"""
api/routes/v1/users.py -- User administration endpoints (admin only).

Routes:
  GET    /api/v1/user/get-users               -- list all users, newest first
  PUT    /api/v1/user/update-user-role        -- set a user's role
  DELETE /api/v1/user/delete-user/{user_id}   -- delete a user

Every route depends on require_roles("admin"): Session Refresh -> Access
Guard -> Role Guard. A non-admin gets 403 before the handler body runs. The
fresh access token from the refresh stage is written back as a cookie.

Deleting a user drops its session cache entry; any token it still holds fails
at the next access-guard lookup with 404 UserNotFound.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import MessageResponse, UpdateRoleRequest, UserListResponse, UserOut, UserResponse
from auth.cookies import emit_fresh_access_token
from auth.dependencies import get_credentials, get_settings_dep, require_roles
from auth.models import ROLE_ADMIN
from auth.pipeline import RequestContext
from auth.service import CredentialService
from core.config import Settings

router = APIRouter()

_admin_only = require_roles(ROLE_ADMIN)


@router.get("/user/get-users", response_model=UserListResponse)
def get_users(
    response: Response,
    context: RequestContext = Depends(_admin_only),
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> UserListResponse:
    emit_fresh_access_token(response, settings, context.fresh_access_token)
    return UserListResponse(users=[UserOut.from_user(u) for u in service.list_users()])


@router.put("/user/update-user-role", response_model=UserResponse)
def update_user_role(
    body: UpdateRoleRequest,
    response: Response,
    context: RequestContext = Depends(_admin_only),
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> UserResponse:
    user = service.update_role(body.id, body.role)
    emit_fresh_access_token(response, settings, context.fresh_access_token)
    return UserResponse(user=UserOut.from_user(user))


@router.delete("/user/delete-user/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    response: Response,
    context: RequestContext = Depends(_admin_only),
    service: CredentialService = Depends(get_credentials),
    settings: Settings = Depends(get_settings_dep),
) -> MessageResponse:
    service.delete_user(user_id)
    emit_fresh_access_token(response, settings, context.fresh_access_token)
    return MessageResponse(message="User deleted successfully.")
