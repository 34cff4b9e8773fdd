"""
api/routes/v1/users.py -- Guarded user administration endpoints.

Routes:
  GET   /api/v1/users/me               -- own profile (any role)
  GET   /api/v1/users                  -- paginated list (MAIN_ADMIN)
  GET   /api/v1/users/{user_id}        -- one user (MAIN_ADMIN)
  PATCH /api/v1/users/{user_id}/role   -- change role (MAIN_ADMIN)
  PATCH /api/v1/users/{user_id}/password -- change password (self, or MAIN_ADMIN)

Every handler declares guard("<operation>"); the allowed roles for each
operation live in auth.guards.ACCESS_POLICY, not here. Handlers receive the
caller as RequestContext.identity.

Route registration order: /users/me must precede /users/{user_id} or FastAPI
captures "me" as a path parameter.

Role changes take effect on the target's next login. Tokens already issued
keep the old role until they expire.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuthResponse, PasswordChange, PublicUser, RoleUpdate, UserPage
from auth.dependencies import get_auth_service, get_user_store, guard
from auth.errors import AuthError, ErrorKind
from auth.models import RequestContext, Role
from auth.service import AuthService
from auth.store import UserStore

router = APIRouter()


@router.get("/users/me", response_model=PublicUser)
def me(
    ctx: RequestContext = Depends(guard("users.me")),
    store: UserStore = Depends(get_user_store),
) -> PublicUser:
    """Return the caller's own profile, read fresh from the store."""
    user = store.find_by_id(ctx.identity.subject)
    if user is None:
        raise AuthError(ErrorKind.not_found, "User not found.")
    return PublicUser.from_user(user)


@router.get("/users", response_model=UserPage)
def list_users(
    ctx: RequestContext = Depends(guard("users.list")),
    store: UserStore = Depends(get_user_store),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> UserPage:
    total = store.count_users()
    users = store.list_users(offset=(page - 1) * limit, limit=limit)
    return UserPage(
        data=[PublicUser.from_user(u) for u in users],
        total=total,
        page=page,
        last_page=max(1, math.ceil(total / limit)),
    )


@router.get("/users/{user_id}", response_model=PublicUser)
def get_user(
    user_id: str,
    ctx: RequestContext = Depends(guard("users.get")),
    store: UserStore = Depends(get_user_store),
) -> PublicUser:
    user = store.find_by_id(user_id)
    if user is None:
        raise AuthError(ErrorKind.not_found, "User not found.")
    return PublicUser.from_user(user)


@router.patch("/users/{user_id}/role", response_model=AuthResponse)
def change_role(
    request: Request,
    user_id: str,
    body: RoleUpdate,
    ctx: RequestContext = Depends(guard("users.change_role")),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Assign a new role. An admin cannot change their own role (no lock-out)."""
    if user_id == ctx.identity.subject:
        raise AuthError(ErrorKind.bad_request, "You cannot change your own role.")
    result = service.change_role(user_id, body.role)
    return AuthResponse.from_result(result, expires_in=request.app.state.token_service.expire_seconds)


@router.patch("/users/{user_id}/password", response_model=AuthResponse)
def change_password(
    request: Request,
    user_id: str,
    body: PasswordChange,
    ctx: RequestContext = Depends(guard("users.change_password")),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Change a password given the current one. Callers may change their own; MAIN_ADMIN may change any."""
    if ctx.identity.subject != user_id and ctx.identity.role != Role.MAIN_ADMIN:
        raise AuthError(ErrorKind.forbidden, "You can only change your own password.")
    result = service.change_password(user_id, body.current_password, body.new_password)
    return AuthResponse.from_result(result, expires_in=request.app.state.token_service.expire_seconds)
