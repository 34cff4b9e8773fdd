"""
auth/dependencies.py -- FastAPI Depends() adapters for the guard pipeline.

guard(operation) returns a dependency that:
  1. Reads the Authorization: Bearer <token> header (HTTPBearer, auto_error off
     so a missing header flows into the same 401 path as a bad token).
  2. Runs auth.guards.run_guards() with the process TokenService and the
     access policy stored on app.state.
  3. Returns a RequestContext that handlers take as an ordinary parameter.

Nothing is written to request.state; the identity travels only through the
dependency's return value.

Use as:
    @router.get("/users")
    def list_users(ctx: RequestContext = Depends(guard("users.list"))): ...

Layer rule: this is the only auth/ module that imports fastapi.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.guards import ACCESS_POLICY, allowed_roles_for, run_guards
from auth.models import RequestContext
from auth.service import AuthService
from auth.store import UserStore

security = HTTPBearer(auto_error=False)


def guard(operation: str) -> Callable[..., RequestContext]:
    """Build the guard dependency for a named operation.

    The operation must be registered in ACCESS_POLICY; an unknown id fails at
    import time rather than on the first request.
    """
    allowed_roles_for(operation, ACCESS_POLICY)

    def dependency(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> RequestContext:
        token = credentials.credentials if credentials else None
        state = request.app.state
        return run_guards(token, operation, state.token_service, getattr(state, "access_policy", ACCESS_POLICY))

    dependency.__name__ = f"guard_{operation.replace('.', '_')}"
    return dependency


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store
