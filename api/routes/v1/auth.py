"""
api/routes/v1/auth.py -- Account lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register             -- create account, email OTP, return token (201)
  POST /api/v1/auth/verify-email         -- confirm OTP, mark verified, return fresh token
  POST /api/v1/auth/resend-verification  -- replace OTP and email it again
  POST /api/v1/auth/login                -- password login, return token
  POST /api/v1/auth/forgot-password      -- store reset OTP and email it
  POST /api/v1/auth/reset-password       -- confirm reset OTP, set new password
  POST /api/v1/auth/dev/verify-email     -- verify without OTP (dev only)
  POST /api/v1/auth/dev/reset-password   -- set password without OTP (dev only)

All routes here are public: none of them sit behind the guard pipeline.
Business failures are raised as AuthError by AuthService and rendered by the
AuthError handler in api/main.py.

Handlers are plain `def`: bcrypt is CPU-bound, and Starlette runs sync
handlers in its threadpool so hashing never blocks the event loop.

Security:
  POST /login is rate-limited by LOGIN_RATE_LIMIT per client IP.
  POST /resend-verification and /forgot-password are rate-limited by
       OTP_RATE_LIMIT to stop mailbox flooding.
  Cache-Control: no-store on every response that carries a token.
  The dev/* routes answer 404 unless DEV_ENDPOINTS_ENABLED=true.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.limiter import limiter
from api.models import (
    AuthResponse,
    DevResetPasswordRequest,
    EmailOnlyRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)
from auth.dependencies import get_auth_service
from auth.models import AuthResult
from auth.service import AuthService
from core.config import get_settings

router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _otp_limit() -> str:
    return get_settings().otp_rate_limit


def _respond(request: Request, response: Response, result: AuthResult) -> AuthResponse:
    if result.token is not None:
        response.headers["Cache-Control"] = "no-store"
    return AuthResponse.from_result(result, expires_in=request.app.state.token_service.expire_seconds)


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create an unverified CUSTOMER account.

    Returns a token immediately. The verification code goes out by email; a
    delivery failure is logged and does not fail the registration.
    """
    result = service.register(body.email, body.password, body.name)
    return _respond(request, response, result)


@router.post("/auth/verify-email", response_model=AuthResponse)
def verify_email(
    request: Request,
    response: Response,
    body: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Confirm the emailed code. 400 if the code is wrong or the email is already verified."""
    result = service.verify_email(body.email, body.code)
    return _respond(request, response, result)


@router.post("/auth/resend-verification", response_model=AuthResponse)
@limiter.limit(_otp_limit)
def resend_verification(
    request: Request,
    response: Response,
    body: EmailOnlyRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Issue a new verification code. The previous code stops working."""
    result = service.resend_verification(body.email)
    return _respond(request, response, result)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_login_limit)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 message. An
    unverified account gets its own message, except MAIN_ADMIN and
    STALL_ADMIN, who may log in before verifying.
    """
    result = service.login(body.email, body.password)
    return _respond(request, response, result)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=AuthResponse)
@limiter.limit(_otp_limit)
def forgot_password(
    request: Request,
    response: Response,
    body: EmailOnlyRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = service.forgot_password(body.email)
    return _respond(request, response, result)


@router.post("/auth/reset-password", response_model=AuthResponse)
def reset_password(
    request: Request,
    response: Response,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = service.reset_password(body.email, body.code, body.new_password)
    return _respond(request, response, result)


# ---------------------------------------------------------------------------
# Development helpers
# ---------------------------------------------------------------------------


def _require_dev_endpoints(request: Request) -> None:
    if not getattr(request.app.state, "dev_endpoints_enabled", False):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Not Found"})


@router.post(
    "/auth/dev/verify-email",
    response_model=AuthResponse,
    include_in_schema=False,
    dependencies=[Depends(_require_dev_endpoints)],
)
def dev_verify_email(
    request: Request,
    response: Response,
    body: EmailOnlyRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Mark an account verified without a code."""
    result = service.mark_verified(body.email)
    return _respond(request, response, result)


@router.post(
    "/auth/dev/reset-password",
    response_model=AuthResponse,
    include_in_schema=False,
    dependencies=[Depends(_require_dev_endpoints)],
)
def dev_reset_password(
    request: Request,
    response: Response,
    body: DevResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Overwrite a password without a code."""
    result = service.set_password(body.email, body.new_password)
    return _respond(request, response, result)
