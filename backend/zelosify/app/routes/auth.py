"""Login, TOTP verification, logout and current-user endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials

from ..config import settings
from ..dependencies import (
    authenticate,
    authenticate_optional,
    bearer_scheme,
    get_login_flow,
    get_session_terminator,
)
from ..errors import InternalError, ServiceError
from ..logging import get_logger
from ..login import (
    LOGIN_SUCCESS_MESSAGE,
    LOGOUT_SUCCESS_MESSAGE,
    REFRESH_TOKEN_COOKIE,
    TEMP_TOKEN_COOKIE,
    MultiFactorLogin,
    SessionTerminator,
    clear_session_cookies,
    set_session_cookies,
    set_temp_token_cookie,
)
from ..principal import Principal
from ..schemas.auth import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PrincipalResponse,
    VerifyTotpRequest,
    VerifyTotpResponse,
)

logger = get_logger("zelosify.routes.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    response: Response,
    payload: Optional[LoginRequest] = None,
    flow: MultiFactorLogin = Depends(get_login_flow),
) -> LoginResponse:
    try:
        pending = await flow.begin(
            payload.username if payload else None,
            payload.password if payload else None,
        )
    except ServiceError:
        raise
    except Exception as exc:
        logger.exception("login_failed_unexpectedly")
        raise InternalError("Internal server error") from exc

    set_temp_token_cookie(response, pending.temp_token, settings.auth, secure=settings.is_production)
    return LoginResponse(message="Credentials verified. Enter your TOTP code to continue.")


@router.post("/verify-totp", response_model=VerifyTotpResponse)
async def verify_totp(
    request: Request,
    response: Response,
    payload: Optional[VerifyTotpRequest] = None,
    flow: MultiFactorLogin = Depends(get_login_flow),
) -> VerifyTotpResponse:
    """Second login step. Session cookies are set only after the tokens are persisted."""

    temp_token = request.cookies.get(TEMP_TOKEN_COOKIE)
    try:
        completed = await flow.verify_totp(temp_token, payload.totp if payload else None)
    except ServiceError:
        raise
    except Exception as exc:
        logger.exception("verify_totp_failed_unexpectedly")
        raise InternalError("Internal server error") from exc

    set_session_cookies(response, completed.tokens, settings.auth, secure=settings.is_production)
    return VerifyTotpResponse(message=LOGIN_SUCCESS_MESSAGE, user=completed.user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    principal: Optional[Principal] = Depends(authenticate_optional),
    terminator: SessionTerminator = Depends(get_session_terminator),
) -> MessageResponse:
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not refresh_token and credentials is not None:
        refresh_token = credentials.credentials

    try:
        await terminator.terminate(refresh_token, principal)
    except ServiceError:
        raise
    except Exception as exc:
        logger.exception("logout_failed_unexpectedly")
        raise InternalError("Error logging out") from exc

    clear_session_cookies(response)
    return MessageResponse(message=LOGOUT_SUCCESS_MESSAGE)


@router.get("/me", response_model=PrincipalResponse)
async def read_me(principal: Principal = Depends(authenticate)) -> PrincipalResponse:
    return PrincipalResponse(
        id=principal.id,
        email=principal.email,
        username=principal.username,
        role=principal.role,
        tenant_id=principal.tenant_id,
        department=principal.department,
        provider=principal.provider.value,
        realm_roles=list(principal.realm_roles),
    )
