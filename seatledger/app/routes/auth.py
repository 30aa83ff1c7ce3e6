"""API routes for signup, sign-in and account recovery."""
from __future__ import annotations

import os
from datetime import timedelta

from fastapi import APIRouter, Response, status

from ..errors import ReconciliationError
from ..schemas.auth import (
    MessageResponse,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    SignUpResponse,
    TokenRequest,
)
from ..services import licensing as licensing_services
from .dependencies import SESSION_COOKIE_NAME

SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "0").lower() in {"1", "true", "yes"}
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
def sign_up(payload: SignUpRequest) -> SignUpResponse:
    service = licensing_services.get_account_service()
    try:
        result = service.sign_up(
            payload.email,
            payload.password,
            name=payload.name,
            organization_name=payload.organization_name,
            invitation_token=payload.invitation_token,
        )
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return SignUpResponse.from_result(result)


@router.post("/signin", response_model=SignInResponse)
def sign_in(payload: SignInRequest, response: Response) -> SignInResponse:
    service = licensing_services.get_account_service()
    try:
        result = service.sign_in(payload.email, payload.password)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc

    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=result.session_token,
        httponly=True,
        samesite="lax",
        secure=SESSION_COOKIE_SECURE,
        max_age=int(timedelta(minutes=JWT_EXP_MINUTES).total_seconds()),
        path="/",
    )
    return SignInResponse.from_result(result)


@router.post("/signout")
def sign_out(response: Response):
    response.delete_cookie(
        SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=SESSION_COOKIE_SECURE,
    )
    return {"ok": True}


@router.post("/verify-email", response_model=MessageResponse)
def verify_email(payload: TokenRequest) -> MessageResponse:
    service = licensing_services.get_account_service()
    try:
        service.verify_email(payload.token)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return MessageResponse(message="Email confirmed. You can now sign in.")


@router.post("/password-reset", response_model=MessageResponse)
def request_password_reset(payload: PasswordResetRequest) -> MessageResponse:
    service = licensing_services.get_account_service()
    return MessageResponse(message=service.request_password_reset(payload.email))


@router.post("/password-reset/confirm", response_model=MessageResponse)
def confirm_password_reset(payload: PasswordResetConfirmRequest) -> MessageResponse:
    service = licensing_services.get_account_service()
    try:
        service.confirm_password_reset(payload.token, payload.new_password)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return MessageResponse(message="Password updated. You can now sign in.")
