import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt

from seatledger import app_context
from seatledger.app.reconciliation import RequestContext
from seatledger.app.routes import admin as admin_routes
from seatledger.app.routes import auth as auth_routes
from seatledger.app.routes import billing as billing_routes
from seatledger.app.routes import licenses as license_routes
from seatledger.app.routes import members as member_routes
from seatledger.app.services.licensing import (
    get_account_repository,
    get_entitlement_store,
    get_licensing_config,
)
from seatledger.scheduler import get_job_metrics, shutdown_license_scheduler, start_license_scheduler

load_dotenv()

logger = logging.getLogger("seatledger")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "seatledger"),
    user=os.getenv("DB_USER", "seatledger"),
    password=os.getenv("DB_PASSWORD", "seatledger"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if origin.strip()]


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(*, subject: str, expires_delta: Optional[timedelta] = None) -> str:
    payload: Dict[str, Any] = {"sub": subject}
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def _user_id_from_session_token(session_token: str) -> Optional[str]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None


def get_request_context(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> RequestContext:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user_id = _user_id_from_session_token(session_token)
    account = get_account_repository().get_by_id(user_id) if user_id else None
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    memberships = get_entitlement_store().list_active_memberships_for_user(account.id)
    membership = memberships[0] if memberships else None
    return RequestContext(
        user_id=account.id,
        email=account.email,
        name=account.name,
        organization_id=membership.organization_id if membership else None,
        role=membership.role if membership else None,
    )


app_context.configure(
    get_conn=get_conn,
    get_request_context=get_request_context,
    create_access_token=create_access_token,
)

app = FastAPI(title="Seat Ledger API")

# run: uvicorn seatledger.main:app --host 127.0.0.1 --port 8000 --reload

# Vite proxy origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_routes.router)
app.include_router(member_routes.router)
app.include_router(license_routes.router)
app.include_router(billing_routes.router)
app.include_router(admin_routes.router)


@app.on_event("startup")
def _start_license_scheduler() -> None:
    if get_licensing_config().scheduler_enabled:
        start_license_scheduler()
    else:
        logger.info("License scheduler disabled")


@app.on_event("shutdown")
def _shutdown_license_scheduler() -> None:
    shutdown_license_scheduler()


@app.get("/api/healthz")
def healthz():
    return {"ok": True}


@app.get("/api/metrics/jobs")
def read_job_metrics() -> Dict[str, Any]:
    return get_job_metrics()
