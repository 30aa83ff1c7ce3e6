"""Request dependencies shared by the modular routers."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import Cookie

from ... import app_context
from ..reconciliation import AccountIdentity, RequestContext

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def get_request_context(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> RequestContext:
    return app_context.get_request_context(session_token=session_token)


def identity_from_context(ctx: RequestContext) -> AccountIdentity:
    return AccountIdentity(user_id=ctx.user_id, email=ctx.email, name=ctx.name)
