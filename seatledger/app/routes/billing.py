"""Inbound payment provider webhook."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from ..billing.signature import SIGNATURE_HEADER
from ..errors import ReconciliationError
from ..schemas.billing import WebhookResponse
from ..services import licensing as licensing_services

router = APIRouter(prefix="/api/billing", tags=["billing"])


def process_webhook(raw_body: bytes, signature_header: Optional[str]) -> WebhookResponse:
    try:
        outcome = licensing_services.handle_payment_webhook(raw_body, signature_header)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return WebhookResponse.from_outcome(outcome)


@router.post("/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def receive_webhook(request: Request) -> WebhookResponse:
    # The signature covers the exact bytes received.
    raw_body = await request.body()
    return await run_in_threadpool(process_webhook, raw_body, request.headers.get(SIGNATURE_HEADER))
