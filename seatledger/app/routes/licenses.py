"""API routes for license pools and scheduled seat changes."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..errors import PreconditionFailure, ReconciliationError
from ..reconciliation import RequestContext
from ..schemas.licenses import LicensePoolOut, RenewalHistoryOut, RenewalHistoryResponse, ScheduleChangeRequest
from ..services import licensing as licensing_services
from .dependencies import get_request_context

router = APIRouter(prefix="/api/organizations/{organization_id}/license", tags=["licenses"])


@router.get("", response_model=LicensePoolOut)
def read_license(
    organization_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> LicensePoolOut:
    try:
        licensing_services.get_reconciliation_engine().require_admin(ctx, organization_id)
        pool = licensing_services.get_entitlement_store().get_license_pool(organization_id)
        if pool is None:
            raise PreconditionFailure(code="LICENSE_NOT_FOUND", message="License not found for this organization")
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return LicensePoolOut.from_pool(pool)


@router.post("/schedule", response_model=LicensePoolOut)
def schedule_change(
    organization_id: str,
    payload: ScheduleChangeRequest,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> LicensePoolOut:
    scheduler = licensing_services.get_change_scheduler()
    try:
        pool = scheduler.schedule_change(
            ctx,
            organization_id,
            payload.new_quantity,
            payload.effective_date,
            cancel_at_renewal=payload.cancel_at_renewal,
        )
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return LicensePoolOut.from_pool(pool)


@router.delete("/schedule", response_model=LicensePoolOut)
def cancel_scheduled_change(
    organization_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> LicensePoolOut:
    scheduler = licensing_services.get_change_scheduler()
    try:
        pool = scheduler.cancel_scheduled_change(ctx, organization_id)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return LicensePoolOut.from_pool(pool)


@router.get("/history", response_model=RenewalHistoryResponse)
def renewal_history(
    organization_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> RenewalHistoryResponse:
    try:
        licensing_services.get_reconciliation_engine().require_admin(ctx, organization_id)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    entries = licensing_services.get_entitlement_store().list_renewal_history(organization_id)
    return RenewalHistoryResponse(entries=[RenewalHistoryOut.from_entry(entry) for entry in entries])
