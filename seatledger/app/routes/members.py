"""API routes for organization members and invitations."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..errors import ReconciliationError
from ..reconciliation import RequestContext
from ..schemas.members import (
    InvitationAcceptedResponse,
    InvitationDetailsResponse,
    InvitationTokenRequest,
    InviteMemberRequest,
    InviteMemberResponse,
    MemberListResponse,
    MembershipOut,
    SeatAvailabilityResponse,
)
from ..services import licensing as licensing_services
from .dependencies import get_request_context, identity_from_context

router = APIRouter(tags=["members"])


@router.get("/api/organizations/{organization_id}/members", response_model=MemberListResponse)
def list_members(
    organization_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> MemberListResponse:
    try:
        members = licensing_services.list_members(ctx, organization_id)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return MemberListResponse(members=[MembershipOut.from_membership(member) for member in members])


@router.post(
    "/api/organizations/{organization_id}/members",
    response_model=InviteMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
def invite_member(
    organization_id: str,
    payload: InviteMemberRequest,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> InviteMemberResponse:
    try:
        outcome = licensing_services.invite_or_add_member(ctx, organization_id, payload.email, payload.role)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return InviteMemberResponse.from_outcome(outcome)


@router.delete("/api/organizations/{organization_id}/members/{membership_id}", response_model=MembershipOut)
def remove_member(
    organization_id: str,
    membership_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> MembershipOut:
    engine = licensing_services.get_reconciliation_engine()
    try:
        membership = engine.remove_member(ctx, organization_id, membership_id)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return MembershipOut.from_membership(membership)


@router.post(
    "/api/organizations/{organization_id}/members/{membership_id}/reactivate",
    response_model=MembershipOut,
)
def reactivate_member(
    organization_id: str,
    membership_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> MembershipOut:
    engine = licensing_services.get_reconciliation_engine()
    try:
        membership = engine.reactivate_member(ctx, organization_id, membership_id)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return MembershipOut.from_membership(membership)


@router.get("/api/organizations/{organization_id}/seats", response_model=SeatAvailabilityResponse)
def seat_availability(
    organization_id: str,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> SeatAvailabilityResponse:
    engine = licensing_services.get_reconciliation_engine()
    try:
        engine.require_admin(ctx, organization_id)
        availability = engine.seat_availability(organization_id)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return SeatAvailabilityResponse.from_availability(availability)


@router.post("/api/invitations/inspect", response_model=InvitationDetailsResponse)
def inspect_invitation(payload: InvitationTokenRequest) -> InvitationDetailsResponse:
    engine = licensing_services.get_reconciliation_engine()
    try:
        details = engine.inspect_invitation(payload.token)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return InvitationDetailsResponse.from_details(details)


@router.post("/api/invitations/accept", response_model=InvitationAcceptedResponse)
def accept_invitation(
    payload: InvitationTokenRequest,
    *,
    ctx: RequestContext = Depends(get_request_context),
) -> InvitationAcceptedResponse:
    engine = licensing_services.get_reconciliation_engine()
    try:
        outcome = engine.redeem_invitation(identity_from_context(ctx), payload.token)
    except ReconciliationError as exc:
        raise exc.to_http_exception() from exc
    return InvitationAcceptedResponse.from_outcome(outcome)
