from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict

import pytest
from fastapi import HTTPException

from seatledger import scheduler
from seatledger.app.billing.scheduled_changes import DeferredChangeScheduler
from seatledger.app.billing.signature import build_signature_header
from seatledger.app.errors import PreconditionFailure
from seatledger.app.organizations.models import Membership, MembershipRole, MembershipStatus, RenewalAction
from seatledger.app.reconciliation import RequestContext
from seatledger.app.routes import admin as admin_routes
from seatledger.app.routes import billing as billing_routes
from seatledger.app.routes import licenses as license_routes
from seatledger.app.routes import members as member_routes
from seatledger.app.schemas.licenses import ScheduleChangeRequest
from seatledger.app.schemas.members import InviteMemberRequest, MemberListResponse
from seatledger.app.services import licensing as licensing_services
from seatledger.licensing_config import load_licensing_config

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
ADMIN_CTX = RequestContext(user_id="u-admin", email="admin@example.com", name="Ada Admin")


@pytest.fixture()
def wired(monkeypatch, engine, store, account_repository):
    monkeypatch.setattr(licensing_services, "get_reconciliation_engine", lambda: engine)
    monkeypatch.setattr(licensing_services, "get_entitlement_store", lambda: store)
    monkeypatch.setattr(licensing_services, "get_account_repository", lambda: account_repository)
    organization = store.seed_organization("Acme", owner_id="u-admin")
    store.seed_membership(organization.id, "u-admin", email="admin@example.com", role=MembershipRole.ADMIN)
    store.seed_pool(organization.id, total=3, expires_at=FIXED_NOW + timedelta(days=365))
    return organization


def _use_config(monkeypatch, **env: str) -> None:
    config = load_licensing_config(env)
    monkeypatch.setattr(licensing_services, "get_licensing_config", lambda: config)


def test_list_members_returns_memberships(monkeypatch):
    captured: Dict[str, object] = {}
    member = Membership(
        id="m-1",
        organization_id="org-1",
        user_id="u-1",
        email="one@example.com",
        status=MembershipStatus.ACTIVE,
        has_license=True,
    )

    def fake_list_members(ctx, organization_id):
        captured["user_id"] = ctx.user_id
        captured["organization_id"] = organization_id
        return [member]

    monkeypatch.setattr(licensing_services, "list_members", fake_list_members)

    response = member_routes.list_members("org-1", ctx=ADMIN_CTX)

    assert isinstance(response, MemberListResponse)
    assert [item.id for item in response.members] == ["m-1"]
    assert response.members[0].has_license is True
    assert captured == {"user_id": "u-admin", "organization_id": "org-1"}


def test_domain_errors_become_http_errors(monkeypatch):
    def fake_list_members(ctx, organization_id):
        raise PreconditionFailure(code="ADMIN_REQUIRED", message="Only organization admins can manage members")

    monkeypatch.setattr(licensing_services, "list_members", fake_list_members)

    with pytest.raises(HTTPException) as excinfo:
        member_routes.list_members("org-1", ctx=ADMIN_CTX)

    assert excinfo.value.status_code == 403
    assert excinfo.value.detail == {
        "error": "ADMIN_REQUIRED",
        "message": "Only organization admins can manage members",
    }


def test_invite_unknown_email_sends_invitation(wired, invitation_notifier):
    response = member_routes.invite_member(
        wired.id,
        InviteMemberRequest(email="New@Example.com"),
        ctx=ADMIN_CTX,
    )

    assert response.added_directly is False
    assert response.email_sent is True
    assert response.membership.status == MembershipStatus.PENDING
    assert response.membership.email == "new@example.com"
    assert len(invitation_notifier.sent) == 1


def test_invite_existing_account_seats_it_directly(wired, store, account_factory, invitation_notifier):
    account = account_factory("known@example.com")

    response = member_routes.invite_member(wired.id, InviteMemberRequest(email="known@example.com"), ctx=ADMIN_CTX)

    assert response.added_directly is True
    assert response.membership.user_id == account.id
    assert response.membership.has_license is True
    assert invitation_notifier.sent == []
    assert store.get_license_pool(wired.id).used_licenses == 2


def test_remove_member_frees_seat(wired, engine, store):
    member = engine.add_member(ADMIN_CTX, wired.id, "u-2", email="two@example.com").membership

    response = member_routes.remove_member(wired.id, member.id, ctx=ADMIN_CTX)

    assert response.status == MembershipStatus.INACTIVE
    assert response.has_license is False
    assert store.get_license_pool(wired.id).used_licenses == 1


def test_non_admin_cannot_read_seats(wired):
    member_ctx = RequestContext(user_id="u-outsider", email="outsider@example.com")

    with pytest.raises(HTTPException) as excinfo:
        member_routes.seat_availability(wired.id, ctx=member_ctx)

    assert excinfo.value.status_code == 403


def test_seat_availability_for_admin(wired):
    response = member_routes.seat_availability(wired.id, ctx=ADMIN_CTX)

    assert response.total_licenses == 3
    assert response.used_licenses == 1
    assert response.available_licenses == 2
    assert response.can_add_member is True


def test_job_trigger_requires_configured_secret(monkeypatch):
    _use_config(monkeypatch)

    with pytest.raises(HTTPException) as excinfo:
        admin_routes.run_job("license-expiry", authorization="Bearer anything")

    assert excinfo.value.status_code == 503


@pytest.mark.parametrize("authorization", [None, "Bearer wrong", "Basic s3cret", "s3cret"])
def test_job_trigger_rejects_bad_credentials(monkeypatch, authorization):
    _use_config(monkeypatch, CLEANUP_SECRET_KEY="s3cret")

    with pytest.raises(HTTPException) as excinfo:
        admin_routes.run_job("license-expiry", authorization=authorization)

    assert excinfo.value.status_code == 401


def test_job_trigger_unknown_job(monkeypatch):
    _use_config(monkeypatch, CLEANUP_SECRET_KEY="s3cret")

    with pytest.raises(HTTPException) as excinfo:
        admin_routes.run_job("reindex", authorization="Bearer s3cret")

    assert excinfo.value.status_code == 404


def test_job_trigger_runs_job(monkeypatch):
    _use_config(monkeypatch, CLEANUP_SECRET_KEY="s3cret")
    captured = {}

    def fake_run(job):
        captured["job"] = job
        return SimpleNamespace(model_dump=lambda mode: {"notifications_sent": 2})

    monkeypatch.setattr(scheduler, "run_license_job", fake_run)

    response = admin_routes.run_job("license-expiry", authorization="Bearer s3cret")

    assert captured["job"] == scheduler.LicenseJob.LICENSE_EXPIRY
    assert response.job == "license-expiry"
    assert response.report == {"notifications_sent": 2}


def _purchase_body() -> bytes:
    return json.dumps(
        {
            "event_type": "transaction.completed",
            "data": {
                "id": "txn_route",
                "items": [{"quantity": 2}],
                "custom_data": {"userId": "u-buyer", "email": "buyer@example.com"},
            },
        }
    ).encode("utf-8")


def test_webhook_processes_signed_purchase(monkeypatch, engine):
    _use_config(monkeypatch, PADDLE_WEBHOOK_SECRET="whsec_route")
    monkeypatch.setattr(licensing_services, "get_reconciliation_engine", lambda: engine)
    body = _purchase_body()

    first = billing_routes.process_webhook(body, build_signature_header("whsec_route", body))
    replay = billing_routes.process_webhook(body, build_signature_header("whsec_route", body))

    assert first.status.value == "processed"
    assert first.transaction_id == "txn_route"
    assert first.organization_id is not None
    assert replay.status.value == "duplicate"


def test_webhook_rejects_bad_signature(monkeypatch, engine, store):
    _use_config(monkeypatch, PADDLE_WEBHOOK_SECRET="whsec_route")
    monkeypatch.setattr(licensing_services, "get_reconciliation_engine", lambda: engine)
    body = _purchase_body()

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.process_webhook(body, build_signature_header("not-the-secret", body))

    assert excinfo.value.status_code == 401
    assert store.organizations == {}


def test_webhook_without_secret_is_server_error(monkeypatch):
    _use_config(monkeypatch)

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.process_webhook(b"{}", None)

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail["error"] == "WEBHOOK_NOT_CONFIGURED"


@pytest.fixture()
def change_scheduler(monkeypatch, wired, store, engine, payment_provider, clock):
    change_scheduler = DeferredChangeScheduler(store=store, engine=engine, provider=payment_provider, clock=clock)
    monkeypatch.setattr(licensing_services, "get_change_scheduler", lambda: change_scheduler)
    return change_scheduler


def test_read_license_returns_pool(wired):
    response = license_routes.read_license(wired.id, ctx=ADMIN_CTX)

    assert (response.total_licenses, response.used_licenses, response.available_licenses) == (3, 1, 2)
    assert response.model_dump(by_alias=True)["totalLicenses"] == 3


def test_read_license_requires_admin(wired, store):
    store.seed_membership(wired.id, "u-member", email="member@example.com")
    member_ctx = RequestContext(user_id="u-member", email="member@example.com")

    with pytest.raises(HTTPException) as excinfo:
        license_routes.read_license(wired.id, ctx=member_ctx)

    assert excinfo.value.status_code == 403


def test_read_license_without_pool_is_not_found(monkeypatch, engine, store):
    monkeypatch.setattr(licensing_services, "get_reconciliation_engine", lambda: engine)
    monkeypatch.setattr(licensing_services, "get_entitlement_store", lambda: store)
    organization = store.seed_organization("Bare", owner_id="u-admin")
    store.seed_membership(organization.id, "u-admin", email="admin@example.com", role=MembershipRole.ADMIN)

    with pytest.raises(HTTPException) as excinfo:
        license_routes.read_license(organization.id, ctx=ADMIN_CTX)

    assert excinfo.value.status_code == 404
    assert excinfo.value.detail["error"] == "LICENSE_NOT_FOUND"


def test_schedule_and_cancel_change(change_scheduler, wired):
    effective = FIXED_NOW + timedelta(days=10)

    scheduled = license_routes.schedule_change(
        wired.id,
        ScheduleChangeRequest(newQuantity=5, effectiveDate=effective),
        ctx=ADMIN_CTX,
    )
    cancelled = license_routes.cancel_scheduled_change(wired.id, ctx=ADMIN_CTX)

    assert (scheduled.scheduled_total_licenses, scheduled.scheduled_change_at) == (5, effective)
    assert cancelled.scheduled_total_licenses is None
    assert cancelled.total_licenses == 3


def test_schedule_without_quantity_is_bad_request(change_scheduler, wired):
    with pytest.raises(HTTPException) as excinfo:
        license_routes.schedule_change(wired.id, ScheduleChangeRequest(), ctx=ADMIN_CTX)

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["error"] == "MISSING_QUANTITY"


def test_history_lists_committed_changes(change_scheduler, wired):
    license_routes.schedule_change(
        wired.id,
        ScheduleChangeRequest(newQuantity=6, effectiveDate=FIXED_NOW + timedelta(days=1)),
        ctx=ADMIN_CTX,
    )
    change_scheduler.apply_due_changes(FIXED_NOW + timedelta(days=1))

    response = license_routes.renewal_history(wired.id, ctx=ADMIN_CTX)

    assert [entry.action for entry in response.entries] == [RenewalAction.QUANTITY_INCREASED]
    assert (response.entries[0].previous_quantity, response.entries[0].new_quantity) == (3, 6)
