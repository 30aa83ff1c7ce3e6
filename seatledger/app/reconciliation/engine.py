"""Seat reconciliation: joins, purchases, invitations and seat releases."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from ..billing.events import PaymentEvent, TransactionCompleted, parse_payment_body
from ..billing.signature import verify
from ..errors import (
    TOKEN_NOT_FOUND,
    AuthenticationFailure,
    PreconditionFailure,
    no_available_licenses,
)
from ..organizations.models import (
    LicensePool,
    LicensePurchase,
    LicenseType,
    Membership,
    MembershipRole,
    MembershipStatus,
    Organization,
    RenewalAction,
    RenewalHistoryEntry,
    ScheduledChangeCommit,
    SeatTransition,
)
from ..organizations.store import EntitlementStore, SeatCapacityExceeded
from ..tokens.models import TokenPurpose
from ..tokens.service import TokenService
from .context import AccountIdentity, RequestContext
from .models import (
    InvitationDetails,
    InvitationOutcome,
    ProvisioningOutcome,
    PurchaseOutcome,
    ScheduledChangeApplied,
    SeatAuditAction,
    SeatAuditEvent,
    SeatAvailability,
    WebhookOutcome,
    WebhookStatus,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class AuditLogger(Protocol):
    """Interface for emitting seat audit events."""

    def log(self, event: SeatAuditEvent) -> None:
        ...


class InvitationNotifier(Protocol):
    """Delivers the one invitation email carrying the plaintext token."""

    def send_invitation(
        self,
        membership: Membership,
        organization: Organization,
        plain_token: str,
        *,
        inviter_name: str,
        expires_at: datetime,
    ) -> bool:
        ...


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_email(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


def default_organization_name(email: str) -> str:
    return f"{email}'s Organization"


def select_members_to_unassign(memberships: Sequence[Membership], count: int) -> List[Membership]:
    """Pick ``count`` seat holders to release: regular members before admins, newest first."""

    if count <= 0:
        return []
    holders = [membership for membership in memberships if membership.occupies_seat]
    holders.sort(
        key=lambda membership: (
            membership.is_admin,
            -(membership.accepted_at or _EPOCH).timestamp(),
        )
    )
    return holders[:count]


@dataclass
class ReconciliationEngine:
    """Keeps every organization's seat counter equal to its licensed active members."""

    store: EntitlementStore
    token_service: TokenService
    audit_logger: Optional[AuditLogger] = None
    invitation_notifier: Optional[InvitationNotifier] = None
    clock: Optional[Callable[[], datetime]] = None
    trial_days: int = 14
    license_term: timedelta = timedelta(days=365)

    # ------------------------------------------------------------------
    # Seat availability

    def seat_availability(self, organization_id: str) -> SeatAvailability:
        organization = self._require_organization(organization_id)
        if organization.is_trial:
            return SeatAvailability(
                organization_id=organization_id,
                is_trial=True,
                reason_code="TRIAL_MODE",
                message="Trial organizations cannot add members. Purchase licenses to invite your team.",
            )
        pool = self.store.get_license_pool(organization_id)
        if pool is None:
            return SeatAvailability(
                organization_id=organization_id,
                is_trial=False,
                reason_code="NO_LICENSE",
                message="No license found for organization",
            )
        now = _current_time(self.clock)
        base = dict(
            organization_id=organization_id,
            is_trial=False,
            total_licenses=pool.total_licenses,
            used_licenses=pool.used_licenses,
            available_licenses=pool.available_licenses,
        )
        if pool.is_expired(now):
            return SeatAvailability(
                **base,
                is_expired=True,
                reason_code="LICENSE_EXPIRED",
                message="License has expired. Please renew to add members.",
            )
        if pool.available_licenses <= 0:
            return SeatAvailability(
                **base,
                reason_code="NO_AVAILABLE_LICENSES",
                message="No available licenses. Purchase more licenses to add members.",
            )
        return SeatAvailability(**base, can_add_member=True)

    # ------------------------------------------------------------------
    # Signup and sign-in provisioning

    def provision_confirmed_signup(
        self,
        identity: AccountIdentity,
        *,
        organization_name: Optional[str] = None,
        invitation_token: Optional[str] = None,
    ) -> ProvisioningOutcome:
        """Place a user whose email is confirmed: redeem their invitation or found/join an organization."""

        invitation_error: Optional[str] = None
        if invitation_token:
            try:
                return self.redeem_invitation(identity, invitation_token)
            except PreconditionFailure as exc:
                logger.warning(
                    "Invitation could not be applied during signup",
                    extra={"user_id": identity.user_id, "error_code": exc.code},
                )
                invitation_error = exc.code

        active = self.store.list_active_memberships_for_user(identity.user_id)
        if active:
            outcome = self._outcome_for_existing(active[0])
        else:
            name = (organization_name or "").strip() or default_organization_name(identity.email)
            outcome = self._join_or_create(identity, name, personal_trial=False)
        if invitation_error is None:
            return outcome
        return outcome.model_copy(update={"invitation_error": invitation_error})

    def consume_pending_organizations(self, identity: AccountIdentity) -> Optional[ProvisioningOutcome]:
        """Turn parked signup data into a membership on first confirmed sign-in."""

        pendings = self.store.list_pending_organizations(identity.email)
        outcome: Optional[ProvisioningOutcome] = None
        for pending in pendings:
            if outcome is None:
                active = self.store.list_active_memberships_for_user(identity.user_id)
                if active:
                    outcome = self._outcome_for_existing(active[0])
                else:
                    try:
                        outcome = self._join_or_create(identity, pending.organization_name, personal_trial=True)
                    except PreconditionFailure as exc:
                        logger.warning(
                            "Parked organization could not be joined",
                            extra={
                                "user_id": identity.user_id,
                                "organization_name": pending.organization_name,
                                "error_code": exc.code,
                            },
                        )
            self.store.delete_pending_organization(pending.id)
        return outcome

    def provision_sign_in(self, identity: AccountIdentity) -> ProvisioningOutcome:
        """Resolve where a confirmed user lands, creating a personal trial when there is nowhere else."""

        outcome = self.consume_pending_organizations(identity)
        if outcome is not None:
            return outcome
        active = self.store.list_active_memberships_for_user(identity.user_id)
        if len(active) > 1:
            # Left over when a move into a real organization was interrupted.
            self.retire_personal_trial(identity.user_id)
            active = self.store.list_active_memberships_for_user(identity.user_id)
        if active:
            return self._outcome_for_existing(active[0])
        return self._join_or_create(identity, default_organization_name(identity.email), personal_trial=True)

    def _outcome_for_existing(self, membership: Membership) -> ProvisioningOutcome:
        return ProvisioningOutcome(
            organization=self.store.get_organization(membership.organization_id),
            membership=membership,
        )

    def _join_or_create(self, identity: AccountIdentity, name: str, *, personal_trial: bool) -> ProvisioningOutcome:
        now = _current_time(self.clock)
        organization = self.store.find_organization_by_name(name)
        if organization is None:
            organization_id = str(uuid4())
            founder = Membership(
                id=str(uuid4()),
                organization_id=organization_id,
                user_id=identity.user_id,
                email=identity.email,
                role=MembershipRole.ADMIN,
                status=MembershipStatus.ACTIVE,
                has_license=True,
                invited_at=now,
                accepted_at=now,
            )
            organization = self.store.create_organization(
                Organization(
                    id=organization_id,
                    name=name,
                    owner_id=identity.user_id,
                    is_trial=True,
                    trial_expires_at=now + timedelta(days=self.trial_days),
                    is_personal_trial=personal_trial,
                    created_at=now,
                    updated_at=now,
                ),
                founder=founder,
            )
            self._audit(
                SeatAuditAction.ORGANIZATION_CREATED,
                organization.id,
                subject_id=identity.user_id,
                actor_id=identity.user_id,
                metadata={"personal_trial": str(personal_trial).lower()},
            )
            logger.info(
                "Created organization",
                extra={"organization_id": organization.id, "user_id": identity.user_id, "personal_trial": personal_trial},
            )
            membership = self.store.find_membership(organization.id, user_id=identity.user_id) or founder
            return ProvisioningOutcome(organization=organization, membership=membership, created_organization=True)

        membership = self._join_existing(identity, organization, now)
        retired = [] if personal_trial else self._retire_personal_trials(identity.user_id, keep_organization_id=organization.id)
        return ProvisioningOutcome(
            organization=organization,
            membership=membership,
            retired_organization_ids=retired,
        )

    def _join_existing(self, identity: AccountIdentity, organization: Organization, now: datetime) -> Membership:
        existing = self.store.find_membership(organization.id, user_id=identity.user_id)
        if existing is not None and existing.occupies_seat:
            return existing
        if not organization.is_trial:
            availability = self.seat_availability(organization.id)
            if not availability.can_add_member:
                raise PreconditionFailure(code=availability.reason_code, message=availability.message)
        self._ensure_single_active_membership(identity.user_id, organization.id)
        membership = Membership(
            id=existing.id if existing else str(uuid4()),
            organization_id=organization.id,
            user_id=identity.user_id,
            email=identity.email,
            role=existing.role if existing else MembershipRole.MEMBER,
            status=MembershipStatus.ACTIVE,
            has_license=True,
            invited_at=(existing.invited_at if existing else None) or now,
            accepted_at=now,
        )
        try:
            upsert = self.store.insert_or_update_membership(membership, enforce_capacity=True)
        except SeatCapacityExceeded as exc:
            raise no_available_licenses() from exc
        self._audit(
            SeatAuditAction.ADDED,
            organization.id,
            subject_id=identity.user_id,
            actor_id=identity.user_id,
            metadata={"seat_delta": str(upsert.seat_delta)},
        )
        return upsert.membership

    # ------------------------------------------------------------------
    # Payment callbacks

    def handle_payment_callback(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        *,
        secret: str,
        tolerance_seconds: int = 0,
    ) -> WebhookOutcome:
        """Verify, parse and apply one provider callback."""

        now = _current_time(self.clock)
        if not verify(raw_body, signature_header, secret, tolerance_seconds=tolerance_seconds, now=now.timestamp()):
            logger.warning("Rejected payment callback with invalid signature")
            raise AuthenticationFailure(code="INVALID_SIGNATURE", message="Invalid signature")
        event = parse_payment_body(raw_body, received_at=now)
        return self.process_payment_event(event)

    def process_payment_event(self, event: PaymentEvent) -> WebhookOutcome:
        if isinstance(event, TransactionCompleted):
            outcome = self.apply_purchase(event)
            return WebhookOutcome(
                status=WebhookStatus.PROCESSED if outcome.applied else WebhookStatus.DUPLICATE,
                event_type=event.event_type,
                purchase=outcome,
            )
        logger.info("Ignoring payment event", extra={"event_type": event.event_type, "event_id": event.event_id})
        return WebhookOutcome(status=WebhookStatus.IGNORED, event_type=event.event_type)

    def apply_purchase(self, event: TransactionCompleted) -> PurchaseOutcome:
        """Credit a completed purchase. Replays of the same transaction change nothing."""

        organization, created = self._resolve_purchase_organization(event)
        credit = self.store.record_license_purchase(
            LicensePurchase(
                transaction_id=event.transaction_id,
                organization_id=organization.id,
                quantity=event.quantity,
                prorated=event.prorated,
                subscription_id=event.subscription_id,
                occurred_at=event.occurred_at,
                term_expires_at=event.occurred_at + self.license_term,
            )
        )
        if organization.is_trial or organization.is_personal_trial:
            organization = self.store.mark_organization_paid(organization.id) or organization
        membership = self._ensure_purchaser_seat(event, organization.id)
        retired = self._retire_personal_trials(event.user_id, keep_organization_id=organization.id)

        pool = self.store.get_license_pool(organization.id) or credit.pool
        if pool.used_licenses > pool.total_licenses:
            logger.warning(
                "Organization has more seats in use than purchased",
                extra={
                    "organization_id": organization.id,
                    "used_licenses": pool.used_licenses,
                    "total_licenses": pool.total_licenses,
                },
            )
        self._audit(
            SeatAuditAction.PURCHASE_APPLIED if credit.applied else SeatAuditAction.PURCHASE_REPLAYED,
            organization.id,
            subject_id=event.transaction_id,
            actor_id=event.user_id,
            metadata={"quantity": str(event.quantity), "prorated": str(event.prorated).lower()},
        )
        logger.info(
            "Reconciled purchase",
            extra={
                "organization_id": organization.id,
                "transaction_id": event.transaction_id,
                "quantity": event.quantity,
                "applied": credit.applied,
                "total_licenses": pool.total_licenses,
            },
        )
        return PurchaseOutcome(
            organization_id=organization.id,
            transaction_id=event.transaction_id,
            license=pool,
            membership=membership,
            applied=credit.applied,
            created_organization=created,
            retired_organization_ids=retired,
        )

    def _resolve_purchase_organization(self, event: TransactionCompleted) -> Tuple[Organization, bool]:
        if event.organization_id:
            organization = self.store.get_organization(event.organization_id)
            if organization is None:
                raise PreconditionFailure(code="ORGANIZATION_NOT_FOUND", message="Organization not found")
            others = [
                membership
                for membership in self.store.list_active_memberships_for_user(event.user_id)
                if membership.organization_id != organization.id
            ]
            for membership in others:
                other = self.store.get_organization(membership.organization_id)
                if other is not None and not other.is_personal_trial:
                    logger.warning(
                        "Purchaser is active in another organization",
                        extra={"user_id": event.user_id, "organization_id": organization.id, "other_organization_id": other.id},
                    )
            return organization, False

        for membership in self.store.list_active_memberships_for_user(event.user_id):
            organization = self.store.get_organization(membership.organization_id)
            if organization is not None and not organization.is_personal_trial:
                return organization, False

        now = _current_time(self.clock)
        email = _normalize_email(event.email)
        organization_id = str(uuid4())
        founder = Membership(
            id=str(uuid4()),
            organization_id=organization_id,
            user_id=event.user_id,
            email=email,
            role=MembershipRole.ADMIN,
            status=MembershipStatus.ACTIVE,
            has_license=True,
            invited_at=now,
            accepted_at=now,
        )
        name = (event.organization_name or "").strip() or default_organization_name(email or event.user_id)
        organization = self.store.create_organization(
            Organization(
                id=organization_id,
                name=name,
                owner_id=event.user_id,
                is_trial=False,
                is_personal_trial=False,
                created_at=now,
                updated_at=now,
            ),
            founder=founder,
        )
        self._audit(SeatAuditAction.ORGANIZATION_CREATED, organization.id, subject_id=event.user_id, actor_id=event.user_id)
        return organization, True

    def _ensure_purchaser_seat(self, event: TransactionCompleted, organization_id: str) -> Membership:
        existing = self.store.find_membership(organization_id, user_id=event.user_id)
        if existing is not None and existing.occupies_seat and existing.is_admin:
            return existing
        now = _current_time(self.clock)
        membership = Membership(
            id=existing.id if existing else str(uuid4()),
            organization_id=organization_id,
            user_id=event.user_id,
            email=_normalize_email(event.email) or (existing.email if existing else None),
            role=MembershipRole.ADMIN,
            status=MembershipStatus.ACTIVE,
            has_license=True,
            invited_by=existing.invited_by if existing else None,
            invited_at=(existing.invited_at if existing else None) or now,
            accepted_at=(existing.accepted_at if existing else None) or now,
        )
        try:
            return self.store.insert_or_update_membership(membership, enforce_capacity=True).membership
        except SeatCapacityExceeded:
            logger.warning(
                "No free seat for purchaser; membership left unlicensed",
                extra={"organization_id": organization_id, "user_id": event.user_id},
            )
            unlicensed = membership.model_copy(update={"has_license": False})
            return self.store.insert_or_update_membership(unlicensed, enforce_capacity=False).membership

    # ------------------------------------------------------------------
    # Membership management

    def invite_member(
        self,
        ctx: RequestContext,
        organization_id: str,
        email: str,
        role: MembershipRole = MembershipRole.MEMBER,
    ) -> InvitationOutcome:
        """Invite an email address that has no account yet; the seat is taken on acceptance."""

        admin = self.require_admin(ctx, organization_id)
        organization = self._require_organization(organization_id)
        self._require_free_seat(organization_id)
        normalized = _normalize_email(email)
        now = _current_time(self.clock)

        existing = self.store.find_membership(organization_id, email=normalized)
        if existing is not None:
            if existing.status == MembershipStatus.ACTIVE:
                raise PreconditionFailure(code="ALREADY_ACTIVE", message="User is already an active member")
            if (
                existing.status == MembershipStatus.PENDING
                and existing.invitation_expires_at is not None
                and existing.invitation_expires_at > now
            ):
                raise PreconditionFailure(code="ALREADY_INVITED", message="An invitation is already pending for this email")

        membership_id = existing.id if existing else str(uuid4())
        issued = self.token_service.issue(TokenPurpose.INVITATION, membership_id, email=normalized)
        membership = Membership(
            id=membership_id,
            organization_id=organization_id,
            user_id=existing.user_id if existing else None,
            email=normalized,
            role=role,
            status=MembershipStatus.PENDING,
            has_license=False,
            invite_token_hash=issued.record.token_hash,
            invitation_sent_at=now,
            invitation_expires_at=issued.expires_at,
            invited_by=admin.user_id,
            invited_at=now,
        )
        stored = self.store.insert_or_update_membership(membership, enforce_capacity=True).membership
        self._audit(
            SeatAuditAction.INVITED,
            organization_id,
            subject_id=normalized,
            actor_id=ctx.user_id,
            metadata={"role": role.value},
        )

        email_sent = False
        if self.invitation_notifier is not None:
            try:
                email_sent = self.invitation_notifier.send_invitation(
                    stored,
                    organization,
                    issued.plain_token,
                    inviter_name=ctx.display_name,
                    expires_at=issued.expires_at,
                )
            except Exception:
                logger.exception("Failed to send invitation email", extra={"membership_id": stored.id})
        return InvitationOutcome(membership=stored, email_sent=email_sent, expires_at=issued.expires_at)

    def add_member(
        self,
        ctx: RequestContext,
        organization_id: str,
        user_id: str,
        *,
        email: Optional[str] = None,
        role: MembershipRole = MembershipRole.MEMBER,
    ) -> InvitationOutcome:
        """Seat an existing account directly, without an invitation round trip."""

        self.require_admin(ctx, organization_id)
        self._require_organization(organization_id)
        self._require_free_seat(organization_id)
        existing = self.store.find_membership(organization_id, user_id=user_id)
        if existing is not None and existing.occupies_seat:
            raise PreconditionFailure(code="ALREADY_ACTIVE", message="User is already an active member")
        membership = self._seat_account(
            ctx,
            organization_id,
            user_id,
            existing=existing,
            email=email,
            role=role,
            action=SeatAuditAction.ADDED,
        )
        return InvitationOutcome(membership=membership, added_directly=True)

    def reactivate_member(self, ctx: RequestContext, organization_id: str, membership_id: str) -> Membership:
        """Give a removed (or unassigned) member their seat back."""

        self.require_admin(ctx, organization_id)
        existing = self.store.get_membership(membership_id)
        if existing is None or existing.organization_id != organization_id or existing.user_id is None:
            raise PreconditionFailure(code="MEMBERSHIP_NOT_FOUND", message="Membership not found")
        if existing.occupies_seat:
            raise PreconditionFailure(code="ALREADY_ACTIVE", message="User is already an active member")
        self._require_free_seat(organization_id)
        return self._seat_account(
            ctx,
            organization_id,
            existing.user_id,
            existing=existing,
            email=existing.email,
            role=existing.role,
            action=SeatAuditAction.REACTIVATED,
        )

    def _seat_account(
        self,
        ctx: RequestContext,
        organization_id: str,
        user_id: str,
        *,
        existing: Optional[Membership],
        email: Optional[str],
        role: MembershipRole,
        action: SeatAuditAction,
    ) -> Membership:
        self._ensure_single_active_membership(user_id, organization_id)
        now = _current_time(self.clock)
        try:
            if existing is None:
                stored = self.store.insert_or_update_membership(
                    Membership(
                        id=str(uuid4()),
                        organization_id=organization_id,
                        user_id=user_id,
                        email=_normalize_email(email),
                        role=role,
                        status=MembershipStatus.ACTIVE,
                        has_license=True,
                        invited_by=ctx.user_id,
                        invited_at=now,
                        accepted_at=now,
                    ),
                    enforce_capacity=True,
                ).membership
            else:
                stored = self.store.apply_seat_transition(
                    SeatTransition(
                        membership_id=existing.id,
                        organization_id=organization_id,
                        expected_statuses=(existing.status,),
                        status=MembershipStatus.ACTIVE,
                        has_license=True,
                        role=role,
                        user_id=user_id,
                        accepted_at=now,
                        clear_invitation=True,
                    )
                )
        except SeatCapacityExceeded as exc:
            raise no_available_licenses() from exc
        if stored is None:
            raise PreconditionFailure(code="MEMBERSHIP_CHANGED", message="Membership changed concurrently; retry")
        if existing is not None and existing.status == MembershipStatus.PENDING:
            self.token_service.revoke(TokenPurpose.INVITATION, existing.id)
        self._retire_personal_trials(user_id, keep_organization_id=organization_id)
        self._audit(action, organization_id, subject_id=user_id, actor_id=ctx.user_id, metadata={"role": role.value})
        return stored

    def inspect_invitation(self, plain_token: str) -> InvitationDetails:
        record = self.token_service.inspect(TokenPurpose.INVITATION, plain_token)
        membership = self._pending_membership_for(record.subject_id)
        organization = self._require_organization(membership.organization_id)
        return InvitationDetails(
            membership_id=membership.id,
            organization_id=organization.id,
            organization_name=organization.name,
            email=membership.email,
            role=membership.role,
            invited_by=membership.invited_by,
            expires_at=record.expires_at,
        )

    def redeem_invitation(self, identity: AccountIdentity, plain_token: str) -> ProvisioningOutcome:
        """Accept an invitation. The token is consumed only if the seat is actually taken."""

        record = self.token_service.inspect(TokenPurpose.INVITATION, plain_token)
        membership = self._pending_membership_for(record.subject_id)
        if membership.email and membership.email != _normalize_email(identity.email):
            raise PreconditionFailure(
                code="INVITATION_EMAIL_MISMATCH",
                message="This invitation was sent to a different email address",
            )
        organization = self._require_organization(membership.organization_id)
        self._require_free_seat(organization.id)
        self._ensure_single_active_membership(identity.user_id, organization.id)

        duplicate = self.store.find_membership(organization.id, user_id=identity.user_id)
        if duplicate is not None and duplicate.id != membership.id:
            if duplicate.occupies_seat:
                raise PreconditionFailure(code="ALREADY_ACTIVE", message="User is already an active member")
            target_id = duplicate.id
            expected = (duplicate.status,)
        else:
            target_id = membership.id
            expected = (MembershipStatus.PENDING,)

        consumed = self.token_service.redeem(TokenPurpose.INVITATION, plain_token)
        now = _current_time(self.clock)
        try:
            activated = self.store.apply_seat_transition(
                SeatTransition(
                    membership_id=target_id,
                    organization_id=organization.id,
                    expected_statuses=expected,
                    status=MembershipStatus.ACTIVE,
                    has_license=True,
                    role=membership.role,
                    user_id=identity.user_id,
                    accepted_at=now,
                    clear_invitation=True,
                )
            )
        except SeatCapacityExceeded as exc:
            self.token_service.release(consumed)
            raise no_available_licenses() from exc
        if activated is None:
            raise PreconditionFailure(code=TOKEN_NOT_FOUND, message="Invitation is no longer valid")
        if target_id != membership.id:
            self.store.apply_seat_transition(
                SeatTransition(
                    membership_id=membership.id,
                    organization_id=organization.id,
                    expected_statuses=(MembershipStatus.PENDING,),
                    status=MembershipStatus.INACTIVE,
                    has_license=False,
                    removed_at=now,
                    clear_invitation=True,
                    enforce_capacity=False,
                )
            )

        retired = self._retire_personal_trials(identity.user_id, keep_organization_id=organization.id)
        self._audit(
            SeatAuditAction.ACCEPTED,
            organization.id,
            subject_id=identity.user_id,
            actor_id=identity.user_id,
            metadata={"invited_by": membership.invited_by or ""},
        )
        logger.info(
            "Invitation accepted",
            extra={"organization_id": organization.id, "membership_id": activated.id, "user_id": identity.user_id},
        )
        return ProvisioningOutcome(
            organization=organization,
            membership=activated,
            via_invitation=True,
            retired_organization_ids=retired,
        )

    def remove_member(self, ctx: RequestContext, organization_id: str, membership_id: str) -> Membership:
        """Remove a member or withdraw a pending invitation. Repeating the call is a no-op."""

        self.require_admin(ctx, organization_id)
        target = self.store.get_membership(membership_id)
        if target is None or target.organization_id != organization_id:
            raise PreconditionFailure(code="MEMBERSHIP_NOT_FOUND", message="Membership not found")
        if target.user_id is not None and target.user_id == ctx.user_id:
            raise PreconditionFailure(code="CANNOT_REMOVE_SELF", message="Admins cannot remove themselves")
        if target.status == MembershipStatus.INACTIVE:
            return target

        now = _current_time(self.clock)
        removed = self.store.apply_seat_transition(
            SeatTransition(
                membership_id=target.id,
                organization_id=organization_id,
                expected_statuses=(target.status,),
                status=MembershipStatus.INACTIVE,
                has_license=False,
                removed_at=now,
                clear_invitation=target.status == MembershipStatus.PENDING,
                enforce_capacity=False,
            )
        )
        if removed is None:
            return self.store.get_membership(membership_id) or target
        if target.status == MembershipStatus.PENDING:
            self.token_service.revoke(TokenPurpose.INVITATION, target.id)
            action = SeatAuditAction.INVITATION_REVOKED
        else:
            action = SeatAuditAction.REMOVED
        self._audit(action, organization_id, subject_id=target.user_id or target.email, actor_id=ctx.user_id)
        return removed

    # ------------------------------------------------------------------
    # Scheduled changes and personal trials

    def commit_scheduled_change(self, pool: LicensePool) -> Optional[ScheduledChangeApplied]:
        """Apply the local half of a due change. ``None`` means another worker already did."""

        if not pool.has_scheduled_change:
            return None
        new_total = pool.scheduled_total_licenses
        seat_holders = [
            membership
            for membership in self.store.list_memberships(pool.organization_id, statuses=[MembershipStatus.ACTIVE])
            if membership.occupies_seat
        ]
        released = select_members_to_unassign(seat_holders, len(seat_holders) - new_total)
        if new_total == 0:
            action = RenewalAction.CANCELLED
        elif new_total < pool.total_licenses:
            action = RenewalAction.QUANTITY_REDUCED
        else:
            action = RenewalAction.QUANTITY_INCREASED
        committed = self.store.commit_scheduled_change(
            ScheduledChangeCommit(
                license_id=pool.id,
                organization_id=pool.organization_id,
                expected_change_at=pool.scheduled_change_at,
                expected_scheduled_total=new_total,
                new_total=new_total,
                release_membership_ids=tuple(membership.id for membership in released),
                license_type=LicenseType.CANCELLED if new_total == 0 else pool.license_type,
                history=RenewalHistoryEntry(
                    organization_id=pool.organization_id,
                    license_id=pool.id,
                    action=action,
                    previous_quantity=pool.total_licenses,
                    new_quantity=new_total,
                    previous_expires_at=pool.expires_at,
                    new_expires_at=pool.expires_at,
                    note=pool.scheduled_change_note,
                    created_at=_current_time(self.clock),
                ),
            )
        )
        if committed is None:
            return None
        for membership in released:
            self._audit(
                SeatAuditAction.SEAT_UNASSIGNED,
                pool.organization_id,
                subject_id=membership.user_id or membership.id,
                metadata={"reason": action.value},
            )
        self._audit(
            SeatAuditAction.SCHEDULED_CHANGE_APPLIED,
            pool.organization_id,
            subject_id=pool.id,
            metadata={"previous": str(pool.total_licenses), "new": str(new_total), "released": str(len(released))},
        )
        return ScheduledChangeApplied(
            license=committed,
            released_membership_ids=[membership.id for membership in released],
        )

    def retire_personal_trial(self, user_id: str) -> List[str]:
        """Drop the user's personal-trial membership once they belong to a real organization."""

        keep = None
        for membership in self.store.list_active_memberships_for_user(user_id):
            organization = self.store.get_organization(membership.organization_id)
            if organization is not None and not organization.is_personal_trial:
                keep = organization.id
                break
        if keep is None:
            return []
        return self._retire_personal_trials(user_id, keep_organization_id=keep)

    def _retire_personal_trials(self, user_id: str, *, keep_organization_id: str) -> List[str]:
        retired: List[str] = []
        now = _current_time(self.clock)
        for membership in self.store.list_active_memberships_for_user(user_id):
            if membership.organization_id == keep_organization_id:
                continue
            organization = self.store.get_organization(membership.organization_id)
            if organization is None or not organization.is_personal_trial:
                continue
            self.store.apply_seat_transition(
                SeatTransition(
                    membership_id=membership.id,
                    organization_id=organization.id,
                    expected_statuses=(MembershipStatus.ACTIVE,),
                    status=MembershipStatus.INACTIVE,
                    has_license=False,
                    removed_at=now,
                    enforce_capacity=False,
                )
            )
            if self.store.delete_orphaned_personal_trial(organization.id):
                retired.append(organization.id)
                self._audit(SeatAuditAction.PERSONAL_TRIAL_RETIRED, organization.id, subject_id=user_id)
                logger.info(
                    "Retired personal trial organization",
                    extra={"organization_id": organization.id, "user_id": user_id},
                )
        return retired

    # ------------------------------------------------------------------
    # Helpers

    def _require_organization(self, organization_id: str) -> Organization:
        organization = self.store.get_organization(organization_id)
        if organization is None:
            raise PreconditionFailure(code="ORGANIZATION_NOT_FOUND", message="Organization not found")
        return organization

    def require_admin(self, ctx: RequestContext, organization_id: str) -> Membership:
        membership = self.store.find_membership(organization_id, user_id=ctx.user_id)
        if membership is None or membership.status != MembershipStatus.ACTIVE or not membership.is_admin:
            raise PreconditionFailure(code="ADMIN_REQUIRED", message="Only organization admins can manage members")
        return membership

    def _require_free_seat(self, organization_id: str) -> SeatAvailability:
        availability = self.seat_availability(organization_id)
        if not availability.can_add_member:
            raise PreconditionFailure(code=availability.reason_code, message=availability.message)
        return availability

    def _pending_membership_for(self, membership_id: str) -> Membership:
        membership = self.store.get_membership(membership_id)
        if membership is None or membership.status != MembershipStatus.PENDING:
            raise PreconditionFailure(code=TOKEN_NOT_FOUND, message="Invitation is no longer valid")
        return membership

    def _ensure_single_active_membership(self, user_id: str, organization_id: str) -> None:
        for membership in self.store.list_active_memberships_for_user(user_id):
            if membership.organization_id == organization_id:
                continue
            organization = self.store.get_organization(membership.organization_id)
            if organization is not None and not organization.is_personal_trial:
                raise PreconditionFailure(
                    code="ACTIVE_IN_OTHER_ORGANIZATION",
                    message="User is already an active member of another organization",
                )

    def _audit(
        self,
        action: SeatAuditAction,
        organization_id: str,
        *,
        subject_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        if self.audit_logger is None:
            return
        self.audit_logger.log(
            SeatAuditEvent(
                action=action,
                organization_id=organization_id,
                subject_id=subject_id,
                actor_id=actor_id,
                metadata=metadata or {},
                occurred_at=_current_time(self.clock),
            )
        )


__all__ = [
    "AuditLogger",
    "InvitationNotifier",
    "ReconciliationEngine",
    "default_organization_name",
    "select_members_to_unassign",
]
