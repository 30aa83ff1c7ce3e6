from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import uuid4

import pytest
from passlib.hash import bcrypt

from seatledger.app.accounts.models import Account
from seatledger.app.accounts.service import AccountService
from seatledger.app.billing.provider import PRORATION_PRORATED_IMMEDIATELY, PaymentProvider, PaymentProviderError
from seatledger.app.organizations.models import (
    LicensePool,
    LicensePurchase,
    LicenseType,
    Membership,
    MembershipRole,
    MembershipStatus,
    MembershipUpsert,
    NotificationLogEntry,
    Organization,
    PendingOrganization,
    PurchaseCredit,
    RenewalAction,
    RenewalHistoryEntry,
    ScheduledChangeCommit,
    SeatTransition,
)
from seatledger.app.organizations.store import EntitlementStore, MembershipConflict, SeatCapacityExceeded
from seatledger.app.reconciliation import AuditLogger, ReconciliationEngine, SeatAuditEvent
from seatledger.app.tokens.models import StoredToken, TokenPurpose
from seatledger.app.tokens.service import TokenRepository, TokenService
from seatledger.mail import EmailProvider

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryEntitlementStore(EntitlementStore):
    """Dictionary-backed store applying seat deltas the way the Postgres store does."""

    def __init__(self) -> None:
        self.organizations: Dict[str, Organization] = {}
        self.memberships: Dict[str, Membership] = {}
        self.pools: Dict[str, LicensePool] = {}
        self.transactions: Dict[str, str] = {}
        self.history: List[RenewalHistoryEntry] = []
        self.pending: Dict[str, PendingOrganization] = {}
        self.notifications: List[NotificationLogEntry] = []
        self.failing_deletes: Set[str] = set()

    # Seeding helpers for tests

    def seed_organization(
        self,
        name: str,
        *,
        owner_id: Optional[str] = None,
        is_trial: bool = False,
        is_personal_trial: bool = False,
        trial_expires_at: Optional[datetime] = None,
        created_at: datetime = FIXED_NOW,
    ) -> Organization:
        organization = Organization(
            id=str(uuid4()),
            name=name,
            owner_id=owner_id,
            is_trial=is_trial,
            trial_expires_at=trial_expires_at,
            is_personal_trial=is_personal_trial,
            created_at=created_at,
            updated_at=created_at,
        )
        self.organizations[organization.id] = organization
        return organization

    def seed_membership(
        self,
        organization_id: str,
        user_id: Optional[str],
        *,
        email: Optional[str] = None,
        role: MembershipRole = MembershipRole.MEMBER,
        status: MembershipStatus = MembershipStatus.ACTIVE,
        has_license: bool = True,
        accepted_at: Optional[datetime] = FIXED_NOW,
    ) -> Membership:
        membership = Membership(
            id=str(uuid4()),
            organization_id=organization_id,
            user_id=user_id,
            email=email,
            role=role,
            status=status,
            has_license=has_license,
            invited_at=accepted_at,
            accepted_at=accepted_at if status == MembershipStatus.ACTIVE else None,
        )
        self.memberships[membership.id] = membership
        return membership

    def seed_pool(
        self,
        organization_id: str,
        *,
        total: int,
        expires_at: datetime,
        used: Optional[int] = None,
        subscription_id: Optional[str] = "sub_123",
    ) -> LicensePool:
        pool = LicensePool(
            id=str(uuid4()),
            organization_id=organization_id,
            total_licenses=total,
            used_licenses=self._occupied(organization_id, self.memberships) if used is None else used,
            expires_at=expires_at,
            subscription_id=subscription_id,
        )
        self.pools[pool.id] = pool
        return pool

    def occupied_seats(self, organization_id: str) -> int:
        return self._occupied(organization_id, self.memberships)

    # Internal helpers

    def _pool_for(self, organization_id: str) -> Optional[LicensePool]:
        for pool in self.pools.values():
            if pool.organization_id == organization_id:
                return pool
        return None

    @staticmethod
    def _occupied(organization_id: str, memberships: Dict[str, Membership]) -> int:
        return sum(
            1 for membership in memberships.values() if membership.organization_id == organization_id and membership.occupies_seat
        )

    def _adjusted_pool(
        self,
        organization_id: str,
        delta: int,
        *,
        enforce_capacity: bool,
        memberships_after: Dict[str, Membership],
    ) -> Optional[LicensePool]:
        pool = self._pool_for(organization_id)
        if pool is None or delta == 0:
            return pool
        if delta > 0:
            if enforce_capacity and pool.used_licenses + delta > pool.total_licenses:
                raise SeatCapacityExceeded(organization_id)
            used = pool.used_licenses + delta
        else:
            used = max(pool.used_licenses + delta, self._occupied(organization_id, memberships_after), 0)
        return pool.model_copy(update={"used_licenses": used})

    def _commit(self, memberships_after: Dict[str, Membership], pool: Optional[LicensePool]) -> None:
        self.memberships = memberships_after
        if pool is not None:
            self.pools[pool.id] = pool

    # Organizations

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        return self.organizations.get(organization_id)

    def find_organization_by_name(self, name: str) -> Optional[Organization]:
        matches = sorted(
            (
                organization
                for organization in self.organizations.values()
                if organization.name == name and not organization.is_personal_trial
            ),
            key=lambda organization: organization.created_at,
        )
        return matches[0] if matches else None

    def create_organization(self, organization: Organization, *, founder: Optional[Membership] = None) -> Organization:
        self.organizations[organization.id] = organization
        if founder is not None:
            self.memberships[founder.id] = founder
        return organization

    def mark_organization_paid(self, organization_id: str) -> Optional[Organization]:
        organization = self.organizations.get(organization_id)
        if organization is None:
            return None
        updated = organization.model_copy(
            update={"is_trial": False, "trial_expires_at": None, "is_personal_trial": False}
        )
        self.organizations[organization_id] = updated
        return updated

    def _has_active_member(self, organization_id: str) -> bool:
        return any(
            membership.organization_id == organization_id and membership.status == MembershipStatus.ACTIVE
            for membership in self.memberships.values()
        )

    def list_orphaned_personal_trials(self) -> Sequence[Organization]:
        orphans = [
            organization
            for organization in self.organizations.values()
            if organization.is_personal_trial and not self._has_active_member(organization.id)
        ]
        return sorted(orphans, key=lambda organization: organization.created_at)

    def delete_orphaned_personal_trial(self, organization_id: str) -> bool:
        if organization_id in self.failing_deletes:
            raise RuntimeError("delete failed")
        organization = self.organizations.get(organization_id)
        if organization is None or not organization.is_personal_trial or self._has_active_member(organization_id):
            return False
        del self.organizations[organization_id]
        self.memberships = {
            key: membership for key, membership in self.memberships.items() if membership.organization_id != organization_id
        }
        self.pools = {key: pool for key, pool in self.pools.items() if pool.organization_id != organization_id}
        return True

    # Memberships

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        return self.memberships.get(membership_id)

    def find_membership(
        self,
        organization_id: str,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[Membership]:
        if user_id is None and email is None:
            raise ValueError("user_id or email is required")
        in_org = [membership for membership in self.memberships.values() if membership.organization_id == organization_id]
        if user_id is not None:
            return next((membership for membership in in_org if membership.user_id == user_id), None)
        matches = [membership for membership in in_org if (membership.email or "") == email.strip().lower()]
        matches.sort(key=lambda membership: membership.user_id is not None)
        return matches[0] if matches else None

    def list_memberships(
        self,
        organization_id: str,
        *,
        statuses: Optional[Sequence[MembershipStatus]] = None,
    ) -> Sequence[Membership]:
        return [
            membership
            for membership in self.memberships.values()
            if membership.organization_id == organization_id and (not statuses or membership.status in statuses)
        ]

    def list_active_memberships_for_user(self, user_id: str) -> Sequence[Membership]:
        active = [
            membership
            for membership in self.memberships.values()
            if membership.user_id == user_id and membership.status == MembershipStatus.ACTIVE
        ]
        active.sort(key=lambda membership: membership.accepted_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return active

    def _conflicts(self, membership: Membership) -> bool:
        for existing in self.memberships.values():
            if existing.id == membership.id:
                return True
            if existing.organization_id != membership.organization_id:
                continue
            if membership.user_id is not None and existing.user_id == membership.user_id:
                return True
            if membership.user_id is None and existing.user_id is None and existing.email == membership.email:
                return True
        return False

    def insert_or_update_membership(self, membership: Membership, *, enforce_capacity: bool = True) -> MembershipUpsert:
        previous: Optional[Membership] = None
        if not self._conflicts(membership):
            stored = membership
            created = True
        else:
            if membership.user_id is not None:
                previous = self.find_membership(membership.organization_id, user_id=membership.user_id)
            else:
                previous = next(
                    (
                        existing
                        for existing in self.memberships.values()
                        if existing.organization_id == membership.organization_id
                        and existing.user_id is None
                        and existing.email == membership.email
                    ),
                    None,
                )
            if previous is None:
                raise MembershipConflict(f"Membership conflict in organization {membership.organization_id}")
            stored = previous.model_copy(
                update={
                    "email": membership.email or previous.email,
                    "role": membership.role,
                    "status": membership.status,
                    "has_license": membership.has_license,
                    "invite_token_hash": membership.invite_token_hash,
                    "invitation_sent_at": membership.invitation_sent_at,
                    "invitation_expires_at": membership.invitation_expires_at,
                    "invited_by": membership.invited_by or previous.invited_by,
                    "invited_at": membership.invited_at or previous.invited_at,
                    "accepted_at": membership.accepted_at or previous.accepted_at,
                    "removed_at": membership.removed_at,
                }
            )
            created = False
        delta = int(stored.occupies_seat) - int(previous.occupies_seat if previous else False)
        after = {**self.memberships, stored.id: stored}
        pool = self._adjusted_pool(
            stored.organization_id,
            delta,
            enforce_capacity=enforce_capacity,
            memberships_after=after,
        )
        self._commit(after, pool)
        return MembershipUpsert(membership=stored, created=created, seat_delta=delta)

    def apply_seat_transition(self, transition: SeatTransition) -> Optional[Membership]:
        current = self.memberships.get(transition.membership_id)
        if current is None or current.organization_id != transition.organization_id:
            return None
        if current.status not in transition.expected_statuses:
            return None
        updates: Dict[str, Any] = {
            "status": transition.status,
            "has_license": transition.has_license,
            "removed_at": transition.removed_at,
        }
        if transition.role is not None:
            updates["role"] = transition.role
        if transition.user_id is not None:
            updates["user_id"] = transition.user_id
        if transition.accepted_at is not None:
            updates["accepted_at"] = transition.accepted_at
        if transition.clear_invitation:
            updates.update(invite_token_hash=None, invitation_sent_at=None, invitation_expires_at=None)
        updated = current.model_copy(update=updates)
        delta = int(transition.occupies_seat) - int(current.occupies_seat)
        after = {**self.memberships, updated.id: updated}
        pool = self._adjusted_pool(
            transition.organization_id,
            delta,
            enforce_capacity=transition.enforce_capacity,
            memberships_after=after,
        )
        self._commit(after, pool)
        return updated

    # License pools

    def get_license_pool(self, organization_id: str) -> Optional[LicensePool]:
        return self._pool_for(organization_id)

    def get_license_pool_by_id(self, license_id: str) -> Optional[LicensePool]:
        return self.pools.get(license_id)

    def record_license_purchase(self, purchase: LicensePurchase) -> PurchaseCredit:
        if purchase.transaction_id in self.transactions:
            pool = self._pool_for(self.transactions[purchase.transaction_id])
            if pool is None:
                raise RuntimeError(f"Transaction {purchase.transaction_id} recorded without a license pool")
            return PurchaseCredit(pool=pool, applied=False)

        previous = self._pool_for(purchase.organization_id)
        if previous is not None:
            pool = previous.model_copy(
                update={
                    "total_licenses": previous.total_licenses + purchase.quantity,
                    "expires_at": previous.expires_at if purchase.prorated else purchase.term_expires_at,
                    "subscription_id": purchase.subscription_id or previous.subscription_id,
                    "last_transaction_id": purchase.transaction_id,
                    "license_type": LicenseType.STANDARD,
                }
            )
            action = RenewalAction.PRORATED if purchase.prorated else RenewalAction.RENEWAL
        else:
            pool = LicensePool(
                id=str(uuid4()),
                organization_id=purchase.organization_id,
                total_licenses=purchase.quantity,
                used_licenses=self.occupied_seats(purchase.organization_id),
                expires_at=purchase.term_expires_at,
                subscription_id=purchase.subscription_id,
                last_transaction_id=purchase.transaction_id,
            )
            action = RenewalAction.NEW_PURCHASE
        self.pools[pool.id] = pool
        self.transactions[purchase.transaction_id] = purchase.organization_id
        self.history.append(
            RenewalHistoryEntry(
                organization_id=pool.organization_id,
                license_id=pool.id,
                action=action,
                previous_quantity=previous.total_licenses if previous else None,
                new_quantity=pool.total_licenses,
                previous_expires_at=previous.expires_at if previous else None,
                new_expires_at=pool.expires_at,
                transaction_id=purchase.transaction_id,
                created_at=purchase.occurred_at,
            )
        )
        return PurchaseCredit(pool=pool, applied=True, created=previous is None)

    def schedule_license_change(
        self,
        license_id: str,
        *,
        total_licenses: Optional[int],
        change_at: Optional[datetime],
        note: Optional[str],
    ) -> Optional[LicensePool]:
        pool = self.pools.get(license_id)
        if pool is None:
            return None
        updated = pool.model_copy(
            update={
                "scheduled_total_licenses": total_licenses,
                "scheduled_change_at": change_at,
                "scheduled_change_note": note,
            }
        )
        self.pools[license_id] = updated
        return updated

    def list_due_license_changes(self, now: datetime) -> Sequence[LicensePool]:
        due = [
            pool
            for pool in self.pools.values()
            if pool.scheduled_total_licenses is not None
            and pool.scheduled_change_at is not None
            and pool.scheduled_change_at <= now
        ]
        return sorted(due, key=lambda pool: pool.scheduled_change_at)

    def commit_scheduled_change(self, change: ScheduledChangeCommit) -> Optional[LicensePool]:
        pool = self.pools.get(change.license_id)
        if pool is None:
            return None
        if (
            pool.scheduled_total_licenses != change.expected_scheduled_total
            or pool.scheduled_change_at != change.expected_change_at
        ):
            return None
        after = dict(self.memberships)
        released = 0
        for membership_id in change.release_membership_ids:
            membership = after.get(membership_id)
            if membership is not None and membership.organization_id == change.organization_id and membership.occupies_seat:
                after[membership_id] = membership.model_copy(update={"has_license": False})
                released += 1
        occupied = self._occupied(change.organization_id, after)
        if occupied > change.new_total:
            raise SeatCapacityExceeded(change.organization_id)
        updated = pool.model_copy(
            update={
                "total_licenses": change.new_total,
                "used_licenses": min(max(pool.used_licenses - released, occupied), change.new_total),
                "license_type": change.license_type,
                "scheduled_total_licenses": None,
                "scheduled_change_at": None,
                "scheduled_change_note": None,
            }
        )
        self._commit(after, updated)
        self.history.append(change.history)
        return updated

    def list_license_pools_expiring_between(self, start: datetime, end: datetime) -> Sequence[LicensePool]:
        pools = [pool for pool in self.pools.values() if start <= pool.expires_at < end]
        return sorted(pools, key=lambda pool: pool.expires_at)

    def list_renewal_history(self, organization_id: str) -> Sequence[RenewalHistoryEntry]:
        entries = [entry for entry in self.history if entry.organization_id == organization_id]
        return sorted(entries, key=lambda entry: entry.created_at, reverse=True)

    # Pending organizations

    def save_pending_organization(self, pending: PendingOrganization) -> PendingOrganization:
        self.pending[pending.id] = pending
        return pending

    def list_pending_organizations(self, email: str) -> Sequence[PendingOrganization]:
        matches = [pending for pending in self.pending.values() if pending.user_email == email.strip().lower()]
        return sorted(matches, key=lambda pending: pending.created_at)

    def delete_pending_organization(self, pending_id: str) -> bool:
        return self.pending.pop(pending_id, None) is not None

    # Notification log

    def claim_notification(self, entry: NotificationLogEntry, *, since: datetime) -> Optional[NotificationLogEntry]:
        for existing in self.notifications:
            if existing.license_id == entry.license_id and existing.kind == entry.kind and existing.sent_at >= since:
                return None
        claimed = entry.model_copy(update={"id": entry.id or str(uuid4())})
        self.notifications.append(claimed)
        return claimed

    def mark_notification_sent(self, entry_id: str, *, email_sent: bool) -> None:
        self.notifications = [
            entry.model_copy(update={"email_sent": email_sent}) if entry.id == entry_id else entry
            for entry in self.notifications
        ]


class InMemoryTokenRepository(TokenRepository):
    def __init__(self) -> None:
        self.tokens: Dict[str, StoredToken] = {}

    def save(self, token: StoredToken) -> StoredToken:
        self.tokens[token.id] = token
        return token

    def get_by_hash(self, purpose: TokenPurpose, token_hash: str) -> Optional[StoredToken]:
        return next(
            (token for token in self.tokens.values() if token.purpose == purpose and token.token_hash == token_hash),
            None,
        )

    def mark_used(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> Optional[StoredToken]:
        token = self.get_by_hash(purpose, token_hash)
        if token is None or token.used or token.expires_at <= now:
            return None
        updated = token.model_copy(update={"used": True, "used_at": now})
        self.tokens[token.id] = updated
        return updated

    def release(self, token_id: str) -> None:
        token = self.tokens.get(token_id)
        if token is not None:
            self.tokens[token_id] = token.model_copy(update={"used": False, "used_at": None})

    def revoke_for_subject(self, purpose: TokenPurpose, subject_id: str) -> int:
        doomed = [
            token.id
            for token in self.tokens.values()
            if token.purpose == purpose and token.subject_id == subject_id and not token.used
        ]
        for token_id in doomed:
            del self.tokens[token_id]
        return len(doomed)

    def delete_expired(self, now: datetime) -> int:
        doomed = [token.id for token in self.tokens.values() if token.expires_at <= now]
        for token_id in doomed:
            del self.tokens[token_id]
        return len(doomed)


class InMemoryAccountRepository:
    def __init__(self) -> None:
        self.accounts: Dict[str, Account] = {}

    def add(self, account: Account) -> Account:
        self.accounts[account.id] = account
        return account

    def get_by_id(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    def get_by_email(self, email: str) -> Optional[Account]:
        normalized = email.strip().lower()
        return next((account for account in self.accounts.values() if account.email == normalized), None)

    def create(self, account: Account) -> Optional[Account]:
        if self.get_by_email(account.email) is not None:
            return None
        return self.add(account)

    def mark_email_confirmed(self, account_id: str) -> Optional[Account]:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        return self.add(account.model_copy(update={"email_confirmed": True}))

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        return self.add(account.model_copy(update={"password_hash": password_hash}))


class RecordingEmailProvider(EmailProvider):
    name = "recording"

    def __init__(self) -> None:
        super().__init__(from_email="noreply@example.com")
        self.messages: List[Dict[str, str]] = []
        self.fail = False

    def send_email(self, to: str, subject: str, html_body: str, text_body: str) -> None:
        if self.fail:
            raise RuntimeError("SMTP unavailable")
        self.messages.append({"to": to, "subject": subject, "html_body": html_body, "text_body": text_body})


class FakePaymentProvider(PaymentProvider):
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.error: Optional[PaymentProviderError] = None

    def _record(self, *call: Any) -> Dict[str, Any]:
        self.calls.append(call)
        if self.error is not None:
            raise self.error
        return {"id": call[1]}

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._record("get", subscription_id)

    def update_subscription_quantity(
        self,
        subscription_id: str,
        quantity: int,
        *,
        proration_mode: str = PRORATION_PRORATED_IMMEDIATELY,
    ) -> Dict[str, Any]:
        return self._record("update", subscription_id, quantity, proration_mode)

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._record("cancel", subscription_id)


class RecordingAuditLogger(AuditLogger):
    def __init__(self) -> None:
        self.events: List[SeatAuditEvent] = []

    def log(self, event: SeatAuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [event.action.value for event in self.events]


class RecordingInvitationNotifier:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    def send_invitation(self, membership, organization, plain_token, *, inviter_name, expires_at) -> bool:
        self.sent.append(
            {
                "email": membership.email,
                "organization_id": organization.id,
                "token": plain_token,
                "inviter_name": inviter_name,
                "expires_at": expires_at,
            }
        )
        return True

    def last_token(self) -> str:
        return self.sent[-1]["token"]


class RecordingAccountNotifier:
    def __init__(self) -> None:
        self.verifications: List[tuple] = []
        self.resets: List[tuple] = []

    def send_email_verification(self, account: Account, plain_token: str, *, expires_at: datetime) -> bool:
        self.verifications.append((account.email, plain_token))
        return True

    def send_password_reset(self, account: Account, plain_token: str, *, expires_at: datetime) -> bool:
        self.resets.append((account.email, plain_token))
        return True


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock(FIXED_NOW)


@pytest.fixture()
def store() -> InMemoryEntitlementStore:
    return InMemoryEntitlementStore()


@pytest.fixture()
def token_repository() -> InMemoryTokenRepository:
    return InMemoryTokenRepository()


@pytest.fixture()
def token_service(token_repository: InMemoryTokenRepository, clock: MutableClock) -> TokenService:
    return TokenService(repository=token_repository, clock=clock)


@pytest.fixture()
def audit_logger() -> RecordingAuditLogger:
    return RecordingAuditLogger()


@pytest.fixture()
def invitation_notifier() -> RecordingInvitationNotifier:
    return RecordingInvitationNotifier()


@pytest.fixture()
def engine(
    store: InMemoryEntitlementStore,
    token_service: TokenService,
    audit_logger: RecordingAuditLogger,
    invitation_notifier: RecordingInvitationNotifier,
    clock: MutableClock,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        store=store,
        token_service=token_service,
        audit_logger=audit_logger,
        invitation_notifier=invitation_notifier,
        clock=clock,
    )


@pytest.fixture()
def account_repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture()
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture()
def payment_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture()
def fast_hasher():
    return bcrypt.using(rounds=4)


@pytest.fixture()
def account_factory(account_repository: InMemoryAccountRepository, fast_hasher):
    def _create(email: str, *, name: Optional[str] = None, password: str = "correct-horse", confirmed: bool = True) -> Account:
        return account_repository.add(
            Account(
                id=str(uuid4()),
                email=email,
                name=name,
                password_hash=fast_hasher.hash(password),
                email_confirmed=confirmed,
                created_at=FIXED_NOW,
                updated_at=FIXED_NOW,
            )
        )

    return _create


@pytest.fixture()
def account_notifier() -> RecordingAccountNotifier:
    return RecordingAccountNotifier()


@pytest.fixture()
def account_service(
    account_repository: InMemoryAccountRepository,
    store: InMemoryEntitlementStore,
    engine: ReconciliationEngine,
    token_service: TokenService,
    account_notifier: RecordingAccountNotifier,
    clock: MutableClock,
    fast_hasher,
) -> AccountService:
    return AccountService(
        repository=account_repository,
        store=store,
        engine=engine,
        token_service=token_service,
        create_session_token=lambda user_id: f"session-{user_id}",
        notifier=account_notifier,
        password_hasher=fast_hasher,
        clock=clock,
    )
