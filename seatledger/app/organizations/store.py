"""Persistence contract for organizations, memberships and license pools."""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from .models import (
    LicensePool,
    LicensePurchase,
    Membership,
    MembershipStatus,
    MembershipUpsert,
    NotificationLogEntry,
    Organization,
    PendingOrganization,
    PurchaseCredit,
    RenewalHistoryEntry,
    ScheduledChangeCommit,
    SeatTransition,
)


class SeatCapacityExceeded(RuntimeError):
    """Raised when a seat change would push ``used_licenses`` past ``total_licenses``.

    The store rolls back the whole operation before raising.
    """

    def __init__(self, organization_id: str) -> None:
        super().__init__(f"No free seat in organization {organization_id}")
        self.organization_id = organization_id


class MembershipConflict(RuntimeError):
    """A membership insert hit the per-organization uniqueness constraint."""


class EntitlementStore(Protocol):
    """Atomic operations the reconciliation engine and sweeps depend on.

    Every operation that changes a membership's seat occupancy also moves
    ``used_licenses`` by the matching delta inside the same transaction.
    """

    # Organizations

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        ...

    def find_organization_by_name(self, name: str) -> Optional[Organization]:
        """Oldest organization with this exact name, ignoring personal trials."""

    def create_organization(
        self,
        organization: Organization,
        *,
        founder: Optional[Membership] = None,
    ) -> Organization:
        """Insert the organization and, in the same transaction, its founding membership."""

    def mark_organization_paid(self, organization_id: str) -> Optional[Organization]:
        ...

    def list_orphaned_personal_trials(self) -> Sequence[Organization]:
        ...

    def delete_orphaned_personal_trial(self, organization_id: str) -> bool:
        """Delete only if still a personal trial with zero active members at delete time."""

    # Memberships

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        ...

    def find_membership(
        self,
        organization_id: str,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[Membership]:
        ...

    def list_memberships(
        self,
        organization_id: str,
        *,
        statuses: Optional[Sequence[MembershipStatus]] = None,
    ) -> Sequence[Membership]:
        ...

    def list_active_memberships_for_user(self, user_id: str) -> Sequence[Membership]:
        ...

    def insert_or_update_membership(
        self,
        membership: Membership,
        *,
        enforce_capacity: bool = True,
    ) -> MembershipUpsert:
        """Insert; on a uniqueness conflict update the existing row to match instead."""

    def apply_seat_transition(self, transition: SeatTransition) -> Optional[Membership]:
        ...

    # License pools

    def get_license_pool(self, organization_id: str) -> Optional[LicensePool]:
        ...

    def get_license_pool_by_id(self, license_id: str) -> Optional[LicensePool]:
        ...

    def record_license_purchase(self, purchase: LicensePurchase) -> PurchaseCredit:
        """Credit seats once per transaction id, creating the pool when missing."""

    def schedule_license_change(
        self,
        license_id: str,
        *,
        total_licenses: Optional[int],
        change_at: Optional[datetime],
        note: Optional[str],
    ) -> Optional[LicensePool]:
        ...

    def list_due_license_changes(self, now: datetime) -> Sequence[LicensePool]:
        ...

    def commit_scheduled_change(self, change: ScheduledChangeCommit) -> Optional[LicensePool]:
        """Release seats, set the new total and clear the schedule if it is still the one expected."""

    def list_license_pools_expiring_between(self, start: datetime, end: datetime) -> Sequence[LicensePool]:
        ...

    def list_renewal_history(self, organization_id: str) -> Sequence[RenewalHistoryEntry]:
        ...

    # Pending organizations

    def save_pending_organization(self, pending: PendingOrganization) -> PendingOrganization:
        ...

    def list_pending_organizations(self, email: str) -> Sequence[PendingOrganization]:
        ...

    def delete_pending_organization(self, pending_id: str) -> bool:
        ...

    # Notification log

    def claim_notification(self, entry: NotificationLogEntry, *, since: datetime) -> Optional[NotificationLogEntry]:
        """Append ``entry`` unless one of the same license and kind exists at or after ``since``."""

    def mark_notification_sent(self, entry_id: str, *, email_sent: bool) -> None:
        ...


__all__ = ["EntitlementStore", "MembershipConflict", "SeatCapacityExceeded"]
