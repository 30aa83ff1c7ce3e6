"""Typed representations of organizations, memberships and license pools."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MembershipRole(str, Enum):
    """Role held by a member inside an organization."""

    ADMIN = "admin"
    MEMBER = "member"


class MembershipStatus(str, Enum):
    """Lifecycle state for an organization membership."""

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class LicenseType(str, Enum):
    STANDARD = "standard"
    CANCELLED = "cancelled"


class Organization(BaseModel):
    """Organization record. Trial organizations have no license pool."""

    id: str
    name: str
    owner_id: Optional[str] = None
    is_trial: bool = True
    trial_expires_at: Optional[datetime] = None
    is_personal_trial: bool = Field(
        default=False,
        description="Auto-created single-user organization deleted once its member moves on.",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def trial_days_remaining(self, now: datetime) -> int:
        """Whole days left in the trial, ``0`` for paid or lapsed trials."""

        if not self.is_trial or self.trial_expires_at is None:
            return 0
        remaining = self.trial_expires_at - now
        if remaining <= timedelta(0):
            return 0
        return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)


class Membership(BaseModel):
    """Represents a user's (or invited email's) membership inside an organization."""

    id: str
    organization_id: str
    user_id: Optional[str] = Field(
        default=None,
        description="Empty while an invitation addressed to an email is pending.",
    )
    email: Optional[str] = None
    role: MembershipRole = MembershipRole.MEMBER
    status: MembershipStatus = MembershipStatus.PENDING
    has_license: bool = False
    invite_token_hash: Optional[str] = None
    invitation_sent_at: Optional[datetime] = None
    invitation_expires_at: Optional[datetime] = None
    invited_by: Optional[str] = None
    invited_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    removed_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else value

    @property
    def occupies_seat(self) -> bool:
        """Return whether the membership counts against the license pool."""

        return self.status == MembershipStatus.ACTIVE and self.has_license

    @property
    def is_admin(self) -> bool:
        return self.role == MembershipRole.ADMIN


class LicensePool(BaseModel):
    """Seat capacity purchased by an organization."""

    id: str
    organization_id: str
    total_licenses: int = Field(ge=0)
    used_licenses: int = Field(default=0, ge=0)
    expires_at: datetime
    license_type: LicenseType = LicenseType.STANDARD
    subscription_id: Optional[str] = None
    last_transaction_id: Optional[str] = None
    scheduled_total_licenses: Optional[int] = Field(default=None, ge=0)
    scheduled_change_at: Optional[datetime] = None
    scheduled_change_note: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def available_licenses(self) -> int:
        return max(self.total_licenses - self.used_licenses, 0)

    @property
    def has_scheduled_change(self) -> bool:
        return self.scheduled_total_licenses is not None and self.scheduled_change_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class PendingOrganization(BaseModel):
    """Signup data parked until the user confirms their email."""

    id: str
    user_email: str
    user_name: Optional[str] = None
    organization_name: str
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("user_email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class NotificationKind(str, Enum):
    """License reminder kinds, one dedupe fence per kind."""

    THIRTY_DAY = "30_day"
    FOURTEEN_DAY = "14_day"
    SEVEN_DAY = "7_day"
    ONE_DAY = "1_day"
    EXPIRED = "expired"

    @classmethod
    def for_days_remaining(cls, days: int) -> "NotificationKind":
        return cls(f"{days}_day")


class NotificationLogEntry(BaseModel):
    """Append-only record that a reminder was claimed for sending."""

    id: Optional[str] = None
    license_id: str
    organization_id: str
    kind: NotificationKind
    sent_at: datetime
    email_sent: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class RenewalAction(str, Enum):
    NEW_PURCHASE = "new_purchase"
    PRORATED = "prorated"
    RENEWAL = "renewal"
    QUANTITY_REDUCED = "quantity_reduced"
    QUANTITY_INCREASED = "quantity_increased"
    CANCELLED = "cancelled"


class RenewalHistoryEntry(BaseModel):
    """Audit row for every committed change to a pool's size or term."""

    organization_id: str
    license_id: str
    action: RenewalAction
    previous_quantity: Optional[int] = None
    new_quantity: int
    previous_expires_at: Optional[datetime] = None
    new_expires_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class LicensePurchase(BaseModel):
    """A completed payment crediting seats to an organization."""

    transaction_id: str
    organization_id: str
    quantity: int = Field(ge=1)
    prorated: bool = False
    subscription_id: Optional[str] = None
    occurred_at: datetime
    term_expires_at: datetime = Field(description="Expiry applied unless the purchase is prorated.")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PurchaseCredit(BaseModel):
    """Result of crediting a purchase. ``applied`` is ``False`` for a replayed transaction."""

    pool: LicensePool
    applied: bool
    created: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class MembershipUpsert(BaseModel):
    """Result of :meth:`EntitlementStore.insert_or_update_membership`."""

    membership: Membership
    created: bool
    seat_delta: int = 0

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SeatTransition(BaseModel):
    """Conditional membership state change applied together with its seat delta.

    The store applies it only while the row's status is one of
    ``expected_statuses``; otherwise it is a no-op and returns ``None``.
    """

    membership_id: str
    organization_id: str
    expected_statuses: Tuple[MembershipStatus, ...]
    status: MembershipStatus
    has_license: bool
    role: Optional[MembershipRole] = None
    user_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    removed_at: Optional[datetime] = None
    clear_invitation: bool = False
    enforce_capacity: bool = True

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def occupies_seat(self) -> bool:
        return self.status == MembershipStatus.ACTIVE and self.has_license


class ScheduledChangeCommit(BaseModel):
    """Local half of a due scheduled change, committed after the provider call succeeded."""

    license_id: str
    organization_id: str
    expected_change_at: datetime
    expected_scheduled_total: int
    new_total: int
    release_membership_ids: Tuple[str, ...] = ()
    license_type: LicenseType = LicenseType.STANDARD
    history: RenewalHistoryEntry

    model_config = ConfigDict(populate_by_name=True, frozen=True)
