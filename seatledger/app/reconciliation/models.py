"""Results and audit events produced by the reconciliation engine."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..organizations.models import LicensePool, Membership, MembershipRole, Organization


class SeatAuditAction(str, Enum):
    """Actions recorded in the seat audit trail."""

    ORGANIZATION_CREATED = "organization_created"
    INVITED = "invited"
    ACCEPTED = "accepted"
    ADDED = "added"
    REACTIVATED = "reactivated"
    REMOVED = "removed"
    INVITATION_REVOKED = "invitation_revoked"
    SEAT_UNASSIGNED = "seat_unassigned"
    PURCHASE_APPLIED = "purchase_applied"
    PURCHASE_REPLAYED = "purchase_replayed"
    PERSONAL_TRIAL_RETIRED = "personal_trial_retired"
    SCHEDULED_CHANGE_APPLIED = "scheduled_change_applied"


class SeatAuditEvent(BaseModel):
    """Structured payload captured by the audit logger."""

    action: SeatAuditAction
    organization_id: str
    subject_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SeatAvailability(BaseModel):
    """Whether an organization can seat one more member, and why not."""

    organization_id: str
    is_trial: bool
    is_expired: bool = False
    total_licenses: int = 0
    used_licenses: int = 0
    available_licenses: int = 0
    can_add_member: bool = False
    reason_code: Optional[str] = None
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProvisioningOutcome(BaseModel):
    """Where a signup, sign-in or invitation left the user."""

    organization: Optional[Organization] = None
    membership: Optional[Membership] = None
    created_organization: bool = False
    via_invitation: bool = False
    invitation_error: Optional[str] = None
    retired_organization_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class InvitationOutcome(BaseModel):
    """Result of inviting an email address into an organization."""

    membership: Membership
    added_directly: bool = False
    email_sent: bool = False
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class InvitationDetails(BaseModel):
    """Non-consuming view of a pending invitation."""

    membership_id: str
    organization_id: str
    organization_name: str
    email: Optional[str] = None
    role: MembershipRole
    invited_by: Optional[str] = None
    expires_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PurchaseOutcome(BaseModel):
    """Result of reconciling a completed purchase."""

    organization_id: str
    transaction_id: str
    license: LicensePool
    membership: Membership
    applied: bool
    created_organization: bool = False
    retired_organization_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class WebhookOutcome(BaseModel):
    status: WebhookStatus
    event_type: str
    purchase: Optional[PurchaseOutcome] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ScheduledChangeApplied(BaseModel):
    """Local result of committing a due scheduled change."""

    license: LicensePool
    released_membership_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)
