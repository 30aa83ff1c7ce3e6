"""API schemas for organization membership endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..organizations.models import Membership, MembershipRole, MembershipStatus
from ..reconciliation.models import InvitationDetails, InvitationOutcome, ProvisioningOutcome, SeatAvailability


class InviteMemberRequest(BaseModel):
    email: str
    role: MembershipRole = MembershipRole.MEMBER

    model_config = ConfigDict(populate_by_name=True)


class MembershipOut(BaseModel):
    id: str
    organization_id: str = Field(alias="organizationId")
    user_id: Optional[str] = Field(alias="userId", default=None)
    email: Optional[str] = None
    role: MembershipRole
    status: MembershipStatus
    has_license: bool = Field(alias="hasLicense")
    invitation_expires_at: Optional[datetime] = Field(alias="invitationExpiresAt", default=None)
    accepted_at: Optional[datetime] = Field(alias="acceptedAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_membership(cls, membership: Membership) -> "MembershipOut":
        return cls(
            id=membership.id,
            organization_id=membership.organization_id,
            user_id=membership.user_id,
            email=membership.email,
            role=membership.role,
            status=membership.status,
            has_license=membership.has_license,
            invitation_expires_at=membership.invitation_expires_at,
            accepted_at=membership.accepted_at,
        )


class MemberListResponse(BaseModel):
    members: List[MembershipOut]

    model_config = ConfigDict(populate_by_name=True)


class InviteMemberResponse(BaseModel):
    membership: MembershipOut
    added_directly: bool = Field(alias="addedDirectly", default=False)
    email_sent: bool = Field(alias="emailSent", default=False)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: InvitationOutcome) -> "InviteMemberResponse":
        return cls(
            membership=MembershipOut.from_membership(outcome.membership),
            added_directly=outcome.added_directly,
            email_sent=outcome.email_sent,
            expires_at=outcome.expires_at,
        )


class SeatAvailabilityResponse(BaseModel):
    organization_id: str = Field(alias="organizationId")
    is_trial: bool = Field(alias="isTrial")
    is_expired: bool = Field(alias="isExpired", default=False)
    total_licenses: int = Field(alias="totalLicenses", default=0)
    used_licenses: int = Field(alias="usedLicenses", default=0)
    available_licenses: int = Field(alias="availableLicenses", default=0)
    can_add_member: bool = Field(alias="canAddMember", default=False)
    reason: Optional[str] = None
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_availability(cls, availability: SeatAvailability) -> "SeatAvailabilityResponse":
        return cls(
            organization_id=availability.organization_id,
            is_trial=availability.is_trial,
            is_expired=availability.is_expired,
            total_licenses=availability.total_licenses,
            used_licenses=availability.used_licenses,
            available_licenses=availability.available_licenses,
            can_add_member=availability.can_add_member,
            reason=availability.reason_code,
            message=availability.message,
        )


class InvitationTokenRequest(BaseModel):
    token: str

    model_config = ConfigDict(populate_by_name=True)


class InvitationDetailsResponse(BaseModel):
    organization_id: str = Field(alias="organizationId")
    organization_name: str = Field(alias="organizationName")
    email: Optional[str] = None
    role: MembershipRole
    invited_by: Optional[str] = Field(alias="invitedBy", default=None)
    expires_at: datetime = Field(alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_details(cls, details: InvitationDetails) -> "InvitationDetailsResponse":
        return cls(
            organization_id=details.organization_id,
            organization_name=details.organization_name,
            email=details.email,
            role=details.role,
            invited_by=details.invited_by,
            expires_at=details.expires_at,
        )


class InvitationAcceptedResponse(BaseModel):
    organization_id: str = Field(alias="organizationId")
    organization_name: str = Field(alias="organizationName")
    membership: MembershipOut

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: ProvisioningOutcome) -> "InvitationAcceptedResponse":
        return cls(
            organization_id=outcome.organization.id,
            organization_name=outcome.organization.name,
            membership=MembershipOut.from_membership(outcome.membership),
        )
