"""API schemas for license pool endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..organizations.models import LicensePool, LicenseType, RenewalAction, RenewalHistoryEntry


class LicensePoolOut(BaseModel):
    id: str
    organization_id: str = Field(alias="organizationId")
    total_licenses: int = Field(alias="totalLicenses")
    used_licenses: int = Field(alias="usedLicenses")
    available_licenses: int = Field(alias="availableLicenses")
    expires_at: datetime = Field(alias="expiresAt")
    license_type: LicenseType = Field(alias="licenseType")
    scheduled_total_licenses: Optional[int] = Field(alias="scheduledTotalLicenses", default=None)
    scheduled_change_at: Optional[datetime] = Field(alias="scheduledChangeAt", default=None)
    scheduled_change_note: Optional[str] = Field(alias="scheduledChangeNote", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pool(cls, pool: LicensePool) -> "LicensePoolOut":
        return cls(
            id=pool.id,
            organization_id=pool.organization_id,
            total_licenses=pool.total_licenses,
            used_licenses=pool.used_licenses,
            available_licenses=pool.available_licenses,
            expires_at=pool.expires_at,
            license_type=pool.license_type,
            scheduled_total_licenses=pool.scheduled_total_licenses,
            scheduled_change_at=pool.scheduled_change_at,
            scheduled_change_note=pool.scheduled_change_note,
        )


class ScheduleChangeRequest(BaseModel):
    new_quantity: Optional[int] = Field(alias="newQuantity", default=None)
    effective_date: Optional[datetime] = Field(alias="effectiveDate", default=None)
    cancel_at_renewal: bool = Field(alias="cancelAtRenewal", default=False)

    model_config = ConfigDict(populate_by_name=True)


class RenewalHistoryOut(BaseModel):
    action: RenewalAction
    previous_quantity: Optional[int] = Field(alias="previousQuantity", default=None)
    new_quantity: int = Field(alias="newQuantity")
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)
    note: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entry(cls, entry: RenewalHistoryEntry) -> "RenewalHistoryOut":
        return cls(
            action=entry.action,
            previous_quantity=entry.previous_quantity,
            new_quantity=entry.new_quantity,
            transaction_id=entry.transaction_id,
            note=entry.note,
            created_at=entry.created_at,
        )


class RenewalHistoryResponse(BaseModel):
    entries: List[RenewalHistoryOut]

    model_config = ConfigDict(populate_by_name=True)
