"""API schemas for account endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..accounts.models import Account, OrganizationSummary, SignInResult, SignUpResult
from ..organizations.models import MembershipRole


class SignUpRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None
    organization_name: Optional[str] = Field(alias="organizationName", default=None)
    invitation_token: Optional[str] = Field(alias="invitationToken", default=None)

    model_config = ConfigDict(populate_by_name=True)


class SignInRequest(BaseModel):
    email: str
    password: str

    model_config = ConfigDict(populate_by_name=True)


class AccountOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    email_confirmed: bool = Field(alias="emailConfirmed")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_account(cls, account: Account) -> "AccountOut":
        return cls(id=account.id, email=account.email, name=account.name, email_confirmed=account.email_confirmed)


class OrganizationSummaryOut(BaseModel):
    id: str
    name: str
    role: MembershipRole
    is_trial: bool = Field(alias="isTrial")
    trial_days_remaining: int = Field(alias="trialDaysRemaining", default=0)
    has_license: bool = Field(alias="hasLicense", default=False)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: Optional[OrganizationSummary]) -> Optional["OrganizationSummaryOut"]:
        if summary is None:
            return None
        return cls(
            id=summary.id,
            name=summary.name,
            role=summary.role,
            is_trial=summary.is_trial,
            trial_days_remaining=summary.trial_days_remaining,
            has_license=summary.has_license,
        )


class SignUpResponse(BaseModel):
    user: AccountOut
    email_verification_required: bool = Field(alias="emailVerificationRequired")
    organization: Optional[OrganizationSummaryOut] = None
    partial_setup: bool = Field(alias="partialSetup", default=False)
    invitation_error: Optional[str] = Field(alias="invitationError", default=None)
    message: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: SignUpResult) -> "SignUpResponse":
        return cls(
            user=AccountOut.from_account(result.account),
            email_verification_required=result.email_verification_required,
            organization=OrganizationSummaryOut.from_summary(result.organization),
            partial_setup=result.partial_setup,
            invitation_error=result.invitation_error,
            message=result.message,
        )


class SignInResponse(BaseModel):
    user: AccountOut
    organization: Optional[OrganizationSummaryOut] = None
    partial_setup: bool = Field(alias="partialSetup", default=False)
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: SignInResult) -> "SignInResponse":
        return cls(
            user=AccountOut.from_account(result.account),
            organization=OrganizationSummaryOut.from_summary(result.organization),
            partial_setup=result.partial_setup,
            message=result.message,
        )


class TokenRequest(BaseModel):
    token: str

    model_config = ConfigDict(populate_by_name=True)


class PasswordResetRequest(BaseModel):
    email: str

    model_config = ConfigDict(populate_by_name=True)


class PasswordResetConfirmRequest(BaseModel):
    token: str
    new_password: str = Field(alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    message: str

    model_config = ConfigDict(populate_by_name=True)
