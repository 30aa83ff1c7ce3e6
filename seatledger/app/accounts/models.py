"""Account records and the results returned by account flows."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..organizations.models import MembershipRole
from ..reconciliation.context import AccountIdentity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(BaseModel):
    """A user able to sign in. ``email_confirmed`` gates organization provisioning."""

    id: str
    email: str
    name: Optional[str] = None
    password_hash: str = Field(repr=False)
    email_confirmed: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    def identity(self) -> AccountIdentity:
        return AccountIdentity(user_id=self.id, email=self.email, name=self.name)


class OrganizationSummary(BaseModel):
    """The organization a user lands in after signing in."""

    id: str
    name: str
    role: MembershipRole
    is_trial: bool
    trial_days_remaining: int = 0
    has_license: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SignUpResult(BaseModel):
    account: Account
    email_verification_required: bool
    organization: Optional[OrganizationSummary] = None
    partial_setup: bool = False
    invitation_error: Optional[str] = None
    message: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SignInResult(BaseModel):
    account: Account
    session_token: str = Field(repr=False)
    organization: Optional[OrganizationSummary] = None
    partial_setup: bool = False
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = ["Account", "OrganizationSummary", "SignInResult", "SignUpResult"]
