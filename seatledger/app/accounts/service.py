"""Signup, sign-in, email verification and password reset."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol
from uuid import uuid4

from passlib.hash import bcrypt

from ..errors import (
    TOKEN_NOT_FOUND,
    AuthenticationFailure,
    PartialSetupFailure,
    PreconditionFailure,
    ValidationFailure,
)
from ..organizations.models import PendingOrganization
from ..organizations.store import EntitlementStore
from ..reconciliation.engine import ReconciliationEngine
from ..reconciliation.models import ProvisioningOutcome
from ..tokens.models import TokenPurpose
from ..tokens.service import TokenService
from .models import Account, OrganizationSummary, SignInResult, SignUpResult

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
PASSWORD_RESET_MESSAGE = "If an account matches the information provided, a reset email has been sent."


class AccountRepository(Protocol):
    """Persistence operations for accounts."""

    def get_by_id(self, account_id: str) -> Optional[Account]:
        ...

    def get_by_email(self, email: str) -> Optional[Account]:
        ...

    def create(self, account: Account) -> Optional[Account]:
        ...

    def mark_email_confirmed(self, account_id: str) -> Optional[Account]:
        ...

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        ...


class AccountNotifier(Protocol):
    """Sends the account emails that carry a plaintext token."""

    def send_email_verification(self, account: Account, plain_token: str, *, expires_at: datetime) -> bool:
        ...

    def send_password_reset(self, account: Account, plain_token: str, *, expires_at: datetime) -> bool:
        ...


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def signup_organization_name(email: str) -> str:
    local_part = email.split("@", 1)[0]
    return f"{local_part}'s Organization"


def _validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailure(
            code="WEAK_PASSWORD",
            message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )
    return password


@dataclass
class AccountService:
    """Owns account credentials and hands confirmed users to the reconciliation engine."""

    repository: AccountRepository
    store: EntitlementStore
    engine: ReconciliationEngine
    token_service: TokenService
    create_session_token: Callable[[str], str]
    notifier: Optional[AccountNotifier] = None
    password_hasher: Any = bcrypt
    auto_confirm_email: bool = False
    clock: Optional[Callable[[], datetime]] = None

    def sign_up(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        organization_name: Optional[str] = None,
        invitation_token: Optional[str] = None,
    ) -> SignUpResult:
        normalized = _normalize_email(email)
        if "@" not in normalized:
            raise ValidationFailure(code="INVALID_EMAIL", message="A valid email address is required")
        _validate_password(password)
        if self.repository.get_by_email(normalized) is not None:
            raise ValidationFailure(code="EMAIL_TAKEN", message="An account with this email already exists")

        now = _current_time(self.clock)
        confirmed = self.auto_confirm_email or self._invitation_confirms(normalized, invitation_token)
        account = self.repository.create(
            Account(
                id=str(uuid4()),
                email=normalized,
                name=(name or "").strip() or None,
                password_hash=self.password_hasher.hash(password),
                email_confirmed=confirmed,
                created_at=now,
                updated_at=now,
            )
        )
        if account is None:
            raise ValidationFailure(code="EMAIL_TAKEN", message="An account with this email already exists")
        logger.info("Account created", extra={"user_id": account.id, "email_confirmed": confirmed})
        organization_name = (organization_name or "").strip() or signup_organization_name(normalized)

        if not confirmed:
            self.store.save_pending_organization(
                PendingOrganization(
                    id=str(uuid4()),
                    user_email=normalized,
                    user_name=account.name,
                    organization_name=organization_name,
                    user_id=account.id,
                    created_at=now,
                )
            )
            self._send_verification(account)
            return SignUpResult(
                account=account,
                email_verification_required=True,
                message="Registration successful. Check your email to confirm your account.",
            )

        try:
            outcome = self.engine.provision_confirmed_signup(
                account.identity(),
                organization_name=organization_name,
                invitation_token=invitation_token,
            )
        except Exception:
            logger.exception("Organization setup failed after signup", extra={"user_id": account.id})
            return SignUpResult(
                account=account,
                email_verification_required=False,
                partial_setup=True,
                message=PartialSetupFailure().message,
            )
        return SignUpResult(
            account=account,
            email_verification_required=False,
            organization=self._summary(outcome),
            invitation_error=outcome.invitation_error,
            message="Account created successfully",
        )

    def verify_email(self, plain_token: str) -> Account:
        record = self.token_service.redeem(TokenPurpose.EMAIL_VERIFICATION, plain_token)
        account = self.repository.mark_email_confirmed(record.subject_id)
        if account is None:
            raise PreconditionFailure(code=TOKEN_NOT_FOUND, message="Account for this token no longer exists")
        logger.info("Email confirmed", extra={"user_id": account.id})
        return account

    def sign_in(self, email: str, password: str) -> SignInResult:
        account = self.repository.get_by_email(_normalize_email(email))
        if account is None or not self.password_hasher.verify(password or "", account.password_hash):
            raise AuthenticationFailure(code="INVALID_CREDENTIALS", message="Invalid email or password")
        if not account.email_confirmed:
            raise PreconditionFailure(
                code="EMAIL_NOT_CONFIRMED",
                message="Please confirm your email address before signing in",
            )

        organization: Optional[OrganizationSummary] = None
        partial_setup = False
        message: Optional[str] = None
        try:
            organization = self._summary(self.engine.provision_sign_in(account.identity()))
        except Exception:
            logger.exception("Organization setup failed during sign-in", extra={"user_id": account.id})
            partial_setup = True
            message = PartialSetupFailure().message
        return SignInResult(
            account=account,
            session_token=self.create_session_token(account.id),
            organization=organization,
            partial_setup=partial_setup,
            message=message,
        )

    def request_password_reset(self, email: str) -> str:
        """Answer identically whether or not the account exists."""

        account = self.repository.get_by_email(_normalize_email(email))
        if account is None:
            logger.info("Password reset requested for unknown email")
            return PASSWORD_RESET_MESSAGE
        issued = self.token_service.issue(TokenPurpose.PASSWORD_RESET, account.id, email=account.email)
        if self.notifier is not None:
            try:
                self.notifier.send_password_reset(account, issued.plain_token, expires_at=issued.expires_at)
            except Exception:
                logger.exception("Failed to send password reset email", extra={"user_id": account.id})
        return PASSWORD_RESET_MESSAGE

    def confirm_password_reset(self, plain_token: str, new_password: str) -> Account:
        _validate_password(new_password)
        record = self.token_service.redeem(TokenPurpose.PASSWORD_RESET, plain_token)
        account = self.repository.update_password(record.subject_id, self.password_hasher.hash(new_password))
        if account is None:
            raise PreconditionFailure(code=TOKEN_NOT_FOUND, message="Account for this token no longer exists")
        logger.info("Password reset", extra={"user_id": account.id})
        return account

    def _invitation_confirms(self, email: str, invitation_token: Optional[str]) -> bool:
        if not invitation_token:
            return False
        try:
            record = self.token_service.inspect(TokenPurpose.INVITATION, invitation_token)
        except PreconditionFailure:
            return False
        return record.email == email

    def _send_verification(self, account: Account) -> None:
        issued = self.token_service.issue(TokenPurpose.EMAIL_VERIFICATION, account.id, email=account.email)
        if self.notifier is None:
            return
        try:
            self.notifier.send_email_verification(account, issued.plain_token, expires_at=issued.expires_at)
        except Exception:
            logger.exception("Failed to send verification email", extra={"user_id": account.id})

    def _summary(self, outcome: Optional[ProvisioningOutcome]) -> Optional[OrganizationSummary]:
        if outcome is None or outcome.organization is None or outcome.membership is None:
            return None
        organization = outcome.organization
        return OrganizationSummary(
            id=organization.id,
            name=organization.name,
            role=outcome.membership.role,
            is_trial=organization.is_trial,
            trial_days_remaining=organization.trial_days_remaining(_current_time(self.clock)),
            has_license=outcome.membership.has_license,
        )


__all__ = [
    "AccountNotifier",
    "AccountRepository",
    "AccountService",
    "PASSWORD_RESET_MESSAGE",
    "signup_organization_name",
]
