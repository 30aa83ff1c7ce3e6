"""User accounts and the signup / sign-in flows."""

from .models import Account, OrganizationSummary, SignInResult, SignUpResult
from .service import (
    PASSWORD_RESET_MESSAGE,
    AccountNotifier,
    AccountRepository,
    AccountService,
    signup_organization_name,
)

__all__ = [
    "Account",
    "AccountNotifier",
    "AccountRepository",
    "AccountService",
    "OrganizationSummary",
    "PASSWORD_RESET_MESSAGE",
    "SignInResult",
    "SignUpResult",
    "signup_organization_name",
]
