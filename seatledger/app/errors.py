"""Error taxonomy shared by the reconciliation engine and its callers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

_PRECONDITION_STATUS: Dict[str, int] = {
    "ADMIN_REQUIRED": status.HTTP_403_FORBIDDEN,
    "INVITATION_EMAIL_MISMATCH": status.HTTP_403_FORBIDDEN,
    "EMAIL_NOT_CONFIRMED": status.HTTP_403_FORBIDDEN,
    "TOKEN_EXPIRED": status.HTTP_410_GONE,
}


@dataclass
class ReconciliationError(Exception):
    """Represents an actionable failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class AuthenticationFailure(ReconciliationError):
    """Bad signature or credentials. Nothing was mutated."""

    code: str = "AUTHENTICATION_FAILED"
    message: str = "Authentication failed"
    status_code: int = status.HTTP_401_UNAUTHORIZED


@dataclass
class ValidationFailure(ReconciliationError):
    """Missing, malformed or out-of-range input. Nothing was mutated."""

    code: str = "VALIDATION_FAILED"
    message: str = "Invalid request"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class PreconditionFailure(ReconciliationError):
    """A business precondition does not hold, reported with a typed reason code."""

    status_code: int = 0

    def __post_init__(self) -> None:
        if not self.status_code:
            if self.code in _PRECONDITION_STATUS:
                self.status_code = _PRECONDITION_STATUS[self.code]
            elif self.code.endswith("_NOT_FOUND"):
                self.status_code = status.HTTP_404_NOT_FOUND
            else:
                self.status_code = status.HTTP_409_CONFLICT
        super().__post_init__()


@dataclass
class ExternalDependencyFailure(ReconciliationError):
    """The payment provider call failed; local state was left untouched."""

    code: str = "EXTERNAL_DEPENDENCY_FAILED"
    message: str = "Payment provider request failed"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass
class PartialSetupFailure(ReconciliationError):
    """The account exists but organization bootstrap did not finish."""

    code: str = "PARTIAL_SETUP"
    message: str = "Account created but organization setup incomplete. Please contact support."
    status_code: int = status.HTTP_200_OK


NO_AVAILABLE_LICENSES = "NO_AVAILABLE_LICENSES"
TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
TOKEN_EXPIRED = "TOKEN_EXPIRED"
TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"


def no_available_licenses(message: str = "No available licenses") -> PreconditionFailure:
    return PreconditionFailure(code=NO_AVAILABLE_LICENSES, message=message)


__all__ = [
    "AuthenticationFailure",
    "ExternalDependencyFailure",
    "NO_AVAILABLE_LICENSES",
    "TOKEN_ALREADY_USED",
    "TOKEN_EXPIRED",
    "TOKEN_NOT_FOUND",
    "PartialSetupFailure",
    "PreconditionFailure",
    "ReconciliationError",
    "ValidationFailure",
    "no_available_licenses",
]
