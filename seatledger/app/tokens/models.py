"""Models for single-use, time-limited secrets."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenPurpose(str, Enum):
    INVITATION = "invitation"
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


DEFAULT_TOKEN_TTLS: Dict[TokenPurpose, timedelta] = {
    TokenPurpose.INVITATION: timedelta(days=7),
    TokenPurpose.EMAIL_VERIFICATION: timedelta(hours=24),
    TokenPurpose.PASSWORD_RESET: timedelta(hours=24),
}


class StoredToken(BaseModel):
    """Persisted token record. Only the SHA-256 digest of the secret is kept."""

    id: str
    purpose: TokenPurpose
    subject_id: str
    token_hash: str
    email: Optional[str] = None
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class IssuedToken(BaseModel):
    """Return value of :meth:`TokenService.issue`; the plaintext is never persisted."""

    plain_token: str = Field(repr=False)
    record: StoredToken

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def expires_at(self) -> datetime:
        return self.record.expires_at
