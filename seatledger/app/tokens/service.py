"""Issue and redeem hashed single-use tokens."""
from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol
from uuid import uuid4

from ..errors import TOKEN_ALREADY_USED, TOKEN_EXPIRED, TOKEN_NOT_FOUND, PreconditionFailure
from .models import DEFAULT_TOKEN_TTLS, IssuedToken, StoredToken, TokenPurpose

logger = logging.getLogger(__name__)

MIN_TOKEN_BYTES = 16


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenRepository(Protocol):
    """Persistence operations required by the token service."""

    def save(self, token: StoredToken) -> StoredToken:
        ...

    def get_by_hash(self, purpose: TokenPurpose, token_hash: str) -> Optional[StoredToken]:
        ...

    def mark_used(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> Optional[StoredToken]:
        """Atomically flag the token used if it is unused and unexpired; ``None`` otherwise."""

    def release(self, token_id: str) -> None:
        ...

    def revoke_for_subject(self, purpose: TokenPurpose, subject_id: str) -> int:
        ...

    def delete_expired(self, now: datetime) -> int:
        ...


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class TokenService:
    """Generates, verifies and consumes invitation, verification and reset tokens."""

    repository: TokenRepository
    clock: Optional[Callable[[], datetime]] = None
    token_bytes: int = MIN_TOKEN_BYTES
    ttls: Dict[TokenPurpose, timedelta] = field(default_factory=lambda: dict(DEFAULT_TOKEN_TTLS))

    def __post_init__(self) -> None:
        if self.token_bytes < MIN_TOKEN_BYTES:
            raise ValueError(f"token_bytes must be at least {MIN_TOKEN_BYTES}")

    def issue(
        self,
        purpose: TokenPurpose,
        subject_id: str,
        ttl: Optional[timedelta] = None,
        *,
        email: Optional[str] = None,
        replace_existing: bool = True,
    ) -> IssuedToken:
        """Create a token bound to ``subject_id``. Earlier unused tokens for it are revoked."""

        now = _current_time(self.clock)
        plain_token = secrets.token_hex(self.token_bytes)
        lifetime = ttl if ttl is not None else self.ttls[purpose]
        if replace_existing:
            self.repository.revoke_for_subject(purpose, subject_id)
        record = self.repository.save(
            StoredToken(
                id=str(uuid4()),
                purpose=purpose,
                subject_id=subject_id,
                token_hash=hash_token(plain_token),
                email=email.strip().lower() if email else None,
                expires_at=now + lifetime,
                created_at=now,
            )
        )
        logger.info(
            "Issued token",
            extra={"token_purpose": purpose.value, "subject_id": subject_id, "token_hash_prefix": record.token_hash[:8]},
        )
        return IssuedToken(plain_token=plain_token, record=record)

    def inspect(self, purpose: TokenPurpose, plain_token: str) -> StoredToken:
        """Return the live token record without consuming it."""

        now = _current_time(self.clock)
        record = self.repository.get_by_hash(purpose, hash_token(plain_token or ""))
        failure = self._failure_for(record, now)
        if failure is not None:
            raise failure
        return record

    def redeem(self, purpose: TokenPurpose, plain_token: str) -> StoredToken:
        """Consume the token. Exactly one concurrent caller succeeds."""

        now = _current_time(self.clock)
        token_hash = hash_token(plain_token or "")
        record = self.repository.mark_used(purpose, token_hash, now)
        if record is not None:
            return record
        existing = self.repository.get_by_hash(purpose, token_hash)
        failure = self._failure_for(existing, now)
        if failure is None:
            # Consumed between the two reads.
            failure = PreconditionFailure(code=TOKEN_ALREADY_USED, message="Token has already been used")
        raise failure

    def release(self, token: StoredToken) -> None:
        """Undo a redemption whose follow-up mutation was rejected."""

        self.repository.release(token.id)

    def revoke(self, purpose: TokenPurpose, subject_id: str) -> int:
        return self.repository.revoke_for_subject(purpose, subject_id)

    def prune_expired(self) -> int:
        return self.repository.delete_expired(_current_time(self.clock))

    def _failure_for(self, record: Optional[StoredToken], now: datetime) -> Optional[PreconditionFailure]:
        if record is None:
            return PreconditionFailure(code=TOKEN_NOT_FOUND, message="Token not found")
        if record.used:
            return PreconditionFailure(code=TOKEN_ALREADY_USED, message="Token has already been used")
        if record.is_expired(now):
            return PreconditionFailure(code=TOKEN_EXPIRED, message="Token has expired")
        return None


__all__ = ["TokenRepository", "TokenService", "hash_token"]
