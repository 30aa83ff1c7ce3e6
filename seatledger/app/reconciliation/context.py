"""Request-scoped caller identity passed explicitly into the engine."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..organizations.models import MembershipRole


class RequestContext(BaseModel):
    """Verified caller identity and, when known, their active membership.

    Built once per request from the session token. The engine re-reads
    membership rows before acting, so ``organization_id`` and ``role`` are
    hints for routing and display only.
    """

    user_id: str
    email: str
    name: Optional[str] = None
    organization_id: Optional[str] = None
    role: Optional[MembershipRole] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def display_name(self) -> str:
        return self.name or self.email


class AccountIdentity(BaseModel):
    """Identity of an account being provisioned outside of a session."""

    user_id: str
    email: str
    name: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)
