"""API schemas for the payment webhook."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..reconciliation.models import WebhookOutcome, WebhookStatus


class WebhookResponse(BaseModel):
    status: WebhookStatus
    event_type: Optional[str] = Field(alias="eventType", default=None)
    organization_id: Optional[str] = Field(alias="organizationId", default=None)
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: WebhookOutcome) -> "WebhookResponse":
        purchase = outcome.purchase
        return cls(
            status=outcome.status,
            event_type=outcome.event_type,
            organization_id=purchase.organization_id if purchase else None,
            transaction_id=purchase.transaction_id if purchase else None,
        )
