"""Seat reconciliation engine and its request-scoped inputs."""

from .context import AccountIdentity, RequestContext
from .engine import (
    AuditLogger,
    InvitationNotifier,
    ReconciliationEngine,
    default_organization_name,
    select_members_to_unassign,
)
from .models import (
    InvitationDetails,
    InvitationOutcome,
    ProvisioningOutcome,
    PurchaseOutcome,
    ScheduledChangeApplied,
    SeatAuditAction,
    SeatAuditEvent,
    SeatAvailability,
    WebhookOutcome,
    WebhookStatus,
)

__all__ = [
    "AccountIdentity",
    "AuditLogger",
    "InvitationDetails",
    "InvitationNotifier",
    "InvitationOutcome",
    "ProvisioningOutcome",
    "PurchaseOutcome",
    "ScheduledChangeApplied",
    "ReconciliationEngine",
    "RequestContext",
    "SeatAuditAction",
    "SeatAuditEvent",
    "SeatAvailability",
    "WebhookOutcome",
    "WebhookStatus",
    "default_organization_name",
    "select_members_to_unassign",
]
