"""Organizations, memberships and license pools."""

from .cleanup import CleanupReport, OrphanCleanup
from .models import (
    LicensePool,
    LicensePurchase,
    LicenseType,
    Membership,
    MembershipRole,
    MembershipStatus,
    MembershipUpsert,
    NotificationKind,
    NotificationLogEntry,
    Organization,
    PendingOrganization,
    PurchaseCredit,
    RenewalAction,
    RenewalHistoryEntry,
    ScheduledChangeCommit,
    SeatTransition,
)
from .store import EntitlementStore, MembershipConflict, SeatCapacityExceeded

__all__ = [
    "CleanupReport",
    "EntitlementStore",
    "LicensePool",
    "LicensePurchase",
    "LicenseType",
    "Membership",
    "MembershipConflict",
    "MembershipRole",
    "MembershipStatus",
    "MembershipUpsert",
    "NotificationKind",
    "NotificationLogEntry",
    "Organization",
    "OrphanCleanup",
    "PendingOrganization",
    "PurchaseCredit",
    "RenewalAction",
    "RenewalHistoryEntry",
    "ScheduledChangeCommit",
    "SeatCapacityExceeded",
    "SeatTransition",
]
