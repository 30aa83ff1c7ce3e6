"""Authoring and applying deferred seat-count changes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ExternalDependencyFailure, PreconditionFailure, ValidationFailure
from ..organizations.models import LicensePool
from ..organizations.store import EntitlementStore, SeatCapacityExceeded
from ..reconciliation.context import RequestContext
from ..reconciliation.engine import ReconciliationEngine
from .provider import PRORATION_PRORATED_IMMEDIATELY, PaymentProvider, PaymentProviderError

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCHEDULED_QUANTITY = 200


class ScheduledChangeResult(BaseModel):
    """Outcome of applying one due change."""

    license_id: str
    organization_id: str
    previous_quantity: int
    new_quantity: int
    action: str
    success: bool
    error: Optional[str] = None
    unassigned_membership_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ScheduledChangeReport(BaseModel):
    """Summary of one sweep over due changes."""

    run_at: datetime
    changes_applied: int = 0
    failures: int = 0
    results: List[ScheduledChangeResult] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _change_note(current: int, new_quantity: int, *, cancellation: bool, actor: str, on: datetime) -> str:
    if cancellation:
        change = "Scheduled cancellation"
    elif new_quantity < current:
        change = f"Reduced from {current} to {new_quantity}"
    else:
        change = f"Increased from {current} to {new_quantity}"
    return f"{change} by {actor} on {on.date().isoformat()}"


@dataclass
class DeferredChangeScheduler:
    """Lets admins schedule seat changes and applies them once they fall due.

    The provider is always called first; local state is committed only after
    it succeeds, so a failed call leaves the schedule in place for the next run.
    """

    store: EntitlementStore
    engine: ReconciliationEngine
    provider: PaymentProvider
    clock: Optional[Callable[[], datetime]] = None
    max_quantity: int = DEFAULT_MAX_SCHEDULED_QUANTITY

    def schedule_change(
        self,
        ctx: RequestContext,
        organization_id: str,
        new_quantity: Optional[int],
        effective_date: Optional[datetime],
        *,
        cancel_at_renewal: bool = False,
    ) -> LicensePool:
        """Record a change to apply at ``effective_date``, replacing any earlier one."""

        if cancel_at_renewal:
            new_quantity = 0
        if new_quantity is None:
            raise ValidationFailure(code="MISSING_QUANTITY", message="Missing required field: newQuantity")
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
            raise ValidationFailure(code="INVALID_QUANTITY", message="New quantity must be an integer")
        if new_quantity < 0 or new_quantity > self.max_quantity:
            raise ValidationFailure(
                code="INVALID_QUANTITY",
                message=f"New quantity must be between 0 and {self.max_quantity}",
                detail={"received": new_quantity},
            )

        self.engine.require_admin(ctx, organization_id)
        pool = self.store.get_license_pool(organization_id)
        if pool is None:
            raise PreconditionFailure(code="LICENSE_NOT_FOUND", message="License not found for this organization")
        if not pool.subscription_id:
            raise PreconditionFailure(code="NO_SUBSCRIPTION", message="No active subscription found for this license")
        if effective_date is None:
            if not cancel_at_renewal:
                raise ValidationFailure(code="MISSING_EFFECTIVE_DATE", message="Missing required field: effectiveDate")
            effective_date = pool.expires_at
        if effective_date.tzinfo is None:
            effective_date = effective_date.replace(tzinfo=timezone.utc)
        if new_quantity == pool.total_licenses and not cancel_at_renewal:
            raise PreconditionFailure(
                code="NO_CHANGE",
                message="New quantity is the same as current total. No change needed.",
            )

        now = _current_time(self.clock)
        note = _change_note(
            pool.total_licenses,
            new_quantity,
            cancellation=cancel_at_renewal or new_quantity == 0,
            actor=ctx.display_name,
            on=now,
        )
        updated = self.store.schedule_license_change(
            pool.id,
            total_licenses=new_quantity,
            change_at=effective_date,
            note=note,
        )
        if updated is None:
            raise PreconditionFailure(code="LICENSE_NOT_FOUND", message="License not found for this organization")
        logger.info(
            "Scheduled license change",
            extra={
                "organization_id": organization_id,
                "license_id": pool.id,
                "current_quantity": pool.total_licenses,
                "scheduled_quantity": new_quantity,
                "effective_at": effective_date.isoformat(),
            },
        )
        return updated

    def cancel_scheduled_change(self, ctx: RequestContext, organization_id: str) -> LicensePool:
        self.engine.require_admin(ctx, organization_id)
        pool = self.store.get_license_pool(organization_id)
        if pool is None:
            raise PreconditionFailure(code="LICENSE_NOT_FOUND", message="License not found for this organization")
        if not pool.has_scheduled_change:
            return pool
        updated = self.store.schedule_license_change(pool.id, total_licenses=None, change_at=None, note=None)
        logger.info(
            "Cleared scheduled license change",
            extra={"organization_id": organization_id, "license_id": pool.id},
        )
        return updated or pool

    def apply_due_changes(self, now: Optional[datetime] = None) -> ScheduledChangeReport:
        """Apply every change due at ``now``. Failures are reported, never retried in the same run."""

        run_at = now or _current_time(self.clock)
        due = self.store.list_due_license_changes(run_at)
        results: List[ScheduledChangeResult] = []
        for pool in due:
            try:
                results.append(self._apply_one(pool))
            except Exception as exc:
                logger.warning(
                    "Scheduled license change failed",
                    extra={"license_id": pool.id, "organization_id": pool.organization_id},
                    exc_info=True,
                )
                results.append(
                    ScheduledChangeResult(
                        license_id=pool.id,
                        organization_id=pool.organization_id,
                        previous_quantity=pool.total_licenses,
                        new_quantity=pool.scheduled_total_licenses or 0,
                        action="failed",
                        success=False,
                        error=str(exc),
                    )
                )
        applied = sum(1 for result in results if result.success)
        report = ScheduledChangeReport(
            run_at=run_at,
            changes_applied=applied,
            failures=len(results) - applied,
            results=results,
        )
        logger.info(
            "Scheduled license changes processed",
            extra={"due": len(due), "applied": report.changes_applied, "failures": report.failures},
        )
        return report

    def _apply_one(self, pool: LicensePool) -> ScheduledChangeResult:
        new_quantity = pool.scheduled_total_licenses
        cancellation = new_quantity == 0
        action = "cancelled" if cancellation else ("reduced" if new_quantity < pool.total_licenses else "increased")
        base = dict(
            license_id=pool.id,
            organization_id=pool.organization_id,
            previous_quantity=pool.total_licenses,
            new_quantity=new_quantity,
            action=action,
        )
        if not pool.subscription_id:
            return ScheduledChangeResult(**base, success=False, error="No subscription on license")

        try:
            if cancellation:
                self.provider.cancel_subscription(pool.subscription_id)
            else:
                self.provider.update_subscription_quantity(
                    pool.subscription_id,
                    new_quantity,
                    proration_mode=PRORATION_PRORATED_IMMEDIATELY,
                )
        except PaymentProviderError as exc:
            failure = ExternalDependencyFailure(message=str(exc))
            logger.warning(
                "Payment provider rejected scheduled change",
                extra={"license_id": pool.id, "subscription_id": pool.subscription_id, "status_code": exc.status_code},
            )
            return ScheduledChangeResult(**base, success=False, error=f"{failure.code}: {failure.message}")

        try:
            applied = self.engine.commit_scheduled_change(pool)
        except SeatCapacityExceeded:
            return ScheduledChangeResult(
                **base,
                success=False,
                error="Seat usage changed while applying; will retry on the next run",
            )
        if applied is None:
            return ScheduledChangeResult(**{**base, "action": "already_applied"}, success=True)
        logger.info(
            "Applied scheduled license change",
            extra={
                "license_id": pool.id,
                "organization_id": pool.organization_id,
                "previous_quantity": pool.total_licenses,
                "new_quantity": new_quantity,
                "unassigned": len(applied.released_membership_ids),
            },
        )
        return ScheduledChangeResult(
            **base,
            success=True,
            unassigned_membership_ids=applied.released_membership_ids,
        )


__all__ = [
    "DEFAULT_MAX_SCHEDULED_QUANTITY",
    "DeferredChangeScheduler",
    "ScheduledChangeReport",
    "ScheduledChangeResult",
]
