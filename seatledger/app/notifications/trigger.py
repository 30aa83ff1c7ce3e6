"""Decides when account and license emails go out, and sends each at most once."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Sequence
from urllib.parse import urlencode, urljoin

from pydantic import BaseModel, ConfigDict, Field

from ...mail import EmailProvider, EmailTemplate, render_email
from ..accounts.models import Account
from ..organizations.models import LicensePool, Membership, NotificationKind, NotificationLogEntry, Organization
from ..organizations.store import EntitlementStore

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DAYS = (30, 14, 7, 1)
DEFAULT_GRACE_DAYS = 30
EXPIRED_NOTICE_INTERVAL = timedelta(days=7)


class AccountLookup(Protocol):
    def get_by_id(self, account_id: str) -> Optional[Account]:
        ...


class ExpiryNotificationReport(BaseModel):
    """Summary of one expiry reminder sweep."""

    run_at: datetime
    notifications_sent: int = 0
    already_notified: int = 0
    skipped: int = 0
    failures: int = 0
    by_kind: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _format_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


@dataclass
class NotificationTrigger:
    """Renders templates and hands them to the configured email provider."""

    store: EntitlementStore
    accounts: AccountLookup
    email_provider: EmailProvider
    app_base_url: str
    clock: Optional[Callable[[], datetime]] = None
    reminder_days: Sequence[int] = field(default_factory=lambda: DEFAULT_REMINDER_DAYS)
    grace_days: int = DEFAULT_GRACE_DAYS

    def _link(self, path: str, **params: str) -> str:
        url = urljoin(self.app_base_url.rstrip("/") + "/", path)
        return f"{url}?{urlencode(params)}" if params else url

    def _deliver(self, to: str, template: EmailTemplate, context: Dict[str, object]) -> bool:
        subject, text_body, html_body = render_email(template, context)
        try:
            self.email_provider.send_email(to, subject, html_body, text_body)
        except Exception:
            logger.warning(
                "Email delivery failed",
                extra={"email_template": template.value, "email_recipient": to},
                exc_info=True,
            )
            return False
        logger.info("Email sent", extra={"email_template": template.value, "email_recipient": to})
        return True

    # Token-carrying emails

    def send_invitation(
        self,
        membership: Membership,
        organization: Organization,
        plain_token: str,
        *,
        inviter_name: str,
        expires_at: datetime,
    ) -> bool:
        if not membership.email:
            return False
        return self._deliver(
            membership.email,
            EmailTemplate.INVITATION,
            {
                "organization_name": organization.name,
                "inviter_name": inviter_name,
                "role": membership.role.value,
                "action_url": self._link("accept-invitation", token=plain_token),
                "expires_at": _format_date(expires_at),
            },
        )

    def send_email_verification(self, account: Account, plain_token: str, *, expires_at: datetime) -> bool:
        return self._deliver(
            account.email,
            EmailTemplate.EMAIL_VERIFICATION,
            {
                "name": account.name or account.email,
                "action_url": self._link("verify-email", token=plain_token),
                "expires_at": _format_date(expires_at),
            },
        )

    def send_password_reset(self, account: Account, plain_token: str, *, expires_at: datetime) -> bool:
        return self._deliver(
            account.email,
            EmailTemplate.PASSWORD_RESET,
            {
                "name": account.name or account.email,
                "action_url": self._link("reset-password", token=plain_token),
                "expires_at": _format_date(expires_at),
            },
        )

    # License expiry

    def send_expiry_reminders(self, now: Optional[datetime] = None) -> ExpiryNotificationReport:
        """Warn owners about upcoming and recent expiries, once per license, kind and fence window."""

        run_at = now or _current_time(self.clock)
        today = _start_of_day(run_at)
        report = ExpiryNotificationReport(run_at=run_at)

        for days in self.reminder_days:
            window_start = today + timedelta(days=days)
            pools = self.store.list_license_pools_expiring_between(window_start, window_start + timedelta(days=1))
            kind = NotificationKind.for_days_remaining(days)
            for pool in pools:
                self._notify(
                    report,
                    pool,
                    kind,
                    since=today,
                    run_at=run_at,
                    template=EmailTemplate.LICENSE_EXPIRING,
                    extra_context={"days_remaining": days},
                )

        expired = self.store.list_license_pools_expiring_between(run_at - timedelta(days=self.grace_days), run_at)
        for pool in expired:
            elapsed = run_at - pool.expires_at
            days_expired = elapsed.days + (1 if elapsed.seconds or elapsed.microseconds else 0)
            if days_expired > self.grace_days:
                continue
            self._notify(
                report,
                pool,
                NotificationKind.EXPIRED,
                since=run_at - EXPIRED_NOTICE_INTERVAL,
                run_at=run_at,
                template=EmailTemplate.LICENSE_EXPIRED,
                extra_context={"grace_days_remaining": max(self.grace_days - days_expired, 0)},
            )

        logger.info(
            "License expiry notifications processed",
            extra={
                "notifications_sent": report.notifications_sent,
                "already_notified": report.already_notified,
                "skipped": report.skipped,
                "failures": report.failures,
            },
        )
        return report

    def _notify(
        self,
        report: ExpiryNotificationReport,
        pool: LicensePool,
        kind: NotificationKind,
        *,
        since: datetime,
        run_at: datetime,
        template: EmailTemplate,
        extra_context: Dict[str, object],
    ) -> None:
        organization = self.store.get_organization(pool.organization_id)
        owner = self.accounts.get_by_id(organization.owner_id) if organization and organization.owner_id else None
        if organization is None or owner is None:
            logger.warning(
                "No owner to notify about license expiry",
                extra={"license_id": pool.id, "organization_id": pool.organization_id},
            )
            report.skipped += 1
            return

        claimed = self.store.claim_notification(
            NotificationLogEntry(
                license_id=pool.id,
                organization_id=pool.organization_id,
                kind=kind,
                sent_at=run_at,
            ),
            since=since,
        )
        if claimed is None:
            report.already_notified += 1
            return

        context: Dict[str, object] = {
            "name": owner.name or owner.email,
            "organization_name": organization.name,
            "total_licenses": pool.total_licenses,
            "expires_at": _format_date(pool.expires_at),
            "action_url": self._link("dashboard"),
        }
        context.update(extra_context)
        sent = self._deliver(owner.email, template, context)
        self.store.mark_notification_sent(claimed.id, email_sent=sent)
        if sent:
            report.notifications_sent += 1
            report.by_kind[kind.value] = report.by_kind.get(kind.value, 0) + 1
        else:
            report.failures += 1


__all__ = ["AccountLookup", "ExpiryNotificationReport", "NotificationTrigger"]
