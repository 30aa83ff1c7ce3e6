"""Application wiring for accounts, seat reconciliation and license jobs."""
from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import List, Optional

from fastapi import status

from ... import app_context
from ...licensing_config import LicensingConfig, load_licensing_config
from ...mail import EmailConfig, EmailProvider, create_email_provider, load_email_config
from ..accounts import AccountService
from ..accounts.repository import PostgresAccountRepository
from ..billing.provider import PaddleClient
from ..billing.scheduled_changes import DeferredChangeScheduler
from ..errors import ReconciliationError
from ..notifications import NotificationTrigger
from ..organizations import OrphanCleanup
from ..organizations.models import Membership, MembershipRole
from ..organizations.repository import PostgresEntitlementStore
from ..reconciliation import (
    AuditLogger,
    InvitationOutcome,
    ReconciliationEngine,
    RequestContext,
    SeatAuditEvent,
    WebhookOutcome,
)
from ..tokens import TokenService
from ..tokens.repository import PostgresTokenRepository

logger = logging.getLogger("licensing")


class LoggingSeatAuditLogger(AuditLogger):
    """Audit logger forwarding seat events to the application log."""

    def log(self, event: SeatAuditEvent) -> None:
        logger.info(
            "Seat event %s organization=%s subject=%s actor=%s metadata=%s",
            event.action.value,
            event.organization_id,
            event.subject_id,
            event.actor_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_licensing_config() -> LicensingConfig:
    return load_licensing_config()


@lru_cache(maxsize=1)
def get_email_config() -> EmailConfig:
    return load_email_config()


@lru_cache(maxsize=1)
def get_email_provider() -> EmailProvider:
    provider = create_email_provider(get_email_config())
    logger.info("Email provider configured", extra=provider.describe())
    return provider


@lru_cache(maxsize=1)
def get_entitlement_store() -> PostgresEntitlementStore:
    return PostgresEntitlementStore()


@lru_cache(maxsize=1)
def get_account_repository() -> PostgresAccountRepository:
    return PostgresAccountRepository()


@lru_cache(maxsize=1)
def get_token_service() -> TokenService:
    config = get_licensing_config()
    return TokenService(repository=PostgresTokenRepository(), token_bytes=config.token_bytes)


@lru_cache(maxsize=1)
def get_notification_trigger() -> NotificationTrigger:
    return NotificationTrigger(
        store=get_entitlement_store(),
        accounts=get_account_repository(),
        email_provider=get_email_provider(),
        app_base_url=get_email_config().app_base_url,
    )


@lru_cache(maxsize=1)
def get_reconciliation_engine() -> ReconciliationEngine:
    config = get_licensing_config()
    return ReconciliationEngine(
        store=get_entitlement_store(),
        token_service=get_token_service(),
        audit_logger=LoggingSeatAuditLogger(),
        invitation_notifier=get_notification_trigger(),
        trial_days=config.trial_days,
        license_term=timedelta(days=config.license_term_days),
    )


@lru_cache(maxsize=1)
def get_payment_provider() -> PaddleClient:
    config = get_licensing_config()
    return PaddleClient(
        api_key=config.paddle_api_key,
        base_url=config.paddle_api_base_url,
        timeout=config.paddle_api_timeout,
    )


@lru_cache(maxsize=1)
def get_change_scheduler() -> DeferredChangeScheduler:
    return DeferredChangeScheduler(
        store=get_entitlement_store(),
        engine=get_reconciliation_engine(),
        provider=get_payment_provider(),
        max_quantity=get_licensing_config().max_scheduled_quantity,
    )


@lru_cache(maxsize=1)
def get_orphan_cleanup() -> OrphanCleanup:
    return OrphanCleanup(store=get_entitlement_store())


def _create_session_token(user_id: str) -> str:
    return app_context.create_access_token(subject=user_id)


@lru_cache(maxsize=1)
def get_account_service() -> AccountService:
    return AccountService(
        repository=get_account_repository(),
        store=get_entitlement_store(),
        engine=get_reconciliation_engine(),
        token_service=get_token_service(),
        create_session_token=_create_session_token,
        notifier=get_notification_trigger(),
        auto_confirm_email=get_licensing_config().auto_confirm_email,
    )


def invite_or_add_member(
    ctx: RequestContext,
    organization_id: str,
    email: str,
    role: MembershipRole = MembershipRole.MEMBER,
) -> InvitationOutcome:
    """Seat an existing account directly; invite by email otherwise."""

    engine = get_reconciliation_engine()
    account = get_account_repository().get_by_email((email or "").strip().lower())
    if account is None:
        return engine.invite_member(ctx, organization_id, email, role)
    return engine.add_member(ctx, organization_id, account.id, email=account.email, role=role)


def list_members(ctx: RequestContext, organization_id: str) -> List[Membership]:
    get_reconciliation_engine().require_admin(ctx, organization_id)
    return list(get_entitlement_store().list_memberships(organization_id))


def handle_payment_webhook(raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
    config = get_licensing_config()
    if not config.paddle_webhook_secret:
        logger.error("Payment webhook received but PADDLE_WEBHOOK_SECRET is not configured")
        raise ReconciliationError(
            code="WEBHOOK_NOT_CONFIGURED",
            message="Webhook secret is not configured",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return get_reconciliation_engine().handle_payment_callback(
        raw_body,
        signature_header,
        secret=config.paddle_webhook_secret,
        tolerance_seconds=config.signature_tolerance_seconds,
    )


__all__ = [
    "LoggingSeatAuditLogger",
    "handle_payment_webhook",
    "invite_or_add_member",
    "list_members",
    "get_account_repository",
    "get_account_service",
    "get_change_scheduler",
    "get_email_provider",
    "get_entitlement_store",
    "get_licensing_config",
    "get_notification_trigger",
    "get_orphan_cleanup",
    "get_payment_provider",
    "get_reconciliation_engine",
    "get_token_service",
]
