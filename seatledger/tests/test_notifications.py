from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from seatledger.app.notifications import NotificationTrigger
from seatledger.app.organizations.models import Membership, MembershipRole, NotificationKind

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def trigger(store, account_repository, email_provider, clock) -> NotificationTrigger:
    return NotificationTrigger(
        store=store,
        accounts=account_repository,
        email_provider=email_provider,
        app_base_url="https://app.example.com/",
        clock=clock,
    )


@pytest.fixture()
def owner(account_factory):
    return account_factory("owner@example.com", name="Olive Owner")


def _licensed_organization(store, owner_id, *, expires_at, total=5):
    organization = store.seed_organization("Acme", owner_id=owner_id)
    store.seed_membership(organization.id, owner_id, role=MembershipRole.ADMIN)
    return organization, store.seed_pool(organization.id, total=total, expires_at=expires_at)


def test_invitation_email_carries_accept_link(trigger, store, email_provider):
    organization = store.seed_organization("Acme")
    membership = Membership(id="m-1", organization_id=organization.id, email="new@example.com")

    sent = trigger.send_invitation(
        membership,
        organization,
        "tok123",
        inviter_name="Ada Admin",
        expires_at=FIXED_NOW + timedelta(days=7),
    )

    assert sent is True
    message = email_provider.messages[-1]
    assert message["to"] == "new@example.com"
    assert message["subject"] == "You're invited to join Acme"
    assert "https://app.example.com/accept-invitation?token=tok123" in message["text_body"]
    assert "Ada Admin invited you to join Acme as member." in message["text_body"]
    assert "March 08, 2024" in message["text_body"]


def test_invitation_without_email_is_not_sent(trigger, store, email_provider):
    organization = store.seed_organization("Acme")
    membership = Membership(id="m-1", organization_id=organization.id, user_id="u-1")

    assert trigger.send_invitation(membership, organization, "tok", inviter_name="Ada", expires_at=FIXED_NOW) is False
    assert email_provider.messages == []


def test_delivery_failure_returns_false(trigger, owner, email_provider):
    email_provider.fail = True

    assert trigger.send_password_reset(owner, "tok", expires_at=FIXED_NOW) is False


def test_reminder_sent_once_per_window(trigger, store, owner, email_provider):
    _licensed_organization(store, owner.id, expires_at=datetime(2024, 3, 8, 15, 0, tzinfo=timezone.utc))

    report = trigger.send_expiry_reminders()
    repeat = trigger.send_expiry_reminders()

    assert report.notifications_sent == 1
    assert report.by_kind == {"7_day": 1}
    assert email_provider.messages[0]["to"] == "owner@example.com"
    assert email_provider.messages[0]["subject"] == "Your Acme licenses expire in 7 day(s)"
    assert repeat.notifications_sent == 0
    assert repeat.already_notified == 1
    assert len(email_provider.messages) == 1
    assert [(entry.kind, entry.email_sent) for entry in store.notifications] == [(NotificationKind.SEVEN_DAY, True)]


def test_each_reminder_kind_fires_on_its_own_day(trigger, store, owner):
    _licensed_organization(store, owner.id, expires_at=datetime(2024, 3, 31, 8, 0, tzinfo=timezone.utc))

    kinds = []
    for day in range(30):
        run_at = FIXED_NOW + timedelta(days=day)
        report = trigger.send_expiry_reminders(run_at)
        kinds.extend(report.by_kind)

    assert kinds == ["30_day", "14_day", "7_day", "1_day"]


def test_expired_notice_repeats_weekly_within_grace(trigger, store, owner, email_provider):
    _licensed_organization(store, owner.id, expires_at=datetime(2024, 2, 25, 12, 0, tzinfo=timezone.utc))

    first = trigger.send_expiry_reminders(FIXED_NOW)
    three_days_later = trigger.send_expiry_reminders(FIXED_NOW + timedelta(days=3))
    eight_days_later = trigger.send_expiry_reminders(FIXED_NOW + timedelta(days=8))

    assert first.by_kind == {"expired": 1}
    assert three_days_later.already_notified == 1
    assert eight_days_later.notifications_sent == 1
    assert "25 day(s) left in the grace period" in email_provider.messages[0]["text_body"]
    assert email_provider.messages[0]["subject"] == "Your Acme licenses have expired"


def test_expired_beyond_grace_is_not_notified(trigger, store, owner, email_provider):
    _licensed_organization(store, owner.id, expires_at=FIXED_NOW - timedelta(days=45))

    report = trigger.send_expiry_reminders()

    assert report.notifications_sent == 0
    assert email_provider.messages == []


def test_missing_owner_is_skipped(trigger, store):
    _licensed_organization(store, "u-gone", expires_at=datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc))

    report = trigger.send_expiry_reminders()

    assert report.skipped == 1
    assert store.notifications == []


def test_failed_reminder_is_logged_unsent(trigger, store, owner, email_provider):
    _licensed_organization(store, owner.id, expires_at=datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc))
    email_provider.fail = True

    report = trigger.send_expiry_reminders()

    assert report.failures == 1
    assert report.notifications_sent == 0
    assert [(entry.kind, entry.email_sent) for entry in store.notifications] == [(NotificationKind.ONE_DAY, False)]
