"""Email triggers for invitations, account tokens and license expiry."""

from .trigger import AccountLookup, ExpiryNotificationReport, NotificationTrigger

__all__ = ["AccountLookup", "ExpiryNotificationReport", "NotificationTrigger"]
