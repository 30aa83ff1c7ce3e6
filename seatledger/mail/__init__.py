"""Outbound email configuration, providers and templates."""

from .config import EmailConfig, load_email_config
from .providers import (
    DevPrintProvider,
    EmailDeliveryError,
    EmailProvider,
    SMTPProvider,
    create_email_provider,
)
from .renderer import EmailTemplate, render_email

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailDeliveryError",
    "EmailProvider",
    "EmailTemplate",
    "SMTPProvider",
    "create_email_provider",
    "load_email_config",
    "render_email",
]
