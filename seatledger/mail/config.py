"""Settings for the transactional mail sent to organization admins and invitees."""
from __future__ import annotations

import os
from dataclasses import dataclass
from email.utils import formataddr
from typing import Mapping, Optional

from ..licensing_config import env_bool, env_float, env_int

SMTP_SSL_PORT = 465


@dataclass(frozen=True)
class EmailConfig:
    provider_name: str
    from_email: str
    from_name: Optional[str]
    reply_to: Optional[str]
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    smtp_timeout: float
    # Base for invitation, verification and reset links.
    app_base_url: str

    @property
    def sender(self) -> str:
        return formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email

    @property
    def implicit_tls(self) -> bool:
        return self.smtp_port == SMTP_SSL_PORT


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables."""

    values = os.environ if env is None else env

    return EmailConfig(
        provider_name=(values.get("EMAIL_PROVIDER") or "dev").strip().lower() or "dev",
        from_email=values.get("FROM_EMAIL", "noreply@example.com"),
        from_name=values.get("FROM_NAME") or None,
        reply_to=values.get("REPLY_TO_EMAIL") or None,
        smtp_host=values.get("SMTP_HOST", "localhost"),
        smtp_port=env_int(values.get("SMTP_PORT"), default=587),
        smtp_username=values.get("SMTP_USER") or None,
        smtp_password=values.get("SMTP_PASS") or None,
        smtp_use_tls=env_bool(values.get("SMTP_USE_TLS"), default=True),
        smtp_timeout=max(1.0, env_float(values.get("SMTP_TIMEOUT"), default=30.0)),
        app_base_url=values.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
    )


__all__ = ["EmailConfig", "SMTP_SSL_PORT", "load_email_config"]
