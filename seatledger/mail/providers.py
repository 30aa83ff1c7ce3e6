"""Delivery backends for invitation, account and license-expiry mail."""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Dict, Optional

from .config import EmailConfig

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """The backend refused or could not reach the recipient's mail server."""

    def __init__(self, recipient: str, reason: str) -> None:
        super().__init__(f"Could not deliver email to {recipient}: {reason}")
        self.recipient = recipient


class EmailProvider:
    """Sends one rendered message. Raising signals the message was not sent."""

    name = "base"

    def __init__(self, *, from_email: str, reply_to: Optional[str] = None) -> None:
        self.from_email = from_email
        self.reply_to = reply_to

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.from_email}


class DevPrintProvider(EmailProvider):
    """Logs messages, including the plain-text body so token links can be followed locally."""

    name = "dev"

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> None:
        logger.info(
            "Dev email dispatch\n%s",
            text_body,
            extra={
                "email_recipient": to,
                "email_subject": subject,
                "email_sender": self.from_email,
            },
        )


class SMTPProvider(EmailProvider):
    name = "smtp"

    def __init__(
        self,
        *,
        from_email: str,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        implicit_tls: bool = False,
        timeout: float = 30.0,
        reply_to: Optional[str] = None,
    ) -> None:
        super().__init__(from_email=from_email, reply_to=reply_to)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.implicit_tls = implicit_tls
        self.timeout = timeout

    def build_message(self, to: str, subject: str, html_body: str, text_body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = to
        message["Subject"] = subject
        if self.reply_to:
            message["Reply-To"] = self.reply_to
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")
        return message

    def _connect(self) -> smtplib.SMTP:
        if self.implicit_tls:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        if self.use_tls:
            client.starttls()
        return client

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> None:
        message = self.build_message(to, subject, html_body, text_body)
        try:
            with self._connect() as client:
                if self.username and self.password:
                    client.login(self.username, self.password)
                refused = client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(to, f"{type(exc).__name__}: {exc}") from exc
        if refused:
            raise EmailDeliveryError(to, "recipient refused")


def create_email_provider(config: EmailConfig) -> EmailProvider:
    if config.provider_name == "smtp":
        return SMTPProvider(
            from_email=config.sender,
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            use_tls=config.smtp_use_tls,
            implicit_tls=config.implicit_tls,
            timeout=config.smtp_timeout,
            reply_to=config.reply_to,
        )
    if config.provider_name != "dev":
        logger.warning("Unknown EMAIL_PROVIDER %s, falling back to dev provider", config.provider_name)
    return DevPrintProvider(from_email=config.sender, reply_to=config.reply_to)


__all__ = [
    "DevPrintProvider",
    "EmailDeliveryError",
    "EmailProvider",
    "SMTPProvider",
    "create_email_provider",
]
