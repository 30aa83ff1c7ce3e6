import smtplib

import pytest

from seatledger.mail import (
    DevPrintProvider,
    EmailDeliveryError,
    EmailTemplate,
    SMTPProvider,
    create_email_provider,
    load_email_config,
    render_email,
)


class _FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        _FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, message):
        self.sent.append(message)
        return {}


def test_default_provider_is_dev_print():
    provider = create_email_provider(load_email_config(env={}))

    assert isinstance(provider, DevPrintProvider)
    assert provider.from_email == "noreply@example.com"


def test_unknown_provider_falls_back_to_dev():
    provider = create_email_provider(load_email_config(env={"EMAIL_PROVIDER": "carrier-pigeon"}))

    assert isinstance(provider, DevPrintProvider)


def test_smtp_provider_configuration():
    config = load_email_config(
        env={
            "EMAIL_PROVIDER": "smtp",
            "SMTP_HOST": "mail.example.com",
            "SMTP_PORT": "2525",
            "SMTP_USER": "mailer",
            "SMTP_PASS": "secret",
            "FROM_EMAIL": "licenses@example.com",
            "FROM_NAME": "Acme Licensing",
            "REPLY_TO_EMAIL": "billing@example.com",
        }
    )
    provider = create_email_provider(config)

    assert isinstance(provider, SMTPProvider)
    assert (provider.host, provider.port) == ("mail.example.com", 2525)
    assert provider.username == "mailer"
    assert provider.from_email == "Acme Licensing <licenses@example.com>"
    assert provider.reply_to == "billing@example.com"
    assert provider.implicit_tls is False


def test_port_465_uses_implicit_tls():
    config = load_email_config(env={"EMAIL_PROVIDER": "smtp", "SMTP_PORT": "465"})

    assert create_email_provider(config).implicit_tls is True


def test_app_base_url_is_normalized():
    assert load_email_config({"APP_BASE_URL": "https://app.example.com/"}).app_base_url == "https://app.example.com"


def test_smtp_message_has_text_and_html_parts():
    provider = SMTPProvider(
        from_email="licenses@example.com",
        host="localhost",
        port=587,
        reply_to="billing@example.com",
    )

    message = provider.build_message("admin@example.com", "Seats", "<p>Seats</p>", "Seats")

    assert message["To"] == "admin@example.com"
    assert message["Reply-To"] == "billing@example.com"
    assert [part.get_content_type() for part in message.iter_parts()] == ["text/plain", "text/html"]


def test_smtp_send_uses_starttls_and_login(monkeypatch):
    _FakeSMTP.instances = []
    monkeypatch.setattr(smtplib, "SMTP", _FakeSMTP)
    provider = SMTPProvider(
        from_email="licenses@example.com",
        host="mail.example.com",
        port=587,
        username="mailer",
        password="secret",
        timeout=5.0,
    )

    provider.send_email("admin@example.com", "Seats", "<p>Seats</p>", "Seats")

    client = _FakeSMTP.instances[-1]
    assert client.timeout == 5.0
    assert client.started_tls is True
    assert client.logged_in == ("mailer", "secret")
    assert client.sent[0]["Subject"] == "Seats"


def test_smtp_failure_raises_delivery_error(monkeypatch):
    def _unreachable(host, port, timeout=None):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(smtplib, "SMTP", _unreachable)
    provider = SMTPProvider(from_email="licenses@example.com", host="mail.example.com", port=587)

    with pytest.raises(EmailDeliveryError) as excinfo:
        provider.send_email("admin@example.com", "Seats", "<p>Seats</p>", "Seats")

    assert excinfo.value.recipient == "admin@example.com"
    assert isinstance(excinfo.value.__cause__, ConnectionRefusedError)


def test_render_escapes_user_supplied_values_in_html_only():
    subject, text_body, html_body = render_email(
        EmailTemplate.INVITATION,
        {
            "organization_name": "R&D <Lab>",
            "inviter_name": "Ada",
            "role": "member",
            "action_url": "https://app.example.com/accept-invitation?token=abc",
            "expires_at": "March 08, 2024",
        },
    )

    assert subject == "You're invited to join R&D <Lab>"
    assert "join R&D <Lab> as member" in text_body
    assert "R&amp;D &lt;Lab&gt;" in html_body


def test_render_requires_every_placeholder():
    with pytest.raises(ValueError):
        render_email(EmailTemplate.PASSWORD_RESET, {"name": "Jane"})
