"""Rendering for invitation, account and license-expiry emails.

Templates use ``{{ name }}`` placeholders. Every placeholder must be present
in the context; values are HTML-escaped in the ``.html`` body only, since
organization names and inviter names are user supplied.
"""
from __future__ import annotations

import html
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Tuple

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")


class EmailTemplate(str, Enum):
    INVITATION = "invitation"
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    LICENSE_EXPIRING = "license_expiring"
    LICENSE_EXPIRED = "license_expired"


@lru_cache(maxsize=None)
def _source(filename: str) -> str:
    return (TEMPLATE_DIR / filename).read_text(encoding="utf-8")


def _fill(filename: str, context: Mapping[str, Any], *, escape: bool) -> str:
    def _value(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in context:
            raise ValueError(f"Template {filename} needs {key!r}")
        value = context[key]
        text = "" if value is None else str(value)
        return html.escape(text) if escape else text

    return _PLACEHOLDER.sub(_value, _source(filename)).strip()


def render_email(template: EmailTemplate, context: Mapping[str, Any]) -> Tuple[str, str, str]:
    """Return ``(subject, text_body, html_body)`` for ``template``."""

    base = template.value
    subject = _fill(f"{base}_subject.txt.j2", context, escape=False)
    text_body = _fill(f"{base}_body.txt.j2", context, escape=False)
    html_body = _fill(f"{base}_body.html.j2", context, escape=True)
    # Header injection guard.
    return " ".join(subject.split()), text_body, html_body


__all__ = ["EmailTemplate", "TEMPLATE_DIR", "render_email"]
