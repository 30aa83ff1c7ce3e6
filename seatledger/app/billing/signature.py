"""Verification of timestamped HMAC signatures on payment callbacks.

The provider sends a header such as ``ts=1671552777;h1=eb4d0d...`` where
``h1`` is the hex HMAC-SHA256 of ``"<ts>:<raw body>"`` keyed with the
endpoint's shared secret. More than one ``h1`` may be present while the
secret is being rotated; any match is accepted.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional, Tuple, Union

SIGNATURE_HEADER = "Paddle-Signature"


@dataclass(frozen=True)
class SignatureHeader:
    timestamp: str
    signatures: Tuple[str, ...]


def parse_signature_header(value: Optional[str]) -> Optional[SignatureHeader]:
    """Return the parsed header, or ``None`` when it is absent or malformed."""

    if not value:
        return None
    timestamp: Optional[str] = None
    signatures = []
    for part in value.split(";"):
        key, sep, item = part.strip().partition("=")
        if not sep or not item:
            return None
        key = key.strip().lower()
        item = item.strip()
        if key == "ts":
            if timestamp is not None or not item.isdigit():
                return None
            timestamp = item
        elif key == "h1":
            signatures.append(item.lower())
    if timestamp is None or not signatures:
        return None
    return SignatureHeader(timestamp=timestamp, signatures=tuple(signatures))


def compute_signature(secret: str, timestamp: str, raw_body: Union[bytes, str]) -> str:
    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    signed_payload = timestamp.encode("ascii") + b":" + body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(secret: str, raw_body: Union[bytes, str], *, timestamp: Optional[int] = None) -> str:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"ts={ts};h1={compute_signature(secret, ts, raw_body)}"


def verify(
    raw_body: Union[bytes, str],
    header_value: Optional[str],
    secret: Optional[str],
    *,
    tolerance_seconds: int = 0,
    now: Optional[float] = None,
) -> bool:
    """Return ``True`` only for an authentic, untampered callback body.

    ``tolerance_seconds`` of ``0`` disables the timestamp age check.
    """

    if not secret:
        return False
    header = parse_signature_header(header_value)
    if header is None:
        return False
    if tolerance_seconds > 0:
        current = time.time() if now is None else now
        if abs(current - int(header.timestamp)) > tolerance_seconds:
            return False
    expected = compute_signature(secret, header.timestamp, raw_body)
    matched = False
    for candidate in header.signatures:
        # No early exit.
        if hmac.compare_digest(expected, candidate):
            matched = True
    return matched


__all__ = [
    "SIGNATURE_HEADER",
    "SignatureHeader",
    "build_signature_header",
    "compute_signature",
    "parse_signature_header",
    "verify",
]
