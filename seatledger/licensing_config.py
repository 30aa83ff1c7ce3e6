"""Configuration for licensing, billing provider access and background jobs."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

MIN_TOKEN_BYTES = 16


@dataclass(frozen=True)
class LicensingConfig:
    """Runtime settings for seat provisioning and the payment provider."""

    paddle_environment: str
    paddle_api_key: Optional[str]
    paddle_webhook_secret: Optional[str]
    paddle_api_timeout: float
    signature_tolerance_seconds: int
    cleanup_secret_key: Optional[str]
    trial_days: int
    license_term_days: int
    max_scheduled_quantity: int
    auto_confirm_email: bool
    token_bytes: int
    scheduler_enabled: bool

    @property
    def paddle_api_base_url(self) -> str:
        if self.paddle_environment == "production":
            return "https://api.paddle.com"
        return "https://sandbox-api.paddle.com"


def env_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def env_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def env_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_licensing_config(env: Optional[Mapping[str, str]] = None) -> LicensingConfig:
    """Load :class:`LicensingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    environment = (env_mapping.get("PADDLE_ENVIRONMENT") or "sandbox").strip().lower()
    if environment not in {"sandbox", "production"}:
        raise ValueError(f"Unsupported PADDLE_ENVIRONMENT {environment!r}")

    return LicensingConfig(
        paddle_environment=environment,
        paddle_api_key=env_mapping.get("PADDLE_API_KEY") or None,
        paddle_webhook_secret=env_mapping.get("PADDLE_WEBHOOK_SECRET") or None,
        paddle_api_timeout=max(1.0, env_float(env_mapping.get("PADDLE_API_TIMEOUT"), default=15.0)),
        signature_tolerance_seconds=max(0, env_int(env_mapping.get("PADDLE_SIGNATURE_TOLERANCE"), default=0)),
        cleanup_secret_key=env_mapping.get("CLEANUP_SECRET_KEY") or None,
        trial_days=max(1, env_int(env_mapping.get("TRIAL_DAYS"), default=14)),
        license_term_days=max(1, env_int(env_mapping.get("LICENSE_TERM_DAYS"), default=365)),
        max_scheduled_quantity=max(1, env_int(env_mapping.get("MAX_SCHEDULED_QUANTITY"), default=200)),
        auto_confirm_email=env_bool(env_mapping.get("AUTO_CONFIRM_EMAIL"), default=False),
        token_bytes=max(MIN_TOKEN_BYTES, env_int(env_mapping.get("TOKEN_BYTES"), default=MIN_TOKEN_BYTES)),
        scheduler_enabled=env_bool(env_mapping.get("SCHEDULER_ENABLED"), default=True),
    )


__all__ = ["LicensingConfig", "MIN_TOKEN_BYTES", "env_bool", "env_float", "env_int", "load_licensing_config"]
