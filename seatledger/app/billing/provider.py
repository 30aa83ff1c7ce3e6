"""Client for the external payment provider's subscription API."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol
from urllib import error as urllib_error, request as urllib_request

logger = logging.getLogger(__name__)

PRORATION_PRORATED_IMMEDIATELY = "prorated_immediately"


class PaymentProviderError(RuntimeError):
    """The provider rejected a request or could not be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        ...

    def update_subscription_quantity(
        self,
        subscription_id: str,
        quantity: int,
        *,
        proration_mode: str = PRORATION_PRORATED_IMMEDIATELY,
    ) -> Dict[str, Any]:
        ...

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        ...


class PaddleClient(PaymentProvider):
    """Minimal Paddle Billing API client. Requests are never retried."""

    def __init__(self, *, api_key: Optional[str], base_url: str, timeout: float = 15.0) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise PaymentProviderError("PADDLE_API_KEY is not configured")
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib_request.Request(
            f"{self.base_url}{path}",
            data=data,
            method=method,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(req, timeout=self.timeout) as response:
                payload = response.read()
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")[:500]
            raise PaymentProviderError(
                f"{method} {path} failed with HTTP {exc.code}: {detail}",
                status_code=exc.code,
            ) from exc
        except (urllib_error.URLError, TimeoutError, OSError) as exc:
            raise PaymentProviderError(f"{method} {path} failed: {exc}") from exc
        try:
            decoded = json.loads(payload.decode("utf-8")) if payload else {}
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PaymentProviderError(f"{method} {path} returned an invalid body") from exc
        return decoded.get("data", decoded) if isinstance(decoded, dict) else {}

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/subscriptions/{subscription_id}")

    def update_subscription_quantity(
        self,
        subscription_id: str,
        quantity: int,
        *,
        proration_mode: str = PRORATION_PRORATED_IMMEDIATELY,
    ) -> Dict[str, Any]:
        subscription = self.get_subscription(subscription_id)
        items = subscription.get("items") or []
        if not items:
            raise PaymentProviderError(f"Subscription {subscription_id} has no items")
        price_id = (items[0].get("price") or {}).get("id")
        if not price_id:
            raise PaymentProviderError(f"Subscription {subscription_id} item has no price id")
        logger.info(
            "Updating subscription quantity",
            extra={"subscription_id": subscription_id, "quantity": quantity},
        )
        return self._request(
            "PATCH",
            f"/subscriptions/{subscription_id}",
            {
                "items": [{"price_id": price_id, "quantity": quantity}],
                "proration_billing_mode": proration_mode,
            },
        )

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        logger.info("Cancelling subscription", extra={"subscription_id": subscription_id})
        return self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            {"effective_from": "immediately"},
        )


__all__ = [
    "PRORATION_PRORATED_IMMEDIATELY",
    "PaddleClient",
    "PaymentProvider",
    "PaymentProviderError",
]
