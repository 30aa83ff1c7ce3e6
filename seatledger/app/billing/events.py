"""Typed payment-provider callbacks, keyed by ``event_type``."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ValidationFailure


class PaymentEventType(str, Enum):
    TRANSACTION_COMPLETED = "transaction.completed"


class TransactionCompleted(BaseModel):
    """A completed purchase of seats."""

    event_type: Literal["transaction.completed"] = PaymentEventType.TRANSACTION_COMPLETED.value
    event_id: Optional[str] = None
    transaction_id: str
    subscription_id: Optional[str] = None
    user_id: str
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None
    email: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    prorated: bool = False
    occurred_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class UnhandledPaymentEvent(BaseModel):
    """Any event type the engine does not act on. Acknowledged and ignored."""

    event_type: str
    event_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


PaymentEvent = Union[TransactionCompleted, UnhandledPaymentEvent]


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


def _parse_quantity(items: Any) -> int:
    if not isinstance(items, list) or not items:
        return 1
    raw = _as_mapping(items[0]).get("quantity")
    if raw in (None, ""):
        return 1
    try:
        quantity = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(code="INVALID_QUANTITY", message=f"Invalid quantity {raw!r}") from exc
    if quantity < 1:
        raise ValidationFailure(code="INVALID_QUANTITY", message="Quantity must be at least 1")
    return quantity


def _parse_timestamp(value: Any, default: datetime) -> datetime:
    if not isinstance(value, str) or not value:
        return default
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_payment_event(payload: Mapping[str, Any], *, received_at: datetime) -> PaymentEvent:
    """Build the typed event for ``payload``; unknown types become :class:`UnhandledPaymentEvent`."""

    event_type = _first(payload, "event_type", "type")
    if not isinstance(event_type, str):
        raise ValidationFailure(code="MISSING_EVENT_TYPE", message="Missing event_type")
    event_id = _first(payload, "event_id", "notification_id")

    if event_type != PaymentEventType.TRANSACTION_COMPLETED.value:
        return UnhandledPaymentEvent(event_type=event_type, event_id=event_id)

    data = _as_mapping(payload.get("data")) or payload
    custom_data = _as_mapping(data.get("custom_data"))
    customer = _as_mapping(data.get("customer"))

    user_id = _first(custom_data, "userId", "user_id")
    if user_id is None:
        raise ValidationFailure(code="MISSING_USER_ID", message="Missing userId")
    transaction_id = _first(data, "id", "transaction_id")
    if transaction_id is None:
        raise ValidationFailure(code="MISSING_TRANSACTION_ID", message="Missing transaction id")

    organization_id = _first(custom_data, "organizationId", "organization_id")
    return TransactionCompleted(
        event_id=event_id,
        transaction_id=str(transaction_id),
        subscription_id=_first(data, "subscription_id"),
        user_id=str(user_id),
        organization_id=str(organization_id) if organization_id is not None else None,
        organization_name=_first(custom_data, "organizationName", "organization_name"),
        email=_first(custom_data, "email") or _first(customer, "email"),
        quantity=_parse_quantity(data.get("items")),
        prorated=_parse_bool(custom_data.get("prorated")),
        occurred_at=_parse_timestamp(_first(payload, "occurred_at") or _first(data, "billed_at"), received_at),
    )


def parse_payment_body(raw_body: bytes, *, received_at: datetime) -> PaymentEvent:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationFailure(code="INVALID_JSON", message="Request body is not valid JSON") from exc
    if not isinstance(payload, Mapping):
        raise ValidationFailure(code="INVALID_JSON", message="Request body must be a JSON object")
    return parse_payment_event(payload, received_at=received_at)


__all__ = [
    "PaymentEvent",
    "PaymentEventType",
    "TransactionCompleted",
    "UnhandledPaymentEvent",
    "parse_payment_body",
    "parse_payment_event",
]
