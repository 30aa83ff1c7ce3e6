from __future__ import annotations

from datetime import datetime, timezone

import pytest

from seatledger.app.billing import (
    TransactionCompleted,
    UnhandledPaymentEvent,
    parse_payment_body,
    parse_payment_event,
)
from seatledger.app.errors import ValidationFailure

RECEIVED_AT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _payload(**data):
    base = {
        "id": "txn_1",
        "subscription_id": "sub_1",
        "items": [{"quantity": 4}],
        "custom_data": {"userId": "u-1", "organizationId": "org-1", "prorated": "true"},
        "customer": {"email": "buyer@example.com"},
    }
    base.update(data)
    return {"event_type": "transaction.completed", "event_id": "evt_1", "occurred_at": "2024-02-28T10:00:00Z", "data": base}


def test_transaction_completed_is_parsed():
    event = parse_payment_event(_payload(), received_at=RECEIVED_AT)

    assert isinstance(event, TransactionCompleted)
    assert event.event_id == "evt_1"
    assert event.transaction_id == "txn_1"
    assert event.subscription_id == "sub_1"
    assert event.user_id == "u-1"
    assert event.organization_id == "org-1"
    assert event.email == "buyer@example.com"
    assert event.quantity == 4
    assert event.prorated is True
    assert event.occurred_at == datetime(2024, 2, 28, 10, 0, tzinfo=timezone.utc)


def test_quantity_defaults_to_one():
    event = parse_payment_event(_payload(items=[]), received_at=RECEIVED_AT)

    assert event.quantity == 1


def test_flat_payload_and_receive_time_fallback():
    payload = {
        "type": "transaction.completed",
        "transaction_id": "txn_2",
        "custom_data": {"user_id": "u-2", "email": "Flat@Example.com"},
    }

    event = parse_payment_event(payload, received_at=RECEIVED_AT)

    assert event.transaction_id == "txn_2"
    assert event.user_id == "u-2"
    assert event.email == "Flat@Example.com"
    assert event.prorated is False
    assert event.occurred_at == RECEIVED_AT


def test_other_event_types_are_unhandled():
    event = parse_payment_event({"event_type": "subscription.canceled", "event_id": "evt_9"}, received_at=RECEIVED_AT)

    assert isinstance(event, UnhandledPaymentEvent)
    assert event.event_type == "subscription.canceled"


@pytest.mark.parametrize(
    ("payload", "code"),
    [
        ({"data": {}}, "MISSING_EVENT_TYPE"),
        ({"event_type": "transaction.completed", "data": {"id": "txn_1"}}, "MISSING_USER_ID"),
        ({"event_type": "transaction.completed", "data": {"custom_data": {"userId": "u-1"}}}, "MISSING_TRANSACTION_ID"),
        (_payload(items=[{"quantity": 0}]), "INVALID_QUANTITY"),
        (_payload(items=[{"quantity": "many"}]), "INVALID_QUANTITY"),
    ],
)
def test_invalid_payloads_are_rejected(payload, code):
    with pytest.raises(ValidationFailure) as excinfo:
        parse_payment_event(payload, received_at=RECEIVED_AT)

    assert excinfo.value.code == code


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\xff\xfe"])
def test_body_must_be_a_json_object(body):
    with pytest.raises(ValidationFailure) as excinfo:
        parse_payment_body(body, received_at=RECEIVED_AT)

    assert excinfo.value.code == "INVALID_JSON"
