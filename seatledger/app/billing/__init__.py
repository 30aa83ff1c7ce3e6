"""Payment provider integration: callbacks, signatures and scheduled seat changes."""

from .events import (
    PaymentEvent,
    PaymentEventType,
    TransactionCompleted,
    UnhandledPaymentEvent,
    parse_payment_body,
    parse_payment_event,
)
from .provider import PRORATION_PRORATED_IMMEDIATELY, PaddleClient, PaymentProvider, PaymentProviderError
from .signature import SIGNATURE_HEADER, build_signature_header, parse_signature_header, verify

__all__ = [
    "PRORATION_PRORATED_IMMEDIATELY",
    "PaddleClient",
    "PaymentEvent",
    "PaymentEventType",
    "PaymentProvider",
    "PaymentProviderError",
    "SIGNATURE_HEADER",
    "TransactionCompleted",
    "UnhandledPaymentEvent",
    "build_signature_header",
    "parse_payment_body",
    "parse_payment_event",
    "parse_signature_header",
    "verify",
]
