"""
Tolerant readers for payment-provider payloads.

Webhook bodies and API objects name the same value differently depending on
the event and the API version. Each logical field has a prioritized list of
dotted paths; the first non-empty one wins, otherwise the field is ``UNKNOWN``
(or ``None`` for optional values).
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

UNKNOWN = "unknown"

EVENT_TYPE_PATHS = ("type", "event", "event_type")
STATUS_PATHS = ("status", "payment_status")
ORDER_ID_PATHS = ("order_id", "transaction_id", "id")
EMAIL_PATHS = ("customer.email", "customer_email", "customer_details.email", "email", "receipt_email")
AMOUNT_PATHS = ("amount_paid", "amount_total", "amount", "total", "price")
CURRENCY_PATHS = ("currency",)
SUBSCRIPTION_ID_PATHS = ("subscription_id", "subscription.id", "subscription")
PAYMENT_ID_PATHS = ("payment_id", "payment_intent.id", "payment_intent")
PLAN_TYPE_PATHS = ("plan_type", "metadata.plan_type", "metadata.planType")
INVOICE_URL_PATHS = (
    "hosted_invoice_url",
    "invoice_url",
    "invoice.url",
    "invoice.hosted_invoice_url",
    "invoice_pdf",
    "invoice_link",
    "receipt_url",
    "receipt.url",
    "url",
)


def lookup(data: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; ``None`` when any step is missing."""
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None) if current is not None else None
        if current is None:
            return None
    return current


def first_present(data: Any, paths: Iterable[str], default: Any = None) -> Any:
    for path in paths:
        value = lookup(data, path)
        if value not in (None, ""):
            return value
    return default


def first_string(data: Any, paths: Iterable[str]) -> Optional[str]:
    """Like :func:`first_present` but only accepts string values (skips expanded objects)."""
    for path in paths:
        value = lookup(data, path)
        if isinstance(value, str) and value:
            return value
    return None


def parse_amount(value: Any, minor_units: bool = False) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if minor_units and isinstance(value, int):
        amount = (amount / 100).quantize(Decimal("0.01"))
    return amount


@dataclass(frozen=True)
class PaymentEvent:
    event_type: str
    status: str
    order_id: Optional[str]
    customer_email: Optional[str]
    amount: Optional[Decimal]
    currency: str
    subscription_id: Optional[str]
    payment_id: Optional[str]
    plan_type: Optional[str]
    invoice_url: Optional[str]


def parse_payment_event(payload: Mapping[str, Any]) -> PaymentEvent:
    """
    Read a webhook payload into a :class:`PaymentEvent`.

    Stripe-shaped events carry the interesting fields under ``data.object``
    and report amounts in minor units; flat payloads carry them at the top
    level in major units. Both shapes are accepted.
    """
    obj = lookup(payload, "data.object")
    stripe_shaped = isinstance(obj, Mapping)
    body = obj if stripe_shaped else payload

    event_type = first_string(payload, EVENT_TYPE_PATHS) or UNKNOWN
    status = first_string(body, STATUS_PATHS) or first_string(payload, STATUS_PATHS) or UNKNOWN
    order_id = first_string(body, ORDER_ID_PATHS)
    if stripe_shaped and order_id is None:
        order_id = first_string(payload, ("id",))

    payment_id = first_string(body, PAYMENT_ID_PATHS)
    if payment_id is None and stripe_shaped and (order_id or "").startswith("pi_"):
        payment_id = order_id

    subscription_id = first_string(body, SUBSCRIPTION_ID_PATHS)
    if subscription_id is None and (order_id or "").startswith("sub_"):
        subscription_id = order_id

    currency = first_string(body, CURRENCY_PATHS) or "USD"
    return PaymentEvent(
        event_type=event_type,
        status=status.lower(),
        order_id=order_id,
        customer_email=first_string(body, EMAIL_PATHS),
        amount=parse_amount(first_present(body, AMOUNT_PATHS), minor_units=stripe_shaped),
        currency=currency.upper(),
        subscription_id=subscription_id,
        payment_id=payment_id,
        plan_type=first_string(body, PLAN_TYPE_PATHS),
        invoice_url=first_string(body, INVOICE_URL_PATHS),
    )
