import logging
import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from billing_relay_svc.config import DEFAULT_ACCOUNT_PORTAL_URL
from billing_relay_svc.models.base import utcnow
from billing_relay_svc.models.payment import Payment
from billing_relay_svc.models.subscription import Subscription
from billing_relay_svc.payload_adapter import PaymentEvent, parse_payment_event
from billing_relay_svc.records import (
    PLAN_TYPES,
    commit,
    find_payment_by_provider_id,
    find_subscription_by_provider_id,
    find_user_by_email,
    latest_subscription,
)

SUCCESS_EVENTS = {
    'payment.completed',
    'order.completed',
    'payment.succeeded',
    'invoice.payment_succeeded',
    'invoice.paid',
    'checkout.session.completed',
}
CANCEL_EVENTS = {'payment.cancelled', 'customer.subscription.deleted', 'subscription.cancelled'}
FAILURE_EVENTS = {'payment.failed', 'invoice.payment_failed'}

SUCCESS_STATUSES = {'completed', 'paid', 'succeeded', 'success'}
CANCEL_STATUSES = {'cancelled', 'canceled'}
FAILURE_STATUSES = {'failed'}


def classify(event: PaymentEvent) -> str:
    if event.event_type in SUCCESS_EVENTS:
        return 'success'
    if event.event_type in CANCEL_EVENTS:
        return 'cancelled'
    if event.event_type in FAILURE_EVENTS:
        return 'failed'
    if event.status in SUCCESS_STATUSES:
        return 'success'
    if event.status in CANCEL_STATUSES:
        return 'cancelled'
    if event.status in FAILURE_STATUSES:
        return 'failed'
    return 'unknown'


def process_event(
    payload: Dict[str, Any],
    db: Session,
    placeholder_invoice_url: str = DEFAULT_ACCOUNT_PORTAL_URL,
) -> Dict[str, Any]:
    """
    Process a payment webhook and update subscription and payment records accordingly.

    :param payload: Dictionary representing the webhook body.
    :param db: SQLAlchemy Session instance.
    :param placeholder_invoice_url: Stored on the payment row when the event carries no invoice URL.
    :return: ``{"action", "orderId", "subscriptionId"}`` describing what was done.
    :raises ValueError: when a successful payment carries no customer email.
    :raises Exception: on commit failures.
    """
    try:
        event = parse_payment_event(payload)
        kind = classify(event)
        logging.info(
            f"Webhook received: type={event.event_type} status={event.status} order={event.order_id} "
            f"email={event.customer_email} amount={event.amount} {event.currency}"
        )

        if kind == 'success':
            action = _record_successful_payment(event, db, placeholder_invoice_url)
        elif kind == 'cancelled':
            action = _record_cancellation(event, db)
        elif kind == 'failed':
            logging.info(f"Payment failed for {event.customer_email} (order {event.order_id}). No action taken.")
            action = 'payment_failed'
        else:
            logging.info(f"Unhandled event type: {event.event_type} with status {event.status}. No action taken.")
            action = 'ignored'

        return {"action": action, "orderId": event.order_id, "subscriptionId": event.subscription_id}

    except Exception as e:
        logging.error(e, exc_info=True)
        raise


def _plan_type(event: PaymentEvent) -> str:
    plan = (event.plan_type or '').lower()
    return plan if plan in PLAN_TYPES else 'monthly'


def _record_successful_payment(event: PaymentEvent, db: Session, placeholder_invoice_url: str) -> str:
    if not event.customer_email:
        error_msg = "No customer email provided"
        logging.error(error_msg)
        raise ValueError(error_msg)

    user = find_user_by_email(db, event.customer_email)
    if user is None:
        logging.warning(f"No user found for {event.customer_email}; payment {event.order_id} left unmatched.")
        return 'unmatched'

    subscription: Optional[Subscription] = None
    if event.subscription_id:
        subscription = find_subscription_by_provider_id(db, event.subscription_id)
    if subscription is None:
        subscription = latest_subscription(db, user.id)

    plan_type = _plan_type(event)
    if subscription is None:
        subscription = Subscription(
            user_id=user.id,
            email=event.customer_email,
            plan_type=plan_type,
            start_date=datetime.date.today(),
            amount_paid=event.amount,
            currency=event.currency,
            provider_subscription_id=event.subscription_id,
        )
        db.add(subscription)
    else:
        if event.amount is not None:
            subscription.amount_paid = event.amount
        if event.subscription_id:
            subscription.provider_subscription_id = event.subscription_id
        subscription.email = event.customer_email
        subscription.currency = event.currency
        subscription.plan_type = plan_type
        subscription.end_date = None
    subscription.status = 'active'
    subscription.updated_at = utcnow()

    if event.payment_id and find_payment_by_provider_id(db, event.payment_id) is not None:
        logging.info(f"Payment {event.payment_id} already recorded; skipping payment row.")
    elif event.amount is None:
        logging.warning(f"Webhook for order {event.order_id} carries no amount; skipping payment row.")
    else:
        db.add(Payment(
            user_id=user.id,
            email=event.customer_email,
            amount=event.amount,
            currency=event.currency,
            status='paid',
            payment_date=utcnow(),
            invoice_url=event.invoice_url or placeholder_invoice_url,
            payment_id=event.payment_id,
            order_id=event.order_id,
            transaction_id=event.subscription_id or event.order_id,
            description=f"{plan_type} subscription payment",
        ))

    commit(db, f"Payment {event.order_id} for {event.customer_email}")
    return 'activated'


def _record_cancellation(event: PaymentEvent, db: Session) -> str:
    subscription: Optional[Subscription] = None
    if event.subscription_id:
        subscription = find_subscription_by_provider_id(db, event.subscription_id)
    if subscription is None and event.customer_email:
        user = find_user_by_email(db, event.customer_email)
        if user is not None:
            subscription = latest_subscription(db, user.id, status='active')

    if subscription is None:
        logging.info(f"Subscription for order {event.order_id} not found during cancellation processing.")
        return 'not_found'

    subscription.status = 'cancelled'
    subscription.end_date = datetime.date.today()
    subscription.updated_at = utcnow()
    commit(db, f"Cancellation of subscription {subscription.id}")
    return 'cancelled'
