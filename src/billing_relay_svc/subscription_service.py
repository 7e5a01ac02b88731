import datetime
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from billing_relay_svc.config import Settings
from billing_relay_svc.email_service import SUBSCRIPTION_CONFIRMED, EmailService
from billing_relay_svc.errors import ConfigurationError, NotFoundError
from billing_relay_svc.models.base import utcnow
from billing_relay_svc.models.payment import Payment
from billing_relay_svc.models.subscription import Subscription
from billing_relay_svc.records import PLAN_TYPES, commit, find_user_by_email, latest_subscription, to_dict
from billing_relay_svc.stripe_integration import StripeIntegration

GENERATED_ID_PREFIX = "sync_"
PAYMENT_LOOKBACK = 5


def _require_provider(stripe_integration: Optional[StripeIntegration]) -> StripeIntegration:
    if stripe_integration is None:
        raise ConfigurationError("STRIPE_API_KEY not configured")
    return stripe_integration


def _parse_payment_date(payment_date: Optional[str]) -> datetime.datetime:
    if not payment_date:
        return utcnow()
    try:
        parsed = datetime.datetime.fromisoformat(payment_date.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError("Invalid paymentDate value") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _resolve_invoice(
    subscription_id: Optional[str],
    settings: Settings,
    stripe_integration: Optional[StripeIntegration],
) -> Tuple[str, Optional[str]]:
    """Return ``(invoice_url, payment_id)``, falling back to the account portal URL."""
    invoice_url = settings.account_portal_url
    if not subscription_id or subscription_id.startswith(GENERATED_ID_PREFIX):
        logging.info("[sync] No provider identifier supplied, skipping invoice lookup")
        return invoice_url, None
    if subscription_id.startswith(settings.provider_payment_prefix):
        payment_id: Optional[str] = subscription_id
    else:
        payment_id = None
    if stripe_integration is None:
        return invoice_url, payment_id

    try:
        if subscription_id.startswith(settings.provider_subscription_prefix):
            payment_id = stripe_integration.find_payment_id(subscription_id)
        elif payment_id is None:
            logging.info(f"[sync] Subscription ID format not recognized: {subscription_id}")
            return invoice_url, None
        found = stripe_integration.find_invoice_url(payment_id, subscription_id)
    except Exception as e:
        logging.warning(f"[sync] Could not fetch invoice details from Stripe: {e}")
        return invoice_url, payment_id
    if found:
        invoice_url = found
    return invoice_url, payment_id


def sync_subscription(
    db: Session,
    settings: Settings,
    stripe_integration: Optional[StripeIntegration],
    user_email: Optional[str],
    subscription_id: Optional[str],
    amount: Any,
    currency: Optional[str],
    plan_type: Optional[str],
    payment_date: Optional[str] = None,
    email_service: Optional[EmailService] = None,
) -> Dict[str, Any]:
    """
    Record a subscription and its payment when the webhook has not done so yet.

    Called from the payment-success page. The user's newest subscription row is
    updated in place (or created), then a payment row is added and a
    confirmation email is sent. A failed email never fails the sync.

    :raises ValueError: on missing or malformed input.
    :raises NotFoundError: if no user has ``user_email``.
    """
    if not user_email:
        raise ValueError("Missing required field: userEmail")
    if amount in (None, "") or not currency or not plan_type:
        raise ValueError("Missing required fields: amount, currency, or planType")
    if subscription_id and subscription_id.startswith(GENERATED_ID_PREFIX):
        logging.warning(
            f"[sync] Subscription ID {subscription_id} is a generated placeholder; "
            "cancellation will not reach the provider until the webhook stores the real ID"
        )

    user = find_user_by_email(db, user_email)
    if user is None:
        raise NotFoundError(f"No user found with email: {user_email}")
    if plan_type not in PLAN_TYPES:
        raise ValueError("Invalid plan_type - must be monthly or quarterly")
    try:
        amount_value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError("Invalid amount value") from e
    paid_at = _parse_payment_date(payment_date)

    subscription = latest_subscription(db, user.id)
    if subscription is None:
        subscription = Subscription(user_id=user.id)
        db.add(subscription)
    subscription.email = user_email
    subscription.plan_type = plan_type
    subscription.status = "active"
    subscription.start_date = paid_at.date()
    subscription.end_date = None
    subscription.amount_paid = amount_value
    subscription.currency = currency
    subscription.payment_method = "stripe"
    subscription.provider_subscription_id = subscription_id or None
    subscription.updated_at = utcnow()
    commit(db, f"[sync] Subscription for {user_email}")
    subscription_data = to_dict(subscription)

    invoice_url, payment_id = _resolve_invoice(subscription_id, settings, stripe_integration)
    fallback_id = subscription_id or f"{GENERATED_ID_PREFIX}{int(time.time() * 1000)}"
    payment = Payment(
        user_id=user.id,
        email=user_email,
        amount=amount_value,
        currency=currency,
        status="paid",
        payment_date=paid_at,
        invoice_url=invoice_url,
        payment_id=payment_id,
        order_id=fallback_id,
        transaction_id=fallback_id,
        payment_method="stripe",
        description=f"{plan_type} subscription payment",
    )
    db.add(payment)
    try:
        commit(db, f"[sync] Payment for {user_email}")
    except Exception as e:
        # the subscription itself is already stored
        result = {
            "success": True,
            "message": "Subscription created but payment record failed",
            "subscription": subscription_data,
            "paymentError": str(e),
        }
    else:
        result = {
            "success": True,
            "message": "Subscription and payment synced successfully",
            "subscription": subscription_data,
            "payment": to_dict(payment),
        }

    result["emailSent"] = _send_confirmation(email_service, user_email, plan_type, amount_value, currency)
    return result


def _send_confirmation(
    email_service: Optional[EmailService],
    user_email: str,
    plan_type: str,
    amount: Decimal,
    currency: str,
) -> bool:
    if email_service is None:
        logging.info(f"[sync] No email service configured, skipping confirmation for {user_email}")
        return False
    plan_name = "Monthly Premium" if plan_type == "monthly" else "Quarterly Premium"
    return email_service.send_quietly(
        SUBSCRIPTION_CONFIRMED,
        user_email,
        name=user_email.split("@")[0],
        data={"planName": plan_name, "amount": str(amount), "currency": currency},
    )


def cancel_subscription(
    db: Session,
    stripe_integration: Optional[StripeIntegration],
    user_id: str,
) -> Dict[str, Any]:
    """
    Cancel the user's active subscription at the provider (at period end) and locally.

    :raises NotFoundError: if the user has no active subscription.
    """
    subscription = latest_subscription(db, user_id, status="active")
    if subscription is None:
        raise NotFoundError("No active subscription found")

    provider_id = subscription.provider_subscription_id
    if not provider_id or stripe_integration is None:
        reason = "no provider subscription ID" if not provider_id else "payment provider not configured"
        _mark_cancelled(db, subscription)
        return {
            "success": True,
            "message": f"Subscription cancelled (local only - {reason})",
            "subscription": to_dict(subscription),
        }

    provider_cancelled = True
    try:
        stripe_integration.cancel_subscription(provider_id)
        logging.info(f"Stripe cancellation successful for {provider_id}")
    except Exception as e:
        provider_cancelled = False
        logging.warning(f"Stripe cancellation failed for {provider_id}, continuing with local update: {e}")

    try:
        _mark_cancelled(db, subscription)
    except Exception:
        if not provider_cancelled:
            raise
        return {
            "success": True,
            "message": "Subscription cancelled at the payment provider (local update failed)",
            "warning": "Local records may not reflect the cancellation",
        }

    return {
        "success": True,
        "message": "Subscription cancelled successfully",
        "providerCancelled": provider_cancelled,
        "subscription": to_dict(subscription),
    }


def _mark_cancelled(db: Session, subscription: Subscription) -> None:
    subscription.status = "cancelled"
    subscription.end_date = datetime.date.today()
    subscription.updated_at = utcnow()
    commit(db, f"Cancellation of subscription {subscription.id}")


def resolve_subscription_id(
    stripe_integration: Optional[StripeIntegration],
    payment_id: Optional[str],
    order_id: Optional[str],
) -> str:
    """
    Look up the provider subscription id behind a payment or order id.

    :raises ValueError: if neither id is given.
    :raises ConfigurationError: if the provider is not configured.
    :raises NotFoundError: if the provider knows no subscription for the ids.
    """
    if not payment_id and not order_id:
        raise ValueError("Missing paymentId or orderId")
    provider = _require_provider(stripe_integration)
    subscription_id = provider.find_subscription_id(payment_id, order_id)
    if not subscription_id:
        raise NotFoundError("Subscription ID not found")
    return subscription_id


def attach_subscription_id(
    db: Session,
    stripe_integration: Optional[StripeIntegration],
    user_id: str,
) -> Dict[str, Any]:
    """
    Store the provider subscription id on the user's newest subscription,
    discovering it through the user's recent payments.

    :raises ConfigurationError: if the provider is not configured.
    :raises NotFoundError: if there is no subscription, no payment, or no match.
    """
    provider = _require_provider(stripe_integration)
    subscription = latest_subscription(db, user_id)
    if subscription is None:
        raise NotFoundError("No subscription found")
    if subscription.provider_subscription_id:
        return {
            "success": True,
            "message": "Subscription already has subscription ID",
            "subscriptionId": subscription.provider_subscription_id,
        }

    payments = (
        db.query(Payment)
        .filter(Payment.user_id == user_id)
        .order_by(Payment.payment_date.desc())
        .limit(PAYMENT_LOOKBACK)
        .all()
    )
    if not payments:
        raise NotFoundError("No payment records found")

    for payment in payments:
        candidate = payment.order_id or payment.transaction_id
        if not candidate or candidate.startswith(GENERATED_ID_PREFIX):
            continue
        try:
            found = provider.find_subscription_id(candidate)
        except Exception as e:
            logging.warning(f"Could not look up subscription for {candidate}: {e}")
            continue
        if found:
            subscription.provider_subscription_id = found
            subscription.updated_at = utcnow()
            commit(db, f"Subscription ID {found} for subscription {subscription.id}")
            return {"success": True, "message": "Subscription ID updated", "subscriptionId": found}

    raise NotFoundError("Could not find subscription ID from payment records")
