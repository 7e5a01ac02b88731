import time
import logging
from typing import Any, Callable, Optional, TypeVar

import stripe

from billing_relay_svc.errors import ConfigurationError, ProviderError
from billing_relay_svc.payload_adapter import INVOICE_URL_PATHS, first_string, lookup

T = TypeVar("T")

# identifier prefix -> how to find the invoice behind it
INVOICE_PREFIX = "in_"
PAYMENT_INTENT_PREFIX = "pi_"
CHECKOUT_SESSION_PREFIX = "cs_"
SUBSCRIPTION_PREFIX = "sub_"

RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


class StripeIntegration:
    """
    This class encapsulates the calls made to the Stripe API: cancelling
    subscriptions and looking up the subscription id and invoice URL behind
    a payment identifier. Transient failures are retried.
    """

    def __init__(self, api_key: Optional[str], max_retries: int = 3, retry_delay: float = 1.0) -> None:
        if not api_key:
            raise ConfigurationError('Stripe API key (STRIPE_API_KEY) not configured.')
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _call(self, description: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while attempt < self.max_retries:
            try:
                return func(*args, api_key=self.api_key, **kwargs)
            except RETRYABLE_ERRORS as e:
                logging.error(f"Error {description} (attempt {attempt + 1}): {e}", exc_info=True)
                attempt += 1
                time.sleep(self.retry_delay)
        raise ProviderError(f'Failed {description} after retries.')

    def _retrieve(self, description: str, func: Callable[..., Any], object_id: str) -> Optional[Any]:
        """Retrieve one object; ``None`` when Stripe does not know the id."""
        try:
            return self._call(description, func, object_id)
        except stripe.InvalidRequestError as e:
            logging.warning(f"Stripe could not find {object_id} while {description}: {e}")
            return None

    def retrieve_subscription(self, subscription_id: str) -> Optional[Any]:
        """
        Retrieve a subscription from Stripe.

        :param subscription_id: The ID of the subscription.
        :return: The subscription, or ``None`` if it does not exist.
        :raises ValueError: if subscription_id is empty.
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError("subscription_id cannot be empty")
        return self._retrieve("retrieving subscription", stripe.Subscription.retrieve, subscription_id)

    def cancel_subscription(self, subscription_id: str) -> Any:
        """
        Schedule cancellation of a subscription at the end of the current period.

        :param subscription_id: The ID of the subscription to cancel.
        :return: The updated subscription.
        :raises ProviderError: if Stripe stays unreachable after retries.
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError("subscription_id cannot be empty")
        return self._call(
            "cancelling subscription", stripe.Subscription.modify, subscription_id, cancel_at_period_end=True
        )

    def _retrieve_by_prefix(self, object_id: str) -> Optional[Any]:
        if object_id.startswith(INVOICE_PREFIX):
            return self._retrieve("retrieving invoice", stripe.Invoice.retrieve, object_id)
        if object_id.startswith(PAYMENT_INTENT_PREFIX):
            return self._retrieve("retrieving payment intent", stripe.PaymentIntent.retrieve, object_id)
        if object_id.startswith(CHECKOUT_SESSION_PREFIX):
            return self._retrieve("retrieving checkout session", stripe.checkout.Session.retrieve, object_id)
        if object_id.startswith(SUBSCRIPTION_PREFIX):
            return self._retrieve("retrieving subscription", stripe.Subscription.retrieve, object_id)
        logging.info(f"Identifier format not recognized, skipping Stripe lookup: {object_id}")
        return None

    def _invoice_of(self, obj: Any) -> Optional[Any]:
        """Follow ``invoice`` / ``latest_invoice`` to the invoice object, expanded or not."""
        for path in ("invoice", "latest_invoice"):
            ref = lookup(obj, path)
            if isinstance(ref, str):
                return self._retrieve("retrieving invoice", stripe.Invoice.retrieve, ref)
            if ref is not None:
                return ref
        return None

    def find_subscription_id(self, *object_ids: Optional[str]) -> Optional[str]:
        """
        Find the Stripe subscription id behind a payment, invoice, checkout
        session or subscription identifier.

        :param object_ids: Candidate identifiers, tried in order. Empty values are skipped.
        :return: The subscription id, or ``None`` if none of the identifiers leads to one.
        """
        for object_id in filter(None, object_ids):
            obj = self._retrieve_by_prefix(object_id)
            if obj is None:
                continue
            if object_id.startswith(SUBSCRIPTION_PREFIX):
                return first_string(obj, ("id",)) or object_id
            subscription_id = first_string(obj, ("subscription", "subscription.id"))
            if subscription_id is None:
                invoice = self._invoice_of(obj)
                subscription_id = first_string(invoice, ("subscription", "subscription.id")) if invoice else None
            if subscription_id:
                return subscription_id
        return None

    def find_payment_id(self, subscription_id: str) -> Optional[str]:
        """Return the payment intent id of the subscription's latest invoice."""
        subscription = self.retrieve_subscription(subscription_id)
        if subscription is None:
            return None
        invoice = self._invoice_of(subscription)
        if invoice is None:
            return None
        return first_string(invoice, ("payment_intent", "payment_intent.id"))

    def find_invoice_url(self, *object_ids: Optional[str]) -> Optional[str]:
        """
        Find a customer-facing invoice URL for the first identifier that has one.

        :param object_ids: Candidate identifiers (payment id, order id, transaction id), tried in order.
        :return: The invoice URL, or ``None``.
        """
        for object_id in filter(None, object_ids):
            obj = self._retrieve_by_prefix(object_id)
            if obj is None:
                continue
            invoice = obj if object_id.startswith(INVOICE_PREFIX) else self._invoice_of(obj)
            url = first_string(invoice, INVOICE_URL_PATHS) if invoice is not None else None
            if url is None and object_id.startswith(PAYMENT_INTENT_PREFIX):
                charge = lookup(obj, "latest_charge")
                if isinstance(charge, str):
                    charge = self._retrieve("retrieving charge", stripe.Charge.retrieve, charge)
                url = first_string(charge, ("receipt_url",)) if charge is not None else None
            if url:
                logging.info(f"Found invoice URL for {object_id}: {url}")
                return url
        return None
