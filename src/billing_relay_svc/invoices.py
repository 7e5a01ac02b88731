import logging
from dataclasses import dataclass
from typing import Any, Dict

from billing_relay_svc.stripe_integration import StripeIntegration
from billing_relay_svc.storage import PaymentStore


@dataclass
class InvoiceBackfillReport:
    updated: int = 0
    failed: int = 0
    total: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {"updated": self.updated, "failed": self.failed, "total": self.total}


def backfill_invoice_urls(
    store: PaymentStore,
    stripe_integration: StripeIntegration,
    placeholder_url: str,
    payment_id_prefix: str,
) -> InvoiceBackfillReport:
    """
    Replace the account-portal placeholder with the real invoice URL on old payments.

    :param store: Payment storage.
    :param stripe_integration: Used to look up each payment's invoice.
    :param placeholder_url: The URL stored when no invoice was known at write time.
    :param payment_id_prefix: Only payments whose provider id has this prefix are considered.
    :return: Counts of updated and failed payments.
    :raises StorageError: if the candidate payments cannot be read.
    """
    payments = store.list_payments_with_invoice_url(placeholder_url, payment_id_prefix)
    report = InvoiceBackfillReport(total=len(payments))
    if not payments:
        logging.info("[invoices] No payments found with the placeholder invoice URL")
        return report

    logging.info(f"[invoices] Found {len(payments)} payments to update")
    for payment in payments:
        try:
            invoice_url = stripe_integration.find_invoice_url(
                payment.payment_id, payment.order_id, payment.transaction_id
            )
        except Exception as e:
            logging.error(f"[invoices] Error processing payment {payment.id}: {e}", exc_info=True)
            report.failed += 1
            continue

        if not invoice_url or invoice_url == placeholder_url:
            logging.warning(f"[invoices] Could not find invoice URL for payment {payment.id}")
            report.failed += 1
        elif store.update_invoice_url(payment.id, invoice_url):
            logging.info(f"[invoices] Updated payment {payment.id} with invoice URL: {invoice_url}")
            report.updated += 1
        else:
            report.failed += 1

    return report
