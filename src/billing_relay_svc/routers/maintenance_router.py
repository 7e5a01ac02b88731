import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from billing_relay_svc.config import Settings
from billing_relay_svc.dependencies import get_settings, get_stripe_integration
from billing_relay_svc.errors import ConfigurationError, StorageError
from billing_relay_svc.invoices import backfill_invoice_urls
from billing_relay_svc.models.base import get_db
from billing_relay_svc.payment_reconciliation import PaymentPolicy, cleanup_duplicate_payments
from billing_relay_svc.reconciliation import CleanupDriver, SubscriptionPolicy
from billing_relay_svc.storage import SqlPaymentStore, SqlSubscriptionStore
from billing_relay_svc.stripe_integration import StripeIntegration

router = APIRouter()


class PaymentCleanupRequest(BaseModel):
    action: str = "cleanup"


@router.post("/cleanup-duplicate-subscriptions", status_code=200)
def cleanup_duplicate_subscriptions(db=Depends(get_db), settings: Settings = Depends(get_settings)):
    driver = CleanupDriver(SqlSubscriptionStore(db), SubscriptionPolicy.from_settings(settings))
    try:
        report = driver.run()
    except StorageError as se:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(se))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return {
        "success": True,
        "message": (
            f"Cleanup complete: Deleted {report.deleted} duplicate subscriptions, "
            f"kept {report.kept} subscriptions"
        ),
        **report.as_dict(),
    }


@router.post("/cleanup-duplicate-payments", status_code=200)
def cleanup_duplicate_payments_endpoint(
    cleanup_request: Optional[PaymentCleanupRequest] = None,
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    stripe_integration: Optional[StripeIntegration] = Depends(get_stripe_integration),
):
    action = cleanup_request.action if cleanup_request else "cleanup"
    if action == "update-invoices":
        return _update_invoice_urls(db, settings, stripe_integration)
    if action != "cleanup":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown action: {action}")

    try:
        report = cleanup_duplicate_payments(SqlPaymentStore(db), PaymentPolicy.from_settings(settings))
    except StorageError as se:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(se))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    result = report.as_dict()
    return {
        "success": True,
        "message": (
            f"Cleanup complete: Deleted {result['deleted']} duplicate payments, kept {result['kept']} payments"
        ),
        **result,
    }


@router.post("/update-invoice-urls", status_code=200)
def update_invoice_urls(
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    stripe_integration: Optional[StripeIntegration] = Depends(get_stripe_integration),
):
    return _update_invoice_urls(db, settings, stripe_integration)


def _update_invoice_urls(db, settings: Settings, stripe_integration: Optional[StripeIntegration]):
    try:
        if stripe_integration is None:
            raise ConfigurationError("STRIPE_API_KEY not configured")
        report = backfill_invoice_urls(
            SqlPaymentStore(db),
            stripe_integration,
            placeholder_url=settings.account_portal_url,
            payment_id_prefix=settings.provider_payment_prefix,
        )
    except (ConfigurationError, StorageError) as e:
        logging.error(e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    if report.total == 0:
        message = "No payments found with default invoice URL"
    else:
        message = f"Updated {report.updated} payments, {report.failed} failed"
    return {"success": True, "message": message, **report.as_dict()}
