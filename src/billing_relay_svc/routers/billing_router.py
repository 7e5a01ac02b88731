import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from billing_relay_svc.config import Settings
from billing_relay_svc.dependencies import get_email_service, get_settings, get_stripe_integration
from billing_relay_svc.email_service import EmailService
from billing_relay_svc.errors import ConfigurationError, NotFoundError
from billing_relay_svc.event_processor import process_event
from billing_relay_svc.models.base import get_db
from billing_relay_svc.stripe_integration import StripeIntegration
from billing_relay_svc import subscription_service

router = APIRouter()


class SyncSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: Optional[str] = Field(None, alias="userEmail")
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    amount: Any = None
    currency: Optional[str] = None
    plan_type: Optional[str] = Field(None, alias="planType")
    payment_date: Optional[str] = Field(None, alias="paymentDate")


class UserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")


class ResolveSubscriptionIdRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: Optional[str] = Field(None, alias="paymentId")
    order_id: Optional[str] = Field(None, alias="orderId")


@router.post("/webhooks/payments", status_code=200)
async def process_webhook(request: Request, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    payload_bytes = await request.body()
    try:
        payload = json.loads(payload_bytes.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook payload must be a JSON object")

    try:
        outcome = await run_in_threadpool(
            process_event, payload, db, placeholder_invoice_url=settings.account_portal_url
        )
    except ValueError as ve:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error processing webhook event")

    if outcome["action"] == "activated":
        message = "Webhook processed successfully"
    elif outcome["action"] in ("cancelled", "payment_failed"):
        message = "Payment cancellation processed"
    else:
        message = "Webhook received but not processed"
    return {"success": True, "message": message, **outcome}


@router.post("/subscriptions/sync", status_code=200)
def sync_subscription(
    sync_request: SyncSubscriptionRequest,
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    stripe_integration: Optional[StripeIntegration] = Depends(get_stripe_integration),
    email_service: EmailService = Depends(get_email_service),
):
    try:
        return subscription_service.sync_subscription(
            db,
            settings,
            stripe_integration,
            user_email=sync_request.user_email,
            subscription_id=sync_request.subscription_id,
            amount=sync_request.amount,
            currency=sync_request.currency,
            plan_type=sync_request.plan_type,
            payment_date=sync_request.payment_date,
            email_service=email_service,
        )
    except ValueError as ve:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except NotFoundError as nf:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(nf))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/subscriptions/cancel", status_code=200)
def cancel_subscription(
    cancel_request: UserRequest,
    db=Depends(get_db),
    stripe_integration: Optional[StripeIntegration] = Depends(get_stripe_integration),
):
    try:
        return subscription_service.cancel_subscription(db, stripe_integration, cancel_request.user_id)
    except NotFoundError as nf:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(nf))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/subscriptions/resolve-id", status_code=200)
def resolve_subscription_id(
    resolve_request: ResolveSubscriptionIdRequest,
    stripe_integration: Optional[StripeIntegration] = Depends(get_stripe_integration),
):
    try:
        subscription_id = subscription_service.resolve_subscription_id(
            stripe_integration, resolve_request.payment_id, resolve_request.order_id
        )
        return {"success": True, "subscriptionId": subscription_id}
    except ValueError as ve:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except NotFoundError as nf:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(nf))
    except ConfigurationError as ce:
        logging.error(ce)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(ce))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/subscriptions/attach-id", status_code=200)
def attach_subscription_id(
    attach_request: UserRequest,
    db=Depends(get_db),
    stripe_integration: Optional[StripeIntegration] = Depends(get_stripe_integration),
):
    try:
        return subscription_service.attach_subscription_id(db, stripe_integration, attach_request.user_id)
    except NotFoundError as nf:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(nf))
    except ConfigurationError as ce:
        logging.error(ce)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(ce))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
