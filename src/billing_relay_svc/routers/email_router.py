import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from billing_relay_svc.dependencies import get_email_service
from billing_relay_svc.email_service import EmailService
from billing_relay_svc.errors import ConfigurationError, EmailDeliveryError

router = APIRouter()


class EmailRequest(BaseModel):
    type: Optional[str] = None
    to: Optional[str] = None
    name: Optional[str] = None
    data: Dict[str, Any] = {}


@router.post("/emails", status_code=200)
def send_email(email_request: EmailRequest, email_service: EmailService = Depends(get_email_service)):
    try:
        message_id = email_service.send(email_request.type, email_request.to, email_request.name, email_request.data)
    except ValueError as ve:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except ConfigurationError as ce:
        logging.error(ce)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Email service not configured")
    except EmailDeliveryError as ee:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(ee))
    return {"success": True, "messageId": message_id}
