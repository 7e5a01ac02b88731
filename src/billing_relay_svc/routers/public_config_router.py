import logging

from fastapi import APIRouter, Depends, HTTPException, status

from billing_relay_svc.config import Settings
from billing_relay_svc.dependencies import get_settings

router = APIRouter()


@router.get("/public-config", status_code=200)
def get_public_config(settings: Settings = Depends(get_settings)):
    """Values the browser needs to talk to the hosted backend. Never includes a secret."""
    if not settings.public_backend_url or not settings.public_anon_key:
        logging.error("Public backend URL or anon key not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error: public backend variables are not set",
        )
    return {"url": settings.public_backend_url, "anonKey": settings.public_anon_key}
