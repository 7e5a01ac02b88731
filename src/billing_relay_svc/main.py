"""ASGI entrypoint: ``uvicorn billing_relay_svc.main:app``."""

from billing_relay_svc.app import create_app

app = create_app()
