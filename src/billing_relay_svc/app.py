from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billing_relay_svc.config import Settings
from billing_relay_svc.logging_config import configure_logging
from billing_relay_svc.models.base import create_session_factory
from billing_relay_svc.routers import billing_router, email_router, games_router, maintenance_router, public_config_router


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Billing Relay Service")
    app.state.settings = settings
    app.state.session_factory = create_session_factory(settings.database_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(billing_router.router, prefix="/api")
    app.include_router(maintenance_router.router, prefix="/api/maintenance")
    app.include_router(games_router.router, prefix="/api")
    app.include_router(email_router.router, prefix="/api")
    app.include_router(public_config_router.router, prefix="/api")
    return app
