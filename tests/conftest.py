import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from billing_relay_svc.app import create_app
from billing_relay_svc.config import Settings
from billing_relay_svc.models.base import Base, get_db
# register every table on Base.metadata
from billing_relay_svc.models import custom_game, payment, subscription, user  # noqa: F401


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        stripe_api_key="sk_test_dummy",
        public_backend_url="https://project.supabase.co",
        public_anon_key="anon_key_test",
        stripe_retry_delay=0.0,
    )


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def client(settings, db_session):
    app = create_app(settings)
    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
