import os

os.environ["DATABASE_URL"] = "sqlite:///./test_app.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "admin-pass"
os.environ["PAYTM_MID"] = "TESTMID"
os.environ["PAYTM_MERCHANT_KEY"] = "test_merchant_key"
os.environ["PAYTM_WEBSITE"] = "WEBSTAGING"
os.environ["PAYTM_ENV"] = "staging"
os.environ["APP_URL"] = "http://testserver"
os.environ["DELIVERY_FEE"] = "40"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.main import app as fastapi_app
from app.database import Base, init_db
from app.order_store import MemoryOrderStore
import app.admin_routes
import app.auth
import app.routes
import app.storefront_routes

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    init_db(engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(monkeypatch):
    # Point every router at the test database
    monkeypatch.setattr(app.routes, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(app.storefront_routes, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(app.admin_routes, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(app.routes.order_store, "cache", MemoryOrderStore())

    # Bypass auth verification for tests
    fastapi_app.dependency_overrides[app.auth.verify_token] = lambda: {"sub": "cust-1"}
    fastapi_app.dependency_overrides[app.auth.require_admin] = lambda: {"sub": "admin@example.com", "role": "admin"}

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def gateway(mocker):
    """Patch outbound gateway calls; set ``gateway.return_value.json.return_value``."""
    response = mocker.Mock()
    response.raise_for_status.return_value = None
    return mocker.patch("app.paytm_service.httpx.post", return_value=response)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


class MemoryStore:
    """Dict-backed stand-in for the cookie jar and the client's local storage."""

    def __init__(self, initial=None):
        self.data = dict(initial or {})
        self.options = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, **options):
        self.data[key] = value
        self.options[key] = options

    def delete(self, key):
        self.data.pop(key, None)
        self.options.pop(key, None)
