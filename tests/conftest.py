import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from main import app
from core.db import build_engine, get_db, init_db
from routes.orders import get_dispatcher
from security.identity import Identity
from services.notifications import NotificationDispatcher
from services.orders import OrderService

from factories import (
    RecordingPush,
    RecordingRegistry,
    auth_headers_for,
    make_address,
    make_product,
    make_user,
)


@pytest.fixture()
def engine():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    """Create a fresh database for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def registry_spy():
    return RecordingRegistry()


@pytest.fixture()
def push_spy():
    return RecordingPush()


@pytest.fixture()
def dispatcher(registry_spy, push_spy):
    return NotificationDispatcher(registry_spy, push_spy)


@pytest.fixture()
def order_service(db, dispatcher):
    return OrderService(db, dispatcher)


@pytest.fixture()
def customer(db):
    return make_user(db, "customer@example.com", name="Ada Customer")


@pytest.fixture()
def other_customer(db):
    return make_user(db, "other@example.com", name="Bola Other")


@pytest.fixture()
def admin(db):
    return make_user(db, "admin@example.com", name="Admin", is_admin=True)


@pytest.fixture()
def customer_identity(customer):
    return Identity.of(customer)


@pytest.fixture()
def admin_identity(admin):
    return Identity.of(admin)


@pytest.fixture()
def address(db, customer):
    return make_address(db, customer)


@pytest.fixture()
def product_a(db):
    return make_product(db, "Product A", 1000, 10)


@pytest.fixture()
def product_b(db):
    return make_product(db, "Product B", 2500, 3)


@pytest.fixture()
def customer_headers(customer):
    return auth_headers_for(customer)


@pytest.fixture()
def admin_headers(admin):
    return auth_headers_for(admin)


@pytest.fixture()
def client(db, dispatcher):
    """Test client bound to the per-test session and the recording dispatcher."""
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
