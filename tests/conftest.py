import os

# Avant tout import applicatif: storefront.config lit l'environnement au chargement
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost,127.0.0.1")

import pytest
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from storefront import config
from storefront.app import app as fastapi_app
from storefront.carts.models import Identity
from storefront.payments import views as payments_views
from storefront.payments.reconciler import Reconciler, get_reconciler
from tests.fakes import (
    WEBHOOK_SECRET,
    FakeCartRepository,
    FakeGateway,
    FakeMaterializer,
    FakeOrderRepository,
    FakeStore,
)

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()

@pytest.fixture()
def carts(store) -> FakeCartRepository:
    return FakeCartRepository(store)

@pytest.fixture()
def orders(store) -> FakeOrderRepository:
    return FakeOrderRepository(store)

@pytest.fixture()
def materializer(store) -> FakeMaterializer:
    return FakeMaterializer(store)

@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture()
def reconciler(orders, carts, materializer) -> Reconciler:
    return Reconciler(orders=orders, carts=carts, materializer=materializer)

@pytest.fixture()
def guest() -> Identity:
    return Identity(guest_token="guest-abc")

# Toutes les dépendances HTTP branchées sur le magasin en mémoire
@pytest.fixture(autouse=True)
def _override_payments_dependencies(app, carts, orders, gateway, reconciler):
    app.dependency_overrides[payments_views.get_cart_repository] = lambda: carts
    app.dependency_overrides[payments_views.get_order_repository] = lambda: orders
    app.dependency_overrides[payments_views.get_gateway] = lambda: gateway
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    try:
        yield
    finally:
        app.dependency_overrides.clear()

@pytest.fixture(autouse=True)
def _test_config(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setattr(config, "VAT_RATE", Decimal("0.22"))
    monkeypatch.setattr(config, "SHIPPING_COST", Decimal("0"))

# Aucun test ne doit atteindre un vrai Supabase
@pytest.fixture(autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: MagicMock())
