from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from backend.dropservices_dashboard import DashboardFilters
from dropservices_admin.storage import EntityStore, build_entity_store
from dropservices_admin.storage_config import StorageConfig

NOW = datetime(2026, 10, 17, 12, 0, 0)
TODAY = NOW.date()


def days_from_today(days: int) -> str:
    return (TODAY + timedelta(days=days)).isoformat()


def make_order(
    order_id: str,
    service_id: Optional[str] = "s1",
    price: Any = 100,
    cost: Any = 60,
    start: Any = "2026-10-05",
    end: Any = None,
    status: str = "active",
    client_id: str = "u1",
) -> Dict[str, Any]:
    order = {
        "id": order_id,
        "clientId": client_id,
        "serviceId": service_id,
        "paymentMethodId": "pm1",
        "startDate": start,
        "price": price,
        "cost": cost,
        "status": status,
    }
    if end is not None:
        order["endDate"] = end
    return order


def make_service(service_id: str, name: Optional[str] = None, status: str = "active") -> Dict[str, Any]:
    return {"id": service_id, "name": name or service_id.upper(), "status": status, "hasExpiration": True}


@pytest.fixture()
def filters() -> DashboardFilters:
    return DashboardFilters(now=NOW)


@pytest.fixture()
def store() -> EntityStore:
    return build_entity_store(StorageConfig())


@pytest.fixture()
def seeded_store(store: EntityStore) -> EntityStore:
    """A store holding one expiring service, one client, one payment method."""
    service_id = store.services.create({"name": "Netflix Premium", "status": "active", "hasExpiration": True})
    plain_id = store.services.create({"name": "Canva Pro", "status": "paused", "hasExpiration": False})
    user_id = store.users.create({"clientName": "John Doe", "clientEmail": "john@example.com"})
    payment_id = store.payment_methods.create({"type": "Visa", "logo": "", "exampleLast4": "4242"})
    store.ids = {"service": service_id, "plain_service": plain_id, "user": user_id, "payment": payment_id}
    return store


def order_payload(store: EntityStore, **overrides: Any) -> Dict[str, Any]:
    payload = {
        "clientId": store.ids["user"],
        "serviceId": store.ids["service"],
        "paymentMethodId": store.ids["payment"],
        "startDate": date(2026, 10, 1).isoformat(),
        "endDate": date(2026, 11, 1).isoformat(),
        "price": 15.99,
        "cost": 12.0,
    }
    payload.update(overrides)
    return payload
