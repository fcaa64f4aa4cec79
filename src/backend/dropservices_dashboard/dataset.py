from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from .models import OrderRecord, ServiceRecord, UserRecord

logger = logging.getLogger(__name__)

OrderLike = Union[OrderRecord, Mapping[str, Any]]
ServiceLike = Union[ServiceRecord, Mapping[str, Any]]
UserLike = Union[UserRecord, Mapping[str, Any]]


def normalize_datetime(value: datetime) -> datetime:
    """Aware datetimes are converted to naive local time so they compare with ``datetime.now()``."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return normalize_datetime(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return normalize_datetime(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def parse_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def order_from_document(document: Mapping[str, Any]) -> OrderRecord:
    return OrderRecord(
        id=str(document.get("id", "")),
        client_id=_optional_str(document.get("clientId")),
        service_id=_optional_str(document.get("serviceId")),
        payment_method_id=_optional_str(document.get("paymentMethodId")),
        start_date=parse_date(document.get("startDate")),
        end_date=parse_date(document.get("endDate")),
        price=parse_float(document.get("price")),
        cost=parse_float(document.get("cost")) or 0.0,
        status=str(document.get("status") or "active"),
        service_name=_optional_str(document.get("serviceName")),
        client_name=_optional_str(document.get("clientName")),
        payment_method=_optional_str(document.get("paymentMethod")),
    )


def service_from_document(document: Mapping[str, Any]) -> ServiceRecord:
    return ServiceRecord(
        id=str(document.get("id", "")),
        name=str(document.get("name") or ""),
        status=str(document.get("status") or "active"),
        has_expiration=bool(document.get("hasExpiration", False)),
        image=_optional_str(document.get("image")),
    )


def user_from_document(document: Mapping[str, Any]) -> UserRecord:
    join_date = parse_date(document.get("joinDate"))
    created_at = parse_datetime(document.get("createdAt"))
    if created_at is None and join_date is not None:
        created_at = datetime(join_date.year, join_date.month, join_date.day)
    return UserRecord(
        id=str(document.get("id", "")),
        client_name=str(document.get("clientName") or ""),
        created_at=created_at,
        join_date=join_date,
        total_orders=int(parse_float(document.get("totalOrders")) or 0),
        total_spent=parse_float(document.get("totalSpent")) or 0.0,
    )


def _coerce(items: Optional[Iterable[Any]], record_type: type, converter) -> tuple:
    records = []
    for item in items or ():
        if isinstance(item, record_type):
            records.append(item)
        elif isinstance(item, Mapping):
            records.append(converter(item))
        else:
            logger.warning("Skipping unsupported %s snapshot entry: %r", record_type.__name__, item)
    return tuple(records)


@dataclass
class DashboardDataset:
    """
    Normalised view over the three snapshots the dashboard is computed from.

    Any of the snapshots may be ``None`` or empty while the corresponding feed
    has not delivered yet; the dataset then simply behaves as an empty
    collection.
    """

    orders: Sequence[OrderLike]
    services: Sequence[ServiceLike]
    users: Sequence[UserLike]

    def __post_init__(self) -> None:
        self.orders = _coerce(self.orders, OrderRecord, order_from_document)
        self.services = _coerce(self.services, ServiceRecord, service_from_document)
        self.users = _coerce(self.users, UserRecord, user_from_document)
        self._services_by_id: Dict[str, ServiceRecord] = {}
        for service in self.services:
            self._services_by_id.setdefault(service.id, service)

    def service(self, service_id: Optional[str]) -> Optional[ServiceRecord]:
        if service_id is None:
            return None
        return self._services_by_id.get(service_id)

    def service_name(self, order: OrderRecord) -> str:
        service = self.service(order.service_id)
        if service is not None and service.name:
            return service.name
        return order.service_name or "Unknown"

    def orders_for_service(self, service_id: str) -> List[OrderRecord]:
        return [order for order in self.orders if order.service_id == service_id]

    def orders_started_between(self, start: datetime, end: datetime) -> Iterator[OrderRecord]:
        """
        Yield orders whose ``start_date`` (taken at midnight) falls in ``[start, end)``.
        """

        for order in self.orders:
            if order.start_date is None:
                continue
            started = datetime(order.start_date.year, order.start_date.month, order.start_date.day)
            if start <= started < end:
                yield order

    def users_created_between(self, start: datetime, end: datetime) -> List[UserRecord]:
        return [user for user in self.users if user.created_at is not None and start <= user.created_at <= end]
