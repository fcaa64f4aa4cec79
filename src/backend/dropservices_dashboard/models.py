from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, Literal, Optional, Sequence, Tuple, Union

Granularity = Literal["day", "week", "month"]

NOT_APPLICABLE = "-"


@dataclass(frozen=True)
class OrderRecord:
    """
    Snapshot of an order document as delivered by the entity store.

    ``service_name``/``client_name``/``payment_method`` are the display labels
    the store joins onto the order at read time. Dates that were missing or
    could not be parsed are ``None``.
    """

    id: str
    client_id: Optional[str]
    service_id: Optional[str]
    payment_method_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    price: Optional[float] = None
    cost: float = 0.0
    status: str = "active"
    service_name: Optional[str] = None
    client_name: Optional[str] = None
    payment_method: Optional[str] = None

    @property
    def profit(self) -> float:
        return (self.price or 0.0) - self.cost


@dataclass(frozen=True)
class ServiceRecord:
    id: str
    name: str
    status: str = "active"
    has_expiration: bool = False
    image: Optional[str] = None


@dataclass(frozen=True)
class UserRecord:
    """
    Snapshot of a client. ``created_at`` falls back to ``join_date`` when the
    store did not stamp a creation time.
    """

    id: str
    client_name: str
    created_at: Optional[datetime] = None
    join_date: Optional[date] = None
    total_orders: int = 0
    total_spent: float = 0.0


@dataclass(frozen=True)
class DashboardFilters:
    """
    Knobs shared by every dashboard aggregation.

    ``now`` defaults to the wall clock at build time. The window sizes mirror
    the admin panel defaults and are normally fed from ``MetricsConfig``.
    """

    now: Optional[datetime] = None
    granularity: Granularity = "month"
    growth_window_days: int = 30
    expiring_window_days: int = 10
    revenue_months: int = 6
    top_services: int = 5
    worklist_size: int = 5
    day_buckets: int = 30
    period_buckets: int = 12

    def resolve_now(self) -> datetime:
        return self.now or datetime.now()

    def bucket_limit(self) -> int:
        return self.day_buckets if self.granularity == "day" else self.period_buckets


@dataclass(frozen=True)
class CardMetric:
    key: str
    label: str
    value: Union[float, int, str]
    unit: Optional[str] = None
    delta_percent: Optional[float] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class RevenuePoint:
    key: Tuple[int, int]
    label: str
    revenue: float
    orders: int


@dataclass(frozen=True)
class DistributionSlice:
    service_id: Optional[str]
    name: str
    value: int
    color: str


@dataclass(frozen=True)
class ProfitRow:
    service_id: str
    name: str
    revenue: float
    cost: float
    profit: float
    percent_return: Optional[float] = None

    @property
    def percent_return_display(self) -> str:
        if self.percent_return is None:
            return NOT_APPLICABLE
        return f"{self.percent_return:.1f}%"


@dataclass(frozen=True)
class TimeBucket:
    key: Tuple[int, ...]
    label: str
    orders: int
    revenue: float


@dataclass(frozen=True)
class ExpiringOrder:
    order_id: str
    client_name: str
    service_name: str
    end_date: date
    days_remaining: int

    @property
    def is_expired(self) -> bool:
        return self.days_remaining <= 0


@dataclass(frozen=True)
class ExpiringWorklist:
    rows: Sequence[ExpiringOrder] = field(default_factory=tuple)
    total: int = 0
    expired: int = 0
    messages: Sequence[str] = field(default_factory=tuple)

    @property
    def expiring_soon(self) -> int:
        return self.total - self.expired


@dataclass(frozen=True)
class DashboardResult:
    generated_at: datetime
    granularity: Granularity
    cards: Sequence[CardMetric]
    revenue: Sequence[RevenuePoint]
    distribution: Sequence[DistributionSlice]
    profitability: Sequence[ProfitRow]
    orders_over_time: Sequence[TimeBucket]
    expiring: ExpiringWorklist

    def card(self, key: str) -> CardMetric:
        for card in self.cards:
            if card.key == key:
                return card
        raise KeyError(key)

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the nested dataclasses into a JSON-serialisable structure.

        The admin UI consumes this shape directly, so keys are camelCase and
        dates are ISO strings.
        """

        def _serialize(obj: Any) -> Any:
            if isinstance(obj, CardMetric):
                return {
                    "key": obj.key,
                    "label": obj.label,
                    "value": obj.value,
                    "unit": obj.unit,
                    "deltaPercent": obj.delta_percent,
                    "description": obj.description,
                }
            if isinstance(obj, RevenuePoint):
                return {"month": obj.label, "year": obj.key[0], "revenue": obj.revenue, "orders": obj.orders}
            if isinstance(obj, DistributionSlice):
                return {"serviceId": obj.service_id, "name": obj.name, "value": obj.value, "color": obj.color}
            if isinstance(obj, ProfitRow):
                return {
                    "serviceId": obj.service_id,
                    "name": obj.name,
                    "revenue": obj.revenue,
                    "cost": obj.cost,
                    "profit": obj.profit,
                    "percentReturn": obj.percent_return,
                    "percentReturnDisplay": obj.percent_return_display,
                }
            if isinstance(obj, TimeBucket):
                return {
                    "key": "-".join(str(part) for part in obj.key),
                    "label": obj.label,
                    "orders": obj.orders,
                    "revenue": obj.revenue,
                }
            if isinstance(obj, ExpiringOrder):
                return {
                    "orderId": obj.order_id,
                    "clientName": obj.client_name,
                    "serviceName": obj.service_name,
                    "endDate": obj.end_date.isoformat(),
                    "daysRemaining": obj.days_remaining,
                    "expired": obj.is_expired,
                }
            if isinstance(obj, ExpiringWorklist):
                return {
                    "rows": [_serialize(row) for row in obj.rows],
                    "total": obj.total,
                    "expired": obj.expired,
                    "expiringSoon": obj.expiring_soon,
                    "messages": list(obj.messages),
                }
            if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes)):
                return [_serialize(item) for item in obj]
            return obj

        return {
            "generatedAt": self.generated_at.isoformat(),
            "granularity": self.granularity,
            "cards": _serialize(self.cards),
            "revenue": _serialize(self.revenue),
            "distribution": _serialize(self.distribution),
            "profitability": _serialize(self.profitability),
            "ordersOverTime": _serialize(self.orders_over_time),
            "expiring": _serialize(self.expiring),
        }
