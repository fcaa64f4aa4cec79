from __future__ import annotations

import calendar
import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .dataset import DashboardDataset, OrderLike, ServiceLike, UserLike
from .models import (
    CardMetric,
    DashboardFilters,
    DashboardResult,
    DistributionSlice,
    ExpiringOrder,
    ExpiringWorklist,
    Granularity,
    OrderRecord,
    ProfitRow,
    RevenuePoint,
    TimeBucket,
)

SERVICE_PALETTE = (
    "#E50914",
    "#10A37F",
    "#00C4CC",
    "#1DB954",
    "#8B5CF6",
    "#6B7280",
)
UNKNOWN_SERVICE = "Unknown"
NO_SERVICE = "N/A"


def _calc_growth(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def _build_card(
    key: str,
    label: str,
    value,
    unit: Optional[str] = None,
    delta_percent: Optional[float] = None,
    description: Optional[str] = None,
) -> CardMetric:
    return CardMetric(
        key=key,
        label=label,
        value=value,
        unit=unit,
        delta_percent=delta_percent,
        description=description,
    )


def _plural(count: int, state: str) -> str:
    noun = "order" if count == 1 else "orders"
    verb = "is" if count == 1 else "are"
    return f"{count} {noun} {verb} {state}"


def week_key(day: date) -> Tuple[int, int]:
    """
    Return ``(year, week)`` for the Monday-anchored week containing ``day``.

    The week number counts days from January 1st of the Monday's year and
    rounds up, so the first partial week of a year is week 1.
    """

    monday = day - timedelta(days=day.weekday())
    days_since_new_year = (monday - date(monday.year, 1, 1)).days
    return monday.year, math.ceil((days_since_new_year + 1) / 7)


def _bucket_for(day: date, granularity: Granularity) -> Tuple[Tuple[int, ...], str]:
    if granularity == "day":
        return (day.year, day.month, day.day), f"{calendar.month_abbr[day.month]} {day.day}, {day.year}"
    if granularity == "week":
        year, week = week_key(day)
        return (year, week), f"W{week} {year}"
    return (day.year, day.month), f"{calendar.month_abbr[day.month]} {day.year}"


@dataclass
class _TimeWindows:
    now: datetime
    today: date
    recent_start: datetime
    previous_start: datetime


class DataDashboardService:
    """
    Derives every dashboard view from the current orders/services/users snapshots.

    The service holds no state beyond the snapshots it was built with, so it is
    cheap to throw away and rebuild whenever a feed delivers.
    """

    def __init__(
        self,
        orders: Optional[Sequence[OrderLike]] = None,
        services: Optional[Sequence[ServiceLike]] = None,
        users: Optional[Sequence[UserLike]] = None,
    ) -> None:
        self.dataset = DashboardDataset(orders=orders or (), services=services or (), users=users or ())

    def build(self, filters: Optional[DashboardFilters] = None) -> DashboardResult:
        filters = filters or DashboardFilters()
        windows = self._compute_windows(filters)
        return DashboardResult(
            generated_at=windows.now,
            granularity=filters.granularity,
            cards=self.summary_cards(filters, windows),
            revenue=self.revenue_series(filters),
            distribution=self.service_distribution(filters),
            profitability=self.profitability_table(),
            orders_over_time=self.orders_over_time(filters),
            expiring=self.expiring_worklist(filters, windows.today),
        )

    def _compute_windows(self, filters: DashboardFilters) -> _TimeWindows:
        now = filters.resolve_now()
        if now.tzinfo is not None:
            now = now.astimezone().replace(tzinfo=None)
        window = timedelta(days=filters.growth_window_days)
        return _TimeWindows(
            now=now,
            today=now.date(),
            recent_start=now - window,
            previous_start=now - window * 2,
        )

    def summary_cards(self, filters: DashboardFilters, windows: Optional[_TimeWindows] = None) -> Sequence[CardMetric]:
        windows = windows or self._compute_windows(filters)
        orders = self.dataset.orders

        total_revenue = sum(order.price or 0.0 for order in orders)
        total_profit = sum(order.profit for order in orders)
        active_orders = sum(1 for order in orders if order.status == "active")
        active_services = sum(1 for service in self.dataset.services if service.status == "active")
        revenue_growth = self.revenue_growth(windows)
        user_growth = self.user_growth_rate(windows)

        return [
            _build_card("total_revenue", "Total Revenue", total_revenue, unit="TND", delta_percent=revenue_growth),
            _build_card("total_profit", "Total Profit", total_profit, unit="TND"),
            _build_card("total_orders", "Total Orders", len(orders)),
            _build_card("active_orders", "Active Orders", active_orders),
            _build_card("active_services", "Active Services", active_services),
            _build_card("total_users", "Total Users", len(self.dataset.users), delta_percent=user_growth),
            _build_card(
                "revenue_growth",
                "Revenue Growth",
                revenue_growth,
                unit="%",
                description=f"Last {filters.growth_window_days} days vs the {filters.growth_window_days} days before",
            ),
            _build_card("user_growth_rate", "User Growth Rate", user_growth, unit="%"),
            _build_card("most_profitable_service", "Most Profitable Service", self.most_profitable_service()),
            _build_card(
                "completed_orders_this_month",
                "Completed This Month",
                self.completed_orders(windows),
            ),
        ]

    def revenue_growth(self, windows: _TimeWindows) -> float:
        recent = sum(
            order.price or 0.0 for order in self.dataset.orders_started_between(windows.recent_start, windows.now)
        )
        previous = sum(
            order.price or 0.0
            for order in self.dataset.orders_started_between(windows.previous_start, windows.recent_start)
        )
        return _calc_growth(recent, previous)

    def user_growth_rate(self, windows: _TimeWindows) -> float:
        total = len(self.dataset.users)
        if not total:
            return 0.0
        new_users = len(self.dataset.users_created_between(windows.recent_start, windows.now))
        return new_users / total * 100

    def most_profitable_service(self) -> str:
        profits: Dict[str, float] = defaultdict(float)
        for order in self.dataset.orders:
            if order.service_id is not None:
                profits[order.service_id] += order.profit

        best_name, best_profit = NO_SERVICE, -math.inf
        for service in self.dataset.services:
            if service.id not in profits:
                continue
            if profits[service.id] > best_profit:
                best_name, best_profit = service.name, profits[service.id]
        return best_name

    def completed_orders(self, windows: _TimeWindows) -> int:
        start = windows.recent_start.date()
        return sum(
            1
            for order in self.dataset.orders
            if order.end_date is not None and start <= order.end_date <= windows.today
        )

    def revenue_series(self, filters: DashboardFilters) -> Sequence[RevenuePoint]:
        buckets: Dict[Tuple[int, int], List[float]] = {}
        for order in self.dataset.orders:
            if order.start_date is None or order.price is None:
                continue
            key = (order.start_date.year, order.start_date.month)
            bucket = buckets.setdefault(key, [0.0, 0])
            bucket[0] += order.price
            bucket[1] += 1

        points = [
            RevenuePoint(key=key, label=calendar.month_abbr[key[1]], revenue=revenue, orders=int(count))
            for key, (revenue, count) in sorted(buckets.items())
        ]
        return points[-filters.revenue_months:] if filters.revenue_months > 0 else []

    def service_distribution(self, filters: DashboardFilters) -> Sequence[DistributionSlice]:
        counts = Counter(order.service_id for order in self.dataset.orders)
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[: filters.top_services]
        slices: List[DistributionSlice] = []
        for index, (service_id, count) in enumerate(ranked):
            service = self.dataset.service(service_id)
            slices.append(
                DistributionSlice(
                    service_id=service_id,
                    name=service.name if service is not None else UNKNOWN_SERVICE,
                    value=count,
                    color=SERVICE_PALETTE[index % len(SERVICE_PALETTE)],
                )
            )
        return slices

    def profitability_table(self) -> Sequence[ProfitRow]:
        rows: List[ProfitRow] = []
        for service in self.dataset.services:
            orders = self.dataset.orders_for_service(service.id)
            revenue = sum(order.price or 0.0 for order in orders)
            cost = sum(order.cost for order in orders)
            if revenue == 0 and cost == 0:
                continue
            profit = revenue - cost
            percent_return = round(profit / cost * 100, 1) if cost > 0 else None
            rows.append(
                ProfitRow(
                    service_id=service.id,
                    name=service.name,
                    revenue=revenue,
                    cost=cost,
                    profit=profit,
                    percent_return=percent_return,
                )
            )
        return sorted(rows, key=lambda row: row.profit, reverse=True)

    def orders_over_time(self, filters: DashboardFilters) -> Sequence[TimeBucket]:
        counts: Dict[Tuple[int, ...], int] = defaultdict(int)
        revenue: Dict[Tuple[int, ...], float] = defaultdict(float)
        labels: Dict[Tuple[int, ...], str] = {}
        for order in self.dataset.orders:
            if order.start_date is None:
                continue
            key, label = _bucket_for(order.start_date, filters.granularity)
            counts[key] += 1
            revenue[key] += order.price or 0.0
            labels[key] = label

        buckets = [
            TimeBucket(key=key, label=labels[key], orders=counts[key], revenue=revenue[key]) for key in sorted(counts)
        ]
        limit = filters.bucket_limit()
        return buckets[-limit:] if limit > 0 else []

    def expiring_worklist(self, filters: DashboardFilters, today: Optional[date] = None) -> ExpiringWorklist:
        today = today or self._compute_windows(filters).today
        matches: List[Tuple[OrderRecord, int]] = []
        for order in self.dataset.orders:
            if order.end_date is None:
                continue
            days_remaining = (order.end_date - today).days
            if days_remaining <= filters.expiring_window_days:
                matches.append((order, days_remaining))

        matches.sort(key=lambda item: item[0].end_date)
        expired = sum(1 for _, days in matches if days <= 0)
        expiring_soon = len(matches) - expired

        messages: List[str] = []
        if expired:
            messages.append(_plural(expired, "expired"))
        if expiring_soon:
            messages.append(_plural(expiring_soon, "expiring soon"))

        rows = [
            ExpiringOrder(
                order_id=order.id,
                client_name=order.client_name or "Unknown client",
                service_name=self.dataset.service_name(order),
                end_date=order.end_date,
                days_remaining=days,
            )
            for order, days in matches[: filters.worklist_size]
        ]
        return ExpiringWorklist(rows=rows, total=len(matches), expired=expired, messages=messages)
