from datetime import date, datetime, timedelta

import pytest

from backend.dropservices_dashboard import DashboardFilters, DataDashboardService, OrderRecord
from backend.dropservices_dashboard.service import SERVICE_PALETTE, week_key

from conftest import NOW, TODAY, days_from_today, make_order, make_service


def build(orders=(), services=(), users=(), **filter_overrides):
    filters = DashboardFilters(now=NOW, **filter_overrides)
    return DataDashboardService(orders=list(orders), services=list(services), users=list(users)).build(filters)


def test_single_order_scenario():
    result = build(orders=[make_order("o1")], services=[make_service("s1", "Netflix")])

    assert result.card("total_revenue").value == 100
    assert result.card("total_profit").value == 40
    assert result.card("total_orders").value == 1
    assert result.card("active_orders").value == 1
    assert result.card("active_services").value == 1
    assert result.card("most_profitable_service").value == "Netflix"

    (row,) = result.profitability
    assert row.revenue == 100
    assert row.cost == 60
    assert row.profit == 40
    assert row.percent_return == 66.7
    assert row.percent_return_display == "66.7%"


def test_empty_inputs_produce_zeroed_views():
    result = build()

    for key in ("total_revenue", "total_profit", "total_orders", "active_orders", "active_services", "total_users"):
        assert result.card(key).value == 0
    assert result.card("revenue_growth").value == 0.0
    assert result.card("user_growth_rate").value == 0.0
    assert result.card("most_profitable_service").value == "N/A"
    assert result.card("completed_orders_this_month").value == 0
    assert list(result.revenue) == []
    assert list(result.distribution) == []
    assert list(result.profitability) == []
    assert list(result.orders_over_time) == []
    assert result.expiring.total == 0
    assert list(result.expiring.messages) == []


def test_cards_come_in_a_stable_order():
    result = build()

    assert [card.key for card in result.cards] == [
        "total_revenue",
        "total_profit",
        "total_orders",
        "active_orders",
        "active_services",
        "total_users",
        "revenue_growth",
        "user_growth_rate",
        "most_profitable_service",
        "completed_orders_this_month",
    ]
    with pytest.raises(KeyError):
        result.card("missing")


def test_profit_is_revenue_minus_cost():
    orders = [
        make_order("o1", price=15.99, cost=12),
        make_order("o2", price=8, cost=9.5),
        make_order("o3", price=None, cost=3),
    ]
    result = build(orders=orders, services=[make_service("s1")])

    revenue = result.card("total_revenue").value
    assert result.card("total_profit").value == pytest.approx(revenue - (12 + 9.5 + 3))
    assert OrderRecord(id="x", client_id=None, service_id=None, price=None, cost=4).profit == -4


def test_inactive_orders_and_services_are_not_counted_as_active():
    orders = [make_order("o1"), make_order("o2", status="completed"), make_order("o3", status="cancelled")]
    services = [make_service("s1"), make_service("s2", status="paused")]
    result = build(orders=orders, services=services)

    assert result.card("total_orders").value == 3
    assert result.card("active_orders").value == 1
    assert result.card("active_services").value == 1


def test_revenue_growth_compares_rolling_windows():
    orders = [
        make_order("previous", price=100, start="2026-08-28"),
        make_order("recent", price=150, start="2026-10-01"),
        make_order("ancient", price=999, start="2025-01-01"),
    ]
    result = build(orders=orders)

    assert result.card("revenue_growth").value == pytest.approx(50.0)
    assert result.card("total_revenue").delta_percent == pytest.approx(50.0)


def test_revenue_growth_is_zero_without_previous_revenue():
    result = build(orders=[make_order("recent", price=150, start="2026-10-01")])

    assert result.card("revenue_growth").value == 0.0


def test_user_growth_rate():
    users = [
        {"id": "u1", "clientName": "New", "createdAt": "2026-10-10T00:00:00"},
        {"id": "u2", "clientName": "Old", "joinDate": "2026-01-01"},
    ]
    result = build(users=users)

    assert result.card("total_users").value == 2
    assert result.card("user_growth_rate").value == pytest.approx(50.0)
    assert result.card("total_users").delta_percent == pytest.approx(50.0)


def test_most_profitable_service_ignores_services_without_orders_and_keeps_first_on_tie():
    services = [make_service("s3", "Idle"), make_service("s1", "Netflix"), make_service("s2", "Spotify")]
    orders = [make_order("o1", service_id="s1"), make_order("o2", service_id="s2")]
    result = build(orders=orders, services=services)

    assert result.card("most_profitable_service").value == "Netflix"


def test_most_profitable_service_accepts_losses():
    result = build(
        orders=[make_order("o1", price=10, cost=50)],
        services=[make_service("s1", "Loss Leader")],
    )

    assert result.card("most_profitable_service").value == "Loss Leader"


def test_most_profitable_service_without_known_services():
    result = build(orders=[make_order("o1", service_id="ghost")], services=[make_service("s1")])

    assert result.card("most_profitable_service").value == "N/A"


def test_completed_orders_counts_end_dates_within_window():
    orders = [
        make_order("inside", end="2026-10-01"),
        make_order("today", end=TODAY.isoformat()),
        make_order("before-window", end="2026-09-10"),
        make_order("future", end="2026-10-20"),
        make_order("open-ended"),
    ]
    result = build(orders=orders)

    assert result.card("completed_orders_this_month").value == 2


def test_revenue_series_keeps_years_apart():
    orders = [
        make_order("o1", price=100, start="2024-01-15"),
        make_order("o2", price=200, start="2025-01-15"),
    ]
    result = build(orders=orders)

    assert [point.key for point in result.revenue] == [(2024, 1), (2025, 1)]
    assert [point.label for point in result.revenue] == ["Jan", "Jan"]
    assert [point.revenue for point in result.revenue] == [100, 200]


def test_revenue_series_keeps_the_latest_six_months():
    orders = [make_order(f"o{month}", price=month, start=date(2026, month, 3).isoformat()) for month in range(1, 9)]
    result = build(orders=orders)

    assert len(result.revenue) == 6
    assert result.revenue[0].key == (2026, 3)
    assert result.revenue[-1].key == (2026, 8)
    assert result.revenue[-1].orders == 1


def test_revenue_series_skips_orders_without_start_or_price():
    orders = [
        make_order("good", price=40, start="2026-09-01"),
        make_order("no-start", start=None),
        make_order("bad-start", start="not-a-date"),
        make_order("no-price", price=None, start="2026-09-02"),
    ]
    result = build(orders=orders)

    (point,) = result.revenue
    assert point.revenue == 40
    assert point.orders == 1


def test_service_distribution_caps_and_colours_slices():
    services = [make_service(f"s{i}") for i in range(1, 9)]
    orders = []
    for i in range(1, 8):
        orders.extend(make_order(f"o{i}-{n}", service_id=f"s{i}") for n in range(8 - i))
    result = build(orders=orders, services=services)

    assert [slice_.service_id for slice_ in result.distribution] == ["s1", "s2", "s3", "s4", "s5"]
    assert [slice_.value for slice_ in result.distribution] == [7, 6, 5, 4, 3]
    assert [slice_.color for slice_ in result.distribution] == list(SERVICE_PALETTE[:5])


def test_service_distribution_cycles_palette_and_names_unknown_services():
    services = [make_service(f"s{i}") for i in range(1, 7)]
    orders = []
    for i in range(1, 7):
        orders.extend(make_order(f"o{i}-{n}", service_id=f"s{i}") for n in range(10 - i))
    orders.append(make_order("stray", service_id="ghost"))
    result = build(orders=orders, services=services, top_services=7)

    assert len(result.distribution) == 7
    assert result.distribution[6].name == "Unknown"
    assert result.distribution[6].color == SERVICE_PALETTE[0]


def test_profitability_table_rows():
    services = [make_service("s1", "Free"), make_service("s2", "Paid"), make_service("s3", "Idle")]
    orders = [
        make_order("o1", service_id="s1", price=50, cost=0),
        make_order("o2", service_id="s2", price=200, cost=100),
    ]
    result = build(orders=orders, services=services)

    assert [row.name for row in result.profitability] == ["Paid", "Free"]
    paid, free = result.profitability
    assert paid.percent_return == 100.0
    assert free.percent_return is None
    assert free.percent_return_display == "-"


@pytest.mark.parametrize(
    "granularity,count,step,limit",
    [("day", 40, timedelta(days=1), 30), ("week", 20, timedelta(weeks=1), 12)],
)
def test_orders_over_time_caps_buckets(granularity, count, step, limit):
    start = date(2026, 1, 5)
    orders = [make_order(f"o{i}", start=(start + step * i).isoformat()) for i in range(count)]
    result = build(orders=orders, granularity=granularity)

    assert len(result.orders_over_time) == limit
    keys = [bucket.key for bucket in result.orders_over_time]
    assert keys == sorted(keys)


def test_orders_over_time_by_month():
    orders = []
    for offset in range(15):
        year, month = 2025 + offset // 12, offset % 12 + 1
        orders.append(make_order(f"o{offset}", price=10, start=date(year, month, 10).isoformat()))
    result = build(orders=orders, granularity="month")

    assert len(result.orders_over_time) == 12
    assert result.orders_over_time[0].key == (2025, 4)
    assert result.orders_over_time[0].label == "Apr 2025"
    assert result.orders_over_time[-1].label == "Mar 2026"
    assert result.orders_over_time[-1].revenue == 10


def test_orders_over_time_labels():
    orders = [make_order("o1", start="2026-10-17"), make_order("o2", start="2026-10-17")]

    by_day = build(orders=orders, granularity="day").orders_over_time
    by_week = build(orders=orders, granularity="week").orders_over_time

    assert by_day[0].label == "Oct 17, 2026"
    assert by_day[0].orders == 2
    assert by_week[0].label == "W41 2026"


def test_week_key_is_monday_anchored():
    assert week_key(date(2026, 1, 5)) == (2026, 1)
    assert week_key(date(2026, 1, 1)) == (2025, 52)
    assert week_key(date(2026, 10, 17)) == (2026, 41)
    assert week_key(date(2026, 10, 12)) == week_key(date(2026, 10, 18))


def test_expiring_worklist_window_and_messages():
    orders = [
        make_order("soon", end=days_from_today(10)),
        make_order("outside", end=days_from_today(11)),
        make_order("today", end=days_from_today(0)),
        make_order("lapsed", end=days_from_today(-3)),
        make_order("open-ended"),
        make_order("garbled", end="garbage"),
    ]
    worklist = build(orders=orders).expiring

    assert worklist.total == 3
    assert worklist.expired == 2
    assert worklist.expiring_soon == 1
    assert [row.order_id for row in worklist.rows] == ["lapsed", "today", "soon"]
    assert [row.days_remaining for row in worklist.rows] == [-3, 0, 10]
    assert [row.is_expired for row in worklist.rows] == [True, True, False]
    assert list(worklist.messages) == ["2 orders are expired", "1 order is expiring soon"]


def test_expiring_worklist_caps_rows_but_counts_everything():
    orders = [make_order(f"o{i}", end=days_from_today(-i)) for i in range(8)]
    worklist = build(orders=orders).expiring

    assert len(worklist.rows) == 5
    assert worklist.total == 8
    assert list(worklist.messages) == ["8 orders are expired"]


def test_expiring_rows_use_joined_labels():
    orders = [dict(make_order("o1", end=days_from_today(2)), clientName="John Doe")]
    worklist = build(orders=orders, services=[make_service("s1", "Netflix")]).expiring

    (row,) = worklist.rows
    assert row.client_name == "John Doe"
    assert row.service_name == "Netflix"


def test_as_dict_is_camel_case():
    orders = [make_order("o1", end=days_from_today(3))]
    payload = build(orders=orders, services=[make_service("s1", "Netflix")], granularity="week").as_dict()

    assert set(payload) == {
        "generatedAt",
        "granularity",
        "cards",
        "revenue",
        "distribution",
        "profitability",
        "ordersOverTime",
        "expiring",
    }
    assert payload["generatedAt"] == NOW.isoformat()
    assert payload["granularity"] == "week"
    assert payload["revenue"][0] == {"month": "Oct", "year": 2026, "revenue": 100.0, "orders": 1}
    assert payload["profitability"][0]["percentReturnDisplay"] == "66.7%"
    assert payload["ordersOverTime"][0]["key"] == "2026-40"
    assert payload["expiring"]["expiringSoon"] == 1
    assert payload["expiring"]["rows"][0]["endDate"] == days_from_today(3)


def test_aware_now_is_normalised():
    aware = datetime(2026, 10, 17, 12, 0).astimezone()
    result = DataDashboardService().build(DashboardFilters(now=aware))

    assert result.generated_at.tzinfo is None
