"""
Dropservices dashboard aggregation.

Turns the orders, services and users snapshots delivered by the entity store
into the summary cards, charts and worklists shown on the admin dashboard.
Everything here is a pure function of the snapshots it is given.
"""

from .live import LiveDashboard  # noqa: F401
from .models import (  # noqa: F401
    CardMetric,
    DashboardFilters,
    DashboardResult,
    DistributionSlice,
    ExpiringOrder,
    ExpiringWorklist,
    OrderRecord,
    ProfitRow,
    RevenuePoint,
    ServiceRecord,
    TimeBucket,
    UserRecord,
)
from .repository import (  # noqa: F401
    DashboardDataError,
    DashboardDataRepository,
    RepositoryConfig,
    SQLDashboardRepository,
    StoreDashboardRepository,
    build_repository_from_env,
)
from .service import DataDashboardService  # noqa: F401
