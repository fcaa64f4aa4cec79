from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator

from .dataset import parse_date, parse_datetime, parse_float
from .models import DashboardFilters, OrderRecord, ServiceRecord, UserRecord
from .repository import DashboardDataError, DashboardDataRepository, build_repository_from_env
from .service import DataDashboardService

logger = logging.getLogger(__name__)


class OrderPayload(BaseModel):
    id: str
    client_id: Optional[str] = Field(None, alias="clientId")
    service_id: Optional[str] = Field(None, alias="serviceId")
    payment_method_id: Optional[str] = Field(None, alias="paymentMethodId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    price: Optional[float] = None
    cost: float = 0.0
    status: str = "active"
    service_name: Optional[str] = Field(None, alias="serviceName")
    client_name: Optional[str] = Field(None, alias="clientName")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")

    model_config = {"populate_by_name": True}

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _lenient_date(cls, value: Any) -> Optional[date]:
        return parse_date(value)

    @field_validator("price", mode="before")
    @classmethod
    def _lenient_price(cls, value: Any) -> Optional[float]:
        return parse_float(value)

    @field_validator("cost", mode="before")
    @classmethod
    def _lenient_cost(cls, value: Any) -> float:
        return parse_float(value) or 0.0


class ServicePayload(BaseModel):
    id: str
    name: str = ""
    status: str = "active"
    has_expiration: bool = Field(False, alias="hasExpiration")
    image: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("name", "status", mode="before")
    @classmethod
    def _lenient_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("has_expiration", mode="before")
    @classmethod
    def _lenient_flag(cls, value: Any) -> bool:
        return value is True or (isinstance(value, str) and value.lower() in {"true", "1", "yes"})


class UserPayload(BaseModel):
    id: str
    client_name: str = Field("", alias="clientName")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    join_date: Optional[date] = Field(None, alias="joinDate")
    total_orders: int = Field(0, alias="totalOrders")
    total_spent: float = Field(0.0, alias="totalSpent")

    model_config = {"populate_by_name": True}

    @field_validator("created_at", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> Optional[datetime]:
        return parse_datetime(value)

    @field_validator("join_date", mode="before")
    @classmethod
    def _lenient_date(cls, value: Any) -> Optional[date]:
        return parse_date(value)

    @field_validator("total_orders", mode="before")
    @classmethod
    def _lenient_count(cls, value: Any) -> int:
        return int(parse_float(value) or 0)

    @field_validator("total_spent", mode="before")
    @classmethod
    def _lenient_amount(cls, value: Any) -> float:
        return parse_float(value) or 0.0


class DashboardRequest(BaseModel):
    granularity: Literal["day", "week", "month"] = "month"
    now: Optional[datetime] = None
    orders: Optional[List[OrderPayload]] = None
    services: Optional[List[ServicePayload]] = None
    users: Optional[List[UserPayload]] = None

    @field_validator("now")
    @classmethod
    def _strip_timezone(cls, now: Optional[datetime]) -> Optional[datetime]:
        if now is not None and now.tzinfo is not None:
            return now.astimezone().replace(tzinfo=None)
        return now


class DashboardResponse(BaseModel):
    data: Dict[str, Any]
    source: str


def create_dashboard_app(
    repository: Optional[DashboardDataRepository] = None,
    filters: Optional[DashboardFilters] = None,
) -> FastAPI:
    """
    Build a dashboard API bound to ``repository``.

    Each app keeps its own repository and default filters on ``app.state``,
    so several admin apps can mount dashboards over different stores.
    """

    dashboard_app = FastAPI(title="Dropservices Dashboard API", version="0.1.0")
    dashboard_app.state.repository = repository
    dashboard_app.state.filters = filters or DashboardFilters()

    @dashboard_app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @dashboard_app.get("/dashboard", response_model=DashboardResponse)
    def dashboard_from_repository(
        request: Request,
        granularity: Literal["day", "week", "month"] = Query("month"),
    ) -> DashboardResponse:
        return _build_response(request.app, DashboardRequest(granularity=granularity))

    @dashboard_app.post("/dashboard", response_model=DashboardResponse)
    def dashboard_endpoint(payload: DashboardRequest, request: Request) -> DashboardResponse:
        return _build_response(request.app, payload)

    return dashboard_app


def _build_response(dashboard_app: FastAPI, request: DashboardRequest) -> DashboardResponse:
    filters = replace(dashboard_app.state.filters, now=request.now, granularity=request.granularity)
    orders, services, users, source = _load_dataset(dashboard_app.state.repository, request)
    service = DataDashboardService(orders=orders, services=services, users=users)
    dashboard = service.build(filters)
    return DashboardResponse(data=dashboard.as_dict(), source=source)


def _load_dataset(
    repository: Optional[DashboardDataRepository],
    request: DashboardRequest,
) -> Tuple[Sequence[Any], Sequence[Any], Sequence[Any], str]:
    inline = (request.orders, request.services, request.users)
    if any(part is not None for part in inline):
        return (
            tuple(_convert_order_payload(payload) for payload in request.orders or ()),
            tuple(_convert_service_payload(payload) for payload in request.services or ()),
            tuple(_convert_user_payload(payload) for payload in request.users or ()),
            "inline",
        )

    if repository is None:
        raise HTTPException(
            status_code=500,
            detail=(
                "DROPSERVICES_DATABASE_URL is not configured; "
                "supply orders/services/users in the request body for ad-hoc queries."
            ),
        )

    try:
        orders, services, users = repository.load()
    except DashboardDataError as exc:
        logger.warning("Dashboard repository unavailable: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return orders, services, users, "repository"


def _convert_order_payload(payload: OrderPayload) -> OrderRecord:
    return OrderRecord(
        id=payload.id,
        client_id=payload.client_id,
        service_id=payload.service_id,
        payment_method_id=payload.payment_method_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        price=payload.price,
        cost=payload.cost,
        status=payload.status,
        service_name=payload.service_name,
        client_name=payload.client_name,
        payment_method=payload.payment_method,
    )


def _convert_service_payload(payload: ServicePayload) -> ServiceRecord:
    return ServiceRecord(
        id=payload.id,
        name=payload.name,
        status=payload.status or "active",
        has_expiration=payload.has_expiration,
        image=payload.image,
    )


def _convert_user_payload(payload: UserPayload) -> UserRecord:
    created_at = payload.created_at
    if created_at is None and payload.join_date is not None:
        created_at = datetime(payload.join_date.year, payload.join_date.month, payload.join_date.day)
    return UserRecord(
        id=payload.id,
        client_name=payload.client_name,
        created_at=created_at,
        join_date=payload.join_date,
        total_orders=payload.total_orders,
        total_spent=payload.total_spent,
    )


app = create_dashboard_app(build_repository_from_env())
