"""FastAPI server that exposes the Dropservices admin collections and dashboard."""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Literal, Optional, Type

from fastapi import FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.dropservices_dashboard import (
    DashboardResult,
    DataDashboardService,
    LiveDashboard,
    StoreDashboardRepository,
)
from backend.dropservices_dashboard.server import create_dashboard_app

from .configuration import AdminConfig
from .logging_config import setup_logging
from .schemas import (
    CreatedResponse,
    OrderCreate,
    OrderUpdate,
    Page,
    PaymentMethodCreate,
    PaymentMethodUpdate,
    ServiceCreate,
    ServiceUpdate,
    UserCreate,
    UserUpdate,
)
from .storage import (
    EntityStore,
    RecordNotFoundError,
    StoreError,
    StoreUnavailableError,
    StoreValidationError,
    build_entity_store,
)
from .storage_config import load_storage_config
from .utils import format_currency, format_date, paginate, search_documents

logger = logging.getLogger(__name__)

# path prefix -> (store attribute, create body, update body)
COLLECTION_ROUTES: Dict[str, tuple] = {
    "/services": ("services", ServiceCreate, ServiceUpdate),
    "/users": ("users", UserCreate, UserUpdate),
    "/orders": ("orders", OrderCreate, OrderUpdate),
    "/payment-methods": ("payment_methods", PaymentMethodCreate, PaymentMethodUpdate),
}


def create_app(store: Optional[EntityStore] = None, config: Optional[AdminConfig] = None) -> FastAPI:
    config = config or AdminConfig.from_env()
    setup_logging(config.logging.level, config.logging.logfile)
    store = store or build_entity_store(load_storage_config(None))

    @asynccontextmanager
    async def lifespan(target_app: FastAPI):
        live = LiveDashboard(
            store.orders,
            store.services,
            store.users,
            filters=config.metrics.to_filters(),
        )
        target_app.state.live = live
        try:
            yield
        finally:
            live.close()
            store.close()

    target_app = FastAPI(title="Dropservices Admin API", version="0.1.0", lifespan=lifespan)
    target_app.state.store = store
    target_app.state.config = config

    target_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(target_app)

    @target_app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @target_app.get("/overview")
    def overview(
        request: Request,
        granularity: Optional[Literal["day", "week", "month"]] = Query(None),
    ) -> Dict[str, Any]:
        live: LiveDashboard = request.app.state.live
        if granularity is None or granularity == live.filters.granularity:
            result = live.latest
        else:
            service = DataDashboardService(
                orders=store.orders.list_once(),
                services=store.services.list_once(),
                users=store.users.list_once(),
            )
            result = service.build(config.metrics.to_filters(granularity=granularity))
        return {"data": result.as_dict(), "display": _display_values(result, config.display.currency)}

    for path, (attribute, create_model, update_model) in COLLECTION_ROUTES.items():
        _register_collection_routes(target_app, path, attribute, create_model, update_model)

    dashboard_app = create_dashboard_app(
        StoreDashboardRepository(store.orders, store.services, store.users),
        config.metrics.to_filters(),
    )
    target_app.mount("/dashboard", dashboard_app)
    return target_app


def _register_collection_routes(
    target_app: FastAPI,
    path: str,
    attribute: str,
    create_model: Type[BaseModel],
    update_model: Type[BaseModel],
) -> None:
    tag = attribute.replace("_", " ")

    def _collection(request: Request):
        return request.app.state.store.collection(attribute)

    def list_documents(
        request: Request,
        search: str = Query("", description="Case-insensitive match against any field"),
        page: int = Query(1, ge=1),
        page_size: Optional[int] = Query(None, ge=1),
    ) -> Page:
        display = request.app.state.config.display
        size = min(page_size or display.page_size, display.max_page_size)
        matches = search_documents(_collection(request).list_once(), search)
        items, pages = paginate(matches, page, size)
        return Page(items=items, total=len(matches), page=page, page_size=size, pages=pages)

    def get_document(record_id: str, request: Request) -> Dict[str, Any]:
        return _collection(request).get(record_id)

    def create_document(payload: create_model, request: Request) -> CreatedResponse:  # type: ignore[valid-type]
        record_id = _collection(request).create(payload.to_document())
        return CreatedResponse(id=record_id)

    def update_document(record_id: str, payload: update_model, request: Request) -> Dict[str, Any]:  # type: ignore[valid-type]
        collection = _collection(request)
        collection.update(record_id, payload.to_document(partial=True))
        return collection.get(record_id)

    def delete_document(record_id: str, request: Request) -> Response:
        _collection(request).delete(record_id)
        return Response(status_code=204)

    target_app.add_api_route(path, list_documents, methods=["GET"], response_model=Page, tags=[tag])
    target_app.add_api_route(f"{path}/{{record_id}}", get_document, methods=["GET"], tags=[tag])
    target_app.add_api_route(
        path, create_document, methods=["POST"], response_model=CreatedResponse, status_code=201, tags=[tag]
    )
    target_app.add_api_route(f"{path}/{{record_id}}", update_document, methods=["PATCH"], tags=[tag])
    target_app.add_api_route(
        f"{path}/{{record_id}}", delete_document, methods=["DELETE"], status_code=204, tags=[tag]
    )


def _register_error_handlers(target_app: FastAPI) -> None:
    @target_app.exception_handler(StoreError)
    async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        if isinstance(exc, RecordNotFoundError):
            status_code = 404
        elif isinstance(exc, StoreValidationError):
            status_code = 422
        elif isinstance(exc, StoreUnavailableError):
            status_code = 503
        else:
            status_code = 500
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def _display_values(result: DashboardResult, currency: str) -> Dict[str, Any]:
    cards: Dict[str, str] = {}
    for card in result.cards:
        if card.unit == "%":
            cards[card.key] = f"{card.value:.1f}%"
        elif card.unit:
            cards[card.key] = format_currency(card.value, currency)
        else:
            cards[card.key] = str(card.value)
    return {
        "cards": cards,
        "profitability": {
            row.service_id: {
                "revenue": format_currency(row.revenue, currency),
                "cost": format_currency(row.cost, currency),
                "profit": format_currency(row.profit, currency),
                "percentReturn": row.percent_return_display,
            }
            for row in result.profitability
        },
        "expiring": [
            {"orderId": row.order_id, "endDate": format_date(row.end_date)} for row in result.expiring.rows
        ],
    }


app = create_app()
