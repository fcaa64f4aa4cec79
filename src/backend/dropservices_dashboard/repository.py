from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

Snapshot = Sequence[Mapping[str, Any]]


class DashboardDataError(RuntimeError):
    """Raised when a repository cannot reach its backing store."""


class SnapshotSource(Protocol):
    def list_once(self) -> List[Dict[str, Any]]:
        ...


class DashboardDataRepository:
    """
    Interface for loading the orders/services/users snapshots the dashboard is
    computed from.
    """

    def load(self) -> Tuple[Snapshot, Snapshot, Snapshot]:
        raise NotImplementedError


class StoreDashboardRepository(DashboardDataRepository):
    """
    Read snapshots straight from entity store collections.

    The orders collection is expected to already carry the joined display
    labels (service/client/payment method names).
    """

    def __init__(self, orders: SnapshotSource, services: SnapshotSource, users: SnapshotSource):
        self.orders = orders
        self.services = services
        self.users = users

    def load(self) -> Tuple[Snapshot, Snapshot, Snapshot]:
        return self.orders.list_once(), self.services.list_once(), self.users.list_once()


class SQLDashboardRepository(DashboardDataRepository):
    """
    Load snapshots from the tables written by the SQL-backed entity store.

    Expected tables (``ds_`` prefix by default):
      - ds_orders(id, created_at, updated_at, payload)
      - ds_services(id, created_at, updated_at, payload)
      - ds_users(id, created_at, updated_at, payload)

    Service names are joined onto orders in Python so the query stays
    database-agnostic.
    """

    def __init__(self, engine: Engine, table_prefix: str = "ds_"):
        self.engine = engine
        self.table_prefix = table_prefix

    def load(self) -> Tuple[Snapshot, Snapshot, Snapshot]:
        services = self._load_documents("services")
        users = self._load_documents("users")
        orders = self._load_documents("orders")
        service_names = {service["id"]: service.get("name") for service in services}
        client_names = {user["id"]: user.get("clientName") for user in users}
        for order in orders:
            order.setdefault("serviceName", service_names.get(order.get("serviceId")))
            order.setdefault("clientName", client_names.get(order.get("clientId")))
        return orders, services, users

    def _load_documents(self, collection: str) -> List[Dict[str, Any]]:
        query = text(
            f"""
            SELECT id, created_at, payload
            FROM {self.table_prefix}{collection}
            ORDER BY created_at DESC
            """
        )
        try:
            with self.engine.connect() as connection:
                rows = connection.execute(query).fetchall()
        except SQLAlchemyError as exc:
            logger.warning("Failed to load %s%s for the dashboard: %s", self.table_prefix, collection, exc)
            raise DashboardDataError(f"Could not load {collection} from the database.") from exc
        return [self._row_to_document(row) for row in rows]

    @staticmethod
    def _row_to_document(row: Row) -> Dict[str, Any]:
        payload = row.payload
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                payload = {}
        elif payload is None:
            payload = {}
        document = dict(payload)
        document["id"] = str(row.id)
        if row.created_at is not None:
            document.setdefault("createdAt", row.created_at)
        return document


@dataclass(frozen=True)
class RepositoryConfig:
    database_url: Optional[str] = None
    table_prefix: str = "ds_"

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        return cls(
            database_url=os.getenv("DROPSERVICES_DATABASE_URL"),
            table_prefix=os.getenv("DROPSERVICES_TABLE_PREFIX", "ds_"),
        )


def build_repository_from_env(config: Optional[RepositoryConfig] = None) -> Optional[DashboardDataRepository]:
    cfg = config or RepositoryConfig.from_env()
    if cfg.database_url:
        engine = create_engine(cfg.database_url)
        return SQLDashboardRepository(engine, table_prefix=cfg.table_prefix)
    return None
