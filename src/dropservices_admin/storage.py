from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import JSON as SAJSON
from sqlalchemy import Column, DateTime, MetaData, String, Table, create_engine, delete, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from backend.dropservices_dashboard import DashboardDataError
from backend.dropservices_dashboard.dataset import parse_date

from .storage_config import StorageConfig

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Listener = Callable[[List[Document]], None]

COLLECTIONS = {
    "services": "services",
    "users": "users",
    "orders": "orders",
    "payment_methods": "payment_methods",
}
PROTECTED_FIELDS = {"id", "createdAt"}


class StoreError(Exception):
    """Base class for failures surfaced to the admin UI."""


class RecordNotFoundError(StoreError):
    def __init__(self, collection: str, record_id: str):
        super().__init__(f"No document '{record_id}' in {collection}.")
        self.collection = collection
        self.record_id = record_id


class StoreValidationError(StoreError):
    pass


class StoreUnavailableError(StoreError, DashboardDataError):
    """The backing store could not be read or written; the operation may be retried."""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


# ========== Live feeds ==========

class Subscription:
    """Handle returned by ``subscribe``; calling it (or ``unsubscribe``) more than once is harmless."""

    def __init__(self, feed: "SnapshotFeed", listener: Listener):
        self._feed = feed
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._feed._remove(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def deliver(self, snapshot: List[Document]) -> None:
        if self._active:
            self._listener(snapshot)


class SnapshotFeed:
    def __init__(self, name: str):
        self.name = name
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, listener: Listener, initial: Optional[List[Document]] = None) -> Subscription:
        subscription = Subscription(self, listener)
        with self._lock:
            self._subscriptions.append(subscription)
        if initial is not None:
            self._deliver(subscription, initial)
        return subscription

    def publish(self, snapshot: List[Document]) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            self._deliver(subscription, [dict(document) for document in snapshot])

    def _deliver(self, subscription: Subscription, snapshot: List[Document]) -> None:
        try:
            subscription.deliver(snapshot)
        except Exception as exc:
            logger.warning("Listener on %s failed: %s", self.name, exc)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


# ========== Backends ==========

class CollectionBackend:
    """
    Raw document persistence for one collection.

    Implementations return documents in insertion order and never decorate
    them; they raise ``OSError``/``SQLAlchemyError`` on I/O failure.
    """

    def load_all(self) -> List[Document]:
        raise NotImplementedError

    def insert(self, document: Document) -> None:
        raise NotImplementedError

    def replace(self, document: Document) -> bool:
        raise NotImplementedError

    def delete(self, record_id: str) -> bool:
        raise NotImplementedError


class InMemoryBackend(CollectionBackend):
    def __init__(self) -> None:
        self._documents: Dict[str, Document] = {}

    def load_all(self) -> List[Document]:
        return [dict(document) for document in self._documents.values()]

    def insert(self, document: Document) -> None:
        self._documents[document["id"]] = dict(document)

    def replace(self, document: Document) -> bool:
        if document["id"] not in self._documents:
            return False
        self._documents[document["id"]] = dict(document)
        return True

    def delete(self, record_id: str) -> bool:
        return self._documents.pop(record_id, None) is not None


class LocalJsonBackend(CollectionBackend):
    """One JSON file per collection: ``{"collection": ..., "updated_at": ..., "records": [...]}``."""

    def __init__(self, directory: str, name: str):
        self.base_dir = Path(directory).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.name = name
        self.path = self.base_dir / f"{self._sanitize_storage_key(name)}.json"

    def load_all(self) -> List[Document]:
        return self._read_records()

    def insert(self, document: Document) -> None:
        records = self._read_records()
        records.append(dict(document))
        self._write_records(records)

    def replace(self, document: Document) -> bool:
        records = self._read_records()
        for index, record in enumerate(records):
            if record.get("id") == document["id"]:
                records[index] = dict(document)
                self._write_records(records)
                return True
        return False

    def delete(self, record_id: str) -> bool:
        records = self._read_records()
        remaining = [record for record in records if record.get("id") != record_id]
        if len(remaining) == len(records):
            return False
        self._write_records(remaining)
        return True

    @staticmethod
    def _sanitize_storage_key(value: str) -> str:
        sanitized = "".join(ch for ch in value if ch.isalnum() or ch in {"-", "_"})
        return sanitized or "collection"

    def _read_records(self) -> List[Document]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt collection file %s", self.path)
            return []
        if isinstance(data, dict):
            data = data.get("records")
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict) and item.get("id")]

    def _write_records(self, records: List[Document]) -> None:
        payload = {"collection": self.name, "updated_at": _utcnow(), "records": records}
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)


class DatabaseBackend(CollectionBackend):
    def __init__(self, engine: Engine, table_name: str, metadata: Optional[MetaData] = None):
        self.engine = engine
        self.metadata = metadata or MetaData()
        json_type = SAJSON().with_variant(JSONB, "postgresql")
        self.table = Table(
            table_name,
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("created_at", DateTime(timezone=True), index=True),
            Column("updated_at", DateTime(timezone=True)),
            Column("payload", json_type, nullable=False),
        )
        self.metadata.create_all(self.engine, tables=[self.table], checkfirst=True)

    def load_all(self) -> List[Document]:
        query = select(self.table.c.id, self.table.c.payload).order_by(self.table.c.created_at)
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        documents = []
        for row in rows:
            payload = row.payload
            if isinstance(payload, str):
                payload = json.loads(payload)
            document = dict(payload or {})
            document["id"] = row.id
            documents.append(document)
        return documents

    def insert(self, document: Document) -> None:
        with self.engine.begin() as connection:
            connection.execute(self.table.insert().values(**self._row_values(document)))

    def replace(self, document: Document) -> bool:
        values = self._row_values(document)
        record_id = values.pop("id")
        with self.engine.begin() as connection:
            result = connection.execute(update(self.table).where(self.table.c.id == record_id).values(**values))
        return result.rowcount > 0

    def delete(self, record_id: str) -> bool:
        with self.engine.begin() as connection:
            result = connection.execute(delete(self.table).where(self.table.c.id == record_id))
        return result.rowcount > 0

    @staticmethod
    def _row_values(document: Document) -> Dict[str, Any]:
        payload = {key: value for key, value in document.items() if key != "id"}
        return {
            "id": document["id"],
            "created_at": _parse_timestamp(document.get("createdAt")),
            "updated_at": _parse_timestamp(document.get("updatedAt")),
            "payload": payload,
        }


# ========== Collections ==========

class EntityCollection:
    """
    A named collection with one-shot reads, live snapshots and CRUD.

    Snapshots are ordered newest first. Every successful write publishes a
    fresh snapshot to this collection's subscribers and to the collections
    whose decorated view depends on this one.
    """

    def __init__(self, name: str, backend: CollectionBackend):
        self.name = name
        self.backend = backend
        self.feed = SnapshotFeed(name)
        self._lock = threading.RLock()
        self._dependents: List[EntityCollection] = []

    def add_dependent(self, collection: "EntityCollection") -> None:
        self._dependents.append(collection)

    def list_once(self) -> List[Document]:
        return self._decorate(self._ordered(self.raw_documents()))

    def get(self, record_id: str) -> Document:
        for document in self.list_once():
            if document["id"] == record_id:
                return document
        raise RecordNotFoundError(self.name, record_id)

    def subscribe(self, on_change: Listener) -> Subscription:
        return self.feed.subscribe(on_change, initial=self.list_once())

    def create(self, data: Document) -> str:
        with self._lock:
            document = {key: value for key, value in dict(data).items() if key not in PROTECTED_FIELDS}
            document = self._prepare_create(document)
            timestamp = _utcnow()
            document.update(id=uuid.uuid4().hex, createdAt=timestamp, updatedAt=timestamp)
            self._write(self.backend.insert, document)
        logger.info("Created %s/%s", self.name, document["id"])
        self.publish()
        return document["id"]

    def update(self, record_id: str, partial: Document) -> None:
        with self._lock:
            current = self._raw_document(record_id)
            changes = {key: value for key, value in dict(partial).items() if key not in PROTECTED_FIELDS}
            document = self._prepare_update(current, {**current, **changes})
            document["updatedAt"] = _utcnow()
            if not self._write(self.backend.replace, document):
                raise RecordNotFoundError(self.name, record_id)
        logger.info("Updated %s/%s", self.name, record_id)
        self.publish()

    def delete(self, record_id: str) -> None:
        with self._lock:
            if not self._write(self.backend.delete, record_id):
                raise RecordNotFoundError(self.name, record_id)
        logger.info("Deleted %s/%s", self.name, record_id)
        self.publish()

    def publish(self) -> None:
        """Push fresh snapshots; a failed read leaves subscribers on their last snapshot."""
        for collection in (self, *self._dependents):
            if not collection.feed.listener_count:
                continue
            try:
                snapshot = collection.list_once()
            except StoreUnavailableError as exc:
                logger.warning("Skipping %s snapshot after %s change: %s", collection.name, self.name, exc)
                continue
            collection.feed.publish(snapshot)

    def raw_documents(self) -> List[Document]:
        try:
            return self.backend.load_all()
        except (OSError, SQLAlchemyError) as exc:
            logger.warning("Failed to read %s: %s", self.name, exc)
            raise StoreUnavailableError(f"Could not read {self.name}; please try again.") from exc

    def _raw_document(self, record_id: str) -> Document:
        for document in self.raw_documents():
            if document.get("id") == record_id:
                return document
        raise RecordNotFoundError(self.name, record_id)

    def _write(self, operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except (OSError, SQLAlchemyError) as exc:
            logger.warning("Failed to write %s: %s", self.name, exc)
            raise StoreUnavailableError(f"Could not save changes to {self.name}; please try again.") from exc

    @staticmethod
    def _ordered(documents: List[Document]) -> List[Document]:
        indexed = list(enumerate(documents))

        def sort_key(item: tuple) -> tuple:
            idx, document = item
            created_at = document.get("createdAt")
            return (created_at if isinstance(created_at, str) else "", idx)

        return [document for _, document in sorted(indexed, key=sort_key, reverse=True)]

    def _prepare_create(self, document: Document) -> Document:
        return document

    def _prepare_update(self, current: Document, merged: Document) -> Document:
        return merged

    def _decorate(self, documents: List[Document]) -> List[Document]:
        return documents


class UserCollection(EntityCollection):
    """
    Clients. ``totalOrders``/``totalSpent`` are derived from the orders
    collection on every read rather than trusted from storage.
    """

    orders: Optional[EntityCollection] = None

    def _prepare_create(self, document: Document) -> Document:
        document.setdefault("joinDate", date.today().isoformat())
        document["totalOrders"] = 0
        document["totalSpent"] = 0
        return document

    def _decorate(self, documents: List[Document]) -> List[Document]:
        if self.orders is None:
            return documents
        counts: Dict[str, int] = {}
        spent: Dict[str, float] = {}
        for order in self.orders.raw_documents():
            client_id = order.get("clientId")
            if not client_id:
                continue
            counts[client_id] = counts.get(client_id, 0) + 1
            spent[client_id] = spent.get(client_id, 0.0) + float(order.get("price") or 0)
        for document in documents:
            document["totalOrders"] = counts.get(document["id"], 0)
            document["totalSpent"] = spent.get(document["id"], 0.0)
        return documents


class OrderCollection(EntityCollection):
    """
    Orders, joined at read time with the service name, client name and
    payment method label.
    """

    services: EntityCollection
    users: EntityCollection
    payment_methods: EntityCollection

    def _prepare_create(self, document: Document) -> Document:
        document.setdefault("status", "active")
        return self._validate(document)

    def _prepare_update(self, current: Document, merged: Document) -> Document:
        return self._validate(merged)

    def _validate(self, document: Document) -> Document:
        for field_name in ("serviceName", "clientName", "paymentMethod", "profit"):
            document.pop(field_name, None)

        service = self._lookup(self.services, document.get("serviceId"), "service")
        self._lookup(self.users, document.get("clientId"), "client")
        self._lookup(self.payment_methods, document.get("paymentMethodId"), "payment method")

        if service.get("hasExpiration"):
            if not document.get("endDate"):
                raise StoreValidationError(f"An end date is required for {service.get('name') or 'this service'}.")
            start, end = parse_date(document.get("startDate")), parse_date(document.get("endDate"))
            if end is None:
                raise StoreValidationError("The end date is not a valid date.")
            if start is not None and end < start:
                raise StoreValidationError("The end date cannot be before the start date.")
        else:
            document.pop("endDate", None)
        return document

    @staticmethod
    def _lookup(collection: EntityCollection, record_id: Any, label: str) -> Document:
        if not record_id:
            raise StoreValidationError(f"A {label} is required.")
        for document in collection.raw_documents():
            if document.get("id") == record_id:
                return document
        raise StoreValidationError(f"Unknown {label} '{record_id}'.")

    def _decorate(self, documents: List[Document]) -> List[Document]:
        service_names = {doc["id"]: doc.get("name") for doc in self.services.raw_documents()}
        client_names = {doc["id"]: doc.get("clientName") for doc in self.users.raw_documents()}
        payment_labels = {doc["id"]: doc.get("type") for doc in self.payment_methods.raw_documents()}
        for document in documents:
            document["serviceName"] = service_names.get(document.get("serviceId"))
            document["clientName"] = client_names.get(document.get("clientId"))
            document["paymentMethod"] = payment_labels.get(document.get("paymentMethodId"))
            document["profit"] = float(document.get("price") or 0) - float(document.get("cost") or 0)
        return documents


class EntityStore:
    """
    The four Dropservices collections wired together.

    Orders republish when services, users or payment methods change (their
    joined labels may have moved) and users republish when orders change
    (their derived totals may have moved).
    """

    def __init__(self, backend_factory: Callable[[str], CollectionBackend], engine: Optional[Engine] = None):
        self.engine = engine
        self.services = EntityCollection(COLLECTIONS["services"], backend_factory(COLLECTIONS["services"]))
        self.payment_methods = EntityCollection(
            COLLECTIONS["payment_methods"], backend_factory(COLLECTIONS["payment_methods"])
        )
        self.users = UserCollection(COLLECTIONS["users"], backend_factory(COLLECTIONS["users"]))
        self.orders = OrderCollection(COLLECTIONS["orders"], backend_factory(COLLECTIONS["orders"]))

        self.orders.services = self.services
        self.orders.users = self.users
        self.orders.payment_methods = self.payment_methods
        self.users.orders = self.orders

        for collection in (self.services, self.users, self.payment_methods):
            collection.add_dependent(self.orders)
        self.orders.add_dependent(self.users)

    def collection(self, name: str) -> EntityCollection:
        try:
            return getattr(self, name)
        except AttributeError:
            raise KeyError(name) from None

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


def build_entity_store(config: StorageConfig) -> EntityStore:
    prefix = config.collection_prefix
    if config.backend == "database":
        if not config.remote_database.url:
            raise ValueError("Database URL is required when the database backend is selected.")
        engine = create_engine(config.remote_database.url, echo=config.remote_database.echo, future=True)
        metadata = MetaData()
        logger.info("Using database entity store (%s tables)", prefix)
        return EntityStore(lambda name: DatabaseBackend(engine, f"{prefix}{name}", metadata), engine=engine)
    if config.backend == "local":
        logger.info("Using local entity store in %s", config.local.directory)
        return EntityStore(lambda name: LocalJsonBackend(config.local.directory, f"{prefix}{name}"))
    return EntityStore(lambda name: InMemoryBackend())
