from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from .models import DashboardFilters, DashboardResult
from .service import DataDashboardService

logger = logging.getLogger(__name__)

Snapshot = Sequence[Mapping[str, Any]]
Unsubscribe = Callable[[], None]


class SnapshotFeed(Protocol):
    def subscribe(self, on_change: Callable[[List[Dict[str, Any]]], None]) -> Unsubscribe:
        ...


class LiveDashboard:
    """
    Keeps a dashboard view current while the orders/services/users feeds push
    new snapshots.

    Each feed fires independently; until a feed has delivered, its snapshot is
    treated as empty. Every delivery triggers a full rebuild and the result is
    handed to ``on_update``. ``close`` releases each subscription exactly once.
    """

    FEEDS = ("orders", "services", "users")

    def __init__(
        self,
        orders: SnapshotFeed,
        services: SnapshotFeed,
        users: SnapshotFeed,
        filters: Optional[DashboardFilters] = None,
        on_update: Optional[Callable[[DashboardResult], None]] = None,
    ) -> None:
        self.filters = filters or DashboardFilters()
        self.on_update = on_update
        self._lock = threading.RLock()
        self._snapshots: Dict[str, Snapshot] = {name: () for name in self.FEEDS}
        self._delivered: set = set()
        self._latest: Optional[DashboardResult] = None
        self._closed = False
        self._unsubscribers: List[Unsubscribe] = []
        self._build_seq = 0
        self._notified_seq = 0
        self._notify_lock = threading.RLock()
        try:
            for name, feed in zip(self.FEEDS, (orders, services, users)):
                self._unsubscribers.append(feed.subscribe(self._make_listener(name)))
        except Exception:
            self.close()
            raise

    @property
    def latest(self) -> DashboardResult:
        with self._lock:
            if self._latest is None:
                self._latest = self._rebuild()
            return self._latest

    @property
    def ready(self) -> bool:
        """True once every feed has delivered at least one snapshot."""
        with self._lock:
            return self._delivered == set(self.FEEDS)

    @property
    def closed(self) -> bool:
        return self._closed

    def refresh(self, filters: Optional[DashboardFilters] = None) -> DashboardResult:
        with self._lock:
            if filters is not None:
                self.filters = filters
            self._latest = self._rebuild()
            result, seq = self._latest, self._build_seq
        self._notify(result, seq)
        return result

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        logger.debug("Live dashboard closed; released %d feeds", len(unsubscribers))

    def __enter__(self) -> "LiveDashboard":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _make_listener(self, name: str) -> Callable[[Snapshot], None]:
        def _on_change(snapshot: Snapshot) -> None:
            with self._lock:
                if self._closed:
                    return
                self._snapshots[name] = tuple(snapshot or ())
                self._delivered.add(name)
                self._latest = self._rebuild()
                result, seq = self._latest, self._build_seq
            self._notify(result, seq)

        return _on_change

    def _rebuild(self) -> DashboardResult:
        self._build_seq += 1
        service = DataDashboardService(
            orders=self._snapshots["orders"],
            services=self._snapshots["services"],
            users=self._snapshots["users"],
        )
        return service.build(self.filters)

    def _notify(self, result: DashboardResult, seq: int) -> None:
        if self.on_update is None:
            return
        # a newer build may already have been delivered by another thread
        with self._notify_lock:
            if seq <= self._notified_seq:
                return
            self._notified_seq = seq
            try:
                self.on_update(result)
            except Exception as exc:
                logger.warning("Dashboard update callback failed: %s", exc)
