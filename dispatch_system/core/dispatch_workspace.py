#!/usr/bin/env python3
"""
dispatch_workspace.py - One application instance over the shared store

Wires the store client, collection store, blob store, change notifier,
repositories and integrity engine, then loads every collection.

Staleness handling:
    poll_changes()  re-read the collections other instances announced
    on_focus()      re-read everything (catch-all for missed notifications)

Neither closes the race: a write from a stale snapshot still replaces a
peer's newer collection. That is the documented last-write-wins contract.

Usage:
    from dispatch_workspace import DispatchWorkspace
    ws = DispatchWorkspace(redis_client)
    wo = ws.work_orders.upsert({"client": "Acme", "trade": "HVAC"})
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

import aggregation
from blob_store import BlobStore
from change_notifier import ALL, ChangeNotifier
from collection_store import CollectionStore
from datashapes import (
    ALL_COLLECTIONS,
    CALENDAR_EVENTS,
    COST_REQUESTS,
    FILE_RECORDS,
    PROPOSALS,
    TECHNICIANS,
    WORK_ORDERS,
    utc_now,
)
from error_handler import ErrorHandler, get_error_handler
from integrity import IntegrityEngine
from redis_client import RedisClient
from repositories import (
    BaseRepository,
    CalendarEventRepository,
    CostRequestRepository,
    FileRecordRepository,
    ProposalRepository,
    TechnicianRepository,
    WorkOrderRepository,
)

logger = logging.getLogger(__name__)

RefreshListener = Callable[[List[str]], None]


class DispatchWorkspace:
    """Repositories and derived views for a single open instance."""

    def __init__(self, redis_client: RedisClient, instance_id: Optional[str] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 auto_load: bool = True):
        self.redis = redis_client
        self.error_handler = error_handler or get_error_handler()
        self.error_handler.register_recovery_systems(redis_client=redis_client)
        self.clock = clock or utc_now

        self.store = CollectionStore(redis_client, self.error_handler)
        self.blobs = BlobStore(redis_client, self.error_handler)
        self.notifier = ChangeNotifier(redis_client, instance_id, self.error_handler)
        self.instance_id = self.notifier.instance_id

        self.technicians = TechnicianRepository(self.store, self.notifier, self.clock)
        self.work_orders = WorkOrderRepository(self.store, self.notifier, self.clock,
                                               technicians=self.technicians)
        self.cost_requests = CostRequestRepository(self.store, self.notifier, self.clock,
                                                   work_orders=self.work_orders,
                                                   technicians=self.technicians)
        self.proposals = ProposalRepository(self.store, self.notifier, self.clock,
                                            work_orders=self.work_orders,
                                            technicians=self.technicians)
        self.files = FileRecordRepository(self.store, self.notifier, self.clock,
                                          work_orders=self.work_orders,
                                          blobs=self.blobs)
        self.calendar_events = CalendarEventRepository(self.store, self.notifier, self.clock)

        self.integrity = IntegrityEngine(
            work_orders=self.work_orders.list,
            cost_requests=self.cost_requests.list,
            proposals=self.proposals.list,
            files=self.files.list,
        )
        self.technicians.integrity = self.integrity

        self._repositories: Dict[str, BaseRepository] = {
            WORK_ORDERS: self.work_orders,
            TECHNICIANS: self.technicians,
            COST_REQUESTS: self.cost_requests,
            PROPOSALS: self.proposals,
            FILE_RECORDS: self.files,
            CALENDAR_EVENTS: self.calendar_events,
        }
        self._listeners: List[RefreshListener] = []

        # Subscribe before the first load so no write in between is missed
        self.notifier.subscribe(ALL, self._on_remote_change)
        self.notifier.subscribe_focus(self.refresh_all)
        self.notifier.start()

        if auto_load:
            self.refresh_all()

    # =========================================================================
    # REFRESH
    # =========================================================================

    def repository(self, collection: str) -> BaseRepository:
        return self._repositories[collection]

    def refresh(self, collections: List[str]) -> List[str]:
        refreshed = []
        for name in collections:
            repo = self._repositories.get(name)
            if repo is None:
                logger.debug(f"Ignoring change for unknown collection {name}")
                continue
            repo.refresh()
            refreshed.append(name)
        if refreshed:
            self._notify_listeners(refreshed)
        return refreshed

    def refresh_all(self) -> List[str]:
        return self.refresh(list(ALL_COLLECTIONS))

    def poll_changes(self) -> List[str]:
        """Apply pending change notifications. Returns the collections re-read."""
        return self.notifier.poll()

    def on_focus(self) -> int:
        """Instance regained focus: re-read every collection."""
        return self.notifier.notify_focus()

    def add_refresh_listener(self, listener: RefreshListener):
        self._listeners.append(listener)

    def _on_remote_change(self, collection: str):
        self.refresh([collection])

    def _notify_listeners(self, collections: List[str]):
        for listener in list(self._listeners):
            listener(collections)

    # =========================================================================
    # DERIVED VIEWS
    # =========================================================================

    def eta_buckets(self, now: Optional[datetime] = None, tz=None):
        return aggregation.compute_eta_buckets(self.work_orders.list(), now or self.clock(), tz)

    def usage_counts(self):
        return aggregation.usage_counts(
            self.technicians.list(), self.work_orders.list(),
            self.cost_requests.list(), self.proposals.list()
        )

    def dashboard_counters(self):
        return aggregation.dashboard_counters(
            self.work_orders.list(), self.cost_requests.list(),
            self.proposals.list(), self.files.list()
        )

    def recent_activity(self, now: Optional[datetime] = None):
        return aggregation.recent_activity(
            self.work_orders.list(), self.proposals.list(),
            self.cost_requests.list(), self.files.list(),
            now or self.clock()
        )

    def calendar(self, start: Optional[datetime] = None, end: Optional[datetime] = None):
        return aggregation.calendar_entries(self.work_orders.list(), self.calendar_events.list(), start, end)

    def snapshot(self, now: Optional[datetime] = None, tz=None) -> Dict:
        """Everything a dashboard needs, computed fresh."""
        now = now or self.clock()
        counters = self.dashboard_counters()
        buckets = self.eta_buckets(now, tz)
        return {
            "instance_id": self.instance_id,
            "counters": counters,
            "eta_buckets": buckets,
            "notices": aggregation.dashboard_notices(counters, buckets),
            "activity": self.recent_activity(now),
            "technicians": self.technicians.stats(),
            "store": self.redis.health_check(),
        }

    def close(self):
        self.notifier.close()
        self._listeners.clear()
