"""
Referential Integrity Engine

Reverse-reference counts over the collections currently loaded in memory.
Nothing is cached: every call scans the live snapshots, so a refresh from
the store is reflected immediately.

References into Technicians:
    WorkOrder.technician_id
    CostRequest.technician_id
    Proposal.technician_id / Proposal.helper_id   (one count per proposal)

References into WorkOrders:
    FileRecord.work_order_id   (dangling ones are orphans, surfaced not deleted)
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List

from datashapes import (
    COST_REQUESTS,
    FILE_RECORDS,
    PROPOSALS,
    WORK_ORDERS,
    CostRequest,
    FileRecord,
    Proposal,
    ReferenceCounts,
    WorkOrder,
)

logger = logging.getLogger(__name__)


def reference_counts(technician_id: str,
                     work_orders: Iterable[WorkOrder],
                     cost_requests: Iterable[CostRequest],
                     proposals: Iterable[Proposal]) -> ReferenceCounts:
    if not technician_id:
        return ReferenceCounts()
    return ReferenceCounts(
        work_order_refs=sum(1 for wo in work_orders if wo.technician_id == technician_id),
        cost_request_refs=sum(1 for c in cost_requests if c.technician_id == technician_id),
        proposal_refs=sum(1 for p in proposals if technician_id in p.referenced_technician_ids()),
    )


def usage_by_technician(work_orders: Iterable[WorkOrder],
                        cost_requests: Iterable[CostRequest],
                        proposals: Iterable[Proposal]) -> Dict[str, ReferenceCounts]:
    """Reference counts for every technician id that is referenced at all."""
    usage: Dict[str, ReferenceCounts] = defaultdict(ReferenceCounts)
    for wo in work_orders:
        if wo.technician_id:
            usage[wo.technician_id].work_order_refs += 1
    for cost in cost_requests:
        if cost.technician_id:
            usage[cost.technician_id].cost_request_refs += 1
    for proposal in proposals:
        for tech_id in proposal.referenced_technician_ids():
            usage[tech_id].proposal_refs += 1
    return dict(usage)


def orphan_files(files: Iterable[FileRecord], work_orders: Iterable[WorkOrder]) -> List[FileRecord]:
    known = {wo.id for wo in work_orders}
    return [f for f in files if f.work_order_id not in known]


class IntegrityEngine:
    """
    Guards deletions against the repositories' current snapshots.

    Sources are zero-argument callables returning the live lists, so the
    engine always sees whatever the last refresh loaded.
    """

    def __init__(self,
                 work_orders: Callable[[], List[WorkOrder]],
                 cost_requests: Callable[[], List[CostRequest]],
                 proposals: Callable[[], List[Proposal]],
                 files: Callable[[], List[FileRecord]]):
        self._work_orders = work_orders
        self._cost_requests = cost_requests
        self._proposals = proposals
        self._files = files

    @classmethod
    def from_store(cls, store) -> 'IntegrityEngine':
        """Engine reading the persisted collections on every call."""
        def source(name, record_type):
            return lambda: [record_type.from_dict(r) for r in store.load(name)]

        return cls(
            work_orders=source(WORK_ORDERS, WorkOrder),
            cost_requests=source(COST_REQUESTS, CostRequest),
            proposals=source(PROPOSALS, Proposal),
            files=source(FILE_RECORDS, FileRecord),
        )

    def reference_counts(self, technician_id: str) -> ReferenceCounts:
        return reference_counts(technician_id, self._work_orders(), self._cost_requests(), self._proposals())

    def can_delete(self, technician_id: str) -> bool:
        counts = self.reference_counts(technician_id)
        if not counts.is_clear:
            logger.debug(f"Technician {technician_id} still referenced: {counts.to_dict()}")
        return counts.is_clear

    def usage_by_technician(self) -> Dict[str, ReferenceCounts]:
        return usage_by_technician(self._work_orders(), self._cost_requests(), self._proposals())

    def orphan_files(self) -> List[FileRecord]:
        return orphan_files(self._files(), self._work_orders())

    def dangling_technician_refs(self, technician_ids: Iterable[str]) -> Dict[str, ReferenceCounts]:
        """Usage entries whose technician no longer exists."""
        known = set(technician_ids)
        return {tid: counts for tid, counts in self.usage_by_technician().items() if tid not in known}
