"""
Derived Aggregation Layer

Read-only projections over already-loaded collections. Every function is
pure and recomputed per call; nothing here is cached or persisted.

    compute_eta_buckets   overdue / due today / upcoming for active work orders
    usage_counts          per-technician reference counts (same scan as integrity)
    dashboard_counters    per-status counts, unpaid costs, orphans, missing proposals
    dashboard_notices     operator-facing notice lines from the counters
    recent_activity       newest events across collections
    calendar_entries      work order ETAs merged with standalone calendar events
"""

from datetime import datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional

from datashapes import (
    ActivityEntry,
    CalendarEntry,
    CalendarEvent,
    CostRequest,
    CostStatus,
    DashboardCounters,
    EtaBuckets,
    FileRecord,
    Proposal,
    ReferenceCounts,
    Technician,
    WorkOrder,
    WorkOrderStatus,
    parse_timestamp,
)
from dispatch_config import DispatchConfig
from integrity import orphan_files, usage_by_technician
from workflows import is_active

MISSING_DISPLAY = "—"


def to_local(moment: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """moment in tz, or in the system's local zone (honours TZ) when tz is None."""
    return moment.astimezone(tz) if tz else moment.astimezone()


def compute_eta_buckets(work_orders: Iterable[WorkOrder], now: datetime,
                        tz: Optional[tzinfo] = None) -> EtaBuckets:
    """
    Partition active work orders with a usable eta_at.

    overdue:   eta_at < now
    due_today: not overdue, same calendar day as now in tz
    upcoming:  everything later

    tz defaults to the system's local zone. The fallback label is never consulted.
    """
    today = to_local(now, tz).date()
    buckets = EtaBuckets()

    dated = []
    for wo in work_orders:
        if not is_active(wo.status):
            continue
        at = parse_timestamp(wo.eta_at)
        if at is not None:
            dated.append((at, wo))

    for at, wo in sorted(dated, key=lambda pair: pair[0]):
        if at < now:
            buckets.overdue.append(wo)
        elif to_local(at, tz).date() == today:
            buckets.due_today.append(wo)
        else:
            buckets.upcoming.append(wo)
    return buckets


def is_overdue(work_order: WorkOrder, now: datetime) -> bool:
    """Past its ETA and not completed, invoiced or paid."""
    if not is_active(work_order.status):
        return False
    at = parse_timestamp(work_order.eta_at)
    return at is not None and at < now


def usage_counts(technicians: Iterable[Technician],
                 work_orders: Iterable[WorkOrder],
                 cost_requests: Iterable[CostRequest],
                 proposals: Iterable[Proposal]) -> Dict[str, ReferenceCounts]:
    """Reference counts for every technician, zeros included."""
    usage = usage_by_technician(work_orders, cost_requests, proposals)
    return {t.id: usage.get(t.id, ReferenceCounts()) for t in technicians}


def dashboard_counters(work_orders: List[WorkOrder],
                       cost_requests: List[CostRequest],
                       proposals: List[Proposal],
                       files: List[FileRecord]) -> DashboardCounters:
    by_status = {s.value: 0 for s in WorkOrderStatus}
    for wo in work_orders:
        by_status[wo.status.value] += 1

    cost_by_status = {s.value: 0 for s in CostStatus}
    for cost in cost_requests:
        cost_by_status[cost.status.value] += 1

    proposed = {p.work_order_id for p in proposals if p.work_order_id}

    return DashboardCounters(
        work_orders_by_status=by_status,
        cost_requests_by_status=cost_by_status,
        unpaid_cost_requests=sum(1 for c in cost_requests if c.status != CostStatus.PAID),
        orphan_files=len(orphan_files(files, work_orders)),
        missing_proposals=sum(1 for wo in work_orders if wo.id not in proposed),
        total_work_orders=len(work_orders),
    )


def dashboard_notices(counters: DashboardCounters, buckets: Optional[EtaBuckets] = None) -> List[str]:
    notices = []
    waiting = counters.work_orders_by_status.get(WorkOrderStatus.WAITING.value, 0)
    if waiting:
        notices.append(f"{waiting} work order(s) waiting for assignment")
    if buckets is not None and buckets.overdue:
        notices.append(f"{len(buckets.overdue)} active work order(s) past their ETA")
    if counters.missing_proposals:
        notices.append(f"{counters.missing_proposals} work order(s) without a proposal yet")
    if counters.unpaid_cost_requests:
        notices.append(f"{counters.unpaid_cost_requests} cost record(s) not marked paid")
    if counters.orphan_files:
        notices.append(f"{counters.orphan_files} file(s) linked to missing work orders")
    return notices


def recent_activity(work_orders: Iterable[WorkOrder],
                    proposals: Iterable[Proposal],
                    cost_requests: Iterable[CostRequest],
                    files: Iterable[FileRecord],
                    now: datetime,
                    window_hours: Optional[int] = None,
                    limit: Optional[int] = None) -> List[ActivityEntry]:
    """
    Newest events first. Only the last window_hours are shown unless that
    window is empty, in which case everything is eligible.
    """
    window_hours = DispatchConfig.ACTIVITY_WINDOW_HOURS if window_hours is None else window_hours
    limit = DispatchConfig.ACTIVITY_LIMIT if limit is None else limit
    events: List[ActivityEntry] = []

    for wo in work_orders:
        at = parse_timestamp(wo.updated_at) or parse_timestamp(wo.created_at)
        if at is not None:
            events.append(ActivityEntry(
                kind="work_order",
                title=f"{wo.wo_number or 'WO'} {wo.status.value.replace('_', ' ')}",
                detail=wo.client or MISSING_DISPLAY,
                at=at,
                record_id=wo.id,
            ))

    for proposal in proposals:
        at = parse_timestamp(proposal.created_at)
        if at is not None:
            events.append(ActivityEntry(
                kind="proposal",
                title="Proposal saved",
                detail=f"{proposal.wo_number or 'WO'} · {proposal.client or MISSING_DISPLAY}",
                at=at,
                record_id=proposal.id,
            ))

    for cost in cost_requests:
        at = parse_timestamp(cost.updated_at) or parse_timestamp(cost.created_at)
        if at is not None:
            events.append(ActivityEntry(
                kind="cost",
                title=f"Cost {cost.status.value}",
                detail=f"{cost.wo_number or 'WO'} · ${cost.amount:.2f}",
                at=at,
                record_id=cost.id,
            ))

    for record in files:
        at = parse_timestamp(record.created_at)
        if at is not None:
            events.append(ActivityEntry(
                kind="file",
                title="File uploaded",
                detail=f"{record.name or 'File'} · {record.mime_type or MISSING_DISPLAY}",
                at=at,
                record_id=record.id,
            ))

    cutoff = now - timedelta(hours=window_hours)
    recent = [e for e in events if e.at >= cutoff]
    chosen = recent or events
    return sorted(chosen, key=lambda e: e.at, reverse=True)[:limit]


def calendar_entries(work_orders: Iterable[WorkOrder],
                     events: Iterable[CalendarEvent],
                     start: Optional[datetime] = None,
                     end: Optional[datetime] = None) -> List[CalendarEntry]:
    """
    One schedule built at read time from two separate sources. Work orders
    contribute their eta_at; calendar events their date_time. Neither
    collection is written.
    """
    entries: List[CalendarEntry] = []

    for wo in work_orders:
        at = parse_timestamp(wo.eta_at)
        if at is None:
            continue
        entries.append(CalendarEntry(
            source="work_order",
            record_id=wo.id,
            title=f"{wo.wo_number} · {wo.client}",
            at=at,
            priority="high" if is_active(wo.status) else "normal",
            detail=f"{wo.trade} · {wo.technician_name or MISSING_DISPLAY}",
        ))

    for event in events:
        at = parse_timestamp(event.date_time)
        if at is None:
            continue
        entries.append(CalendarEntry(
            source="event",
            record_id=event.id,
            title=event.title,
            at=at,
            priority=event.priority.value,
            detail=event.description,
        ))

    if start is not None:
        entries = [e for e in entries if e.at >= start]
    if end is not None:
        entries = [e for e in entries if e.at < end]
    return sorted(entries, key=lambda e: e.at)


def format_eta(work_order: WorkOrder, tz: Optional[tzinfo] = None) -> str:
    """eta_at when set, otherwise the legacy label, otherwise TBD."""
    at = parse_timestamp(work_order.eta_at)
    if at is not None:
        return to_local(at, tz).strftime("%Y-%m-%d %H:%M")
    return work_order.eta_label or "TBD"


def technician_display_name(work_order: WorkOrder, technicians: Iterable[Technician]) -> str:
    """
    Current name when the id resolves, a dash otherwise. The cached
    technician_name is only shown by views that have no technician list.
    """
    if not work_order.technician_id:
        return MISSING_DISPLAY
    for tech in technicians:
        if tech.id == work_order.technician_id:
            return tech.name
    return MISSING_DISPLAY


def work_order_rollup(work_order: WorkOrder,
                      proposals: Iterable[Proposal],
                      cost_requests: Iterable[CostRequest],
                      files: Iterable[FileRecord]) -> Dict[str, int]:
    """Per work order: proposal count, paid cost count and file count."""
    return {
        "proposals": sum(1 for p in proposals if p.work_order_id == work_order.id),
        "paid_costs": sum(1 for c in cost_requests
                          if c.work_order_id == work_order.id and c.status == CostStatus.PAID),
        "files": sum(1 for f in files if f.work_order_id == work_order.id),
    }
