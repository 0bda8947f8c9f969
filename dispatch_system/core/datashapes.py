#!/usr/bin/env python3
"""
datashapes.py - Centralized Data Shape Definitions

All dataclasses and enums used across the dispatch data layer live here.
Records are persisted as plain dicts inside whole-collection JSON envelopes;
every shape knows how to write itself (to_dict) and how to rebuild itself
from whatever an older build left in the store (from_dict).

Other files import from here to ensure consistent structures:
    from datashapes import WorkOrder, WorkOrderStatus, CostRequest

Normalization on load:
    - missing fields take their defaults
    - camelCase keys written by the earlier browser build (woId, nte, etaAt,
      gmnMoneyMade, ...) are mapped onto the current field names
    - unparsable numbers fall back to 0, unknown enum values to the first state
"""

import hashlib
import json
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# COLLECTION NAMES
# =============================================================================

WORK_ORDERS = "workorders"
TECHNICIANS = "techs"
COST_REQUESTS = "costs"
PROPOSALS = "proposals"
FILE_RECORDS = "files"
CALENDAR_EVENTS = "calendar_events"

ALL_COLLECTIONS = [
    WORK_ORDERS,
    TECHNICIANS,
    COST_REQUESTS,
    PROPOSALS,
    FILE_RECORDS,
    CALENDAR_EVENTS,
]


# =============================================================================
# ENUMS - Status and Priority definitions
# =============================================================================

class WorkOrderStatus(Enum):
    """
    Work order lifecycle. Business convention is forward-only but any explicit
    operator transition is accepted.
    """
    WAITING = "waiting"            # Scheduled, technician not on site yet
    IN_PROGRESS = "in_progress"    # Technician working
    COMPLETED = "completed"        # Work done, AP can be requested
    INVOICED = "invoiced"          # Client billed
    PAID = "paid"                  # Client paid


ACTIVE_WORK_ORDER_STATUSES = {WorkOrderStatus.WAITING, WorkOrderStatus.IN_PROGRESS}


class CostStatus(Enum):
    """Accounts-payable lifecycle for a technician cost request."""
    REQUESTED = "requested"
    APPROVED = "approved"
    PAID = "paid"                  # Terminal


OPEN_COST_STATUSES = {CostStatus.REQUESTED, CostStatus.APPROVED}


class CalendarPriority(Enum):
    NORMAL = "normal"
    LOW = "low"
    HIGH = "high"


TRADE_OPTIONS = [
    "Handyman",
    "HVAC",
    "Plumbing",
    "Electric",
    "Doors",
    "Locksmith",
    "Painting",
    "Flooring",
    "Roofing",
    "Cleaning Services",
    "Landscaping",
    "Overhead Doors",
    "Window / Glass / Tinting",
    "All Trades",
    "Other (Custom)",
]


# =============================================================================
# NORMALIZATION HELPERS
# =============================================================================

# Keys shared by every record kind
_COMMON_LEGACY_KEYS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def remap_legacy_keys(data: Dict[str, Any], legacy_keys: Dict[str, str]) -> Dict[str, Any]:
    """Copy legacy keys onto current names without clobbering current values."""
    out = dict(data)
    for old, new in {**_COMMON_LEGACY_KEYS, **legacy_keys}.items():
        if old in data and new not in out:
            out[new] = data[old]
    return out


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    # NaN and infinities are not storable amounts
    return result if math.isfinite(result) else default


def as_int(value: Any, default: int = 0) -> int:
    return int(as_float(value, default))


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def as_enum(enum_cls, value: Any):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return list(enum_cls)[0]


def as_timestamp(value: Any) -> str:
    """Keep parsable ISO timestamps, drop anything else."""
    if isinstance(value, datetime):
        return to_iso(value)
    text = as_text(value).strip()
    return text if parse_timestamp(text) is not None else ""


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """ISO text for storage; naive datetimes are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored ISO timestamp.

    Accepts a trailing 'Z' (browser toISOString output). Naive values are
    read as UTC. Returns None for empty or malformed input.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique ID."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def stable_id(prefix: str, data: Dict[str, Any]) -> str:
    """
    Content-derived ID for a stored record that has none.

    Every instance loading the same record computes the same value, so the
    record keeps one identity until a write persists it.
    """
    payload = json.dumps(data, sort_keys=True, default=str)
    return f"{prefix}-{hashlib.sha1(payload.encode('utf-8')).hexdigest()[:12]}"


# =============================================================================
# WORK ORDERS
# =============================================================================

@dataclass
class WorkOrder:
    """
    A client job. technician_id is a weak reference; technician_name is a
    cached display copy and never used for integrity checks.

    eta_at is the scheduling source of truth. eta_label only exists for rows
    created before scheduling was adopted and is ignored when eta_at is set.
    """
    id: str
    wo_number: str = ""
    client: str = ""
    trade: str = ""
    city: str = ""
    not_to_exceed: float = 0.0
    status: WorkOrderStatus = WorkOrderStatus.WAITING
    eta_at: str = ""
    eta_label: str = ""
    technician_id: str = ""
    technician_name: str = ""
    created_at: str = ""
    updated_at: str = ""

    LEGACY_KEYS = {
        "wo": "wo_number",
        "woNumber": "wo_number",
        "nte": "not_to_exceed",
        "notToExceed": "not_to_exceed",
        "etaAt": "eta_at",
        "eta": "eta_label",
        "technicianId": "technician_id",
        "technicianName": "technician_name",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "wo_number": self.wo_number,
            "client": self.client,
            "trade": self.trade,
            "city": self.city,
            "not_to_exceed": self.not_to_exceed,
            "status": self.status.value,
            "eta_at": self.eta_at,
            "eta_label": self.eta_label,
            "technician_id": self.technician_id,
            "technician_name": self.technician_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkOrder':
        d = remap_legacy_keys(data, cls.LEGACY_KEYS)
        eta_at = as_timestamp(d.get("eta_at"))
        return cls(
            id=as_text(d.get("id")) or generate_id("WO"),
            wo_number=as_text(d.get("wo_number")),
            client=as_text(d.get("client")),
            trade=as_text(d.get("trade")),
            city=as_text(d.get("city")),
            not_to_exceed=as_float(d.get("not_to_exceed")),
            status=as_enum(WorkOrderStatus, d.get("status")),
            eta_at=eta_at,
            eta_label="" if eta_at else as_text(d.get("eta_label")),
            technician_id=as_text(d.get("technician_id")),
            technician_name=as_text(d.get("technician_name")),
            created_at=as_timestamp(d.get("created_at")),
            updated_at=as_timestamp(d.get("updated_at")),
        )


# =============================================================================
# TECHNICIANS
# =============================================================================

@dataclass
class Technician:
    """
    A field technician. jobs_done and revenue_generated are operator-entered
    counters, never recomputed from other collections.
    """
    id: str
    name: str = ""
    trade: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    full_address: str = ""
    notes: str = ""
    recommendations: str = ""
    jobs_done: int = 0
    revenue_generated: float = 0.0
    blacklisted: bool = False
    blacklist_reason: str = ""
    created_at: str = ""
    updated_at: str = ""

    LEGACY_KEYS = {
        "fullAddress": "full_address",
        "jobsDone": "jobs_done",
        "gmnMoneyMade": "revenue_generated",
        "revenueGenerated": "revenue_generated",
        "blacklistReason": "blacklist_reason",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "trade": self.trade,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "full_address": self.full_address,
            "notes": self.notes,
            "recommendations": self.recommendations,
            "jobs_done": self.jobs_done,
            "revenue_generated": self.revenue_generated,
            "blacklisted": self.blacklisted,
            "blacklist_reason": self.blacklist_reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Technician':
        d = remap_legacy_keys(data, cls.LEGACY_KEYS)
        blacklisted = as_bool(d.get("blacklisted"))
        return cls(
            id=as_text(d.get("id")) or generate_id("TECH"),
            name=as_text(d.get("name")),
            trade=as_text(d.get("trade")),
            phone=as_text(d.get("phone")),
            address=as_text(d.get("address")),
            city=as_text(d.get("city")),
            state=as_text(d.get("state")),
            full_address=as_text(d.get("full_address")),
            notes=as_text(d.get("notes")),
            recommendations=as_text(d.get("recommendations")),
            jobs_done=as_int(d.get("jobs_done")),
            revenue_generated=as_float(d.get("revenue_generated")),
            blacklisted=blacklisted,
            blacklist_reason=as_text(d.get("blacklist_reason")) if blacklisted else "",
            created_at=as_timestamp(d.get("created_at")),
            updated_at=as_timestamp(d.get("updated_at")),
        )


# =============================================================================
# COST REQUESTS (AP)
# =============================================================================

@dataclass
class CostRequest:
    """
    Technician payment request against a completed work order.
    work_order_id is a strong reference at creation time; the cached
    wo_number/client/trade/technician_name fields are display copies.
    """
    id: str
    work_order_id: str = ""
    technician_id: str = ""
    amount: float = 0.0
    note: str = ""
    status: CostStatus = CostStatus.REQUESTED
    requested_at: str = ""
    approved_at: str = ""
    paid_at: str = ""
    wo_number: str = ""
    client: str = ""
    trade: str = ""
    technician_name: str = ""
    created_at: str = ""
    updated_at: str = ""

    LEGACY_KEYS = {
        "woId": "work_order_id",
        "workOrderId": "work_order_id",
        "wo": "wo_number",
        "technicianId": "technician_id",
        "technicianName": "technician_name",
        "requestedAt": "requested_at",
        "approvedAt": "approved_at",
        "paidAt": "paid_at",
    }

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_COST_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "technician_id": self.technician_id,
            "amount": self.amount,
            "note": self.note,
            "status": self.status.value,
            "requested_at": self.requested_at,
            "approved_at": self.approved_at,
            "paid_at": self.paid_at,
            "wo_number": self.wo_number,
            "client": self.client,
            "trade": self.trade,
            "technician_name": self.technician_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CostRequest':
        d = remap_legacy_keys(data, cls.LEGACY_KEYS)
        return cls(
            id=as_text(d.get("id")) or generate_id("COST"),
            work_order_id=as_text(d.get("work_order_id")),
            technician_id=as_text(d.get("technician_id")),
            amount=as_float(d.get("amount")),
            note=as_text(d.get("note")),
            status=as_enum(CostStatus, d.get("status")),
            requested_at=as_timestamp(d.get("requested_at")),
            approved_at=as_timestamp(d.get("approved_at")),
            paid_at=as_timestamp(d.get("paid_at")),
            wo_number=as_text(d.get("wo_number")),
            client=as_text(d.get("client")),
            trade=as_text(d.get("trade")),
            technician_name=as_text(d.get("technician_name")),
            created_at=as_timestamp(d.get("created_at")),
            updated_at=as_timestamp(d.get("updated_at")),
        )


# =============================================================================
# PROPOSALS
# =============================================================================

@dataclass
class IncurredCharges:
    """Charges incurred just by showing up."""
    emergency: bool = False
    trip_fee: float = 0.0
    assessment_fee: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"emergency": self.emergency, "trip_fee": self.trip_fee, "assessment_fee": self.assessment_fee}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'IncurredCharges':
        d = remap_legacy_keys(data or {}, {"tripFee": "trip_fee", "assessmentFee": "assessment_fee"})
        return cls(
            emergency=as_bool(d.get("emergency")),
            trip_fee=as_float(d.get("trip_fee")),
            assessment_fee=as_float(d.get("assessment_fee")),
        )


@dataclass
class RepairLabor:
    tech_hours: float = 0.0
    tech_rate: float = 0.0
    helper_hours: float = 0.0
    helper_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tech_hours": self.tech_hours,
            "tech_rate": self.tech_rate,
            "helper_hours": self.helper_hours,
            "helper_rate": self.helper_rate,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RepairLabor':
        d = remap_legacy_keys(data or {}, {
            "techHours": "tech_hours",
            "techRate": "tech_rate",
            "helperHours": "helper_hours",
            "helperRate": "helper_rate",
        })
        return cls(
            tech_hours=as_float(d.get("tech_hours")),
            tech_rate=as_float(d.get("tech_rate")),
            helper_hours=as_float(d.get("helper_hours")),
            helper_rate=as_float(d.get("helper_rate")),
        )


@dataclass
class PartLine:
    name: str = ""
    qty: float = 0.0
    unit: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "qty": self.qty, "unit": self.unit}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PartLine':
        return cls(
            name=as_text(data.get("name")),
            qty=as_float(data.get("qty")),
            unit=as_float(data.get("unit")),
        )


@dataclass
class PricingInputs:
    """Operator pricing: cost basis, markup multiplier and tax percentage."""
    cost: float = 0.0
    multiplier: float = 1.75
    tax_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"cost": self.cost, "multiplier": self.multiplier, "tax_pct": self.tax_pct}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PricingInputs':
        d = remap_legacy_keys(data or {}, {"taxPct": "tax_pct"})
        return cls(
            cost=as_float(d.get("cost")),
            multiplier=as_float(d.get("multiplier"), 1.75),
            tax_pct=as_float(d.get("tax_pct")),
        )


@dataclass
class ProposalTotals:
    """Totals snapshot. Written once at creation, never recomputed."""
    incurred: float = 0.0
    tech_labor: float = 0.0
    helper_labor: float = 0.0
    repair: float = 0.0
    parts: float = 0.0
    grand_before_tax: float = 0.0
    tax_amount: float = 0.0
    grand_with_tax: float = 0.0

    LEGACY_KEYS = {
        "techLabor": "tech_labor",
        "helperLabor": "helper_labor",
        "grandBeforeTax": "grand_before_tax",
        "taxAmount": "tax_amount",
        "grandWithTax": "grand_with_tax",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incurred": self.incurred,
            "tech_labor": self.tech_labor,
            "helper_labor": self.helper_labor,
            "repair": self.repair,
            "parts": self.parts,
            "grand_before_tax": self.grand_before_tax,
            "tax_amount": self.tax_amount,
            "grand_with_tax": self.grand_with_tax,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ProposalTotals':
        d = remap_legacy_keys(data or {}, cls.LEGACY_KEYS)
        return cls(**{name: as_float(d.get(name)) for name in cls().to_dict()})


@dataclass
class Proposal:
    """
    Priced proposal for a work order. helper_id is an optional second
    technician reference. totals is historical record, not a live view.
    """
    id: str
    work_order_id: str = ""
    wo_number: str = ""
    client: str = ""
    trade: str = ""
    technician_id: str = ""
    technician_name: str = ""
    helper_id: str = ""
    helper_name: str = ""
    scope_text: str = ""
    incurred: IncurredCharges = field(default_factory=IncurredCharges)
    repair: RepairLabor = field(default_factory=RepairLabor)
    parts: List[PartLine] = field(default_factory=list)
    pricing: PricingInputs = field(default_factory=PricingInputs)
    totals: ProposalTotals = field(default_factory=ProposalTotals)
    created_at: str = ""
    updated_at: str = ""

    LEGACY_KEYS = {
        "woId": "work_order_id",
        "workOrderId": "work_order_id",
        "wo": "wo_number",
        "technicianId": "technician_id",
        "technicianName": "technician_name",
        "helperId": "helper_id",
        "helperName": "helper_name",
        "body": "scope_text",
        "scopeText": "scope_text",
    }

    def referenced_technician_ids(self) -> set:
        """Distinct technician ids this proposal points at."""
        return {tid for tid in (self.technician_id, self.helper_id) if tid}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "wo_number": self.wo_number,
            "client": self.client,
            "trade": self.trade,
            "technician_id": self.technician_id,
            "technician_name": self.technician_name,
            "helper_id": self.helper_id,
            "helper_name": self.helper_name,
            "scope_text": self.scope_text,
            "incurred": self.incurred.to_dict(),
            "repair": self.repair.to_dict(),
            "parts": [p.to_dict() for p in self.parts],
            "pricing": self.pricing.to_dict(),
            "totals": self.totals.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Proposal':
        d = remap_legacy_keys(data, cls.LEGACY_KEYS)
        parts = d.get("parts")
        return cls(
            id=as_text(d.get("id")) or generate_id("PROP"),
            work_order_id=as_text(d.get("work_order_id")),
            wo_number=as_text(d.get("wo_number")),
            client=as_text(d.get("client")),
            trade=as_text(d.get("trade")),
            technician_id=as_text(d.get("technician_id")),
            technician_name=as_text(d.get("technician_name")),
            helper_id=as_text(d.get("helper_id")),
            helper_name=as_text(d.get("helper_name")),
            scope_text=as_text(d.get("scope_text")),
            incurred=IncurredCharges.from_dict(d.get("incurred") if isinstance(d.get("incurred"), dict) else None),
            repair=RepairLabor.from_dict(d.get("repair") if isinstance(d.get("repair"), dict) else None),
            parts=[PartLine.from_dict(p) for p in parts if isinstance(p, dict)] if isinstance(parts, list) else [],
            pricing=PricingInputs.from_dict(d.get("pricing") if isinstance(d.get("pricing"), dict) else None),
            totals=ProposalTotals.from_dict(d.get("totals") if isinstance(d.get("totals"), dict) else None),
            created_at=as_timestamp(d.get("created_at")),
            updated_at=as_timestamp(d.get("updated_at")),
        )


# =============================================================================
# FILE RECORDS
# =============================================================================

@dataclass
class FileRecord:
    """
    Attachment metadata. Bytes live in the blob store under the same id.
    work_order_id may dangle; such records are orphans, never auto-deleted.
    """
    id: str
    work_order_id: str = ""
    name: str = ""
    mime_type: str = ""
    byte_size: int = 0
    created_at: str = ""
    updated_at: str = ""

    LEGACY_KEYS = {
        "woId": "work_order_id",
        "workOrderId": "work_order_id",
        "type": "mime_type",
        "mimeType": "mime_type",
        "size": "byte_size",
        "byteSize": "byte_size",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "name": self.name,
            "mime_type": self.mime_type,
            "byte_size": self.byte_size,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileRecord':
        d = remap_legacy_keys(data, cls.LEGACY_KEYS)
        return cls(
            id=as_text(d.get("id")) or generate_id("FILE"),
            work_order_id=as_text(d.get("work_order_id")),
            name=as_text(d.get("name")),
            mime_type=as_text(d.get("mime_type")),
            byte_size=as_int(d.get("byte_size")),
            created_at=as_timestamp(d.get("created_at")),
            updated_at=as_timestamp(d.get("updated_at")),
        )


# =============================================================================
# CALENDAR EVENTS
# =============================================================================

@dataclass
class CalendarEvent:
    """Standalone scheduling entry, merged with work order ETAs only on read."""
    id: str
    title: str = ""
    date_time: str = ""
    priority: CalendarPriority = CalendarPriority.NORMAL
    description: str = ""
    created_at: str = ""
    updated_at: str = ""

    LEGACY_KEYS = {
        "dateTime": "date_time",
        "date": "date_time",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date_time": self.date_time,
            "priority": self.priority.value,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalendarEvent':
        d = remap_legacy_keys(data, cls.LEGACY_KEYS)
        return cls(
            id=as_text(d.get("id")) or generate_id("EVT"),
            title=as_text(d.get("title")),
            date_time=as_timestamp(d.get("date_time")),
            priority=as_enum(CalendarPriority, d.get("priority")),
            description=as_text(d.get("description")),
            created_at=as_timestamp(d.get("created_at")),
            updated_at=as_timestamp(d.get("updated_at")),
        )


# =============================================================================
# DERIVED SHAPES
# =============================================================================

@dataclass
class ReferenceCounts:
    """How many records in other collections point at one technician."""
    work_order_refs: int = 0
    cost_request_refs: int = 0
    proposal_refs: int = 0

    @property
    def total(self) -> int:
        return self.work_order_refs + self.cost_request_refs + self.proposal_refs

    @property
    def is_clear(self) -> bool:
        return self.total == 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "work_order_refs": self.work_order_refs,
            "cost_request_refs": self.cost_request_refs,
            "proposal_refs": self.proposal_refs,
        }


@dataclass
class EtaBuckets:
    """Active work orders partitioned by ETA relative to now."""
    overdue: List[WorkOrder] = field(default_factory=list)
    due_today: List[WorkOrder] = field(default_factory=list)
    upcoming: List[WorkOrder] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "overdue": len(self.overdue),
            "due_today": len(self.due_today),
            "upcoming": len(self.upcoming),
        }


@dataclass
class DashboardCounters:
    work_orders_by_status: Dict[str, int] = field(default_factory=dict)
    cost_requests_by_status: Dict[str, int] = field(default_factory=dict)
    unpaid_cost_requests: int = 0
    orphan_files: int = 0
    missing_proposals: int = 0
    total_work_orders: int = 0


@dataclass
class ActivityEntry:
    """One line of the recent activity feed."""
    kind: str
    title: str
    detail: str
    at: datetime
    record_id: str


@dataclass
class CalendarEntry:
    """A work order ETA or a calendar event, flattened for a schedule view."""
    source: str              # "work_order" | "event"
    record_id: str
    title: str
    at: datetime
    priority: str = CalendarPriority.NORMAL.value
    detail: str = ""


RECORD_TYPES = {
    WORK_ORDERS: WorkOrder,
    TECHNICIANS: Technician,
    COST_REQUESTS: CostRequest,
    PROPOSALS: Proposal,
    FILE_RECORDS: FileRecord,
    CALENDAR_EVENTS: CalendarEvent,
}
