"""
Entity Repositories

Typed wrappers over the Collection Store, one per collection. Each holds an
in-memory snapshot loaded by refresh(); every mutation validates against that
snapshot, rewrites the whole collection and announces the change.

Unit of work: load -> validate -> mutate -> save. It is not atomic across
instances. A repository never re-reads before saving, so an instance with a
stale snapshot overwrites whatever a peer wrote in between (last-write-wins).

New records are prepended (newest first). Every write stamps updated_at;
creation also stamps created_at.

Typed failures from dispatch_errors are raised to the caller. Store faults
are handled by the Collection Store and never raised from here.
"""

import logging
import math
import random
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from blob_store import BlobStore
from change_notifier import ChangeNotifier
from collection_store import CollectionStore
from datashapes import (
    CALENDAR_EVENTS,
    COST_REQUESTS,
    FILE_RECORDS,
    PROPOSALS,
    TECHNICIANS,
    WORK_ORDERS,
    CalendarEvent,
    CalendarPriority,
    CostRequest,
    CostStatus,
    FileRecord,
    IncurredCharges,
    PartLine,
    PricingInputs,
    Proposal,
    ProposalTotals,
    RepairLabor,
    Technician,
    WorkOrder,
    WorkOrderStatus,
    as_bool,
    as_text,
    generate_id,
    parse_timestamp,
    remap_legacy_keys,
    stable_id,
    to_iso,
    utc_now,
)
from dispatch_errors import (
    DuplicateTechnician,
    PreconditionFailed,
    RecordNotFound,
    ReferencedEntityExists,
    TerminalStateViolation,
    ValidationFailed,
)
from error_handler import ErrorCategory, ErrorSeverity
from integrity import IntegrityEngine
from proposal_pricing import calculate_totals, default_incurred, default_pricing, default_repair
from technician_matching import (
    ADDRESS_MAX,
    CITY_MAX,
    FULL_ADDRESS_MAX,
    NAME_MAX,
    NOTES_MAX,
    STATE_MAX,
    TRADE_MAX,
    find_duplicate,
    is_eligible_for_trade,
    normalize_key,
    normalize_phone,
    resolve_trade,
    sanitize_text,
)
from workflows import CostRequestWorkflow, check_blacklist, parse_work_order_status

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class DuplicateRecordIds(Exception):
    """A stored collection holds more than one record under the same id."""


def _number(form: Dict[str, Any], key: str, minimum: float = 0.0, default: float = 0.0) -> float:
    """Numeric form field; blank means default, garbage or below minimum is rejected."""
    raw = form.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    if isinstance(raw, bool):
        raise ValidationFailed(f"{key} must be a number", key)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{key} must be a number, got {raw!r}", key)
    if not math.isfinite(value):
        raise ValidationFailed(f"{key} must be a finite number", key)
    if value < minimum:
        raise ValidationFailed(f"{key} must be at least {minimum:g}", key)
    return value


def _timestamp_field(form: Dict[str, Any], key: str) -> str:
    """ISO text for an optional time field; unparsable input is rejected."""
    raw = form.get(key)
    if raw is None or raw == "":
        return ""
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise ValidationFailed(f"{key} is not a valid date/time: {raw!r}", key)
    return to_iso(parsed) if isinstance(raw, datetime) else as_text(raw).strip()


class BaseRepository:
    """Snapshot, lookup and whole-collection commit shared by every repository."""

    collection: str = ""
    record_type: Any = None
    id_prefix: str = "REC"

    def __init__(self, store: CollectionStore, notifier: Optional[ChangeNotifier] = None,
                 clock: Optional[Clock] = None):
        self.store = store
        self.notifier = notifier
        self.clock = clock or utc_now
        self._records: List[Any] = []
        self.last_save_ok = True

    # =========================================================================
    # READS
    # =========================================================================

    def refresh(self) -> List[Any]:
        """Replace the snapshot with what the store holds now."""
        loaded = self._identified(self.store.load(self.collection))
        self._records = [self.record_type.from_dict(r) for r in loaded]
        return self.list()

    def _identified(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Give id-less records a content-derived id and keep only the first
        record stored under each id.
        """
        seen = set()
        kept = []
        duplicates = []
        for raw in records:
            data = remap_legacy_keys(raw, self.record_type.LEGACY_KEYS)
            record_id = as_text(data.get("id"))
            if not record_id:
                base = stable_id(self.id_prefix, raw)
                record_id, n = base, 1
                while record_id in seen:
                    n += 1
                    record_id = f"{base}-{n}"
                raw = {**raw, "id": record_id}
            elif record_id in seen:
                duplicates.append(record_id)
                continue
            seen.add(record_id)
            kept.append(raw)

        if duplicates:
            self.store.error_handler.handle_error(
                DuplicateRecordIds(f"Dropped {len(duplicates)} record(s) reusing an id: {', '.join(duplicates)}"),
                ErrorCategory.INTEGRITY,
                ErrorSeverity.MEDIUM_ALERT,
                context=self.collection,
                operation="collection_refresh",
                attempt_recovery=False
            )
        return kept

    def list(self) -> List[Any]:
        return list(self._records)

    def get(self, record_id: Optional[str]):
        if not record_id:
            return None
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def require(self, record_id: str):
        record = self.get(record_id)
        if record is None:
            raise RecordNotFound(self.collection, record_id)
        return record

    def __len__(self):
        return len(self._records)

    # =========================================================================
    # WRITES
    # =========================================================================

    def delete(self, record_id: str):
        record = self.require(record_id)
        self._records = [r for r in self._records if r.id != record_id]
        self._commit()
        logger.info(f"Deleted {self.collection} record {record_id}")
        return record

    def _now(self) -> str:
        return to_iso(self.clock())

    def _form(self, record) -> Dict[str, Any]:
        data = record.to_dict() if hasattr(record, "to_dict") else dict(record or {})
        return remap_legacy_keys(data, self.record_type.LEGACY_KEYS)

    def _insert(self, record):
        self._records.insert(0, record)
        self._commit()
        return record

    def _replace(self, record):
        self._records = [record if r.id == record.id else r for r in self._records]
        self._commit()
        return record

    def _commit(self) -> bool:
        """Write the whole snapshot, then tell the other instances."""
        self.last_save_ok = self.store.save(self.collection, [r.to_dict() for r in self._records])
        if self.last_save_ok and self.notifier is not None:
            self.notifier.publish(self.collection)
        elif not self.last_save_ok:
            logger.warning(f"{self.collection} change kept in memory only; store rejected the write")
        return self.last_save_ok


# =============================================================================
# TECHNICIANS
# =============================================================================

class TechnicianRepository(BaseRepository):
    collection = TECHNICIANS
    id_prefix = "TECH"
    record_type = Technician

    def __init__(self, store: CollectionStore, notifier: Optional[ChangeNotifier] = None,
                 clock: Optional[Clock] = None, integrity: Optional[IntegrityEngine] = None):
        super().__init__(store, notifier, clock)
        # Standalone repositories check references against what is persisted
        self.integrity = integrity or IntegrityEngine.from_store(store)

    def upsert(self, record) -> Technician:
        """
        Create or edit a technician from a form dict or Technician.

        Raises:
            ValidationFailed: name or trade too short, bad counters
            ReasonRequired: blacklisted without a reason
            DuplicateTechnician: matches another record
        """
        form = self._form(record)
        existing = self.get(form.get("id"))
        if existing is not None:
            form = {**existing.to_dict(), **form}

        name = sanitize_text(form.get("name"), NAME_MAX)
        if len(name) < 2:
            raise ValidationFailed("Technician name must be at least 2 characters", "name")

        trade = resolve_trade(form.get("trade"), form.get("trade_other"))
        if len(trade) < 2:
            raise ValidationFailed("Technician trade is required", "trade")

        blacklisted = as_bool(form.get("blacklisted"))
        reason = check_blacklist(blacklisted, form.get("blacklist_reason"))

        now = self._now()
        tech = Technician(
            id=existing.id if existing else (as_text(form.get("id")) or generate_id("TECH")),
            name=name,
            trade=trade,
            phone=normalize_phone(form.get("phone")),
            address=sanitize_text(form.get("address"), ADDRESS_MAX),
            city=sanitize_text(form.get("city"), CITY_MAX),
            state=sanitize_text(form.get("state"), STATE_MAX),
            full_address=sanitize_text(form.get("full_address"), FULL_ADDRESS_MAX),
            notes=sanitize_text(form.get("notes"), NOTES_MAX),
            recommendations=sanitize_text(form.get("recommendations"), NOTES_MAX),
            jobs_done=int(_number(form, "jobs_done")),
            revenue_generated=_number(form, "revenue_generated"),
            blacklisted=blacklisted,
            blacklist_reason=reason,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

        duplicate = find_duplicate(tech, self._records, ignore_id=tech.id)
        if duplicate is not None:
            raise DuplicateTechnician(duplicate.id, duplicate.name)

        if existing is not None:
            return self._replace(tech)
        logger.info(f"Added technician {tech.name} ({tech.id})")
        return self._insert(tech)

    def delete(self, record_id: str) -> Technician:
        """
        Delete a technician nobody references.

        Raises:
            ReferencedEntityExists: still used by work orders, costs or proposals
        """
        self.require(record_id)
        if not self.integrity.can_delete(record_id):
            raise ReferencedEntityExists(record_id, self.integrity.reference_counts(record_id))
        return super().delete(record_id)

    def set_blacklist(self, record_id: str, value: bool, reason: str = "") -> Technician:
        """Block or unblock a technician. Re-applying the same state is a no-op."""
        tech = self.require(record_id)
        reason = check_blacklist(bool(value), reason)

        if tech.blacklisted == bool(value) and tech.blacklist_reason == reason:
            return tech

        updated = replace(tech, blacklisted=bool(value), blacklist_reason=reason, updated_at=self._now())
        logger.info(f"Technician {tech.id} {'blacklisted' if value else 'cleared from blacklist'}")
        return self._replace(updated)

    def assignable(self, trade: Optional[str] = None) -> List[Technician]:
        """Non-blacklisted technicians eligible for trade, by name."""
        techs = [t for t in self._records if not t.blacklisted]
        if trade is not None:
            techs = [t for t in techs if is_eligible_for_trade(t.trade, trade)]
        return sorted(techs, key=lambda t: normalize_key(t.name))

    def search(self, text: str = "", include_blacklisted: bool = True) -> List[Technician]:
        needle = normalize_key(text)
        results = []
        for tech in self._records:
            if tech.blacklisted and not include_blacklisted:
                continue
            haystack = normalize_key(" ".join([tech.name, tech.trade, tech.city, tech.state, tech.phone]))
            if needle in haystack:
                results.append(tech)
        return results

    def stats(self) -> Dict[str, Any]:
        blacklisted = sum(1 for t in self._records if t.blacklisted)
        return {
            "total": len(self._records),
            "active": len(self._records) - blacklisted,
            "blacklisted": blacklisted,
            "jobs_done": sum(t.jobs_done for t in self._records),
            "revenue_generated": round(sum(t.revenue_generated for t in self._records), 2),
        }


# =============================================================================
# WORK ORDERS
# =============================================================================

class WorkOrderRepository(BaseRepository):
    collection = WORK_ORDERS
    id_prefix = "WO"
    record_type = WorkOrder

    def __init__(self, store: CollectionStore, notifier: Optional[ChangeNotifier] = None,
                 clock: Optional[Clock] = None, technicians: Optional[TechnicianRepository] = None):
        super().__init__(store, notifier, clock)
        self.technicians = technicians

    @staticmethod
    def new_wo_number() -> str:
        return f"WO-{random.randint(1000, 9999)}"

    def upsert(self, record) -> WorkOrder:
        """
        Create or edit a work order.

        Raises:
            ValidationFailed: missing client/trade, negative NTE, bad status or ETA
            PreconditionFailed: newly assigned technician unknown, blacklisted or wrong trade
        """
        form = self._form(record)
        existing = self.get(form.get("id"))
        if existing is not None:
            form = {**existing.to_dict(), **form}

        client = sanitize_text(form.get("client"), 120)
        if not client:
            raise ValidationFailed("Client is required", "client")

        trade = sanitize_text(form.get("trade"), TRADE_MAX)
        if not trade:
            raise ValidationFailed("Trade is required", "trade")

        status = parse_work_order_status(form.get("status") or WorkOrderStatus.WAITING)
        eta_at = _timestamp_field(form, "eta_at")

        technician_id = as_text(form.get("technician_id"))
        technician_name = as_text(form.get("technician_name"))
        if technician_id and (existing is None or technician_id != existing.technician_id):
            technician_name = self._check_assignable(technician_id, trade).name
        elif not technician_id:
            technician_name = ""

        now = self._now()
        wo = WorkOrder(
            id=existing.id if existing else (as_text(form.get("id")) or generate_id("WO")),
            wo_number=sanitize_text(form.get("wo_number"), 40) or self.new_wo_number(),
            client=client,
            trade=trade,
            city=sanitize_text(form.get("city"), CITY_MAX),
            not_to_exceed=_number(form, "not_to_exceed"),
            status=status,
            eta_at=eta_at,
            eta_label="" if eta_at else sanitize_text(form.get("eta_label"), 80),
            technician_id=technician_id,
            technician_name=technician_name,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

        if existing is not None:
            return self._replace(wo)
        logger.info(f"Created work order {wo.wo_number} ({wo.id})")
        return self._insert(wo)

    def set_status(self, record_id: str, status) -> WorkOrder:
        """Any valid status is accepted; ordering is a business convention only."""
        wo = self.require(record_id)
        return self._replace(replace(wo, status=parse_work_order_status(status), updated_at=self._now()))

    def set_eta(self, record_id: str, eta_at=None, label: str = "") -> WorkOrder:
        """Set the scheduled time. A real time clears the fallback label."""
        wo = self.require(record_id)
        eta = _timestamp_field({"eta_at": eta_at}, "eta_at")
        return self._replace(replace(
            wo,
            eta_at=eta,
            eta_label="" if eta else sanitize_text(label, 80),
            updated_at=self._now(),
        ))

    def assign_technician(self, record_id: str, technician_id: str) -> WorkOrder:
        wo = self.require(record_id)
        tech = self._check_assignable(technician_id, wo.trade)
        return self._replace(replace(
            wo, technician_id=tech.id, technician_name=tech.name, updated_at=self._now()
        ))

    def unassign_technician(self, record_id: str) -> WorkOrder:
        wo = self.require(record_id)
        return self._replace(replace(wo, technician_id="", technician_name="", updated_at=self._now()))

    def search(self, text: str = "", status=None) -> List[WorkOrder]:
        wanted = parse_work_order_status(status) if status else None
        needle = normalize_key(text)
        results = []
        for wo in self._records:
            if wanted is not None and wo.status != wanted:
                continue
            haystack = normalize_key(" ".join([wo.wo_number, wo.client, wo.trade, wo.city, wo.technician_name]))
            if needle in haystack:
                results.append(wo)
        return results

    def _check_assignable(self, technician_id: str, trade: str) -> Technician:
        tech = self.technicians.get(technician_id) if self.technicians is not None else None
        if tech is None:
            raise PreconditionFailed(f"Technician {technician_id} does not exist", technician_id)
        if tech.blacklisted:
            raise PreconditionFailed(f"Technician {tech.name} is blacklisted", technician_id)
        if not is_eligible_for_trade(tech.trade, trade):
            raise PreconditionFailed(f"Technician {tech.name} ({tech.trade}) does not cover {trade}", technician_id)
        return tech


# =============================================================================
# COST REQUESTS
# =============================================================================

class CostRequestRepository(BaseRepository):
    collection = COST_REQUESTS
    id_prefix = "COST"
    record_type = CostRequest

    def __init__(self, store: CollectionStore, notifier: Optional[ChangeNotifier] = None,
                 clock: Optional[Clock] = None,
                 work_orders: Optional[WorkOrderRepository] = None,
                 technicians: Optional[TechnicianRepository] = None):
        super().__init__(store, notifier, clock)
        self.work_orders = work_orders
        self.technicians = technicians
        self.workflow = CostRequestWorkflow()

    def create(self, work_order_id: str, technician_id: Optional[str], amount, note: str = "") -> CostRequest:
        """
        Request payment for a completed work order's technician.

        Raises:
            PreconditionFailed: work order not completed, no usable technician, amount <= 0
            DuplicateOpenRequest: work order already has a requested/approved cost
        """
        wo = self.work_orders.get(work_order_id) if self.work_orders is not None else None
        tech = None
        if wo is not None and self.technicians is not None:
            tech = self.technicians.get(wo.technician_id)

        value = self.workflow.check_create(wo, work_order_id, tech, technician_id, amount, self._records)

        now = self._now()
        cost = CostRequest(
            id=generate_id("COST"),
            work_order_id=wo.id,
            technician_id=tech.id,
            amount=value,
            note=sanitize_text(note, NOTES_MAX),
            status=CostStatus.REQUESTED,
            requested_at=now,
            wo_number=wo.wo_number,
            client=wo.client,
            trade=wo.trade,
            technician_name=tech.name,
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Cost requested for {wo.wo_number}: {value:.2f} ({cost.id})")
        return self._insert(cost)

    def transition(self, record_id: str, target) -> CostRequest:
        """
        Move a cost through requested -> approved -> paid, or revert to requested.

        Raises:
            TerminalStateViolation: the cost is already paid
            PreconditionFailed: skipping a step
        """
        cost = self.require(record_id)
        updated = self.workflow.apply_transition(cost, target, self.clock())
        logger.info(f"Cost {record_id}: {cost.status.value} -> {updated.status.value}")
        return self._replace(updated)

    def upsert(self, record) -> CostRequest:
        """New records go through create(); existing ones may only change amount and note."""
        form = self._form(record)
        existing = self.get(form.get("id"))
        if existing is None:
            return self.create(
                as_text(form.get("work_order_id")),
                as_text(form.get("technician_id")) or None,
                form.get("amount"),
                as_text(form.get("note")),
            )

        if existing.status == CostStatus.PAID:
            raise TerminalStateViolation(f"Cost request {existing.id} is paid and can no longer change", existing.id)

        if "status" in form and self.workflow.parse_status(form["status"]) != existing.status:
            raise ValidationFailed("Status changes go through transition()", "status", existing.id)
        for locked in ("work_order_id", "technician_id"):
            if locked in form and as_text(form[locked]) != getattr(existing, locked):
                raise ValidationFailed(f"{locked} cannot change on an existing cost request", locked, existing.id)

        updated = replace(
            existing,
            amount=self.workflow.check_amount(form.get("amount", existing.amount)),
            note=sanitize_text(form.get("note", existing.note), NOTES_MAX),
            updated_at=self._now(),
        )
        return self._replace(updated)

    def delete(self, record_id: str) -> CostRequest:
        cost = self.require(record_id)
        if cost.status == CostStatus.PAID:
            raise TerminalStateViolation(f"Paid cost request {record_id} cannot be deleted", record_id)
        return super().delete(record_id)

    def open_request_for(self, work_order_id: str) -> Optional[CostRequest]:
        for cost in self._records:
            if cost.work_order_id == work_order_id and cost.is_open:
                return cost
        return None

    def for_work_order(self, work_order_id: str) -> List[CostRequest]:
        return [c for c in self._records if c.work_order_id == work_order_id]

    def status_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in CostStatus}
        for cost in self._records:
            counts[cost.status.value] += 1
        return counts


# =============================================================================
# PROPOSALS
# =============================================================================

class ProposalRepository(BaseRepository):
    collection = PROPOSALS
    id_prefix = "PROP"
    record_type = Proposal

    # Fields frozen into the snapshot at creation
    SNAPSHOT_FIELDS = ("incurred", "repair", "parts", "pricing", "totals")

    def __init__(self, store: CollectionStore, notifier: Optional[ChangeNotifier] = None,
                 clock: Optional[Clock] = None,
                 work_orders: Optional[WorkOrderRepository] = None,
                 technicians: Optional[TechnicianRepository] = None):
        super().__init__(store, notifier, clock)
        self.work_orders = work_orders
        self.technicians = technicians

    def create(self, form) -> Proposal:
        """
        Price and store a proposal for a work order.

        Form keys: work_order_id, technician_id, helper_id, scope_text,
        emergency, incurred, repair, parts, pricing. Missing pricing inputs
        take the configured defaults.
        """
        form = self._form(form)

        work_order_id = as_text(form.get("work_order_id"))
        if not work_order_id:
            raise ValidationFailed("Select a work order", "work_order_id")
        wo = self.work_orders.get(work_order_id) if self.work_orders is not None else None
        if wo is None:
            raise PreconditionFailed(f"Work order {work_order_id} does not exist", work_order_id)

        technician_id = as_text(form.get("technician_id"))
        if not technician_id and "technician_id" not in form:
            assigned = self._resolve(wo.technician_id)
            technician_id = assigned.id if assigned is not None and not assigned.blacklisted else ""
        helper_id = as_text(form.get("helper_id"))
        if helper_id and helper_id == technician_id:
            raise ValidationFailed("Helper must be a different technician", "helper_id")

        tech = self._require_usable(technician_id, "technician_id")
        helper = self._require_usable(helper_id, "helper_id")

        incurred_form = form.get("incurred") if isinstance(form.get("incurred"), dict) else {}
        emergency = as_bool(form.get("emergency")) or as_bool(incurred_form.get("emergency"))
        incurred = self._section(form, "incurred", IncurredCharges, default_incurred(emergency))
        repair = self._section(form, "repair", RepairLabor, default_repair())
        pricing = self._section(form, "pricing", PricingInputs, default_pricing())
        parts = self._parts(form.get("parts"))
        self._check_inputs(incurred, repair, parts, pricing)

        now = self._now()
        proposal = Proposal(
            id=generate_id("PROP"),
            work_order_id=wo.id,
            wo_number=wo.wo_number,
            client=wo.client,
            trade=wo.trade,
            technician_id=tech.id if tech else "",
            technician_name=tech.name if tech else "",
            helper_id=helper.id if helper else "",
            helper_name=helper.name if helper else "",
            scope_text=sanitize_text(form.get("scope_text"), 4000),
            incurred=incurred,
            repair=repair,
            parts=parts,
            pricing=pricing,
            totals=calculate_totals(incurred, repair, parts, pricing),
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Proposal {proposal.id} for {wo.wo_number}: {proposal.totals.grand_with_tax:.2f}")
        return self._insert(proposal)

    def upsert(self, record) -> Proposal:
        """New proposals are created; existing ones only accept scope text edits."""
        form = self._form(record)
        existing = self.get(form.get("id"))
        if existing is None:
            return self.create(form)

        current = existing.to_dict()
        for name in self.SNAPSHOT_FIELDS:
            if name in form and self._normalized(name, form[name]) != current[name]:
                raise ValidationFailed(
                    f"Proposal {name} is a priced snapshot; create a new proposal instead", name, existing.id
                )

        updated = replace(
            existing,
            scope_text=sanitize_text(form.get("scope_text", existing.scope_text), 4000),
            updated_at=self._now(),
        )
        return self._replace(updated)

    def for_work_order(self, work_order_id: str) -> List[Proposal]:
        return [p for p in self._records if p.work_order_id == work_order_id]

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _resolve(self, technician_id: str) -> Optional[Technician]:
        return self.technicians.get(technician_id) if self.technicians is not None else None

    def _require_usable(self, technician_id: str, field_name: str) -> Optional[Technician]:
        if not technician_id:
            return None
        tech = self._resolve(technician_id)
        if tech is None:
            raise PreconditionFailed(f"Technician {technician_id} does not exist", technician_id)
        if tech.blacklisted:
            raise PreconditionFailed(f"Technician {tech.name} is blacklisted ({field_name})", technician_id)
        return tech

    @staticmethod
    def _section(form: Dict[str, Any], key: str, shape, default):
        value = form.get(key)
        if value is None:
            return default
        if isinstance(value, shape):
            return value
        if not isinstance(value, dict):
            raise ValidationFailed(f"{key} must be an object", key)
        # Unspecified inputs keep their defaults
        return shape.from_dict({**default.to_dict(), **value})

    @staticmethod
    def _parts(value) -> List[PartLine]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValidationFailed("parts must be a list", "parts")
        parts = []
        for item in value:
            part = item if isinstance(item, PartLine) else PartLine.from_dict(item if isinstance(item, dict) else {})
            if part.name or part.qty or part.unit:
                parts.append(PartLine(name=sanitize_text(part.name, 120), qty=part.qty, unit=part.unit))
        return parts

    @staticmethod
    def _check_inputs(incurred: IncurredCharges, repair: RepairLabor,
                      parts: List[PartLine], pricing: PricingInputs):
        amounts = {
            "trip_fee": incurred.trip_fee,
            "assessment_fee": incurred.assessment_fee,
            "tech_hours": repair.tech_hours,
            "tech_rate": repair.tech_rate,
            "helper_hours": repair.helper_hours,
            "helper_rate": repair.helper_rate,
            "cost": pricing.cost,
        }
        for name, value in amounts.items():
            if value < 0:
                raise ValidationFailed(f"{name} cannot be negative", name)
        for part in parts:
            if part.qty < 0 or part.unit < 0:
                raise ValidationFailed(f"Part '{part.name}' has a negative quantity or price", "parts")
        if pricing.multiplier <= 0:
            raise ValidationFailed("Markup multiplier must be positive", "multiplier")
        if not 0 <= pricing.tax_pct <= 100:
            raise ValidationFailed("Tax percentage must be between 0 and 100", "tax_pct")

    @staticmethod
    def _normalized(name: str, value):
        shapes = {
            "incurred": IncurredCharges,
            "repair": RepairLabor,
            "pricing": PricingInputs,
        }
        if hasattr(value, "to_dict"):
            return value.to_dict()
        if name == "parts":
            return [p.to_dict() if hasattr(p, "to_dict") else PartLine.from_dict(p).to_dict()
                    for p in (value or []) if isinstance(p, (dict, PartLine))]
        if name == "totals":
            return ProposalTotals.from_dict(value if isinstance(value, dict) else None).to_dict()
        return shapes[name].from_dict(value if isinstance(value, dict) else None).to_dict()


# =============================================================================
# FILE RECORDS
# =============================================================================

class FileRecordRepository(BaseRepository):
    collection = FILE_RECORDS
    id_prefix = "FILE"
    record_type = FileRecord

    def __init__(self, store: CollectionStore, notifier: Optional[ChangeNotifier] = None,
                 clock: Optional[Clock] = None,
                 work_orders: Optional[WorkOrderRepository] = None,
                 blobs: Optional[BlobStore] = None):
        super().__init__(store, notifier, clock)
        self.work_orders = work_orders
        self.blobs = blobs

    def attach(self, work_order_id: str, name: str, mime_type: str, data: bytes) -> FileRecord:
        """
        Store bytes for a work order. The blob is written first, then the
        metadata; the two writes are not joint, so a blob can go missing
        and read_content() tolerates that.
        """
        self._require_work_order(work_order_id)
        clean_name = sanitize_text(name, 200)
        if not clean_name:
            raise ValidationFailed("File name is required", "name")
        if not isinstance(data, (bytes, bytearray)):
            raise ValidationFailed("File content must be bytes", "data")

        record_id = generate_id("FILE")
        if self.blobs is None or not self.blobs.put(record_id, bytes(data)):
            raise PreconditionFailed("Attachment storage is unavailable; file was not saved", record_id)

        now = self._now()
        record = FileRecord(
            id=record_id,
            work_order_id=work_order_id,
            name=clean_name,
            mime_type=sanitize_text(mime_type, 120) or "application/octet-stream",
            byte_size=len(data),
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Attached {record.name} ({record.byte_size} bytes) to {work_order_id}")
        return self._insert(record)

    def upsert(self, record) -> FileRecord:
        """Metadata-only create or edit. A changed work order must resolve."""
        form = self._form(record)
        existing = self.get(form.get("id"))
        if existing is not None:
            form = {**existing.to_dict(), **form}

        name = sanitize_text(form.get("name"), 200)
        if not name:
            raise ValidationFailed("File name is required", "name")

        work_order_id = as_text(form.get("work_order_id"))
        if existing is None or work_order_id != existing.work_order_id:
            self._require_work_order(work_order_id)

        now = self._now()
        updated = FileRecord(
            id=existing.id if existing else (as_text(form.get("id")) or generate_id("FILE")),
            work_order_id=work_order_id,
            name=name,
            mime_type=sanitize_text(form.get("mime_type"), 120),
            byte_size=int(_number(form, "byte_size")),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        return self._replace(updated) if existing is not None else self._insert(updated)

    def read_content(self, record_id: str) -> Optional[bytes]:
        """Attachment bytes, or None when the preview is unavailable."""
        self.require(record_id)
        if self.blobs is None:
            return None
        return self.blobs.get(record_id)

    def reassign(self, record_id: str, work_order_id: str) -> FileRecord:
        """Point a file (usually an orphan) at another work order."""
        record = self.require(record_id)
        self._require_work_order(work_order_id)
        return self._replace(replace(record, work_order_id=work_order_id, updated_at=self._now()))

    def delete(self, record_id: str) -> FileRecord:
        record = super().delete(record_id)
        if self.blobs is not None:
            self.blobs.delete(record_id)
        return record

    def for_work_order(self, work_order_id: str) -> List[FileRecord]:
        return [f for f in self._records if f.work_order_id == work_order_id]

    def _require_work_order(self, work_order_id: str):
        if not work_order_id:
            raise ValidationFailed("Select a work order", "work_order_id")
        if self.work_orders is None or self.work_orders.get(work_order_id) is None:
            raise PreconditionFailed(f"Work order {work_order_id} does not exist", work_order_id)


# =============================================================================
# CALENDAR EVENTS
# =============================================================================

class CalendarEventRepository(BaseRepository):
    collection = CALENDAR_EVENTS
    id_prefix = "EVT"
    record_type = CalendarEvent

    def upsert(self, record) -> CalendarEvent:
        form = self._form(record)
        existing = self.get(form.get("id"))
        if existing is not None:
            form = {**existing.to_dict(), **form}

        title = sanitize_text(form.get("title"), 120)
        if not title:
            raise ValidationFailed("Event title is required", "title")

        date_time = _timestamp_field(form, "date_time")
        if not date_time:
            raise ValidationFailed("Event date/time is required", "date_time")

        priority = form.get("priority") or CalendarPriority.NORMAL
        if not isinstance(priority, CalendarPriority):
            try:
                priority = CalendarPriority(priority)
            except ValueError:
                raise ValidationFailed(f"Unknown priority '{priority}'", "priority")

        now = self._now()
        event = CalendarEvent(
            id=existing.id if existing else (as_text(form.get("id")) or generate_id("EVT")),
            title=title,
            date_time=date_time,
            priority=priority,
            description=sanitize_text(form.get("description"), NOTES_MAX),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        return self._replace(event) if existing is not None else self._insert(event)

    def between(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        events = []
        for event in self._records:
            at = parse_timestamp(event.date_time)
            if at is not None and start <= at < end:
                events.append(event)
        return events
