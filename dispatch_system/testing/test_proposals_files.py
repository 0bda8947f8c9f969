"""
Proposal and File Record Tests

Test Categories:
- Proposal pricing snapshot (defaults, emergency fee, totals)
- Proposal technician / helper references
- Snapshot immutability
- File attach, preview and orphan handling
"""

import pytest
from unittest.mock import patch

from datashapes import IncurredCharges, PartLine, PricingInputs, RepairLabor
from dispatch_config import DispatchConfig
from dispatch_errors import PreconditionFailed, RecordNotFound, ValidationFailed
from proposal_pricing import calculate_totals, default_incurred


# =============================================================================
# PRICING (pure)
# =============================================================================

class TestCalculateTotals:

    def test_totals_formula(self):
        """
        HAPPY PATH: every line of the snapshot follows the pricing formula.
        """
        totals = calculate_totals(
            IncurredCharges(trip_fee=75, assessment_fee=75),
            RepairLabor(tech_hours=2, tech_rate=75, helper_hours=1.5, helper_rate=65),
            [PartLine(name="Capacitor", qty=2, unit=12.5), PartLine(name="Contactor", qty=1, unit=30)],
            PricingInputs(cost=400, multiplier=1.75, tax_pct=8.25),
        )

        assert totals.incurred == 150.0
        assert totals.tech_labor == 150.0
        assert totals.helper_labor == 97.5
        assert totals.repair == 247.5
        assert totals.parts == 55.0
        assert totals.grand_before_tax == 700.0
        assert totals.tax_amount == 57.75
        assert totals.grand_with_tax == 757.75

    def test_rounding_to_cents(self):
        totals = calculate_totals(IncurredCharges(), RepairLabor(), [], PricingInputs(cost=10.01, multiplier=1.333))

        assert totals.grand_before_tax == 13.34

    def test_emergency_trip_fee(self):
        assert default_incurred(True).trip_fee == DispatchConfig.EMERGENCY_TRIP_FEE
        assert default_incurred(False).trip_fee == DispatchConfig.DEFAULT_TRIP_FEE


# =============================================================================
# PROPOSAL CREATION
# =============================================================================

class TestProposalCreate:

    def test_defaults_and_assigned_technician(self, workspace, hvac_tech, completed_work_order):
        """
        HAPPY PATH: empty pricing takes configured defaults; technician comes from the work order.
        """
        proposal = workspace.proposals.create({
            "work_order_id": completed_work_order.id,
            "scope_text": "Replace run capacitor",
            "pricing": {"cost": 100},
        })

        assert proposal.id.startswith("PROP-")
        assert proposal.technician_id == hvac_tech.id
        assert proposal.technician_name == "Dana Reyes"
        assert proposal.wo_number == "WO-1001"
        assert proposal.client == "Acme Storage"
        assert proposal.incurred.trip_fee == DispatchConfig.DEFAULT_TRIP_FEE
        assert proposal.repair.tech_rate == DispatchConfig.DEFAULT_TECH_RATE
        assert proposal.pricing.multiplier == DispatchConfig.DEFAULT_MARKUP
        assert proposal.totals.grand_before_tax == round(100 * DispatchConfig.DEFAULT_MARKUP, 2)

    def test_emergency_flag_uses_emergency_fee(self, workspace, completed_work_order):
        proposal = workspace.proposals.create({"work_order_id": completed_work_order.id, "emergency": True})

        assert proposal.incurred.emergency is True
        assert proposal.incurred.trip_fee == DispatchConfig.EMERGENCY_TRIP_FEE

    def test_explicit_inputs(self, workspace, completed_work_order):
        proposal = workspace.proposals.create({
            "work_order_id": completed_work_order.id,
            "incurred": {"trip_fee": 90},
            "repair": {"tech_hours": 3},
            "parts": [{"name": "Coil", "qty": 1, "unit": 220}, {"name": "", "qty": 0, "unit": 0}],
            "pricing": {"cost": 500, "tax_pct": 10},
        })

        assert proposal.incurred.trip_fee == 90.0
        assert proposal.incurred.assessment_fee == DispatchConfig.DEFAULT_ASSESSMENT_FEE
        assert proposal.totals.tech_labor == 3 * DispatchConfig.DEFAULT_TECH_RATE
        assert [p.name for p in proposal.parts] == ["Coil"], "Blank part rows are dropped"
        assert proposal.totals.tax_amount == round(500 * DispatchConfig.DEFAULT_MARKUP * 0.10, 2)

    def test_helper_reference(self, workspace, hvac_tech, completed_work_order):
        helper = workspace.technicians.upsert({"name": "Lee Park", "trade": "HVAC", "phone": "5550103000"})

        proposal = workspace.proposals.create({
            "work_order_id": completed_work_order.id, "helper_id": helper.id,
        })

        assert proposal.helper_id == helper.id
        assert proposal.helper_name == "Lee Park"
        assert proposal.referenced_technician_ids() == {hvac_tech.id, helper.id}

    def test_helper_must_differ(self, workspace, hvac_tech, completed_work_order):
        """
        EDGE: the same person cannot be both technician and helper.
        """
        with pytest.raises(ValidationFailed):
            workspace.proposals.create({
                "work_order_id": completed_work_order.id,
                "technician_id": hvac_tech.id,
                "helper_id": hvac_tech.id,
            })

    def test_blacklisted_helper_refused(self, workspace, completed_work_order):
        helper = workspace.technicians.upsert({"name": "Lee Park", "trade": "HVAC", "phone": "5550103000"})
        workspace.technicians.set_blacklist(helper.id, True, "Unsafe ladder use")

        with pytest.raises(PreconditionFailed):
            workspace.proposals.create({"work_order_id": completed_work_order.id, "helper_id": helper.id})

    def test_blacklisted_assignee_not_defaulted(self, workspace, hvac_tech, completed_work_order):
        """
        EDGE: a blacklisted assignee is left off rather than copied into a new proposal.
        """
        workspace.technicians.set_blacklist(hvac_tech.id, True, "No-show twice")

        proposal = workspace.proposals.create({"work_order_id": completed_work_order.id})
        assert proposal.technician_id == ""

    def test_explicit_blank_technician(self, workspace, completed_work_order):
        proposal = workspace.proposals.create({"work_order_id": completed_work_order.id, "technician_id": ""})

        assert proposal.technician_id == ""

    def test_work_order_required(self, workspace):
        with pytest.raises(ValidationFailed):
            workspace.proposals.create({"scope_text": "x"})
        with pytest.raises(PreconditionFailed):
            workspace.proposals.create({"work_order_id": "WO-missing"})

    @pytest.mark.parametrize("form", [
        {"pricing": {"cost": -1}},
        {"pricing": {"multiplier": 0}},
        {"pricing": {"tax_pct": 120}},
        {"repair": {"tech_hours": -2}},
        {"parts": [{"name": "Coil", "qty": -1, "unit": 5}]},
        {"parts": "Coil"},
        {"pricing": 5},
    ])
    def test_invalid_inputs(self, workspace, completed_work_order, form):
        """
        EDGE: negative amounts and malformed sections are refused before pricing.
        """
        with pytest.raises(ValidationFailed):
            workspace.proposals.create({"work_order_id": completed_work_order.id, **form})
        assert len(workspace.proposals) == 0


# =============================================================================
# SNAPSHOT IMMUTABILITY
# =============================================================================

class TestProposalSnapshot:

    @pytest.fixture
    def proposal(self, workspace, completed_work_order):
        return workspace.proposals.create({
            "work_order_id": completed_work_order.id,
            "scope_text": "Replace run capacitor",
            "pricing": {"cost": 200},
        })

    def test_scope_text_editable(self, workspace, proposal):
        updated = workspace.proposals.upsert({"id": proposal.id, "scope_text": "Replace capacitor and contactor"})

        assert updated.scope_text == "Replace capacitor and contactor"
        assert updated.totals == proposal.totals

    def test_resubmitting_whole_record_is_allowed(self, workspace, proposal):
        """
        HAPPY PATH: an unchanged snapshot passes through an edit.
        """
        form = proposal.to_dict()
        form["scope_text"] = "Updated scope"

        assert workspace.proposals.upsert(form).scope_text == "Updated scope"

    @pytest.mark.parametrize("change", [
        {"pricing": {"cost": 999, "multiplier": 1.75, "tax_pct": 0}},
        {"totals": {"grand_with_tax": 1}},
        {"parts": [{"name": "Coil", "qty": 1, "unit": 1}]},
    ])
    def test_priced_fields_frozen(self, workspace, proposal, change):
        """
        EDGE: pricing inputs and totals cannot be edited in place.
        """
        with pytest.raises(ValidationFailed):
            workspace.proposals.upsert({"id": proposal.id, **change})

        assert workspace.proposals.get(proposal.id).totals == proposal.totals

    def test_totals_survive_default_changes(self, workspace, make_workspace, proposal):
        """
        EDGE: later pricing defaults do not touch stored totals.
        """
        with patch.object(DispatchConfig, "DEFAULT_MARKUP", 3.0):
            peer = make_workspace("INST-peer")

        assert peer.proposals.get(proposal.id).totals == proposal.totals

    def test_for_work_order(self, workspace, proposal, completed_work_order):
        assert workspace.proposals.for_work_order(completed_work_order.id) == [proposal]
        assert workspace.proposals.for_work_order("WO-other") == []


# =============================================================================
# FILE RECORDS
# =============================================================================

class TestFileRecords:

    def test_attach_and_read(self, workspace, completed_work_order):
        """
        HAPPY PATH: bytes go to the blob store, metadata to the files collection.
        """
        data = b"\x89PNG\r\n\x1a\nfake image"
        record = workspace.files.attach(completed_work_order.id, "site.png", "image/png", data)

        assert record.byte_size == len(data)
        assert record.mime_type == "image/png"
        assert workspace.files.read_content(record.id) == data
        assert workspace.files.for_work_order(completed_work_order.id) == [record]

    def test_attach_requires_existing_work_order(self, workspace):
        with pytest.raises(ValidationFailed):
            workspace.files.attach("", "a.txt", "text/plain", b"x")
        with pytest.raises(PreconditionFailed):
            workspace.files.attach("WO-missing", "a.txt", "text/plain", b"x")

    def test_attach_requires_bytes(self, workspace, completed_work_order):
        with pytest.raises(ValidationFailed):
            workspace.files.attach(completed_work_order.id, "a.txt", "text/plain", "not bytes")

    def test_failed_blob_write_stores_nothing(self, workspace, completed_work_order):
        """
        EDGE: when the blob cannot be written no metadata is saved.
        """
        with patch.object(workspace.redis, "put_blob", return_value=False):
            with pytest.raises(PreconditionFailed):
                workspace.files.attach(completed_work_order.id, "a.txt", "text/plain", b"x")

        assert len(workspace.files) == 0
        assert "blob_store" in workspace.error_handler.get_error_summary()["categories_with_errors"]

    def test_missing_blob_is_preview_unavailable(self, workspace, completed_work_order):
        """
        EDGE: metadata without bytes reads as None, not an exception.
        """
        record = workspace.files.attach(completed_work_order.id, "a.txt", "text/plain", b"hello")
        workspace.redis.delete_blob(record.id)

        assert workspace.files.read_content(record.id) is None

    def test_delete_removes_blob(self, workspace, completed_work_order):
        record = workspace.files.attach(completed_work_order.id, "a.txt", "text/plain", b"hello")
        workspace.files.delete(record.id)

        assert workspace.files.get(record.id) is None
        assert workspace.redis.get_blob(record.id) is None
        with pytest.raises(RecordNotFound):
            workspace.files.read_content(record.id)

    def test_orphan_surfaced_not_deleted(self, workspace, completed_work_order):
        """
        EDGE: deleting a work order leaves its files as orphans.
        """
        record = workspace.files.attach(completed_work_order.id, "a.txt", "text/plain", b"hello")
        workspace.work_orders.delete(completed_work_order.id)

        assert workspace.files.get(record.id) is not None
        assert [f.id for f in workspace.integrity.orphan_files()] == [record.id]
        assert workspace.dashboard_counters().orphan_files == 1
        assert workspace.files.read_content(record.id) == b"hello"

    def test_reassign_orphan(self, workspace, completed_work_order):
        record = workspace.files.attach(completed_work_order.id, "a.txt", "text/plain", b"hello")
        workspace.work_orders.delete(completed_work_order.id)
        new_wo = workspace.work_orders.upsert({"client": "Birch", "trade": "Plumbing"})

        moved = workspace.files.reassign(record.id, new_wo.id)

        assert moved.work_order_id == new_wo.id
        assert workspace.integrity.orphan_files() == []

    def test_metadata_upsert(self, workspace, completed_work_order):
        record = workspace.files.upsert({
            "work_order_id": completed_work_order.id, "name": "invoice.pdf", "type": "application/pdf", "size": 1024,
        })

        assert record.mime_type == "application/pdf"
        assert record.byte_size == 1024

        renamed = workspace.files.upsert({"id": record.id, "name": "invoice-final.pdf"})
        assert renamed.name == "invoice-final.pdf"
        assert renamed.byte_size == 1024

    def test_metadata_size_must_be_finite(self, workspace, completed_work_order):
        """
        EDGE: an overflowing size is refused instead of crashing the int conversion.
        """
        with pytest.raises(ValidationFailed) as exc:
            workspace.files.upsert({
                "work_order_id": completed_work_order.id, "name": "huge.bin", "size": "1e400",
            })

        assert exc.value.field_name == "byte_size"
        assert workspace.files.list() == []
