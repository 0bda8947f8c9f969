"""
Technician Repository Tests

Test Categories:
- Validation and normalization of the technician form
- Duplicate detection through the repository
- Blacklist toggle
- Referential integrity on delete
- Assignment eligibility and search
"""

import pytest
from unittest.mock import patch

from datashapes import TECHNICIANS, Proposal, WorkOrder
from dispatch_errors import (
    DuplicateTechnician,
    ReasonRequired,
    RecordNotFound,
    ReferencedEntityExists,
    ValidationFailed,
)
from integrity import reference_counts, usage_by_technician
from repositories import TechnicianRepository, WorkOrderRepository


# =============================================================================
# VALIDATION
# =============================================================================

class TestTechnicianValidation:

    def test_create_normalizes_fields(self, workspace):
        """
        HAPPY PATH: text is trimmed, phone reduced to digits, timestamps stamped.
        """
        tech = workspace.technicians.upsert({
            "name": "  Sam   Ortiz ",
            "trade": "Plumbing",
            "phone": " +1 (555) 010-4000 ",
            "notes": "Prefers\tmornings",
        })

        assert tech.id.startswith("TECH-")
        assert tech.name == "Sam Ortiz"
        assert tech.phone == "+15550104000"
        assert tech.notes == "Prefers mornings"
        assert tech.created_at == tech.updated_at != ""

    @pytest.mark.parametrize("name", ["", " ", "A", None])
    def test_name_too_short(self, workspace, name):
        with pytest.raises(ValidationFailed) as exc_info:
            workspace.technicians.upsert({"name": name, "trade": "HVAC"})
        assert exc_info.value.field_name == "name"

    def test_trade_required(self, workspace):
        with pytest.raises(ValidationFailed) as exc_info:
            workspace.technicians.upsert({"name": "Sam Ortiz", "trade": ""})
        assert exc_info.value.field_name == "trade"

    def test_custom_trade(self, workspace):
        """
        HAPPY PATH: "Other (Custom)" stores the typed trade.
        """
        tech = workspace.technicians.upsert({
            "name": "Jo Kim", "trade": "Other (Custom)", "trade_other": "Pool repair",
        })
        assert tech.trade == "Other: Pool repair"

    def test_negative_counters_rejected(self, workspace):
        with pytest.raises(ValidationFailed):
            workspace.technicians.upsert({"name": "Jo Kim", "trade": "HVAC", "jobs_done": -1})

    @pytest.mark.parametrize("field_name, value", [
        ("jobs_done", "1e400"),
        ("jobs_done", "nan"),
        ("revenue_generated", float("inf")),
    ])
    def test_non_finite_counters_rejected(self, workspace, field_name, value):
        """
        EDGE: overflowing or NaN numbers are a validation failure, not a crash.
        """
        with pytest.raises(ValidationFailed) as exc:
            workspace.technicians.upsert({"name": "Big Number", "trade": "HVAC", field_name: value})

        assert exc.value.field_name == field_name
        assert len(workspace.technicians) == 0

    def test_edit_keeps_unspecified_fields(self, workspace, hvac_tech, clock):
        """
        HAPPY PATH: a partial form merges onto the stored record.
        """
        clock.advance(minutes=5)
        updated = workspace.technicians.upsert({"id": hvac_tech.id, "notes": "Has lift"})

        assert updated.name == "Dana Reyes"
        assert updated.city == "Tulsa"
        assert updated.notes == "Has lift"
        assert updated.created_at == hvac_tech.created_at
        assert updated.updated_at != hvac_tech.updated_at
        assert len(workspace.technicians) == 1, "Edit must not add a record"

    def test_newest_first(self, workspace, hvac_tech):
        second = workspace.technicians.upsert({"name": "Lee Park", "trade": "Electric"})

        assert [t.id for t in workspace.technicians.list()] == [second.id, hvac_tech.id]


# =============================================================================
# DUPLICATES
# =============================================================================

class TestDuplicateTechnicians:

    def test_same_name_and_phone(self, workspace, hvac_tech):
        """
        EDGE: formatting differences in name and phone still match.
        """
        with pytest.raises(DuplicateTechnician) as exc_info:
            workspace.technicians.upsert({"name": "dana  REYES", "trade": "Plumbing", "phone": "555-010-2000"})

        assert exc_info.value.existing_id == hvac_tech.id
        assert len(workspace.technicians) == 1

    def test_same_name_different_phone_allowed(self, workspace, hvac_tech):
        tech = workspace.technicians.upsert({"name": "Dana Reyes", "trade": "HVAC", "phone": "5559999999"})

        assert tech.id != hvac_tech.id

    def test_phoneless_match_on_trade_and_city(self, workspace):
        """
        EDGE: without phones, name + trade + city decide.
        """
        workspace.technicians.upsert({"name": "Ray Cole", "trade": "Roofing", "city": "Austin"})

        with pytest.raises(DuplicateTechnician):
            workspace.technicians.upsert({"name": "Ray Cole", "trade": "roofing", "city": " austin "})

        other_city = workspace.technicians.upsert({"name": "Ray Cole", "trade": "Roofing", "city": "Dallas"})
        assert other_city.city == "Dallas"

    def test_one_phone_missing_is_not_duplicate(self, workspace, hvac_tech):
        tech = workspace.technicians.upsert({"name": "Dana Reyes", "trade": "HVAC", "city": "Tulsa"})

        assert tech.id != hvac_tech.id

    def test_edit_does_not_match_itself(self, workspace, hvac_tech):
        updated = workspace.technicians.upsert({"id": hvac_tech.id, "phone": "(555) 010-2000", "state": "OK"})

        assert updated.state == "OK"

    def test_edit_into_another_record_rejected(self, workspace, hvac_tech):
        other = workspace.technicians.upsert({"name": "Lee Park", "trade": "HVAC", "phone": "5550103000"})

        with pytest.raises(DuplicateTechnician):
            workspace.technicians.upsert({"id": other.id, "name": "Dana Reyes", "phone": "5550102000"})


# =============================================================================
# BLACKLIST
# =============================================================================

class TestBlacklist:

    def test_blacklist_requires_reason(self, workspace, hvac_tech):
        """
        EDGE: empty or whitespace reason is refused and nothing changes.
        """
        for reason in ("", "   ", None):
            with pytest.raises(ReasonRequired):
                workspace.technicians.set_blacklist(hvac_tech.id, True, reason)

        assert workspace.technicians.get(hvac_tech.id).blacklisted is False

    def test_upsert_blacklisted_without_reason(self, workspace):
        with pytest.raises(ReasonRequired):
            workspace.technicians.upsert({"name": "Jo Kim", "trade": "HVAC", "blacklisted": True})

    def test_blacklist_and_clear(self, workspace, hvac_tech):
        """
        HAPPY PATH: blocking stores the reason, clearing drops it.
        """
        blocked = workspace.technicians.set_blacklist(hvac_tech.id, True, "No-show twice")
        assert blocked.blacklisted is True
        assert blocked.blacklist_reason == "No-show twice"

        cleared = workspace.technicians.set_blacklist(hvac_tech.id, False, "ignored")
        assert cleared.blacklisted is False
        assert cleared.blacklist_reason == ""

    def test_reapplying_same_state_is_noop(self, workspace, hvac_tech, clock):
        """
        EDGE: blacklisting twice with the same reason does not rewrite the record.
        """
        first = workspace.technicians.set_blacklist(hvac_tech.id, True, "No-show twice")
        clock.advance(minutes=10)

        with patch.object(workspace.technicians, "_commit", wraps=workspace.technicians._commit) as commit:
            second = workspace.technicians.set_blacklist(hvac_tech.id, True, "No-show twice")

        assert second.updated_at == first.updated_at
        commit.assert_not_called()

    def test_unknown_technician(self, workspace):
        with pytest.raises(RecordNotFound):
            workspace.technicians.set_blacklist("TECH-missing", True, "x")

    def test_blacklisted_hidden_from_assignment(self, workspace, hvac_tech):
        workspace.technicians.set_blacklist(hvac_tech.id, True, "No-show twice")

        assert workspace.technicians.assignable("HVAC") == []
        assert workspace.technicians.search("dana", include_blacklisted=False) == []
        assert len(workspace.technicians.search("dana")) == 1

    def test_stats(self, workspace, hvac_tech):
        workspace.technicians.upsert({"name": "Lee Park", "trade": "HVAC", "phone": "5550103000",
                                      "jobs_done": 4, "revenue_generated": "1200.50"})
        workspace.technicians.set_blacklist(hvac_tech.id, True, "No-show twice")

        stats = workspace.technicians.stats()
        assert stats["total"] == 2
        assert stats["blacklisted"] == 1
        assert stats["active"] == 1
        assert stats["jobs_done"] == 4
        assert stats["revenue_generated"] == 1200.5


# =============================================================================
# DELETE GUARD
# =============================================================================

class TestDeleteGuard:

    def test_unreferenced_technician_deleted(self, workspace, hvac_tech):
        """
        HAPPY PATH: zero references, delete succeeds.
        """
        workspace.technicians.delete(hvac_tech.id)

        assert workspace.technicians.get(hvac_tech.id) is None
        assert len(workspace.technicians) == 0

    def test_work_order_reference_blocks_delete(self, workspace, hvac_tech, completed_work_order):
        with pytest.raises(ReferencedEntityExists) as exc_info:
            workspace.technicians.delete(hvac_tech.id)

        assert exc_info.value.counts.to_dict() == {
            "work_order_refs": 1, "cost_request_refs": 0, "proposal_refs": 0,
        }

    def test_proposal_helper_blocks_delete(self, workspace, hvac_tech):
        """
        EDGE: being a proposal's helper is a reference too.
        """
        lead = workspace.technicians.upsert({"name": "Lee Park", "trade": "HVAC", "phone": "5550103000"})
        wo = workspace.work_orders.upsert({"client": "Acme", "trade": "HVAC"})
        workspace.proposals.create({
            "work_order_id": wo.id, "technician_id": lead.id, "helper_id": hvac_tech.id,
        })

        with pytest.raises(ReferencedEntityExists) as exc_info:
            workspace.technicians.delete(hvac_tech.id)
        assert exc_info.value.counts.proposal_refs == 1

    def test_unassign_then_delete(self, workspace, hvac_tech, completed_work_order):
        """
        HAPPY PATH: removing the last reference makes delete possible.
        """
        workspace.work_orders.unassign_technician(completed_work_order.id)
        workspace.technicians.delete(hvac_tech.id)

        assert workspace.technicians.get(hvac_tech.id) is None

    def test_unknown_technician(self, workspace):
        with pytest.raises(RecordNotFound):
            workspace.technicians.delete("TECH-missing")

    def test_standalone_repository_checks_persisted_references(self, collection_store):
        """
        EDGE: a repository used outside a workspace still refuses to delete a referenced technician.
        """
        techs = TechnicianRepository(collection_store)
        work_orders = WorkOrderRepository(collection_store, technicians=techs)
        tech = techs.upsert({"name": "Dana Reyes", "trade": "HVAC"})
        work_orders.upsert({"client": "Acme Storage", "trade": "HVAC", "technician_id": tech.id})

        with pytest.raises(ReferencedEntityExists) as exc:
            techs.delete(tech.id)

        assert exc.value.counts.work_order_refs == 1
        assert techs.get(tech.id) is not None
        assert len(collection_store.load(TECHNICIANS)) == 1, "Stored technician must survive"

    def test_standalone_repository_deletes_unreferenced(self, collection_store):
        techs = TechnicianRepository(collection_store)
        tech = techs.upsert({"name": "Dana Reyes", "trade": "HVAC"})

        techs.delete(tech.id)

        assert collection_store.load(TECHNICIANS) == []


# =============================================================================
# REFERENCE COUNTING (pure)
# =============================================================================

class TestReferenceCounts:

    def test_same_technician_as_lead_and_helper_counts_once(self):
        """
        EDGE: a proposal pointing at one technician twice is one reference.
        """
        proposals = [Proposal(id="P-1", technician_id="T-1", helper_id="T-1")]

        counts = reference_counts("T-1", [], [], proposals)
        assert counts.proposal_refs == 1
        assert usage_by_technician([], [], proposals)["T-1"].proposal_refs == 1

    def test_counts_match_usage(self):
        work_orders = [WorkOrder(id="W-1", technician_id="T-1"), WorkOrder(id="W-2", technician_id="T-2")]
        proposals = [Proposal(id="P-1", technician_id="T-2", helper_id="T-1")]

        usage = usage_by_technician(work_orders, [], proposals)
        for tech_id in ("T-1", "T-2"):
            assert usage[tech_id] == reference_counts(tech_id, work_orders, [], proposals), tech_id

    def test_empty_id_is_clear(self):
        assert reference_counts("", [WorkOrder(id="W-1")], [], []).is_clear

    def test_usage_counts_include_unused(self, workspace, hvac_tech, completed_work_order):
        idle = workspace.technicians.upsert({"name": "Lee Park", "trade": "HVAC", "phone": "5550103000"})

        usage = workspace.usage_counts()
        assert usage[hvac_tech.id].work_order_refs == 1
        assert usage[idle.id].total == 0

    def test_dangling_reference_reported(self, workspace):
        """
        EDGE: a work order still pointing at a removed technician is surfaced, not fatal.
        """
        workspace.store.save("workorders", [{"id": "WO-1", "client": "Acme", "technician_id": "T-gone"}])
        workspace.refresh(["workorders"])

        dangling = workspace.integrity.dangling_technician_refs(t.id for t in workspace.technicians.list())
        assert list(dangling) == ["T-gone"]
        assert dangling["T-gone"].work_order_refs == 1
