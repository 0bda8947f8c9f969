"""
Proposal pricing.

calculate_totals() produces the snapshot stored on a Proposal at creation.
The snapshot is never recomputed afterwards, even if these formulas or the
configured defaults change.

    incurred          = trip fee + assessment fee
    tech/helper labor = hours x rate
    repair            = tech labor + helper labor
    parts             = sum(qty x unit)
    grand_before_tax  = pricing cost x markup multiplier
    tax_amount        = grand_before_tax x tax_pct / 100
    grand_with_tax    = grand_before_tax + tax_amount
"""

from typing import Iterable

from datashapes import (
    IncurredCharges,
    PartLine,
    PricingInputs,
    ProposalTotals,
    RepairLabor,
)
from dispatch_config import DispatchConfig


def _money(value: float) -> float:
    return round(value, 2)


def default_trip_fee(emergency: bool) -> float:
    return DispatchConfig.EMERGENCY_TRIP_FEE if emergency else DispatchConfig.DEFAULT_TRIP_FEE


def default_incurred(emergency: bool = False) -> IncurredCharges:
    return IncurredCharges(
        emergency=emergency,
        trip_fee=default_trip_fee(emergency),
        assessment_fee=DispatchConfig.DEFAULT_ASSESSMENT_FEE,
    )


def default_repair() -> RepairLabor:
    return RepairLabor(
        tech_rate=DispatchConfig.DEFAULT_TECH_RATE,
        helper_rate=DispatchConfig.DEFAULT_HELPER_RATE,
    )


def default_pricing(cost: float = 0.0) -> PricingInputs:
    return PricingInputs(
        cost=cost,
        multiplier=DispatchConfig.DEFAULT_MARKUP,
        tax_pct=DispatchConfig.DEFAULT_TAX_PCT,
    )


def calculate_totals(incurred: IncurredCharges, repair: RepairLabor,
                     parts: Iterable[PartLine], pricing: PricingInputs) -> ProposalTotals:
    incurred_total = incurred.trip_fee + incurred.assessment_fee
    tech_labor = repair.tech_hours * repair.tech_rate
    helper_labor = repair.helper_hours * repair.helper_rate
    parts_total = sum(p.qty * p.unit for p in parts)

    grand_before_tax = pricing.cost * pricing.multiplier
    tax_amount = grand_before_tax * pricing.tax_pct / 100

    return ProposalTotals(
        incurred=_money(incurred_total),
        tech_labor=_money(tech_labor),
        helper_labor=_money(helper_labor),
        repair=_money(tech_labor + helper_labor),
        parts=_money(parts_total),
        grand_before_tax=_money(grand_before_tax),
        tax_amount=_money(tax_amount),
        grand_with_tax=_money(grand_before_tax + tax_amount),
    )
