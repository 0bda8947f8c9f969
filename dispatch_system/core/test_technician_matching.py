#!/usr/bin/env python3
"""
test_technician_matching.py - Unit tests for the technician form helpers

Tests:
1. Text and phone cleanup
2. Custom trade resolution
3. Duplicate detection (both phones, no phones, one phone)
4. Trade eligibility for assignment
"""

import pytest

from technician_matching import (
    PHONE_MAX,
    find_duplicate,
    is_duplicate_technician,
    is_eligible_for_trade,
    normalize_phone,
    resolve_trade,
    sanitize_text,
)


def test_sanitize_text():
    """Control characters become spaces, whitespace collapses, length is capped."""
    assert sanitize_text("  Dana\x00\tReyes \n") == "Dana Reyes"
    assert sanitize_text(None) == ""
    assert sanitize_text(4021) == "4021"
    assert sanitize_text("abcdef", max_len=3) == "abc"
    assert sanitize_text("ab   cd", max_len=3) == "ab"


def test_normalize_phone():
    assert normalize_phone("(555) 010-2000") == "5550102000"
    assert normalize_phone("+1 555 010 2000") == "+15550102000"
    assert normalize_phone("+") == ""
    assert normalize_phone("555+010") == "555010"
    assert normalize_phone("ext. none") == ""
    assert len(normalize_phone("9" * 80)) == PHONE_MAX


def test_resolve_trade():
    assert resolve_trade(" HVAC ") == "HVAC"
    assert resolve_trade("Other (Custom)", "Pool service") == "Other: Pool service"
    assert resolve_trade("Other (Custom)", "   ") == "Other"
    assert resolve_trade("Other (Custom)") == "Other"


class TestDuplicates:

    def test_both_phones_compare_name_and_phone(self):
        a = {"name": "Dana Reyes", "phone": "(555) 010-2000", "trade": "HVAC", "city": "Tulsa"}
        b = {"name": "dana  reyes", "phone": "555-010-2000", "trade": "Plumbing", "city": "Austin"}

        assert is_duplicate_technician(a, b) is True, "Trade and city are ignored when phones match"
        assert is_duplicate_technician(a, dict(b, phone="5550102001")) is False

    def test_no_phones_compare_trade_and_city(self):
        a = {"name": "Dana Reyes", "trade": "HVAC", "city": "Tulsa"}

        assert is_duplicate_technician(a, {"name": "Dana Reyes", "trade": "hvac", "city": "TULSA"}) is True
        assert is_duplicate_technician(a, {"name": "Dana Reyes", "trade": "HVAC", "city": "Austin"}) is False

    def test_one_phone_is_never_duplicate(self):
        a = {"name": "Dana Reyes", "phone": "5550102000", "trade": "HVAC", "city": "Tulsa"}
        b = {"name": "Dana Reyes", "phone": "", "trade": "HVAC", "city": "Tulsa"}

        assert is_duplicate_technician(a, b) is False

    def test_blank_names_never_match(self):
        assert is_duplicate_technician({"name": ""}, {"name": ""}) is False

    def test_find_duplicate_ignores_self(self):
        existing = [{"id": "TECH-1", "name": "Dana Reyes", "phone": "5550102000"}]
        candidate = {"name": "Dana Reyes", "phone": "555 010 2000"}

        assert find_duplicate(candidate, existing)["id"] == "TECH-1"
        assert find_duplicate(candidate, existing, ignore_id="TECH-1") is None


@pytest.mark.parametrize("tech_trade, wo_trade, eligible", [
    ("HVAC", "HVAC", True),
    ("hvac", "HVAC", True),
    ("Plumbing", "HVAC", False),
    ("All Trades", "Electric", True),
    ("Other: Pool service", "Electric", True),
    ("Other", "Electric", True),
    ("Handyman", "General", True),
    ("Handyman", "Electric", False),
    ("General", "Handyman", False),
    ("", "HVAC", True),
    ("HVAC", "", True),
])
def test_trade_eligibility(tech_trade, wo_trade, eligible):
    assert is_eligible_for_trade(tech_trade, wo_trade) is eligible
