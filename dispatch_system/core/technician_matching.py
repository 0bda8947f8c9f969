"""
Technician matching helpers.

Pure functions: text cleanup for the technician form, de-duplication and
trade eligibility. No store access, so they are unit-tested on their own.

Duplicate rule:
    - both phones present: same name and same phone
    - both phones absent: same name, trade and city
    - one phone present, one absent: never a duplicate
"""

import re
from typing import Any, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")
_PHONE_CHARS = re.compile(r"[^\d+]")

# Form field limits
NAME_MAX = 80
TRADE_MAX = 80
PHONE_MAX = 30
ADDRESS_MAX = 120
CITY_MAX = 80
STATE_MAX = 40
FULL_ADDRESS_MAX = 200
NOTES_MAX = 600
REASON_MAX = 300

OTHER_TRADE_OPTION = "Other (Custom)"


def sanitize_text(value: Any, max_len: int = 200) -> str:
    """Strip control characters, collapse whitespace, trim and cap length."""
    if value is None:
        return ""
    text = _CONTROL_CHARS.sub(" ", str(value))
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:max_len].rstrip()


def normalize_phone(value: Any) -> str:
    """Keep a leading-style '+' and digits only; a lone '+' is empty."""
    cleaned = _PHONE_CHARS.sub("", sanitize_text(value, PHONE_MAX * 2))
    if cleaned == "+":
        return ""
    # '+' only counts as a prefix
    if "+" in cleaned[1:]:
        cleaned = cleaned[0] + cleaned[1:].replace("+", "")
    return cleaned[:PHONE_MAX]


def normalize_key(value: Any) -> str:
    """Comparison key: sanitized and lowercased."""
    return sanitize_text(value, 200).lower()


def resolve_trade(trade: Any, trade_other: Any = "") -> str:
    """Map the 'Other (Custom)' option onto 'Other: <text>'."""
    trade = sanitize_text(trade, TRADE_MAX)
    if trade != OTHER_TRADE_OPTION:
        return trade
    custom = sanitize_text(trade_other, TRADE_MAX - len("Other: "))
    return f"Other: {custom}" if custom else "Other"


def _field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name, "")
    return getattr(record, name, "")


def is_duplicate_technician(a: Any, b: Any) -> bool:
    """
    True when two technician records describe the same person.

    Accepts Technician objects or plain dicts with name/phone/trade/city.
    """
    name_a, name_b = normalize_key(_field(a, "name")), normalize_key(_field(b, "name"))
    if not name_a or name_a != name_b:
        return False

    phone_a, phone_b = normalize_phone(_field(a, "phone")), normalize_phone(_field(b, "phone"))
    if phone_a and phone_b:
        return phone_a == phone_b
    if phone_a or phone_b:
        return False

    return (normalize_key(_field(a, "trade")) == normalize_key(_field(b, "trade"))
            and normalize_key(_field(a, "city")) == normalize_key(_field(b, "city")))


def find_duplicate(candidate: Any, technicians, ignore_id: Optional[str] = None):
    """First existing technician matching candidate, skipping ignore_id."""
    for tech in technicians:
        if ignore_id and _field(tech, "id") == ignore_id:
            continue
        if is_duplicate_technician(candidate, tech):
            return tech
    return None


def is_eligible_for_trade(tech_trade: Any, work_order_trade: Any) -> bool:
    """Whether a technician's trade may be assigned to a work order's trade."""
    tech = normalize_key(tech_trade)
    wo = normalize_key(work_order_trade)

    if not tech or not wo:
        return True
    if tech == "all trades" or tech.startswith("other"):
        return True
    if wo == "general" and tech == "handyman":
        return True
    return tech == wo
