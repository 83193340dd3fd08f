# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Head / subhead taxonomy for MIS Tracker.

The MIS statement is built on a fixed, two-level chart of heads. Each head
has:
- a letter code used for display ('A. Revenue', 'F. Channel & Fulfillment'),
- a type controlling which side of a ledger line is countable:
    * 'revenue' → credit-side amounts are counted,
    * 'expense' → debit-side amounts are counted,
    * 'ignore'  → amounts are tracked but never enter the P&L waterfall,
- an ordered tuple of permitted subheads.

This module also holds the static lookup table that tells the margin
calculator which heads/subheads feed each step of the waterfall.

This module exposes:
- HeadDef:          Definition of a single head.
- HEADS:            The ordered taxonomy.
- get_head():       Case-insensitive lookup by name or code.
- resolve_subhead(): Canonical subhead name for a head (case-insensitive).
- validate_pair():  Raise on an invalid head/subhead pairing.
"""

from dataclasses import dataclass
from typing import Optional

HEAD_TYPES: tuple[str, ...] = ("revenue", "expense", "ignore")

REVENUE = "Revenue"
RETURNS = "Returns"
DISCOUNTS = "Discounts"
TAXES = "Taxes"
COGM = "COGM"
CHANNEL_FULFILLMENT = "Channel & Fulfillment"
SALES_MARKETING = "Sales & Marketing"
PLATFORM_COSTS = "Platform Costs"
OPERATING_EXPENSES = "Operating Expenses"
NON_OPERATING = "Non-Operating"
EXCLUDE = "Exclude"
IGNORE = "Ignore"

RAW_MATERIALS_SUBHEAD = "Raw Materials & Inventory"
INTEREST_SUBHEAD = "Interest Expense"
DEPRECIATION_SUBHEAD = "Depreciation"
AMORTIZATION_SUBHEAD = "Amortization"
INCOME_TAX_SUBHEAD = "Income Tax"

SALES_CHANNELS: tuple[str, ...] = ("Website", "Amazon", "Blinkit", "Offline & OEM")


@dataclass(frozen=True)
class HeadDef:
    """Definition of a single MIS head.

    Attributes:
        code: Letter code used for display ordering ('A' .. 'J', 'X', 'Z').
        name: Canonical head name (e.g. 'Sales & Marketing').
        type: One of 'revenue', 'expense', 'ignore'.
        subheads: Ordered tuple of permitted subhead names.
    """

    code: str
    name: str
    type: str
    subheads: tuple[str, ...]

    @property
    def label(self) -> str:
        return f"{self.code}. {self.name}"

    @property
    def counts_in_margins(self) -> bool:
        return self.type != "ignore"


HEADS: tuple[HeadDef, ...] = (
    HeadDef("A", REVENUE, "revenue", SALES_CHANNELS),
    HeadDef("B", RETURNS, "expense", SALES_CHANNELS),
    HeadDef("C", DISCOUNTS, "expense", SALES_CHANNELS),
    HeadDef("D", TAXES, "expense", SALES_CHANNELS),
    HeadDef(
        "E",
        COGM,
        "expense",
        (
            RAW_MATERIALS_SUBHEAD,
            "Manufacturing Wages",
            "Contract Wages (Mfg)",
            "Inbound Transport",
            "Factory Rent",
            "Factory Electricity",
            "Factory Maintenance",
            "Job Work",
        ),
    ),
    HeadDef(
        "F",
        CHANNEL_FULFILLMENT,
        "expense",
        ("Amazon Fees", "Blinkit Fees", "D2C Fees"),
    ),
    HeadDef(
        "G",
        SALES_MARKETING,
        "expense",
        ("Facebook Ads", "Google Ads", "Amazon Ads", "Blinkit Ads", "Agency Fees"),
    ),
    HeadDef(
        "H",
        PLATFORM_COSTS,
        "expense",
        ("Shopify Subscription", "Wati Subscription", "Shopflo Subscription"),
    ),
    HeadDef(
        "I",
        OPERATING_EXPENSES,
        "expense",
        (
            "Salaries (Admin, Mgmt)",
            "Miscellaneous (Travel, Insurance)",
            "Legal & CA Expenses",
            "Platform Costs (CRM, Inventory Software)",
            "Administrative Expenses",
        ),
    ),
    HeadDef(
        "J",
        NON_OPERATING,
        "expense",
        (
            INTEREST_SUBHEAD,
            DEPRECIATION_SUBHEAD,
            AMORTIZATION_SUBHEAD,
            INCOME_TAX_SUBHEAD,
        ),
    ),
    HeadDef("X", EXCLUDE, "ignore", ("Personal Expenses", "Owner Withdrawals")),
    HeadDef(
        "Z",
        IGNORE,
        "ignore",
        ("GST Input/Output", "TDS", "Bank Transfers", "Inter-company"),
    ),
)

# Fast lookups: lowercase name / code / display label -> HeadDef
_BY_KEY: dict[str, HeadDef] = {}
for _h in HEADS:
    _BY_KEY[_h.name.lower()] = _h
    _BY_KEY[_h.code.lower()] = _h
    _BY_KEY[_h.label.lower()] = _h

HEAD_ORDER: dict[str, int] = {h.name: i for i, h in enumerate(HEADS)}

# Static waterfall membership. Head-level groups are deducted as a whole;
# Non-Operating is split at subhead level.
MARGIN_GROUPS: dict[str, tuple[str, ...]] = {
    "cogm": (COGM,),
    "channel_fulfillment": (CHANNEL_FULFILLMENT,),
    "sales_marketing": (SALES_MARKETING,),
    "platform_costs": (PLATFORM_COSTS,),
    "operating_expenses": (OPERATING_EXPENSES,),
}

NON_OPERATING_GROUPS: dict[str, tuple[str, ...]] = {
    "interest": (INTEREST_SUBHEAD,),
    "depreciation": (DEPRECIATION_SUBHEAD,),
    "amortization": (AMORTIZATION_SUBHEAD,),
    "income_tax": (INCOME_TAX_SUBHEAD,),
}


def find_head(key: Optional[str]) -> Optional[HeadDef]:
    """Return the HeadDef for a name, code or label, or None if unknown.

    Matching is case-insensitive: 'revenue', 'A' and 'A. Revenue' all
    resolve to the Revenue head.
    """
    if key is None:
        return None
    return _BY_KEY.get(str(key).strip().lower())


def get_head(key: str) -> HeadDef:
    """Like :func:`find_head` but raise ValueError for an unknown head."""
    head = find_head(key)
    if head is None:
        raise ValueError(f"Unknown MIS head: {key!r}")
    return head


def resolve_subhead(head: HeadDef, subhead: Optional[str]) -> Optional[str]:
    """Return the canonical spelling of ``subhead`` within ``head``.

    Returns None if the subhead is not permitted for this head.
    """
    if subhead is None:
        return None
    wanted = str(subhead).strip().lower()
    for s in head.subheads:
        if s.lower() == wanted:
            return s
    return None


def validate_pair(head: str, subhead: str) -> tuple[str, str]:
    """Validate a head/subhead pairing and return canonical names.

    Raises:
        ValueError: if the head is unknown or the subhead is not one of the
            head's permitted subheads.
    """
    head_def = get_head(head)
    canonical = resolve_subhead(head_def, subhead)
    if canonical is None:
        raise ValueError(
            f"Subhead {subhead!r} is not permitted for head {head_def.name!r}. "
            f"Expected one of: {', '.join(head_def.subheads)}."
        )
    return head_def.name, canonical


def is_valid_pair(head: str, subhead: str) -> bool:
    """Return True if ``head``/``subhead`` is a permitted pairing."""
    head_def = find_head(head)
    return head_def is not None and resolve_subhead(head_def, subhead) is not None
