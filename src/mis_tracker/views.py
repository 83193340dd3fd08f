# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for MIS Tracker.

This module turns monthly or aggregated records into pandas DataFrames
ready for display or CSV export. It performs no computation of its own
beyond rounding: every amount comes from the record's computed block or
margin waterfall.

The MIS statement has three levels:

- level 0: waterfall lines (Gross Revenue, Net Revenue, COGM, Gross Margin,
           CM1, CM2, CM3, EBITDA, EBT, Net Income),
- level 1: deduction heads ('B. Returns', 'G. Sales & Marketing', ...),
- level 2: subheads under each head.

Views:

- summary:  level 0 only,
- heads:    levels 0-1,
- detailed: all levels.
"""

from collections.abc import Iterable
from typing import Union

import pandas as pd

from .aggregation import AggregatedRangeRecord
from .heads import (
    AMORTIZATION_SUBHEAD,
    COGM,
    DEPRECIATION_SUBHEAD,
    HEADS,
    INCOME_TAX_SUBHEAD,
    INTEREST_SUBHEAD,
    NON_OPERATING,
    RAW_MATERIALS_SUBHEAD,
    REVENUE,
    get_head,
)
from .margins import MarginWaterfall, percent_of
from .periods import month_label
from .records import MonthAvailability, MonthlyMISRecord, UnclassifiedEntry

StatementSource = Union[MonthlyMISRecord, AggregatedRangeRecord]

STATEMENT_COLUMNS = ["display_order", "key", "level", "name", "amount", "percent"]

# Contribution steps: (line key, line label, deducted head, deduction field)
_STEPS: tuple[tuple[str, str, str, str], ...] = (
    ("cm1", "CM1", "Channel & Fulfillment", "channel_fulfillment"),
    ("cm2", "CM2", "Sales & Marketing", "sales_marketing"),
    ("cm3", "CM3", "Platform Costs", "platform_costs"),
    ("ebitda", "EBITDA", "Operating Expenses", "operating_expenses"),
)


def _figures(
    source: StatementSource,
) -> tuple[MarginWaterfall, dict[str, dict[str, float]], bool]:
    if isinstance(source, MonthlyMISRecord):
        c = source.computed
        return c.margins, c.subhead_totals, c.has_stock_data
    return source.margins, source.subhead_totals, source.has_stock_data


def build_statement(source: StatementSource, decimals: int = 2) -> pd.DataFrame:
    """
    Build the MIS statement of a monthly or aggregated record.

    Returns a DataFrame with the columns:
        - display_order : 10, 20, 30, ...
        - key           : stable line identifier ('net_revenue', 'head:COGM',
                          'sub:COGM:Job Work', ...)
        - level         : 0, 1 or 2 (see module docstring)
        - name          : display label
        - amount        : value rounded to ``decimals``
        - percent       : amount as a percentage of net revenue
    """
    m, subhead_totals, has_stock = _figures(source)
    rows: list[tuple[str, int, str, float]] = []

    def subheads(head: str, skip: tuple[str, ...] = ()) -> None:
        for subhead, value in subhead_totals.get(head, {}).items():
            if subhead in skip:
                continue
            rows.append((f"sub:{head}:{subhead}", 2, subhead, value))

    def head_line(head: str, amount: float) -> None:
        rows.append((f"head:{head}", 1, get_head(head).label, amount))

    rows.append(("gross_revenue", 0, "Gross Revenue", m.gross_revenue))
    subheads(REVENUE)
    for head, amount in (
        ("Returns", m.returns),
        ("Discounts", m.discounts),
        ("Taxes", m.taxes),
    ):
        head_line(head, amount)
        subheads(head)
    rows.append(("net_revenue", 0, "Net Revenue", m.net_revenue))

    rows.append(("cogm", 0, "COGM", m.cogm))
    rm_label = "Raw material cost (stock)" if has_stock else RAW_MATERIALS_SUBHEAD
    rows.append((f"sub:{COGM}:{RAW_MATERIALS_SUBHEAD}", 2, rm_label, m.rm_cost))
    subheads(COGM, skip=(RAW_MATERIALS_SUBHEAD,))
    rows.append(("gross_margin", 0, "Gross Margin", m.gross_margin))

    values = m.as_dict()
    for key, label, head, deduction in _STEPS:
        head_line(head, values[deduction])
        subheads(head)
        rows.append((key, 0, label, values[key]))

    head_line(NON_OPERATING, m.total_ida)
    for subhead, amount in (
        (INTEREST_SUBHEAD, m.interest),
        (DEPRECIATION_SUBHEAD, m.depreciation),
        (AMORTIZATION_SUBHEAD, m.amortization),
    ):
        rows.append((f"sub:{NON_OPERATING}:{subhead}", 2, subhead, amount))
    rows.append(("ebt", 0, "EBT", m.ebt))

    rows.append(
        (f"sub:{NON_OPERATING}:{INCOME_TAX_SUBHEAD}", 1, INCOME_TAX_SUBHEAD, m.income_tax)
    )
    rows.append(("net_income", 0, "Net Income", m.net_income))

    df = pd.DataFrame(
        [
            {
                "display_order": (i + 1) * 10,
                "key": key,
                "level": level,
                "name": name,
                "amount": round(float(amount), decimals),
                "percent": round(percent_of(amount, m.net_revenue), decimals),
            }
            for i, (key, level, name, amount) in enumerate(rows)
        ],
        columns=STATEMENT_COLUMNS,
    )
    return df


def apply_view_level_filter(out: pd.DataFrame, view: str) -> pd.DataFrame:
    """Return a view-specific slice with renumbered display_order.

    - "summary":  keep rows with level 0,
    - "heads":    keep rows with level <= 1,
    - any other value (e.g. "detailed"): keep all rows.
    """
    if view == "summary":
        df = out[out["level"] == 0].copy()
    elif view == "heads":
        df = out[out["level"] <= 1].copy()
    else:
        df = out.copy()

    df = df.sort_values("display_order", ascending=True, kind="stable")
    df = df.reset_index(drop=True)
    df["display_order"] = (df.index + 1) * 10
    return df[[c for c in STATEMENT_COLUMNS if c in df.columns]]


def head_breakdown_frame(source: StatementSource, decimals: int = 2) -> pd.DataFrame:
    """Flat head/subhead totals in taxonomy order, including ignored heads."""
    _, subhead_totals, _ = _figures(source)
    rows: list[dict[str, object]] = []
    for head in HEADS:
        for subhead, value in subhead_totals.get(head.name, {}).items():
            rows.append(
                {
                    "head": head.label,
                    "type": head.type,
                    "subhead": subhead,
                    "amount": round(float(value), decimals),
                }
            )
    return pd.DataFrame(rows, columns=["head", "type", "subhead", "amount"])


def availability_frame(items: Iterable[MonthAvailability]) -> pd.DataFrame:
    """One row per month describing which inputs are present."""
    columns = [
        "month",
        "month_label",
        "balance_sheets",
        "primary_balance_sheet",
        "journal_entries",
        "sales_entries",
        "unclassified",
        "has_data",
    ]
    rows = [
        {
            "month": a.month,
            "month_label": month_label(a.month),
            "balance_sheets": ", ".join(a.balance_sheet_jurisdictions),
            "primary_balance_sheet": a.has_primary_balance_sheet,
            "journal_entries": a.journal_count,
            "sales_entries": a.sales_count,
            "unclassified": a.unclassified_count,
            "has_data": a.has_data,
        }
        for a in items
    ]
    return pd.DataFrame(rows, columns=columns)


def unclassified_frame(entries: Iterable[UnclassifiedEntry]) -> pd.DataFrame:
    """Entries awaiting manual classification."""
    columns = [
        "entry_id",
        "kind",
        "date",
        "reference",
        "description",
        "amount",
        "jurisdiction",
        "reason",
    ]
    rows: list[dict[str, object]] = []
    for u in entries:
        e = u.entry
        if u.kind == "sales":
            reference, amount = e.invoice_id, e.taxable_amount
        else:
            reference, amount = e.voucher_id, e.amount
        rows.append(
            {
                "entry_id": u.entry_id,
                "kind": u.kind,
                "date": e.date,
                "reference": reference,
                "description": e.description,
                "amount": amount,
                "jurisdiction": e.jurisdiction,
                "reason": u.reason,
            }
        )
    return pd.DataFrame(rows, columns=columns)
