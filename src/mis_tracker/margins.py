# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Margin waterfall calculator for MIS Tracker.

This module turns classified head/subhead totals and stock figures into the
MIS margin waterfall. It is a pure computation layer: it holds no state,
performs no I/O and is shared by the monthly store and the range
aggregator, so that a range summary is always recomputed from aggregated
totals rather than by summing monthly margins.

Waterfall
---------
    Gross Revenue
  - Returns - Discounts - Taxes          = Net Revenue
    Stock-derived raw-material cost
  + direct COGM heads                    = COGM
    Net Revenue - COGM                   = Gross Margin
    Gross Margin - Channel & Fulfillment = CM1
    CM1 - Sales & Marketing              = CM2
    CM2 - Platform Costs                 = CM3
    CM3 - Operating Expenses             = EBITDA
    EBITDA - (Interest + Depreciation
              + Amortization)            = EBT / PBT
    EBT - Income Tax                     = Net Income / PAT

Group membership is the static table in heads.py (MARGIN_GROUPS and
NON_OPERATING_GROUPS).

Percentages
-----------
Every percentage is ``value / net_revenue * 100`` and is defined as 0.0
when net revenue is zero (or not finite). Negative margins keep their
sign.
"""

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Optional

from .heads import (
    COGM,
    DISCOUNTS,
    MARGIN_GROUPS,
    NON_OPERATING,
    NON_OPERATING_GROUPS,
    RAW_MATERIALS_SUBHEAD,
    RETURNS,
    REVENUE,
    TAXES,
)

SubheadTotals = Mapping[str, Mapping[str, float]]


@dataclass(frozen=True)
class StockFigures:
    """Stock quantities used to derive raw-material cost.

    ``has_data`` is False when no primary-jurisdiction balance sheet was
    available; in that case the journal 'Raw Materials & Inventory' subhead
    is used instead of the stock formula.
    """

    opening_stock: float = 0.0
    purchases: float = 0.0
    closing_stock: float = 0.0
    has_data: bool = False

    @property
    def rm_cost(self) -> float:
        """Opening stock + purchases - closing stock."""
        return self.opening_stock + self.purchases - self.closing_stock


@dataclass(frozen=True)
class MarginWaterfall:
    """All values of the MIS waterfall for one month or one range."""

    gross_revenue: float = 0.0
    returns: float = 0.0
    discounts: float = 0.0
    taxes: float = 0.0
    net_revenue: float = 0.0

    rm_cost: float = 0.0
    direct_costs: float = 0.0
    cogm: float = 0.0
    gross_margin: float = 0.0

    channel_fulfillment: float = 0.0
    cm1: float = 0.0
    sales_marketing: float = 0.0
    cm2: float = 0.0
    platform_costs: float = 0.0
    cm3: float = 0.0
    operating_expenses: float = 0.0
    ebitda: float = 0.0

    interest: float = 0.0
    depreciation: float = 0.0
    amortization: float = 0.0
    ebt: float = 0.0
    income_tax: float = 0.0
    net_income: float = 0.0

    gross_margin_pct: float = 0.0
    cm1_pct: float = 0.0
    cm2_pct: float = 0.0
    cm3_pct: float = 0.0
    ebitda_pct: float = 0.0
    ebt_pct: float = 0.0
    net_income_pct: float = 0.0

    @property
    def total_ida(self) -> float:
        """Interest + Depreciation + Amortization."""
        return self.interest + self.depreciation + self.amortization

    @property
    def pbt(self) -> float:
        return self.ebt

    @property
    def pat(self) -> float:
        return self.net_income

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


# Ordered (key, label, unit) triples describing the waterfall measures,
# used by trend frames and statement views.
WATERFALL_MEASURES: tuple[tuple[str, str, str], ...] = (
    ("gross_revenue", "Gross Revenue", "amount"),
    ("net_revenue", "Net Revenue", "amount"),
    ("cogm", "COGM", "amount"),
    ("gross_margin", "Gross Margin", "amount"),
    ("gross_margin_pct", "Gross Margin %", "percent"),
    ("cm1", "CM1", "amount"),
    ("cm1_pct", "CM1 %", "percent"),
    ("cm2", "CM2", "amount"),
    ("cm2_pct", "CM2 %", "percent"),
    ("cm3", "CM3", "amount"),
    ("cm3_pct", "CM3 %", "percent"),
    ("ebitda", "EBITDA", "amount"),
    ("ebitda_pct", "EBITDA %", "percent"),
    ("ebt", "EBT", "amount"),
    ("ebt_pct", "EBT %", "percent"),
    ("net_income", "Net Income", "amount"),
    ("net_income_pct", "Net Income %", "percent"),
)


def percent_of(value: float, net_revenue: float) -> float:
    """``value / net_revenue * 100``, or 0.0 when the ratio is undefined."""
    if not net_revenue or not math.isfinite(net_revenue):
        return 0.0
    result = value / net_revenue * 100.0
    return result if math.isfinite(result) else 0.0


def _head(head_totals: Mapping[str, float], name: str) -> float:
    value = head_totals.get(name, 0.0)
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def _subhead(subhead_totals: Optional[SubheadTotals], head: str, subhead: str) -> float:
    if not subhead_totals:
        return 0.0
    return _head(subhead_totals.get(head, {}), subhead)


def _group_total(head_totals: Mapping[str, float], group: str) -> float:
    return sum(_head(head_totals, h) for h in MARGIN_GROUPS[group])


def _non_operating(subhead_totals: Optional[SubheadTotals], group: str) -> float:
    return sum(
        _subhead(subhead_totals, NON_OPERATING, s) for s in NON_OPERATING_GROUPS[group]
    )


def compute_margins(
    head_totals: Mapping[str, float],
    stock: StockFigures,
    subhead_totals: Optional[SubheadTotals] = None,
    gross_revenue: Optional[float] = None,
) -> MarginWaterfall:
    """Compute the MIS margin waterfall.

    Args:
        head_totals: Mapping head name -> countable total (see heads.py).
        stock: Stock figures of the primary jurisdiction (or aggregated
            first/last stock for a range).
        subhead_totals: Mapping head name -> subhead name -> total. Needed
            for the Non-Operating split and to drop the journal raw-material
            subhead when stock data replaces it.
        gross_revenue: Optional override of the Revenue head total (used
            when revenue includes balance-sheet fallbacks).

    Returns:
        A MarginWaterfall. Each step equals the previous step minus its
        deduction group, with no intermediate rounding.
    """
    revenue = _head(head_totals, REVENUE) if gross_revenue is None else gross_revenue
    returns = _head(head_totals, RETURNS)
    discounts = _head(head_totals, DISCOUNTS)
    taxes = _head(head_totals, TAXES)
    net_revenue = revenue - returns - discounts - taxes

    # Stock-derived raw-material cost replaces the journal subhead when
    # the primary jurisdiction has a balance sheet.
    journal_rm = _subhead(subhead_totals, COGM, RAW_MATERIALS_SUBHEAD)
    direct_costs = _group_total(head_totals, "cogm") - journal_rm
    rm_cost = stock.rm_cost if stock.has_data else journal_rm
    cogm = rm_cost + direct_costs

    gross_margin = net_revenue - cogm

    channel_fulfillment = _group_total(head_totals, "channel_fulfillment")
    cm1 = gross_margin - channel_fulfillment

    sales_marketing = _group_total(head_totals, "sales_marketing")
    cm2 = cm1 - sales_marketing

    platform_costs = _group_total(head_totals, "platform_costs")
    cm3 = cm2 - platform_costs

    operating_expenses = _group_total(head_totals, "operating_expenses")
    ebitda = cm3 - operating_expenses

    interest = _non_operating(subhead_totals, "interest")
    depreciation = _non_operating(subhead_totals, "depreciation")
    amortization = _non_operating(subhead_totals, "amortization")
    ebt = ebitda - (interest + depreciation + amortization)

    income_tax = _non_operating(subhead_totals, "income_tax")
    net_income = ebt - income_tax

    return MarginWaterfall(
        gross_revenue=revenue,
        returns=returns,
        discounts=discounts,
        taxes=taxes,
        net_revenue=net_revenue,
        rm_cost=rm_cost,
        direct_costs=direct_costs,
        cogm=cogm,
        gross_margin=gross_margin,
        channel_fulfillment=channel_fulfillment,
        cm1=cm1,
        sales_marketing=sales_marketing,
        cm2=cm2,
        platform_costs=platform_costs,
        cm3=cm3,
        operating_expenses=operating_expenses,
        ebitda=ebitda,
        interest=interest,
        depreciation=depreciation,
        amortization=amortization,
        ebt=ebt,
        income_tax=income_tax,
        net_income=net_income,
        gross_margin_pct=percent_of(gross_margin, net_revenue),
        cm1_pct=percent_of(cm1, net_revenue),
        cm2_pct=percent_of(cm2, net_revenue),
        cm3_pct=percent_of(cm3, net_revenue),
        ebitda_pct=percent_of(ebitda, net_revenue),
        ebt_pct=percent_of(ebt, net_revenue),
        net_income_pct=percent_of(net_income, net_revenue),
    )
