# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Range aggregation for MIS Tracker.

This module merges an ordered span of monthly records into one summary.

Rules
-----
1. Every calendar month of the inclusive range is enumerated in
   chronological order, then filtered to months that hold data.

2. Stock quantities are NOT summed:
   - opening stock is taken from the first included month,
   - closing stock is taken from the last included month.

3. Flow quantities are summed across included months: purchases, gross
   revenue, revenue by jurisdiction, every head total and every subhead
   total.

4. The margin waterfall is recomputed once on the aggregated values with
   ``margins.compute_margins()``. Monthly margins and percentages are never
   summed.

5. A range with no qualifying month yields a well-formed all-zero record
   whose ``months_included`` is empty. Callers check that list before
   treating the figures as meaningful; gaps are exposed through
   ``missing_months`` and never interpolated.

The module also offers a fiscal-year shortcut and a long-format monthly
trend frame (one block of waterfall measures per month with data).
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from .heads import EXCLUDE, IGNORE
from .margins import WATERFALL_MEASURES, MarginWaterfall, StockFigures, compute_margins
from .periods import fiscal_year, month_label, month_range
from .records import MonthlyMISRecord
from .store import MonthlyRecordStore


@dataclass(frozen=True)
class AggregatedRangeRecord:
    """
    Summary of a range of months.

    Attributes
    ----------
    start, end :
        Requested inclusive bounds (period keys).
    label :
        Display label ('2025-04 → 2025-06', 'FY 2024-25').
    months_requested :
        Every calendar month of the range.
    months_included :
        Months that actually contributed data, chronologically.
    opening_stock / closing_stock :
        First / last included month's stock figures.
    purchases, gross_revenue, head_totals, subhead_totals, ... :
        Sums across included months.
    margins :
        Waterfall recomputed on the aggregated totals.
    """

    start: str
    end: str
    label: str
    months_requested: tuple[str, ...] = ()
    months_included: tuple[str, ...] = ()
    opening_stock: float = 0.0
    purchases: float = 0.0
    closing_stock: float = 0.0
    rm_cost: float = 0.0
    has_stock_data: bool = False
    gross_revenue: float = 0.0
    revenue_by_jurisdiction: dict[str, float] = field(default_factory=dict)
    head_totals: dict[str, float] = field(default_factory=dict)
    subhead_totals: dict[str, dict[str, float]] = field(default_factory=dict)
    margins: MarginWaterfall = field(default_factory=MarginWaterfall)
    ignored_total: float = 0.0
    excluded_total: float = 0.0
    output_tax: float = 0.0
    stock_transfers: float = 0.0
    unclassified_count: int = 0

    @property
    def has_data(self) -> bool:
        return bool(self.months_included)

    @property
    def missing_months(self) -> tuple[str, ...]:
        included = set(self.months_included)
        return tuple(m for m in self.months_requested if m not in included)


def _add(target: dict[str, float], key: str, value: float) -> None:
    target[key] = target.get(key, 0.0) + value


def aggregate_records(
    records: Iterable[MonthlyMISRecord],
    start: str,
    end: str,
    label: Optional[str] = None,
    months_requested: Optional[Iterable[str]] = None,
) -> AggregatedRangeRecord:
    """Merge monthly records (already filtered and ordered) into one summary.

    Records without data are skipped. Records are processed in the order
    given; callers pass them chronologically.
    """
    included = [r for r in records if r.has_data]
    label = label or f"{start} → {end}"
    requested = tuple(months_requested or (r.month for r in included))

    if not included:
        return AggregatedRangeRecord(
            start=start, end=end, label=label, months_requested=requested
        )

    first, last = included[0].computed, included[-1].computed

    purchases = 0.0
    gross_revenue = 0.0
    output_tax = 0.0
    stock_transfers = 0.0
    unclassified_count = 0
    revenue_by_jurisdiction: dict[str, float] = {}
    head_totals: dict[str, float] = {}
    subhead_totals: dict[str, dict[str, float]] = {}

    for record in included:
        c = record.computed
        purchases += c.purchases
        gross_revenue += c.gross_revenue
        output_tax += c.output_tax
        stock_transfers += c.stock_transfers
        unclassified_count += c.unclassified_count
        for jurisdiction, value in c.revenue_by_jurisdiction.items():
            _add(revenue_by_jurisdiction, jurisdiction, value)
        for head, value in c.head_totals.items():
            _add(head_totals, head, value)
        for head, subs in c.subhead_totals.items():
            bucket = subhead_totals.setdefault(head, {})
            for subhead, value in subs.items():
                _add(bucket, subhead, value)

    stock = StockFigures(
        opening_stock=first.opening_stock,
        purchases=purchases,
        closing_stock=last.closing_stock,
        has_data=any(r.computed.has_stock_data for r in included),
    )
    margins = compute_margins(
        head_totals, stock, subhead_totals, gross_revenue=gross_revenue
    )

    return AggregatedRangeRecord(
        start=start,
        end=end,
        label=label,
        months_requested=requested,
        months_included=tuple(r.month for r in included),
        opening_stock=stock.opening_stock,
        purchases=stock.purchases,
        closing_stock=stock.closing_stock,
        rm_cost=margins.rm_cost,
        has_stock_data=stock.has_data,
        gross_revenue=gross_revenue,
        revenue_by_jurisdiction=dict(sorted(revenue_by_jurisdiction.items())),
        head_totals=head_totals,
        subhead_totals=subhead_totals,
        margins=margins,
        ignored_total=head_totals.get(IGNORE, 0.0),
        excluded_total=head_totals.get(EXCLUDE, 0.0),
        output_tax=output_tax,
        stock_transfers=stock_transfers,
        unclassified_count=unclassified_count,
    )


def aggregate(
    store: MonthlyRecordStore, start: str, end: str, label: Optional[str] = None
) -> AggregatedRangeRecord:
    """Aggregate every month of ``[start, end]`` held by ``store``.

    An inverted range simply has no months and yields a zero record.
    """
    months = month_range(start, end)
    records = [store.get(m) for m in months]
    return aggregate_records(
        (r for r in records if r is not None),
        start,
        end,
        label=label,
        months_requested=months,
    )


def aggregate_fiscal_year(
    store: MonthlyRecordStore, start_year: int, start_month: int = 4
) -> AggregatedRangeRecord:
    """Aggregate the fiscal year starting in ``start_year`` (April by default)."""
    fy = fiscal_year(start_year, start_month)
    return aggregate(store, fy.start, fy.end, label=fy.label)


def monthly_trend_frame(
    store: MonthlyRecordStore, start: str, end: str
) -> pd.DataFrame:
    """
    Long-format DataFrame of waterfall measures, one block per month.

    Only months with data are included. Columns:
        - period_label : period key ('2025-04')
        - month_label  : display label ('Apr 2025')
        - measure_key  : waterfall field name ('cm1', 'ebitda_pct', ...)
        - label        : human-readable measure name
        - value        : unrounded value
        - unit         : 'amount' or 'percent'
    """
    columns = ["period_label", "month_label", "measure_key", "label", "value", "unit"]
    rows: list[dict[str, object]] = []

    for month in month_range(start, end):
        record = store.get(month)
        if record is None or not record.has_data:
            continue
        values = record.computed.margins.as_dict()
        for key, label, unit in WATERFALL_MEASURES:
            rows.append(
                {
                    "period_label": month,
                    "month_label": month_label(month),
                    "measure_key": key,
                    "label": label,
                    "value": float(values[key]),
                    "unit": unit,
                }
            )

    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows, columns=columns)
