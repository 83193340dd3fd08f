# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Data model for MIS Tracker.

This module defines the record shapes exchanged between the parsing layer,
the monthly store and the presentation layer.

Inputs (immutable once parsed)
------------------------------
- LedgerTransaction:     one journal line; ``amount`` is signed, positive
                         for a debit and negative for a credit.
- SalesEntry:            one sales-register line (channel, taxable amount,
                         tax amount, return / stock-transfer flags).
- BalanceSheetSnapshot:  stock and profit figures of one jurisdiction for
                         one month, with provenance metadata.

Classification
--------------
A ClassifiedTransaction wraps an input entry together with its assigned
head/subhead. The entry itself is never mutated: a manual reassignment
produces a new ClassifiedTransaction carrying the original head/subhead
for audit purposes.

The HeadIndex is the explicit two-level structure
``head -> subhead -> SubheadSummary`` built from classified transactions.
Its iteration order follows the taxonomy order of heads.py.

Numeric fields
--------------
Malformed numeric values (empty strings, 'n/a', None, NaN, infinities)
are coerced to 0.0 when a record is built, using ``to_amount()``. They
never propagate into totals.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional, Union

from .heads import HEAD_ORDER, find_head
from .margins import MarginWaterfall

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"[₹$€£,\s]|\bRs\.?|\bINR\b", re.IGNORECASE)


def parse_amount(value: Any) -> Optional[float]:
    """Parse a raw numeric field, returning None when it is malformed.

    Missing values (None, NaN, empty string) parse as 0.0. Accepted
    spellings include thousands separators and currency symbols
    ('₹ 1,20,000.50'), accounting negatives ('(450)') and a trailing
    'Dr' / 'Cr' marker ('1,200 Cr' is read as -1200).
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        result = float(value)
        if math.isnan(result):
            return 0.0
        return result if math.isfinite(result) else None

    text = str(value).strip()
    if not text or text.lower() in ("nan", "none", "null"):
        return 0.0

    sign = 1.0
    lowered = text.lower()
    if lowered.endswith("cr") or lowered.endswith("cr."):
        sign = -1.0
        text = text[: lowered.rfind("cr")]
    elif lowered.endswith("dr") or lowered.endswith("dr."):
        text = text[: lowered.rfind("dr")]

    text = _CURRENCY_RE.sub("", text)
    if text.startswith("(") and text.endswith(")"):
        sign = -sign
        text = text[1:-1]

    try:
        result = float(text)
    except ValueError:
        return None

    if not math.isfinite(result):
        return None
    return sign * result


def to_amount(value: Any) -> float:
    """Coerce a raw numeric field to float, returning 0.0 when malformed."""
    result = parse_amount(value)
    if result is None:
        logger.debug("Malformed numeric value %r coerced to 0.0", value)
        return 0.0
    return result


def _coerce_fields(obj: Any, names: tuple[str, ...]) -> None:
    """Coerce numeric fields of a frozen dataclass in ``__post_init__``."""
    for name in names:
        object.__setattr__(obj, name, to_amount(getattr(obj, name)))


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


# ---------------------------------------------------------------------------
# Parsed inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerTransaction:
    """One parsed journal line.

    Attributes:
        date: Transaction date as an ISO string ('2025-04-12').
        voucher_id: Voucher or invoice reference.
        description: Free-text account / party description.
        amount: Signed amount (debit > 0, credit < 0).
        jurisdiction: Jurisdiction tag (e.g. 'UP', 'KA').
        entry_id: Store-assigned identifier, empty until stored.
        source_file: Optional provenance.
    """

    date: str
    voucher_id: str
    description: str
    amount: float
    jurisdiction: str = ""
    entry_id: str = ""
    source_file: str = ""

    def __post_init__(self) -> None:
        _coerce_fields(self, ("amount",))
        object.__setattr__(self, "description", _text(self.description))
        object.__setattr__(self, "jurisdiction", _text(self.jurisdiction).upper())

    @property
    def is_debit(self) -> bool:
        return self.amount > 0

    @property
    def is_credit(self) -> bool:
        return self.amount < 0


@dataclass(frozen=True)
class SalesEntry:
    """One parsed sales-register line.

    ``taxable_amount`` is the net-of-tax value used as revenue; the tax
    amount is tracked separately and never enters revenue.
    """

    date: str
    invoice_id: str
    jurisdiction: str
    channel: str
    taxable_amount: float
    tax_amount: float = 0.0
    party: str = ""
    is_return: bool = False
    is_stock_transfer: bool = False
    entry_id: str = ""
    source_file: str = ""

    def __post_init__(self) -> None:
        _coerce_fields(self, ("taxable_amount", "tax_amount"))
        object.__setattr__(self, "jurisdiction", _text(self.jurisdiction).upper())
        object.__setattr__(self, "channel", _text(self.channel))

    @property
    def description(self) -> str:
        return f"{self.channel} sale {self.invoice_id}".strip()


@dataclass(frozen=True)
class ExtractedLine:
    """A label/value pair extracted from a source document, for audit."""

    label: str
    value: float
    source: str = ""

    def __post_init__(self) -> None:
        _coerce_fields(self, ("value",))


SNAPSHOT_AMOUNT_FIELDS: tuple[str, ...] = (
    "opening_stock",
    "purchases",
    "closing_stock",
    "gross_sales",
    "gross_profit",
    "net_profit",
    "net_loss",
    "direct_expenses",
)


@dataclass(frozen=True)
class BalanceSheetSnapshot:
    """Balance-sheet facts of one jurisdiction for one month.

    Net profit and net loss are mutually exclusive. When both are supplied
    they are netted into the dominant one and a warning is logged.
    """

    jurisdiction: str
    opening_stock: float = 0.0
    purchases: float = 0.0
    closing_stock: float = 0.0
    gross_sales: float = 0.0
    gross_profit: float = 0.0
    net_profit: float = 0.0
    net_loss: float = 0.0
    direct_expenses: float = 0.0
    source_file: str = ""
    extracted_at: Optional[datetime] = None
    extracted_lines: tuple[ExtractedLine, ...] = ()

    def __post_init__(self) -> None:
        _coerce_fields(self, SNAPSHOT_AMOUNT_FIELDS)
        object.__setattr__(self, "jurisdiction", _text(self.jurisdiction).upper())
        object.__setattr__(self, "extracted_lines", tuple(self.extracted_lines))

        profit, loss = abs(self.net_profit), abs(self.net_loss)
        if profit and loss:
            logger.warning(
                "Balance sheet for %s carries both net profit (%s) and net loss (%s); "
                "netting them.",
                self.jurisdiction,
                profit,
                loss,
            )
            net = profit - loss
            profit, loss = max(net, 0.0), max(-net, 0.0)
        object.__setattr__(self, "net_profit", profit)
        object.__setattr__(self, "net_loss", loss)

    @property
    def net_profit_loss(self) -> float:
        """Signed result: positive for a profit, negative for a loss."""
        return self.net_profit - self.net_loss

    @property
    def rm_cost(self) -> float:
        return self.opening_stock + self.purchases - self.closing_stock


Entry = Union[LedgerTransaction, SalesEntry]


# ---------------------------------------------------------------------------
# Classification results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassifiedTransaction:
    """An entry with its head/subhead assignment attached.

    Attributes:
        entry: The untouched input entry.
        kind: 'journal' or 'sales'.
        head / subhead: Current assignment.
        amount: Countable value of the entry for its head (always >= 0).
        counted: False when the entry sits on the non-countable side of
            its head (e.g. a credit inside an expense head).
        rule_id: Identifier of the rule that produced the assignment.
        manual: True when the assignment comes from a user override.
        original_head / original_subhead: Assignment before a manual
            override (None when no override applies).
    """

    entry: Entry
    kind: str
    head: str
    subhead: str
    amount: float
    counted: bool = True
    rule_id: Optional[str] = None
    manual: bool = False
    original_head: Optional[str] = None
    original_subhead: Optional[str] = None

    @property
    def entry_id(self) -> str:
        return self.entry.entry_id

    @property
    def description(self) -> str:
        return self.entry.description


@dataclass(frozen=True)
class UnclassifiedEntry:
    """An entry no rule (or channel) could assign."""

    entry: Entry
    kind: str
    reason: str = "no matching rule"

    @property
    def entry_id(self) -> str:
        return self.entry.entry_id


@dataclass
class SubheadSummary:
    subhead: str
    total: float = 0.0
    count: int = 0
    uncounted_total: float = 0.0
    transactions: list[ClassifiedTransaction] = field(default_factory=list)


@dataclass
class HeadSummary:
    head: str
    type: str
    total: float = 0.0
    count: int = 0
    uncounted_total: float = 0.0
    subheads: dict[str, SubheadSummary] = field(default_factory=dict)


class HeadIndex:
    """Two-level classification index: head -> subhead -> SubheadSummary.

    Heads and subheads are kept in taxonomy order regardless of the order
    in which transactions were added, so two indices built from the same
    input compare equal.
    """

    def __init__(self, classified: Optional[list[ClassifiedTransaction]] = None):
        self._heads: dict[str, HeadSummary] = {}
        for ct in classified or []:
            self.add(ct)

    def add(self, ct: ClassifiedTransaction) -> None:
        head_def = find_head(ct.head)
        if head_def is None:
            raise ValueError(f"Unknown MIS head: {ct.head!r}")

        if head_def.name not in self._heads:
            self._heads[head_def.name] = HeadSummary(head_def.name, head_def.type)
            self._heads = dict(
                sorted(self._heads.items(), key=lambda kv: HEAD_ORDER[kv[0]])
            )
        head = self._heads[head_def.name]

        if ct.subhead not in head.subheads:
            head.subheads[ct.subhead] = SubheadSummary(ct.subhead)
            order = {s: i for i, s in enumerate(head_def.subheads)}
            head.subheads = dict(
                sorted(head.subheads.items(), key=lambda kv: order.get(kv[0], 99))
            )
        sub = head.subheads[ct.subhead]

        sub.transactions.append(ct)
        sub.count += 1
        head.count += 1
        if ct.counted:
            sub.total += ct.amount
            head.total += ct.amount
        else:
            sub.uncounted_total += ct.amount
            head.uncounted_total += ct.amount

    def __iter__(self) -> Iterator[HeadSummary]:
        return iter(self._heads.values())

    def __len__(self) -> int:
        return len(self._heads)

    def __contains__(self, head: str) -> bool:
        return head in self._heads

    def __getitem__(self, head: str) -> HeadSummary:
        return self._heads[head]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeadIndex):
            return NotImplemented
        return self._heads == other._heads

    def get(self, head: str) -> Optional[HeadSummary]:
        return self._heads.get(head)

    def head_total(self, head: str) -> float:
        summary = self._heads.get(head)
        return summary.total if summary else 0.0

    def subhead_total(self, head: str, subhead: str) -> float:
        summary = self._heads.get(head)
        if summary is None or subhead not in summary.subheads:
            return 0.0
        return summary.subheads[subhead].total

    def head_totals(self) -> dict[str, float]:
        return {name: h.total for name, h in self._heads.items()}

    def subhead_totals(self) -> dict[str, dict[str, float]]:
        return {
            name: {s: sub.total for s, sub in h.subheads.items()}
            for name, h in self._heads.items()
        }

    def transactions(self) -> Iterator[ClassifiedTransaction]:
        for h in self._heads.values():
            for sub in h.subheads.values():
                yield from sub.transactions


# ---------------------------------------------------------------------------
# Monthly record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadLogEntry:
    kind: str
    jurisdiction: str = ""
    source_file: str = ""
    at: Optional[datetime] = None
    count: int = 0


@dataclass(frozen=True)
class ComputedBlock:
    """Derived figures of a month, rebuilt from raw inputs on every change."""

    gross_revenue: float = 0.0
    revenue_by_jurisdiction: dict[str, float] = field(default_factory=dict)
    opening_stock: float = 0.0
    purchases: float = 0.0
    closing_stock: float = 0.0
    rm_cost: float = 0.0
    has_stock_data: bool = False
    head_totals: dict[str, float] = field(default_factory=dict)
    subhead_totals: dict[str, dict[str, float]] = field(default_factory=dict)
    margins: MarginWaterfall = field(default_factory=MarginWaterfall)
    ignored_total: float = 0.0
    excluded_total: float = 0.0
    output_tax: float = 0.0
    stock_transfers: float = 0.0
    unclassified_count: int = 0


@dataclass
class MonthlyMISRecord:
    """Everything known about one month.

    Raw inputs (balance sheets, journal and sales entries, manual overrides)
    are the source of truth. ``index``, ``classified``, ``unclassified`` and
    ``computed`` are derived by the store and rebuilt on every mutation.
    """

    month: str
    primary_jurisdiction: str
    balance_sheets: dict[str, BalanceSheetSnapshot] = field(default_factory=dict)
    journal_entries: list[LedgerTransaction] = field(default_factory=list)
    sales_entries: list[SalesEntry] = field(default_factory=list)
    overrides: dict[str, tuple[str, str]] = field(default_factory=dict)
    uploads: list[UploadLogEntry] = field(default_factory=list)

    index: HeadIndex = field(default_factory=HeadIndex)
    unclassified: list[UnclassifiedEntry] = field(default_factory=list)
    computed: ComputedBlock = field(default_factory=ComputedBlock)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_data(self) -> bool:
        return bool(self.balance_sheets or self.journal_entries or self.sales_entries)

    @property
    def jurisdictions(self) -> list[str]:
        """Jurisdictions with a balance sheet, primary first."""
        others = sorted(j for j in self.balance_sheets if j != self.primary_jurisdiction)
        if self.primary_jurisdiction in self.balance_sheets:
            return [self.primary_jurisdiction] + others
        return others

    @property
    def margins(self) -> MarginWaterfall:
        return self.computed.margins

    def find_entry(self, entry_id: str) -> Optional[Entry]:
        for entry in self.journal_entries:
            if entry.entry_id == entry_id:
                return entry
        for entry in self.sales_entries:
            if entry.entry_id == entry_id:
                return entry
        return None


@dataclass(frozen=True)
class MonthAvailability:
    """Data-availability summary of one month."""

    month: str
    balance_sheet_jurisdictions: tuple[str, ...] = ()
    has_primary_balance_sheet: bool = False
    journal_count: int = 0
    sales_count: int = 0
    unclassified_count: int = 0

    @property
    def has_journal(self) -> bool:
        return self.journal_count > 0

    @property
    def has_sales(self) -> bool:
        return self.sales_count > 0

    @property
    def has_data(self) -> bool:
        return bool(
            self.balance_sheet_jurisdictions or self.journal_count or self.sales_count
        )
