# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Monthly record store for MIS Tracker.

The store holds exactly one MonthlyMISRecord per period key (``YYYY-MM``)
and never mixes periods: every write names its month explicitly.

Pipeline
--------
Raw inputs are the only mutable state of a record:

- balance-sheet snapshots, keyed by jurisdiction,
- journal entries and sales entries,
- manual overrides (entry id -> head/subhead),
- the upload log.

Every mutation runs the same two steps synchronously before returning:

1. ``_reclassify()`` rebuilds the head -> subhead -> transactions index
   from scratch by running every raw entry through the rule set. It is
   idempotent: unchanged inputs and rules give an identical index.
2. ``_recompute()`` derives the computed block: stock-derived raw-material
   cost from the primary jurisdiction only, gross revenue, ignored /
   excluded totals and the margin waterfall (see margins.py).

Counting rules
--------------
- expense heads count debit-side (positive) journal amounts,
- revenue heads count credit-side (negative) journal amounts, as positive
  values,
- ignore-type heads (Exclude, Ignore) are totalled by absolute value.

Entries on the opposite side of their head stay attached to their subhead
with ``counted=False`` and are summed into ``uncounted_total``; they never
net against the head total.

Sales entries are classified by channel: regular sales go to Revenue,
returns to Returns, and stock transfers are kept out of revenue and only
tracked in ``stock_transfers``.

The store is an explicit object: callers create one instance and pass it
around. Several isolated instances can coexist (e.g. in tests).
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .heads import (
    EXCLUDE,
    IGNORE,
    RETURNS,
    REVENUE,
    get_head,
    resolve_subhead,
    validate_pair,
)
from .margins import StockFigures, compute_margins
from .periods import month_range, validate_month_key
from .records import (
    BalanceSheetSnapshot,
    ClassifiedTransaction,
    ComputedBlock,
    Entry,
    ExtractedLine,
    HeadIndex,
    LedgerTransaction,
    MonthAvailability,
    MonthlyMISRecord,
    SalesEntry,
    UnclassifiedEntry,
    UploadLogEntry,
)
from .rules import (
    ClassificationRule,
    RuleSet,
    create_rule_from_reclassification,
    rule_from_dict,
    rule_to_dict,
)

logger = logging.getLogger(__name__)

STORE_MODES: tuple[str, ...] = ("replace", "append")
PAYLOAD_VERSION = 1

_JOURNAL_PREFIX = "JR"
_SALES_PREFIX = "SL"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _check_mode(mode: str) -> str:
    m = str(mode).strip().lower()
    if m not in STORE_MODES:
        raise ValueError(
            f"Unknown store mode {mode!r}. Expected one of: {', '.join(STORE_MODES)}."
        )
    return m


class MonthlyRecordStore:
    """In-memory store of monthly MIS records.

    Args:
        rules: Classification rules (any order; sorted by priority).
        primary_jurisdiction: Default primary jurisdiction for new months.
            Only this jurisdiction's stock figures drive raw-material cost.
        revenue_fallback_to_balance_sheet: When True, a jurisdiction with
            balance-sheet gross sales and no sales entries contributes its
            gross sales to gross revenue.
        clock: Callable returning the current time (for tests).
    """

    def __init__(
        self,
        rules: Optional[Iterable[ClassificationRule]] = None,
        primary_jurisdiction: str = "UP",
        revenue_fallback_to_balance_sheet: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._records: dict[str, MonthlyMISRecord] = {}
        self._rule_set = RuleSet(rules)
        self.primary_jurisdiction = str(primary_jurisdiction).strip().upper()
        self.revenue_fallback_to_balance_sheet = bool(revenue_fallback_to_balance_sheet)
        self._clock = clock or _now_utc

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def __contains__(self, month: str) -> bool:
        return month in self._records

    def __len__(self) -> int:
        return len(self._records)

    @property
    def rules(self) -> list[ClassificationRule]:
        """Current rules, sorted by priority."""
        return list(self._rule_set)

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    def months(self) -> list[str]:
        """All stored period keys, chronologically."""
        return sorted(self._records)

    def get(self, month: str) -> Optional[MonthlyMISRecord]:
        validate_month_key(month)
        return self._records.get(month)

    def get_or_create(self, month: str) -> MonthlyMISRecord:
        """Return the record for ``month``, creating an empty one if needed."""
        validate_month_key(month)
        record = self._records.get(month)
        if record is None:
            now = self._clock()
            record = MonthlyMISRecord(
                month=month,
                primary_jurisdiction=self.primary_jurisdiction,
                created_at=now,
                updated_at=now,
            )
            self._records[month] = record
        return record

    def has_data(self, month: str) -> bool:
        record = self.get(month)
        return record is not None and record.has_data

    def available_months(self) -> list[str]:
        """Months holding any balance sheet or transaction, chronologically."""
        return [m for m in self.months() if self._records[m].has_data]

    def unclassified(self, month: str) -> list[UnclassifiedEntry]:
        record = self.get(month)
        return list(record.unclassified) if record else []

    def availability(
        self, start: Optional[str] = None, end: Optional[str] = None
    ) -> list[MonthAvailability]:
        """Data-availability summary per month.

        Without bounds, every stored month is listed. With ``start`` and
        ``end``, every calendar month of the inclusive range is listed,
        including months with no record at all.
        """
        if start is None and end is None:
            months = self.months()
        else:
            first = start or (self.months()[0] if self._records else end)
            last = end or (self.months()[-1] if self._records else start)
            months = month_range(first, last)

        out: list[MonthAvailability] = []
        for month in months:
            record = self._records.get(month)
            if record is None:
                out.append(MonthAvailability(month=month))
                continue
            out.append(
                MonthAvailability(
                    month=month,
                    balance_sheet_jurisdictions=tuple(record.jurisdictions),
                    has_primary_balance_sheet=(
                        record.primary_jurisdiction in record.balance_sheets
                    ),
                    journal_count=len(record.journal_entries),
                    sales_count=len(record.sales_entries),
                    unclassified_count=len(record.unclassified),
                )
            )
        return out

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store_balance_sheet(
        self, month: str, jurisdiction: str, snapshot: BalanceSheetSnapshot
    ) -> MonthlyMISRecord:
        """Upsert the balance sheet of ``jurisdiction`` for ``month``."""
        record = self.get_or_create(month)
        key = str(jurisdiction).strip().upper()
        if snapshot.jurisdiction != key:
            snapshot = replace(snapshot, jurisdiction=key)

        record.balance_sheets[key] = snapshot
        self._log_upload(record, "balance_sheet", key, snapshot.source_file, 1)
        logger.info("Stored balance sheet for %s / %s", month, key)
        self._refresh(record)
        return record

    def store_transactions(
        self,
        month: str,
        entries: Iterable[LedgerTransaction],
        mode: str = "replace",
        source_file: Optional[str] = None,
    ) -> MonthlyMISRecord:
        """Store journal entries for ``month``.

        ``replace`` discards the month's previous journal entries (and their
        manual overrides) so that re-uploading a file never duplicates
        lines; ``append`` keeps them.
        """
        mode = _check_mode(mode)
        record = self.get_or_create(month)
        incoming = list(entries)

        if mode == "replace":
            self._drop_overrides(record, record.journal_entries)
            record.journal_entries = []

        start = len(record.journal_entries)
        for i, entry in enumerate(incoming, start=start + 1):
            record.journal_entries.append(
                replace(
                    entry,
                    entry_id=f"{_JOURNAL_PREFIX}-{month}-{i:05d}",
                    source_file=source_file or entry.source_file,
                )
            )

        self._log_upload(
            record, "journal", _jurisdictions(incoming), source_file or "", len(incoming)
        )
        logger.info(
            "Stored %d journal entries for %s (%s, %d total)",
            len(incoming),
            month,
            mode,
            len(record.journal_entries),
        )
        self._refresh(record)
        return record

    def store_sales(
        self,
        month: str,
        entries: Iterable[SalesEntry],
        mode: str = "replace",
        source_file: Optional[str] = None,
    ) -> MonthlyMISRecord:
        """Store sales-register entries for ``month`` (same modes as journal)."""
        mode = _check_mode(mode)
        record = self.get_or_create(month)
        incoming = list(entries)

        if mode == "replace":
            self._drop_overrides(record, record.sales_entries)
            record.sales_entries = []

        start = len(record.sales_entries)
        for i, entry in enumerate(incoming, start=start + 1):
            record.sales_entries.append(
                replace(
                    entry,
                    entry_id=f"{_SALES_PREFIX}-{month}-{i:05d}",
                    source_file=source_file or entry.source_file,
                )
            )

        self._log_upload(
            record, "sales", _jurisdictions(incoming), source_file or "", len(incoming)
        )
        logger.info(
            "Stored %d sales entries for %s (%s, %d total)",
            len(incoming),
            month,
            mode,
            len(record.sales_entries),
        )
        self._refresh(record)
        return record

    def set_primary_jurisdiction(self, month: str, jurisdiction: str) -> MonthlyMISRecord:
        """Change which jurisdiction drives stock-derived cost for ``month``."""
        record = self.get_or_create(month)
        record.primary_jurisdiction = str(jurisdiction).strip().upper()
        logger.info("Primary jurisdiction for %s set to %s", month, record.primary_jurisdiction)
        self._refresh(record)
        return record

    def clear(self, month: str) -> bool:
        """Remove one record together with its upload log.

        Returns True when a record was removed.
        """
        validate_month_key(month)
        removed = self._records.pop(month, None)
        if removed is not None:
            logger.info(
                "Cleared %s (%d upload log entries removed)", month, len(removed.uploads)
            )
        return removed is not None

    def clear_all(self) -> None:
        count = len(self._records)
        self._records.clear()
        logger.info("Cleared all %d monthly records", count)

    # ------------------------------------------------------------------
    # Rules and reclassification
    # ------------------------------------------------------------------

    def set_rules(self, rules: Iterable[ClassificationRule]) -> None:
        """Replace the rule set and reclassify every month."""
        self._rule_set = RuleSet(rules)
        logger.info(
            "Rule set replaced (%d rules, %d invalid); reclassifying %d months",
            len(self._rule_set),
            len(self._rule_set.invalid),
            len(self._records),
        )
        for record in self._records.values():
            self._refresh(record)

    def add_rule(self, rule: ClassificationRule) -> None:
        self.set_rules([*self._rule_set.rules, rule])

    def reclassify_transaction(
        self,
        month: str,
        entry_id: str,
        head: str,
        subhead: str,
        create_rule: bool = False,
        pattern: Optional[str] = None,
        match_mode: str = "contains",
    ) -> Optional[ClassificationRule]:
        """Manually assign an entry to a head/subhead.

        The override is kept on the month and survives later rule changes.
        With ``create_rule=True`` a user rule is synthesized from the entry
        description (or from ``pattern``), placed ahead of every existing
        rule, and all months are reclassified with it.

        Returns:
            The created rule, or None when ``create_rule`` is False.

        Raises:
            ValueError: for an unknown month or entry id, a stock-transfer
                entry, an invalid head/subhead pairing, or (with
                ``create_rule``) an unknown match mode or underivable
                pattern. The record is left unchanged.
        """
        head_name, subhead_name = validate_pair(head, subhead)
        record = self.get(month)
        if record is None:
            raise ValueError(f"No MIS record for month {month!r}.")
        entry = record.find_entry(entry_id)
        if entry is None:
            raise ValueError(f"Unknown transaction id {entry_id!r} for month {month}.")
        if isinstance(entry, SalesEntry) and entry.is_stock_transfer:
            raise ValueError(
                f"Transaction {entry_id!r} is a stock transfer and is never classified."
            )

        # A rejected request leaves the record untouched: build the rule
        # before writing the override.
        rule = None
        if create_rule:
            rule = create_rule_from_reclassification(
                entry.description,
                head_name,
                subhead_name,
                existing_rules=self._rule_set.rules,
                pattern=pattern,
                match_mode=match_mode,
                now=self._clock(),
            )

        record.overrides[entry_id] = (head_name, subhead_name)
        logger.info(
            "Reclassified %s in %s to %s / %s", entry_id, month, head_name, subhead_name
        )

        if rule is None:
            self._refresh(record)
            return None

        self.add_rule(rule)
        return rule

    # ------------------------------------------------------------------
    # Derivation pipeline
    # ------------------------------------------------------------------

    def _refresh(self, record: MonthlyMISRecord) -> None:
        self._reclassify(record)
        self._recompute(record)
        record.updated_at = self._clock()

    def _reclassify(self, record: MonthlyMISRecord) -> None:
        """Rebuild the classification index of ``record`` from raw entries."""
        classified: list[ClassifiedTransaction] = []
        unclassified: list[UnclassifiedEntry] = []

        for entry in record.journal_entries:
            result = self._classify_journal(entry, record.overrides.get(entry.entry_id))
            if isinstance(result, ClassifiedTransaction):
                classified.append(result)
            else:
                unclassified.append(result)

        for sale in record.sales_entries:
            if sale.is_stock_transfer:
                continue
            result = self._classify_sale(sale, record.overrides.get(sale.entry_id))
            if isinstance(result, ClassifiedTransaction):
                classified.append(result)
            else:
                unclassified.append(result)

        record.index = HeadIndex(classified)
        record.unclassified = unclassified

    def _classify_journal(
        self, entry: LedgerTransaction, override: Optional[tuple[str, str]]
    ) -> Union[ClassifiedTransaction, UnclassifiedEntry]:
        rule = self._rule_set.match(entry.description)

        if override is not None:
            head, subhead = override
            return _classified(
                entry,
                "journal",
                head,
                subhead,
                entry.amount,
                rule_id=None,
                manual=True,
                original=_rule_target(rule),
            )

        if rule is None:
            return UnclassifiedEntry(entry=entry, kind="journal")

        head, subhead = _rule_target(rule)
        return _classified(entry, "journal", head, subhead, entry.amount, rule.rule_id)

    def _classify_sale(
        self, sale: SalesEntry, override: Optional[tuple[str, str]]
    ) -> Union[ClassifiedTransaction, UnclassifiedEntry]:
        head = RETURNS if sale.is_return else REVENUE
        channel = resolve_subhead(get_head(head), sale.channel)

        # Sales amounts are counted on their natural side: store them as a
        # credit for revenue and a debit for returns.
        signed = abs(sale.taxable_amount)
        signed = signed if sale.is_return else -signed

        if override is not None:
            o_head, o_subhead = override
            amount = abs(sale.taxable_amount)
            return _classified(
                sale,
                "sales",
                o_head,
                o_subhead,
                -amount if get_head(o_head).type == "revenue" else amount,
                rule_id=None,
                manual=True,
                original=(head, channel) if channel else None,
            )

        if channel is None:
            logger.warning(
                "Sales entry %s has unknown channel %r; left unclassified",
                sale.entry_id,
                sale.channel,
            )
            return UnclassifiedEntry(
                entry=sale, kind="sales", reason=f"unknown sales channel {sale.channel!r}"
            )

        return _classified(sale, "sales", head, channel, signed, rule_id="channel")

    def _recompute(self, record: MonthlyMISRecord) -> None:
        """Derive the computed block of ``record`` from its index and inputs."""
        index = record.index
        head_totals = index.head_totals()
        subhead_totals = index.subhead_totals()

        primary = record.balance_sheets.get(record.primary_jurisdiction)
        stock = StockFigures(
            opening_stock=primary.opening_stock if primary else 0.0,
            purchases=primary.purchases if primary else 0.0,
            closing_stock=primary.closing_stock if primary else 0.0,
            has_data=primary is not None,
        )

        revenue_by_jurisdiction: dict[str, float] = {}
        revenue_head = index.get(REVENUE)
        if revenue_head is not None:
            for sub in revenue_head.subheads.values():
                for ct in sub.transactions:
                    if not ct.counted:
                        continue
                    key = ct.entry.jurisdiction or record.primary_jurisdiction
                    revenue_by_jurisdiction[key] = (
                        revenue_by_jurisdiction.get(key, 0.0) + ct.amount
                    )

        gross_revenue = head_totals.get(REVENUE, 0.0)
        if self.revenue_fallback_to_balance_sheet:
            with_sales = {
                s.jurisdiction for s in record.sales_entries if not s.is_stock_transfer
            }
            for jurisdiction, snapshot in record.balance_sheets.items():
                if snapshot.gross_sales > 0 and jurisdiction not in with_sales:
                    gross_revenue += snapshot.gross_sales
                    revenue_by_jurisdiction[jurisdiction] = (
                        revenue_by_jurisdiction.get(jurisdiction, 0.0)
                        + snapshot.gross_sales
                    )

        output_tax = 0.0
        stock_transfers = 0.0
        for sale in record.sales_entries:
            if sale.is_stock_transfer:
                stock_transfers += abs(sale.taxable_amount)
            elif sale.is_return:
                output_tax -= abs(sale.tax_amount)
            else:
                output_tax += abs(sale.tax_amount)

        margins = compute_margins(
            head_totals, stock, subhead_totals, gross_revenue=gross_revenue
        )

        record.computed = ComputedBlock(
            gross_revenue=gross_revenue,
            revenue_by_jurisdiction=dict(sorted(revenue_by_jurisdiction.items())),
            opening_stock=stock.opening_stock,
            purchases=stock.purchases,
            closing_stock=stock.closing_stock,
            rm_cost=margins.rm_cost,
            has_stock_data=stock.has_data,
            head_totals=head_totals,
            subhead_totals=subhead_totals,
            margins=margins,
            ignored_total=head_totals.get(IGNORE, 0.0),
            excluded_total=head_totals.get(EXCLUDE, 0.0),
            output_tax=output_tax,
            stock_transfers=stock_transfers,
            unclassified_count=len(record.unclassified),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log_upload(
        self,
        record: MonthlyMISRecord,
        kind: str,
        jurisdiction: str,
        source_file: str,
        count: int,
    ) -> None:
        record.uploads.append(
            UploadLogEntry(
                kind=kind,
                jurisdiction=jurisdiction,
                source_file=source_file,
                at=self._clock(),
                count=count,
            )
        )

    @staticmethod
    def _drop_overrides(record: MonthlyMISRecord, entries: Iterable[Entry]) -> None:
        for entry in entries:
            record.overrides.pop(entry.entry_id, None)

    # ------------------------------------------------------------------
    # Load / save hooks
    # ------------------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        """Serialize raw inputs, overrides and rules into plain data.

        Derived blocks are not exported; they are rebuilt on load.
        """
        months: dict[str, Any] = {}
        for month in self.months():
            record = self._records[month]
            months[month] = {
                "primary_jurisdiction": record.primary_jurisdiction,
                "balance_sheets": {
                    j: _snapshot_to_dict(s) for j, s in record.balance_sheets.items()
                },
                "journal_entries": [asdict(e) for e in record.journal_entries],
                "sales_entries": [asdict(e) for e in record.sales_entries],
                "overrides": {k: list(v) for k, v in record.overrides.items()},
                "uploads": [
                    {**asdict(u), "at": _iso(u.at)} for u in record.uploads
                ],
                "created_at": _iso(record.created_at),
                "updated_at": _iso(record.updated_at),
            }

        return {
            "version": PAYLOAD_VERSION,
            "primary_jurisdiction": self.primary_jurisdiction,
            "revenue_fallback_to_balance_sheet": self.revenue_fallback_to_balance_sheet,
            "rules": [rule_to_dict(r) for r in self._rule_set.rules],
            "months": months,
        }

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "MonthlyRecordStore":
        """Rebuild a store from :meth:`to_payload` output.

        Raises:
            ValueError: if the payload version is not supported or a month
                key is malformed.
        """
        version = payload.get("version", PAYLOAD_VERSION)
        if version != PAYLOAD_VERSION:
            raise ValueError(f"Unsupported store payload version: {version!r}")

        store = cls(
            rules=[rule_from_dict(r) for r in payload.get("rules", [])],
            primary_jurisdiction=payload.get("primary_jurisdiction", "UP"),
            revenue_fallback_to_balance_sheet=payload.get(
                "revenue_fallback_to_balance_sheet", False
            ),
            clock=clock,
        )

        for month, data in payload.get("months", {}).items():
            validate_month_key(month)
            record = MonthlyMISRecord(
                month=month,
                primary_jurisdiction=data.get(
                    "primary_jurisdiction", store.primary_jurisdiction
                ),
                balance_sheets={
                    j: _snapshot_from_dict(s)
                    for j, s in data.get("balance_sheets", {}).items()
                },
                journal_entries=[
                    LedgerTransaction(**e) for e in data.get("journal_entries", [])
                ],
                sales_entries=[SalesEntry(**e) for e in data.get("sales_entries", [])],
                overrides={
                    k: (v[0], v[1]) for k, v in data.get("overrides", {}).items()
                },
                uploads=[
                    UploadLogEntry(**{**u, "at": _parse_iso(u.get("at"))})
                    for u in data.get("uploads", [])
                ],
                created_at=_parse_iso(data.get("created_at")),
            )
            store._records[month] = record
            store._reclassify(record)
            store._recompute(record)
            record.updated_at = _parse_iso(data.get("updated_at"))

        return store


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------


def _rule_target(rule: Optional[ClassificationRule]) -> Optional[tuple[str, str]]:
    if rule is None:
        return None
    return validate_pair(rule.head, rule.subhead)


def _classified(
    entry: Entry,
    kind: str,
    head: str,
    subhead: str,
    signed_amount: float,
    rule_id: Optional[str],
    manual: bool = False,
    original: Optional[tuple[str, str]] = None,
) -> ClassifiedTransaction:
    """Attach a head/subhead to ``entry`` and apply the counting side rule."""
    head_def = get_head(head)
    if head_def.type == "revenue":
        counted = signed_amount < 0
    elif head_def.type == "expense":
        counted = signed_amount > 0
    else:
        counted = True

    return ClassifiedTransaction(
        entry=entry,
        kind=kind,
        head=head_def.name,
        subhead=subhead,
        amount=abs(signed_amount),
        counted=counted,
        rule_id=rule_id,
        manual=manual,
        original_head=original[0] if manual and original else None,
        original_subhead=original[1] if manual and original else None,
    )


def _jurisdictions(entries: Iterable[Entry]) -> str:
    return ",".join(sorted({e.jurisdiction for e in entries if e.jurisdiction}))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _snapshot_to_dict(snapshot: BalanceSheetSnapshot) -> dict[str, Any]:
    data = asdict(snapshot)
    data["extracted_at"] = _iso(snapshot.extracted_at)
    return data


def _snapshot_from_dict(data: dict[str, Any]) -> BalanceSheetSnapshot:
    lines = tuple(ExtractedLine(**line) for line in data.get("extracted_lines", ()))
    return BalanceSheetSnapshot(
        **{
            **data,
            "extracted_at": _parse_iso(data.get("extracted_at")),
            "extracted_lines": lines,
        }
    )
