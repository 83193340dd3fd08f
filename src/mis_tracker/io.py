# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for MIS Tracker.

This module reads already-parsed rows from CSV files and turns them into
the record shapes of records.py. It also provides the load/save hooks of
the store (JSON payload) and of the rule list (CSV).

Column names are case-insensitive; surrounding spaces are ignored and
inner spaces are read as underscores ('Voucher No' -> 'voucher_no').

Journal register
----------------
Two formats are supported:

1) Signed amount format
       date, description, amount [, voucher_id, jurisdiction]

   ``amount`` is positive for a debit and negative for a credit.

2) Debit / credit format
       date, description, debit, credit [, voucher_id, jurisdiction]

   The signed amount is computed as:

       amount = debit - credit

Aliases: 'account', 'ledger', 'particulars' and 'label' for description;
'voucher', 'voucher_no' and 'reference' for voucher_id; 'state' for
jurisdiction.

Sales register
--------------
       date, channel, taxable_amount [, invoice_id, jurisdiction,
       tax_amount, party, is_return, is_stock_transfer]

A ``type`` column with values such as 'return' or 'stock transfer' is
accepted instead of the two flag columns.

Balance sheets
--------------
       month, jurisdiction, opening_stock, purchases, closing_stock
       [, gross_sales, gross_profit, net_profit, net_loss,
          direct_expenses, source_file, extracted_at]

Dates
-----
ISO dates (YYYY-MM-DD) are accepted as-is; other spellings are read day
first, so '12/04/2025' is 12 April 2025.

Numeric fields
--------------
Malformed numeric values are coerced to 0.0 and counted; one WARNING per
file reports how many values were coerced. Missing required columns and
unparsable dates raise a ValueError.
"""

import json
import logging
import os
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, TypeVar, Union

import pandas as pd

from .periods import month_key, validate_month_key
from .records import (
    SNAPSHOT_AMOUNT_FIELDS,
    BalanceSheetSnapshot,
    LedgerTransaction,
    SalesEntry,
    parse_amount,
)
from .rules import ClassificationRule, rule_from_dict, rule_to_dict
from .store import MonthlyRecordStore

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]
T = TypeVar("T", LedgerTransaction, SalesEntry)

_JOURNAL_ALIASES = {
    "account": "description",
    "account_description": "description",
    "ledger": "description",
    "particulars": "description",
    "label": "description",
    "voucher": "voucher_id",
    "voucher_no": "voucher_id",
    "voucher_number": "voucher_id",
    "reference": "voucher_id",
    "state": "jurisdiction",
}

_SALES_ALIASES = {
    "invoice": "invoice_id",
    "invoice_no": "invoice_id",
    "invoice_number": "invoice_id",
    "state": "jurisdiction",
    "taxable_value": "taxable_amount",
    "taxable": "taxable_amount",
    "tax": "tax_amount",
    "gst_amount": "tax_amount",
    "customer": "party",
    "return": "is_return",
    "stock_transfer": "is_stock_transfer",
}

_BALANCE_SHEET_ALIASES = {
    "period": "month",
    "state": "jurisdiction",
    "opening": "opening_stock",
    "closing": "closing_stock",
    "sales": "gross_sales",
}

RULE_COLUMNS = [
    "rule_id",
    "pattern",
    "match_mode",
    "head",
    "subhead",
    "priority",
    "active",
    "source",
    "notes",
    "created_at",
]

_TRUE_VALUES = {"1", "true", "yes", "y", "t", "x"}


def _read_csv(path: PathLike, aliases: dict[str, str]) -> pd.DataFrame:
    """Read a CSV as strings and normalize column names."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = ["_".join(str(c).strip().lower().split()) for c in df.columns]
    renames = {c: aliases[c] for c in df.columns if c in aliases}
    # Never rename onto a column that already exists.
    renames = {k: v for k, v in renames.items() if v not in df.columns}
    return df.rename(columns=renames)


def _require(df: pd.DataFrame, required: Iterable[str], what: str) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(
            f"Invalid {what} structure: missing column(s) {', '.join(missing)}."
        )


def _iso_dates(series: pd.Series, what: str) -> list[str]:
    """Parse a date column strictly and return ISO strings.

    ISO dates ('2025-04-12') are read as such; any other spelling is read
    day first ('12/04/2025', '12-04-2025', '12 Apr 2025'), as in Indian
    registers.
    """
    text = series.astype(str).str.strip()
    if (text == "").any():
        raise ValueError(f"Missing values in 'date' column of {what}.")

    parsed = pd.to_datetime(text, format="ISO8601", errors="coerce")
    other = parsed.isna()
    if other.any():
        try:
            parsed[other] = pd.to_datetime(
                text[other], dayfirst=True, format="mixed", errors="raise"
            )
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Invalid values in 'date' column of {what}.") from exc
    if parsed.isna().any():
        raise ValueError(f"Invalid values in 'date' column of {what}.")
    return [d.strftime("%Y-%m-%d") for d in parsed]


class _AmountCoercer:
    """Parse numeric cells and count the malformed ones."""

    def __init__(self) -> None:
        self.coerced = 0

    def __call__(self, value: Any) -> float:
        result = parse_amount(value)
        if result is None:
            self.coerced += 1
            return 0.0
        return result

    def report(self, path: PathLike) -> None:
        if self.coerced:
            logger.warning(
                "%s: %d malformed numeric value(s) coerced to 0", path, self.coerced
            )


def _flag(value: Any) -> bool:
    return str(value).strip().lower() in _TRUE_VALUES


def _cell(row: pd.Series, column: str) -> str:
    return str(row[column]).strip() if column in row.index else ""


def read_journal_entries(path: PathLike) -> list[LedgerTransaction]:
    """
    Read journal entries from a CSV file.

    Parameters
    ----------
    path:
        Path to the CSV file (see module docstring for supported formats).

    Returns
    -------
    list[LedgerTransaction]
        One transaction per row, in file order, without entry ids (ids are
        assigned by the store).

    Raises
    ------
    ValueError
        If neither supported column set is present or a date is invalid.
    """
    df = _read_csv(path, _JOURNAL_ALIASES)
    _require(df, ("date", "description"), "journal register")

    amount = _AmountCoercer()

    # ----- Signed amount format ---------------------------------------------
    if "amount" in df.columns:
        signed = [amount(v) for v in df["amount"]]

    # ----- Debit / credit format --------------------------------------------
    elif {"debit", "credit"}.issubset(df.columns):
        signed = [amount(d) - amount(c) for d, c in zip(df["debit"], df["credit"])]

    else:
        raise ValueError(
            "Invalid journal register structure. Expected either:\n"
            "  - date, description, amount\n"
            "  - date, description, debit, credit\n"
            "(column names are case-insensitive)."
        )

    dates = _iso_dates(df["date"], "journal register")
    source = Path(path).name
    entries = [
        LedgerTransaction(
            date=dates[i],
            voucher_id=_cell(row, "voucher_id"),
            description=_cell(row, "description"),
            amount=signed[i],
            jurisdiction=_cell(row, "jurisdiction"),
            source_file=source,
        )
        for i, (_, row) in enumerate(df.iterrows())
    ]
    amount.report(path)
    return entries


def read_sales_entries(path: PathLike) -> list[SalesEntry]:
    """
    Read sales-register entries from a CSV file.

    Returns one SalesEntry per row, in file order.

    Raises
    ------
    ValueError
        If a required column is missing or a date is invalid.
    """
    df = _read_csv(path, _SALES_ALIASES)
    _require(df, ("date", "channel", "taxable_amount"), "sales register")

    amount = _AmountCoercer()
    dates = _iso_dates(df["date"], "sales register")
    source = Path(path).name

    entries: list[SalesEntry] = []
    for i, (_, row) in enumerate(df.iterrows()):
        kind = _cell(row, "type").lower()
        entries.append(
            SalesEntry(
                date=dates[i],
                invoice_id=_cell(row, "invoice_id"),
                jurisdiction=_cell(row, "jurisdiction"),
                channel=_cell(row, "channel"),
                taxable_amount=amount(row["taxable_amount"]),
                tax_amount=amount(row["tax_amount"]) if "tax_amount" in row.index else 0.0,
                party=_cell(row, "party"),
                is_return=_flag(_cell(row, "is_return")) or "return" in kind,
                is_stock_transfer=(
                    _flag(_cell(row, "is_stock_transfer")) or "transfer" in kind
                ),
                source_file=source,
            )
        )
    amount.report(path)
    return entries


def read_balance_sheets(path: PathLike) -> list[tuple[str, BalanceSheetSnapshot]]:
    """
    Read balance-sheet snapshots from a CSV file.

    Returns
    -------
    list[tuple[str, BalanceSheetSnapshot]]
        ``(month, snapshot)`` pairs in file order.

    Raises
    ------
    ValueError
        If a required column is missing or a month key is malformed.
    """
    df = _read_csv(path, _BALANCE_SHEET_ALIASES)
    _require(df, ("month", "jurisdiction"), "balance sheet")

    amount = _AmountCoercer()
    source = Path(path).name

    out: list[tuple[str, BalanceSheetSnapshot]] = []
    for _, row in df.iterrows():
        month = validate_month_key(_cell(row, "month"))
        extracted_at = _cell(row, "extracted_at")
        values = {
            name: amount(row[name]) if name in row.index else 0.0
            for name in SNAPSHOT_AMOUNT_FIELDS
        }
        out.append(
            (
                month,
                BalanceSheetSnapshot(
                    jurisdiction=_cell(row, "jurisdiction"),
                    source_file=_cell(row, "source_file") or source,
                    extracted_at=(
                        datetime.fromisoformat(extracted_at) if extracted_at else None
                    ),
                    **values,
                ),
            )
        )
    amount.report(path)
    return out


def group_by_month(entries: Iterable[T]) -> dict[str, list[T]]:
    """Split entries by the period key of their date, chronologically."""
    grouped: dict[str, list[T]] = {}
    for entry in entries:
        grouped.setdefault(month_key(entry.date), []).append(entry)
    return dict(sorted(grouped.items()))


def read_rules(path: PathLike) -> list[ClassificationRule]:
    """
    Read classification rules from a CSV file.

    Required columns: pattern, match_mode, head, subhead. Other columns of
    RULE_COLUMNS are optional. Rules are returned as-is; invalid patterns or
    pairings are skipped later by the rule engine, not here.
    """
    df = _read_csv(path, {"mode": "match_mode"})
    _require(df, ("pattern", "match_mode", "head", "subhead"), "rules file")

    rules: list[ClassificationRule] = []
    for _, row in df.iterrows():
        data = {c: _cell(row, c) for c in RULE_COLUMNS if c in row.index}
        if data.get("priority") and parse_amount(data["priority"]) is None:
            logger.warning(
                "%s: invalid priority %r for pattern %r, using default",
                path,
                data["priority"],
                data.get("pattern"),
            )
            data["priority"] = ""
        rules.append(rule_from_dict(data))
    return rules


def write_rules(rules: Iterable[ClassificationRule], path: PathLike) -> Path:
    """Write rules to a CSV file (RULE_COLUMNS order) and return its path."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([rule_to_dict(r) for r in rules], columns=RULE_COLUMNS)
    df.to_csv(out, index=False)
    return out


def save_store_json(store: MonthlyRecordStore, path: PathLike) -> Path:
    """Save the store payload (raw inputs, overrides, rules) as JSON."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(
        json.dumps(store.to_payload(), indent=2, ensure_ascii=False), encoding="utf-8"
    )
    return out


def load_store_json(
    path: PathLike, clock: Optional[Callable[[], datetime]] = None
) -> MonthlyRecordStore:
    """
    Load a store from a JSON payload written by :func:`save_store_json`.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the file is not valid JSON or not a store payload.
    """
    src = Path(path)
    if not src.is_file():
        raise FileNotFoundError(f"Store file not found: {src}")

    try:
        payload = json.loads(src.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse store file: {src}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Invalid store file {src}: expected a JSON object.")

    return MonthlyRecordStore.from_payload(payload, clock=clock)
