# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for MIS Tracker.

Every monthly record is identified by a canonical period key ``YYYY-MM``.
This module validates keys, converts dates to keys, enumerates inclusive
month ranges and derives fiscal years (April to March by default).
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Union

import pandas as pd

_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class FiscalYear:
    """A fiscal year expressed as an inclusive range of period keys."""

    start_year: int
    start_month: int
    start: str
    end: str
    label: str


def validate_month_key(month: str) -> str:
    """Return ``month`` unchanged if it is a valid ``YYYY-MM`` key.

    Raises:
        ValueError: if the key is malformed (e.g. '2025-13', '2025-1').
    """
    if not isinstance(month, str) or not _MONTH_KEY_RE.match(month):
        raise ValueError(f"Invalid period key {month!r}, expected 'YYYY-MM'.")
    return month


def parse_month_key(month: str) -> tuple[int, int]:
    """Split a period key into ``(year, month)`` integers."""
    validate_month_key(month)
    year, mon = month.split("-")
    return int(year), int(mon)


def month_key(value: Union[date, datetime, pd.Timestamp, str]) -> str:
    """Return the period key of a date-like value.

    Strings are parsed with pandas; a string that is already a period key is
    returned as-is.
    """
    if isinstance(value, str):
        if _MONTH_KEY_RE.match(value):
            return value
        value = pd.Timestamp(value)
    return f"{value.year:04d}-{value.month:02d}"


def month_range(start_month: str, end_month: str) -> list[str]:
    """Enumerate every period key in ``[start_month, end_month]``.

    Months are returned in chronological order. An inverted range yields an
    empty list rather than an error.
    """
    validate_month_key(start_month)
    validate_month_key(end_month)
    periods = pd.period_range(start=start_month, end=end_month, freq="M")
    return [p.strftime("%Y-%m") for p in periods]


def fiscal_year(start_year: int, start_month: int = 4) -> FiscalYear:
    """Fiscal year starting in ``start_year``/``start_month``.

    With the default April start, ``fiscal_year(2024)`` spans 2024-04 to
    2025-03 and is labelled 'FY 2024-25'. A January start gives a calendar
    year labelled 'FY 2024'.
    """
    if not 1 <= int(start_month) <= 12:
        raise ValueError(f"Invalid fiscal year start month: {start_month!r}")

    start = f"{start_year:04d}-{start_month:02d}"
    if start_month == 1:
        end = f"{start_year:04d}-12"
        label = f"FY {start_year}"
    else:
        end = f"{start_year + 1:04d}-{start_month - 1:02d}"
        label = f"FY {start_year}-{str(start_year + 1)[-2:]}"

    return FiscalYear(
        start_year=start_year,
        start_month=start_month,
        start=start,
        end=end,
        label=label,
    )


def fiscal_year_for_month(month: str, start_month: int = 4) -> FiscalYear:
    """Return the fiscal year that contains ``month``."""
    year, mon = parse_month_key(month)
    start_year = year if mon >= start_month else year - 1
    return fiscal_year(start_year, start_month)


def month_label(month: str) -> str:
    """Human-readable label for a period key, e.g. '2025-04' -> 'Apr 2025'."""
    year, mon = parse_month_key(month)
    return date(year, mon, 1).strftime("%b %Y")
