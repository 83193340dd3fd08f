# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
MIS Tracker
-----------

A Python-based monthly MIS (Management Information System) engine for
Small and Medium-sized Businesses. Financial facts already extracted from
balance sheets, journal registers and sales registers are pushed into a
per-month store, ledger lines are classified into a fixed chart of heads,
and a standardized Profit & Loss waterfall is produced per month or for
any range of months.

Main capabilities:
- rule-based classification of ledger lines into heads/subheads
  (exact, substring and regular-expression rules, ordered by priority),
- a per-month, per-jurisdiction record store that never mixes periods,
- a margin waterfall (Gross Margin, CM1, CM2, CM3, EBITDA, EBT, PAT),
- range and fiscal-year roll-ups with first/last stock selection,
- user reclassification that learns new high-priority rules,
- tabular views (pandas) and a small command-line interface.

MIS Tracker separates computation (store, rules, margins, aggregation),
configuration (TOML) and presentation (views / CLI).

Version: 0.2.0

Usage:
    python -m mis_tracker.cli --help
"""

__all__ = ["store", "rules", "margins", "aggregation", "views", "io"]

__version__ = "0.2.0"
