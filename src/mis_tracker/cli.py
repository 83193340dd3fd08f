# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for MIS Tracker.

This module wires together the main building blocks of MIS Tracker:

- application configuration (company, fiscal year, data files, display),
- CSV readers for already-parsed journal, sales and balance-sheet rows,
- the monthly record store and its classification rules,
- range / fiscal-year aggregation,
- view helpers (statement levels and tabular rendering).

The CLI is intentionally thin: it does not implement any classification
or margin logic itself. It builds a store from the configured inputs and
renders what the store computes.


High-level pipeline
-------------------

1) Load the TOML configuration (mis_tracker_config.toml by default). When
   the default file does not exist, built-in defaults are used.

2) Build the store:
   - from a saved JSON payload when a store file exists,
   - otherwise empty, with the system rule pack and/or a rules CSV.

3) Import the CSV inputs (journal, sales, balance sheets). Each file is
   split by month and stored in 'replace' mode, so that running the same
   command twice never duplicates lines.

4) Run the requested command and render tables to stdout and/or CSV
   files depending on the display mode.


Commands
--------

report
    MIS statement for one month (--month), a range (--from/--to) or a
    fiscal year (--fy).

classify
    Classification summary (head/subhead totals) and the list of
    unclassified entries, for one month or every month.

availability
    Which months hold balance-sheet, journal and sales data.


Examples
--------

    mis-tracker report --month 2025-04 --journal data/journal_apr.csv
    mis-tracker report --from 2025-04 --to 2025-06 --view detailed
    mis-tracker report --fy 2024 --display-mode both --output out/
    mis-tracker classify --journal data/journal_apr.csv
    mis-tracker availability --from 2025-04 --to 2026-03
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .aggregation import AggregatedRangeRecord, aggregate, aggregate_fiscal_year
from .config import DEFAULT_CONFIG_FILE, DISPLAY_MODES, VIEWS, AppConfig, load_app_config
from .io import (
    group_by_month,
    load_store_json,
    read_balance_sheets,
    read_journal_entries,
    read_rules,
    read_sales_entries,
    save_store_json,
)
from .periods import month_label
from .rules import DEFAULT_SYSTEM_RULES, ClassificationRule
from .store import MonthlyRecordStore
from .views import (
    apply_view_level_filter,
    availability_frame,
    build_statement,
    head_breakdown_frame,
    unclassified_frame,
)

logger = logging.getLogger(__name__)


def _add_input_arguments(p: argparse.ArgumentParser) -> None:
    """Input overrides shared by every command."""
    p.add_argument("--journal", help="Journal register CSV (overrides [data].journal_file).")
    p.add_argument("--sales", help="Sales register CSV (overrides [data].sales_file).")
    p.add_argument(
        "--balance-sheets",
        dest="balance_sheets",
        help="Balance-sheet snapshots CSV (overrides [data].balance_sheets_file).",
    )
    p.add_argument(
        "--rules",
        help="Classification rules CSV (overrides [classification].rules_file).",
    )
    p.add_argument(
        "--store",
        help="JSON store file to load from (overrides [data].store_file).",
    )
    p.add_argument(
        "--save",
        action="store_true",
        help="Save the store (including imported rows) back to the store file.",
    )


def _add_output_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--display-mode",
        dest="display_mode",
        choices=list(DISPLAY_MODES),
        help=(
            "Override the display.mode setting from the configuration file. "
            "'table' prints results to stdout, "
            "'csv' writes CSV files only, "
            "'both' does both."
        ),
    )
    p.add_argument(
        "--output",
        dest="output_dir",
        help=(
            "Output directory where CSV files will be written when display "
            "mode includes 'csv'. If omitted, 'data/output' is used."
        ),
    )


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="mis-tracker",
        description=(
            "MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs. "
            "Classifies journal lines into MIS heads, computes the margin "
            "waterfall per month and aggregates ranges of months."
        ),
    )
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of mis_tracker and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the TOML configuration file. If omitted, "
            f"'{DEFAULT_CONFIG_FILE}' in the current directory is used when present."
        ),
    )
    ap.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log INFO messages (overrides [logging].level).",
    )

    subparsers = ap.add_subparsers(dest="command", metavar="command")

    # report
    report = subparsers.add_parser("report", help="Render the MIS statement.")
    period = report.add_mutually_exclusive_group()
    period.add_argument("--month", help="Single month (YYYY-MM).")
    period.add_argument(
        "--fy",
        type=int,
        metavar="START_YEAR",
        help="Fiscal year starting in START_YEAR (e.g. 2024 for FY 2024-25).",
    )
    report.add_argument("--from", dest="from_month", help="Range start (YYYY-MM).")
    report.add_argument("--to", dest="to_month", help="Range end (YYYY-MM).")
    report.add_argument(
        "--view",
        choices=list(VIEWS),
        help=(
            "Statement detail: summary = waterfall lines only; "
            "heads = waterfall + heads; detailed = everything."
        ),
    )
    _add_input_arguments(report)
    _add_output_arguments(report)

    # classify
    classify = subparsers.add_parser(
        "classify", help="Show head/subhead totals and unclassified entries."
    )
    classify.add_argument("--month", help="Restrict to one month (YYYY-MM).")
    _add_input_arguments(classify)
    _add_output_arguments(classify)

    # availability
    availability = subparsers.add_parser(
        "availability", help="Show which months hold data."
    )
    availability.add_argument("--from", dest="from_month", help="Range start (YYYY-MM).")
    availability.add_argument("--to", dest="to_month", help="Range end (YYYY-MM).")
    _add_input_arguments(availability)
    _add_output_arguments(availability)

    return ap


def _load_config(config_path: Optional[str]) -> AppConfig:
    if config_path:
        return load_app_config(config_path)
    if Path(DEFAULT_CONFIG_FILE).is_file():
        return load_app_config()
    return AppConfig()


def _configure_logging(config: AppConfig, verbose: bool) -> None:
    level = logging.INFO if verbose else getattr(logging, config.log_level)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _resolve(cli_value: Optional[str], config_value: Optional[Path]) -> Optional[Path]:
    if cli_value:
        return Path(cli_value)
    return config_value


def _load_rules(config: AppConfig, rules_path: Optional[Path]) -> list[ClassificationRule]:
    rules: list[ClassificationRule] = []
    if config.include_system_rules:
        rules.extend(DEFAULT_SYSTEM_RULES)
    if rules_path is not None:
        if not rules_path.is_file():
            raise FileNotFoundError(f"Rules file not found: {rules_path}")
        rules.extend(read_rules(rules_path))
    return rules


def build_store(config: AppConfig, args: argparse.Namespace) -> MonthlyRecordStore:
    """Build a store from the configuration and CLI input overrides."""
    store_path = _resolve(args.store, config.data.store_file)
    rules_path = _resolve(args.rules, config.rules_file)

    if store_path is not None and store_path.is_file():
        store = load_store_json(store_path)
        logger.info("Loaded store from %s (%d months)", store_path, len(store))
        if rules_path is not None:
            store.set_rules(_load_rules(config, rules_path))
    else:
        store = MonthlyRecordStore(
            rules=_load_rules(config, rules_path),
            primary_jurisdiction=config.primary_jurisdiction,
            revenue_fallback_to_balance_sheet=config.revenue_fallback_to_balance_sheet,
        )

    balance_path = _resolve(args.balance_sheets, config.data.balance_sheets_file)
    if balance_path is not None:
        for month, snapshot in read_balance_sheets(balance_path):
            store.store_balance_sheet(month, snapshot.jurisdiction, snapshot)

    journal_path = _resolve(args.journal, config.data.journal_file)
    if journal_path is not None:
        for month, entries in group_by_month(read_journal_entries(journal_path)).items():
            store.store_transactions(month, entries, "replace", source_file=journal_path.name)

    sales_path = _resolve(args.sales, config.data.sales_file)
    if sales_path is not None:
        for month, entries in group_by_month(read_sales_entries(sales_path)).items():
            store.store_sales(month, entries, "replace", source_file=sales_path.name)

    if args.save:
        if store_path is None:
            raise ValueError("--save requires a store file (--store or [data].store_file).")
        save_store_json(store, store_path)
        print(f"Saved store to {store_path}")

    return store


def _render(
    frames: list[tuple[str, str, pd.DataFrame]],
    display_mode: str,
    output_dir: Optional[str],
) -> None:
    """Print and/or write ``(title, file stem, frame)`` triples."""
    if display_mode in {"table", "both"}:
        for title, _, df in frames:
            print()
            print(f"=== {title} ===")
            if df.empty:
                print("(no rows)")
            else:
                print(df.to_string(index=False))

    if display_mode in {"csv", "both"}:
        out_dir = Path(output_dir) if output_dir else Path("data/output")
        out_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        for _, stem, df in frames:
            path = out_dir / f"{stem}_{timestamp}.csv"
            df.to_csv(path, index=False)
            print(f"Wrote {path} ({len(df)} rows)")


def _range_summary(record: AggregatedRangeRecord) -> str:
    if not record.has_data:
        return f"{record.label}: no data for any month in range."
    line = f"{record.label}: {len(record.months_included)} month(s) with data"
    if record.missing_months:
        line += f"; missing: {', '.join(record.missing_months)}"
    return line


def _handle_report(
    args: argparse.Namespace, config: AppConfig, store: MonthlyRecordStore
) -> list[tuple[str, str, pd.DataFrame]]:
    view = args.view or config.view

    if args.month:
        record = store.get(args.month)
        if record is None or not record.has_data:
            print(f"No data for {args.month}.")
            return []
        title = f"MIS - {month_label(args.month)}"
        statement = build_statement(record, decimals=config.decimals)
        unclassified = len(record.unclassified)
        if unclassified:
            print(f"Warning: {unclassified} unclassified entries in {args.month}.")
        return [(title, f"mis_{args.month}", apply_view_level_filter(statement, view))]

    if args.fy is not None:
        summary = aggregate_fiscal_year(store, args.fy, config.fiscal_year_start_month)
    else:
        months = store.available_months()
        start = args.from_month or (months[0] if months else None)
        end = args.to_month or (months[-1] if months else None)
        if start is None or end is None:
            print("No data in store.")
            return []
        summary = aggregate(store, start, end)

    print(_range_summary(summary))
    statement = build_statement(summary, decimals=config.decimals)
    stem = "mis_" + summary.label.replace(" ", "_").replace("→", "to")
    return [(f"MIS - {summary.label}", stem, apply_view_level_filter(statement, view))]


def _handle_classify(
    args: argparse.Namespace, config: AppConfig, store: MonthlyRecordStore
) -> list[tuple[str, str, pd.DataFrame]]:
    months = [args.month] if args.month else store.available_months()
    frames: list[tuple[str, str, pd.DataFrame]] = []
    for month in months:
        record = store.get(month)
        if record is None:
            print(f"No data for {month}.")
            continue
        frames.append(
            (
                f"Classification - {month_label(month)}",
                f"classification_{month}",
                head_breakdown_frame(record, decimals=config.decimals),
            )
        )
        frames.append(
            (
                f"Unclassified - {month_label(month)}",
                f"unclassified_{month}",
                unclassified_frame(record.unclassified),
            )
        )
    return frames


def _handle_availability(
    args: argparse.Namespace, config: AppConfig, store: MonthlyRecordStore
) -> list[tuple[str, str, pd.DataFrame]]:
    items = store.availability(args.from_month, args.to_month)
    return [("Data availability", "availability", availability_frame(items))]


_HANDLERS = {
    "report": _handle_report,
    "classify": _handle_classify,
    "availability": _handle_availability,
}


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the MIS Tracker CLI.

    Parses command-line arguments, loads the configuration, builds the
    store from the configured inputs and renders the selected command as
    console tables and/or CSV files.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"mis_tracker version {__version__}")
        return

    if args.command is None:
        parser.print_help()
        return

    if args.command == "report" and (args.from_month or args.to_month):
        if args.month:
            parser.error("argument --month: not allowed with --from/--to")
        if args.fy is not None:
            parser.error("argument --fy: not allowed with --from/--to")

    try:
        config = _load_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    _configure_logging(config, args.verbose)

    try:
        store = build_store(config, args)
        frames = _HANDLERS[args.command](args, config, store)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    display_mode = args.display_mode or config.display_mode
    _render(frames, display_mode, args.output_dir)


if __name__ == "__main__":
    main()
