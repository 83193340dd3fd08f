# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for MIS Tracker.

This module is responsible for:
- loading the application configuration from a TOML file,
- resolving data file paths relative to the TOML file,
- exposing typed dataclasses used by the CLI to build a store.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

DEFAULT_CONFIG_FILE = "mis_tracker_config.toml"

DISPLAY_MODES: tuple[str, ...] = ("table", "csv", "both")
VIEWS: tuple[str, ...] = ("summary", "heads", "detailed")
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DataFiles:
    """Optional input / output files, resolved to absolute paths."""

    journal_file: Optional[Path] = None
    sales_file: Optional[Path] = None
    balance_sheets_file: Optional[Path] = None
    store_file: Optional[Path] = None


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for MIS Tracker.

    This aggregates:
    - the company settings (primary jurisdiction, currency),
    - the fiscal year start month,
    - classification options (rules file, system rule pack, revenue
      fallback),
    - data files,
    - display and logging options.
    """

    primary_jurisdiction: str = "UP"
    currency: str = "INR"
    fiscal_year_start_month: int = 4
    rules_file: Optional[Path] = None
    include_system_rules: bool = True
    revenue_fallback_to_balance_sheet: bool = False
    data: DataFiles = DataFiles()
    display_mode: str = "table"
    decimals: int = 2
    view: str = "summary"
    log_level: str = "WARNING"


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Config section [{name}] must be a table.")
    return section


def _bool(section: Mapping[str, Any], key: str, default: bool, name: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"Invalid value for '{name}.{key}': expected true or false.")
    return value


def _choice(
    section: Mapping[str, Any], key: str, default: str, choices: tuple[str, ...], name: str
) -> str:
    value = str(section.get(key, default))
    if value not in choices:
        raise ValueError(
            f"Invalid value for '{name}.{key}': {value!r}. "
            f"Expected one of: {', '.join(choices)}."
        )
    return value


def _path(base_dir: Path, value: Any) -> Optional[Path]:
    if not value:
        return None
    return (base_dir / str(value)).resolve()


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the MIS Tracker configuration from a TOML file.

    Expected sections (all optional)
    --------------------------------
    [company]
        primary_jurisdiction, currency.

    [fiscal_year]
        start_month (1-12, default 4 for an April-March year).

    [classification]
        rules_file, include_system_rules, revenue_fallback_to_balance_sheet.

    [data]
        journal_file, sales_file, balance_sheets_file, store_file.

    [display]
        mode (table | csv | both), decimals, view (summary | heads | detailed).

    [logging]
        level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Notes
    -----
    - All file paths are resolved relative to the directory of the TOML
      file itself.
    - Unknown keys are ignored.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If the file cannot be parsed or a value has an invalid type.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILE).resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Company
    company = _section(raw, "company")
    primary_jurisdiction = str(company.get("primary_jurisdiction") or "UP").upper()
    currency = str(company.get("currency") or "INR")

    # 2) Fiscal year
    fiscal = _section(raw, "fiscal_year")
    try:
        start_month = int(fiscal.get("start_month", 4))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value for 'fiscal_year.start_month': expected an integer."
        ) from exc
    if not 1 <= start_month <= 12:
        raise ValueError("Invalid value for 'fiscal_year.start_month': expected 1-12.")

    # 3) Classification
    classification = _section(raw, "classification")
    rules_file = _path(base_dir, classification.get("rules_file"))
    include_system_rules = _bool(
        classification, "include_system_rules", True, "classification"
    )
    revenue_fallback = _bool(
        classification, "revenue_fallback_to_balance_sheet", False, "classification"
    )

    # 4) Data files
    data_section = _section(raw, "data")
    data = DataFiles(
        journal_file=_path(base_dir, data_section.get("journal_file")),
        sales_file=_path(base_dir, data_section.get("sales_file")),
        balance_sheets_file=_path(base_dir, data_section.get("balance_sheets_file")),
        store_file=_path(base_dir, data_section.get("store_file")),
    )

    # 5) Display
    display = _section(raw, "display")
    display_mode = _choice(display, "mode", "table", DISPLAY_MODES, "display")
    view = _choice(display, "view", "summary", VIEWS, "display")
    try:
        decimals = int(display.get("decimals", 2))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value for 'display.decimals': expected an integer."
        ) from exc

    # 6) Logging
    logging_section = _section(raw, "logging")
    log_level = str(logging_section.get("level", "WARNING")).upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(
            f"Invalid value for 'logging.level': {log_level!r}. "
            f"Expected one of: {', '.join(LOG_LEVELS)}."
        )

    return AppConfig(
        primary_jurisdiction=primary_jurisdiction,
        currency=currency,
        fiscal_year_start_month=start_month,
        rules_file=rules_file,
        include_system_rules=include_system_rules,
        revenue_fallback_to_balance_sheet=revenue_fallback,
        data=data,
        display_mode=display_mode,
        decimals=decimals,
        view=view,
        log_level=log_level,
    )
