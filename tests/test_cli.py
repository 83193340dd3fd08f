from pathlib import Path

import pytest

from mis_tracker import __version__
from mis_tracker.cli import main


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    """Empty working directory with one month of journal and sales data."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "journal.csv").write_text(
        "date,description,amount,voucher_id,jurisdiction\n"
        "2025-04-02,Amazon Seller Fee,1500,JV-1,UP\n"
        "2025-04-03,Facebook Ads,2500,JV-2,UP\n"
        "2025-04-04,Some new vendor,300,JV-3,UP\n",
        encoding="utf-8",
    )
    (tmp_path / "sales.csv").write_text(
        "date,invoice_id,jurisdiction,channel,taxable_amount,tax_amount\n"
        "2025-04-05,INV-1,UP,Website,10000,1800\n",
        encoding="utf-8",
    )
    return tmp_path


def test_version(capsys) -> None:
    main(["--version"])
    assert capsys.readouterr().out.strip() == f"mis_tracker version {__version__}"


def test_no_command_prints_help(capsys) -> None:
    main([])
    assert "usage: mis-tracker" in capsys.readouterr().out


def test_report_month(workdir, capsys) -> None:
    main(["report", "--month", "2025-04", "--journal", "journal.csv", "--sales", "sales.csv"])
    out = capsys.readouterr().out

    assert "=== MIS - Apr 2025 ===" in out
    assert "Net Revenue" in out
    assert "CM2" in out
    assert "Warning: 1 unclassified entries in 2025-04." in out


def test_report_month_without_data(workdir, capsys) -> None:
    main(["report", "--month", "2025-06", "--journal", "journal.csv"])
    assert "No data for 2025-06." in capsys.readouterr().out


def test_report_range_lists_missing_months(workdir, capsys) -> None:
    main(
        [
            "report",
            "--from",
            "2025-04",
            "--to",
            "2025-05",
            "--view",
            "heads",
            "--sales",
            "sales.csv",
        ]
    )
    out = capsys.readouterr().out

    assert "2025-04 → 2025-05: 1 month(s) with data; missing: 2025-05" in out
    assert "A. Revenue" not in out
    assert "B. Returns" in out


def test_report_fiscal_year(workdir, capsys) -> None:
    main(["report", "--fy", "2025", "--sales", "sales.csv"])
    out = capsys.readouterr().out
    assert "=== MIS - FY 2025-26 ===" in out


def test_report_csv_output(workdir, capsys) -> None:
    main(
        [
            "report",
            "--month",
            "2025-04",
            "--sales",
            "sales.csv",
            "--display-mode",
            "csv",
            "--output",
            "out",
        ]
    )
    out = capsys.readouterr().out

    written = list((workdir / "out").glob("mis_2025-04_*.csv"))
    assert len(written) == 1
    assert "===" not in out
    assert "Wrote" in out
    assert written[0].read_text(encoding="utf-8").startswith(
        "display_order,key,level,name,amount,percent"
    )


def test_classify_shows_totals_and_unclassified(workdir, capsys) -> None:
    main(["classify", "--journal", "journal.csv"])
    out = capsys.readouterr().out

    assert "=== Classification - Apr 2025 ===" in out
    assert "Amazon Fees" in out
    assert "Facebook Ads" in out
    assert "=== Unclassified - Apr 2025 ===" in out
    assert "Some new vendor" in out


def test_availability(workdir, capsys) -> None:
    main(["availability", "--from", "2025-03", "--to", "2025-04", "--sales", "sales.csv"])
    out = capsys.readouterr().out
    assert "=== Data availability ===" in out
    assert "Mar 2025" in out
    assert "Apr 2025" in out


def test_save_and_reload_store(workdir, capsys) -> None:
    main(["classify", "--journal", "journal.csv", "--store", "store.json", "--save"])
    assert (workdir / "store.json").is_file()
    capsys.readouterr()

    main(["report", "--month", "2025-04", "--store", "store.json"])
    assert "=== MIS - Apr 2025 ===" in capsys.readouterr().out


def test_config_file_drives_inputs(workdir, capsys) -> None:
    (workdir / "mis_tracker_config.toml").write_text(
        '[data]\njournal_file = "journal.csv"\n\n[display]\nview = "detailed"\n',
        encoding="utf-8",
    )

    main(["report", "--month", "2025-04"])
    out = capsys.readouterr().out
    assert "Amazon Fees" in out


@pytest.mark.parametrize(
    "argv",
    [
        ["report", "--month", "2025-04", "--journal", "missing.csv"],
        ["report", "--month", "2025-13", "--sales", "sales.csv"],
        ["classify", "--journal", "journal.csv", "--save"],
        ["--config", "nope.toml", "report"],
        ["report", "--month", "2025-04", "--from", "2025-04", "--sales", "sales.csv"],
        ["report", "--fy", "2025", "--to", "2025-06", "--sales", "sales.csv"],
    ],
)
def test_errors_exit_with_usage(workdir, argv) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    assert excinfo.value.code == 2
