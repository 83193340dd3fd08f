import json
import logging
from datetime import datetime, timezone

import pytest

from mis_tracker.records import BalanceSheetSnapshot, LedgerTransaction, SalesEntry
from mis_tracker.rules import ClassificationRule
from mis_tracker.store import MonthlyRecordStore

FIXED_NOW = datetime(2025, 5, 2, 9, 30, tzinfo=timezone.utc)


def clock():
    return FIXED_NOW


def amazon_fee_rule(priority=1):
    return ClassificationRule(
        pattern=r"amazon.*fee",
        match_mode="regex",
        head="Channel & Fulfillment",
        subhead="Amazon Fees",
        priority=priority,
        rule_id="r_amazon_fee",
    )


def rent_rule():
    return ClassificationRule(
        pattern="factory rent",
        match_mode="contains",
        head="COGM",
        subhead="Factory Rent",
        priority=5,
        rule_id="r_rent",
    )


def tx(description, amount, jurisdiction="UP", day="2025-04-10", voucher="V1"):
    return LedgerTransaction(
        date=day,
        voucher_id=voucher,
        description=description,
        amount=amount,
        jurisdiction=jurisdiction,
    )


def sale(channel, amount, tax=0.0, jurisdiction="UP", **kwargs):
    return SalesEntry(
        date="2025-04-15",
        invoice_id=kwargs.pop("invoice_id", "INV-1"),
        jurisdiction=jurisdiction,
        channel=channel,
        taxable_amount=amount,
        tax_amount=tax,
        **kwargs,
    )


@pytest.fixture
def store():
    return MonthlyRecordStore(rules=[amazon_fee_rule(), rent_rule()], clock=clock)


# ---------------------------------------------------------------------------
# Classification and counting
# ---------------------------------------------------------------------------


def test_amazon_fee_flows_into_channel_and_fulfillment(store) -> None:
    record = store.store_transactions("2025-04", [tx("Amazon Seller Fee April", 5000)])

    head = record.index["Channel & Fulfillment"]
    assert head.total == 5000.0
    assert head.subheads["Amazon Fees"].total == 5000.0
    ct = head.subheads["Amazon Fees"].transactions[0]
    assert ct.rule_id == "r_amazon_fee"
    assert ct.entry_id == "JR-2025-04-00001"

    m = record.margins
    assert m.channel_fulfillment == 5000.0
    assert m.cm1 == m.gross_margin - 5000.0


def test_credit_inside_expense_head_is_not_counted(store) -> None:
    """A refund credited to an expense head stays visible but never nets."""
    record = store.store_transactions(
        "2025-04",
        [tx("Amazon fee", 1000), tx("Amazon fee reversal", -300)],
    )

    sub = record.index["Channel & Fulfillment"].subheads["Amazon Fees"]
    assert sub.total == 1000.0
    assert sub.uncounted_total == 300.0
    assert sub.count == 2
    assert [ct.counted for ct in sub.transactions] == [True, False]
    assert record.margins.channel_fulfillment == 1000.0


def test_unmatched_entries_are_left_unclassified(store) -> None:
    record = store.store_transactions(
        "2025-04", [tx("Random vendor", 750), tx("Factory Rent April", 20000)]
    )

    assert [u.entry.description for u in record.unclassified] == ["Random vendor"]
    assert record.unclassified[0].reason == "no matching rule"
    assert record.computed.unclassified_count == 1
    assert store.unclassified("2025-04")[0].entry_id == "JR-2025-04-00001"
    assert record.margins.cogm == 20000.0


def test_replace_and_append_modes(store) -> None:
    store.store_transactions("2025-04", [tx(f"Amazon fee {i}", 10) for i in range(10)])
    record = store.store_transactions(
        "2025-04", [tx(f"Amazon fee {i}", 10) for i in range(3)], mode="replace"
    )
    assert len(record.journal_entries) == 3
    assert record.index.head_total("Channel & Fulfillment") == 30.0

    store.store_transactions("2025-04", [tx(f"Amazon fee {i}", 10) for i in range(10)])
    record = store.store_transactions(
        "2025-04", [tx(f"Amazon fee {i}", 10) for i in range(3)], mode="append"
    )
    assert len(record.journal_entries) == 13
    assert record.journal_entries[-1].entry_id == "JR-2025-04-00013"
    assert record.index.head_total("Channel & Fulfillment") == 130.0


def test_unknown_store_mode_raises(store) -> None:
    with pytest.raises(ValueError):
        store.store_transactions("2025-04", [], mode="merge")


def test_reclassification_is_idempotent(store) -> None:
    record = store.store_transactions(
        "2025-04",
        [tx("Amazon fee", 100), tx("Factory rent", 200), tx("Unknown", 5)],
    )
    before_index = record.index
    before_margins = record.margins

    store.set_rules(store.rules)

    assert record.index is not before_index
    assert record.index == before_index
    assert record.margins == before_margins


def test_rule_changes_reclassify_every_month(store) -> None:
    store.store_transactions("2025-04", [tx("Shopify plan", 2000)])
    store.store_transactions("2025-05", [tx("Shopify plan", 2000)])
    assert store.get("2025-05").computed.unclassified_count == 1

    store.add_rule(
        ClassificationRule(
            pattern="shopify",
            match_mode="contains",
            head="Platform Costs",
            subhead="Shopify Subscription",
        )
    )

    for month in ("2025-04", "2025-05"):
        record = store.get(month)
        assert record.unclassified == []
        assert record.margins.platform_costs == 2000.0


def test_invalid_rule_does_not_block_reclassification(store, caplog) -> None:
    broken = ClassificationRule(
        pattern="([", match_mode="regex", head="Ignore", subhead="TDS", priority=0
    )
    with caplog.at_level(logging.WARNING, logger="mis_tracker.rules"):
        store.add_rule(broken)
        record = store.store_transactions("2025-04", [tx("Amazon fee", 100)])

    assert record.margins.channel_fulfillment == 100.0
    assert len(store.rule_set.invalid) == 1


# ---------------------------------------------------------------------------
# Balance sheets and stock
# ---------------------------------------------------------------------------


def test_only_primary_jurisdiction_drives_stock_cost(store) -> None:
    store.store_balance_sheet(
        "2025-04",
        "up",
        BalanceSheetSnapshot("UP", opening_stock=10000, purchases=30000, closing_stock=15000),
    )
    record = store.store_balance_sheet(
        "2025-04",
        "KA",
        BalanceSheetSnapshot("KA", opening_stock=999, purchases=999, closing_stock=1),
    )

    assert record.jurisdictions == ["UP", "KA"]
    assert record.computed.has_stock_data
    assert record.computed.rm_cost == 25000.0
    assert record.margins.cogm == 25000.0

    record = store.set_primary_jurisdiction("2025-04", "KA")
    assert record.computed.rm_cost == 1997.0
    assert record.jurisdictions == ["KA", "UP"]


def test_journal_raw_materials_used_without_primary_balance_sheet(store) -> None:
    store.add_rule(
        ClassificationRule(
            pattern="raw material",
            match_mode="contains",
            head="COGM",
            subhead="Raw Materials & Inventory",
        )
    )
    store.store_balance_sheet(
        "2025-04", "KA", BalanceSheetSnapshot("KA", opening_stock=5, closing_stock=1)
    )
    record = store.store_transactions("2025-04", [tx("Raw material purchase", 8000)])

    assert not record.computed.has_stock_data
    assert record.computed.rm_cost == 8000.0
    assert record.margins.cogm == 8000.0


def test_snapshot_with_profit_and_loss_is_netted(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="mis_tracker.records"):
        snapshot = BalanceSheetSnapshot("UP", net_profit=1000, net_loss=400)

    assert snapshot.net_profit == 600.0
    assert snapshot.net_loss == 0.0
    assert snapshot.net_profit_loss == 600.0
    assert "carries both net profit" in caplog.text


def test_malformed_numerics_are_coerced_to_zero(store) -> None:
    snapshot = BalanceSheetSnapshot("UP", opening_stock="n/a", purchases="1,000", closing_stock="")
    assert (snapshot.opening_stock, snapshot.purchases, snapshot.closing_stock) == (
        0.0,
        1000.0,
        0.0,
    )

    record = store.store_transactions(
        "2025-04", [tx("Amazon fee", "abc"), tx("Amazon fee", "₹ 1,200")]
    )
    assert record.margins.channel_fulfillment == 1200.0


# ---------------------------------------------------------------------------
# Sales register
# ---------------------------------------------------------------------------


def test_sales_channels_returns_and_transfers(store) -> None:
    record = store.store_sales(
        "2025-04",
        [
            sale("amazon", 1000, tax=180, invoice_id="INV-1"),
            sale("Amazon", 200, tax=36, is_return=True, invoice_id="CN-1"),
            sale("Website", 500, tax=90, jurisdiction="UP", is_stock_transfer=True),
            sale("Flipkart", 300, invoice_id="INV-9"),
        ],
    )

    assert record.index.subhead_total("Revenue", "Amazon") == 1000.0
    assert record.index.subhead_total("Returns", "Amazon") == 200.0
    assert record.computed.gross_revenue == 1000.0
    assert record.margins.net_revenue == 800.0
    assert record.computed.stock_transfers == 500.0
    assert record.computed.output_tax == 144.0
    assert record.computed.revenue_by_jurisdiction == {"UP": 1000.0}

    assert len(record.unclassified) == 1
    assert "unknown sales channel" in record.unclassified[0].reason


def test_balance_sheet_revenue_fallback_is_opt_in() -> None:
    def fill(target):
        target.store_sales("2025-04", [sale("Website", 1000)])
        target.store_balance_sheet(
            "2025-04", "KA", BalanceSheetSnapshot("KA", gross_sales=5000)
        )
        return target.get("2025-04")

    default = fill(MonthlyRecordStore(clock=clock))
    assert default.computed.gross_revenue == 1000.0

    fallback = fill(MonthlyRecordStore(revenue_fallback_to_balance_sheet=True, clock=clock))
    assert fallback.computed.gross_revenue == 6000.0
    assert fallback.computed.revenue_by_jurisdiction == {"KA": 5000.0, "UP": 1000.0}
    assert fallback.margins.net_revenue == 6000.0


# ---------------------------------------------------------------------------
# Manual reclassification
# ---------------------------------------------------------------------------


def test_reclassify_with_rule_applies_to_future_uploads(store) -> None:
    store.store_transactions("2025-04", [tx("XYZ Ltd", 2000)])
    assert store.get("2025-04").computed.unclassified_count == 1

    rule = store.reclassify_transaction(
        "2025-04",
        "JR-2025-04-00001",
        "Sales & Marketing",
        "Agency Fees",
        create_rule=True,
    )

    assert rule is not None
    assert rule.pattern == "XYZ Ltd"
    assert rule.priority < 1
    assert rule.source == "user"
    assert rule in store.rules

    april = store.get("2025-04")
    ct = april.index["Sales & Marketing"].subheads["Agency Fees"].transactions[0]
    assert ct.manual
    assert april.margins.sales_marketing == 2000.0

    may = store.store_transactions("2025-05", [tx("Payment to XYZ Ltd", 1000)])
    ct = may.index["Sales & Marketing"].subheads["Agency Fees"].transactions[0]
    assert not ct.manual
    assert ct.rule_id == rule.rule_id


def test_override_keeps_audit_trail_and_survives_rule_changes(store) -> None:
    store.store_transactions("2025-04", [tx("Amazon fee", 400)])

    result = store.reclassify_transaction(
        "2025-04", "JR-2025-04-00001", "sales & marketing", "amazon ads"
    )
    assert result is None

    record = store.get("2025-04")
    ct = record.index["Sales & Marketing"].subheads["Amazon Ads"].transactions[0]
    assert ct.manual
    assert (ct.original_head, ct.original_subhead) == (
        "Channel & Fulfillment",
        "Amazon Fees",
    )
    assert record.journal_entries[0].description == "Amazon fee"

    store.set_rules([])
    ct = store.get("2025-04").index["Sales & Marketing"].subheads["Amazon Ads"].transactions[0]
    assert ct.manual
    assert ct.original_head is None


def test_replace_upload_drops_overrides(store) -> None:
    store.store_transactions("2025-04", [tx("Amazon fee", 400)])
    store.reclassify_transaction("2025-04", "JR-2025-04-00001", "Ignore", "TDS")
    assert store.get("2025-04").overrides

    record = store.store_transactions("2025-04", [tx("Amazon fee", 400)])
    assert record.overrides == {}
    assert record.margins.channel_fulfillment == 400.0


def test_sales_override_keeps_revenue_counted(store) -> None:
    store.store_sales("2025-04", [sale("Amazon", 1000)])
    store.reclassify_transaction("2025-04", "SL-2025-04-00001", "Revenue", "Website")

    record = store.get("2025-04")
    assert record.index.subhead_total("Revenue", "Website") == 1000.0
    assert record.index.subhead_total("Revenue", "Amazon") == 0.0
    assert record.computed.gross_revenue == 1000.0


def test_reclassify_errors(store) -> None:
    store.store_transactions("2025-04", [tx("Amazon fee", 1)])

    with pytest.raises(ValueError):
        store.reclassify_transaction("2025-06", "JR-2025-06-00001", "Ignore", "TDS")
    with pytest.raises(ValueError):
        store.reclassify_transaction("2025-04", "JR-2025-04-00099", "Ignore", "TDS")
    with pytest.raises(ValueError):
        store.reclassify_transaction(
            "2025-04", "JR-2025-04-00001", "Sales & Marketing", "Amazon Fees"
        )


@pytest.mark.parametrize(
    "description, kwargs",
    [
        ("Amazon fee", {"match_mode": "bogus"}),
        ("To A/c", {}),
    ],
)
def test_rejected_rule_creation_leaves_record_unchanged(store, description, kwargs) -> None:
    store.store_transactions("2025-04", [tx(description, 400)])
    record = store.get("2025-04")
    index_before = record.index
    rules_before = store.rules

    with pytest.raises(ValueError):
        store.reclassify_transaction(
            "2025-04",
            "JR-2025-04-00001",
            "Sales & Marketing",
            "Agency Fees",
            create_rule=True,
            **kwargs,
        )

    assert record.overrides == {}
    assert record.index is index_before
    assert store.rules == rules_before

    store.store_balance_sheet("2025-04", "UP", BalanceSheetSnapshot("UP"))
    assert store.get("2025-04").index.head_total("Sales & Marketing") == 0.0


def test_stock_transfer_cannot_be_reclassified(store) -> None:
    store.store_sales("2025-04", [sale("Website", 500, is_stock_transfer=True)])

    with pytest.raises(ValueError, match="stock transfer"):
        store.reclassify_transaction("2025-04", "SL-2025-04-00001", "Revenue", "Website")

    record = store.get("2025-04")
    assert record.overrides == {}
    assert record.computed.gross_revenue == 0.0
    assert record.computed.stock_transfers == 500.0


# ---------------------------------------------------------------------------
# Store management
# ---------------------------------------------------------------------------


def test_month_keys_are_validated(store) -> None:
    with pytest.raises(ValueError):
        store.get("2025-13")
    with pytest.raises(ValueError):
        store.store_transactions("April", [])


def test_clear_removes_record_and_upload_log(store) -> None:
    store.store_balance_sheet(
        "2025-04", "UP", BalanceSheetSnapshot("UP", source_file="bs_april.pdf")
    )
    store.store_transactions("2025-04", [tx("Amazon fee", 1)], source_file="journal.csv")
    record = store.get("2025-04")
    assert [u.kind for u in record.uploads] == ["balance_sheet", "journal"]
    assert record.uploads[0].source_file == "bs_april.pdf"
    assert record.uploads[1].count == 1
    assert record.uploads[1].at == FIXED_NOW

    assert store.clear("2025-04") is True
    assert store.get("2025-04") is None
    assert store.clear("2025-04") is False

    store.store_transactions("2025-05", [tx("Amazon fee", 1)])
    store.clear_all()
    assert store.months() == []


def test_availability_lists_every_month_of_a_range(store) -> None:
    store.store_balance_sheet("2025-04", "UP", BalanceSheetSnapshot("UP"))
    store.store_transactions("2025-04", [tx("Unknown", 1)])
    store.get_or_create("2025-05")

    rows = store.availability("2025-03", "2025-05")
    assert [r.month for r in rows] == ["2025-03", "2025-04", "2025-05"]
    assert not rows[0].has_data
    assert rows[1].has_primary_balance_sheet
    assert rows[1].has_journal and not rows[1].has_sales
    assert rows[1].unclassified_count == 1
    assert not rows[2].has_data

    assert store.available_months() == ["2025-04"]
    assert [r.month for r in store.availability()] == ["2025-04", "2025-05"]


def test_isolated_stores_do_not_share_state() -> None:
    first = MonthlyRecordStore(clock=clock)
    second = MonthlyRecordStore(clock=clock)
    first.store_transactions("2025-04", [tx("x", 1)])
    assert second.months() == []


def test_payload_round_trip_rebuilds_derived_state(store) -> None:
    store.store_balance_sheet(
        "2025-04",
        "UP",
        BalanceSheetSnapshot("UP", opening_stock=100, purchases=50, closing_stock=30),
    )
    store.store_transactions(
        "2025-04", [tx("Amazon fee", 500), tx("Factory rent", 200), tx("Vendor", 7)]
    )
    store.store_sales("2025-04", [sale("Website", 3000, tax=540)])
    store.reclassify_transaction("2025-04", "JR-2025-04-00003", "Ignore", "Bank Transfers")

    payload = json.loads(json.dumps(store.to_payload()))
    loaded = MonthlyRecordStore.from_payload(payload, clock=clock)

    original = store.get("2025-04")
    restored = loaded.get("2025-04")
    assert loaded.rules == store.rules
    assert restored.index == original.index
    assert restored.computed == original.computed
    assert restored.overrides == original.overrides
    assert restored.uploads == original.uploads


def test_payload_version_is_checked() -> None:
    with pytest.raises(ValueError):
        MonthlyRecordStore.from_payload({"version": 99})
