import pytest

from mis_tracker.heads import (
    HEADS,
    MARGIN_GROUPS,
    find_head,
    get_head,
    is_valid_pair,
    validate_pair,
)


def test_taxonomy_has_twelve_heads_in_display_order() -> None:
    names = [h.name for h in HEADS]
    assert names == [
        "Revenue",
        "Returns",
        "Discounts",
        "Taxes",
        "COGM",
        "Channel & Fulfillment",
        "Sales & Marketing",
        "Platform Costs",
        "Operating Expenses",
        "Non-Operating",
        "Exclude",
        "Ignore",
    ]
    assert all(h.type in ("revenue", "expense", "ignore") for h in HEADS)


def test_head_lookup_is_case_insensitive_by_name_code_or_label() -> None:
    assert find_head("revenue").name == "Revenue"
    assert find_head("f").name == "Channel & Fulfillment"
    assert find_head("G. Sales & Marketing").name == "Sales & Marketing"
    assert find_head("unknown") is None
    assert find_head(None) is None


def test_get_head_raises_for_unknown_head() -> None:
    with pytest.raises(ValueError):
        get_head("Miscellaneous")


def test_validate_pair_returns_canonical_names() -> None:
    assert validate_pair("channel & fulfillment", "amazon fees") == (
        "Channel & Fulfillment",
        "Amazon Fees",
    )


def test_validate_pair_rejects_subhead_of_another_head() -> None:
    """A subhead must belong to its head's permitted set."""
    with pytest.raises(ValueError):
        validate_pair("Sales & Marketing", "Amazon Fees")
    assert is_valid_pair("Sales & Marketing", "Google Ads")
    assert not is_valid_pair("Sales & Marketing", "Amazon Fees")


def test_ignore_heads_never_enter_margin_groups() -> None:
    grouped = {h for heads in MARGIN_GROUPS.values() for h in heads}
    for head in HEADS:
        if head.type == "ignore":
            assert head.name not in grouped
            assert not head.counts_in_margins
