import logging

import pytest

from mis_tracker.rules import (
    DEFAULT_SYSTEM_RULES,
    SYSTEM_RULE_PRIORITY,
    ClassificationRule,
    RuleSet,
    classify_description,
    create_rule_from_reclassification,
    extract_candidate_pattern,
    normalize_match_mode,
)


def make_rule(pattern, head, subhead, mode="contains", priority=10, **kwargs):
    return ClassificationRule(
        pattern=pattern,
        match_mode=mode,
        head=head,
        subhead=subhead,
        priority=priority,
        **kwargs,
    )


def test_lower_priority_value_wins_regardless_of_list_order() -> None:
    """Two rules match; the priority-0 rule is chosen even if listed last."""
    ads = make_rule("amazon", "Sales & Marketing", "Amazon Ads", priority=5)
    fees = make_rule("amazon", "Channel & Fulfillment", "Amazon Fees", priority=0)

    for rules in ([ads, fees], [fees, ads]):
        match = RuleSet(rules).match("Amazon Seller Fee")
        assert match is fees


def test_equal_priorities_keep_insertion_order() -> None:
    first = make_rule("fee", "Channel & Fulfillment", "D2C Fees", priority=3)
    second = make_rule("fee", "Channel & Fulfillment", "Amazon Fees", priority=3)

    assert RuleSet([first, second]).match("Gateway fee") is first
    assert RuleSet([second, first]).match("Gateway fee") is second


def test_matching_is_case_insensitive_for_all_modes() -> None:
    exact = make_rule("shopify plan", "Platform Costs", "Shopify Subscription", "exact")
    contains = make_rule("WATI", "Platform Costs", "Wati Subscription", "substring")
    regex = make_rule(r"amazon.*fee", "Channel & Fulfillment", "Amazon Fees", "regex")

    rules = RuleSet([exact, contains, regex])
    assert rules.match("SHOPIFY   Plan") is exact
    assert rules.match("Shopify Plan Monthly") is None
    assert rules.match("wati.io invoice") is contains
    assert rules.match("AMAZON SELLER FEE") is regex


def test_invalid_regex_is_skipped_and_logged(caplog) -> None:
    """An uncompilable pattern never raises; other rules still apply."""
    broken = make_rule("([unclosed", "Ignore", "TDS", "regex", priority=0)
    valid = make_rule(r"tds", "Ignore", "TDS", "regex", priority=1)

    with caplog.at_level(logging.WARNING, logger="mis_tracker.rules"):
        rules = RuleSet([broken, valid])

    assert len(rules.invalid) == 1
    assert rules.invalid[0].rule is broken
    assert rules.match("TDS payable") is valid
    assert rules.match("([unclosed") is None
    assert "invalid regular expression" in caplog.text


def test_rule_with_invalid_pairing_is_skipped(caplog) -> None:
    bad = make_rule("google", "Sales & Marketing", "Amazon Fees", priority=0)
    good = make_rule("google", "Sales & Marketing", "Google Ads", priority=1)

    with caplog.at_level(logging.WARNING, logger="mis_tracker.rules"):
        rules = RuleSet([bad, good])

    assert rules.match("Google India") is good
    assert "invalid head/subhead pairing" in caplog.text


def test_inactive_rules_never_match() -> None:
    rule = make_rule("rent", "COGM", "Factory Rent", active=False)
    assert RuleSet([rule]).match("Factory rent April") is None


def test_empty_rule_list_matches_nothing() -> None:
    assert RuleSet([]).match("anything") is None
    assert RuleSet().min_priority() is None
    assert classify_description("anything", []) is None


def test_unknown_match_mode_raises() -> None:
    assert normalize_match_mode("Substring") == "contains"
    with pytest.raises(ValueError):
        normalize_match_mode("fuzzy")


@pytest.mark.parametrize(
    "account, expected",
    [
        ("To Amazon Seller Services Pvt Ltd A/c", "Amazon Seller Services"),
        ("Advertisement: Google India", "Google India"),
        ("Salary - Ramesh Kumar", "Ramesh Kumar"),
        ("By XYZ Ltd Dr", "XYZ Ltd"),
        ("", ""),
    ],
)
def test_extract_candidate_pattern(account, expected) -> None:
    assert extract_candidate_pattern(account) == expected


def test_user_rule_outranks_every_existing_rule() -> None:
    existing = [
        make_rule("xyz", "Operating Expenses", "Administrative Expenses", priority=0),
        make_rule("ltd", "Operating Expenses", "Legal & CA Expenses", priority=3),
    ]

    rule = create_rule_from_reclassification(
        "Payment to XYZ Ltd",
        "sales & marketing",
        "agency fees",
        existing_rules=existing,
        pattern="XYZ Ltd",
    )

    assert rule.priority == -1
    assert rule.priority < min(r.priority for r in existing)
    assert (rule.head, rule.subhead) == ("Sales & Marketing", "Agency Fees")
    assert rule.source == "user"
    assert rule.match_mode == "contains"
    assert RuleSet([*existing, rule]).match("XYZ Ltd invoice 42") is rule


def test_user_rule_defaults_to_priority_zero() -> None:
    existing = [make_rule("rent", "COGM", "Factory Rent", priority=10)]
    rule = create_rule_from_reclassification(
        "To Factory Rent A/c", "COGM", "Factory Rent", existing_rules=existing
    )
    assert rule.priority == 0
    assert rule.pattern == "Factory Rent"


def test_user_rule_rejects_invalid_pairing() -> None:
    with pytest.raises(ValueError):
        create_rule_from_reclassification("Google", "Sales & Marketing", "Amazon Fees")


def test_default_system_rules_compile_and_stay_below_user_rules() -> None:
    rules = RuleSet(DEFAULT_SYSTEM_RULES)
    assert rules.invalid == []
    assert all(r.priority >= SYSTEM_RULE_PRIORITY for r in DEFAULT_SYSTEM_RULES)
    assert all(r.source == "system" for r in DEFAULT_SYSTEM_RULES)


def test_default_system_rules_classify_common_ledgers() -> None:
    rules = RuleSet(DEFAULT_SYSTEM_RULES)

    def target(description):
        rule = rules.match(description)
        return (rule.head, rule.subhead) if rule else None

    assert target("Amazon Seller Services") == ("Channel & Fulfillment", "Amazon Fees")
    assert target("TDS on Rent") == ("Ignore", "TDS")
    assert target("Google India Pvt Ltd") == ("Sales & Marketing", "Google Ads")
    assert target("Shopify Inc") == ("Platform Costs", "Shopify Subscription")
    assert target("Interest on Term Loan") == ("Non-Operating", "Interest Expense")
    assert target("Completely unknown party") is None
