# MIS Tracker - Monthly MIS & Profit and Loss engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Classification rule engine for MIS Tracker.

A classification rule maps a free-text ledger/account description to a
(head, subhead) pair of the MIS taxonomy (see heads.py). Rules come from
two places:

- system rules: a generic pattern pack shipped with the application
  (``DEFAULT_SYSTEM_RULES``) or loaded from a rules CSV,
- user rules: created when a user corrects a classification and asks for
  the correction to be remembered.

Evaluation contract
-------------------
- Rules are held sorted by ascending priority (lower = applied first);
  ties keep their insertion order.
- The first active rule whose pattern matches wins.
- Matching is case-insensitive for all three modes:
    * 'exact'    → whole description equals the pattern,
    * 'contains' → pattern is a substring of the description
                   ('substring' is accepted as an alias),
    * 'regex'    → pattern is searched as a regular expression.
- Patterns are compiled once, when a RuleSet is built. A rule whose
  regular expression cannot be compiled, or whose head/subhead pairing is
  not part of the taxonomy, is logged and skipped. It never raises to the
  caller.

User corrections
----------------
``create_rule_from_reclassification()`` synthesizes a new 'contains' rule
from a corrected account string (see ``extract_candidate_pattern()``) and
places it ahead of every existing rule, so that user corrections always
outrank system-derived rules on the next classification pass.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional, Pattern

from .heads import find_head, resolve_subhead, validate_pair

logger = logging.getLogger(__name__)

MATCH_MODES: tuple[str, ...] = ("exact", "contains", "regex")
_MODE_ALIASES = {"substring": "contains", "regexp": "regex", "re": "regex"}

# Priority assigned to a user rule when no rule already sits at 0 or below.
USER_RULE_PRIORITY = 0
SYSTEM_RULE_PRIORITY = 10

# Tokens commonly wrapped around ledger names in Indian accounting exports
# ("To Rent A/c", "By HDFC Bank Dr").
_LEADING_BOILERPLATE = {"to", "by", "dr", "dr.", "cr", "cr.", "being"}
_TRAILING_BOILERPLATE = {
    "a/c",
    "a/c.",
    "ac",
    "acct",
    "account",
    "ledger",
    "dr",
    "dr.",
    "cr",
    "cr.",
}
_SEPARATOR_RE = re.compile(r"\s*:\s*|\s+[-–—]\s+")
_CANDIDATE_WORDS = 3


def normalize_match_mode(mode: str) -> str:
    """Return the canonical match mode ('exact', 'contains' or 'regex').

    Raises:
        ValueError: if the mode is not recognized.
    """
    m = str(mode).strip().lower()
    m = _MODE_ALIASES.get(m, m)
    if m not in MATCH_MODES:
        raise ValueError(
            f"Unknown match mode {mode!r}. Expected one of: {', '.join(MATCH_MODES)}."
        )
    return m


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_text(s: str) -> str:
    return " ".join(str(s).split()).casefold()


@dataclass(frozen=True)
class ClassificationRule:
    """A single classification rule.

    Attributes:
        pattern: Pattern string (literal text or regular expression).
        match_mode: 'exact', 'contains' or 'regex'.
        head: Target head name (see heads.HEADS).
        subhead: Target subhead name, permitted for ``head``.
        priority: Lower values are evaluated first.
        active: Inactive rules are kept but never match.
        source: Provenance tag ('user', 'system', 'import').
        notes: Free-text notes.
        created_at: Creation timestamp (UTC).
        rule_id: Stable identifier.
    """

    pattern: str
    match_mode: str
    head: str
    subhead: str
    priority: int = SYSTEM_RULE_PRIORITY
    active: bool = True
    source: str = "system"
    notes: str = ""
    created_at: datetime = field(default_factory=_now_utc)
    rule_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass(frozen=True)
class CompiledRule:
    """Result of compiling one rule: either a usable matcher or an error."""

    rule: ClassificationRule
    position: int
    mode: Optional[str] = None
    regex: Optional[Pattern[str]] = None
    needle: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def matches(self, description: str) -> bool:
        if not self.ok or not self.rule.active:
            return False
        if self.mode == "regex":
            return self.regex is not None and self.regex.search(description) is not None
        text = _normalize_text(description)
        if self.mode == "exact":
            return text == self.needle
        return self.needle in text


def compile_rule(rule: ClassificationRule, position: int = 0) -> CompiledRule:
    """Compile a rule into a matcher without ever raising.

    Failures (unknown match mode, uncompilable regex, empty pattern, invalid
    head/subhead pairing) are reported through ``CompiledRule.error``.
    """
    try:
        mode = normalize_match_mode(rule.match_mode)
    except ValueError as exc:
        return CompiledRule(rule=rule, position=position, error=str(exc))

    head_def = find_head(rule.head)
    if head_def is None or resolve_subhead(head_def, rule.subhead) is None:
        return CompiledRule(
            rule=rule,
            position=position,
            error=f"invalid head/subhead pairing {rule.head!r}/{rule.subhead!r}",
        )

    pattern = str(rule.pattern or "")
    if not pattern.strip():
        return CompiledRule(rule=rule, position=position, error="empty pattern")

    if mode == "regex":
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            return CompiledRule(
                rule=rule,
                position=position,
                error=f"invalid regular expression {pattern!r}: {exc}",
            )
        return CompiledRule(rule=rule, position=position, mode=mode, regex=regex)

    return CompiledRule(
        rule=rule, position=position, mode=mode, needle=_normalize_text(pattern)
    )


class RuleSet:
    """An ordered, pre-compiled list of classification rules.

    Rules are sorted once by ``(priority, insertion order)`` and compiled
    once; ``match()`` then walks the compiled list for each description.
    Invalid rules are kept in ``invalid`` for diagnostics.
    """

    def __init__(self, rules: Optional[Iterable[ClassificationRule]] = None):
        indexed = list(enumerate(rules or []))
        indexed.sort(key=lambda pair: (pair[1].priority, pair[0]))

        self.rules: list[ClassificationRule] = [r for _, r in indexed]
        self._compiled: list[CompiledRule] = []
        self.invalid: list[CompiledRule] = []

        for position, (_, rule) in enumerate(indexed):
            compiled = compile_rule(rule, position)
            if compiled.ok:
                self._compiled.append(compiled)
            else:
                logger.warning(
                    "Skipping classification rule %s (%r): %s",
                    rule.rule_id,
                    rule.pattern,
                    compiled.error,
                )
                self.invalid.append(compiled)

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[ClassificationRule]:
        return iter(self.rules)

    def match(self, description: Optional[str]) -> Optional[ClassificationRule]:
        """Return the first active rule matching ``description``, or None."""
        if description is None:
            return None
        text = str(description)
        for compiled in self._compiled:
            if compiled.matches(text):
                return compiled.rule
        return None

    def min_priority(self) -> Optional[int]:
        """Lowest priority value held, or None for an empty set."""
        if not self.rules:
            return None
        return min(r.priority for r in self.rules)


def classify_description(
    description: str, rules: Iterable[ClassificationRule]
) -> Optional[ClassificationRule]:
    """One-shot helper: build a RuleSet and match a single description."""
    return RuleSet(rules).match(description)


def extract_candidate_pattern(account: str) -> str:
    """Extract a short, reusable pattern from a corrected account string.

    Steps:
      1. drop leading/trailing boilerplate tokens ('To', 'By', 'A/c',
         'Account', 'Dr', 'Cr'),
      2. if a colon or spaced dash separator is present, keep the segment
         after it,
      3. otherwise keep the first few words.

    Examples:
        'To Amazon Seller Services Pvt Ltd A/c' -> 'Amazon Seller Services'
        'Advertisement: Google India'           -> 'Google India'
        'Salary - Ramesh Kumar'                 -> 'Ramesh Kumar'
    """
    tokens = str(account or "").split()
    while tokens and tokens[0].lower() in _LEADING_BOILERPLATE:
        tokens.pop(0)
    while tokens and tokens[-1].lower() in _TRAILING_BOILERPLATE:
        tokens.pop()

    text = " ".join(tokens)
    if not text:
        return ""

    parts = [p.strip() for p in _SEPARATOR_RE.split(text) if p.strip()]
    if len(parts) > 1:
        return parts[1]

    return " ".join(text.split()[:_CANDIDATE_WORDS])


def create_rule_from_reclassification(
    account: str,
    head: str,
    subhead: str,
    existing_rules: Iterable[ClassificationRule] = (),
    pattern: Optional[str] = None,
    match_mode: str = "contains",
    now: Optional[datetime] = None,
) -> ClassificationRule:
    """Synthesize a user rule from a manual reclassification.

    The new rule gets priority 0, or one less than the lowest existing
    priority when some rule already sits at 0 or below, so that its
    precedence is strictly higher than every pre-existing rule.

    Raises:
        ValueError: if head/subhead is not a permitted pairing, if the match
            mode is unknown, or if no pattern can be derived.
    """
    head_name, subhead_name = validate_pair(head, subhead)
    mode = normalize_match_mode(match_mode)

    candidate = (pattern or "").strip() or extract_candidate_pattern(account)
    if not candidate:
        raise ValueError(f"Cannot derive a rule pattern from account {account!r}.")

    priorities = [r.priority for r in existing_rules]
    priority = USER_RULE_PRIORITY
    if priorities and min(priorities) <= USER_RULE_PRIORITY:
        priority = min(priorities) - 1

    rule = ClassificationRule(
        pattern=candidate,
        match_mode=mode,
        head=head_name,
        subhead=subhead_name,
        priority=priority,
        active=True,
        source="user",
        notes=f"Created from reclassification of: {account}",
        created_at=now or _now_utc(),
        rule_id=f"user_{uuid.uuid4().hex[:12]}",
    )
    logger.info(
        "Created user rule %s: %r -> %s / %s (priority %d)",
        rule.rule_id,
        rule.pattern,
        rule.head,
        rule.subhead,
        rule.priority,
    )
    return rule


def _system_rule(
    n: int, pattern: str, head: str, subhead: str, offset: int = 0
) -> ClassificationRule:
    return ClassificationRule(
        pattern=pattern,
        match_mode="regex",
        head=head,
        subhead=subhead,
        priority=SYSTEM_RULE_PRIORITY + offset,
        active=True,
        source="system",
        notes="Default system rule",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        rule_id=f"sys_{n:03d}",
    )


# Generic pattern pack. Non-P&L ledgers (taxes, banks) are evaluated first
# so that e.g. 'TDS on Rent' never lands in an expense head.
DEFAULT_SYSTEM_RULES: tuple[ClassificationRule, ...] = (
    _system_rule(1, r"\b[CSI]GST\b|GST.*(INPUT|OUTPUT|PAYABLE)", "Ignore", "GST Input/Output"),
    _system_rule(2, r"\bTDS\b|\bTCS\b", "Ignore", "TDS"),
    _system_rule(3, r"\bBANK\b(?!.*CHARGE)|^Cash$", "Ignore", "Bank Transfers"),
    _system_rule(4, r"DIRECTOR.*LOAN|INTER.?COMPANY", "Ignore", "Inter-company"),
    _system_rule(5, r"DRAWINGS|OWNER.*WITHDRAW", "Exclude", "Owner Withdrawals"),
    _system_rule(10, r"AMAZON.*(SELLER|FEE|LOGISTICS|COMMISSION)", "Channel & Fulfillment", "Amazon Fees", 1),
    _system_rule(11, r"BLINK(IT| COMMERCE).*(FEE|COMMISSION)", "Channel & Fulfillment", "Blinkit Fees", 1),
    _system_rule(12, r"SHIPROCKET|EASEBUZZ|RAZORPAY|PAYMENT GATEWAY", "Channel & Fulfillment", "D2C Fees", 1),
    _system_rule(20, r"FACEBOOK|\bMETA\b", "Sales & Marketing", "Facebook Ads", 1),
    _system_rule(21, r"GOOGLE", "Sales & Marketing", "Google Ads", 1),
    _system_rule(22, r"AMAZON.*(ADS|ADVERTIS)", "Sales & Marketing", "Amazon Ads"),
    _system_rule(23, r"BLINKIT.*(ADS|ADVERTIS)", "Sales & Marketing", "Blinkit Ads"),
    _system_rule(24, r"MARKETING|AGENCY|BRANDING", "Sales & Marketing", "Agency Fees", 1),
    _system_rule(30, r"SHOPIFY", "Platform Costs", "Shopify Subscription", 1),
    _system_rule(31, r"\bWATI\b", "Platform Costs", "Wati Subscription", 1),
    _system_rule(32, r"SHOPFLO", "Platform Costs", "Shopflo Subscription", 1),
    _system_rule(40, r"JOB ?WORK", "COGM", "Job Work", 2),
    _system_rule(41, r"FREIGHT|CARTAGE|INWARD TRANSPORT", "COGM", "Inbound Transport", 2),
    _system_rule(42, r"FACTORY.*RENT", "COGM", "Factory Rent", 2),
    _system_rule(43, r"ELECTRICITY|POWER", "COGM", "Factory Electricity", 2),
    _system_rule(44, r"REPAIR|MAINTENANCE|CONSUMABLE", "COGM", "Factory Maintenance", 2),
    _system_rule(45, r"WAGES", "COGM", "Manufacturing Wages", 2),
    _system_rule(50, r"SALARY|SALARIES|\bESI\b|\bPF\b", "Operating Expenses", "Salaries (Admin, Mgmt)", 3),
    _system_rule(51, r"TRAVEL|INSURANCE|STAFF WELFARE|MISC", "Operating Expenses", "Miscellaneous (Travel, Insurance)", 3),
    _system_rule(52, r"LEGAL|PROFESSIONAL|AUDIT FEE|\bCA\b", "Operating Expenses", "Legal & CA Expenses", 3),
    _system_rule(53, r"ZOHO|TALLY|SOFTWARE|CRM", "Operating Expenses", "Platform Costs (CRM, Inventory Software)", 3),
    _system_rule(54, r"OFFICE|RENT|PRINTING|STATIONERY|COURIER|TELEPHONE|INTERNET", "Operating Expenses", "Administrative Expenses", 4),
    _system_rule(60, r"INTEREST", "Non-Operating", "Interest Expense", 2),
    _system_rule(61, r"DEPRECIATION", "Non-Operating", "Depreciation", 2),
    _system_rule(62, r"AMORTI[SZ]ATION", "Non-Operating", "Amortization", 2),
    _system_rule(63, r"INCOME TAX|PROVISION FOR TAX", "Non-Operating", "Income Tax", 2),
)


def rule_to_dict(rule: ClassificationRule) -> dict[str, Any]:
    """Plain-dict form of a rule (JSON / CSV friendly)."""
    return {
        "rule_id": rule.rule_id,
        "pattern": rule.pattern,
        "match_mode": rule.match_mode,
        "head": rule.head,
        "subhead": rule.subhead,
        "priority": rule.priority,
        "active": rule.active,
        "source": rule.source,
        "notes": rule.notes,
        "created_at": rule.created_at.isoformat() if rule.created_at else "",
    }


def rule_from_dict(data: dict[str, Any]) -> ClassificationRule:
    """Rebuild a rule from :func:`rule_to_dict` output.

    Missing optional keys fall back to the dataclass defaults. The pattern
    and head/subhead are not validated here; an invalid rule is skipped
    later, when a RuleSet is built.
    """
    kwargs: dict[str, Any] = {
        "pattern": str(data.get("pattern", "") or ""),
        "match_mode": str(data.get("match_mode", "contains") or "contains"),
        "head": str(data.get("head", "") or ""),
        "subhead": str(data.get("subhead", "") or ""),
    }
    if data.get("priority") not in (None, ""):
        kwargs["priority"] = int(float(data["priority"]))
    if data.get("active") not in (None, ""):
        kwargs["active"] = _to_bool(data["active"])
    if data.get("source"):
        kwargs["source"] = str(data["source"])
    if data.get("notes"):
        kwargs["notes"] = str(data["notes"])
    if data.get("created_at"):
        created = data["created_at"]
        kwargs["created_at"] = (
            created if isinstance(created, datetime) else datetime.fromisoformat(str(created))
        )
    if data.get("rule_id"):
        kwargs["rule_id"] = str(data["rule_id"])
    return ClassificationRule(**kwargs)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(value)
