"""Evaluation of a single atomic rule against a transaction record.

`match` never raises: a malformed rule, an unusable record field or a
regex that overruns its time budget all yield a non-matching outcome.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation

import regex
import structlog

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.core.exceptions import EvaluationFault
from pattern_engine.schemas.classification import MatchOutcome
from pattern_engine.schemas.pattern import Rule, RuleType
from pattern_engine.schemas.transaction import TransactionRecord
from pattern_engine.services.confidence import normalize_confidence
from pattern_engine.services.pattern_validator import parse_amount_range, parse_time_range
from pattern_engine.services.regex_safety import compile_pattern, search_with_budget

logger = structlog.get_logger()


def _is_business_hours(dt: datetime) -> bool:
    return dt.weekday() < 5 and 9 <= dt.hour <= 16


TIME_BUCKETS = {
    "morning": lambda dt: 6 <= dt.hour <= 11,
    "afternoon": lambda dt: 12 <= dt.hour <= 16,
    "evening": lambda dt: 17 <= dt.hour <= 20,
    "night": lambda dt: dt.hour >= 21 or dt.hour <= 5,
    "weekend": lambda dt: dt.weekday() >= 5,
    "weekday": lambda dt: dt.weekday() < 5,
    "business_hours": _is_business_hours,
    "after_hours": lambda dt: not _is_business_hours(dt),
}


# ── Per-type matchers: return a reason on match, None otherwise ──


def _match_merchant(rule: Rule, record: TransactionRecord, settings: Settings) -> str | None:
    merchant = record.merchant_name
    if not merchant or rule.value.lower() not in merchant.lower():
        return None
    return f"merchant_name '{merchant}' contains '{rule.value}'"


def _match_keyword(rule: Rule, record: TransactionRecord, settings: Settings) -> str | None:
    fields = [
        (name, text)
        for name, text in (("merchant_name", record.merchant_name), ("description", record.description))
        if text
    ]
    needle = rule.value.lower()
    if needle not in " ".join(text for _, text in fields).lower():
        return None
    for name, text in fields:
        if needle in text.lower():
            return f"{name} contains keyword '{rule.value}'"
    return f"merchant_name + description contain keyword '{rule.value}'"


def _match_description(rule: Rule, record: TransactionRecord, settings: Settings) -> str | None:
    description = record.description
    if not description or rule.value.lower() not in description.lower():
        return None
    return f"description '{description}' contains '{rule.value}'"


def _match_amount_range(rule: Rule, record: TransactionRecord, settings: Settings) -> str | None:
    bounds = parse_amount_range(rule.value)
    if bounds is None:
        return None
    min_val, max_val = bounds
    amount = Decimal(record.amount)
    if not min_val <= amount <= max_val:
        return None
    return f"amount {amount} within {rule.value}"


def _match_time(rule: Rule, record: TransactionRecord, settings: Settings) -> str | None:
    dt = record.transaction_date
    bucket = TIME_BUCKETS.get(rule.value)
    if bucket is not None:
        if not bucket(dt):
            return None
        return f"transaction at {dt:%a %H:%M} is {rule.value}"

    minutes = parse_time_range(rule.value)
    if minutes is None:
        return None
    start, end = minutes
    current = dt.hour * 60 + dt.minute
    if not start <= current <= end:
        return None
    return f"transaction at {dt:%H:%M} within {rule.value}"


def _match_regex(rule: Rule, record: TransactionRecord, settings: Settings) -> str | None:
    compiled = compile_pattern(rule.value)
    for name, text in (("merchant_name", record.merchant_name), ("description", record.description)):
        if not text:
            continue
        try:
            m = search_with_budget(compiled, text, settings.regex_match_timeout_ms)
        except TimeoutError as e:
            raise EvaluationFault(rule.id, "regex execution exceeded its time budget") from e
        if m:
            return f"{name} '{text}' matches /{rule.value}/ at '{m.group(0)}'"
    return None


MATCHERS = {
    RuleType.MERCHANT: _match_merchant,
    RuleType.KEYWORD: _match_keyword,
    RuleType.DESCRIPTION: _match_description,
    RuleType.AMOUNT_RANGE: _match_amount_range,
    RuleType.TIME: _match_time,
    RuleType.REGEX: _match_regex,
}


# ── Public API ──────────────────────────────────────────────────


def match(rule: Rule, record: TransactionRecord, settings: Settings | None = None) -> MatchOutcome:
    """Evaluate one atomic rule against one transaction record."""
    settings = settings or default_settings
    try:
        reason = MATCHERS[RuleType(rule.rule_type)](rule, record, settings)
    except EvaluationFault as e:
        logger.warning("pattern_evaluation_fault", rule_id=rule.id, detail=e.detail)
        return MatchOutcome.no_match(rule.id, reason=e.detail)
    except (regex.error, InvalidOperation, ValueError, TypeError) as e:
        logger.warning(
            "pattern_unmatchable",
            rule_id=rule.id,
            rule_type=rule.rule_type.value,
            error=str(e),
        )
        return MatchOutcome.no_match(rule.id)

    if reason is None:
        return MatchOutcome.no_match(rule.id)

    return MatchOutcome(
        rule_id=rule.id,
        matched=True,
        confidence=normalize_confidence(rule.confidence_weight, settings),
        weight=rule.confidence_weight,
        reason=reason,
    )
