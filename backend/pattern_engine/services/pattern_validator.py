"""Validation and normalization of rule definitions.

Every rule passes through here before it enters the pattern store. Each
rule type has its own normalizer, selected by explicit dispatch on
`RuleType`. Composite rules are checked for a well-formed, acyclic
component graph and valid guard conditions.

The validator never writes to the store: it only produces the normalized
value and diagnostic metadata, or raises ValidationError.
"""

import re
from collections.abc import Iterable, Mapping
from decimal import Decimal

import structlog
from rapidfuzz import fuzz

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.core.exceptions import ValidationError
from pattern_engine.schemas.pattern import (
    TEXT_RULE_TYPES,
    CompositeOperator,
    CompositeRule,
    NormalizedValue,
    Rule,
    RuleType,
)
from pattern_engine.services.regex_safety import screen_regex

logger = structlog.get_logger()

# ── Text rules ──────────────────────────────────────────────────

GENERIC_WORDS = frozenset({"the", "a", "an", "of", "in", "on", "at", "to", "for", "and", "or"})

_WHITESPACE_RE = re.compile(r"\s+")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_SPECIAL_CHARS_RE = re.compile(r"[^a-zA-Z0-9\s]")

MAX_SIMILAR_PATTERNS = 5
MAX_SPECIAL_CHARS = 5

# ── Amount ranges ───────────────────────────────────────────────

_AMOUNT_RANGE_RE = re.compile(r"^-?\d+(\.\d{1,2})?--?\d+(\.\d{1,2})?$")
# Split on the dash separating the bounds, not on a sign
_AMOUNT_SPLIT_RE = re.compile(r"(?<=\d)-(?=-?\d)")

# ── Time rules ──────────────────────────────────────────────────

TIME_PATTERN_VALUES = (
    "morning",
    "afternoon",
    "evening",
    "night",
    "weekend",
    "weekday",
    "business_hours",
    "after_hours",
)

_TIME_RANGE_RE = re.compile(r"^(\d{1,2}):(\d{2})-(\d{1,2}):(\d{2})$")
_CLOCK_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# ── Composite conditions ────────────────────────────────────────

CONDITION_KEYS = ("min_amount", "max_amount", "days_of_week", "time_ranges", "merchant_blacklist")
DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_amount_range(value: str) -> tuple[Decimal, Decimal] | None:
    """Parse a "min-max" amount range. Returns None if malformed."""
    if not _AMOUNT_RANGE_RE.match(value):
        return None
    parts = _AMOUNT_SPLIT_RE.split(value)
    if len(parts) != 2:
        return None
    return Decimal(parts[0]), Decimal(parts[1])


def parse_time_range(value: str) -> tuple[int, int] | None:
    """Parse "HH:MM-HH:MM" into (start, end) minutes since midnight.

    Returns None if the value is malformed or a field is out of bounds.
    """
    m = _TIME_RANGE_RE.match(value)
    if not m:
        return None
    start_hour, start_min, end_hour, end_min = (int(g) for g in m.groups())
    if start_hour > 23 or end_hour > 23 or start_min > 59 or end_min > 59:
        return None
    return start_hour * 60 + start_min, end_hour * 60 + end_min


def _format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_clock_time(value: str) -> int | None:
    """Parse "H:MM" or "HH:MM" into minutes since midnight, None if invalid."""
    m = _CLOCK_TIME_RE.match(value) if isinstance(value, str) else None
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def _positive_amount(key: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)) or value <= 0:
        raise ValidationError(f"{key} must be a positive number")
    return float(value)


def _time_ranges(ranges) -> list[dict]:
    if not isinstance(ranges, (list, tuple)) or not ranges:
        raise ValidationError("time_ranges must be a non-empty list")
    normalized = []
    for item in ranges:
        if not isinstance(item, Mapping) or not item.get("start") or not item.get("end"):
            raise ValidationError("each time_range must have 'start' and 'end' times")
        start, end = parse_clock_time(item["start"]), parse_clock_time(item["end"])
        if start is None or end is None:
            raise ValidationError("time_ranges must be in HH:MM format")
        normalized.append({"start": _format_minutes(start), "end": _format_minutes(end)})
    return normalized


class PatternValidator:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or default_settings
        self._normalizers = {
            RuleType.MERCHANT: self._normalize_text,
            RuleType.KEYWORD: self._normalize_text,
            RuleType.DESCRIPTION: self._normalize_text,
            RuleType.AMOUNT_RANGE: self._normalize_amount_range,
            RuleType.TIME: self._normalize_time,
            RuleType.REGEX: self._normalize_regex,
        }

    # ── Atomic rules ───────────────────────────────────

    def validate_and_normalize(
        self,
        rule_type: RuleType | str,
        raw_value: str,
        *,
        category_id: int | None = None,
        existing: Iterable[Rule] = (),
        exclude_rule_id: int | None = None,
    ) -> NormalizedValue:
        """Validate a raw rule value and return its normalized form.

        When `category_id` is given, `existing` is checked for exact
        duplicates (rejected) and, for text rules, near-duplicates (flagged
        in metadata). `exclude_rule_id` skips the rule being edited.
        """
        try:
            rule_type = RuleType(rule_type)
        except ValueError as e:
            raise ValidationError(f"unknown rule type: {rule_type!r}") from e

        if raw_value is None or not str(raw_value).strip():
            raise ValidationError("pattern value can't be blank")

        try:
            value, metadata = self._normalizers[rule_type](str(raw_value))
        except ValidationError as e:
            logger.debug("pattern_rejected", rule_type=rule_type.value, reason=e.detail)
            raise

        if category_id is not None:
            neighbors = [
                rule for rule in existing
                if rule.category_id == category_id
                and rule.rule_type == rule_type
                and (exclude_rule_id is None or rule.id != exclude_rule_id)
            ]
            if any(rule.value == value for rule in neighbors):
                raise ValidationError("already exists for this category and pattern type")
            if rule_type in TEXT_RULE_TYPES:
                metadata.update(self._similarity_metadata(value, neighbors))

        return NormalizedValue(rule_type=rule_type, value=value, metadata=metadata)

    def _normalize_text(self, raw_value: str) -> tuple[str, dict]:
        """Trim, collapse runs of spaces and lowercase.

        Tabs and line breaks inside the value count as control characters
        and are rejected, not collapsed.
        """
        stripped = raw_value.strip()
        if _CONTROL_CHARS_RE.search(stripped):
            raise ValidationError("contains invalid control characters")
        value = _WHITESPACE_RE.sub(" ", stripped).lower()

        if len(value) < self.settings.min_pattern_length:
            raise ValidationError(
                f"must be at least {self.settings.min_pattern_length} characters long"
            )
        if len(value) > self.settings.max_pattern_length:
            raise ValidationError(
                f"must be no more than {self.settings.max_pattern_length} characters long"
            )
        if value in GENERIC_WORDS:
            raise ValidationError("is too generic to be useful for categorization")

        metadata = {}
        if len(_SPECIAL_CHARS_RE.findall(value)) > MAX_SPECIAL_CHARS:
            metadata["high_special_chars"] = True
        return value, metadata

    def _normalize_amount_range(self, raw_value: str) -> tuple[str, dict]:
        bounds = parse_amount_range(raw_value.strip())
        if bounds is None:
            raise ValidationError("must be in format 'min-max' (e.g., '10.00-50.00')")

        min_val, max_val = bounds
        if min_val >= max_val:
            raise ValidationError("minimum amount must be less than maximum amount")
        if max_val - min_val > Decimal(str(self.settings.max_amount_range_span)):
            raise ValidationError(
                f"range is too broad (difference > {self.settings.max_amount_range_span:,.0f})"
            )

        metadata = {}
        if min_val < 0:
            metadata["has_negative_amounts"] = True
        return f"{min_val:.2f}-{max_val:.2f}", metadata

    def _normalize_time(self, raw_value: str) -> tuple[str, dict]:
        value = raw_value.strip().lower()
        if value in TIME_PATTERN_VALUES:
            return value, {}

        if not _TIME_RANGE_RE.match(value):
            raise ValidationError(
                f"must be one of: {', '.join(TIME_PATTERN_VALUES)}, "
                "or a time range (e.g., '09:00-17:00')"
            )
        minutes = parse_time_range(value)
        if minutes is None:
            raise ValidationError("hours must be between 0 and 23 and minutes between 0 and 59")
        start, end = minutes
        if start >= end:
            raise ValidationError("time range must not wrap past midnight (start must be before end)")
        return f"{_format_minutes(start)}-{_format_minutes(end)}", {}

    def _normalize_regex(self, raw_value: str) -> tuple[str, dict]:
        # Regex rules are case-sensitive text: only surrounding whitespace is removed
        value = raw_value.strip()
        return value, screen_regex(value, self.settings)

    def _similarity_metadata(self, value: str, neighbors: list[Rule]) -> dict:
        threshold = self.settings.similarity_threshold * 100
        scored = []
        for rule in neighbors:
            score = fuzz.ratio(value, rule.value)
            if score > threshold:
                scored.append((score, rule.value))
        if not scored:
            return {}

        scored.sort(key=lambda item: (-item[0], item[1]))
        metadata = {"similar_patterns": [v for _, v in scored[:MAX_SIMILAR_PATTERNS]]}
        # Similar patterns may be intentional: flag for review, never reject
        if len(scored) >= self.settings.high_similarity_neighbors:
            metadata["high_similarity_warning"] = True
        return metadata

    # ── Confidence weight ──────────────────────────────

    def validate_confidence_weight(self, weight: float) -> float:
        try:
            weight = float(weight)
        except (TypeError, ValueError) as e:
            raise ValidationError("confidence weight must be a number") from e
        low, high = self.settings.min_confidence_weight, self.settings.max_confidence_weight
        if not low <= weight <= high:
            raise ValidationError(f"confidence weight must be between {low} and {high}")
        return weight

    # ── Composite rules ────────────────────────────────

    def validate_composite(
        self,
        *,
        category_id: int,
        operator: CompositeOperator | str,
        component_rule_ids: Iterable[int],
        arena: Mapping[int, Rule | CompositeRule],
        composite_id: int | None = None,
    ) -> tuple[CompositeOperator, list[int]]:
        """Check a composite's operator and component graph.

        `arena` maps every known rule id (atomic and composite) to its rule.
        Returns the parsed operator and the component ids in order.
        """
        if not isinstance(operator, CompositeOperator):
            try:
                operator = CompositeOperator(str(operator).strip().upper())
            except ValueError as e:
                raise ValidationError(f"operator must be one of: AND, OR (got {operator!r})") from e

        component_ids = list(component_rule_ids)
        if len(set(component_ids)) != len(component_ids):
            raise ValidationError("component rules must not repeat")
        if len(component_ids) < 2:
            raise ValidationError("a composite needs at least 2 component rules")
        if composite_id is not None and composite_id in component_ids:
            raise ValidationError("a composite cannot reference itself")

        missing = [rid for rid in component_ids if rid not in arena]
        if missing:
            raise ValidationError(
                f"contains non-existent pattern IDs: {', '.join(map(str, missing))}"
            )
        foreign = [rid for rid in component_ids if arena[rid].category_id != category_id]
        if foreign:
            raise ValidationError(
                f"contains patterns from different categories: {', '.join(map(str, foreign))}"
            )

        if composite_id is not None and self._reaches(composite_id, component_ids, arena):
            raise ValidationError("component rules would create a cycle")

        return operator, component_ids

    def validate_conditions(self, conditions: Mapping | None) -> dict:
        """Check and normalise a composite's guard conditions.

        Supported keys: `min_amount`, `max_amount` (positive numbers),
        `days_of_week` (day names), `time_ranges` (list of
        {"start": "HH:MM", "end": "HH:MM"}, which may wrap past midnight) and
        `merchant_blacklist` (merchant names).
        """
        if not conditions:
            return {}
        if not isinstance(conditions, Mapping):
            raise ValidationError("conditions must be a mapping")

        invalid = sorted(set(conditions) - set(CONDITION_KEYS))
        if invalid:
            raise ValidationError(f"conditions contains invalid keys: {', '.join(invalid)}")

        normalized: dict = {}
        for key in ("min_amount", "max_amount"):
            if conditions.get(key) is not None:
                normalized[key] = _positive_amount(key, conditions[key])
        if "min_amount" in normalized and "max_amount" in normalized:
            if normalized["min_amount"] >= normalized["max_amount"]:
                raise ValidationError("min_amount must be less than max_amount")

        if conditions.get("days_of_week") is not None:
            days = conditions["days_of_week"]
            if (
                not isinstance(days, (list, tuple))
                or not days
                or not all(isinstance(d, str) and d.strip().lower() in DAY_NAMES for d in days)
            ):
                raise ValidationError("days_of_week must be a list of valid day names")
            normalized["days_of_week"] = sorted(
                {d.strip().lower() for d in days}, key=DAY_NAMES.index
            )

        if conditions.get("time_ranges") is not None:
            normalized["time_ranges"] = _time_ranges(conditions["time_ranges"])

        if conditions.get("merchant_blacklist") is not None:
            names = conditions["merchant_blacklist"]
            if not isinstance(names, (list, tuple)) or not all(
                isinstance(n, str) and n.strip() for n in names
            ):
                raise ValidationError("merchant_blacklist must be a list of merchant names")
            normalized["merchant_blacklist"] = sorted(
                {_WHITESPACE_RE.sub(" ", n.strip()).lower() for n in names}
            )

        return normalized

    @staticmethod
    def _reaches(target_id: int, start_ids: list[int], arena: Mapping) -> bool:
        """Return True if `target_id` is reachable from `start_ids`."""
        stack = list(start_ids)
        visited: set[int] = set()
        while stack:
            rid = stack.pop()
            if rid == target_id:
                return True
            if rid in visited:
                continue
            visited.add(rid)
            rule = arena.get(rid)
            if isinstance(rule, CompositeRule):
                stack.extend(rule.component_rule_ids)
        return False
