"""Pattern validation and normalization tests."""

import pytest

from pattern_engine.core.exceptions import ValidationError
from pattern_engine.schemas.pattern import CompositeOperator, CompositeRule, Rule, RuleType
from pattern_engine.services.pattern_validator import PatternValidator


@pytest.fixture
def validator(settings):
    return PatternValidator(settings)


# ── Text rules ──────────────────────────────────────


def test_text_value_is_trimmed_collapsed_and_lowercased(validator):
    result = validator.validate_and_normalize("merchant", "  Whole   Foods  Market ")
    assert result.rule_type == RuleType.MERCHANT
    assert result.value == "whole foods market"


@pytest.mark.parametrize(
    "raw_value, message",
    [
        ("a", "at least 2"),
        ("x" * 256, "no more than 255"),
        ("The", "too generic"),
        ("and", "too generic"),
        ("caf\x00e", "control characters"),
        ("star\tbucks", "control characters"),
        ("star\nbucks", "control characters"),
        ("   ", "blank"),
    ],
)
def test_text_value_rejections(validator, raw_value, message):
    with pytest.raises(ValidationError, match=message):
        validator.validate_and_normalize("keyword", raw_value)


def test_special_characters_are_flagged(validator):
    result = validator.validate_and_normalize("merchant", "a&b*c#d@e!f$")
    assert result.metadata["high_special_chars"] is True


def test_unknown_rule_type_rejected(validator):
    with pytest.raises(ValidationError, match="unknown rule type"):
        validator.validate_and_normalize("category", "walmart")


# ── Amount ranges ───────────────────────────────────


@pytest.mark.parametrize(
    "raw_value, expected",
    [
        ("10-50", "10.00-50.00"),
        (" 10.5-50.25 ", "10.50-50.25"),
        ("0-10000", "0.00-10000.00"),
    ],
)
def test_amount_range_normalized_to_two_decimals(validator, raw_value, expected):
    assert validator.validate_and_normalize("amount_range", raw_value).value == expected


@pytest.mark.parametrize(
    "raw_value, message",
    [
        ("50-10", "less than maximum"),
        ("10-10", "less than maximum"),
        ("0-10000.01", "too broad"),
        ("abc", "format"),
        ("10.123-20", "format"),
        ("10 - 20", "format"),
    ],
)
def test_amount_range_rejections(validator, raw_value, message):
    with pytest.raises(ValidationError, match=message):
        validator.validate_and_normalize("amount_range", raw_value)


def test_negative_amount_range_is_flagged(validator):
    result = validator.validate_and_normalize("amount_range", "-100--50")
    assert result.value == "-100.00--50.00"
    assert result.metadata["has_negative_amounts"] is True


# ── Time rules ──────────────────────────────────────


def test_time_vocabulary_is_lowercased(validator):
    assert validator.validate_and_normalize("time", " Business_Hours ").value == "business_hours"


def test_time_range_is_zero_padded(validator):
    assert validator.validate_and_normalize("time", "9:00-17:30").value == "09:00-17:30"


@pytest.mark.parametrize(
    "raw_value, message",
    [
        ("lunch", "must be one of"),
        ("24:00-25:00", "hours must be between"),
        ("10:60-11:00", "minutes between"),
        ("22:00-02:00", "wrap past midnight"),
        ("9-17", "must be one of"),
    ],
)
def test_time_rejections(validator, raw_value, message):
    with pytest.raises(ValidationError, match=message):
        validator.validate_and_normalize("time", raw_value)


# ── Regex rules ─────────────────────────────────────


def test_regex_is_only_stripped_and_scored(validator):
    result = validator.validate_and_normalize("regex", "  ^AMZN.*  ")
    assert result.value == "^AMZN.*"
    assert result.metadata == {"complexity_score": 2}


def test_dangerous_regex_rejected(validator):
    with pytest.raises(ValidationError, match="ReDoS"):
        validator.validate_and_normalize("regex", "(a+)+$")


# ── Duplicates ──────────────────────────────────────


def _rule(rule_id, value, category_id=1, rule_type=RuleType.MERCHANT):
    return Rule(id=rule_id, category_id=category_id, rule_type=rule_type, value=value)


def test_exact_duplicate_in_same_category_and_type_rejected(validator):
    existing = [_rule(1, "walmart")]
    with pytest.raises(ValidationError, match="already exists"):
        validator.validate_and_normalize("merchant", " WALMART ", category_id=1, existing=existing)


def test_same_value_in_other_category_or_type_is_accepted(validator):
    existing = [_rule(1, "walmart", category_id=2), _rule(2, "walmart", rule_type=RuleType.KEYWORD)]
    result = validator.validate_and_normalize("merchant", "walmart", category_id=1, existing=existing)
    assert result.value == "walmart"


def test_editing_rule_does_not_collide_with_itself(validator):
    existing = [_rule(1, "walmart")]
    result = validator.validate_and_normalize(
        "merchant", "Walmart", category_id=1, existing=existing, exclude_rule_id=1
    )
    assert result.value == "walmart"


def test_near_duplicate_is_flagged_not_rejected(validator):
    existing = [_rule(1, "starbucks coffee")]
    result = validator.validate_and_normalize(
        "merchant", "starbucks coffe", category_id=1, existing=existing
    )
    assert result.metadata["similar_patterns"] == ["starbucks coffee"]
    assert "high_similarity_warning" not in result.metadata


def test_three_near_duplicates_set_high_similarity_warning(validator):
    existing = [
        _rule(1, "starbucks coffee"),
        _rule(2, "starbucks coffees"),
        _rule(3, "starbucks cofee"),
        _rule(4, "dunkin donuts"),
    ]
    result = validator.validate_and_normalize(
        "merchant", "starbucks coffe", category_id=1, existing=existing
    )
    assert result.metadata["high_similarity_warning"] is True
    assert len(result.metadata["similar_patterns"]) == 3
    assert "dunkin donuts" not in result.metadata["similar_patterns"]


# ── Confidence weight ───────────────────────────────


@pytest.mark.parametrize("weight", [0.1, 1, 5.0])
def test_confidence_weight_within_bounds(validator, weight):
    assert validator.validate_confidence_weight(weight) == float(weight)


@pytest.mark.parametrize("weight", [0.05, 5.01, -1, "heavy"])
def test_confidence_weight_out_of_bounds(validator, weight):
    with pytest.raises(ValidationError):
        validator.validate_confidence_weight(weight)


# ── Composite rules ─────────────────────────────────


@pytest.fixture
def arena():
    return {
        1: _rule(1, "uber"),
        2: Rule(id=2, category_id=1, rule_type=RuleType.TIME, value="evening"),
        3: _rule(3, "lyft", category_id=2),
        10: CompositeRule(
            id=10, category_id=1, operator=CompositeOperator.AND, component_rule_ids=[1, 11]
        ),
        11: CompositeRule(
            id=11, category_id=1, operator=CompositeOperator.OR, component_rule_ids=[1, 2]
        ),
    }


def test_valid_composite(validator, arena):
    operator, ids = validator.validate_composite(
        category_id=1, operator="and", component_rule_ids=[2, 1], arena=arena
    )
    assert operator == CompositeOperator.AND
    assert ids == [2, 1]


@pytest.mark.parametrize(
    "operator, components, composite_id, message",
    [
        ("XOR", [1, 2], None, "operator"),
        ("NOT", [1, 2], None, "operator"),
        ("AND", [1], None, "at least 2"),
        ("AND", [1, 1], None, "must not repeat"),
        ("OR", [1, 99], None, "non-existent"),
        ("OR", [1, 3], None, "different categories"),
        ("AND", [11, 1], 11, "itself"),
        ("AND", [10, 2], 11, "cycle"),
    ],
)
def test_invalid_composite(validator, arena, operator, components, composite_id, message):
    with pytest.raises(ValidationError, match=message):
        validator.validate_composite(
            category_id=1,
            operator=operator,
            component_rule_ids=components,
            arena=arena,
            composite_id=composite_id,
        )


def test_composite_operator_enum_is_accepted(validator, arena):
    operator, ids = validator.validate_composite(
        category_id=1, operator=CompositeOperator.OR, component_rule_ids=[1, 2], arena=arena
    )
    assert operator == CompositeOperator.OR
    assert ids == [1, 2]


# ── Composite conditions ────────────────────────────


def test_conditions_are_normalized(validator):
    conditions = validator.validate_conditions(
        {
            "min_amount": 5,
            "max_amount": 50.5,
            "days_of_week": [" Sunday", "monday", "SUNDAY"],
            "time_ranges": [{"start": "9:00", "end": "17:30"}, {"start": "22:00", "end": "2:00"}],
            "merchant_blacklist": ["Uber  Eats ", "DELIVEROO"],
        }
    )
    assert conditions == {
        "min_amount": 5.0,
        "max_amount": 50.5,
        "days_of_week": ["monday", "sunday"],
        "time_ranges": [{"start": "09:00", "end": "17:30"}, {"start": "22:00", "end": "02:00"}],
        "merchant_blacklist": ["deliveroo", "uber eats"],
    }


def test_empty_conditions(validator):
    assert validator.validate_conditions(None) == {}
    assert validator.validate_conditions({}) == {}


@pytest.mark.parametrize(
    "conditions, message",
    [
        (["min_amount"], "must be a mapping"),
        ({"weather": "rain", "max_amount": 5}, "invalid keys: weather"),
        ({"min_amount": 0}, "min_amount must be a positive number"),
        ({"max_amount": "20"}, "max_amount must be a positive number"),
        ({"max_amount": True}, "max_amount must be a positive number"),
        ({"min_amount": 20, "max_amount": 20}, "min_amount must be less than max_amount"),
        ({"days_of_week": ["funday"]}, "valid day names"),
        ({"days_of_week": "monday"}, "valid day names"),
        ({"time_ranges": []}, "non-empty list"),
        ({"time_ranges": [{"start": "09:00"}]}, "'start' and 'end'"),
        ({"time_ranges": [{"start": "9am", "end": "5pm"}]}, "HH:MM format"),
        ({"time_ranges": [{"start": "24:00", "end": "01:00"}]}, "HH:MM format"),
        ({"merchant_blacklist": ["uber", ""]}, "list of merchant names"),
    ],
)
def test_invalid_conditions(validator, conditions, message):
    with pytest.raises(ValidationError, match=message):
        validator.validate_conditions(conditions)
