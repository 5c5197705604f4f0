"""Regex rule screening.

Regex rules run on a backtracking engine, so they are screened by two
independent gates before they are accepted:

1. A static screen: the raw pattern is checked against a fixed set of
   catastrophic-backtracking shapes (nested quantifiers over groups or
   classes, repeated quantifiers, lookbehind, consecutive bounded repeats)
   and scored for complexity.
2. A dynamic stress test: the compiled pattern is run against fixed inputs
   with a hard time budget. The `regex` package aborts the search itself
   when the budget is exhausted, so the check is cancellable and never
   blocks the caller.

Each gate catches patterns the other misses.
"""

import re
from functools import lru_cache

import regex
import structlog

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.core.exceptions import ValidationError

logger = structlog.get_logger()

# ── Static screen ───────────────────────────────────────────────

DANGEROUS_REGEX_PATTERNS: list[re.Pattern] = [
    re.compile(r"\([^)]*[+*]\)[+*]"),  # (a+)+ or (a*)*
    re.compile(r"\[[^\]]*[+*]\][+*]"),  # [a+]+ or [a*]*
    re.compile(r"(\w+[+*])+[+*]"),  # a++ or a**
    re.compile(r"\(.+[+*].+\)[+*]"),  # complex nested quantifiers
    re.compile(r"\(\?<[!=]"),  # lookbehind assertions
    re.compile(r"\{(\d+,)?\d*\}\{"),  # consecutive bounded repeats
]

_QUANTIFIER_RE = re.compile(r"[*+?]")
_BOUNDED_REPEAT_RE = re.compile(r"\{[\d,]+\}")
_ADJACENT_QUANTIFIER_RE = re.compile(r"[*+]\s*[*+]")

# ── Dynamic stress test ─────────────────────────────────────────

# Long runs of one character followed by a non-matching tail are the
# classic trigger for exponential backtracking.
STRESS_INPUTS: tuple[str, ...] = (
    "a" * 100,
    "a" * 100 + "!",
    "x" * 50 + "0" * 50 + "!",
)

COMPILE_FLAGS = regex.IGNORECASE | regex.V0


def is_dangerous(pattern: str) -> bool:
    """Return True if the pattern has a known catastrophic-backtracking shape."""
    return any(shape.search(pattern) for shape in DANGEROUS_REGEX_PATTERNS)


def complexity_score(pattern: str) -> int:
    """Weighted count of quantifiers, groups, alternations and classes.

    Adjacent quantifiers are penalised heavily.
    """
    score = len(_QUANTIFIER_RE.findall(pattern)) * 2
    score += len(_BOUNDED_REPEAT_RE.findall(pattern)) * 3
    score += pattern.count("(")
    score += pattern.count("|") * 2
    score += pattern.count("[")
    score += len(_ADJACENT_QUANTIFIER_RE.findall(pattern)) * 10
    return score


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> regex.Pattern:
    """Compile a rule pattern (case-insensitive). Raises regex.error."""
    return regex.compile(pattern, COMPILE_FLAGS)


def search_with_budget(compiled: regex.Pattern, text: str, timeout_ms: int):
    """Search `text`, raising TimeoutError once `timeout_ms` is exhausted."""
    return compiled.search(text, timeout=timeout_ms / 1000)


def screen_regex(pattern: str, settings: Settings | None = None) -> dict:
    """Run both screening gates on a stripped regex pattern.

    Returns diagnostic metadata (the complexity score) on acceptance and
    raises ValidationError on rejection.
    """
    settings = settings or default_settings

    if len(pattern) > settings.max_regex_length:
        raise ValidationError(
            f"regex pattern is too long (max {settings.max_regex_length} characters)"
        )

    if is_dangerous(pattern):
        raise ValidationError(
            "contains potentially dangerous regex pattern (ReDoS vulnerability)"
        )

    try:
        compiled = compile_pattern(pattern)
    except regex.error as e:
        raise ValidationError(f"invalid regular expression: {e}") from e

    score = complexity_score(pattern)
    if score > settings.regex_complexity_threshold:
        raise ValidationError(f"pattern is too complex (complexity score: {score})")

    for text in STRESS_INPUTS:
        try:
            search_with_budget(compiled, text, settings.regex_validation_timeout_ms)
        except TimeoutError as e:
            logger.info("regex_stress_test_timeout", pattern=pattern)
            raise ValidationError("regex pattern is too complex (performance issue)") from e

    return {"complexity_score": score}
