"""Confidence arithmetic shared by the matcher, evaluator and ranking."""

from pattern_engine.config import Settings, settings as default_settings
from pattern_engine.schemas.pattern import PatternCounters

NEUTRAL_SUCCESS_RATE = 0.5


def normalize_confidence(weight: float, settings: Settings | None = None) -> float:
    """Map a raw confidence weight into [0, 1] (weight / max weight, capped)."""
    settings = settings or default_settings
    if weight <= 0:
        return 0.0
    cap = settings.max_confidence_weight
    return min(weight, cap) / cap


def composite_scale(weight: float) -> float:
    """Scaling factor a composite applies to its combined confidence.

    Capped at 1 so that a composite never claims more confidence than its
    components justify.
    """
    return max(0.0, min(weight, 1.0))


def success_rate_adjustment(counters: PatternCounters, settings: Settings | None = None) -> float:
    """Ranking multiplier derived from a rule's feedback history.

    A rule that was never used is neutral (1.0). Otherwise the success rate
    is smoothed towards a 50% prior with `ranking_smoothing` pseudo-counts
    and expressed relative to that prior: a rule that is always accepted
    tends to 2.0, a rule that is always rejected tends to 0.
    """
    settings = settings or default_settings
    if counters.usage_count <= 0:
        return 1.0
    k = max(settings.ranking_smoothing, 0.0)
    smoothed = (counters.success_count + NEUTRAL_SUCCESS_RATE * k) / (counters.usage_count + k)
    return smoothed / NEUTRAL_SUCCESS_RATE
