"""Engine configuration using pydantic-settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Pattern store
    database_url: str = "sqlite+pysqlite:///:memory:"

    # Text rules (merchant, keyword, description)
    min_pattern_length: int = 2
    max_pattern_length: int = 255
    similarity_threshold: float = 0.8  # rapidfuzz ratio / 100
    high_similarity_neighbors: int = 3

    # Regex rules
    max_regex_length: int = 100
    regex_complexity_threshold: int = 10
    regex_validation_timeout_ms: int = 100  # stress test budget when a rule is created
    regex_match_timeout_ms: int = 50  # budget per rule when matching a transaction

    # Amount ranges
    max_amount_range_span: float = 10_000

    # Confidence
    min_confidence_weight: float = 0.1
    max_confidence_weight: float = 5.0  # also the normalisation divisor
    default_confidence_weight: float = 1.0

    # Ranking
    default_max_suggestions: int = 3
    # Pseudo-count pulling low-usage success rates towards a neutral 50% prior
    ranking_smoothing: float = 2.0

    # Feedback / learning
    trend_window_days: int = 7
    counter_write_max_attempts: int = 3
    counter_write_backoff_ms: int = 10
    poor_performance_min_usage: int = 20
    poor_performance_threshold: float = 0.3

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
