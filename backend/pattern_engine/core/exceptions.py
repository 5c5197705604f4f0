"""Custom exception classes for the pattern engine."""


class PatternEngineError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, detail: str = "Pattern engine error"):
        super().__init__(detail)
        self.detail = detail


class ValidationError(PatternEngineError):
    """A rule definition was rejected. Never retried by the engine."""

    def __init__(self, detail: str = "Validation error"):
        super().__init__(detail)


class NotFoundError(PatternEngineError):
    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class EvaluationFault(PatternEngineError):
    """A single rule could not be evaluated against a transaction."""

    def __init__(self, rule_id: int | None, detail: str = "Evaluation fault"):
        super().__init__(detail)
        self.rule_id = rule_id


class CounterWriteConflict(PatternEngineError):
    """A feedback counter update lost a race with a concurrent writer."""

    def __init__(self, rule_id: int, detail: str | None = None):
        super().__init__(detail or f"Counter write conflict on rule {rule_id}")
        self.rule_id = rule_id
