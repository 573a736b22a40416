"""Error taxonomy for the rule engine.

Only ConfigurationError is fatal. Everything else is captured into result
objects so a run can report partial success.
"""


class AdaptloopError(Exception):
    """Base class for adaptloop errors."""


class ConfigurationError(AdaptloopError):
    """A required stage or spec is missing or malformed. Aborts the run."""

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        base = super().__str__()
        if self.hint:
            return f"{base} ({self.hint})"
        return base


class RuleEvaluationError(AdaptloopError):
    """A single rule or action failed. Recovered locally by the engines."""

    def __init__(self, spec_slug: str, message: str, rule_index: int | None = None):
        self.spec_slug = spec_slug
        self.rule_index = rule_index
        location = spec_slug if rule_index is None else f"{spec_slug}[{rule_index}]"
        super().__init__(f"{location}: {message}")
