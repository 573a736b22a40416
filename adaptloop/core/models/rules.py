"""Rule models embedded in spec configuration.

Aggregation rules turn a window of score events into a profile attribute.
Adaptation rules turn profile state into target adjustments.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from .spec import AUTHORED


# =============================================================================
# Aggregation
# =============================================================================


AggregationMethod = Literal["threshold_mapping", "weighted_average", "consensus"]


class Threshold(BaseModel):
    """A half-open band ``[min, max)`` mapped to a categorical value."""

    model_config = AUTHORED

    min: float | None = None
    max: float | None = None
    value: str | int | float | bool
    confidence: float | None = Field(default=None, ge=0, le=1)

    def contains(self, score: float) -> bool:
        """True when ``score`` falls inside this band."""
        if self.min is not None and score < self.min:
            return False
        if self.max is not None and score >= self.max:
            return False
        return True


class AggregationRule(BaseModel):
    """Maps a window of score events for one parameter to a profile key.

    ``method`` is kept as a free string so unknown methods can be reported as
    a no-op instead of rejecting the whole spec.
    """

    model_config = AUTHORED

    source_parameter: str = Field(min_length=1)
    target_profile_key: str = Field(min_length=1)
    method: str | None = None
    thresholds: list[Threshold] | None = None
    window_size: int | None = Field(default=None, ge=1)
    minimum_observations: int | None = Field(default=None, ge=0)
    scope: str | None = None


class AggregationBlock(BaseModel):
    """A ``config.parameters[]`` entry that carries aggregation rules."""

    parameter_id: str
    rules: list[dict[str, Any]]
    window_size: int | None = None
    minimum_observations: int | None = None


# =============================================================================
# Adaptation
# =============================================================================


class AdaptationCondition(BaseModel):
    """Exact-match condition on a single profile key."""

    model_config = AUTHORED

    profile_key: str = Field(min_length=1)
    value: Any


class AdaptationAction(BaseModel):
    """Adjustment applied to one target parameter when a rule matches."""

    model_config = AUTHORED

    target_parameter: str = Field(min_length=1)
    adjustment: Literal["set", "increase", "decrease"]
    value: float | None = None
    delta: float | None = None
    rationale: str | None = None


class AdaptationRule(BaseModel):
    """Conditional rule: when ``condition`` holds, run every action."""

    model_config = AUTHORED

    condition: AdaptationCondition
    actions: list[AdaptationAction] = Field(default_factory=list)
    rationale: str | None = None


class AdaptationBlock(BaseModel):
    """A ``config.parameters[]`` entry that carries adaptation rules.

    ``key_map`` is the authored alias table used to resolve condition keys
    against stored profile keys, e.g. ``{"pacePreference": "pace_preference"}``.
    """

    parameter_id: str
    rules: list[dict[str, Any]]
    key_map: dict[str, str] = Field(default_factory=dict)
