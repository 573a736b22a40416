"""Guardrail configuration models.

Defaults here are the compiled-in safety net used when no SUPERVISE spec is
active. A spec overrides them field by field.
"""

from pydantic import BaseModel

from .spec import AUTHORED


class TargetClamp(BaseModel):
    model_config = AUTHORED

    min_value: float = 0.2
    max_value: float = 0.8


class ConfidenceBounds(BaseModel):
    model_config = AUTHORED

    min_confidence: float = 0.3
    max_confidence: float = 0.95
    default_confidence: float = 0.7


class MockBehavior(BaseModel):
    """Score range used by mock scoring engines upstream."""

    model_config = AUTHORED

    score_range_min: float = 0.4
    score_range_max: float = 0.8
    nudge_factor: float = 0.2


class AISettings(BaseModel):
    model_config = AUTHORED

    temperature: float = 0.3
    max_retries: int = 2


class AggregationSettings(BaseModel):
    """Decay and confidence-growth settings for profile aggregation."""

    model_config = AUTHORED

    decay_half_life_days: float = 30
    confidence_growth_base: float = 0.5
    confidence_growth_per_call: float = 0.1
    max_aggregated_confidence: float = 0.95


class GuardrailConfig(BaseModel):
    """Resolved guardrails for one pipeline run."""

    model_config = AUTHORED

    target_clamp: TargetClamp = TargetClamp()
    confidence_bounds: ConfidenceBounds = ConfidenceBounds()
    mock_behavior: MockBehavior = MockBehavior()
    ai_settings: AISettings = AISettings()
    aggregation: AggregationSettings = AggregationSettings()
    source_spec: str | None = None
