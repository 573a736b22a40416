"""All Pydantic models for adaptloop, organized by domain.

This package centralizes all model definitions:
- spec.py: Specification records, parameter definitions, pipeline stages
- rules.py: Aggregation and adaptation rules embedded in spec config
- records.py: Score events, profile attributes, targets
- guardrails.py: Guardrail configuration and defaults
- results.py: Run results and validation summaries
"""

from .spec import (
    AUTHORED,
    OutputType,
    SpecificationRecord,
    ParameterDefinition,
    PipelineStage,
)

from .rules import (
    AggregationMethod,
    Threshold,
    AggregationRule,
    AggregationBlock,
    AdaptationCondition,
    AdaptationAction,
    AdaptationRule,
    AdaptationBlock,
)

from .records import (
    LEARNER_PROFILE_SCOPE,
    ScoreEvent,
    AttributeRecord,
    TargetRecord,
)

from .guardrails import (
    TargetClamp,
    ConfidenceBounds,
    MockBehavior,
    AISettings,
    AggregationSettings,
    GuardrailConfig,
)

from .results import (
    AggregateRunResult,
    AdaptRunResult,
    SkippedSpec,
    DependencyValidationResult,
    PipelineRunSummary,
)

__all__ = [
    # Spec
    "AUTHORED",
    "OutputType",
    "SpecificationRecord",
    "ParameterDefinition",
    "PipelineStage",
    # Rules - Aggregation
    "AggregationMethod",
    "Threshold",
    "AggregationRule",
    "AggregationBlock",
    # Rules - Adaptation
    "AdaptationCondition",
    "AdaptationAction",
    "AdaptationRule",
    "AdaptationBlock",
    # Records
    "LEARNER_PROFILE_SCOPE",
    "ScoreEvent",
    "AttributeRecord",
    "TargetRecord",
    # Guardrails
    "TargetClamp",
    "ConfidenceBounds",
    "MockBehavior",
    "AISettings",
    "AggregationSettings",
    "GuardrailConfig",
    # Results
    "AggregateRunResult",
    "AdaptRunResult",
    "SkippedSpec",
    "DependencyValidationResult",
    "PipelineRunSummary",
]
