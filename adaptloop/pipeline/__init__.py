"""Rule-interpretation pipeline: registry, stages, engines and orchestration."""

from ..storage import KeyedLocks
from .registry import (
    SpecRegistry,
    normalize_feature_id,
    get_parameter_config,
    extract_aggregation_blocks,
    extract_adaptation_blocks,
    extract_stage_list,
)
from .stages import (
    DEFAULT_STAGES,
    StageScheduler,
    get_stage_by_name,
    get_stages_for_output_type,
)
from .dependencies import DependencyValidator, declared_dependencies
from .aggregation import AggregationEngine, LEARNER_PROFILE_KEYS
from .adaptation import AdaptationEngine, resolve_profile_value
from .guardrails import DEFAULT_GUARDRAILS, GuardrailPolicy
from .orchestrator import (
    Orchestrator,
    run_aggregate_specs,
    run_adapt_specs,
    validate_spec_dependencies,
    load_pipeline_stages,
)

__all__ = [
    # Registry
    "SpecRegistry",
    "normalize_feature_id",
    "get_parameter_config",
    "extract_aggregation_blocks",
    "extract_adaptation_blocks",
    "extract_stage_list",
    # Stages
    "DEFAULT_STAGES",
    "StageScheduler",
    "get_stage_by_name",
    "get_stages_for_output_type",
    # Dependencies
    "DependencyValidator",
    "declared_dependencies",
    # Engines
    "AggregationEngine",
    "LEARNER_PROFILE_KEYS",
    "AdaptationEngine",
    "resolve_profile_value",
    "DEFAULT_GUARDRAILS",
    "GuardrailPolicy",
    "KeyedLocks",
    # Orchestration
    "Orchestrator",
    "run_aggregate_specs",
    "run_adapt_specs",
    "validate_spec_dependencies",
    "load_pipeline_stages",
]
