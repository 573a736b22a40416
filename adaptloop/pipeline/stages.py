"""Pipeline stage resolution.

The ordered stage list comes from spec configuration. Resolution chain:

1. The configured pipeline spec (default PIPELINE-001), parameter ``pipeline_stages``
2. The active SUPERVISE spec's ``pipeline_stages`` parameter
3. Policy: ``strict`` raises ConfigurationError, ``fallback`` uses DEFAULT_STAGES
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from ..core.errors import ConfigurationError
from ..core.models import OutputType, PipelineStage, SpecificationRecord
from .registry import SpecRegistry, extract_stage_list

logger = logging.getLogger(__name__)


DEFAULT_STAGES: tuple[PipelineStage, ...] = (
    PipelineStage(
        name="EXTRACT",
        order=1,
        output_types=["MEASURE", "LEARN", "CLASSIFY"],
        description="Extract measurements from transcript",
    ),
    PipelineStage(
        name="AGGREGATE",
        order=2,
        output_types=["AGGREGATE"],
        description="Aggregate measurements into profile",
        batched=True,
    ),
    PipelineStage(
        name="REWARD",
        order=3,
        output_types=["REWARD"],
        description="Compute reward signal",
    ),
    PipelineStage(
        name="ADAPT",
        order=4,
        output_types=["ADAPT"],
        description="Adapt targets based on profile",
    ),
    PipelineStage(
        name="SUPERVISE",
        order=5,
        output_types=["SUPERVISE"],
        description="Supervisor review of adaptations",
        requires_mode="prep",
    ),
    PipelineStage(
        name="COMPOSE",
        order=6,
        output_types=["COMPOSE"],
        description="Compose next prompt",
        requires_mode="prompt",
    ),
)


def get_stage_by_name(stages: list[PipelineStage], name: str) -> PipelineStage | None:
    """Case-sensitive lookup by stage name."""
    for stage in stages:
        if stage.name == name:
            return stage
    return None


def get_stages_for_output_type(
    stages: list[PipelineStage], output_type: OutputType | str
) -> list[PipelineStage]:
    value = output_type.value if isinstance(output_type, OutputType) else output_type
    return [s for s in stages if value in s.output_types]


def parse_stage_list(spec: SpecificationRecord) -> list[PipelineStage] | None:
    """Parse the stage list embedded in a spec; None when missing or malformed."""
    raw = extract_stage_list(spec.config)
    if raw is None:
        return None
    try:
        stages = [PipelineStage.model_validate(item) for item in raw]
    except ValidationError as exc:
        logger.warning("Malformed pipeline_stages in %s: %s", spec.slug, exc)
        return None
    return sorted(stages, key=lambda s: s.order)


class StageScheduler:
    """Resolves the ordered stage list under an explicit policy."""

    def __init__(
        self,
        registry: SpecRegistry,
        pipeline_spec: str = "PIPELINE-001",
        policy: str = "strict",
    ):
        if policy not in ("strict", "fallback"):
            raise ValueError(f"Unknown stage policy: {policy!r}")
        self.registry = registry
        self.pipeline_spec = pipeline_spec
        self.policy = policy

    def load_stages(self) -> list[PipelineStage]:
        """Return stages sorted by order.

        Raises:
            ConfigurationError: in strict mode, when no spec supplies a valid stage list
        """
        spec = self.registry.find_active_spec(self.pipeline_spec)
        if spec is not None:
            stages = parse_stage_list(spec)
            if stages:
                logger.debug("Loaded %d stages from %s", len(stages), spec.slug)
                return stages

        for supervisor in self.registry.find_active_specs_by_output_type(
            OutputType.SUPERVISE
        ):
            stages = parse_stage_list(supervisor)
            if stages:
                logger.debug(
                    "Loaded %d stages from SUPERVISE spec %s", len(stages), supervisor.slug
                )
                return stages

        if spec is None:
            message = f"Pipeline spec not found: {self.pipeline_spec}"
        else:
            message = f"Pipeline spec {spec.slug} has no valid stage configuration"

        if self.policy == "fallback":
            logger.warning("%s; using default stage list", message)
            return list(DEFAULT_STAGES)

        raise ConfigurationError(
            message,
            hint=(
                f"activate a spec '{self.pipeline_spec}' with a 'pipeline_stages' "
                "parameter, or set pipeline.stage_policy to 'fallback'"
            ),
        )
