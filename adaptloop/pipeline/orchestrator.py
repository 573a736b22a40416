"""Per-caller pipeline orchestration.

Sequence for one run:

1. Load the ordered stage list (ConfigurationError propagates)
2. Load guardrails for the run
3. For each stage, and each of its output types with an executor
   (AGGREGATE, ADAPT, SUPERVISE): resolve active specs, validate their
   dependencies, dispatch every spec not skipped
4. Return a PipelineRunSummary with counts, warnings and errors

A spec's internal failure becomes an ``errors`` entry; the run continues.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from ..config import AdaptloopConfig, get_config
from ..core.models import (
    AdaptRunResult,
    AggregateRunResult,
    DependencyValidationResult,
    OutputType,
    PipelineRunSummary,
    PipelineStage,
    SpecificationRecord,
)
from ..storage import AdaptStore, KeyedLocks, store_locks
from .adaptation import AdaptationEngine
from .aggregation import AggregationEngine
from .dependencies import DependencyValidator
from .guardrails import GuardrailPolicy
from .registry import SpecRegistry
from .stages import StageScheduler

logger = logging.getLogger(__name__)


class Orchestrator:
    """Wires registry, validator, guardrails and engines for one store."""

    def __init__(
        self,
        store: AdaptStore,
        config: AdaptloopConfig | None = None,
        *,
        registry: SpecRegistry | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.store = store
        self.config = config or get_config()
        self.registry = registry or SpecRegistry(
            store,
            ttl_seconds=self.config.registry.ttl_seconds,
            slug_prefix=self.config.registry.slug_prefix,
        )
        self.locks = locks if locks is not None else store_locks(store)
        self.scheduler = StageScheduler(
            self.registry,
            pipeline_spec=self.config.pipeline.pipeline_spec,
            policy=self.config.pipeline.stage_policy,
        )
        self.validator = DependencyValidator(self.registry)
        self.guardrails = GuardrailPolicy(self.registry)
        self.aggregation = AggregationEngine(store, self.registry, self.config.engine)
        self.adaptation = AdaptationEngine(
            store, self.registry, self.guardrails, self.locks, self.config.engine
        )
        self._executors: dict[str, Callable[[str, PipelineRunSummary], None]] = {
            OutputType.AGGREGATE.value: self._run_aggregate,
            OutputType.ADAPT.value: self._run_adapt,
            OutputType.SUPERVISE.value: self._run_supervise,
        }

    def load_stages(self) -> list[PipelineStage]:
        return self.scheduler.load_stages()

    def validate(self, spec_slugs: Iterable[str]) -> DependencyValidationResult:
        return self.validator.validate(spec_slugs)

    def run(
        self,
        caller_id: str,
        output_types: Iterable[OutputType | str] | None = None,
        mode: str | None = None,
    ) -> PipelineRunSummary:
        """Run every executable stage for a caller.

        Args:
            caller_id: Caller whose scores, attributes and targets are processed
            output_types: Restrict the run to these output types (default: all)
            mode: "prep" or "prompt"; stages requiring another mode are skipped

        Raises:
            ConfigurationError: when no valid stage list can be resolved
        """
        summary = PipelineRunSummary(caller_id=caller_id, mode=mode)
        requested = _normalize_types(output_types)

        stages = self.scheduler.load_stages()
        guardrails = self.guardrails.load()
        summary.guardrail_source = guardrails.source_spec

        for stage in stages:
            if mode is not None and stage.requires_mode and stage.requires_mode != mode:
                logger.debug(
                    "Skipping stage %s (requires mode=%s)", stage.name, stage.requires_mode
                )
                continue

            ran = False
            for output_type in stage.output_types:
                if requested is not None and output_type not in requested:
                    continue
                executor = self._executors.get(output_type)
                if executor is None:
                    logger.debug(
                        "No executor for %s in stage %s", output_type, stage.name
                    )
                    continue
                executor(caller_id, summary)
                ran = True
            if ran:
                summary.stages_run.append(stage.name)

        if summary.errors:
            logger.warning(
                "Pipeline for %s finished with %d error(s)", caller_id, len(summary.errors)
            )
        else:
            logger.info(
                "Pipeline for %s: %d spec(s), %d profile update(s), "
                "%d/%d target(s) created/updated",
                caller_id,
                summary.specs_run,
                summary.profile_updates,
                summary.targets_created,
                summary.targets_updated,
            )
        return summary

    def _runnable(
        self, output_type: OutputType, summary: PipelineRunSummary
    ) -> list[SpecificationRecord]:
        specs = self.registry.find_active_specs_by_output_type(output_type)
        if not specs:
            return []
        validation = self.validator.validate([s.slug for s in specs])
        if not validation.valid:
            for warning in validation.warnings:
                logger.warning("[dependency] %s", warning)
        summary.warnings.extend(validation.warnings)
        summary.specs_skipped.extend(validation.skipped)
        skipped = validation.skipped_slugs
        return [s for s in specs if s.slug not in skipped]

    def _run_aggregate(self, caller_id: str, summary: PipelineRunSummary) -> None:
        specs = self._runnable(OutputType.AGGREGATE, summary)
        result: AggregateRunResult = self.aggregation.run_specs(caller_id, specs)
        summary.specs_run += result.specs_run
        summary.profile_updates += result.profile_updates
        summary.errors.extend(result.errors)

    def _run_adapt(self, caller_id: str, summary: PipelineRunSummary) -> None:
        specs = self._runnable(OutputType.ADAPT, summary)
        result: AdaptRunResult = self.adaptation.run_specs(caller_id, specs)
        summary.specs_run += result.specs_run
        summary.targets_created += result.targets_created
        summary.targets_updated += result.targets_updated
        summary.errors.extend(result.errors)

    def _run_supervise(self, caller_id: str, summary: PipelineRunSummary) -> None:
        try:
            summary.targets_adjusted += self.guardrails.enforce(
                self.store, caller_id, self.locks
            )
        except Exception as exc:
            logger.exception("Guardrail enforcement failed for %s", caller_id)
            summary.errors.append(f"SUPERVISE: {exc}")


def _normalize_types(output_types: Iterable[OutputType | str] | None) -> set[str] | None:
    if output_types is None:
        return None
    return {t.value if isinstance(t, OutputType) else str(t).upper() for t in output_types}


# =============================================================================
# Module-level entry points
# =============================================================================


def run_aggregate_specs(
    store: AdaptStore, caller_id: str, config: AdaptloopConfig | None = None
) -> AggregateRunResult:
    """Run every active AGGREGATE spec for a caller."""
    return Orchestrator(store, config).aggregation.run_aggregate_specs(caller_id)


def run_adapt_specs(
    store: AdaptStore, caller_id: str, config: AdaptloopConfig | None = None
) -> AdaptRunResult:
    """Run every active ADAPT spec for a caller, clamped by the active guardrails."""
    orchestrator = Orchestrator(store, config)
    orchestrator.guardrails.load()
    return orchestrator.adaptation.run_adapt_specs(caller_id)


def validate_spec_dependencies(
    store: AdaptStore, spec_slugs: Iterable[str], config: AdaptloopConfig | None = None
) -> DependencyValidationResult:
    return Orchestrator(store, config).validate(spec_slugs)


def load_pipeline_stages(
    store: AdaptStore, config: AdaptloopConfig | None = None
) -> list[PipelineStage]:
    return Orchestrator(store, config).load_stages()
