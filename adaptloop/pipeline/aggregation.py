"""Windowed aggregation of score events into profile attributes.

For every active AGGREGATE spec and every embedded aggregation rule:

1. Fetch the most recent ``window_size`` events for (caller, source parameter)
2. Skip silently when fewer than ``minimum_observations`` events exist
3. Compute a recency-weighted mean (weight of i-th most recent = 1/(i+1))
   and the unweighted mean confidence
4. Dispatch on ``method``: threshold_mapping, weighted_average or consensus

All rule outputs of one spec form a single batch. The batch confidence is the
mean of the fired rules' confidences and is written with every attribute.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Protocol

from pydantic import BaseModel, ValidationError

from ..config import EngineConfig
from ..core.errors import RuleEvaluationError
from ..core.models import (
    AggregateRunResult,
    AggregationBlock,
    AggregationRule,
    OutputType,
    ScoreEvent,
    SpecificationRecord,
    Threshold,
)
from .registry import SpecRegistry, extract_aggregation_blocks

logger = logging.getLogger(__name__)


# =============================================================================
# Learner-profile vocabulary
# =============================================================================

# snake_case term -> canonical stored key
LEARNER_PROFILE_KEYS: dict[str, str] = {
    "learning_style": "learningStyle",
    "pace_preference": "pacePreference",
    "interaction_style": "interactionStyle",
}


def learner_profile_key(key: str) -> str | None:
    """Canonical learner-profile key for ``key``, or None outside the vocabulary.

    A key matches when it contains a vocabulary term in either its snake_case
    or camelCase form.
    """
    for term, canonical in LEARNER_PROFILE_KEYS.items():
        if term in key or canonical in key:
            return canonical
    return None


# =============================================================================
# Pure aggregation functions
# =============================================================================


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def recency_weighted_average(scores: list[float]) -> float:
    """Weighted mean with weight 1/(i+1) for the i-th most recent score."""
    if not scores:
        raise ValueError("cannot average an empty window")
    weights = [1.0 / (i + 1) for i in range(len(scores))]
    total = sum(score * weight for score, weight in zip(scores, weights))
    return total / sum(weights)


def mean_confidence(confidences: list[float]) -> float:
    if not confidences:
        return 0.0
    return sum(confidences) / len(confidences)


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def apply_weighted_average(mean: float, confidence: float) -> tuple[str, float]:
    return f"{clamp01(mean):.2f}", clamp01(confidence)


def apply_threshold_mapping(
    mean: float, confidence: float, thresholds: list[Threshold]
) -> tuple[str, float] | None:
    """Pick the first band containing ``mean``; None when no band matches."""
    for band in thresholds:
        if band.contains(mean):
            band_confidence = band.confidence if band.confidence is not None else confidence
            return format_value(band.value), clamp01(min(band_confidence, confidence))
    return None


def apply_consensus(scores: list[float]) -> tuple[str, float]:
    """Modal 0.1 bucket; ties go to the bucket encountered first."""
    if not scores:
        raise ValueError("cannot take consensus of an empty window")
    counts: dict[float, int] = {}
    for score in scores:
        bucket = round_half_up(score, 1)
        counts[bucket] = counts.get(bucket, 0) + 1

    modal_bucket, modal_count = None, 0
    for bucket, count in counts.items():
        if count > modal_count:
            modal_bucket, modal_count = bucket, count
    return f"{modal_bucket:.1f}", clamp01(modal_count / len(scores))


# =============================================================================
# Engine
# =============================================================================


class ScoreSource(Protocol):
    def find_recent_scores(
        self, caller_id: str, parameter_id: str, window_size: int
    ) -> list[ScoreEvent]: ...

    def upsert_attribute(
        self, caller_id: str, key: str, value: str, confidence: float, scope: str
    ) -> None: ...


class ProfileUpdate(BaseModel):
    """One fired rule's output, before batch confidence is applied."""

    key: str
    value: str
    confidence: float
    scope: str | None = None
    source_parameter: str


class AggregationEngine:
    """Applies aggregation rules from AGGREGATE specs to a caller's score history."""

    def __init__(
        self,
        store: ScoreSource,
        registry: SpecRegistry,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config or EngineConfig()

    def run_aggregate_specs(self, caller_id: str) -> AggregateRunResult:
        specs = self.registry.find_active_specs_by_output_type(OutputType.AGGREGATE)
        return self.run_specs(caller_id, specs)

    def run_specs(
        self, caller_id: str, specs: Iterable[SpecificationRecord]
    ) -> AggregateRunResult:
        result = AggregateRunResult()
        for spec in specs:
            try:
                result.merge(self.run_spec(caller_id, spec))
            except Exception as exc:
                logger.exception("Aggregation spec %s failed for %s", spec.slug, caller_id)
                result.errors.append(f"{spec.slug}: {exc}")
        return result

    def run_spec(self, caller_id: str, spec: SpecificationRecord) -> AggregateRunResult:
        result = AggregateRunResult()
        blocks = [b for b in extract_aggregation_blocks(spec.config) if b.rules]
        if not blocks:
            logger.debug("Spec %s carries no aggregation rules", spec.slug)
            return result

        result.specs_run = 1
        updates: list[ProfileUpdate] = []
        rules = [(block, raw) for block in blocks for raw in block.rules]
        for index, (block, raw_rule) in enumerate(rules):
            try:
                update = self.evaluate_rule(caller_id, spec.slug, block, raw_rule, index)
            except RuleEvaluationError as exc:
                logger.warning("%s", exc)
                result.errors.append(str(exc))
            except Exception as exc:
                err = RuleEvaluationError(spec.slug, str(exc), index)
                logger.exception("%s", err)
                result.errors.append(str(err))
            else:
                if update is not None:
                    updates.append(update)

        if not updates:
            return result

        batch_confidence = clamp01(mean_confidence([u.confidence for u in updates]))
        for update in updates:
            if self._write(caller_id, update, batch_confidence):
                result.profile_updates += 1
        return result

    def evaluate_rule(
        self,
        caller_id: str,
        spec_slug: str,
        block: AggregationBlock,
        raw_rule: dict[str, Any],
        index: int,
    ) -> ProfileUpdate | None:
        """Evaluate one rule. Returns None for data-insufficiency no-ops."""
        try:
            rule = AggregationRule.model_validate(raw_rule)
        except ValidationError as exc:
            raise RuleEvaluationError(
                spec_slug, f"malformed aggregation rule: {exc.error_count()} error(s)", index
            ) from exc

        window_size = _first_set(
            rule.window_size, block.window_size, self.config.default_window_size
        )
        minimum = _first_set(
            rule.minimum_observations,
            block.minimum_observations,
            self.config.default_minimum_observations,
        )

        events = self.store.find_recent_scores(caller_id, rule.source_parameter, window_size)
        if len(events) < minimum:
            logger.debug(
                "Skipping %s -> %s: %d/%d observations",
                rule.source_parameter,
                rule.target_profile_key,
                len(events),
                minimum,
            )
            return None

        scores = [clamp01(e.score) for e in events]
        mean = clamp01(recency_weighted_average(scores))
        confidence = clamp01(mean_confidence([e.confidence for e in events]))

        if rule.method == "weighted_average":
            outcome = apply_weighted_average(mean, confidence)
        elif rule.method == "threshold_mapping":
            if not rule.thresholds:
                logger.info(
                    "Rule %s[%d] uses threshold_mapping without thresholds", spec_slug, index
                )
                return None
            outcome = apply_threshold_mapping(mean, confidence, rule.thresholds)
            if outcome is None:
                logger.info(
                    "No threshold band matched %.3f for %s", mean, rule.target_profile_key
                )
                return None
        elif rule.method == "consensus":
            outcome = apply_consensus(scores)
        else:
            logger.info(
                "Unknown aggregation method %r in %s[%d]", rule.method, spec_slug, index
            )
            return None

        value, rule_confidence = outcome
        return ProfileUpdate(
            key=rule.target_profile_key,
            value=value,
            confidence=rule_confidence,
            scope=rule.scope,
            source_parameter=rule.source_parameter,
        )

    def route(self, update: ProfileUpdate) -> tuple[str, str] | None:
        """Resolve the (key, scope) an update is written under, or None."""
        if update.scope:
            return update.key, update.scope
        canonical = learner_profile_key(update.key)
        if canonical is not None:
            return canonical, self.config.profile_scope
        return None

    def _write(self, caller_id: str, update: ProfileUpdate, confidence: float) -> bool:
        target = self.route(update)
        if target is None:
            logger.info(
                "No scope for profile key %r (value %s); not persisted",
                update.key,
                update.value,
            )
            return False
        key, scope = target
        self.store.upsert_attribute(caller_id, key, update.value, confidence, scope)
        logger.debug("Upserted %s/%s=%s for %s", scope, key, update.value, caller_id)
        return True


def _first_set(*values: int | None) -> int:
    for value in values:
        if value is not None:
            return value
    raise ValueError("no value set")
