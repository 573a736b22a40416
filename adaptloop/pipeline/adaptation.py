"""Conditional adaptation of behavior targets from profile state.

For each active ADAPT spec, every adaptation rule compares one profile value
against its condition (exact match). A match executes every action:

    set       value ?? 0.5
    increase  (current ?? 0.5) + (delta ?? 0.1)
    decrease  (current ?? 0.5) - (delta ?? 0.1)

Results are clamped to [0, 1] and then to the guardrail target range before
being upserted. The read of the current target, the computation and the
upsert happen under a per-(caller, parameter) lock.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from pydantic import ValidationError

from ..config import EngineConfig
from ..core.errors import RuleEvaluationError
from ..core.models import (
    LEARNER_PROFILE_SCOPE,
    AdaptationAction,
    AdaptationRule,
    AdaptRunResult,
    AttributeRecord,
    OutputType,
    ParameterDefinition,
    SpecificationRecord,
    TargetRecord,
)
from ..storage import KeyedLocks, store_locks
from .aggregation import LEARNER_PROFILE_KEYS, clamp01
from .guardrails import GuardrailPolicy
from .registry import SpecRegistry, extract_adaptation_blocks

logger = logging.getLogger(__name__)

DEFAULT_TARGET = 0.5
DEFAULT_DELTA = 0.1


class ProfileStore(Protocol):
    def get_attributes(
        self, caller_id: str, scope: str | None = None
    ) -> list[AttributeRecord]: ...

    def get_parameter(self, parameter_id: str) -> ParameterDefinition | None: ...

    def get_target(self, caller_id: str, parameter_id: str) -> TargetRecord | None: ...

    def upsert_target(
        self,
        caller_id: str,
        parameter_id: str,
        value: float,
        confidence: float,
        source_spec: str | None,
        rationale: str | None,
    ) -> None: ...


def build_profile(
    attributes: Iterable[AttributeRecord], primary_scope: str = LEARNER_PROFILE_SCOPE
) -> dict[str, str]:
    """Flatten attributes into key -> value. ``primary_scope`` wins on conflict."""
    profile: dict[str, str] = {}
    primary: dict[str, str] = {}
    for attr in attributes:
        if attr.scope == primary_scope:
            primary[attr.key] = attr.value
        else:
            profile.setdefault(attr.key, attr.value)
    profile.update(primary)
    return profile


def _alias_table(key_map: dict[str, str]) -> dict[str, list[str]]:
    aliases: dict[str, list[str]] = {}
    for left, right in key_map.items():
        aliases.setdefault(left, []).append(right)
        aliases.setdefault(right, []).append(left)
    return aliases


_VOCABULARY_ALIASES = _alias_table(LEARNER_PROFILE_KEYS)


def resolve_profile_value(
    profile: dict[str, str], key: str, key_map: dict[str, str] | None = None
) -> str | None:
    """Look up ``key``: exact, then the authored key map, then the built-in vocabulary.

    Both tables are read in both directions. Returns None when nothing resolves.
    """
    if key in profile:
        return profile[key]
    for table in (_alias_table(key_map or {}), _VOCABULARY_ALIASES):
        for alias in table.get(key, ()):
            if alias in profile:
                return profile[alias]
    return None


def compute_target(action: AdaptationAction, current: float | None) -> float:
    """Apply an action to the current target, clamped to [0, 1]."""
    if action.adjustment == "set":
        value = action.value if action.value is not None else DEFAULT_TARGET
    else:
        base = current if current is not None else DEFAULT_TARGET
        delta = action.delta if action.delta is not None else DEFAULT_DELTA
        value = base + delta if action.adjustment == "increase" else base - delta
    return clamp01(value)


class AdaptationEngine:
    """Turns profile state into target adjustments for one caller."""

    def __init__(
        self,
        store: ProfileStore,
        registry: SpecRegistry,
        guardrails: GuardrailPolicy,
        locks: KeyedLocks | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.registry = registry
        self.guardrails = guardrails
        self.locks = locks if locks is not None else store_locks(store)
        self.config = config or EngineConfig()

    def run_adapt_specs(self, caller_id: str) -> AdaptRunResult:
        specs = self.registry.find_active_specs_by_output_type(OutputType.ADAPT)
        return self.run_specs(caller_id, specs)

    def run_specs(
        self, caller_id: str, specs: Iterable[SpecificationRecord]
    ) -> AdaptRunResult:
        result = AdaptRunResult()
        for spec in specs:
            try:
                result.merge(self.run_spec(caller_id, spec))
            except Exception as exc:
                logger.exception("Adaptation spec %s failed for %s", spec.slug, caller_id)
                result.errors.append(f"{spec.slug}: {exc}")
        return result

    def run_spec(self, caller_id: str, spec: SpecificationRecord) -> AdaptRunResult:
        result = AdaptRunResult()
        blocks = [b for b in extract_adaptation_blocks(spec.config) if b.rules]
        if not blocks:
            logger.debug("Spec %s carries no adaptation rules", spec.slug)
            return result

        result.specs_run = 1
        profile = build_profile(
            self.store.get_attributes(caller_id), self.config.profile_scope
        )

        rules = [(block, raw) for block in blocks for raw in block.rules]
        for index, (block, raw_rule) in enumerate(rules):
            try:
                rule = AdaptationRule.model_validate(raw_rule)
            except ValidationError as exc:
                err = RuleEvaluationError(
                    spec.slug,
                    f"malformed adaptation rule: {exc.error_count()} error(s)",
                    index,
                )
                logger.warning("%s", err)
                result.errors.append(str(err))
                continue

            current = resolve_profile_value(
                profile, rule.condition.profile_key, block.key_map
            )
            if current is None or current != rule.condition.value:
                continue

            logger.debug(
                "Rule %s[%d] matched %s=%r",
                spec.slug,
                index,
                rule.condition.profile_key,
                current,
            )
            for action in rule.actions:
                try:
                    created = self.apply_action(caller_id, spec.slug, rule, action, index)
                except RuleEvaluationError as exc:
                    logger.warning("%s", exc)
                    result.errors.append(str(exc))
                except Exception as exc:
                    err = RuleEvaluationError(spec.slug, str(exc), index)
                    logger.exception("%s", err)
                    result.errors.append(str(err))
                else:
                    if created:
                        result.targets_created += 1
                    else:
                        result.targets_updated += 1
        return result

    def apply_action(
        self,
        caller_id: str,
        spec_slug: str,
        rule: AdaptationRule,
        action: AdaptationAction,
        index: int,
    ) -> bool:
        """Upsert one target. Returns True when the target did not exist before."""
        if self.store.get_parameter(action.target_parameter) is None:
            raise RuleEvaluationError(
                spec_slug, f"unknown parameter '{action.target_parameter}'", index
            )

        with self.locks.hold(caller_id, action.target_parameter):
            existing = self.store.get_target(caller_id, action.target_parameter)
            current = existing.target_value if existing is not None else None
            value = self.guardrails.clamp(compute_target(action, current))
            confidence = self.guardrails.clamp_confidence(self.config.adapt_confidence)
            self.store.upsert_target(
                caller_id,
                action.target_parameter,
                value,
                confidence,
                spec_slug,
                action.rationale or rule.rationale,
            )

        logger.info(
            "Target %s for %s: %s -> %.3f (%s)",
            action.target_parameter,
            caller_id,
            "new" if current is None else f"{current:.3f}",
            value,
            action.adjustment,
        )
        return existing is None
