"""Guardrail policy: clamp bounds and safe defaults for computed targets.

Guardrails come from the active SUPERVISE spec's parameters (``target_clamp``,
``confidence_bounds``, ``mock_behavior``, ``ai_settings``, ``aggregation``).
Each sub-config is merged field by field over the compiled-in defaults, so a
partial override never resets its siblings.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.models import GuardrailConfig, OutputType, TargetRecord
from ..storage import KeyedLocks, store_locks
from .registry import SpecRegistry, get_parameter_config

logger = logging.getLogger(__name__)

DEFAULT_GUARDRAILS = GuardrailConfig()

_SECTIONS = (
    "target_clamp",
    "confidence_bounds",
    "mock_behavior",
    "ai_settings",
    "aggregation",
)

M = TypeVar("M", bound=BaseModel)


def merge_section(defaults: M, overrides: dict[str, Any] | None) -> M:
    """Overlay authored values onto ``defaults`` one field at a time.

    Accepts camelCase or snake_case keys. Null values keep the default.
    """
    if not overrides:
        return defaults
    data = defaults.model_dump()
    for name, field in type(defaults).model_fields.items():
        for key in (field.alias, name):
            if key and key in overrides and overrides[key] is not None:
                data[name] = overrides[key]
                break
    return type(defaults).model_validate(data)


class TargetStore(Protocol):
    def get_target(self, caller_id: str, parameter_id: str) -> TargetRecord | None: ...

    def list_targets(self, caller_id: str) -> list[TargetRecord]: ...

    def upsert_target(
        self,
        caller_id: str,
        parameter_id: str,
        value: float,
        confidence: float,
        source_spec: str | None,
        rationale: str | None,
    ) -> None: ...


class GuardrailPolicy:
    """Loads guardrails once per run and clamps values against them."""

    def __init__(self, registry: SpecRegistry):
        self.registry = registry
        self._config: GuardrailConfig | None = None

    @property
    def config(self) -> GuardrailConfig:
        if self._config is None:
            return self.load()
        return self._config

    def load(self) -> GuardrailConfig:
        supervisors = self.registry.find_active_specs_by_output_type(OutputType.SUPERVISE)
        if not supervisors:
            logger.info("No SUPERVISE spec found - using default guardrails")
            self._config = DEFAULT_GUARDRAILS.model_copy(deep=True)
            return self._config

        spec = supervisors[0]
        if len(supervisors) > 1:
            logger.warning(
                "%d active SUPERVISE specs; using guardrails from %s",
                len(supervisors),
                spec.slug,
            )

        merged: dict[str, Any] = {"source_spec": spec.slug}
        for param_id in _SECTIONS:
            default_section = getattr(DEFAULT_GUARDRAILS, param_id)
            try:
                merged[param_id] = merge_section(
                    default_section, get_parameter_config(spec.config, param_id)
                )
            except ValidationError as exc:
                logger.warning(
                    "Invalid %s in %s, keeping defaults: %s", param_id, spec.slug, exc
                )
                merged[param_id] = default_section
        self._config = GuardrailConfig(**merged)
        logger.info(
            "Guardrails loaded from %s (target clamp %.2f-%.2f)",
            spec.slug,
            self._config.target_clamp.min_value,
            self._config.target_clamp.max_value,
        )
        return self._config

    def clamp(self, value: float) -> float:
        bounds = self.config.target_clamp
        return max(bounds.min_value, min(bounds.max_value, value))

    def clamp_confidence(self, value: float) -> float:
        bounds = self.config.confidence_bounds
        return max(bounds.min_confidence, min(bounds.max_confidence, value))

    def enforce(
        self, store: TargetStore, caller_id: str, locks: KeyedLocks | None = None
    ) -> int:
        """Re-clamp every persisted target of a caller. Returns how many changed.

        Each target is re-read under its (caller, parameter) lock, so a write
        that landed after ``list_targets`` is clamped rather than overwritten.
        """
        locks = locks if locks is not None else store_locks(store)
        bounds = self.config.target_clamp
        adjusted = 0
        for listed in store.list_targets(caller_id):
            with locks.hold(caller_id, listed.parameter_id):
                target = store.get_target(caller_id, listed.parameter_id)
                if target is None:
                    continue
                value = self.clamp(target.target_value)
                confidence = self.clamp_confidence(target.confidence)
                if value == target.target_value and confidence == target.confidence:
                    continue
                rationale = target.rationale
                if value != target.target_value:
                    note = f"[clamped to {bounds.min_value:g}-{bounds.max_value:g}]"
                    rationale = f"{rationale or ''} {note}".strip()
                store.upsert_target(
                    caller_id,
                    target.parameter_id,
                    value,
                    confidence,
                    target.source_spec,
                    rationale,
                )
            logger.info(
                "Clamped %s for %s: %.3f -> %.3f",
                target.parameter_id,
                caller_id,
                target.target_value,
                value,
            )
            adjusted += 1
        return adjusted
