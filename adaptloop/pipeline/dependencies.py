"""Soft pre-flight check of spec prerequisites.

A spec declares prerequisites in ``config.dependsOn``, falling back to the
record's ``depends_on`` and then to ``raw_spec.context.dependsOn``. Each
prerequisite is matched case-insensitively against both the raw slugs and the
normalized feature ids of the active spec set. The validator never raises;
the orchestrator decides what to do with ``skipped``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ..core.models import DependencyValidationResult, SkippedSpec, SpecificationRecord
from .registry import SpecRegistry

logger = logging.getLogger(__name__)


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def declared_dependencies(spec: SpecificationRecord) -> list[str]:
    """Return the spec's declared dependencies, preferring structured config."""
    from_config = _as_str_list((spec.config or {}).get("dependsOn"))
    if from_config:
        return from_config
    if spec.depends_on:
        return _as_str_list(spec.depends_on)
    context = (spec.raw_spec or {}).get("context")
    if isinstance(context, dict):
        return _as_str_list(context.get("dependsOn"))
    return []


class DependencyValidator:
    """Checks declared dependencies against the active spec set."""

    def __init__(self, registry: SpecRegistry):
        self.registry = registry

    def active_identifiers(self) -> set[str]:
        ids: set[str] = set()
        for spec in self.registry.all_active_specs():
            ids.add(spec.slug.upper())
            ids.add(self.registry.feature_id(spec.slug))
        return ids

    def _resolve(self, slugs: list[str]) -> dict[str, SpecificationRecord]:
        found = {s.slug: s for s in self.registry.get_specs(slugs)}
        missing = [s for s in slugs if s not in found]
        if missing:
            # Candidates may be referenced by feature id rather than raw slug.
            for slug in missing:
                spec = self.registry.find_active_spec(slug)
                if spec is not None:
                    found[slug] = spec
        return found

    def validate(self, spec_slugs: Iterable[str]) -> DependencyValidationResult:
        slugs = list(dict.fromkeys(spec_slugs))
        result = DependencyValidationResult()
        if not slugs:
            return result

        active = self.active_identifiers()
        specs = self._resolve(slugs)

        for slug in slugs:
            spec = specs.get(slug)
            if spec is None:
                result.warnings.append(f"Spec '{slug}' not found; dependencies not checked")
                continue

            missing = [dep for dep in declared_dependencies(spec) if dep.upper() not in active]
            if not missing:
                continue

            result.valid = False
            result.skipped.append(SkippedSpec(spec_slug=slug, missing_deps=missing))
            for dep in missing:
                result.warnings.append(
                    f"Spec '{slug}' depends on '{dep}' which is not active"
                )

        if not result.valid:
            logger.warning(
                "[dependency] %d spec(s) have unsatisfied dependencies", len(result.skipped)
            )
        return result
