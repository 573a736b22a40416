"""Spec registry: cached access to active specs and their embedded rules.

The registry is constructed explicitly and handed to every component that
needs spec configuration. Lookups by output type are cached for a short TTL;
``invalidate()`` must be called after a spec is edited.

Spec config layout (as authored):

    config:
      parameters:
        - id: learning_style_aggregation
          config:
            aggregationRules: [...]
            windowSize: 5
            minimumObservations: 3
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Protocol

from ..core.models import (
    AdaptationBlock,
    AggregationBlock,
    OutputType,
    SpecificationRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_SLUG_PREFIX = "spec-"


class SpecSource(Protocol):
    """Storage operations the registry reads from."""

    def find_active_specs_by_output_type(
        self, output_type: OutputType | str
    ) -> list[SpecificationRecord]: ...

    def list_specs(self, *, active_only: bool = False) -> list[SpecificationRecord]: ...

    def get_specs(self, slugs: Iterable[str]) -> list[SpecificationRecord]: ...


# =============================================================================
# Config extraction helpers
# =============================================================================


def normalize_feature_id(slug: str, prefix: str = DEFAULT_SLUG_PREFIX) -> str:
    """Strip the conventional slug prefix and uppercase.

    >>> normalize_feature_id("spec-pipeline-001")
    'PIPELINE-001'
    """
    value = slug.strip()
    if prefix and value.lower().startswith(prefix.lower()):
        value = value[len(prefix) :]
    return value.upper()


def _parameters(config: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not isinstance(config, dict):
        return []
    params = config.get("parameters")
    if not isinstance(params, list):
        return []
    return [p for p in params if isinstance(p, dict)]


def get_parameter_config(
    config: dict[str, Any] | None, parameter_id: str
) -> dict[str, Any] | None:
    """Return the ``config`` mapping of the parameter with ``id == parameter_id``."""
    for param in _parameters(config):
        if param.get("id") == parameter_id:
            inner = param.get("config")
            return inner if isinstance(inner, dict) else None
    return None


def extract_aggregation_blocks(config: dict[str, Any] | None) -> list[AggregationBlock]:
    """Collect every parameter entry whose config carries ``aggregationRules``."""
    blocks = []
    for param in _parameters(config):
        inner = param.get("config")
        if not isinstance(inner, dict):
            continue
        rules = inner.get("aggregationRules")
        if not isinstance(rules, list):
            continue
        blocks.append(
            AggregationBlock(
                parameter_id=str(param.get("id", "")),
                rules=[r for r in rules if isinstance(r, dict)],
                window_size=inner.get("windowSize"),
                minimum_observations=inner.get("minimumObservations"),
            )
        )
    return blocks


def extract_adaptation_blocks(config: dict[str, Any] | None) -> list[AdaptationBlock]:
    """Collect every parameter entry whose config carries ``adaptationRules``."""
    blocks = []
    for param in _parameters(config):
        inner = param.get("config")
        if not isinstance(inner, dict):
            continue
        rules = inner.get("adaptationRules")
        if not isinstance(rules, list):
            continue
        key_map = inner.get("keyMap")
        blocks.append(
            AdaptationBlock(
                parameter_id=str(param.get("id", "")),
                rules=[r for r in rules if isinstance(r, dict)],
                key_map={
                    str(k): str(v)
                    for k, v in (key_map.items() if isinstance(key_map, dict) else [])
                },
            )
        )
    return blocks


def extract_stage_list(config: dict[str, Any] | None) -> list[dict[str, Any]] | None:
    """Return the raw ``pipeline_stages`` stage list, or None when absent/empty."""
    inner = get_parameter_config(config, "pipeline_stages")
    if inner is None:
        return None
    stages = inner.get("stages")
    if not isinstance(stages, list) or not stages:
        return None
    return stages


# =============================================================================
# Registry
# =============================================================================


class SpecRegistry:
    """TTL-cached view of the active spec set.

    Thread-safe: cache mutation happens under a lock so concurrent caller runs
    can share one registry.
    """

    def __init__(
        self,
        store: SpecSource,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        slug_prefix: str = DEFAULT_SLUG_PREFIX,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.slug_prefix = slug_prefix
        self._clock = clock
        self._cache: dict[str, tuple[float, list[SpecificationRecord]]] = {}
        self._lock = threading.Lock()

    def _cached(
        self, key: str, load: Callable[[], list[SpecificationRecord]]
    ) -> list[SpecificationRecord]:
        now = self._clock()
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None and now - hit[0] < self.ttl_seconds:
                return list(hit[1])
        specs = [s for s in load() if s.is_loadable]
        with self._lock:
            self._cache[key] = (now, specs)
        return list(specs)

    def find_active_specs_by_output_type(
        self, output_type: OutputType | str
    ) -> list[SpecificationRecord]:
        value = output_type.value if isinstance(output_type, OutputType) else output_type
        return self._cached(
            f"type:{value}",
            lambda: self.store.find_active_specs_by_output_type(value),
        )

    def all_active_specs(self) -> list[SpecificationRecord]:
        return self._cached("all", lambda: self.store.list_specs(active_only=True))

    def find_active_spec(self, identifier: str) -> SpecificationRecord | None:
        """Find an active spec by raw slug or normalized feature id."""
        wanted = identifier.strip().upper()
        for spec in self.all_active_specs():
            if spec.slug.upper() == wanted or self.feature_id(spec.slug) == wanted:
                return spec
        return None

    def get_specs(self, slugs: Iterable[str]) -> list[SpecificationRecord]:
        """Uncached lookup by slug regardless of lifecycle flags."""
        return self.store.get_specs(slugs)

    def feature_id(self, slug: str) -> str:
        return normalize_feature_id(slug, self.slug_prefix)

    def invalidate(self, slug: str | None = None) -> None:
        """Drop cached lookups. Call after any spec edit."""
        with self._lock:
            self._cache.clear()
        if slug:
            logger.debug("Spec registry invalidated after edit to %s", slug)
        else:
            logger.debug("Spec registry invalidated")
