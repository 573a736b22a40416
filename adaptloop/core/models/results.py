"""Structured result models returned by the pipeline.

Rule failures never raise out of a run; they are collected into ``errors``
so batch callers can report partial success.
"""

from pydantic import BaseModel, Field


class AggregateRunResult(BaseModel):
    specs_run: int = 0
    profile_updates: int = 0
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: "AggregateRunResult") -> None:
        self.specs_run += other.specs_run
        self.profile_updates += other.profile_updates
        self.errors.extend(other.errors)


class AdaptRunResult(BaseModel):
    specs_run: int = 0
    targets_created: int = 0
    targets_updated: int = 0
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: "AdaptRunResult") -> None:
        self.specs_run += other.specs_run
        self.targets_created += other.targets_created
        self.targets_updated += other.targets_updated
        self.errors.extend(other.errors)


class SkippedSpec(BaseModel):
    """A spec whose declared dependencies are not all active."""

    spec_slug: str
    missing_deps: list[str] = Field(default_factory=list)


class DependencyValidationResult(BaseModel):
    valid: bool = True
    warnings: list[str] = Field(default_factory=list)
    skipped: list[SkippedSpec] = Field(default_factory=list)

    @property
    def skipped_slugs(self) -> set[str]:
        return {s.spec_slug for s in self.skipped}


class PipelineRunSummary(BaseModel):
    """Accumulated outcome of one caller's pipeline run."""

    caller_id: str
    mode: str | None = None
    stages_run: list[str] = Field(default_factory=list)
    specs_run: int = 0
    specs_skipped: list[SkippedSpec] = Field(default_factory=list)
    profile_updates: int = 0
    targets_created: int = 0
    targets_updated: int = 0
    targets_adjusted: int = 0
    guardrail_source: str | None = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
