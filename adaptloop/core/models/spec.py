"""Specification record models for adaptloop.

A SpecificationRecord is an author-edited configuration object. It carries a
role tag (its output type), lifecycle flags, and an embedded rule payload
under ``config``. The core only ever reads these records.

This module contains:
- OutputType: role/output-type tags
- SpecificationRecord: versioned spec with YAML/JSON I/O
- ParameterDefinition: read-only parameter reference data
- PipelineStage: a named step in the pipeline
"""

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# Models accept both snake_case field names and the camelCase keys written by
# the authoring tool.
AUTHORED = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OutputType(str, Enum):
    """Role of a spec inside the pipeline."""

    MEASURE = "MEASURE"
    LEARN = "LEARN"
    CLASSIFY = "CLASSIFY"
    AGGREGATE = "AGGREGATE"
    REWARD = "REWARD"
    ADAPT = "ADAPT"
    SUPERVISE = "SUPERVISE"
    COMPOSE = "COMPOSE"
    PIPELINE = "PIPELINE"


class SpecificationRecord(BaseModel):
    """A versioned spec carrying embedded rule configuration.

    Only records with ``is_active and not is_dirty`` are loaded into the
    active rule set.
    """

    model_config = AUTHORED

    slug: str = Field(min_length=1, description="Unique spec identifier")
    name: str = Field(default="", description="Human-readable title")
    output_type: OutputType = Field(description="Role tag (AGGREGATE, ADAPT, ...)")
    is_active: bool = True
    is_dirty: bool = False
    config: dict[str, Any] = Field(
        default_factory=dict, description="Structured rule payload"
    )
    depends_on: list[str] = Field(
        default_factory=list, description="Identifiers of prerequisite specs"
    )
    raw_spec: dict[str, Any] = Field(
        default_factory=dict,
        description="Authored source document (may carry context.dependsOn)",
    )
    updated_at: datetime | None = None

    @field_validator("config", "raw_spec", mode="before")
    @classmethod
    def _null_payload(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("depends_on", mode="before")
    @classmethod
    def _null_depends_on(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def is_loadable(self) -> bool:
        """True when the spec belongs in the active rule set."""
        return self.is_active and not self.is_dirty

    @classmethod
    def from_file(cls, path: Path | str) -> "SpecificationRecord":
        """Load a spec from a YAML or JSON file."""
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
        if not isinstance(data, dict):
            raise ValueError(f"Spec file {path} does not contain a mapping")
        return cls.model_validate(data)

    def to_yaml(self, path: Path | str) -> None:
        """Save spec to YAML file (authored camelCase keys)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        with open(path, "w") as f:
            yaml.dump(
                data, f, default_flow_style=False, sort_keys=False, allow_unicode=True
            )


class ParameterDefinition(BaseModel):
    """Read-only reference data for a tunable parameter."""

    model_config = AUTHORED

    parameter_id: str = Field(min_length=1)
    name: str = ""
    kind: str = "BEHAVIOR"
    is_adjustable: bool = True
    interpretation_high: str | None = None
    interpretation_low: str | None = None


class PipelineStage(BaseModel):
    """A named pipeline step and the output types it processes."""

    model_config = AUTHORED

    name: str = Field(min_length=1)
    order: int
    output_types: list[str] = Field(default_factory=list)
    description: str | None = None
    batched: bool = False
    requires_mode: Literal["prep", "prompt"] | None = None

    @field_validator("output_types", mode="before")
    @classmethod
    def _default_output_types(cls, v: Any) -> Any:
        return [] if v is None else v
