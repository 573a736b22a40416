"""Pydantic schemas for store row payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, ConfigDict


class SpecDBRecord(BaseModel):
    """Validated representation of a spec row in the store."""

    slug: str = Field(min_length=1)
    name: str = ""
    output_type: str = Field(min_length=1)
    is_active: bool = True
    is_dirty: bool = False
    config_json: dict[str, Any] = Field(default_factory=dict)
    depends_on_json: list[str] = Field(default_factory=list)
    raw_spec_json: dict[str, Any] = Field(default_factory=dict)


class ScoreEventDBRecord(BaseModel):
    """Validated representation of a score event row."""

    caller_id: str = Field(min_length=1)
    parameter_id: str = Field(min_length=1)
    score: float = Field(ge=0, le=1)
    confidence: float = Field(ge=0, le=1)


class AttributeDBRecord(BaseModel):
    """Validated representation of a caller attribute row."""

    model_config = ConfigDict(str_strip_whitespace=True)

    caller_id: str = Field(min_length=1)
    key: str = Field(min_length=1)
    value: str
    confidence: float = Field(ge=0, le=1)
    scope: str = Field(min_length=1)


class TargetDBRecord(BaseModel):
    """Validated representation of a caller target row."""

    caller_id: str = Field(min_length=1)
    parameter_id: str = Field(min_length=1)
    target_value: float = Field(ge=0, le=1)
    confidence: float = Field(ge=0, le=1)
    source_spec: str | None = None
    rationale: str | None = None
