"""Persisted record models: score events, profile attributes, targets."""

from datetime import datetime

from pydantic import BaseModel, Field

from .spec import AUTHORED


LEARNER_PROFILE_SCOPE = "LEARNER_PROFILE"


class ScoreEvent(BaseModel):
    """A single measurement written by the upstream scoring stage."""

    model_config = AUTHORED

    caller_id: str
    parameter_id: str
    score: float = Field(ge=0, le=1)
    confidence: float = Field(ge=0, le=1)
    scored_at: datetime


class AttributeRecord(BaseModel):
    """A derived learner characteristic, keyed by (caller_id, key, scope)."""

    model_config = AUTHORED

    caller_id: str
    key: str
    value: str
    confidence: float = Field(ge=0, le=1)
    scope: str = LEARNER_PROFILE_SCOPE
    updated_at: datetime | None = None


class TargetRecord(BaseModel):
    """Desired behavior value for a caller, keyed by (caller_id, parameter_id)."""

    model_config = AUTHORED

    caller_id: str
    parameter_id: str
    target_value: float = Field(ge=0, le=1)
    confidence: float = Field(ge=0, le=1)
    source_spec: str | None = None
    rationale: str | None = None
    updated_at: datetime | None = None
