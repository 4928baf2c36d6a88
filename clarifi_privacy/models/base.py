"""
Base models for all Pydantic models in the privacy subsystem.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ..utils.formatting import utc_now


class TimestampedModel(BaseModel):
    """Base model with an automatic creation timestamp."""

    created_at: datetime = Field(default_factory=utc_now)


class FrozenModel(BaseModel):
    """Immutable value object."""

    model_config = ConfigDict(frozen=True)
