"""Pydantic models describing step types and their configuration."""

from __future__ import annotations

from typing import Any, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import END_STEP


class StepConfig(BaseModel):
    """Base for typed step configuration. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class AiInvokeConfig(StepConfig):
    prompt: str = ""
    model: Optional[str] = None


class AnalysisConfig(StepConfig):
    model: Optional[str] = None
    criteria: List[str] = Field(default_factory=list)


class ApprovalConfig(StepConfig):
    approvers: List[str] = Field(default_factory=list)
    timeout: Optional[int] = None


class Condition(BaseModel):
    """One branching rule: ``field operator value`` jumps to ``next_step``."""

    model_config = ConfigDict(populate_by_name=True)

    field: str
    operator: str
    value: Any = None
    next_step: str = Field(alias="nextStep")

    @property
    def ends_run(self) -> bool:
        return self.next_step == END_STEP


class ConditionConfig(StepConfig):
    conditions: List[Condition] = Field(default_factory=list)


class NotifyConfig(StepConfig):
    channel: Optional[str] = None
    channels: List[str] = Field(default_factory=list)
    template: Optional[str] = None


class WebhookConfig(StepConfig):
    url: str = ""
    method: str = "POST"

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()


class DataFetchConfig(StepConfig):
    sources: List[str] = Field(default_factory=list)


class DelayConfig(StepConfig):
    seconds: float = Field(default=0, ge=0)


class EndConfig(StepConfig):
    pass


class StepTypeDescriptor(BaseModel):
    """Display metadata and config shape of a step type."""

    type: str
    name: str
    icon: str = ""
    description: str = ""
    config_model: Type[StepConfig] = Field(default=StepConfig, exclude=True)

    @field_validator("type")
    @classmethod
    def _ensure_type(cls, v: str) -> str:
        if not v:
            raise ValueError("type must be a non-empty string")
        return v
