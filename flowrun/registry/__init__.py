"""Step registry: resolves step type tags to descriptors and typed configs."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..contracts import Step, StepType
from ..exceptions import UnknownStepTypeError
from .models import (
    AiInvokeConfig,
    AnalysisConfig,
    ApprovalConfig,
    Condition,
    ConditionConfig,
    DataFetchConfig,
    DelayConfig,
    EndConfig,
    NotifyConfig,
    StepConfig,
    StepTypeDescriptor,
    WebhookConfig,
)

BUILTIN_STEP_TYPES: List[StepTypeDescriptor] = [
    StepTypeDescriptor(
        type=StepType.AI_INVOKE.value,
        name="AI invoke",
        icon="🤖",
        description="Call an AI model to handle the task",
        config_model=AiInvokeConfig,
    ),
    StepTypeDescriptor(
        type=StepType.ANALYSIS.value,
        name="Analysis",
        icon="📈",
        description="AI data analysis and insights",
        config_model=AnalysisConfig,
    ),
    StepTypeDescriptor(
        type=StepType.APPROVAL.value,
        name="Approval",
        icon="✅",
        description="Step requiring human confirmation",
        config_model=ApprovalConfig,
    ),
    StepTypeDescriptor(
        type=StepType.CONDITION.value,
        name="Condition",
        icon="🔀",
        description="Jump to a different step depending on run data",
        config_model=ConditionConfig,
    ),
    StepTypeDescriptor(
        type=StepType.NOTIFY.value,
        name="Notify",
        icon="📱",
        description="Send a notification",
        config_model=NotifyConfig,
    ),
    StepTypeDescriptor(
        type=StepType.WEBHOOK.value,
        name="Webhook",
        icon="🔗",
        description="Call an external API",
        config_model=WebhookConfig,
    ),
    StepTypeDescriptor(
        type=StepType.DATA_FETCH.value,
        name="Data fetch",
        icon="📥",
        description="Fetch data from a source",
        config_model=DataFetchConfig,
    ),
    StepTypeDescriptor(
        type=StepType.DELAY.value,
        name="Delay",
        icon="⏰",
        description="Wait for a while before continuing",
        config_model=DelayConfig,
    ),
    StepTypeDescriptor(
        type=StepType.END.value,
        name="End",
        icon="🏁",
        description="End of the workflow",
        config_model=EndConfig,
    ),
]


class StepRegistry:
    """Lookup table from step type tag to :class:`StepTypeDescriptor`."""

    def __init__(self, descriptors: Optional[List[StepTypeDescriptor]] = None) -> None:
        self._types: Dict[str, StepTypeDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: StepTypeDescriptor) -> None:
        """Add or replace the descriptor for ``descriptor.type``."""
        self._types[descriptor.type] = descriptor

    def get(self, step_type: str) -> Optional[StepTypeDescriptor]:
        return self._types.get(step_type)

    def __contains__(self, step_type: object) -> bool:
        return step_type in self._types

    def parse_config(self, step: Step) -> StepConfig:
        """Return the typed config for ``step``.

        Raises:
            UnknownStepTypeError: the step's tag is not registered.
            pydantic.ValidationError: the config bag does not fit the type.
        """
        descriptor = self.get(step.type)
        if descriptor is None:
            raise UnknownStepTypeError(step.id, step.type)
        return descriptor.config_model.model_validate(step.config)

    def catalog(self) -> List[StepTypeDescriptor]:
        return list(self._types.values())


def default_registry() -> StepRegistry:
    """Registry holding the built-in step types."""
    return StepRegistry(BUILTIN_STEP_TYPES)


__all__ = [
    "AiInvokeConfig",
    "AnalysisConfig",
    "ApprovalConfig",
    "BUILTIN_STEP_TYPES",
    "Condition",
    "ConditionConfig",
    "DataFetchConfig",
    "DelayConfig",
    "EndConfig",
    "NotifyConfig",
    "StepConfig",
    "StepRegistry",
    "StepTypeDescriptor",
    "WebhookConfig",
    "default_registry",
]
