"""Built-in definition templates."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import Definition, Step


class DefinitionTemplate(BaseModel):
    """Starting point for a new definition."""

    id: str
    name: str
    description: str = ""
    icon: str = ""
    category: str = "custom"
    steps: List[Step] = Field(default_factory=list)
    triggers: List[str] = Field(default_factory=list)

    def instantiate(self, overrides: Optional[Dict[str, Any]] = None) -> Definition:
        """Build a fresh definition; steps are copied, descriptive fields overridable."""
        overrides = overrides or {}
        return Definition(
            name=overrides.get("name") or self.name,
            description=overrides.get("description") or self.description,
            icon=overrides.get("icon") or self.icon,
            category=overrides.get("category") or self.category,
            steps=[step.model_copy(deep=True) for step in self.steps],
            triggers=list(self.triggers),
            created_by=overrides.get("created_by"),
        )


BUILTIN_TEMPLATES: List[DefinitionTemplate] = [
    DefinitionTemplate(
        id="content-publishing",
        name="Content publishing",
        description="Automated flow from drafting to publishing",
        icon="📝",
        category="productivity",
        steps=[
            Step(
                id="step-1",
                name="Draft with AI",
                type="ai-invoke",
                config={"prompt": "Write a quality article on the topic"},
            ),
            Step(
                id="step-2",
                name="Human review",
                type="approval",
                config={"approvers": ["user"], "timeout": 86400},
            ),
            Step(
                id="step-3",
                name="Polish formatting",
                type="ai-invoke",
                config={"prompt": "Improve formatting, add a title and tags"},
            ),
            Step(
                id="step-4",
                name="Publish",
                type="webhook",
                config={"url": "/api/publish", "method": "POST"},
            ),
        ],
        triggers=["manual", "schedule"],
    ),
    DefinitionTemplate(
        id="lead-followup",
        name="Lead follow-up",
        description="Score incoming leads and schedule follow-up reminders",
        icon="🎯",
        category="sales",
        steps=[
            Step(
                id="step-1",
                name="Score lead",
                type="analysis",
                config={"criteria": ["source", "behaviour", "engagement"]},
            ),
            Step(
                id="step-2",
                name="Route by score",
                type="condition",
                config={
                    "conditions": [
                        {"field": "step-1.score", "operator": ">=", "value": 80, "next_step": "step-3"},
                        {"field": "step-1.score", "operator": ">=", "value": 50, "next_step": "step-4"},
                        {"field": "step-1.score", "operator": "<", "value": 50, "next_step": "end"},
                    ]
                },
            ),
            Step(
                id="step-3",
                name="High priority follow-up",
                type="notify",
                config={"channel": "immediate", "template": "high-priority"},
            ),
            Step(
                id="step-4",
                name="Regular follow-up",
                type="notify",
                config={"channel": "daily", "template": "standard"},
            ),
        ],
        triggers=["new-lead"],
    ),
    DefinitionTemplate(
        id="daily-report",
        name="Daily report",
        description="Collect the day's data and send a summary report",
        icon="📊",
        category="productivity",
        steps=[
            Step(
                id="step-1",
                name="Collect data",
                type="data-fetch",
                config={"sources": ["chat", "tokens", "users"]},
            ),
            Step(
                id="step-2",
                name="Write report",
                type="ai-invoke",
                config={"prompt": "Summarise key metrics and trends for today"},
            ),
            Step(
                id="step-3",
                name="Send report",
                type="notify",
                config={"channels": ["chat", "email"]},
            ),
        ],
        triggers=["schedule"],
    ),
]


def get_template(template_id: str) -> Optional[DefinitionTemplate]:
    return next((t for t in BUILTIN_TEMPLATES if t.id == template_id), None)
