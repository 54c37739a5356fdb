"""Shared constants for flowrun."""

END_STEP = "end"

DEFAULT_MAX_STEPS = 100
DEFAULT_LIST_LIMIT = 20

DEFAULT_CATEGORY = "custom"
DEFAULT_ICON = "📋"
DEFAULT_TRIGGERS = ("manual",)

USER_DECISION_REQUIRED = "required"
