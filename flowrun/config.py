from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_LIST_LIMIT, DEFAULT_MAX_STEPS


class EngineConfig(BaseModel):
    """Run engine behaviour switches.

    ``max_steps`` caps repeat executions of already-run steps in one pass,
    which bounds loops built from backward branches. ``dangling_branch``
    decides what happens when a condition selects a ``next_step`` that is
    neither ``end`` nor a step id: ``continue`` logs a warning and moves on
    to the next step in order, ``fail`` fails the run with
    ``unknown branch target``. ``list_limit`` is the default page size for
    run listings.
    """

    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    dangling_branch: Literal["continue", "fail"] = "continue"
    list_limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1)


class FlowrunConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    # See EngineConfig for the step limit and dangling branch switches.
    engine: EngineConfig = EngineConfig()


def load_config(path: Optional[str] = None) -> FlowrunConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWRUN_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWRUN_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowrunConfig(**data)
    else:
        config = FlowrunConfig()

    env_db_url = os.getenv("FLOWRUN_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
