"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from transcript_engine.core.types import ExportFormat


class BranchConfig(BaseModel):
    # Raise on parent_group_id references to groups that never appeared.
    strict_supersession: bool = False


class StreamingConfig(BaseModel):
    refresh_fast_seconds: float = Field(default=1.0, gt=0)
    refresh_slow_seconds: float = Field(default=5.0, gt=0)
    slow_after_seconds: float = Field(default=60.0, ge=0)

    @model_validator(mode="after")
    def _slow_not_faster(self) -> StreamingConfig:
        if self.refresh_slow_seconds < self.refresh_fast_seconds:
            raise ValueError("refresh_slow_seconds must be >= refresh_fast_seconds")
        return self


class ChannelConfig(BaseModel):
    max_pending_events: int = Field(default=1024, gt=0)


class ExportConfig(BaseModel):
    default_format: ExportFormat = ExportFormat.MARKDOWN
    include_system_prompt: bool = True
    include_reasoning: bool = True
    include_tool_params: bool = True
    include_tool_results: bool = True


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    branch: BranchConfig = Field(default_factory=BranchConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        value = os.environ.get(match.group(1))
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")
    data = yaml.safe_load(_interpolate_env_vars(raw_text)) or {}

    return AppConfig(**data)
