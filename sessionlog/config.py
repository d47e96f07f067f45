from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from sessionlog.models import AgentOptionsSpec


load_dotenv()


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    sessions_dir: Path
    log_level: str
    agent_config: Path


def get_settings() -> Settings:
    return Settings(
        sessions_dir=Path(os.getenv("SESSIONLOG_DIR", "./sessions")),
        log_level=os.getenv("SESSIONLOG_LEVEL", "INFO").upper(),
        agent_config=Path(os.getenv("SESSIONLOG_AGENT_CONFIG", "agent.yaml")),
    )


def load_agent_options(config_path: str | Path) -> AgentOptionsSpec:
    """Agent options from YAML; a missing file means all defaults."""
    path = Path(config_path)
    if not path.exists():
        return AgentOptionsSpec()

    try:
        raw: Dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping of agent options.")

    try:
        return AgentOptionsSpec.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid agent options in {path}: {e}") from e
