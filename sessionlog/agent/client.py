from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Optional

from claude_agent_sdk import ClaudeAgentOptions

from sessionlog.config import ConfigError
from sessionlog.models import AgentOptionsSpec


def require_api_key() -> None:
    if not os.getenv("ANTHROPIC_API_KEY"):
        raise RuntimeError("ANTHROPIC_API_KEY is not set.  Put it in .env or export it in your shell.")


def build_options(spec: AgentOptionsSpec, resume: Optional[str] = None) -> ClaudeAgentOptions:
    cwd = spec.cwd or str(Path.cwd())
    try:
        system_prompt = spec.system_prompt.format(cwd=cwd, today=date.today().isoformat())
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigError(
            f"system_prompt: only {{cwd}} and {{today}} are substituted, double any other braces ({e!r})"
        ) from e

    return ClaudeAgentOptions(
        model=spec.model,
        max_turns=spec.max_turns,
        cwd=cwd,
        permission_mode=spec.permission_mode,
        allowed_tools=list(spec.allowed_tools),
        disallowed_tools=list(spec.disallowed_tools),
        setting_sources=list(spec.setting_sources),
        system_prompt=system_prompt,
        env=dict(os.environ),
        resume=resume,
    )
