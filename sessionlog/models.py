from __future__ import annotations

import math
from typing import Any, List, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class _Lenient(BaseModel):
    """Runtime payloads drift between SDK versions: unknown keys are ignored,
    nulls and values of the wrong type fall back to the field default."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_bad_value(cls, value: Any, handler, info) -> Any:
        field = cls.model_fields[info.field_name]
        if field.is_required():
            return handler(value)
        if value is None:
            return field.get_default(call_default_factory=True)
        try:
            return handler(value)
        except ValidationError:
            # 12.5 for an int field keeps its whole part
            if isinstance(value, float) and math.isfinite(value):
                try:
                    return handler(int(value))
                except ValidationError:
                    pass
            logger.warning(f"{cls.__name__}.{info.field_name}: unusable value {value!r}, using default")
            return field.get_default(call_default_factory=True)


# --- inbound runtime events ---------------------------------------------------

class ContentBlock(_Lenient):
    type: str = ""
    text: Optional[str] = None
    # tool_use; input is opaque and logged as given
    id: Optional[str] = None
    name: Optional[str] = None
    input: Any = {}
    # tool_result
    tool_use_id: Optional[str] = None
    is_error: bool = False
    content: Any = None


class MessageBody(_Lenient):
    content: Union[str, List[Any]] = []

    def blocks(self) -> List[ContentBlock]:
        """Validate blocks one at a time; a block that is not an object is skipped alone."""
        if isinstance(self.content, str):
            return []
        blocks = []
        for raw in self.content:
            try:
                blocks.append(ContentBlock.model_validate(raw))
            except ValidationError:
                logger.warning(f"Skipping malformed content block: {raw!r}")
        return blocks


class InitEvent(_Lenient):
    type: Literal["system"]
    subtype: Literal["init"]
    session_id: str = ""
    model: str = ""
    cwd: str = ""
    tools: List[str] = []
    permission_mode: str = Field(default="default", alias="permissionMode")


class AssistantEvent(_Lenient):
    type: Literal["assistant"]
    message: MessageBody = MessageBody()


class ToolResultEvent(_Lenient):
    type: Literal["user"]
    message: MessageBody = MessageBody()


class Usage(_Lenient):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


class CompletionEvent(_Lenient):
    type: Literal["result"]
    subtype: str = ""
    num_turns: int = 0
    duration_ms: int = 0
    duration_api_ms: int = 0
    total_cost_usd: float = 0.0
    usage: Usage = Usage()


class IgnoredEvent(BaseModel):
    type: str = ""
    reason: str = ""


RuntimeEvent = Union[InitEvent, AssistantEvent, ToolResultEvent, CompletionEvent, IgnoredEvent]


# --- agent options --------------------------------------------------------------

DEFAULT_SYSTEM_PROMPT = """\
You are a helpful AI assistant. You can help with general questions and tasks.

Here is useful information about the environment you are running in:
<env>
Working directory: {cwd}
Today's date: {today}
</env>"""


class AgentOptionsSpec(BaseModel):
    model: str = "haiku"
    max_turns: int = 50
    cwd: Optional[str] = None
    permission_mode: str = "default"
    allowed_tools: List[str] = ["Read", "Write", "Edit", "Grep", "Glob", "Bash"]
    disallowed_tools: List[str] = ["NotebookEdit", "Skill", "SlashCommand"]
    setting_sources: List[str] = ["local"]
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    model_config = ConfigDict(extra="forbid")
