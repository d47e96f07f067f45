from __future__ import annotations

from typing import Any, Dict, List

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)


def _block(block: Any) -> Dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "is_error": bool(block.is_error),
            "content": block.content,
        }
    # thinking and future block kinds are not logged
    return {"type": type(block).__name__}


def _content(content: Any) -> Any:
    if isinstance(content, str):
        return content
    blocks: List[Dict[str, Any]] = [_block(b) for b in content or []]
    return blocks


def to_record(message: Any) -> Dict[str, Any]:
    """Render an SDK message object as the wire record the session logger consumes."""
    if isinstance(message, SystemMessage):
        record = dict(message.data or {})
        record.update({"type": "system", "subtype": message.subtype})
        return record

    if isinstance(message, AssistantMessage):
        return {
            "type": "assistant",
            "message": {"model": message.model, "content": _content(message.content)},
        }

    if isinstance(message, UserMessage):
        return {"type": "user", "message": {"content": _content(message.content)}}

    if isinstance(message, ResultMessage):
        return {
            "type": "result",
            "subtype": message.subtype,
            "session_id": message.session_id,
            "is_error": message.is_error,
            "num_turns": message.num_turns,
            "duration_ms": message.duration_ms,
            "duration_api_ms": message.duration_api_ms,
            "total_cost_usd": message.total_cost_usd,
            "usage": message.usage,
            "result": message.result,
        }

    return {"type": "other", "kind": type(message).__name__}
