from __future__ import annotations

from typing import Any, Dict, Mapping, Type

from loguru import logger
from pydantic import BaseModel, ValidationError

from sessionlog.models import (
    AssistantEvent,
    CompletionEvent,
    IgnoredEvent,
    InitEvent,
    RuntimeEvent,
    ToolResultEvent,
)

# wire "type" -> variant; "user" records carry tool results back to the assistant
_VARIANTS: Dict[str, Type[BaseModel]] = {
    "system": InitEvent,
    "assistant": AssistantEvent,
    "user": ToolResultEvent,
    "result": CompletionEvent,
}


def classify(raw: Any) -> RuntimeEvent:
    """
    Map one raw runtime record onto a closed set of event variants.
    Unrecognised tags become IgnoredEvent and badly typed fields take their defaults; this never raises.
    """
    if not isinstance(raw, Mapping):
        return IgnoredEvent(reason="not a mapping")

    tag = raw.get("type")
    variant = _VARIANTS.get(tag) if isinstance(tag, str) else None
    if variant is None:
        return IgnoredEvent(type=str(tag or ""), reason="unrecognised type")

    if variant is InitEvent and raw.get("subtype") != "init":
        return IgnoredEvent(type=tag, reason=f"system subtype {raw.get('subtype')!r}")

    try:
        return variant.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed {tag!r} event: {e.error_count()} validation error(s)")
        return IgnoredEvent(type=tag, reason="malformed")
