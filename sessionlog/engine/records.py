from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


# --- sub-events -------------------------------------------------------------

@dataclass(frozen=True)
class TextMessage:
    text: str
    ts: str
    source: str = field(default="assistant", init=False)
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseMessage:
    tool_use_id: str
    name: str
    input: Any
    ts: str
    source: str = field(default="assistant", init=False)
    type: str = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultMessage:
    tool_use_id: str
    is_error: bool
    output: str
    ts: str
    source: str = field(default="tool", init=False)
    type: str = field(default="result", init=False)


SubEvent = Union[TextMessage, ToolUseMessage, ToolResultMessage]


# --- statistics -------------------------------------------------------------

@dataclass(frozen=True)
class TokenSnapshot:
    """Token usage of the most recently completed exchange (never summed)."""
    input: int = 0
    output: int = 0
    cache_creation: int = 0
    cache_read: int = 0

    @classmethod
    def from_mapping(cls, data: Any) -> "TokenSnapshot":
        if not isinstance(data, Mapping):
            return cls()
        return cls(
            input=_int(data.get("input")),
            output=_int(data.get("output")),
            cache_creation=_int(data.get("cache_creation")),
            cache_read=_int(data.get("cache_read")),
        )


@dataclass(frozen=True)
class ExchangeStats:
    num_turns: int = 0
    duration_ms: int = 0
    duration_api_ms: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    cache_creation: int = 0
    cache_read: int = 0
    cost_usd: float = 0.0

    @classmethod
    def from_mapping(cls, data: Any) -> "ExchangeStats":
        if not isinstance(data, Mapping):
            return cls()
        return cls(
            num_turns=_int(data.get("num_turns")),
            duration_ms=_int(data.get("duration_ms")),
            duration_api_ms=_int(data.get("duration_api_ms")),
            tokens_in=_int(data.get("tokens_in")),
            tokens_out=_int(data.get("tokens_out")),
            cache_creation=_int(data.get("cache_creation")),
            cache_read=_int(data.get("cache_read")),
            cost_usd=_float(data.get("cost_usd")),
        )

    def tokens(self) -> TokenSnapshot:
        return TokenSnapshot(
            input=self.tokens_in,
            output=self.tokens_out,
            cache_creation=self.cache_creation,
            cache_read=self.cache_read,
        )


@dataclass(frozen=True)
class SessionTotals:
    exchanges: int = 0
    duration_ms: int = 0
    duration_api_ms: int = 0
    cost_usd: float = 0.0
    tokens: TokenSnapshot = field(default_factory=TokenSnapshot)
    tools_used: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_session_end(cls, record: Mapping[str, Any]) -> "SessionTotals":
        tools = record.get("tools_used")
        return cls(
            exchanges=_int(record.get("total_exchanges")),
            duration_ms=_int(record.get("total_duration_ms")),
            duration_api_ms=_int(record.get("total_duration_api_ms")),
            cost_usd=_float(record.get("total_cost_usd")),
            tokens=TokenSnapshot.from_mapping(record.get("total_tokens")),
            tools_used={str(k): _int(v) for k, v in tools.items()} if isinstance(tools, Mapping) else {},
        )


# --- persisted records ------------------------------------------------------

SESSION_START = "session_start"
EXCHANGE = "exchange"
SESSION_END = "session_end"


@dataclass(frozen=True)
class SessionStart:
    session_id: str
    ts: str
    model: str
    cwd: str
    tools_available: List[str]
    permission_mode: str
    type: str = field(default=SESSION_START, init=False)


@dataclass(frozen=True)
class ExchangeRecord:
    session_id: str
    exchange: int
    ts_start: str
    ts_end: str
    user_input: str
    messages: List[SubEvent]
    stats: ExchangeStats
    type: str = field(default=EXCHANGE, init=False)


@dataclass(frozen=True)
class SessionEnd:
    session_id: str
    ts: str
    total_exchanges: int
    total_duration_ms: int
    total_duration_api_ms: int
    total_cost_usd: float
    total_tokens: TokenSnapshot
    tools_used: Dict[str, int]
    type: str = field(default=SESSION_END, init=False)
