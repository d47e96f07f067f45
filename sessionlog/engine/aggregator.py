from __future__ import annotations

from typing import Dict, List

from sessionlog.engine.records import ExchangeStats, SessionTotals, SubEvent, TokenSnapshot


class ExchangeAccumulator:
    """
    Buffer for the one exchange currently in flight.
    Sub-events are kept in arrival order.
    """

    def __init__(self):
        self.number = 0
        self.user_input = ""
        self.ts_start = ""
        self._events: List[SubEvent] = []
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def events(self) -> List[SubEvent]:
        return list(self._events)

    def open(self, number: int, user_input: str, ts_start: str) -> None:
        self.number = number
        self.user_input = user_input
        self.ts_start = ts_start
        self._events = []
        self._open = True

    def add(self, event: SubEvent) -> None:
        self._events.append(event)

    def reset(self) -> None:
        self.user_input = ""
        self.ts_start = ""
        self._events = []
        self._open = False


class SessionAggregator:
    """
    Running totals across all exchanges of a session. No I/O.

    Durations and cost are summed. Token counts are replaced on every fold:
    the runtime is stateful, so the last exchange's cache-read count already
    covers the prior context.
    """

    def __init__(self):
        self._exchanges = 0
        self._duration_ms = 0
        self._duration_api_ms = 0
        self._cost_usd = 0.0
        self._tokens = TokenSnapshot()
        self._tools_used: Dict[str, int] = {}

    def fold_exchange_stats(self, stats: ExchangeStats) -> None:
        self._exchanges += 1
        self._duration_ms += stats.duration_ms
        self._duration_api_ms += stats.duration_api_ms
        self._cost_usd += stats.cost_usd
        self._tokens = stats.tokens()

    def record_tool_use(self, name: str) -> None:
        self._tools_used[name] = self._tools_used.get(name, 0) + 1

    def load_prior_totals(self, totals: SessionTotals) -> None:
        self._exchanges = totals.exchanges
        self._duration_ms = totals.duration_ms
        self._duration_api_ms = totals.duration_api_ms
        self._cost_usd = totals.cost_usd
        self._tokens = totals.tokens
        self._tools_used = dict(totals.tools_used)

    def snapshot(self) -> SessionTotals:
        return SessionTotals(
            exchanges=self._exchanges,
            duration_ms=self._duration_ms,
            duration_api_ms=self._duration_api_ms,
            cost_usd=self._cost_usd,
            tokens=self._tokens,
            tools_used=dict(self._tools_used),
        )
