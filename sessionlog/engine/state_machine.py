from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from sessionlog.engine.aggregator import ExchangeAccumulator, SessionAggregator
from sessionlog.engine.records import (
    EXCHANGE,
    SESSION_END,
    ExchangeRecord,
    ExchangeStats,
    SessionEnd,
    SessionStart,
    SessionTotals,
    TextMessage,
    ToolResultMessage,
    ToolUseMessage,
)
from sessionlog.engine.store import LogStore
from sessionlog.models import AssistantEvent, CompletionEvent, InitEvent, ToolResultEvent
from sessionlog.runtime.events import classify
from sessionlog.runtime.naming import log_filename, now_iso

UNINITIALIZED = "uninitialized"
IDLE = "idle"
ACCUMULATING = "accumulating"
CLOSED = "closed"


def _ordinal(record: Dict[str, Any]) -> int:
    value = record.get("exchange")
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _tool_output(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False)


class SessionLogger:
    """
    Turns the runtime's event stream into a JSONL audit trail of exchanges.

    Lifecycle: uninitialized -> idle <-> accumulating -> closed.
    The init event resolves the log file (new, or resumed from an earlier run
    of the same session). Every completion event appends one exchange record.
    close() appends the session_end summary.

    Use as a context manager so close() runs on error paths too.
    Single writer: do not point two loggers at the same session concurrently.
    """

    def __init__(self, sessions_dir: Path, *, store: Optional[LogStore] = None):
        self._store = store or LogStore(Path(sessions_dir))
        self._session: Optional[InitEvent] = None
        self._exchange_count = 0
        self._accumulator = ExchangeAccumulator()
        self._aggregator = SessionAggregator()
        self._closed = False

    def __enter__(self) -> "SessionLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- introspection -------------------------------------------------------

    @property
    def state(self) -> str:
        if self._closed:
            return CLOSED
        if self._session is None:
            return UNINITIALIZED
        return ACCUMULATING if self._accumulator.is_open else IDLE

    @property
    def session_id(self) -> str:
        return self._session.session_id if self._session else ""

    @property
    def log_path(self) -> Optional[Path]:
        return self._store.active_path

    @property
    def exchange_count(self) -> int:
        return self._exchange_count

    def totals(self) -> SessionTotals:
        return self._aggregator.snapshot()

    # -- caller API ----------------------------------------------------------

    def begin_exchange(self, user_input: str) -> None:
        if self._closed:
            logger.warning("begin_exchange after close(); ignored")
            return
        if self._accumulator.is_open:
            logger.warning(
                f"Exchange {self._accumulator.number} never completed; "
                f"dropping {len(self._accumulator.events)} buffered event(s)"
            )
        self._exchange_count += 1
        self._accumulator.open(self._exchange_count, user_input, now_iso())

    def observe(self, raw: Any) -> None:
        if self._closed:
            logger.warning("Event observed after close(); ignored")
            return

        event = classify(raw)
        if self._session is None and isinstance(event, (AssistantEvent, ToolResultEvent, CompletionEvent)):
            # no file to write to yet: only buffer into an exchange the caller already opened
            if isinstance(event, CompletionEvent) or not self._accumulator.is_open:
                logger.warning(f"{event.type!r} event before init; ignored")
                return

        if isinstance(event, InitEvent):
            self._on_init(event)
        elif isinstance(event, AssistantEvent):
            self._on_assistant(event)
        elif isinstance(event, ToolResultEvent):
            self._on_tool_result(event)
        elif isinstance(event, CompletionEvent):
            self._on_completion(event)
        else:
            logger.debug(f"Ignored event {event.type!r}: {event.reason}")

    def close(self) -> None:
        if self._session is None:
            return

        path = self._store.active_path
        if self._closed and path is not None:
            # repeated close: keep a single trailing summary
            self._store.rewrite_without_trailing_summary(path)

        if self._accumulator.is_open:
            logger.warning(f"Closing with exchange {self._accumulator.number} still open; it is not recorded")
            self._accumulator.reset()

        totals = self._aggregator.snapshot()
        self._store.append(
            SessionEnd(
                session_id=self.session_id,
                ts=now_iso(),
                total_exchanges=totals.exchanges,
                total_duration_ms=totals.duration_ms,
                total_duration_api_ms=totals.duration_api_ms,
                total_cost_usd=totals.cost_usd,
                total_tokens=totals.tokens,
                tools_used=totals.tools_used,
            )
        )
        self._closed = True

    # -- handlers ------------------------------------------------------------

    def _on_init(self, event: InitEvent) -> None:
        if self._session is not None:
            if event.session_id != self._session.session_id:
                logger.warning(
                    f"Init for session {event.session_id!r} while logging {self._session.session_id!r}; ignored"
                )
            return

        self._session = event
        self._store.ensure_dir()

        existing = self._store.find_by_session_suffix(event.session_id)
        if existing is not None:
            last_number = self._resume(existing)
            logger.info(f"Resuming session {event.session_id} in {existing.name} after exchange {last_number}")
        else:
            last_number = 0
            path = self._store.create(log_filename(event.session_id))
            self._store.append(
                SessionStart(
                    session_id=event.session_id,
                    ts=now_iso(),
                    model=event.model,
                    cwd=event.cwd,
                    tools_available=list(event.tools),
                    permission_mode=event.permission_mode,
                )
            )
            logger.info(f"Logging session {event.session_id} to {path.name}")

        # user input may have been recorded before the runtime announced the session
        if self._accumulator.is_open:
            self._exchange_count = last_number + 1
            self._accumulator.number = self._exchange_count
        else:
            self._exchange_count = last_number

    def _resume(self, path: Path) -> int:
        """Adopt an existing log: recover counter and totals, then trim its trailing summary."""
        records = LogStore.read_records(path)

        summary_at: Optional[int] = None
        for i, record in enumerate(records):
            if record.get("type") == SESSION_END:
                summary_at = i

        exchanges: List[Dict[str, Any]] = [r for r in records if r.get("type") == EXCHANGE]
        last_number = max((_ordinal(r) for r in exchanges), default=0)

        if summary_at is None:
            prior = SessionTotals()
            tail = records
        else:
            prior = SessionTotals.from_session_end(records[summary_at])
            tail = records[summary_at + 1:]
        before = sum(1 for r in records[: summary_at or 0] if r.get("type") == EXCHANGE)
        self._aggregator.load_prior_totals(replace(prior, exchanges=before))

        # exchanges written after the last summary (e.g. a run that crashed before close)
        for record in tail:
            if record.get("type") != EXCHANGE:
                continue
            self._aggregator.fold_exchange_stats(ExchangeStats.from_mapping(record.get("stats")))
            for message in record.get("messages") or []:
                if isinstance(message, dict) and message.get("type") == "tool_use" and message.get("name"):
                    self._aggregator.record_tool_use(str(message["name"]))

        self._store.adopt(path)
        self._store.rewrite_without_trailing_summary(path)
        return last_number

    def _ensure_open(self) -> None:
        if not self._accumulator.is_open:
            logger.debug("Runtime output without begin_exchange(); opening an implicit exchange")
            self.begin_exchange("")

    def _on_assistant(self, event: AssistantEvent) -> None:
        self._ensure_open()
        ts = now_iso()
        for block in event.message.blocks():
            if block.type == "text" and block.text:
                self._accumulator.add(TextMessage(text=block.text, ts=ts))
            elif block.type == "tool_use" and block.id and block.name:
                self._accumulator.add(
                    ToolUseMessage(tool_use_id=block.id, name=block.name, input=block.input, ts=ts)
                )
                self._aggregator.record_tool_use(block.name)

    def _on_tool_result(self, event: ToolResultEvent) -> None:
        blocks = [b for b in event.message.blocks() if b.type == "tool_result" and b.tool_use_id]
        if not blocks:
            return
        self._ensure_open()
        ts = now_iso()
        for block in blocks:
            self._accumulator.add(
                ToolResultMessage(
                    tool_use_id=block.tool_use_id,
                    is_error=block.is_error,
                    output=_tool_output(block.content),
                    ts=ts,
                )
            )

    def _on_completion(self, event: CompletionEvent) -> None:
        self._ensure_open()
        usage = event.usage
        stats = ExchangeStats(
            num_turns=event.num_turns,
            duration_ms=event.duration_ms,
            duration_api_ms=event.duration_api_ms,
            tokens_in=usage.input_tokens,
            tokens_out=usage.output_tokens,
            cache_creation=usage.cache_creation_input_tokens,
            cache_read=usage.cache_read_input_tokens,
            cost_usd=event.total_cost_usd,
        )
        acc = self._accumulator
        record = ExchangeRecord(
            session_id=self.session_id,
            exchange=acc.number,
            ts_start=acc.ts_start,
            ts_end=now_iso(),
            user_input=acc.user_input,
            messages=acc.events,
            stats=stats,
        )
        try:
            self._store.append(record)
        finally:
            # totals stay correct even if this write failed
            self._aggregator.fold_exchange_stats(stats)
            acc.reset()
