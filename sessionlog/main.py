from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from sessionlog.config import ConfigError, Settings, get_settings, load_agent_options
from sessionlog.engine.records import EXCHANGE, SESSION_END, SESSION_START
from sessionlog.engine.state_machine import SessionLogger
from sessionlog.engine.store import LogStore


def usage() -> None:
    print("Commands:")
    print("  python -m sessionlog.main chat [--resume <session_id>]")
    print("  python -m sessionlog.main replay <events.ndjson>")
    print("  python -m sessionlog.main show <session.jsonl>")
    print("  python -m sessionlog.main sessions")
    print("")
    print("Environment (.env is read):")
    print("  SESSIONLOG_DIR           session log directory (default ./sessions)")
    print("  SESSIONLOG_LEVEL         diagnostics level (default INFO)")
    print("  SESSIONLOG_AGENT_CONFIG  agent options YAML (default agent.yaml)")


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


def _user_text(record: Any) -> Optional[str]:
    """User input in a recorded stream: a "user" record whose content is plain text."""
    if not isinstance(record, dict) or record.get("type") != "user":
        return None
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def cmd_chat(settings: Settings, resume: Optional[str]) -> int:
    from sessionlog.agent.chat import run_chat
    from sessionlog.agent.client import build_options, require_api_key

    try:
        options = build_options(load_agent_options(settings.agent_config), resume=resume)
    except ConfigError as e:
        print(f"❌ {e}")
        return 2

    try:
        require_api_key()
    except RuntimeError as e:
        print(f"❌ {e}")
        return 2

    try:
        session_id = asyncio.run(run_chat(options, settings.sessions_dir))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user. Goodbye!\n")
        return 130

    if session_id:
        print(f"Resume later with: python -m sessionlog.main chat --resume {session_id}")
    return 0


def cmd_replay(settings: Settings, events_path: str) -> int:
    path = Path(events_path)
    if not path.exists():
        print(f"❌ Not found: {path}")
        return 1

    observed = 0
    with SessionLogger(settings.sessions_dir) as session_log:
        with path.open("r", encoding="utf-8") as f:
            for n, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping line {n} of {path.name}: {e}")
                    continue

                text = _user_text(record)
                if text is not None:
                    session_log.begin_exchange(text)
                else:
                    session_log.observe(record)
                observed += 1

    if session_log.log_path is None:
        print(f"⚠️ No session init found in {path.name}; nothing was logged ({observed} records read)")
        return 1

    totals = session_log.totals()
    print(f"✅ Logged {totals.exchanges} exchange(s) to {session_log.log_path}")
    return 0


def cmd_show(session_path: str) -> int:
    path = Path(session_path)
    if not path.exists():
        print(f"❌ Not found: {path}")
        return 1

    records = LogStore.read_records(path)
    for rec in records:
        kind = rec.get("type")
        if kind == SESSION_START:
            print(f"Session {rec.get('session_id')}")
            print(f"Started: {rec.get('ts')}")
            print(f"Model: {rec.get('model')}  Permission mode: {rec.get('permission_mode')}")
            print(f"Cwd: {rec.get('cwd')}")
        elif kind == EXCHANGE:
            stats = rec.get("stats") or {}
            messages = rec.get("messages") or []
            print(
                f"  #{rec.get('exchange')} {json.dumps(rec.get('user_input', ''), ensure_ascii=False)[:60]}"
                f"  messages={len(messages)} turns={stats.get('num_turns', 0)}"
                f" tokens={stats.get('tokens_in', 0)}/{stats.get('tokens_out', 0)}"
                f" cost=${stats.get('cost_usd', 0):.4f}"
            )
        elif kind == SESSION_END:
            print(f"Exchanges: {rec.get('total_exchanges')}")
            print(f"Duration: {rec.get('total_duration_ms')} ms (API {rec.get('total_duration_api_ms')} ms)")
            print(f"Cost: ${rec.get('total_cost_usd', 0):.4f}")
            print(f"Last tokens: {json.dumps(rec.get('total_tokens'), sort_keys=True)}")
            tools = rec.get("tools_used") or {}
            if tools:
                print("Tools used:")
                for name, count in sorted(tools.items()):
                    print(f"  - {name}: {count}")
    return 0


def cmd_sessions(settings: Settings) -> int:
    store = LogStore(settings.sessions_dir)
    paths = store.list_sessions()
    if not paths:
        print(f"No session logs in {settings.sessions_dir}")
        return 0
    for p in reversed(paths):
        print(p.name)
    return 0


def main() -> int:
    if len(sys.argv) < 2:
        usage()
        return 2

    settings = get_settings()
    configure_logging(settings)
    cmd = sys.argv[1]

    if cmd == "chat":
        resume = None
        if "--resume" in sys.argv[2:]:
            idx = sys.argv.index("--resume")
            if idx + 1 >= len(sys.argv):
                usage()
                return 2
            resume = sys.argv[idx + 1]
        return cmd_chat(settings, resume)

    if cmd == "replay":
        if len(sys.argv) != 3:
            usage()
            return 2
        return cmd_replay(settings, sys.argv[2])

    if cmd == "show":
        if len(sys.argv) != 3:
            usage()
            return 2
        return cmd_show(sys.argv[2])

    if cmd == "sessions":
        return cmd_sessions(settings)

    usage()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
