from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional

from claude_agent_sdk import AssistantMessage, ClaudeAgentOptions, ClaudeSDKClient, ResultMessage, TextBlock, ToolUseBlock
from loguru import logger

from sessionlog.agent.adapter import to_record
from sessionlog.engine.state_machine import SessionLogger

EXIT_COMMANDS = {"exit", "quit"}


def render(message: Any, out: Callable[[str], None] = print) -> None:
    if isinstance(message, AssistantMessage):
        for block in message.content:
            if isinstance(block, TextBlock):
                out(f"\nClaude: {block.text}")
            elif isinstance(block, ToolUseBlock):
                out(f"  -> {block.name} {block.input}")
    elif isinstance(message, ResultMessage):
        cost = message.total_cost_usd or 0.0
        out(f"  ({message.num_turns} turn(s), {message.duration_ms} ms, ${cost:.4f})")


async def run_chat(
    options: ClaudeAgentOptions,
    sessions_dir: Path,
    *,
    read_input: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
    client_factory: Optional[Callable[..., Any]] = None,
) -> Optional[str]:
    """
    Interactive loop: one exchange per line of user input until exit/quit/EOF.
    Returns the session id seen, if any.
    """
    factory = client_factory or ClaudeSDKClient

    out("Claude Agent Interactive Chat")
    out("Type 'exit' or 'quit' to end the conversation\n")

    with SessionLogger(sessions_dir) as session_log:
        async with factory(options=options) as client:
            while True:
                try:
                    text = await asyncio.to_thread(read_input, "\nYou: ")
                except EOFError:
                    break

                if text.strip().lower() in EXIT_COMMANDS:
                    out("\nGoodbye!\n")
                    break
                if not text.strip():
                    continue

                session_log.begin_exchange(text)
                try:
                    await client.query(text)
                    async for message in client.receive_response():
                        session_log.observe(to_record(message))
                        render(message, out)
                except Exception as e:
                    logger.error(f"Exchange {session_log.exchange_count} failed: {type(e).__name__}: {e}")
                    raise

        if session_log.log_path is not None:
            out(f"Session log: {session_log.log_path}")
        return session_log.session_id or None
