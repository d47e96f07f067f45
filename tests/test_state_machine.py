import json
import shutil
from pathlib import Path

import pytest

from sessionlog.engine.state_machine import ACCUMULATING, CLOSED, IDLE, UNINITIALIZED, SessionLogger

SID = "abc12345-0000-4000-8000-000000000001"


def init(session_id=SID, **extra):
    return {
        "type": "system",
        "subtype": "init",
        "session_id": session_id,
        "model": "haiku",
        "cwd": "/work",
        "tools": ["Bash", "Read"],
        "permissionMode": "default",
        **extra,
    }


def text(t):
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": t}]}}


def tool_use(tool_id, name, **inp):
    return {"type": "assistant", "message": {"content": [{"type": "tool_use", "id": tool_id, "name": name, "input": inp}]}}


def tool_result(tool_id, content, is_error=False):
    return {
        "type": "user",
        "message": {"content": [{"type": "tool_result", "tool_use_id": tool_id, "is_error": is_error, "content": content}]},
    }


def result(turns=1, ms=100, api_ms=80, cost=0.001, tokens_in=5, tokens_out=10, cache_create=0, cache_read=0):
    return {
        "type": "result",
        "subtype": "success",
        "num_turns": turns,
        "duration_ms": ms,
        "duration_api_ms": api_ms,
        "total_cost_usd": cost,
        "usage": {
            "input_tokens": tokens_in,
            "output_tokens": tokens_out,
            "cache_creation_input_tokens": cache_create,
            "cache_read_input_tokens": cache_read,
        },
    }


def read(path: Path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_single_exchange_writes_start_and_exchange(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("hello")
    log.observe(text("Hi there"))
    log.observe(result())

    lines = read(log.log_path)
    assert [r["type"] for r in lines] == ["session_start", "exchange"]
    assert log.log_path.name.endswith("_abc12345.jsonl")

    start, exchange = lines
    assert start["session_id"] == SID
    assert start["tools_available"] == ["Bash", "Read"]
    assert start["permission_mode"] == "default"

    assert exchange["exchange"] == 1
    assert exchange["user_input"] == "hello"
    assert exchange["stats"]["tokens_in"] == 5
    assert exchange["stats"]["tokens_out"] == 10
    assert exchange["stats"]["num_turns"] == 1
    assert exchange["messages"][0]["type"] == "text"
    assert exchange["messages"][0]["source"] == "assistant"
    assert exchange["messages"][0]["text"] == "Hi there"


def test_close_writes_session_end(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("hello")
    log.observe(text("Hi there"))
    log.observe(result())
    log.close()

    lines = read(log.log_path)
    assert len(lines) == 3
    end = lines[2]
    assert end["type"] == "session_end"
    assert end["total_exchanges"] == 1
    assert end["total_duration_ms"] == 100
    assert end["total_cost_usd"] == 0.001
    assert end["total_tokens"] == {"input": 5, "output": 10, "cache_creation": 0, "cache_read": 0}


def test_states(tmp_path: Path):
    log = SessionLogger(tmp_path)
    assert log.state == UNINITIALIZED
    log.observe(init())
    assert log.state == IDLE
    log.begin_exchange("hi")
    assert log.state == ACCUMULATING
    log.observe(result())
    assert log.state == IDLE
    log.close()
    assert log.state == CLOSED


def test_repeated_init_is_noop(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.observe(init())
    log.observe(init(session_id="zzzzzzzz-other"))

    assert [r["type"] for r in read(log.log_path)] == ["session_start"]
    assert log.session_id == SID
    assert len(list(tmp_path.iterdir())) == 1


def test_tool_use_and_results_are_logged_in_order(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("list files")
    log.observe(text("Let me look."))
    log.observe(tool_use("tu_1", "Bash", command="ls"))

    # counted as soon as the invocation is seen
    assert log.totals().tools_used == {"Bash": 1}

    log.observe(tool_result("tu_1", "a.txt\nb.txt"))
    log.observe(tool_result("tu_2", [{"type": "text", "text": "structured"}], is_error=True))
    log.observe(text("Two files."))
    log.observe(result(turns=2))

    messages = read(log.log_path)[1]["messages"]
    assert [(m["source"], m["type"]) for m in messages] == [
        ("assistant", "text"),
        ("assistant", "tool_use"),
        ("tool", "result"),
        ("tool", "result"),
        ("assistant", "text"),
    ]
    assert messages[1]["tool_use_id"] == "tu_1"
    assert messages[1]["name"] == "Bash"
    assert messages[1]["input"] == {"command": "ls"}
    assert messages[2]["output"] == "a.txt\nb.txt"
    assert messages[2]["is_error"] is False
    # no matching invocation for tu_2; logged as-is
    assert messages[3]["is_error"] is True
    assert json.loads(messages[3]["output"]) == [{"type": "text", "text": "structured"}]


def test_blocks_without_required_fields_are_skipped(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("hi")
    log.observe({"type": "assistant", "message": {"content": [{"type": "text", "text": ""}, {"type": "tool_use", "name": "Bash"}]}})
    log.observe({"type": "user", "message": {"content": [{"type": "tool_result", "content": "orphan"}]}})
    log.observe(result())

    assert read(log.log_path)[1]["messages"] == []
    assert log.totals().tools_used == {}


def test_bad_block_skips_only_itself(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("hi")
    log.observe(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "text", "text": "kept"},
                    "not a block",
                    {"type": "tool_use", "id": "t1", "name": "Bash", "input": "ls -la"},
                ]
            },
        }
    )
    log.observe(result())

    messages = read(log.log_path)[1]["messages"]
    assert [m["type"] for m in messages] == ["text", "tool_use"]
    assert messages[0]["text"] == "kept"
    assert messages[1]["input"] == "ls -la"
    assert log.totals().tools_used == {"Bash": 1}


def test_completion_with_bad_field_is_still_recorded(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("hi")
    log.observe({**result(), "duration_ms": 12.5, "num_turns": "many"})
    log.close()

    lines = read(log.log_path)
    assert [r["type"] for r in lines] == ["session_start", "exchange", "session_end"]
    assert lines[1]["stats"]["duration_ms"] == 12
    assert lines[1]["stats"]["num_turns"] == 0
    assert lines[1]["stats"]["tokens_out"] == 10
    assert lines[2]["total_exchanges"] == 1


def test_one_exchange_record_per_completion(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("first")
    log.observe(result())
    # runtime output with no begin_exchange opens an implicit exchange
    log.observe(text("unprompted"))
    log.observe(result())
    log.observe(result())
    log.observe({"type": "error", "error": "ignored"})

    exchanges = [r for r in read(log.log_path) if r["type"] == "exchange"]
    assert [e["exchange"] for e in exchanges] == [1, 2, 3]
    assert exchanges[1]["user_input"] == ""
    assert exchanges[1]["messages"][0]["text"] == "unprompted"


def test_token_snapshot_is_last_exchange_not_sum(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("one")
    log.observe(result(ms=100, cost=0.25, tokens_in=5, tokens_out=10, cache_read=100))
    log.begin_exchange("two")
    log.observe(result(ms=200, cost=0.5, tokens_in=3, tokens_out=4, cache_read=900))
    log.close()

    end = read(log.log_path)[-1]
    assert end["total_exchanges"] == 2
    assert end["total_duration_ms"] == 300
    assert end["total_duration_api_ms"] == 160
    assert end["total_cost_usd"] == 0.75
    assert end["total_tokens"] == {"input": 3, "output": 4, "cache_creation": 0, "cache_read": 900}


def test_begin_twice_keeps_last_input(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("draft")
    log.observe(text("partial"))
    log.begin_exchange("final")
    log.observe(result())

    exchange = read(log.log_path)[1]
    assert exchange["user_input"] == "final"
    assert exchange["messages"] == []


def test_begin_before_init_is_numbered_from_the_file(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.begin_exchange("hello")
    assert log.state == UNINITIALIZED
    log.observe(init())
    log.observe(text("hi"))
    log.observe(result())

    exchange = read(log.log_path)[1]
    assert exchange["exchange"] == 1
    assert exchange["user_input"] == "hello"


def test_completion_before_init_is_not_counted(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(text("stray"))
    log.observe(result(ms=50))
    assert log.state == UNINITIALIZED
    assert not any(tmp_path.iterdir())

    log.observe(init())
    log.begin_exchange("real")
    log.observe(result(ms=10))
    log.close()

    lines = read(log.log_path)
    assert [r["type"] for r in lines] == ["session_start", "exchange", "session_end"]
    assert lines[1]["exchange"] == 1
    assert lines[1]["messages"] == []
    assert lines[2]["total_exchanges"] == 1
    assert lines[2]["total_duration_ms"] == 10


def test_completion_before_init_keeps_the_open_exchange(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.begin_exchange("hello")
    log.observe(text("early"))
    log.observe(result(ms=50))
    assert log.state == UNINITIALIZED

    log.observe(init())
    log.observe(result(ms=10))
    log.close()

    lines = read(log.log_path)
    exchanges = [r for r in lines if r["type"] == "exchange"]
    assert len(exchanges) == 1
    assert exchanges[0]["user_input"] == "hello"
    assert [m["text"] for m in exchanges[0]["messages"]] == ["early"]
    assert lines[-1]["total_duration_ms"] == 10


def test_close_without_init_is_noop(tmp_path: Path):
    log = SessionLogger(tmp_path / "sessions")
    log.begin_exchange("never answered")
    log.close()
    assert not (tmp_path / "sessions").exists()
    assert log.state == UNINITIALIZED


def test_repeated_close_leaves_one_trailing_summary(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("hi")
    log.observe(result())
    log.close()
    log.close()

    kinds = [r["type"] for r in read(log.log_path)]
    assert kinds == ["session_start", "exchange", "session_end"]


def test_events_after_close_are_ignored(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.close()
    log.begin_exchange("late")
    log.observe(result())

    assert [r["type"] for r in read(log.log_path)] == ["session_start", "session_end"]


def test_open_exchange_is_not_recorded_on_close(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    log.begin_exchange("interrupted")
    log.observe(text("half an answer"))
    log.close()

    lines = read(log.log_path)
    assert [r["type"] for r in lines] == ["session_start", "session_end"]
    assert lines[-1]["total_exchanges"] == 0


def test_context_manager_closes_on_error(tmp_path: Path):
    with pytest.raises(RuntimeError):
        with SessionLogger(tmp_path) as log:
            log.observe(init())
            log.begin_exchange("hi")
            log.observe(result())
            raise RuntimeError("runtime crashed")

    assert read(log.log_path)[-1]["type"] == "session_end"


def test_append_failure_propagates_and_totals_survive(tmp_path: Path):
    log = SessionLogger(tmp_path)
    log.observe(init())
    path = log.log_path
    path.unlink()
    path.mkdir()

    log.begin_exchange("hi")
    with pytest.raises(OSError):
        log.observe(result(ms=40))

    assert log.state == IDLE
    assert log.totals().exchanges == 1
    assert log.totals().duration_ms == 40

    shutil.rmtree(path)
    log.begin_exchange("again")
    log.observe(result(ms=60))
    assert read(path)[0]["exchange"] == 2
    assert log.totals().duration_ms == 100
