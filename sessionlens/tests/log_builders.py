"""Builders for raw session log entries used across tests."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

BASE_TIME = datetime(2026, 2, 16, 10, 0, 0, tzinfo=timezone.utc)
MODEL = "claude-sonnet-4-5-20250929"


def ts(seconds: float) -> str:
    return (BASE_TIME + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z")


def text(value: str) -> dict[str, Any]:
    return {"type": "text", "text": value}


def thinking(value: str) -> dict[str, Any]:
    return {"type": "thinking", "thinking": value, "signature": "sig"}


def tool_use(tool_id: str, name: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": payload or {}}


def tool_result(tool_id: str, content: Any = "ok", is_error: bool = False) -> dict[str, Any]:
    return {"type": "tool_result", "tool_use_id": tool_id, "content": content, "is_error": is_error}


def usage(input_tokens: int = 0, output_tokens: int = 0, cache_read: int = 0, cache_creation: int = 0) -> dict[str, int]:
    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "cache_read_input_tokens": cache_read,
        "cache_creation_input_tokens": cache_creation,
    }


def user(uuid: str, content: Any, seconds: float = 0, *, cwd: str = "/repo", **extra: Any) -> dict[str, Any]:
    entry = {
        "type": "user",
        "uuid": uuid,
        "timestamp": ts(seconds),
        "cwd": cwd,
        "sessionId": "session-1",
        "message": {"role": "user", "content": content},
    }
    entry.update(extra)
    return entry


def assistant(
    uuid: str,
    content: list[dict[str, Any]],
    seconds: float = 0,
    *,
    token_usage: dict[str, int] | None = None,
    model: str = MODEL,
    cwd: str = "/repo",
    **extra: Any,
) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "model": model, "id": f"msg_{uuid}", "content": content}
    if token_usage is not None:
        message["usage"] = token_usage
    entry = {
        "type": "assistant",
        "uuid": uuid,
        "timestamp": ts(seconds),
        "cwd": cwd,
        "sessionId": "session-1",
        "message": message,
    }
    entry.update(extra)
    return entry


def compact_boundary(uuid: str, seconds: float = 0, pre_tokens: int = 150000) -> dict[str, Any]:
    return {
        "type": "system",
        "subtype": "compact_boundary",
        "uuid": uuid,
        "timestamp": ts(seconds),
        "content": "Conversation compacted",
        "compactMetadata": {"trigger": "auto", "preTokens": pre_tokens},
    }


def compact_summary(uuid: str, summary: str, seconds: float = 0) -> dict[str, Any]:
    return user(uuid, summary, seconds, isCompactSummary=True)


def to_jsonl(entries: list[dict[str, Any]]) -> str:
    return "\n".join(json.dumps(entry) for entry in entries) + "\n"
