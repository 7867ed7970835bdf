"""Character-ratio token estimation shared by every accounting stage."""
from __future__ import annotations

import json
import math
from typing import Any

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def compact_json(value: Any) -> str:
    """Serialize a structured payload the way the agent tool transmits it."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def estimate_payload_tokens(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (dict, list)) and not value:
        return 0
    return estimate_tokens(compact_json(value))


def content_to_text(content: Any) -> str:
    """Flatten tool-result style content (string or block list) into text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for block in content:
            if isinstance(block, str):
                chunks.append(block)
            elif isinstance(block, dict):
                text = block.get("text")
                if isinstance(text, str):
                    chunks.append(text)
                elif isinstance(block.get("content"), str):
                    chunks.append(block["content"])
                elif block.get("type") != "image":
                    chunks.append(compact_json(block))
        return "\n".join(chunks)
    return compact_json(content)
