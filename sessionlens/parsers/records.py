"""Decode JSONL session log lines into typed LogRecord models."""
from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from sessionlens.date_utils import parse_timestamp
from sessionlens.models import (
    ContentBlock,
    FileReference,
    ImageBlock,
    LogRecord,
    ParseDiagnostic,
    TextBlock,
    ThinkingBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
)
from sessionlens import observability

logger = logging.getLogger("sessionlens.parser")

RECOGNIZED_KINDS = {
    "user",
    "assistant",
    "system",
    "summary",
    "file-history-snapshot",
    "queue-operation",
}

COMPACT_BOUNDARY_SUBTYPE = "compact_boundary"

# Top-level keys consumed into typed fields; everything else lands in `extra`.
_KNOWN_KEYS = {
    "type",
    "uuid",
    "messageId",
    "leafUuid",
    "parentUuid",
    "timestamp",
    "message",
    "content",
    "cwd",
    "gitBranch",
    "agentId",
    "isSidechain",
    "isMeta",
    "subtype",
    "isCompactSummary",
    "sourceToolUseID",
    "toolUseResult",
    "summary",
}

_MENTION_PATTERN = re.compile(r"(?<![\w@.])@([^\s@`'\"<>()\[\]{},;|]+)")
_MENTION_TRAILING_PUNCTUATION = ".,:;!?"
_SNIPPET_LENGTH = 120


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value)) if math.isfinite(value) else 0
    try:
        return max(0, int(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _snippet(line: str) -> str:
    text = line.strip()
    if len(text) <= _SNIPPET_LENGTH:
        return text
    return text[:_SNIPPET_LENGTH] + "…"


def decode_block(raw: Any) -> ContentBlock:
    """Map one loosely-typed content block onto the closed block variant set."""
    if isinstance(raw, str):
        return TextBlock(text=raw)
    if not isinstance(raw, dict):
        return UnknownBlock(rawType=type(raw).__name__, raw=raw)

    block_type = raw.get("type")
    if block_type == "text":
        return TextBlock(text=_as_str(raw.get("text")))
    if block_type == "thinking":
        return ThinkingBlock(thinking=_as_str(raw.get("thinking")))
    if block_type == "redacted_thinking":
        return ThinkingBlock(thinking="", redacted=True)
    if block_type == "tool_use":
        tool_id = raw.get("id")
        if isinstance(tool_id, str) and tool_id:
            payload = raw.get("input")
            return ToolUseBlock(
                id=tool_id,
                name=_as_str(raw.get("name")),
                input=payload if isinstance(payload, dict) else {},
            )
    if block_type == "tool_result":
        tool_use_id = raw.get("tool_use_id")
        if isinstance(tool_use_id, str) and tool_use_id:
            return ToolResultBlock(
                toolUseId=tool_use_id,
                content=raw.get("content"),
                isError=raw.get("is_error") is True,
            )
    if block_type == "image":
        source = raw.get("source") if isinstance(raw.get("source"), dict) else {}
        return ImageBlock(mediaType=_as_str(source.get("media_type")))
    return UnknownBlock(rawType=_as_str(block_type), raw=raw)


def decode_content(raw: Any) -> list[ContentBlock]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [TextBlock(text=raw)] if raw else []
    if isinstance(raw, list):
        return [decode_block(item) for item in raw]
    return [decode_block(raw)]


def raw_text_of(raw: Any) -> str:
    """Text exactly as transmitted: string content verbatim, text blocks joined by newlines."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        parts: list[str] = []
        for item in raw:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return ""


def extract_file_references(text: str) -> list[FileReference]:
    """Collect `@path` mentions in order of first appearance."""
    references: list[FileReference] = []
    seen: set[str] = set()
    for match in _MENTION_PATTERN.finditer(text or ""):
        path = match.group(1).rstrip(_MENTION_TRAILING_PUNCTUATION)
        if not path or path in seen:
            continue
        seen.add(path)
        references.append(FileReference(path=path, raw=f"@{path}"))
    return references


def _parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    return TokenUsage(
        inputTokens=_as_int(raw.get("input_tokens")),
        outputTokens=_as_int(raw.get("output_tokens")),
        cacheReadInputTokens=_as_int(raw.get("cache_read_input_tokens")),
        cacheCreationInputTokens=_as_int(raw.get("cache_creation_input_tokens")),
    )


def _record_id(entry: dict[str, Any], line_number: int) -> str:
    for key in ("uuid", "messageId", "leafUuid"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return f"line-{line_number}"


def parse_entry(entry: dict[str, Any], line_number: int) -> LogRecord | ParseDiagnostic:
    """Decode one already-deserialized log entry."""
    entry_type = entry.get("type")
    if entry_type not in RECOGNIZED_KINDS:
        return ParseDiagnostic(
            lineNumber=line_number,
            reason=f"unrecognized record type: {entry_type!r}",
            snippet=_snippet(json.dumps(entry, ensure_ascii=False)[:_SNIPPET_LENGTH * 2]),
        )

    message = entry.get("message") if isinstance(entry.get("message"), dict) else {}
    raw_content = message.get("content") if message else entry.get("content")
    subtype = _as_str(entry.get("subtype"))

    kind = entry_type
    compaction_source: str | None = None
    if entry_type == "system" and subtype == COMPACT_BOUNDARY_SUBTYPE:
        kind = "compaction-marker"
        compaction_source = "boundary"
    elif entry_type == "user" and entry.get("isCompactSummary") is True:
        kind = "compaction-marker"
        compaction_source = "summary"

    raw_text = raw_text_of(raw_content)
    if entry_type == "summary":
        raw_text = _as_str(entry.get("summary"))

    file_references: list[FileReference] = []
    if entry_type == "user" and kind == "user":
        file_references = extract_file_references(raw_text)

    source_tool_use_id = entry.get("sourceToolUseID")
    return LogRecord(
        id=_record_id(entry, line_number),
        kind=kind,
        lineNumber=line_number,
        timestamp=parse_timestamp(entry.get("timestamp")),
        parentId=entry.get("parentUuid") if isinstance(entry.get("parentUuid"), str) else None,
        role=message.get("role") if isinstance(message.get("role"), str) else None,
        content=decode_content(raw_content),
        rawText=raw_text,
        usage=_parse_usage(message.get("usage")) if entry_type == "assistant" else None,
        model=_as_str(message.get("model")),
        messageId=_as_str(message.get("id")),
        cwd=_as_str(entry.get("cwd")),
        gitBranch=_as_str(entry.get("gitBranch")),
        agentId=_as_str(entry.get("agentId")),
        isSidechain=entry.get("isSidechain") is True,
        isMeta=entry.get("isMeta") is True,
        subtype=subtype,
        compactionSource=compaction_source,
        sourceToolUseId=source_tool_use_id if isinstance(source_tool_use_id, str) and source_tool_use_id else None,
        toolUseResult=entry.get("toolUseResult"),
        fileReferences=file_references,
        extra={key: value for key, value in entry.items() if key not in _KNOWN_KEYS},
    )


def parse_line(line: str, line_number: int) -> LogRecord | ParseDiagnostic | None:
    """Decode one raw line. Blank lines yield None; bad lines yield a diagnostic."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        entry = json.loads(stripped)
    except json.JSONDecodeError as exc:
        return ParseDiagnostic(
            lineNumber=line_number,
            reason=f"invalid JSON: {exc.msg}",
            snippet=_snippet(stripped),
        )
    if not isinstance(entry, dict):
        return ParseDiagnostic(
            lineNumber=line_number,
            reason="record is not a JSON object",
            snippet=_snippet(stripped),
        )
    return parse_entry(entry, line_number)


def parse_records(text: str, *, source: str = "") -> tuple[list[LogRecord], list[ParseDiagnostic]]:
    """Decode a whole JSONL document, skipping and reporting lines that cannot be used.

    A trailing partial line (file read mid-write) surfaces as a diagnostic, never an error.
    """
    records: list[LogRecord] = []
    diagnostics: list[ParseDiagnostic] = []
    for index, line in enumerate(text.splitlines(), start=1):
        parsed = parse_line(line, index)
        if parsed is None:
            continue
        if isinstance(parsed, ParseDiagnostic):
            diagnostics.append(parsed)
            logger.debug("Skipping line %s of %s: %s", index, source or "<memory>", parsed.reason)
            observability.record_parse_diagnostic("records", parsed.reason.split(":", 1)[0])
            continue
        records.append(parsed)
    return records, diagnostics
