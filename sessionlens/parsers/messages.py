"""Classify user-role records by what they carry."""
from __future__ import annotations

import re

from sessionlens.models import LogRecord, ToolResultBlock

INTERRUPTION_PREFIX = "[Request interrupted by user"

_COMMAND_NAME_PATTERN = re.compile(r"<command-name>\s*([^<\n]+?)\s*</command-name>", re.IGNORECASE)
_COMMAND_ARGS_PATTERN = re.compile(r"<command-args>\s*([\s\S]*?)\s*</command-args>", re.IGNORECASE)
_COMMAND_OUTPUT_PATTERN = re.compile(
    r"<(local-command-stdout|local-command-stderr|bash-stdout|bash-stderr)>([\s\S]*?)</\1>",
    re.IGNORECASE,
)
_TEAMMATE_PATTERN = re.compile(
    r"<teammate-message\s+[^>]*?teammate_id=\"([^\"]+)\"[^>]*>([\s\S]*?)</teammate-message>",
    re.IGNORECASE,
)
_HIDDEN_TAG_PATTERN = re.compile(
    r"<(system-reminder|command-message|command-name|command-args|local-command-caveat)>[\s\S]*?</\1>",
    re.IGNORECASE,
)

# Record classes; see classify_user_record.
PROMPT = "prompt"
TOOL_RESULT = "tool-result"
META = "meta"
TEAMMATE = "teammate"
COMMAND_OUTPUT = "command-output"
INTERRUPTION = "interruption"
EMPTY = "empty"


def has_tool_results(record: LogRecord) -> bool:
    return any(isinstance(block, ToolResultBlock) for block in record.content)


def is_command_output(text: str) -> bool:
    return bool(_COMMAND_OUTPUT_PATTERN.search(text or ""))


def command_output_text(text: str) -> tuple[str, bool]:
    """Return the captured output and whether any of it went to stderr."""
    parts: list[str] = []
    is_error = False
    for match in _COMMAND_OUTPUT_PATTERN.finditer(text or ""):
        tag = match.group(1).lower()
        body = match.group(2).strip()
        if tag.endswith("stderr") and body:
            is_error = True
        if body:
            parts.append(body)
    return "\n".join(parts), is_error


def parse_command(text: str) -> tuple[str, str] | None:
    """Extract (name, args) from a slash-command prompt, name without the leading slash."""
    match = _COMMAND_NAME_PATTERN.search(text or "")
    if not match:
        return None
    name = match.group(1).strip().lstrip("/")
    if not name:
        return None
    args_match = _COMMAND_ARGS_PATTERN.search(text)
    return name, args_match.group(1).strip() if args_match else ""


def parse_teammate_messages(text: str) -> list[tuple[str, str]]:
    return [
        (match.group(1).strip(), match.group(2).strip())
        for match in _TEAMMATE_PATTERN.finditer(text or "")
    ]


def sanitize_display_text(text: str) -> str:
    command = parse_command(text)
    if command:
        name, args = command
        return f"/{name} {args}".strip()
    return _HIDDEN_TAG_PATTERN.sub("", text or "").strip()


def classify_user_record(record: LogRecord) -> str:
    """Decide how a main-thread user record participates in turn grouping."""
    if has_tool_results(record):
        return TOOL_RESULT
    if record.isMeta:
        return META
    text = record.rawText.strip()
    if text.startswith(INTERRUPTION_PREFIX):
        return INTERRUPTION
    if is_command_output(text):
        return COMMAND_OUTPUT
    if parse_teammate_messages(text):
        return TEAMMATE
    if not text and not record.content:
        return EMPTY
    return PROMPT
