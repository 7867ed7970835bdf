"""Partition a session's main-thread records into user prompts, AI turns and boundary events."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from sessionlens.date_utils import duration_ms, earliest, latest
from sessionlens.engine.tool_linker import link_tools
from sessionlens.models import (
    CompactionMarker,
    LogRecord,
    SlashInvocation,
    SystemEvent,
    TeammateMessage,
    Turn,
    UserMessage,
)
from sessionlens.parsers import messages
from sessionlens.token_utils import estimate_tokens

GroupedItem = Union[UserMessage, Turn, CompactionMarker, SystemEvent]


@dataclass
class _TurnBuilder:
    turn_index: int
    user_message_id: Optional[str]
    records: list[LogRecord] = field(default_factory=list)
    teammates: list[TeammateMessage] = field(default_factory=list)
    slashes: list[SlashInvocation] = field(default_factory=list)
    interrupted: bool = False

    def build(self) -> Turn:
        start = earliest(record.timestamp for record in self.records)
        end = latest(record.timestamp for record in self.records)
        return Turn(
            id=f"ai-{self.turn_index}",
            turnIndex=self.turn_index,
            userMessageId=self.user_message_id,
            records=self.records,
            linkedTools=link_tools(self.records),
            teammateMessages=self.teammates,
            slashInvocations=self.slashes,
            isInterrupted=self.interrupted,
            startTime=start,
            endTime=end,
            durationMs=duration_ms(start, end),
        )


def _user_message(record: LogRecord) -> UserMessage:
    command = messages.parse_command(record.rawText)
    return UserMessage(
        id=record.id,
        lineNumber=record.lineNumber,
        timestamp=record.timestamp,
        text=messages.sanitize_display_text(record.rawText),
        rawText=record.rawText,
        commandName=command[0] if command else None,
        commandArgs=command[1] if command else "",
        fileReferences=record.fileReferences,
    )


def _compaction_marker(record: LogRecord) -> CompactionMarker:
    metadata = record.extra.get("compactMetadata")
    metadata = metadata if isinstance(metadata, dict) else {}
    pre_tokens = metadata.get("preTokens")
    return CompactionMarker(
        id=f"compact-{record.id}",
        recordId=record.id,
        source=record.compactionSource or "boundary",
        timestamp=record.timestamp,
        summary=record.rawText if record.compactionSource == "summary" else "",
        trigger=metadata.get("trigger") if isinstance(metadata.get("trigger"), str) else "",
        preTokens=pre_tokens if isinstance(pre_tokens, int) and not isinstance(pre_tokens, bool) else None,
    )


def _system_event(record: LogRecord, *, text: str, is_error: bool, subtype: str) -> SystemEvent:
    return SystemEvent(
        id=f"system-{record.id}",
        recordId=record.id,
        subtype=subtype,
        timestamp=record.timestamp,
        text=text,
        isError=is_error,
    )


def group_records(records: Iterable[LogRecord], *, include_sidechain: bool = False) -> list[GroupedItem]:
    """Single forward pass over records, in file order.

    Sidechain records are skipped unless `include_sidechain` is set (nested agent
    files mark every record as sidechain). A turn opens at the first assistant record after a
    prompt (or with no prompt, for agent-initiated turns) and closes at the next prompt,
    command output, teammate message or compaction marker. A summary-sourced compaction
    marker directly following a boundary marker is merged into it.
    """
    items: list[GroupedItem] = []
    open_turn: Optional[_TurnBuilder] = None
    pending_user: Optional[UserMessage] = None
    pending_meta: list[LogRecord] = []
    pending_teammates: list[TeammateMessage] = []
    pending_slashes: list[SlashInvocation] = []
    pending_command: Optional[str] = None
    turn_counter = 0

    def close_turn() -> None:
        nonlocal open_turn
        if open_turn is not None:
            items.append(open_turn.build())
            open_turn = None

    for record in records:
        if record.isSidechain and not include_sidechain:
            continue

        if record.kind == "compaction-marker":
            close_turn()
            marker = _compaction_marker(record)
            previous = items[-1] if items else None
            if (
                isinstance(previous, CompactionMarker)
                and previous.source == "boundary"
                and marker.source == "summary"
                and not previous.summary
            ):
                items[-1] = previous.model_copy(update={"summary": marker.summary})
            else:
                items.append(marker)
            pending_user = None
            pending_meta = []
            pending_teammates = []
            pending_slashes = []
            pending_command = None
            continue

        if record.kind == "assistant":
            if open_turn is None:
                open_turn = _TurnBuilder(
                    turn_index=turn_counter,
                    user_message_id=pending_user.id if pending_user else None,
                    records=list(pending_meta),
                    teammates=list(pending_teammates),
                    slashes=list(pending_slashes),
                )
                turn_counter += 1
                pending_user = None
                pending_meta = []
                pending_teammates = []
                pending_slashes = []
            open_turn.records.append(record)
            continue

        if record.kind == "system":
            if open_turn is not None:
                open_turn.records.append(record)
            elif record.rawText.strip():
                level = record.extra.get("level")
                items.append(
                    _system_event(
                        record,
                        text=record.rawText.strip(),
                        is_error=level == "error" or record.subtype == "api_error",
                        subtype=record.subtype,
                    )
                )
            continue

        if record.kind != "user":
            continue

        category = messages.classify_user_record(record)
        if category == messages.TOOL_RESULT:
            if open_turn is None:
                pending_meta.append(record)
            else:
                open_turn.records.append(record)
        elif category == messages.META:
            if not record.sourceToolUseId and pending_command:
                pending_slashes.append(
                    SlashInvocation(
                        name=pending_command,
                        recordId=record.id,
                        instructionsTokenCount=estimate_tokens(record.rawText),
                    )
                )
                pending_command = None
            if open_turn is None:
                pending_meta.append(record)
            else:
                open_turn.records.append(record)
        elif category == messages.INTERRUPTION:
            if open_turn is not None:
                open_turn.records.append(record)
                open_turn.interrupted = True
        elif category == messages.COMMAND_OUTPUT:
            close_turn()
            text, is_error = messages.command_output_text(record.rawText)
            items.append(_system_event(record, text=text, is_error=is_error, subtype="local-command"))
        elif category == messages.TEAMMATE:
            close_turn()
            for teammate_id, body in messages.parse_teammate_messages(record.rawText):
                pending_teammates.append(
                    TeammateMessage(
                        recordId=record.id,
                        teammateId=teammate_id,
                        text=body,
                        tokenCount=estimate_tokens(body),
                        timestamp=record.timestamp,
                    )
                )
        elif category == messages.PROMPT:
            close_turn()
            user_message = _user_message(record)
            items.append(user_message)
            pending_user = user_message
            pending_meta = []
            pending_slashes = []
            pending_command = user_message.commandName

    close_turn()
    return items


def turns_of(items: Iterable[GroupedItem]) -> list[Turn]:
    return [item for item in items if isinstance(item, Turn)]
