"""Pair tool invocations with their results by invocation id."""
from __future__ import annotations

import logging
from typing import Iterable

from sessionlens.date_utils import duration_ms
from sessionlens.models import LinkedToolItem, LogRecord, ToolResult, ToolResultBlock, ToolUseBlock
from sessionlens.token_utils import content_to_text, estimate_payload_tokens, estimate_tokens

logger = logging.getLogger("sessionlens.linker")

# Single source of truth for the tool-output / task-coordination split.
TASK_COORDINATION_TOOL_NAMES = frozenset(
    {
        "SendMessage",
        "TeamCreate",
        "TeamDelete",
        "TaskCreate",
        "TaskUpdate",
        "TaskList",
        "TaskGet",
    }
)
SKILL_TOOL_NAME = "Skill"
SPAWN_TOOL_NAME = "Task"
READ_TOOL_NAME = "Read"


def is_task_coordination_tool(name: str) -> bool:
    return name in TASK_COORDINATION_TOOL_NAMES


def link_tools(records: Iterable[LogRecord]) -> dict[str, LinkedToolItem]:
    """Build invocation id -> LinkedToolItem for one turn's records.

    Results only attach to invocations already seen; the first result for an id wins.
    Invocations without a result stay in the map with status "running".
    """
    linked: dict[str, LinkedToolItem] = {}
    for record in records:
        if record.kind == "assistant":
            for block in record.content:
                if not isinstance(block, ToolUseBlock) or block.id in linked:
                    continue
                linked[block.id] = LinkedToolItem(
                    id=block.id,
                    name=block.name,
                    input=block.input,
                    sourceRecordId=record.id,
                    callTokens=estimate_payload_tokens(block.input),
                    startTime=record.timestamp,
                )
            continue

        if record.kind != "user":
            continue

        for block in record.content:
            if not isinstance(block, ToolResultBlock):
                continue
            item = linked.get(block.toolUseId)
            if item is None:
                logger.debug("Tool result %s in record %s has no invocation in this turn", block.toolUseId, record.id)
                continue
            if item.result is not None:
                continue
            text = content_to_text(block.content)
            item.result = ToolResult(
                recordId=record.id,
                content=text,
                isError=block.isError,
                tokenCount=estimate_tokens(text),
                timestamp=record.timestamp,
                toolUseResult=record.toolUseResult,
            )
            item.status = "error" if block.isError else "success"
            item.endTime = record.timestamp
            item.durationMs = duration_ms(item.startTime, item.endTime)

        if record.isMeta and record.sourceToolUseId:
            item = linked.get(record.sourceToolUseId)
            if item is not None and item.name == SKILL_TOOL_NAME:
                item.skillInstructionsTokenCount += estimate_tokens(record.rawText)
    return linked
