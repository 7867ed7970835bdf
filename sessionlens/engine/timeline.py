"""Externally consumed views over a reconstructed session.

Nothing here decides domain questions; every value is read from upstream stages.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Mapping, Optional, Sequence

from sessionlens.date_utils import duration_ms, earliest, latest
from sessionlens.engine.tool_linker import SPAWN_TOOL_NAME
from sessionlens.model_identity import is_synthetic_model
from sessionlens.models import (
    AIChunk,
    Chunk,
    ChunkStep,
    ChunkToolCall,
    CompactChunk,
    CompactionMarker,
    ContextPhaseInfo,
    ContextStats,
    ConversationGroup,
    LinkedToolItem,
    LogRecord,
    ModelCost,
    PhaseTokenBreakdown,
    SessionMetrics,
    Subagent,
    SubagentChunks,
    SystemChunk,
    SystemEvent,
    TextBlock,
    ThinkingBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    UserChunk,
    UserMessage,
    WaterfallData,
    WaterfallItem,
)
from sessionlens.parsers.messages import INTERRUPTION_PREFIX
from sessionlens.pricing import PricingTable
from sessionlens.token_utils import estimate_tokens

PREVIEW_CHARS = 200
REJECTED_TOOL_USE = "User rejected tool use"


# ── Chunks ─────────────────────────────────────────────────────────

def _turn_usage(turn: Turn) -> TokenUsage:
    usage = TokenUsage()
    for record in turn.records:
        if record.kind == "assistant" and record.usage is not None:
            usage.inputTokens += record.usage.inputTokens
            usage.outputTokens += record.usage.outputTokens
            usage.cacheReadInputTokens += record.usage.cacheReadInputTokens
            usage.cacheCreationInputTokens += record.usage.cacheCreationInputTokens
    return usage


def _turn_model(turn: Turn) -> str:
    for record in reversed(turn.records):
        if record.kind == "assistant" and record.model and not is_synthetic_model(record.model):
            return record.model
    return ""


def _subagent_chunks(subagent: Subagent) -> SubagentChunks:
    return SubagentChunks(
        id=subagent.id,
        agentId=subagent.agentId,
        description=subagent.description,
        subagentType=subagent.subagentType,
        isOngoing=subagent.isOngoing,
        durationMs=subagent.durationMs,
        metrics=subagent.metrics,
        chunks=build_chunks(
            subagent.items,
            subagent.contextStats,
            subagent.phaseInfo,
            {child.invocationId: child for child in subagent.subagents},
        ),
    )


def _tool_call(item: LinkedToolItem, subagents: Mapping[str, Subagent]) -> ChunkToolCall:
    subagent = subagents.get(item.id)
    return ChunkToolCall(
        id=item.id,
        name=item.name,
        input=item.input,
        status=item.status,
        resultText=item.result.content if item.result else None,
        isError=item.result.isError if item.result else False,
        callTokens=item.callTokens,
        resultTokens=item.resultTokens,
        durationMs=item.durationMs,
        subagent=_subagent_chunks(subagent) if subagent is not None else None,
    )


def _turn_steps(turn: Turn, subagents: Mapping[str, Subagent]) -> list[ChunkStep]:
    steps: list[ChunkStep] = [
        ChunkStep(type="teammate", text=message.text, tokenCount=message.tokenCount, timestamp=message.timestamp)
        for message in turn.teammateMessages
    ]
    steps.extend(
        ChunkStep(type="slash", text=f"/{slash.name}", tokenCount=slash.instructionsTokenCount)
        for slash in turn.slashInvocations
    )
    for record in turn.records:
        if record.kind == "user" and record.rawText.strip().startswith(INTERRUPTION_PREFIX):
            steps.append(ChunkStep(type="interruption", text=record.rawText.strip(), timestamp=record.timestamp))
            continue
        if record.kind != "assistant":
            continue
        for block in record.content:
            if isinstance(block, ThinkingBlock):
                steps.append(
                    ChunkStep(
                        type="thinking",
                        text=block.thinking,
                        tokenCount=estimate_tokens(block.thinking),
                        timestamp=record.timestamp,
                    )
                )
            elif isinstance(block, TextBlock) and block.text.strip():
                steps.append(
                    ChunkStep(
                        type="text",
                        text=block.text,
                        tokenCount=estimate_tokens(block.text),
                        timestamp=record.timestamp,
                    )
                )
            elif isinstance(block, ToolUseBlock) and block.id in turn.linkedTools:
                item = turn.linkedTools[block.id]
                if item.sourceRecordId != record.id:
                    continue
                steps.append(
                    ChunkStep(
                        type="tool",
                        text=item.name,
                        tokenCount=item.contextTokens,
                        timestamp=record.timestamp,
                        toolCall=_tool_call(item, subagents),
                    )
                )
    return steps


def build_chunks(
    items: Sequence[object],
    context_stats: Sequence[ContextStats],
    phase_info: ContextPhaseInfo,
    subagents: Mapping[str, Subagent],
) -> list[Chunk]:
    """Flatten grouped items into UI chunks with subagents inlined under their spawn call."""
    stats_by_turn = {stats.turnId: stats for stats in context_stats}
    chunks: list[Chunk] = []
    phase_number = 1
    for item in items:
        if isinstance(item, UserMessage):
            chunks.append(
                UserChunk(
                    id=item.id,
                    timestamp=item.timestamp,
                    text=item.text,
                    commandName=item.commandName,
                    fileReferences=item.fileReferences,
                )
            )
        elif isinstance(item, Turn):
            stats = stats_by_turn.get(item.id)
            chunks.append(
                AIChunk(
                    id=item.id,
                    turnIndex=item.turnIndex,
                    phaseNumber=phase_info.turnPhaseMap.get(item.id, phase_number),
                    model=_turn_model(item),
                    startTime=item.startTime,
                    endTime=item.endTime,
                    durationMs=item.durationMs,
                    usage=_turn_usage(item),
                    contextTokens=stats.totalEstimatedTokens if stats else 0,
                    steps=_turn_steps(item, subagents),
                )
            )
        elif isinstance(item, CompactionMarker):
            phase_number += 1
            chunks.append(
                CompactChunk(
                    id=item.id,
                    timestamp=item.timestamp,
                    summary=item.summary,
                    phaseNumber=phase_number,
                    tokenDelta=phase_info.compactionTokenDeltas.get(item.id),
                )
            )
        elif isinstance(item, SystemEvent):
            chunks.append(
                SystemChunk(
                    id=item.id,
                    timestamp=item.timestamp,
                    subtype=item.subtype,
                    text=item.text,
                    isError=item.isError,
                )
            )
    return chunks


# ── Conversation groups ────────────────────────────────────────────

def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    clean = " ".join((text or "").split())
    return clean if len(clean) <= limit else clean[:limit] + "…"


def _last_output(turn: Turn) -> str:
    for record in reversed(turn.records):
        if record.kind != "assistant":
            continue
        for block in reversed(record.content):
            if isinstance(block, TextBlock) and block.text.strip():
                return block.text
    return ""


def build_groups(
    items: Sequence[object],
    context_stats: Sequence[ContextStats],
    phase_info: ContextPhaseInfo,
    subagents: Mapping[str, Subagent],
) -> list[ConversationGroup]:
    """One trimmed entry per prompt/turn pair, compaction and system event."""
    stats_by_turn = {stats.turnId: stats for stats in context_stats}
    groups: list[ConversationGroup] = []
    pending_user: Optional[UserMessage] = None
    phase_number = 1

    def flush_prompt() -> None:
        nonlocal pending_user
        if pending_user is not None:
            groups.append(
                ConversationGroup(
                    id=pending_user.id,
                    kind="prompt",
                    phaseNumber=phase_number,
                    userText=_preview(pending_user.text),
                    startTime=pending_user.timestamp,
                    endTime=pending_user.timestamp,
                )
            )
            pending_user = None

    for item in items:
        if isinstance(item, UserMessage):
            flush_prompt()
            pending_user = item
        elif isinstance(item, Turn):
            user = pending_user if pending_user and item.userMessageId == pending_user.id else None
            if user is None:
                flush_prompt()
            pending_user = None
            tool_names = list(dict.fromkeys(tool.name for tool in item.linkedTools.values()))
            stats = stats_by_turn.get(item.id)
            start = earliest([user.timestamp if user else None, item.startTime])
            groups.append(
                ConversationGroup(
                    id=item.id,
                    kind="turn",
                    turnIndex=item.turnIndex,
                    phaseNumber=phase_info.turnPhaseMap.get(item.id, phase_number),
                    userText=_preview(user.text) if user else "",
                    outputPreview=_preview(_last_output(item)),
                    startTime=start,
                    endTime=item.endTime,
                    durationMs=duration_ms(start, item.endTime),
                    toolCount=len(item.linkedTools),
                    toolNames=tool_names,
                    subagentCount=sum(1 for tool_id in item.linkedTools if tool_id in subagents),
                    contextTokens=stats.totalEstimatedTokens if stats else 0,
                )
            )
        elif isinstance(item, CompactionMarker):
            flush_prompt()
            phase_number += 1
            groups.append(
                ConversationGroup(
                    id=item.id,
                    kind="compact",
                    phaseNumber=phase_number,
                    outputPreview=_preview(item.summary),
                    startTime=item.timestamp,
                    endTime=item.timestamp,
                )
            )
        elif isinstance(item, SystemEvent):
            flush_prompt()
            groups.append(
                ConversationGroup(
                    id=item.id,
                    kind="system",
                    phaseNumber=phase_number,
                    outputPreview=_preview(item.text),
                    startTime=item.timestamp,
                    endTime=item.timestamp,
                )
            )
    flush_prompt()
    return groups


# ── Metrics ────────────────────────────────────────────────────────

def build_metrics(
    records: Sequence[LogRecord],
    turns: Sequence[Turn],
    phase_info: ContextPhaseInfo,
    pricing: PricingTable,
    *,
    context_consumption: Optional[int] = None,
    phase_breakdown: Sequence[PhaseTokenBreakdown] = (),
) -> SessionMetrics:
    """Aggregate token, cost and count metrics for one session file.

    Cost is None when any model with usage has no rate, so a partial total is never
    reported as the session cost.
    """
    timestamps = [record.timestamp for record in records if record.timestamp is not None]
    start = min(timestamps) if timestamps else None
    end = max(timestamps) if timestamps else None

    totals = TokenUsage()
    per_model: dict[str, ModelCost] = {}
    model_costs: dict[str, Optional[float]] = defaultdict(float)
    for record in records:
        if record.kind != "assistant" or record.usage is None:
            continue
        usage = record.usage
        totals.inputTokens += usage.inputTokens
        totals.outputTokens += usage.outputTokens
        totals.cacheReadInputTokens += usage.cacheReadInputTokens
        totals.cacheCreationInputTokens += usage.cacheCreationInputTokens
        if is_synthetic_model(record.model) or usage.totalTokens == 0:
            continue

        model = record.model or "unknown"
        entry = per_model.setdefault(model, ModelCost(model=model))
        entry.inputTokens += usage.inputTokens
        entry.outputTokens += usage.outputTokens
        entry.cacheReadTokens += usage.cacheReadInputTokens
        entry.cacheCreationTokens += usage.cacheCreationInputTokens
        cost = pricing.message_cost(model, usage)
        running = model_costs[model]
        model_costs[model] = None if cost is None or running is None else running + cost

    unpriced: list[str] = []
    session_cost: Optional[float] = 0.0
    for model in sorted(per_model):
        cost = model_costs[model]
        per_model[model].costUsd = cost
        if cost is None:
            unpriced.append(model)
            session_cost = None
        elif session_cost is not None:
            session_cost += cost

    return SessionMetrics(
        messageCount=sum(1 for record in records if record.kind in {"user", "assistant"}),
        durationMs=duration_ms(start, end) or 0,
        inputTokens=totals.inputTokens,
        outputTokens=totals.outputTokens,
        cacheReadTokens=totals.cacheReadInputTokens,
        cacheCreationTokens=totals.cacheCreationInputTokens,
        totalTokens=totals.totalTokens,
        costUsd=session_cost,
        modelCosts=[per_model[model] for model in sorted(per_model)],
        unpricedModels=unpriced,
        turnCount=len(turns),
        toolCallCount=sum(len(turn.linkedTools) for turn in turns),
        compactionCount=phase_info.compactionCount,
        contextConsumption=context_consumption,
        phaseBreakdown=list(phase_breakdown),
    )


# ── Waterfall ──────────────────────────────────────────────────────

def _waterfall_entries(
    turns: Iterable[Turn],
    subagents: Mapping[str, Subagent],
    *,
    depth: int,
    parent_id: Optional[str],
    id_prefix: str,
) -> list[WaterfallItem]:
    entries: list[WaterfallItem] = []
    for turn in turns:
        turn_key = f"{id_prefix}{turn.id}"
        if turn.startTime is not None:
            end = turn.endTime or turn.startTime
            entries.append(
                WaterfallItem(
                    id=turn_key,
                    label=f"Turn {turn.turnIndex + 1}",
                    kind="turn",
                    startTime=turn.startTime,
                    endTime=end,
                    durationMs=duration_ms(turn.startTime, end) or 0,
                    depth=depth,
                    parentId=parent_id,
                    tokenCount=_turn_usage(turn).outputTokens,
                )
            )
        for tool in turn.linkedTools.values():
            tool_key = f"{id_prefix}{tool.id}"
            subagent = subagents.get(tool.id)
            if tool.startTime is not None:
                end = tool.endTime or tool.startTime
                entries.append(
                    WaterfallItem(
                        id=tool_key,
                        label="Task (Subagent)" if tool.name == SPAWN_TOOL_NAME else tool.name,
                        kind="subagent" if subagent is not None else "tool",
                        startTime=tool.startTime,
                        endTime=end,
                        durationMs=duration_ms(tool.startTime, end) or 0,
                        depth=depth + 1,
                        parentId=turn_key,
                        isError=tool.status == "error",
                        tokenCount=tool.contextTokens,
                    )
                )
            if subagent is not None:
                entries.extend(
                    _waterfall_entries(
                        [item for item in subagent.items if isinstance(item, Turn)],
                        {child.invocationId: child for child in subagent.subagents},
                        depth=depth + 2,
                        parent_id=tool_key,
                        id_prefix=f"{tool_key}/",
                    )
                )
    return entries


def build_waterfall(turns: Sequence[Turn], subagents: Mapping[str, Subagent]) -> WaterfallData:
    """Turns, tool calls and nested subagent turns ordered by (start, longest first, id)."""
    entries = _waterfall_entries(turns, subagents, depth=0, parent_id=None, id_prefix="")
    entries.sort(key=lambda entry: (entry.startTime, -entry.durationMs, entry.id))
    start = earliest(entry.startTime for entry in entries)
    end = latest(entry.endTime for entry in entries)
    return WaterfallData(
        items=entries,
        startTime=start,
        endTime=end,
        totalDurationMs=duration_ms(start, end) or 0,
    )


# ── Ongoing detection ──────────────────────────────────────────────

def detect_ongoing(records: Iterable[LogRecord], *, include_sidechain: bool = False) -> bool:
    """True when the last activity (thinking, tool call, tool result) follows the last ending event.

    Ending events are visible text, ExitPlanMode, an approved shutdown SendMessage and its
    result, an interruption notice, and a rejected tool use.
    """
    has_activity = False
    activity_after_ending = False
    seen_ending = False
    shutdown_tool_ids: set[str] = set()

    def activity() -> None:
        nonlocal has_activity, activity_after_ending
        has_activity = True
        if seen_ending:
            activity_after_ending = True

    def ending() -> None:
        nonlocal seen_ending, activity_after_ending
        seen_ending = True
        activity_after_ending = False

    for record in records:
        if record.isSidechain and not include_sidechain:
            continue
        if record.kind == "assistant":
            for block in record.content:
                if isinstance(block, ThinkingBlock) and block.thinking:
                    activity()
                elif isinstance(block, ToolUseBlock):
                    if block.name == "ExitPlanMode":
                        ending()
                    elif (
                        block.name == "SendMessage"
                        and block.input.get("type") == "shutdown_response"
                        and block.input.get("approve") is True
                    ):
                        shutdown_tool_ids.add(block.id)
                        ending()
                    else:
                        activity()
                elif isinstance(block, TextBlock) and block.text.strip():
                    ending()
        elif record.kind == "user":
            rejected = record.toolUseResult == REJECTED_TOOL_USE
            for block in record.content:
                if isinstance(block, ToolResultBlock):
                    if block.toolUseId in shutdown_tool_ids or rejected:
                        ending()
                    else:
                        activity()
                elif isinstance(block, TextBlock) and block.text.startswith(INTERRUPTION_PREFIX):
                    ending()

    return activity_after_ending if seen_ending else has_activity
