"""Per-turn attribution of context-window occupancy to injection categories.

Each turn is folded through `compute_turn_context`, a pure function of the previous
accumulator and the turn's inputs. File existence and token sizes are resolved before
the fold (see `collect_context_paths`) so the fold itself performs no I/O.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

from sessionlens.engine.phases import PhaseTracker
from sessionlens.engine.tool_linker import (
    READ_TOOL_NAME,
    SPAWN_TOOL_NAME,
    is_task_coordination_tool,
)
from sessionlens.models import (
    ClaudeMdInjection,
    CompactionMarker,
    ConfigFileInfo,
    ContextInjection,
    ContextPhaseInfo,
    ContextStats,
    FileReference,
    MentionedFileInjection,
    TaskCoordinationBreakdown,
    TaskCoordinationInjection,
    TextBlock,
    ThinkingBlock,
    ThinkingTextInjection,
    TokensByCategory,
    ToolOutputInjection,
    ToolTokenBreakdown,
    Turn,
    UserMessage,
    UserMessageInjection,
)
from sessionlens.path_utils import (
    directory_source_candidates,
    global_source_candidates,
    is_global_project_source,
    normalize_for_comparison,
    path_hash,
    relative_display_name,
    resolve_path,
)
from sessionlens.token_utils import estimate_tokens

logger = logging.getLogger("sessionlens.context")

MAX_MENTIONED_FILE_TOKENS = 25000
USER_MESSAGE_PREVIEW_CHARS = 80

_CATEGORY_FIELDS = {
    "claude-md": "claudeMd",
    "mentioned-file": "mentionedFiles",
    "tool-output": "toolOutputs",
    "thinking-text": "thinkingText",
    "task-coordination": "taskCoordination",
    "user-message": "userMessages",
}


# ── Identity ───────────────────────────────────────────────────────

def claude_md_injection_id(path: str) -> str:
    return f"cmd-{path_hash(normalize_for_comparison(path))}"


def mentioned_file_injection_id(path: str) -> str:
    return f"mf-{path_hash(normalize_for_comparison(path))}"


def tool_output_injection_id(turn_index: int) -> str:
    return f"tool-output-ai-{turn_index}"


def thinking_text_injection_id(turn_index: int) -> str:
    return f"thinking-text-ai-{turn_index}"


def task_coordination_injection_id(turn_index: int) -> str:
    return f"task-coord-ai-{turn_index}"


def user_message_injection_id(turn_index: int) -> str:
    return f"user-msg-ai-{turn_index}"


# ── Inputs ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ContextSources:
    """Everything the fold needs to know about the outside world, resolved up front.

    File maps are keyed by separator-normalized absolute path.
    """

    project_root: str
    home_dir: str = ""
    enterprise_path: str = ""
    global_files: Mapping[str, ConfigFileInfo] = field(default_factory=dict)
    directory_files: Mapping[str, ConfigFileInfo] = field(default_factory=dict)
    mentioned_files: Mapping[str, ConfigFileInfo] = field(default_factory=dict)

    def lookup(self, table: Mapping[str, ConfigFileInfo], path: str) -> Optional[ConfigFileInfo]:
        return table.get(normalize_for_comparison(path))


@dataclass(frozen=True)
class ContextAccumulator:
    """Injection set carried from one turn to the next within a phase."""

    injections: tuple[ContextInjection, ...] = ()
    seen_ids: frozenset[str] = frozenset()
    seen_paths: frozenset[str] = frozenset()
    globals_loaded: bool = False


@dataclass(frozen=True)
class TurnContextInput:
    turn: Turn
    user_message: Optional[UserMessage]
    phase_number: int


@dataclass(frozen=True)
class ContextPaths:
    global_paths: tuple[str, ...]
    directory_paths: tuple[str, ...]
    mentioned_paths: tuple[str, ...]


# ── Path extraction ────────────────────────────────────────────────

def read_tool_paths(turn: Turn) -> list[str]:
    paths: list[str] = []
    for item in turn.linkedTools.values():
        if item.name != READ_TOOL_NAME:
            continue
        value = item.input.get("file_path") or item.input.get("path")
        if isinstance(value, str) and value.strip():
            paths.append(value.strip())
    return paths


def meta_file_references(turn: Turn) -> list[FileReference]:
    references: list[FileReference] = []
    for record in turn.records:
        if record.kind == "user" and record.isMeta:
            references.extend(record.fileReferences)
    return references


def _mentioned_references(turn: Turn, user_message: Optional[UserMessage]) -> list[FileReference]:
    references = list(user_message.fileReferences) if user_message else []
    references.extend(meta_file_references(turn))
    return references


def _touched_paths(turn: Turn, user_message: Optional[UserMessage], project_root: str) -> list[str]:
    paths = [resolve_path(project_root, path) for path in read_tool_paths(turn)]
    paths.extend(resolve_path(project_root, ref.path) for ref in _mentioned_references(turn, user_message))
    return paths


def _directory_candidates(turn: Turn, user_message: Optional[UserMessage], project_root: str) -> list[str]:
    candidates: list[str] = []
    for path in _touched_paths(turn, user_message, project_root):
        for candidate in directory_source_candidates(path, project_root):
            if not is_global_project_source(candidate, project_root):
                candidates.append(candidate)
    return candidates


def _pair_turns_with_prompts(items: Iterable[object]) -> list[tuple[Turn, Optional[UserMessage]]]:
    pairs: list[tuple[Turn, Optional[UserMessage]]] = []
    previous_user: Optional[UserMessage] = None
    for item in items:
        if isinstance(item, UserMessage):
            previous_user = item
        elif isinstance(item, CompactionMarker):
            previous_user = None
        elif isinstance(item, Turn):
            user = previous_user if previous_user and item.userMessageId == previous_user.id else None
            pairs.append((item, user))
            previous_user = None
    return pairs


def collect_context_paths(
    items: Sequence[object],
    project_root: str,
    home_dir: str = "",
    enterprise_path: str = "",
) -> ContextPaths:
    """Every path whose existence and size the fold may ask about, deduplicated in order."""
    global_paths = [path for _, path in global_source_candidates(project_root, home_dir, enterprise_path)]
    directory_paths: list[str] = []
    mentioned_paths: list[str] = []
    for turn, user_message in _pair_turns_with_prompts(items):
        directory_paths.extend(_directory_candidates(turn, user_message, project_root))
        mentioned_paths.extend(
            resolve_path(project_root, ref.path) for ref in _mentioned_references(turn, user_message)
        )

    def unique(paths: Iterable[str]) -> tuple[str, ...]:
        seen: set[str] = set()
        ordered: list[str] = []
        for path in paths:
            key = normalize_for_comparison(path)
            if key not in seen:
                seen.add(key)
                ordered.append(path)
        return tuple(ordered)

    return ContextPaths(
        global_paths=unique(global_paths),
        directory_paths=unique(directory_paths),
        mentioned_paths=unique(mentioned_paths),
    )


# ── Injection builders ─────────────────────────────────────────────

def _global_display_name(source: str, path: str, project_root: str) -> str:
    if source == "user":
        return "~/.claude/CLAUDE.md"
    if source == "enterprise":
        return path
    return relative_display_name(path, project_root)


def _global_injections(sources: ContextSources, turn: Turn) -> list[ClaudeMdInjection]:
    injections: list[ClaudeMdInjection] = []
    for source, path in global_source_candidates(sources.project_root, sources.home_dir, sources.enterprise_path):
        info = sources.lookup(sources.global_files, path)
        if info is None or not info.exists or info.estimatedTokens <= 0:
            continue
        injections.append(
            ClaudeMdInjection(
                id=claude_md_injection_id(path),
                path=path,
                source=source,
                displayName=_global_display_name(source, path, sources.project_root),
                isGlobal=True,
                estimatedTokens=info.estimatedTokens,
                firstSeenTurnIndex=turn.turnIndex,
                firstSeenInTurn=turn.id,
            )
        )
    return injections


def _tool_output_injection(turn: Turn) -> Optional[ToolOutputInjection]:
    breakdown: list[ToolTokenBreakdown] = []
    for item in turn.linkedTools.values():
        if is_task_coordination_tool(item.name):
            continue
        tokens = item.contextTokens
        if tokens <= 0:
            continue
        breakdown.append(
            ToolTokenBreakdown(
                toolName="Task (Subagent)" if item.name == SPAWN_TOOL_NAME else item.name,
                tokenCount=tokens,
                isError=item.result.isError if item.result else False,
                toolUseId=item.id,
            )
        )
    for slash in turn.slashInvocations:
        if slash.instructionsTokenCount > 0:
            breakdown.append(ToolTokenBreakdown(toolName=f"/{slash.name}", tokenCount=slash.instructionsTokenCount))

    total = sum(entry.tokenCount for entry in breakdown)
    if total == 0:
        return None
    return ToolOutputInjection(
        id=tool_output_injection_id(turn.turnIndex),
        estimatedTokens=total,
        firstSeenTurnIndex=turn.turnIndex,
        firstSeenInTurn=turn.id,
        toolCount=len(breakdown),
        toolBreakdown=breakdown,
    )


def _task_coordination_injection(turn: Turn) -> Optional[TaskCoordinationInjection]:
    breakdown: list[TaskCoordinationBreakdown] = []
    for item in turn.linkedTools.values():
        if not is_task_coordination_tool(item.name):
            continue
        tokens = item.contextTokens
        if tokens <= 0:
            continue
        label = item.name
        recipient = item.input.get("recipient")
        if item.name == "SendMessage" and isinstance(recipient, str) and recipient:
            label = f"SendMessage → {recipient}"
        breakdown.append(
            TaskCoordinationBreakdown(
                type="send-message" if item.name == "SendMessage" else "task-tool",
                toolName=item.name,
                tokenCount=tokens,
                label=label,
            )
        )
    for message in turn.teammateMessages:
        if message.tokenCount > 0:
            breakdown.append(
                TaskCoordinationBreakdown(
                    type="teammate-message",
                    tokenCount=message.tokenCount,
                    label=message.teammateId,
                )
            )

    total = sum(entry.tokenCount for entry in breakdown)
    if total == 0:
        return None
    return TaskCoordinationInjection(
        id=task_coordination_injection_id(turn.turnIndex),
        estimatedTokens=total,
        firstSeenTurnIndex=turn.turnIndex,
        firstSeenInTurn=turn.id,
        breakdown=breakdown,
    )


def _user_message_injection(turn: Turn, user_message: Optional[UserMessage]) -> Optional[UserMessageInjection]:
    if user_message is None:
        return None
    text = user_message.rawText or user_message.text
    tokens = estimate_tokens(text)
    if tokens == 0:
        return None
    preview = text if len(text) <= USER_MESSAGE_PREVIEW_CHARS else text[:USER_MESSAGE_PREVIEW_CHARS] + "…"
    return UserMessageInjection(
        id=user_message_injection_id(turn.turnIndex),
        estimatedTokens=tokens,
        firstSeenTurnIndex=turn.turnIndex,
        firstSeenInTurn=turn.id,
        textPreview=preview,
    )


def _thinking_text_injection(turn: Turn) -> Optional[ThinkingTextInjection]:
    thinking_tokens = 0
    text_tokens = 0
    for record in turn.records:
        if record.kind != "assistant":
            continue
        for block in record.content:
            if isinstance(block, ThinkingBlock):
                thinking_tokens += estimate_tokens(block.thinking)
            elif isinstance(block, TextBlock) and block.text.strip():
                text_tokens += estimate_tokens(block.text)
    total = thinking_tokens + text_tokens
    if total == 0:
        return None
    return ThinkingTextInjection(
        id=thinking_text_injection_id(turn.turnIndex),
        estimatedTokens=total,
        firstSeenTurnIndex=turn.turnIndex,
        firstSeenInTurn=turn.id,
        thinkingTokens=thinking_tokens,
        textTokens=text_tokens,
    )


def _sum_by_category(injections: Iterable[ContextInjection]) -> TokensByCategory:
    totals = {name: 0 for name in _CATEGORY_FIELDS.values()}
    for injection in injections:
        totals[_CATEGORY_FIELDS[injection.category]] += injection.estimatedTokens
    return TokensByCategory(**totals)


def _count_by_category(injections: Iterable[ContextInjection]) -> TokensByCategory:
    counts = {name: 0 for name in _CATEGORY_FIELDS.values()}
    for injection in injections:
        counts[_CATEGORY_FIELDS[injection.category]] += 1
    return TokensByCategory(**counts)


# ── Fold ───────────────────────────────────────────────────────────

def compute_turn_context(
    previous: ContextAccumulator,
    turn_input: TurnContextInput,
    sources: ContextSources,
) -> tuple[ContextAccumulator, ContextStats]:
    """Fold one turn into the accumulator; never mutates `previous`."""
    turn = turn_input.turn
    user_message = turn_input.user_message
    project_root = sources.project_root

    new_injections: list[ContextInjection] = []
    seen_ids = set(previous.seen_ids)
    seen_paths = set(previous.seen_paths)

    def admit(injection: ContextInjection, path: Optional[str] = None) -> None:
        if injection.id in seen_ids:
            return
        if path is not None:
            key = normalize_for_comparison(path)
            if key in seen_paths:
                return
            seen_paths.add(key)
        seen_ids.add(injection.id)
        new_injections.append(injection)

    if not previous.globals_loaded:
        for injection in _global_injections(sources, turn):
            admit(injection, injection.path)

    for candidate in _directory_candidates(turn, user_message, project_root):
        if normalize_for_comparison(candidate) in seen_paths:
            continue
        info = sources.lookup(sources.directory_files, candidate)
        if info is None or not info.exists or info.estimatedTokens <= 0:
            continue
        admit(
            ClaudeMdInjection(
                id=claude_md_injection_id(candidate),
                path=candidate,
                source="directory",
                displayName=relative_display_name(candidate, project_root),
                estimatedTokens=info.estimatedTokens,
                firstSeenTurnIndex=turn.turnIndex,
                firstSeenInTurn=turn.id,
            ),
            candidate,
        )

    for reference in _mentioned_references(turn, user_message):
        absolute_path = resolve_path(project_root, reference.path)
        if normalize_for_comparison(absolute_path) in seen_paths:
            continue
        info = sources.lookup(sources.mentioned_files, absolute_path)
        if info is None or not info.exists:
            logger.debug("Mentioned file %s is missing; excluded from context", absolute_path)
            continue
        if info.estimatedTokens > MAX_MENTIONED_FILE_TOKENS:
            logger.debug("Mentioned file %s exceeds %s tokens; excluded", absolute_path, MAX_MENTIONED_FILE_TOKENS)
            continue
        admit(
            MentionedFileInjection(
                id=mentioned_file_injection_id(absolute_path),
                path=absolute_path,
                displayName=reference.path,
                exists=True,
                estimatedTokens=info.estimatedTokens,
                firstSeenTurnIndex=turn.turnIndex,
                firstSeenInTurn=turn.id,
            ),
            absolute_path,
        )

    for injection in (
        _tool_output_injection(turn),
        _task_coordination_injection(turn),
        _user_message_injection(turn, user_message),
        _thinking_text_injection(turn),
    ):
        if injection is not None:
            admit(injection)

    accumulated = previous.injections + tuple(new_injections)
    tokens_by_category = _sum_by_category(accumulated)
    stats = ContextStats(
        turnId=turn.id,
        turnIndex=turn.turnIndex,
        phaseNumber=turn_input.phase_number,
        newInjections=new_injections,
        accumulatedInjections=list(accumulated),
        tokensByCategory=tokens_by_category,
        newCounts=_count_by_category(new_injections),
        totalEstimatedTokens=tokens_by_category.total(),
    )
    next_accumulator = ContextAccumulator(
        injections=accumulated,
        seen_ids=frozenset(seen_ids),
        seen_paths=frozenset(seen_paths),
        globals_loaded=True,
    )
    return next_accumulator, stats


def track_session_context(
    items: Sequence[object],
    sources: ContextSources,
) -> tuple[list[ContextStats], ContextPhaseInfo]:
    """Replay grouped items in order, resetting the accumulator at each compaction."""
    tracker = PhaseTracker()
    accumulator = ContextAccumulator()
    stats: list[ContextStats] = []
    previous_user: Optional[UserMessage] = None

    for item in items:
        if isinstance(item, UserMessage):
            previous_user = item
            continue
        if isinstance(item, CompactionMarker):
            tracker.on_compaction(item)
            accumulator = ContextAccumulator()
            previous_user = None
            continue
        if not isinstance(item, Turn):
            continue

        user_message = previous_user if previous_user and item.userMessageId == previous_user.id else None
        phase_number = tracker.on_turn(item)
        accumulator, turn_stats = compute_turn_context(
            accumulator,
            TurnContextInput(turn=item, user_message=user_message, phase_number=phase_number),
            sources,
        )
        stats.append(turn_stats)
        previous_user = None

    return stats, tracker.finish()
