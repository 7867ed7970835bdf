"""Pydantic models for reconstructed sessions, matching the UI payload shapes."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


# ── Raw record models ──────────────────────────────────────────────

class TokenUsage(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    cacheReadInputTokens: int = 0
    cacheCreationInputTokens: int = 0

    @property
    def totalTokens(self) -> int:
        return (
            self.inputTokens
            + self.outputTokens
            + self.cacheReadInputTokens
            + self.cacheCreationInputTokens
        )

    @property
    def contextInputTokens(self) -> int:
        return self.inputTokens + self.cacheReadInputTokens + self.cacheCreationInputTokens


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    redacted: bool = False


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    toolUseId: str
    content: Any = None
    isError: bool = False


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    mediaType: str = ""


class UnknownBlock(BaseModel):
    type: Literal["unknown"] = "unknown"
    rawType: str = ""
    raw: Any = None


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, ImageBlock, UnknownBlock],
    Field(discriminator="type"),
]


class FileReference(BaseModel):
    path: str
    raw: str = ""


class LogRecord(BaseModel):
    id: str
    kind: str  # "user" | "assistant" | "system" | "summary" | "file-history-snapshot" | "queue-operation" | "compaction-marker"
    lineNumber: int
    timestamp: Optional[datetime] = None
    parentId: Optional[str] = None
    role: Optional[str] = None
    content: list[ContentBlock] = Field(default_factory=list)
    rawText: str = ""
    usage: Optional[TokenUsage] = None
    model: str = ""
    messageId: str = ""
    cwd: str = ""
    gitBranch: str = ""
    agentId: str = ""
    isSidechain: bool = False
    isMeta: bool = False
    subtype: str = ""
    compactionSource: Optional[str] = None  # "boundary" | "summary"
    sourceToolUseId: Optional[str] = None
    toolUseResult: Any = None
    fileReferences: list[FileReference] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


class ParseDiagnostic(BaseModel):
    lineNumber: int
    reason: str
    snippet: str = ""


# ── Linked tools ───────────────────────────────────────────────────

class ToolResult(BaseModel):
    recordId: str
    content: str = ""
    isError: bool = False
    tokenCount: int = 0
    timestamp: Optional[datetime] = None
    toolUseResult: Any = None


class LinkedToolItem(BaseModel):
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    sourceRecordId: str = ""
    callTokens: int = 0
    result: Optional[ToolResult] = None
    skillInstructionsTokenCount: int = 0
    status: str = "running"  # "running" | "success" | "error"
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    durationMs: Optional[int] = None

    @property
    def resultTokens(self) -> int:
        return self.result.tokenCount if self.result else 0

    @property
    def contextTokens(self) -> int:
        return self.callTokens + self.resultTokens + self.skillInstructionsTokenCount


# ── Conversation items ─────────────────────────────────────────────

class UserMessage(BaseModel):
    type: Literal["user"] = "user"
    id: str
    lineNumber: int = 0
    timestamp: Optional[datetime] = None
    text: str = ""
    rawText: str = ""
    commandName: Optional[str] = None
    commandArgs: str = ""
    fileReferences: list[FileReference] = Field(default_factory=list)


class TeammateMessage(BaseModel):
    recordId: str
    teammateId: str
    text: str = ""
    tokenCount: int = 0
    timestamp: Optional[datetime] = None


class SlashInvocation(BaseModel):
    name: str
    recordId: str
    instructionsTokenCount: int = 0


class Turn(BaseModel):
    type: Literal["ai"] = "ai"
    id: str
    turnIndex: int
    userMessageId: Optional[str] = None
    records: list[LogRecord] = Field(default_factory=list)
    linkedTools: dict[str, LinkedToolItem] = Field(default_factory=dict)
    teammateMessages: list[TeammateMessage] = Field(default_factory=list)
    slashInvocations: list[SlashInvocation] = Field(default_factory=list)
    isInterrupted: bool = False
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    durationMs: Optional[int] = None


class CompactionMarker(BaseModel):
    type: Literal["compact"] = "compact"
    id: str
    recordId: str
    source: str = "boundary"  # "boundary" | "summary"
    timestamp: Optional[datetime] = None
    summary: str = ""
    trigger: str = ""
    preTokens: Optional[int] = None


class SystemEvent(BaseModel):
    type: Literal["system"] = "system"
    id: str
    recordId: str
    subtype: str = ""
    timestamp: Optional[datetime] = None
    text: str = ""
    isError: bool = False


ConversationItem = Annotated[
    Union[UserMessage, Turn, CompactionMarker, SystemEvent],
    Field(discriminator="type"),
]


# ── Context injections ─────────────────────────────────────────────

class ClaudeMdInjection(BaseModel):
    id: str
    category: Literal["claude-md"] = "claude-md"
    path: str
    source: str  # "enterprise" | "user" | "project" | "project-local" | "directory"
    displayName: str = ""
    isGlobal: bool = False
    estimatedTokens: int = 0
    firstSeenTurnIndex: int = 0
    firstSeenInTurn: str = ""


class MentionedFileInjection(BaseModel):
    id: str
    category: Literal["mentioned-file"] = "mentioned-file"
    path: str
    displayName: str = ""
    exists: bool = True
    estimatedTokens: int = 0
    firstSeenTurnIndex: int = 0
    firstSeenInTurn: str = ""


class ToolTokenBreakdown(BaseModel):
    toolName: str
    tokenCount: int
    isError: bool = False
    toolUseId: Optional[str] = None


class ToolOutputInjection(BaseModel):
    id: str
    category: Literal["tool-output"] = "tool-output"
    estimatedTokens: int = 0
    firstSeenTurnIndex: int = 0
    firstSeenInTurn: str = ""
    toolCount: int = 0
    toolBreakdown: list[ToolTokenBreakdown] = Field(default_factory=list)


class TaskCoordinationBreakdown(BaseModel):
    type: str  # "send-message" | "task-tool" | "teammate-message"
    tokenCount: int
    label: str
    toolName: Optional[str] = None


class TaskCoordinationInjection(BaseModel):
    id: str
    category: Literal["task-coordination"] = "task-coordination"
    estimatedTokens: int = 0
    firstSeenTurnIndex: int = 0
    firstSeenInTurn: str = ""
    breakdown: list[TaskCoordinationBreakdown] = Field(default_factory=list)


class UserMessageInjection(BaseModel):
    id: str
    category: Literal["user-message"] = "user-message"
    estimatedTokens: int = 0
    firstSeenTurnIndex: int = 0
    firstSeenInTurn: str = ""
    textPreview: str = ""


class ThinkingTextInjection(BaseModel):
    id: str
    category: Literal["thinking-text"] = "thinking-text"
    estimatedTokens: int = 0
    firstSeenTurnIndex: int = 0
    firstSeenInTurn: str = ""
    thinkingTokens: int = 0
    textTokens: int = 0


ContextInjection = Annotated[
    Union[
        ClaudeMdInjection,
        MentionedFileInjection,
        ToolOutputInjection,
        TaskCoordinationInjection,
        UserMessageInjection,
        ThinkingTextInjection,
    ],
    Field(discriminator="category"),
]


class TokensByCategory(BaseModel):
    claudeMd: int = 0
    mentionedFiles: int = 0
    toolOutputs: int = 0
    thinkingText: int = 0
    taskCoordination: int = 0
    userMessages: int = 0

    def total(self) -> int:
        return (
            self.claudeMd
            + self.mentionedFiles
            + self.toolOutputs
            + self.thinkingText
            + self.taskCoordination
            + self.userMessages
        )


class ContextStats(BaseModel):
    turnId: str
    turnIndex: int
    phaseNumber: int = 1
    newInjections: list[ContextInjection] = Field(default_factory=list)
    accumulatedInjections: list[ContextInjection] = Field(default_factory=list)
    tokensByCategory: TokensByCategory = Field(default_factory=TokensByCategory)
    newCounts: TokensByCategory = Field(default_factory=TokensByCategory)
    totalEstimatedTokens: int = 0


class ConfigFileInfo(BaseModel):
    path: str
    exists: bool = False
    charCount: int = 0
    estimatedTokens: int = 0


# ── Phases ─────────────────────────────────────────────────────────

class ContextPhase(BaseModel):
    phaseNumber: int
    firstTurnId: str
    lastTurnId: str
    compactionId: Optional[str] = None


class CompactionTokenDelta(BaseModel):
    preCompactionTokens: int
    postCompactionTokens: int
    delta: int


class ContextPhaseInfo(BaseModel):
    phases: list[ContextPhase] = Field(default_factory=list)
    compactionCount: int = 0
    turnPhaseMap: dict[str, int] = Field(default_factory=dict)
    compactionTokenDeltas: dict[str, CompactionTokenDelta] = Field(default_factory=dict)


class PhaseTokenBreakdown(BaseModel):
    phaseNumber: int
    contribution: int
    peakTokens: int
    postCompaction: Optional[int] = None


# ── Metrics ────────────────────────────────────────────────────────

class ModelCost(BaseModel):
    model: str
    inputTokens: int = 0
    outputTokens: int = 0
    cacheReadTokens: int = 0
    cacheCreationTokens: int = 0
    costUsd: Optional[float] = None


class SessionMetrics(BaseModel):
    messageCount: int = 0
    durationMs: int = 0
    inputTokens: int = 0
    outputTokens: int = 0
    cacheReadTokens: int = 0
    cacheCreationTokens: int = 0
    totalTokens: int = 0
    costUsd: Optional[float] = None
    modelCosts: list[ModelCost] = Field(default_factory=list)
    unpricedModels: list[str] = Field(default_factory=list)
    turnCount: int = 0
    toolCallCount: int = 0
    compactionCount: int = 0
    contextConsumption: Optional[int] = None
    phaseBreakdown: list[PhaseTokenBreakdown] = Field(default_factory=list)


# ── Subagents ──────────────────────────────────────────────────────

class Subagent(BaseModel):
    id: str
    invocationId: str
    agentId: str = ""
    description: str = ""
    subagentType: str = ""
    filePath: str = ""
    items: list[ConversationItem] = Field(default_factory=list)
    contextStats: list[ContextStats] = Field(default_factory=list)
    phaseInfo: ContextPhaseInfo = Field(default_factory=ContextPhaseInfo)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    subagents: list[Subagent] = Field(default_factory=list)
    isOngoing: bool = False
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    durationMs: Optional[int] = None


# ── Output views ───────────────────────────────────────────────────

class SubagentChunks(BaseModel):
    id: str
    agentId: str = ""
    description: str = ""
    subagentType: str = ""
    isOngoing: bool = False
    durationMs: Optional[int] = None
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    chunks: list[Chunk] = Field(default_factory=list)


class ChunkToolCall(BaseModel):
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    status: str = "running"
    resultText: Optional[str] = None
    isError: bool = False
    callTokens: int = 0
    resultTokens: int = 0
    durationMs: Optional[int] = None
    subagent: Optional[SubagentChunks] = None


class ChunkStep(BaseModel):
    type: str  # "thinking" | "text" | "tool" | "teammate" | "slash" | "interruption"
    text: str = ""
    tokenCount: int = 0
    timestamp: Optional[datetime] = None
    toolCall: Optional[ChunkToolCall] = None


class UserChunk(BaseModel):
    type: Literal["user"] = "user"
    id: str
    timestamp: Optional[datetime] = None
    text: str = ""
    commandName: Optional[str] = None
    fileReferences: list[FileReference] = Field(default_factory=list)


class AIChunk(BaseModel):
    type: Literal["ai"] = "ai"
    id: str
    turnIndex: int
    phaseNumber: int = 1
    model: str = ""
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    durationMs: Optional[int] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    contextTokens: int = 0
    steps: list[ChunkStep] = Field(default_factory=list)


class CompactChunk(BaseModel):
    type: Literal["compact"] = "compact"
    id: str
    timestamp: Optional[datetime] = None
    summary: str = ""
    phaseNumber: int = 2
    tokenDelta: Optional[CompactionTokenDelta] = None


class SystemChunk(BaseModel):
    type: Literal["system"] = "system"
    id: str
    timestamp: Optional[datetime] = None
    subtype: str = ""
    text: str = ""
    isError: bool = False


Chunk = Annotated[
    Union[UserChunk, AIChunk, CompactChunk, SystemChunk],
    Field(discriminator="type"),
]


class ConversationGroup(BaseModel):
    id: str
    kind: str  # "turn" | "compact" | "system" | "prompt"
    turnIndex: Optional[int] = None
    phaseNumber: int = 1
    userText: str = ""
    outputPreview: str = ""
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    durationMs: Optional[int] = None
    toolCount: int = 0
    toolNames: list[str] = Field(default_factory=list)
    subagentCount: int = 0
    contextTokens: int = 0


class WaterfallItem(BaseModel):
    id: str
    label: str
    kind: str  # "turn" | "tool" | "subagent"
    startTime: datetime
    endTime: datetime
    durationMs: int = 0
    depth: int = 0
    parentId: Optional[str] = None
    isError: bool = False
    tokenCount: int = 0


class WaterfallData(BaseModel):
    items: list[WaterfallItem] = Field(default_factory=list)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    totalDurationMs: int = 0


class SessionContext(BaseModel):
    sessionId: str
    stats: list[ContextStats] = Field(default_factory=list)
    phaseInfo: ContextPhaseInfo = Field(default_factory=ContextPhaseInfo)


class SessionDetail(BaseModel):
    sessionId: str
    projectId: str = ""
    filePath: str = ""
    projectRoot: str = ""
    gitBranch: str = ""
    title: str = ""
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    isOngoing: bool = False
    chunks: list[Chunk] = Field(default_factory=list)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    contextStats: list[ContextStats] = Field(default_factory=list)
    phaseInfo: ContextPhaseInfo = Field(default_factory=ContextPhaseInfo)
    subagents: list[Subagent] = Field(default_factory=list)
    todoData: Any = None
    diagnostics: list[ParseDiagnostic] = Field(default_factory=list)


class SessionNotFound(BaseModel):
    sessionId: str
    path: str = ""
    reason: str = ""


Subagent.model_rebuild()
SubagentChunks.model_rebuild()
ChunkToolCall.model_rebuild()
ChunkStep.model_rebuild()
AIChunk.model_rebuild()
SessionDetail.model_rebuild()
