"""End-to-end session reconstruction: parse, group, track, resolve, build."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from sessionlens import observability
from sessionlens.date_utils import duration_ms
from sessionlens.engine.context_tracker import ContextSources, collect_context_paths, track_session_context
from sessionlens.engine.grouper import GroupedItem, group_records, turns_of
from sessionlens.engine.phases import compute_context_consumption
from sessionlens.engine.subagents import SpawnRequest, SubagentResolver
from sessionlens.engine.timeline import build_chunks, build_metrics, detect_ongoing
from sessionlens.models import (
    ContextPhaseInfo,
    ContextStats,
    LogRecord,
    ParseDiagnostic,
    SessionDetail,
    SessionMetrics,
    SessionNotFound,
    Subagent,
    Turn,
)
from sessionlens.parsers.records import parse_records
from sessionlens.path_utils import (
    basename,
    build_subagents_dir,
    decode_project_path,
    normalize_for_comparison,
    session_id_from_path,
    split_path,
)
from sessionlens.pricing import PricingTable
from sessionlens.providers.config_files import ConfigFileReader
from sessionlens.providers.filesystem import FileSystemProvider

logger = logging.getLogger("sessionlens.pipeline")


@dataclass(frozen=True)
class SessionReconstruction:
    """Every derived structure for one session file; built fresh on each call."""

    session_id: str
    file_path: str
    project_root: str
    records: list[LogRecord]
    diagnostics: list[ParseDiagnostic]
    items: list[GroupedItem]
    context_stats: list[ContextStats]
    phase_info: ContextPhaseInfo
    metrics: SessionMetrics
    subagents: dict[str, Subagent] = field(default_factory=dict)
    is_ongoing: bool = False
    git_branch: str = ""
    title: str = ""

    @property
    def turns(self) -> list[Turn]:
        return turns_of(self.items)


def project_root_for(records: list[LogRecord], session_path: str) -> str:
    """Working directory of the first record that has one, else the decoded project directory."""
    for record in records:
        if record.cwd:
            return record.cwd
    parts = split_path(session_path)
    if len(parts) >= 2:
        return decode_project_path(parts[-2])
    return ""


def _session_title(records: list[LogRecord]) -> str:
    for record in reversed(records):
        if record.kind == "summary" and record.rawText.strip():
            return record.rawText.strip()
    return ""


class SessionPipeline:
    """Reconstructs sessions through a FileSystemProvider.

    Holds only immutable collaborators, so one instance may serve concurrent calls.
    """

    def __init__(
        self,
        fs: FileSystemProvider,
        *,
        pricing: Optional[PricingTable] = None,
        home_dir: str = "",
        enterprise_path: str = "",
        concurrency: int = 8,
    ):
        self._fs = fs
        self._pricing = pricing or PricingTable()
        self._home_dir = home_dir
        self._enterprise_path = enterprise_path
        self._concurrency = max(1, concurrency)

    async def reconstruct(
        self,
        session_path: str,
        *,
        session_id: Optional[str] = None,
        project_id: str = "",
    ) -> Union[SessionReconstruction, SessionNotFound]:
        """Read and rebuild one session file; a missing or unreadable file yields SessionNotFound."""
        resolved_id = session_id or session_id_from_path(session_path)
        started = time.perf_counter()
        with observability.start_span("sessionlens.reconstruct", {"session.id": resolved_id, "project.id": project_id}):
            try:
                text = await self._fs.read_text(session_path)
            except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
                logger.info("Session %s not found at %s: %s", resolved_id, session_path, exc)
                observability.record_reconstruction("session", "not_found", 0.0, project_id=project_id)
                return SessionNotFound(sessionId=resolved_id, path=session_path, reason="not found")
            except OSError as exc:
                logger.warning("Session %s unreadable at %s: %s", resolved_id, session_path, exc)
                observability.record_reconstruction("session", "unreadable", 0.0, project_id=project_id)
                return SessionNotFound(sessionId=resolved_id, path=session_path, reason=f"unreadable: {exc}")

            read_limit = asyncio.Semaphore(self._concurrency)
            reconstruction = await self._reconstruct_text(
                resolved_id,
                session_path,
                text,
                subagents_dir=build_subagents_dir(session_path),
                visited=frozenset({normalize_for_comparison(session_path)}),
                read_limit=read_limit,
            )

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        observability.record_reconstruction("session", "success", elapsed_ms, project_id=project_id)
        self._record_telemetry(reconstruction, project_id)
        logger.debug(
            "Reconstructed %s: %s records, %s turns, %s subagents in %.1fms",
            resolved_id,
            len(reconstruction.records),
            len(reconstruction.turns),
            len(reconstruction.subagents),
            elapsed_ms,
        )
        return reconstruction

    async def reconstruct_text(self, session_id: str, session_path: str, text: str) -> SessionReconstruction:
        """Rebuild from already-read content, resolving subagents next to `session_path`."""
        return await self._reconstruct_text(
            session_id,
            session_path,
            text,
            subagents_dir=build_subagents_dir(session_path),
            visited=frozenset({normalize_for_comparison(session_path)}),
            read_limit=asyncio.Semaphore(self._concurrency),
        )

    async def _reconstruct_text(
        self,
        session_id: str,
        session_path: str,
        text: str,
        *,
        subagents_dir: str,
        visited: frozenset[str],
        read_limit: asyncio.Semaphore,
        nested: bool = False,
    ) -> SessionReconstruction:
        records, diagnostics = parse_records(text, source=session_path)
        project_root = project_root_for(records, session_path)
        items = group_records(records, include_sidechain=nested)
        turns = turns_of(items)

        context_paths = collect_context_paths(items, project_root, self._home_dir, self._enterprise_path)
        reader = ConfigFileReader(self._fs, concurrency=self._concurrency)
        global_files, directory_files, mentioned_files = await asyncio.gather(
            reader.read_many(context_paths.global_paths),
            reader.read_many(context_paths.directory_paths),
            reader.read_many(context_paths.mentioned_paths),
        )
        sources = ContextSources(
            project_root=project_root,
            home_dir=self._home_dir,
            enterprise_path=self._enterprise_path,
            global_files=global_files,
            directory_files=directory_files,
            mentioned_files=mentioned_files,
        )
        context_stats, phase_info = track_session_context(items, sources)

        async def reconstruct_nested(spawn: SpawnRequest, path: str, nested_text: str, nested_visited: frozenset[str]) -> Subagent:
            child = await self._reconstruct_text(
                spawn.agent_id or spawn.item.id,
                path,
                nested_text,
                subagents_dir=subagents_dir,
                visited=nested_visited,
                read_limit=read_limit,
                nested=True,
            )
            return _subagent_from(spawn, child)

        resolver = SubagentResolver(
            self._fs,
            subagents_dir=subagents_dir,
            reconstruct=reconstruct_nested,
            read_limit=read_limit,
        )
        subagents = await resolver.resolve(turns, visited)

        consumption, phase_breakdown = compute_context_consumption(items)
        metrics = build_metrics(
            records,
            turns,
            phase_info,
            self._pricing,
            context_consumption=consumption,
            phase_breakdown=phase_breakdown,
        )
        git_branch = next((record.gitBranch for record in records if record.gitBranch), "")
        return SessionReconstruction(
            session_id=session_id,
            file_path=session_path,
            project_root=project_root,
            records=records,
            diagnostics=diagnostics,
            items=items,
            context_stats=context_stats,
            phase_info=phase_info,
            metrics=metrics,
            subagents=subagents,
            is_ongoing=detect_ongoing(records, include_sidechain=nested),
            git_branch=git_branch,
            title=_session_title(records),
        )

    def _record_telemetry(self, reconstruction: SessionReconstruction, project_id: str) -> None:
        for turn in reconstruction.turns:
            for item in turn.linkedTools.values():
                observability.record_tool_result(
                    item.name,
                    item.status,
                    project_id=project_id,
                    duration_ms=float(item.durationMs or 0),
                )
        for model_cost in reconstruction.metrics.modelCosts:
            observability.record_token_cost(
                project_id=project_id,
                model=model_cost.model,
                token_input=model_cost.inputTokens + model_cost.cacheReadTokens + model_cost.cacheCreationTokens,
                token_output=model_cost.outputTokens,
                cost_usd=model_cost.costUsd,
            )


def _subagent_from(spawn: SpawnRequest, nested: SessionReconstruction) -> Subagent:
    description = spawn.item.input.get("description")
    subagent_type = spawn.item.input.get("subagent_type")
    turns = nested.turns
    start = turns[0].startTime if turns else None
    end = turns[-1].endTime if turns else None
    agent_id = spawn.agent_id or basename(nested.file_path).removeprefix("agent-").removesuffix(".jsonl")
    return Subagent(
        id=agent_id or spawn.item.id,
        invocationId=spawn.item.id,
        agentId=agent_id,
        description=description if isinstance(description, str) else "",
        subagentType=subagent_type if isinstance(subagent_type, str) else "",
        filePath=nested.file_path,
        items=nested.items,
        contextStats=nested.context_stats,
        phaseInfo=nested.phase_info,
        metrics=nested.metrics,
        subagents=list(nested.subagents.values()),
        isOngoing=nested.is_ongoing,
        startTime=start,
        endTime=end,
        durationMs=duration_ms(start, end),
    )


def to_session_detail(
    reconstruction: SessionReconstruction,
    *,
    project_id: str = "",
    todo_data: object = None,
) -> SessionDetail:
    timestamps = [record.timestamp for record in reconstruction.records if record.timestamp is not None]
    return SessionDetail(
        sessionId=reconstruction.session_id,
        projectId=project_id,
        filePath=reconstruction.file_path,
        projectRoot=reconstruction.project_root,
        gitBranch=reconstruction.git_branch,
        title=reconstruction.title,
        startTime=min(timestamps) if timestamps else None,
        endTime=max(timestamps) if timestamps else None,
        isOngoing=reconstruction.is_ongoing,
        chunks=build_chunks(
            reconstruction.items,
            reconstruction.context_stats,
            reconstruction.phase_info,
            reconstruction.subagents,
        ),
        metrics=reconstruction.metrics,
        contextStats=reconstruction.context_stats,
        phaseInfo=reconstruction.phase_info,
        subagents=list(reconstruction.subagents.values()),
        todoData=todo_data,
        diagnostics=reconstruction.diagnostics,
    )
