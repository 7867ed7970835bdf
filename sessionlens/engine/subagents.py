"""Locate and recursively reconstruct sessions spawned by Task invocations."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from sessionlens.engine.tool_linker import SPAWN_TOOL_NAME
from sessionlens.models import LinkedToolItem, Subagent, Turn
from sessionlens.parsers import messages
from sessionlens.parsers.records import parse_records
from sessionlens.path_utils import normalize_for_comparison
from sessionlens.providers.filesystem import FileStat, FileSystemProvider

logger = logging.getLogger("sessionlens.subagents")

_AGENT_ID_PATTERN = re.compile(r"\bagentid\s*:\s*([A-Za-z0-9_-]+)\b", re.IGNORECASE)
_AGENT_FILE_PATTERN = re.compile(r"^agent-[A-Za-z0-9_-]+\.jsonl$")


@dataclass(frozen=True)
class SpawnRequest:
    item: LinkedToolItem
    agent_id: str
    prompt: str


@dataclass(frozen=True)
class LocatedSpawn:
    request: SpawnRequest
    path: str


# (spawn, nested file path, nested file text, visited session paths) -> Subagent
ReconstructNested = Callable[[SpawnRequest, str, str, frozenset[str]], Awaitable[Subagent]]


def spawn_agent_id(item: LinkedToolItem) -> str:
    """Agent id from the spawn result metadata, else from an `agentId: <id>` line."""
    if item.result is None:
        return ""
    metadata = item.result.toolUseResult
    if isinstance(metadata, dict):
        raw_agent_id = metadata.get("agentId")
        if isinstance(raw_agent_id, str) and raw_agent_id.strip():
            return raw_agent_id.strip()
    match = _AGENT_ID_PATTERN.search(item.result.content or "")
    return match.group(1).strip() if match else ""


def spawn_requests(turns: Iterable[Turn]) -> list[SpawnRequest]:
    requests: list[SpawnRequest] = []
    for turn in turns:
        for item in turn.linkedTools.values():
            if item.name != SPAWN_TOOL_NAME:
                continue
            prompt = item.input.get("prompt")
            requests.append(
                SpawnRequest(
                    item=item,
                    agent_id=spawn_agent_id(item),
                    prompt=prompt.strip() if isinstance(prompt, str) else "",
                )
            )
    return requests


def first_prompt_text(text: str) -> str:
    records, _ = parse_records(text)
    for record in records:
        if record.kind == "user" and messages.classify_user_record(record) == messages.PROMPT:
            return record.rawText.strip()
    return ""


async def _absent() -> FileStat:
    return FileStat(exists=False)


class SubagentResolver:
    """Resolves every spawn in a session against one `subagents` directory.

    `read_limit` bounds concurrent nested file reads and is shared by the whole
    recursive walk; it is never held while a nested session is being reconstructed.
    """

    def __init__(
        self,
        fs: FileSystemProvider,
        *,
        subagents_dir: str,
        reconstruct: ReconstructNested,
        read_limit: asyncio.Semaphore,
    ):
        self._fs = fs
        self._subagents_dir = subagents_dir.rstrip("/\\")
        self._reconstruct = reconstruct
        self._read_limit = read_limit

    def agent_path(self, agent_id: str) -> str:
        return f"{self._subagents_dir}/agent-{agent_id}.jsonl"

    async def _read(self, path: str) -> str:
        async with self._read_limit:
            return await self._fs.read_text(path)

    async def _agent_files(self) -> list[str]:
        if not (await self._fs.exists(self._subagents_dir)):
            return []
        try:
            names = await self._fs.list_dir(self._subagents_dir)
        except OSError as exc:
            logger.warning("Unable to list %s: %s", self._subagents_dir, exc)
            return []
        return [f"{self._subagents_dir}/{name}" for name in sorted(names) if _AGENT_FILE_PATTERN.match(name)]

    async def _locate(self, requests: list[SpawnRequest]) -> list[LocatedSpawn]:
        located: dict[str, LocatedSpawn] = {}
        claimed: set[str] = set()
        unmatched: list[SpawnRequest] = []

        direct = await asyncio.gather(
            *(self._fs.stat(self.agent_path(request.agent_id)) if request.agent_id else _absent() for request in requests)
        )
        for request, file_stat in zip(requests, direct):
            if request.agent_id and file_stat.exists:
                path = self.agent_path(request.agent_id)
                located[request.item.id] = LocatedSpawn(request=request, path=path)
                claimed.add(normalize_for_comparison(path))
            else:
                unmatched.append(request)

        if unmatched:
            candidates = await self._agent_files()
            prompts: dict[str, str] = {}
            for request in unmatched:
                if not request.prompt:
                    logger.debug("Spawn %s has no agent id and no prompt; unresolved", request.item.id)
                    continue
                for path in candidates:
                    key = normalize_for_comparison(path)
                    if key in claimed:
                        continue
                    if key not in prompts:
                        try:
                            prompts[key] = first_prompt_text(await self._read(path))
                        except OSError as exc:
                            logger.warning("Unable to read nested session %s: %s", path, exc)
                            prompts[key] = ""
                    if prompts[key] == request.prompt:
                        located[request.item.id] = LocatedSpawn(request=request, path=path)
                        claimed.add(key)
                        break
                else:
                    logger.debug("No nested session found for spawn %s", request.item.id)

        return [located[request.item.id] for request in requests if request.item.id in located]

    async def _resolve_one(self, spawn: LocatedSpawn, visited: frozenset[str]) -> Optional[Subagent]:
        key = normalize_for_comparison(spawn.path)
        if key in visited:
            logger.warning("Skipping spawn %s: %s is already being reconstructed", spawn.request.item.id, spawn.path)
            return None
        try:
            text = await self._read(spawn.path)
        except OSError as exc:
            logger.warning("Unable to read nested session %s: %s", spawn.path, exc)
            return None
        try:
            return await self._reconstruct(spawn.request, spawn.path, text, visited | {key})
        except (OSError, ValueError) as exc:
            logger.warning("Unable to reconstruct nested session %s: %s", spawn.path, exc)
            return None

    async def resolve(self, turns: Iterable[Turn], visited: frozenset[str]) -> dict[str, Subagent]:
        """Map spawn invocation id -> Subagent; unresolvable spawns are simply absent."""
        requests = spawn_requests(turns)
        if not requests:
            return {}
        located = await self._locate(requests)
        results = await asyncio.gather(*(self._resolve_one(spawn, visited) for spawn in located))
        return {
            spawn.request.item.id: subagent
            for spawn, subagent in zip(located, results)
            if subagent is not None
        }

