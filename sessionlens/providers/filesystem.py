"""Filesystem access behind a transport-agnostic provider interface."""
from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class FileStat:
    exists: bool
    is_file: bool = False
    size: int = 0
    mtime: float = 0.0


class FileSystemProvider(ABC):
    """Read-only view of a local or remote filesystem.

    Implementations raise FileNotFoundError / OSError from `read_text` and
    `list_dir`; `stat` reports absence (or an unusable path) instead of raising.
    """

    @abstractmethod
    async def read_text(self, path: str) -> str: ...

    @abstractmethod
    async def list_dir(self, path: str) -> list[str]: ...

    @abstractmethod
    async def stat(self, path: str) -> FileStat: ...

    async def exists(self, path: str) -> bool:
        return (await self.stat(path)).exists


class LocalFileSystemProvider(FileSystemProvider):
    """Local disk access with blocking calls pushed onto worker threads."""

    def __init__(self, home_dir: Optional[str] = None):
        self._home_dir = home_dir

    def _resolve(self, path: str) -> Path:
        if path == "~" or path.startswith("~/") or path.startswith("~\\"):
            home = self._home_dir or str(Path.home())
            return Path(home) / path[2:] if len(path) > 1 else Path(home)
        return Path(path)

    async def read_text(self, path: str) -> str:
        target = self._resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")

    async def list_dir(self, path: str) -> list[str]:
        target = self._resolve(path)
        return sorted(await asyncio.to_thread(os.listdir, target))

    async def stat(self, path: str) -> FileStat:
        target = self._resolve(path)

        def _stat() -> FileStat:
            try:
                result = target.stat()
            except (OSError, ValueError):
                return FileStat(exists=False)
            return FileStat(
                exists=True,
                is_file=target.is_file(),
                size=result.st_size,
                mtime=result.st_mtime,
            )

        return await asyncio.to_thread(_stat)
