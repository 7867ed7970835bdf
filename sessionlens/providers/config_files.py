"""Existence and token-size lookups for context source files."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from sessionlens.models import ConfigFileInfo
from sessionlens.path_utils import normalize_for_comparison
from sessionlens.providers.filesystem import FileSystemProvider
from sessionlens.token_utils import estimate_tokens

logger = logging.getLogger("sessionlens.context")


class ConfigFileReader:
    """Resolves ConfigFileInfo for candidate paths through a FileSystemProvider."""

    def __init__(self, fs: FileSystemProvider, *, concurrency: int = 8):
        self._fs = fs
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def read_info(self, path: str) -> ConfigFileInfo:
        async with self._semaphore:
            try:
                file_stat = await self._fs.stat(path)
                if not file_stat.exists or not file_stat.is_file:
                    return ConfigFileInfo(path=path, exists=False)
                text = await self._fs.read_text(path)
            except (OSError, ValueError) as exc:
                logger.debug("Unable to read context file %s: %s", path, exc)
                return ConfigFileInfo(path=path, exists=False)
        return ConfigFileInfo(
            path=path,
            exists=True,
            charCount=len(text),
            estimatedTokens=estimate_tokens(text),
        )

    async def read_many(self, paths: Iterable[str]) -> dict[str, ConfigFileInfo]:
        """Look up every path concurrently; result keys are separator-normalized."""
        unique = list(dict.fromkeys(paths))
        infos = await asyncio.gather(*(self.read_info(path) for path in unique))
        return {normalize_for_comparison(info.path): info for info in infos}
