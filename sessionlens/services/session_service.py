"""Session lookup by project/session id and view selection over reconstructions."""
from __future__ import annotations

import json
import logging
from typing import Any, Union

from sessionlens import config
from sessionlens.engine.pipeline import SessionPipeline, SessionReconstruction, to_session_detail
from sessionlens.engine.timeline import build_groups, build_waterfall
from sessionlens.models import (
    ConversationGroup,
    SessionContext,
    SessionDetail,
    SessionMetrics,
    SessionNotFound,
    WaterfallData,
)
from sessionlens.path_utils import (
    build_session_path,
    build_todo_path,
    is_valid_project_id,
    is_valid_session_id,
)
from sessionlens.pricing import load_pricing_table
from sessionlens.providers.filesystem import FileSystemProvider, LocalFileSystemProvider

logger = logging.getLogger("sessionlens.service")


class InvalidSessionReference(ValueError):
    """Raised when a project or session id fails validation."""


class SessionService:
    def __init__(
        self,
        fs: FileSystemProvider,
        pipeline: SessionPipeline,
        *,
        projects_dir: str,
        todos_dir: str,
    ):
        self._fs = fs
        self._pipeline = pipeline
        self._projects_dir = projects_dir
        self._todos_dir = todos_dir

    @classmethod
    def from_config(cls) -> "SessionService":
        fs = LocalFileSystemProvider(home_dir=config.HOME_DIR)
        pipeline = SessionPipeline(
            fs,
            pricing=load_pricing_table(config.PRICING_PATH),
            home_dir=config.HOME_DIR,
            enterprise_path=config.ENTERPRISE_CLAUDE_MD,
            concurrency=config.SUBAGENT_CONCURRENCY,
        )
        return cls(
            fs,
            pipeline,
            projects_dir=str(config.PROJECTS_DIR),
            todos_dir=str(config.TODOS_DIR),
        )

    def session_path(self, project_id: str, session_id: str) -> str:
        if not is_valid_project_id(project_id):
            raise InvalidSessionReference(f"Invalid project id: {project_id}")
        if not is_valid_session_id(session_id):
            raise InvalidSessionReference(f"Invalid session id: {session_id}")
        return build_session_path(self._projects_dir, project_id, session_id)

    async def load(self, project_id: str, session_id: str) -> Union[SessionReconstruction, SessionNotFound]:
        path = self.session_path(project_id, session_id)
        return await self._pipeline.reconstruct(path, session_id=session_id, project_id=project_id)

    async def read_todo_data(self, session_id: str) -> Any:
        """Companion task list, passed through uninterpreted; None when absent or unparseable."""
        path = build_todo_path(self._todos_dir, session_id)
        if not (await self._fs.exists(path)):
            return None
        try:
            return json.loads(await self._fs.read_text(path))
        except OSError as exc:
            logger.warning("Unable to read task list %s: %s", path, exc)
        except json.JSONDecodeError as exc:
            logger.debug("Task list %s is not valid JSON: %s", path, exc)
        return None

    async def get_detail(self, project_id: str, session_id: str) -> Union[SessionDetail, SessionNotFound]:
        result = await self.load(project_id, session_id)
        if isinstance(result, SessionNotFound):
            return result
        return to_session_detail(
            result,
            project_id=project_id,
            todo_data=await self.read_todo_data(session_id),
        )

    async def get_groups(self, project_id: str, session_id: str) -> Union[list[ConversationGroup], SessionNotFound]:
        result = await self.load(project_id, session_id)
        if isinstance(result, SessionNotFound):
            return result
        return build_groups(result.items, result.context_stats, result.phase_info, result.subagents)

    async def get_metrics(self, project_id: str, session_id: str) -> Union[SessionMetrics, SessionNotFound]:
        result = await self.load(project_id, session_id)
        if isinstance(result, SessionNotFound):
            return result
        return result.metrics

    async def get_waterfall(self, project_id: str, session_id: str) -> Union[WaterfallData, SessionNotFound]:
        result = await self.load(project_id, session_id)
        if isinstance(result, SessionNotFound):
            return result
        return build_waterfall(result.turns, result.subagents)

    async def get_context(self, project_id: str, session_id: str) -> Union[SessionContext, SessionNotFound]:
        result = await self.load(project_id, session_id)
        if isinstance(result, SessionNotFound):
            return result
        return SessionContext(sessionId=result.session_id, stats=result.context_stats, phaseInfo=result.phase_info)
