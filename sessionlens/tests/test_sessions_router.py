import unittest

from fastapi import HTTPException

from sessionlens.models import ConversationGroup, SessionContext, SessionDetail, SessionMetrics, SessionNotFound, WaterfallData
from sessionlens.routers import sessions as sessions_router
from sessionlens.services.session_service import InvalidSessionReference


class _FakeSessionService:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []

    async def _lookup(self, view: str, project_id: str, session_id: str, value):
        self.calls.append((view, project_id, session_id))
        if session_id == "bad..id":
            raise InvalidSessionReference(f"Invalid session id: {session_id}")
        if session_id == "missing":
            return SessionNotFound(sessionId=session_id, reason="not found")
        return value

    async def get_detail(self, project_id, session_id):
        return await self._lookup("detail", project_id, session_id, SessionDetail(sessionId=session_id, projectId=project_id))

    async def get_groups(self, project_id, session_id):
        return await self._lookup("groups", project_id, session_id, [ConversationGroup(id="ai-0", kind="turn", turnIndex=0)])

    async def get_metrics(self, project_id, session_id):
        return await self._lookup("metrics", project_id, session_id, SessionMetrics(turnCount=3))

    async def get_waterfall(self, project_id, session_id):
        return await self._lookup("waterfall", project_id, session_id, WaterfallData())

    async def get_context(self, project_id, session_id):
        return await self._lookup("context", project_id, session_id, SessionContext(sessionId=session_id))


class SessionsRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.service = _FakeSessionService()

    async def test_detail_returns_reconstruction(self) -> None:
        detail = await sessions_router.get_session_detail("-repo", "S-main", service=self.service)
        self.assertEqual(detail.sessionId, "S-main")
        self.assertEqual(self.service.calls, [("detail", "-repo", "S-main")])

    async def test_views_route_to_matching_service_calls(self) -> None:
        groups = await sessions_router.get_session_groups("-repo", "S-main", service=self.service)
        metrics = await sessions_router.get_session_metrics("-repo", "S-main", service=self.service)
        waterfall = await sessions_router.get_session_waterfall("-repo", "S-main", service=self.service)
        context = await sessions_router.get_session_context("-repo", "S-main", service=self.service)

        self.assertEqual(groups[0].id, "ai-0")
        self.assertEqual(metrics.turnCount, 3)
        self.assertEqual(waterfall.items, [])
        self.assertEqual(context.sessionId, "S-main")
        self.assertEqual([call[0] for call in self.service.calls], ["groups", "metrics", "waterfall", "context"])

    async def test_missing_session_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.get_session_metrics("-repo", "missing", service=self.service)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_invalid_reference_is_400(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.get_session_detail("-repo", "bad..id", service=self.service)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("Invalid session id", ctx.exception.detail)


if __name__ == "__main__":
    unittest.main()
