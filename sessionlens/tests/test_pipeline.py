import json
import tempfile
import unittest
from pathlib import Path

from sessionlens.engine.pipeline import SessionPipeline, project_root_for, to_session_detail
from sessionlens.models import SessionNotFound
from sessionlens.parsers.records import parse_records
from sessionlens.pricing import PricingTable
from sessionlens.providers.filesystem import LocalFileSystemProvider
from sessionlens.tests.log_builders import assistant, compact_boundary, text, tool_result, tool_use, usage, user


class SessionPipelineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.home = self.root / "home"
        self.repo = self.root / "repo"
        (self.home / ".claude").mkdir(parents=True)
        self.repo.mkdir()
        self.pipeline = SessionPipeline(
            LocalFileSystemProvider(home_dir=str(self.home)),
            pricing=PricingTable({"claude-sonnet-4-5": {"input_cost_per_token": 3e-06, "output_cost_per_token": 1.5e-05}}),
            home_dir=str(self.home),
        )

    def _write_jsonl(self, lines: list[dict], relative_path: str = "projects/-repo/session-1.jsonl", trailing: str = "") -> Path:
        path = self.root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(json.dumps(line) for line in lines) + trailing, encoding="utf-8")
        return path

    def _conversation(self) -> list[dict]:
        cwd = str(self.repo)
        return [
            user("u1", "check @notes.md please", 0, cwd=cwd, gitBranch="main"),
            assistant("a1", [tool_use("toolu_1", "Read", {"file_path": f"{cwd}/src/app.py"})], 1, cwd=cwd, token_usage=usage(2000, 40)),
            user("u2", [tool_result("toolu_1", "print('hi')")], 2, cwd=cwd),
            assistant("a2", [text("Looks fine.")], 3, cwd=cwd, token_usage=usage(2100, 30)),
            compact_boundary("b1", 4),
            user("u3", "thanks", 5, cwd=cwd),
            assistant("a3", [text("Anytime.")], 6, cwd=cwd, token_usage=usage(900, 10)),
            {"type": "summary", "summary": "Reviewing the app entrypoint", "leafUuid": "a3"},
        ]

    async def test_reconstructs_context_from_disk(self) -> None:
        (self.repo / "CLAUDE.md").write_text("x" * 400, encoding="utf-8")
        (self.home / ".claude" / "CLAUDE.md").write_text("y" * 80, encoding="utf-8")
        (self.repo / "notes.md").write_text("n" * 40, encoding="utf-8")
        (self.repo / "src").mkdir()
        (self.repo / "src" / "CLAUDE.md").write_text("z" * 60, encoding="utf-8")
        path = self._write_jsonl(self._conversation())

        result = await self.pipeline.reconstruct(str(path), project_id="-repo")

        self.assertNotIsInstance(result, SessionNotFound)
        self.assertEqual(result.session_id, "session-1")
        self.assertEqual(result.project_root, str(self.repo))
        self.assertEqual(result.git_branch, "main")
        self.assertEqual(result.title, "Reviewing the app entrypoint")
        first = result.context_stats[0]
        self.assertEqual(first.tokensByCategory.claudeMd, 100 + 20 + 15)
        self.assertEqual(first.tokensByCategory.mentionedFiles, 10)
        self.assertEqual(first.totalEstimatedTokens, first.tokensByCategory.total())
        second = result.context_stats[1]
        self.assertEqual(second.phaseNumber, 2)
        self.assertEqual(second.tokensByCategory.claudeMd, 120)
        self.assertEqual(result.phase_info.compactionTokenDeltas["compact-b1"].delta, 910 - 2130)
        self.assertEqual(result.metrics.contextConsumption, 2100 + (900 - 900))
        self.assertFalse(result.is_ongoing)

    async def test_reconstruction_is_deterministic(self) -> None:
        path = self._write_jsonl(self._conversation())

        first = await self.pipeline.reconstruct(str(path))
        second = await self.pipeline.reconstruct(str(path))

        self.assertEqual(
            to_session_detail(first).model_dump_json(),
            to_session_detail(second).model_dump_json(),
        )

    async def test_missing_file_is_not_found(self) -> None:
        result = await self.pipeline.reconstruct(str(self.root / "projects" / "-repo" / "nope.jsonl"))

        self.assertIsInstance(result, SessionNotFound)
        self.assertEqual(result.sessionId, "nope")
        self.assertEqual(result.reason, "not found")

    async def test_partial_trailing_line_is_reported_not_raised(self) -> None:
        path = self._write_jsonl(self._conversation(), trailing='\n{"type": "assistant", "message": {"con')

        result = await self.pipeline.reconstruct(str(path))

        self.assertEqual(len(result.diagnostics), 1)
        self.assertEqual(len(result.turns), 2)
        detail = to_session_detail(result, project_id="-repo", todo_data=[{"content": "ship it"}])
        self.assertEqual(detail.todoData, [{"content": "ship it"}])
        self.assertEqual(detail.metrics.turnCount, 2)
        self.assertEqual(len(detail.diagnostics), 1)
        self.assertEqual(detail.chunks[0].type, "user")

    async def test_unusable_mentions_are_skipped(self) -> None:
        cwd = str(self.repo)
        for prompt in ("look at @" + "a" * 300 + ".md", "look at @foo\x00bar.md"):
            with self.subTest(prompt=prompt[:20]):
                path = self._write_jsonl(
                    [
                        user("u1", prompt, 0, cwd=cwd),
                        assistant("a1", [text("Nothing there.")], 1, cwd=cwd, token_usage=usage(500, 10)),
                    ]
                )

                result = await self.pipeline.reconstruct(str(path))

                self.assertNotIsInstance(result, SessionNotFound)
                self.assertEqual(len(result.turns), 1)
                self.assertEqual(result.context_stats[0].tokensByCategory.mentionedFiles, 0)

    async def test_nested_session_with_unusable_mention_still_resolves(self) -> None:
        cwd = str(self.repo)
        path = self._write_jsonl(
            [
                user("u1", "delegate the search", 0, cwd=cwd),
                assistant("a1", [tool_use("toolu_task", "Task", {"description": "Explore", "prompt": "search"})], 1, cwd=cwd),
                user("u2", [tool_result("toolu_task", "Done")], 5, cwd=cwd, toolUseResult={"agentId": "abc"}),
                assistant("a2", [text("Found it.")], 6, cwd=cwd),
            ]
        )
        self._write_jsonl(
            [
                user("s1", "search @" + "b" * 300 + ".md and @x\x00y.md", 2, cwd=cwd, isSidechain=True),
                assistant("s2", [text("config.py")], 3, cwd=cwd, isSidechain=True),
            ],
            relative_path="projects/-repo/session-1/subagents/agent-abc.jsonl",
        )

        result = await self.pipeline.reconstruct(str(path))

        self.assertNotIsInstance(result, SessionNotFound)
        self.assertEqual(result.subagents["toolu_task"].agentId, "abc")
        self.assertEqual([item.type for item in result.subagents["toolu_task"].items], ["user", "ai"])

    async def test_empty_file_yields_empty_reconstruction(self) -> None:
        path = self._write_jsonl([])

        result = await self.pipeline.reconstruct(str(path))

        self.assertEqual(result.items, [])
        self.assertEqual(result.context_stats, [])
        self.assertEqual(result.phase_info.compactionCount, 0)
        self.assertEqual(result.metrics.messageCount, 0)
        self.assertFalse(result.is_ongoing)


class ProjectRootTests(unittest.TestCase):
    def test_prefers_record_cwd_then_directory_name(self) -> None:
        records, _ = parse_records(json.dumps(user("u1", "hi", 0, cwd="/work/app")))
        self.assertEqual(project_root_for(records, "/p/-other/s.jsonl"), "/work/app")

        bare, _ = parse_records(json.dumps({"type": "summary", "summary": "x"}))
        self.assertEqual(project_root_for(bare, "/home/dev/.claude/projects/-work-app/s.jsonl"), "/work/app")


if __name__ == "__main__":
    unittest.main()
