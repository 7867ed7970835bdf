import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

from sessionlens.scripts.inspect_session import _run
from sessionlens.tests.log_builders import assistant, text, to_jsonl, usage, user


class InspectSessionScriptTests(unittest.IsolatedAsyncioTestCase):
    def _write_jsonl(self, lines: list[dict], relative_path: str = "-repo/session.jsonl") -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(to_jsonl(lines), encoding="utf-8")
        return path

    async def _capture(self, *args) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = await _run(*args)
        return code, buffer.getvalue()

    async def test_metrics_summary_reports_unknown_cost_without_pricing(self) -> None:
        path = self._write_jsonl([user("u1", "hi", 0), assistant("a1", [text("hello")], 1, token_usage=usage(10, 5))])

        code, output = await self._capture(path, "metrics", "", False)

        self.assertEqual(code, 0)
        self.assertIn("Turns: 1", output)
        self.assertIn("Cost: unknown", output)

    async def test_context_view_as_json(self) -> None:
        path = self._write_jsonl([user("u1", "hi", 0), assistant("a1", [text("hello")], 1)])

        code, output = await self._capture(path, "context", "", True)

        self.assertEqual(code, 0)
        payload = json.loads(output)
        self.assertEqual(payload["sessionId"], "session")
        self.assertEqual(payload["stats"][0]["turnId"], "ai-0")

    async def test_missing_file_exits_nonzero(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)

        code, output = await self._capture(Path(tmpdir.name) / "missing.jsonl", "detail", "", False)

        self.assertEqual(code, 1)
        self.assertIn("Session not found", output)


if __name__ == "__main__":
    unittest.main()
