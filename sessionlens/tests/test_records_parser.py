import json
import unittest

from sessionlens.models import ImageBlock, LogRecord, ParseDiagnostic, TextBlock, ThinkingBlock, ToolResultBlock, ToolUseBlock, UnknownBlock
from sessionlens.parsers.records import decode_block, extract_file_references, parse_line, parse_records
from sessionlens.tests.log_builders import assistant, compact_boundary, compact_summary, text, thinking, to_jsonl, tool_result, tool_use, usage, user


class RecordParserTests(unittest.TestCase):
    def test_valid_lines_decode_into_typed_records(self) -> None:
        records, diagnostics = parse_records(
            to_jsonl(
                [
                    user("u1", "hello", 0),
                    assistant("a1", [thinking("hmm"), text("hi"), tool_use("toolu_1", "Read", {"file_path": "/repo/a.py"})], 1, token_usage=usage(10, 5, 100, 20)),
                    user("u2", [tool_result("toolu_1", "file body")], 2),
                ]
            )
        )

        self.assertEqual(diagnostics, [])
        self.assertEqual([record.kind for record in records], ["user", "assistant", "user"])
        self.assertEqual([record.lineNumber for record in records], [1, 2, 3])
        blocks = records[1].content
        self.assertIsInstance(blocks[0], ThinkingBlock)
        self.assertIsInstance(blocks[1], TextBlock)
        self.assertIsInstance(blocks[2], ToolUseBlock)
        self.assertEqual(blocks[2].input, {"file_path": "/repo/a.py"})
        self.assertEqual(records[1].usage.totalTokens, 135)
        self.assertEqual(records[1].usage.contextInputTokens, 130)
        self.assertEqual(records[1].model, "claude-sonnet-4-5-20250929")
        self.assertIsInstance(records[2].content[0], ToolResultBlock)
        self.assertEqual(records[2].content[0].toolUseId, "toolu_1")
        self.assertIsNone(records[0].usage)

    def test_malformed_and_unknown_lines_become_diagnostics(self) -> None:
        document = "\n".join(
            [
                json.dumps(user("u1", "hello", 0)),
                "{not json",
                json.dumps(["not", "an", "object"]),
                json.dumps({"type": "mystery", "uuid": "x"}),
                "",
                '{"type": "assistant", "uuid": "a1", "message": {"content": [',
            ]
        )

        records, diagnostics = parse_records(document)

        self.assertEqual([record.id for record in records], ["u1"])
        self.assertEqual([diagnostic.lineNumber for diagnostic in diagnostics], [2, 3, 4, 6])
        self.assertTrue(diagnostics[0].reason.startswith("invalid JSON"))
        self.assertIn("not a JSON object", diagnostics[1].reason)
        self.assertIn("mystery", diagnostics[2].reason)

    def test_blank_line_is_ignored(self) -> None:
        self.assertIsNone(parse_line("   ", 7))
        self.assertIsInstance(parse_line("nope", 7), ParseDiagnostic)

    def test_unknown_fields_are_preserved(self) -> None:
        entry = user("u1", "hello", 0, version="2.1.0", permissionMode="plan")
        record = parse_line(json.dumps(entry), 1)

        assert isinstance(record, LogRecord)
        self.assertEqual(record.extra["version"], "2.1.0")
        self.assertEqual(record.extra["permissionMode"], "plan")
        self.assertNotIn("message", record.extra)

    def test_unknown_block_types_are_carried_verbatim(self) -> None:
        block = decode_block({"type": "server_tool_use", "id": "x", "payload": 1})
        self.assertIsInstance(block, UnknownBlock)
        self.assertEqual(block.rawType, "server_tool_use")
        self.assertEqual(block.raw["payload"], 1)

        self.assertIsInstance(decode_block({"type": "image", "source": {"media_type": "image/png"}}), ImageBlock)
        redacted = decode_block({"type": "redacted_thinking", "data": "..."})
        self.assertIsInstance(redacted, ThinkingBlock)
        self.assertTrue(redacted.redacted)
        self.assertIsInstance(decode_block({"type": "tool_use", "name": "Read"}), UnknownBlock)

    def test_compaction_markers_from_both_sources(self) -> None:
        records, _ = parse_records(
            to_jsonl(
                [
                    compact_boundary("b1", 0),
                    compact_summary("s1", "Summary of earlier work", 1),
                ]
            )
        )

        self.assertEqual([record.kind for record in records], ["compaction-marker", "compaction-marker"])
        self.assertEqual(records[0].compactionSource, "boundary")
        self.assertEqual(records[1].compactionSource, "summary")
        self.assertEqual(records[1].rawText, "Summary of earlier work")

    def test_record_id_falls_back_to_line_number(self) -> None:
        entry = {"type": "summary", "summary": "Fixing the parser", "leafUuid": "leaf-1"}
        record = parse_line(json.dumps(entry), 4)
        assert isinstance(record, LogRecord)
        self.assertEqual(record.id, "leaf-1")
        self.assertEqual(record.rawText, "Fixing the parser")

        bare = parse_line(json.dumps({"type": "queue-operation"}), 9)
        assert isinstance(bare, LogRecord)
        self.assertEqual(bare.id, "line-9")

    def test_non_finite_token_counts_decode_as_zero(self) -> None:
        document = to_jsonl(
            [
                assistant(
                    "a1",
                    [text("hi")],
                    1,
                    token_usage={"input_tokens": float("inf"), "output_tokens": float("nan"), "cache_read_input_tokens": 7.0},
                ),
                user("u2", "next", 2),
            ]
        )
        self.assertIn("Infinity", document)

        records, diagnostics = parse_records(document)

        self.assertEqual(diagnostics, [])
        self.assertEqual([record.id for record in records], ["a1", "u2"])
        self.assertEqual(records[0].usage.inputTokens, 0)
        self.assertEqual(records[0].usage.outputTokens, 0)
        self.assertEqual(records[0].usage.cacheReadInputTokens, 7)

    def test_file_mentions_are_extracted_from_user_text(self) -> None:
        records, _ = parse_records(to_jsonl([user("u1", "look at @src/app.py and @docs/README.md, then email me@example.com", 0)]))

        self.assertEqual([ref.path for ref in records[0].fileReferences], ["src/app.py", "docs/README.md"])
        self.assertEqual(records[0].fileReferences[0].raw, "@src/app.py")

    def test_mentions_deduplicate_in_order(self) -> None:
        refs = extract_file_references("@a.py then @b.py then @a.py.")
        self.assertEqual([ref.path for ref in refs], ["a.py", "b.py"])

    def test_timestamps_are_utc_aware(self) -> None:
        records, _ = parse_records(to_jsonl([user("u1", "hi", 5)]))
        timestamp = records[0].timestamp
        self.assertIsNotNone(timestamp)
        assert timestamp is not None
        self.assertEqual(timestamp.utcoffset().total_seconds(), 0)
        self.assertEqual(timestamp.second, 5)


if __name__ == "__main__":
    unittest.main()
