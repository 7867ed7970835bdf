import unittest

from sessionlens.engine.grouper import group_records
from sessionlens.engine.phases import PhaseTracker, compute_context_consumption
from sessionlens.models import CompactionMarker, Turn
from sessionlens.parsers.records import parse_records
from sessionlens.tests.log_builders import assistant, compact_boundary, text, to_jsonl, usage, user


def _items(entries):
    records, _ = parse_records(to_jsonl(entries))
    return group_records(records)


def _replay(items):
    tracker = PhaseTracker()
    numbers = []
    for item in items:
        if isinstance(item, CompactionMarker):
            tracker.on_compaction(item)
        elif isinstance(item, Turn):
            numbers.append(tracker.on_turn(item))
    return numbers, tracker.finish()


class PhaseTrackerTests(unittest.TestCase):
    def test_compaction_after_second_turn_starts_phase_two(self) -> None:
        items = _items(
            [
                user("u1", "one", 0),
                assistant("a1", [text("1")], 1, token_usage=usage(1000, 100)),
                user("u2", "two", 2),
                assistant("a2", [text("2")], 3, token_usage=usage(5000, 200)),
                assistant("a2b", [text("2b")], 4, token_usage=usage(6000, 300)),
                compact_boundary("b1", 5),
                user("u3", "three", 6),
                assistant("a3", [text("3")], 7, token_usage=usage(1500, 50)),
            ]
        )

        numbers, info = _replay(items)

        self.assertEqual(numbers, [1, 1, 2])
        self.assertEqual(info.compactionCount, 1)
        self.assertEqual(info.turnPhaseMap, {"ai-0": 1, "ai-1": 1, "ai-2": 2})
        self.assertEqual(len(info.phases), 2)
        self.assertEqual((info.phases[0].firstTurnId, info.phases[0].lastTurnId), ("ai-0", "ai-1"))
        self.assertIsNone(info.phases[0].compactionId)
        self.assertEqual(info.phases[1].firstTurnId, "ai-2")
        self.assertEqual(info.phases[1].compactionId, "compact-b1")
        delta = info.compactionTokenDeltas["compact-b1"]
        self.assertEqual(delta.preCompactionTokens, 6300)
        self.assertEqual(delta.postCompactionTokens, 1550)
        self.assertEqual(delta.delta, 1550 - 6300)

    def test_phase_numbers_never_decrease(self) -> None:
        items = _items(
            [
                assistant("a1", [text("1")], 0),
                compact_boundary("b1", 1),
                compact_boundary("b2", 2),
                assistant("a2", [text("2")], 3),
                compact_boundary("b3", 4),
                assistant("a3", [text("3")], 5),
            ]
        )

        numbers, info = _replay(items)

        self.assertEqual(numbers, [1, 3, 4])
        self.assertEqual(numbers, sorted(numbers))
        self.assertEqual(info.compactionCount, 3)
        self.assertEqual([phase.phaseNumber for phase in info.phases], [1, 3, 4])

    def test_delta_is_omitted_without_usage(self) -> None:
        items = _items(
            [
                assistant("a1", [text("1")], 0),
                compact_boundary("b1", 1),
                assistant("a2", [text("2")], 2, token_usage=usage(100, 1)),
            ]
        )
        _, info = _replay(items)
        self.assertEqual(info.compactionTokenDeltas, {})
        self.assertEqual(info.compactionCount, 1)

    def test_no_compaction_means_single_phase(self) -> None:
        _, info = _replay(_items([user("u1", "hi", 0), assistant("a1", [text("yo")], 1)]))
        self.assertEqual(info.compactionCount, 0)
        self.assertEqual(len(info.phases), 1)
        self.assertEqual(info.compactionTokenDeltas, {})


class ContextConsumptionTests(unittest.TestCase):
    def test_single_phase_uses_last_input(self) -> None:
        items = _items(
            [
                assistant("a1", [text("1")], 0, token_usage=usage(100, 5, cache_read=400)),
                assistant("a2", [text("2")], 1, token_usage=usage(200, 5, cache_read=600, cache_creation=50)),
            ]
        )
        total, breakdown = compute_context_consumption(items)
        self.assertEqual(total, 850)
        self.assertEqual(len(breakdown), 1)
        self.assertEqual(breakdown[0].peakTokens, 850)

    def test_compaction_aware_total(self) -> None:
        items = _items(
            [
                assistant("a1", [text("1")], 0, token_usage=usage(10000, 5)),
                assistant("a2", [text("2")], 1, token_usage=usage(90000, 5)),
                compact_boundary("b1", 2),
                assistant("a3", [text("3")], 3, token_usage=usage(20000, 5)),
                assistant("a4", [text("4")], 4, token_usage=usage(50000, 5)),
            ]
        )

        total, breakdown = compute_context_consumption(items)

        self.assertEqual(total, 90000 + (50000 - 20000))
        self.assertEqual([entry.phaseNumber for entry in breakdown], [1, 2])
        self.assertEqual(breakdown[0].contribution, 90000)
        self.assertEqual(breakdown[0].postCompaction, 20000)
        self.assertEqual(breakdown[1].contribution, 30000)

    def test_synthetic_and_missing_usage_are_ignored(self) -> None:
        items = _items(
            [
                assistant("a1", [text("API error")], 0, token_usage=usage(0, 0), model="<synthetic>"),
                assistant("a2", [text("no usage")], 1),
            ]
        )
        self.assertEqual(compute_context_consumption(items), (None, []))


if __name__ == "__main__":
    unittest.main()
