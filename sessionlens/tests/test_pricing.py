import json
import tempfile
import unittest
from pathlib import Path

from sessionlens.models import TokenUsage
from sessionlens.pricing import TIER_THRESHOLD, PricingTable, calculate_tiered_cost, load_pricing_table

_ENTRIES = {
    "claude-sonnet-4-5": {
        "input_cost_per_token": 3e-06,
        "output_cost_per_token": 1.5e-05,
        "cache_read_input_token_cost": 3e-07,
        "cache_creation_input_token_cost": 3.75e-06,
        "input_cost_per_token_above_200k_tokens": 6e-06,
    },
    "Claude-Haiku-4-5": {"input_cost_per_token": 1e-06, "output_cost_per_token": 5e-06},
    "broken-model": {"input_cost_per_token": "cheap"},
}


class PricingTableTests(unittest.TestCase):
    def _write(self, name: str, text: str) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / name
        path.write_text(text, encoding="utf-8")
        return path

    def test_lookup_exact_case_insensitive_and_canonical(self) -> None:
        table = PricingTable(_ENTRIES)

        self.assertEqual(len(table), 2)
        self.assertIsNotNone(table.lookup("claude-sonnet-4-5"))
        self.assertIsNotNone(table.lookup("claude-haiku-4-5"))
        self.assertIs(table.lookup("claude-sonnet-4-5-20250929"), table.lookup("claude-sonnet-4-5"))
        self.assertIsNone(table.lookup("broken-model"))
        self.assertIsNone(table.lookup("gpt-unknown"))
        self.assertIsNone(table.lookup(""))

    def test_message_cost_sums_every_token_kind(self) -> None:
        table = PricingTable(_ENTRIES)
        usage = TokenUsage(inputTokens=1000, outputTokens=200, cacheReadInputTokens=10000, cacheCreationInputTokens=400)

        cost = table.message_cost("claude-sonnet-4-5-20250929", usage)

        assert cost is not None
        self.assertAlmostEqual(cost, 1000 * 3e-06 + 200 * 1.5e-05 + 10000 * 3e-07 + 400 * 3.75e-06)
        self.assertIsNone(table.message_cost("gpt-unknown", usage))

    def test_tiered_cost_above_threshold(self) -> None:
        self.assertEqual(calculate_tiered_cost(0, 1.0, 2.0), 0.0)
        self.assertAlmostEqual(calculate_tiered_cost(100, 1e-06, 2e-06), 100 * 1e-06)
        self.assertAlmostEqual(
            calculate_tiered_cost(TIER_THRESHOLD + 1000, 1e-06, 2e-06),
            TIER_THRESHOLD * 1e-06 + 1000 * 2e-06,
        )
        self.assertAlmostEqual(calculate_tiered_cost(TIER_THRESHOLD + 1000, 1e-06), (TIER_THRESHOLD + 1000) * 1e-06)

    def test_load_json_and_yaml_tables(self) -> None:
        json_path = self._write("pricing.json", json.dumps(_ENTRIES))
        yaml_path = self._write(
            "pricing.yaml",
            "claude-opus-4-5:\n  input_cost_per_token: 5.0e-06\n  output_cost_per_token: 2.5e-05\n",
        )

        self.assertEqual(len(load_pricing_table(json_path)), 2)
        yaml_table = load_pricing_table(yaml_path)
        self.assertEqual(len(yaml_table), 1)
        self.assertIsNotNone(yaml_table.lookup("claude-opus-4-5-20251101"))

    def test_unusable_tables_degrade_to_empty(self) -> None:
        bad_json = self._write("pricing.json", "{not json")
        not_mapping = self._write("pricing.yml", "- just\n- a list\n")

        self.assertEqual(len(load_pricing_table(bad_json)), 0)
        self.assertEqual(len(load_pricing_table(not_mapping)), 0)
        self.assertEqual(len(load_pricing_table(bad_json.parent / "missing.json")), 0)
        self.assertEqual(len(load_pricing_table(None)), 0)


if __name__ == "__main__":
    unittest.main()
