"""Per-model token pricing from a LiteLLM-shaped rate table."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from sessionlens.model_identity import canonical_model_name
from sessionlens.models import TokenUsage

logger = logging.getLogger("sessionlens.pricing")

TIER_THRESHOLD = 200_000


def _rate(entry: Mapping[str, Any], key: str) -> Optional[float]:
    value = entry.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass(frozen=True)
class ModelRates:
    input: float
    output: float
    cache_read: float = 0.0
    cache_creation: float = 0.0
    input_above_threshold: Optional[float] = None
    output_above_threshold: Optional[float] = None
    cache_read_above_threshold: Optional[float] = None
    cache_creation_above_threshold: Optional[float] = None

    @classmethod
    def from_entry(cls, entry: Any) -> Optional["ModelRates"]:
        if not isinstance(entry, Mapping):
            return None
        input_rate = _rate(entry, "input_cost_per_token")
        output_rate = _rate(entry, "output_cost_per_token")
        if input_rate is None or output_rate is None:
            return None
        return cls(
            input=input_rate,
            output=output_rate,
            cache_read=_rate(entry, "cache_read_input_token_cost") or 0.0,
            cache_creation=_rate(entry, "cache_creation_input_token_cost") or 0.0,
            input_above_threshold=_rate(entry, "input_cost_per_token_above_200k_tokens"),
            output_above_threshold=_rate(entry, "output_cost_per_token_above_200k_tokens"),
            cache_read_above_threshold=_rate(entry, "cache_read_input_token_cost_above_200k_tokens"),
            cache_creation_above_threshold=_rate(entry, "cache_creation_input_token_cost_above_200k_tokens"),
        )


def calculate_tiered_cost(tokens: int, base_rate: float, tiered_rate: Optional[float] = None) -> float:
    if tokens <= 0:
        return 0.0
    if tiered_rate is None or tokens <= TIER_THRESHOLD:
        return tokens * base_rate
    return TIER_THRESHOLD * base_rate + (tokens - TIER_THRESHOLD) * tiered_rate


class PricingTable:
    """Model name -> rates, with exact, case-insensitive and canonical-name lookup."""

    def __init__(self, entries: Optional[Mapping[str, Any]] = None):
        self._rates: dict[str, ModelRates] = {}
        self._lowercase: dict[str, str] = {}
        self._canonical: dict[str, str] = {}
        for key, entry in (entries or {}).items():
            rates = ModelRates.from_entry(entry)
            if rates is None or not isinstance(key, str):
                continue
            self._rates[key] = rates
            self._lowercase.setdefault(key.lower(), key)
            self._canonical.setdefault(canonical_model_name(key), key)

    def __len__(self) -> int:
        return len(self._rates)

    def lookup(self, model: str) -> Optional[ModelRates]:
        if not model:
            return None
        if model in self._rates:
            return self._rates[model]
        key = self._lowercase.get(model.lower()) or self._canonical.get(canonical_model_name(model))
        return self._rates.get(key) if key else None

    def message_cost(self, model: str, usage: TokenUsage) -> Optional[float]:
        """Cost of one response, or None when the model has no rates."""
        rates = self.lookup(model)
        if rates is None:
            return None
        return (
            calculate_tiered_cost(usage.inputTokens, rates.input, rates.input_above_threshold)
            + calculate_tiered_cost(usage.outputTokens, rates.output, rates.output_above_threshold)
            + calculate_tiered_cost(usage.cacheReadInputTokens, rates.cache_read, rates.cache_read_above_threshold)
            + calculate_tiered_cost(
                usage.cacheCreationInputTokens,
                rates.cache_creation,
                rates.cache_creation_above_threshold,
            )
        )


def load_pricing_table(path: str | Path | None) -> PricingTable:
    """Load a JSON or YAML pricing table; problems degrade to an empty table."""
    if not path:
        return PricingTable()
    source = Path(path).expanduser()
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Pricing table %s unavailable: %s", source, exc)
        return PricingTable()
    try:
        if source.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        logger.warning("Pricing table %s could not be parsed: %s", source, exc)
        return PricingTable()
    if not isinstance(data, dict):
        logger.warning("Pricing table %s is not a mapping", source)
        return PricingTable()
    table = PricingTable(data)
    logger.info("Loaded pricing for %s models from %s", len(table), source)
    return table
