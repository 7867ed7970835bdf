"""Model identity helpers for pricing lookups and usage accounting."""
from __future__ import annotations

import re

_DATE_SUFFIX_PATTERN = re.compile(r"(?:-\d{8}|-\d{4}-\d{2}-\d{2})+$")

SYNTHETIC_MODEL = "<synthetic>"


def is_synthetic_model(raw_model: str | None) -> bool:
    """Placeholder responses the agent tool writes locally; never billed."""
    return (raw_model or "").strip() == SYNTHETIC_MODEL


def canonical_model_name(raw_model: str | None) -> str:
    """Return a canonical model identifier with build/date suffixes removed.

    Example:
      claude-opus-4-5-20251101 -> claude-opus-4-5
    """
    raw = (raw_model or "").strip().lower()
    if not raw:
        return ""
    normalized = re.sub(r"[\s_]+", "-", raw)
    normalized = re.sub(r"-{2,}", "-", normalized).strip("-")
    stripped = _DATE_SUFFIX_PATTERN.sub("", normalized).strip("-")
    return stripped or normalized
