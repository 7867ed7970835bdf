"""Phase segmentation across compaction boundaries."""
from __future__ import annotations

from typing import Iterable, Optional

from sessionlens.model_identity import is_synthetic_model
from sessionlens.models import (
    CompactionMarker,
    CompactionTokenDelta,
    ContextPhase,
    ContextPhaseInfo,
    LogRecord,
    PhaseTokenBreakdown,
    Turn,
)


def _assistant_usage_totals(records: Iterable[LogRecord]) -> list[int]:
    return [
        record.usage.totalTokens
        for record in records
        if record.kind == "assistant" and record.usage is not None
    ]


def first_assistant_usage_total(turn: Turn) -> Optional[int]:
    totals = _assistant_usage_totals(turn.records)
    return totals[0] if totals else None


def last_assistant_usage_total(turn: Turn) -> Optional[int]:
    totals = _assistant_usage_totals(turn.records)
    return totals[-1] if totals else None


class PhaseTracker:
    """Tracks phase boundaries while turns are replayed in order.

    One tracker per reconstruction; it is never shared between sessions.
    """

    def __init__(self) -> None:
        self.phase_number = 1
        self._phases: list[ContextPhase] = []
        self._turn_phase_map: dict[str, int] = {}
        self._deltas: dict[str, CompactionTokenDelta] = {}
        self._first_turn_id: Optional[str] = None
        self._last_turn_id: Optional[str] = None
        self._compaction_id: Optional[str] = None
        self._last_turn: Optional[Turn] = None

    @property
    def at_phase_start(self) -> bool:
        return self._first_turn_id is None

    def _close_phase(self) -> None:
        if self._first_turn_id and self._last_turn_id:
            self._phases.append(
                ContextPhase(
                    phaseNumber=self.phase_number,
                    firstTurnId=self._first_turn_id,
                    lastTurnId=self._last_turn_id,
                    compactionId=self._compaction_id,
                )
            )

    def on_compaction(self, marker: CompactionMarker) -> None:
        self._close_phase()
        self.phase_number += 1
        self._compaction_id = marker.id
        self._first_turn_id = None
        self._last_turn_id = None

    def on_turn(self, turn: Turn) -> int:
        """Register a turn in the current phase and return its phase number."""
        if self.at_phase_start and self._compaction_id and self._last_turn is not None:
            pre_tokens = last_assistant_usage_total(self._last_turn)
            post_tokens = first_assistant_usage_total(turn)
            if pre_tokens is not None and post_tokens is not None:
                self._deltas[self._compaction_id] = CompactionTokenDelta(
                    preCompactionTokens=pre_tokens,
                    postCompactionTokens=post_tokens,
                    delta=post_tokens - pre_tokens,
                )

        self._turn_phase_map[turn.id] = self.phase_number
        if self._first_turn_id is None:
            self._first_turn_id = turn.id
        self._last_turn_id = turn.id
        self._last_turn = turn
        return self.phase_number

    def finish(self) -> ContextPhaseInfo:
        self._close_phase()
        return ContextPhaseInfo(
            phases=list(self._phases),
            compactionCount=self.phase_number - 1,
            turnPhaseMap=dict(self._turn_phase_map),
            compactionTokenDeltas=dict(self._deltas),
        )


def compute_context_consumption(items: Iterable[object]) -> tuple[Optional[int], list[PhaseTokenBreakdown]]:
    """Compaction-aware total of main-thread context input, with a per-phase breakdown.

    Each phase contributes its peak input size minus what survived the previous
    compaction. Returns (None, []) when no assistant response reported input usage.
    """
    last_input = 0
    compactions: list[list[int]] = []  # [pre, post] per compaction
    awaiting_post = False

    for item in items:
        if isinstance(item, CompactionMarker):
            compactions.append([last_input, 0])
            awaiting_post = True
            continue
        if not isinstance(item, Turn):
            continue
        for record in item.records:
            if record.kind != "assistant" or record.usage is None or is_synthetic_model(record.model):
                continue
            input_tokens = record.usage.contextInputTokens
            if input_tokens <= 0:
                continue
            if awaiting_post and compactions:
                compactions[-1][1] = input_tokens
                awaiting_post = False
            last_input = input_tokens

    if last_input <= 0:
        return None, []
    if not compactions:
        return last_input, [PhaseTokenBreakdown(phaseNumber=1, contribution=last_input, peakTokens=last_input)]

    breakdown: list[PhaseTokenBreakdown] = []
    total = 0
    previous_post = 0
    for index, (pre, post) in enumerate(compactions):
        contribution = pre - previous_post
        total += contribution
        breakdown.append(
            PhaseTokenBreakdown(
                phaseNumber=index + 1,
                contribution=contribution,
                peakTokens=pre,
                postCompaction=post,
            )
        )
        previous_post = post
    final_contribution = last_input - previous_post
    total += final_contribution
    breakdown.append(
        PhaseTokenBreakdown(
            phaseNumber=len(compactions) + 1,
            contribution=final_contribution,
            peakTokens=last_input,
        )
    )
    return total, breakdown
