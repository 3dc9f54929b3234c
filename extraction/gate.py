"""Confidence gate for extracted facts."""

from __future__ import annotations

import math
from typing import Any, Optional

from core import GateDecision, GateMode


DEFAULT_THRESHOLD = 0.7


def _valid_confidence(confidence: Any) -> bool:
    if confidence is None or isinstance(confidence, bool):
        return False
    try:
        value = float(confidence)
    except (TypeError, ValueError):
        return False
    return not math.isnan(value) and 0.0 <= value <= 1.0


def decide(
    confidence: Optional[float],
    threshold: float = DEFAULT_THRESHOLD,
    mode: GateMode = GateMode.AUTO,
) -> GateDecision:
    """Route one fact.

    ``dry_run`` discards everything, ``review_only`` stages everything, and ``auto``
    applies facts at or above ``threshold``. A missing or out-of-range confidence is
    never applied automatically.
    """
    mode = GateMode(mode)
    if mode == GateMode.DRY_RUN:
        return GateDecision.DISCARD
    if mode == GateMode.REVIEW_ONLY or not _valid_confidence(confidence):
        return GateDecision.STAGE_FOR_REVIEW
    if float(confidence) >= threshold:
        return GateDecision.AUTO_APPLY
    return GateDecision.STAGE_FOR_REVIEW


class ConfidenceGate:
    def __init__(self, threshold: float = DEFAULT_THRESHOLD, mode: GateMode = GateMode.AUTO) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        self.threshold = threshold
        self.mode = GateMode(mode)

    @classmethod
    def from_settings(cls, settings: Any) -> "ConfidenceGate":
        mode = GateMode.REVIEW_ONLY if settings.review_only else GateMode.AUTO
        return cls(threshold=float(settings.confidence_threshold), mode=mode)

    def decide(self, confidence: Optional[float]) -> GateDecision:
        return decide(confidence, self.threshold, self.mode)
