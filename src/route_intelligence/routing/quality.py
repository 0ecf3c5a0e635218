"""Scoring of observed completion quality."""

from __future__ import annotations

from ..core.statistics import clamp
from .base import CompletionOutcome

BASE_QUALITY = 0.7
CLEAN_FINISH_BONUS = 0.1
MAX_SATISFACTION = 5.0


def score_outcome(outcome: CompletionOutcome) -> float:
    """Score an outcome in [0, 1].

    A successful completion starts at 0.7 and gains 0.1 for a clean ``stop``
    finish. A satisfaction rating, when present, is averaged in as
    ``satisfaction / 5``. Failed calls score 0.
    """
    if not outcome.success:
        return 0.0

    quality = BASE_QUALITY
    if outcome.finish_reason == "stop":
        quality += CLEAN_FINISH_BONUS

    if outcome.user_satisfaction is not None:
        quality = (quality + outcome.user_satisfaction / MAX_SATISFACTION) / 2

    return clamp(quality)
