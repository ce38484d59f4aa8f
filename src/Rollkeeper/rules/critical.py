from __future__ import annotations

from Rollkeeper.rules.types import Critical, CriticalThresholds, EvaluatedRoll

DEFAULT_FAILURE_THRESHOLD = 1
DEFAULT_SUCCESS_THRESHOLD = 20


def classify_critical(
    roll: EvaluatedRoll, thresholds: CriticalThresholds | None = None
) -> Critical:
    """Classify the natural (kept) primary d20 against crit thresholds.

    Non-d20 rolls are never critical. Success is checked before failure, so
    overlapping thresholds resolve as a success.
    """
    if roll.primary_faces != 20:
        return Critical.NONE
    failure = (thresholds and thresholds.failure_threshold) or DEFAULT_FAILURE_THRESHOLD
    success = (thresholds and thresholds.success_threshold) or DEFAULT_SUCCESS_THRESHOLD
    if roll.primary_value >= success:
        return Critical.SUCCESS
    if roll.primary_value <= failure:
        return Critical.FAILURE
    return Critical.NONE
