"""Acceptance policy applied to analyzed replays."""

from models import AnalysisResult

MIN_DURATION_SECONDS = 120


class MinimumDurationFilter:
    """Reject games that ended at or before `min_seconds` (dodges, instant leaves)."""

    def __init__(self, min_seconds: int = MIN_DURATION_SECONDS):
        self.min_seconds = min_seconds

    def accept(self, result: AnalysisResult) -> bool:
        return result.duration_seconds > self.min_seconds
