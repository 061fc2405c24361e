"""Elapsed-time markers → integer percentages."""

from __future__ import annotations

import math


class ProgressTranslator:
    """Convert ffmpeg elapsed-time markers into monotonic percentages.

    ``update`` returns the new percentage only when it strictly exceeds the
    last one emitted, otherwise None.  With a non-positive total every marker
    counts as complete.
    """

    def __init__(self, total_duration: float):
        self.total_duration = total_duration
        self.last: int | None = None

    def percent(self, elapsed: float) -> int:
        if self.total_duration <= 0:
            return 100
        # halves round up
        pct = math.floor(max(0.0, elapsed) / self.total_duration * 100 + 0.5)
        return min(100, pct)

    def update(self, elapsed: float) -> int | None:
        pct = self.percent(elapsed)
        if self.last is not None and pct <= self.last:
            return None
        self.last = pct
        return pct
