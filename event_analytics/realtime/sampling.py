from __future__ import annotations

import random

from django.conf import settings

from event_analytics.tracking.models import SessionLog


class MoveSampler:
    """Decide whether a cursor sample is written to its SessionLog.

    Only raw ``move`` samples are thinned out; every other action is kept.
    """

    def __init__(self, rate: float, rng: random.Random | None = None):
        self.rate = min(max(float(rate), 0.0), 1.0)
        self._rng = rng or random.Random()  # noqa: S311 - not security sensitive

    @classmethod
    def from_settings(cls) -> MoveSampler:
        return cls(settings.TRACKING_MOVE_SAMPLE_RATE)

    def __call__(self, action: str) -> bool:
        if action != SessionLog.Action.MOVE:
            return True
        if self.rate >= 1.0:
            return True
        if self.rate <= 0.0:
            return False
        return self._rng.random() < self.rate
