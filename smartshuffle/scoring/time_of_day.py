"""Time-of-day factor: lean on familiar genres during habitual listening hours."""

from __future__ import annotations

from smartshuffle.models import SmartShufflePolicy, Song
from smartshuffle.scoring.base import ScoringContext, ScoringFactor

HABITUAL_HOUR_THRESHOLD = 5
TIME_OF_DAY_BONUS = 0.5


class TimeOfDayFactor(ScoringFactor):
    """Adds ``0.5`` to songs of any genre the user has played fully before,
    but only when the current hour has more than five full plays on record.
    """

    def applies(self, policy: SmartShufflePolicy) -> bool:
        return policy.respect_time_of_day

    def score(self, song: Song, context: ScoringContext) -> float:
        if context.profile.time_of_day[context.hour] <= HABITUAL_HOUR_THRESHOLD:
            return 0.0
        if song.genre and context.genre_preferences[song.genre] > 0:
            return TIME_OF_DAY_BONUS
        return 0.0
