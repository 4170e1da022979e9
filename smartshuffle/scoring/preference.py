"""Preference factor: favour songs the user keeps playing to the end."""

from __future__ import annotations

from smartshuffle.models import SmartShufflePolicy, Song
from smartshuffle.scoring.base import ScoringContext, ScoringFactor

PREFERENCE_MULTIPLIER = 2.0


class PreferenceFactor(ScoringFactor):
    """Adds ``preference_score × 2`` for songs the user has a record for.

    The multiplier lets a single net full play (score ``1``) outweigh the
    whole ``[0, 1)`` random term. Negative scores from repeated skips
    push songs down. Songs without a record contribute nothing.
    """

    def applies(self, policy: SmartShufflePolicy) -> bool:
        return policy.prefer_highly_rated

    def score(self, song: Song, context: ScoringContext) -> float:
        preference = context.preferences.get(song.song_id)
        if preference is None:
            return 0.0
        return preference.preference_score * PREFERENCE_MULTIPLIER
