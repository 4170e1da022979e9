"""Favourites factor: boost the user's repeatedly chosen artists and genres."""

from __future__ import annotations

from smartshuffle.models import SmartShufflePolicy, Song
from smartshuffle.scoring.base import ScoringContext, ScoringFactor

ARTIST_BONUS = 1.5
GENRE_BONUS = 1.0


class FavouritesFactor(ScoringFactor):
    """Adds ``1.5`` for a favourite artist and ``1.0`` for a favourite genre.

    The two bonuses stack. Favourites are derived once per ranking call
    by the ranker and handed over in the :class:`ScoringContext`.
    """

    def applies(self, policy: SmartShufflePolicy) -> bool:
        return policy.explore_similar

    def score(self, song: Song, context: ScoringContext) -> float:
        bonus = 0.0
        if song.artist and song.artist in context.favourite_artists:
            bonus += ARTIST_BONUS
        if song.genre and song.genre in context.favourite_genres:
            bonus += GENRE_BONUS
        return bonus
