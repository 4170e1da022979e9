"""Optional similarity factor backed by the offline similarity index."""

from __future__ import annotations

from smartshuffle.models import SmartShufflePolicy, Song
from smartshuffle.scoring.base import ScoringContext, ScoringFactor
from smartshuffle.similarity import SimilarityIndex


class SimilarityFactor(ScoringFactor):
    """Adds ``weight × best similarity`` to any of the user's recent songs.

    Shares the ``explore_similar`` toggle with
    :class:`~smartshuffle.scoring.favourites.FavouritesFactor`. Pairs
    missing from the index count as zero similarity. Disabled when
    *weight* is zero.

    Args:
        index: The :class:`~smartshuffle.similarity.SimilarityIndex`.
        weight: Bonus for a perfect (``1.0``) similarity.
    """

    uses_seed_songs = True

    def __init__(self, index: SimilarityIndex, weight: float) -> None:
        self._index = index
        self._weight = weight

    def applies(self, policy: SmartShufflePolicy) -> bool:
        return policy.explore_similar and self._weight > 0

    def score(self, song: Song, context: ScoringContext) -> float:
        best = 0.0
        for seed_id in context.seed_song_ids:
            if seed_id == song.song_id:
                continue
            similarity = self._index.get(seed_id, song.song_id)
            if similarity is not None and similarity.score > best:
                best = similarity.score
        return best * self._weight
