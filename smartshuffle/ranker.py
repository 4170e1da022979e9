"""Recommendation ranker: turns a candidate pool into a smart shuffle queue."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import numpy as np

from smartshuffle.event_log import Clock, EventLog, utc_now
from smartshuffle.models import SmartShufflePolicy, Song, UserListeningProfile
from smartshuffle.preferences import PreferenceStore
from smartshuffle.profiles import ProfileStore, local_hour_and_weekday
from smartshuffle.scoring.base import ScoringContext, ScoringFactor
from smartshuffle.scoring.favourites import FavouritesFactor
from smartshuffle.scoring.preference import PreferenceFactor
from smartshuffle.scoring.similarity import SimilarityFactor
from smartshuffle.scoring.time_of_day import TimeOfDayFactor
from smartshuffle.similarity import SimilarityIndex

logger = logging.getLogger(__name__)

# Songs played within this window are dropped under ``explore_new``
RECENT_PLAY_WINDOW = timedelta(hours=24)

# Artists/genres with more full plays than this are favourites
FAVOURITE_THRESHOLD = 5

DEFAULT_LIMIT = 20


def default_factors(
    similarity_index: SimilarityIndex | None = None,
    similarity_weight: float = 0.0,
) -> list[ScoringFactor]:
    """Return the standard factor set, plus the similarity factor if configured."""
    factors: list[ScoringFactor] = [
        PreferenceFactor(),
        FavouritesFactor(),
        TimeOfDayFactor(),
    ]
    if similarity_index is not None and similarity_weight > 0:
        factors.append(SimilarityFactor(similarity_index, similarity_weight))
    return factors


class RecommendationRanker:
    """Ranks a caller-supplied candidate pool for one user under a policy.

    **Baseline mode** (``use_smart`` off): the pool is shuffled uniformly.

    **Smart mode**: every candidate starts from a uniform ``[0, 1)`` draw
    and gains the contribution of each enabled factor:

    ======================  ===========================================
    Policy flag             Contribution
    ======================  ===========================================
    prefer_highly_rated     ``preference_score × 2``
    explore_similar         ``+1.5`` favourite artist, ``+1.0`` genre
    respect_time_of_day     ``+0.5`` familiar genre in a habitual hour
    ======================  ===========================================

    Candidates are then sorted best-first. The random draw doubles as the
    tie-break, so repeated calls with identical inputs vary on purpose.

    In both modes ``explore_new`` removes every song the user played in
    the last 24 hours before truncation, and never puts them back to
    fill the result.

    The ranker only reads from its stores, so concurrent calls need no
    locking.

    Args:
        preferences: Source of per-(user, song) preferences.
        profiles: Source of listening profiles.
        event_log: Source of recent plays.
        factors: Scoring factors; defaults to :func:`default_factors`.
        rng: Random generator; a fresh unseeded one by default.
        clock: Returns the current UTC time.
        similarity_seed_count: Recent songs used as similarity seeds.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        profiles: ProfileStore,
        event_log: EventLog,
        factors: list[ScoringFactor] | None = None,
        rng: np.random.Generator | None = None,
        clock: Clock = utc_now,
        similarity_seed_count: int = 5,
    ) -> None:
        self._preferences = preferences
        self._profiles = profiles
        self._event_log = event_log
        self._factors = factors if factors is not None else default_factors()
        self._rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock
        self._similarity_seed_count = similarity_seed_count

    def recommend(
        self,
        user_id: str,
        policy: SmartShufflePolicy,
        candidate_pool: list[Song],
        limit: int = DEFAULT_LIMIT,
    ) -> list[Song]:
        """Return at most *limit* distinct songs from *candidate_pool*, best first.

        Args:
            user_id: The user requesting the queue. Must be non-empty.
            policy: Scoring toggles for this request.
            candidate_pool: Songs eligible for ranking. Duplicates (by
                ``song_id``) are collapsed to their first occurrence.
            limit: Maximum number of songs to return.

        Returns:
            Ranked list of songs; empty if the pool is empty or everything
            was excluded.

        Raises:
            ValueError: If *user_id* is empty or *limit* is negative.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        if limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit!r}")

        now = self._clock()
        candidates = _dedupe(candidate_pool)
        if policy.explore_new and candidates:
            recent = self._event_log.recent_song_ids(user_id, now - RECENT_PLAY_WINDOW)
            candidates = [s for s in candidates if s.song_id not in recent]

        if limit == 0 or not candidates:
            return []

        if not policy.use_smart:
            order = self._rng.permutation(len(candidates))[:limit]
            picks = [candidates[i] for i in order]
            logger.debug("Baseline shuffle for user %r: %d songs", user_id, len(picks))
            return picks

        context = self._build_context(user_id, policy, now)
        active = [f for f in self._factors if f.applies(policy)]

        scores = self._rng.random(len(candidates))
        for factor in active:
            scores += np.fromiter(
                (factor.score(song, context) for song in candidates),
                dtype=np.float64,
                count=len(candidates),
            )

        order = np.argsort(-scores, kind="stable")[:limit]
        picks = [candidates[i] for i in order]
        logger.debug(
            "Smart shuffle for user %r: %d of %d candidates, factors=%s",
            user_id,
            len(picks),
            len(candidates),
            [type(f).__name__ for f in active],
        )
        return picks

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_context(
        self, user_id: str, policy: SmartShufflePolicy, now: datetime
    ) -> ScoringContext:
        """Gather the read-only inputs for one smart ranking call."""
        profile = self._profiles.get(user_id) or UserListeningProfile(user_id=user_id)
        hour, _ = local_hour_and_weekday(now)

        seed_song_ids: list[str] = []
        if any(f.uses_seed_songs and f.applies(policy) for f in self._factors):
            seed_song_ids = self._event_log.recently_played(
                user_id, self._similarity_seed_count
            )

        return ScoringContext(
            user_id=user_id,
            profile=profile,
            preferences=(
                self._preferences.for_user(user_id) if policy.prefer_highly_rated else {}
            ),
            hour=hour,
            favourite_artists=profile.artist_preferences.keys_above(FAVOURITE_THRESHOLD),
            favourite_genres=profile.genre_preferences.keys_above(FAVOURITE_THRESHOLD),
            seed_song_ids=seed_song_ids,
        )


def _dedupe(songs: list[Song]) -> list[Song]:
    seen: set[str] = set()
    unique: list[Song] = []
    for song in songs:
        if song.song_id not in seen:
            seen.add(song.song_id)
            unique.append(song)
    return unique
