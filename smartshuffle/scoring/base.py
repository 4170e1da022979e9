"""Abstract base class and shared inputs for all scoring factors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from smartshuffle.models import (
    Histogram,
    SmartShufflePolicy,
    Song,
    UserListeningProfile,
    UserSongPreference,
)


@dataclass
class ScoringContext:
    """Read-only inputs shared by every factor during one ranking call.

    Attributes:
        user_id: The user being ranked for.
        profile: Snapshot of the user's listening profile, or an empty one
            if the user has none yet.
        preferences: The user's per-song preferences, keyed by song ID.
        hour: Local hour of the ranking call.
        favourite_artists: Artists chosen repeatedly by the user.
        favourite_genres: Genres chosen repeatedly by the user.
        seed_song_ids: The user's most recently played songs, filled only
            when a factor declares :attr:`ScoringFactor.uses_seed_songs`.
    """

    user_id: str
    profile: UserListeningProfile
    preferences: dict[str, UserSongPreference] = field(default_factory=dict)
    hour: int = 0
    favourite_artists: set[str] = field(default_factory=set)
    favourite_genres: set[str] = field(default_factory=set)
    seed_song_ids: list[str] = field(default_factory=list)

    @property
    def genre_preferences(self) -> Histogram:
        return self.profile.genre_preferences


class ScoringFactor(ABC):
    """One additive term of the smart shuffle score.

    The :class:`~smartshuffle.ranker.RecommendationRanker` starts every
    candidate from a uniform random draw and adds :meth:`score` for each
    factor whose :meth:`applies` returns ``True`` for the request policy.
    Factors must be side-effect free and return ``0.0`` when they have
    nothing to say about a song.
    """

    uses_seed_songs: bool = False

    @abstractmethod
    def applies(self, policy: SmartShufflePolicy) -> bool:
        """Return ``True`` if this factor is enabled by *policy*."""

    @abstractmethod
    def score(self, song: Song, context: ScoringContext) -> float:
        """Return this factor's contribution for *song*.

        Args:
            song: The candidate being scored.
            context: Inputs shared across the ranking call.

        Returns:
            A non-negative bonus, or any real number for signed factors.
        """
