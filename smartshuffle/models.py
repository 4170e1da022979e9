"""Core domain dataclasses shared across all smart shuffle modules."""

from __future__ import annotations

import copy
from collections import Counter
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Hashable

# Fixed weights of the per-(user, song) preference score
PLAY_WEIGHT = 1.0
SKIP_WEIGHT = -0.5

# Numeric song attributes accumulated into the listening profile
NUMERIC_FEATURES = ("energy", "tempo")


def compute_preference_score(play_count: int, skip_count: int) -> float:
    """Return the preference score for the given counts.

    The score is always derived from the counts, never adjusted
    incrementally, so recomputing it any number of times is idempotent.
    """
    return play_count * PLAY_WEIGHT + skip_count * SKIP_WEIGHT


@dataclass(frozen=True)
class Song:
    """A single song in the catalogue.

    Attributes:
        song_id: Stable unique identifier for the song.
        title: Human-readable song title.
        artist: Performing artist, if known.
        genre: Genre label, if known.
        energy: Energy level in ``[0.0, 1.0]``, if analysed.
        tempo: Tempo in BPM, if analysed.
    """

    song_id: str
    title: str = ""
    artist: str | None = None
    genre: str | None = None
    energy: float | None = None
    tempo: float | None = None

    def feature(self, name: str) -> float | None:
        """Return the numeric feature *name* (``"energy"`` or ``"tempo"``)."""
        return getattr(self, name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Song:
        """Build a song from a JSON-style mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["song_id"] = str(kwargs["song_id"])
        return cls(**kwargs)


@dataclass(frozen=True)
class PlaybackEvent:
    """A single completed or abandoned attempt to play one song for one user.

    Events are append-only: once written to the
    :class:`~smartshuffle.event_log.EventLog` they are never changed.

    Attributes:
        user_id: The listening user.
        song_id: The song that was played.
        played_at: When playback ended. Assigned by the event log if ``None``.
        played_fully: Whether the song was listened to the end.
        skipped: Whether the user skipped the song. A skip implies the
            song was not fully played.
        context: Free-form activity label (``"workout"``, ``"study"``...).
        event_id: Server-generated identifier, assigned by the event log.
    """

    user_id: str
    song_id: str
    played_at: datetime | None = None
    played_fully: bool = False
    skipped: bool = False
    context: str | None = None
    event_id: int | None = None

    @property
    def is_full_play(self) -> bool:
        """``True`` if this event may contribute to the listening profile."""
        return self.played_fully and not self.skipped


@dataclass(frozen=True)
class UserSongPreference:
    """Interaction aggregate for one (user, song) pair.

    Records are immutable; the
    :class:`~smartshuffle.preferences.PreferenceStore` replaces them
    wholesale on every update.
    """

    user_id: str
    song_id: str
    play_count: int = 0
    skip_count: int = 0
    last_played_at: datetime | None = None
    preference_score: float = 0.0
    updated_at: datetime | None = None


class Histogram(Counter):
    """Frequency map with default-zero lookup.

    Missing keys read as ``0``, so callers never need to distinguish
    "never seen" from "seen zero times".
    """

    def increment(self, key: Hashable, amount: int = 1) -> int:
        """Add *amount* to *key* and return the new count."""
        self[key] += amount
        return self[key]

    def keys_above(self, threshold: int) -> set:
        """Return the set of keys whose count is strictly above *threshold*."""
        return {key for key, count in self.items() if count > threshold}


@dataclass
class FeatureAccumulator:
    """Running sum and count of one numeric feature.

    Lets the profile report a mean without storing raw history.
    """

    total: float = 0.0
    count: int = 0

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1

    @property
    def mean(self) -> float | None:
        if self.count == 0:
            return None
        return self.total / self.count


def _feature_accumulators() -> dict[str, FeatureAccumulator]:
    return {name: FeatureAccumulator() for name in NUMERIC_FEATURES}


@dataclass
class UserListeningProfile:
    """Aggregate listening behaviour for a single user.

    Built only from fully played, non-skipped events by the
    :class:`~smartshuffle.aggregator.ListeningProfileAggregator`. Every
    counter only ever increases.

    ==================  =========================================
    Histogram           Key
    ==================  =========================================
    time_of_day         Local hour, ``0``–``23``
    day_of_week         Local weekday, ``0`` = Sunday … ``6``
    genre_preferences   Song genre
    artist_preferences  Song artist
    contexts            Playback context label
    ==================  =========================================

    Attributes:
        user_id: Unique identifier for the user.
        features: One :class:`FeatureAccumulator` per numeric feature.
        updated_at: Time of the last applied event.
    """

    user_id: str
    time_of_day: Histogram = field(default_factory=Histogram)
    day_of_week: Histogram = field(default_factory=Histogram)
    genre_preferences: Histogram = field(default_factory=Histogram)
    artist_preferences: Histogram = field(default_factory=Histogram)
    contexts: Histogram = field(default_factory=Histogram)
    features: dict[str, FeatureAccumulator] = field(default_factory=_feature_accumulators)
    updated_at: datetime | None = None

    def feature_mean(self, name: str) -> float | None:
        """Return the mean of feature *name*, or ``None`` if never observed."""
        accumulator = self.features.get(name)
        return accumulator.mean if accumulator else None

    def copy(self) -> UserListeningProfile:
        """Return an independent snapshot of this profile."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation (histogram keys as strings)."""
        return {
            "user_id": self.user_id,
            "time_of_day": {str(k): v for k, v in self.time_of_day.items()},
            "day_of_week": {str(k): v for k, v in self.day_of_week.items()},
            "genre_preferences": dict(self.genre_preferences),
            "artist_preferences": dict(self.artist_preferences),
            "contexts": dict(self.contexts),
            "features": {
                name: {"sum": acc.total, "count": acc.count, "mean": acc.mean}
                for name, acc in self.features.items()
            },
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class SongSimilarity:
    """Similarity of *target_song_id* to *source_song_id*, in ``[0, 1]``."""

    source_song_id: str
    target_song_id: str
    score: float
    updated_at: datetime | None = None


@dataclass(frozen=True)
class SmartShufflePolicy:
    """Request-scoped toggles controlling which scoring factors are active.

    Every combination is valid; defaults mirror the player's settings screen.

    Attributes:
        use_smart: Score candidates; when ``False`` the pool is shuffled.
        prefer_highly_rated: Add the weighted per-song preference score.
        explore_similar: Boost favourite artists and genres.
        explore_new: Exclude songs played in the last 24 hours.
        respect_time_of_day: Boost familiar genres during habitual hours.
    """

    use_smart: bool = True
    prefer_highly_rated: bool = True
    explore_similar: bool = True
    explore_new: bool = True
    respect_time_of_day: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SmartShufflePolicy:
        """Build a policy from a mapping, keeping defaults for absent keys.

        Raises:
            ValueError: If a known flag is not a real boolean.
        """
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        flags = {k: v for k, v in data.items() if k in known}
        for name, value in flags.items():
            if not isinstance(value, bool):
                raise ValueError(f"policy flag {name} must be a boolean, got {value!r}")
        return cls(**flags)
