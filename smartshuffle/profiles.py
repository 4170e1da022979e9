"""Listening profile store: per-user behavioural histograms."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from smartshuffle.models import NUMERIC_FEATURES, Song, UserListeningProfile

logger = logging.getLogger(__name__)


def local_hour_and_weekday(when: datetime) -> tuple[int, int]:
    """Return ``(hour, weekday)`` of *when* in local time, Sunday being ``0``."""
    local = when.astimezone()
    return local.hour, local.isoweekday() % 7


class ProfileStore:
    """Thread-safe in-memory store of :class:`~smartshuffle.models.UserListeningProfile`.

    Readers get deep copies from :meth:`get`, so a ranking call never sees
    a profile change halfway through. All increments for one event are
    applied under the store lock in :meth:`apply_full_play`.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._profiles: dict[str, UserListeningProfile] = {}

    def get(self, user_id: str) -> UserListeningProfile | None:
        """Return a snapshot of *user_id*'s profile, or ``None`` if none exists."""
        with self._lock:
            profile = self._profiles.get(user_id)
            return profile.copy() if profile else None

    def user_ids(self) -> list[str]:
        with self._lock:
            return list(self._profiles)

    def apply_full_play(
        self,
        user_id: str,
        song: Song,
        played_at: datetime,
        context: str | None = None,
    ) -> UserListeningProfile:
        """Fold one fully played song into *user_id*'s profile.

        Creates the profile on first use. Increments the hour and weekday
        buckets of *played_at*, the song's genre and artist, the context
        label when non-empty, and each numeric feature the song carries.

        Returns:
            A snapshot of the updated profile.
        """
        hour, weekday = local_hour_and_weekday(played_at)
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                profile = UserListeningProfile(user_id=user_id)
                self._profiles[user_id] = profile
                logger.debug("Created listening profile for user %r.", user_id)

            profile.time_of_day.increment(hour)
            profile.day_of_week.increment(weekday)
            if song.genre:
                profile.genre_preferences.increment(song.genre)
            if song.artist:
                profile.artist_preferences.increment(song.artist)
            for name in NUMERIC_FEATURES:
                value = song.feature(name)
                if value is not None:
                    profile.features[name].add(value)
            if context:
                profile.contexts.increment(context)
            profile.updated_at = played_at
            return profile.copy()
