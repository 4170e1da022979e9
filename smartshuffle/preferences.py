"""Preference store: per-(user, song) play/skip aggregates."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from smartshuffle.event_log import Clock, utc_now
from smartshuffle.models import UserSongPreference, compute_preference_score

logger = logging.getLogger(__name__)


class PreferenceStore:
    """Thread-safe in-memory store of :class:`~smartshuffle.models.UserSongPreference`.

    :meth:`upsert_on_playback` is the only mutator and runs its whole
    read-compute-replace cycle under the store lock, so concurrent events
    for the same pair never lose an update. Records are immutable; readers
    always see a complete record.

    Args:
        clock: Returns the current UTC time.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._preferences: dict[tuple[str, str], UserSongPreference] = {}

    def get(self, user_id: str, song_id: str) -> UserSongPreference | None:
        """Return the preference for the pair, or ``None`` if never recorded."""
        with self._lock:
            return self._preferences.get((user_id, song_id))

    def for_user(self, user_id: str) -> dict[str, UserSongPreference]:
        """Return every preference of *user_id*, keyed by song ID."""
        with self._lock:
            return {
                song_id: pref
                for (uid, song_id), pref in self._preferences.items()
                if uid == user_id
            }

    def upsert_on_playback(
        self,
        user_id: str,
        song_id: str,
        played_fully: bool,
        skipped: bool,
        now: datetime | None = None,
    ) -> UserSongPreference:
        """Apply one playback outcome to the (user, song) aggregate.

        Increments ``play_count`` if *played_fully* and ``skip_count`` if
        *skipped*, then recomputes ``preference_score`` from the counts.
        ``last_played_at`` moves only on a full, non-skipped play. A missing
        record is created from zero counters.

        Args:
            user_id: The listening user.
            song_id: The song played.
            played_fully: Whether the song was played to the end.
            skipped: Whether the song was skipped.
            now: Event time; defaults to the store clock.

        Returns:
            The new record.
        """
        now = now or self._clock()
        key = (user_id, song_id)
        with self._lock:
            current = self._preferences.get(key) or UserSongPreference(user_id, song_id)
            play_count = current.play_count + (1 if played_fully else 0)
            skip_count = current.skip_count + (1 if skipped else 0)
            updated = UserSongPreference(
                user_id=user_id,
                song_id=song_id,
                play_count=play_count,
                skip_count=skip_count,
                last_played_at=now if played_fully and not skipped else current.last_played_at,
                preference_score=compute_preference_score(play_count, skip_count),
                updated_at=now,
            )
            self._preferences[key] = updated
        logger.debug(
            "Preference user=%r song=%r plays=%d skips=%d score=%.2f",
            user_id, song_id, play_count, skip_count, updated.preference_score,
        )
        return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._preferences)
