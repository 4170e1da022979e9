"""Listening profile aggregator: the single entry point for playback events."""

from __future__ import annotations

import logging

from smartshuffle.catalogue import SongCatalogue
from smartshuffle.event_log import EventLog
from smartshuffle.models import PlaybackEvent
from smartshuffle.preferences import PreferenceStore
from smartshuffle.profiles import ProfileStore

logger = logging.getLogger(__name__)


class ListeningProfileAggregator:
    """Records playback events and keeps the derived aggregates up to date.

    Every event goes through three steps, in order:

    1. Append to the :class:`~smartshuffle.event_log.EventLog`.
    2. Update the (user, song) record in the
       :class:`~smartshuffle.preferences.PreferenceStore`.
    3. For full, non-skipped plays only, fold the song's attributes into
       the user's profile in the :class:`~smartshuffle.profiles.ProfileStore`.

    Skips and partial plays refine per-song preference but never touch the
    profile. If step 3 fails the preference update from step 2 is kept.

    The event log is the durable copy. On startup, call
    :meth:`rebuild_from_log` to replay it and rebuild both stores.

    Args:
        event_log: Durable playback history.
        preferences: Per-(user, song) aggregates.
        profiles: Per-user listening profiles.
        catalogue: Source of song attributes for profile updates.
    """

    def __init__(
        self,
        event_log: EventLog,
        preferences: PreferenceStore,
        profiles: ProfileStore,
        catalogue: SongCatalogue,
    ) -> None:
        self._event_log = event_log
        self._preferences = preferences
        self._profiles = profiles
        self._catalogue = catalogue

    def record_playback(
        self,
        user_id: str,
        song_id: str,
        played_fully: bool,
        skipped: bool,
        context: str | None = None,
    ) -> PlaybackEvent:
        """Record one playback outcome for *user_id*.

        Args:
            user_id: The listening user. Must be non-empty.
            song_id: The song played. Must be non-empty.
            played_fully: Whether the song was played to the end.
            skipped: Whether the user skipped it.
            context: Optional activity label; blank strings are dropped.

        Returns:
            The stored :class:`~smartshuffle.models.PlaybackEvent`, with its
            server-assigned ``event_id`` and ``played_at``.

        Raises:
            ValueError: If *user_id* or *song_id* is empty, or *context* is
                not a string.
            StorageUnavailableError: If the event log cannot be written.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        if not song_id:
            raise ValueError("song_id must be non-empty")
        if context is not None and not isinstance(context, str):
            raise ValueError(f"context must be a string, got {context!r}")

        event = self._event_log.append(
            PlaybackEvent(
                user_id=user_id,
                song_id=song_id,
                played_fully=played_fully,
                skipped=skipped,
                context=(context.strip() or None) if context else None,
            )
        )
        self._apply_event(event)
        logger.debug(
            "Recorded playback user=%r song=%r fully=%s skipped=%s context=%r",
            user_id, song_id, played_fully, skipped, event.context,
        )
        return event

    def rebuild_from_log(self) -> int:
        """Replay every event in the log onto the preference and profile stores.

        Intended for startup, against empty stores; replaying onto stores
        that already hold the same events would double-count them.

        Returns:
            Number of events replayed.
        """
        events = self._event_log.all_events()
        for event in events:
            self._apply_event(event)
        logger.info(
            "Rebuilt aggregates from %d events (%d profiles).",
            len(events),
            len(self._profiles.user_ids()),
        )
        return len(events)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply_event(self, event: PlaybackEvent) -> None:
        """Apply steps 2 and 3 for an event already in the log."""
        self._preferences.upsert_on_playback(
            event.user_id,
            event.song_id,
            event.played_fully,
            event.skipped,
            now=event.played_at,
        )
        if not event.is_full_play:
            return

        song = self._catalogue.get_song(event.song_id)
        if song is None:
            logger.debug(
                "Song %r not in catalogue; profile of %r left unchanged.",
                event.song_id,
                event.user_id,
            )
            return
        self._profiles.apply_full_play(event.user_id, song, event.played_at, event.context)
