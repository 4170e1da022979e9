"""Song catalogue: loads and caches the song library."""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Iterable

from smartshuffle.errors import NotFoundError
from smartshuffle.models import Song

logger = logging.getLogger(__name__)

SongLoader = Callable[[], Iterable[Song]]


class SongCatalogue:
    """Caches the song library supplied by an external loader.

    The catalogue is loaded synchronously on first call to :meth:`refresh`,
    then kept fresh by a background daemon thread that calls
    :meth:`refresh` every *refresh_interval_seconds*.

    Songs are immutable, so a snapshot returned by :meth:`list_songs`
    stays valid for the whole of a ranking call even if a refresh lands
    in the meantime.

    All public methods are thread-safe.

    Args:
        loader: Zero-argument callable returning the full song library,
            e.g. ``lambda: load_songs_json(path)``.
        refresh_interval_seconds: How often the background thread refreshes
            the catalogue. Defaults to 300 (5 minutes).
    """

    def __init__(self, loader: SongLoader, refresh_interval_seconds: int = 300) -> None:
        self._loader = loader
        self._refresh_interval = refresh_interval_seconds
        self._lock = threading.RLock()
        self._songs: dict[str, Song] = {}
        self._refresh_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Reload the library and replace the cache.

        On failure, logs an error and preserves the existing cache so the
        service can continue running.
        """
        try:
            new_songs = {song.song_id: song for song in self._loader()}
        except Exception:
            logger.exception(
                "Failed to refresh song catalogue; keeping existing %d songs.",
                len(self._songs),
            )
            return
        with self._lock:
            self._songs = new_songs
        logger.info("Song catalogue refreshed: %d songs loaded.", len(new_songs))

    def start_refresh_loop(self) -> None:
        """Start a background daemon thread that periodically calls :meth:`refresh`.

        Safe to call multiple times; only one refresh thread is started.
        """
        if self._refresh_thread is not None and self._refresh_thread.is_alive():
            return
        self._refresh_thread = threading.Thread(
            target=self._refresh_loop,
            name="catalogue-refresh",
            daemon=True,
        )
        self._refresh_thread.start()
        logger.debug("Catalogue refresh loop started (interval=%ds).", self._refresh_interval)

    def list_songs(self, genre: str | None = None, artist: str | None = None) -> list[Song]:
        """Return a snapshot of cached songs, optionally filtered.

        Args:
            genre: Keep only songs with this genre (case-insensitive).
            artist: Keep only songs by this artist (case-insensitive).

        Returns:
            List of :class:`~smartshuffle.models.Song` objects.
            Empty list if the catalogue has never been loaded.
        """
        with self._lock:
            songs = list(self._songs.values())
        if genre is not None:
            songs = [s for s in songs if s.genre and s.genre.casefold() == genre.casefold()]
        if artist is not None:
            songs = [s for s in songs if s.artist and s.artist.casefold() == artist.casefold()]
        return songs

    def get_song(self, song_id: str) -> Song | None:
        """Return a single song by ID, or ``None`` if not found."""
        with self._lock:
            return self._songs.get(song_id)

    def require_song(self, song_id: str) -> Song:
        """Return a single song by ID.

        Raises:
            NotFoundError: If *song_id* is not in the catalogue.
        """
        song = self.get_song(song_id)
        if song is None:
            raise NotFoundError(f"Unknown song {song_id!r}")
        return song

    def __len__(self) -> int:
        with self._lock:
            return len(self._songs)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _refresh_loop(self) -> None:
        """Periodically refresh the catalogue. Runs in a daemon thread."""
        while True:
            time.sleep(self._refresh_interval)
            self.refresh()


def load_songs_json(path: str | Path) -> list[Song]:
    """Read a JSON array of song objects from *path*.

    Each object needs at least ``song_id``; ``title``, ``artist``,
    ``genre``, ``energy`` and ``tempo`` are optional.
    """
    with open(path, encoding="utf-8") as fh:
        records = json.load(fh)
    return [Song.from_dict(record) for record in records]
