"""Append-only playback event log with optional JSON-lines durability."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from smartshuffle.errors import StorageUnavailableError
from smartshuffle.models import PlaybackEvent

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventLog:
    """Thread-safe append-only log of :class:`~smartshuffle.models.PlaybackEvent`.

    Events are kept in memory in append order. When *path* is given every
    appended event is also written as one JSON line before it becomes
    visible, so the file is the durable copy and :meth:`load` can rebuild
    the log after a restart. Events are also indexed by user, so per-user
    queries scale with that user's history.

    Args:
        path: Optional JSON-lines file backing the log.
        clock: Returns the current UTC time; used for events without
            ``played_at``.
    """

    def __init__(self, path: str | Path | None = None, clock: Clock = utc_now) -> None:
        self._path = Path(path) if path else None
        self._clock = clock
        self._lock = threading.Lock()
        self._events: list[PlaybackEvent] = []
        self._by_user: dict[str, list[PlaybackEvent]] = {}
        self._next_id = 1

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace the in-memory log with the contents of the backing file.

        Returns:
            Number of events loaded. ``0`` when there is no backing file yet.

        Raises:
            StorageUnavailableError: If the file exists but cannot be read
                or contains a malformed line.
        """
        if self._path is None or not self._path.exists():
            return 0
        try:
            with self._path.open(encoding="utf-8") as fh:
                events = [_event_from_json(line) for line in fh if line.strip()]
        except (OSError, ValueError, KeyError) as exc:
            raise StorageUnavailableError(f"Cannot read event log {self._path}: {exc}") from exc

        with self._lock:
            self._events = events
            self._by_user = {}
            for event in events:
                self._by_user.setdefault(event.user_id, []).append(event)
            self._next_id = max((e.event_id or 0 for e in events), default=0) + 1
        logger.info("Loaded %d playback events from %s.", len(events), self._path)
        return len(events)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, event: PlaybackEvent) -> PlaybackEvent:
        """Append *event*, assigning ``event_id`` and ``played_at`` if absent.

        Returns:
            The stored event.

        Raises:
            StorageUnavailableError: If the backing file cannot be written.
                The event is not added to the log in that case.
        """
        with self._lock:
            stored = replace(
                event,
                event_id=event.event_id if event.event_id is not None else self._next_id,
                played_at=event.played_at or self._clock(),
            )
            if self._path is not None:
                try:
                    with self._path.open("a", encoding="utf-8") as fh:
                        fh.write(_event_to_json(stored) + "\n")
                except OSError as exc:
                    raise StorageUnavailableError(
                        f"Cannot append to event log {self._path}: {exc}"
                    ) from exc
            self._events.append(stored)
            self._by_user.setdefault(stored.user_id, []).append(stored)
            self._next_id = max(self._next_id, stored.event_id) + 1
        return stored

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all_events(self) -> list[PlaybackEvent]:
        """Return a snapshot of every event in append order."""
        with self._lock:
            return list(self._events)

    def events_for_user(self, user_id: str) -> list[PlaybackEvent]:
        with self._lock:
            return list(self._by_user.get(user_id, ()))

    def recent_song_ids(self, user_id: str, since: datetime) -> set[str]:
        """Return IDs of songs *user_id* played strictly after *since*.

        Skips and partial plays count as plays here.
        """
        return {
            e.song_id
            for e in self.events_for_user(user_id)
            if e.played_at is not None and e.played_at > since
        }

    def recently_played(self, user_id: str, limit: int = 10) -> list[str]:
        """Return up to *limit* distinct song IDs, most recently played first."""
        events = sorted(
            self.events_for_user(user_id),
            key=lambda e: (e.played_at, e.event_id or 0),
            reverse=True,
        )
        seen: set[str] = set()
        song_ids: list[str] = []
        for event in events:
            if len(song_ids) >= limit:
                break
            if event.song_id not in seen:
                seen.add(event.song_id)
                song_ids.append(event.song_id)
        return song_ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def _event_to_json(event: PlaybackEvent) -> str:
    data: dict[str, Any] = asdict(event)
    data["played_at"] = event.played_at.isoformat() if event.played_at else None
    return json.dumps(data, sort_keys=True)


def _event_from_json(line: str) -> PlaybackEvent:
    data = json.loads(line)
    played_at = datetime.fromisoformat(data["played_at"]) if data.get("played_at") else None
    return PlaybackEvent(
        user_id=data["user_id"],
        song_id=data["song_id"],
        played_at=played_at,
        played_fully=bool(data.get("played_fully")),
        skipped=bool(data.get("skipped")),
        context=data.get("context"),
        event_id=data.get("event_id"),
    )
