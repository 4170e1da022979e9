"""Similarity index: sparse pairwise song similarity scores."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from smartshuffle.event_log import Clock, utc_now
from smartshuffle.models import SongSimilarity

logger = logging.getLogger(__name__)


class SimilarityIndex:
    """Thread-safe keyed store of :class:`~smartshuffle.models.SongSimilarity`.

    Scores are produced by an offline job; this class only stores and
    serves them. Pairs are ordered, so ``(a, b)`` and ``(b, a)`` are
    independent entries. A missing pair is not an error.

    Args:
        clock: Returns the current UTC time, stamped on upserts.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._scores: dict[tuple[str, str], SongSimilarity] = {}

    def get(self, source_song_id: str, target_song_id: str) -> SongSimilarity | None:
        with self._lock:
            return self._scores.get((source_song_id, target_song_id))

    def upsert(self, source_song_id: str, target_song_id: str, score: float) -> SongSimilarity:
        """Insert or replace the score for the ordered pair.

        Raises:
            ValueError: If *score* is outside ``[0, 1]``.
        """
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"Similarity score must be between 0 and 1, got {score!r}")
        record = SongSimilarity(
            source_song_id=source_song_id,
            target_song_id=target_song_id,
            score=float(score),
            updated_at=self._clock(),
        )
        with self._lock:
            self._scores[(source_song_id, target_song_id)] = record
        return record

    def neighbours(self, source_song_id: str) -> list[SongSimilarity]:
        """Return every stored pair starting at *source_song_id*, best first."""
        with self._lock:
            matches = [s for (src, _), s in self._scores.items() if src == source_song_id]
        return sorted(matches, key=lambda s: s.score, reverse=True)

    def load_json(self, path: str | Path) -> int:
        """Import ``[{"source": ..., "target": ..., "score": ...}, ...]`` from *path*.

        Entries with an out-of-range score are skipped with a warning.

        Returns:
            Number of pairs stored.
        """
        with open(path, encoding="utf-8") as fh:
            records = json.load(fh)
        loaded = 0
        for record in records:
            try:
                self.upsert(str(record["source"]), str(record["target"]), float(record["score"]))
            except ValueError as exc:
                logger.warning("Skipping similarity entry %r: %s", record, exc)
                continue
            loaded += 1
        logger.info("Loaded %d song similarity pairs from %s.", loaded, path)
        return loaded

    def __len__(self) -> int:
        with self._lock:
            return len(self._scores)
