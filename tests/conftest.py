"""Shared pytest fixtures for all smart shuffle tests."""

from __future__ import annotations

from datetime import datetime, timezone

import numpy as np
import pytest

from smartshuffle.aggregator import ListeningProfileAggregator
from smartshuffle.catalogue import SongCatalogue
from smartshuffle.event_log import EventLog
from smartshuffle.models import Song
from smartshuffle.preferences import PreferenceStore
from smartshuffle.profiles import ProfileStore
from smartshuffle.ranker import RecommendationRanker


TS = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: datetime = TS) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ---------------------------------------------------------------------------
# Song fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def song_jazz() -> Song:
    return Song("s_jazz", "Blue Hour", artist="Mina Lowe", genre="jazz", energy=0.3, tempo=92.0)


@pytest.fixture
def song_rock() -> Song:
    return Song("s_rock", "Static Lines", artist="The Pylons", genre="rock", energy=0.9, tempo=148.0)


@pytest.fixture
def song_bare() -> Song:
    """A song with no optional attributes at all."""
    return Song("s_bare", "Untitled Demo")


@pytest.fixture
def sample_songs(song_jazz, song_rock, song_bare) -> list[Song]:
    """10-song library spanning several artists and genres."""
    extra = [
        Song("s_jazz2", "Night Tram", artist="Mina Lowe", genre="jazz", energy=0.4),
        Song("s_jazz3", "Slow Smoke", artist="Otto Vey", genre="jazz", tempo=80.0),
        Song("s_rock2", "Fuse Box", artist="The Pylons", genre="rock"),
        Song("s_folk", "Harbour Rope", artist="Ada Fenn", genre="folk", energy=0.2),
        Song("s_folk2", "Hill Road", artist="Ada Fenn", genre="folk"),
        Song("s_pop", "Neon Gum", artist="Kiki Rae", genre="pop", energy=0.8, tempo=120.0),
        Song("s_pop2", "Glitter Bus", artist="Kiki Rae", genre="pop"),
    ]
    return [song_jazz, song_rock, song_bare] + extra


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalogue(sample_songs) -> SongCatalogue:
    cat = SongCatalogue(loader=lambda: sample_songs, refresh_interval_seconds=9999)
    cat.refresh()
    return cat


@pytest.fixture
def event_log(clock) -> EventLog:
    return EventLog(clock=clock)


@pytest.fixture
def preferences(clock) -> PreferenceStore:
    return PreferenceStore(clock=clock)


@pytest.fixture
def profiles() -> ProfileStore:
    return ProfileStore()


@pytest.fixture
def aggregator(event_log, preferences, profiles, catalogue) -> ListeningProfileAggregator:
    return ListeningProfileAggregator(
        event_log=event_log,
        preferences=preferences,
        profiles=profiles,
        catalogue=catalogue,
    )


@pytest.fixture
def ranker(preferences, profiles, event_log, clock) -> RecommendationRanker:
    return RecommendationRanker(
        preferences=preferences,
        profiles=profiles,
        event_log=event_log,
        rng=np.random.default_rng(1234),
        clock=clock,
    )
