"""Tests for SmartShuffleServicer (gRPC service layer)."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import grpc
import numpy as np
import pytest
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from smartshuffle.aggregator import ListeningProfileAggregator
from smartshuffle.catalogue import SongCatalogue
from smartshuffle.errors import StorageUnavailableError
from smartshuffle.models import Song
from smartshuffle.ranker import RecommendationRanker
from smartshuffle.service import SERVICE_NAME, SmartShuffleServicer, add_servicer_to_server


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request(**fields) -> Struct:
    message = Struct()
    message.update(fields)
    return message


def _as_dict(message: Struct) -> dict:
    return json_format.MessageToDict(message)


def _make_context() -> MagicMock:
    """Return a mock gRPC context."""
    ctx = MagicMock()
    ctx.set_code = MagicMock()
    ctx.set_details = MagicMock()
    return ctx


@pytest.fixture
def servicer(aggregator, ranker, catalogue, event_log, preferences, profiles):
    return SmartShuffleServicer(
        aggregator=aggregator,
        ranker=ranker,
        catalogue=catalogue,
        event_log=event_log,
        preferences=preferences,
        profiles=profiles,
        default_limit=5,
    )


def _with_mock(servicer: SmartShuffleServicer, attr: str, **kwargs) -> MagicMock:
    mock = MagicMock(**kwargs)
    setattr(servicer, attr, mock)
    return mock


# ---------------------------------------------------------------------------
# RecordPlayback tests
# ---------------------------------------------------------------------------


class TestRecordPlayback:
    def test_records_and_returns_event(self, servicer, preferences) -> None:
        ctx = _make_context()
        response = servicer.RecordPlayback(
            _request(user_id="u1", song_id="s_jazz", played_fully=True, skipped=False,
                     context="study"),
            ctx,
        )
        event = _as_dict(response)["event"]
        assert event["song_id"] == "s_jazz"
        assert event["event_id"] == 1
        assert event["context"] == "study"
        assert preferences.get("u1", "s_jazz").play_count == 1
        ctx.set_code.assert_not_called()

    def test_non_string_context_sets_invalid_argument(self, servicer, event_log) -> None:
        ctx = _make_context()
        servicer.RecordPlayback(
            _request(user_id="u1", song_id="s_jazz", played_fully=True, context=5), ctx
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        assert len(event_log) == 0

    def test_string_flag_sets_invalid_argument(self, servicer, preferences) -> None:
        ctx = _make_context()
        servicer.RecordPlayback(
            _request(user_id="u1", song_id="s_jazz", played_fully="false"), ctx
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        assert preferences.get("u1", "s_jazz") is None

    def test_missing_user_sets_invalid_argument(self, servicer) -> None:
        ctx = _make_context()
        servicer.RecordPlayback(_request(song_id="s1", played_fully=True), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_storage_error_sets_unavailable(self, servicer) -> None:
        agg = _with_mock(servicer, "_aggregator")
        agg.record_playback.side_effect = StorageUnavailableError("disk full")
        ctx = _make_context()
        servicer.RecordPlayback(_request(user_id="u1", song_id="s1"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.UNAVAILABLE)

    def test_unexpected_error_sets_internal(self, servicer) -> None:
        agg = _with_mock(servicer, "_aggregator")
        agg.record_playback.side_effect = RuntimeError("crash")
        ctx = _make_context()
        servicer.RecordPlayback(_request(user_id="u1", song_id="s1"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)


# ---------------------------------------------------------------------------
# GetRecommendations tests
# ---------------------------------------------------------------------------


class TestGetRecommendations:
    def test_uses_default_limit_over_catalogue(self, servicer) -> None:
        response = servicer.GetRecommendations(_request(user_id="u1"), _make_context())
        songs = _as_dict(response)["songs"]
        assert len(songs) == 5
        assert len({s["song_id"] for s in songs}) == 5

    def test_explicit_pool_skips_unknown_songs(self, servicer) -> None:
        response = servicer.GetRecommendations(
            _request(user_id="u1", song_ids=["s_jazz", "ghost", "s_rock"], limit=10),
            _make_context(),
        )
        ids = {s["song_id"] for s in _as_dict(response)["songs"]}
        assert ids == {"s_jazz", "s_rock"}

    def test_genre_filter(self, servicer) -> None:
        response = servicer.GetRecommendations(
            _request(user_id="u1", genre="jazz", limit=10), _make_context()
        )
        genres = {s["genre"] for s in _as_dict(response)["songs"]}
        assert genres == {"jazz"}

    def test_policy_is_forwarded(self, servicer) -> None:
        ranker = _with_mock(servicer, "_ranker", **{"recommend.return_value": []})
        servicer.GetRecommendations(
            _request(user_id="u1", policy={"use_smart": False}, limit=3), _make_context()
        )
        _, policy, _, limit = ranker.recommend.call_args[0]
        assert policy.use_smart is False
        assert policy.explore_new is True
        assert limit == 3

    def test_recent_play_excluded_end_to_end(self, servicer, clock) -> None:
        servicer.RecordPlayback(
            _request(user_id="u1", song_id="s_jazz", played_fully=True), _make_context()
        )
        response = servicer.GetRecommendations(
            _request(user_id="u1", song_ids=["s_jazz"]), _make_context()
        )
        assert _as_dict(response).get("songs", []) == []

        clock.now += timedelta(hours=25)
        response = servicer.GetRecommendations(
            _request(user_id="u1", song_ids=["s_jazz"]), _make_context()
        )
        assert [s["song_id"] for s in _as_dict(response)["songs"]] == ["s_jazz"]

    def test_string_policy_flag_sets_invalid_argument(self, servicer) -> None:
        ctx = _make_context()
        servicer.GetRecommendations(
            _request(user_id="u1", policy={"explore_new": "false"}), ctx
        )
        ctx.set_code.assert_called_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_empty_user_id_sets_invalid_argument(self, servicer) -> None:
        ctx = _make_context()
        servicer.GetRecommendations(_request(user_id=""), ctx)
        ctx.set_code.assert_called_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_negative_limit_sets_invalid_argument(self, servicer) -> None:
        ctx = _make_context()
        servicer.GetRecommendations(_request(user_id="u1", limit=-2), ctx)
        ctx.set_code.assert_called_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_ranker_runtime_error_sets_internal(self, servicer) -> None:
        _with_mock(servicer, "_ranker", **{"recommend.side_effect": RuntimeError("crash")})
        ctx = _make_context()
        servicer.GetRecommendations(_request(user_id="u1"), ctx)
        ctx.set_code.assert_called_with(grpc.StatusCode.INTERNAL)

    def test_slow_response_logs_warning(self, servicer) -> None:
        with patch("smartshuffle.service._RECOMMENDATION_WARN_THRESHOLD_MS", -1):
            with patch("smartshuffle.service.logger") as mock_logger:
                servicer.GetRecommendations(_request(user_id="u1"), _make_context())
                mock_logger.warning.assert_called_once()


# ---------------------------------------------------------------------------
# Inspection tests
# ---------------------------------------------------------------------------


class TestInspection:
    def test_recently_played(self, servicer, clock) -> None:
        for song_id in ("s_jazz", "s_rock", "s_jazz"):
            servicer.RecordPlayback(
                _request(user_id="u1", song_id=song_id, played_fully=True), _make_context()
            )
            clock.now += timedelta(minutes=4)
        response = servicer.GetRecentlyPlayed(_request(user_id="u1"), _make_context())
        assert [s["song_id"] for s in _as_dict(response)["songs"]] == ["s_jazz", "s_rock"]

    def test_get_preference(self, servicer) -> None:
        servicer.RecordPlayback(
            _request(user_id="u1", song_id="s_rock", skipped=True), _make_context()
        )
        response = servicer.GetPreference(
            _request(user_id="u1", song_id="s_rock"), _make_context()
        )
        preference = _as_dict(response)["preference"]
        assert preference["skip_count"] == 1
        assert preference["preference_score"] == pytest.approx(-0.5)

    def test_get_missing_preference_sets_not_found(self, servicer) -> None:
        ctx = _make_context()
        servicer.GetPreference(_request(user_id="u1", song_id="s_rock"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)

    def test_get_listening_profile(self, servicer) -> None:
        servicer.RecordPlayback(
            _request(user_id="u1", song_id="s_jazz", played_fully=True, context="study"),
            _make_context(),
        )
        response = servicer.GetListeningProfile(_request(user_id="u1"), _make_context())
        profile = _as_dict(response)["profile"]
        assert profile["genre_preferences"] == {"jazz": 1}
        assert profile["contexts"] == {"study": 1}

    def test_get_missing_profile_sets_not_found(self, servicer) -> None:
        ctx = _make_context()
        servicer.GetListeningProfile(_request(user_id="nobody"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestAddServicerToServer:
    def test_registers_generic_handler(self, servicer) -> None:
        server = MagicMock()
        add_servicer_to_server(servicer, server)
        server.add_generic_rpc_handlers.assert_called_once()
        (handlers,), _ = server.add_generic_rpc_handlers.call_args
        assert len(handlers) == 1
        assert handlers[0].service_name() == SERVICE_NAME


# ---------------------------------------------------------------------------
# Numeric IDs
# ---------------------------------------------------------------------------


class TestNumericIds:
    """Struct carries numbers as doubles; integral IDs must key as ``"7"``."""

    @pytest.fixture
    def numeric_servicer(self, event_log, preferences, profiles, clock) -> SmartShuffleServicer:
        songs = [
            Song.from_dict({"song_id": 7, "title": "Seven", "artist": "Mina Lowe",
                            "genre": "jazz"}),
            Song.from_dict({"song_id": 8, "title": "Eight", "genre": "rock"}),
        ]
        catalogue = SongCatalogue(loader=lambda: songs, refresh_interval_seconds=9999)
        catalogue.refresh()
        aggregator = ListeningProfileAggregator(event_log, preferences, profiles, catalogue)
        ranker = RecommendationRanker(
            preferences, profiles, event_log, rng=np.random.default_rng(5), clock=clock
        )
        return SmartShuffleServicer(
            aggregator=aggregator,
            ranker=ranker,
            catalogue=catalogue,
            event_log=event_log,
            preferences=preferences,
            profiles=profiles,
        )

    def test_record_playback_keys_integral_ids(self, numeric_servicer, preferences,
                                               profiles) -> None:
        ctx = _make_context()
        response = numeric_servicer.RecordPlayback(
            _request(user_id=1, song_id=7, played_fully=True), ctx
        )
        ctx.set_code.assert_not_called()
        assert _as_dict(response)["event"]["song_id"] == "7"
        assert preferences.get("1", "7").play_count == 1
        assert profiles.get("1").genre_preferences["jazz"] == 1

    def test_numeric_candidate_pool_resolves(self, numeric_servicer) -> None:
        response = numeric_servicer.GetRecommendations(
            _request(user_id=1, song_ids=[7, 8], policy={"explore_new": False}),
            _make_context(),
        )
        ids = {s["song_id"] for s in _as_dict(response)["songs"]}
        assert ids == {"7", "8"}

    def test_inspection_accepts_numeric_ids(self, numeric_servicer) -> None:
        numeric_servicer.RecordPlayback(
            _request(user_id=1, song_id=7, played_fully=True), _make_context()
        )
        preference = _as_dict(
            numeric_servicer.GetPreference(_request(user_id=1, song_id=7), _make_context())
        )["preference"]
        assert preference["play_count"] == 1
        recent = _as_dict(
            numeric_servicer.GetRecentlyPlayed(_request(user_id=1), _make_context())
        )["songs"]
        assert [s["song_id"] for s in recent] == ["7"]
        profile = _as_dict(
            numeric_servicer.GetListeningProfile(_request(user_id=1), _make_context())
        )["profile"]
        assert profile["user_id"] == "1"

    def test_fractional_id_is_kept_verbatim(self, numeric_servicer, preferences) -> None:
        numeric_servicer.RecordPlayback(
            _request(user_id="u1", song_id=7.5, skipped=True), _make_context()
        )
        assert preferences.get("u1", "7.5").skip_count == 1
